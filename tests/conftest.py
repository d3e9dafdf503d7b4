"""Test fixtures for fabrik."""

import asyncio
from collections.abc import Generator
from pathlib import Path
import tempfile

import pytest

from fabrik.command import Command, CommandRunner
from fabrik.credentials import CredentialTable
from fabrik.git import GitCache


class FakeRunner(CommandRunner):
    """Records commands instead of running them.

    A `git clone` populates the target directory with a small fake checkout so
    the clone can be materialized.
    """

    def __init__(self) -> None:
        self.commands: list[Command] = []
        self.errors: dict[str, Exception] = {}
        self.outputs: dict[str, str] = {}
        self.gate: asyncio.Event | None = None

    def subcommands(self, name: str) -> list[Command]:
        """Return the recorded commands for a git or helm subcommand."""
        return [cmd for cmd in self.commands if cmd.cmd[1] == name]

    async def run(self, cmd: Command) -> str:
        self.commands.append(cmd)
        await asyncio.sleep(0)
        if self.gate is not None:
            await self.gate.wait()
        if (err := self.errors.get(cmd.cmd[1])) is not None:
            raise err
        if cmd.cmd[:2] == ["git", "clone"]:
            clone_path = Path(cmd.cmd[-1])
            (clone_path / "README.md").write_text("fake checkout\n")
            (clone_path / "chart").mkdir()
            (clone_path / "chart" / "Chart.yaml").write_text("name: chart\n")
        return self.outputs.get(cmd.cmd[1], "")


@pytest.fixture(name="tmp_dir")
def tmp_dir_fixture() -> Generator[Path, None, None]:
    """Fixture for a directory to hold clones."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture(name="runner")
def runner_fixture() -> FakeRunner:
    """Fixture for a runner that records commands."""
    return FakeRunner()


@pytest.fixture(name="credentials")
def credentials_fixture() -> CredentialTable:
    """Fixture for an empty credential table."""
    return CredentialTable()


@pytest.fixture(name="cache")
def cache_fixture(
    credentials: CredentialTable, runner: FakeRunner, tmp_dir: Path
) -> GitCache:
    """Fixture for a clone cache backed by the fake runner."""
    return GitCache(credentials, runner, tmp_dir)
