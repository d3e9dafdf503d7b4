"""Tests for the component model and source installation."""

from pathlib import Path

import pytest

from fabrik.component import Component, install_component
from fabrik.context import InstallContext
from fabrik.exceptions import FetchError, InputException

from .conftest import FakeRunner

REPO = "https://github.com/org/component.git"


@pytest.fixture(name="ctx")
def ctx_fixture(runner: FakeRunner, tmp_dir: Path) -> InstallContext:
    """Fixture for an install context backed by the fake runner."""
    return InstallContext(runner=runner, tmp_dir=tmp_dir)


def test_parse_component() -> None:
    """Test parsing a component definition."""
    component = Component.from_dict(
        {
            "name": "cloud-native",
            "source": REPO,
            "method": "git",
            "version": "abc123",
            "config": {"namespace": "apps"},
        }
    )
    assert component.name == "cloud-native"
    assert component.method == "git"
    assert component.branch == ""
    assert component.config == {"namespace": "apps"}
    assert component.to_dict()["source"] == REPO
    assert "repo" not in component.to_dict()


def test_components_path() -> None:
    """Test the install location of a component's git source."""
    component = Component(name="infra", physical_path="/defs")
    assert component.components_path == Path("/defs/components/infra")


async def test_install_git_component(
    ctx: InstallContext, runner: FakeRunner, tmp_path: Path
) -> None:
    """Test installing a git sourced component."""
    component = Component(
        name="infra",
        source=REPO,
        method="git",
        version="abc123",
        branch="release",
        physical_path=str(tmp_path),
    )
    await install_component(ctx, component)

    assert (tmp_path / "components" / "infra" / "README.md").exists()
    assert [cmd.cmd[1] for cmd in runner.commands] == ["clone", "checkout"]
    assert "--branch" in runner.commands[0].cmd
    assert "--depth" not in runner.commands[0].cmd


async def test_install_shared_source(
    ctx: InstallContext, runner: FakeRunner, tmp_path: Path
) -> None:
    """Test that components with the same source share a clone."""
    first = Component(
        name="first", source=REPO, method="git", physical_path=str(tmp_path / "a")
    )
    second = Component(
        name="second", source=REPO, method="git", physical_path=str(tmp_path / "b")
    )
    await install_component(ctx, first)
    await install_component(ctx, second)

    assert len(runner.subcommands("clone")) == 1
    assert (first.components_path / "README.md").exists()
    assert (second.components_path / "README.md").exists()


async def test_install_git_component_without_source(
    ctx: InstallContext, tmp_path: Path
) -> None:
    """Test that the git method requires a source."""
    component = Component(name="infra", method="git", physical_path=str(tmp_path))
    with pytest.raises(InputException, match="without a source"):
        await install_component(ctx, component)


async def test_install_git_component_failure(
    ctx: InstallContext, runner: FakeRunner, tmp_path: Path
) -> None:
    """Test that a clone failure is raised to the caller."""
    runner.errors["clone"] = FetchError("Repository not found")
    component = Component(
        name="infra", source=REPO, method="git", physical_path=str(tmp_path)
    )
    with pytest.raises(FetchError, match="Repository not found"):
        await install_component(ctx, component)


async def test_install_helm_component(
    ctx: InstallContext, runner: FakeRunner, tmp_path: Path
) -> None:
    """Test that a helm component installs its chart repository."""
    component = Component(
        name="grafana",
        generator="helm",
        repo=REPO,
        path="chart",
        physical_path=str(tmp_path),
    )
    await install_component(ctx, component)
    assert (tmp_path / "helm_repos" / "grafana" / "chart" / "Chart.yaml").exists()


async def test_install_local_component(
    ctx: InstallContext, runner: FakeRunner, tmp_path: Path
) -> None:
    """Test that a local component needs no install."""
    component = Component(name="local", physical_path=str(tmp_path))
    await install_component(ctx, component)
    assert not runner.commands
