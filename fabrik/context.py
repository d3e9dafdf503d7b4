"""Per-run state shared by every component resolved during an install.

An `InstallContext` is created once when an install starts and is passed to
every resolver call. It owns the registered access tokens, the command runner
and the git clone cache, so all components of one run share clones:

```python
from fabrik.context import InstallContext

async with InstallContext() as ctx:
    ctx.credentials.set("https://github.com/org/repo.git", "TOKEN")
    await install_component(ctx, component)
```
"""

import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from pathlib import Path
from time import perf_counter
from types import TracebackType
from typing import Generator

from .command import CommandRunner, SubprocessRunner
from .credentials import CredentialTable
from .git import GitCache

__all__ = [
    "InstallContext",
    "trace_context",
]

_LOGGER = logging.getLogger(__name__)


trace: contextvars.ContextVar[list[str]] = contextvars.ContextVar("trace")


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Log the nested name and duration of a step at debug level."""
    stack = trace.get([])
    token = trace.set(stack + [name])
    label = " > ".join(stack + [name])
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    finally:
        t2 = perf_counter()
        trace.reset(token)
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, (t2 - t1))


@dataclass
class InstallContext:
    """State shared by all components of a single install."""

    credentials: CredentialTable = field(default_factory=CredentialTable)
    """Access tokens for git repositories, keyed by repository url."""

    runner: CommandRunner = field(default_factory=SubprocessRunner)
    """Runs git and helm commands."""

    tmp_dir: Path | None = None
    """Directory for clones, or the host temp directory when unset."""

    git: GitCache = field(init=False)
    """Clone cache shared by every component."""

    def __post_init__(self) -> None:
        self.git = GitCache(self.credentials, self.runner, self.tmp_dir)

    async def __aenter__(self) -> "InstallContext":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Wait for outstanding clones, then remove every clone directory."""
        try:
            await self.git.block_till_done()
        finally:
            self.git.cleanup()
