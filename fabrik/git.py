"""Deduplicating cache of git clones shared by every component in a run.

Components name remote sources as a (repository, branch, commit) triple. Many
components in a tree commonly reference the same triple, and they are resolved
concurrently, so the cache makes sure each distinct triple is cloned at most
once. Every caller waits on the same `GitCloneResult` and then receives its
own copy of the checkout:

```python
from fabrik.git import GitCache

cache = GitCache()
path = await cache.materialize(
    "https://github.com/org/repo.git",
    "",  # latest commit
    "main",
    "components/repo",
)
```

A clone with no commit requested is shallow. A clone for a specific commit
fetches the full history and then checks that commit out. Failures are
cached too: a failed triple keeps failing with the same error for the
lifetime of the cache.
"""

import asyncio
import logging
import shutil
import tempfile
import threading
from pathlib import Path

from aiofiles.os import wrap
from slugify import slugify

from .command import Command, CommandRunner, SubprocessRunner, redact
from .credentials import CredentialTable, inject_credentials
from .exceptions import (
    CheckoutError,
    FetchError,
    MaterializationError,
    ResourceAllocationError,
)

__all__ = [
    "GitCache",
    "GitCloneResult",
    "cache_key",
]

_LOGGER = logging.getLogger(__name__)

GIT_BIN = "git"

# Placeholders used only to build cache keys. A clone without a branch still
# uses the remote's default branch, whatever its name.
DEFAULT_BRANCH = "master"
LATEST_COMMIT = "head"

# Fail instead of prompting for credentials
NO_PROMPT_ENV = {"GIT_TERMINAL_PROMPT": "0"}

_copytree = wrap(shutil.copytree)


def cache_key(repo: str, branch: str, commit: str) -> str:
    """Combine a repository, branch and commit into a cache key."""
    return f"{repo}@{branch or DEFAULT_BRANCH}:{commit or LATEST_COMMIT}"


def _clone_dir_prefix(repo: str) -> str:
    """Return a readable temp directory prefix for the repository."""
    name = Path(repo.rstrip("/")).stem
    return f"{slugify(name, max_length=50) or 'repo'}-"


class GitCloneResult:
    """The eventual outcome of cloning one repository triple.

    The result is settled exactly once by the worker that owns the clone,
    either with the local clone directory or with the error that stopped it.
    Any number of callers may wait on it before or after that happens.
    """

    def __init__(self, key: str) -> None:
        """Initialize GitCloneResult."""
        self._key = key
        self._future: asyncio.Future[Path] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def key(self) -> str:
        """The cache key of the cloned repository."""
        return self._key

    def done(self) -> bool:
        """Return True once the clone has either succeeded or failed."""
        return self._future.done()

    @property
    def path(self) -> Path | None:
        """The clone directory, if the clone succeeded."""
        if not self._future.done() or self._future.cancelled():
            return None
        if self._future.exception() is not None:
            return None
        return self._future.result()

    @property
    def error(self) -> BaseException | None:
        """The error that stopped the clone, if it failed."""
        if not self._future.done() or self._future.cancelled():
            return None
        return self._future.exception()

    async def wait(self) -> Path:
        """Wait for the clone and return its directory or raise its error.

        Cancelling a waiter never cancels the clone itself.
        """
        return await asyncio.shield(self._future)

    def _resolve(self, path: Path) -> None:
        self._future.set_result(path)

    def _reject(self, err: BaseException) -> None:
        self._future.set_exception(err)

    def _cancel(self) -> None:
        self._future.cancel()

    def __repr__(self) -> str:
        if not self.done():
            state = "pending"
        elif self.error is not None:
            state = f"error={self.error!r}"
        else:
            state = f"path={self.path}"
        return f"GitCloneResult({self._key}, {state})"


class GitCache:
    """Clones each distinct repository triple once per run."""

    def __init__(
        self,
        credentials: CredentialTable | None = None,
        runner: CommandRunner | None = None,
        tmp_dir: Path | None = None,
    ) -> None:
        """Initialize GitCache.

        Clones are written to new directories below `tmp_dir`, or the host
        temp directory when unset.
        """
        self._credentials = (
            credentials if credentials is not None else CredentialTable()
        )
        self._runner = runner if runner is not None else SubprocessRunner()
        self._tmp_dir = tmp_dir
        self._lock = threading.Lock()
        self._cache: dict[str, GitCloneResult] = {}
        self._workers: set[asyncio.Task[None]] = set()
        self._clone_dirs: list[Path] = []

    @property
    def credentials(self) -> CredentialTable:
        """The access tokens used when cloning."""
        return self._credentials

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    def fetch(self, repo: str, branch: str = "", commit: str = "") -> GitCloneResult:
        """Return the shared clone result for the repository triple.

        The first request for a triple registers a pending result and starts
        the clone in the background. Every later request receives that same
        result, whether it is still pending or already settled. Must be
        called from within the running event loop.
        """
        key = cache_key(repo, branch, commit)
        with self._lock:
            if (result := self._cache.get(key)) is not None:
                _LOGGER.info(
                    "Previously cloned '%s' this install; reusing cached result", key
                )
                return result
            result = GitCloneResult(key)
            self._cache[key] = result
        task = asyncio.create_task(
            self._clone(result, repo, branch, commit), name=f"git-clone {key}"
        )
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)
        return result

    async def _clone(
        self, result: GitCloneResult, repo: str, branch: str, commit: str
    ) -> None:
        """Clone the repository and settle the result."""
        try:
            clone_path = await self._clone_repo(result.key, repo, branch, commit)
        except asyncio.CancelledError:
            result._cancel()
            raise
        except Exception as err:  # settled into the result for every waiter
            _LOGGER.error("Error occurred while cloning '%s': %s", result.key, err)
            result._reject(err)
        else:
            result._resolve(clone_path)

    async def _clone_repo(
        self, key: str, repo: str, branch: str, commit: str
    ) -> Path:
        url = repo
        secrets: list[str] = []
        if (token := self._credentials.get(repo)) is not None:
            url = inject_credentials(repo, token)
            secrets.append(token)

        args = [GIT_BIN, "clone", url]
        if not commit:
            _LOGGER.info("Component requested latest commit: cloning at --depth 1")
            args.extend(["--depth", "1"])
        else:
            _LOGGER.info("Component requested commit '%s': need full clone", commit)
        if branch:
            _LOGGER.info("Component requested branch '%s'", branch)
            args.extend(["--branch", branch])

        clone_path = self._make_clone_dir(repo)
        args.append(str(clone_path))
        _LOGGER.info("Cloning %s => %s", key, clone_path)
        await self._runner.run(
            Command(args, exc=FetchError, env=dict(NO_PROMPT_ENV), secrets=secrets)
        )

        if commit:
            _LOGGER.info(
                "Performing checkout commit '%s' for repo '%s' on branch '%s'",
                commit,
                redact(url, secrets),
                branch,
            )
            await self._runner.run(
                Command(
                    [GIT_BIN, "checkout", commit],
                    cwd=clone_path,
                    exc=CheckoutError,
                    env=dict(NO_PROMPT_ENV),
                    secrets=secrets,
                )
            )
        return clone_path

    def _make_clone_dir(self, repo: str) -> Path:
        """Create a new uniquely named directory to clone into."""
        try:
            clone_path = Path(
                tempfile.mkdtemp(prefix=_clone_dir_prefix(repo), dir=self._tmp_dir)
            )
        except OSError as err:
            raise ResourceAllocationError(
                f"Unable to create a clone directory for '{repo}': {err}"
            ) from err
        self._clone_dirs.append(clone_path)
        return clone_path

    async def materialize(
        self,
        repo: str,
        commit: str,
        branch: str,
        destination: Path | str,
    ) -> Path:
        """Copy the clone of the repository triple into the destination.

        Waits for the shared clone and raises its error unchanged if it
        failed. The destination receives an independent copy so it may be
        modified freely. Returns the absolute destination path.
        """
        clone_path = await self.fetch(repo, branch, commit).wait()
        abs_destination = Path(destination).absolute()
        _LOGGER.info("Copying %s => %s", clone_path, abs_destination)
        try:
            await _copytree(
                clone_path, abs_destination, symlinks=True, dirs_exist_ok=True
            )
        except OSError as err:
            raise MaterializationError(
                f"Unable to copy '{clone_path}' to '{abs_destination}': {err}"
            ) from err
        return abs_destination

    async def block_till_done(self) -> None:
        """Wait for all in-flight clones to settle."""
        if workers := list(self._workers):
            _LOGGER.debug("Waiting for %d clones to complete", len(workers))
            await asyncio.gather(*workers)

    def cleanup(self) -> None:
        """Remove every clone directory created by this cache.

        Only call this once the run is over; cached results keep pointing at
        the removed directories.
        """
        for path in self._clone_dirs:
            if not path.exists():
                continue
            _LOGGER.info("Cleaning up cached repository: %s", path)
            try:
                shutil.rmtree(path)
            except OSError as err:
                _LOGGER.error("Error during cache cleanup of %s: %s", path, err)
        self._clone_dirs.clear()
