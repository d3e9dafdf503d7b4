"""Access tokens for git repositories and their injection into clone URLs.

Tokens are registered by whatever discovers them (a secrets file, the
environment) before components are resolved, and are read by the git cache
when it clones a repository:

```python
from fabrik.credentials import CredentialTable

credentials = CredentialTable()
credentials.set("https://github.com/org/repo.git", "TOKEN")
```
"""

import logging
import re
import threading

from .exceptions import ConfigurationError

__all__ = [
    "CredentialTable",
    "inject_credentials",
]

_LOGGER = logging.getLogger(__name__)

# Credentials may not contain a path separator, so an '@' later in the path
# is never mistaken for an embedded user.
_AUTHORITY_PATTERN = r"^(https?)://(?:([^@/]+)@)?(.+)$"


class CredentialTable:
    """Thread safe map of repository URL to access token."""

    def __init__(self) -> None:
        """Initialize CredentialTable."""
        self._lock = threading.Lock()
        self._tokens: dict[str, str] = {}

    def set(self, repo: str, token: str) -> None:
        """Register or replace the access token for the repository."""
        with self._lock:
            self._tokens[repo] = token

    def get(self, repo: str) -> str | None:
        """Return the access token for the repository if one is registered."""
        with self._lock:
            return self._tokens.get(repo)

    def __contains__(self, repo: object) -> bool:
        with self._lock:
            return repo in self._tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


def inject_credentials(url: str, token: str) -> str:
    """Return the url with the token embedded as the userinfo.

    Only http(s) urls are rewritten. A url that already carries credentials
    is returned untouched.
    """
    try:
        pattern = re.compile(_AUTHORITY_PATTERN)
    except re.error as err:
        raise ConfigurationError(
            f"Invalid credential injection pattern: {err}"
        ) from err
    if not (match := pattern.match(url)):
        _LOGGER.debug("Repository url is not http(s), not injecting token")
        return url
    scheme, credentials, rest = match.groups()
    if credentials is not None:
        return url
    return f"{scheme}://{token}@{rest}"
