"""Representation of a component and installation of its remote sources.

A component is one node of a deployment descriptor tree. Components that are
sourced from git are copied out of the shared clone cache into the
`components` directory next to their parent definition before they are
expanded further.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

from mashumaro import DataClassDictMixin
from mashumaro.config import BaseConfig

from .context import InstallContext, trace_context
from .exceptions import InputException

__all__ = [
    "Component",
    "install_component",
]

_LOGGER = logging.getLogger(__name__)

METHOD_GIT = "git"
GENERATOR_HELM = "helm"
COMPONENTS_DIR = "components"


@dataclass
class Component(DataClassDictMixin):
    """A node in the component tree."""

    name: str
    """The name of the component."""

    generator: str | None = None
    """The generator used to render the component, e.g. `helm`."""

    source: str | None = None
    """Location of the component definition, a git url for the git method."""

    method: str | None = None
    """How the source is retrieved, e.g. `git`."""

    path: str = ""
    """Path of the component or chart within its source."""

    version: str = ""
    """Commit of the source to check out, or the latest commit when empty."""

    branch: str = ""
    """Branch of the source, or the remote default branch when empty."""

    repo: str | None = None
    """Git repository holding the helm chart for helm components."""

    config: dict[str, Any] = field(default_factory=dict)
    """Values applied to the component."""

    physical_path: str = ""
    """Directory on disk containing the component definition."""

    @property
    def components_path(self) -> Path:
        """Directory where this component's git source is installed."""
        return Path(self.physical_path) / COMPONENTS_DIR / self.name

    class Config(BaseConfig):
        omit_none = True


async def install_component(ctx: InstallContext, component: Component) -> None:
    """Install the remote sources the component needs before expansion."""
    # Imported here as the helm generator depends on the component model
    from .helm import install_helm_component

    if component.method == METHOD_GIT:
        if not component.source:
            raise InputException(
                f"Component '{component.name}' uses the git method without a source"
            )
        _LOGGER.info("Installing git source for component '%s'", component.name)
        with trace_context(f"Install {component.name}"):
            await ctx.git.materialize(
                component.source,
                component.version,
                component.branch,
                component.components_path,
            )
    if component.generator == GENERATOR_HELM:
        await install_helm_component(ctx, component)
