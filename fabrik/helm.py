"""Library for rendering helm components with `helm template`.

A helm component names a chart `path` inside a chart repository. When the
component sets `repo`, the chart repository is a git repository installed
through the shared clone cache into `helm_repos/<name>`; otherwise the chart
lives next to the component definition.

```python
from fabrik.component import Component
from fabrik.context import InstallContext
from fabrik.helm import install_helm_component, generate_helm_component

component = Component(
    name="grafana",
    generator="helm",
    repo="https://github.com/helm/charts",
    path="stable/grafana",
    config={"namespace": "grafana"},
    physical_path="/path/to/definition",
)
async with InstallContext() as ctx:
    await install_helm_component(ctx, component)
    manifests = await generate_helm_component(ctx, component)
```
"""

from dataclasses import dataclass
import logging
import shutil
from pathlib import Path
from typing import Any

import aiofiles
from aiofiles.os import makedirs, wrap
from aiofiles.ospath import exists
import yaml

from .command import Command
from .component import Component
from .context import InstallContext, trace_context
from .exceptions import HelmException, InputException

__all__ = [
    "Options",
    "add_namespace_to_manifests",
    "generate_helm_component",
    "helm_repo_path",
    "install_helm_component",
]

_LOGGER = logging.getLogger(__name__)

HELM_BIN = "helm"
HELM_REPOS_DIR = "helm_repos"
VALUES_FILE = "overriddenValues.yaml"
DEFAULT_NAMESPACE = "default"
_TIMEOUT = 60.0

_rmtree = wrap(shutil.rmtree)


@dataclass
class Options:
    """Options to use when rendering a helm chart."""

    skip_crds: bool = False
    """Skip CRDs when building the output."""

    skip_tests: bool = True
    """Don't render helm test hooks in the output."""

    kube_version: str | None = None
    """Value of the helm --kube-version flag."""

    @property
    def template_args(self) -> list[str]:
        """Helm template CLI arguments built from the options."""
        args: list[str] = []
        if self.skip_crds:
            args.append("--skip-crds")
        if self.skip_tests:
            args.append("--skip-tests")
        if self.kube_version:
            args.extend(["--kube-version", self.kube_version])
        return args


def helm_repo_path(component: Component) -> Path:
    """Return the directory holding the component's chart repository."""
    if not component.repo:
        return Path(component.physical_path)
    return Path(component.physical_path) / HELM_REPOS_DIR / component.name


def add_namespace_to_manifests(manifests: str, namespace: str) -> str:
    """Set the namespace on every manifest in a multi-document yaml string.

    Some charts expect the install to inject the namespace, so rendered
    resources without one would otherwise land in the default namespace.
    """
    try:
        docs = list(yaml.safe_load_all(manifests))
    except yaml.YAMLError as err:
        raise HelmException(f"Unable to parse helm output: {err}") from err
    out = []
    for doc in docs:
        if not doc:
            continue
        if not isinstance(doc, dict):
            raise HelmException(f"Unexpected helm output document: {doc}")
        if isinstance(metadata := doc.get("metadata"), dict):
            metadata["namespace"] = namespace
        out.append(f"---\n{yaml.dump(doc, sort_keys=False)}")
    return "".join(out)


async def install_helm_component(ctx: InstallContext, component: Component) -> None:
    """Install the git chart repository of the component, if it has one."""
    if not component.repo:
        return
    repo_path = helm_repo_path(component)
    if await exists(repo_path):
        await _rmtree(repo_path)
    await makedirs(repo_path, exist_ok=True)
    _LOGGER.info(
        "Install helm repo %s for %s into %s",
        component.repo,
        component.name,
        repo_path,
    )
    with trace_context(f"Helm repo {component.name}"):
        await ctx.git.materialize(component.repo, "", "", repo_path)


def _config_str(config: dict[str, Any], key: str) -> str | None:
    if (value := config.get(key)) is None:
        return None
    if not isinstance(value, str):
        raise InputException(f"Component config '{key}' must be a string: {value}")
    return value


async def generate_helm_component(
    ctx: InstallContext,
    component: Component,
    options: Options | None = None,
) -> str:
    """Render the component's chart and return the manifests."""
    if options is None:
        options = Options()
    _LOGGER.info(
        "Generating component '%s' with helm with repo %s",
        component.name,
        component.repo,
    )
    chart_path = helm_repo_path(component).absolute() / component.path
    values_path = chart_path / VALUES_FILE
    content = yaml.dump(component.config, sort_keys=False)
    _LOGGER.debug("Writing config %s to %s", content, values_path)
    try:
        async with aiofiles.open(values_path, mode="w") as values_file:
            await values_file.write(content)
    except OSError as err:
        raise InputException(
            f"Unable to write values for component '{component.name}': {err}"
        ) from err

    name = _config_str(component.config, "name") or component.name
    namespace = _config_str(component.config, "namespace")
    args = [
        HELM_BIN,
        "template",
        name,
        str(chart_path),
        "--values",
        str(values_path),
        "--namespace",
        namespace or DEFAULT_NAMESPACE,
    ]
    args.extend(options.template_args)
    with trace_context(f"Helm template {component.name}"):
        manifests = await ctx.runner.run(
            Command(args, exc=HelmException, timeout=_TIMEOUT)
        )
    if namespace:
        manifests = add_namespace_to_manifests(manifests, namespace)
    return manifests
