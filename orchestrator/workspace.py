"""
workspace.py
------------
The context every devtool operation runs against: the core repository, the
module repositories checked out under ``barclamps/``, the remote registry,
the release metadata and the runtime settings.

The CLI builds one Workspace per invocation with :func:`discover_workspace`
and passes it explicitly; nothing is cached at module level.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

from common.settings import DevtoolSettings
from connectors.git_repository import GitRepository
from connectors.repository_interface import RepositoryProtocol

from .errors import NotFoundError
from .metadata import FlatMetadata
from .remotes import RemoteRegistry

logger = logging.getLogger(__name__)

CORE_REPO = "crowbar"
MODULES_DIR = "barclamps"
MODULE_REPO_PREFIX = "barclamp-"

Opener = Callable[[Path], RepositoryProtocol]


@dataclass
class Workspace:
    repo: RepositoryProtocol
    modules: dict[str, RepositoryProtocol]
    settings: DevtoolSettings = field(default_factory=DevtoolSettings)
    meta: FlatMetadata = field(init=False)
    remotes: RemoteRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.meta = FlatMetadata(self.repo, self.modules).load()
        self.remotes = RemoteRegistry(self)

    @property
    def path(self) -> Path:
        return Path(self.repo.path)

    def module_repos(self) -> dict[str, RepositoryProtocol]:
        """Module repositories keyed ``barclamp-<name>``."""
        return {MODULE_REPO_PREFIX + name: repo for name, repo in self.modules.items()}

    def other_repos(self) -> dict[str, RepositoryProtocol]:
        return {CORE_REPO: self.repo}

    def all_repos(self) -> dict[str, RepositoryProtocol]:
        repos = self.module_repos()
        repos.update(self.other_repos())
        return repos

    def all_module_branches(self) -> dict[str, list[str]]:
        """Every branch any build binds, keyed by module repository name."""
        branches: dict[str, list[str]] = {}
        builds = self.meta.all_builds()
        for full_name in sorted(builds):
            for binding in builds[full_name].modules.values():
                bound = branches.setdefault(binding.repo_name, [])
                if binding.branch not in bound:
                    bound.append(binding.branch)
        return branches


def find_core(path: Path) -> Path:
    """Walk up from ``path`` to the first git work tree that has a barclamps directory."""
    path = path.resolve()
    for candidate in (path, *path.parents):
        if GitRepository.is_repository(candidate) and (candidate / MODULES_DIR).is_dir():
            return candidate
    raise NotFoundError(f"Cannot find Crowbar from {path}")


def discover_workspace(
    path: str | Path | None = None,
    settings: DevtoolSettings | None = None,
    opener: Opener = GitRepository.open,
) -> Workspace:
    """Locate the core repository at or above ``path`` and open every module under it."""
    core = find_core(Path(path) if path is not None else Path.cwd())
    repo = opener(core)
    modules: dict[str, RepositoryProtocol] = {}
    for entry in sorted((core / MODULES_DIR).iterdir()):
        if not entry.is_dir() or not GitRepository.is_repository(entry):
            continue
        try:
            modules[entry.name] = opener(entry)
        except NotFoundError as e:
            logger.warning(f"Skipping {entry}: {e}")
    logger.info(f"Found Crowbar at {core} with {len(modules)} modules")
    return Workspace(repo=repo, modules=modules, settings=settings or DevtoolSettings())


__all__ = ["CORE_REPO", "Workspace", "discover_workspace", "find_core"]
