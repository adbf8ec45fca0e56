"""Release and build operations: naming, split, removal and switching."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from connectors.repository_interface import RefProtocol, RepositoryProtocol

from .errors import (
    BaseRefMissing,
    BranchAlreadyExists,
    ConflictError,
    NotFoundError,
    OperationFailed,
    ValidationError,
)
from .mapreduce import ResultToken, branch_checkpoint, map_reduce
from .tree import MASTER_BUILD, Build, ModuleBinding, Release
from .workspace import Workspace

logger = logging.getLogger(__name__)

DEVELOPMENT = "development"
RELEASE_KEY = "crowbar.release"
BUILD_KEY = "crowbar.build"
SWITCH_LINKS = ("change-image", "extra")


def branch_name(release: str) -> str:
    """Git branch that carries ``release`` in every module repository."""
    if release == DEVELOPMENT:
        return "master"
    parts = release.split("/")
    if len(parts) == 1 and parts[0]:
        return f"release/{release}/master"
    if len(parts) == 2 and parts[0] in ("feature", "local") and parts[1]:
        return f"{parts[0]}/{parts[1]}/master"
    raise ValidationError(f"{release} is not a valid release name")


def resolved_modules(build: Build) -> dict[str, ModuleBinding]:
    return build.resolved_modules()


def release_modules(release: Release) -> dict[str, ModuleBinding]:
    return release.modules()


# ---------------------------------------------------------------------------
# current position


def current_release(ws: Workspace) -> Release | None:
    name = ws.repo.config_get(RELEASE_KEY)
    if not name:
        return None
    return ws.meta.release(name)


def current_build(ws: Workspace) -> Build | None:
    name = ws.repo.config_get(BUILD_KEY)
    if not name:
        return None
    builds = ws.meta.all_builds()
    if name not in builds:
        raise NotFoundError(f"Current build {name} does not exist")
    return builds[name]


def find_build(ws: Workspace, name: str) -> Build:
    """Resolve ``name`` as ``release/build``, or as a build of the current release."""
    builds = ws.meta.all_builds()
    if name in builds:
        return builds[name]
    release = current_release(ws)
    if release is not None and name in release.builds:
        return release.builds[name]
    raise NotFoundError(f"{name} is not a build")


def switch_target(ws: Workspace, name: str | None) -> Build:
    """What ``switch`` should move to: a build, or a release's matching/master build."""
    current = current_build(ws)
    if name is None:
        if current is None:
            raise NotFoundError("No current build to switch to")
        return current
    if name in ws.meta.releases:
        release = ws.meta.releases[name]
        for candidate in ([current.name] if current else []) + [MASTER_BUILD]:
            if candidate in release.builds:
                return release.builds[candidate]
        raise NotFoundError(f"Release {name} has no build to switch to")
    return find_build(ws, name)


@dataclass
class ReleaseSummary:
    name: str
    parent: str | None
    branch: str
    builds: list[str]


def describe_release(release: Release) -> ReleaseSummary:
    return ReleaseSummary(
        name=release.name,
        parent=release.parent_name,
        branch=branch_name(release.name),
        builds=sorted(release.builds),
    )


# ---------------------------------------------------------------------------
# split


def split_release(ws: Workspace, source: Release, new_name: str) -> Release:
    """Create release ``new_name`` by branching every module of ``source``.

    All checks happen before any repository changes. Branch creation runs
    through map_reduce, so a failure in one repository removes the branches
    already created in the others.
    """
    if new_name in ws.meta.releases:
        raise ConflictError(f"Release {new_name} already exists, cannot create it")
    new_branch = branch_name(new_name)

    bases: dict[str, tuple[RepositoryProtocol, RefProtocol]] = {}
    for name, binding in sorted(release_modules(source).items()):
        try:
            base = binding.repo.ref(binding.branch)
        except NotFoundError:
            raise BaseRefMissing(name, binding.branch, source.name) from None
        try:
            binding.repo.ref(new_branch)
        except NotFoundError:
            pass
        else:
            raise BranchAlreadyExists(name, new_branch)
        bases[binding.repo_name] = (binding.repo, base)

    def mapper(name: str, repo: RepositoryProtocol) -> ResultToken:
        tok = ResultToken(name=name)
        _, restore = branch_checkpoint(repo)

        def rollback() -> bool:
            ok = restore()
            if new_branch in dict(repo.branches()):
                try:
                    repo.delete_branch(new_branch)
                except OperationFailed as e:
                    logger.error(f"{name}: cannot delete {new_branch}: {e}")
                    ok = False
            return ok

        tok.rollback = rollback
        try:
            tok.results = bases[name][1].branch(new_branch).sha
        except OperationFailed as e:
            tok.ok, tok.results = False, str(e)
        return tok

    repos = {name: repo for name, (repo, _) in bases.items()}
    ok, tokens = map_reduce(repos, mapper, max_workers=ws.settings.max_workers)
    if not ok:
        raise OperationFailed(f"Could not create {new_branch} in every module; changes rolled back", tokens)
    release = ws.meta.finalize_split(source, new_name, new_branch)
    logger.info(f"Split release {new_name} from {source.name} on {new_branch}")
    return release


# ---------------------------------------------------------------------------
# removal


def remove_release(ws: Workspace, release: Release) -> None:
    """Delete ``release``'s branches and metadata; children move to its parent.

    Branch deletion is best effort: the first failure stops the removal and
    branches already deleted stay deleted.
    """
    if release.name == DEVELOPMENT:
        raise ValidationError("Cannot delete the development release")
    current = current_release(ws)
    if current is not None and current.name == release.name:
        raise ConflictError(f"Cannot remove current release {release.name}")
    for name, binding in sorted(release_modules(release).items()):
        try:
            binding.repo.delete_branch(binding.branch)
        except OperationFailed as e:
            raise OperationFailed(
                f"Failed to remove release branch {binding.branch} from {name}: {e}"
            ) from e
    ws.meta.zap_release(release)
    logger.info(f"Release {release.name} deleted")


def remove_build(ws: Workspace, build: Build) -> None:
    if build.parent_name is None or build.name == MASTER_BUILD:
        raise ValidationError(f"Cannot delete the master build of release {build.release.name}")
    ws.meta.zap_build(build)
    logger.info(f"Build {build.full_name} deleted")


# ---------------------------------------------------------------------------
# switch


def switch(ws: Workspace, build: Build) -> tuple[bool, list[ResultToken]]:
    """Check out every module of ``build`` on its bound branch, all or nothing."""
    modules = resolved_modules(build)
    repos = {binding.repo_name: binding.repo for binding in modules.values()}
    branches = {binding.repo_name: binding.branch for binding in modules.values()}

    def mapper(name: str, repo: RepositoryProtocol) -> ResultToken:
        tok = ResultToken(name=name)
        tok.commit, tok.rollback = branch_checkpoint(repo)
        branch = branches[name]
        try:
            if repo.current_branch() != branch:
                repo.checkout(branch)
                tok.results = f"checked out {branch}"
        except OperationFailed as e:
            tok.ok, tok.results = False, str(e)
        return tok

    ok, tokens = map_reduce(repos, mapper, max_workers=ws.settings.max_workers)
    if ok:
        ws.repo.config_set(RELEASE_KEY, build.release.name)
        ws.repo.config_set(BUILD_KEY, build.full_name)
        finalize_switch(ws, build)
        logger.info(f"Switched to {build.full_name}")
    else:
        logger.error(f"Failed to switch to {build.full_name}; all repositories rolled back")
    return ok, tokens


def finalize_switch(ws: Workspace, build: Build) -> None:
    """Point the core work tree's change-image/extra links at the build's copies."""
    for link in SWITCH_LINKS:
        target = build.path / link
        if not target.exists():
            continue
        dest = ws.path / link
        if dest.is_symlink():
            dest.unlink()
        elif dest.exists():
            logger.warning(f"{dest} exists and is not a symlink, leaving it alone")
            continue
        os.symlink(target, dest)


__all__ = [
    "DEVELOPMENT",
    "ReleaseSummary",
    "branch_name",
    "current_build",
    "current_release",
    "describe_release",
    "find_build",
    "release_modules",
    "remove_build",
    "remove_release",
    "resolved_modules",
    "split_release",
    "switch",
    "switch_target",
]
