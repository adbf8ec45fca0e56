"""Flat on-disk release metadata kept in the core repository.

Layout under ``<core>/releases``::

    development/            release (feature/X and local/X nest one level down)
        parent              optional, name of the parent release
        master/             master build (no parent marker)
            module-crowbar  branch the module is bound to
        openstack/
            parent          parent build: file holding its name, or symlink to it
            module-nova

Every mutation is committed to the core repository.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Mapping

from connectors.repository_interface import RepositoryProtocol

from .errors import ConflictError, NotFoundError, ValidationError
from .tree import Build, ModuleBinding, Release

logger = logging.getLogger(__name__)

RELEASES_DIR = "releases"
PARENT_FILE = "parent"
MODULE_PREFIX = "module-"
NAMESPACES = ("feature", "local")


class FlatMetadata:
    """Loads and mutates the release forest stored as plain files."""

    def __init__(self, repo: RepositoryProtocol, modules: Mapping[str, RepositoryProtocol]):
        self.repo = repo
        self.modules = modules
        self.path = Path(repo.path) / RELEASES_DIR
        self.releases: dict[str, Release] = {}

    # ------------------------------------------------------------------
    # loading

    def load(self) -> FlatMetadata:
        """Populate :attr:`releases` from disk."""
        if not self.path.is_dir():
            raise NotFoundError(f"Cannot find {self.path}, metadata cannot be flat")
        if (self.path / ".git").exists():
            raise ValidationError(f"{self.path} has a .git directory, metadata cannot be flat")
        self.releases = {}
        for entry in sorted(self.path.iterdir()):
            if not entry.is_dir():
                continue
            if entry.name in NAMESPACES:
                for sub in sorted(entry.iterdir()):
                    if sub.is_dir():
                        name = f"{entry.name}/{sub.name}"
                        self.releases[name] = self._populate_release(name)
            else:
                self.releases[entry.name] = self._populate_release(entry.name)
        logger.debug(f"Loaded {len(self.releases)} releases from {self.path}")
        return self

    def _populate_release(self, name: str) -> Release:
        release = Release(name=name, root=self.path)
        parent_file = release.path / PARENT_FILE
        if parent_file.is_file():
            release.parent_name = parent_file.read_text().strip() or None
        for entry in sorted(release.path.iterdir()):
            if entry.is_dir() and not entry.is_symlink():
                release.builds[entry.name] = self._populate_build(release, entry.name)
        return release

    def _populate_build(self, release: Release, name: str) -> Build:
        build = Build(name=name, release=release)
        marker = build.path / PARENT_FILE
        if marker.is_symlink():
            build.parent_name = Path(os.readlink(marker)).name
        elif marker.is_file():
            build.parent_name = marker.read_text().strip() or None
        for entry in sorted(build.path.glob(f"{MODULE_PREFIX}*")):
            if not entry.is_file():
                continue
            module = entry.name[len(MODULE_PREFIX):]
            repo = self.modules.get(module)
            if repo is None:
                raise NotFoundError(
                    f"Build {build.full_name} wants {module}, which is not a checked out module"
                )
            build.modules[module] = ModuleBinding(module, entry.read_text().strip(), repo)
        return build

    # ------------------------------------------------------------------
    # lookup

    def release(self, name: str) -> Release:
        try:
            return self.releases[name]
        except KeyError:
            raise NotFoundError(f"{name} is not a release") from None

    def all_builds(self) -> dict[str, Build]:
        """Every build, keyed by full name (``release/build``)."""
        return {
            build.full_name: build
            for release in self.releases.values()
            for build in release.builds.values()
        }

    def build(self, full_name: str) -> Build:
        try:
            return self.all_builds()[full_name]
        except KeyError:
            raise NotFoundError(f"{full_name} is not a build") from None

    def _relpath(self, path: Path) -> str:
        return str(path.relative_to(Path(self.repo.path)))

    # ------------------------------------------------------------------
    # mutation

    def set_parent(self, release: Release, parent: Release | None) -> None:
        """Point ``release`` at ``parent`` (None makes it a root release) and commit."""
        parent_file = release.path / PARENT_FILE
        if parent is None:
            if not parent_file.exists():
                release.parent_name = None
                return
            parent_file.unlink()
            message = f"Made {release.name} a root release"
        else:
            parent_file.write_text(parent.name)
            message = f"Set parent of {release.name} to {parent.name}"
        self.repo.commit_paths([self._relpath(release.path)], message)
        release.parent_name = parent.name if parent is not None else None

    def zap_release(self, release: Release) -> None:
        """Remove ``release``'s metadata after reparenting its children."""
        parent = self.releases.get(release.parent_name) if release.parent_name else None
        for child in release.children(self.releases):
            logger.info(f"Reparenting {child.name} onto {parent.name if parent else 'nothing'}")
            self.set_parent(child, parent)
        self.repo.remove_paths([self._relpath(release.path)], f"Removed release {release.name}")
        del self.releases[release.name]

    def zap_build(self, build: Build) -> None:
        """Remove ``build``'s metadata; refuses to orphan child builds."""
        children = sorted(b.name for b in build.release.builds.values() if b.parent_name == build.name)
        if children:
            raise ConflictError(f"Cannot delete build {build.full_name} with active children: {', '.join(children)}")
        self.repo.remove_paths([self._relpath(build.path)], f"Removed build {build.full_name}")
        del build.release.builds[build.name]

    def finalize_split(self, source: Release, name: str, branch: str) -> Release:
        """Clone ``source``'s metadata as release ``name`` bound to ``branch`` and commit."""
        if name in self.releases:
            raise ConflictError(f"Release {name} already exists")
        new_path = self.path / name
        if new_path.exists():
            raise ConflictError(f"{new_path} already exists")
        base = source.path
        for current, dirs, files in os.walk(base):
            current_path = Path(current)
            dest_dir = new_path / current_path.relative_to(base)
            dest_dir.mkdir(parents=True, exist_ok=True)
            for entry in [*dirs, *files]:
                src = current_path / entry
                dest = dest_dir / entry
                if src.is_symlink():
                    os.symlink(os.readlink(src), dest)
                    if entry in dirs:
                        dirs.remove(entry)
                elif entry in files:
                    if entry.startswith(MODULE_PREFIX):
                        dest.write_text(branch)
                    elif not (entry == PARENT_FILE and current_path == base):
                        shutil.copy2(src, dest)
        self.repo.commit_paths([self._relpath(new_path)], f"Added new release {name}")
        release = self._populate_release(name)
        self.releases[name] = release
        self.set_parent(release, source)
        return release


__all__ = ["FlatMetadata", "MODULE_PREFIX", "PARENT_FILE", "RELEASES_DIR"]
