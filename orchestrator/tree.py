"""In-memory release/build forest."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from connectors.repository_interface import RepositoryProtocol

from .errors import NotFoundError

MASTER_BUILD = "master"


@dataclass
class ModuleBinding:
    """A module pinned to a branch by one build."""

    name: str
    branch: str
    repo: RepositoryProtocol = field(repr=False, compare=False)

    @property
    def repo_name(self) -> str:
        return f"barclamp-{self.name}"


@dataclass
class Build:
    """A deliverable within a release; a build without a parent is the master build."""

    name: str
    release: Release = field(repr=False)
    parent_name: str | None = None
    modules: dict[str, ModuleBinding] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.release.name}/{self.name}"

    @property
    def path(self) -> Path:
        return self.release.path / self.name

    @property
    def parent(self) -> Build | None:
        if self.parent_name is None:
            return None
        try:
            return self.release.builds[self.parent_name]
        except KeyError:
            raise NotFoundError(
                f"Release {self.release.name}: cannot find parent build {self.parent_name} of build {self.name}"
            ) from None

    def resolved_modules(self) -> dict[str, ModuleBinding]:
        """Own bindings merged over the parent chain's, own entries winning."""
        seen = {self.name}
        chain = [self]
        parent = self.parent
        while parent is not None:
            if parent.name in seen:
                raise NotFoundError(f"Release {self.release.name}: build parents of {self.name} form a cycle")
            seen.add(parent.name)
            chain.append(parent)
            parent = parent.parent
        resolved: dict[str, ModuleBinding] = {}
        for build in reversed(chain):
            resolved.update(build.modules)
        return resolved


@dataclass
class Release:
    """A development stream; owns builds and optionally names a parent release."""

    name: str
    root: Path = field(repr=False)
    parent_name: str | None = None
    builds: dict[str, Build] = field(default_factory=dict)

    @property
    def path(self) -> Path:
        return self.root / self.name

    @property
    def master(self) -> Build | None:
        return self.builds.get(MASTER_BUILD)

    def modules(self) -> dict[str, ModuleBinding]:
        """Union of the own bindings of every build in the release."""
        merged: dict[str, ModuleBinding] = {}
        for name in sorted(self.builds):
            merged.update(self.builds[name].modules)
        return merged

    def children(self, releases: dict[str, Release]) -> list[Release]:
        return [rel for rel in releases.values() if rel.parent_name == self.name]


__all__ = ["Build", "MASTER_BUILD", "ModuleBinding", "Release"]
