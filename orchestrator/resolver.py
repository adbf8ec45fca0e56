"""Dependency ordering for module declarations.

Every module except the root implicitly depends on the root. A module's
dependencies are ranked by the length of the chain that pulled them in, so a
module always comes after everything it needs, and ties inside a rank are
broken by name to keep the output stable between runs.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Mapping

from .errors import CircularDependencyError, NotFoundError
from .models import ModuleDeclaration

logger = logging.getLogger(__name__)

ROOT_MODULE = "crowbar"
GROUP_PREFIX = "@"


@dataclass
class Resolution:
    """Result of a resolution pass."""

    dependencies: dict[str, list[str]] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    groups: dict[str, list[str]] = field(default_factory=dict)


def apply_supersedes(declarations: Mapping[str, ModuleDeclaration]) -> dict[str, ModuleDeclaration]:
    """Drop every declaration that another declaration supersedes."""
    victims = set()
    for name in sorted(declarations):
        for victim in declarations[name].supersedes:
            if victim in declarations:
                logger.info(f"{name} supersedes {victim}")
                victims.add(victim)
            else:
                logger.info(f"{name} supersedes {victim}, which is not declared")
    return {name: decl for name, decl in declarations.items() if name not in victims}


def collect_groups(declarations: Mapping[str, ModuleDeclaration]) -> dict[str, list[str]]:
    groups: dict[str, list[str]] = defaultdict(list)
    for name, decl in declarations.items():
        for group in decl.members:
            groups[group].append(name)
    return {group: sorted(members) for group, members in groups.items()}


def expand_requirements(
    declarations: Mapping[str, ModuleDeclaration], groups: Mapping[str, list[str]]
) -> dict[str, list[str]]:
    """Replace ``@group`` requirements by the group's members."""
    expanded = {}
    for name, decl in declarations.items():
        requires: set[str] = set()
        for requirement in decl.requires:
            if requirement.startswith(GROUP_PREFIX):
                group = requirement[len(GROUP_PREFIX):]
                if group not in groups:
                    raise NotFoundError(f"{name} requires group {group}, which does not exist")
                requires.update(groups[group])
            else:
                requires.add(requirement)
        expanded[name] = sorted(requires)
    return expanded


class DependencyResolver:
    """Memoized per-module dependency computation over expanded requirements."""

    def __init__(self, requires: Mapping[str, list[str]], root: str = ROOT_MODULE):
        self.requires = requires
        self.root = root
        self._memo: dict[str, list[str]] = {}
        self._active: set[str] = set()

    def deps(self, module: str) -> list[str]:
        if module == self.root:
            return []
        if module in self._memo:
            return self._memo[module]
        if module in self._active:
            raise CircularDependencyError(module)
        self._active.add(module)
        try:
            ranks: dict[int, list[str]] = {1: [self.root]}
            for requirement in self.requires[module]:
                if requirement not in self.requires:
                    raise NotFoundError(
                        f"{module} has {requirement} in its dependency chain, but {requirement} does not exist"
                    )
                chain = self.deps(requirement) + [requirement]
                if module in chain:
                    raise CircularDependencyError(module)
                ranks.setdefault(len(chain), []).extend(chain)
        finally:
            self._active.discard(module)

        ordered: list[str] = []
        seen: set[str] = set()
        for rank in sorted(ranks):
            for dep in sorted(ranks[rank]):
                if dep not in seen:
                    seen.add(dep)
                    ordered.append(dep)
        self._memo[module] = ordered
        return ordered


def resolve(declarations: Mapping[str, ModuleDeclaration], root: str = ROOT_MODULE) -> Resolution:
    """Compute every module's ordered dependencies and the global build order.

    Raises CircularDependencyError or NotFoundError; nothing is returned for
    a declaration set that fails.
    """
    surviving = apply_supersedes(declarations)
    groups = collect_groups(surviving)
    requires = expand_requirements(surviving, groups)
    if surviving and root not in requires:
        raise NotFoundError(f"Root module {root} is not declared")

    resolver = DependencyResolver(requires, root)
    dependencies = {name: list(resolver.deps(name)) for name in sorted(requires)}
    order = sorted(dependencies, key=lambda name: (len(dependencies[name]), name))
    return Resolution(dependencies=dependencies, order=order, groups=groups)


__all__ = [
    "DependencyResolver",
    "ROOT_MODULE",
    "Resolution",
    "apply_supersedes",
    "collect_groups",
    "expand_requirements",
    "resolve",
]
