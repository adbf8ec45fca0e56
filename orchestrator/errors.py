"""Exception hierarchy shared by the orchestrator, connectors and CLI."""

from __future__ import annotations

from typing import Any, Sequence


class DevtoolError(Exception):
    """Base class for every failure the devtool reports to the user."""


class ValidationError(DevtoolError):
    """A name, URL or priority has the wrong shape."""


class NotFoundError(DevtoolError):
    """Unknown release, build, remote, module or group."""


class BaseRefMissing(NotFoundError):
    """The branch a module is bound to does not exist in its repository."""

    def __init__(self, module: str, branch: str, release: str) -> None:
        self.module = module
        self.branch = branch
        self.release = release
        super().__init__(
            f"Base ref {branch} for module {module} in source release {release} does not exist"
        )


class ConflictError(DevtoolError):
    """Duplicate name or a branch that already exists."""


class BranchAlreadyExists(ConflictError):
    def __init__(self, module: str, branch: str) -> None:
        self.module = module
        self.branch = branch
        super().__init__(f"{module} already has a ref named {branch}")


class CircularDependencyError(DevtoolError):
    def __init__(self, module: str) -> None:
        self.module = module
        super().__init__(f"{module} cannot depend on itself")


class OperationFailed(DevtoolError):
    """An underlying version-control command or a whole batch failed.

    ``tokens`` holds the per-repository results when the failure comes from a
    rolled-back batch, so callers can report which repositories misbehaved.
    """

    def __init__(self, message: str, tokens: Sequence[Any] = ()) -> None:
        self.tokens = list(tokens)
        super().__init__(message)

    @property
    def failed_names(self) -> list[str]:
        return sorted(t.name for t in self.tokens if not t.ok)


class InconsistentStateError(DevtoolError):
    """Commit or rollback partially failed; repositories disagree.

    Only the CLI entry point handles this, and it aborts the process.
    """

    def __init__(self, phase: str, names: Sequence[str]) -> None:
        self.phase = phase
        self.names = sorted(names)
        super().__init__(
            f"Unable to {phase} all map-reduce operations; affected repositories: {', '.join(self.names)}"
        )


__all__ = [
    "BaseRefMissing",
    "BranchAlreadyExists",
    "CircularDependencyError",
    "ConflictError",
    "DevtoolError",
    "InconsistentStateError",
    "NotFoundError",
    "OperationFailed",
    "ValidationError",
]
