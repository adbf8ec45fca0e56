"""Core orchestrator package: parallel map-reduce, dependency resolution and the release tree."""

from .errors import (
    BaseRefMissing,
    BranchAlreadyExists,
    CircularDependencyError,
    ConflictError,
    DevtoolError,
    InconsistentStateError,
    NotFoundError,
    OperationFailed,
    ValidationError,
)
from .mapreduce import ResultToken, basic_reducer, branch_checkpoint, config_checkpoint, map_reduce
from .models import ModuleDeclaration, Remote, load_declaration, load_declarations, make_remote
from .resolver import Resolution, resolve
from .tree import Build, ModuleBinding, Release

__all__ = [
    "BaseRefMissing",
    "BranchAlreadyExists",
    "Build",
    "CircularDependencyError",
    "ConflictError",
    "DevtoolError",
    "InconsistentStateError",
    "ModuleBinding",
    "ModuleDeclaration",
    "NotFoundError",
    "OperationFailed",
    "Release",
    "Remote",
    "Resolution",
    "ResultToken",
    "ValidationError",
    "basic_reducer",
    "branch_checkpoint",
    "config_checkpoint",
    "load_declaration",
    "load_declarations",
    "make_remote",
    "map_reduce",
    "resolve",
]
