from pathlib import Path
from typing import Protocol, Optional, List, Tuple, Dict
from box import Box


class FetchResults(Box):
    """
    Per-remote outcome of a fetch. Box keyed by remote name (dot-access dict).
    Examples:
        results = FetchResults(origin=True, upstream=False)
        print(results.origin)        # True
        print(results['upstream'])   # False
        failed = [name for name, ok in results.items() if not ok]
    """


class RefProtocol(Protocol):
    """
    Protocol for a resolved reference (branch or remote-tracking ref) inside a repository.
    """
    @property
    def name(self) -> str: ...
    @property
    def sha(self) -> str: ...
    def is_local(self) -> bool: ...
    def branch(self, new_name: str) -> "RefProtocol":
        """Create a local branch called ``new_name`` pointing at this ref."""
        ...
    def track_remote(self, remote: str) -> None:
        """Make this local branch track ``<remote>/<name>``."""
        ...
    def tracks(self) -> Optional[str]:
        """Name of the remote this branch tracks, or None."""
        ...
    def has_remote_ref(self, remote: str) -> bool: ...


class RepositoryProtocol(Protocol):
    """
    Protocol for one version-controlled tree.
    The orchestrator only talks to repositories through these operations.
    Implementations: GitRepository (git subprocess), MemoryRepository (tests).
    Failing commands raise orchestrator.errors.OperationFailed;
    unknown refs raise orchestrator.errors.NotFoundError.
    """

    @property
    def path(self) -> Path: ...

    # --- whole-repository queries
    def fetch(self, remotes: Optional[List[str]] = None) -> Tuple[bool, FetchResults]:
        """Fetch from ``remotes`` (all configured remotes when None)."""
        ...
    def is_clean(self) -> Tuple[bool, List[str]]:
        """Return (clean, porcelain status lines)."""
        ...

    # --- refs and branches
    def ref(self, name: str) -> RefProtocol: ...
    def branches(self) -> List[Tuple[str, str]]:
        """All local branches as (name, commit id) pairs."""
        ...
    def current_branch(self) -> Optional[str]: ...
    def force_branch(self, name: str, sha: str) -> None:
        """Point branch ``name`` at ``sha`` even if it is checked out."""
        ...
    def delete_branch(self, name: str) -> None: ...
    def checkout(self, branch: str) -> None: ...

    # --- remotes
    def add_remote(self, name: str, url: str) -> None: ...
    def remove_remote(self, name: str) -> None: ...
    def rename_remote(self, old: str, new: str) -> None: ...
    def has_remote(self, name: str) -> bool: ...
    def remotes(self) -> Dict[str, str]:
        """Remote name -> fetch URL."""
        ...
    def url_reachable(self, url: str) -> bool:
        """True when a repository answers at ``url``."""
        ...

    # --- configuration
    def config_get(self, key: str) -> Optional[str]: ...
    def config_set(self, key: str, value: str) -> None: ...
    def config_unset(self, key: str) -> None: ...
    def config_find(self, prefix: str) -> Dict[str, str]:
        """All config entries whose key starts with ``prefix``."""
        ...
    def read_config(self) -> bytes:
        """Raw bytes of the whole config store (used by config checkpoints)."""
        ...
    def write_config(self, data: bytes) -> None: ...
    def reload_config(self) -> None:
        """Drop any in-memory config cache so the next read hits the store."""
        ...

    # --- work tree
    def commit_paths(self, paths: List[str], message: str) -> None:
        """Stage ``paths`` (relative to the work tree) and commit them."""
        ...
    def remove_paths(self, paths: List[str], message: str) -> None:
        """Remove ``paths`` recursively from index and work tree, then commit."""
        ...

    @property
    def info(self) -> Box:
        """
        Returns information about the repository,
          such as its type, path and current branch, as a Box.
        """
        ...
