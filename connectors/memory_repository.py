"""
memory_repository.py
--------------------
An in-memory Repository connector.

Keeps branches, remotes, remote refs and config in plain dicts so the
orchestrator can be exercised without git. Failures can be injected per
operation name through ``fail_on``.
"""

import itertools
import json
import shutil
import threading
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Iterable

from box import Box

from connectors.repository_interface import FetchResults, RefProtocol, RepositoryProtocol
from orchestrator.errors import NotFoundError, OperationFailed

_sha_counter = itertools.count(1)
_sha_lock = threading.Lock()


def new_sha() -> str:
    """Return a fresh fake 40-character commit id."""
    with _sha_lock:
        n = next(_sha_counter)
    return f"{n:040x}"


class MemoryRef(RefProtocol):
    def __init__(self, repo: "MemoryRepository", name: str, sha: str, local: bool):
        self.repo = repo
        self._name = name
        self._sha = sha
        self._local = local

    @property
    def name(self) -> str:
        return self._name

    @property
    def sha(self) -> str:
        return self._sha

    def is_local(self) -> bool:
        return self._local

    def branch(self, new_name: str) -> "MemoryRef":
        self.repo._maybe_fail("branch")
        if new_name in self.repo.heads:
            raise OperationFailed(f"A branch named '{new_name}' already exists")
        self.repo.heads[new_name] = self.sha
        return MemoryRef(self.repo, new_name, self.sha, True)

    def track_remote(self, remote: str) -> None:
        self.repo._maybe_fail("track_remote")
        if not self.has_remote_ref(remote):
            raise OperationFailed(f"{remote}/{self.name} does not exist")
        self.repo.config[f"branch.{self.name}.remote"] = remote
        self.repo.config[f"branch.{self.name}.merge"] = f"refs/heads/{self.name}"

    def tracks(self) -> Optional[str]:
        return self.repo.config.get(f"branch.{self.name}.remote")

    def has_remote_ref(self, remote: str) -> bool:
        return self.name in self.repo.remote_refs.get(remote, {})


class MemoryRepository(RepositoryProtocol):
    """ Repository held entirely in memory.

    Args:
        path (Path): nominal work tree (metadata files are still written here
            by the release store when this is the core repository).
        branches (dict): initial branch name -> commit id.
        head (str): initially checked-out branch.
    """

    def __init__(self, path: str | Path = "/nonexistent", branches: Optional[Dict[str, str]] = None,
                 head: Optional[str] = None):
        self._path = Path(path)
        self.heads: Dict[str, str] = dict(branches or {})
        self.head = head if head is not None else (next(iter(self.heads), None))
        self.remote_urls: Dict[str, str] = {}
        self.remote_refs: Dict[str, Dict[str, str]] = {}
        self.reachable_urls: set[str] = set()
        self.config: Dict[str, str] = {}
        self.dirty: List[str] = []
        self.fail_on: set[str] = set()
        self.fetch_failures: set[str] = set()
        self.commits: List[Tuple[str, List[str]]] = []
        self.calls: List[str] = []
        self.config_reloads = 0

    @classmethod
    def with_branches(cls, *names: str, path: str | Path = "/nonexistent") -> "MemoryRepository":
        return cls(path=path, branches={name: new_sha() for name in names})

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.fail_on:
            raise OperationFailed(f"{self._path}: injected failure in {operation}")

    @property
    def path(self) -> Path:
        return self._path

    @property
    def info(self) -> Box:
        return Box({"type": "memory", "path": str(self._path), "branch": self.head})

    def fetch(self, remotes: Optional[List[str]] = None) -> Tuple[bool, FetchResults]:
        self._maybe_fail("fetch")
        results = FetchResults()
        for remote in (remotes or sorted(self.remote_urls)):
            if remote in self.remote_urls:
                results[remote] = remote not in self.fetch_failures
        return all(results.values()), results

    def is_clean(self) -> Tuple[bool, List[str]]:
        self._maybe_fail("is_clean")
        return not self.dirty, list(self.dirty)

    def ref(self, name: str) -> MemoryRef:
        if name in self.heads:
            return MemoryRef(self, name, self.heads[name], True)
        remote, _, branch = name.partition("/")
        if branch and branch in self.remote_refs.get(remote, {}):
            return MemoryRef(self, name, self.remote_refs[remote][branch], False)
        raise NotFoundError(f"{self._path} has no ref named {name}")

    def branches(self) -> List[Tuple[str, str]]:
        return sorted(self.heads.items())

    def current_branch(self) -> Optional[str]:
        return self.head

    def force_branch(self, name: str, sha: str) -> None:
        self._maybe_fail("force_branch")
        self.heads[name] = sha

    def delete_branch(self, name: str) -> None:
        self._maybe_fail("delete_branch")
        if name not in self.heads:
            raise OperationFailed(f"branch '{name}' not found")
        del self.heads[name]

    def checkout(self, branch: str) -> None:
        self._maybe_fail("checkout")
        if branch not in self.heads:
            raise OperationFailed(f"pathspec '{branch}' did not match any branch")
        self.head = branch

    def add_remote(self, name: str, url: str) -> None:
        self._maybe_fail("add_remote")
        if name in self.remote_urls:
            raise OperationFailed(f"remote {name} already exists")
        self.remote_urls[name] = url
        self.config[f"remote.{name}.url"] = url

    def remove_remote(self, name: str) -> None:
        self._maybe_fail("remove_remote")
        if name not in self.remote_urls:
            raise OperationFailed(f"No such remote: '{name}'")
        del self.remote_urls[name]
        self.remote_refs.pop(name, None)
        self.config.pop(f"remote.{name}.url", None)

    def rename_remote(self, old: str, new: str) -> None:
        self._maybe_fail("rename_remote")
        if old not in self.remote_urls:
            raise OperationFailed(f"No such remote: '{old}'")
        self.remote_urls[new] = self.remote_urls.pop(old)
        if old in self.remote_refs:
            self.remote_refs[new] = self.remote_refs.pop(old)
        self.config.pop(f"remote.{old}.url", None)
        self.config[f"remote.{new}.url"] = self.remote_urls[new]

    def has_remote(self, name: str) -> bool:
        return name in self.remote_urls

    def remotes(self) -> Dict[str, str]:
        return dict(self.remote_urls)

    def url_reachable(self, url: str) -> bool:
        return url in self.reachable_urls

    def set_remote_refs(self, remote: str, names: Iterable[str]) -> None:
        self.remote_refs[remote] = {name: new_sha() for name in names}

    def config_get(self, key: str) -> Optional[str]:
        return self.config.get(key)

    def config_set(self, key: str, value: str) -> None:
        self._maybe_fail("config_set")
        self.config[key] = value

    def config_unset(self, key: str) -> None:
        self.config.pop(key, None)

    def config_find(self, prefix: str) -> Dict[str, str]:
        return {k: v for k, v in self.config.items() if k.startswith(prefix)}

    def read_config(self) -> bytes:
        self._maybe_fail("read_config")
        state = {"config": self.config, "remotes": self.remote_urls, "refs": self.remote_refs}
        return json.dumps(state, sort_keys=True).encode()

    def write_config(self, data: bytes) -> None:
        self._maybe_fail("write_config")
        state = json.loads(data)
        self.config = state["config"]
        self.remote_urls = state["remotes"]
        self.remote_refs = state["refs"]

    def reload_config(self) -> None:
        self.config_reloads += 1

    def commit_paths(self, paths: List[str], message: str) -> None:
        self._maybe_fail("commit")
        self.commits.append((message, list(paths)))

    def remove_paths(self, paths: List[str], message: str) -> None:
        self._maybe_fail("commit")
        for rel in paths:
            target = self._path / rel
            if target.is_symlink() or target.is_file():
                target.unlink()
            elif target.is_dir():
                shutil.rmtree(target)
        self.commits.append((message, list(paths)))

    def __repr__(self) -> str:
        return f"MemoryRepository({str(self._path)!r})"
