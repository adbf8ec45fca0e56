"""
git_repository.py
-----------------
Repository connector backed by the ``git`` command line.

Every operation shells out to git in the repository's work tree.
Config reads are cached per instance; ``reload_config`` drops the cache.
"""

import logging
import os
import subprocess
from pathlib import Path
from typing import Optional, List, Tuple, Dict, Sequence
from urllib.parse import urlparse

import httpx
from box import Box

from connectors.repository_interface import FetchResults, RefProtocol, RepositoryProtocol
from orchestrator.errors import NotFoundError, OperationFailed

logger = logging.getLogger(__name__)


class CommandError(OperationFailed):
    """Raised when a git subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(
            f"Command {' '.join(command)} failed with exit code {returncode}: {stderr.strip()}"
        )


def run_git(args: Sequence[str], cwd: str | Path, check: bool = True) -> subprocess.CompletedProcess:
    """Run ``git <args>`` in ``cwd`` and return the completed process."""
    command = ["git", *args]
    env = os.environ.copy()
    env.setdefault("GIT_TERMINAL_PROMPT", "0")
    result = subprocess.run(
        command,
        cwd=str(cwd),
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    logger.debug(f"{cwd}: {' '.join(command)} -> {result.returncode}")
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stdout, result.stderr)
    return result


class GitRef(RefProtocol):
    """A branch or remote-tracking ref in a GitRepository.

    Args:
        repo (GitRepository): owning repository.
        name (str): short ref name, e.g. "master" or "origin/master".
        sha (str): commit id the ref resolved to.
        full_name (str): fully qualified ref, e.g. "refs/heads/master".
    """

    def __init__(self, repo: "GitRepository", name: str, sha: str, full_name: str):
        self.repo = repo
        self._name = name
        self._sha = sha
        self.full_name = full_name

    @property
    def name(self) -> str:
        return self._name

    @property
    def sha(self) -> str:
        return self._sha

    def is_local(self) -> bool:
        return self.full_name.startswith("refs/heads/")

    def branch(self, new_name: str) -> "GitRef":
        self.repo.git("branch", new_name, self.sha)
        return self.repo.ref(new_name)

    def track_remote(self, remote: str) -> None:
        self.repo.git("branch", f"--set-upstream-to={remote}/{self.name}", self.name)
        self.repo.reload_config()

    def tracks(self) -> Optional[str]:
        return self.repo.config_get(f"branch.{self.name}.remote")

    def has_remote_ref(self, remote: str) -> bool:
        r = self.repo.git("show-ref", "--verify", "--quiet", f"refs/remotes/{remote}/{self.name}", check=False)
        return r.returncode == 0

    def __repr__(self) -> str:
        return f"GitRef({self.full_name}@{self.sha[:10]})"


class GitRepository(RepositoryProtocol):
    """ Repository connector that drives the git CLI.

    Args:
        path (Path): the work tree root.
        git_dir (Path): the absolute git directory (holds ``config``).
    """

    def __init__(self, path: str | Path, git_dir: str | Path):
        self._path = Path(path)
        self.git_dir = Path(git_dir)
        self._config_cache: Dict[str, str] | None = None

    @classmethod
    def open(cls, path: str | Path) -> "GitRepository":
        """Open the repository containing ``path``. Raises NotFoundError if there is none."""
        r = run_git(["rev-parse", "--show-toplevel", "--absolute-git-dir"], cwd=path, check=False)
        if r.returncode != 0:
            raise NotFoundError(f"{path} is not inside a git repository")
        toplevel, git_dir = r.stdout.splitlines()[:2]
        return cls(toplevel, git_dir)

    @staticmethod
    def is_repository(path: str | Path) -> bool:
        dot_git = Path(path) / ".git"
        return dot_git.is_dir() or dot_git.is_file() or dot_git.is_symlink()

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess:
        return run_git(args, cwd=self._path, check=check)

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config_path(self) -> Path:
        return self.git_dir / "config"

    @property
    def info(self) -> Box:
        return Box({
            "type": "git",
            "path": str(self._path),
            "git_dir": str(self.git_dir),
            "branch": self.current_branch(),
        })

    # ------------------------------------------------------------------
    # whole-repository queries

    def fetch(self, remotes: Optional[List[str]] = None) -> Tuple[bool, FetchResults]:
        targets = list(remotes) if remotes else sorted(self.remotes())
        results = FetchResults()
        for remote in targets:
            if not self.has_remote(remote):
                continue
            r = self.git("fetch", "--prune", remote, check=False)
            results[remote] = r.returncode == 0
            if r.returncode != 0:
                logger.warning(f"{self._path}: fetch from {remote} failed: {r.stderr.strip()}")
        return all(results.values()), results

    def is_clean(self) -> Tuple[bool, List[str]]:
        r = self.git("status", "--porcelain")
        lines = [line for line in r.stdout.splitlines() if line.strip()]
        return not lines, lines

    # ------------------------------------------------------------------
    # refs and branches

    def ref(self, name: str) -> GitRef:
        for full_name in (f"refs/heads/{name}", f"refs/remotes/{name}", f"refs/tags/{name}"):
            r = self.git("rev-parse", "--verify", "--quiet", f"{full_name}^{{commit}}", check=False)
            if r.returncode == 0:
                return GitRef(self, name, r.stdout.strip(), full_name)
        raise NotFoundError(f"{self._path} has no ref named {name}")

    def branches(self) -> List[Tuple[str, str]]:
        r = self.git("for-each-ref", "--format=%(refname:short) %(objectname)", "refs/heads")
        pairs = []
        for line in r.stdout.splitlines():
            name, _, sha = line.strip().rpartition(" ")
            if name:
                pairs.append((name, sha))
        return pairs

    def current_branch(self) -> Optional[str]:
        r = self.git("symbolic-ref", "--short", "-q", "HEAD", check=False)
        return r.stdout.strip() or None

    def force_branch(self, name: str, sha: str) -> None:
        # reset --keep moves a checked-out branch but refuses to clobber local edits
        if self.current_branch() == name:
            self.git("reset", "--keep", sha)
        else:
            self.git("update-ref", f"refs/heads/{name}", sha)

    def delete_branch(self, name: str) -> None:
        self.git("branch", "-D", name)

    def checkout(self, branch: str) -> None:
        self.git("checkout", branch)

    # ------------------------------------------------------------------
    # remotes

    def add_remote(self, name: str, url: str) -> None:
        self.git("remote", "add", name, url)
        self.reload_config()

    def remove_remote(self, name: str) -> None:
        self.git("remote", "remove", name)
        self.reload_config()

    def rename_remote(self, old: str, new: str) -> None:
        self.git("remote", "rename", old, new)
        self.reload_config()

    def has_remote(self, name: str) -> bool:
        return name in self.remotes()

    def remotes(self) -> Dict[str, str]:
        found = {}
        for key, value in self.config_find("remote.").items():
            parts = key.split(".")
            if len(parts) >= 3 and parts[-1] == "url":
                found[".".join(parts[1:-1])] = value
        return found

    def url_reachable(self, url: str) -> bool:
        scheme = urlparse(url).scheme
        if scheme in ("http", "https"):
            endpoint = f"{url.rstrip('/')}/info/refs?service=git-upload-pack"
            try:
                resp = httpx.get(endpoint, timeout=10, follow_redirects=True)
            except httpx.HTTPError as e:
                logger.info(f"Reachability check of {url} failed: {e}")
                return False
            return resp.status_code == 200
        r = self.git("ls-remote", "--heads", url, check=False)
        return r.returncode == 0

    # ------------------------------------------------------------------
    # configuration

    def _config(self) -> Dict[str, str]:
        if self._config_cache is None:
            r = self.git("config", "--local", "--list", check=False)
            cache: Dict[str, str] = {}
            for line in r.stdout.splitlines():
                key, sep, value = line.partition("=")
                if sep:
                    cache[key] = value
            self._config_cache = cache
        return self._config_cache

    def config_get(self, key: str) -> Optional[str]:
        return self._config().get(_normalize_key(key))

    def config_set(self, key: str, value: str) -> None:
        self.git("config", "--local", key, value)
        self.reload_config()

    def config_unset(self, key: str) -> None:
        r = self.git("config", "--local", "--unset-all", key, check=False)
        # exit code 5 means the key was not set
        if r.returncode not in (0, 5):
            raise CommandError(["git", "config", "--unset-all", key], r.returncode, r.stdout, r.stderr)
        self.reload_config()

    def config_find(self, prefix: str) -> Dict[str, str]:
        prefix = _normalize_key(prefix)
        return {k: v for k, v in self._config().items() if k.startswith(prefix)}

    def read_config(self) -> bytes:
        if not self.config_path.is_file():
            raise OperationFailed(f"Git config file {self.config_path} is not a file")
        return self.config_path.read_bytes()

    def write_config(self, data: bytes) -> None:
        self.config_path.write_bytes(data)

    def reload_config(self) -> None:
        self._config_cache = None

    # ------------------------------------------------------------------
    # work tree

    def commit_paths(self, paths: List[str], message: str) -> None:
        self.git("add", "-A", "--", *paths)
        self.git("commit", "-m", message)

    def remove_paths(self, paths: List[str], message: str) -> None:
        self.git("rm", "-r", "-f", "-q", "--", *paths)
        self.git("commit", "-m", message)

    def __repr__(self) -> str:
        return f"GitRepository({str(self._path)!r})"


def _normalize_key(key: str) -> str:
    """git lowercases section and variable names but keeps subsection case."""
    parts = key.split(".")
    if len(parts) <= 2:
        return key.lower()
    return ".".join([parts[0].lower(), *parts[1:-1], parts[-1].lower()])
