"""Prioritized remotes applied across every repository of the workspace."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from connectors.repository_interface import RepositoryProtocol

from .errors import ConflictError, NotFoundError, OperationFailed
from .mapreduce import ResultToken, config_checkpoint, map_reduce
from .models import DEFAULT_PRIORITY, Remote, make_remote

if TYPE_CHECKING:
    from .workspace import Workspace

logger = logging.getLogger(__name__)

CONFIG_PREFIX = "crowbar.remote."


def load_remotes(repo: RepositoryProtocol) -> dict[str, Remote]:
    """Read ``crowbar.remote.<name>.{priority,urlbase}`` from the core config."""
    raw: dict[str, dict[str, str]] = {}
    for key, value in repo.config_find(CONFIG_PREFIX).items():
        name, _, attr = key[len(CONFIG_PREFIX):].rpartition(".")
        if name:
            raw.setdefault(name, {})[attr] = value
    remotes = {}
    for name, attrs in raw.items():
        priority = DEFAULT_PRIORITY
        try:
            priority = int(attrs.get("priority", DEFAULT_PRIORITY))
        except ValueError:
            logger.warning(f"Ignoring unparseable priority {attrs['priority']!r} for remote {name}")
        remotes[name] = Remote.model_construct(name=name, urlbase=attrs.get("urlbase", ""), priority=priority)
    return remotes


class RemoteRegistry:
    """The workspace's remotes plus the operations that keep repositories in step with them."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        self.remotes = load_remotes(workspace.repo)

    def __contains__(self, name: str) -> bool:
        return name in self.remotes

    def get(self, name: str) -> Remote:
        try:
            return self.remotes[name]
        except KeyError:
            raise NotFoundError(f"{name} is not a remote") from None

    def sorted_remotes(self) -> list[Remote]:
        return sorted(self.remotes.values(), key=lambda r: (r.priority, r.name))

    def _record(self, remote: Remote) -> None:
        repo = self.workspace.repo
        repo.config_set(f"{CONFIG_PREFIX}{remote.name}.priority", str(remote.priority))
        repo.config_set(f"{CONFIG_PREFIX}{remote.name}.urlbase", remote.urlbase)

    def _forget(self, name: str) -> None:
        repo = self.workspace.repo
        repo.config_unset(f"{CONFIG_PREFIX}{name}.priority")
        repo.config_unset(f"{CONFIG_PREFIX}{name}.urlbase")

    def _run(self, mapper, what: str) -> list[ResultToken]:
        ok, tokens = map_reduce(
            self.workspace.all_repos(), mapper, max_workers=self.workspace.settings.max_workers
        )
        if not ok:
            raise OperationFailed(f"Failed to {what}; all repositories rolled back", tokens)
        return tokens

    # ------------------------------------------------------------------

    def add(self, urlbase: str, name: str | None = None, priority: int = DEFAULT_PRIORITY) -> Remote:
        remote = make_remote(urlbase, name, priority)
        if remote.name in self.remotes:
            raise ConflictError(f"{remote.name} is already a remote")
        self._apply(remote)
        self._record(remote)
        self.remotes[remote.name] = remote
        logger.info(f"Added remote {remote.name} ({remote.urlbase}, priority {remote.priority})")
        return remote

    def _apply(self, remote: Remote) -> None:
        def mapper(name: str, repo: RepositoryProtocol) -> ResultToken:
            tok = ResultToken(name=name)
            tok.commit, tok.rollback = config_checkpoint(repo)
            try:
                if repo.has_remote(remote.name):
                    logger.info(f"{name} already has a remote named {remote.name}, replacing it")
                    repo.remove_remote(remote.name)
                repo.add_remote(remote.name, remote.repo_url(name))
            except OperationFailed as e:
                tok.ok, tok.results = False, str(e)
            return tok

        self._run(mapper, f"add remote {remote.name}")

    def remove(self, name: str) -> None:
        remote = self.get(name)

        def mapper(repo_name: str, repo: RepositoryProtocol) -> ResultToken:
            tok = ResultToken(name=repo_name)
            url = repo.remotes().get(remote.name)
            if url is None:
                return tok
            try:
                repo.remove_remote(remote.name)
            except OperationFailed as e:
                tok.ok, tok.results = False, str(e)
                return tok

            def readd() -> bool:
                try:
                    repo.add_remote(remote.name, url)
                except OperationFailed as e:
                    logger.error(f"{repo_name}: cannot restore remote {remote.name}: {e}")
                    return False
                return True

            tok.rollback = readd
            return tok

        self._run(mapper, f"remove remote {name}")
        self._forget(name)
        del self.remotes[name]
        logger.info(f"Removed remote {name}")

    def rename(self, name: str, new_name: str) -> Remote:
        remote = self.get(name)
        if new_name in self.remotes:
            raise ConflictError(f"Remote {new_name} already exists, cannot rename {name} to it")
        renamed = make_remote(remote.urlbase, new_name, remote.priority)

        def mapper(repo_name: str, repo: RepositoryProtocol) -> ResultToken:
            tok = ResultToken(name=repo_name)
            if not repo.has_remote(name):
                return tok
            try:
                repo.rename_remote(name, new_name)
            except OperationFailed as e:
                tok.ok, tok.results = False, str(e)
                return tok

            def rename_back() -> bool:
                try:
                    repo.rename_remote(new_name, name)
                except OperationFailed as e:
                    logger.error(f"{repo_name}: cannot rename {new_name} back to {name}: {e}")
                    return False
                return True

            tok.rollback = rename_back
            return tok

        self._run(mapper, f"rename remote {name} to {new_name}")
        self._forget(name)
        del self.remotes[name]
        self._record(renamed)
        self.remotes[new_name] = renamed
        logger.info(f"Renamed remote {name} to {new_name}")
        return renamed

    def set_urlbase(self, name: str, urlbase: str) -> Remote:
        current = self.get(name)
        replacement = make_remote(urlbase, current.name, current.priority)
        self.remove(name)
        try:
            return self.add(replacement.urlbase, replacement.name, replacement.priority)
        except OperationFailed:
            logger.error(f"Could not move remote {name} to {urlbase}, restoring {current.urlbase}")
            self.add(current.urlbase, current.name, current.priority)
            raise

    def sync(self) -> list[str]:
        """Make every repository carry every reachable remote at its proper URL.

        Returns a sorted list of "<repo>: <action>" lines describing what changed.
        """
        changes: list[str] = []
        for repo_name, repo in sorted(self.workspace.all_repos().items()):
            existing = repo.remotes()
            for remote in self.sorted_remotes():
                wanted = remote.repo_url(repo_name)
                url = existing.get(remote.name)
                if url == wanted:
                    continue
                if url is not None:
                    logger.info(f"Remote {remote.name} in repo {repo_name} not pointing at proper URL")
                    repo.remove_remote(remote.name)
                    changes.append(f"{repo_name}: removed {remote.name} ({url})")
                if repo.url_reachable(wanted):
                    logger.info(f"Adding new remote {remote.name} ({wanted}) to {repo_name}")
                    repo.add_remote(remote.name, wanted)
                    changes.append(f"{repo_name}: added {remote.name} ({wanted})")
                else:
                    logger.info(f"Repo {repo_name} is not at remote {remote.name}")
        return changes

    def update_tracking_branches(self) -> tuple[bool, list[ResultToken]]:
        """Make each bound local branch track the highest-priority remote that carries it."""
        branch_map = self.workspace.all_module_branches()
        remotes = self.sorted_remotes()
        logger.info("Updating local tracking branches")

        def mapper(name: str, repo: RepositoryProtocol) -> ResultToken:
            tok = ResultToken(name=name, results=[])
            tok.commit, tok.rollback = config_checkpoint(repo)
            for branch in branch_map.get(name, []):
                try:
                    ref = repo.ref(branch)
                except NotFoundError:
                    continue
                if not ref.is_local():
                    continue
                for remote in remotes:
                    if not repo.has_remote(remote.name):
                        continue
                    if ref.tracks() == remote.name:
                        break
                    if not ref.has_remote_ref(remote.name):
                        continue
                    logger.info(f"{name}: {ref.name} will track {remote.name}")
                    try:
                        ref.track_remote(remote.name)
                        tok.results.append(f"{ref.name} -> {remote.name}")
                    except OperationFailed as e:
                        logger.error(f"{name}: {e}")
                        tok.ok = False
                    break
            return tok

        return map_reduce(
            self.workspace.module_repos(), mapper, max_workers=self.workspace.settings.max_workers
        )


__all__ = ["CONFIG_PREFIX", "RemoteRegistry", "load_remotes"]
