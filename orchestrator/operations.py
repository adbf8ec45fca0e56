"""Read-mostly operations that touch every repository of a workspace."""

from __future__ import annotations

import logging
from typing import List, Optional

from connectors.repository_interface import RepositoryProtocol

from .errors import OperationFailed
from .mapreduce import ResultToken, map_reduce
from .workspace import Workspace

logger = logging.getLogger(__name__)


def fetch(ws: Workspace, remotes: Optional[List[str]] = None) -> tuple[bool, list[ResultToken]]:
    """Fetch ``remotes`` (all of them when None) everywhere, then fix up tracking branches.

    Tracking branches are only recomputed when every fetch succeeded.
    """

    def mapper(name: str, repo: RepositoryProtocol) -> ResultToken:
        tok = ResultToken(name=name)
        try:
            tok.ok, tok.results = repo.fetch(remotes)
        except OperationFailed as e:
            tok.ok, tok.results = False, str(e)
        return tok

    ok, tokens = map_reduce(
        ws.all_repos(),
        mapper,
        max_workers=ws.settings.max_workers,
        timeout=ws.settings.task_timeout,
    )
    if not ok:
        logger.error(f"Fetch failed in: {', '.join(t.name for t in tokens if not t.ok)}")
        return ok, tokens
    tracked_ok, _ = ws.remotes.update_tracking_branches()
    return tracked_ok, tokens


def is_clean(ws: Workspace) -> tuple[bool, list[ResultToken]]:
    """Check every repository's status; ``results`` lists the dirty lines."""

    def mapper(name: str, repo: RepositoryProtocol) -> ResultToken:
        tok = ResultToken(name=name)
        try:
            tok.ok, tok.results = repo.is_clean()
        except OperationFailed as e:
            tok.ok, tok.results = False, [str(e)]
        return tok

    return map_reduce(
        ws.all_repos(),
        mapper,
        max_workers=ws.settings.max_workers,
        timeout=ws.settings.task_timeout,
    )


__all__ = ["fetch", "is_clean"]
