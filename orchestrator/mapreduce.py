"""Parallel map-reduce over repositories with all-or-nothing commit/rollback.

A mapper runs once per repository and returns a :class:`ResultToken`. The
reducer folds the tokens (in arrival order) into one verdict. If every token is
ok, every token's ``commit`` runs; otherwise every token's ``rollback`` runs.
A commit or rollback that fails leaves the batch half-applied and raises
:class:`InconsistentStateError`, which must never be retried or swallowed.
"""

from __future__ import annotations

import logging
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from connectors.repository_interface import RepositoryProtocol

from .errors import InconsistentStateError, OperationFailed

logger = logging.getLogger(__name__)

Closure = Callable[[], bool]


def noop() -> bool:
    return True


@dataclass
class ResultToken:
    """Outcome of one mapped operation on one repository."""

    name: str
    ok: bool = True
    results: Any = None
    commit: Closure = field(default=noop, repr=False)
    rollback: Closure = field(default=noop, repr=False)


Mapper = Callable[[str, RepositoryProtocol], ResultToken]
Reducer = Callable[[Iterator[ResultToken]], "tuple[bool, list[ResultToken]]"]


def basic_reducer(tokens: Iterator[ResultToken]) -> tuple[bool, list[ResultToken]]:
    """AND together every token's ``ok`` and return the tokens sorted by name."""
    ok = True
    collected = []
    for token in tokens:
        ok = ok and token.ok
        collected.append(token)
    collected.sort(key=lambda t: t.name)
    return ok, collected


# ---------------------------------------------------------------------------
# checkpoints


def config_checkpoint(repo: RepositoryProtocol) -> tuple[Closure, Closure]:
    """Save the whole config store; rollback writes it back and reloads.

    Raises OperationFailed if the config cannot be read, before anything
    has been mutated.
    """
    try:
        saved = repo.read_config()
    except OSError as e:
        raise OperationFailed(f"Cannot read config of {repo.path}: {e}") from e

    def rollback() -> bool:
        try:
            repo.write_config(saved)
        except (OSError, OperationFailed) as e:
            logger.error(f"Failed to restore config of {repo.path}: {e}")
            return False
        finally:
            repo.reload_config()
        return True

    return noop, rollback


def branch_checkpoint(repo: RepositoryProtocol) -> tuple[Closure, Closure]:
    """Save every local branch's commit id (and HEAD); rollback forces moved ones back.

    Branches created after the checkpoint are left alone; callers that create
    branches add their own cleanup on top of this rollback.
    """
    saved = dict(repo.branches())
    head = repo.current_branch()

    def rollback() -> bool:
        ok = True
        if head is not None and repo.current_branch() != head:
            try:
                repo.checkout(head)
            except OperationFailed as e:
                logger.error(f"{repo.path}: cannot check out {head} again: {e}")
                ok = False
        current = dict(repo.branches())
        for name, sha in saved.items():
            if current.get(name) == sha:
                continue
            try:
                repo.force_branch(name, sha)
            except OperationFailed as e:
                logger.error(f"{repo.path}: cannot reset {name} to {sha}: {e}")
                ok = False
        return ok

    return noop, rollback


# ---------------------------------------------------------------------------
# engine


def _run_mapper(mapper: Mapper, name: str, repo: RepositoryProtocol) -> ResultToken:
    try:
        token = mapper(name, repo)
    except Exception as e:  # a mapper that raises is reported, the batch still rolls back
        logger.error(f"Mapper for {name} raised: {e}")
        return ResultToken(name=name, ok=False, results=str(e))
    if token.name != name:
        token.name = name
    return token


def _call_closure(closure: Closure, name: str, phase: str) -> bool:
    try:
        return bool(closure())
    except Exception as e:
        logger.error(f"{phase} of {name} raised: {e}")
        return False


def map_reduce(
    repos: Mapping[str, RepositoryProtocol],
    mapper: Mapper,
    reducer: Reducer = basic_reducer,
    *,
    max_workers: int = 8,
    timeout: float | None = None,
) -> tuple[bool, list[ResultToken]]:
    """Run ``mapper`` over ``repos`` in parallel, then commit or roll back.

    ``timeout`` bounds how long the reduce phase waits for each outstanding
    mapper; a mapper still running at that point is reported as a failed
    token. Only use it for operations that do not mutate.
    """
    if not repos:
        return True, []

    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="repo-map")
    abandoned = False
    try:
        pending: dict[Future, str] = {
            executor.submit(_run_mapper, mapper, name, repo): name for name, repo in repos.items()
        }

        def stream() -> Iterator[ResultToken]:
            nonlocal abandoned
            while pending:
                done, _ = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)
                if not done:
                    for future, name in list(pending.items()):
                        future.cancel()
                        logger.error(f"Mapper for {name} timed out after {timeout}s")
                        del pending[future]
                        abandoned = True
                        yield ResultToken(name=name, ok=False, results=f"timed out after {timeout}s")
                    return
                for future in done:
                    pending.pop(future)
                    yield future.result()

        ok, tokens = reducer(stream())
        if pending or len(tokens) != len(repos):
            # a reducer that does not consume every token leaves mutations unaccounted for
            names = set(repos) - {t.name for t in tokens}
            raise InconsistentStateError("reduce", sorted(names) or sorted(repos))

        phase = "commit" if ok else "rollback"
        # abandoned mappers may still hold every worker of the first pool
        closer = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"repo-{phase}")
            if abandoned
            else executor
        )
        try:
            futures = {
                closer.submit(_call_closure, t.commit if ok else t.rollback, t.name, phase): t.name
                for t in tokens
            }
            failed = [name for future, name in futures.items() if not future.result()]
        finally:
            if closer is not executor:
                closer.shutdown(wait=True)
    finally:
        executor.shutdown(wait=not abandoned, cancel_futures=True)

    if failed:
        logger.critical(f"Unable to {phase} all map-reduce operations: {sorted(failed)}")
        raise InconsistentStateError(phase, failed)
    logger.debug(f"map_reduce over {len(repos)} repositories: ok={ok}, {phase} done")
    return ok, tokens


__all__ = [
    "ResultToken",
    "basic_reducer",
    "branch_checkpoint",
    "config_checkpoint",
    "map_reduce",
    "noop",
]
