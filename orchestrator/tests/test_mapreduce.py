import threading
import time

import pytest

from connectors.memory_repository import MemoryRepository, new_sha
from orchestrator.errors import InconsistentStateError, OperationFailed
from orchestrator.mapreduce import (
    ResultToken,
    basic_reducer,
    branch_checkpoint,
    config_checkpoint,
    map_reduce,
)


def make_repos(*names):
    return {name: MemoryRepository.with_branches("master", path=f"/repos/{name}") for name in names}


class Recorder:
    """Counts commit/rollback calls per repository."""

    def __init__(self, failing=(), commit_ok=True, rollback_ok=True):
        self.failing = set(failing)
        self.commit_ok = commit_ok
        self.rollback_ok = rollback_ok
        self.commits = []
        self.rollbacks = []
        self.lock = threading.Lock()

    def mapper(self, name, repo):
        def commit():
            with self.lock:
                self.commits.append(name)
            return self.commit_ok

        def rollback():
            with self.lock:
                self.rollbacks.append(name)
            return self.rollback_ok

        return ResultToken(name=name, ok=name not in self.failing, commit=commit, rollback=rollback)


def test_empty_input_is_ok():
    assert map_reduce({}, Recorder().mapper) == (True, [])


def test_all_ok_commits_each_once():
    rec = Recorder()
    ok, tokens = map_reduce(make_repos("c", "a", "b"), rec.mapper, max_workers=2)
    assert ok
    assert [t.name for t in tokens] == ["a", "b", "c"]
    assert sorted(rec.commits) == ["a", "b", "c"]
    assert rec.rollbacks == []


def test_one_failure_rolls_back_everything():
    rec = Recorder(failing=["b"])
    ok, tokens = map_reduce(make_repos("a", "b", "c"), rec.mapper)
    assert not ok
    assert [t.name for t in tokens if not t.ok] == ["b"]
    assert sorted(rec.rollbacks) == ["a", "b", "c"]
    assert rec.commits == []


def test_mapper_exception_becomes_failed_token():
    def mapper(name, repo):
        if name == "boom":
            raise RuntimeError("exploded")
        return ResultToken(name=name)

    ok, tokens = map_reduce(make_repos("boom", "fine"), mapper)
    assert not ok
    failed = {t.name: t.results for t in tokens if not t.ok}
    assert failed == {"boom": "exploded"}


def test_failed_commit_is_inconsistent():
    rec = Recorder(commit_ok=False)
    with pytest.raises(InconsistentStateError) as excinfo:
        map_reduce(make_repos("a", "b"), rec.mapper)
    assert excinfo.value.phase == "commit"
    assert excinfo.value.names == ["a", "b"]


def test_raising_rollback_is_inconsistent():
    def mapper(name, repo):
        def rollback():
            raise OSError("disk gone")
        return ResultToken(name=name, ok=False, rollback=rollback)

    with pytest.raises(InconsistentStateError) as excinfo:
        map_reduce(make_repos("a"), mapper)
    assert excinfo.value.phase == "rollback"


def test_reducer_must_consume_every_token():
    def greedy(tokens):
        return True, [next(tokens)]

    with pytest.raises(InconsistentStateError) as excinfo:
        map_reduce(make_repos("a", "b", "c"), Recorder().mapper, reducer=greedy)
    assert excinfo.value.phase == "reduce"


def gated_run(arrival):
    """Release the mappers one at a time so tokens reach the reducer in ``arrival`` order."""
    gates = {name: threading.Event() for name in arrival}
    seen = []

    def mapper(name, repo):
        gates[name].wait(5)
        return ResultToken(name=name, ok=name != "bad")

    def reducer(tokens):
        arrived = []
        for name in arrival:
            gates[name].set()
            arrived.append(next(tokens))
        seen.extend(t.name for t in arrived)
        return basic_reducer(iter(arrived))

    ok, tokens = map_reduce(make_repos(*arrival), mapper, reducer=reducer, max_workers=len(arrival))
    return ok, tokens, seen


@pytest.mark.parametrize("arrival", [
    ["bad", "a", "b"],
    ["a", "b", "bad"],
])
def test_verdict_does_not_depend_on_arrival_order(arrival):
    ok, tokens, seen = gated_run(arrival)
    assert seen == arrival
    assert not ok
    assert [t.name for t in tokens] == ["a", "b", "bad"]


def test_timeout_reports_slow_mapper():
    release = threading.Event()

    def mapper(name, repo):
        if name == "slow":
            release.wait(5)
        return ResultToken(name=name)

    try:
        ok, tokens = map_reduce(make_repos("slow", "quick"), mapper, timeout=0.2)
    finally:
        release.set()
    assert not ok
    slow = next(t for t in tokens if t.name == "slow")
    assert not slow.ok
    assert "timed out" in slow.results


def test_timeout_frees_a_saturated_pool():
    release = threading.Event()

    def mapper(name, repo):
        if name == "hung":
            release.wait(5)
        return ResultToken(name=name)

    start = time.monotonic()
    try:
        ok, tokens = map_reduce(make_repos("hung", "queued"), mapper, max_workers=1, timeout=0.2)
        elapsed = time.monotonic() - start
    finally:
        release.set()
    assert elapsed < 2
    assert not ok
    assert all(not t.ok for t in tokens)


def test_branch_checkpoint_restores_commit_ids_and_head():
    repo = MemoryRepository.with_branches("master", "topic")
    before = dict(repo.branches())
    _, rollback = branch_checkpoint(repo)
    repo.force_branch("master", new_sha())
    repo.checkout("topic")
    assert rollback()
    assert dict(repo.branches()) == before
    assert repo.current_branch() == "master"


def test_branch_checkpoint_reports_failed_restore():
    repo = MemoryRepository.with_branches("master")
    _, rollback = branch_checkpoint(repo)
    repo.heads["master"] = new_sha()
    repo.fail_on.add("force_branch")
    assert rollback() is False


def test_branch_checkpoint_leaves_unmoved_branches_alone():
    repo = MemoryRepository.with_branches("master", "topic")
    _, rollback = branch_checkpoint(repo)
    repo.ref("master").branch("release/x/master")
    repo.force_branch("topic", new_sha())
    repo.calls.clear()
    assert rollback()
    assert repo.calls == ["force_branch"]
    assert "release/x/master" in dict(repo.branches())


def test_config_checkpoint_restores_config_and_reloads():
    repo = MemoryRepository.with_branches("master")
    repo.config["user.name"] = "builder"
    commit, rollback = config_checkpoint(repo)
    repo.config_set("user.name", "someone else")
    repo.add_remote("origin", "https://example.com/repo")
    assert commit()
    assert rollback()
    assert repo.config == {"user.name": "builder"}
    assert repo.remotes() == {}
    assert repo.config_reloads == 1


def test_config_checkpoint_fails_before_mutation():
    repo = MemoryRepository.with_branches("master")
    repo.fail_on.add("read_config")
    with pytest.raises(OperationFailed):
        config_checkpoint(repo)


def test_mutations_roll_back_through_checkpoints():
    repos = make_repos("a", "b")
    saved = {name: dict(repo.branches()) for name, repo in repos.items()}
    repos["b"].fail_on.add("branch")

    def mapper(name, repo):
        tok = ResultToken(name=name)
        tok.commit, tok.rollback = branch_checkpoint(repo)
        repo.force_branch("master", new_sha())
        try:
            repo.ref("master").branch("topic")
        except OperationFailed as e:
            tok.ok, tok.results = False, str(e)
        return tok

    ok, _ = map_reduce(repos, mapper)
    assert not ok
    for name, repo in repos.items():
        assert dict(repo.branches())["master"] == saved[name]["master"]
