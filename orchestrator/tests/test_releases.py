import pytest

from conftest import write_build, write_release_parent
from orchestrator import releases
from orchestrator.errors import (
    BaseRefMissing,
    BranchAlreadyExists,
    ConflictError,
    NotFoundError,
    OperationFailed,
    ValidationError,
)


@pytest.mark.parametrize("release, branch", [
    ("development", "master"),
    ("essex", "release/essex/master"),
    ("feature/ha", "feature/ha/master"),
    ("local/mine", "local/mine/master"),
])
def test_branch_name(release, branch):
    assert releases.branch_name(release) == branch


@pytest.mark.parametrize("release", ["", "a/b", "feature/", "feature/x/y", "other/thing"])
def test_branch_name_rejects(release):
    with pytest.raises(ValidationError):
        releases.branch_name(release)


def test_current_release_and_build(ws):
    assert releases.current_release(ws).name == "development"
    assert releases.current_build(ws).full_name == "development/master"


def test_current_build_unknown(ws, core_repo):
    core_repo.config["crowbar.build"] = "development/gone"
    with pytest.raises(NotFoundError):
        releases.current_build(ws)


def test_find_build_relative_to_current_release(ws):
    assert releases.find_build(ws, "openstack").full_name == "development/openstack"
    assert releases.find_build(ws, "stable/master").full_name == "stable/master"
    with pytest.raises(NotFoundError):
        releases.find_build(ws, "nothing")


def test_switch_target_prefers_same_build_name(ws):
    assert releases.switch_target(ws, "stable").full_name == "stable/master"
    assert releases.switch_target(ws, None).full_name == "development/master"


def test_describe_release(ws):
    summary = releases.describe_release(ws.meta.release("stable"))
    assert summary.parent == "development"
    assert summary.branch == "release/stable/master"
    assert summary.builds == ["master"]


# ---------------------------------------------------------------------------
# split


def test_split_release_branches_every_module(ws, module_repos, core_dir):
    dev = ws.meta.release("development")
    bases = {name: repo.ref("master").sha for name, repo in module_repos.items()}
    created = releases.split_release(ws, dev, "grizzly")
    assert created.parent_name == "development"
    for name, repo in module_repos.items():
        assert repo.ref("release/grizzly/master").sha == bases[name]
    build = ws.meta.build("grizzly/openstack")
    assert build.modules["nova"].branch == "release/grizzly/master"
    assert (core_dir / "releases" / "grizzly" / "parent").read_text() == "development"


def test_split_onto_existing_release_changes_nothing(ws, module_repos, core_repo):
    before = {name: repo.branches() for name, repo in module_repos.items()}
    with pytest.raises(ConflictError):
        releases.split_release(ws, ws.meta.release("development"), "stable")
    assert {name: repo.branches() for name, repo in module_repos.items()} == before
    assert core_repo.commits == []


def test_split_with_missing_base_ref(ws, module_repos):
    module_repos["nova"].delete_branch("master")
    with pytest.raises(BaseRefMissing) as excinfo:
        releases.split_release(ws, ws.meta.release("development"), "grizzly")
    assert excinfo.value.module == "nova"
    assert "release/grizzly/master" not in dict(module_repos["crowbar"].branches())


def test_split_when_branch_already_exists(ws, module_repos):
    module_repos["nova"].ref("master").branch("release/grizzly/master")
    with pytest.raises(BranchAlreadyExists):
        releases.split_release(ws, ws.meta.release("development"), "grizzly")
    assert "release/grizzly/master" not in dict(module_repos["crowbar"].branches())


def test_split_failure_rolls_back_created_branches(ws, module_repos, core_dir):
    module_repos["nova"].fail_on.add("branch")
    with pytest.raises(OperationFailed) as excinfo:
        releases.split_release(ws, ws.meta.release("development"), "grizzly")
    assert excinfo.value.failed_names == ["barclamp-nova"]
    for repo in module_repos.values():
        assert "release/grizzly/master" not in dict(repo.branches())
    assert not (core_dir / "releases" / "grizzly").exists()
    assert "grizzly" not in ws.meta.releases


# ---------------------------------------------------------------------------
# removal


def test_remove_release_deletes_branches_and_metadata(ws, module_repos, core_dir):
    releases.remove_release(ws, ws.meta.release("stable"))
    assert "stable" not in ws.meta.releases
    assert not (core_dir / "releases" / "stable").exists()
    for name in ("crowbar", "deployer"):
        assert "release/stable/master" not in dict(module_repos[name].branches())


def test_remove_release_reparents_children(ws, core_dir, core_repo, module_repos):
    write_build(core_dir, "hotfix", "master", {"crowbar": "master"})
    write_release_parent(core_dir, "hotfix", "stable")
    ws.meta.load()
    releases.remove_release(ws, ws.meta.release("stable"))
    assert ws.meta.release("hotfix").parent_name == "development"


def test_remove_development_refused(ws):
    with pytest.raises(ValidationError):
        releases.remove_release(ws, ws.meta.release("development"))


def test_remove_current_release_refused(ws, core_repo, module_repos):
    core_repo.config["crowbar.release"] = "stable"
    with pytest.raises(ConflictError):
        releases.remove_release(ws, ws.meta.release("stable"))
    assert "release/stable/master" in dict(module_repos["crowbar"].branches())


def test_remove_release_branch_failure(ws, module_repos, core_dir):
    module_repos["deployer"].fail_on.add("delete_branch")
    with pytest.raises(OperationFailed):
        releases.remove_release(ws, ws.meta.release("stable"))
    assert (core_dir / "releases" / "stable").exists()


def test_remove_build(ws, core_dir):
    releases.remove_build(ws, ws.meta.build("development/openstack"))
    assert not (core_dir / "releases" / "development" / "openstack").exists()
    assert "openstack" not in ws.meta.release("development").builds


def test_remove_master_build_refused(ws):
    with pytest.raises(ValidationError):
        releases.remove_build(ws, ws.meta.build("development/master"))


def test_remove_parent_build_refused(ws, core_dir):
    write_build(core_dir, "development", "hadoop", {}, parent="openstack")
    ws.meta.load()
    with pytest.raises(ConflictError):
        releases.remove_build(ws, ws.meta.build("development/openstack"))


# ---------------------------------------------------------------------------
# switch


def test_switch_checks_out_bound_branches(ws, module_repos, core_repo):
    ok, tokens = releases.switch(ws, ws.meta.build("stable/master"))
    assert ok
    assert module_repos["crowbar"].current_branch() == "release/stable/master"
    assert module_repos["deployer"].current_branch() == "release/stable/master"
    assert module_repos["nova"].current_branch() == "master"
    assert core_repo.config["crowbar.release"] == "stable"
    assert core_repo.config["crowbar.build"] == "stable/master"
    assert [t.name for t in tokens] == ["barclamp-crowbar", "barclamp-deployer"]


def test_switch_failure_restores_every_repository(ws, module_repos, core_repo):
    module_repos["deployer"].fail_on.add("checkout")
    ok, tokens = releases.switch(ws, ws.meta.build("stable/master"))
    assert not ok
    assert module_repos["crowbar"].current_branch() == "master"
    assert core_repo.config["crowbar.build"] == "development/master"
    assert [t.name for t in tokens if not t.ok] == ["barclamp-deployer"]


def test_switch_links_build_extras(ws, core_dir):
    extra = core_dir / "releases" / "stable" / "master" / "extra"
    extra.mkdir()
    (core_dir / "extra").symlink_to(core_dir / "releases")
    ok, _ = releases.switch(ws, ws.meta.build("stable/master"))
    assert ok
    assert (core_dir / "extra").is_symlink()
    assert (core_dir / "extra").resolve() == extra.resolve()
    assert not (core_dir / "change-image").exists()
