"""Shared fixtures: an on-disk release tree backed by in-memory repositories."""

import os
from pathlib import Path

import pytest

from common.settings import DevtoolSettings
from connectors.memory_repository import MemoryRepository
from orchestrator.workspace import Workspace


def write_build(core: Path, release: str, build: str, modules: dict, parent: str | None = None,
                symlink_parent: bool = False) -> Path:
    """Write releases/<release>/<build> with one module-<name> file per binding."""
    path = core / "releases" / release / build
    path.mkdir(parents=True, exist_ok=True)
    if parent is not None:
        if symlink_parent:
            os.symlink(f"../{parent}", path / "parent")
        else:
            (path / "parent").write_text(parent + "\n")
    for module, branch in modules.items():
        (path / f"module-{module}").write_text(branch + "\n")
    return path


def write_release_parent(core: Path, release: str, parent: str) -> None:
    (core / "releases" / release / "parent").write_text(parent + "\n")


@pytest.fixture
def core_dir(tmp_path):
    """A core work tree with a development release, an openstack build and a stable release."""
    core = tmp_path / "workspace" / "crowbar"
    (core / "barclamps").mkdir(parents=True)
    write_build(core, "development", "master", {"crowbar": "master", "deployer": "master"})
    write_build(core, "development", "openstack", {"nova": "master"}, parent="master")
    write_build(core, "stable", "master",
                {"crowbar": "release/stable/master", "deployer": "release/stable/master"})
    write_release_parent(core, "stable", "development")
    return core


@pytest.fixture
def module_repos():
    return {
        "crowbar": MemoryRepository.with_branches("master", "release/stable/master"),
        "deployer": MemoryRepository.with_branches("master", "release/stable/master"),
        "nova": MemoryRepository.with_branches("master"),
    }


@pytest.fixture
def core_repo(core_dir):
    repo = MemoryRepository.with_branches("master", path=core_dir)
    repo.config["crowbar.release"] = "development"
    repo.config["crowbar.build"] = "development/master"
    return repo


@pytest.fixture
def ws(core_repo, module_repos):
    return Workspace(repo=core_repo, modules=module_repos, settings=DevtoolSettings(max_workers=4))
