"""
This file is the entry point for the 'devtool' command-line tool.
Run 'devtool --help' in your shell to see every command.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError as PydanticValidationError

from common.app_setup import monkeypatch_print, print_and_log, print_error, setup_logging
from common.settings import DevtoolSettings
from orchestrator import operations, releases
from orchestrator.errors import (
    DevtoolError,
    InconsistentStateError,
    NotFoundError,
    OperationFailed,
    ValidationError,
)
from orchestrator.mapreduce import ResultToken
from orchestrator.models import DEFAULT_PRIORITY, DECLARATION_FILE, load_declarations
from orchestrator.resolver import resolve
from orchestrator.workspace import Workspace, discover_workspace

logger = logging.getLogger("devtool")

EXIT_FAILURE = 1
EXIT_INCONSISTENT = 3

app = typer.Typer(help="Manage releases, builds and remotes across the Crowbar repositories.")
remote_app = typer.Typer(help="Manage the prioritized remotes shared by every repository.")
app.add_typer(remote_app, name="remote")

_state: dict = {}


@app.callback()
def main_callback():
    """Set up logging from DEVTOOL_* settings before any command runs."""
    with _errors():
        settings = _load_settings()
    setup_logging(app_name="devtool", loglevel=settings.loglevel, logfile=settings.logfile)
    monkeypatch_print()
    _state.clear()
    _state["settings"] = settings


def _load_settings() -> DevtoolSettings:
    try:
        return DevtoolSettings()
    except PydanticValidationError as exc:
        problems = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in exc.errors())
        raise ValidationError(f"Invalid DEVTOOL_* settings: {problems}") from exc


@contextmanager
def _errors():
    try:
        yield
    except InconsistentStateError as e:
        logger.critical(f"{e.phase} failed, repositories left inconsistent: {', '.join(e.names)}")
        print_error(str(e))
        raise typer.Exit(code=EXIT_INCONSISTENT)
    except OperationFailed as e:
        print_error(str(e))
        for name in e.failed_names:
            print_error(f"  {name}")
        raise typer.Exit(code=EXIT_FAILURE)
    except DevtoolError as e:
        print_error(str(e))
        raise typer.Exit(code=EXIT_FAILURE)


def _workspace() -> Workspace:
    if "workspace" not in _state:
        settings = _state.get("settings") or _load_settings()
        _state["workspace"] = discover_workspace(settings=settings)
    return _state["workspace"]


def _report(tokens: List[ResultToken]):
    for tok in tokens:
        if not tok.ok:
            print_error(f"{tok.name}: {tok.results}")


# ---------------------------------------------------------------------------
# workspace state


@app.command()
def show():
    """Show the current release and build."""
    with _errors():
        ws = _workspace()
        release = releases.current_release(ws)
        build = releases.current_build(ws)
    print_and_log(f"Release: {release.name if release else '(none)'}")
    print_and_log(f"Build: {build.full_name if build else '(none)'}")


@app.command()
def release():
    """Print the current release."""
    with _errors():
        current = releases.current_release(_workspace())
        if current is None:
            raise NotFoundError("No current release")
    print(current.name)


@app.command()
def build():
    """Print the current build."""
    with _errors():
        current = releases.current_build(_workspace())
        if current is None:
            raise NotFoundError("No current build")
    print(current.full_name)


@app.command()
def fetch(remote: Optional[List[str]] = typer.Option(None, "--remote", "-r", help="Only fetch these remotes")):
    """Fetch every repository, then update tracking branches."""
    with _errors():
        ok, tokens = operations.fetch(_workspace(), remote or None)
    if not ok:
        _report(tokens)
        print_error("Fetch failed")
        raise typer.Exit(code=EXIT_FAILURE)
    print_and_log(f"Fetched {len(tokens)} repositories")


@app.command()
def clean():
    """Check that no repository has uncommitted changes."""
    with _errors():
        ok, tokens = operations.is_clean(_workspace())
    for tok in tokens:
        if not tok.ok:
            print(f"{tok.name}:")
            for line in tok.results or []:
                print(f"  {line}")
    if not ok:
        raise typer.Exit(code=EXIT_FAILURE)
    print_and_log("All repositories are clean")


# ---------------------------------------------------------------------------
# releases and builds


@app.command("releases")
def list_releases():
    """List every release."""
    with _errors():
        names = sorted(_workspace().meta.releases)
    for name in names:
        print(name)


@app.command()
def builds(names: Optional[List[str]] = typer.Argument(None, help="Releases to list (all when omitted)")):
    """List the builds of the given releases."""
    with _errors():
        ws = _workspace()
        wanted = [ws.meta.release(name) for name in names] if names else list(ws.meta.releases.values())
    for rel in sorted(wanted, key=lambda r: r.name):
        for name in sorted(rel.builds):
            print(rel.builds[name].full_name)


@app.command()
def modules_in_build(name: Optional[str] = typer.Argument(None, help="Build (current build when omitted)")):
    """List the modules of a build and the branch each one is bound to."""
    with _errors():
        ws = _workspace()
        target = releases.find_build(ws, name) if name else releases.current_build(ws)
        if target is None:
            raise NotFoundError("No current build")
        modules = releases.resolved_modules(target)
    for module in sorted(modules):
        print(f"{module}: {modules[module].branch}")


@app.command()
def show_release(name: Optional[str] = typer.Argument(None, help="Release (current release when omitted)")):
    """Describe a release: parent, branch and builds."""
    with _errors():
        ws = _workspace()
        rel = ws.meta.release(name) if name else releases.current_release(ws)
        if rel is None:
            raise NotFoundError("No current release")
        summary = releases.describe_release(rel)
    print(f"Release: {summary.name}")
    print(f"Parent: {summary.parent or '(none)'}")
    print(f"Branch: {summary.branch}")
    print(f"Builds: {', '.join(summary.builds)}")


@app.command()
def switch(target: Optional[str] = typer.Argument(None, help="Build or release to switch to")):
    """Check out every module of a build, all or nothing."""
    with _errors():
        ws = _workspace()
        dest = releases.switch_target(ws, target)
        ok, tokens = releases.switch(ws, dest)
    if not ok:
        _report(tokens)
        print_error(f"Could not switch to {dest.full_name}")
        raise typer.Exit(code=EXIT_FAILURE)
    print_and_log(f"Switched to {dest.full_name}")


@app.command()
def new_release(
    name: str = typer.Argument(..., help="Name of the new release"),
    source: Optional[str] = typer.Option(None, "--from", help="Release to split from (current when omitted)"),
):
    """Create a release by branching every module of another release."""
    with _errors():
        ws = _workspace()
        base = ws.meta.release(source) if source else releases.current_release(ws)
        if base is None:
            raise NotFoundError("No current release to split from")
        created = releases.split_release(ws, base, name)
    print_and_log(f"Created release {created.name} from {base.name}")


@app.command()
def remove_release(name: str = typer.Argument(..., help="Release to remove")):
    """Remove a release, its branches and its metadata."""
    with _errors():
        ws = _workspace()
        releases.remove_release(ws, ws.meta.release(name))
    print_and_log(f"Removed release {name}")


@app.command()
def remove_build(name: str = typer.Argument(..., help="Build to remove (release/build)")):
    """Remove a build's metadata."""
    with _errors():
        ws = _workspace()
        releases.remove_build(ws, releases.find_build(ws, name))
    print_and_log(f"Removed build {name}")


@app.command()
def build_order(paths: List[Path] = typer.Argument(..., help="crowbar.yml files or module directories")):
    """Print modules in the order they must be built."""
    files = [path / DECLARATION_FILE if path.is_dir() else path for path in paths]
    with _errors():
        resolution = resolve(load_declarations(files))
    for name in resolution.order:
        print(name)


# ---------------------------------------------------------------------------
# remotes


@remote_app.command("list")
def remote_list():
    """List remotes by priority."""
    with _errors():
        remotes = _workspace().remotes.sorted_remotes()
    for remote in remotes:
        print(f"{remote.name} {remote.priority} {remote.urlbase}")


@remote_app.command("show")
def remote_show(name: str = typer.Argument(...)):
    """Show one remote."""
    with _errors():
        remote = _workspace().remotes.get(name)
    print(f"Remote: {remote.name}")
    print(f"URL base: {remote.urlbase}")
    print(f"Priority: {remote.priority}")


@remote_app.command("add")
def remote_add(
    urlbase: str = typer.Argument(..., help="URL the repository names are appended to"),
    name: Optional[str] = typer.Option(None, help="Remote name (defaults to the URL basename)"),
    priority: int = typer.Option(DEFAULT_PRIORITY, help="1-100, lower wins"),
):
    """Add a remote to every repository."""
    with _errors():
        remote = _workspace().remotes.add(urlbase, name, priority)
    print_and_log(f"Added remote {remote.name}")


@remote_app.command("rm")
def remote_rm(name: str = typer.Argument(...)):
    """Remove a remote from every repository."""
    with _errors():
        _workspace().remotes.remove(name)
    print_and_log(f"Removed remote {name}")


@remote_app.command("rename")
def remote_rename(name: str = typer.Argument(...), new_name: str = typer.Argument(...)):
    """Rename a remote in every repository."""
    with _errors():
        _workspace().remotes.rename(name, new_name)
    print_and_log(f"Renamed remote {name} to {new_name}")


@remote_app.command("set-urlbase")
def remote_set_urlbase(name: str = typer.Argument(...), urlbase: str = typer.Argument(...)):
    """Point a remote at a new URL base."""
    with _errors():
        remote = _workspace().remotes.set_urlbase(name, urlbase)
    print_and_log(f"Remote {remote.name} now at {remote.urlbase}")


@remote_app.command("sync")
def remote_sync():
    """Add missing remotes and fix remotes pointing at the wrong URL."""
    with _errors():
        changes = _workspace().remotes.sync()
    for line in changes:
        print_and_log(line)
    if not changes:
        print_and_log("Remotes already in sync")


@remote_app.command("retrack")
def remote_retrack():
    """Make bound branches track the highest-priority remote that has them."""
    with _errors():
        ok, tokens = _workspace().remotes.update_tracking_branches()
    if not ok:
        _report(tokens)
        raise typer.Exit(code=EXIT_FAILURE)
    for tok in tokens:
        for line in tok.results or []:
            print_and_log(f"{tok.name}: {line}")


def main():
    app()


if __name__ == "__main__":
    main()
