"""Pydantic models for remotes and module declarations."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable, Mapping
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from .errors import ValidationError

REMOTE_NAME = re.compile(r"^[A-Za-z]+$")
DEFAULT_PRIORITY = 50
DECLARATION_FILE = "crowbar.yml"


class Remote(BaseModel):
    """A prioritized upstream applied to every repository as ``<urlbase>/<repo>``."""

    model_config = ConfigDict(validate_assignment=True)

    name: str = Field(..., description="Remote name, letters only")
    urlbase: str = Field(..., description="URL every repository name is appended to")
    priority: int = Field(default=DEFAULT_PRIORITY, ge=1, le=100, description="Lower wins")

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and not data.get("name") and data.get("urlbase"):
            data = dict(data)
            data["name"] = Path(urlparse(str(data["urlbase"])).path.rstrip("/")).name
        return data

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not REMOTE_NAME.match(value):
            raise ValueError(f"{value!r} is not a valid name for a remote")
        return value

    @field_validator("urlbase")
    @classmethod
    def _check_urlbase(cls, value: str) -> str:
        check_urlbase(value)
        return value.rstrip("/")

    def repo_url(self, repo_name: str) -> str:
        return f"{self.urlbase}/{repo_name}"


def check_urlbase(value: str) -> None:
    """Raise ValueError unless ``value`` is a URL the devtool can use as a remote base."""
    url = urlparse(value)
    if not url.scheme or not (url.netloc or url.path):
        raise ValueError(f"{value} is not an absolute URL")
    if url.scheme in ("git", "http", "https"):
        if url.username is not None:
            raise ValueError(
                f"Please don't embed userinfo in your {url.scheme} URL; "
                f"add 'machine {url.hostname} login <username> password <password>' to .netrc instead"
            )
    elif url.scheme == "ssh":
        if url.username is None:
            raise ValueError(f"{value} does not include an embedded username")
    else:
        raise ValueError(f"URL scheme {url.scheme} is not supported by the devtool")


def make_remote(urlbase: str, name: str | None = None, priority: int = DEFAULT_PRIORITY) -> Remote:
    """Build a validated Remote, translating pydantic errors into ValidationError."""
    try:
        return Remote.model_validate({"name": name, "urlbase": urlbase, "priority": priority})
    except PydanticValidationError as exc:
        raise ValidationError(_first_message(exc)) from exc


def _first_message(exc: PydanticValidationError) -> str:
    err = exc.errors()[0]
    where = ".".join(str(p) for p in err.get("loc", ()))
    msg = err.get("msg", str(exc)).removeprefix("Value error, ")
    return f"{where}: {msg}" if where else msg


class ModuleDeclaration(BaseModel):
    """The ``barclamp`` section of a module's crowbar.yml."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    version: int | str | None = None
    members: list[str] = Field(default_factory=list, alias="member")
    supersedes: list[str] = Field(default_factory=list)
    requires: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _historical_spelling(cls, data: Any) -> Any:
        if isinstance(data, Mapping) and "supercedes" in data and "supersedes" not in data:
            data = dict(data)
            data["supersedes"] = data.pop("supercedes")
        return data

    @field_validator("members", "supersedes", "requires", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ---------------------------------------------------------------------------
# helpers


def load_declaration(path: str | Path) -> ModuleDeclaration:
    """Parse one crowbar.yml into a ModuleDeclaration."""
    path = Path(path)
    if path.name != DECLARATION_FILE:
        raise ValidationError(f"{path} is not a module declaration ({DECLARATION_FILE})")
    try:
        payload = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ValidationError(f"{path} is not valid YAML: {exc}") from exc
    section = payload.get("barclamp") if isinstance(payload, Mapping) else None
    if not isinstance(section, Mapping):
        raise ValidationError(f"{path} has no barclamp section")
    try:
        return ModuleDeclaration.model_validate(section)
    except PydanticValidationError as exc:
        raise ValidationError(f"{path}: {_first_message(exc)}") from exc


def load_declarations(paths: Iterable[str | Path]) -> dict[str, ModuleDeclaration]:
    declarations: dict[str, ModuleDeclaration] = {}
    for path in paths:
        decl = load_declaration(path)
        declarations[decl.name] = decl
    return declarations


__all__ = [
    "DECLARATION_FILE",
    "DEFAULT_PRIORITY",
    "ModuleDeclaration",
    "Remote",
    "check_urlbase",
    "load_declaration",
    "load_declarations",
    "make_remote",
]
