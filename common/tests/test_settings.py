import logging

import pytest
from pydantic import ValidationError as PydanticValidationError

from common.app_setup import print_and_log, print_error, setup_logging
from common.settings import DevtoolSettings

SETTINGS_VARS = ("DEVTOOL_MAX_WORKERS", "DEVTOOL_TASK_TIMEOUT", "DEVTOOL_LOGFILE", "DEVTOOL_LOGLEVEL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for var in SETTINGS_VARS:
        monkeypatch.delenv(var, raising=False)


def test_defaults():
    settings = DevtoolSettings()
    assert settings.max_workers == 8
    assert settings.task_timeout is None
    assert settings.loglevel == logging.INFO


def test_read_from_environment(monkeypatch):
    monkeypatch.setenv("DEVTOOL_MAX_WORKERS", "3")
    monkeypatch.setenv("DEVTOOL_TASK_TIMEOUT", "2.5")
    monkeypatch.setenv("DEVTOOL_LOGLEVEL", "debug")
    monkeypatch.setenv("DEVTOOL_LOGFILE", "/tmp/devtool.log")
    monkeypatch.setenv("UNRELATED", "x")
    settings = DevtoolSettings()
    assert settings.max_workers == 3
    assert settings.task_timeout == 2.5
    assert settings.loglevel == logging.DEBUG
    assert settings.logfile == "/tmp/devtool.log"


def test_explicit_values_win_over_environment(monkeypatch):
    monkeypatch.setenv("DEVTOOL_MAX_WORKERS", "3")
    assert DevtoolSettings(max_workers=5).max_workers == 5


@pytest.mark.parametrize("var, value", [
    ("DEVTOOL_MAX_WORKERS", "0"),
    ("DEVTOOL_MAX_WORKERS", "many"),
    ("DEVTOOL_TASK_TIMEOUT", "-1"),
    ("DEVTOOL_LOGLEVEL", "chatty"),
])
def test_invalid_settings(monkeypatch, var, value):
    monkeypatch.setenv(var, value)
    with pytest.raises(PydanticValidationError):
        DevtoolSettings()


def test_setup_logging_writes_logfile(tmp_path, capsys):
    logfile = tmp_path / "log.txt"
    logger = setup_logging(app_name="devtool", loglevel=logging.INFO, logfile=str(logfile))
    print_and_log("hello from the devtool")
    print_error("something broke")
    for handler in logger.handlers:
        handler.flush()
    content = logfile.read_text()
    assert "hello from the devtool" in content
    assert "ERROR" in content and "something broke" in content
    captured = capsys.readouterr()
    assert "hello from the devtool" in captured.out
