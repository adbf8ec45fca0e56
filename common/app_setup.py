"""
Reusable logging and print setup for the devtool.

Functions:
    setup_logging      - Configure and return the root logger.
    set_print_logger   - Set the logger for print_and_log and print_error.
    monkeypatch_print  - Replace built-in print with rich print.
    print_and_log      - Print and log an info message.
    print_error        - Print and log an error message.
"""

import logging
import os
from typing import Optional
import builtins
from rich import print as rich_print
import sys

# Module-level variable to hold the logger for print_and_log and print_error
_print_logger: Optional[logging.Logger] = None

LOGFILE_ENV = "DEVTOOL_LOGFILE"


def setup_logging(app_name: str = "devtool", loglevel: int = logging.INFO, logfile: Optional[str] = None) -> logging.Logger:
    """
    Set up logging for the application.
    Logs go to ``logfile``, else $DEVTOOL_LOGFILE, else ~/.<app_name>/log.txt.
    Returns the configured logger; it is also installed as the print logger.
    """
    logger = logging.getLogger()
    logger.setLevel(loglevel)
    formatter = logging.Formatter('%(asctime)s %(levelname)s %(process)d %(name)s %(message)s')
    logfile = logfile or os.environ.get(LOGFILE_ENV)
    if logfile is None:
        log_dir = os.path.expanduser(f"~/.{app_name}")
        os.makedirs(log_dir, exist_ok=True)
        logfile = os.path.join(log_dir, "log.txt")
    try:
        handler: logging.Handler = logging.FileHandler(logfile)
    except OSError as e:
        print(f"Cannot open log file {logfile}: {e}", file=sys.stderr)
        handler = logging.StreamHandler()

    # Remove any existing handlers
    for h in logger.handlers[:]:
        logger.removeHandler(h)

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    set_print_logger(logger)
    logger.debug(f"Logging for {app_name} initialized, writing to {logfile}")
    return logger


def set_print_logger(logger: logging.Logger):
    """
    Set the logger to be used by print_and_log and print_error.
    """
    global _print_logger
    _print_logger = logger


def monkeypatch_print():
    """
    Monkeypatch built-in print to use rich.print for all output (no logging).
    """
    def print_to_rich(*args, **kwargs):
        rich_print(*args, **kwargs)
    builtins.print = print_to_rich  # monkeypatch print


def print_and_log(message: str, **kwargs):
    """
    Print to console (via print) and log as info.
    """
    print(message, **kwargs)
    if _print_logger is not None:
        _print_logger.info(message)


def print_error(message: str, **kwargs):
    """
    Print and log an error message (stderr and error level).
    """
    print(f'[bold red]{message}[/bold red]', file=sys.stderr, **kwargs)
    if _print_logger is not None:
        _print_logger.error(message)
