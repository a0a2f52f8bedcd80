"""Diagnostic message output to stdout/stderr or syslog."""

from __future__ import annotations

import sys

try:
    import syslog as _syslog_mod
except ImportError:  # platforms without syslog
    _syslog_mod = None

_state = {"debug": False, "syslog": False}


def set_debug(debug) -> None:
    """Enable or disable debug messages."""
    _state["debug"] = bool(debug)


def get_debug() -> bool:
    """Return whether debug messages are enabled."""
    return _state["debug"]


def set_syslog(enabled) -> None:
    """Route messages to syslog instead of the standard streams."""
    _state["syslog"] = bool(enabled)


def _format(msg: str, args: tuple) -> str:
    return msg % args if args else msg


def _use_syslog() -> bool:
    return _state["syslog"] and _syslog_mod is not None


def debug(msg: str, *args) -> None:
    """Write a debug message to stdout when debugging is enabled."""
    if not _state["debug"]:
        return
    text = _format(msg, args)
    if _use_syslog():
        _syslog_mod.syslog(_syslog_mod.LOG_DEBUG, text)
    else:
        sys.stdout.write(text)


def error(msg: str, *args) -> None:
    """Write an error message to stderr."""
    text = _format(msg, args)
    if _use_syslog():
        _syslog_mod.syslog(_syslog_mod.LOG_ERR, text)
    else:
        sys.stderr.write(text)


def info(msg: str, *args) -> None:
    """Write an informational message to stderr."""
    text = _format(msg, args)
    if _use_syslog():
        _syslog_mod.syslog(_syslog_mod.LOG_INFO, text)
    else:
        sys.stderr.write(text)