"""Log-statement adapter.

Translates conventional log calls into probe firings: each log call fires
exactly one probe tagged with its severity and carrying msg, exception and
any extra values. Two entry points are provided: log() and its level
helpers for code that wants log-style calls, and ProbeLogHandler, which
turns stdlib logging records into firings.
"""

import logging
import sys
from typing import Any, Optional

from probes.state import EXCEPTION

#: Severity tags, lowest first
SEVERITIES = ("trace", "debug", "info", "warn", "error", "fatal")

# stdlib level names to severity tags
_LEVEL_TAGS = {
    "WARNING": "warn",
    "CRITICAL": "fatal",
}


def _engine(engine: Optional[Any]) -> Any:
    if engine is not None:
        return engine
    from probes.engine import get_engine

    return get_engine()


def _log_from_frame(
    frame: Any,
    severity: str,
    msg: Any,
    exception: Optional[BaseException],
    values: dict,
) -> None:
    payload = {"msg": msg}
    if exception is not None:
        payload[EXCEPTION] = exception
    payload.update(values)
    _engine(None).fire_from_frame(frame, severity, payload)


def log(severity: str, msg: Any = None, exception: Optional[BaseException] = None, **values: Any) -> None:
    """Fire one probe tagged severity under the caller's namespace.

    Args:
        severity: Severity tag, e.g. "info" or "error".
        msg: Log message.
        exception: Exception being reported, if any.
        **values: Extra keys for the probe state.
    """
    _log_from_frame(sys._getframe(1), severity, msg, exception, values)


def trace(msg: Any = None, exception: Optional[BaseException] = None, **values: Any) -> None:
    _log_from_frame(sys._getframe(1), "trace", msg, exception, values)


def debug(msg: Any = None, exception: Optional[BaseException] = None, **values: Any) -> None:
    _log_from_frame(sys._getframe(1), "debug", msg, exception, values)


def info(msg: Any = None, exception: Optional[BaseException] = None, **values: Any) -> None:
    _log_from_frame(sys._getframe(1), "info", msg, exception, values)


def warn(msg: Any = None, exception: Optional[BaseException] = None, **values: Any) -> None:
    _log_from_frame(sys._getframe(1), "warn", msg, exception, values)


def error(msg: Any = None, exception: Optional[BaseException] = None, **values: Any) -> None:
    _log_from_frame(sys._getframe(1), "error", msg, exception, values)


def severity_tag(levelname: str) -> str:
    """Map a stdlib level name to a severity tag."""
    return _LEVEL_TAGS.get(levelname, levelname.lower())


class ProbeLogHandler(logging.Handler):
    """logging.Handler firing one probe per record.

    The namespace is the logger name, the tag is the record's severity and
    the state carries msg, exception (from exc_info) and the record line.
    """

    def __init__(self, engine: Optional[Any] = None, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self.engine = engine

    def emit(self, record: logging.LogRecord) -> None:
        # Records of this package would feed back into the engine
        if record.name == "probes" or record.name.startswith("probes."):
            return
        try:
            engine = _engine(self.engine)
            tag = severity_tag(record.levelname)
            if not engine.is_enabled(record.name, tag):
                return
            payload = {"msg": record.getMessage()}
            if record.exc_info and record.exc_info[1] is not None:
                payload[EXCEPTION] = record.exc_info[1]
            engine.fire(record.name, tag, payload, line=record.lineno)
        except Exception:
            self.handleError(record)


def install_log_handler(
    logger: Optional[logging.Logger] = None,
    engine: Optional[Any] = None,
) -> ProbeLogHandler:
    """Attach a ProbeLogHandler to logger (the root logger by default)."""
    target = logger or logging.getLogger()
    handler = ProbeLogHandler(engine)
    target.addHandler(handler)
    return handler
