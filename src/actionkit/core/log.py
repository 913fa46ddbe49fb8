from __future__ import annotations

"""
actionkit.core.log
==================

Structured logging for the dispatch subsystem.

- Library loggers live under the ``actionkit`` namespace and are silent until
  the application attaches a handler (``enable_stdout_logging`` or
  ``configure_from_env``).
- Keyword fields passed to log calls land in ``LogRecord.extra``:
      log.info("action claimed", event="action.claim", action_id=...)
- A contextvar carries per-action fields (action_id, action_type, attempt,
  worker_id) into every record emitted while an action executes.
"""

import contextvars
import json
import logging
import os
import sys
import threading
from collections.abc import Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any, ClassVar, Final

__all__ = [
    "JsonFormatter",
    "HumanFormatter",
    "alert",
    "bind_context",
    "configure_from_env",
    "disable_stdout_logging",
    "enable_stdout_logging",
    "get_logger",
    "log_context",
    "set_level",
    "swallow",
    "warn_once",
]

_LOGGER_NAME: Final[str] = "actionkit"
_STDOUT_HANDLER: Final[str] = "_actionkit_stdout_handler"
_STDERR_HANDLER: Final[str] = "_actionkit_stderr_handler"

# Fields shown inline by HumanFormatter, in this order.
_HUMAN_CTX_KEYS: Final[tuple[str, ...]] = ("action_id", "action_type", "attempt", "worker_id")

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})

# ---------- Context ----------

_log_context: contextvars.ContextVar[dict[str, Any] | None] = contextvars.ContextVar("actionkit_log_ctx", default=None)


def _ctx_copy() -> dict[str, Any]:
    ctx = _log_context.get()
    return dict(ctx) if ctx else {}


def bind_context(**fields: Any) -> None:
    """Merge non-None fields into the current log context (for long-lived tasks)."""
    ctx = _ctx_copy()
    ctx.update({k: v for k, v in fields.items() if v is not None})
    _log_context.set(ctx)


@contextmanager
def log_context(**fields: Any):
    """Temporarily add fields to the log context; the previous context is restored on exit."""
    token = _log_context.set({**_ctx_copy(), **{k: v for k, v in fields.items() if v is not None}})
    try:
        yield
    finally:
        _log_context.reset(token)


# ---------- Formatters ----------

_STD_ATTRS: Final[frozenset[str]] = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "asctime",
    }
)


def _iso_utc_ms(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line: ts, level, logger, message, then context fields,
    then record extras, then an ``error`` object when exception info is attached.
    """

    def __init__(self, *, include_stack: bool = False) -> None:
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": _iso_utc_ms(record.created),
            "level": record.levelname,
            "logger": record.name,
        }
        msg = record.getMessage()
        if msg:
            out["message"] = msg

        ctx = _log_context.get()
        if ctx:
            out.update(ctx)

        for k, v in record.__dict__.items():
            if k not in _STD_ATTRS and k not in out:
                out[k] = v

        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            err = out.setdefault("error", {})
            err["type"] = exc_type.__name__ if exc_type else "Exception"
            err["message"] = str(exc) if exc else None
            if self.include_stack:
                err["stack"] = self.formatException(record.exc_info)

        return json.dumps(out, ensure_ascii=False, separators=(",", ":"), default=str)


class HumanFormatter(logging.Formatter):
    """Compact single-line formatter for local debugging."""

    default_time_format = "%Y-%m-%d %H:%M:%S"
    default_msec_format = "%s.%03d"

    def format(self, record: logging.LogRecord) -> str:
        s = f"{self.formatTime(record)} {record.levelname:<5} {record.name}: {record.getMessage()}"
        ctx = _log_context.get() or {}
        parts = [f"{k}={ctx[k]}" for k in _HUMAN_CTX_KEYS if ctx.get(k) is not None]
        if parts:
            s += "  [" + ", ".join(parts) + "]"
        if record.exc_info:
            s += "\n" + self.formatException(record.exc_info)
        return s


# ---------- Filters / adapter ----------


class ContextFilter(logging.Filter):
    """Copy context fields onto the record (without clobbering) so handlers can route on them."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = _log_context.get()
        if ctx:
            for k, v in ctx.items():
                record.__dict__.setdefault(k, v)
        return True


class _LevelBand(logging.Filter):
    def __init__(self, lo: int = logging.NOTSET, hi: int = logging.CRITICAL) -> None:
        super().__init__()
        self.lo = lo
        self.hi = hi

    def filter(self, record: logging.LogRecord) -> bool:
        return self.lo <= record.levelno <= self.hi


class _KwExtraAdapter(logging.LoggerAdapter):
    """
    Moves unknown kwargs into ``extra`` so call sites can pass structured fields
    directly. Keys colliding with LogRecord attributes are prefixed ``field_``.
    """

    _passthrough: ClassVar[frozenset[str]] = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def process(self, msg, kwargs):
        extra = kwargs.get("extra")
        if not isinstance(extra, dict):
            extra = {}
        for k in [k for k in kwargs if k not in self._passthrough]:
            key = f"field_{k}" if k in _STD_ATTRS else k
            extra.setdefault(key, kwargs.pop(k))
        # logger filters don't run for child loggers, so stamp context here
        for k, v in (_log_context.get() or {}).items():
            extra.setdefault(f"field_{k}" if k in _STD_ATTRS else k, v)
        kwargs["extra"] = extra
        return msg, kwargs


def _as_adapter(logger: logging.Logger | logging.LoggerAdapter | None) -> logging.LoggerAdapter:
    if logger is None:
        return get_logger()
    if isinstance(logger, logging.LoggerAdapter):
        return logger
    return _KwExtraAdapter(logger, {})


_WARN_ONCE_SEEN: set[str] = set()
_WARN_ONCE_LOCK = threading.Lock()


def warn_once(
    logger: logging.Logger | logging.LoggerAdapter,
    code: str,
    msg: str,
    *,
    level: int = logging.WARNING,
    **extra: Any,
) -> None:
    """Log `msg` only the first time `code` is seen in this process."""
    with _WARN_ONCE_LOCK:
        if code in _WARN_ONCE_SEEN:
            return
        _WARN_ONCE_SEEN.add(code)
    _as_adapter(logger).log(level, msg, code=code, **extra)


def alert(logger: logging.Logger | logging.LoggerAdapter, code: str, msg: str, **extra: Any) -> None:
    """
    Operator-facing condition: ERROR level with ``alert=True`` so log pipelines
    can page on it without parsing messages.
    """
    _as_adapter(logger).error(msg, code=code, alert=True, **extra)


# ---------- Configuration ----------

_bootstrapped = False


def _bootstrap_minimal() -> None:
    """NullHandler + context filter so importing the library is silent."""
    global _bootstrapped
    if _bootstrapped:
        return
    lg = logging.getLogger(_LOGGER_NAME)
    lg.setLevel(logging.DEBUG)
    if not any(isinstance(h, logging.NullHandler) for h in lg.handlers):
        lg.addHandler(logging.NullHandler())
    if not any(isinstance(f, ContextFilter) for f in lg.filters):
        lg.addFilter(ContextFilter())
    _bootstrapped = True


def get_logger(name: str | None = None) -> logging.LoggerAdapter:
    """Namespaced adapter (``actionkit.<name>``) accepting keyword fields."""
    _bootstrap_minimal()
    base = logging.getLogger(_LOGGER_NAME)
    return _KwExtraAdapter(base.getChild(name) if name else base, {})


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    lvl = logging.getLevelName(level.upper())
    if not isinstance(lvl, int):
        raise ValueError(f"Invalid level name: {level!r}")
    return lvl


def set_level(level: int | str) -> None:
    logging.getLogger(_LOGGER_NAME).setLevel(_resolve_level(level))


def enable_stdout_logging(
    *,
    level: int | str = logging.DEBUG,
    json_output: bool = True,
    include_stack: bool = False,
    pretty: bool = False,
    route_errors_to_stderr: bool = False,
) -> None:
    """
    Attach stream handlers. ``pretty`` wins over ``json_output``.
    With ``route_errors_to_stderr`` ERROR+ goes to stderr and the rest to stdout.
    """
    lvl = _resolve_level(level)
    _bootstrap_minimal()
    lg = logging.getLogger(_LOGGER_NAME)
    disable_stdout_logging()

    fmt: logging.Formatter
    if pretty:
        fmt = HumanFormatter()
    elif json_output:
        fmt = JsonFormatter(include_stack=include_stack)
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    routes: list[tuple[str, Any, logging.Filter | None]]
    if route_errors_to_stderr:
        routes = [
            (_STDOUT_HANDLER, sys.stdout, _LevelBand(hi=logging.WARNING)),
            (_STDERR_HANDLER, sys.stderr, _LevelBand(lo=logging.ERROR)),
        ]
    else:
        routes = [(_STDOUT_HANDLER, sys.stdout, None)]

    for name, stream, flt in routes:
        h = logging.StreamHandler(stream)
        h.set_name(name)
        h.setLevel(lvl)
        if flt is not None:
            h.addFilter(flt)
        h.setFormatter(fmt)
        lg.addHandler(h)


def disable_stdout_logging() -> None:
    lg = logging.getLogger(_LOGGER_NAME)
    for h in list(lg.handlers):
        if h.get_name() in (_STDOUT_HANDLER, _STDERR_HANDLER):
            lg.removeHandler(h)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in _TRUTHY


def configure_from_env() -> None:
    """
    Call once from entrypoints/tests. Honors:
      - ACTIONKIT_LOG_STDOUT=1   attach a stdout handler
      - ACTIONKIT_LOG_LEVEL=...  default DEBUG
      - ACTIONKIT_LOG_PRETTY=1   human formatter instead of JSON
      - ACTIONKIT_LOG_STACK=1    include stack traces in JSON output
    """
    level = os.getenv("ACTIONKIT_LOG_LEVEL", "DEBUG")
    pretty = _env_flag("ACTIONKIT_LOG_PRETTY")

    _bootstrap_minimal()
    set_level(level)
    if _env_flag("ACTIONKIT_LOG_STDOUT"):
        enable_stdout_logging(
            level=level,
            json_output=not pretty,
            include_stack=_env_flag("ACTIONKIT_LOG_STACK"),
            pretty=pretty,
        )
    else:
        disable_stdout_logging()


# ---------- Exception swallowing with trace ----------


@contextmanager
def swallow(
    *,
    logger: logging.Logger | logging.LoggerAdapter | None = None,
    level: int = logging.DEBUG,
    code: str,
    msg: str | None = None,
    reraise: bool = False,
    extra: Mapping[str, Any] | None = None,
    expected: bool = True,
):
    """
    Replacement for ``try/except: pass`` that leaves a structured trace:

        with swallow(logger=log, code="store.index", msg="index creation failed"):
            await coll.create_index(...)
    """
    log = _as_adapter(logger)
    try:
        yield
    except Exception as e:
        payload: dict[str, Any] = {"code": code, "expected": expected}
        if extra:
            payload.update(extra)
        log.log(level, msg or "Suppressed exception", exc_info=e, **payload)
        if reraise:
            raise


_bootstrap_minimal()
