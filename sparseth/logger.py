"""Structured logging with key/value context and a coloured terminal handler."""

from __future__ import annotations

import enum
import sys
from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, TextIO

_BAD_KEY = "!BADKEY"
_NO_COMPONENT = "[]"
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

Attr = tuple[str, Any]


class Level(enum.IntEnum):
    """Severity of a log record."""

    DEBUG = -4
    INFO = 0
    WARN = 4
    ERROR = 8


_COLORS = {
    Level.DEBUG: "\x1b[37m",  # grey
    Level.INFO: "\x1b[32m",  # green
    Level.WARN: "\x1b[33m",  # yellow
    Level.ERROR: "\x1b[31m",  # red
}


class Handler(Protocol):
    """What a logger needs from the handler it writes to."""

    def enabled(self, level: Level) -> bool: ...

    def handle(self, level: Level, msg: str, attrs: Iterable[Attr],
               when: Optional[datetime]) -> None: ...

    def with_attrs(self, attrs: Iterable[Attr]) -> "Handler": ...


def _to_attrs(args: Iterable[Any]) -> tuple[Attr, ...]:
    """Turn alternating keys and values into attribute pairs."""
    attrs: list[Attr] = []
    items = iter(args)
    for arg in items:
        if isinstance(arg, str):
            try:
                attrs.append((arg, next(items)))
            except StopIteration:
                attrs.append((_BAD_KEY, arg))
        else:
            attrs.append((_BAD_KEY, arg))
    return tuple(attrs)


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _format_time(when: datetime) -> str:
    return (f"[{_MONTHS[when.month - 1]} {when.day:02d}|"
            f"{when:%H:%M:%S}.{when.microsecond // 1000:03d}]")


class TerminalHandler:
    """Prints coloured log lines to a text stream (stdout by default)."""

    def __init__(self, level: Level = Level.DEBUG,
                 stream: Optional[TextIO] = None) -> None:
        self.level = level
        self._stream = stream
        self._attrs: tuple[Attr, ...] = ()
        self._component = _NO_COMPONENT

    @property
    def component(self) -> str:
        """The bracketed component name printed with every line."""
        return self._component

    @property
    def attrs(self) -> tuple[Attr, ...]:
        """All attributes attached to this handler."""
        return self._attrs

    def enabled(self, level: Level) -> bool:
        return level >= self.level

    def handle(self, level: Level, msg: str, attrs: Iterable[Attr],
               when: Optional[datetime] = None) -> None:
        color = _COLORS.get(level, "")
        time = _format_time(when) if when is not None else ""
        attr_text = "".join(f"[{key}={_format_value(value)}] " for key, value in attrs)
        name = level.name if isinstance(level, Level) else str(level)
        print(color, time, name, self._component, msg, attr_text,
              file=self._stream if self._stream is not None else sys.stdout)

    def with_attrs(self, attrs: Iterable[Attr]) -> "TerminalHandler":
        attrs = tuple(attrs)
        component = _NO_COMPONENT
        for key, value in attrs:
            if key == "component":
                component = f"[{_format_value(value)}]"
        handler = TerminalHandler(self.level, self._stream)
        handler._attrs = self._attrs + attrs
        handler._component = component
        return handler


class Logger:
    """Logs messages with key/value context through a handler."""

    def __init__(self, handler: Handler, context: Iterable[Any] = ()) -> None:
        attrs = _to_attrs(context)
        self._handler = handler.with_attrs(attrs) if attrs else handler
        self._context = attrs

    @property
    def handler(self) -> Handler:
        return self._handler

    def with_(self, *args: Any) -> "Logger":
        """Return a logger that adds the given key/value pairs to each record."""
        if not args:
            return self
        return Logger(self._handler, args)

    def _log(self, level: Level, msg: str, args: tuple[Any, ...]) -> None:
        if self._handler.enabled(level):
            self._handler.handle(level, msg, _to_attrs(args), datetime.now())

    def debug(self, msg: str, *args: Any) -> None:
        self._log(Level.DEBUG, msg, args)

    def info(self, msg: str, *args: Any) -> None:
        self._log(Level.INFO, msg, args)

    def warn(self, msg: str, *args: Any) -> None:
        self._log(Level.WARN, msg, args)

    def error(self, msg: str, *args: Any) -> None:
        self._log(Level.ERROR, msg, args)


def new_logger(handler: Handler) -> Logger:
    """Create a logger writing to the given handler."""
    return Logger(handler)