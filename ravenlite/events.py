"""Event model and the builders that turn exceptions and messages into events."""

import dataclasses
import linecache
import socket
import traceback
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ravenlite.context import RequestContext, UserContext

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S"


class ErrorLevel(str, Enum):
    FATAL = "fatal"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    DEBUG = "debug"


@dataclass(frozen=True)
class Message:
    """A log message kept as format string plus params so the collector can group it."""

    format: str
    params: tuple = ()

    @property
    def formatted(self) -> str:
        if not self.params:
            return self.format
        try:
            return self.format % self.params
        except (TypeError, ValueError, KeyError):
            return self.format

    def to_interface(self) -> dict:
        return {"message": self.format, "params": list(self.params)}

    def __str__(self) -> str:
        return self.formatted


@dataclass(frozen=True)
class ExceptionInfo:
    type: str
    value: str
    module: str | None
    frames: list[dict] = field(default_factory=list)

    @classmethod
    def from_exception(cls, exception: BaseException) -> "ExceptionInfo":
        exc_type = type(exception)
        return cls(
            type=exc_type.__name__,
            value=str(exception),
            module=exc_type.__module__,
            frames=_collect_frames(exception.__traceback__),
        )

    @property
    def culprit(self) -> str | None:
        if not self.frames:
            return None
        innermost = self.frames[-1]
        return f"{innermost['module']} in {innermost['function']}"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "value": self.value,
            "module": self.module,
            "stacktrace": {"frames": self.frames},
        }


def _collect_frames(tb) -> list[dict]:
    """Walk a traceback oldest call first."""
    frames = []
    for frame, lineno in traceback.walk_tb(tb):
        code = frame.f_code
        context_line = linecache.getline(code.co_filename, lineno).strip()
        frames.append({
            "filename": code.co_filename,
            "function": code.co_name,
            "lineno": lineno,
            "module": frame.f_globals.get("__name__", "?"),
            "context_line": context_line or None,
        })
    return frames


@dataclass(frozen=True)
class Event:
    message: str
    level: ErrorLevel
    project: str
    logger: str = "root"
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    platform: str = "python"
    culprit: str | None = None
    exception: ExceptionInfo | None = None
    message_interface: dict | None = None
    tags: dict[str, str] | None = None
    extra: dict[str, Any] | None = None
    request: RequestContext | None = None
    user: UserContext | None = None
    server_name: str = field(default_factory=socket.gethostname)

    def with_logger(self, name: str) -> "Event":
        return dataclasses.replace(self, logger=name)

    def to_dict(self) -> dict:
        """Render the event with the collector's field names, omitting empty parts."""
        data: dict[str, Any] = {
            "event_id": self.event_id,
            "timestamp": self.timestamp.strftime(TIMESTAMP_FORMAT),
            "level": self.level.value,
            "logger": self.logger,
            "message": self.message,
            "project": self.project,
            "platform": self.platform,
            "server_name": self.server_name,
        }
        if self.culprit:
            data["culprit"] = self.culprit
        if self.exception is not None:
            data["exception"] = self.exception.to_dict()
        if self.message_interface is not None:
            data["sentry.interfaces.Message"] = self.message_interface
        if self.tags:
            data["tags"] = self.tags
        if self.extra:
            data["extra"] = self.extra
        if self.request is not None:
            data["request"] = self.request.to_dict()
        if self.user is not None:
            data["user"] = self.user.to_dict()
        return data


def merge_tags(*sources: Mapping | None) -> dict[str, str] | None:
    """Merge tag mappings left to right; later sources win on key collision."""
    merged: dict[str, str] = {}
    for source in sources:
        if source:
            merged.update({str(k): str(v) for k, v in source.items()})
    return merged or None


def _extra_mapping(extra: Any) -> dict[str, Any] | None:
    if extra is None:
        return None
    if isinstance(extra, Mapping):
        return {str(k): v for k, v in extra.items()}
    if hasattr(extra, "__dict__"):
        return dict(vars(extra))
    return {"value": extra}


def _message_parts(message: "str | Message") -> tuple[str, dict | None]:
    if isinstance(message, Message):
        return message.formatted, message.to_interface()
    return str(message), None


def build_exception_event(
    exception: BaseException,
    *,
    project: str,
    message: "str | Message | None" = None,
    level: ErrorLevel = ErrorLevel.ERROR,
    tags: Mapping | None = None,
    extra: Any = None,
    request: RequestContext | None = None,
    user: UserContext | None = None,
) -> Event:
    info = ExceptionInfo.from_exception(exception)
    if message is None:
        text = f"{info.type}: {info.value}" if info.value else info.type
        interface = None
    else:
        text, interface = _message_parts(message)
    return Event(
        message=text,
        level=ErrorLevel(level),
        project=project,
        culprit=info.culprit,
        exception=info,
        message_interface=interface,
        tags=dict(tags) if tags else None,
        extra=_extra_mapping(extra),
        request=request,
        user=user,
    )


def build_message_event(
    message: "str | Message",
    *,
    project: str,
    level: ErrorLevel = ErrorLevel.INFO,
    tags: Mapping | None = None,
    extra: Any = None,
    request: RequestContext | None = None,
    user: UserContext | None = None,
) -> Event:
    text, interface = _message_parts(message)
    return Event(
        message=text,
        level=ErrorLevel(level),
        project=project,
        message_interface=interface,
        tags=dict(tags) if tags else None,
        extra=_extra_mapping(extra),
        request=request,
        user=user,
    )
