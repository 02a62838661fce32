"""Public capture API."""

import logging
from datetime import timedelta
from typing import Any, Callable, Mapping

from ravenlite.context import (
    ContextProvider,
    capture_request,
    capture_user,
    discover_provider,
)
from ravenlite.dsn import Dsn, parse_dsn
from ravenlite.errors import InvalidDsnError
from ravenlite.events import (
    ErrorLevel,
    Event,
    Message,
    build_exception_event,
    build_message_event,
    merge_tags,
)
from ravenlite.serializer import PatternScrubber, Scrubber
from ravenlite.transport import DeliveryPipeline, as_seconds

logger = logging.getLogger(__name__)


class RavenClient:
    """Captures exceptions and messages and sends them to the DSN's collector.

    Only construction can raise (InvalidDsnError). Capture calls return the
    collector's event id, or "" when anything on the way failed; failures
    go to ``error_on_capture`` when set and to the log otherwise.

    ``default_tags`` is read during every capture. Replace or mutate it
    between captures, not concurrently with them.
    """

    def __init__(
        self,
        dsn: "str | Dsn",
        serializer=None,
        context_provider: ContextProvider | None = None,
        pipeline: DeliveryPipeline | None = None,
    ):
        if dsn is None:
            raise InvalidDsnError(dsn, "DSN is required")
        self._dsn = dsn if isinstance(dsn, Dsn) else parse_dsn(dsn)
        self._context_provider = context_provider
        self._pipeline = pipeline or DeliveryPipeline(serializer=serializer)

        self.default_tags: dict[str, str] | None = None
        self.logger = "root"

    @classmethod
    def from_config(cls, config) -> "RavenClient":
        client = cls(config.dsn)
        client.timeout = config.timeout
        client.logger = config.logger
        client.compression = config.compression
        client.default_tags = dict(config.default_tags) or None
        if config.scrub_patterns:
            client.log_scrubber = PatternScrubber(config.scrub_patterns)
        return client

    @property
    def dsn(self) -> Dsn:
        return self._dsn

    @property
    def timeout(self) -> float:
        return self._pipeline.timeout

    @timeout.setter
    def timeout(self, value: "float | timedelta"):
        self._pipeline.timeout = as_seconds(value)

    @property
    def compression(self) -> bool:
        return self._pipeline.compression

    @compression.setter
    def compression(self, value: bool):
        self._pipeline.compression = bool(value)

    @property
    def log_scrubber(self) -> Scrubber | None:
        return self._pipeline.scrubber

    @log_scrubber.setter
    def log_scrubber(self, value: Scrubber | None):
        self._pipeline.scrubber = value

    @property
    def error_on_capture(self) -> Callable[[Exception], None] | None:
        return self._pipeline.error_handler

    @error_on_capture.setter
    def error_on_capture(self, value: Callable[[Exception], None] | None):
        self._pipeline.error_handler = value

    def capture_exception(
        self,
        exception: BaseException,
        message: "str | Message | None" = None,
        level: ErrorLevel = ErrorLevel.ERROR,
        tags: Mapping[str, str] | None = None,
        extra: Any = None,
    ) -> str:
        """Capture *exception*; *message* replaces the exception's own text."""
        try:
            provider = self._provider()
            event = build_exception_event(
                exception,
                project=self._dsn.project_id,
                message=message,
                level=level,
                tags=merge_tags(self.default_tags, tags),
                extra=extra,
                request=capture_request(provider),
                user=capture_user(provider),
            )
            return self._send(event)
        except Exception as e:
            self._pipeline.report(e)
            return ""

    def capture_message(
        self,
        message: "str | Message",
        level: ErrorLevel = ErrorLevel.INFO,
        tags: Mapping[str, str] | None = None,
        extra: Any = None,
    ) -> str:
        try:
            provider = self._provider()
            event = build_message_event(
                message,
                project=self._dsn.project_id,
                level=level,
                tags=merge_tags(self.default_tags, tags),
                extra=extra,
                request=capture_request(provider),
                user=capture_user(provider),
            )
            return self._send(event)
        except Exception as e:
            self._pipeline.report(e)
            return ""

    def _provider(self) -> ContextProvider | None:
        if self._context_provider is not None:
            return self._context_provider
        return discover_provider()

    def _send(self, event: Event) -> str:
        event = event.with_logger(self.logger)
        event_id = self._pipeline.send(event, self._dsn)
        if event_id:
            logger.debug("Captured event %s (level=%s)", event_id, event.level.value)
        return event_id

    def close(self):
        self._pipeline.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
