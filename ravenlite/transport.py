"""Non-blocking delivery of serialized events to the collector.

Network I/O runs on a background asyncio loop owned by the pipeline, through
one httpx.AsyncClient that is built lazily on that loop and shared by every
send. The calling thread only waits on the Transmission's own ``done``
event until its deadline, so a slow or dead collector costs the caller at
most ``timeout`` seconds.

A Transmission that times out is abandoned, not torn down: its request keeps
running on the loop until httpx's own timeout ends it, and whatever it
produces is written into the abandoned Transmission and dropped. That leak
is bounded by the transport timeout and is accepted in exchange for never
blocking the caller.
"""

import asyncio
import concurrent.futures
import gzip
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable

import httpx

from ravenlite.auth import AUTH_HEADER_NAME, USER_AGENT, build_auth_header
from ravenlite.dsn import Dsn
from ravenlite.errors import CaptureError, CaptureTimeout, TransportError
from ravenlite.events import Event
from ravenlite.serializer import JsonSerializer, Scrubber

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 5.0


class TransmissionState(Enum):
    CREATED = "created"
    AWAITING_STREAM_OPEN = "awaiting_stream_open"
    AWAITING_RESPONSE = "awaiting_response"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({
    TransmissionState.SUCCEEDED,
    TransmissionState.FAILED,
    TransmissionState.TIMED_OUT,
})


@dataclass
class Transmission:
    """One send attempt. Created per call and never reused."""

    target_url: str
    body: bytes
    headers: dict[str, str]
    deadline: float
    state: TransmissionState = TransmissionState.CREATED
    status_code: int | None = None
    response_data: str | None = None
    error: Exception | None = None
    done: threading.Event = field(default_factory=threading.Event)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def advance(self, state: TransmissionState) -> bool:
        """Move to a non-terminal state unless the transmission already finished."""
        with self._lock:
            if self.state in TERMINAL_STATES:
                return False
            self.state = state
            return True

    def finish(
        self,
        state: TransmissionState,
        status_code: int | None = None,
        response_data: str | None = None,
        error: Exception | None = None,
    ) -> bool:
        """Record the outcome. Only the first terminal outcome sticks."""
        with self._lock:
            if self.state in TERMINAL_STATES:
                return False
            self.state = state
            self.status_code = status_code
            self.response_data = response_data
            self.error = error
            return True


class LoopThread:
    """An asyncio event loop running on a daemon thread."""

    def __init__(self, name: str = "ravenlite-transport"):
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> asyncio.AbstractEventLoop:
        """Start the loop if needed and return it."""
        with self._lock:
            if self.running:
                return self._loop

            loop = asyncio.new_event_loop()
            ready = threading.Event()
            thread = threading.Thread(
                target=self._run, args=(loop, ready), name=self._name, daemon=True
            )
            thread.start()
            ready.wait()
            self._loop = loop
            self._thread = thread
            return loop

    def submit(self, coro) -> concurrent.futures.Future:
        loop = self.start()
        return asyncio.run_coroutine_threadsafe(coro, loop)

    def stop(self, timeout: float = 2.0):
        with self._lock:
            if not self.running:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=timeout)
            self._thread = None
            self._loop = None

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop, ready: threading.Event):
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def as_seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class DeliveryPipeline:
    """Serializes, signs and posts events; returns the collector's event id or ""."""

    def __init__(
        self,
        timeout: float | timedelta = DEFAULT_TIMEOUT,
        compression: bool = False,
        scrubber: Scrubber | None = None,
        serializer=None,
        error_handler: Callable[[Exception], None] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.timeout = as_seconds(timeout)
        self.compression = compression
        self.scrubber = scrubber
        self.serializer = serializer or JsonSerializer()
        self.error_handler = error_handler
        self._clock = clock
        self._loop = LoopThread()
        self._client: httpx.AsyncClient | None = None

    def send(self, event: Event, dsn: Dsn) -> str:
        """Deliver *event*. Never raises; any failure yields ""."""
        try:
            transmission = self.prepare(event, dsn)
            future = self._loop.submit(self._transmit(transmission))
        except Exception as e:
            self.report(e)
            return ""

        future.add_done_callback(
            lambda f: self._on_complete(transmission, f)
        )

        remaining = max(0.0, transmission.deadline - time.monotonic())
        if not transmission.done.wait(remaining):
            if transmission.finish(
                TransmissionState.TIMED_OUT, error=CaptureTimeout(self.timeout)
            ):
                future.cancel()
                logger.debug("Abandoned transmission to %s after %.2fs",
                             transmission.target_url, self.timeout)

        if transmission.state is not TransmissionState.SUCCEEDED:
            self.report(transmission.error or CaptureError("Event was not delivered"))
            return ""
        return self._decode_id(transmission.response_data)

    def prepare(self, event: Event, dsn: Dsn) -> Transmission:
        """Serialize, scrub and optionally compress *event* into a Transmission."""
        payload = self.serializer.serialize(event)
        if self.scrubber is not None:
            payload = self.scrubber.scrub(payload.decode("utf-8")).encode("utf-8")

        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json; charset=utf-8",
            "User-Agent": USER_AGENT,
            AUTH_HEADER_NAME: build_auth_header(dsn, self._clock),
        }
        if self.compression:
            payload = gzip.compress(payload)
            headers["Content-Encoding"] = "gzip"

        return Transmission(
            target_url=dsn.collector_uri,
            body=payload,
            headers=headers,
            deadline=time.monotonic() + self.timeout,
        )

    async def _transmit(self, transmission: Transmission) -> tuple[int, str]:
        transmission.advance(TransmissionState.AWAITING_STREAM_OPEN)
        client = self._http_client()
        request = client.build_request(
            "POST",
            transmission.target_url,
            content=transmission.body,
            headers=transmission.headers,
            timeout=httpx.Timeout(max(self.timeout, 0.1)),
        )
        transmission.advance(TransmissionState.AWAITING_RESPONSE)
        response = await client.send(request)
        return response.status_code, response.text

    def _http_client(self) -> httpx.AsyncClient:
        """The pipeline's shared client, built on first use on the loop thread."""
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    @staticmethod
    def _on_complete(transmission: Transmission, future: concurrent.futures.Future):
        try:
            if future.cancelled():
                transmission.finish(
                    TransmissionState.FAILED, error=CaptureError("Transmission cancelled")
                )
            elif future.exception() is not None:
                transmission.finish(TransmissionState.FAILED, error=future.exception())
            else:
                status_code, text = future.result()
                if 200 <= status_code < 300:
                    transmission.finish(
                        TransmissionState.SUCCEEDED,
                        status_code=status_code,
                        response_data=text,
                    )
                else:
                    transmission.finish(
                        TransmissionState.FAILED,
                        status_code=status_code,
                        response_data=text,
                        error=TransportError(status_code, text),
                    )
        finally:
            transmission.done.set()

    def _decode_id(self, text: str | None) -> str:
        try:
            payload = json.loads(text or "")
        except ValueError as e:
            self.report(CaptureError(f"Could not decode collector response: {e}"))
            return ""
        if not isinstance(payload, dict) or payload.get("id") is None:
            self.report(CaptureError(f"Collector response has no id: {text[:200]}"))
            return ""
        return str(payload["id"])

    def report(self, error: Exception):
        """Hand *error* to the error handler, or log it when none is set."""
        if self.error_handler is not None:
            try:
                self.error_handler(error)
            except Exception:
                logger.exception("error_on_capture hook raised")
            return

        logger.error("Failed to capture event: %s", error)
        if isinstance(error, TransportError) and error.body:
            logger.error("Collector response body: %s", error.body[:1000])

    def close(self):
        client, self._client = self._client, None
        if client is not None and self._loop.running:
            try:
                self._loop.submit(client.aclose()).result(timeout=2.0)
            except Exception as e:
                logger.debug("Closing HTTP client failed: %s", e)
        self._loop.stop()
