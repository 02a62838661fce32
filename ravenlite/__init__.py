"""ravenlite: a small error-reporting client for Sentry-style collectors."""

__version__ = "0.3.0"

from ravenlite.client import RavenClient
from ravenlite.dsn import Dsn, parse_dsn
from ravenlite.errors import (
    CaptureError,
    CaptureTimeout,
    InvalidDsnError,
    RavenError,
    TransportError,
)
from ravenlite.events import ErrorLevel, Message

__all__ = [
    "CaptureError",
    "CaptureTimeout",
    "Dsn",
    "ErrorLevel",
    "InvalidDsnError",
    "Message",
    "RavenClient",
    "RavenError",
    "TransportError",
    "parse_dsn",
]
