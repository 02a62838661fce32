"""X-Sentry-Auth header construction."""

import time
from typing import Callable

from ravenlite import __version__
from ravenlite.dsn import Dsn

PROTOCOL_VERSION = 4
CLIENT_NAME = "ravenlite"
USER_AGENT = f"{CLIENT_NAME}/{__version__}"
AUTH_HEADER_NAME = "X-Sentry-Auth"


def build_auth_header(dsn: Dsn, clock: Callable[[], float] = time.time) -> str:
    """Return the auth header value for *dsn* signed at ``clock()``.

    Field order is part of the collector's wire contract. Empty keys are
    passed through untouched; rejecting them is the collector's job.
    """
    return (
        f"Sentry sentry_version={PROTOCOL_VERSION}"
        f", sentry_client={USER_AGENT}"
        f", sentry_timestamp={int(clock())}"
        f", sentry_key={dsn.public_key}"
        f", sentry_secret={dsn.private_key}"
    )
