"""Exception hierarchy for the client."""


class RavenError(Exception):
    """Base class for every error raised or reported by ravenlite."""


class InvalidDsnError(RavenError, ValueError):
    """The DSN string could not be parsed into a usable target."""

    def __init__(self, dsn: str | None, reason: str = "Invalid DSN"):
        super().__init__(f"{reason}: {dsn!r}")
        self.dsn = dsn


class CaptureError(RavenError):
    """Something on the capture path failed. Reported, never raised to callers."""


class TransportError(CaptureError):
    """The collector answered with a non-success status."""

    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Collector responded with HTTP {status_code}")
        self.status_code = status_code
        self.body = body


class CaptureTimeout(CaptureError):
    """No response arrived inside the configured wait window."""

    def __init__(self, timeout: float):
        super().__init__(f"No response from collector within {timeout:.2f}s")
        self.timeout = timeout
