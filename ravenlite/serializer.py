"""Event serialization and payload scrubbing."""

import json
import re
from typing import Iterable

from ravenlite.events import Event

DEFAULT_SENSITIVE_KEYS = (
    "password",
    "passwd",
    "secret",
    "api_key",
    "token",
    "authorization",
    "cookie",
)
MASK = "********"


class JsonSerializer:
    """Serialize an event to compact UTF-8 JSON."""

    def serialize(self, event: Event) -> bytes:
        return json.dumps(
            event.to_dict(), separators=(",", ":"), default=str
        ).encode("utf-8")


class Scrubber:
    """Redacts sensitive content from a serialized payload before it is sent."""

    def scrub(self, text: str) -> str:
        raise NotImplementedError


class PatternScrubber(Scrubber):
    """Masks the string value of every JSON key containing a sensitive word.

    Matching is case-insensitive and by substring, so "X-Api-Token" and
    "db_password" are both caught by the defaults.
    """

    def __init__(self, keys: Iterable[str] = DEFAULT_SENSITIVE_KEYS, mask: str = MASK):
        words = [re.escape(k) for k in keys if k]
        self._mask = mask
        self._pattern = None
        if words:
            self._pattern = re.compile(
                r'("[^"\\]*(?:' + "|".join(words) + r')[^"\\]*"\s*:\s*)"(?:[^"\\]|\\.)*"',
                re.IGNORECASE,
            )

    def scrub(self, text: str) -> str:
        if self._pattern is None:
            return text
        return self._pattern.sub(lambda m: f'{m.group(1)}"{self._mask}"', text)
