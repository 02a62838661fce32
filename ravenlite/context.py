"""Best-effort snapshots of the ambient HTTP request and user.

Every field is fetched as its own step. A step that fails is logged and
leaves its field empty; the remaining fields are still captured.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable

from flask import g, has_request_context, request

logger = logging.getLogger(__name__)

# Server variables with these prefixes repeat the request headers.
DUPLICATE_ENV_PREFIXES = ("HTTP_", "ALL_")


@dataclass(frozen=True)
class StepResult:
    name: str
    value: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_step(name: str, fn: Callable[[], Any]) -> StepResult:
    """Run one extraction step, turning any failure into a StepResult."""
    try:
        return StepResult(name, value=fn())
    except Exception as e:
        logger.debug("Could not capture %s: %s", name, e)
        return StepResult(name, error=e)


@dataclass(frozen=True)
class RequestContext:
    url: str | None = None
    method: str | None = None
    query_string: str | None = None
    headers: dict[str, str] | None = None
    cookies: dict[str, str] | None = None
    env: dict[str, str] | None = None
    data: dict[str, str] | None = None

    def to_dict(self) -> dict:
        fields = {
            "url": self.url,
            "method": self.method,
            "query_string": self.query_string,
            "headers": self.headers,
            "cookies": self.cookies,
            "env": self.env,
            "data": self.data,
        }
        return {k: v for k, v in fields.items() if v is not None}


@dataclass(frozen=True)
class UserContext:
    ip_address: str | None = None
    principal: dict[str, Any] | None = None

    def to_dict(self) -> dict:
        out = dict(self.principal or {})
        if self.ip_address is not None:
            out["ip_address"] = self.ip_address
        return out


class ContextProvider:
    """Read access to the request being served when a capture happens.

    Every accessor may return None or raise; callers treat each one as an
    independent, fallible step.
    """

    def get_url(self) -> str | None:
        return None

    def get_method(self) -> str | None:
        return None

    def get_query_string(self) -> str | None:
        return None

    def get_headers(self) -> Any:
        return None

    def get_cookies(self) -> Any:
        return None

    def get_environment(self) -> Any:
        return None

    def get_form(self) -> Any:
        return None

    def get_ip_address(self) -> str | None:
        return None

    def get_principal(self) -> Any:
        return None


class FlaskContextProvider(ContextProvider):
    """ContextProvider over Flask's request-local ``request`` and ``g``."""

    def get_url(self):
        return request.url

    def get_method(self):
        return request.method

    def get_query_string(self):
        return request.query_string.decode("utf-8", "replace")

    def get_headers(self):
        return request.headers

    def get_cookies(self):
        return request.cookies

    def get_environment(self):
        return request.environ

    def get_form(self):
        return request.form

    def get_ip_address(self):
        return request.remote_addr

    def get_principal(self):
        return g.get("user")


def discover_provider() -> ContextProvider | None:
    """Return a provider for the active Flask request, or None outside one."""
    if has_request_context():
        return FlaskContextProvider()
    return None


def flatten(collection: Any, drop_duplicates: bool = False) -> dict[str, str] | None:
    """Normalize a header/cookie/form/environ collection into ``str -> str``.

    Repeated keys are joined with ", ". A value that cannot be converted is
    replaced by the conversion error text.
    """
    if collection is None:
        return None

    flat: dict[str, str] = {}
    for key, value in _pairs(collection):
        if key is None:
            continue
        key = key if isinstance(key, str) else str(key)
        if drop_duplicates and key.startswith(DUPLICATE_ENV_PREFIXES):
            continue
        text = _to_text(value)
        flat[key] = f"{flat[key]}, {text}" if key in flat else text
    return flat


def _pairs(collection: Any):
    if hasattr(collection, "lists"):
        for key, values in collection.lists():
            for value in values:
                yield key, value
    elif hasattr(collection, "items"):
        yield from collection.items()
    else:
        yield from collection


def _to_text(value: Any) -> str:
    try:
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            return value.decode("utf-8", "replace")
        # Cookie morsels render as "Set-Cookie: ..." via str(); use the raw value.
        if hasattr(value, "value"):
            return str(value.value)
        return str(value)
    except Exception as e:
        return repr(e)


def describe_principal(principal: Any) -> dict[str, Any] | None:
    if principal is None:
        return None
    if isinstance(principal, Mapping):
        return {str(k): v for k, v in principal.items()}

    info: dict[str, Any] = {}
    get_id = getattr(principal, "get_id", None)
    user_id = get_id() if callable(get_id) else getattr(principal, "id", None)
    if user_id is not None:
        info["id"] = str(user_id)
    for attr in ("username", "email"):
        value = getattr(principal, attr, None)
        if value is not None:
            info[attr] = str(value)
    is_authenticated = getattr(principal, "is_authenticated", None)
    if is_authenticated is not None:
        info["is_authenticated"] = bool(is_authenticated)
    if not info:
        info["id"] = str(principal)
    return info


def capture_request(provider: ContextProvider | None) -> RequestContext | None:
    """Snapshot the request exposed by *provider*; None when there is none."""
    if provider is None:
        return None

    steps = {
        "url": run_step("url", provider.get_url),
        "method": run_step("method", provider.get_method),
        "query_string": run_step("query_string", provider.get_query_string),
        "headers": run_step("headers", lambda: flatten(provider.get_headers())),
        "cookies": run_step("cookies", lambda: flatten(provider.get_cookies())),
        "env": run_step(
            "env", lambda: flatten(provider.get_environment(), drop_duplicates=True)
        ),
        "data": run_step("data", lambda: flatten(provider.get_form())),
    }
    values = {name: step.value for name, step in steps.items()}
    if all(value is None for value in values.values()):
        return None
    return RequestContext(**values)


def capture_user(provider: ContextProvider | None) -> UserContext | None:
    """Snapshot the remote address and principal; None when neither is known."""
    if provider is None:
        return None

    ip_address = run_step("ip_address", provider.get_ip_address)
    principal = run_step(
        "principal", lambda: describe_principal(provider.get_principal())
    )
    if ip_address.value is None and principal.value is None:
        return None
    return UserContext(ip_address=ip_address.value, principal=principal.value)
