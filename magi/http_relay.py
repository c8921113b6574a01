"""
Sandboxed outbound HTTP tool exposed to agents during proposal generation.
"""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Any
from urllib.parse import urlsplit

import httpx

from .config import settings
from .live_url import normalize_live_url

logger = logging.getLogger(__name__)

TOOL_NAME = "http_request"
TOOL_DESCRIPTION = (
    "Perform an HTTP request against the live site under audit and return the status, "
    "headers and a preview of the body. Only public http(s) hosts on ports 80/443 are allowed."
)
ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")
TOOL_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "description": "Absolute URL to request."},
        "method": {"type": "string", "enum": list(ALLOWED_METHODS)},
        "headers": {
            "type": "object",
            "additionalProperties": {"type": "string"},
            "description": "Optional request headers.",
        },
        "body": {"type": "string", "description": "Optional raw request body."},
    },
    "required": ["url"],
}

_FORBIDDEN_HEADERS = {"host", "content-length"}


class RelayError(ValueError):
    """Request rejected by the relay's guard rails."""


@dataclass
class LiveHttpRequest:
    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: str | None = None

    @classmethod
    def from_arguments(cls, arguments: dict[str, Any]) -> "LiveHttpRequest":
        headers = arguments.get("headers")
        body = arguments.get("body")
        return cls(
            url=str(arguments.get("url") or ""),
            method=str(arguments.get("method") or "GET"),
            headers=headers if isinstance(headers, dict) else {},
            body=body if isinstance(body, str) else None,
        )


@dataclass
class LiveHttpResponse:
    url: str
    status: int
    status_text: str
    headers: dict[str, str]
    body_preview: str
    truncated: bool
    bytes: int


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Decode model-supplied tool arguments; anything unusable becomes {}."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def sanitize_headers(headers: dict[str, Any] | None) -> dict[str, str]:
    if not headers:
        return {}
    return {
        key: value
        for key, value in headers.items()
        if key and key.lower() not in _FORBIDDEN_HEADERS and isinstance(value, str)
    }


def _is_blocked_address(hostname: str) -> bool:
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return address.is_private or address.is_loopback or address.is_link_local


def validate_request(request: LiveHttpRequest, *, max_body_bytes: int) -> tuple[str, str]:
    """Apply the guard rails; return the normalized URL and upper-cased method."""
    normalized = normalize_live_url(request.url)
    if not normalized:
        raise RelayError("Invalid or unsupported URL")
    parts = urlsplit(normalized)
    if parts.port is not None and parts.port not in (80, 443):
        raise RelayError("Only ports 80 and 443 are allowed")

    hostname = (parts.hostname or "").lower()
    if hostname == "localhost" or hostname.endswith(".local"):
        raise RelayError("Local hostnames are not allowed")
    if _is_blocked_address(hostname):
        raise RelayError("Private network addresses are blocked")

    method = (request.method or "GET").upper()
    if method not in ALLOWED_METHODS:
        raise RelayError("HTTP method not allowed")

    for key, value in request.headers.items():
        if not str(key).isascii() or (isinstance(value, str) and not value.isascii()):
            raise RelayError("Header names and values must be ASCII")

    if request.body and len(request.body.encode("utf-8")) > max_body_bytes:
        raise RelayError("Request body too large")
    return normalized, method


class HttpRelay:
    """Performs guarded HTTP requests with a timeout and a response-size cap."""

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float | None = None,
        max_response_bytes: int | None = None,
        max_body_bytes: int | None = None,
    ) -> None:
        self._client = client
        self._timeout = timeout_seconds or settings.relay_timeout
        self._max_response_bytes = max_response_bytes or settings.relay_max_response_bytes
        self._max_body_bytes = max_body_bytes or settings.relay_max_request_bytes

    async def request(self, request: LiveHttpRequest) -> LiveHttpResponse:
        url, method = validate_request(request, max_body_bytes=self._max_body_bytes)
        headers = sanitize_headers(request.headers)
        content = request.body.encode("utf-8") if request.body else None

        if self._client is not None:
            return await self._send(self._client, method, url, headers, content)
        async with httpx.AsyncClient(follow_redirects=True) as client:
            return await self._send(client, method, url, headers, content)

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        headers: dict[str, str],
        content: bytes | None,
    ) -> LiveHttpResponse:
        async with client.stream(
            method,
            url,
            headers=headers,
            content=content,
            timeout=self._timeout,
            follow_redirects=True,
        ) as response:
            buffer = bytearray()
            truncated = False
            async for chunk in response.aiter_bytes():
                remaining = self._max_response_bytes - len(buffer)
                if len(chunk) > remaining:
                    buffer.extend(chunk[: max(remaining, 0)])
                    truncated = True
                    break
                buffer.extend(chunk)
            return LiveHttpResponse(
                url=str(response.url) or url,
                status=response.status_code,
                status_text=response.reason_phrase or "",
                headers=dict(response.headers),
                body_preview=bytes(buffer).decode("utf-8", errors="replace"),
                truncated=truncated,
                bytes=len(buffer),
            )


class RelayToolSession:
    """Per-conversation tool budget; calls past the cap get a synthetic error."""

    def __init__(self, relay: HttpRelay, *, max_calls: int | None = None) -> None:
        self._relay = relay
        self.max_calls = max_calls if max_calls is not None else settings.max_tool_calls
        self._calls_requested = 0
        self.calls_executed = 0

    async def execute(self, arguments: dict[str, Any]) -> dict[str, Any]:
        self._calls_requested += 1
        if self._calls_requested > self.max_calls:
            logger.info("Tool call %s rejected: cap of %s reached", self._calls_requested, self.max_calls)
            return {
                "ok": False,
                "error": (
                    f"Tool call limit reached ({self.max_calls} per conversation). "
                    "Answer with the information gathered so far."
                ),
            }

        self.calls_executed += 1
        try:
            response = await self._relay.request(LiveHttpRequest.from_arguments(arguments))
        except RelayError as exc:
            return {"ok": False, "error": str(exc)}
        except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as exc:
            logger.info("Relay request failed: %s", exc)
            return {"ok": False, "error": str(exc) or exc.__class__.__name__}
        return {"ok": True, "response": asdict(response)}

    @staticmethod
    def serialize(result: dict[str, Any]) -> str:
        return json.dumps(result, indent=2)
