"""Plain-text snapshot of a live site for inclusion in agent prompts."""

from __future__ import annotations

import logging
import re

import httpx

from .config import settings
from .live_url import normalize_live_url

logger = logging.getLogger(__name__)

USER_AGENT = "MAGI/1.0 (+security audit)"

_SCRIPT_RE = re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style[\s\S]*?>[\s\S]*?</style>", re.IGNORECASE)
_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")


def strip_html(html: str) -> str:
    text = _SCRIPT_RE.sub(" ", html)
    text = _STYLE_RE.sub(" ", text)
    text = _COMMENT_RE.sub(" ", text)
    return _TAG_RE.sub(" ", text)


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


async def build_live_url_context(
    live_url: str,
    max_chars: int | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> str | None:
    """Fetch the page and return a headed text snapshot.

    Returns None only when the URL itself is unusable. Fetch failures and
    non-2xx responses come back as a one-line description so the agents
    still learn what happened.
    """
    normalized = normalize_live_url(live_url)
    if not normalized:
        return None
    limit = max_chars or settings.live_context_max_chars

    try:
        if client is not None:
            return await _snapshot(client, normalized, limit)
        async with httpx.AsyncClient(follow_redirects=True) as owned:
            return await _snapshot(owned, normalized, limit)
    except httpx.HTTPError as exc:
        logger.warning("Live URL %s could not be fetched: %s", normalized, exc)
        message = str(exc) or exc.__class__.__name__
        return f"Live URL {normalized} could not be fetched: {message}"


async def _snapshot(client: httpx.AsyncClient, url: str, max_chars: int) -> str:
    async with client.stream(
        "GET",
        url,
        headers={
            "User-Agent": USER_AGENT,
            "Accept": "text/html, text/plain;q=0.9, */*;q=0.1",
        },
        timeout=settings.live_fetch_timeout,
        follow_redirects=True,
    ) as response:
        if not response.is_success:
            return f"Live URL {url} responded with HTTP {response.status_code}"
        buffer = bytearray()
        async for chunk in response.aiter_bytes():
            buffer.extend(chunk)
            if len(buffer) >= settings.relay_max_response_bytes:
                break
        content_type = response.headers.get("content-type", "")
        status_line = f"Status: {response.status_code} {response.reason_phrase or ''}".strip()

    text = bytes(buffer[: settings.relay_max_response_bytes]).decode("utf-8", errors="replace")
    if "html" in content_type.lower() or _TAG_RE.search(text):
        text = strip_html(text)
    text = collapse_whitespace(text)
    if not text:
        return f"Live URL {url} did not return readable text."
    if len(text) > max_chars:
        text = f"{text[: max(0, max_chars - 1)]}…"

    header_lines = ["Live site snapshot", f"URL: {url}", status_line]
    if content_type:
        header_lines.append(f"Content-Type: {content_type}")
    return "\n".join(header_lines) + "\n\n" + text
