import json

import httpx
import pytest

from magi.http_relay import (
    HttpRelay,
    LiveHttpRequest,
    RelayError,
    RelayToolSession,
    parse_tool_arguments,
    sanitize_headers,
    validate_request,
)


def test_parse_tool_arguments() -> None:
    assert parse_tool_arguments('{"url": "https://a.com"}') == {"url": "https://a.com"}
    assert parse_tool_arguments({"url": "x"}) == {"url": "x"}
    assert parse_tool_arguments("{broken") == {}
    assert parse_tool_arguments("[1]") == {}
    assert parse_tool_arguments(None) == {}


def test_sanitize_headers_drops_host_and_length() -> None:
    assert sanitize_headers({"Host": "evil", "Content-Length": "3", "Accept": "text/html", "X-N": 1}) == {
        "Accept": "text/html"
    }


@pytest.mark.parametrize(
    ("url", "message"),
    [
        ("", "Invalid or unsupported URL"),
        ("ftp://example.com", "Invalid or unsupported URL"),
        ("https://example.com:8080/", "Only ports 80 and 443 are allowed"),
        ("http://localhost/", "Local hostnames are not allowed"),
        ("http://printer.local/", "Local hostnames are not allowed"),
        ("http://10.0.0.5/", "Private network addresses are blocked"),
        ("http://127.0.0.1/", "Private network addresses are blocked"),
        ("http://169.254.169.254/latest", "Private network addresses are blocked"),
        ("http://[::1]/", "Private network addresses are blocked"),
    ],
)
def test_validate_request_guard_rails(url: str, message: str) -> None:
    with pytest.raises(RelayError, match=message):
        validate_request(LiveHttpRequest(url=url), max_body_bytes=1024)


def test_validate_request_method_and_body() -> None:
    with pytest.raises(RelayError, match="method not allowed"):
        validate_request(LiveHttpRequest(url="https://example.com", method="TRACE"), max_body_bytes=10)
    with pytest.raises(RelayError, match="too large"):
        validate_request(
            LiveHttpRequest(url="https://example.com", method="POST", body="x" * 11), max_body_bytes=10
        )
    assert validate_request(LiveHttpRequest(url="example.com/a", method="post"), max_body_bytes=10) == (
        "https://example.com/a",
        "POST",
    )


@pytest.mark.asyncio
async def test_relay_truncates_large_bodies() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["host"] == "example.com"
        return httpx.Response(200, content=b"a" * 5000, headers={"content-type": "text/plain"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        relay = HttpRelay(client=client, max_response_bytes=1000)
        response = await relay.request(
            LiveHttpRequest(url="https://example.com/big", headers={"Host": "evil"})
        )

    assert response.status == 200
    assert response.truncated is True
    assert response.bytes == 1000
    assert response.body_preview == "a" * 1000
    assert response.headers["content-type"] == "text/plain"


@pytest.mark.asyncio
async def test_tool_session_caps_calls() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        session = RelayToolSession(HttpRelay(client=client), max_calls=2)
        results = [await session.execute({"url": "https://example.com"}) for _ in range(3)]

    assert [r["ok"] for r in results] == [True, True, False]
    assert "Tool call limit reached (2 per conversation)" in results[2]["error"]
    assert session.calls_executed == 2


@pytest.mark.asyncio
async def test_tool_session_reports_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        session = RelayToolSession(HttpRelay(client=client))
        result = await session.execute({"url": "https://example.com"})

    assert result == {"ok": False, "error": "connection refused"}
    assert json.loads(RelayToolSession.serialize(result)) == result


def test_validate_request_rejects_non_ascii_headers() -> None:
    with pytest.raises(RelayError, match="must be ASCII"):
        validate_request(
            LiveHttpRequest(url="https://example.com", headers={"X-Note": "café ✓"}), max_body_bytes=10
        )
    with pytest.raises(RelayError, match="must be ASCII"):
        validate_request(LiveHttpRequest(url="https://example.com", headers={"X-Ñ": "1"}), max_body_bytes=10)


@pytest.mark.asyncio
async def test_tool_session_returns_error_for_non_ascii_headers() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, text="ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        session = RelayToolSession(HttpRelay(client=client))
        result = await session.execute({"url": "https://example.com/", "headers": {"X-Note": "café ✓"}})

    assert result == {"ok": False, "error": "Header names and values must be ASCII"}
    assert requests == []
    assert session.calls_executed == 1
