import httpx
import pytest

from magi.live_context import build_live_url_context, collapse_whitespace, strip_html

PAGE = b"""<html><head><title>Shop</title><style>body{color:red}</style>
<script>var secret = 1;</script></head>
<body><!-- hidden --><h1>Welcome</h1>
<form action="/login"><input name="user"></form></body></html>"""


def test_strip_html_removes_scripts_styles_comments() -> None:
    text = collapse_whitespace(strip_html(PAGE.decode()))
    assert text == "Shop Welcome"


@pytest.mark.asyncio
async def test_snapshot_has_header_and_text() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=PAGE, headers={"content-type": "text/html; charset=utf-8"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        text = await build_live_url_context("shop.example.com", client=client)

    assert seen[0].headers["user-agent"] == "MAGI/1.0 (+security audit)"
    assert text == (
        "Live site snapshot\n"
        "URL: https://shop.example.com/\n"
        "Status: 200 OK\n"
        "Content-Type: text/html; charset=utf-8\n\n"
        "Shop Welcome"
    )


@pytest.mark.asyncio
async def test_snapshot_is_trimmed_with_ellipsis() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="word " * 100, headers={"content-type": "text/plain"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        text = await build_live_url_context("https://example.com", max_chars=20, client=client)

    body = text.split("\n\n", 1)[1]
    assert len(body) == 20
    assert body.endswith("…")


@pytest.mark.asyncio
async def test_non_2xx_and_transport_errors_are_described() -> None:
    def not_found(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(not_found)) as client:
        assert (
            await build_live_url_context("https://example.com/x", client=client)
            == "Live URL https://example.com/x responded with HTTP 404"
        )
    async with httpx.AsyncClient(transport=httpx.MockTransport(refused)) as client:
        assert (
            await build_live_url_context("https://example.com/", client=client)
            == "Live URL https://example.com/ could not be fetched: refused"
        )


@pytest.mark.asyncio
async def test_empty_body_and_invalid_url() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<div>   </div>", headers={"content-type": "text/html"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert (
            await build_live_url_context("https://example.com/", client=client)
            == "Live URL https://example.com/ did not return readable text."
        )
    assert await build_live_url_context("ftp://example.com") is None
