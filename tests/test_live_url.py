import pytest

from magi.live_url import normalize_live_url


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("example.com", "https://example.com/"),
        ("  http://Example.com/login?next=/a#frag ", "http://Example.com/login?next=/a"),
        ("HTTPS://example.com:8443/x", "https://example.com:8443/x"),
        ("ftp://example.com", None),
        ("javascript://alert(1)", None),
        ("https://", None),
        ("https://example.com:notaport/", None),
        ("", None),
        ("   ", None),
        (None, None),
    ],
)
def test_normalize_live_url(raw: str | None, expected: str | None) -> None:
    assert normalize_live_url(raw) == expected
