from __future__ import annotations

import pytest

from core.services.url_service import (
    get_extension_from_url,
    get_hostname,
    get_pathname,
    is_blob_url,
    is_data_url,
    is_image_url,
    normalize_format,
    parse_url,
)


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://x.com/a/b.PNG?x=1", ".png"),
        ("https://x.com/render?format=webp", ".webp"),
        ("https://x.com/render?f=jpeg", ".jpg"),
        ("https://x.com/render?type=avif&f=png", ".png"),
        ("data:image/gif;base64,R0lG", ".gif"),
        ("data:image/;base64,", ".png"),
        ("https://x.com/noext", ""),
        ("", ""),
    ],
)
def test_get_extension_from_url(url, expected):
    assert get_extension_from_url(url) == expected


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://x.com/a.png", True),
        ("data:image/png;base64,AAAA", True),
        ("https://x.com/img/123.html", True),
        ("https://x.com/abc", True),
        ("https://x.com/page.html", False),
        ("", False),
    ],
)
def test_is_image_url(url, expected):
    assert is_image_url(url) is expected


def test_hostname_and_pathname():
    assert get_hostname("https://Sub.Example.com/x/y.png") == "sub.example.com"
    assert get_pathname("https://example.com/x/y.png") == "/x/y.png"
    assert get_hostname("not a url") == ""
    assert get_pathname("not a url") == ""


def test_parse_url_rejects_hostless_http():
    assert parse_url("http:///path") is None
    assert parse_url("relative/path.png") is None
    assert parse_url("file:///tmp/a.png") is not None


def test_scheme_checks():
    assert is_data_url("data:text/plain,hi")
    assert not is_data_url(None)
    assert is_blob_url("blob:https://x.com/uuid")
    assert not is_blob_url("https://x.com")


def test_normalize_format():
    assert normalize_format("JPEG") == "jpg"
    assert normalize_format("PNG") == "png"
