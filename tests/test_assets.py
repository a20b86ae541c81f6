import pytest

from vouchbot.services.assets import validate_thumbnail_url


@pytest.mark.parametrize(
    "url",
    [
        "https://example.com/koala.png",
        "http://cdn.example.com/a/b/koala.JPG",
        "https://example.com/anim.gif?size=large",
        "  https://example.com/koala.webp  ",
    ],
)
def test_accepts_image_urls(url):
    assert validate_thumbnail_url(url) == url.strip()


@pytest.mark.parametrize(
    "url",
    [
        None,
        "",
        "not a url",
        "ftp://example.com/koala.png",
        "https://example.com/page.html",
        "https://example.com/",
        "/relative/koala.png",
        "https://example.com/koala.png.exe",
    ],
)
def test_rejects_everything_else(url):
    assert validate_thumbnail_url(url) is None
