import pytest

from app.platform.utils.url_validator import MAX_URL_LENGTH, validate_url


@pytest.mark.parametrize(
    "url",
    ["http://example.com", "https://example.com/path?q=1#frag", "https://sub.example.co.uk:8443/"],
)
def test_valid_urls(url):
    assert validate_url(url) == (True, "")


@pytest.mark.parametrize(
    "url,error",
    [
        ("", "URL is required"),
        ("   ", "URL is required"),
        ("example.com", "URL must start with http:// or https://"),
        ("mailto:someone@example.com", "URL must start with http:// or https://"),
        ("https://", "Invalid URL format: missing domain"),
    ],
)
def test_invalid_urls(url, error):
    assert validate_url(url) == (False, error)


def test_length_limit():
    base = "https://example.com/"
    assert validate_url(base + "a" * (MAX_URL_LENGTH - len(base)))[0] is True
    assert validate_url(base + "a" * (MAX_URL_LENGTH - len(base) + 1))[0] is False
