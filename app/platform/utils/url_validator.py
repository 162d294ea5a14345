import re
from urllib.parse import urlparse
from typing import Tuple

SCAN_URL_PATTERN = re.compile(r"^https?://.*")
MAX_URL_LENGTH = 2048


def validate_url(url: str) -> Tuple[bool, str]:
    """
    Check a URL submitted for scanning.

    The URL is kept exactly as given (no normalization) because dedup and
    cache lookups match on the literal string.
    Returns (is_valid, error_message).
    """
    if not url or not url.strip():
        return False, "URL is required"

    if len(url) > MAX_URL_LENGTH:
        return False, f"URL must be at most {MAX_URL_LENGTH} characters"

    if not SCAN_URL_PATTERN.match(url):
        return False, "URL must start with http:// or https://"

    try:
        parsed = urlparse(url)
    except ValueError as e:
        return False, f"URL parsing error: {str(e)}"

    if not parsed.netloc:
        return False, "Invalid URL format: missing domain"

    return True, ""
