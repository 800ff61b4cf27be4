"""Product URL validation, normalization, and identifier extraction."""

import re
from urllib.parse import urlparse

# Product pages look like https://<host>/<region>/products/<product_id>/<slug>
PRODUCT_PATH_PATTERN = re.compile(r"^/[A-Za-z]{2}(?:-[A-Za-z]{2})?/products/(\d+)(?:/[^/]*)*/?$")
PRODUCTS_SEGMENT_PATTERN = re.compile(r"^/[A-Za-z]{2}(?:-[A-Za-z]{2})?/products/.+")

MAX_PRODUCT_ID_DIGITS = 10


# ---------------------------------------------------------------------------
# URL normalization
# ---------------------------------------------------------------------------


def normalize_url(url: str) -> str:
    """Strip whitespace, query string, fragment, and trailing slashes."""
    url = url.strip()
    return url.split("?", 1)[0].split("#", 1)[0].rstrip("/")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def is_valid_product_url(url: str | None, allowed_host: str = "") -> bool:
    """Check that a URL is an https product page, optionally on a given host."""
    if not url or not url.strip():
        return False
    parsed = urlparse(url.strip())
    if parsed.scheme != "https" or not parsed.netloc:
        return False
    if allowed_host and parsed.netloc.lower() != allowed_host.lower():
        return False
    return bool(PRODUCTS_SEGMENT_PATTERN.match(parsed.path))


def is_valid_product_id(product_id: str | None) -> bool:
    return (
        product_id is not None
        and product_id.isdigit()
        and 1 <= len(product_id) <= MAX_PRODUCT_ID_DIGITS
    )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def extract_product_id(url: str | None) -> str | None:
    """Extract the numeric product ID from a product URL.

    Patterns:
      - example.com/us/products/1739/Some-Name
      - example.com/us/products/1739/Some-Name?ref=homepage
      - example.com/us/products/1739/Some-Name/
    """
    if not url or not url.strip():
        return None
    parsed = urlparse(url.strip())
    if not parsed.netloc:
        return None
    match = PRODUCT_PATH_PATTERN.match(parsed.path)
    if match and is_valid_product_id(match.group(1)):
        return match.group(1)
    return None


def extract_product_name(url: str | None) -> str | None:
    """Turn the last path segment into a display name (hyphens become spaces)."""
    if not url or not url.strip():
        return None
    path = normalize_url(url).rstrip("/")
    slug = path.rsplit("/", 1)[-1]
    name = slug.replace("-", " ").strip()
    return name or None
