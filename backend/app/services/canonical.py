"""Image URL resolution and canonical join keys."""

from urllib.parse import urljoin, urlparse, urlunparse

_ALLOWED_SCHEMES = ("http", "https")


def resolve_url(ref: str | None, base: str) -> str | None:
    """Resolve a (possibly relative) reference against ``base``.

    Returns the absolute http(s) URL with any fragment removed, or None when
    the reference is empty, malformed, or uses another scheme (data:,
    javascript:, mailto:, ...). Never raises.
    """
    if not ref or not isinstance(ref, str):
        return None
    ref = ref.strip()
    if not ref:
        return None

    try:
        absolute = urljoin(base, ref)
        parsed = urlparse(absolute)
        # .port raises ValueError on garbage like "http://host:abc/"
        parsed.port
    except ValueError:
        return None

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES or not parsed.hostname:
        return None
    if any(c.isspace() for c in parsed.netloc):
        return None

    return urlunparse(parsed._replace(fragment=""))


def canonical_key(url: str) -> str:
    """Drop query string and fragment. Used as a join/comparison key, never fetched."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url.split("?", 1)[0].split("#", 1)[0]
    return urlunparse(parsed._replace(query="", fragment=""))


def file_name(url: str) -> str:
    """Last path segment of a URL, lowercased ("" when there is none)."""
    try:
        path = urlparse(url).path
    except ValueError:
        return ""
    return path.rsplit("/", 1)[-1].lower()


def file_extension(url: str) -> str:
    """Lowercased extension of the URL's file name without the dot."""
    name = file_name(url)
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1]
