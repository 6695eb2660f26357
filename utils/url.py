"""URL helpers shared by the site adapters."""

from urllib.parse import urljoin, urlsplit, urlunsplit

_DEFAULT_PORTS = {"http": 80, "https": 443}


def canonical_url(url: str) -> str:
    """Return ``url`` without query or fragment, with a lower-case host.

    Listings are keyed by ``(source, canonical url)``; tracking parameters and
    anchors must not produce a second row for the same page.
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if parts.port and parts.port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{parts.port}"
    return urlunsplit((scheme, host, parts.path or "/", "", ""))


def absolute_url(base: str, href: str) -> str:
    """Resolve a (possibly relative) link from a results page."""
    return canonical_url(urljoin(base, href))
