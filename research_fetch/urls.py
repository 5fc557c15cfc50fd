"""URL normalization and host matching."""

import re
from collections.abc import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_DOMAIN_PATTERN = re.compile(r"(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}(?:/[^\s]*)?", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Canonical form used for dedup and cache keys."""
    raw = url.strip()
    if "://" not in raw:
        raw = f"https://{raw}"
    parsed = urlsplit(raw)
    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    path = parsed.path or "/"
    if path != "/":
        path = path.rstrip("/") or "/"
    query = urlencode(sorted(parse_qsl(parsed.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, path, query, ""))


def is_valid_url(url: str) -> bool:
    try:
        parsed = urlsplit(url.strip())
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname) and " " not in url.strip()


def host_of(url: str) -> str:
    """Lowercased host without a leading 'www.'."""
    try:
        host = urlsplit(url.strip()).hostname or ""
    except ValueError:
        return ""
    return host.removeprefix("www.")


def matches_domain(host: str, domains: Iterable[str]) -> bool:
    """True when host equals one of the domains or is a subdomain of it."""
    host = host.lower().removeprefix("www.")
    for domain in domains:
        domain = domain.lower().removeprefix("www.")
        if host == domain or host.endswith(f".{domain}"):
            return True
    return False


def is_disallowed_url(url: str, prefixes: Iterable[str]) -> bool:
    """True when host+path starts with one of the prefixes (e.g. 'google.com/search')."""
    host = host_of(url)
    if not host:
        return False
    path = urlsplit(url.strip()).path or "/"
    for prefix in prefixes:
        prefix_host, _, prefix_path = prefix.lower().partition("/")
        if matches_domain(host, [prefix_host]) and path.startswith(f"/{prefix_path}"):
            return True
    return False


def extract_domain(query: str) -> str | None:
    """Pull the literal domain (and path) out of a domain-like or site: query."""
    text = query.strip()
    if text.lower().startswith("site:"):
        text = text[len("site:") :].strip()
    match = _DOMAIN_PATTERN.search(text)
    if match is None:
        return None
    return match.group(0).rstrip(".,;)")
