"""Classification of search target strings."""

from collections.abc import Iterable

from research_fetch.models import SearchTarget, TargetKind
from research_fetch.urls import normalize_url

RECOGNIZED_TLDS = (".com", ".org", ".net", ".edu", ".gov")


def _tlds(country_codes: Iterable[str]) -> tuple[str, ...]:
    extra = tuple(f".{code.strip().lstrip('.').lower()}" for code in country_codes if code.strip())
    return RECOGNIZED_TLDS + extra


def classify(text: str, country_codes: Iterable[str] = ()) -> TargetKind:
    """Decide how a target string should be resolved.

    Rules apply in order: http(s) prefix, ``site:`` prefix, domain-like
    (recognized TLD and no whitespace), otherwise free text. Pure; no I/O.
    """
    value = text.strip()
    lowered = value.lower()
    if lowered.startswith(("http://", "https://")):
        return TargetKind.DIRECT_URL
    if lowered.startswith("site:"):
        return TargetKind.SITE_QUERY
    if not any(ch.isspace() for ch in value) and any(tld in lowered for tld in _tlds(country_codes)):
        return TargetKind.DOMAIN
    return TargetKind.FREE_TEXT


def classify_target(text: str, country_codes: Iterable[str] = ()) -> SearchTarget:
    return SearchTarget(text=text.strip(), kind=classify(text, country_codes))


def target_to_url(target: SearchTarget) -> str | None:
    """Direct URL for targets that need no search; None for queries."""
    if target.kind in (TargetKind.DIRECT_URL, TargetKind.DOMAIN):
        return normalize_url(target.text)
    return None
