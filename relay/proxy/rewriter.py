"""
Manifest rewriting for the relay.

Removes advertisement DATERANGE markers from HLS manifests and rewrites every
content reference into a relay-local ``/fetch?u=`` callback so nested
manifests and segments are also fetched through the relay.
"""

import re
from typing import Iterable, List
from urllib.parse import urljoin, urlsplit, quote

from ..core.errors import ResolutionError
from ..models.schemas import RewriteResult

AD_MARKER_PREFIX = "#EXT-X-DATERANGE"
AD_INDICATORS = ("stitched-ad", "twitchad")

MANIFEST_CONTENT_TYPES = (
    "application/vnd.apple.mpegurl",
    "application/x-mpegurl",
    "audio/mpegurl",
    "audio/x-mpegurl",
)

# Any URL-shaped token; only used by the top-level pass. Stops at quotes so
# quoted attribute values keep their closing quote.
URL_TOKEN_RE = re.compile(r"https?://[^\s\"']+")


def is_ad_marker(line: str) -> bool:
    """True for a DATERANGE directive whose payload names an inserted ad."""
    if not line.startswith(AD_MARKER_PREFIX):
        return False
    lowered = line.lower()
    return any(indicator in lowered for indicator in AD_INDICATORS)


def strip_ad_markers(lines: Iterable[str]) -> List[str]:
    return [line for line in lines if not is_ad_marker(line)]


def is_manifest_content_type(content_type: str) -> bool:
    lowered = (content_type or "").lower()
    return any(ct in lowered for ct in MANIFEST_CONTENT_TYPES)


def resolve_reference(reference: str, base_url: str) -> str:
    """
    Resolve a manifest reference against the URL the manifest was fetched from.

    Raises:
        ResolutionError: if the result is not an absolute http(s) URL
    """
    try:
        resolved = urljoin(base_url, reference)
        parts = urlsplit(resolved)
    except ValueError as e:
        raise ResolutionError(f"cannot resolve {reference!r}: {e}") from e

    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ResolutionError(f"cannot resolve {reference!r} against {base_url!r}")
    return resolved


def relay_url(relay_base: str, absolute_url: str) -> str:
    return f"{relay_base.rstrip('/')}/fetch?u={quote(absolute_url, safe='')}"


def rewrite_manifest(text: str, fetch_url: str, relay_base: str, top_level: bool = False) -> RewriteResult:
    """
    Strip ad markers and point every reference back at the relay.

    The top-level pass rewrites any URL-shaped token on any line, including
    URI attributes inside directives. The nested pass rewrites only bare
    reference lines and leaves directives untouched, so an
    ``#EXT-X-MAP:URI=`` in a media playlist is not proxied. That gap is
    probably a latent bug, but clients depend on the current output; do not
    extend either pass without changing both.

    Args:
        text: Manifest body as fetched
        fetch_url: URL the manifest was fetched from, used as the resolution base
        relay_base: Scheme and host of this relay, e.g. ``http://localhost:3000``
        top_level: True for the master manifest fetched via /playlist

    Returns:
        RewriteResult with the rewritten text and counters
    """
    if not text:
        return RewriteResult(text="")

    lines = text.split("\n")
    kept = strip_ad_markers(lines)
    result = RewriteResult(text="", ads_removed=len(lines) - len(kept))

    def _proxied(match: re.Match) -> str:
        result.references_rewritten += 1
        return relay_url(relay_base, match.group(0))

    out = []
    for line in kept:
        if line.startswith("#"):
            out.append(URL_TOKEN_RE.sub(_proxied, line) if top_level else line)
            continue

        reference = line.strip()
        if not reference:
            out.append(line if top_level else reference)
            continue

        try:
            absolute = resolve_reference(reference, fetch_url)
        except ResolutionError:
            result.unresolved += 1
            out.append(URL_TOKEN_RE.sub(_proxied, line) if top_level else reference)
            continue

        result.references_rewritten += 1
        out.append(relay_url(relay_base, absolute))

    result.text = "\n".join(out)
    return result
