"""
Request handling for the relay: resolves inbound requests to upstream URLs,
fetches them, and either rewrites manifests or passes media bytes through.
"""

import re
import random
import logging
from typing import AsyncIterator, Dict, Optional
from urllib.parse import quote, urlencode, urlsplit

import httpx
from starlette.background import BackgroundTask
from starlette.responses import Response, StreamingResponse

from ..core.config import Cfg, cfg as default_cfg
from ..core.errors import UpstreamError, ValidationError
from ..services.metrics import relay_ad_markers_stripped
from ..services.token_acquirer import TokenAcquirer
from ..models.schemas import PlaybackCredential
from .rewriter import is_manifest_content_type, rewrite_manifest

logger = logging.getLogger(__name__)

CHANNEL_RE = re.compile(r"^[a-z0-9_]{1,25}$")

MANIFEST_CONTENT_TYPE = "application/vnd.apple.mpegurl"
DEFAULT_CONTENT_TYPE = "application/octet-stream"

# Sent on every response, errors and preflights included
RELAY_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
    "Cache-Control": "no-store",
}


def validate_channel(raw: Optional[str]) -> str:
    """Lowercase and check a channel login. Raises ValidationError before any network call."""
    channel = (raw or "").lower()
    if not CHANNEL_RE.match(channel):
        raise ValidationError("bad_channel")
    return channel


def validate_target_url(raw: Optional[str]) -> str:
    if not raw:
        raise ValidationError("missing_u")
    parts = urlsplit(raw)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ValidationError("bad_url")
    return raw


def build_manifest_url(usher_url: str, channel: str, credential: PlaybackCredential, client_id: str) -> str:
    params = {
        "sig": credential.signature,
        "token": credential.value,
        "allow_source": "true",
        "allow_audio_only": "true",
        "player": "twitchweb",
        "p": str(random.randint(0, 9_999_999)),
        "client_id": client_id,
    }
    return f"{usher_url.rstrip('/')}/{quote(channel, safe='')}.m3u8?{urlencode(params)}"


def relay_headers(content_type: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    headers = dict(RELAY_HEADERS)
    headers["Content-Type"] = content_type
    if extra:
        headers.update(extra)
    return headers


async def _stream_body(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()


class RelayDispatcher:
    """
    Per-request relay logic. Holds only the shared HTTP client and token
    acquirer; nothing about a request outlives its response.
    """

    def __init__(self, client: httpx.AsyncClient, acquirer: TokenAcquirer, settings: Optional[Cfg] = None):
        self.client = client
        self.acquirer = acquirer
        self.cfg = settings or default_cfg

    async def playlist(self, raw_channel: str, relay_base: str) -> Response:
        """Serve the ad-stripped master manifest for a channel (GET /playlist/{channel})."""
        channel = validate_channel(raw_channel)

        credential = await self.acquirer.acquire(channel)
        url = build_manifest_url(self.cfg.USHER_URL, channel, credential, self.cfg.client_id)

        upstream = await self._open(url, {"Client-ID": self.cfg.client_id, "X-Device-Id": self.acquirer.device_id})
        if not upstream.is_success:
            await upstream.aclose()
            raise UpstreamError(f"usher_failed_{upstream.status_code}")

        text = await self._read_text(upstream)
        result = rewrite_manifest(text, str(upstream.url), relay_base, top_level=True)
        self._record_rewrite(f"master manifest for {channel}", result.ads_removed)

        return Response(content=result.text, headers=relay_headers(MANIFEST_CONTENT_TYPE))

    async def fetch(self, raw_url: Optional[str], relay_base: str) -> Response:
        """Relay a nested manifest or media segment (GET /fetch?u=...)."""
        url = validate_target_url(raw_url)

        upstream = await self._open(url, {"X-Device-Id": self.acquirer.device_id})
        if not upstream.is_success:
            await upstream.aclose()
            raise UpstreamError(f"upstream_{upstream.status_code}")

        content_type = upstream.headers.get("content-type", DEFAULT_CONTENT_TYPE)

        if is_manifest_content_type(content_type):
            text = await self._read_text(upstream)
            # Redirects are followed, so the final URL is the resolution base
            result = rewrite_manifest(text, str(upstream.url), relay_base)
            self._record_rewrite(f"manifest {urlsplit(str(upstream.url)).path}", result.ads_removed)
            return Response(content=result.text, headers=relay_headers(content_type))

        extra = {}
        if "content-length" in upstream.headers and "content-encoding" not in upstream.headers:
            extra["Content-Length"] = upstream.headers["content-length"]
        # Also closed after sending, since a disconnected client may never iterate the body
        return StreamingResponse(
            _stream_body(upstream),
            headers=relay_headers(content_type, extra),
            background=BackgroundTask(upstream.aclose),
        )

    async def _open(self, url: str, headers: Dict[str, str]) -> httpx.Response:
        request = self.client.build_request("GET", url, headers=headers)
        try:
            return await self.client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.warning(f"Upstream timeout fetching {urlsplit(url).netloc}{urlsplit(url).path}: {e}")
            raise UpstreamError("upstream_timeout") from e
        except httpx.HTTPError as e:
            logger.warning(f"Upstream unreachable fetching {urlsplit(url).netloc}{urlsplit(url).path}: {e}")
            raise UpstreamError("upstream_unreachable") from e

    async def _read_text(self, upstream: httpx.Response) -> str:
        try:
            await upstream.aread()
        except httpx.HTTPError as e:
            raise UpstreamError("upstream_unreachable") from e
        finally:
            await upstream.aclose()
        return upstream.text

    def _record_rewrite(self, what: str, ads_removed: int):
        if ads_removed:
            relay_ad_markers_stripped.inc(ads_removed)
            logger.info(f"Removed {ads_removed} ad marker(s) from {what}")
        else:
            logger.debug(f"No ad markers in {what}")
