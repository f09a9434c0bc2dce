"""
Playback credential acquisition from the Twitch GQL authorization service.
"""
import uuid
import logging
from typing import Any, Optional, Tuple

import httpx

from ..core.config import Cfg, cfg as default_cfg
from ..core.errors import AuthError
from ..models.schemas import ClientContext, PlaybackCredential
from ..utils.token_cache import TokenCache
from .metrics import relay_auth_fallbacks

logger = logging.getLogger(__name__)

PLAYBACK_ACCESS_TOKEN_QUERY = """
query PlaybackAccessToken(
  $login: String!,
  $isLive: Boolean!,
  $vodID: ID!,
  $isVod: Boolean!,
  $playerType: String!
) {
  streamPlaybackAccessToken(
    channelName: $login,
    params: { platform: "web", playerBackend: "mediaplayer", playerType: $playerType }
  ) @include(if: $isLive) { value signature __typename }
  videoPlaybackAccessToken(
    id: $vodID,
    params: { platform: "web", playerBackend: "mediaplayer", playerType: $playerType }
  ) @include(if: $isVod) { value signature __typename }
}
"""

DEFAULT_APP_TOKEN_TTL_S = 3600
DEFAULT_INTEGRITY_TTL_S = 600


class TokenAcquirer:
    """
    Obtains a fresh playback credential per top-level manifest request.

    Playback credentials are never cached. The app access token and the
    client-integrity token used to authenticate the primary attempt are
    cached here with their expiry and refreshed lazily.
    """

    def __init__(self, client: httpx.AsyncClient, settings: Optional[Cfg] = None):
        self.client = client
        self.cfg = settings or default_cfg
        self.device_id = str(uuid.uuid4())
        self.app_token = TokenCache("app access")
        self.integrity_token = TokenCache("client integrity")

    @property
    def primary_context(self) -> ClientContext:
        return ClientContext(
            name="primary",
            client_id=self.cfg.client_id,
            player_type="site",
            use_app_auth=bool(self.cfg.TWITCH_CLIENT_SECRET),
        )

    @property
    def alternate_context(self) -> ClientContext:
        return ClientContext(
            name="alternate",
            client_id=self.cfg.TWITCH_PUBLIC_CLIENT_ID,
            player_type="embed",
        )

    async def acquire(self, channel: str) -> PlaybackCredential:
        """
        Get a playback credential for a live channel.

        The primary client context is tried first; on any failure exactly one
        more attempt is made with the alternate context.

        Raises:
            AuthError: if both attempts fail
        """
        try:
            return await self._request_token(channel, self.primary_context)
        except AuthError as e:
            logger.warning(f"Playback token for {channel} failed with primary context ({e.reason}), retrying with alternate context")
            relay_auth_fallbacks.inc()

        return await self._request_token(channel, self.alternate_context)

    async def _request_token(self, channel: str, context: ClientContext) -> PlaybackCredential:
        headers = context.headers()
        headers["X-Device-Id"] = self.device_id
        if context.use_app_auth:
            bearer = await self.app_token.get_or_refresh(self._fetch_app_token)
            integrity = await self.integrity_token.get_or_refresh(self._fetch_integrity_token)
            headers["GQL-Client-Id"] = context.client_id
            headers["Authorization"] = f"Bearer {bearer}"
            headers["Client-Integrity"] = integrity

        body = [{
            "operationName": "PlaybackAccessToken",
            "variables": {
                "isLive": True,
                "login": channel,
                "isVod": False,
                "vodID": "",
                "playerType": context.player_type,
            },
            "query": PLAYBACK_ACCESS_TOKEN_QUERY,
        }]

        data = await self._post_json(self.cfg.GQL_URL, "gql_failed", headers=headers, json=body)
        token = extract_playback_token(data)
        if token is None:
            raise AuthError("no_token")

        logger.debug(f"Got playback token for {channel} using {context.name} context")
        return token

    async def _fetch_app_token(self) -> Tuple[str, float]:
        data = await self._post_json(
            self.cfg.OAUTH_URL,
            "oauth_failed",
            params={
                "client_id": self.cfg.TWITCH_CLIENT_ID,
                "client_secret": self.cfg.TWITCH_CLIENT_SECRET,
                "grant_type": "client_credentials",
            },
        )
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("oauth_failed_no_token")
        logger.info("Refreshed app access token")
        return token, float(data.get("expires_in") or DEFAULT_APP_TOKEN_TTL_S)

    async def _fetch_integrity_token(self) -> Tuple[str, float]:
        bearer = await self.app_token.get_or_refresh(self._fetch_app_token)
        headers = self.primary_context.headers()
        headers["Authorization"] = f"Bearer {bearer}"
        headers["X-Device-Id"] = self.device_id
        data = await self._post_json(self.cfg.INTEGRITY_URL, "integrity_failed", headers=headers, content=b"{}")
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise AuthError("integrity_failed_no_token")
        logger.info("Refreshed client integrity token")
        return token, float(data.get("expiration") or DEFAULT_INTEGRITY_TTL_S)

    async def _post_json(self, url: str, failure: str, **kwargs) -> Any:
        try:
            response = await self.client.post(url, **kwargs)
        except httpx.HTTPError as e:
            logger.debug(f"Authorization request to {url} failed: {e}")
            raise AuthError("auth_unreachable") from e

        if not response.is_success:
            raise AuthError(f"{failure}_{response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise AuthError(f"{failure}_bad_json") from e


def extract_playback_token(data: Any) -> Optional[PlaybackCredential]:
    """
    Pull the signature/value pair out of a PlaybackAccessToken response.

    The service answers a batched query with a list; a bare object is accepted too.
    """
    if isinstance(data, list):
        data = data[0] if data else None
    if not isinstance(data, dict):
        return None

    payload = data.get("data")
    if not isinstance(payload, dict):
        return None
    token = payload.get("streamPlaybackAccessToken") or payload.get("videoPlaybackAccessToken")
    if not isinstance(token, dict):
        return None

    signature, value = token.get("signature"), token.get("value")
    if not (isinstance(signature, str) and signature and isinstance(value, str) and value):
        return None
    return PlaybackCredential(signature=signature, value=value)
