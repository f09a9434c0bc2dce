from __future__ import annotations
from dataclasses import dataclass
from pydantic import BaseModel
from typing import Dict

class PlaybackCredential(BaseModel):
    """Signed token pair authorizing one manifest fetch for one channel."""
    signature: str
    value: str

@dataclass(frozen=True)
class ClientContext:
    """Identity presented to the authorization service for one attempt."""
    name: str
    client_id: str
    player_type: str
    use_app_auth: bool = False

    def headers(self) -> Dict[str, str]:
        return {
            "Client-ID": self.client_id,
            "Content-Type": "application/json",
            "Origin": "https://www.twitch.tv",
            "Referer": "https://www.twitch.tv/",
        }

class RewriteResult(BaseModel):
    text: str
    ads_removed: int = 0
    references_rewritten: int = 0
    unresolved: int = 0
