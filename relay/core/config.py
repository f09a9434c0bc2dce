import os
from pydantic import BaseModel, validator, model_validator
from dotenv import load_dotenv
load_dotenv()

# Client id used by the public web player; works without a secret but is rate limited
PUBLIC_WEB_CLIENT_ID = "kimne78kx3ncx6brgo4mv6wki5h1ko"

class Cfg(BaseModel):
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 3000))

    # Authorization service credentials
    TWITCH_CLIENT_ID: str = os.getenv("TWITCH_CLIENT_ID", "")
    TWITCH_CLIENT_SECRET: str = os.getenv("TWITCH_CLIENT_SECRET", "")
    TWITCH_PUBLIC_CLIENT_ID: str = os.getenv("TWITCH_PUBLIC_CLIENT_ID", PUBLIC_WEB_CLIENT_ID)

    # Upstream endpoints
    GQL_URL: str = os.getenv("GQL_URL", "https://gql.twitch.tv/gql")
    INTEGRITY_URL: str = os.getenv("INTEGRITY_URL", "https://gql.twitch.tv/integrity")
    OAUTH_URL: str = os.getenv("OAUTH_URL", "https://id.twitch.tv/oauth2/token")
    USHER_URL: str = os.getenv("USHER_URL", "https://usher.ttvnw.net/api/channel/hls")

    # Applies to every outbound call (authorization, manifests, segments)
    UPSTREAM_TIMEOUT_S: float = float(os.getenv("UPSTREAM_TIMEOUT_S", 10))

    # Base URL written into rewritten manifests; derived from the request when unset
    PUBLIC_BASE_URL: str | None = os.getenv("PUBLIC_BASE_URL") or None

    STATIC_DIR: str = os.getenv("STATIC_DIR", "public")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    @validator('PORT')
    def validate_port(cls, v):
        if not (1 <= v <= 65535):
            raise ValueError('PORT must be between 1-65535')
        return v

    @validator('UPSTREAM_TIMEOUT_S')
    def validate_upstream_timeout(cls, v):
        if v <= 0:
            raise ValueError('UPSTREAM_TIMEOUT_S must be > 0')
        return v

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR']
        if v not in valid_levels:
            raise ValueError(f'LOG_LEVEL must be one of: {", ".join(valid_levels)}')
        return v

    @validator('PUBLIC_BASE_URL')
    def validate_public_base_url(cls, v):
        if v is None:
            return None
        if not v.startswith(('http://', 'https://')):
            raise ValueError('PUBLIC_BASE_URL must start with http:// or https://')
        return v.rstrip('/')

    @model_validator(mode='after')
    def validate_client_credentials(self):
        # A secret without an id cannot be exchanged for an app token
        if self.TWITCH_CLIENT_SECRET and not self.TWITCH_CLIENT_ID:
            raise ValueError('TWITCH_CLIENT_ID is required when TWITCH_CLIENT_SECRET is set')
        return self

    @property
    def client_id(self) -> str:
        """Client id for the primary authorization attempt."""
        return self.TWITCH_CLIENT_ID or self.TWITCH_PUBLIC_CLIENT_ID

    @property
    def degraded(self) -> bool:
        return not self.TWITCH_CLIENT_ID

cfg = Cfg()
