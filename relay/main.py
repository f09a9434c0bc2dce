from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, Query, Request
from fastapi.staticfiles import StaticFiles
from starlette.responses import PlainTextResponse, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from typing import Optional
import logging
import os

import httpx

from .utils.logging import setup
from .core.config import cfg
from .core.errors import RelayError
from .proxy.dispatcher import RelayDispatcher, RELAY_HEADERS
from .services.metrics import record_request
from .services.token_acquirer import TokenAcquirer

logger = logging.getLogger(__name__)

setup(getattr(logging, cfg.LOG_LEVEL))

@asynccontextmanager
async def lifespan(app: FastAPI):
    if cfg.degraded:
        logger.warning("TWITCH_CLIENT_ID not set; using the public web client id (rate limited)")
    elif not cfg.TWITCH_CLIENT_SECRET:
        logger.warning("TWITCH_CLIENT_SECRET not set; playback tokens are requested without app authorization")

    # One pooled client for all upstream calls; requests share no other state
    async with httpx.AsyncClient(
        timeout=cfg.UPSTREAM_TIMEOUT_S,
        follow_redirects=True,
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
    ) as client:
        app.state.http_client = client
        app.state.token_acquirer = TokenAcquirer(client, cfg)
        logger.info(f"Relay ready on port {cfg.PORT} (upstream timeout {cfg.UPSTREAM_TIMEOUT_S}s)")
        yield

app = FastAPI(title="Ad-free HLS Relay", lifespan=lifespan)

@app.middleware("http")
async def relay_cross_origin(request: Request, call_next):
    """Answer preflights and put the relay headers on every response."""
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=RELAY_HEADERS)
    response = await call_next(request)
    for name, value in RELAY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response

def get_dispatcher(request: Request) -> RelayDispatcher:
    return RelayDispatcher(request.app.state.http_client, request.app.state.token_acquirer, cfg)

def relay_base_url(request: Request) -> str:
    """Scheme and host that rewritten references point back at."""
    if cfg.PUBLIC_BASE_URL:
        return cfg.PUBLIC_BASE_URL
    return str(request.base_url).rstrip("/")

@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    route = "playlist" if request.url.path.startswith("/playlist") else "fetch"
    logger.warning(f"{route}_error: {exc.reason}")
    record_request(route, type(exc).__name__)
    return PlainTextResponse(exc.reason, status_code=exc.status_code, headers=RELAY_HEADERS)

@app.get("/health")
def health():
    return PlainTextResponse("ok")

@app.get("/metrics")
def get_metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

@app.get("/playlist/{channel}")
async def playlist(channel: str, request: Request, dispatcher: RelayDispatcher = Depends(get_dispatcher)):
    """Ad-stripped master manifest for a live channel."""
    response = await dispatcher.playlist(channel, relay_base_url(request))
    record_request("playlist", "ok")
    return response

@app.get("/fetch")
async def fetch(request: Request, u: Optional[str] = Query(None), dispatcher: RelayDispatcher = Depends(get_dispatcher)):
    """Nested manifest (rewritten) or media segment (passed through) at an absolute upstream URL."""
    response = await dispatcher.fetch(u, relay_base_url(request))
    record_request("fetch", "ok")
    return response

# Static player page, served only when the directory exists
if os.path.isdir(cfg.STATIC_DIR):
    app.mount("/", StaticFiles(directory=cfg.STATIC_DIR, html=True), name="static")
else:
    logger.info(f"Static directory {cfg.STATIC_DIR} not found. Static files will not be served.")

def run():
    import uvicorn
    uvicorn.run("relay.main:app", host=cfg.HOST, port=cfg.PORT, access_log=False)

if __name__ == "__main__":
    run()
