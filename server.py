"""Token Tracker HTTP API.

FastAPI application exposing key management and per-provider usage. Entry
point: ``token-tracker`` (or ``python server.py``).
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from starlette.concurrency import run_in_threadpool

import config as app_config
from codec import get_codec
from errors import RateLimited, TrackerError
from identity import IdentityGateway, create_identity_gateway
from keystore import create_key_store
from providers import build_providers
from rate_limiter import FixedWindowRateLimiter, source_key
from service import TokenTrackerService, log_failure

logger = logging.getLogger(__name__)


class ApiKeyCreate(BaseModel):
    """Body of POST /api/keys. The key is encrypted before storage."""

    provider: Any = None
    apiKey: Any = None


def create_app(
    service: TokenTrackerService,
    identity: IdentityGateway,
    limiter: FixedWindowRateLimiter,
) -> FastAPI:
    app = FastAPI(
        title="Token Tracker",
        description="Multi-provider API usage and billing dashboard backend",
        version="0.1.0",
    )
    app.state.service = service
    app.state.identity = identity
    app.state.limiter = limiter

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path.startswith("/api/"):
            try:
                limiter.hit(source_key(request.headers))
            except RateLimited as e:
                return _error_response(e)
        return await call_next(request)

    @app.exception_handler(TrackerError)
    async def handle_tracker_error(request: Request, exc: TrackerError):
        log_failure(request.url.path, exc)
        return _error_response(exc)

    async def current_user(request: Request) -> str | None:
        return await run_in_threadpool(identity.get_current_user, request.headers, request.cookies)

    @app.post("/api/keys")
    async def save_key(request: Request):
        """Set or update the caller's API key for a provider."""
        user = await current_user(request)
        service.require_owner(user)

        try:
            body = ApiKeyCreate.model_validate(await request.json())
        except (ValueError, ValidationError):
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)

        await run_in_threadpool(service.save_key, user, body.provider, body.apiKey)
        return {"success": True}

    @app.delete("/api/keys")
    async def delete_key(request: Request, provider: Optional[str] = Query(None)):
        user = await current_user(request)
        await run_in_threadpool(service.delete_key, user, provider)
        return {"success": True}

    @app.get("/api/keys")
    async def list_keys(request: Request):
        """List connected providers (never the keys themselves)."""
        user = await current_user(request)
        keys = await run_in_threadpool(service.list_keys, user)
        return {"keys": keys}

    @app.get("/api/usage")
    async def aggregate_usage(request: Request, providers: Optional[str] = Query(None)):
        """Usage for several providers; each succeeds or fails on its own."""
        user = await current_user(request)
        ids = [p.strip() for p in providers.split(",") if p.strip()] if providers else None
        results = await run_in_threadpool(service.fetch_many, user, ids)
        return {"results": results}

    @app.get("/api/{provider}/usage")
    async def provider_usage(request: Request, provider: str):
        user = await current_user(request)
        return await run_in_threadpool(service.fetch_usage, user, provider)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


def _error_response(exc: TrackerError) -> JSONResponse:
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(
        {"error": exc.public_message}, status_code=exc.status_code, headers=headers
    )


def build_app(cfg: dict | None = None) -> FastAPI:
    """Wire the application from config and environment.

    Raises ConfigurationError if the encryption key is missing or invalid.
    """
    cfg = cfg or app_config.load_config()
    codec = get_codec()
    store = create_key_store(app_config.get_key_store_backend(cfg))
    providers = build_providers(app_config.get_upstream_timeout(cfg))
    service = TokenTrackerService(codec, store, providers, cfg)

    url, anon_key = app_config.get_supabase_settings()
    identity = create_identity_gateway(url, anon_key)

    window, max_requests, max_entries = app_config.get_rate_limit(cfg)
    limiter = FixedWindowRateLimiter(window, max_requests, max_entries)

    logger.info(
        "Token Tracker ready: providers=%s, rate limit %d/%ds",
        ",".join(service.enabled_providers()),
        max_requests,
        window,
    )
    return create_app(service, identity, limiter)


def main():
    """Entry point."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    cfg = app_config.load_config()
    app = build_app(cfg)
    host, port = app_config.get_server_address(cfg)
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    main()
