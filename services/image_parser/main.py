"""Image Parser Service.

HTTP entry point for the screenshot-to-pricing pipeline. Anonymous callers
share a rate-limited server key; callers that bring their own key bypass the
limiter.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional

import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from core.config import Settings, load_settings
from core.failures import ImageParserError
from core.rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from services.image_parser.models import ErrorResponse, ImageParseRequest, ProviderInfo, ProvidersResponse
from services.image_parser.orchestrator import ExtractionOrchestrator, ExtractionRequest, ProviderChoice

log = logging.getLogger(__name__)

GEMINI_KEY_HEADER = "x-gemini-key"
OPENROUTER_KEY_HEADER = "x-openrouter-key"

CORS_HEADERS = ["authorization", "x-client-info", "apikey", "content-type", GEMINI_KEY_HEADER, OPENROUTER_KEY_HEADER]
ERROR_STATUSES = (400, 401, 422, 429, 500, 502)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.rate_limit_backend == "redis":
        r = redis.Redis(host=settings.redis_host, port=settings.redis_port, db=settings.redis_db, decode_responses=True)
        return RedisRateLimiter(r, settings.rate_limit_max_requests, settings.rate_limit_window_s)
    return InMemoryRateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_s)


def caller_identity(request: Request) -> str:
    """Socket peer of the request.

    Behind a trusted proxy the peer has already been rewritten from
    X-Forwarded-For by ``ProxyHeadersMiddleware``; client headers are never
    read here.
    """
    if request.client is not None:
        return request.client.host
    return "unknown"


def caller_credential(request: Request, selector: Optional[str]) -> tuple[Optional[str], Optional[str]]:
    """Return (credential, provider selector) from BYOK headers."""
    openrouter_key = (request.headers.get(OPENROUTER_KEY_HEADER) or "").strip()
    gemini_key = (request.headers.get(GEMINI_KEY_HEADER) or "").strip()
    if openrouter_key and selector != ProviderChoice.PRIMARY.value:
        return openrouter_key, ProviderChoice.SECONDARY.value
    if gemini_key and selector != ProviderChoice.SECONDARY.value:
        return gemini_key, selector or ProviderChoice.PRIMARY.value
    return None, selector


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    orchestrator: Optional[ExtractionOrchestrator] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings (defaults to environment + YAML overlay)
        orchestrator: Optional pre-built orchestrator (tests inject fakes)

    Returns:
        Configured FastAPI app
    """
    settings = settings or load_settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    orchestrator = orchestrator or ExtractionOrchestrator(settings, build_rate_limiter(settings))

    app = FastAPI(
        title="Image Parser",
        description="Extracts model pricing from pricing-page screenshots",
        version="2.1.0",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["POST", "OPTIONS"],
        allow_headers=CORS_HEADERS,
    )
    if settings.forwarded_allow_ips:
        app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=settings.forwarded_allow_ips)

    if settings.test_mode:
        log.info("Running in test mode with fake provider")

    @app.exception_handler(RequestValidationError)
    async def invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "Missing or invalid 'image' field. Expected base64 string.")

    @app.exception_handler(ImageParserError)
    async def pipeline_error(request: Request, exc: ImageParserError) -> JSONResponse:
        return _error(exc.status_code, exc.message)

    @app.get("/health")
    def health() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/providers", response_model=ProvidersResponse)
    def list_providers() -> ProvidersResponse:
        """List providers and whether a shared server key is configured."""
        return ProvidersResponse(
            providers=[
                ProviderInfo(name=ProviderChoice.PRIMARY.value, model=settings.gemini_model, server_key_configured=bool(settings.gemini_api_key)),
                ProviderInfo(name=ProviderChoice.SECONDARY.value, model=settings.openrouter_model, server_key_configured=bool(settings.openrouter_api_key)),
            ],
            rate_limit_max_requests=settings.rate_limit_max_requests,
            rate_limit_window_s=settings.rate_limit_window_s,
            test_mode=settings.test_mode,
        )

    @app.post("/image-parser", responses={status: {"model": ErrorResponse} for status in ERROR_STATUSES})
    def parse_image(req: ImageParseRequest, request: Request) -> JSONResponse:
        """Extract a pricing record from a base64 screenshot.

        Returns the record tagged with ``schema_version``, or ``{"error": ...}``
        with a status describing the failure.
        """
        credential, selector = caller_credential(request, req.provider)
        extraction = ExtractionRequest(
            image=req.image,
            credential=credential,
            provider=selector,
            identity=caller_identity(request),
        )
        try:
            outcome = orchestrator.run(extraction)
            return JSONResponse(outcome.to_payload())
        except ImageParserError:
            raise
        except Exception:
            log.exception("Error processing request %s", extraction.request_id)
            return _error(500, "Internal server error")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = load_settings()
    # forwarding headers are handled by the app according to FORWARDED_ALLOW_IPS
    uvicorn.run(app, host=settings.host, port=settings.port, proxy_headers=False)
