"""FastAPI application for the Folio admin backend"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from folio import __version__
from folio.core.config import Config, load_config
from folio.github.provider import ContentProvider
from folio.utils.exceptions import FolioError
from folio.utils.logger import get_logger

from .auth_routes import router as auth_router
from .data_routes import router as data_router

logger = get_logger(__name__)

SECURITY_HEADERS = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"DENY"),
    (b"x-xss-protection", b"1; mode=block"),
]

LOCALHOST_ORIGINS = r"https?://(localhost|127\.0\.0\.1)(:\d+)?"


class SecurityHeadersASGI:
    """Raw ASGI middleware adding the security headers to every HTTP response."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        async def send_with_headers(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers = list(message.get("headers") or [])
                present = {k.lower() for k, _ in headers}
                headers.extend(h for h in SECURITY_HEADERS if h[0] not in present)
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_with_headers)


async def folio_error_handler(request: Request, exc: FolioError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, reason=exc.reason, error=str(exc))
        # Provider and configuration details stay in the log
        message = "Server error"
    else:
        message = str(exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason, "message": message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "body"
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "message": f"Invalid {field}: {first.get('msg', 'invalid value')}"},
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "internal_error"})


def create_app(config: Optional[Config] = None, provider: Optional[ContentProvider] = None) -> FastAPI:
    """Build the app. ``provider`` replaces the GitHub provider (tests, local runs)."""
    config = config or load_config()

    app = FastAPI(
        title="Folio Admin API",
        description="Admin backend for a Git-backed portfolio site",
        version=__version__,
    )
    app.state.config = config
    app.state.provider = provider
    app.state.services = None

    app.add_exception_handler(FolioError, folio_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.allowed_origin],
        allow_origin_regex=LOCALHOST_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(SecurityHeadersASGI)

    app.include_router(auth_router)
    app.include_router(data_router)

    @app.get("/api/health")
    def health():
        return {"status": "ok", "version": __version__}

    return app
