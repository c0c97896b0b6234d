"""
FastAPI Identity Broker Application Factory
===========================================

Entry point for the identity broker: local and federated sign-in for end
users, and short-lived signed tokens for registered client applications.

Routers:
    - /auth/*       : Browser sign-in (login, register, logout, Google, Facebook)
    - /profile      : Authenticated landing page
    - /api/*        : JSON twins, current user, client registration, token verify
    - /health       : Health check endpoint

Environment Variables:
    - TOKEN_SECRET: Secret for signing client tokens and federation state (required)
    - APP_URL: Public base URL, used for provider callback URLs
    - GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET: Enable Google login
    - FACEBOOK_APP_ID / FACEBOOK_APP_SECRET: Enable Facebook login
    - REGISTERED_CLIENTS: JSON list of clients registered at startup
    - ALLOWED_ORIGINS: Comma-separated CORS origins
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn app.main:app --app-dir broker --reload --port 8080

    Production:
        uvicorn app.main:app --app-dir broker --host 0.0.0.0 --port 8080
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
import uvicorn

from app import __version__
from app.api import api_router
from app.auth.federation import ProviderFactory
from app.auth.flows import set_session_cookie
from app.auth.gate import GateDenied, GateRedirect, is_programmatic
from app.auth.pages import render_broker_error, render_error_page
from app.auth.providers import HttpClientFactory
from app.auth.routes import auth_router, profile_router
from app.config import Settings, get_settings, validate_configuration
from app.dependencies import build_app_state
from app.errors import BrokerError
from app.models import ErrorResponse, HealthResponse

SESSION_SWEEP_SECONDS = 300

def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


async def _sweep_sessions(app: FastAPI) -> None:
    logger = logging.getLogger("broker.sessions")
    while True:
        await asyncio.sleep(SESSION_SWEEP_SECONDS)
        removed = await app.state.broker.sessions.purge_expired()
        if removed:
            logger.debug(f"Purged {removed} expired sessions")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging and report configuration problems
        - Build the broker state (registry, identity store, sessions, tokens)
        - Register clients listed in REGISTERED_CLIENTS
        - Start the expired-session sweeper

    Shutdown tasks:
        - Stop the sweeper
    """
    settings: Settings = app.state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("broker.main")

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")

    state = build_app_state(
        settings,
        provider_factory=app.state.provider_factory,
        http_client_factory=app.state.http_client_factory,
    )
    await state.clients.seed(settings.registered_clients_list)
    app.state.broker = state

    sweeper = asyncio.create_task(_sweep_sessions(app))

    logger.info(
        "Identity broker started",
        extra={
            "service": "identity-broker",
            "version": __version__,
            "providers": report["providers"],
            "seeded_clients": len(settings.registered_clients_list),
        }
    )

    yield

    logger.info("Shutting down identity broker")
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    app.state.broker = None
    logger.info("Identity broker shutdown complete")


def _register_exception_handlers(app: FastAPI) -> None:
    logger = logging.getLogger("broker.main")

    @app.exception_handler(GateRedirect)
    async def gate_redirect_handler(request: Request, exc: GateRedirect) -> RedirectResponse:
        return RedirectResponse(url=exc.url, status_code=302)

    @app.exception_handler(GateDenied)
    async def gate_denied_handler(request: Request, exc: GateDenied) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.code, message=exc.message).model_dump(),
        )

    @app.exception_handler(BrokerError)
    async def broker_error_handler(request: Request, exc: BrokerError):
        """
        Render a broker error as JSON for programmatic callers, or as an
        HTML error page for browsers. The message is always user-safe.
        """
        logger.info(
            f"Request failed: {exc.code}",
            extra={"path": request.url.path, "error_code": exc.code, "status": exc.status_code}
        )
        return render_broker_error(exc, is_programmatic(request))

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a generic response without details.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )
        if is_programmatic(request):
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    error="internal_server_error",
                    message="An unexpected error occurred",
                ).model_dump(),
            )
        return render_error_page(
            title="Unexpected Error",
            message="An unexpected error occurred during sign-in. Please try again.",
            status_code=500,
        )


def create_app(
    settings: Optional[Settings] = None,
    provider_factory: Optional[ProviderFactory] = None,
    http_client_factory: Optional[HttpClientFactory] = None,
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Settings to use instead of the environment
        provider_factory: Replaces the federated provider factory
        http_client_factory: HTTP client used for provider calls

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Identity Broker",
        description="Local and federated sign-in with client-scoped tokens",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.settings = settings
    app.state.provider_factory = provider_factory
    app.state.http_client_factory = http_client_factory
    app.state.broker = None

    origins = settings.allowed_origins_list
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(auth_router)
    app.include_router(profile_router)
    app.include_router(api_router)

    _register_exception_handlers(app)

    @app.middleware("http")
    async def sliding_session_middleware(request: Request, call_next):
        """
        Re-issue the session cookie for a sliding session resolved during
        the request, so the browser keeps the handle as long as the server
        does. Responses that already set or clear the cookie are left alone.
        """
        response = await call_next(request)
        handle = getattr(request.state, "sliding_session", None)
        if handle is None:
            return response
        prefix = f"{settings.SESSION_COOKIE_NAME}="
        if any(cookie.startswith(prefix) for cookie in response.headers.getlist("set-cookie")):
            return response
        set_session_cookie(response, settings, handle)
        return response

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check() -> HealthResponse:
        """Service status and the federated providers that are usable."""
        return HealthResponse(
            status="ok",
            service="identity-broker",
            providers=settings.federation.enabled,
        )

    @app.get("/", tags=["System"])
    async def root() -> Dict[str, Any]:
        """
        Root endpoint with service information.

        Returns:
            dict: Service metadata and available endpoints
        """
        return {
            "service": "identity-broker",
            "version": __version__,
            "endpoints": {
                "health": "/health",
                "docs": "/docs",
                "login": "/auth/login",
                "register": "/auth/register",
                "profile": "/profile",
                "api": "/api",
            },
            "providers": settings.federation.enabled,
        }

    return app


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        "app.main:app",
        host=settings.BROKER_HOST,
        port=settings.BROKER_PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower()
    )
