"""
FastAPI Chat Gateway Application Factory
========================================

Entry point for the service that sits between the browser chat UI and the
Workers AI inference platform.

Architecture:
    Browser → Cloudflare Access → Chat Gateway (this service) → Workers AI

Routes:
    - /api/chat  : Verified chat completion, streamed back as SSE
    - /api/*     : 404
    - everything else : Static frontend from ASSETS_DIR

Environment Variables Required:
    - TEAM_DOMAIN: Access team domain (e.g., "https://your-team.cloudflareaccess.com")
    - POLICY_AUD: Audience tag of the Access application
    - CF_ACCOUNT_ID: Cloudflare account id
    - CF_API_TOKEN: API token allowed to run Workers AI models
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        uvicorn chatgate.app.main:create_app --factory --reload --port 8787

    Production:
        uvicorn chatgate.app.main:create_app --factory --host 0.0.0.0 --port 8787 --workers 4
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatgate import __version__
from chatgate.app.assets import AssetFetcher, StaticAssetFetcher
from chatgate.app.auth.jwks import clear_key_set_cache
from chatgate.app.chat.inference import WorkersAI
from chatgate.app.config import Settings, get_settings, validate_configuration
from chatgate.app.errors import report_failure
from chatgate.app.routes import router


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


class AppState:
    """
    Application state container.

    Holds the settings and the collaborators shared by all requests. Nothing
    here is mutated after startup.
    """
    def __init__(self, settings: Settings, http_client: httpx.AsyncClient, inference: WorkersAI, assets: AssetFetcher):
        self.settings = settings
        self.http_client = http_client
        self.inference = inference
        self.assets = assets


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Configure logging
        - Log the configuration report

    Shutdown tasks:
        - Close the inference HTTP client
        - Clear the key set cache
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("chatgate.main")

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(warning)
    for error in report["errors"]:
        logger.error(error)

    logger.info(
        "Chat gateway started",
        extra={
            "version": __version__,
            "model_id": settings.MODEL_ID,
            "gateway_id": settings.AI_GATEWAY_ID,
            "team_domain": settings.TEAM_DOMAIN,
        }
    )

    yield

    logger.info("Shutting down chat gateway")
    await app_state.http_client.aclose()
    clear_key_set_cache()
    logger.info("Chat gateway shutdown complete")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management
        - CORS middleware (when ALLOWED_ORIGINS is set)
        - Router
        - Exception handler

    Args:
        settings: Settings to use instead of the environment

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    # Non-API paths belong to the frontend, so the generated docs are off.
    app = FastAPI(
        title="Chat Gateway",
        description="Access-protected streaming chat over Workers AI",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    if settings.allowed_origins_list:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins_list,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    http_client = httpx.AsyncClient(timeout=httpx.Timeout(settings.INFERENCE_TIMEOUT_SECONDS))
    app.state.app_state = AppState(
        settings=settings,
        http_client=http_client,
        inference=WorkersAI(settings.CF_ACCOUNT_ID, settings.CF_API_TOKEN, http_client),
        assets=StaticAssetFetcher(settings.ASSETS_DIR),
    )

    app.include_router(router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        return report_failure(exc, request, message="Unhandled exception")

    return app


if __name__ == "__main__":
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower()
    )
