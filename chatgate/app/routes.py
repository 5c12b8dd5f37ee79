"""
Request Router
==============

Dispatch rules, in registration order:

- ``/api/chat``      POST → chat handler, any other method → 405
- ``/api/*``         anything else → 404
- everything else    (including ``/`` and ``/api``) → static assets

Collaborators are resolved through dependencies so tests can override them
with ``app.dependency_overrides``.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.routing import APIRoute
from fastapi.responses import PlainTextResponse

from .assets import AssetFetcher
from .auth.jwks import RemoteKeySet, get_remote_key_set
from .chat.handler import handle_chat_request
from .chat.inference import WorkersAI
from .config import Settings

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


class AnyMethodRoute(APIRoute):
    """
    APIRoute that matches every HTTP method, including ones not listed
    (TRACE, WebDAV verbs, ...). Method checks happen in the endpoints.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.methods = None


router = APIRouter(route_class=AnyMethodRoute)


# ============================================================================
# Dependencies
# ============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.app_state.settings


def get_key_set(settings: Settings = Depends(get_app_settings)) -> RemoteKeySet:
    """Shared key set for the configured team domain."""
    return get_remote_key_set(settings.key_set_url, settings.JWKS_CACHE_SECONDS)


def get_inference_client(request: Request) -> WorkersAI:
    return request.app.state.app_state.inference


def get_asset_fetcher(request: Request) -> AssetFetcher:
    return request.app.state.app_state.assets


# ============================================================================
# Routes
# ============================================================================

@router.api_route(CHAT_PATH, methods=ALL_METHODS)
async def chat(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    key_set: RemoteKeySet = Depends(get_key_set),
    inference: WorkersAI = Depends(get_inference_client),
) -> Response:
    if request.method != "POST":
        return PlainTextResponse("Method not allowed", status_code=status.HTTP_405_METHOD_NOT_ALLOWED)
    return await handle_chat_request(request, settings, key_set, inference)


@router.api_route("/api/{rest:path}", methods=ALL_METHODS)
async def api_not_found(request: Request) -> Response:
    logger.debug("No API route", extra={"path": request.url.path, "method": request.method})
    return PlainTextResponse("Not found", status_code=status.HTTP_404_NOT_FOUND)


@router.api_route("/{path:path}", methods=ALL_METHODS)
async def assets(request: Request, fetcher: AssetFetcher = Depends(get_asset_fetcher)) -> Response:
    return await fetcher.fetch(request)
