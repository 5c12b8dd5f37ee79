"""
Static asset serving for the chat frontend.

Every path outside ``/api/`` is handed to an AssetFetcher and its response is
returned verbatim. The default fetcher serves a local directory through
Starlette's StaticFiles in HTML mode, so ``/`` resolves to ``index.html``.
"""

from typing import Protocol

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException


class AssetFetcher(Protocol):
    async def fetch(self, request: Request) -> Response:
        ...


class StaticAssetFetcher:
    """AssetFetcher backed by a directory on disk."""

    def __init__(self, directory: str):
        self.directory = directory
        self._static = StaticFiles(directory=directory, html=True, check_dir=False)

    async def fetch(self, request: Request) -> Response:
        path = self._static.get_path(request.scope)
        try:
            return await self._static.get_response(path, request.scope)
        except StarletteHTTPException as e:
            return PlainTextResponse(e.detail, status_code=e.status_code, headers=e.headers)
