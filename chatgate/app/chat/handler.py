"""
Chat Request Handler
====================

Turns an authenticated POST /api/chat into a Workers AI call and relays the
model's event stream back to the caller.

Flow:
-----
1. Verify the Access JWT; a rejection is returned as-is
2. Parse ``{"messages": [...]}`` from the body (missing array: empty)
3. Prepend the default system prompt unless a system message is present
4. Prepend the caller identity when identity propagation is enabled
5. Run the model with ``max_tokens`` and streaming enabled
6. Relay the upstream status, headers and body chunks unmodified

Any failure in steps 2-6 is logged and answered with the generic 500.
"""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
from fastapi import Request, Response
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from ..auth.access import Rejected, verify_access_jwt
from ..auth.jwks import RemoteKeySet
from ..config import Settings
from ..errors import report_failure
from ..models import ChatMessage, ChatRequest, Identity
from .inference import WorkersAI

logger = logging.getLogger(__name__)

# Connection-level headers that must not be forwarded by a proxy (RFC 9110)
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})


def build_messages(
    messages: List[ChatMessage],
    system_prompt: str,
    identity: Optional[Identity] = None,
) -> List[ChatMessage]:
    """
    Build the message list sent to the model.

    The default system prompt is added only when no system message exists,
    so re-submitting a conversation never duplicates it. The identity note
    goes in front of everything else.

    Args:
        messages: Conversation supplied by the caller
        system_prompt: Default system prompt
        identity: Authenticated caller to announce, or None

    Returns:
        New list; the input list is not modified
    """
    result = list(messages)

    if not any(message.role == "system" for message in result):
        result.insert(0, ChatMessage(role="system", content=system_prompt))

    if identity is not None:
        result.insert(
            0,
            ChatMessage(role="system", content=f"Authenticated user identity: {identity.display}"),
        )

    return result


def build_inputs(messages: List[ChatMessage], settings: Settings) -> Dict[str, Any]:
    return {
        "messages": [message.model_dump() for message in messages],
        "max_tokens": settings.MAX_TOKENS,
        "stream": True,
    }


class RelayResponse(StreamingResponse):
    """
    StreamingResponse over an upstream httpx response.

    The upstream is closed however the client response ends: normal
    completion, client disconnect or cancellation.
    """

    def __init__(self, upstream: httpx.Response, headers: Dict[str, str]):
        self.upstream = upstream
        super().__init__(
            self._relay_chunks(),
            status_code=upstream.status_code,
            headers=headers,
        )

    async def _relay_chunks(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self.upstream.aiter_raw():
                yield chunk
        finally:
            await self.upstream.aclose()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.upstream.aclose()


def relay_response(upstream: httpx.Response) -> RelayResponse:
    """
    Stream an upstream response to the client without buffering.

    Raw chunks are forwarded as they arrive, status and end-to-end headers
    are copied, and the upstream connection is released even when the
    client goes away mid-stream.
    """
    headers = {
        name: value
        for name, value in upstream.headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    }
    return RelayResponse(upstream, headers)


async def handle_chat_request(
    request: Request,
    settings: Settings,
    key_set: RemoteKeySet,
    inference: WorkersAI,
) -> Response:
    """
    Handle POST /api/chat.

    Args:
        request: Incoming request
        settings: Application settings
        key_set: Access key set used to verify the caller
        inference: Workers AI client

    Returns:
        The relayed model stream, a 403 from verification, or the generic 500
    """
    outcome = await verify_access_jwt(request, settings, key_set)
    if isinstance(outcome, Rejected):
        return outcome.to_response()

    identity = outcome.identity
    logger.info("Access user: %s", identity.display)

    try:
        payload = await request.json()
        chat_request = ChatRequest.model_validate(payload)

        messages = build_messages(
            chat_request.messages,
            settings.SYSTEM_PROMPT,
            identity if settings.PROPAGATE_IDENTITY else None,
        )

        upstream = await inference.run(
            settings.MODEL_ID,
            build_inputs(messages, settings),
            gateway=settings.gateway,
        )
    except Exception as e:
        return report_failure(e, request)

    return relay_response(upstream)
