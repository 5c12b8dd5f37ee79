"""
Workers AI inference client.

Runs a model over the Cloudflare REST API, either directly or through an AI
Gateway, and hands back the upstream HTTP response still open in streaming
mode so the caller can relay it without buffering.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from ..models import GatewayOptions

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.cloudflare.com/client/v4"
GATEWAY_BASE_URL = "https://gateway.ai.cloudflare.com/v1"

SKIP_CACHE_HEADER = "cf-aig-skip-cache"
CACHE_TTL_HEADER = "cf-aig-cache-ttl"


class WorkersAI:
    """
    Thin client for ``ai/run``.

    Attributes:
        account_id: Cloudflare account that owns the models
    """

    def __init__(
        self,
        account_id: str,
        api_token: str,
        http_client: httpx.AsyncClient,
        api_base_url: str = API_BASE_URL,
        gateway_base_url: str = GATEWAY_BASE_URL,
    ):
        self.account_id = account_id
        self._api_token = api_token
        self._client = http_client
        self._api_base_url = api_base_url.rstrip("/")
        self._gateway_base_url = gateway_base_url.rstrip("/")

    def run_url(self, model: str, gateway: Optional[GatewayOptions] = None) -> str:
        """URL that runs ``model``, through ``gateway`` when given."""
        if gateway is not None:
            return f"{self._gateway_base_url}/{self.account_id}/{gateway.id}/workers-ai/{model}"
        return f"{self._api_base_url}/accounts/{self.account_id}/ai/run/{model}"

    def build_headers(self, gateway: Optional[GatewayOptions] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
        }
        if gateway is not None:
            if gateway.skip_cache:
                headers[SKIP_CACHE_HEADER] = "true"
            if gateway.cache_ttl is not None:
                headers[CACHE_TTL_HEADER] = str(gateway.cache_ttl)
        return headers

    async def run(
        self,
        model: str,
        inputs: Dict[str, Any],
        gateway: Optional[GatewayOptions] = None,
    ) -> httpx.Response:
        """
        Run ``model`` on ``inputs`` and return the raw streaming response.

        The response body is not read; the caller owns it and must close it.
        Upstream error statuses are returned as-is, not raised.

        Raises:
            httpx.HTTPError: If the platform cannot be reached
        """
        request = self._client.build_request(
            "POST",
            self.run_url(model, gateway),
            json=inputs,
            headers=self.build_headers(gateway),
        )
        response = await self._client.send(request, stream=True)

        logger.info(
            "Inference upstream responded",
            extra={
                "model": model,
                "status_code": response.status_code,
                "gateway_id": gateway.id if gateway else None,
            },
        )
        return response
