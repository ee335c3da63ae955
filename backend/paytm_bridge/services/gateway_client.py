"""
Paytm Gateway Client

Issues the signed status-inquiry call against the Paytm order status API.
Returns the gateway payload verbatim; applying it to a transaction is the
reconciliation service's job.
"""
import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..config import GatewayConfig
from ..exceptions import UpstreamError, UpstreamTimeout
from .signature_service import sign_params

logger = logging.getLogger(__name__)

GatewayStatusResponse = Dict[str, Any]


class PaytmGatewayClient:
    """
    Thin adapter over the Paytm status API.

    Args:
        config: Gateway configuration (merchant id, key, status URL, deadline)
        http_client: Optional shared httpx.AsyncClient; one is created and
            owned by this adapter when omitted
    """

    def __init__(self, config: GatewayConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.inquiry_timeout_seconds)
        )

    def build_status_params(self, order_id: str) -> Dict[str, str]:
        """Signed status-inquiry parameters: MID, ORDERID, CHECKSUMHASH."""
        return sign_params(
            {"MID": self.config.merchant_id, "ORDERID": order_id},
            self.config.merchant_key
        )

    async def _post(self, params: Dict[str, str]) -> httpx.Response:
        return await self._client.post(
            self.config.status_url,
            json=params,
            headers={"Accept": "application/json"}
        )

    async def inquire_status(self, order_id: str) -> GatewayStatusResponse:
        """
        Query Paytm for the current status of an order.

        Args:
            order_id: Order identifier

        Returns:
            Parsed gateway response (STATUS, TXNID, TXNAMOUNT, RESPCODE, ...)

        Raises:
            UpstreamTimeout: Call exceeded inquiry_timeout_seconds
            UpstreamError: Network failure, non-2xx status, or unparsable body
        """
        params = self.build_status_params(order_id)
        deadline = self.config.inquiry_timeout_seconds
        logger.debug(f"Status inquiry for {order_id} -> {self.config.status_url}")

        try:
            response = await asyncio.wait_for(self._post(params), timeout=deadline)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.warning(f"Status inquiry for {order_id} timed out after {deadline}s")
            raise UpstreamTimeout(
                "Payment gateway did not respond in time",
                {"order_id": order_id, "timeout_seconds": deadline}
            ) from e
        except httpx.HTTPError as e:
            logger.warning(f"Status inquiry for {order_id} failed: {type(e).__name__}: {e}")
            raise UpstreamError(
                "Payment gateway unreachable",
                {"order_id": order_id, "error_type": type(e).__name__}
            ) from e

        if not response.is_success:
            logger.warning(f"Status inquiry for {order_id} returned HTTP {response.status_code}")
            raise UpstreamError(
                "Payment gateway returned an error status",
                {"order_id": order_id, "status_code": response.status_code}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamError(
                "Payment gateway returned an unparsable response",
                {"order_id": order_id}
            ) from e

        if not isinstance(payload, dict):
            raise UpstreamError(
                "Payment gateway returned an unexpected response shape",
                {"order_id": order_id}
            )

        logger.info(f"Status inquiry for {order_id}: STATUS={payload.get('STATUS')!r}")
        return payload

    async def aclose(self) -> None:
        """Close the underlying http client if this adapter created it."""
        if self._owns_client:
            await self._client.aclose()
