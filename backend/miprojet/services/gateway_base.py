import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from miprojet.core.config import settings
from miprojet.core.errors import GatewayError
from miprojet.models.payment_model import GatewayTransaction, Payment, PaymentRequest

logger = logging.getLogger("miprojet.gateways")


class GatewayClient(ABC):
    """Shared HTTP plumbing for the payment gateways."""

    provider = "gateway"
    display_name = "Gateway"

    def __init__(self, base_url: str, timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.GATEWAY_TIMEOUT_SECONDS
        self.transport = transport

    @property
    @abstractmethod
    def configured(self) -> bool:
        """True once the credentials needed for live calls are set."""

    @abstractmethod
    def auth_headers(self) -> Dict[str, str]:
        ...

    def requires_phone_number(self, payment_method: str) -> bool:
        return False

    @abstractmethod
    async def create_transaction(self, payment: Payment, request: PaymentRequest) -> GatewayTransaction:
        ...

    def simulated_response(self, payment: Payment) -> Dict[str, Any]:
        """Stand-in answer used while no credentials are configured."""
        return {
            "success": True,
            "simulated": True,
            "message": "Payment initiated (demo mode)",
            "transaction_id": payment.payment_reference,
        }

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self.transport)

    async def post_json(self, client: httpx.AsyncClient, path: str, payload: Optional[dict] = None) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            **self.auth_headers(),
        }
        try:
            response = await client.post(path, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"❌ {self.display_name} POST {path} failed: {e}")
            raise GatewayError(self.display_name, f"request failed: {e}")

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code not in (200, 201):
            message = body.get("message") if isinstance(body, dict) else None
            logger.error(f"❌ {self.display_name} POST {path} → {response.status_code}: {response.text[:500]}")
            raise GatewayError(
                self.display_name,
                message or f"HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise GatewayError(self.display_name, "unexpected response body")

        logger.info(f"{self.display_name} POST {path} - Success")
        return body
