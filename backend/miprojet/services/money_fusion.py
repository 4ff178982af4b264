# services/money_fusion.py
import logging
from typing import Dict

import httpx

from miprojet.core.config import settings
from miprojet.core.errors import GatewayError
from miprojet.models.payment_model import GatewayTransaction, Payment, PaymentRequest
from miprojet.services.gateway_base import GatewayClient

logger = logging.getLogger("miprojet.gateways")

# Methods that do not go through a mobile-money wallet
CARD_METHODS = ("card",)


class MoneyFusionClient(GatewayClient):
    provider = "money_fusion"
    display_name = "Money Fusion"

    def __init__(
        self,
        api_key: str = None,
        merchant_id: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        super().__init__(base_url or settings.MONEY_FUSION_API_URL, timeout, transport)
        self.api_key = api_key
        self.merchant_id = merchant_id

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.merchant_id)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def requires_phone_number(self, payment_method: str) -> bool:
        return payment_method.lower() not in CARD_METHODS

    async def create_transaction(self, payment: Payment, request: PaymentRequest) -> GatewayTransaction:
        payload = {
            "merchant_id": self.merchant_id,
            "amount": payment.amount,
            "currency": payment.currency,
            "payment_method": payment.payment_method,
            "phone_number": request.phone_number,
            "reference": payment.payment_reference,
            "description": request.description or f"Paiement MIPROJET - {payment.payment_reference}",
            # Where Money Fusion posts the status notification
            "callback_url": request.callback_url or f"{settings.BACKEND_URL}/functions/money-fusion-webhook",
            "metadata": {
                "payment_id": payment.id,
                "user_id": payment.user_id,
                "project_id": payment.project_id,
                "service_request_id": payment.service_request_id,
            },
        }

        async with self.http_client() as client:
            body = await self.post_json(client, "/payments", payload)

        if body.get("success") is False:
            raise GatewayError(self.display_name, body.get("message") or "transaction refused")

        logger.info(f"Money Fusion transaction opened for {payment.payment_reference}: {body.get('transaction_id')}")
        return GatewayTransaction(
            transaction_id=str(body["transaction_id"]) if body.get("transaction_id") else None,
            payment_url=body.get("payment_url"),
            raw=body,
        )


def get_money_fusion_client() -> MoneyFusionClient:
    return MoneyFusionClient(
        api_key=settings.MONEY_FUSION_API_KEY,
        merchant_id=settings.MONEY_FUSION_MERCHANT_ID,
    )
