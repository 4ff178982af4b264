# services/fedapay.py
import logging
from typing import Any, Dict

import httpx

from miprojet.core.config import settings
from miprojet.core.errors import GatewayError
from miprojet.models.payment_model import FedaPayPaymentRequest, GatewayTransaction, Payment
from miprojet.services.gateway_base import GatewayClient

logger = logging.getLogger("miprojet.gateways")


def _unwrap(body: Dict[str, Any], key: str) -> Dict[str, Any]:
    # FedaPay answers {"v1/<key>": {...}}; older payloads nest under "v1" or "<key>"
    for candidate in (f"v1/{key}", key):
        if isinstance(body.get(candidate), dict):
            return body[candidate]
    nested = body.get("v1")
    if isinstance(nested, dict) and isinstance(nested.get(key), dict):
        return nested[key]
    return body


class FedaPayClient(GatewayClient):
    provider = "fedapay"
    display_name = "FedaPay"

    def __init__(
        self,
        secret_key: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        super().__init__(base_url or settings.FEDAPAY_API_URL, timeout, transport)
        self.secret_key = secret_key

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def create_transaction(self, payment: Payment, request: FedaPayPaymentRequest) -> GatewayTransaction:
        """Open a transaction, then ask for its checkout token (the URL the payer visits)."""
        payload = {
            "description": request.description or "Paiement MIPROJET",
            "amount": int(round(payment.amount)),
            "currency": {"iso": payment.currency},
            "merchant_reference": payment.payment_reference,
            # Browser redirect after checkout; status arrives via the webhook
            "callback_url": request.callback_url or f"{settings.FRONTEND_URL}/payment/callback",
        }
        customer = getattr(request, "customer", None)
        if customer:
            payload["customer"] = {
                "firstname": customer.first_name,
                "lastname": customer.last_name,
                "email": customer.email,
                "phone_number": {
                    "number": customer.phone or request.phone_number or "",
                    "country": settings.FEDAPAY_COUNTRY,
                },
            }

        async with self.http_client() as client:
            transaction = _unwrap(await self.post_json(client, "/transactions", payload), "transaction")
            transaction_id = transaction.get("id")
            if not transaction_id:
                raise GatewayError(self.display_name, "transaction id missing from response")

            token = _unwrap(await self.post_json(client, f"/transactions/{transaction_id}/token"), "token")

        logger.info(f"FedaPay transaction {transaction_id} opened for {payment.payment_reference}")
        return GatewayTransaction(
            transaction_id=str(transaction_id),
            reference=transaction.get("reference"),
            payment_url=token.get("url"),
            raw={"transaction": transaction, "token": token},
        )


def get_fedapay_client() -> FedaPayClient:
    return FedaPayClient(secret_key=settings.FEDAPAY_SECRET_KEY)
