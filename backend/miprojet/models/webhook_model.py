# models/webhook_model.py
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

from miprojet.models.payment_model import utcnow

Provider = Literal["money_fusion", "fedapay"]


class WebhookEvent(BaseModel):
    """A provider notification normalized for the reconciliation engine."""
    provider: Provider
    event_name: Optional[str] = None

    # Correlation keys: our reference first, the provider's id second
    reference: Optional[str] = None
    external_id: Optional[str] = None

    status: Optional[str] = None        # raw provider status
    amount: Optional[float] = None
    currency: Optional[str] = None

    # Provider-specific keys merged into the payment metadata
    extra_metadata: Dict[str, Any] = Field(default_factory=dict)

    received_at: datetime = Field(default_factory=utcnow)
    ip_address: Optional[str] = None

    @property
    def correlation_key(self) -> Optional[str]:
        return self.reference or self.external_id

    # ---------------- Money Fusion ----------------
    @classmethod
    def from_money_fusion(cls, payload: Dict[str, Any], ip_address: str = None) -> "WebhookEvent":
        if not isinstance(payload, dict):
            raise ValueError("Money Fusion webhook body must be a JSON object")

        extra = {}
        if payload.get("payment_method"):
            extra["provider_payment_method"] = payload["payment_method"]
        if payload.get("timestamp"):
            extra["provider_timestamp"] = payload["timestamp"]

        return cls(
            provider="money_fusion",
            event_name=payload.get("event") or "payment.status",
            reference=_as_str(payload.get("reference")),
            external_id=_as_str(payload.get("transaction_id")),
            status=payload.get("status"),
            amount=payload.get("amount"),
            currency=payload.get("currency"),
            extra_metadata=extra,
            ip_address=ip_address,
        )

    # ---------------- FedaPay ----------------
    @classmethod
    def from_fedapay(cls, payload: Dict[str, Any], ip_address: str = None) -> "WebhookEvent":
        """
        FedaPay posts either `{name, entity}` or the older
        `{event, data: {object}}` envelope; a bare transaction is accepted too.
        """
        if not isinstance(payload, dict):
            raise ValueError("FedaPay webhook body must be a JSON object")

        transaction = payload.get("entity") or (payload.get("data") or {}).get("object") or payload
        if not isinstance(transaction, dict):
            transaction = {}

        currency = transaction.get("currency")
        if isinstance(currency, dict):
            currency = currency.get("iso")

        extra = {}
        if transaction.get("mode"):
            extra["fedapay_mode"] = transaction["mode"]

        return cls(
            provider="fedapay",
            event_name=payload.get("name") or payload.get("event"),
            reference=_as_str(transaction.get("reference")),
            external_id=_as_str(transaction.get("id")),
            status=transaction.get("status"),
            amount=transaction.get("amount"),
            currency=currency,
            extra_metadata=extra,
            ip_address=ip_address,
        )


def _as_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
