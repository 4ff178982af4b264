from typing import Optional

from miprojet.models.payment_model import PaymentStatus

MONEY_FUSION_STATUSES = {
    "success": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "pending": PaymentStatus.PENDING,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
}

FEDAPAY_STATUSES = {
    "approved": PaymentStatus.COMPLETED,
    "completed": PaymentStatus.COMPLETED,
    "transferred": PaymentStatus.COMPLETED,
    "pending": PaymentStatus.PENDING,
    "declined": PaymentStatus.FAILED,
    "canceled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
}

STATUS_MAPS = {
    "money_fusion": MONEY_FUSION_STATUSES,
    "fedapay": FEDAPAY_STATUSES,
}


def map_status(provider: str, provider_status: Optional[str]) -> PaymentStatus:
    """
    Translate a provider status into ours. Anything unrecognised stays
    `pending` so an unknown word can never settle a payment.
    """
    table = STATUS_MAPS.get(provider)
    if table is None:
        raise ValueError(f"Unknown payment provider: {provider}")
    if not provider_status:
        return PaymentStatus.PENDING
    return table.get(provider_status.strip().lower(), PaymentStatus.PENDING)
