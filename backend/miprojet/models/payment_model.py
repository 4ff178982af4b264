# models/payment_model.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


# No transition is ever applied out of these.
TERMINAL_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.CANCELLED,
    PaymentStatus.REFUNDED,
})


def is_terminal_status(status) -> bool:
    return PaymentStatus(status) in TERMINAL_STATUSES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Payment(BaseModel):
    """One attempt to move money for a project contribution or a service fee."""
    id: str = Field(..., alias="_id")
    user_id: str

    amount: float
    currency: str = "XOF"
    payment_method: str
    payment_reference: str

    # Link to source
    project_id: Optional[str] = None
    service_request_id: Optional[str] = None

    status: PaymentStatus = PaymentStatus.PENDING

    # Phone, gateway ids, webhook diagnostics. Only ever merged into.
    metadata: Dict[str, Any] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        populate_by_name = True
        use_enum_values = True
        validate_default = True

    @property
    def is_terminal(self) -> bool:
        return is_terminal_status(self.status)

    @classmethod
    def from_snapshot(cls, snapshot) -> "Payment":
        data = snapshot.to_dict() or {}
        data["_id"] = snapshot.id
        return cls(**data)

    def to_firestore(self) -> dict:
        return self.model_dump(by_alias=True)


# ----------------------------------------------------------------
# Initiation
# ----------------------------------------------------------------
class PaymentRequest(BaseModel):
    """Body of POST /functions/money-fusion-payment.

    Fields are loose on purpose; amount and method are checked by the
    initiator so validation failures answer 400 rather than 422.
    """
    amount: Optional[float] = None
    currency: Optional[str] = None
    payment_method: Optional[str] = None
    phone_number: Optional[str] = None
    project_id: Optional[str] = None
    service_request_id: Optional[str] = None
    description: Optional[str] = None
    callback_url: Optional[str] = None


class FedaPayCustomer(BaseModel):
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    phone: str = ""


class FedaPayPaymentRequest(PaymentRequest):
    payment_method: Optional[str] = "fedapay"
    customer: Optional[FedaPayCustomer] = None


class GatewayTransaction(BaseModel):
    """What a gateway hands back when a transaction is opened."""
    transaction_id: Optional[str] = None
    reference: Optional[str] = None
    payment_url: Optional[str] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


class InitiationResult(BaseModel):
    success: bool = True
    payment_id: str
    reference: str
    status: str
    amount: float
    currency: str
    payment_method: str
    payment_url: Optional[str] = None
    external_response: Optional[Dict[str, Any]] = None
    # Set when the gateway call failed but the local record was kept
    warning: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    payment_id: str
    reference: str
    status: str
    amount: float
    currency: str
    project_id: Optional[str] = None
    service_request_id: Optional[str] = None
    updated_at: datetime


# ----------------------------------------------------------------
# Reconciliation
# ----------------------------------------------------------------
class ReconciliationResult(BaseModel):
    outcome: Literal["applied", "unchanged", "ignored", "not_found", "error"]
    payment_id: Optional[str] = None
    previous_status: Optional[str] = None
    # Status the provider asked for, after mapping
    mapped_status: Optional[str] = None
    # Status stored once reconciliation finished
    status: Optional[str] = None
    credited: bool = False
    message: Optional[str] = None
