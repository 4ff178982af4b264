# services/payment_initiator.py
import logging
import math
import secrets
import string
import time
import uuid

from google.api_core.exceptions import GoogleAPICallError

from miprojet.core.config import settings
from miprojet.core.errors import (
    DuplicateReference,
    GatewayError,
    InvalidAmount,
    MissingPaymentMethod,
    MissingPhoneNumber,
    PaymentError,
)
from miprojet.models.payment_model import (
    InitiationResult,
    Payment,
    PaymentRequest,
    PaymentStatus,
    utcnow,
)
from miprojet.models.user_model import AuthenticatedUser
from miprojet.services.gateway_base import GatewayClient
from miprojet.services.payment_store import PaymentStore

logger = logging.getLogger("miprojet.payments")

REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_SUFFIX_LENGTH = 5
MAX_REFERENCE_ATTEMPTS = 3


def generate_payment_reference(prefix: str = None) -> str:
    """e.g. MIPROJET-1700000000123-AB12C"""
    prefix = prefix or settings.PAYMENT_REFERENCE_PREFIX
    suffix = "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_SUFFIX_LENGTH))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class PaymentInitiator:
    """
    Records a pending payment, then asks the gateway to open a transaction.

    The local record is kept whatever the gateway does: a gateway failure is
    returned as a `warning` next to a valid reference, since the provider
    may still deliver a webhook for it. Without credentials the gateway is
    simulated so the confirmation step stays usable.
    """

    def __init__(self, store: PaymentStore, gateway: GatewayClient):
        self.store = store
        self.gateway = gateway

    def validate(self, request: PaymentRequest) -> str:
        if request.amount is None or not math.isfinite(request.amount) or request.amount <= 0:
            raise InvalidAmount("Invalid amount")

        payment_method = (request.payment_method or "").strip()
        if not payment_method:
            raise MissingPaymentMethod("Payment method required")

        if self.gateway.requires_phone_number(payment_method) and not request.phone_number:
            raise MissingPhoneNumber("Phone number required for mobile money payments")
        return payment_method

    async def initiate(self, user: AuthenticatedUser, request: PaymentRequest) -> InitiationResult:
        payment_method = self.validate(request)
        payment = self._record_pending(user, request, payment_method)

        external_response = None
        payment_url = None
        warning = None

        if not self.gateway.configured:
            logger.info(f"{self.gateway.display_name} credentials not configured, simulating {payment.payment_reference}")
            external_response = self.gateway.simulated_response(payment)
        else:
            try:
                transaction = await self.gateway.create_transaction(payment, request)
            except GatewayError as e:
                logger.error(f"❌ {self.gateway.display_name} initiation failed for {payment.payment_reference}, keeping local record: {e}")
                warning = f"{self.gateway.display_name} is unavailable; your payment reference is saved, please retry shortly"
            else:
                external_response = transaction.raw
                payment_url = transaction.payment_url
                self._remember_gateway_ids(payment, transaction)

        return InitiationResult(
            payment_id=payment.id,
            reference=payment.payment_reference,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            payment_method=payment.payment_method,
            payment_url=payment_url,
            external_response=external_response,
            warning=warning,
        )

    def _record_pending(self, user: AuthenticatedUser, request: PaymentRequest, payment_method: str) -> Payment:
        metadata = {
            "phone_number": request.phone_number,
            "description": request.description,
            "initiated_at": utcnow().isoformat(),
            "gateway": self.gateway.provider,
        }
        customer = getattr(request, "customer", None)
        if customer:
            metadata["customer"] = customer.model_dump()

        for attempt in range(1, MAX_REFERENCE_ATTEMPTS + 1):
            payment = Payment(
                id=uuid.uuid4().hex,
                user_id=user.uid,
                amount=request.amount,
                currency=(request.currency or settings.DEFAULT_CURRENCY).upper(),
                payment_method=payment_method,
                payment_reference=generate_payment_reference(),
                project_id=request.project_id or None,
                service_request_id=request.service_request_id or None,
                status=PaymentStatus.PENDING,
                metadata=metadata,
            )
            try:
                return self.store.create(payment)
            except DuplicateReference:
                logger.warning(f"Reference collision on {payment.payment_reference} (attempt {attempt}), regenerating")

        raise DuplicateReference(payment.payment_reference)

    def _remember_gateway_ids(self, payment: Payment, transaction):
        patch = {}
        if transaction.transaction_id:
            patch["external_transaction_id"] = transaction.transaction_id
        if transaction.reference:
            patch["external_reference"] = transaction.reference
        if transaction.payment_url:
            patch["payment_url"] = transaction.payment_url
        if not patch:
            return

        try:
            self.store.merge_metadata(payment.id, patch)
        except (GoogleAPICallError, PaymentError) as e:
            # The webhook can still match on our own reference
            logger.error(f"Could not store gateway ids on payment {payment.id}: {e}")
