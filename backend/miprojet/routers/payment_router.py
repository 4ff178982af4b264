# routers/payment_router.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from google.api_core.exceptions import GoogleAPICallError

from miprojet.core.auth import get_current_user
from miprojet.core.errors import (
    DuplicateReference,
    InvalidAmount,
    MissingPaymentMethod,
    MissingPhoneNumber,
)
from miprojet.core.firebase import get_db
from miprojet.models.payment_model import (
    FedaPayPaymentRequest,
    InitiationResult,
    PaymentRequest,
    PaymentStatusResponse,
)
from miprojet.models.user_model import AuthenticatedUser
from miprojet.services.fedapay import FedaPayClient, get_fedapay_client
from miprojet.services.gateway_base import GatewayClient
from miprojet.services.money_fusion import MoneyFusionClient, get_money_fusion_client
from miprojet.services.payment_initiator import PaymentInitiator
from miprojet.services.payment_store import PaymentStore

router = APIRouter(prefix="/functions", tags=["Payments"])
logger = logging.getLogger("miprojet.payments")


async def _initiate(
    payload: PaymentRequest,
    user: AuthenticatedUser,
    db,
    gateway: GatewayClient,
) -> InitiationResult:
    logger.info(
        f"Processing {gateway.provider} payment request | amount={payload.amount} "
        f"method={payload.payment_method} project={payload.project_id} user={user.uid}"
    )
    initiator = PaymentInitiator(PaymentStore(db), gateway)
    try:
        return await initiator.initiate(user, payload)
    except (InvalidAmount, MissingPaymentMethod, MissingPhoneNumber) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except (DuplicateReference, GoogleAPICallError) as e:
        logger.error(f"❌ Error creating payment record for user {user.uid}: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create payment")


# --------------------------------------------------------------
# 1. MONEY FUSION - mobile money / card
# --------------------------------------------------------------
@router.post("/money-fusion-payment", response_model=InitiationResult)
async def money_fusion_payment(
    payload: PaymentRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db=Depends(get_db),
    gateway: MoneyFusionClient = Depends(get_money_fusion_client),
):
    return await _initiate(payload, current_user, db, gateway)


# --------------------------------------------------------------
# 2. FEDAPAY - hosted checkout
# --------------------------------------------------------------
@router.post("/fedapay-payment", response_model=InitiationResult)
async def fedapay_payment(
    payload: FedaPayPaymentRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db=Depends(get_db),
    gateway: FedaPayClient = Depends(get_fedapay_client),
):
    return await _initiate(payload, current_user, db, gateway)


# --------------------------------------------------------------
# 3. STATUS - polled by the payment callback page
# --------------------------------------------------------------
@router.get("/payment-status/{reference}", response_model=PaymentStatusResponse)
async def payment_status(
    reference: str,
    transaction_id: Optional[str] = None,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db=Depends(get_db),
):
    try:
        payment = PaymentStore(db).find_by_reference_or_external_id(reference, transaction_id)
    except GoogleAPICallError as e:
        # e.g. a reference Firestore refuses as a document id
        logger.warning(f"Payment status lookup failed for {reference}: {e}")
        payment = None

    # Someone else's payment is reported exactly like a missing one
    if not payment or payment.user_id != current_user.uid:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")

    return PaymentStatusResponse(
        payment_id=payment.id,
        reference=payment.payment_reference,
        status=payment.status,
        amount=payment.amount,
        currency=payment.currency,
        project_id=payment.project_id,
        service_request_id=payment.service_request_id,
        updated_at=payment.updated_at,
    )
