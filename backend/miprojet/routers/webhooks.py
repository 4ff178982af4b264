# routers/webhooks.py
import json
import logging

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from miprojet.core.config import settings
from miprojet.core.firebase import get_db
from miprojet.core.signatures import verify_signature
from miprojet.models.webhook_model import WebhookEvent
from miprojet.services.reconciliation import ReconciliationEngine

router = APIRouter(prefix="/functions", tags=["Webhooks"])
logger = logging.getLogger("miprojet.webhooks")


def get_reconciliation_engine(db=Depends(get_db)) -> ReconciliationEngine:
    return ReconciliationEngine(db)


def _client_ip(request: Request):
    return request.client.host if request.client else None


# ========================================
# MONEY FUSION - signature enforced
# ========================================
@router.post("/money-fusion-webhook")
async def money_fusion_webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    body = await request.body()

    # === 1. Validate Signature (before any read or write) ===
    secret = settings.MONEY_FUSION_WEBHOOK_SECRET
    if not secret:
        logger.error("MONEY_FUSION_WEBHOOK_SECRET not configured, rejecting webhook")
        return JSONResponse({"error": "Webhook not configured"}, status_code=status.HTTP_401_UNAUTHORIZED)

    signature = request.headers.get("x-moneyfusion-signature")
    if not signature:
        logger.warning("Money Fusion webhook without signature")
        return JSONResponse({"error": "Missing signature"}, status_code=status.HTTP_401_UNAUTHORIZED)

    if not verify_signature(body, signature, secret):
        logger.warning("Invalid Money Fusion webhook signature")
        return JSONResponse({"error": "Invalid signature"}, status_code=status.HTTP_401_UNAUTHORIZED)

    # === 2. Parse ===
    try:
        event = WebhookEvent.from_money_fusion(json.loads(body), ip_address=_client_ip(request))
    except ValueError as e:
        logger.error(f"Invalid Money Fusion webhook body: {e}")
        return JSONResponse({"error": "Invalid payload"}, status_code=status.HTTP_400_BAD_REQUEST)

    logger.info(f"Money Fusion webhook: ref={event.reference} status={event.status}")

    # === 3. Reconcile ===
    result = engine.reconcile(event)

    if result.outcome == "not_found":
        return JSONResponse({"error": "Payment not found"}, status_code=status.HTTP_404_NOT_FOUND)
    if result.outcome == "error":
        return JSONResponse(
            {"error": "Failed to update payment", "message": result.message},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    if result.outcome == "ignored":
        return {"received": True}

    return {"success": True, "payment_id": result.payment_id, "status": result.status}


# ========================================
# FEDAPAY - always acknowledged
# ========================================
@router.post("/fedapay-webhook")
async def fedapay_webhook(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
):
    body = await request.body()
    signature = request.headers.get("x-fedapay-signature")
    secret = settings.FEDAPAY_WEBHOOK_SECRET

    if settings.FEDAPAY_ENFORCE_SIGNATURE:
        if not verify_signature(body, signature, secret):
            logger.warning(f"Rejected FedaPay webhook (secret configured: {bool(secret)}, signature present: {bool(signature)})")
            return JSONResponse({"error": "Invalid signature"}, status_code=status.HTTP_401_UNAUTHORIZED)
    elif secret and signature and not verify_signature(body, signature, secret):
        # TODO: enable FEDAPAY_ENFORCE_SIGNATURE in production once FedaPay signs every delivery
        logger.warning("FedaPay webhook signature mismatch - continuing anyway")

    try:
        event = WebhookEvent.from_fedapay(json.loads(body), ip_address=_client_ip(request))
        logger.info(f"FedaPay webhook: event={event.event_name} transaction={event.external_id or event.reference}")
        result = engine.reconcile(event)
    except Exception as e:
        # Always 200 so FedaPay does not keep retrying
        logger.exception(f"FedaPay webhook processing error: {e}")
        return {"received": True, "error": str(e)}

    response = {"received": True}
    if result.status or result.mapped_status:
        response["status"] = result.status or result.mapped_status
    return response
