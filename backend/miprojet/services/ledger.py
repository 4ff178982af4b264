# services/ledger.py
import logging
from typing import Any, Dict, Optional

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import firestore

from miprojet.models.payment_model import Payment, utcnow

logger = logging.getLogger("miprojet.ledger")

PROJECTS = "projects"
SERVICE_REQUESTS = "service_requests"
CONTRIBUTIONS = "contributions"
AUDIT_LOGS = "audit_logs"


# -------------------------------
# Project crowdfunding credit
# -------------------------------
def stage_project_credit(db, batch, payment: Payment, contribution_type: str) -> bool:
    """
    Stage `funds_raised += amount` and the payment's contribution row.
    The contribution id is the payment id and is written with `create`,
    so a second credit for the same payment fails the whole batch.
    """
    project_ref = db.collection(PROJECTS).document(payment.project_id)
    if not project_ref.get().exists:
        logger.error(
            f"LEDGER INTEGRITY: project {payment.project_id} missing, "
            f"payment {payment.id} completed without crediting {payment.amount:,.0f} {payment.currency}"
        )
        return False

    now = utcnow()
    batch.update(project_ref, {
        "funds_raised": firestore.Increment(payment.amount),
        "updated_at": now,
    })
    batch.create(db.collection(CONTRIBUTIONS).document(payment.id), {
        "project_id": payment.project_id,
        "user_id": payment.user_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "type": contribution_type,
        "payment_id": payment.id,
        "payment_reference": payment.payment_reference,
        "created_at": now,
    })
    return True


# -------------------------------
# Service request fee
# -------------------------------
def stage_service_request_paid(db, batch, payment: Payment) -> bool:
    request_ref = db.collection(SERVICE_REQUESTS).document(payment.service_request_id)
    if not request_ref.get().exists:
        logger.error(
            f"LEDGER INTEGRITY: service request {payment.service_request_id} missing, "
            f"payment {payment.id} completed without marking it paid"
        )
        return False

    batch.update(request_ref, {
        "status": "paid",
        "updated_at": utcnow(),
    })
    return True


# -------------------------------
# Audit trail
# -------------------------------
def write_audit_log(
    db,
    user_id: str,
    action: str,
    table_name: str,
    record_id: str,
    details: Dict[str, Any],
    ip_address: Optional[str] = None,
) -> bool:
    """Append-only; a failed audit write is logged, never raised."""
    try:
        db.collection(AUDIT_LOGS).add({
            "user_id": user_id,
            "action": action,
            "table_name": table_name,
            "record_id": record_id,
            "details": details,
            "ip_address": ip_address,
            "created_at": utcnow(),
        })
        return True
    except GoogleAPICallError as e:
        logger.error(f"❌ Audit log write failed for {table_name}/{record_id} ({action}): {e}")
        return False
