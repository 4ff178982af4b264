# services/reconciliation.py
import logging
from typing import Any, Dict

from google.api_core.exceptions import GoogleAPICallError

from miprojet.core.errors import (
    ConcurrentUpdateError,
    LedgerIntegrityError,
    PaymentNotFound,
)
from miprojet.models.payment_model import Payment, ReconciliationResult
from miprojet.models.webhook_model import WebhookEvent
from miprojet.services.ledger import (
    stage_project_credit,
    stage_service_request_paid,
    write_audit_log,
)
from miprojet.services.payment_store import PaymentStore, StatusUpdate
from miprojet.services.status_mapper import map_status

logger = logging.getLogger("miprojet.reconciliation")

# How each provider's project payments are booked in `contributions`
CONTRIBUTION_TYPES = {
    "money_fusion": "investment",
    "fedapay": "crowdfunding",
}

AMOUNT_TOLERANCE = 0.005


class ReconciliationEngine:
    """
    Applies a provider notification to the payment ledger.

    Deliveries are at-least-once and may arrive out of order. Safety comes
    from the store's conditional transition: terminal statuses are sticky,
    and funds, contribution and service-request writes are staged into the
    very batch that moves the payment into `completed`, so they commit at
    most once per payment.

    Store failures are logged and reported as an `error` outcome instead of
    raised; the HTTP adapters decide what the provider sees.
    """

    def __init__(self, db, store: PaymentStore = None):
        self.db = db
        self.store = store or PaymentStore(db)

    def reconcile(self, event: WebhookEvent) -> ReconciliationResult:
        if not event.correlation_key:
            logger.info(f"[{event.provider}] {event.event_name or 'event'} carries no transaction reference, acknowledged")
            return ReconciliationResult(outcome="ignored", message="No transaction reference in webhook")

        try:
            payment = self.store.find_by_reference_or_external_id(event.reference, event.external_id)
        except GoogleAPICallError as e:
            logger.error(f"❌ [{event.provider}] Payment lookup failed for {event.correlation_key}: {e}")
            return ReconciliationResult(outcome="error", message=str(e))

        if payment is None:
            logger.warning(
                f"[{event.provider}] No payment for reference={event.reference} "
                f"transaction_id={event.external_id}, acknowledged"
            )
            return ReconciliationResult(outcome="not_found", message="Payment not found")

        mapped = map_status(event.provider, event.status)
        staged = {"project": False}

        def stage_completion(batch, completed: Payment):
            staged["project"] = False
            if completed.project_id:
                contribution_type = CONTRIBUTION_TYPES.get(event.provider, "investment")
                staged["project"] = stage_project_credit(self.db, batch, completed, contribution_type)
            if completed.service_request_id:
                stage_service_request_paid(self.db, batch, completed)

        try:
            update = self.store.update_status_and_merge_metadata(
                payment.id,
                mapped,
                self._metadata_patch(event, payment),
                terminal_patch=self._terminal_patch(event),
                on_first_completion=stage_completion,
            )
        except LedgerIntegrityError as e:
            logger.error(f"LEDGER INTEGRITY: {e} | ref={payment.payment_reference} attempted {payment.status} → {mapped.value}")
            return self._error(payment, mapped.value, str(e))
        except (ConcurrentUpdateError, PaymentNotFound, GoogleAPICallError) as e:
            logger.error(f"❌ Failed to reconcile payment {payment.id} ({payment.status} → {mapped.value}): {e}")
            return self._error(payment, mapped.value, str(e))

        current = update.payment
        if not update.transitioned:
            logger.info(
                f"♻️ Payment {current.id} stays {current.status} "
                f"({event.provider} said '{event.status}', event={event.event_name})"
            )
            return ReconciliationResult(
                outcome="unchanged",
                payment_id=current.id,
                previous_status=update.previous.status,
                mapped_status=mapped.value,
                status=current.status,
            )

        credited = update.first_completion and staged["project"]
        self._audit(event, update)

        if update.first_completion:
            logger.info(f"✅ Payment COMPLETED → {current.payment_reference} | {current.amount:,.0f} {current.currency} | user={current.user_id}")
            if credited:
                logger.info(f"💰 Project {current.project_id} funds +{current.amount:,.0f}")
            if current.service_request_id:
                logger.info(f"Service request {current.service_request_id} marked as paid")
        else:
            logger.info(f"Payment {current.id} {update.previous.status} → {current.status}")

        return ReconciliationResult(
            outcome="applied",
            payment_id=current.id,
            previous_status=update.previous.status,
            mapped_status=mapped.value,
            status=current.status,
            credited=credited,
        )

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------
    def _metadata_patch(self, event: WebhookEvent, payment: Payment) -> Dict[str, Any]:
        patch = {
            "provider": event.provider,
            "webhook_received_at": event.received_at.isoformat(),
            "provider_status": event.status,
            "provider_event": event.event_name,
        }
        if event.external_id:
            patch["external_transaction_id"] = event.external_id
        if event.reference and event.reference != payment.payment_reference:
            patch["external_reference"] = event.reference

        if event.amount is not None and abs(event.amount - payment.amount) > AMOUNT_TOLERANCE:
            logger.warning(
                f"⚠️ Amount drift on {payment.payment_reference}: stored {payment.amount:,.2f}, "
                f"{event.provider} reported {event.amount:,.2f}; crediting the stored amount"
            )
            patch["webhook_amount"] = event.amount

        patch.update(event.extra_metadata)
        return patch

    def _terminal_patch(self, event: WebhookEvent) -> Dict[str, Any]:
        return {
            "ignored_webhook_at": event.received_at.isoformat(),
            "ignored_provider_status": event.status,
            "ignored_provider_event": event.event_name,
        }

    def _audit(self, event: WebhookEvent, update: StatusUpdate):
        write_audit_log(
            self.db,
            user_id=update.payment.user_id,
            action="payment_webhook",
            table_name="payments",
            record_id=update.payment.id,
            details={
                "provider": event.provider,
                "event": event.event_name,
                "old_status": update.previous.status,
                "new_status": update.payment.status,
                "provider_status": event.status,
                "external_transaction_id": event.external_id,
            },
            ip_address=event.ip_address,
        )

    @staticmethod
    def _error(payment: Payment, mapped_status: str, message: str) -> ReconciliationResult:
        return ReconciliationResult(
            outcome="error",
            payment_id=payment.id,
            previous_status=payment.status,
            mapped_status=mapped_status,
            status=payment.status,
            message=message,
        )
