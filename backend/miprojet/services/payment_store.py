# services/payment_store.py
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from google.api_core.exceptions import Aborted, AlreadyExists, FailedPrecondition
from google.cloud.firestore_v1.base_query import FieldFilter

from miprojet.core.config import settings
from miprojet.core.errors import (
    ConcurrentUpdateError,
    DuplicateReference,
    LedgerIntegrityError,
    PaymentNotFound,
)
from miprojet.models.payment_model import Payment, PaymentStatus, utcnow

logger = logging.getLogger("miprojet.payments")

PAYMENTS = "payments"
# One document per reference (id = reference); makes reuse fail at commit.
PAYMENT_REFERENCES = "payment_references"

# Where a provider's own identifiers end up in payment metadata
EXTERNAL_ID_FIELDS = ("metadata.external_transaction_id", "metadata.external_reference")

StageWrites = Callable[[Any, Payment], None]


@dataclass
class StatusUpdate:
    previous: Payment
    payment: Payment

    @property
    def transitioned(self) -> bool:
        return self.previous.status != self.payment.status

    @property
    def first_completion(self) -> bool:
        return self.transitioned and self.payment.status == PaymentStatus.COMPLETED


class PaymentStore:
    """Durable ledger of payment attempts, keyed by payment reference."""

    def __init__(self, db, max_attempts: int = None):
        self.db = db
        self.payments = db.collection(PAYMENTS)
        self.references = db.collection(PAYMENT_REFERENCES)
        self.max_attempts = max_attempts or settings.PAYMENT_UPDATE_MAX_ATTEMPTS

    # --------------------------------------------------------------
    # Create
    # --------------------------------------------------------------
    def create(self, payment: Payment) -> Payment:
        batch = self.db.batch()
        batch.create(
            self.references.document(payment.payment_reference),
            {"payment_id": payment.id, "created_at": payment.created_at},
        )
        batch.create(self.payments.document(payment.id), payment.to_firestore())

        try:
            batch.commit()
        except AlreadyExists as e:
            raise DuplicateReference(payment.payment_reference) from e

        logger.info(f"🧾 Payment {payment.id} created | ref={payment.payment_reference} | {payment.amount:,.0f} {payment.currency}")
        return payment

    # --------------------------------------------------------------
    # Lookups
    # --------------------------------------------------------------
    def get(self, payment_id: str) -> Optional[Payment]:
        if not payment_id:
            return None
        snapshot = self.payments.document(payment_id).get()
        return Payment.from_snapshot(snapshot) if snapshot.exists else None

    def find_by_reference_or_external_id(
        self,
        reference: Optional[str] = None,
        external_id: Optional[str] = None,
    ) -> Optional[Payment]:
        if reference and "/" not in reference:
            index = self.references.document(reference).get()
            if index.exists:
                payment = self.get((index.to_dict() or {}).get("payment_id"))
                if payment:
                    return payment
                logger.error(f"Reference index {reference} points at a missing payment")

        # Providers may echo their own id or reference instead of ours
        candidates = [value for value in (external_id, reference) if value]
        for field in EXTERNAL_ID_FIELDS:
            for value in candidates:
                docs = list(
                    self.payments
                    .where(filter=FieldFilter(field, "==", value))
                    .limit(1)
                    .stream()
                )
                if docs:
                    return Payment.from_snapshot(docs[0])
        return None

    # --------------------------------------------------------------
    # Conditional updates
    # --------------------------------------------------------------
    def update_status_and_merge_metadata(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        metadata_patch: Dict[str, Any],
        terminal_patch: Optional[Dict[str, Any]] = None,
        on_first_completion: Optional[StageWrites] = None,
    ) -> StatusUpdate:
        """
        Move a non-terminal payment to `new_status` and shallow-merge
        `metadata_patch` (patch wins). A terminal payment keeps its status;
        only `terminal_patch`, if given, is merged into it.

        `on_first_completion(batch, payment)` stages extra writes that commit
        in the same batch as the transition into `completed`.
        """
        new_status = PaymentStatus(new_status).value

        def decide(current: Payment) -> Optional[Tuple[str, Dict[str, Any]]]:
            if current.is_terminal:
                return (current.status, terminal_patch) if terminal_patch else None
            return new_status, metadata_patch

        return self._guarded_write(payment_id, decide, on_first_completion)

    def merge_metadata(self, payment_id: str, metadata_patch: Dict[str, Any]) -> Payment:
        update = self._guarded_write(payment_id, lambda current: (current.status, metadata_patch))
        return update.payment

    def _guarded_write(self, payment_id: str, decide, on_first_completion: Optional[StageWrites] = None) -> StatusUpdate:
        """
        Read, decide, then commit guarded by the snapshot's update_time.
        Losing the race means someone else wrote first: re-read and decide
        again, so a payment that went terminal meanwhile is never regressed.
        """
        ref = self.payments.document(payment_id)

        for attempt in range(1, self.max_attempts + 1):
            snapshot = ref.get()
            if not snapshot.exists:
                raise PaymentNotFound(payment_id)
            current = Payment.from_snapshot(snapshot)

            decision = decide(current)
            if decision is None:
                return StatusUpdate(previous=current, payment=current)
            status, patch = decision

            now = utcnow()
            updated = current.model_copy(update={
                "status": status,
                "metadata": {**current.metadata, **(patch or {})},
                "updated_at": now,
            })
            result = StatusUpdate(previous=current, payment=updated)

            batch = self.db.batch()
            batch.update(
                ref,
                {"status": updated.status, "metadata": updated.metadata, "updated_at": now},
                option=self.db.write_option(last_update_time=snapshot.update_time),
            )
            if result.first_completion and on_first_completion:
                on_first_completion(batch, updated)

            try:
                batch.commit()
            except (FailedPrecondition, Aborted):
                logger.warning(f"⚠️ Payment {payment_id} changed concurrently (attempt {attempt}/{self.max_attempts}), re-reading")
                continue
            except AlreadyExists as e:
                raise LedgerIntegrityError(
                    f"Payment {payment_id}: a ledger record for this payment already exists ({e})"
                ) from e

            return result

        raise ConcurrentUpdateError(f"Payment {payment_id}: gave up after {self.max_attempts} conflicting writes")
