import pytest

from miprojet.core.errors import ConcurrentUpdateError, DuplicateReference, PaymentNotFound
from miprojet.models.payment_model import Payment, PaymentStatus
from miprojet.services.payment_store import PaymentStore


def test_create_indexes_reference(db, store, make_payment):
    payment = make_payment()

    assert db.doc("payments", payment.id)["status"] == "pending"
    assert db.doc("payment_references", payment.payment_reference)["payment_id"] == payment.id
    assert store.find_by_reference_or_external_id(payment.payment_reference).id == payment.id


def test_reused_reference_is_rejected(db, store, make_payment):
    first = make_payment()

    with pytest.raises(DuplicateReference):
        make_payment(id="pay-other", payment_reference=first.payment_reference)

    assert set(db.docs("payments")) == {first.id}


def test_find_by_provider_ids(store, make_payment):
    payment = make_payment()
    store.merge_metadata(payment.id, {"external_transaction_id": "4242", "external_reference": "trx_ab12"})

    assert store.find_by_reference_or_external_id(external_id="4242").id == payment.id
    # FedaPay's own reference arrives in the reference slot
    assert store.find_by_reference_or_external_id("trx_ab12").id == payment.id
    assert store.find_by_reference_or_external_id("MIPROJET-unknown", "9999") is None
    assert store.find_by_reference_or_external_id() is None


def test_get_missing_payment(store):
    assert store.get("nope") is None
    assert store.get(None) is None


def test_transition_merges_metadata(db, store, make_payment):
    payment = make_payment()

    update = store.update_status_and_merge_metadata(
        payment.id, PaymentStatus.COMPLETED, {"provider_status": "success"},
    )

    assert update.transitioned and update.first_completion
    stored = db.doc("payments", payment.id)
    assert stored["status"] == "completed"
    assert stored["metadata"] == {"phone_number": "+2250700000000", "provider_status": "success"}
    assert stored["updated_at"] >= stored["created_at"]


def test_patch_wins_on_key_collision(db, store, make_payment):
    payment = make_payment()

    store.update_status_and_merge_metadata(payment.id, "pending", {"phone_number": "+2250100000000"})

    assert db.doc("payments", payment.id)["metadata"]["phone_number"] == "+2250100000000"


def test_terminal_status_is_sticky(db, store, make_payment):
    payment = make_payment()
    store.update_status_and_merge_metadata(payment.id, "failed", {})

    update = store.update_status_and_merge_metadata(
        payment.id, "completed", {"provider_status": "success"},
        terminal_patch={"ignored_provider_status": "success"},
    )

    assert not update.transitioned
    stored = db.doc("payments", payment.id)
    assert stored["status"] == "failed"
    assert stored["metadata"]["ignored_provider_status"] == "success"
    assert "provider_status" not in stored["metadata"]


def test_terminal_without_patch_writes_nothing(db, store, make_payment):
    payment = make_payment()
    store.update_status_and_merge_metadata(payment.id, "completed", {})
    commits = db.commits

    update = store.update_status_and_merge_metadata(payment.id, "pending", {"x": 1})

    assert update.payment.status == "completed"
    assert db.commits == commits


def test_completion_hook_runs_once(db, store, make_payment):
    payment = make_payment()
    calls = []

    def stage(batch, completed):
        calls.append(completed.id)
        batch.set(db.collection("receipts").document(completed.id), {"amount": completed.amount})

    store.update_status_and_merge_metadata(payment.id, "completed", {}, on_first_completion=stage)
    store.update_status_and_merge_metadata(payment.id, "completed", {}, on_first_completion=stage)

    assert calls == [payment.id]
    assert db.doc("receipts", payment.id) == {"amount": 10000}


def test_lost_race_rereads_and_keeps_terminal(db, store, make_payment):
    payment = make_payment()
    # Another writer completes the payment between our read and our commit
    db.before_commit.append(
        lambda: db.collection("payments").document(payment.id).update({"status": "completed"})
    )

    update = store.update_status_and_merge_metadata(
        payment.id, "failed", {"provider_status": "failed"},
    )

    assert update.payment.status == "completed"
    assert not update.transitioned
    assert db.doc("payments", payment.id)["status"] == "completed"
    assert "provider_status" not in db.doc("payments", payment.id)["metadata"]


def test_gives_up_after_max_attempts(db, make_payment):
    store = PaymentStore(db, max_attempts=2)
    payment = make_payment()
    ref = db.collection("payments").document(payment.id)
    for n in range(2):
        db.before_commit.append(lambda n=n: ref.update({"metadata": {"touch": n}}))

    with pytest.raises(ConcurrentUpdateError):
        store.update_status_and_merge_metadata(payment.id, "completed", {})

    assert db.doc("payments", payment.id)["status"] == "pending"


def test_update_unknown_payment(store):
    with pytest.raises(PaymentNotFound):
        store.update_status_and_merge_metadata("ghost", "completed", {})


def test_round_trip_keeps_enum_values(store, make_payment):
    payment = make_payment(status=PaymentStatus.REFUNDED)

    loaded = store.get(payment.id)

    assert isinstance(loaded, Payment)
    assert loaded.status == "refunded"
    assert loaded.is_terminal
