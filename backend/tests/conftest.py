import copy
import hashlib
import hmac
import itertools
import json
import re
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from google.api_core.exceptions import AlreadyExists, FailedPrecondition, InvalidArgument, NotFound
from google.cloud import firestore

from miprojet.core.auth import get_current_user
from miprojet.core.config import settings
from miprojet.core.firebase import get_db
from miprojet.models.payment_model import Payment
from miprojet.models.user_model import AuthenticatedUser
from miprojet.services.payment_store import PaymentStore

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)

MF_SECRET = "mf-webhook-secret"
FEDAPAY_SECRET = "fedapay-webhook-secret"


# ============================================================
# In-memory Firestore double
# ============================================================
class FakeSnapshot:
    def __init__(self, reference, data, update_time):
        self.reference = reference
        self.id = reference.id
        self.update_time = update_time
        self._data = copy.deepcopy(data)

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocumentReference:
    def __init__(self, db, collection, doc_id):
        self._db = db
        self.collection_name = collection
        self.id = doc_id

    @property
    def path(self):
        return f"{self.collection_name}/{self.id}"

    def get(self, transaction=None):
        return self._db._snapshot(self)

    def set(self, data, merge=False):
        self._db._commit([("set", self, data, merge)])

    def update(self, data, option=None):
        self._db._commit([("update", self, data, option)])

    def create(self, data):
        self._db._commit([("create", self, data, None)])


class FakeWriteOption:
    def __init__(self, last_update_time=None):
        self.last_update_time = last_update_time


class FakeWriteBatch:
    def __init__(self, db):
        self._db = db
        self._ops = []

    def create(self, reference, document_data):
        self._ops.append(("create", reference, document_data, None))

    def set(self, reference, document_data, merge=False):
        self._ops.append(("set", reference, document_data, merge))

    def update(self, reference, field_updates, option=None):
        self._ops.append(("update", reference, field_updates, option))

    def commit(self):
        self._db._commit(self._ops)


def _lookup(data, field_path):
    value = data
    for part in field_path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None
        value = value[part]
    return value


class FakeQuery:
    def __init__(self, db, collection, filters=(), limit=None):
        self._db = db
        self._collection = collection
        self._filters = filters
        self._limit = limit

    def where(self, filter=None):
        return FakeQuery(self._db, self._collection, self._filters + (filter,), self._limit)

    def limit(self, count):
        return FakeQuery(self._db, self._collection, self._filters, count)

    def stream(self):
        matched = 0
        for doc_id, data in list(self._db.data.get(self._collection, {}).items()):
            if all(f.op_string == "==" and _lookup(data, f.field_path) == f.value for f in self._filters):
                ref = FakeDocumentReference(self._db, self._collection, doc_id)
                yield self._db._snapshot(ref)
                matched += 1
                if self._limit and matched >= self._limit:
                    return


class FakeCollection(FakeQuery):
    def document(self, doc_id=None):
        return FakeDocumentReference(self._db, self._collection, doc_id or uuid.uuid4().hex)

    def add(self, document_data):
        ref = self.document()
        ref.create(document_data)
        return self._db.update_times[(self._collection, ref.id)], ref


class FakeFirestore:
    """
    Enough of google.cloud.firestore.Client for the payment stores:
    atomic batches, last_update_time preconditions and Increment.
    """

    def __init__(self):
        self.data = {}
        self.update_times = {}
        self.commits = 0
        self.before_commit = []        # one hook consumed per commit
        self.fail_next_commit = None   # exception raised by the next commit
        self._clock = itertools.count(1)
        self._in_hook = False

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeWriteBatch(self)

    def write_option(self, **kwargs):
        return FakeWriteOption(**kwargs)

    # ---------------- helpers for assertions ----------------
    def docs(self, collection):
        return copy.deepcopy(self.data.get(collection, {}))

    def doc(self, collection, doc_id):
        return copy.deepcopy(self.data.get(collection, {}).get(doc_id))

    # ---------------- internals ----------------
    def _snapshot(self, ref):
        if re.fullmatch(r"__.*__", ref.id):
            raise InvalidArgument(f"Document id {ref.id!r} is reserved")
        data = self.data.get(ref.collection_name, {}).get(ref.id)
        return FakeSnapshot(ref, data, self.update_times.get((ref.collection_name, ref.id)))

    def _commit(self, ops):
        if self.before_commit and not self._in_hook:
            hook = self.before_commit.pop(0)
            self._in_hook = True
            try:
                hook()
            finally:
                self._in_hook = False

        if self.fail_next_commit is not None:
            exc, self.fail_next_commit = self.fail_next_commit, None
            raise exc

        for kind, ref, _, option in ops:
            key = (ref.collection_name, ref.id)
            exists = ref.id in self.data.get(ref.collection_name, {})
            if kind == "create" and exists:
                raise AlreadyExists(f"Document already exists: {ref.path}")
            if kind == "update" and not exists:
                raise NotFound(f"No document to update: {ref.path}")
            if isinstance(option, FakeWriteOption) and self.update_times.get(key) != option.last_update_time:
                raise FailedPrecondition(f"update_time mismatch on {ref.path}")

        stamp = _EPOCH + timedelta(microseconds=next(self._clock))
        for kind, ref, payload, option in ops:
            docs = self.data.setdefault(ref.collection_name, {})
            replace = kind == "create" or (kind == "set" and not option)
            current = {} if replace else docs.get(ref.id, {})
            docs[ref.id] = _apply_fields(current, payload)
            self.update_times[(ref.collection_name, ref.id)] = stamp
        self.commits += 1


def _apply_fields(current, patch):
    result = copy.deepcopy(current)
    for key, value in patch.items():
        if isinstance(value, firestore.Increment):
            result[key] = (result.get(key) or 0) + value.value
        else:
            result[key] = copy.deepcopy(value)
    return result


# ============================================================
# Fixtures
# ============================================================
@pytest.fixture(autouse=True)
def payment_settings(monkeypatch):
    monkeypatch.setattr(settings, "MONEY_FUSION_WEBHOOK_SECRET", MF_SECRET)
    monkeypatch.setattr(settings, "MONEY_FUSION_API_KEY", None)
    monkeypatch.setattr(settings, "MONEY_FUSION_MERCHANT_ID", None)
    monkeypatch.setattr(settings, "FEDAPAY_SECRET_KEY", None)
    monkeypatch.setattr(settings, "FEDAPAY_WEBHOOK_SECRET", FEDAPAY_SECRET)
    monkeypatch.setattr(settings, "FEDAPAY_ENFORCE_SIGNATURE", False)
    monkeypatch.setattr(settings, "BACKEND_URL", "https://api.miprojet.test")
    return settings


@pytest.fixture
def db():
    return FakeFirestore()


@pytest.fixture
def store(db):
    return PaymentStore(db)


@pytest.fixture
def user():
    return AuthenticatedUser(uid="user-1", email="awa@example.com")


@pytest.fixture
def project(db):
    db.collection("projects").document("P1").set({
        "title": "Ferme avicole de Bouaké",
        "funds_raised": 500000,
    })
    return "P1"


@pytest.fixture
def service_request(db):
    db.collection("service_requests").document("SR1").set({
        "service_type": "structuring",
        "status": "pending",
        "company_name": "Kora Agro",
    })
    return "SR1"


@pytest.fixture
def make_payment(store, user):
    counter = itertools.count(1)

    def _make(**overrides):
        n = next(counter)
        fields = {
            "id": f"pay-{n}",
            "user_id": user.uid,
            "amount": 10000,
            "currency": "XOF",
            "payment_method": "orange_money",
            "payment_reference": f"MIPROJET-1700000000-AB1{n}C",
            "metadata": {"phone_number": "+2250700000000"},
        }
        fields.update(overrides)
        return store.create(Payment(**fields))

    return _make


@pytest.fixture
def app():
    from main import app as fastapi_app
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(app, db):
    app.dependency_overrides[get_db] = lambda: db
    return TestClient(app)


@pytest.fixture
def client(app, db, user):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: user
    return TestClient(app)


def sign(payload, secret):
    body = json.dumps(payload).encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return body, signature
