import os
import sys
import uuid

os.environ["DATABASE_URL"] = ""
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import mongomock
import pytest
from fastapi.testclient import TestClient

from helpers import service_payload

from database import get_db
from dual_write import DualWriteStrategy, get_writer
from main import app
from mock_data import mock_data
from payouts import payout_settings
from schemas import utcnow


class FakeFirestoreStore:
    """In-memory stand-in for FirestoreStore; set ``fail`` to make writes raise."""

    def __init__(self):
        self.collections = {}
        self.fail = False
        self.fail_with = RuntimeError

    def _raise_if_failing(self):
        if self.fail:
            raise self.fail_with("firestore unavailable")

    def create(self, collection_name, data):
        self._raise_if_failing()
        body = {k: v for k, v in data.items() if k not in ("id", "_id")}
        body.setdefault("created_at", utcnow())
        doc_id = str(data.get("id") or data.get("_id") or uuid.uuid4().hex[:20])
        self.collections.setdefault(collection_name, {})[doc_id] = body
        return {"id": doc_id, **body}

    def find_by_id(self, collection_name, doc_id):
        self._raise_if_failing()
        doc = self.collections.get(collection_name, {}).get(str(doc_id))
        return {"id": str(doc_id), **doc} if doc is not None else None

    def update_by_id(self, collection_name, doc_id, changes, model=None):
        self._raise_if_failing()
        current = self.collections.get(collection_name, {}).get(str(doc_id))
        if current is None:
            raise LookupError(doc_id)
        merged = {**current, **changes}
        if model is not None:
            merged = {**current, **model.model_validate(merged).model_dump()}
        self.collections[collection_name][str(doc_id)] = merged
        return {"id": str(doc_id), **merged}

    def delete_by_id(self, collection_name, doc_id):
        self._raise_if_failing()
        return self.collections.get(collection_name, {}).pop(str(doc_id), None) is not None


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["solutil_test"]


@pytest.fixture
def writer(mongo_db):
    return DualWriteStrategy(mongo_db)


@pytest.fixture
def client(mongo_db, writer):
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_writer] = lambda: writer
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def mock_client():
    mock_data.reset()
    app.dependency_overrides[get_db] = lambda: None
    app.dependency_overrides[get_writer] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()
    mock_data.reset()


def _make_user(db, user_type, **extra):
    token = uuid.uuid4().hex
    doc = {
        "name": f"Test {user_type.title()}",
        "email": f"{user_type}-{token[:8]}@solutil.co.ke",
        "user_type": user_type,
        "is_active": True,
        "is_verified": True,
        "tokens": [token],
        "created_at": utcnow(),
        **extra,
    }
    user_id = str(db["users"].insert_one(doc).inserted_id)
    return {"id": user_id, "token": token, "headers": {"Authorization": f"Bearer {token}"}, "doc": doc}


@pytest.fixture
def make_user(mongo_db):
    return lambda user_type, **extra: _make_user(mongo_db, user_type, **extra)


@pytest.fixture
def admin(mongo_db):
    return _make_user(mongo_db, "admin")


@pytest.fixture
def customer(mongo_db):
    return _make_user(mongo_db, "client")


@pytest.fixture
def provider(mongo_db):
    return _make_user(
        mongo_db,
        "provider",
        provider_status="approved",
        provider_profile={"skills": ["plumbing"], "hourly_rate": 1500, "service_areas": ["Nairobi"]},
    )


@pytest.fixture
def make_service(writer):
    def factory(**overrides):
        created = writer.create_service(service_payload(**overrides))
        return str(created["_id"])

    return factory


@pytest.fixture
def firestore():
    return FakeFirestoreStore()


@pytest.fixture(autouse=True)
def _restore_payout_settings():
    snapshot = payout_settings.as_dict()
    yield
    for key, value in snapshot.items():
        setattr(payout_settings, key, value)
