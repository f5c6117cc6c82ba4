"""Pytest fixtures for twinkle tests."""

import copy
import itertools
import re
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from twinkle.errors import DataStoreError
from twinkle.payments import PaymentIntent, PaymentResult


def _matches(doc, filter_dict):
    for key, expected in (filter_dict or {}).items():
        actual = doc.get(key)
        if isinstance(expected, dict):
            if "$regex" in expected:
                flags = re.IGNORECASE if "i" in expected.get("$options", "") else 0
                if actual is None or not re.search(expected["$regex"], str(actual), flags):
                    return False
            if "$lt" in expected and not (actual is not None and actual < expected["$lt"]):
                return False
        elif actual != expected:
            return False
    return True


class MemoryStore:
    """In-memory stand-in for MongoStore with the same method surface."""

    def __init__(self):
        self.collections = {}
        self.fail_writes = False
        self._ids = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def _tick(self):
        self._clock += timedelta(seconds=1)
        return self._clock

    def _check_writes(self):
        if self.fail_writes:
            raise DataStoreError("HostUnreachable", "connection refused")

    def docs(self, collection_name):
        return self.collections.setdefault(collection_name, [])

    async def create_document(self, collection_name, data):
        self._check_writes()
        now = self._tick()
        doc = {k: copy.deepcopy(v) for k, v in data.items() if k != "id"}
        doc.update(id=f"{collection_name}-{next(self._ids)}", created_at=now, updated_at=now)
        self.docs(collection_name).append(doc)
        return dict(doc)

    async def get_documents(self, collection_name, filter_dict=None, limit=100, sort=None):
        found = [d for d in self.docs(collection_name) if _matches(d, filter_dict)]
        for key, direction in reversed(sort or []):
            found.sort(key=lambda d: d.get(key), reverse=direction < 0)
        return [dict(d) for d in found[:limit]]

    async def find_document(self, collection_name, filter_dict):
        for d in self.docs(collection_name):
            if _matches(d, filter_dict):
                return dict(d)
        return None

    async def update_document(self, collection_name, doc_id, values):
        self._check_writes()
        doc = await self._raw(collection_name, doc_id)
        if doc is None:
            return False
        doc.update({k: v for k, v in values.items() if k != "id"}, updated_at=self._tick())
        return True

    async def update_many(self, collection_name, filter_dict, values):
        self._check_writes()
        hits = [d for d in self.docs(collection_name) if _matches(d, filter_dict)]
        for d in hits:
            d.update(values)
        return len(hits)

    async def delete_document(self, collection_name, doc_id):
        doc = await self._raw(collection_name, doc_id)
        if doc is None:
            return False
        self.docs(collection_name).remove(doc)
        return True

    async def increment_field(self, collection_name, doc_id, field, amount=1, below=None):
        self._check_writes()
        doc = await self._raw(collection_name, doc_id)
        if doc is None:
            return False
        if below is not None and doc.get(field, 0) >= below:
            return False
        doc[field] = doc.get(field, 0) + amount
        return True

    async def count_documents(self, collection_name, filter_dict=None):
        return len([d for d in self.docs(collection_name) if _matches(d, filter_dict)])

    async def collection_names(self):
        return [name for name, docs in self.collections.items() if docs]

    async def _raw(self, collection_name, doc_id):
        return next((d for d in self.docs(collection_name) if d["id"] == doc_id), None)


class MemoryBlobStore:
    def __init__(self):
        self.files = {}

    async def upload(self, filename, data, content_type):
        file_id = f"file{len(self.files) + 1}"
        self.files[file_id] = (data, content_type)
        return f"/api/files/{file_id}"

    async def read(self, file_id):
        return self.files.get(file_id)


class FakeGateway:
    """Payment gateway double. Set ``decline`` to fail confirmations, ``on_confirm`` to run code mid-payment."""

    def __init__(self):
        self.intents = []
        self.confirmations = []
        self.decline = None
        self.on_confirm = None

    async def create_payment_intent(self, amount_cents):
        n = len(self.intents) + 1
        intent = PaymentIntent(id=f"pi_{n}", client_secret=f"pi_{n}_secret", amount_cents=amount_cents)
        self.intents.append(intent)
        return intent

    async def confirm_card_payment(self, intent, payment_method):
        self.confirmations.append((intent.id, payment_method))
        if self.on_confirm is not None:
            await self.on_confirm()
        if self.decline:
            return PaymentResult(status="failed", payment_intent_id=intent.id, error=self.decline)
        return PaymentResult(status="succeeded", payment_intent_id=intent.id)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def weekend_rule():
    return {
        "name": "Weekend",
        "surcharge_type": "day_based",
        "surcharge_amount": 100,
        "day_types": ["weekend"],
        "is_active": True,
    }


@pytest.fixture
def save10():
    return {
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": 10,
        "min_order_amount": 0,
        "max_uses": None,
        "used_count": 0,
        "is_active": True,
    }


@pytest.fixture
def client(store, blob_store, gateway):
    """Test client wired to the in-memory store and fake gateway."""
    from twinkle.checkout import SessionRegistry
    from twinkle.database import get_blob_store, get_store
    from twinkle.main import app, get_gateway, get_holidays, get_registry

    registry = SessionRegistry()
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_registry] = lambda: registry
    app.dependency_overrides[get_holidays] = lambda: []
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_auth(monkeypatch):
    from twinkle.config import settings

    monkeypatch.setattr(settings, "ADMIN_EMAIL", "admin@example.com")
    monkeypatch.setattr(settings, "ADMIN_PASSWORD", "s3cret")
    return ("admin@example.com", "s3cret")
