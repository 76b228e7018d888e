import copy

import pytest
from fastapi.testclient import TestClient

import config
from firebase_util import CouponStore
from main import app, get_store

ADMIN_HEADERS = {"x-api-key": "test-admin-key"}


class FakeReference:
    """In-memory stand-in for ``firebase_admin.db.Reference``."""

    def __init__(self, data=None, path=()):
        self._data = data if data is not None else {}
        self._path = path

    def child(self, key):
        return FakeReference(self._data, self._path + tuple(p for p in key.split("/") if p))

    def get(self):
        node = self._data
        for key in self._path:
            if not isinstance(node, dict) or key not in node:
                return None
            node = node[key]
        return copy.deepcopy(node)

    def set(self, value):
        if not self._path:
            self._data.clear()
            self._data.update(copy.deepcopy(value))
            return
        node = self._data
        for key in self._path[:-1]:
            node = node.setdefault(key, {})
        node[self._path[-1]] = copy.deepcopy(value)

    def update(self, value):
        current = self.get() or {}
        current.update(value)
        self.set(current)

    def delete(self):
        node = self._data
        for key in self._path[:-1]:
            if key not in node:
                return
            node = node[key]
        node.pop(self._path[-1], None)

    def transaction(self, transaction_update):
        new_value = transaction_update(self.get())
        self.set(new_value)
        return new_value


@pytest.fixture
def db_root():
    return FakeReference()


@pytest.fixture
def store(db_root):
    return CouponStore(db_root)


@pytest.fixture
def client(store, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_KEY", ADMIN_HEADERS["x-api-key"])
    monkeypatch.setattr(config, "SHIPPING_FEE", 0)
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
