'''Shared fixtures: every test runs against fresh in-memory clients.'''

import pytest

from account_deletion import batching, clients, identity
from fakes import FakeAuth, FakeBucket, FakeFirestore


@pytest.fixture(autouse=True)
def store(monkeypatch) -> FakeFirestore:
    fake = FakeFirestore()
    monkeypatch.setattr(clients, 'firestore_client', lambda: fake)
    monkeypatch.setattr(clients, 'run_transaction', fake.run_transaction)
    monkeypatch.setattr(batching.time, 'sleep', lambda seconds: None)
    return fake


@pytest.fixture(autouse=True)
def bucket(monkeypatch) -> FakeBucket:
    fake = FakeBucket()
    monkeypatch.setattr(clients, 'storage_bucket', lambda: fake)
    return fake


@pytest.fixture(autouse=True)
def fake_auth(monkeypatch) -> FakeAuth:
    fake = FakeAuth()
    monkeypatch.setattr(identity, 'auth', fake)
    monkeypatch.setattr(clients, 'firebase_app', lambda: None)
    return fake
