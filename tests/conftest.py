"""Shared fixtures: temporary queue file and a toggleable in-memory remote store."""

import os
from datetime import date

import pytest

os.environ.setdefault("RECONCILE_ENABLED", "false")
os.environ.setdefault("REMOTE_BACKEND", "memory")

from person_outbox.core.client import RemoteStoreHandle
from person_outbox.core.outbox import PendingOperationStore
from person_outbox.core.reconcile import Reconciler
from person_outbox.core.remote import InMemoryDocumentStore
from person_outbox.core.router import PersonService
from person_outbox.core.schema import Address, Person


@pytest.fixture
def outbox(tmp_path):
    return PendingOperationStore(str(tmp_path / "outbox.db"))


@pytest.fixture
def remote():
    return InMemoryDocumentStore(online=True)


@pytest.fixture
def handle(remote):
    return RemoteStoreHandle(factory=lambda: remote)


@pytest.fixture
def service(outbox, handle):
    return PersonService(outbox, handle)


@pytest.fixture
def reconciler(outbox, handle):
    return Reconciler(outbox, handle)


def build_person(identifier="11111111-1", name="Ana", surname="Rojas", **overrides):
    data = {
        "id": identifier,
        "name": name,
        "surname": surname,
        "birth_date": date(1990, 1, 1),
        "address": Address(street="Viva 123", district="Santiago", region="Metropolitana"),
    }
    data.update(overrides)
    return Person(**data)


@pytest.fixture
def make_person():
    return build_person

