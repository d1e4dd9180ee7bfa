"""
Remote client handle: lazy construction, offline mode and the availability probe.
"""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest

from person_outbox.core.client import RemoteStoreHandle, build_document_store, build_firestore_store
from person_outbox.core.outcomes import RemoteUnavailableError, StoreConfigurationError
from person_outbox.core.remote import FirestoreRestStore, InMemoryDocumentStore


class TestRemoteStoreHandle:

    def test_client_constructed_once(self):
        client = InMemoryDocumentStore()
        factory = MagicMock(return_value=client)
        handle = RemoteStoreHandle(factory=factory)

        assert handle.resolve() is client
        assert handle.resolve() is client
        assert factory.call_count == 1
        assert handle.initialized is True

    def test_missing_client_is_not_cached(self):
        """Credentials appearing after boot are picked up on the next call."""
        client = InMemoryDocumentStore()
        factory = MagicMock(side_effect=[None, client])
        handle = RemoteStoreHandle(factory=factory)

        assert handle.resolve() is None
        assert handle.initialized is False
        assert handle.resolve() is client

    def test_concurrent_first_use_constructs_single_client(self):
        calls = []

        def slow_factory():
            calls.append(1)
            time.sleep(0.05)
            return InMemoryDocumentStore()

        handle = RemoteStoreHandle(factory=slow_factory)
        results = []
        threads = [threading.Thread(target=lambda: results.append(handle.resolve())) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(calls) == 1
        assert len({id(r) for r in results}) == 1

    def test_reset_drops_cached_client(self):
        factory = MagicMock(side_effect=lambda: InMemoryDocumentStore())
        handle = RemoteStoreHandle(factory=factory)
        handle.resolve()

        handle.reset()
        handle.resolve()

        assert factory.call_count == 2

    def test_is_available_reflects_probe(self):
        client = InMemoryDocumentStore()
        handle = RemoteStoreHandle(factory=lambda: client)

        assert handle.is_available() is False  # nothing resolved yet
        assert handle.connect() is client
        assert handle.is_available() is True

        client.set_online(False)
        assert handle.is_available() is False
        assert handle.connect() is None

    def test_is_available_never_caches_reachability(self):
        client = MagicMock()
        client.ping.side_effect = [RemoteUnavailableError("down"), None]
        handle = RemoteStoreHandle(factory=lambda: client)

        assert handle.connect() is None
        assert handle.connect() is client
        assert client.ping.call_count == 2

    def test_configuration_error_propagates_from_probe(self):
        client = MagicMock()
        client.ping.side_effect = StoreConfigurationError("denied")
        handle = RemoteStoreHandle(factory=lambda: client)

        with pytest.raises(StoreConfigurationError):
            handle.connect()


class TestBuildFirestoreStore:

    def test_missing_key_file_means_offline(self, tmp_path):
        assert build_firestore_store(str(tmp_path / "absent.json")) is None

    def test_invalid_json_is_configuration_error(self, tmp_path):
        key = tmp_path / "key.json"
        key.write_text("{not json")

        with pytest.raises(StoreConfigurationError):
            build_firestore_store(str(key))

    def test_non_object_is_configuration_error(self, tmp_path):
        key = tmp_path / "key.json"
        key.write_text(json.dumps(["not", "an", "object"]))

        with pytest.raises(StoreConfigurationError):
            build_firestore_store(str(key))

    def test_incomplete_key_is_configuration_error(self, tmp_path):
        key = tmp_path / "key.json"
        key.write_text(json.dumps({"type": "service_account", "project_id": "demo"}))

        with pytest.raises(StoreConfigurationError):
            build_firestore_store(str(key))


class TestBuildDocumentStore:

    def test_memory_backend(self, monkeypatch):
        monkeypatch.setenv("REMOTE_BACKEND", "memory")

        assert isinstance(build_document_store(), InMemoryDocumentStore)

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("REMOTE_BACKEND", "cassandra")

        with pytest.raises(StoreConfigurationError):
            build_document_store()

    def test_emulator_host_selects_emulator(self, monkeypatch):
        monkeypatch.setenv("REMOTE_BACKEND", "firestore")
        monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "localhost:8080")

        store = build_document_store()

        assert isinstance(store, FirestoreRestStore)
        assert store.base_url == "http://localhost:8080/v1"
        assert store.session.headers["Authorization"] == "Bearer owner"

    def test_firestore_without_credentials_is_offline(self, monkeypatch, tmp_path):
        monkeypatch.setenv("REMOTE_BACKEND", "firestore")
        monkeypatch.delenv("FIRESTORE_EMULATOR_HOST", raising=False)
        monkeypatch.setenv("FIRESTORE_CREDENTIALS_PATH", str(tmp_path / "missing.json"))

        assert build_document_store() is None
