"""
Process-wide remote client handle and availability probe.

The client is constructed lazily on first use and cached for the process
lifetime. Missing credentials leave the handle empty (offline mode) and the
next call tries again, so credentials dropped in after boot are picked up.
Reachability is never cached: every logical operation asks the probe.
"""

import json
import threading
from pathlib import Path
from typing import Callable, Optional

import requests
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account

from . import config
from .outcomes import RemoteStoreError, StoreConfigurationError
from .remote import DocumentStore, FirestoreRestStore, InMemoryDocumentStore
from ..util.logging import logger

FIRESTORE_SCOPES = ["https://www.googleapis.com/auth/datastore"]


def _firestore_kwargs() -> dict:
    return {
        "collection": config.PERSONS_COLLECTION,
        "database": config.FIRESTORE_DATABASE,
        "timeout": config.REMOTE_TIMEOUT_SEC,
        "probe_collection": config.PROBE_COLLECTION,
        "probe_document": config.PROBE_DOCUMENT,
    }


def build_emulator_store(host: str) -> DocumentStore:
    """Firestore emulator accepts the 'owner' bearer token and any project id."""
    session = requests.Session()
    session.headers["Authorization"] = "Bearer owner"
    project_id = config.FIRESTORE_PROJECT_ID or "demo-project"
    return FirestoreRestStore(project_id, session, base_url=f"http://{host}/v1", **_firestore_kwargs())


def build_firestore_store(credentials_path: str) -> Optional[DocumentStore]:
    """
    Build a Firestore client from a service account key file.

    Returns None if the key file does not exist. Raises StoreConfigurationError
    if the file exists but cannot be turned into credentials.
    """
    path = Path(credentials_path)
    if not path.is_file():
        logger.info(f"Credentials file not found at {path}; operating in offline mode")
        return None

    try:
        info = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise StoreConfigurationError(f"Unreadable credentials file {path}: {e}") from e

    if not isinstance(info, dict):
        raise StoreConfigurationError(f"Credentials file {path} is not a JSON object")

    try:
        credentials = service_account.Credentials.from_service_account_info(info, scopes=FIRESTORE_SCOPES)
    except (ValueError, KeyError) as e:
        raise StoreConfigurationError(f"Malformed service account key {path}: {e}") from e

    project_id = config.FIRESTORE_PROJECT_ID or info.get("project_id")
    if not project_id:
        raise StoreConfigurationError(f"No project_id in {path} and FIRESTORE_PROJECT_ID is not set")

    return FirestoreRestStore(project_id, AuthorizedSession(credentials),
                              base_url=config.FIRESTORE_BASE_URL, **_firestore_kwargs())


def build_document_store() -> Optional[DocumentStore]:
    """Construct the configured remote store, or None when no credentials are available."""
    backend = config.get_remote_backend()
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend != "firestore":
        raise StoreConfigurationError(f"Unknown REMOTE_BACKEND: {backend}")

    emulator_host = config.get_emulator_host()
    if emulator_host:
        return build_emulator_store(emulator_host)
    return build_firestore_store(config.get_credentials_path())


class RemoteStoreHandle:
    """Lazily constructed, thread-safe holder of the remote client."""

    def __init__(self, factory: Callable[[], Optional[DocumentStore]] = build_document_store):
        self._factory = factory
        self._client: Optional[DocumentStore] = None
        self._lock = threading.Lock()

    @property
    def initialized(self) -> bool:
        return self._client is not None

    def resolve(self) -> Optional[DocumentStore]:
        """Return the cached client, constructing it if needed. None means offline."""
        client = self._client
        if client is not None:
            return client

        with self._lock:
            if self._client is None:
                self._client = self._factory()
                if self._client is not None:
                    logger.info(f"Remote client initialized: {self._client.__class__.__name__}")
            return self._client

    def is_available(self, client: Optional[DocumentStore] = None) -> bool:
        """
        Canary round trip against the remote store.

        Returns False for ordinary unavailability, including a missing client.
        StoreConfigurationError propagates to the caller.
        """
        client = client if client is not None else self._client
        if client is None:
            return False

        try:
            client.ping()
            return True
        except RemoteStoreError as e:
            logger.warning(f"Remote store not available: {e}")
            return False

    def connect(self) -> Optional[DocumentStore]:
        """Resolve the client and probe it; returns the client only when it is reachable."""
        client = self.resolve()
        if client is None or not self.is_available(client):
            return None
        return client

    def reset(self) -> None:
        """Drop the cached client so the next call reconstructs it."""
        with self._lock:
            self._client = None


# Process-wide handle shared by the router and the reconciliation worker
default_handle = RemoteStoreHandle()
