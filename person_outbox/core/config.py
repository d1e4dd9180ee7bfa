"""
Runtime configuration - environment driven, read once at import.
Getter functions re-read the environment where a value may change at runtime.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Debug flag
DEBUG = os.getenv("DEBUG", "true").lower() == "true"

# Local durable queue
OUTBOX_DB_PATH = os.getenv("OUTBOX_DB_PATH", "./data/outbox.db")

# Remote document store
REMOTE_BACKEND = os.getenv("REMOTE_BACKEND", "firestore")  # firestore|memory
FIRESTORE_CREDENTIALS_PATH = os.getenv("FIRESTORE_CREDENTIALS_PATH", "./serviceAccountKey.json")
FIRESTORE_PROJECT_ID = os.getenv("FIRESTORE_PROJECT_ID", "")
FIRESTORE_DATABASE = os.getenv("FIRESTORE_DATABASE", "(default)")
FIRESTORE_BASE_URL = os.getenv("FIRESTORE_BASE_URL", "https://firestore.googleapis.com/v1")
PERSONS_COLLECTION = os.getenv("PERSONS_COLLECTION", "personas")
PROBE_COLLECTION = os.getenv("PROBE_COLLECTION", "test")
PROBE_DOCUMENT = os.getenv("PROBE_DOCUMENT", "test")
REMOTE_TIMEOUT_SEC = float(os.getenv("REMOTE_TIMEOUT_SEC", "10"))

# Reconciliation worker
RECONCILE_ENABLED = os.getenv("RECONCILE_ENABLED", "true").lower() == "true"
RECONCILE_INTERVAL_SEC = int(os.getenv("RECONCILE_INTERVAL_SEC", "30"))

# Version string
VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "true").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the outbox database directory exists."""
    Path(db_path or OUTBOX_DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_remote_backend():
    """Get remote backend (firestore|memory)."""
    return os.getenv("REMOTE_BACKEND", REMOTE_BACKEND)


def get_emulator_host():
    """Firestore emulator host (host:port), or None when talking to the real service."""
    return os.getenv("FIRESTORE_EMULATOR_HOST") or None


def get_credentials_path():
    """Path of the service account key file."""
    return os.getenv("FIRESTORE_CREDENTIALS_PATH", FIRESTORE_CREDENTIALS_PATH)


def is_reconcile_enabled():
    """Check if the background reconciliation task should be started."""
    return os.getenv("RECONCILE_ENABLED", "true" if RECONCILE_ENABLED else "false").lower() == "true"


def get_reconcile_interval():
    """Get reconciliation interval in seconds."""
    return int(os.getenv("RECONCILE_INTERVAL_SEC", str(RECONCILE_INTERVAL_SEC)))


def validate_remote_config():
    """Validate remote store configuration and return any issues."""
    issues = []

    backend = get_remote_backend()
    if backend not in ["firestore", "memory"]:
        issues.append(f"Invalid REMOTE_BACKEND: {backend}")

    if REMOTE_TIMEOUT_SEC <= 0:
        issues.append("REMOTE_TIMEOUT_SEC must be > 0")

    if not PERSONS_COLLECTION.strip():
        issues.append("PERSONS_COLLECTION cannot be empty")

    return issues


def validate_reconcile_config():
    """Validate reconciliation configuration and return any issues."""
    issues = []

    if get_reconcile_interval() < 1:
        issues.append("RECONCILE_INTERVAL_SEC must be >= 1")

    return issues
