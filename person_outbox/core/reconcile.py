"""
Reconciliation worker - replays queued mutations against the remote store.

Each pass drains the pending-operation store oldest first. Replay is
idempotent: a CREATE whose document already exists and a DELETE whose
document is already gone both count as synchronized. Corrupt or obsolete
entries are dropped; an UPDATE whose payload identifier disagrees with its
target is an integrity violation and stays queued.

Per entry: QUEUED -> DELETED (applied, already applied, obsolete, corrupt)
                  -> QUEUED  (integrity violation, remote failure)
"""

import sqlite3
import threading
from datetime import datetime
from enum import Enum
from typing import Optional, Set

from pydantic import ValidationError

from .client import RemoteStoreHandle, default_handle
from .identifier import is_valid_identifier
from .outbox import PendingOperationStore
from .outcomes import ImmutableIdentifierError, RemoteStoreError, StoreConfigurationError
from .remote import DocumentStore, person_to_document
from .schema import EMPTY_PAYLOAD, OperationKind, PendingOperation, Person, ReconciliationReport
from ..util.logging import logger


class ReplayStatus(str, Enum):
    APPLIED = "applied"
    ALREADY_SYNCED = "already_synced"
    OBSOLETE = "obsolete"
    CORRUPT = "corrupt"
    INTEGRITY_VIOLATION = "integrity_violation"
    FAILED = "failed"
    BLOCKED = "blocked"  # an earlier entry for the same identifier stayed queued


# status -> (remove entry from queue, counts as success)
_DISPOSITION = {
    ReplayStatus.APPLIED: (True, True),
    ReplayStatus.ALREADY_SYNCED: (True, True),
    ReplayStatus.OBSOLETE: (True, False),
    ReplayStatus.CORRUPT: (True, False),
    ReplayStatus.INTEGRITY_VIOLATION: (False, False),
    ReplayStatus.FAILED: (False, False),
}


class CorruptEntry(Exception):
    """Queued entry can never be applied."""


class Reconciler:
    """Drains the pending-operation store. Runs never overlap."""

    def __init__(self, outbox: PendingOperationStore, handle: Optional[RemoteStoreHandle] = None):
        self.outbox = outbox
        self.handle = handle or default_handle
        self._run_lock = threading.Lock()
        self.last_report: Optional[ReconciliationReport] = None

    @property
    def running(self) -> bool:
        return self._run_lock.locked()

    def run(self) -> ReconciliationReport:
        """Execute one reconciliation pass and return its report."""
        if not self._run_lock.acquire(blocking=False):
            report = ReconciliationReport(started_at=datetime.now(), finished_at=datetime.now(),
                                          skipped=True, reason="previous run still active")
            logger.log_reconcile_run("skipped", {"reason": report.reason})
            return report

        try:
            report = self._run()
            self.last_report = report
            return report
        finally:
            self._run_lock.release()

    def _run(self) -> ReconciliationReport:
        report = ReconciliationReport(started_at=datetime.now())
        logger.log_reconcile_run("started")

        try:
            client = self.handle.connect()
        except StoreConfigurationError as e:
            return self._skip(report, f"remote client misconfigured: {e}")

        if client is None:
            return self._skip(report, "remote store not available, will retry next tick")

        operations = self.outbox.list_all()
        report.total = len(operations)
        if not operations:
            return self._finish(report, "empty")

        blocked: Set[str] = set()
        for operation in operations:
            if operation.identifier in blocked:
                report.retained += 1
                logger.log_replay_entry(operation.id, operation.identifier, operation.kind,
                                        ReplayStatus.BLOCKED.value, "earlier entry for this identifier is still queued")
                continue

            status, reason = self._replay_one(client, operation)
            logger.log_replay_entry(operation.id, operation.identifier, operation.kind, status.value, reason)

            remove, success = _DISPOSITION[status]
            if remove:
                try:
                    self.outbox.delete_by_id(operation.id)
                except sqlite3.Error as e:
                    # Replay is idempotent, so the entry is simply seen again next run
                    logger.error(f"Failed to remove pending operation {operation.id}: {e}")
                    report.errors.append(f"{operation.id}:dequeue_failed:{e}")
                if not success:
                    report.dropped += 1
            else:
                report.retained += 1
                blocked.add(operation.identifier)
                report.errors.append(f"{operation.id}:{status.value}:{reason}")

            if success:
                report.succeeded += 1
            else:
                report.failed += 1

        return self._finish(report, "completed")

    def _skip(self, report: ReconciliationReport, reason: str) -> ReconciliationReport:
        report.skipped = True
        report.reason = reason
        report.finished_at = datetime.now()
        logger.log_reconcile_run("deferred", {"reason": reason})
        return report

    def _finish(self, report: ReconciliationReport, status: str) -> ReconciliationReport:
        report.finished_at = datetime.now()
        logger.log_reconcile_run(status, {
            "total": report.total,
            "succeeded": report.succeeded,
            "failed": report.failed,
            "dropped": report.dropped,
            "retained": report.retained,
        })
        return report

    def _replay_one(self, client: DocumentStore, operation: PendingOperation):
        """Apply one entry; returns (ReplayStatus, reason)."""
        try:
            if operation.kind != OperationKind.DELETE.value and _is_blank_payload(operation.payload):
                raise CorruptEntry("empty payload")

            if operation.kind == OperationKind.CREATE.value:
                return self._replay_create(client, operation), None
            if operation.kind == OperationKind.UPDATE.value:
                return self._replay_update(client, operation), None
            if operation.kind == OperationKind.DELETE.value:
                return self._replay_delete(client, operation), None
            raise CorruptEntry(f"unknown operation kind {operation.kind!r}")

        except CorruptEntry as e:
            return ReplayStatus.CORRUPT, str(e)
        except ImmutableIdentifierError as e:
            return ReplayStatus.INTEGRITY_VIOLATION, str(e)
        except (RemoteStoreError, StoreConfigurationError) as e:
            return ReplayStatus.FAILED, str(e)

    def _replay_create(self, client: DocumentStore, operation: PendingOperation) -> ReplayStatus:
        person = _decode_person(operation.payload)
        _require_valid(person.id)
        if client.exists(person.id):
            # At-least-once redelivery: the document is already there
            return ReplayStatus.ALREADY_SYNCED
        client.put(person.id, person_to_document(person))
        return ReplayStatus.APPLIED

    def _replay_update(self, client: DocumentStore, operation: PendingOperation) -> ReplayStatus:
        person = _decode_person(operation.payload)
        if person.id != operation.identifier:
            raise ImmutableIdentifierError(operation.identifier, person.id)
        _require_valid(person.id)
        if not client.exists(operation.identifier):
            return ReplayStatus.OBSOLETE
        client.put(operation.identifier, person_to_document(person))
        return ReplayStatus.APPLIED

    def _replay_delete(self, client: DocumentStore, operation: PendingOperation) -> ReplayStatus:
        _require_valid(operation.identifier)
        if not client.exists(operation.identifier):
            return ReplayStatus.ALREADY_SYNCED
        client.delete(operation.identifier)
        return ReplayStatus.APPLIED


def _is_blank_payload(payload: Optional[str]) -> bool:
    return payload is None or not payload.strip() or payload.strip() == EMPTY_PAYLOAD


def _decode_person(payload: str) -> Person:
    try:
        person = Person.model_validate_json(payload)
    except ValidationError as e:
        raise CorruptEntry(f"undecodable payload: {e.error_count()} error(s)") from e

    if not person.id:
        raise CorruptEntry("payload has no identifier")
    return person


def _require_valid(identifier: str) -> None:
    if not is_valid_identifier(identifier):
        raise CorruptEntry(f"invalid identifier {identifier!r}")
