"""
Reconciliation worker: replay semantics, idempotence, ordering and failure isolation.
"""

import sqlite3
import threading
from unittest.mock import patch

from person_outbox.core.outcomes import RemoteUnavailableError
from person_outbox.core.reconcile import Reconciler
from person_outbox.core.remote import person_to_document
from person_outbox.core.schema import EMPTY_PAYLOAD, OperationKind


def queue(outbox, kind, person=None, identifier=None):
    identifier = identifier or person.id
    payload = person.model_dump_json() if person is not None else EMPTY_PAYLOAD
    return outbox.append(identifier, kind, payload)


class TestReplay:

    def test_deferred_create_applied_when_store_returns(self, service, reconciler, remote, outbox, make_person):
        """Queued while offline, applied on the first tick after recovery."""
        remote.set_online(False)
        service.create(make_person(name="Ana"))

        remote.set_online(True)
        report = reconciler.run()

        assert remote.get("11111111-1")["name"] == "Ana"
        assert outbox.count() == 0
        assert (report.succeeded, report.failed) == (1, 0)
        assert report.skipped is False

    def test_skipped_while_unavailable(self, reconciler, remote, outbox, make_person):
        queue(outbox, OperationKind.CREATE, make_person())
        remote.set_online(False)

        report = reconciler.run()

        assert report.skipped is True
        assert outbox.count() == 1

    def test_create_replay_is_idempotent(self, reconciler, remote, outbox, make_person):
        """Same CREATE delivered twice: second one sees the document and succeeds without writing."""
        person = make_person()
        queue(outbox, OperationKind.CREATE, person)
        queue(outbox, OperationKind.CREATE, person.model_copy(update={"name": "Changed"}))

        report = reconciler.run()

        assert (report.succeeded, report.failed) == (2, 0)
        assert remote.get("11111111-1")["name"] == "Ana"
        assert outbox.count() == 0

    def test_create_replayed_after_failed_dequeue(self, reconciler, remote, outbox, make_person):
        queue(outbox, OperationKind.CREATE, make_person())

        with patch.object(outbox, "delete_by_id", side_effect=sqlite3.OperationalError("locked")):
            first = reconciler.run()
        second = reconciler.run()

        assert first.succeeded == 1
        assert second.succeeded == 1
        assert outbox.count() == 0
        assert len(remote.list_all()) == 1

    def test_update_applied(self, reconciler, remote, outbox, make_person):
        remote.put("11111111-1", person_to_document(make_person()))
        queue(outbox, OperationKind.UPDATE, make_person(name="Julia"))

        report = reconciler.run()

        assert report.succeeded == 1
        assert remote.get("11111111-1")["name"] == "Julia"

    def test_update_for_missing_target_dropped_as_failure(self, reconciler, remote, outbox, make_person):
        """Target deleted out of band: entry removed and counted as failed."""
        queue(outbox, OperationKind.UPDATE, make_person(name="Julia"))

        report = reconciler.run()

        assert (report.succeeded, report.failed, report.dropped) == (0, 1, 1)
        assert outbox.count() == 0
        assert not remote.exists("11111111-1")

    def test_update_identifier_mismatch_stays_queued(self, reconciler, remote, outbox, make_person):
        remote.put("11111111-1", person_to_document(make_person()))
        queue(outbox, OperationKind.UPDATE, make_person(identifier="12345678-5"), identifier="11111111-1")

        report = reconciler.run()

        assert report.failed == 1
        assert report.retained == 1
        [operation] = outbox.list_all()
        assert operation.identifier == "11111111-1"
        assert remote.get("11111111-1")["name"] == "Ana"

        # Retried (and retained again) on the next tick
        assert reconciler.run().retained == 1
        assert outbox.count() == 1

    def test_delete_applied(self, reconciler, remote, outbox, make_person):
        remote.put("11111111-1", person_to_document(make_person()))
        queue(outbox, OperationKind.DELETE, identifier="11111111-1")

        report = reconciler.run()

        assert report.succeeded == 1
        assert not remote.exists("11111111-1")

    def test_delete_of_missing_document_is_success(self, reconciler, outbox):
        queue(outbox, OperationKind.DELETE, identifier="11111111-1")

        report = reconciler.run()

        assert (report.succeeded, report.failed) == (1, 0)
        assert outbox.count() == 0

    def test_delete_with_invalid_identifier_dropped(self, reconciler, outbox):
        queue(outbox, OperationKind.DELETE, identifier="12345678-9")

        report = reconciler.run()

        assert (report.failed, report.dropped) == (1, 1)
        assert outbox.count() == 0


class TestCorruptEntries:

    def test_empty_payload_dropped(self, reconciler, outbox):
        outbox.append("11111111-1", OperationKind.CREATE, EMPTY_PAYLOAD)
        outbox.append("11111111-1", OperationKind.UPDATE, "   ")

        report = reconciler.run()

        assert (report.failed, report.dropped) == (2, 2)
        assert outbox.count() == 0

    def test_undecodable_payload_dropped(self, reconciler, outbox):
        outbox.append("11111111-1", OperationKind.CREATE, "{not json")

        report = reconciler.run()

        assert report.dropped == 1
        assert outbox.count() == 0

    def test_blank_identifier_in_payload_dropped(self, reconciler, remote, outbox, make_person):
        outbox.append("11111111-1", OperationKind.CREATE, make_person(identifier="  ").model_dump_json())

        report = reconciler.run()

        assert report.dropped == 1
        assert remote.list_all() == []

    def test_unknown_kind_dropped(self, reconciler, outbox, make_person):
        outbox.append("11111111-1", "UPSERT", make_person().model_dump_json())

        report = reconciler.run()

        assert report.dropped == 1
        assert outbox.count() == 0


class TestOrdering:

    def test_update_then_delete_applied_in_order(self, reconciler, remote, outbox, make_person):
        remote.put("11111111-1", person_to_document(make_person()))
        queue(outbox, OperationKind.UPDATE, make_person(name="Julia"))
        queue(outbox, OperationKind.DELETE, identifier="11111111-1")

        report = reconciler.run()

        assert (report.succeeded, report.failed) == (2, 0)
        assert not remote.exists("11111111-1")

    def test_reversed_scan_would_resurrect_deleted_record(self, reconciler, remote, outbox, make_person):
        """CREATE then DELETE: insertion order ends deleted, reversed order wrongly ends present."""
        queue(outbox, OperationKind.CREATE, make_person())
        queue(outbox, OperationKind.DELETE, identifier="11111111-1")
        snapshot = outbox.list_all()

        reconciler.run()
        assert not remote.exists("11111111-1")

        for operation in snapshot:
            outbox.append(operation.identifier, operation.kind, operation.payload)
        with patch.object(outbox, "list_all", return_value=list(reversed(outbox.list_all()))):
            reconciler.run()
        assert remote.exists("11111111-1")

    def test_later_entries_for_identifier_wait_behind_failure(self, reconciler, remote, outbox, make_person):
        """A transient failure holds back later entries for the same identifier only."""
        remote.put("11111111-1", person_to_document(make_person()))
        queue(outbox, OperationKind.DELETE, identifier="11111111-1")
        queue(outbox, OperationKind.CREATE, make_person(name="Again"))
        queue(outbox, OperationKind.CREATE, make_person(identifier="12345678-5"))

        original_delete = remote.delete

        def flaky_delete(doc_id):
            raise RemoteUnavailableError("timeout")

        remote.delete = flaky_delete
        report = reconciler.run()

        assert report.retained == 2
        assert report.succeeded == 1
        assert remote.exists("12345678-5")
        assert [op.kind for op in outbox.list_all()] == ["DELETE", "CREATE"]

        remote.delete = original_delete
        report = reconciler.run()

        assert (report.succeeded, report.failed) == (2, 0)
        assert remote.get("11111111-1")["name"] == "Again"


class TestRunControl:

    def test_one_failure_does_not_abort_run(self, reconciler, remote, outbox, make_person):
        outbox.append("11111111-1", OperationKind.CREATE, EMPTY_PAYLOAD)
        queue(outbox, OperationKind.CREATE, make_person(identifier="12345678-5"))

        report = reconciler.run()

        assert (report.succeeded, report.failed) == (1, 1)
        assert remote.exists("12345678-5")

    def test_runs_do_not_overlap(self, outbox, handle, make_person):
        reconciler = Reconciler(outbox, handle)
        entered = threading.Event()
        release = threading.Event()
        original = reconciler._replay_one

        def slow_replay(client, operation):
            entered.set()
            release.wait(5)
            return original(client, operation)

        queue(outbox, OperationKind.CREATE, make_person())
        reconciler._replay_one = slow_replay
        worker = threading.Thread(target=reconciler.run)
        worker.start()
        try:
            assert entered.wait(5)
            assert reconciler.running is True
            concurrent = reconciler.run()
            assert concurrent.skipped is True
        finally:
            release.set()
            worker.join(5)

        assert reconciler.last_report.succeeded == 1
        assert reconciler.running is False
