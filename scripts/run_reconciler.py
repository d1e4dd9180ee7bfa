#!/usr/bin/env python3
"""
Standalone reconciliation worker - replays the pending-operation queue against
the remote store without starting the HTTP server.

Only one worker should be active against a given queue file at a time.
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from person_outbox.core import heartbeat
from person_outbox.core.config import get_reconcile_interval, is_reconcile_enabled, validate_reconcile_config
from person_outbox.core.outbox import PendingOperationStore
from person_outbox.core.reconcile import Reconciler


def print_pending(outbox: PendingOperationStore):
    """Show queued operations, oldest first."""
    operations = outbox.list_all()
    if not operations:
        print("✅ No pending operations")
        return

    print(f"📋 {len(operations)} pending operation(s):")
    for op in operations:
        created = op.created_at.isoformat() if op.created_at else "-"
        print(f"  #{op.id:<6} {op.kind:<7} {op.identifier:<14} {created}")


def print_report(report):
    if report.skipped:
        print(f"⏭️  Reconciliation skipped: {report.reason}")
        return
    print(f"✓ Reconciliation finished - {report.succeeded} success, {report.failed} failures "
          f"({report.dropped} dropped, {report.retained} still queued)")


def main():
    """Main entry point for the reconciliation script."""
    parser = argparse.ArgumentParser(description="Replay queued person mutations against the remote store")
    parser.add_argument("--once", action="store_true", help="Run a single reconciliation pass and exit")
    parser.add_argument("--list", action="store_true", help="List pending operations and exit")
    parser.add_argument("--db-path", default=None, help="Outbox database path (default: OUTBOX_DB_PATH)")
    args = parser.parse_args()

    outbox = PendingOperationStore(args.db_path)

    if args.list:
        print_pending(outbox)
        return

    reconciler = Reconciler(outbox)

    if args.once:
        print_report(reconciler.run())
        return

    if not is_reconcile_enabled():
        print("❌ Reconciliation is disabled (RECONCILE_ENABLED=false); use --once for a single pass")
        sys.exit(1)

    issues = validate_reconcile_config()
    if issues:
        print(f"❌ Invalid configuration: {issues}")
        sys.exit(1)

    interval = get_reconcile_interval()
    heartbeat.register_task("reconcile_outbox", interval, lambda: print_report(reconciler.run()))
    print(f"🏃 Reconciling every {interval} seconds (Ctrl+C to stop)")

    try:
        heartbeat.start()
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
        heartbeat.stop()
    except Exception as e:
        print(f"💥 Critical error: {e}")
        heartbeat.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
