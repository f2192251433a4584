"""Operational CLI for the provisioning queue.

Works directly against the configured database, without the HTTP layer.
Only run ``flush``/``reclaim`` while no server dispatcher is draining the
same queue.

Examples:
    python scripts/provisioning.py init-db
    python scripts/provisioning.py flush
    python scripts/provisioning.py reclaim --older-than 300
    python scripts/provisioning.py status 3f2b...
    python scripts/provisioning.py list --status failed --limit 20
"""
from __future__ import annotations
import argparse
import contextlib
import json
import logging
import sys
from datetime import timedelta
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy.exc import SQLAlchemyError

from app.config import load_settings
from app.core import audit
from app.core.dispatcher import MAX_ATTEMPTS, ProvisioningDispatcher
from app.core.graph import GraphBulkClient
from app.core.models import ProvisionRecordStatus, utcnow
from app.core.queue_store import QueueStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Provisioning queue helper")
    parser.add_argument("--database-url", default=None,
                        help="Override DATABASE_URL for this invocation")
    parser.add_argument("-v", "--verbose", action="store_true")

    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("init-db", help="Create the queue tables")
    sub.add_parser("flush", help="Run one dispatch cycle now")

    rc = sub.add_parser("reclaim", help="Return stale in-progress records to the queue")
    rc.add_argument("--older-than", type=float, default=None,
                    help="Age in seconds (default: PROVISIONING_RECLAIM_SECONDS)")

    st = sub.add_parser("status", help="Show one record")
    st.add_argument("record_id")

    ls = sub.add_parser("list", help="List records")
    ls.add_argument("--status", choices=[s.value for s in ProvisionRecordStatus])
    ls.add_argument("--limit", type=int, default=50)

    return parser


def main(argv=None) -> int:
    """Command-line entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Settings banners go to stderr; stdout carries command output only
    with contextlib.redirect_stdout(sys.stderr):
        cfg = load_settings()
    store = QueueStore(args.database_url or cfg.database_url)

    try:
        if args.cmd == "init-db":
            store.create_all()
            print(f"[init-db] Tables ready on {store.engine.url.render_as_string(hide_password=True)}")
        elif args.cmd == "flush":
            client = GraphBulkClient(
                cfg.graph,
                on_response=lambda url, status, body: audit.safe_record(
                    store, audit.outbound_entry(url, status, body)
                ),
            )
            dispatcher = ProvisioningDispatcher(store, client, cfg.batch)
            summary = dispatcher.run_cycle()
            print(f"[flush] {summary}")
        elif args.cmd == "reclaim":
            older_than = args.older_than if args.older_than is not None else cfg.batch.reclaim_after_seconds
            reclaimed = store.reclaim_stale(utcnow() - timedelta(seconds=older_than), MAX_ATTEMPTS)
            for record in reclaimed:
                print(f"[reclaim] {record.id} -> {record.status.value} (attempts={record.attempts})")
            print(f"[reclaim] {len(reclaimed)} record(s) reclaimed")
        elif args.cmd == "status":
            record = store.get(args.record_id)
            if record is None:
                print(f"[status] Record {args.record_id} not found", file=sys.stderr)
                return 1
            print(json.dumps(record.to_dict(), indent=2))
        elif args.cmd == "list":
            status = ProvisionRecordStatus(args.status) if args.status else None
            for record in store.list_records(status=status, limit=max(1, args.limit)):
                print(
                    f"{record.id}  {record.operation_type.value:<6}  {record.status.value:<11}  "
                    f"attempts={record.attempts}  target={record.target_id or '-'}"
                )
        else:
            parser.print_help()
    except SQLAlchemyError as e:
        print(f"[{args.cmd}] Database error: {e}", file=sys.stderr)
        return 1
    finally:
        store.dispose()

    return 0


if __name__ == "__main__":
    sys.exit(main())
