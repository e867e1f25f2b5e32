#!/usr/bin/env python3
"""
Migrant Health Records -- API server and offline store tools.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload
  python main.py offline stats
  python main.py offline show MW_1712345678901_0a1b2c3d4e5f6a7b
  python main.py offline export backup.json
  python main.py offline import backup.json
  python main.py offline cleanup

Environment variables:
  SECRET_KEY           JWT signing key, at least 32 characters (or DEBUG=true)
  OFFLINE_DB_PATH      Path to the offline SQLite store
  OFFLINE_MASTER_KEY   base64 AES-256 key; generated and stored on first use if unset
"""

import argparse
import json
import sys
from pathlib import Path

from offline.crypto import DecryptionError
from offline.store import IntegrityCheckError, OfflineStore


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _print_stats(store: OfflineStore) -> None:
    stats = store.storage_stats()
    print("\nOffline store")
    print("─" * 40)
    print(f"  Used:        {stats['used']:,} bytes ({stats['percentage']:.1f}%)")
    print(f"  Available:   {stats['available']:,} bytes")
    print(f"  Items:       {stats['itemCount']}")
    print(f"  Workers:     {stats['workerCount']}")
    print(f"  Documents:   {stats['documentCount']}")
    print(f"  Pending:     {len(store.list_pending())}")
    print(f"  Audit log:   {len(store.audit_logs())} entries, {len(store.critical_logs())} critical\n")


def _offline(args: argparse.Namespace) -> int:
    store = OfflineStore(db_path=args.db)
    try:
        if args.action == "stats":
            _print_stats(store)

        elif args.action == "show":
            try:
                worker = store.get_worker(args.worker_id)
            except (IntegrityCheckError, DecryptionError) as e:
                print(f"  [!] {e}")
                return 1
            if worker is None:
                print(f"  [!] No offline record for {args.worker_id}.")
                return 1
            store.log_access("view_worker_record", args.worker_id, user_type="cli")
            print(json.dumps(worker, indent=2))

        elif args.action == "export":
            payload = store.export_data()
            Path(args.path).write_text(json.dumps(payload, indent=2))
            print(
                f"  Exported {len(payload['workers'])} worker(s) and "
                f"{len(payload['documents'])} document(s) to {args.path}."
            )

        elif args.action == "import":
            file_path = Path(args.path).resolve()
            if not file_path.is_file():
                print(f"  [!] '{args.path}' is not a readable file.")
                return 1
            try:
                payload = json.loads(file_path.read_text())
                count = store.import_data(payload)
            except ValueError as e:
                print(f"  [!] Could not import '{args.path}': {e}")
                return 1
            print(f"  Imported {count} record(s) from {args.path}.")

        elif args.action == "cleanup":
            if store.cleanup():
                print("  Cleanup complete.")
            else:
                print("  Storage below cleanup threshold, nothing to do.")
            _print_stats(store)
    finally:
        store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="migrant-health",
        description="Migrant worker health records: API server and offline store tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py offline stats
  python main.py offline export backup.json
  OFFLINE_DB_PATH=/data/offline.db python main.py offline cleanup
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API server with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_serve)

    offline = sub.add_parser("offline", help="Inspect and maintain the encrypted offline store")
    offline.add_argument(
        "--db",
        metavar="PATH",
        default=None,
        help="Offline store path (default: OFFLINE_DB_PATH setting)",
    )
    actions = offline.add_subparsers(dest="action", metavar="ACTION", required=True)
    actions.add_parser("stats", help="Show storage usage and record counts")
    show = actions.add_parser("show", help="Print one decrypted worker record")
    show.add_argument("worker_id", metavar="WORKER_ID")
    export = actions.add_parser("export", help="Write workers, documents and audit log to a JSON file")
    export.add_argument("path", metavar="FILE")
    imp = actions.add_parser("import", help="Load a JSON export made with the same master key")
    imp.add_argument("path", metavar="FILE")
    actions.add_parser("cleanup", help="Trim the audit log and temporary keys when storage is nearly full")
    offline.set_defaults(func=_offline)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
