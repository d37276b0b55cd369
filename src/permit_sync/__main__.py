from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, List, Optional

from permit_sync.config import get_settings
from permit_sync.permits.models import SyncRun, SyncStats
from permit_sync.products import lookup_products_for_tags
from permit_sync.storage import SQLitePermitStore
from permit_sync.sync.process import run_sync

logger = logging.getLogger("permit_sync.cli")


def dumps(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, indent=2, default=str) + "\n"


def _configure_logging(level: Optional[str]) -> None:
    logging.basicConfig(
        level=(level or get_settings().log_level).upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _cmd_run(args: argparse.Namespace) -> int:
    def _log_batch(batch_no: int, stats: SyncStats, run: SyncRun) -> None:
        print(
            json.dumps(
                {
                    "sync_run_id": run.id,
                    "batch": batch_no,
                    "records": stats.total,
                    "new": stats.new_count,
                    "updated": stats.updated,
                    "unchanged": stats.unchanged,
                    "errors": stats.errors,
                }
            ),
            flush=True,
        )

    store = SQLitePermitStore(args.db)
    try:
        try:
            run = run_sync(
                store,
                args.file,
                batch_size=args.batch_size,
                snapshot_path=args.snapshot,
                on_progress=_log_batch if args.log_json else None,
            )
        except Exception as exc:
            logger.debug("sync run failed", exc_info=True)
            latest = store.list_sync_runs(limit=1)
            res = {"ok": False, "error": str(exc)}
            if latest:
                res["sync_run"] = latest[0].to_dict()
            print(dumps(res), end="")
            return 2
        print(dumps({"ok": True, "sync_run": run.to_dict()}), end="")
        return 0
    finally:
        store.close()


def _cmd_history(args: argparse.Namespace) -> int:
    store = SQLitePermitStore(args.db)
    try:
        runs = [r.to_dict() for r in store.list_sync_runs(limit=args.limit)]
    finally:
        store.close()
    print(dumps({"ok": True, "runs": runs}), end="")
    return 0


def _cmd_changes(args: argparse.Namespace) -> int:
    store = SQLitePermitStore(args.db)
    try:
        changes = store.list_changes(args.permit_num, args.revision_num)
    finally:
        store.close()
    print(
        dumps(
            {
                "ok": True,
                "permit_num": args.permit_num,
                "revision_num": args.revision_num,
                "changes": changes,
            }
        ),
        end="",
    )
    return 0


def _cmd_builders(args: argparse.Namespace) -> int:
    store = SQLitePermitStore(args.db)
    try:
        res = store.rebuild_builders()
        res["builders_list"] = store.list_builders(limit=args.limit)
    finally:
        store.close()
    print(dumps(res), end="")
    return 0


def _cmd_products(args: argparse.Namespace) -> int:
    tags = [t.strip() for t in str(args.tags or "").split(",") if t.strip()]
    print(dumps({"ok": True, "tags": tags, "products": sorted(lookup_products_for_tags(tags))}), end="")
    return 0


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="permit_sync", description="Building permit sync pipeline")
    parser.add_argument("--log-level", default=None, help="Logging level (DEBUG, INFO, etc.)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Sync one JSON-array export into the store")
    p_run.add_argument("--file", required=True, help="Path to the JSON export")
    p_run.add_argument("--db", default=settings.db_path, help="SQLite DB path")
    p_run.add_argument("--batch-size", type=int, default=None, help="Records per batch")
    p_run.add_argument("--snapshot", default=None, help="Snapshot reference stored on the run (default: file path)")
    p_run.add_argument("--log-json", action="store_true", help="Emit one JSON line per batch")
    p_run.set_defaults(func=_cmd_run)

    p_hist = sub.add_parser("history", help="Show recent sync runs")
    p_hist.add_argument("--db", default=settings.db_path, help="SQLite DB path")
    p_hist.add_argument("--limit", type=int, default=20)
    p_hist.set_defaults(func=_cmd_history)

    p_changes = sub.add_parser("changes", help="Show the change log for one permit revision")
    p_changes.add_argument("--db", default=settings.db_path, help="SQLite DB path")
    p_changes.add_argument("--permit-num", required=True)
    p_changes.add_argument("--revision-num", required=True)
    p_changes.set_defaults(func=_cmd_changes)

    p_builders = sub.add_parser("builders", help="Rebuild the builders table from stored permits")
    p_builders.add_argument("--db", default=settings.db_path, help="SQLite DB path")
    p_builders.add_argument("--limit", type=int, default=50)
    p_builders.set_defaults(func=_cmd_builders)

    p_products = sub.add_parser("products", help="Look up product groups for scope tags")
    p_products.add_argument("--tags", required=True, help="Comma-separated scope tags")
    p_products.set_defaults(func=_cmd_products)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    if args.cmd == "run" and args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be >= 1")
    return int(args.func(args))


def _safe_main() -> None:
    try:
        code = main()
    except SystemExit:
        raise
    except Exception as exc:
        print(json.dumps({"error": str(exc)}))
        raise SystemExit(1)
    raise SystemExit(code)


if __name__ == "__main__":
    _safe_main()
