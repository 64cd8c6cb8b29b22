"""
Order Unmasker - CLI Runner

Usage:
  python -m unmasker.run --input order_ids.txt --config config/unmasker.yaml --out ./out
  python -m unmasker.run --account seller@example.com --store supabase --user-data-dir ~/.unmasker-profile

Dry run (validate only):
  python -m unmasker.run --input order_ids.txt --out ./out --dry-run

Exit codes:
  0 - success (run completed or stopped with at least one order resolved)
  1 - config error (file missing, invalid YAML or invalid values)
  2 - input error (input file missing, empty, or account unknown)
  3 - processing error (run aborted, or every order failed)
"""
from __future__ import annotations

import argparse
import platform
import sys
import time
from pathlib import Path
from typing import List

from src.broadcast import StatusBroadcaster
from src.config import UnmaskConfig, load_config
from src.errors import ConfigError, RunError, StoreError
from src.ops_logger import OpsLogger
from src.pipeline.orchestrator import ItemOrchestrator
from src.schemas import CommitResult, EventType, UnmaskEvent
from src.store import SqliteStore, SupabaseStore


def validate_input(input_path: Path) -> None:
    if not input_path.exists() or not input_path.is_file():
        print(f"Input error: file not found: {input_path}", file=sys.stderr)
        sys.exit(2)


def ensure_out_dir(out_dir: Path) -> None:
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        # sanity check: can we write here?
        test_file = out_dir / ".write_test"
        test_file.write_text("ok", encoding="utf-8")
        test_file.unlink(missing_ok=True)
    except Exception as e:
        print(f"Output error: cannot write to {out_dir}: {e}", file=sys.stderr)
        sys.exit(3)


def read_order_ids(input_path: Path) -> List[str]:
    """One id per line; blank lines and '#' comments skipped, duplicates dropped in order."""
    ids: List[str] = []
    seen = set()
    for line in input_path.read_text(encoding="utf-8").splitlines():
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        # tolerate "id,anything" exports
        s = s.split(",")[0].strip()
        if s and s not in seen:
            seen.add(s)
            ids.append(s)
    return ids


def build_store(cfg: UnmaskConfig, backend: str, out_dir: Path):
    if backend == "none":
        return None
    if backend == "sqlite":
        db_path = cfg.store.db_path or str(out_dir / "unmasker.sqlite")
        return SqliteStore(db_path)
    return SupabaseStore(cfg.store.url or "", cfg.store.key or "", timeout_s=cfg.store.timeout_s)


class _DryStore:
    """Accepts every commit without persisting (``--store none``)."""

    def lookup_credential(self, account_key):
        return None

    def list_pending_items(self, credential_id):
        return []

    def commit_result(self, item_id, record):
        return CommitResult(ok=True, fully_resolved=not record.is_masked)


def print_event(event: UnmaskEvent) -> None:
    t = event.type
    counters = f"[{event.processed}/{event.total} ok={event.succeeded} failed={event.failed}]"
    if t == EventType.STARTED:
        print(f"🚀 {event.message}")
    elif t == EventType.PROCESSING:
        print(f"➡️  Processing order {event.index}/{event.total}: …{event.item_id_short}")
    elif t == EventType.ORDER_SUCCESS:
        print(f"  ✅ {event.item_id_short}: {event.name or '-'} | {event.phone or '-'} | {event.address_preview or '-'} {counters}")
    elif t == EventType.ORDER_FAILED:
        print(f"  ⚠️  {event.item_id_short}: {event.failure.value if event.failure else 'failed'} - {event.reason} {counters}")
    elif t in (EventType.COMPLETED, EventType.STOPPED):
        print(f"🏁 {event.message} {counters}")
    elif t == EventType.ERROR:
        print(f"❌ {event.message}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    if sys.version_info < (3, 11):
        cur = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        print(f"Python 3.11+ required. Current: {cur}.", file=sys.stderr)
        return 1

    parser = argparse.ArgumentParser(prog="unmasker.run", description="Order unmasker runner")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", "-i", help="Path to order ids file (one per line)")
    source.add_argument("--account", "-a", help="Account email; pending orders are listed from the store")
    parser.add_argument("--config", "-c", default=None, help="Path to YAML config file (optional)")
    parser.add_argument("--out", "-o", default="./out", help="Output directory for logs and the local DB")
    parser.add_argument("--dry-run", action="store_true", help="Validate inputs/config and exit")
    parser.add_argument("--store", choices=["supabase", "sqlite", "none"], default=None, help="Result store backend (default: config store.backend)")
    parser.add_argument("--db-path", default=None, help="Path to SQLite DB file (default: <out>/unmasker.sqlite)")
    parser.add_argument("--user-data-dir", default=None, help="Persistent browser profile holding the seller-center login")
    parser.add_argument("--headless", action="store_true", help="Run the browser headless (default: headed)")
    parser.add_argument("--ops-log", default=None, help="Path to ops JSONL log file (default: <out>/ops.log)")
    parser.add_argument("--ops-stdout", action="store_true", help="Also mirror ops JSON to stdout")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1
    if args.user_data_dir:
        cfg.browser.user_data_dir = args.user_data_dir
    if args.headless:
        cfg.browser.headless = True
    if args.db_path:
        cfg.store.db_path = args.db_path
    backend = args.store or cfg.store.backend
    if backend not in ("supabase", "sqlite", "none"):
        print(f"Config error: unknown store backend: {backend}", file=sys.stderr)
        return 1

    out_dir = Path(args.out)
    ensure_out_dir(out_dir)

    order_ids: List[str] = []
    if args.input:
        input_path = Path(args.input)
        validate_input(input_path)
        order_ids = read_order_ids(input_path)
        if not order_ids:
            print(f"Input error: no order ids in {input_path}", file=sys.stderr)
            return 2

    try:
        store = build_store(cfg, backend, out_dir)
    except StoreError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 1

    if args.account:
        if store is None:
            print("Input error: --account needs a store (supabase or sqlite)", file=sys.stderr)
            return 2
        try:
            credential = store.lookup_credential(args.account)
            if credential is None:
                print(f"Input error: account not found: {args.account}", file=sys.stderr)
                return 2
            order_ids = store.list_pending_items(credential.id)
        except StoreError as e:
            print(f"Store error: {e}", file=sys.stderr)
            return 3
        print(f"🔑 {credential.display_name or args.account}: {len(order_ids)} orders to unmask")
        if not order_ids:
            print("No orders need unmasking!")
            return 0

    if args.dry_run:
        print("✅ Dry-run validation passed")
        print(f" - Config: {args.config or '(defaults)'}")
        print(f" - Store: {backend}")
        print(f" - Output dir: {out_dir}")
        print(f" - Orders to process: {len(order_ids)}")
        return 0

    broadcaster = StatusBroadcaster()
    broadcaster.subscribe(print_event)
    ops_log_path = Path(args.ops_log or cfg.ops.log_path or (out_dir / "ops.log"))
    ops_logger = OpsLogger(ops_log_path, also_stdout=bool(args.ops_stdout))
    if cfg.ops.ops_json or args.ops_log or args.ops_stdout:
        broadcaster.subscribe(ops_logger)

    orchestrator = ItemOrchestrator(
        store=store if store is not None else _DryStore(),
        config=cfg,
        broadcaster=broadcaster,
    )

    errors: List[UnmaskEvent] = []
    broadcaster.subscribe(lambda ev: errors.append(ev) if ev.type == EventType.ERROR else None)

    proc_start = time.perf_counter()
    try:
        orchestrator.start(order_ids)
        while not orchestrator.join(timeout=0.5):
            pass
    except KeyboardInterrupt:
        print("⏹  Stopping after the current order…")
        orchestrator.stop()
        orchestrator.join()
    except RunError as e:
        print(f"Processing error: {e}", file=sys.stderr)
        return 3
    finally:
        close = getattr(store, "close", None)
        if callable(close):
            try:
                close()
            except Exception:
                pass

    snap = orchestrator.status()
    ops_logger.emit({
        "unmask_ops": 1,
        "summary": True,
        "state": orchestrator.job.state.value,
        "processed": snap.processed,
        "total": snap.total,
        "succeeded": snap.succeeded,
        "failed": snap.failed,
        "durations": {"wall_s": round(max(0.0, time.perf_counter() - proc_start), 2)},
        "python": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "host": {"platform": platform.system(), "release": platform.release(), "machine": platform.machine()},
    })
    print(f"   Processed orders: {snap.processed}/{snap.total}")
    print(f"   Succeeded: {snap.succeeded}  Failed: {snap.failed}")

    if errors:
        return 3
    if snap.processed > 0 and snap.succeeded == 0:
        return 3
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
