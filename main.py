# fieldclock/main.py
import os, sys
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
import argparse
import json
import logging
import time
from pathlib import Path

from core.errors import FieldClockError
from core.operations import state_label
from core.settings import APP_NAME, CONFIG_PATH, TRANSPORT
from storage.config import load_config, update_config
from storage.db import init_client_db
from storage.device import get_device_id
from services.connectivity import ConnectivityMonitor, http_probe
from services.pending_ops_queue import PendingOperation, PendingOpsQueue
from services.sync_coordinator import SyncCoordinator
from services.transport import HttpTransport


def _build_coordinator(config):
    if not config.base_url:
        raise SystemExit(f"No server configured. Run `{APP_NAME.lower()} configure --base-url URL` first.")
    queue = PendingOpsQueue(init_client_db())
    transport = HttpTransport(
        config.base_url,
        auth_token=config.auth_token,
        timeout=config.request_timeout_sec,
    )
    probe = http_probe(config.base_url.rstrip("/") + TRANSPORT.health_path, timeout=config.request_timeout_sec)
    monitor = ConnectivityMonitor(initial_online=False, probe=probe)
    coordinator = SyncCoordinator(queue, transport, monitor)
    monitor.check()
    return coordinator


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def cmd_configure(args) -> int:
    changes = {
        key: value
        for key, value in (
            ("base_url", args.base_url),
            ("user_id", args.user_id),
            ("auth_token", args.auth_token),
            ("request_timeout_sec", args.timeout),
        )
        if value is not None
    }
    cfg = update_config(**changes)
    print(f"Saved {CONFIG_PATH}")
    _print_json({"baseUrl": cfg.base_url, "userId": cfg.user_id, "timeout": cfg.request_timeout_sec})
    return 0


def cmd_clock(args) -> int:
    config = load_config()
    if not config.user_id:
        print("No user configured.", file=sys.stderr)
        return 2
    device_id = get_device_id()
    if args.command == "clock-in":
        op = PendingOperation.clock_in(
            job_id=args.job,
            lat=args.lat,
            lng=args.lng,
            accuracy_m=args.accuracy,
            owner_user_id=config.user_id,
            device_id=device_id,
        )
    else:
        op = PendingOperation.clock_out(
            job_id=args.job,
            lat=args.lat,
            lng=args.lng,
            accuracy_m=args.accuracy,
            owner_user_id=config.user_id,
            device_id=device_id,
        )
    coordinator = _build_coordinator(config)
    try:
        coordinator.enqueue(op)
        stored = coordinator.queue.get(op.event_id)
    finally:
        coordinator.close()
    if stored is None:
        print(f"{op.operation_kind.value} {op.event_id}: committed")
    else:
        print(f"{op.operation_kind.value} {op.event_id}: {stored.state.value} ({state_label(stored.state)})")
        if stored.last_error:
            print(f"  last error: {stored.last_error}")
    return 0


def cmd_list(args) -> int:
    queue = PendingOpsQueue(init_client_db())
    ops = queue.all()
    if not ops:
        print("Queue is empty.")
        return 0
    for op in ops:
        line = (
            f"{op.event_id}  {op.operation_kind.value:<8}  {op.state.value:<15}"
            f"  retries={op.retry_count}  job={op.job_id or '-'}"
        )
        print(line)
        if op.last_error:
            print(f"    {state_label(op.state)}: {op.last_error}")
    return 0


def cmd_sync(args) -> int:
    coordinator = _build_coordinator(load_config())
    try:
        if args.watch:
            coordinator.start(args.interval)
            print("Syncing in the background. Press Ctrl+C to stop.")
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                pass
            return 0
        result = coordinator.trigger("cli")
    finally:
        coordinator.close()
    if result.skipped:
        print(f"Sync skipped: {result.skipped}")
        return 1
    print(
        f"Attempted {result.attempted}: {result.committed} committed, "
        f"{result.retried} retrying, {result.rejected} rejected"
    )
    return 0


def cmd_cancel(args) -> int:
    queue = PendingOpsQueue(init_client_db())
    try:
        removed = queue.cancel(args.event_id)
    except FieldClockError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print("Cancelled." if removed else "No such operation.")
    return 0 if removed else 1


def cmd_retry(args) -> int:
    queue = PendingOpsQueue(init_client_db())
    if queue.retry(args.event_id):
        print("Re-queued.")
        return 0
    print("No such operation waiting for manual action.")
    return 1


def cmd_status(args) -> int:
    config = load_config()
    if config.base_url:
        coordinator = _build_coordinator(config)
        try:
            _print_json(coordinator.status())
        finally:
            coordinator.close()
        return 0
    queue = PendingOpsQueue(init_client_db())
    _print_json({"online": False, "queue": queue.count_by_state()})
    return 0


def cmd_export(args) -> int:
    queue = PendingOpsQueue(init_client_db())
    records = queue.export_records()
    if args.output:
        Path(args.output).write_text(json.dumps(records, ensure_ascii=False, indent=2), encoding="utf-8")
        print(f"Exported {len(records)} operation(s) to {args.output}")
    else:
        _print_json(records)
    return 0


def cmd_import(args) -> int:
    queue = PendingOpsQueue(init_client_db())
    records = json.loads(Path(args.input).read_text(encoding="utf-8"))
    added = queue.import_records(records)
    print(f"Imported {added} operation(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME.lower(), description="Offline-first clock in/out")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("configure", help="store server and user settings")
    p.add_argument("--base-url")
    p.add_argument("--user-id")
    p.add_argument("--auth-token")
    p.add_argument("--timeout", type=float)
    p.set_defaults(func=cmd_configure)

    for name in ("clock-in", "clock-out"):
        p = sub.add_parser(name, help=f"queue a {name.replace('-', ' ')} and try to send it")
        p.add_argument("--job", required=name == "clock-in")
        p.add_argument("--lat", type=float, required=True)
        p.add_argument("--lng", type=float, required=True)
        p.add_argument("--accuracy", type=float)
        p.set_defaults(func=cmd_clock)

    p = sub.add_parser("list", help="show queued operations")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("sync", help="drain the queue now")
    p.add_argument("--watch", action="store_true", help="keep syncing periodically")
    p.add_argument("--interval", type=float)
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("cancel", help="drop a queued operation")
    p.add_argument("event_id")
    p.set_defaults(func=cmd_cancel)

    p = sub.add_parser("retry", help="re-queue an operation that needs manual action")
    p.add_argument("event_id")
    p.set_defaults(func=cmd_retry)

    p = sub.add_parser("status", help="connectivity and queue summary")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("export", help="dump queued operations as JSON")
    p.add_argument("-o", "--output")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="load operations from an export file")
    p.add_argument("input")
    p.set_defaults(func=cmd_import)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
