from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _run_once() -> int:
    from csr import db
    from csr.reconciler import Reconciler
    from csr.registry import ConsulRegistry
    from csr.runtime import RuntimeState
    from csr.settings import settings
    from csr.source import MesosSource

    db.init_db()
    reconciler = Reconciler(RuntimeState(), ConsulRegistry(settings), MesosSource(settings), settings)
    try:
        report = reconciler.run_cycle()
    except Exception as e:
        _print({"error": f"{type(e).__name__}: {e}"})
        return 1
    _print(report.to_dict())
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Cluster Service Registrar CLI")
    p.add_argument("--api", default="http://localhost:8000", help="API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show the last reconciliation cycle")
    sub.add_parser("agents", help="Show worker id -> address map")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)

    s_sync = sub.add_parser("sync", help="Run a reconciliation cycle now")
    s_sync.add_argument("--user", default="admin")
    s_sync.add_argument("--password", required=True)

    sub.add_parser("once", help="Run one cycle in-process using CSR_* environment settings")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "status":
        _print(requests.get(f"{base}/status", timeout=10).json())
        return 0

    if args.cmd == "agents":
        _print(requests.get(f"{base}/agents", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "sync":
        r = requests.post(f"{base}/sync", auth=(args.user, args.password), timeout=120)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "once":
        return _run_once()

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
