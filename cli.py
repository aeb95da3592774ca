from __future__ import annotations

import argparse
import json
import sys
from dataclasses import asdict

import requests

from pdbmgr.errors import PdbMgrError
from pdbmgr.policy import ThresholdPolicy, derive_allowance, effective_threshold
from pdbmgr.probe import probe
from pdbmgr.protocol import ServerStatus


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False, default=str))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Minecraft PDB manager CLI")
    p.add_argument("--api", default="http://localhost:8080", help="Status API base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_probe = sub.add_parser("probe", help="Query a server's player counts once")
    s_probe.add_argument("--host", required=True)
    s_probe.add_argument("--port", type=int, default=25565)
    s_probe.add_argument("--timeout", type=float, default=5.0)

    s_der = sub.add_parser("derive", help="Show threshold and allowance for given counts")
    s_der.add_argument("--online", type=int, required=True)
    s_der.add_argument("--max", type=int, required=True)
    s_der.add_argument("--min-players", type=int, default=1)
    s_der.add_argument("--min-players-percent", type=float, default=None)

    sub.add_parser("status", help="Show reconciler status")

    s_ev = sub.add_parser("events", help="Show recent events")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "probe":
        try:
            status = probe(args.host, args.port, args.timeout)
        except PdbMgrError as e:
            _print({"error": e.kind, "detail": str(e)})
            return 1
        _print(asdict(status))
        return 0

    if args.cmd == "derive":
        try:
            policy = ThresholdPolicy(args.min_players, args.min_players_percent)
        except PdbMgrError as e:
            _print({"error": e.kind, "detail": str(e)})
            return 2
        status = ServerStatus(online=args.online, max=args.max)
        _print(
            {
                "threshold": effective_threshold(policy, status.max),
                "allowance": derive_allowance(status, policy).value,
            }
        )
        return 0

    if args.cmd == "status":
        r = requests.get(f"{base}/status", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    if args.cmd == "events":
        r = requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
