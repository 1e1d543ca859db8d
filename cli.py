from __future__ import annotations

import argparse
import json
import logging
import sys

import requests

from lsc.settings import settings
from lsc.stack import build_stack, make_orchestrator, select
from lsc.stress import run_stress_test


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Log Stack Converger CLI")
    p.add_argument("--api", default="http://localhost:8000", help="Control API base URL")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = p.add_subparsers(dest="cmd", required=True)

    s_dep = sub.add_parser("deploy", help="Converge the log stack on this host")
    s_dep.add_argument("--only", nargs="+", metavar="SERVICE", help="Deploy only these steps (stack order is kept)")

    sub.add_parser("plan", help="List deployment steps in order")

    s_st = sub.add_parser("stress-test", help="Generate syslog errors and access events")
    s_st.add_argument("--count", type=int, default=1000)
    s_st.add_argument("--target", default=settings.stress_target)

    s_sv = sub.add_parser("services", help="Show last-applied containers (via API)")
    s_sv.add_argument("name", nargs="?", help="Only this service")

    s_ev = sub.add_parser("events", help="Show events (via API)")
    s_ev.add_argument("--limit", type=int, default=20)

    args = p.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(message)s")

    base = args.api.rstrip("/")

    if args.cmd == "deploy":
        try:
            plan = select(build_stack(settings), args.only)
        except ValueError as e:
            print(str(e), file=sys.stderr)
            return 2
        report = make_orchestrator(settings).deploy(plan)
        _print(report.to_dict())
        return 0 if report.ok else 1

    if args.cmd == "plan":
        _print([{"name": s.name, "image": s.image} for s in build_stack(settings)])
        return 0

    if args.cmd == "stress-test":
        result = run_stress_test(
            args.target,
            count=args.count,
            progress=lambda kind, n: logging.info("%s: %d/%d", kind, n, args.count),
        )
        _print(result.to_dict())
        return 0

    if args.cmd == "services":
        path = f"/services/{args.name}" if args.name else "/services"
        _print(requests.get(f"{base}{path}", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
