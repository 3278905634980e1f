from __future__ import annotations

import argparse
import json
import sys

import requests

from trelay.config import ConfigError, load_config
from trelay.reconciler import Reconciler
from trelay.runtime import build_runtime, run_headless
from trelay.store import RedisStore
from trelay.traefik_client import TraefikClient


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def _run_local(cmd: str, config_path: str | None, server_name: str | None = None) -> int:
    try:
        cfg = load_config(config_path)
    except ConfigError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    if cmd == "validate":
        _print(cfg.public_dict())
        return 0

    if cmd == "preview":
        server = cfg.find_server(server_name or "")
        if server is None:
            print(f"error: unknown server {server_name!r}", file=sys.stderr)
            return 2
        # The store is never touched; the Redis client connects lazily.
        entries = Reconciler(cfg, RedisStore(), client_factory=TraefikClient).build_entries(server)
        _print(dict(sorted(entries.items())))
        return 0

    rt = build_runtime(
        cfg=cfg,
        store=RedisStore(),
        client_factory=TraefikClient,
        flush=False if cmd == "once" else None,
    )
    if cmd == "once":
        report = rt.reconciler.run_cycle()
        _print({"report": report.model_dump(), "entries": dict(sorted(rt.reconciler.prior_entries.items()))})
        return 0 if report.store_error is None else 1

    run_headless(rt)
    return 0


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Traefik Relay CLI")
    p.add_argument("--api", default="http://localhost:8080", help="Relay API base URL")
    p.add_argument("--user", default="admin", help="Admin user for mutating endpoints")
    p.add_argument("--password", default=None, help="Admin password for mutating endpoints")
    p.add_argument("--config", default=None, help="Config file for local commands (default: CONFIG_PATH)")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Aggregate status of all servers")
    sub.add_parser("servers", help="List servers and their status")

    s_srv = sub.add_parser("server", help="Live routers/middlewares/services of one server")
    s_srv.add_argument("name")

    s_ref = sub.add_parser("refresh", help="Re-probe one server now")
    s_ref.add_argument("name")

    sub.add_parser("keys", help="List keys the relay has published")
    sub.add_parser("reconcile", help="Run a reconciliation cycle now")
    sub.add_parser("flush", help="Remove every key under the relay namespace")

    s_ev = sub.add_parser("events", help="Show events")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.add_argument("--server", default=None)

    sub.add_parser("run", help="Run the reconciler in the foreground (no API)")
    sub.add_parser("once", help="Run one cycle locally and print the published entries")
    sub.add_parser("validate", help="Load and validate the config file")

    s_pre = sub.add_parser("preview", help="Print the entries one server would publish, without writing them")
    s_pre.add_argument("name")

    args = p.parse_args(argv)

    if args.cmd in {"run", "once", "validate", "preview"}:
        return _run_local(args.cmd, args.config, getattr(args, "name", None))

    base = args.api.rstrip("/") + "/api/v1"
    auth = (args.user, args.password) if args.password else None

    if args.cmd == "status":
        r = requests.get(f"{base}/status", timeout=10)
    elif args.cmd == "servers":
        r = requests.get(f"{base}/servers", timeout=10)
    elif args.cmd == "server":
        r = requests.get(f"{base}/servers/{args.name}", timeout=30)
    elif args.cmd == "refresh":
        r = requests.post(f"{base}/servers/{args.name}/refresh", auth=auth, timeout=30)
    elif args.cmd == "keys":
        r = requests.get(f"{base}/redis/keys", timeout=10)
    elif args.cmd == "reconcile":
        r = requests.post(f"{base}/reconcile", auth=auth, timeout=120)
    elif args.cmd == "flush":
        r = requests.post(f"{base}/redis/flush", auth=auth, timeout=30)
    elif args.cmd == "events":
        params = {"limit": args.limit}
        if args.server:
            params["server"] = args.server
        r = requests.get(f"{base}/events", params=params, timeout=10)
    else:
        return 2

    _print(r.json())
    return 0 if r.ok else 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
