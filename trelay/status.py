from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Event, Lock
from typing import Any, Callable

from . import db
from .alerts import server_transition
from .api_models import ServerDetail, ServerStatus, StatusInfo
from .config import RelayConfig, SourceInstance
from .db import utc_now
from .traefik_client import SourceError, TraefikClient

_FETCHES: list[tuple[str, str, str, str]] = [
    # (client method, count field, detail field, label)
    ("fetch_http_routers", "http_routers", "http_router_details", "HTTP routers"),
    ("fetch_tcp_routers", "tcp_routers", "tcp_router_details", "TCP routers"),
    ("fetch_middlewares", "middlewares", "middleware_details", "middlewares"),
    ("fetch_services", "services", "service_details", "services"),
]


class StatusTracker:
    """Online/offline state of each instance, probed independently of the reconciler."""

    def __init__(self, cfg: RelayConfig, client_factory: Callable[[SourceInstance], Any] = TraefikClient) -> None:
        self.cfg = cfg
        self.client_factory = client_factory
        self.lock = Lock()
        self.last_updated = utc_now()
        self._statuses: dict[str, ServerStatus] = {
            s.name: ServerStatus(online=False, last_checked=utc_now(), configuration=s.public_dict())
            for s in cfg.servers
        }
        self._seen: set[str] = set()  # servers probed at least once

    def get(self, name: str) -> ServerStatus | None:
        with self.lock:
            st = self._statuses.get(name)
            return st.model_copy() if st else None

    def snapshot(self) -> StatusInfo:
        with self.lock:
            return StatusInfo(
                last_updated=self.last_updated,
                servers={k: v.model_copy() for k, v in self._statuses.items()},
            )

    def probe(self, server: SourceInstance) -> ServerStatus:
        """Fetch all four lists in turn; the first failure marks the server offline."""
        client = self.client_factory(server)
        st = ServerStatus(online=True, last_checked=utc_now(), configuration=server.public_dict())
        for method, field, _, label in _FETCHES:
            try:
                setattr(st, field, len(getattr(client, method)()))
            except SourceError as e:
                st.online = False
                st.error = f"Failed to get {label}: {e}"
                break
        self._record(server.name, st)
        return st

    def probe_all(self, stop: Event | None = None) -> None:
        for server in self.cfg.servers:
            if stop is not None and stop.is_set():
                return
            self.probe(server)
        with self.lock:
            self.last_updated = utc_now()

    def _record(self, name: str, st: ServerStatus) -> None:
        with self.lock:
            prev = self._statuses.get(name)
            first = name not in self._seen
            self._seen.add(name)
            self._statuses[name] = st

        if first:
            if not st.online:
                db.log_event("WARN", f"Server unreachable: {st.error}", name)
            return
        if prev is not None and prev.online and not st.online:
            db.log_event("WARN", f"Server went offline: {st.error}", name)
            server_transition(name, False, st.error or "")
        elif prev is not None and not prev.online and st.online:
            db.log_event("INFO", "Server back online", name)
            server_transition(name, True, "Recovered")

    def detail(self, server: SourceInstance) -> ServerDetail:
        """Fresh router/middleware/service listings, fetched concurrently."""
        client = self.client_factory(server)
        base = self.get(server.name) or ServerStatus(last_checked=utc_now(), configuration=server.public_dict())
        detail = ServerDetail(**base.model_dump())

        with ThreadPoolExecutor(max_workers=len(_FETCHES)) as pool:
            futures = {target: pool.submit(getattr(client, method)) for method, _, target, _ in _FETCHES}

        errors: list[str] = []
        for _, _, target, label in _FETCHES:
            try:
                setattr(detail, target, futures[target].result())
            except SourceError as e:
                errors.append(f"{label}: {e}")
        if errors:
            detail.error = "; ".join(["Failed to fetch some data", *errors])
        return detail
