from __future__ import annotations

from threading import Event, Lock
from typing import Any, Callable, Iterable, Mapping

from redis.exceptions import RedisError

from . import db
from .api_models import CycleReport
from .config import RelayConfig, SourceInstance
from .keys import Protocol, anchor_key, local_name, router_key
from .store import RedisStore
from .traefik_client import SourceError, TraefikClient

ClientFactory = Callable[[SourceInstance], Any]

Entries = dict[str, str]


def stale_keys(prior: Mapping[str, str], desired: Mapping[str, str]) -> set[str]:
    """Keys published last cycle that the current cycle no longer wants."""
    return set(prior) - set(desired)


def _contains_ci(names: Iterable[str], *candidates: str) -> bool:
    wanted = {c.casefold() for c in candidates if c}
    return any(n.casefold() in wanted for n in names)


class Reconciler:
    """Mirrors every configured instance's routers into the relay namespace.

    One call to :meth:`run_cycle` fetches all instances, builds the desired
    entry set, deletes what the previous cycle published but no longer
    applies, then rewrites the desired set.

    An instance whose API cannot be reached contributes only its anchor
    entries, so its router keys from the previous cycle are deleted as stale.
    With ``preserve_on_failure`` enabled the last entries published for the
    failing protocol are carried forward instead.
    """

    def __init__(
        self,
        cfg: RelayConfig,
        store: RedisStore,
        client_factory: ClientFactory = TraefikClient,
        prefix: str | None = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.client_factory = client_factory
        self.prefix = prefix or store.prefix
        self._cycle_lock = Lock()
        self._prior: Entries = {}
        # (server name, protocol) -> router entries published for it last cycle
        self._prior_parts: dict[tuple[str, str], Entries] = {}
        self.last_report: CycleReport | None = None

    @property
    def prior_entries(self) -> Entries:
        return dict(self._prior)

    def run_cycle(self, stop: Event | None = None) -> CycleReport:
        # The scheduler and the manual /reconcile endpoint share this engine.
        with self._cycle_lock:
            return self._run_cycle(stop)

    def _run_cycle(self, stop: Event | None) -> CycleReport:
        db.log_event("INFO", f"Reconciliation cycle started for {len(self.cfg.servers)} servers")
        desired: Entries = {}
        parts: dict[tuple[str, str], Entries] = {}
        failed: list[str] = []

        for server in self.cfg.servers:
            if stop is not None and stop.is_set():
                db.log_event("WARN", "Reconciliation cycle aborted by shutdown; store left untouched")
                report = CycleReport(entries=len(self._prior), deleted=0, failed_servers=failed, aborted=True)
                self.last_report = report
                return report
            server_entries, server_parts, ok = self._process_server(server)
            if not ok:
                failed.append(server.name)
            self._merge(desired, server_entries, server.name)
            parts.update(server_parts)

        report = self._commit(desired, parts, failed)
        self.last_report = report
        return report

    def _merge(self, desired: Entries, entries: Entries, server_name: str) -> None:
        clashes = sorted(k for k in entries if k in desired and desired[k] != entries[k])
        for key in clashes:
            db.log_event("WARN", f"Key {key} is produced by more than one server; keeping the later value", server_name)
        desired.update(entries)

    def _commit(self, desired: Entries, parts: dict[tuple[str, str], Entries], failed: list[str]) -> CycleReport:
        stale = stale_keys(self._prior, desired)
        deleted = 0
        if stale:
            try:
                self.store.delete_keys(stale)
                deleted = len(stale)
                db.log_event("INFO", f"Deleted {deleted} stale keys")
            except RedisError as e:
                db.log_event("ERROR", f"Error deleting stale keys: {type(e).__name__}: {e}")

        try:
            if self.cfg.conditional_writes:
                written = self.store.update_if_changed(desired)
            else:
                self.store.upsert(desired)
                written = len(desired)
        except RedisError as e:
            msg = f"{type(e).__name__}: {e}"
            db.log_event("ERROR", f"Error storing entries: {msg}")
            # Keep the previous prior set so its keys are still diffed next cycle.
            return CycleReport(entries=len(desired), deleted=deleted, failed_servers=failed, store_error=msg)

        self._prior = desired
        self._prior_parts = parts
        db.log_event(
            "INFO",
            f"Reconciliation cycle finished: {len(desired)} entries, {written} written, {deleted} deleted, "
            f"{len(failed)} servers with errors",
        )
        return CycleReport(entries=len(desired), written=written, deleted=deleted, failed_servers=failed)

    def build_entries(self, server: SourceInstance) -> Entries:
        """Desired entries for a single server, without touching the store."""
        entries, _, _ = self._process_server(server)
        return entries

    def _process_server(self, server: SourceInstance) -> tuple[Entries, dict[tuple[str, str], Entries], bool]:
        entries: Entries = {
            anchor_key("http", server.name, prefix=self.prefix): server.destination_address,
            anchor_key("tcp", server.name, prefix=self.prefix): server.destination_address,
        }
        parts: dict[tuple[str, str], Entries] = {}
        ok = True
        client = self.client_factory(server)

        steps: list[tuple[str, Callable[[Any, SourceInstance, Entries], None]]] = [
            ("http", self._process_http_routers),
            ("tcp", self._process_tcp_routers),
        ]
        for protocol, step in steps:
            part: Entries = {}
            try:
                step(client, server, part)
            except SourceError as e:
                ok = False
                db.log_event("ERROR", f"Error processing {protocol.upper()} routers: {e}", server.name)
                if self.cfg.preserve_on_failure:
                    part = dict(self._prior_parts.get((server.name, protocol), {}))
                    if part:
                        db.log_event(
                            "WARN",
                            f"Keeping {len(part)} previously published {protocol.upper()} entries",
                            server.name,
                        )
                else:
                    part = {}
            parts[(server.name, protocol)] = part
            entries.update(part)
        return entries, parts, ok

    def _add_entrypoints(
        self,
        protocol: Protocol,
        name: str,
        router_entry_points: list[str],
        server: SourceInstance,
        entries: Entries,
    ) -> int:
        count = 0
        for global_ep, local_ep in server.entry_points.items():
            for ep in router_entry_points:
                if ep == local_ep:
                    entries[router_key(protocol, name, "entrypoints", count, prefix=self.prefix)] = global_ep
                    count += 1
        return count

    def _names(self, fetch: Callable[[], list[Any]], what: str, server: SourceInstance) -> list[str]:
        try:
            return [item.name for item in fetch()]
        except SourceError as e:
            db.log_event("ERROR", f"Error fetching {what}: {e}", server.name)
            return []

    def _process_http_routers(self, client: Any, server: SourceInstance, entries: Entries) -> None:
        routers = client.fetch_http_routers()
        db.log_event("INFO", f"Retrieved {len(routers)} HTTP routers", server.name)
        if not routers:
            return

        forward_middlewares = self.cfg.forward_middlewares_for(server)
        forward_services = self.cfg.forward_services_for(server)
        middleware_names = self._names(client.fetch_middlewares, "middlewares", server) if forward_middlewares else []
        service_names = self._names(client.fetch_services, "services", server) if forward_services else []

        for router in routers:
            name = local_name(router.name, server.name)
            if not self._add_entrypoints("http", name, router.entry_points, server, entries):
                continue

            entries[router_key("http", name, "rule", prefix=self.prefix)] = router.rule

            service = server.name
            # A service the relay already knows by that name is left alone.
            if forward_services and router.service and not _contains_ci(service_names, name, router.service):
                service = router.service
            entries[router_key("http", name, "service", prefix=self.prefix)] = service

            if forward_middlewares:
                for i, middleware in enumerate(router.middlewares):
                    if not _contains_ci(middleware_names, middleware):
                        entries[router_key("http", name, "middlewares", i, prefix=self.prefix)] = middleware

    def _process_tcp_routers(self, client: Any, server: SourceInstance, entries: Entries) -> None:
        routers = client.fetch_tcp_routers()
        db.log_event("INFO", f"Retrieved {len(routers)} TCP routers", server.name)

        for router in routers:
            if not router.service:
                db.log_event("WARN", f"Skipping TCP router {router.name}: no service", server.name)
                continue
            # TCP routers are keyed by their service, not their own name.
            name = local_name(router.service, server.name)
            if not self._add_entrypoints("tcp", name, router.entry_points, server, entries):
                continue
            entries[router_key("tcp", name, "rule", prefix=self.prefix)] = router.rule
            entries[router_key("tcp", name, "service", prefix=self.prefix)] = server.name
