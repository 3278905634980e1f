from __future__ import annotations

import signal
from dataclasses import dataclass, field
from threading import Event
from typing import Any, Callable

from redis.exceptions import RedisError

from . import db
from .config import RelayConfig, SourceInstance, load_config
from .reconciler import Reconciler
from .scheduler import Scheduler
from .settings import settings
from .status import StatusTracker
from .store import RedisStore
from .traefik_client import TraefikClient


@dataclass
class RelayRuntime:
    """Everything one relay process owns: config, store, engine and schedulers."""

    cfg: RelayConfig
    store: RedisStore
    reconciler: Reconciler
    status: StatusTracker
    schedulers: list[Scheduler] = field(default_factory=list)

    def start(self, with_status: bool = True) -> None:
        if not self.schedulers:
            self.schedulers.append(Scheduler(self.reconciler.run_cycle, self.cfg.interval_s(), name="reconciler"))
            if with_status:
                self.schedulers.append(Scheduler(self.status.probe_all, settings.status_interval_s, name="status"))
        for s in self.schedulers:
            s.start()

    def stop(self, timeout: float | None = 30.0) -> None:
        for s in self.schedulers:
            s.stop(timeout)


def build_runtime(
    cfg: RelayConfig | None = None,
    store: RedisStore | None = None,
    client_factory: Callable[[SourceInstance], Any] = TraefikClient,
    flush: bool | None = None,
) -> RelayRuntime:
    """Load config and connect to Redis. Raises ConfigError / RedisError, both fatal at startup."""
    db.init_db()
    cfg = cfg or load_config()
    store = store or RedisStore()
    store.ping()

    if settings.flush_on_start if flush is None else flush:
        removed = store.clear_namespace()
        db.log_event("INFO", f"Cleared {removed} keys under '{store.prefix}/' on startup")

    db.log_event("INFO", f"Starting relay with {len(cfg.servers)} servers")
    return RelayRuntime(
        cfg=cfg,
        store=store,
        reconciler=Reconciler(cfg, store, client_factory=client_factory),
        status=StatusTracker(cfg, client_factory=client_factory),
    )


def run_headless(rt: RelayRuntime) -> None:
    """Run the reconciler in the foreground until SIGINT/SIGTERM."""
    stopped = Event()

    def _on_signal(signum: int, _frame: Any) -> None:
        db.log_event("INFO", f"Received signal {signal.Signals(signum).name}, shutting down")
        stopped.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    rt.start(with_status=False)
    try:
        while not stopped.wait(1.0):
            pass
    finally:
        rt.stop()
        try:
            rt.store.close()
        except RedisError as e:
            db.log_event("WARN", f"Error closing Redis connection: {e}")
