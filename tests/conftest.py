import fnmatch
import os as _os
import sys

import pytest

# Ensure project root is importable (so `import trelay` / `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from trelay import db  # noqa: E402
from trelay.api_models import HttpRouter, Middleware, Service, TcpRouter  # noqa: E402
from trelay.config import parse_config  # noqa: E402
from trelay.settings import Settings  # noqa: E402
from trelay.store import RedisStore  # noqa: E402
from trelay.traefik_client import SourceError  # noqa: E402


class FakeRedis:
    """Just enough of redis.Redis for RedisStore."""

    def __init__(self):
        self.data = {}
        self.set_calls = 0
        self.delete_calls = []
        self.fail_delete = None
        self.fail_set = None

    def ping(self):
        return True

    def pipeline(self):
        return _FakePipeline(self)

    def set(self, key, value):
        if self.fail_set is not None:
            raise self.fail_set
        self.set_calls += 1
        self.data[key] = value
        return True

    def delete(self, *keys):
        if self.fail_delete is not None:
            raise self.fail_delete
        self.delete_calls.append(set(keys))
        removed = 0
        for k in keys:
            if self.data.pop(k, None) is not None:
                removed += 1
        return removed

    def mget(self, keys):
        return [self.data.get(k) for k in keys]

    def scan_iter(self, match=None):
        for k in list(self.data):
            if match is None or fnmatch.fnmatchcase(k, match):
                yield k

    def close(self):
        return None


class _FakePipeline:
    def __init__(self, r):
        self.r = r
        self.ops = []

    def set(self, key, value):
        self.ops.append((key, value))
        return self

    def execute(self):
        return [self.r.set(k, v) for k, v in self.ops]


class FakeSource:
    """Stands in for TraefikClient; records are given as Traefik API JSON."""

    def __init__(self, http=None, tcp=None, middlewares=None, services=None, fail=()):
        self.http = http or []
        self.tcp = tcp or []
        self.middlewares = middlewares or []
        self.services = services or []
        self.fail = set(fail)
        self.calls = []

    def _maybe_fail(self, what):
        self.calls.append(what)
        if what in self.fail:
            raise SourceError(f"{what} unavailable")

    def fetch_http_routers(self):
        self._maybe_fail("http")
        return [HttpRouter.model_validate(r) for r in self.http]

    def fetch_tcp_routers(self):
        self._maybe_fail("tcp")
        return [TcpRouter.model_validate(r) for r in self.tcp]

    def fetch_middlewares(self):
        self._maybe_fail("middlewares")
        return [Middleware.model_validate(m) for m in self.middlewares]

    def fetch_services(self):
        self._maybe_fail("services")
        return [Service.model_validate(s) for s in self.services]


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Isolated sqlite event log per test."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db")))
    db.init_db()
    return db


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return RedisStore(redis_client=fake_redis, prefix="traefik")


@pytest.fixture
def make_config():
    def _make(servers, **extra):
        data = {"servers": servers}
        data.update(extra)
        return parse_config(data)

    return _make


def server_cfg(name, **extra):
    data = {
        "name": name,
        "apiAddress": f"http://{name}.internal:8080",
        "destinationAddress": f"http://{name}.internal",
        "entryPoints": {"web": "http"},
    }
    data.update(extra)
    return data


@pytest.fixture
def server():
    return server_cfg


@pytest.fixture
def fake_source():
    return FakeSource
