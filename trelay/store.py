from __future__ import annotations

from typing import Any, Iterable, Mapping

from .settings import redis_dsn, settings


class RedisStore:
    """Writes the relay's flattened key space into Redis.

    Keys are plain strings under ``<prefix>/``, which is the layout the
    Traefik Redis provider reads.
    """

    def __init__(self, redis_client: Any | None = None, redis_url: str | None = None, prefix: str | None = None) -> None:
        if redis_client is None:
            import redis

            redis_client = redis.Redis.from_url(redis_dsn(redis_url or settings.redis_url), decode_responses=True)
        self.client = redis_client
        self.prefix = (prefix or settings.redis_prefix).strip("/")

    def ping(self) -> bool:
        return bool(self.client.ping())

    def upsert(self, entries: Mapping[str, str]) -> None:
        if not entries:
            return
        pipe = self.client.pipeline()
        for key, value in entries.items():
            pipe.set(key, value)
        pipe.execute()

    def delete_keys(self, keys: Iterable[str]) -> None:
        keys = sorted(keys)
        if not keys:
            return
        self.client.delete(*keys)

    def update_if_changed(self, entries: Mapping[str, str]) -> int:
        """Write only keys whose stored value differs. Returns keys written."""
        if not entries:
            return 0
        ordered = list(entries.items())
        current = self.client.mget([k for k, _ in ordered])
        changed = {k: v for (k, v), cur in zip(ordered, current) if cur != v}
        self.upsert(changed)
        return len(changed)

    def keys(self) -> list[str]:
        return sorted(self.client.scan_iter(match=f"{self.prefix}/*"))

    def get_all(self) -> dict[str, str]:
        keys = self.keys()
        if not keys:
            return {}
        return dict(zip(keys, self.client.mget(keys)))

    def clear_namespace(self) -> int:
        """Remove every key under the prefix. Returns the number removed."""
        keys = self.keys()
        self.delete_keys(keys)
        return len(keys)

    def close(self) -> None:
        self.client.close()
