"""Key schema for the relay's Redis namespace.

Layout (``/``-joined, read by the Traefik Redis provider)::

    <prefix>/<protocol>/routers/<name>/rule
    <prefix>/<protocol>/routers/<name>/service
    <prefix>/<protocol>/routers/<name>/entrypoints/<i>
    <prefix>/http/routers/<name>/middlewares/<i>
    <prefix>/<protocol>/services/<instance>/loadbalancer/servers/0/url

Every key is a pure function of its arguments.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from .settings import settings

Protocol = Literal["http", "tcp"]

PROVIDER_SEP = "@"


@dataclass(frozen=True)
class ProviderName:
    """A Traefik object name split at its ``@provider`` suffix."""

    base: str
    provider: Optional[str] = None

    @property
    def has_provider(self) -> bool:
        return self.provider is not None


def split_provider(name: str) -> ProviderName:
    base, sep, provider = name.partition(PROVIDER_SEP)
    if not sep:
        return ProviderName(base=name)
    return ProviderName(base=base, provider=provider)


def local_name(name: str, instance: str) -> str:
    """``api@docker`` on ``east`` becomes ``api_east``; ``api`` stays ``api``."""
    parsed = split_provider(name)
    if parsed.has_provider:
        return f"{parsed.base}_{instance}"
    return name


def redis_key(*segments: str, prefix: str | None = None) -> str:
    return "/".join([(prefix or settings.redis_prefix).strip("/"), *segments])


def router_key(
    protocol: Protocol,
    name: str,
    field: str,
    index: int | None = None,
    prefix: str | None = None,
) -> str:
    segments = [protocol, "routers", name, field]
    if index is not None:
        segments.append(str(index))
    return redis_key(*segments, prefix=prefix)


def anchor_key(protocol: Protocol, instance: str, prefix: str | None = None) -> str:
    return redis_key(protocol, "services", instance, "loadbalancer", "servers", "0", "url", prefix=prefix)

