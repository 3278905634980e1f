from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class _TraefikRecord(BaseModel):
    # The Traefik API returns many more fields than are used here.
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Traefik serializes empty lists as null.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data


class HttpRouter(_TraefikRecord):
    name: str
    rule: str = ""
    service: str = ""
    entry_points: list[str] = Field(default_factory=list, alias="entryPoints")
    middlewares: list[str] = Field(default_factory=list)
    priority: int = 0
    status: str = ""
    provider: str = ""


class TcpRouter(_TraefikRecord):
    name: str
    rule: str = ""
    service: str = ""
    entry_points: list[str] = Field(default_factory=list, alias="entryPoints")
    priority: int = 0
    status: str = ""
    provider: str = ""


class Middleware(_TraefikRecord):
    name: str
    status: str = ""
    provider: str = ""
    used_by: list[str] = Field(default_factory=list, alias="usedBy")


class Service(_TraefikRecord):
    name: str
    status: str = ""
    provider: str = ""


class _StatusModel(BaseModel):
    # Served as camelCase, the shape the relay dashboard reads.
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


class ServerStatus(_StatusModel):
    online: bool = False
    last_checked: str
    http_routers: int = 0
    tcp_routers: int = 0
    middlewares: int = 0
    services: int = 0
    error: Optional[str] = None
    configuration: dict[str, Any] = Field(default_factory=dict)


class ServerDetail(ServerStatus):
    http_router_details: list[HttpRouter] = Field(default_factory=list)
    tcp_router_details: list[TcpRouter] = Field(default_factory=list)
    middleware_details: list[Middleware] = Field(default_factory=list)
    service_details: list[Service] = Field(default_factory=list)


class StatusInfo(_StatusModel):
    last_updated: str
    servers: dict[str, ServerStatus]


class CycleReport(BaseModel):
    entries: int = Field(..., description="Keys in the desired entry set")
    written: int = Field(0, description="Keys written to the store")
    deleted: int = Field(..., description="Stale keys removed this cycle")
    failed_servers: list[str] = Field(default_factory=list)
    store_error: Optional[str] = None
    aborted: bool = False
