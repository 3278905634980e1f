from __future__ import annotations

from typing import Any, Optional
from urllib.parse import urlsplit, urlunsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .settings import settings


class ConfigError(Exception):
    """Invalid or unreadable configuration. Fatal at startup."""


def resolve(override: Optional[bool], default: bool) -> bool:
    """Per-instance override wins over the global default when set."""
    if override is None:
        return default
    return override


def _check_url(value: str, field: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValueError(f"{field} is required")
    parsed = urlsplit(value)
    if not parsed.scheme or not parsed.netloc:
        raise ValueError(f"{field} must be an absolute URL (got {value!r})")
    parsed.port  # raises ValueError on a malformed port
    return value


class SourceInstance(BaseModel):
    """One Traefik instance whose routers are mirrored into the relay."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(..., description="Unique instance name, used in keys and as the anchor service name")
    api_address: str = Field(..., alias="apiAddress", description="Traefik API base URL, may embed user:password")
    api_host: Optional[str] = Field(None, alias="apiHost", description="Host header sent to the API")
    destination_address: str = Field(
        ..., alias="destinationAddress", description="Where the relay forwards traffic for this instance"
    )
    forward_middlewares: Optional[bool] = Field(None, alias="forwardMiddlewares")
    forward_services: Optional[bool] = Field(None, alias="forwardServices")
    entry_points: dict[str, str] = Field(
        default_factory=dict,
        alias="entryPoints",
        validate_default=True,
        description="relay entrypoint -> instance entrypoint",
    )

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()

    @field_validator("api_address")
    @classmethod
    def _api_address_url(cls, v: str) -> str:
        return _check_url(v, "apiAddress")

    @field_validator("destination_address")
    @classmethod
    def _destination_url(cls, v: str) -> str:
        return _check_url(v, "destinationAddress")

    @field_validator("entry_points")
    @classmethod
    def _default_entry_points(cls, v: dict[str, str]) -> dict[str, str]:
        return dict(v) if v else {"http": "http"}

    def public_dict(self) -> dict[str, Any]:
        """Config as shown by the status API, with API credentials masked."""
        data = self.model_dump(by_alias=True)
        parts = urlsplit(self.api_address)
        if parts.password is not None:
            netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
            data["apiAddress"] = urlunsplit(parts._replace(netloc=netloc))
        return data


class RelayConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    servers: list[SourceInstance] = Field(default_factory=list)
    run_every: int = Field(0, alias="runEvery", description="Seconds between cycles; <= 0 uses RUN_EVERY")
    forward_middlewares: bool = Field(False, alias="forwardMiddlewares")
    forward_services: bool = Field(False, alias="forwardServices")
    preserve_on_failure: bool = Field(
        False,
        alias="preserveOnFailure",
        description="Keep an instance's last published routers when its API cannot be reached",
    )
    conditional_writes: bool = Field(
        False,
        alias="conditionalWrites",
        description="Only write keys whose stored value differs instead of rewriting every key",
    )

    @model_validator(mode="after")
    def _validate_servers(self) -> "RelayConfig":
        if not self.servers:
            raise ValueError("no servers configured")
        seen: set[str] = set()
        for s in self.servers:
            if s.name in seen:
                raise ValueError(f"duplicate server name '{s.name}'")
            seen.add(s.name)
        return self

    def forward_middlewares_for(self, server: SourceInstance) -> bool:
        return resolve(server.forward_middlewares, self.forward_middlewares)

    def forward_services_for(self, server: SourceInstance) -> bool:
        return resolve(server.forward_services, self.forward_services)

    def find_server(self, name: str) -> SourceInstance | None:
        for s in self.servers:
            if s.name == name:
                return s
        return None

    def public_dict(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        data["servers"] = [s.public_dict() for s in self.servers]
        return data

    def interval_s(self) -> int:
        if self.run_every > 0:
            return self.run_every
        return max(1, settings.run_every_s)


def parse_config(data: object) -> RelayConfig:
    if not isinstance(data, dict):
        raise ConfigError("configuration must be a mapping")
    try:
        return RelayConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e


def load_config(path: str | None = None) -> RelayConfig:
    """Load and validate the YAML configuration file."""
    path = path or settings.config_path
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"error reading config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing config file {path}: {e}") from e
    if not data:
        raise ConfigError(f"config file {path} is empty")
    return parse_config(data)
