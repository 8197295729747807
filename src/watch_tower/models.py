"""
Data models for watch-tower

Contains dataclasses for credentials, reconciler configuration, managed
resources, planned actions and cycle results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import psycopg
from psycopg.conninfo import conninfo_to_dict, make_conninfo

from .constants import (
    DEFAULT_ANNOTATION_KEY,
    DEFAULT_API_TIMEOUT_SECONDS,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_LIST_RETRY_INTERVAL_SECONDS,
    DEFAULT_POSTGRES_PORT,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    DEFAULT_QUERY_TIMEOUT_SECONDS,
    DEFAULT_RESOURCE_GROUP,
    DEFAULT_RESOURCE_PLURAL,
    DEFAULT_RESOURCE_VERSION,
    DEFAULT_RETRY_INTERVAL_SECONDS,
)
from .exceptions import ConfigError, WatchTowerError


class DatabaseRole(Enum):
    """Role of the database as seen by the latest recovery-mode query"""

    PRIMARY = "Primary"
    STANDBY = "Standby"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DatabaseCredentials:
    """Connection parameters for the backing database"""

    host: str
    port: int
    user: str | None = None
    password: str | None = field(default=None, repr=False)
    dbname: str | None = None

    @classmethod
    def from_url(cls, url: str) -> "DatabaseCredentials":
        """Create DatabaseCredentials from a libpq URL or key=value DSN"""
        try:
            params = conninfo_to_dict(url)
        except psycopg.Error as e:
            raise ConfigError(f"Invalid database URL: {e}") from e

        host = params.get("host")
        if not host:
            raise ConfigError("Database URL must include a host")
        if "," in str(host):
            raise ConfigError("Database URL must name a single host")

        port = params.get("port") or DEFAULT_POSTGRES_PORT
        try:
            port = int(port)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid database port: {port!r}") from e

        return cls(
            host=str(host),
            port=port,
            user=params.get("user"),
            password=params.get("password"),
            dbname=params.get("dbname"),
        )

    @property
    def address(self) -> tuple[str, int]:
        """(host, port) pair for the reachability probe"""
        return (self.host, self.port)

    def to_conninfo(self) -> str:
        """Build the libpq connection string for these credentials"""
        return make_conninfo(
            host=self.host,
            port=self.port,
            user=self.user,
            password=self.password,
            dbname=self.dbname,
        )


@dataclass(frozen=True)
class ResourceKind:
    """Group, version and plural name of the managed custom resource"""

    group: str = DEFAULT_RESOURCE_GROUP
    version: str = DEFAULT_RESOURCE_VERSION
    plural: str = DEFAULT_RESOURCE_PLURAL

    def __str__(self) -> str:
        return f"{self.plural}.{self.group}/{self.version}"


@dataclass(frozen=True)
class ReconcilerConfig:
    """Immutable settings for the reconciliation loop, built once at startup"""

    namespace: str
    kind: ResourceKind = field(default_factory=ResourceKind)
    annotation_key: str = DEFAULT_ANNOTATION_KEY
    interval_seconds: float = DEFAULT_INTERVAL_SECONDS
    retry_interval_seconds: float = DEFAULT_RETRY_INTERVAL_SECONDS
    list_retry_interval_seconds: float = DEFAULT_LIST_RETRY_INTERVAL_SECONDS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS
    api_timeout_seconds: float = DEFAULT_API_TIMEOUT_SECONDS

    def __post_init__(self):
        if not self.namespace:
            raise ConfigError("namespace must be a non-empty string")
        if not self.annotation_key:
            raise ConfigError("annotation_key must be a non-empty string")
        for name in (
            "interval_seconds",
            "retry_interval_seconds",
            "list_retry_interval_seconds",
        ):
            if getattr(self, name) < 0:
                raise ConfigError(f"{name} must be >= 0")
        # A zero timeout means "no timeout" to most clients
        for name in (
            "probe_timeout_seconds",
            "connect_timeout_seconds",
            "query_timeout_seconds",
            "api_timeout_seconds",
        ):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be > 0")


@dataclass(frozen=True)
class ManagedResource:
    """One instance of the managed custom resource"""

    name: str
    annotations: dict[str, str] = field(default_factory=dict)
    spec: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api_object(cls, obj: dict[str, Any]) -> "ManagedResource":
        """Create ManagedResource from a custom object returned by the API"""
        metadata = obj.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            annotations=dict(metadata.get("annotations") or {}),
            spec=dict(obj.get("spec") or {}),
        )


@dataclass
class Action:
    """A planned change of spec.replicas on one resource"""

    resource_name: str
    replicas: int
    current_replicas: int | None = None
    reason: str = ""

    def patch_body(self) -> dict[str, Any]:
        """Merge patch body that touches spec.replicas only"""
        return {"spec": {"replicas": self.replicas}}

    def __str__(self) -> str:
        current = "?" if self.current_replicas is None else self.current_replicas
        return f"{self.resource_name}: spec.replicas {current} -> {self.replicas}"


@dataclass
class CycleResult:
    """What happened during one reconciliation cycle"""

    sleep_seconds: float
    role: DatabaseRole | None = None
    failed_phase: str | None = None
    error: WatchTowerError | None = None
    actions: list[Action] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.failed_phase is None and not self.cancelled
