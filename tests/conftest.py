"""
Pytest configuration and fixtures for watch-tower tests.

Provides in-memory stand-ins for the cluster API and the database so the
reconciliation loop can be exercised without a cluster, a server or real
sleeps.
"""

import copy
import os
from typing import Any
from unittest.mock import MagicMock

import pytest

from watch_tower.exceptions import (
    DatabaseConnectionError,
    ListError,
    PatchError,
    RoleCheckError,
    UnreachableError,
)
from watch_tower.models import DatabaseRole, ManagedResource, ReconcilerConfig

ANNOTATION_KEY = "watch-tower/replicas"


def make_object(
    name: str, replicas: Any = 1, target: str | None = None, **annotations: str
) -> dict[str, Any]:
    """Build a custom object dict the way the API returns it."""
    metadata: dict[str, Any] = {"name": name, "namespace": "aap"}
    all_annotations = dict(annotations)
    if target is not None:
        all_annotations[ANNOTATION_KEY] = target
    if all_annotations:
        metadata["annotations"] = all_annotations
    spec = {} if replicas is None else {"replicas": replicas}
    return {
        "apiVersion": "automationcontroller.ansible.com/v1beta1",
        "kind": "AutomationController",
        "metadata": metadata,
        "spec": spec,
    }


class FakeCluster:
    """In-memory ClusterClient with call recording and injectable failures."""

    def __init__(self, objects: list[dict[str, Any]] | None = None):
        self.objects = {obj["metadata"]["name"]: obj for obj in objects or []}
        self.list_calls = 0
        self.patches: list[tuple[str, int]] = []
        self.list_error: Exception | None = None
        self.patch_errors: dict[str, Exception] = {}

    def list_resources(self) -> list[ManagedResource]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        return [
            ManagedResource.from_api_object(copy.deepcopy(obj))
            for obj in self.objects.values()
        ]

    def patch_replicas(self, name: str, replicas: int) -> dict[str, Any]:
        self.patches.append((name, replicas))
        if name in self.patch_errors:
            raise self.patch_errors[name]
        obj = self.objects[name]
        obj.setdefault("spec", {})["replicas"] = replicas
        return copy.deepcopy(obj)

    def replicas_of(self, name: str) -> Any:
        return self.objects[name]["spec"].get("replicas")


class FakeDatabase:
    """Database stand-in; each failure mode maps to one of the loop's phases."""

    def __init__(self, role: DatabaseRole = DatabaseRole.PRIMARY):
        self.role = role
        self.reachable = True
        self.connect_error: Exception | None = None
        self.role_error: Exception | None = None
        self.connections: list[MagicMock] = []
        self.probe_calls = 0

    def ensure_reachable(self):
        self.probe_calls += 1
        if not self.reachable:
            raise UnreachableError("Database port db.example:5432 is unreachable")

    def connect(self) -> MagicMock:
        if self.connect_error is not None:
            raise self.connect_error
        conn = MagicMock(name="connection")
        self.connections.append(conn)
        return conn

    def check_role(self, conn) -> DatabaseRole:
        if self.role_error is not None:
            raise self.role_error
        return self.role


@pytest.fixture
def config() -> ReconcilerConfig:
    """Reconciler config with the default intervals."""
    return ReconcilerConfig(namespace="aap")


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def fake_cluster() -> FakeCluster:
    return FakeCluster(
        [
            make_object("app-1", replicas=3, target="3"),
        ]
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Collects the durations the engine asked to sleep for."""
    return []


@pytest.fixture
def unreachable_error() -> UnreachableError:
    return UnreachableError("Database port db.example:5432 is unreachable")


@pytest.fixture
def connection_error() -> DatabaseConnectionError:
    return DatabaseConnectionError("Unable to connect to database: auth failed")


@pytest.fixture
def role_check_error() -> RoleCheckError:
    return RoleCheckError("Error checking database role: server closed connection")


@pytest.fixture
def list_error() -> ListError:
    return ListError("Failed to list automationcontrollers in namespace aap: 503")


@pytest.fixture
def patch_error() -> PatchError:
    return PatchError("app-1", "patch failed: 409 Conflict")


@pytest.fixture(scope="session")
def postgres_url() -> str:
    """Get a PostgreSQL connection URL from environment."""
    url = os.environ.get("POSTGRES_URL")
    if not url:
        pytest.skip("POSTGRES_URL environment variable not set")
    return url
