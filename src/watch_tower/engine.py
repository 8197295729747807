"""
Reconciliation engine for watch-tower

Runs the watch loop as an explicit state machine:

    PROBE_DB -> CONNECT_DB -> CHECK_ROLE -> LIST_RESOURCES -> RECONCILE_EACH -> SLEEP

A failure in any of the three database phases diverts to SCALE_DOWN, which
patches every managed resource to zero before sleeping for the short retry
interval. A listing failure goes straight to SLEEP without scaling anything,
since the database may be perfectly healthy.
"""

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import psycopg

from .cluster import ClusterClient
from .db import Database
from .exceptions import AnnotationError, ObservedValueError, WatchTowerError
from .executor import Executor
from .log import get_logger
from .models import (
    Action,
    CycleResult,
    DatabaseRole,
    ManagedResource,
    ReconcilerConfig,
)
from .replicas import plan_resource, plan_scale_down

logger = get_logger(__name__)


class Phase(Enum):
    PROBE_DB = "probe_db"
    CONNECT_DB = "connect_db"
    CHECK_ROLE = "check_role"
    LIST_RESOURCES = "list_resources"
    RECONCILE_EACH = "reconcile_each"
    SCALE_DOWN = "scale_down"
    SLEEP = "sleep"


DATABASE_PHASES = frozenset({Phase.PROBE_DB, Phase.CONNECT_DB, Phase.CHECK_ROLE})

_ON_SUCCESS = {
    Phase.PROBE_DB: Phase.CONNECT_DB,
    Phase.CONNECT_DB: Phase.CHECK_ROLE,
    Phase.CHECK_ROLE: Phase.LIST_RESOURCES,
    Phase.LIST_RESOURCES: Phase.RECONCILE_EACH,
    Phase.RECONCILE_EACH: Phase.SLEEP,
    Phase.SCALE_DOWN: Phase.SLEEP,
    Phase.SLEEP: Phase.PROBE_DB,
}

_ON_FAILURE = {
    Phase.PROBE_DB: Phase.SCALE_DOWN,
    Phase.CONNECT_DB: Phase.SCALE_DOWN,
    Phase.CHECK_ROLE: Phase.SCALE_DOWN,
    Phase.LIST_RESOURCES: Phase.SLEEP,
    Phase.RECONCILE_EACH: Phase.SLEEP,
    Phase.SCALE_DOWN: Phase.SLEEP,
    Phase.SLEEP: Phase.PROBE_DB,
}


def next_phase(phase: Phase, succeeded: bool) -> Phase:
    """Phase that follows `phase` given whether it succeeded"""
    return _ON_SUCCESS[phase] if succeeded else _ON_FAILURE[phase]


def sleep_interval(config: ReconcilerConfig, failed_phase: Phase | None) -> float:
    """Seconds to wait before the next cycle"""
    if failed_phase in DATABASE_PHASES:
        return config.retry_interval_seconds
    if failed_phase is Phase.LIST_RESOURCES:
        return config.list_retry_interval_seconds
    return config.interval_seconds


@dataclass
class _Cycle:
    """Working state of a single cycle; discarded when the cycle ends"""

    dry_run: bool = False
    connection: psycopg.Connection | None = None
    role: DatabaseRole | None = None
    resources: list[ManagedResource] = field(default_factory=list)
    actions: list[Action] = field(default_factory=list)
    summary: dict = field(default_factory=dict)
    failed_phase: Phase | None = None
    error: WatchTowerError | None = None
    cancelled: bool = False

    def close_connection(self):
        if self.connection is not None:
            conn, self.connection = self.connection, None
            conn.close()


class Engine:
    """
    Main reconciliation engine for watch-tower

    Each cycle:
    1. Probe the database port
    2. Connect and check whether the database is primary or standby
    3. List the managed resources
    4. Patch spec.replicas where it differs from the desired value
    5. Sleep until the next cycle
    """

    def __init__(
        self,
        config: ReconcilerConfig,
        database: Database,
        cluster: ClusterClient,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], object] | None = None,
    ):
        self.config = config
        self.db = database
        self.cluster = cluster
        self.stop_event = stop_event or threading.Event()
        # Event.wait returns as soon as shutdown is requested
        self.sleep = sleep or self.stop_event.wait
        self.executor = Executor(cluster, self.stop_event)
        self._handlers = {
            Phase.PROBE_DB: self._probe_db,
            Phase.CONNECT_DB: self._connect_db,
            Phase.CHECK_ROLE: self._check_role,
            Phase.LIST_RESOURCES: self._list_resources,
            Phase.RECONCILE_EACH: self._reconcile_each,
            Phase.SCALE_DOWN: self._scale_down,
        }

    def run(self, max_cycles: int | None = None):
        """Run cycles until shutdown is requested (or max_cycles is reached)"""
        logger.info(
            "Starting watch loop",
            extra={
                "namespace": self.config.namespace,
                "kind": str(self.config.kind),
                "annotation_key": self.config.annotation_key,
            },
        )

        cycles = 0
        while not self.stop_event.is_set():
            try:
                sleep_seconds = self.run_cycle().sleep_seconds
            except Exception as e:
                logger.error(
                    "Unexpected error during cycle",
                    extra={"error": str(e)},
                    exc_info=True,
                )
                sleep_seconds = self.config.retry_interval_seconds

            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            if self.stop_event.is_set():
                break
            logger.info("Sleeping", extra={"seconds": sleep_seconds})
            self.sleep(sleep_seconds)

        logger.info("Watch loop stopped", extra={"cycles": cycles})

    def apply(self) -> CycleResult:
        """Run a single cycle and patch resources"""
        result = self.run_cycle()
        summary = result.summary
        if result.actions:
            print(
                f"Executed {summary.get('executed', 0)}/{summary.get('total', 0)} "
                "patches"
            )
            for error in summary.get("errors", []):
                print(f"  {error['resource']}: {error['error']}")
        else:
            print("No patches needed.")
        return result

    def dry_run(self) -> CycleResult:
        """Run a single cycle and print the patches that would be made"""
        result = self.run_cycle(dry_run=True)

        if result.role is not None:
            print(f"Database role: {result.role}")
        if result.error is not None:
            print(f"Cycle failed at {result.failed_phase}: {result.error}")

        if not result.actions:
            print("No patches would be made.")
            return result

        print("Planned actions:")
        print("=" * 60)
        for i, action in enumerate(result.actions, 1):
            print(f"{i}. {action}")
            print(f"   Reason: {action.reason}")
        return result

    def run_cycle(self, dry_run: bool = False) -> CycleResult:
        """
        Run one full reconciliation cycle, up to (not including) the sleep

        Never raises for the error kinds the loop knows about; failures are
        logged and reflected in the returned CycleResult.
        """
        logger.info("Checking managed resources and database role")
        cycle = _Cycle(dry_run=dry_run)
        phase = Phase.PROBE_DB

        try:
            while phase is not Phase.SLEEP:
                if self.stop_event.is_set():
                    logger.info("Shutdown requested, abandoning cycle")
                    cycle.cancelled = True
                    break

                try:
                    self._handlers[phase](cycle)
                    succeeded = True
                except WatchTowerError as e:
                    succeeded = False
                    self._handle_failure(cycle, phase, e)

                phase = next_phase(phase, succeeded)
        finally:
            cycle.close_connection()

        return CycleResult(
            sleep_seconds=sleep_interval(self.config, cycle.failed_phase),
            role=cycle.role,
            failed_phase=cycle.failed_phase.value if cycle.failed_phase else None,
            error=cycle.error,
            actions=cycle.actions,
            summary=cycle.summary,
            cancelled=cycle.cancelled,
        )

    def _handle_failure(self, cycle: _Cycle, phase: Phase, error: WatchTowerError):
        if phase is Phase.SCALE_DOWN:
            # Keep the database failure as the cycle's cause
            logger.error(
                "Failed to list managed resources for scaling down",
                extra={"error": str(error)},
            )
            return

        cycle.failed_phase = phase
        cycle.error = error

        if phase in DATABASE_PHASES:
            logger.error(
                "Database unavailable, scaling down all managed resources",
                extra={"phase": phase.value, "error": str(error)},
            )
        else:
            logger.error(
                "Failed to list managed resources",
                extra={"namespace": self.config.namespace, "error": str(error)},
            )

    def _probe_db(self, cycle: _Cycle):
        self.db.ensure_reachable()

    def _connect_db(self, cycle: _Cycle):
        cycle.connection = self.db.connect()

    def _check_role(self, cycle: _Cycle):
        try:
            cycle.role = self.db.check_role(cycle.connection)
        finally:
            cycle.close_connection()
        logger.info("Database role", extra={"role": str(cycle.role)})

    def _list_resources(self, cycle: _Cycle):
        cycle.resources = self.cluster.list_resources()

    def _reconcile_each(self, cycle: _Cycle):
        actions = []
        for resource in cycle.resources:
            try:
                action = plan_resource(resource, cycle.role, self.config.annotation_key)
            except AnnotationError as e:
                logger.warning(
                    "Skipping resource",
                    extra={"resource": resource.name, "reason": str(e)},
                )
                continue
            except ObservedValueError as e:
                logger.error(
                    "Failed to get current replicas",
                    extra={"resource": resource.name, "error": str(e)},
                )
                continue

            if action is None:
                logger.info(
                    "No update needed",
                    extra={
                        "resource": resource.name,
                        "replicas": resource.spec.get("replicas"),
                    },
                )
                continue

            actions.append(action)

        self._execute(cycle, actions)

    def _scale_down(self, cycle: _Cycle):
        # Re-list: a listing from an earlier cycle may be stale
        resources = self.cluster.list_resources()
        actions = plan_scale_down(
            resources, reason=f"database unavailable: {cycle.error}"
        )
        self._execute(cycle, actions)

    def _execute(self, cycle: _Cycle, actions: list[Action]):
        cycle.actions.extend(actions)
        if cycle.dry_run:
            cycle.summary = {
                "total": len(actions),
                "executed": 0,
                "failed": 0,
                "errors": [],
            }
            return
        cycle.summary = self.executor.execute_actions(actions)
