"""
Patch execution for watch-tower

Applies planned replica changes one resource at a time. A failed patch is
logged and recorded; the remaining resources are still processed.
"""

import threading
from typing import Any

from .cluster import ClusterClient
from .exceptions import PatchError
from .log import get_logger
from .models import Action

logger = get_logger(__name__)


class Executor:
    """
    Executes patch actions against the cluster

    Responsible for:
    1. Patching resources in order
    2. Continuing past per-resource failures
    3. Stopping early when shutdown is requested
    4. Providing an execution summary
    """

    def __init__(
        self, cluster: ClusterClient, stop_event: threading.Event | None = None
    ):
        self.cluster = cluster
        self.stop_event = stop_event or threading.Event()

    def execute_actions(self, actions: list[Action]) -> dict[str, Any]:
        """
        Execute a list of patch actions

        Args:
            actions: Actions to execute, in order

        Returns:
            Dictionary with execution summary
        """
        summary = {"total": len(actions), "executed": 0, "failed": 0, "errors": []}
        if not actions:
            return summary

        logger.debug("Starting action execution", extra={"total_actions": len(actions)})

        for i, action in enumerate(actions, 1):
            if self.stop_event.is_set():
                logger.warning(
                    "Stopping execution due to shutdown",
                    extra={"remaining_actions": len(actions) - i + 1},
                )
                break

            try:
                self.cluster.patch_replicas(action.resource_name, action.replicas)
            except PatchError as e:
                summary["failed"] += 1
                summary["errors"].append(
                    {
                        "action_index": i,
                        "resource": action.resource_name,
                        "error": str(e),
                    }
                )
                logger.error(
                    "Failed to patch resource",
                    extra={
                        "resource": action.resource_name,
                        "replicas": action.replicas,
                        "reason": action.reason,
                        "error": str(e),
                    },
                )
                continue

            summary["executed"] += 1
            logger.info(
                "Successfully patched resource",
                extra={
                    "resource": action.resource_name,
                    "replicas": action.replicas,
                    "previous_replicas": action.current_replicas,
                    "reason": action.reason,
                },
            )

        logger.debug("Action execution completed", extra={"summary": summary})
        return summary
