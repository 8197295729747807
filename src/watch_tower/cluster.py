"""
Cluster API access for watch-tower

Lists the managed custom resources and merge-patches their spec.replicas.
Every request carries a timeout; a timed-out request surfaces as its own
error kind.
"""

from typing import Any

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from .constants import DEFAULT_API_TIMEOUT_SECONDS, MERGE_PATCH_CONTENT_TYPE
from .exceptions import ListError, ListTimeoutError, PatchError, PatchTimeoutError
from .log import get_logger
from .models import ManagedResource, ResourceKind

logger = get_logger(__name__)


def load_kube_config(kubeconfig: str | None = None):
    """Load in-cluster configuration, falling back to a kubeconfig file"""
    try:
        config.load_incluster_config()
        logger.info("Using in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config(config_file=kubeconfig)
        logger.info(
            "Using local kubeconfig", extra={"kubeconfig": kubeconfig or "default"}
        )


def _is_timeout(exc: Exception) -> bool:
    """Whether a transport error was caused by a request timeout"""
    if isinstance(exc, urllib3.exceptions.TimeoutError):
        return True
    if isinstance(exc, urllib3.exceptions.MaxRetryError):
        return isinstance(exc.reason, urllib3.exceptions.TimeoutError)
    return False


def _describe(exc: Exception) -> str:
    if isinstance(exc, ApiException):
        return f"{exc.status} {exc.reason}"
    return str(exc)


class ClusterClient:
    """Namespaced access to one kind of custom resource"""

    def __init__(
        self,
        kind: ResourceKind,
        namespace: str,
        api: client.CustomObjectsApi | None = None,
        request_timeout: float = DEFAULT_API_TIMEOUT_SECONDS,
    ):
        self.kind = kind
        self.namespace = namespace
        self.api = api or client.CustomObjectsApi()
        self.request_timeout = request_timeout

    def list_resources(self) -> list[ManagedResource]:
        """
        List the managed resources in the namespace, in API order

        Raises:
            ListTimeoutError: If the request timed out
            ListError: For any other API or transport failure
        """
        logger.trace(
            "Listing custom objects",
            extra={"kind": str(self.kind), "namespace": self.namespace},
        )
        try:
            response = self.api.list_namespaced_custom_object(
                group=self.kind.group,
                version=self.kind.version,
                namespace=self.namespace,
                plural=self.kind.plural,
                _request_timeout=self.request_timeout,
            )
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            message = (
                f"Failed to list {self.kind.plural} in namespace "
                f"{self.namespace}: {_describe(e)}"
            )
            if _is_timeout(e):
                raise ListTimeoutError(message) from e
            raise ListError(message) from e

        items: list[dict[str, Any]] = response.get("items") or []
        resources = [ManagedResource.from_api_object(item) for item in items]
        logger.debug(
            "Listed managed resources",
            extra={
                "namespace": self.namespace,
                "resources": [resource.name for resource in resources],
            },
        )
        return resources

    def patch_replicas(self, name: str, replicas: int) -> dict[str, Any]:
        """
        Set spec.replicas on one resource with a JSON merge patch

        Always sends the request; callers skip resources already at the
        desired value.

        Raises:
            PatchTimeoutError: If the request timed out
            PatchError: For any other API or transport failure
        """
        body = {"spec": {"replicas": replicas}}
        logger.trace(
            "Patching custom object",
            extra={"name": name, "namespace": self.namespace, "body": body},
        )
        try:
            return self.api.patch_namespaced_custom_object(
                group=self.kind.group,
                version=self.kind.version,
                namespace=self.namespace,
                plural=self.kind.plural,
                name=name,
                body=body,
                _content_type=MERGE_PATCH_CONTENT_TYPE,
                _request_timeout=self.request_timeout,
            )
        except (ApiException, urllib3.exceptions.HTTPError) as e:
            if _is_timeout(e):
                raise PatchTimeoutError(name, f"patch timed out: {_describe(e)}") from e
            raise PatchError(name, f"patch failed: {_describe(e)}") from e
