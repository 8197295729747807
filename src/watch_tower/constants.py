"""
Constants for watch-tower

Defaults for the reconciler configuration. Nothing reads these at runtime
except through ReconcilerConfig.
"""

# Managed custom resource (AutomationController CRD)
DEFAULT_RESOURCE_GROUP = "automationcontroller.ansible.com"
DEFAULT_RESOURCE_VERSION = "v1beta1"
DEFAULT_RESOURCE_PLURAL = "automationcontrollers"

# Annotation holding the replica count to use while the database is primary
DEFAULT_ANNOTATION_KEY = "watch-tower/replicas"

# Loop intervals (seconds)
DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_RETRY_INTERVAL_SECONDS = 10.0
DEFAULT_LIST_RETRY_INTERVAL_SECONDS = 30.0

# Timeouts (seconds)
DEFAULT_PROBE_TIMEOUT_SECONDS = 2.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 3
DEFAULT_QUERY_TIMEOUT_SECONDS = 5.0
DEFAULT_API_TIMEOUT_SECONDS = 10.0

DEFAULT_POSTGRES_PORT = 5432

# Environment variables
ENV_DATABASE_URL = "DATABASE_URL"
ENV_NAMESPACE = "AAP_NAMESPACE"

ROLE_QUERY = "SELECT pg_is_in_recovery() AS in_recovery"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"

# spec.replicas is an int32 in the API schema
MAX_REPLICAS = 2**31 - 1
