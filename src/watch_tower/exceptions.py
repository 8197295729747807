"""
Error kinds for watch-tower

Database-side failures (unreachable, connection, role check) make the loop
assume the worst and scale down. Cluster-side failures never do.
"""


class WatchTowerError(Exception):
    """Base class for all watch-tower errors"""


class ConfigError(WatchTowerError):
    """Invalid configuration, raised before the loop starts"""


class DatabaseUnavailableError(WatchTowerError):
    """The database could not be confirmed as a usable primary or standby"""


class UnreachableError(DatabaseUnavailableError):
    """Network probe against the database endpoint failed"""


class DatabaseConnectionError(DatabaseUnavailableError):
    """Probe succeeded but the protocol handshake or authentication failed"""


class RoleCheckError(DatabaseUnavailableError):
    """Connected, but the recovery-mode query failed"""


class ApiTimeoutError(WatchTowerError):
    """A cluster API call exceeded its request timeout"""


class ListError(WatchTowerError):
    """Listing the managed resources failed"""


class ListTimeoutError(ListError, ApiTimeoutError):
    pass


class ResourceError(WatchTowerError):
    """Failure scoped to a single managed resource"""

    def __init__(self, resource_name: str, message: str):
        self.resource_name = resource_name
        super().__init__(f"{resource_name}: {message}")


class AnnotationError(ResourceError):
    """Target replica annotation is missing or invalid"""


class ObservedValueError(ResourceError):
    """spec.replicas is missing or not an integer"""


class PatchError(ResourceError):
    """Patching spec.replicas failed"""


class PatchTimeoutError(PatchError, ApiTimeoutError):
    pass
