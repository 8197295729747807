"""
Replica decisions for watch-tower

Pure functions turning a resource, its annotation and the database role into
the replica count it should have.
"""

import re
from decimal import Decimal

from .constants import MAX_REPLICAS
from .exceptions import AnnotationError, ObservedValueError
from .models import Action, DatabaseRole, ManagedResource

# Enough digits for MAX_REPLICAS; anything longer is out of range anyway
_DECIMAL_RE = re.compile(r"[0-9]{1,10}")


def parse_target_annotation(resource: ManagedResource, key: str) -> int:
    """
    Read the declared replica target from a resource's annotations

    Only plain ASCII digits are accepted. A leading sign is rejected, "+3"
    included, even though most integer parsers would take it.

    Args:
        resource: The managed resource
        key: Annotation key holding the target

    Returns:
        The target as an integer between 0 and MAX_REPLICAS

    Raises:
        AnnotationError: If the annotation is missing, not a plain
            non-negative decimal integer, or larger than MAX_REPLICAS
    """
    if key not in resource.annotations:
        raise AnnotationError(resource.name, f"no {key} annotation")

    value = resource.annotations[key]
    if not isinstance(value, str) or not _DECIMAL_RE.fullmatch(value):
        raise AnnotationError(
            resource.name, f"invalid {key} value: {_truncate(value)!r}"
        )

    target = int(value)
    if target > MAX_REPLICAS:
        raise AnnotationError(
            resource.name, f"{key} value {target} exceeds {MAX_REPLICAS}"
        )
    return target


def _truncate(value, limit: int = 40):
    if isinstance(value, str) and len(value) > limit:
        return value[:limit] + "..."
    return value


def desired_replicas(role: DatabaseRole, declared_target: int) -> int:
    """Replica count for a resource given the current database role"""
    if declared_target < 0:
        raise ValueError(f"declared_target must be >= 0, got {declared_target}")
    if role is DatabaseRole.PRIMARY:
        return declared_target
    return 0


def observed_replicas(resource: ManagedResource) -> int:
    """
    Normalize the current spec.replicas value to an int

    The API may hand back the same integer as int, float or Decimal
    depending on how the object was decoded. Booleans, strings and
    fractional numbers are rejected. A negative value is returned as is so
    the caller patches it back to the desired count.

    Raises:
        ObservedValueError: If the field is absent or not an integer
    """
    if "replicas" not in resource.spec:
        raise ObservedValueError(resource.name, "spec.replicas field not found")

    value = resource.spec["replicas"]

    # bool is a subclass of int
    if isinstance(value, bool):
        replicas = None
    elif isinstance(value, int):
        replicas = value
    elif isinstance(value, float):
        replicas = int(value) if value.is_integer() else None
    elif isinstance(value, Decimal):
        integral = value.is_finite() and value == value.to_integral_value()
        replicas = int(value) if integral else None
    else:
        replicas = None

    if replicas is None:
        raise ObservedValueError(
            resource.name,
            f"unexpected spec.replicas value {value!r} ({type(value).__name__})",
        )

    return replicas


def plan_resource(
    resource: ManagedResource, role: DatabaseRole, annotation_key: str
) -> Action | None:
    """
    Decide whether a resource needs patching this cycle

    Returns:
        An Action when spec.replicas differs from the desired value, None
        when it already matches

    Raises:
        AnnotationError: Resource has no usable target annotation
        ObservedValueError: Resource has no usable spec.replicas
    """
    target = parse_target_annotation(resource, annotation_key)
    desired = desired_replicas(role, target)
    current = observed_replicas(resource)

    if current == desired:
        return None

    if role is DatabaseRole.PRIMARY:
        reason = f"database is primary, {annotation_key}={target}"
    else:
        reason = "database is standby"

    return Action(
        resource_name=resource.name,
        replicas=desired,
        current_replicas=current,
        reason=reason,
    )


def plan_scale_down(resources: list[ManagedResource], reason: str) -> list[Action]:
    """Scale every resource to zero, whatever its annotation or current value"""
    actions = []
    for resource in resources:
        try:
            current = observed_replicas(resource)
        except ObservedValueError:
            current = None
        actions.append(
            Action(
                resource_name=resource.name,
                replicas=0,
                current_replicas=current,
                reason=reason,
            )
        )
    return actions
