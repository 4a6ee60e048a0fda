"""
Status condition and phase bookkeeping for AccessRequest resources.

Conditions are plain dicts in the Kubernetes shape::

    {"type": ..., "status": "True"|"False"|"Unknown", "reason": ...,
     "message": ..., "lastTransitionTime": ...}

All helpers are pure: they never mutate the list they are given, so
concurrent reconciles of different objects share no state.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from ..constants import CONDITION_FALSE, CONDITION_TRUE, CONDITION_UNKNOWN

Condition = dict[str, Any]

VALID_STATUSES = frozenset({CONDITION_TRUE, CONDITION_FALSE, CONDITION_UNKNOWN})


class Phase(StrEnum):
    """Coarse lifecycle stage of an AccessRequest."""

    PENDING = "Pending"
    AWAITING_APPROVAL = "AwaitingApproval"
    FINISHED = "Finished"
    FAILED = "Failed"


class ConditionType(StrEnum):
    """Closed set of condition types an AccessRequest can carry."""

    SIGNING_REQUEST_CREATED = "SigningRequestCreated"
    SIGNING_REQUEST_APPROVED = "SigningRequestApproved"
    USER_SECRET_CREATED = "UserSecretCreated"
    USER_SECRET_FINISHED = "UserSecretFinished"
    KUBECONFIG_SECRET_CREATED = "KubeconfigSecretCreated"
    ROLE_BINDING_READY = "RoleBindingReady"
    FINISHED = "Finished"


def _now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def set_condition(
    conditions: list[Condition] | None,
    condition_type: ConditionType,
    status: str,
    reason: str,
    message: str,
    now: str | None = None,
) -> list[Condition]:
    """
    Return a new condition list with ``condition_type`` set.

    The result holds at most one entry per type. ``lastTransitionTime`` only
    changes when the status value changes; reason and message always take
    the latest value. Entries keep their original position.

    Args:
        conditions: Existing conditions (not modified)
        condition_type: Type of the condition to set
        status: "True", "False" or "Unknown"
        reason: Stable machine-readable reason code
        message: Human-readable message
        now: Timestamp to use for a transition, defaults to the current time

    Returns:
        New list of conditions
    """
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid condition status '{status}'")

    condition_type = ConditionType(condition_type)
    timestamp = now or _now()
    result: list[Condition] = []
    replaced = False

    for existing in conditions or []:
        if existing.get("type") != condition_type:
            result.append(dict(existing))
            continue
        if replaced:
            # Collapse duplicates written by older revisions
            continue
        transition = existing.get("lastTransitionTime")
        if existing.get("status") != status or not transition:
            transition = timestamp
        result.append(
            {
                "type": str(condition_type),
                "status": status,
                "reason": reason,
                "message": message,
                "lastTransitionTime": transition,
            }
        )
        replaced = True

    if not replaced:
        result.append(
            {
                "type": str(condition_type),
                "status": status,
                "reason": reason,
                "message": message,
                "lastTransitionTime": timestamp,
            }
        )

    return result


def get_condition(
    conditions: list[Condition] | None, condition_type: ConditionType
) -> Condition | None:
    """Return the condition of the given type, if present."""
    for condition in conditions or []:
        if condition.get("type") == condition_type:
            return condition
    return None


def is_condition_true(
    conditions: list[Condition] | None, condition_type: ConditionType
) -> bool:
    condition = get_condition(conditions, condition_type)
    return condition is not None and condition.get("status") == CONDITION_TRUE


def is_terminal(conditions: list[Condition] | None) -> bool:
    """
    Whether an AccessRequest has reached Finished or Failed.

    The Finished condition is written on both outcomes (True on success,
    False on failure), so its presence alone marks the object as done.
    """
    condition = get_condition(conditions, ConditionType.FINISHED)
    return condition is not None and condition.get("status") in (
        CONDITION_TRUE,
        CONDITION_FALSE,
    )
