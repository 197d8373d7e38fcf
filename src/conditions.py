"""
Status Conditions - Typed conditions for packages and package revisions.

Conditions follow the Kubernetes convention: each has a type, a
True/False/Unknown status, a machine-readable reason and a human-readable
message. An object holds at most one condition per type.
"""

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional


class ConditionStatus(Enum):
    """Status of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class ConditionType(Enum):
    """Condition types set by the package manager."""

    HEALTHY = "Healthy"
    ACTIVE = "Active"
    SYNCED = "Synced"
    REVISION_HEALTHY = "RevisionHealthy"


# Reasons
REASON_HEALTHY = "HealthyPackageRevision"
REASON_UNHEALTHY = "UnhealthyPackageRevision"
REASON_UNPACKING = "UnpackingPackage"
REASON_ACTIVE = "ActivePackageRevision"
REASON_INACTIVE = "InactivePackageRevision"
REASON_RECONCILE_PAUSED = "ReconcilePaused"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Condition:
    """A single status condition."""

    type: ConditionType
    status: ConditionStatus
    reason: str
    message: str = ""
    last_transition_time: datetime = field(default_factory=_now)

    def with_message(self, message: str) -> "Condition":
        """Return a copy of this condition carrying the given message."""
        return replace(self, message=message)

    def equal(self, other: Optional["Condition"]) -> bool:
        """Compare two conditions, ignoring the last transition time."""
        if other is None:
            return False
        return (
            self.type == other.type
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "status": self.status.value,
            "reason": self.reason,
            "message": self.message,
            "last_transition_time": self.last_transition_time.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Condition":
        transition = data.get("last_transition_time")
        return cls(
            type=ConditionType(data["type"]),
            status=ConditionStatus(data["status"]),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=(
                datetime.fromisoformat(transition) if transition else _now()
            ),
        )


class ConditionSet:
    """
    Conditions of one object, keyed by condition type.

    Setting a condition replaces any prior condition of the same type. When
    the new condition is equal to the existing one the existing condition,
    and with it its transition time, is kept.
    """

    def __init__(self, conditions: Optional[List[Condition]] = None):
        self._conditions: Dict[ConditionType, Condition] = {}
        for condition in conditions or []:
            self.set(condition)

    def set(self, *conditions: Condition) -> None:
        for condition in conditions:
            existing = self._conditions.get(condition.type)
            if condition.equal(existing):
                continue
            self._conditions[condition.type] = condition

    def get(self, condition_type: ConditionType) -> Optional[Condition]:
        return self._conditions.get(condition_type)

    def status_of(self, condition_type: ConditionType) -> ConditionStatus:
        """Return the status of a condition type, Unknown if it is not set."""
        condition = self._conditions.get(condition_type)
        if condition is None:
            return ConditionStatus.UNKNOWN
        return condition.status

    def clear(self) -> None:
        self._conditions.clear()

    def equal(self, other: "ConditionSet") -> bool:
        """Compare two sets, ignoring transition times."""
        if self._conditions.keys() != other._conditions.keys():
            return False
        return all(
            condition.equal(other._conditions[condition_type])
            for condition_type, condition in self._conditions.items()
        )

    def copy(self) -> "ConditionSet":
        return ConditionSet([copy.copy(c) for c in self._conditions.values()])

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self]

    @classmethod
    def from_list(cls, data: Optional[List[Dict[str, Any]]]) -> "ConditionSet":
        return cls([Condition.from_dict(item) for item in data or []])

    def __iter__(self) -> Iterator[Condition]:
        return iter(sorted(self._conditions.values(), key=lambda c: c.type.value))

    def __len__(self) -> int:
        return len(self._conditions)

    def __contains__(self, condition_type: ConditionType) -> bool:
        return condition_type in self._conditions

    def __repr__(self) -> str:
        return f"ConditionSet({list(self)!r})"


# Package conditions


def healthy() -> Condition:
    return Condition(ConditionType.HEALTHY, ConditionStatus.TRUE, REASON_HEALTHY)


def unhealthy() -> Condition:
    return Condition(ConditionType.HEALTHY, ConditionStatus.FALSE, REASON_UNHEALTHY)


def unpacking() -> Condition:
    """The package's revision identity is being resolved, or failed to be."""
    return Condition(ConditionType.HEALTHY, ConditionStatus.FALSE, REASON_UNPACKING)


def active() -> Condition:
    return Condition(ConditionType.ACTIVE, ConditionStatus.TRUE, REASON_ACTIVE)


def inactive() -> Condition:
    return Condition(ConditionType.ACTIVE, ConditionStatus.FALSE, REASON_INACTIVE)


def reconcile_paused() -> Condition:
    return Condition(
        ConditionType.SYNCED, ConditionStatus.FALSE, REASON_RECONCILE_PAUSED
    )


# Package revision conditions


def revision_healthy() -> Condition:
    return Condition(
        ConditionType.REVISION_HEALTHY, ConditionStatus.TRUE, REASON_HEALTHY
    )


def revision_unhealthy() -> Condition:
    return Condition(
        ConditionType.REVISION_HEALTHY, ConditionStatus.FALSE, REASON_UNHEALTHY
    )
