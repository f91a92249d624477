"""
Consultation status workflow.

Two independent lookup tables:

- ``VALID_TRANSITIONS`` answers "may the status move from A to B, and who may
  move it".
- ``ROLE_PERMISSIONS`` answers "may this role touch this attribute while the
  consultation sits in this status" for mutations that are not themselves
  status changes (notes, duration, rescheduling).

Both functions are pure and never raise; callers turn a negative result into
the matching exception with :func:`raise_for_result`.
"""

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Union

from app.core.exceptions import InvalidStatusError, InvalidTransitionError, RolePermissionError
from app.models.consultation import ConsultationStatus
from app.models.user import UserRole


class ConsultationAction(str, enum.Enum):
    UPDATE_NOTES = "update_notes"
    UPDATE_DURATION = "update_duration"
    ASSIGN_PROVIDER = "assign_provider"
    RESCHEDULE = "reschedule"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    START = "start"
    COMPLETE = "complete"


class RuleViolation(str, enum.Enum):
    UNKNOWN_STATUS = "unknown_status"
    TRANSITION_NOT_ALLOWED = "transition_not_allowed"
    ROLE_NOT_PERMITTED = "role_not_permitted"


S = ConsultationStatus
A = ConsultationAction

TERMINAL_STATUSES: FrozenSet[ConsultationStatus] = frozenset({S.COMPLETED, S.CANCELLED})

VALID_TRANSITIONS: Dict[ConsultationStatus, Dict[ConsultationStatus, List[UserRole]]] = {
    S.DRAFT: {
        S.PENDING_ADMIN_REVIEW: [UserRole.PATIENT, UserRole.ADMIN],
    },
    S.PENDING_ADMIN_REVIEW: {
        S.ASSIGNED: [UserRole.ADMIN],
        S.CANCELLED: [UserRole.ADMIN],
    },
    S.ASSIGNED: {
        S.CONFIRMED: [UserRole.PATIENT],
        S.CANCELLED: [UserRole.PATIENT, UserRole.ADMIN],
    },
    S.CONFIRMED: {
        S.SCHEDULED: [UserRole.DOCTOR, UserRole.ADMIN],
        S.CANCELLED: [UserRole.PATIENT, UserRole.ADMIN],
    },
    S.SCHEDULED: {
        S.IN_PROGRESS: [UserRole.DOCTOR],
        S.CANCELLED: [UserRole.PATIENT, UserRole.DOCTOR, UserRole.ADMIN],
    },
    S.IN_PROGRESS: {
        S.COMPLETED: [UserRole.DOCTOR],
        S.CANCELLED: [UserRole.DOCTOR, UserRole.ADMIN],
    },
    S.COMPLETED: {},
    S.CANCELLED: {},
}

ROLE_PERMISSIONS: Dict[UserRole, Dict[ConsultationStatus, List[ConsultationAction]]] = {
    UserRole.ADMIN: {
        S.DRAFT: [A.ASSIGN_PROVIDER],
        S.PENDING_ADMIN_REVIEW: [A.ASSIGN_PROVIDER, A.RESCHEDULE, A.CANCEL],
        S.ASSIGNED: [A.RESCHEDULE, A.CANCEL],
        S.CONFIRMED: [A.RESCHEDULE, A.CANCEL],
        S.SCHEDULED: [A.RESCHEDULE, A.CANCEL],
        S.IN_PROGRESS: [A.CANCEL],
        S.COMPLETED: [],
        S.CANCELLED: [],
    },
    UserRole.DOCTOR: {
        S.DRAFT: [],
        S.PENDING_ADMIN_REVIEW: [],
        S.ASSIGNED: [A.UPDATE_NOTES],
        S.CONFIRMED: [A.UPDATE_NOTES, A.RESCHEDULE],
        S.SCHEDULED: [A.UPDATE_NOTES, A.START, A.CANCEL],
        S.IN_PROGRESS: [A.UPDATE_NOTES, A.UPDATE_DURATION, A.COMPLETE, A.CANCEL],
        S.COMPLETED: [A.UPDATE_NOTES, A.UPDATE_DURATION],
        S.CANCELLED: [],
    },
    UserRole.PATIENT: {
        S.DRAFT: [],
        S.PENDING_ADMIN_REVIEW: [],
        S.ASSIGNED: [A.CONFIRM, A.CANCEL],
        S.CONFIRMED: [A.CANCEL],
        S.SCHEDULED: [A.CANCEL],
        S.IN_PROGRESS: [],
        S.COMPLETED: [],
        S.CANCELLED: [],
    },
}


@dataclass(frozen=True)
class RuleCheck:
    valid: bool
    error: Optional[str] = None
    violation: Optional[RuleViolation] = None
    allowed_roles: tuple = ()


_OK = RuleCheck(valid=True)

StatusLike = Union[ConsultationStatus, str]
RoleLike = Union[UserRole, str]
ActionLike = Union[ConsultationAction, str]


def _parse(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _label(value) -> str:
    return value.value if isinstance(value, enum.Enum) else str(value)


def validate_status_transition(from_status: StatusLike, to_status: StatusLike, role: RoleLike) -> RuleCheck:
    """Check whether ``role`` may move a consultation from one status to another.

    A no-op transition (same status) is always valid so that re-saving a
    consultation is idempotent.
    """
    source = _parse(ConsultationStatus, from_status)
    if source is None:
        return RuleCheck(
            valid=False,
            error=f"Invalid current status: {_label(from_status)}",
            violation=RuleViolation.UNKNOWN_STATUS,
        )

    target = _parse(ConsultationStatus, to_status)
    if target is None:
        return RuleCheck(
            valid=False,
            error=f"Invalid target status: {_label(to_status)}",
            violation=RuleViolation.UNKNOWN_STATUS,
        )

    if source == target:
        return _OK

    allowed_roles = VALID_TRANSITIONS[source].get(target)
    if not allowed_roles:
        return RuleCheck(
            valid=False,
            error=(
                f"Invalid status transition: {source.value} -> {target.value}. "
                "This transition is not allowed."
            ),
            violation=RuleViolation.TRANSITION_NOT_ALLOWED,
        )

    actor = _parse(UserRole, role)
    if actor not in allowed_roles:
        permitted = ", ".join(r.value for r in allowed_roles)
        return RuleCheck(
            valid=False,
            error=(
                f"{_label(role)} role cannot transition consultation from {source.value} "
                f"to {target.value}. Only {permitted} can perform this transition."
            ),
            violation=RuleViolation.ROLE_NOT_PERMITTED,
            allowed_roles=tuple(allowed_roles),
        )

    return _OK


def get_valid_next_statuses(current_status: StatusLike, role: RoleLike) -> List[ConsultationStatus]:
    """Statuses ``role`` may move the consultation to from ``current_status``."""
    source = _parse(ConsultationStatus, current_status)
    actor = _parse(UserRole, role)
    if source is None or actor is None:
        return []
    return [target for target, roles in VALID_TRANSITIONS[source].items() if actor in roles]


def validate_role_permission(status: StatusLike, role: RoleLike, action: ActionLike) -> RuleCheck:
    """Check whether ``role`` may perform ``action`` while the consultation is in ``status``."""
    current = _parse(ConsultationStatus, status)
    if current is None:
        return RuleCheck(
            valid=False,
            error=f"Invalid consultation status: {_label(status)}",
            violation=RuleViolation.UNKNOWN_STATUS,
        )

    actor = _parse(UserRole, role)
    requested = _parse(ConsultationAction, action)
    allowed_actions = ROLE_PERMISSIONS.get(actor, {}).get(current, []) if actor else []

    if requested is None or requested not in allowed_actions:
        return RuleCheck(
            valid=False,
            error=f"{_label(role)} cannot {_label(action)} a consultation in {current.value} status.",
            violation=RuleViolation.ROLE_NOT_PERMITTED,
        )

    return _OK


def is_terminal(status: StatusLike) -> bool:
    return _parse(ConsultationStatus, status) in TERMINAL_STATUSES


def raise_for_result(result: RuleCheck, details: Optional[dict] = None) -> None:
    """Turn a failed check into the matching application exception."""
    if result.valid:
        return
    if result.violation == RuleViolation.UNKNOWN_STATUS:
        raise InvalidStatusError(result.error, details=details)
    if result.violation == RuleViolation.ROLE_NOT_PERMITTED:
        details = dict(details or {})
        if result.allowed_roles:
            details["allowed_roles"] = [r.value for r in result.allowed_roles]
        raise RolePermissionError(result.error, details=details)
    raise InvalidTransitionError(result.error, details=details)
