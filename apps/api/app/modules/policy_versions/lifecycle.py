"""Status state machine for policy versions.

draft → under_review → approved → published; any non-published status may
be archived; published may be archived only once superseded by a newer
published version (checked by the store, which can see the history).
"""

from __future__ import annotations

from app.models.enums import PolicyVersionStatus as S
from app.modules.policy_versions.exceptions import InvalidTransitionError

TERMINAL_STATUSES = frozenset({S.ARCHIVED})

ALLOWED_TRANSITIONS: dict[S, frozenset[S]] = {
    S.DRAFT: frozenset({S.UNDER_REVIEW, S.ARCHIVED}),
    S.UNDER_REVIEW: frozenset({S.APPROVED, S.ARCHIVED}),
    S.APPROVED: frozenset({S.PUBLISHED, S.ARCHIVED}),
    S.PUBLISHED: frozenset({S.ARCHIVED}),
    S.ARCHIVED: frozenset(),
}


def can_transition(current: S, target: S) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: S, target: S, **context: object) -> None:
    if not can_transition(current, target):
        if current in TERMINAL_STATUSES:
            hint = "; the status is terminal"
        else:
            hint = "; allowed: " + ", ".join(sorted(s.value for s in ALLOWED_TRANSITIONS[current]))
        raise InvalidTransitionError(
            f"Cannot move a {current.value} version to {target.value}{hint}",
            from_status=current.value,
            to_status=target.value,
            **context,
        )


# Statuses a caller may create a snapshot in; later ones are reached by transitions
CREATABLE_STATUSES = frozenset({S.DRAFT, S.UNDER_REVIEW})


def ensure_creatable(status: S) -> None:
    if status not in CREATABLE_STATUSES:
        raise InvalidTransitionError(
            f"A new version cannot start as {status.value}",
            to_status=status.value,
            allowed=",".join(sorted(s.value for s in CREATABLE_STATUSES)),
        )
