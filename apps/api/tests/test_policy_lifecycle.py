"""Tests for the policy version status state machine."""

import itertools

import pytest

from app.models.enums import PolicyVersionStatus as S
from app.modules.policy_versions.exceptions import InvalidTransitionError
from app.modules.policy_versions.lifecycle import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    can_transition,
    ensure_creatable,
    ensure_transition,
)

EXPECTED_ALLOWED = {
    (S.DRAFT, S.UNDER_REVIEW),
    (S.DRAFT, S.ARCHIVED),
    (S.UNDER_REVIEW, S.APPROVED),
    (S.UNDER_REVIEW, S.ARCHIVED),
    (S.APPROVED, S.PUBLISHED),
    (S.APPROVED, S.ARCHIVED),
    (S.PUBLISHED, S.ARCHIVED),
}

ALL_PAIRS = list(itertools.product(S, S))


@pytest.mark.parametrize("current, target", ALL_PAIRS)
def test_every_pair_matches_table(current, target):
    assert can_transition(current, target) == ((current, target) in EXPECTED_ALLOWED)


@pytest.mark.parametrize("current, target", [p for p in ALL_PAIRS if p not in EXPECTED_ALLOWED])
def test_disallowed_pairs_raise(current, target):
    with pytest.raises(InvalidTransitionError) as exc:
        ensure_transition(current, target)
    assert exc.value.detail["from_status"] == current.value
    assert exc.value.detail["to_status"] == target.value


@pytest.mark.parametrize("current, target", sorted(EXPECTED_ALLOWED))
def test_allowed_pairs_pass(current, target):
    ensure_transition(current, target)


def test_self_transitions_rejected():
    for status in S:
        assert not can_transition(status, status)


def test_archived_is_terminal():
    assert ALLOWED_TRANSITIONS[S.ARCHIVED] == frozenset()
    assert TERMINAL_STATUSES == {s for s, targets in ALLOWED_TRANSITIONS.items() if not targets}
    with pytest.raises(InvalidTransitionError, match="terminal"):
        ensure_transition(S.ARCHIVED, S.DRAFT)


def test_error_lists_allowed_targets():
    with pytest.raises(InvalidTransitionError, match="allowed: archived, under_review"):
        ensure_transition(S.DRAFT, S.PUBLISHED)


def test_every_status_has_a_row():
    assert set(ALLOWED_TRANSITIONS) == set(S)


class TestCreatableStatuses:
    @pytest.mark.parametrize("status", [S.DRAFT, S.UNDER_REVIEW])
    def test_may_start_as(self, status):
        ensure_creatable(status)

    @pytest.mark.parametrize("status", [S.APPROVED, S.PUBLISHED, S.ARCHIVED])
    def test_may_not_start_as(self, status):
        with pytest.raises(InvalidTransitionError):
            ensure_creatable(status)
