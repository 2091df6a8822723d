"""
Unit tests for the task state machine.

Tests the transition table, actor guards, terminal states and the
reschedule window.
"""

import itertools

import pytest

from taskbridge.core.errors import InvalidTransition
from taskbridge.models.task import TaskStatus
from taskbridge.services.taskStateManager import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    ActorType,
    can_reschedule,
    ensure_transition,
    get_valid_transitions,
    validate_transition,
)


_ALLOWED_PAIRS = {
    (TaskStatus.DRAFT, TaskStatus.POSTED),
    (TaskStatus.POSTED, TaskStatus.APPLICATIONS),
    (TaskStatus.POSTED, TaskStatus.CANCELLED),
    (TaskStatus.APPLICATIONS, TaskStatus.IN_PROGRESS),
    (TaskStatus.APPLICATIONS, TaskStatus.CANCELLED),
    (TaskStatus.SELECTED, TaskStatus.CANCELLED),
    (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED),
    (TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED),
}

_DISALLOWED_PAIRS = [
    pair
    for pair in itertools.product(TaskStatus, repeat=2)
    if pair not in _ALLOWED_PAIRS
]


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitionTable:

    def test_table_matches_documented_edges(self):
        flattened = {
            (source, target)
            for source, targets in VALID_TRANSITIONS.items()
            for target in targets
        }
        assert flattened == _ALLOWED_PAIRS

    def test_every_status_has_an_entry(self):
        assert set(VALID_TRANSITIONS) == set(TaskStatus)

    @pytest.mark.parametrize("current, target", sorted(_ALLOWED_PAIRS))
    def test_allowed_edges_pass_for_system(self, current, target):
        assert validate_transition(current, target, ActorType.SYSTEM).allowed is True

    @pytest.mark.parametrize("current, target", _DISALLOWED_PAIRS)
    def test_other_edges_raise(self, current, target):
        with pytest.raises(InvalidTransition) as exc_info:
            ensure_transition(current, target, ActorType.ADMIN)
        assert exc_info.value.current == current.value
        assert exc_info.value.attempted == target.value
        assert exc_info.value.entity == "task"

    def test_rejection_lists_allowed_targets(self):
        result = validate_transition(TaskStatus.POSTED, TaskStatus.COMPLETED)
        assert result.allowed is False
        assert "applications" in result.reason
        assert "cancelled" in result.reason


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestGuards:

    def test_only_client_publishes(self):
        assert validate_transition(
            TaskStatus.DRAFT, TaskStatus.POSTED, ActorType.CLIENT
        ).allowed
        result = validate_transition(
            TaskStatus.DRAFT, TaskStatus.POSTED, ActorType.PROVIDER
        )
        assert result.allowed is False
        assert "client" in result.reason

    def test_only_provider_accepts(self):
        assert validate_transition(
            TaskStatus.POSTED, TaskStatus.APPLICATIONS, ActorType.PROVIDER
        ).allowed
        with pytest.raises(InvalidTransition, match="provider"):
            ensure_transition(
                TaskStatus.POSTED, TaskStatus.APPLICATIONS, ActorType.CLIENT
            )

    def test_only_client_starts_work(self):
        assert validate_transition(
            TaskStatus.APPLICATIONS, TaskStatus.IN_PROGRESS, ActorType.CLIENT
        ).allowed
        assert not validate_transition(
            TaskStatus.APPLICATIONS, TaskStatus.IN_PROGRESS, ActorType.PROVIDER
        ).allowed

    @pytest.mark.parametrize("actor", [ActorType.SYSTEM, ActorType.ADMIN])
    def test_privileged_actors_pass_every_guard(self, actor):
        assert validate_transition(TaskStatus.DRAFT, TaskStatus.POSTED, actor).allowed
        assert validate_transition(
            TaskStatus.POSTED, TaskStatus.APPLICATIONS, actor
        ).allowed
        assert validate_transition(
            TaskStatus.APPLICATIONS, TaskStatus.IN_PROGRESS, actor
        ).allowed

    @pytest.mark.parametrize("actor", list(ActorType))
    def test_anyone_may_complete_or_cancel(self, actor):
        assert validate_transition(
            TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, actor
        ).allowed
        assert validate_transition(
            TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED, actor
        ).allowed


# ---------------------------------------------------------------------------
# Terminal states & helpers
# ---------------------------------------------------------------------------


class TestTerminalStates:

    def test_terminal_set(self):
        assert TERMINAL_STATUSES == {
            TaskStatus.COMPLETED,
            TaskStatus.CANCELLED,
            TaskStatus.DISPUTED,
        }

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
    def test_terminal_states_have_no_moves(self, status):
        assert get_valid_transitions(status, ActorType.ADMIN) == []


class TestGetValidTransitions:

    def test_posted_for_provider(self):
        assert get_valid_transitions(TaskStatus.POSTED, ActorType.PROVIDER) == [
            TaskStatus.APPLICATIONS,
            TaskStatus.CANCELLED,
        ]

    def test_posted_for_client_hides_accept(self):
        assert get_valid_transitions(TaskStatus.POSTED, ActorType.CLIENT) == [
            TaskStatus.CANCELLED,
        ]

    def test_applications_for_provider_hides_start(self):
        assert get_valid_transitions(
            TaskStatus.APPLICATIONS, ActorType.PROVIDER
        ) == [TaskStatus.CANCELLED]


class TestCanReschedule:

    @pytest.mark.parametrize(
        "status, expected",
        [
            (TaskStatus.APPLICATIONS, True),
            (TaskStatus.SELECTED, True),
            (TaskStatus.POSTED, False),
            (TaskStatus.IN_PROGRESS, False),
            (TaskStatus.COMPLETED, False),
        ],
    )
    def test_window(self, status, expected):
        assert can_reschedule(status) is expected
