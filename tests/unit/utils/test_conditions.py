"""
Unit tests for status condition bookkeeping.
"""

import pytest

from kubeconfig_operator.utils.conditions import (
    ConditionType,
    get_condition,
    is_condition_true,
    is_terminal,
    set_condition,
)

T0 = "2026-01-01T00:00:00Z"
T1 = "2026-01-01T00:05:00Z"


class TestSetCondition:
    def test_adds_new_condition(self):
        result = set_condition(
            [], ConditionType.SIGNING_REQUEST_CREATED, "True", "Created", "ok", now=T0
        )

        assert result == [
            {
                "type": "SigningRequestCreated",
                "status": "True",
                "reason": "Created",
                "message": "ok",
                "lastTransitionTime": T0,
            }
        ]

    def test_does_not_mutate_input(self):
        conditions = [{"type": "Finished", "status": "False", "lastTransitionTime": T0}]

        set_condition(conditions, ConditionType.FINISHED, "True", "Completed", "done")

        assert conditions == [
            {"type": "Finished", "status": "False", "lastTransitionTime": T0}
        ]

    def test_same_status_keeps_transition_time(self):
        conditions = set_condition(
            None, ConditionType.FINISHED, "False", "Decayed", "first", now=T0
        )

        result = set_condition(
            conditions, ConditionType.FINISHED, "False", "Denied", "second", now=T1
        )

        assert result[0]["lastTransitionTime"] == T0
        assert result[0]["reason"] == "Denied"
        assert result[0]["message"] == "second"

    def test_status_change_moves_transition_time(self):
        conditions = set_condition(
            None, ConditionType.FINISHED, "Unknown", "Pending", "", now=T0
        )

        result = set_condition(
            conditions, ConditionType.FINISHED, "True", "Completed", "", now=T1
        )

        assert result[0]["lastTransitionTime"] == T1

    def test_keeps_one_entry_per_type_in_place(self):
        conditions = [
            {"type": "UserSecretCreated", "status": "True"},
            {"type": "Finished", "status": "Unknown"},
            {"type": "SigningRequestCreated", "status": "True"},
            {"type": "Finished", "status": "Unknown"},
        ]

        result = set_condition(
            conditions, ConditionType.FINISHED, "True", "Completed", "", now=T1
        )

        assert [c["type"] for c in result] == [
            "UserSecretCreated",
            "Finished",
            "SigningRequestCreated",
        ]

    def test_rejects_invalid_status(self):
        with pytest.raises(ValueError):
            set_condition([], ConditionType.FINISHED, "Maybe", "x", "y")

    def test_rejects_unknown_type(self):
        with pytest.raises(ValueError):
            set_condition([], "Ready", "True", "x", "y")


class TestQueries:
    def test_get_condition(self):
        conditions = set_condition(
            None, ConditionType.ROLE_BINDING_READY, "True", "Created", ""
        )

        assert get_condition(conditions, ConditionType.ROLE_BINDING_READY)["status"]
        assert get_condition(conditions, ConditionType.FINISHED) is None
        assert get_condition(None, ConditionType.FINISHED) is None

    def test_is_condition_true(self):
        conditions = set_condition(
            None, ConditionType.SIGNING_REQUEST_APPROVED, "False", "Denied", ""
        )

        assert not is_condition_true(
            conditions, ConditionType.SIGNING_REQUEST_APPROVED
        )

    @pytest.mark.parametrize(
        "status,terminal", [("True", True), ("False", True), ("Unknown", False)]
    )
    def test_is_terminal(self, status, terminal):
        conditions = set_condition(None, ConditionType.FINISHED, status, "r", "m")

        assert is_terminal(conditions) is terminal

    def test_not_terminal_without_finished_condition(self):
        conditions = set_condition(
            None, ConditionType.SIGNING_REQUEST_CREATED, "True", "Created", ""
        )

        assert not is_terminal(conditions)
