"""
Unit tests for ordered write plans.
"""

from unittest.mock import Mock

import pytest

from registry.exceptions import PartialWriteFailure, StorageError
from registry.write_plan import WritePlan


class TestWritePlan:
    """Test ordered best-effort execution."""

    def test_runs_steps_in_order(self):
        calls = []
        plan = WritePlan(name="mint token 1")
        plan.add("build", lambda: calls.append("build")).add("token", lambda: calls.append("token"))

        assert plan.execute() == ["build", "token"]
        assert calls == ["build", "token"]
        assert plan.is_complete

    def test_failure_stops_plan(self):
        """The first failing step stops the plan and reports what landed."""
        third = Mock()
        plan = WritePlan(name="mint token 1")
        plan.add("build", Mock())
        plan.add("token", Mock(side_effect=StorageError("connection reset")))
        plan.add("hash", third)

        with pytest.raises(PartialWriteFailure) as exc_info:
            plan.execute()

        error = exc_info.value
        assert error.completed_steps == ["build"]
        assert error.failed_step == "token"
        assert isinstance(error.cause, StorageError)
        assert error.details["completedSteps"] == ["build"]
        assert error.code == "PARTIAL_WRITE"
        third.assert_not_called()
        assert plan.failed_step == "token"
        assert not plan.is_complete

    def test_first_step_failure_has_no_completed_steps(self):
        plan = WritePlan(name="repair token 11")
        plan.add("build", Mock(side_effect=RuntimeError("boom")))

        with pytest.raises(PartialWriteFailure) as exc_info:
            plan.execute()

        assert exc_info.value.completed_steps == []

    def test_retry_resumes_after_completed_steps(self):
        """Re-executing skips steps that already landed."""
        build = Mock()
        token = Mock(side_effect=[StorageError("timeout"), None])
        plan = WritePlan(name="mint token 1")
        plan.add("build", build).add("token", token)

        with pytest.raises(PartialWriteFailure):
            plan.execute()
        assert plan.execute() == ["build", "token"]

        assert build.call_count == 1
        assert token.call_count == 2
        assert plan.failed_step is None
