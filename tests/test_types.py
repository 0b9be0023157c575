"""
Tests for Stepflow data model.
"""

from datetime import datetime, timedelta

import pytest

from stepflow.types import (
    Condition,
    ConditionType,
    ExecutionResult,
    ExecutionStatus,
    StepDefinition,
    StepResult,
    StepStatus,
    StepType,
    TriggerConfig,
    TriggerType,
    WorkflowDefinition,
    coerce_value,
    is_value,
    stringify,
)


def sample_workflow() -> WorkflowDefinition:
    return WorkflowDefinition(
        name="Backup Documents",
        description="Copy documents to the backup drive",
        steps=[
            StepDefinition(
                id="wait",
                name="Wait",
                type=StepType.DELAY,
                parameters={"duration": 0.5},
            ),
            StepDefinition(
                id="check",
                name="Check flag",
                type=StepType.CONDITIONAL,
                condition=Condition(type=ConditionType.EQUALS, variable="x", value="1"),
            ),
            StepDefinition(
                id="notify",
                name="Notify",
                type=StepType.NOTIFICATION,
                parameters={"title": "Done", "message": "Backed up ${count} files"},
                continue_on_error=True,
                retry_count=2,
                timeout=5.0,
            ),
        ],
        variables={"x": "2", "count": 3, "paths": ["~/a", "~/b"], "opts": {"dry": False}},
        triggers=[
            TriggerConfig(type=TriggerType.SCHEDULED, parameters={"schedule": "0 9 * * *"}),
            TriggerConfig(type=TriggerType.HOTKEY, parameters={"keyCombo": "cmd+shift+b"}, enabled=False),
        ],
        tags=["backup", "daily"],
    )


class TestValues:
    """Tests for the value lattice helpers."""

    def test_is_value(self):
        assert is_value("text")
        assert is_value(3)
        assert is_value([1, "a", {"b": True}])
        assert not is_value(None)
        assert not is_value(object())
        assert not is_value({1: "a"})

    def test_coerce_value(self):
        assert coerce_value(None) == ""
        assert coerce_value((1, 2)) == [1, 2]
        assert coerce_value({"a": (1,)}) == {"a": [1]}
        assert coerce_value(StepType.DELAY) == "delay"
        assert coerce_value(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"

        class Thing:
            def __str__(self):
                return "thing"

        assert coerce_value(Thing()) == "thing"

    def test_stringify(self):
        assert stringify(True) == "true"
        assert stringify(False) == "false"
        assert stringify(42) == "42"
        assert stringify([1, 2]) == "[1, 2]"
        assert stringify({"a": 1}) == '{"a": 1}'
        assert stringify(None) == ""


class TestWorkflowDefinition:
    """Tests for workflow definitions."""

    def test_defaults(self):
        workflow = WorkflowDefinition(name="Test")

        assert workflow.id
        assert workflow.version == 1
        assert workflow.enabled is True
        assert workflow.steps == []

        step = StepDefinition(name="s")
        assert step.timeout == 30.0
        assert step.retry_count == 0
        assert step.continue_on_error is False
        assert step.condition is None

    def test_get_step(self):
        workflow = sample_workflow()

        assert workflow.get_step("check").name == "Check flag"
        assert workflow.get_step("missing") is None

    def test_valid_workflow(self):
        assert sample_workflow().validate() == []

    def test_validation_errors(self):
        workflow = WorkflowDefinition(name="", steps=[])
        errors = workflow.validate()

        assert "Workflow name is required" in errors
        assert "Workflow must have at least one step" in errors

    def test_step_validation_errors(self):
        workflow = WorkflowDefinition(
            name="Broken",
            steps=[
                StepDefinition(id="a", name="A", retry_count=-1),
                StepDefinition(id="a", name="A again", timeout=0),
                StepDefinition(id="c", name="C", type=StepType.CONDITIONAL),
                StepDefinition(id="d", name="D", parameters={"when": datetime.now()}),
            ],
            variables={"bad": object()},
        )
        errors = workflow.validate()

        assert "Duplicate step id: a" in errors
        assert "Step a has negative retry_count" in errors
        assert "Step a must have a positive timeout" in errors
        assert "Conditional step c requires a condition" in errors
        assert "Step d has parameters outside the value types" in errors
        assert "Variable bad has an unsupported type" in errors

    def test_with_changes_is_copy_on_write(self):
        original = sample_workflow()
        before = original.modified_at - timedelta(seconds=1)
        original.modified_at = before

        updated = original.with_changes(name="Renamed")

        assert updated.name == "Renamed"
        assert updated.version == original.version + 1
        assert updated.modified_at > before
        assert original.name == "Backup Documents"
        assert original.version == 1

        updated.steps[0].parameters["duration"] = 9
        assert original.steps[0].parameters["duration"] == 0.5

    def test_snapshot_is_independent(self):
        original = sample_workflow()
        snapshot = original.snapshot()

        original.steps.append(StepDefinition(id="late", name="Late"))
        original.variables["x"] = "changed"

        assert len(snapshot.steps) == 3
        assert snapshot.variables["x"] == "2"

    def test_json_round_trip(self):
        original = sample_workflow()

        restored = WorkflowDefinition.from_json(original.to_json())

        assert restored == original
        assert restored.steps[1].condition.type == ConditionType.EQUALS
        assert restored.triggers[1].enabled is False

    def test_serialized_shape(self):
        data = sample_workflow().to_dict()

        assert data["steps"][2]["continue_on_error"] is True
        assert data["steps"][2]["retry_count"] == 2
        assert data["steps"][1]["condition"] == {"type": "equals", "variable": "x", "value": "1"}
        assert data["triggers"][0]["type"] == "scheduled"


class TestResults:
    """Tests for execution results."""

    def test_execution_status_terminal(self):
        assert ExecutionStatus.COMPLETED.is_terminal
        assert ExecutionStatus.CANCELLED.is_terminal
        assert ExecutionStatus.FAILED.is_terminal
        assert not ExecutionStatus.RUNNING.is_terminal
        assert not ExecutionStatus.PAUSED.is_terminal
        assert not ExecutionStatus.IDLE.is_terminal

    def test_step_result_properties(self):
        started = datetime(2024, 1, 1, 12, 0, 0)
        result = StepResult(
            step_id="s1",
            step_name="Step",
            status=StepStatus.SKIPPED,
            started_at=started,
            completed_at=started + timedelta(milliseconds=250),
        )

        assert result.skipped
        assert not result.success
        assert result.duration_ms == pytest.approx(250.0)

    def test_results_are_frozen(self):
        now = datetime.now()
        result = StepResult("s1", "Step", StepStatus.COMPLETED, now, now)

        with pytest.raises(AttributeError):
            result.status = StepStatus.FAILED

    def test_execution_result_from_dict(self):
        now = datetime.now()
        step = StepResult("s1", "Step", StepStatus.COMPLETED, now, now, output={"output": "x"})
        result = ExecutionResult(
            execution_id="e1",
            workflow_id="w1",
            workflow_name="Workflow",
            workflow_version=2,
            status=ExecutionStatus.COMPLETED,
            started_at=now,
            completed_at=now + timedelta(seconds=1),
            success=True,
            completed_steps=1,
            skipped_steps=0,
            failed_steps=0,
            total_steps=1,
            step_results=(step,),
            variables={"a": 1},
        )

        data = result.to_dict()
        assert data["duration_ms"] == pytest.approx(1000.0)
        assert ExecutionResult.from_dict(data) == result
