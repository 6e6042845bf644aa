"""Tests for core data models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from home_orchestrator.core.errors import (
    CompensationFailureError,
    ErrorKind,
    RequestValidationError,
    WorkflowFailedError,
)
from home_orchestrator.core.models.capability import (
    CapabilityDescriptor,
    CapabilityRequest,
    NegotiatedCapabilities,
    PrivacyClass,
)
from home_orchestrator.core.models.intent import (
    Intent,
    IntentTag,
    Subtask,
    SubtaskGraph,
)
from home_orchestrator.core.models.message import AgentRequest, ResponseStatus
from home_orchestrator.core.models.workflow import (
    StepFailure,
    WorkflowInstance,
    WorkflowState,
)


class TestIntent:
    """Tests for Intent model."""

    def test_intent_is_read_only(self) -> None:
        """Test intents cannot be modified inside the core."""
        intent = Intent(payload={"domain": "light.turn_on"})
        with pytest.raises(ValidationError):
            intent.local_only = True  # type: ignore[misc]

    def test_tags(self) -> None:
        """Test tag lookup."""
        intent = Intent(tags=frozenset({IntentTag.PRIVACY_SENSITIVE}))
        assert intent.has_tag(IntentTag.PRIVACY_SENSITIVE)
        assert not intent.has_tag(IntentTag.LATENCY_BOUND)

    def test_unique_ids(self) -> None:
        """Test each intent gets its own id."""
        assert Intent().intent_id != Intent().intent_id


class TestSubtask:
    """Tests for Subtask model."""

    def test_required_capabilities_default_to_domain(self) -> None:
        """Test the domain is required when nothing else is declared."""
        subtask = Subtask(subtask_id="s1", domain="light.turn_on")
        request = subtask.capability_request()
        assert request.required == ("light.turn_on",)
        assert subtask.effective_action == "light.turn_on"

    def test_explicit_capabilities(self) -> None:
        """Test explicit required, optional and alternative capabilities."""
        subtask = Subtask(
            subtask_id="s1",
            domain="kitchen",
            action="oven.preheat",
            required_capabilities=["oven.preheat"],
            optional_capabilities=["oven.timer"],
            alternatives={"oven.preheat": ["oven.bake"]},
        )
        request = subtask.capability_request()
        assert request.required == ("oven.preheat",)
        assert request.optional == ("oven.timer",)
        assert request.alternatives == {"oven.preheat": ("oven.bake",)}
        assert subtask.effective_action == "oven.preheat"

    def test_deadline_must_be_positive(self) -> None:
        """Test non-positive deadlines are rejected."""
        with pytest.raises(ValidationError):
            Subtask(domain="light.turn_on", deadline_ms=0)


class TestSubtaskGraph:
    """Tests for SubtaskGraph validation and components."""

    def test_valid_dag(self) -> None:
        """Test a valid graph passes validation."""
        graph = SubtaskGraph(
            subtasks=[
                Subtask(subtask_id="a", domain="x"),
                Subtask(subtask_id="b", domain="x", depends_on=["a"]),
            ]
        )
        graph.validate_dag()
        assert graph.get("b").depends_on == ["a"]

    def test_duplicate_ids_rejected(self) -> None:
        """Test duplicate subtask ids are rejected."""
        graph = SubtaskGraph(
            subtasks=[Subtask(subtask_id="a", domain="x"), Subtask(subtask_id="a", domain="y")]
        )
        with pytest.raises(RequestValidationError, match="Duplicate"):
            graph.validate_dag()

    def test_unknown_dependency_rejected(self) -> None:
        """Test dependencies must exist."""
        graph = SubtaskGraph(subtasks=[Subtask(subtask_id="a", domain="x", depends_on=["ghost"])])
        with pytest.raises(RequestValidationError, match="unknown"):
            graph.validate_dag()

    def test_cycle_rejected(self) -> None:
        """Test cycles are rejected."""
        graph = SubtaskGraph(
            subtasks=[
                Subtask(subtask_id="a", domain="x", depends_on=["c"]),
                Subtask(subtask_id="b", domain="x", depends_on=["a"]),
                Subtask(subtask_id="c", domain="x", depends_on=["b"]),
            ]
        )
        with pytest.raises(RequestValidationError, match="cycle"):
            graph.validate_dag()

    def test_components(self) -> None:
        """Test weakly connected components keep input order."""
        graph = SubtaskGraph(
            subtasks=[
                Subtask(subtask_id="a", domain="x"),
                Subtask(subtask_id="b", domain="x"),
                Subtask(subtask_id="c", domain="x", depends_on=["a"]),
                Subtask(subtask_id="d", domain="x"),
            ]
        )
        components = [[s.subtask_id for s in group] for group in graph.components()]
        assert components == [["a", "c"], ["b"], ["d"]]


class TestCapabilityDescriptor:
    """Tests for CapabilityDescriptor model."""

    def test_substitutes_must_be_declared(self) -> None:
        """Test substitutes must point at declared capabilities."""
        with pytest.raises(ValidationError):
            CapabilityDescriptor(
                backend_id="b",
                capabilities=["light.turn_on"],
                substitutes={"light.toggle": ("light.dim",)},
            )

    def test_substitute_lookup(self) -> None:
        """Test declared substitute lookup."""
        descriptor = CapabilityDescriptor(
            backend_id="b",
            capabilities=["light.turn_on"],
            substitutes={"light.toggle": ("light.turn_on",)},
        )
        assert descriptor.substitute_for("light.toggle") == "light.turn_on"
        assert descriptor.substitute_for("light.dim") is None

    def test_privacy_and_reasoning_flags(self) -> None:
        """Test derived flags."""
        remote = CapabilityDescriptor(
            backend_id="r",
            capabilities=["reasoning"],
            privacy_class=PrivacyClass.MAY_LEAVE_DEVICE,
        )
        assert remote.supports_reasoning
        assert not remote.is_local

    def test_negative_cost_rejected(self) -> None:
        """Test negative cost is rejected."""
        with pytest.raises(ValidationError):
            CapabilityDescriptor(backend_id="b", cost_per_call=-1)


class TestNegotiatedCapabilities:
    """Tests for negotiation completeness."""

    def test_completeness_counts_substitutes_half(self) -> None:
        """Test substitutes count half, omitted optional count zero."""
        request = CapabilityRequest(required=("a", "b"), optional=("c", "d"))
        negotiated = NegotiatedCapabilities(
            backend_id="x",
            granted=("a", "c"),
            substitutions={"b": "b2"},
            omitted=("d",),
        )
        assert negotiated.completeness(request) == pytest.approx(2.5 / 4)

    def test_empty_request_is_complete(self) -> None:
        """Test an empty request is fully satisfied."""
        assert NegotiatedCapabilities(backend_id="x").completeness(CapabilityRequest()) == 1.0


class TestMessages:
    """Tests for bus message models."""

    def test_reply_is_correlated(self) -> None:
        """Test replies carry the correlation id and swap sender/recipient."""
        request = AgentRequest(
            correlation_id="c1",
            sender_id="orchestrator",
            recipient_id="lights",
            headers={"x-deadline": "1.0"},
            payload={"action": "light.turn_on", "parameters": {"entity_id": "light.kitchen"}},
        )
        response = request.reply(ResponseStatus.SUCCESS, data={"ok": True})

        assert request.action == "light.turn_on"
        assert request.parameters == {"entity_id": "light.kitchen"}
        assert response.correlation_id == "c1"
        assert response.sender_id == "lights"
        assert response.recipient_id == "orchestrator"
        assert response.ok

    def test_json_wire_shape(self) -> None:
        """Test messages serialise to the wire shape."""
        request = AgentRequest(recipient_id="lights")
        wire = request.model_dump(mode="json")
        for key in ("message_id", "correlation_id", "sender_id", "recipient_id", "timestamp", "priority", "headers", "payload"):
            assert key in wire

    def test_failed_response_not_ok(self) -> None:
        """Test failure statuses are not ok."""
        response = AgentRequest().reply(ResponseStatus.TIMEOUT, error_kind=ErrorKind.TIMEOUT)
        assert not response.ok


class TestWorkflowInstance:
    """Tests for WorkflowInstance outcome reporting."""

    def test_raise_for_compensated(self) -> None:
        """Test compensated workflows report the triggering failure."""
        instance = WorkflowInstance(
            state=WorkflowState.COMPENSATED,
            failure=StepFailure(step_id="s2", kind=ErrorKind.TIMEOUT, message="too slow"),
        )
        with pytest.raises(WorkflowFailedError) as exc_info:
            instance.raise_for_outcome()
        assert exc_info.value.kind == ErrorKind.TIMEOUT
        assert exc_info.value.step_id == "s2"

    def test_raise_for_partially_failed(self) -> None:
        """Test partially failed workflows report unreconciled steps."""
        instance = WorkflowInstance(
            state=WorkflowState.PARTIALLY_FAILED,
            compensation_failures={"b": "boom", "a": "bang"},
        )
        with pytest.raises(CompensationFailureError) as exc_info:
            instance.raise_for_outcome()
        assert exc_info.value.unreconciled == ["a", "b"]

    def test_completed_does_not_raise(self) -> None:
        """Test completed workflows do not raise."""
        WorkflowInstance(state=WorkflowState.COMPLETED).raise_for_outcome()
