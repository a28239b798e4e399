"""
步骤运行状态机测试
"""
import pytest

from audit_copilot.core.state_machine import StepRunTracker, RunSummary, RunOutcome
from audit_copilot.exceptions import StateTransitionError
from audit_copilot.models.step import StepStatus
from audit_copilot.models.workflow import WorkflowGraph, StepNode, Edge


class TestStepRunTracker:
    """步骤状态转换测试类"""

    def test_happy_path(self):
        tracker = StepRunTracker()
        tracker.transition("A", StepStatus.EXECUTING)
        tracker.transition("A", StepStatus.REVIEW, draft="draft")
        state = tracker.transition("A", StepStatus.COMPLETED)

        assert state.status == StepStatus.COMPLETED
        assert state.draft == "draft"
        assert [h["to_state"] for h in state.history] == ["executing", "review", "completed"]

    def test_rejected_draft_can_be_redrafted(self):
        tracker = StepRunTracker()
        tracker.transition("A", StepStatus.EXECUTING)
        tracker.transition("A", StepStatus.REVIEW, draft="v1")
        tracker.transition("A", StepStatus.EXECUTING)
        assert tracker.status_of("A") == StepStatus.EXECUTING

    def test_pending_cannot_complete_directly(self):
        tracker = StepRunTracker()
        with pytest.raises(StateTransitionError):
            tracker.transition("A", StepStatus.COMPLETED)

    def test_error_is_terminal(self):
        tracker = StepRunTracker()
        tracker.transition("A", StepStatus.EXECUTING)
        tracker.transition("A", StepStatus.ERROR, error="model failed")

        assert tracker.states["A"].error == "model failed"
        with pytest.raises(StateTransitionError):
            tracker.transition("A", StepStatus.EXECUTING)

    def test_completed_steps_preloaded(self):
        tracker = StepRunTracker(completed=["A"])
        assert tracker.status_of("A") == StepStatus.COMPLETED
        assert tracker.status_of("B") == StepStatus.PENDING
        assert tracker.is_settled("A") is True
        assert tracker.is_settled("B") is False


class TestRunSummary:
    """运行总结测试类"""

    def test_all_completed(self, sample_graph):
        tracker = StepRunTracker(completed=["A", "B", "C"])
        summary = RunSummary.build(sample_graph, ["A", "B", "C"], tracker)

        assert summary.outcome == RunOutcome.COMPLETED
        assert summary.progress == 100
        assert summary.message == "All steps completed."

    def test_awaiting_review(self, sample_graph):
        tracker = StepRunTracker(completed=["A"])
        for node_id in ("B", "C"):
            tracker.transition(node_id, StepStatus.EXECUTING)
            tracker.transition(node_id, StepStatus.REVIEW, draft="draft")

        summary = RunSummary.build(sample_graph, ["A", "B", "C"], tracker)

        assert summary.outcome == RunOutcome.AWAITING_REVIEW
        assert summary.in_review == ["B", "C"]
        assert "2 step(s) awaiting review" in summary.message

    def test_blocked_by_error_is_not_completed(self, sample_graph):
        tracker = StepRunTracker()
        tracker.transition("A", StepStatus.EXECUTING)
        tracker.transition("A", StepStatus.ERROR, error="boom")

        summary = RunSummary.build(sample_graph, ["A", "B", "C"], tracker)

        assert summary.outcome == RunOutcome.BLOCKED
        assert summary.errored == ["A"]
        assert summary.blocked == ["B", "C"]
        assert summary.message != "All steps completed."
        assert "1 step(s) failed" in summary.message

    def test_cycle_reported_as_unreachable(self):
        graph = WorkflowGraph(
            id="wf-cycle",
            nodes=[StepNode(id="A"), StepNode(id="B"), StepNode(id="C")],
            edges=[Edge(source="A", target="B"), Edge(source="B", target="A")],
        )
        tracker = StepRunTracker(completed=["C"])

        summary = RunSummary.build(graph, ["C"], tracker)

        assert summary.outcome == RunOutcome.BLOCKED
        assert summary.unreachable == ["A", "B"]
        assert "unreachable because of a cycle" in summary.message
        assert summary.to_dict()["outcome"] == "blocked"
