"""
工作流运行器测试
"""
import asyncio
import pytest

from audit_copilot.core.ledger import StepLedger
from audit_copilot.core.runner import (
    WorkflowRunner, StepBatchResult, auto_approve, defer_review, build_step_context
)
from audit_copilot.core.state_machine import RunOutcome
from audit_copilot.models.events import StreamEvent, StreamEventType, ToolCall
from audit_copilot.storage.repository import InMemoryStepResultRepository


class FailingStepRepository(InMemoryStepResultRepository):
    async def save(self, entry):
        raise RuntimeError("disk full")


def step_events(events):
    return [
        (e.step_status["node_id"], e.step_status["status"])
        for e in events if e.type == StreamEventType.STEP_STATUS
    ]


async def collect(runner, user_id, graph):
    return [event async for event in runner.run(user_id, graph)]


def make_drafter(fail=(), empty=(), seen=None):
    async def drafter(context, sink):
        if seen is not None:
            seen[context.node_id] = context
        await asyncio.sleep(0)
        if context.node_id in fail:
            raise RuntimeError(f"model error on {context.node_id}")
        if context.node_id in empty:
            return "   "
        return f"result of {context.node_id}"
    return drafter


@pytest.mark.asyncio
async def test_fan_out_run_to_completion(ledger, sample_graph):
    seen = {}
    runner = WorkflowRunner(ledger, make_drafter(seen=seen), auto_approve)

    events = await collect(runner, "auditor-1", sample_graph)
    statuses = step_events(events)

    assert statuses[:3] == [("A", "executing"), ("A", "review"), ("A", "completed")]
    assert set(statuses[3:5]) == {("B", "executing"), ("C", "executing")}
    assert set(statuses[5:]) == {("B", "review"), ("C", "review"), ("B", "completed"), ("C", "completed")}
    assert runner.summary.outcome == RunOutcome.COMPLETED
    assert runner.summary.message == "All steps completed."
    assert await ledger.completed_set("auditor-1", "wf-1") == {"A", "B", "C"}

    # 下游步骤看到上游结果
    assert [u.result for u in seen["B"].upstream_results] == ["result of A"]


@pytest.mark.asyncio
async def test_review_event_carries_draft(ledger, sample_graph):
    runner = WorkflowRunner(ledger, make_drafter(), defer_review)
    events = await collect(runner, "auditor-1", sample_graph)

    review = [e for e in events if e.type == StreamEventType.STEP_STATUS and e.step_status["status"] == "review"]
    assert len(review) == 1
    assert review[0].step_status == {"node_id": "A", "status": "review", "result": "result of A"}


@pytest.mark.asyncio
async def test_deferred_review_stops_at_frontier(ledger, sample_graph):
    runner = WorkflowRunner(ledger, make_drafter(), defer_review)

    events = await collect(runner, "auditor-1", sample_graph)

    assert step_events(events) == [("A", "executing"), ("A", "review")]
    assert runner.summary.outcome == RunOutcome.AWAITING_REVIEW
    assert runner.summary.blocked == ["B", "C"]
    assert await ledger.completed_set("auditor-1", "wf-1") == set()

    # 人工审批后再次运行
    await ledger.approve("auditor-1", "wf-1", "A")
    events = await collect(runner, "auditor-1", sample_graph)

    assert {node for node, status in step_events(events) if status == "review"} == {"B", "C"}


@pytest.mark.asyncio
async def test_failed_sibling_does_not_stop_others(ledger, sample_graph):
    runner = WorkflowRunner(ledger, make_drafter(fail={"B"}), auto_approve)

    events = await collect(runner, "auditor-1", sample_graph)

    assert ("B", "error") in step_events(events)
    assert ("C", "completed") in step_events(events)
    errors = [e.error for e in events if e.type == StreamEventType.ERROR]
    assert errors == ["Step 'Sampling' failed: model error on B"]

    summary = runner.summary
    assert summary.outcome == RunOutcome.BLOCKED
    assert summary.errored == ["B"]
    assert summary.completed == ["A", "C"]
    assert summary.message != "All steps completed."


@pytest.mark.asyncio
async def test_root_failure_blocks_downstream(ledger, sample_graph):
    runner = WorkflowRunner(ledger, make_drafter(fail={"A"}), auto_approve)

    await collect(runner, "auditor-1", sample_graph)

    assert runner.summary.outcome == RunOutcome.BLOCKED
    assert runner.summary.blocked == ["B", "C"]
    assert "blocked by unfinished upstream steps" in runner.summary.message


@pytest.mark.asyncio
async def test_empty_draft_is_an_error(ledger, sample_graph):
    runner = WorkflowRunner(ledger, make_drafter(empty={"A"}), auto_approve)

    events = await collect(runner, "auditor-1", sample_graph)

    assert ("A", "error") in step_events(events)
    assert runner.summary.errored == ["A"]


@pytest.mark.asyncio
async def test_ledger_failure_keeps_step_in_review(sample_graph):
    ledger = StepLedger(FailingStepRepository())
    runner = WorkflowRunner(ledger, make_drafter(), auto_approve)

    events = await collect(runner, "auditor-1", sample_graph)

    assert ("A", "completed") not in step_events(events)
    errors = [e.error for e in events if e.type == StreamEventType.ERROR]
    assert len(errors) == 1
    assert "was not saved" in errors[0]
    assert runner.summary.outcome == RunOutcome.AWAITING_REVIEW
    assert runner.summary.in_review == ["A"]


@pytest.mark.asyncio
async def test_already_completed_steps_skipped(ledger, sample_graph):
    await ledger.approve("auditor-1", "wf-1", "A", "done before")
    seen = {}
    runner = WorkflowRunner(ledger, make_drafter(seen=seen), auto_approve)

    events = await collect(runner, "auditor-1", sample_graph)

    assert "A" not in seen
    assert ("A", "executing") not in step_events(events)
    assert runner.summary.outcome == RunOutcome.COMPLETED


@pytest.mark.asyncio
async def test_drafter_events_forwarded(ledger, sample_graph):
    async def drafter(context, sink):
        await sink(StreamEvent.tool_call_started(ToolCall(name="delegate_to", step_label=context.label)))
        return "ok"

    runner = WorkflowRunner(ledger, drafter, defer_review)
    events = await collect(runner, "auditor-1", sample_graph)

    calls = [e.tool_call for e in events if e.type == StreamEventType.TOOL_CALL]
    assert [c.step_label for c in calls] == ["Planning"]


@pytest.mark.asyncio
async def test_execute_steps_skips_unavailable(ledger, sample_graph):
    runner = WorkflowRunner(ledger, make_drafter())
    batch = StepBatchResult()

    events = [e async for e in runner.execute_steps("auditor-1", sample_graph, ["A", "B", "ghost"], batch)]

    assert [d.node_id for d in batch.drafts] == ["A"]
    assert batch.skipped == {
        "B": "Upstream steps are not completed yet",
        "ghost": "Step not found in workflow",
    }
    assert ("A", "review") in step_events(events)
    # 只起草，不写台账
    assert await ledger.completed_set("auditor-1", "wf-1") == set()
    assert batch.to_dict()["message"] == "1 step(s) drafted and awaiting review"


@pytest.mark.asyncio
async def test_build_step_context(ledger, sample_graph):
    await ledger.approve("auditor-1", "wf-1", "A", "plan result")
    entries = await ledger.list_for_workflow("auditor-1", "wf-1")

    context = build_step_context(sample_graph, "C", entries)

    assert context.label == "Cutoff"
    assert context.instructions == "Test cutoff"
    assert context.to_dict()["upstream_results"] == [
        {"node_id": "A", "label": "Planning", "result": "plan result"}
    ]


@pytest.mark.asyncio
async def test_closing_run_waits_for_draft_cleanup(ledger, sample_graph):
    cleaned = []

    async def drafter(context, sink):
        await sink(StreamEvent.text("working"))
        try:
            await asyncio.sleep(10)
        finally:
            await asyncio.sleep(0)
            cleaned.append(context.node_id)
        return "never"

    runner = WorkflowRunner(ledger, drafter, auto_approve)
    events = runner.run("auditor-1", sample_graph)

    while True:
        event = await events.__anext__()
        if event.type == StreamEventType.TEXT:
            break
    await events.aclose()

    assert cleaned == ["A"]
    assert await ledger.completed_set("auditor-1", "wf-1") == set()
