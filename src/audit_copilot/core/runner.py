"""
工作流运行器

按依赖顺序为可执行步骤生成草稿，交给审批策略决定是否写入台账，
然后重新计算可执行步骤，直到没有步骤可执行。
"""
import asyncio
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

import anyio

from ..exceptions import LedgerWriteError
from ..models.workflow import WorkflowGraph
from ..models.step import (
    StepStatus, StepLedgerEntry, StepContext, UpstreamResult, StepDraft, ReviewDecision
)
from ..models.events import StreamEvent
from .ledger import StepLedger
from .scheduler import topological_order, next_available_steps
from .state_machine import StepRunTracker, RunSummary


logger = logging.getLogger(__name__)


EventSink = Callable[[StreamEvent], Awaitable[None]]
# 生成草稿：接收步骤上下文与事件出口，返回草稿文本
StepDrafter = Callable[[StepContext, EventSink], Awaitable[str]]
ReviewPolicy = Callable[[StepDraft], Awaitable[ReviewDecision]]


async def defer_review(draft: StepDraft) -> ReviewDecision:
    """草稿留给人工审批"""
    return ReviewDecision(approved=False)


async def auto_approve(draft: StepDraft) -> ReviewDecision:
    """草稿直接通过"""
    return ReviewDecision(approved=True)


def build_step_context(
    graph: WorkflowGraph,
    node_id: str,
    entries: Iterable[StepLedgerEntry]
) -> StepContext:
    """构建步骤上下文，包含已完成上游步骤的结果"""
    node = graph.get_node(node_id)
    if node is None:
        raise KeyError(node_id)

    by_node: Dict[str, StepLedgerEntry] = {e.node_id: e for e in entries}
    upstream_results = []
    for upstream in graph.get_upstream_nodes(node_id):
        entry = by_node.get(upstream.id)
        if entry and entry.completed and entry.result:
            upstream_results.append(UpstreamResult(
                node_id=upstream.id,
                label=upstream.label,
                result=entry.result,
            ))

    own = by_node.get(node_id)
    return StepContext(
        workflow_id=graph.id,
        node_id=node.id,
        label=node.label,
        description=node.description,
        instructions=node.instructions,
        upstream_results=upstream_results,
        completed=bool(own and own.completed),
        result=own.result if own else None,
    )


@dataclass
class StepBatchResult:
    """一批步骤的执行结果"""
    drafts: List[StepDraft] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "executed": (
                [{"node_id": d.node_id, "label": d.label, "status": StepStatus.REVIEW.value} for d in self.drafts]
                + [{"node_id": n, "status": StepStatus.ERROR.value, "error": e} for n, e in self.errors.items()]
            ),
            "skipped": [{"node_id": n, "reason": r} for n, r in self.skipped.items()],
            "message": (
                f"{len(self.drafts)} step(s) drafted and awaiting review"
                + (f", {len(self.errors)} failed" if self.errors else "")
            ),
        }


@dataclass
class _DraftFinished:
    context: StepContext
    result: Optional[str] = None
    error: Optional[str] = None


class WorkflowRunner:
    """工作流运行器"""

    def __init__(
        self,
        ledger: StepLedger,
        drafter: StepDrafter,
        review_policy: ReviewPolicy = defer_review
    ):
        self.ledger = ledger
        self.drafter = drafter
        self.review_policy = review_policy
        self.summary: Optional[RunSummary] = None

    async def run(self, user_id: str, graph: WorkflowGraph) -> AsyncIterator[StreamEvent]:
        """
        运行工作流

        每轮从台账重新计算可执行步骤，本次运行中已起草、出错的步骤不再选中。
        运行结束后 self.summary 给出总结。
        """
        self.summary = None
        edges = graph.valid_edges()
        topo = topological_order(graph.nodes, edges)
        completed = await self.ledger.completed_set(user_id, graph.id) & set(graph.node_ids)
        tracker = StepRunTracker(completed)

        logger.info(
            f"Running workflow {graph.id} for user {user_id}: "
            f"{len(completed)}/{len(graph.nodes)} completed, has_cycles={topo.has_cycles}"
        )

        while True:
            frontier = [
                node_id
                for node_id in next_available_steps(topo.order, completed, edges, graph.node_ids)
                if not tracker.is_settled(node_id)
            ]
            if not frontier:
                break

            batch = StepBatchResult()
            async with aclosing(self._draft_steps(user_id, graph, frontier, tracker, batch)) as events:
                async for event in events:
                    yield event

            for draft in batch.drafts:
                decision = await self.review_policy(draft)
                if not decision.approved:
                    continue

                try:
                    await self.ledger.approve(
                        user_id, graph.id, draft.node_id, decision.result or draft.result
                    )
                except LedgerWriteError as e:
                    # 审批没有生效，步骤保持 review
                    yield StreamEvent.failure(f"Approval of step '{draft.label}' was not saved: {e}")
                    continue

                tracker.transition(draft.node_id, StepStatus.COMPLETED)
                completed.add(draft.node_id)
                yield StreamEvent.step(draft.node_id, StepStatus.COMPLETED)

        self.summary = RunSummary.build(graph, topo.order, tracker)
        logger.info(f"Workflow {graph.id} run finished: {self.summary.outcome.value}")

    async def execute_steps(
        self,
        user_id: str,
        graph: WorkflowGraph,
        node_ids: List[str],
        batch: StepBatchResult
    ) -> AsyncIterator[StreamEvent]:
        """为指定步骤生成草稿（不做审批），不可执行的步骤记入 batch.skipped"""
        edges = graph.valid_edges()
        completed = await self.ledger.completed_set(user_id, graph.id) & set(graph.node_ids)
        topo = topological_order(graph.nodes, edges)
        available = set(next_available_steps(topo.order, completed, edges, graph.node_ids))

        selected = []
        for node_id in dict.fromkeys(node_ids):
            if graph.get_node(node_id) is None:
                batch.skipped[node_id] = "Step not found in workflow"
            elif node_id in completed:
                batch.skipped[node_id] = "Step already completed"
            elif node_id not in available:
                batch.skipped[node_id] = "Upstream steps are not completed yet"
            else:
                selected.append(node_id)

        if selected:
            tracker = StepRunTracker(completed)
            async with aclosing(self._draft_steps(user_id, graph, selected, tracker, batch)) as events:
                async for event in events:
                    yield event

    async def _draft_steps(
        self,
        user_id: str,
        graph: WorkflowGraph,
        node_ids: List[str],
        tracker: StepRunTracker,
        batch: StepBatchResult
    ) -> AsyncIterator[StreamEvent]:
        """并发生成草稿，各步骤的事件通过同一个队列按到达顺序转发"""
        entries = await self.ledger.list_for_workflow(user_id, graph.id)

        contexts = []
        for node_id in node_ids:
            tracker.transition(node_id, StepStatus.EXECUTING)
            yield StreamEvent.step(node_id, StepStatus.EXECUTING)
            contexts.append(build_step_context(graph, node_id, entries))

        queue: asyncio.Queue = asyncio.Queue()

        async def worker(context: StepContext):
            try:
                result = await self.drafter(context, queue.put)
                await queue.put(_DraftFinished(context, result=result))
            except Exception as e:
                logger.error(f"Draft of step {context.node_id} failed: {e}", exc_info=True)
                await queue.put(_DraftFinished(context, error=str(e) or type(e).__name__))

        tasks = [asyncio.create_task(worker(context)) for context in contexts]
        pending = len(tasks)
        try:
            while pending:
                item = await queue.get()
                if not isinstance(item, _DraftFinished):
                    yield item
                    continue

                pending -= 1
                context = item.context
                if item.error is None and not (item.result or "").strip():
                    item.error = "Step produced an empty result"

                if item.error is None:
                    tracker.transition(context.node_id, StepStatus.REVIEW, draft=item.result)
                    batch.drafts.append(StepDraft(
                        workflow_id=graph.id,
                        node_id=context.node_id,
                        label=context.label,
                        result=item.result,
                    ))
                    yield StreamEvent.step(context.node_id, StepStatus.REVIEW, item.result)
                else:
                    tracker.transition(context.node_id, StepStatus.ERROR, error=item.error)
                    batch.errors[context.node_id] = item.error
                    yield StreamEvent.step(context.node_id, StepStatus.ERROR)
                    yield StreamEvent.failure(f"Step '{context.label}' failed: {item.error}")
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # 等待被取消的草稿完成清理（关闭各自的模型会话）
            with anyio.CancelScope(shield=True):
                await asyncio.gather(*tasks, return_exceptions=True)
