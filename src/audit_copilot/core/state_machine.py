"""
步骤运行状态机
"""
from typing import Dict, Any, Optional, List, Iterable, Set
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum
import logging

from ..models.workflow import WorkflowGraph, utcnow
from ..models.step import StepStatus
from ..exceptions import StateTransitionError
from .scheduler import compute_progress


logger = logging.getLogger(__name__)


# 允许的状态转换：review -> executing 用于人工驳回后重新起草
STEP_TRANSITIONS: Dict[StepStatus, Set[StepStatus]] = {
    StepStatus.PENDING: {StepStatus.EXECUTING},
    StepStatus.EXECUTING: {StepStatus.REVIEW, StepStatus.ERROR},
    StepStatus.REVIEW: {StepStatus.COMPLETED, StepStatus.EXECUTING},
    StepStatus.COMPLETED: set(),
    StepStatus.ERROR: set(),
}


@dataclass
class StepRunState:
    """单个步骤在本次运行中的状态"""
    node_id: str
    status: StepStatus = StepStatus.PENDING
    draft: Optional[str] = None
    error: Optional[str] = None
    history: List[Dict[str, Any]] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utcnow)

    def add_history(self, from_state: StepStatus, to_state: StepStatus):
        """添加历史记录"""
        now = utcnow()
        self.history.append({
            "timestamp": now.isoformat(),
            "from_state": from_state.value,
            "to_state": to_state.value
        })
        self.updated_at = now


class StepRunTracker:
    """
    一次工作流运行中各步骤的状态

    已在台账中完成的步骤直接以 completed 状态登记。
    """

    def __init__(self, completed: Iterable[str] = ()):
        self.states: Dict[str, StepRunState] = {}
        for node_id in completed:
            self.states[node_id] = StepRunState(node_id=node_id, status=StepStatus.COMPLETED)

    def status_of(self, node_id: str) -> StepStatus:
        state = self.states.get(node_id)
        return state.status if state else StepStatus.PENDING

    def transition(self, node_id: str, target: StepStatus, draft: str = None, error: str = None) -> StepRunState:
        """
        执行状态转换

        Raises:
            StateTransitionError: 不允许的转换
        """
        state = self.states.setdefault(node_id, StepRunState(node_id=node_id))
        current = state.status

        if target not in STEP_TRANSITIONS[current]:
            raise StateTransitionError(node_id, current.value, target.value)

        state.add_history(current, target)
        state.status = target
        if target == StepStatus.REVIEW:
            state.draft = draft
        if target == StepStatus.ERROR:
            state.error = error

        logger.debug(f"Step {node_id}: {current.value} -> {target.value}")
        return state

    def is_settled(self, node_id: str) -> bool:
        """本次运行中不应再被选中的步骤"""
        return self.status_of(node_id) in (
            StepStatus.EXECUTING, StepStatus.REVIEW, StepStatus.COMPLETED, StepStatus.ERROR
        )


class RunOutcome(Enum):
    """运行结束原因"""
    COMPLETED = "completed"  # 全部步骤已完成
    AWAITING_REVIEW = "awaiting_review"  # 有草稿等待人工审批
    BLOCKED = "blocked"  # 剩余步骤被错误或环阻塞


@dataclass
class RunSummary:
    """运行总结"""
    workflow_id: str
    outcome: RunOutcome
    completed: List[str] = field(default_factory=list)
    in_review: List[str] = field(default_factory=list)
    errored: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    unreachable: List[str] = field(default_factory=list)
    progress: int = 0

    @classmethod
    def build(cls, graph: WorkflowGraph, order: List[str], tracker: StepRunTracker) -> "RunSummary":
        """根据图、拓扑顺序与步骤状态生成总结"""
        ordered = set(order)
        completed, in_review, errored, blocked, unreachable = [], [], [], [], []

        for node_id in graph.node_ids:
            status = tracker.status_of(node_id)
            if status == StepStatus.COMPLETED:
                completed.append(node_id)
            elif status == StepStatus.REVIEW:
                in_review.append(node_id)
            elif status == StepStatus.ERROR:
                errored.append(node_id)
            elif node_id not in ordered:
                unreachable.append(node_id)
            else:
                blocked.append(node_id)

        if len(completed) == len(graph.node_ids):
            outcome = RunOutcome.COMPLETED
        elif in_review:
            outcome = RunOutcome.AWAITING_REVIEW
        else:
            outcome = RunOutcome.BLOCKED

        return cls(
            workflow_id=graph.id,
            outcome=outcome,
            completed=completed,
            in_review=in_review,
            errored=errored,
            blocked=blocked,
            unreachable=unreachable,
            progress=compute_progress(len(graph.node_ids), len(completed)),
        )

    @property
    def message(self) -> str:
        if self.outcome == RunOutcome.COMPLETED:
            return "All steps completed."
        parts = []
        if self.in_review:
            parts.append(f"{len(self.in_review)} step(s) awaiting review")
        if self.errored:
            parts.append(f"{len(self.errored)} step(s) failed")
        if self.blocked:
            parts.append(f"{len(self.blocked)} step(s) blocked by unfinished upstream steps")
        if self.unreachable:
            parts.append(f"{len(self.unreachable)} step(s) unreachable because of a cycle")
        return "; ".join(parts) + "."

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "outcome": self.outcome.value,
            "message": self.message,
            "progress": self.progress,
            "completed": self.completed,
            "in_review": self.in_review,
            "errored": self.errored,
            "blocked": self.blocked,
            "unreachable": self.unreachable,
        }
