"""
步骤台账与步骤执行模型
"""
from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List
from enum import Enum
from datetime import datetime

from .workflow import utcnow


class StepStatus(Enum):
    """步骤运行状态"""
    PENDING = "pending"
    EXECUTING = "executing"
    REVIEW = "review"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class StepLedgerEntry:
    """单个用户在某工作流中某步骤的完成记录"""
    user_id: str
    workflow_id: str
    node_id: str
    result: Optional[str] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> tuple:
        return (self.user_id, self.workflow_id, self.node_id)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "result": self.result,
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class WorkflowProgress:
    """工作流完成进度"""
    workflow_id: str
    total: int
    completed: int
    progress: int
    entries: List[StepLedgerEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "total": self.total,
            "completed": self.completed,
            "progress": self.progress,
            "steps": [entry.to_dict() for entry in self.entries],
        }


@dataclass
class UpstreamResult:
    """上游步骤结果"""
    node_id: str
    label: str
    result: str


@dataclass
class StepContext:
    """生成步骤草稿所需的上下文"""
    workflow_id: str
    node_id: str
    label: str
    instructions: str
    description: Optional[str] = None
    upstream_results: List[UpstreamResult] = field(default_factory=list)
    completed: bool = False
    result: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "node_id": self.node_id,
            "label": self.label,
            "description": self.description,
            "instructions": self.instructions,
            "completed": self.completed,
            "result": self.result,
            "upstream_results": [
                {"node_id": u.node_id, "label": u.label, "result": u.result}
                for u in self.upstream_results
            ],
        }


@dataclass
class StepDraft:
    """智能体为某步骤生成的未审批结果"""
    workflow_id: str
    node_id: str
    label: str
    result: str


@dataclass
class ReviewDecision:
    """审批决定，approved 为 False 表示留给人工审批"""
    approved: bool
    result: Optional[str] = None  # 人工编辑后的结果，为空时使用草稿


@dataclass
class AuditScore:
    """评审智能体给出的审计评分"""
    user_id: str
    workflow_id: str
    score: int
    summary: str = ""
    findings: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "score": self.score,
            "summary": self.summary,
            "findings": self.findings,
            "created_at": self.created_at.isoformat(),
        }
