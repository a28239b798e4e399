"""Workflow, ledger, usage and stream event models"""

from .workflow import WorkflowGraph, StepNode, Edge, utcnow
from .step import (
    StepStatus, StepLedgerEntry, WorkflowProgress, StepContext,
    UpstreamResult, StepDraft, ReviewDecision, AuditScore
)
from .usage import (
    UserContext, ModelUsage, UsageRecord, SpendingLimit, SpendCheck,
    UserUsageSummary, UserUsageDetail
)
from .events import (
    StreamEvent, StreamEventType, ToolCall, ToolCallStatus, CodeExecution
)

__all__ = [
    "WorkflowGraph",
    "StepNode",
    "Edge",
    "utcnow",
    "StepStatus",
    "StepLedgerEntry",
    "WorkflowProgress",
    "StepContext",
    "UpstreamResult",
    "StepDraft",
    "ReviewDecision",
    "AuditScore",
    "UserContext",
    "ModelUsage",
    "UsageRecord",
    "SpendingLimit",
    "SpendCheck",
    "UserUsageSummary",
    "UserUsageDetail",
    "StreamEvent",
    "StreamEventType",
    "ToolCall",
    "ToolCallStatus",
    "CodeExecution",
]
