"""Core scheduling, ledger and governance components"""

from .scheduler import (
    TopologicalOrder,
    ExecutionPlan,
    topological_order,
    next_available_steps,
    unresolved_nodes,
    compute_progress,
    build_execution_plan
)
from .ledger import StepLedger, UNSET
from .governor import UsageGovernor, ModelRate, MODEL_PRICING, DEFAULT_MODEL, DEFAULT_MONTHLY_LIMIT
from .state_machine import StepRunTracker, RunSummary, RunOutcome, STEP_TRANSITIONS
from .runner import WorkflowRunner, StepBatchResult, build_step_context, defer_review, auto_approve
from .parser import WorkflowParser

# CopilotEngine 依赖 integrations，需要从 core.engine 显式导入

__all__ = [
    "TopologicalOrder",
    "ExecutionPlan",
    "topological_order",
    "next_available_steps",
    "unresolved_nodes",
    "compute_progress",
    "build_execution_plan",
    "StepLedger",
    "UNSET",
    "UsageGovernor",
    "ModelRate",
    "MODEL_PRICING",
    "DEFAULT_MODEL",
    "DEFAULT_MONTHLY_LIMIT",
    "StepRunTracker",
    "RunSummary",
    "RunOutcome",
    "STEP_TRANSITIONS",
    "WorkflowRunner",
    "StepBatchResult",
    "build_step_context",
    "defer_review",
    "auto_approve",
    "WorkflowParser"
]
