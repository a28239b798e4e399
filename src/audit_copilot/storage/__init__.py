"""Storage and repository interfaces"""

from .repository import (
    WorkflowRepository,
    StepResultRepository,
    UsageRepository,
    SpendingLimitRepository,
    UserDirectory,
    ScoreRepository,
    InMemoryWorkflowRepository,
    InMemoryStepResultRepository,
    InMemoryUsageRepository,
    InMemorySpendingLimitRepository,
    StaticUserDirectory,
    InMemoryScoreRepository
)

__all__ = [
    "WorkflowRepository",
    "StepResultRepository",
    "UsageRepository",
    "SpendingLimitRepository",
    "UserDirectory",
    "ScoreRepository",
    "InMemoryWorkflowRepository",
    "InMemoryStepResultRepository",
    "InMemoryUsageRepository",
    "InMemorySpendingLimitRepository",
    "StaticUserDirectory",
    "InMemoryScoreRepository"
]
