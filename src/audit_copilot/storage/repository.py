"""
存储仓库接口定义
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional, List, Dict, Set, Tuple
from datetime import datetime

from ..exceptions import WorkflowNotFoundError
from ..models.workflow import WorkflowGraph
from ..models.step import StepLedgerEntry, AuditScore
from ..models.usage import UsageRecord, SpendingLimit


class WorkflowRepository(ABC):
    """工作流存储仓库接口"""

    @abstractmethod
    async def save(self, workflow: WorkflowGraph) -> str:
        """保存工作流"""
        pass

    @abstractmethod
    async def get(self, workflow_id: str) -> Optional[WorkflowGraph]:
        """获取工作流"""
        pass

    @abstractmethod
    async def get_by_slug(self, slug: str) -> Optional[WorkflowGraph]:
        """根据 slug 获取工作流，未设置 slug 的工作流以 ID 作为 slug"""
        pass

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> List[WorkflowGraph]:
        """列出用户的工作流"""
        pass

    @abstractmethod
    async def delete(self, workflow_id: str) -> bool:
        """删除工作流"""
        pass

    async def get_owned(self, workflow_id: str, owner_id: str) -> WorkflowGraph:
        """
        获取调用者拥有的工作流，按 ID 或 slug 查找

        Raises:
            WorkflowNotFoundError: 不存在或不属于调用者
        """
        workflow = await self.get(workflow_id)
        if workflow is None:
            workflow = await self.get_by_slug(workflow_id)
        if workflow is None or workflow.owner_id != owner_id:
            raise WorkflowNotFoundError(workflow_id)
        return workflow


class StepResultRepository(ABC):
    """步骤台账存储接口"""

    @abstractmethod
    async def get(self, user_id: str, workflow_id: str, node_id: str) -> Optional[StepLedgerEntry]:
        """获取单条记录"""
        pass

    @abstractmethod
    async def save(self, entry: StepLedgerEntry) -> StepLedgerEntry:
        """按 (user_id, workflow_id, node_id) 插入或更新"""
        pass

    @abstractmethod
    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[StepLedgerEntry]:
        """列出用户在某工作流中的全部记录"""
        pass

    @abstractmethod
    async def delete_for_workflow(self, workflow_id: str) -> int:
        """随工作流删除"""
        pass


class UsageRepository(ABC):
    """用量记录存储接口（只追加）"""

    @abstractmethod
    async def append(self, record: UsageRecord) -> None:
        """追加用量记录"""
        pass

    @abstractmethod
    async def sum_cost_since(self, user_id: str, since: datetime) -> Decimal:
        """统计自某时间起的费用"""
        pass

    @abstractmethod
    async def list_records(
        self,
        start: datetime,
        end: datetime,
        user_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[UsageRecord]:
        """按时间倒序列出记录"""
        pass


class SpendingLimitRepository(ABC):
    """用户额度存储接口"""

    @abstractmethod
    async def get(self, user_id: str) -> Optional[SpendingLimit]:
        """获取用户额度"""
        pass

    @abstractmethod
    async def upsert(self, limit: SpendingLimit) -> SpendingLimit:
        """设置用户额度"""
        pass

    @abstractmethod
    async def list_all(self) -> List[SpendingLimit]:
        """按更新时间倒序列出全部额度"""
        pass


class UserDirectory(ABC):
    """用户目录（身份系统的外部协作者）"""

    @abstractmethod
    async def is_admin(self, user_id: str) -> bool:
        """是否管理员"""
        pass


class ScoreRepository(ABC):
    """审计评分存储接口"""

    @abstractmethod
    async def save(self, score: AuditScore) -> AuditScore:
        """保存评分"""
        pass

    @abstractmethod
    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[AuditScore]:
        """列出评分"""
        pass


# 内存实现（用于测试和本地开发）
class InMemoryWorkflowRepository(WorkflowRepository):
    """内存工作流仓库实现"""

    def __init__(self):
        self.workflows: Dict[str, WorkflowGraph] = {}

    async def save(self, workflow: WorkflowGraph) -> str:
        self.workflows[workflow.id] = workflow
        return workflow.id

    async def get(self, workflow_id: str) -> Optional[WorkflowGraph]:
        return self.workflows.get(workflow_id)

    async def get_by_slug(self, slug: str) -> Optional[WorkflowGraph]:
        for workflow in self.workflows.values():
            if (workflow.slug or workflow.id) == slug:
                return workflow
        return None

    async def list_for_owner(self, owner_id: str) -> List[WorkflowGraph]:
        return [w for w in self.workflows.values() if w.owner_id == owner_id]

    async def delete(self, workflow_id: str) -> bool:
        return self.workflows.pop(workflow_id, None) is not None


class InMemoryStepResultRepository(StepResultRepository):
    """内存步骤台账实现"""

    def __init__(self):
        self.entries: Dict[Tuple[str, str, str], StepLedgerEntry] = {}

    async def get(self, user_id: str, workflow_id: str, node_id: str) -> Optional[StepLedgerEntry]:
        return self.entries.get((user_id, workflow_id, node_id))

    async def save(self, entry: StepLedgerEntry) -> StepLedgerEntry:
        self.entries[entry.key] = entry
        return entry

    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[StepLedgerEntry]:
        return [
            e for e in self.entries.values()
            if e.user_id == user_id and e.workflow_id == workflow_id
        ]

    async def delete_for_workflow(self, workflow_id: str) -> int:
        keys = [k for k in self.entries if k[1] == workflow_id]
        for key in keys:
            del self.entries[key]
        return len(keys)


class InMemoryUsageRepository(UsageRepository):
    """内存用量记录实现"""

    def __init__(self):
        self.records: List[UsageRecord] = []

    async def append(self, record: UsageRecord) -> None:
        self.records.append(record)

    async def sum_cost_since(self, user_id: str, since: datetime) -> Decimal:
        return sum(
            (r.estimated_cost for r in self.records
             if r.user_id == user_id and r.created_at >= since),
            Decimal("0")
        )

    async def list_records(
        self,
        start: datetime,
        end: datetime,
        user_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[UsageRecord]:
        records = [
            r for r in self.records
            if start <= r.created_at <= end and (user_id is None or r.user_id == user_id)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit] if limit else records


class InMemorySpendingLimitRepository(SpendingLimitRepository):
    """内存额度实现"""

    def __init__(self):
        self.limits: Dict[str, SpendingLimit] = {}

    async def get(self, user_id: str) -> Optional[SpendingLimit]:
        return self.limits.get(user_id)

    async def upsert(self, limit: SpendingLimit) -> SpendingLimit:
        self.limits[limit.user_id] = limit
        return limit

    async def list_all(self) -> List[SpendingLimit]:
        return sorted(self.limits.values(), key=lambda l: l.updated_at, reverse=True)


class StaticUserDirectory(UserDirectory):
    """基于固定管理员集合的用户目录"""

    def __init__(self, admin_ids: Optional[Set[str]] = None):
        self.admin_ids: Set[str] = set(admin_ids or ())

    async def is_admin(self, user_id: str) -> bool:
        return user_id in self.admin_ids


class InMemoryScoreRepository(ScoreRepository):
    """内存评分实现"""

    def __init__(self):
        self.scores: List[AuditScore] = []

    async def save(self, score: AuditScore) -> AuditScore:
        self.scores.append(score)
        return score

    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[AuditScore]:
        return [
            s for s in self.scores
            if s.user_id == user_id and s.workflow_id == workflow_id
        ]
