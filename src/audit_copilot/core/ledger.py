"""
步骤台账
"""
import logging
from dataclasses import replace
from typing import Callable, List, Optional, Set
from datetime import datetime

from ..exceptions import LedgerWriteError
from ..models.workflow import WorkflowGraph, utcnow
from ..models.step import StepLedgerEntry, WorkflowProgress
from ..storage.repository import StepResultRepository
from .scheduler import compute_progress


logger = logging.getLogger(__name__)


class _Unset:
    """区分“未提供”与 None"""

    def __repr__(self):
        return "UNSET"


UNSET = _Unset()


class StepLedger:
    """
    步骤完成台账

    人工审批与智能体自动完成都通过这里写入，写入失败会以
    LedgerWriteError 抛给调用方，不会被吞掉。
    """

    def __init__(
        self,
        repository: StepResultRepository,
        clock: Callable[[], datetime] = utcnow
    ):
        self.repository = repository
        self.clock = clock

    async def get(self, user_id: str, workflow_id: str, node_id: str) -> Optional[StepLedgerEntry]:
        """获取单条记录"""
        return await self.repository.get(user_id, workflow_id, node_id)

    async def upsert(
        self,
        user_id: str,
        workflow_id: str,
        node_id: str,
        result=UNSET,
        completed=UNSET
    ) -> StepLedgerEntry:
        """
        插入或更新步骤记录

        Args:
            result: 步骤结果，未提供时保持原值
            completed: 完成标记，True 记录完成时间，False 清除完成时间

        Raises:
            LedgerWriteError: 持久化失败
        """
        now = self.clock()
        try:
            entry = await self.repository.get(user_id, workflow_id, node_id)

            if entry is None:
                is_completed = completed is True
                entry = StepLedgerEntry(
                    user_id=user_id,
                    workflow_id=workflow_id,
                    node_id=node_id,
                    result=None if result is UNSET else result,
                    completed=is_completed,
                    completed_at=now if is_completed else None,
                    created_at=now,
                    updated_at=now,
                )
            else:
                entry = replace(entry)
                if result is not UNSET:
                    entry.result = result
                if completed is not UNSET:
                    entry.completed = bool(completed)
                    entry.completed_at = now if completed else None
                entry.updated_at = now

            saved = await self.repository.save(entry)
        except Exception as e:
            logger.error(
                f"Failed to write step {node_id} of workflow {workflow_id} for user {user_id}: {e}",
                exc_info=True
            )
            raise LedgerWriteError(workflow_id, node_id, e) from e

        logger.info(
            f"Step {node_id} of workflow {workflow_id} saved for user {user_id} "
            f"(completed={saved.completed})"
        )
        return saved

    async def approve(self, user_id: str, workflow_id: str, node_id: str, result: Optional[str] = None) -> StepLedgerEntry:
        """审批通过，记录结果并标记完成"""
        if result is None:
            return await self.upsert(user_id, workflow_id, node_id, completed=True)
        return await self.upsert(user_id, workflow_id, node_id, result=result, completed=True)

    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[StepLedgerEntry]:
        """列出用户在某工作流中的全部记录"""
        return await self.repository.list_for_workflow(user_id, workflow_id)

    async def completed_set(self, user_id: str, workflow_id: str) -> Set[str]:
        """已完成节点集合"""
        entries = await self.repository.list_for_workflow(user_id, workflow_id)
        return {entry.node_id for entry in entries if entry.completed}

    async def progress(self, user_id: str, graph: WorkflowGraph) -> WorkflowProgress:
        """工作流完成进度，只统计图中仍存在的节点"""
        entries = await self.repository.list_for_workflow(user_id, graph.id)
        node_ids = set(graph.node_ids)
        completed = sum(1 for e in entries if e.completed and e.node_id in node_ids)
        total = len(node_ids)
        return WorkflowProgress(
            workflow_id=graph.id,
            total=total,
            completed=completed,
            progress=compute_progress(total, completed),
            entries=entries,
        )

    async def delete_for_workflow(self, workflow_id: str) -> int:
        """删除工作流时级联删除台账"""
        count = await self.repository.delete_for_workflow(workflow_id)
        logger.info(f"Deleted {count} ledger entries of workflow {workflow_id}")
        return count
