"""
SQLAlchemy 仓库实现
"""
from decimal import Decimal
from typing import Optional, List
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy import select, delete, and_, func

from ..models.workflow import WorkflowGraph, StepNode, Edge, utcnow
from ..models.step import StepLedgerEntry, AuditScore
from ..models.usage import UsageRecord, SpendingLimit
from .repository import (
    WorkflowRepository, StepResultRepository, UsageRepository,
    SpendingLimitRepository, UserDirectory, ScoreRepository
)
from .sqlalchemy_models import (
    WorkflowDefinition as WorkflowDefinitionDB,
    StepResult as StepResultDB,
    ApiUsage as ApiUsageDB,
    UserSpendingLimit as UserSpendingLimitDB,
    User as UserDB,
    AuditScoreRecord as AuditScoreDB,
    Base
)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite 返回不带时区的时间，统一补上 UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DatabaseManager:
    """数据库管理器"""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker = None

    async def initialize(self):
        """初始化数据库连接"""
        if self.database_url.startswith("sqlite"):
            # 内存库需要所有会话共享同一连接
            self.engine = create_async_engine(
                self.database_url,
                echo=False,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False}
            )
        else:
            self.engine = create_async_engine(
                self.database_url,
                echo=False,
                pool_size=20,
                max_overflow=10,
                pool_pre_ping=True
            )

        self.async_session_maker = sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        # 创建表（开发环境）
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """关闭数据库连接"""
        if self.engine:
            await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self):
        """获取数据库会话"""
        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()


class SQLAlchemyWorkflowRepository(WorkflowRepository):
    """SQLAlchemy 工作流仓库实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def save(self, workflow: WorkflowGraph) -> str:
        """保存工作流（存在则覆盖）"""
        definition = workflow.to_dict()
        async with self.db.get_session() as session:
            workflow_db = await session.get(WorkflowDefinitionDB, workflow.id)
            if workflow_db is None:
                workflow_db = WorkflowDefinitionDB(id=workflow.id)
                session.add(workflow_db)

            workflow_db.slug = workflow.slug or workflow.id
            workflow_db.name = workflow.name
            workflow_db.owner_id = workflow.owner_id
            workflow_db.description = workflow.description
            workflow_db.nodes = definition["nodes"]
            workflow_db.edges = definition["edges"]
            workflow_db.extra = workflow.metadata
            await session.flush()
            return workflow.id

    async def get(self, workflow_id: str) -> Optional[WorkflowGraph]:
        """获取工作流"""
        async with self.db.get_session() as session:
            workflow_db = await session.get(WorkflowDefinitionDB, workflow_id)
            return self._db_to_workflow(workflow_db) if workflow_db else None

    async def get_by_slug(self, slug: str) -> Optional[WorkflowGraph]:
        """根据 slug 获取工作流"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowDefinitionDB).where(WorkflowDefinitionDB.slug == slug)
            )
            workflow_db = result.scalar_one_or_none()
            return self._db_to_workflow(workflow_db) if workflow_db else None

    async def list_for_owner(self, owner_id: str) -> List[WorkflowGraph]:
        """列出用户的工作流"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(WorkflowDefinitionDB)
                .where(WorkflowDefinitionDB.owner_id == owner_id)
                .order_by(WorkflowDefinitionDB.created_at.desc())
            )
            return [self._db_to_workflow(w) for w in result.scalars().all()]

    async def delete(self, workflow_id: str) -> bool:
        """删除工作流"""
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(WorkflowDefinitionDB).where(WorkflowDefinitionDB.id == workflow_id)
            )
            return result.rowcount > 0

    def _db_to_workflow(self, workflow_db: WorkflowDefinitionDB) -> WorkflowGraph:
        """数据库模型转换为工作流图"""
        return WorkflowGraph(
            id=workflow_db.id,
            slug=workflow_db.slug,
            name=workflow_db.name,
            owner_id=workflow_db.owner_id,
            description=workflow_db.description,
            nodes=[
                StepNode(
                    id=n["id"],
                    label=n.get("label") or n["id"],
                    description=n.get("description"),
                    instructions=n.get("instructions") or "",
                )
                for n in workflow_db.nodes or []
            ],
            edges=[
                Edge(source=e["source"], target=e["target"], id=e.get("id") or f"{e['source']}->{e['target']}")
                for e in workflow_db.edges or []
            ],
            metadata=workflow_db.extra or {},
            created_at=_as_utc(workflow_db.created_at) or utcnow(),
            updated_at=_as_utc(workflow_db.updated_at) or utcnow(),
        )


class SQLAlchemyStepResultRepository(StepResultRepository):
    """SQLAlchemy 步骤台账实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def get(self, user_id: str, workflow_id: str, node_id: str) -> Optional[StepLedgerEntry]:
        async with self.db.get_session() as session:
            row = await self._find(session, user_id, workflow_id, node_id)
            return self._db_to_entry(row) if row else None

    async def save(self, entry: StepLedgerEntry) -> StepLedgerEntry:
        async with self.db.get_session() as session:
            row = await self._find(session, entry.user_id, entry.workflow_id, entry.node_id)
            if row is None:
                row = StepResultDB(
                    user_id=entry.user_id,
                    workflow_id=entry.workflow_id,
                    node_id=entry.node_id,
                    created_at=entry.created_at,
                )
                session.add(row)

            row.result = entry.result
            row.completed = entry.completed
            row.completed_at = entry.completed_at
            row.updated_at = entry.updated_at
            await session.flush()
            return entry

    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[StepLedgerEntry]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(StepResultDB).where(
                    and_(
                        StepResultDB.user_id == user_id,
                        StepResultDB.workflow_id == workflow_id
                    )
                )
            )
            return [self._db_to_entry(row) for row in result.scalars().all()]

    async def delete_for_workflow(self, workflow_id: str) -> int:
        async with self.db.get_session() as session:
            result = await session.execute(
                delete(StepResultDB).where(StepResultDB.workflow_id == workflow_id)
            )
            return result.rowcount

    async def _find(self, session: AsyncSession, user_id: str, workflow_id: str, node_id: str):
        result = await session.execute(
            select(StepResultDB).where(
                and_(
                    StepResultDB.user_id == user_id,
                    StepResultDB.workflow_id == workflow_id,
                    StepResultDB.node_id == node_id
                )
            )
        )
        return result.scalar_one_or_none()

    def _db_to_entry(self, row: StepResultDB) -> StepLedgerEntry:
        return StepLedgerEntry(
            user_id=row.user_id,
            workflow_id=row.workflow_id,
            node_id=row.node_id,
            result=row.result,
            completed=row.completed,
            completed_at=_as_utc(row.completed_at),
            created_at=_as_utc(row.created_at),
            updated_at=_as_utc(row.updated_at),
        )


class SQLAlchemyUsageRepository(UsageRepository):
    """SQLAlchemy 用量记录实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def append(self, record: UsageRecord) -> None:
        async with self.db.get_session() as session:
            session.add(ApiUsageDB(
                id=record.id,
                user_id=record.user_id,
                user_email=record.user_email,
                model=record.model,
                prompt_tokens=record.prompt_tokens,
                output_tokens=record.output_tokens,
                total_tokens=record.total_tokens,
                estimated_cost=record.estimated_cost,
                session_id=record.session_id,
                created_at=record.created_at,
            ))

    async def sum_cost_since(self, user_id: str, since: datetime) -> Decimal:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(ApiUsageDB.estimated_cost), 0)).where(
                    and_(
                        ApiUsageDB.user_id == user_id,
                        ApiUsageDB.created_at >= since
                    )
                )
            )
            return Decimal(str(result.scalar_one()))

    async def list_records(
        self,
        start: datetime,
        end: datetime,
        user_id: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[UsageRecord]:
        async with self.db.get_session() as session:
            query = select(ApiUsageDB).where(
                and_(ApiUsageDB.created_at >= start, ApiUsageDB.created_at <= end)
            )
            if user_id is not None:
                query = query.where(ApiUsageDB.user_id == user_id)
            query = query.order_by(ApiUsageDB.created_at.desc())
            if limit:
                query = query.limit(limit)

            result = await session.execute(query)
            return [
                UsageRecord(
                    id=row.id,
                    user_id=row.user_id,
                    user_email=row.user_email or "",
                    model=row.model,
                    prompt_tokens=row.prompt_tokens,
                    output_tokens=row.output_tokens,
                    total_tokens=row.total_tokens,
                    estimated_cost=Decimal(str(row.estimated_cost)),
                    session_id=row.session_id,
                    created_at=_as_utc(row.created_at),
                )
                for row in result.scalars().all()
            ]


class SQLAlchemySpendingLimitRepository(SpendingLimitRepository):
    """SQLAlchemy 额度实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def get(self, user_id: str) -> Optional[SpendingLimit]:
        async with self.db.get_session() as session:
            row = await session.get(UserSpendingLimitDB, user_id)
            return self._db_to_limit(row) if row else None

    async def upsert(self, limit: SpendingLimit) -> SpendingLimit:
        async with self.db.get_session() as session:
            row = await session.get(UserSpendingLimitDB, limit.user_id)
            if row is None:
                row = UserSpendingLimitDB(user_id=limit.user_id)
                session.add(row)
            row.user_email = limit.user_email
            row.monthly_limit = limit.monthly_limit
            row.updated_by = limit.updated_by
            row.updated_at = limit.updated_at
            await session.flush()
            return limit

    async def list_all(self) -> List[SpendingLimit]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(UserSpendingLimitDB).order_by(UserSpendingLimitDB.updated_at.desc())
            )
            return [self._db_to_limit(row) for row in result.scalars().all()]

    def _db_to_limit(self, row: UserSpendingLimitDB) -> SpendingLimit:
        return SpendingLimit(
            user_id=row.user_id,
            user_email=row.user_email or "",
            monthly_limit=Decimal(str(row.monthly_limit)),
            updated_by=row.updated_by,
            updated_at=_as_utc(row.updated_at),
        )


class SQLAlchemyUserDirectory(UserDirectory):
    """基于 users 表的用户目录"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def is_admin(self, user_id: str) -> bool:
        async with self.db.get_session() as session:
            row = await session.get(UserDB, user_id)
            return bool(row and row.is_admin)

    async def set_admin(self, user_id: str, email: str = "", is_admin: bool = True):
        """设置管理员标记（运维命令使用）"""
        async with self.db.get_session() as session:
            row = await session.get(UserDB, user_id)
            if row is None:
                row = UserDB(id=user_id, email=email)
                session.add(row)
            row.is_admin = is_admin


class SQLAlchemyScoreRepository(ScoreRepository):
    """SQLAlchemy 评分实现"""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager

    async def save(self, score: AuditScore) -> AuditScore:
        async with self.db.get_session() as session:
            session.add(AuditScoreDB(
                user_id=score.user_id,
                workflow_id=score.workflow_id,
                score=score.score,
                summary=score.summary,
                findings=score.findings,
                created_at=score.created_at,
            ))
            return score

    async def list_for_workflow(self, user_id: str, workflow_id: str) -> List[AuditScore]:
        async with self.db.get_session() as session:
            result = await session.execute(
                select(AuditScoreDB)
                .where(and_(AuditScoreDB.user_id == user_id, AuditScoreDB.workflow_id == workflow_id))
                .order_by(AuditScoreDB.created_at.desc())
            )
            return [
                AuditScore(
                    user_id=row.user_id,
                    workflow_id=row.workflow_id,
                    score=row.score,
                    summary=row.summary or "",
                    findings=row.findings or [],
                    created_at=_as_utc(row.created_at),
                )
                for row in result.scalars().all()
            ]
