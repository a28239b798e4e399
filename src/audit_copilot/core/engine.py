"""
审计副驾驶引擎 - 请求处理管线的入口
"""
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, AsyncIterator, Union
from pathlib import Path

from ..config import Settings
from ..exceptions import InvalidRequestError, SpendLimitExceededError, StepNotFoundError
from ..models.workflow import WorkflowGraph
from ..models.step import StepContext, StepLedgerEntry, WorkflowProgress
from ..models.usage import UserContext, SpendCheck
from ..storage.repository import (
    WorkflowRepository, ScoreRepository,
    InMemoryWorkflowRepository, InMemoryStepResultRepository, InMemoryUsageRepository,
    InMemorySpendingLimitRepository, InMemoryScoreRepository, StaticUserDirectory
)
from ..integrations.agent import DispatchContext, RunTarget
from ..integrations.agents.sub_agents import DataTools, InMemoryDataTools
from ..integrations.dispatcher import AgentDispatcher, AgentRole
from ..integrations.model_client import ModelClient, OpenAIModelClient, ScriptedModelClient, is_valid_model
from ..integrations.models import ChatRequest
from ..integrations.transport import stream_ndjson
from .governor import UsageGovernor
from .ledger import StepLedger, UNSET
from .parser import WorkflowParser
from .runner import build_step_context
from .scheduler import ExecutionPlan, build_execution_plan


logger = logging.getLogger(__name__)


class CopilotEngine:
    """
    审计副驾驶引擎

    对话请求依次经过：请求校验 → 模型校验 → 角色解析 → 额度检查 → 分发。
    任何一步失败都在开始流式输出之前抛出，不触碰模型与台账。
    """

    def __init__(
        self,
        governor: UsageGovernor,
        ledger: StepLedger,
        workflows: WorkflowRepository,
        scores: ScoreRepository,
        model_client: ModelClient,
        dispatcher: Optional[AgentDispatcher] = None,
        data_tools: Optional[DataTools] = None,
        parser: Optional[WorkflowParser] = None
    ):
        self.governor = governor
        self.ledger = ledger
        self.workflows = workflows
        self.scores = scores
        self.model_client = model_client
        self.dispatcher = dispatcher or AgentDispatcher()
        self.data_tools = data_tools
        self.parser = parser or WorkflowParser()

    async def start_chat(
        self,
        user: UserContext,
        request: Union[ChatRequest, Dict[str, Any]]
    ) -> AsyncIterator[str]:
        """
        处理对话请求，返回惰性的 NDJSON 流

        Raises:
            pydantic.ValidationError: 请求格式错误
            InvalidRequestError: 不支持的模型
            UnknownAgentRoleError: 未知角色
            SpendLimitExceededError: 月度额度用尽
            WorkflowNotFoundError: 运行模式下的工作流不存在或不属于调用者
        """
        if not isinstance(request, ChatRequest):
            request = ChatRequest.model_validate(request)

        if not is_valid_model(request.model):
            raise InvalidRequestError(f"Unsupported model: {request.model}", "model")

        role = AgentRole.parse(request.agent_id)

        check = await self.governor.check_can_spend(user.user_id)
        if not check.allowed:
            logger.info(
                f"User {user.user_id} over budget: {check.current_spend} of {check.monthly_limit}"
            )
            raise SpendLimitExceededError(user.user_id, check.current_spend, check.monthly_limit)

        run_target = None
        if request.run_mode:
            workflow = await self.workflows.get_owned(request.run_mode.workflow_id, user.user_id)
            run_target = RunTarget(workflow_id=workflow.id, workflow_slug=request.run_mode.workflow_slug)

        context = DispatchContext(
            user=user,
            model=request.model,
            model_client=self.model_client,
            governor=self.governor,
            ledger=self.ledger,
            workflows=self.workflows,
            scores=self.scores,
            session_id=request.session_id,
            canvas_mode=request.canvas_mode,
            run_mode=run_target,
            data_tools=self.data_tools,
        )
        agent = self.dispatcher.dispatch(role, context)
        return stream_ndjson(agent, request.message, request.to_attachments(), request.to_history())

    async def check_usage(self, user: UserContext) -> SpendCheck:
        """当前用户的额度情况"""
        return await self.governor.check_can_spend(user.user_id)

    # 工作流

    async def import_workflow(self, user: UserContext, source: Union[str, Path, Dict[str, Any]]) -> WorkflowGraph:
        """解析并保存工作流定义，所有者为当前用户"""
        workflow = self.parser.parse(source, owner_id=user.user_id)
        existing = await self.workflows.get(workflow.id)
        if existing is not None and existing.owner_id != user.user_id:
            raise InvalidRequestError(f"Workflow id already taken: {workflow.id}", "id")
        slug = workflow.slug or workflow.id
        holder = await self.workflows.get_by_slug(slug)
        if holder is not None and holder.id != workflow.id:
            raise InvalidRequestError(f"Workflow slug already taken: {slug}", "slug")

        await self.workflows.save(workflow)
        logger.info(f"Imported workflow {workflow.id} ({len(workflow.nodes)} steps) for user {user.user_id}")
        return workflow

    async def list_workflows(self, user: UserContext) -> List[WorkflowGraph]:
        return await self.workflows.list_for_owner(user.user_id)

    async def get_workflow(self, user: UserContext, workflow_id: str) -> WorkflowGraph:
        return await self.workflows.get_owned(workflow_id, user.user_id)

    async def delete_workflow(self, user: UserContext, workflow_id: str) -> int:
        """删除工作流及其台账，返回删除的台账条数"""
        workflow = await self.workflows.get_owned(workflow_id, user.user_id)
        removed = await self.ledger.delete_for_workflow(workflow.id)
        await self.workflows.delete(workflow.id)
        logger.info(f"Deleted workflow {workflow.id} and {removed} ledger entries")
        return removed

    # 步骤

    async def get_steps(self, user: UserContext, workflow_id: str) -> WorkflowProgress:
        workflow = await self.workflows.get_owned(workflow_id, user.user_id)
        return await self.ledger.progress(user.user_id, workflow)

    async def get_plan(self, user: UserContext, workflow_id: str) -> ExecutionPlan:
        workflow = await self.workflows.get_owned(workflow_id, user.user_id)
        completed = await self.ledger.completed_set(user.user_id, workflow.id)
        return build_execution_plan(workflow, completed)

    async def get_step_context(self, user: UserContext, workflow_id: str, node_id: str) -> StepContext:
        workflow = await self.workflows.get_owned(workflow_id, user.user_id)
        if workflow.get_node(node_id) is None:
            raise StepNotFoundError(workflow.id, node_id)
        entries = await self.ledger.list_for_workflow(user.user_id, workflow.id)
        return build_step_context(workflow, node_id, entries)

    async def update_step(
        self,
        user: UserContext,
        workflow_id: str,
        node_id: str,
        result=UNSET,
        completed=UNSET
    ) -> StepLedgerEntry:
        """
        人工保存或审批步骤

        Raises:
            LedgerWriteError: 写入失败，审批没有生效
        """
        workflow = await self.workflows.get_owned(workflow_id, user.user_id)
        if workflow.get_node(node_id) is None:
            raise StepNotFoundError(workflow.id, node_id)
        return await self.ledger.upsert(user.user_id, workflow.id, node_id, result=result, completed=completed)


@dataclass
class EngineResources:
    """引擎及其需要在关闭时释放的资源"""
    engine: CopilotEngine
    db_manager: Any = None

    async def close(self):
        if self.db_manager is not None:
            await self.db_manager.close()


async def build_engine(settings: Settings, model_client: Optional[ModelClient] = None) -> EngineResources:
    """按配置组装引擎：设置了 DATABASE_URL 时使用 SQLAlchemy 仓库，否则使用内存仓库"""
    db_manager = None
    if settings.database_url:
        from ..storage.sqlalchemy_repository import (
            DatabaseManager, SQLAlchemyWorkflowRepository, SQLAlchemyStepResultRepository,
            SQLAlchemyUsageRepository, SQLAlchemySpendingLimitRepository, SQLAlchemyUserDirectory,
            SQLAlchemyScoreRepository
        )

        db_manager = DatabaseManager(settings.database_url)
        await db_manager.initialize()
        directory = SQLAlchemyUserDirectory(db_manager)
        for user_id in settings.admin_user_ids:
            await directory.set_admin(user_id)

        workflows = SQLAlchemyWorkflowRepository(db_manager)
        steps = SQLAlchemyStepResultRepository(db_manager)
        usage = SQLAlchemyUsageRepository(db_manager)
        limits = SQLAlchemySpendingLimitRepository(db_manager)
        scores = SQLAlchemyScoreRepository(db_manager)
        logger.info("Using SQLAlchemy repositories")
    else:
        directory = StaticUserDirectory(settings.admin_user_ids)
        workflows = InMemoryWorkflowRepository()
        steps = InMemoryStepResultRepository()
        usage = InMemoryUsageRepository()
        limits = InMemorySpendingLimitRepository()
        scores = InMemoryScoreRepository()
        logger.info("DATABASE_URL not set, using in-memory repositories")

    if model_client is None:
        if settings.openai_api_key:
            model_client = OpenAIModelClient(api_key=settings.openai_api_key, base_url=settings.openai_base_url)
        else:
            logger.warning("OPENAI_API_KEY not set, using the scripted model client")
            model_client = ScriptedModelClient()

    data_tools = InMemoryDataTools.from_file(Path(settings.data_source_path)) if settings.data_source_path else None

    engine = CopilotEngine(
        governor=UsageGovernor(
            usage, limits, directory,
            default_limit=settings.default_monthly_limit,
            default_model=settings.default_model,
        ),
        ledger=StepLedger(steps),
        workflows=workflows,
        scores=scores,
        model_client=model_client,
        data_tools=data_tools,
    )
    return EngineResources(engine=engine, db_manager=db_manager)
