"""
工具注册表与工作流工具
"""
from typing import Dict, Any, Optional, List, Callable, AsyncIterator
from dataclasses import dataclass, field
import inspect
import logging
import time

from ..core.ledger import StepLedger
from ..core.runner import build_step_context
from ..core.scheduler import build_execution_plan
from ..models.usage import UserContext
from ..models.events import StreamEvent
from ..storage.repository import WorkflowRepository
from .exceptions import ToolExecutionError
from .model_client import ToolSpec
from .validators import SchemaValidator


logger = logging.getLogger(__name__)


@dataclass
class ToolContext:
    """工具调用上下文"""
    user: UserContext
    session_id: Optional[str] = None
    workflow_id: Optional[str] = None  # 运行模式下的当前工作流


@dataclass
class ToolDefinition:
    """工具定义"""
    name: str
    description: str
    parameters_schema: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, parameters=self.parameters_schema)


class LocalToolRegistry:
    """
    本地工具注册表

    处理器签名为 handler(arguments, context)，可以是普通函数、协程函数，
    或异步生成器（产出 StreamEvent 转发给调用方，最后产出的非事件值为结果）。
    """

    def __init__(self):
        self.tools: Dict[str, ToolDefinition] = {}
        self.handlers: Dict[str, Callable] = {}
        self.validator = SchemaValidator()

    def register_tool(self, tool_def: ToolDefinition, handler: Callable):
        """注册工具"""
        if not callable(handler):
            raise ValueError(f"Handler for tool {tool_def.name} must be callable")

        self.tools[tool_def.name] = tool_def
        self.handlers[tool_def.name] = handler
        logger.debug(f"Registered tool: {tool_def.name}")

    def specs(self, exclude: Optional[set] = None) -> List[ToolSpec]:
        """提供给模型的工具声明"""
        exclude = exclude or set()
        return [tool.to_spec() for name, tool in self.tools.items() if name not in exclude]

    def validate_parameters(self, name: str, parameters: Dict[str, Any]) -> List[str]:
        """验证参数"""
        tool_def = self.tools.get(name)
        if not tool_def:
            return [f"Tool not found: {name}"]
        return self.validator.validate(parameters, tool_def.parameters_schema)

    async def run(self, name: str, parameters: Dict[str, Any], context: ToolContext) -> AsyncIterator[Any]:
        """
        调用工具

        Raises:
            ToolExecutionError: 工具不存在或参数不合法
        """
        handler = self.handlers.get(name)
        if handler is None:
            raise ToolExecutionError(name, f"Unknown tool: {name}")

        errors = self.validate_parameters(name, parameters)
        if errors:
            raise ToolExecutionError(name, f"Invalid parameters for tool {name}: {errors}", errors)

        start_time = time.monotonic()
        if inspect.isasyncgenfunction(handler):
            async for item in handler(parameters, context):
                yield item
        elif inspect.iscoroutinefunction(handler):
            yield await handler(parameters, context)
        else:
            yield handler(parameters, context)

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(f"Tool {name} invoked successfully in {duration_ms:.2f}ms")

    async def invoke(self, name: str, parameters: Dict[str, Any], context: ToolContext) -> Any:
        """调用工具并只返回结果（忽略流式事件）"""
        result = None
        async for item in self.run(name, parameters, context):
            if not isinstance(item, StreamEvent):
                result = item
        return result


WORKFLOW_ID_SCHEMA = {
    "type": "string",
    "description": "Workflow id or slug. Defaults to the workflow being run.",
}


class WorkflowTools:
    """工作流相关工具（仅限所有者访问）"""

    def __init__(self, workflows: WorkflowRepository, ledger: StepLedger):
        self.workflows = workflows
        self.ledger = ledger

    def register(self, registry: LocalToolRegistry, read_only: bool = False):
        """注册到工具注册表，read_only 时不提供 save_step_result"""
        registry.register_tool(ToolDefinition(
            name="get_workflow_progress",
            description="Get completion progress, the execution order and the steps available next.",
            parameters_schema={
                "type": "object",
                "properties": {"workflow_id": WORKFLOW_ID_SCHEMA},
            },
        ), self.get_workflow_progress)

        registry.register_tool(ToolDefinition(
            name="get_execution_plan",
            description="Get the execution plan with parallel groups, dependencies and unreachable steps.",
            parameters_schema={
                "type": "object",
                "properties": {"workflow_id": WORKFLOW_ID_SCHEMA},
            },
        ), self.get_execution_plan)

        registry.register_tool(ToolDefinition(
            name="get_step_context",
            description="Get a step's instructions together with the results of its upstream steps.",
            parameters_schema={
                "type": "object",
                "properties": {
                    "workflow_id": WORKFLOW_ID_SCHEMA,
                    "node_id": {"type": "string"},
                },
                "required": ["node_id"],
            },
        ), self.get_step_context)

        if read_only:
            return

        registry.register_tool(ToolDefinition(
            name="save_step_result",
            description=(
                "Propose a result for a step. The result is shown to the user for review "
                "and is only saved once they approve it."
            ),
            parameters_schema={
                "type": "object",
                "properties": {
                    "workflow_id": WORKFLOW_ID_SCHEMA,
                    "node_id": {"type": "string"},
                    "result": {"type": "string", "minLength": 1},
                },
                "required": ["node_id", "result"],
            },
        ), self.save_step_result)

    async def _load(self, arguments: Dict[str, Any], context: ToolContext):
        workflow_id = arguments.get("workflow_id") or context.workflow_id
        if not workflow_id:
            raise ToolExecutionError("workflow", "No workflow_id given and no workflow is being run")
        return await self.workflows.get_owned(workflow_id, context.user.user_id)

    async def get_workflow_progress(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        workflow = await self._load(arguments, context)
        completed = await self.ledger.completed_set(context.user.user_id, workflow.id)
        plan = build_execution_plan(workflow, completed)
        progress = await self.ledger.progress(context.user.user_id, workflow)

        data = plan.to_dict()
        data["steps"] = [
            {
                "node_id": step.node_id,
                "label": step.label,
                "completed": step.completed,
                "result": next((e.result for e in progress.entries if e.node_id == step.node_id), None),
            }
            for step in plan.steps
        ]
        data["edges"] = [{"source": e.source, "target": e.target} for e in workflow.valid_edges()]
        data.pop("unreachable", None)
        data.pop("warning", None)
        return data

    async def get_execution_plan(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        workflow = await self._load(arguments, context)
        completed = await self.ledger.completed_set(context.user.user_id, workflow.id)
        return build_execution_plan(workflow, completed).to_dict()

    async def get_step_context(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        workflow = await self._load(arguments, context)
        node_id = arguments["node_id"]
        if workflow.get_node(node_id) is None:
            raise ToolExecutionError("get_step_context", f"Step not found: {node_id}")

        entries = await self.ledger.list_for_workflow(context.user.user_id, workflow.id)
        return build_step_context(workflow, node_id, entries).to_dict()

    async def save_step_result(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        """只生成待审批的结果，不写台账"""
        workflow = await self._load(arguments, context)
        node = workflow.get_node(arguments["node_id"])
        if node is None:
            raise ToolExecutionError("save_step_result", f"Step not found: {arguments['node_id']}")

        return {
            "pending_review": True,
            "workflow_id": workflow.id,
            "node_id": node.id,
            "label": node.label,
            "result": arguments["result"],
            "message": "Result proposed. The user must approve it before it is saved.",
        }
