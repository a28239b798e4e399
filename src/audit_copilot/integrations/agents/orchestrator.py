"""
主控智能体
"""
from contextlib import aclosing
from typing import Dict, Any, List, AsyncIterator
import logging

from ...core.runner import WorkflowRunner, StepBatchResult, ReviewPolicy, defer_review
from ...models.events import StreamEvent
from ..agent import ModelAgent, DispatchContext
from ..exceptions import ToolExecutionError
from ..model_client import ChatMessage
from ..tools import LocalToolRegistry, ToolDefinition, ToolContext, WorkflowTools, WORKFLOW_ID_SCHEMA
from .judge import JudgeAgent
from .step_executor import make_step_drafter
from .sub_agents import DelegateTool


logger = logging.getLogger(__name__)


ORCHESTRATOR_INSTRUCTION = (
    "You are the audit copilot. You help the user plan and execute audit workflows. "
    "Use get_workflow_progress and get_execution_plan to see where the user stands, "
    "execute_steps to draft results for the next available steps (the user reviews every draft), "
    "delegate_to for data lookups and analysis, and submit_to_judge when the user wants their "
    "work evaluated. Never claim a step is completed until the user has approved it."
)

CANVAS_INSTRUCTION = (
    " The user is looking at the workflow canvas. Keep answers short and refer to steps by their labels."
)


class OrchestratorAgent(ModelAgent):
    """
    主控智能体

    运行模式下按依赖顺序执行整个工作流（不经过模型决定），
    否则进入工具循环。
    """

    agent_id = "copilot"

    def __init__(self, context: DispatchContext, review_policy: ReviewPolicy = defer_review):
        self.review_policy = review_policy
        super().__init__(context)

    def system_instruction(self) -> str:
        instruction = ORCHESTRATOR_INSTRUCTION
        if self.context.canvas_mode:
            instruction += CANVAS_INSTRUCTION
        return instruction

    def register_tools(self, registry: LocalToolRegistry):
        WorkflowTools(self.context.workflows, self.context.ledger).register(registry)
        DelegateTool(self.context).register(registry)

        registry.register_tool(ToolDefinition(
            name="execute_steps",
            description=(
                "Draft results for the given steps. Steps run in parallel; every draft goes to the "
                "user for review. Only steps whose upstream steps are completed can run."
            ),
            parameters_schema={
                "type": "object",
                "properties": {
                    "workflow_id": WORKFLOW_ID_SCHEMA,
                    "node_ids": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                },
                "required": ["node_ids"],
            },
        ), self.execute_steps)

        registry.register_tool(ToolDefinition(
            name="submit_to_judge",
            description="Ask the judge to evaluate and score the user's audit work on a workflow.",
            parameters_schema={
                "type": "object",
                "properties": {"workflow_id": WORKFLOW_ID_SCHEMA},
            },
        ), self.submit_to_judge)

    async def respond(self, messages: List[ChatMessage]) -> AsyncIterator[StreamEvent]:
        if self.context.run_mode is None:
            async for event in self.run_tool_loop(messages):
                yield event
            return

        async with aclosing(self.run_workflow()) as events:
            async for event in events:
                yield event

    async def run_workflow(self) -> AsyncIterator[StreamEvent]:
        """运行模式：执行所有可执行步骤，最后给出运行总结"""
        run_mode = self.context.run_mode
        user_id = self.context.user.user_id
        workflow = await self.context.workflows.get_owned(run_mode.workflow_id, user_id)

        runner = WorkflowRunner(self.context.ledger, make_step_drafter(self.context), self.review_policy)
        async with aclosing(runner.run(user_id, workflow)) as events:
            async for event in events:
                yield event

        summary = runner.summary
        logger.info(f"Run of workflow {workflow.id} for user {user_id}: {summary.outcome.value}")
        yield StreamEvent.text(summary.message)

    async def execute_steps(self, arguments: Dict[str, Any], context: ToolContext):
        workflow_id = arguments.get("workflow_id") or context.workflow_id
        if not workflow_id:
            raise ToolExecutionError("execute_steps", "No workflow_id given and no workflow is being run")
        workflow = await self.context.workflows.get_owned(workflow_id, context.user.user_id)

        runner = WorkflowRunner(self.context.ledger, make_step_drafter(self.context))
        batch = StepBatchResult()
        async for event in runner.execute_steps(context.user.user_id, workflow, arguments["node_ids"], batch):
            yield event
        yield batch.to_dict()

    async def submit_to_judge(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        workflow_id = arguments.get("workflow_id") or context.workflow_id
        if not workflow_id:
            raise ToolExecutionError("submit_to_judge", "No workflow_id given and no workflow is being run")
        workflow = await self.context.workflows.get_owned(workflow_id, context.user.user_id)

        judge = JudgeAgent(self.context)
        try:
            return await judge.evaluate(workflow.id)
        finally:
            await judge.close()
