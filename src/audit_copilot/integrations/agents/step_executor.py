"""
步骤执行智能体 - 只为一个工作流步骤生成交付物
"""
import logging

from ...core.runner import EventSink, StepDrafter
from ...models.step import StepContext
from ..agent import ModelAgent, DispatchContext
from ..tools import LocalToolRegistry
from .sub_agents import DelegateTool


logger = logging.getLogger(__name__)


class StepExecutor(ModelAgent):
    """
    步骤执行智能体

    没有工作流导航工具，只能委派给子智能体。发出的工具事件都带有步骤标签，
    模型输出的文本就是该步骤的草稿。
    """

    def __init__(self, context: DispatchContext, step: StepContext):
        self.step = step
        super().__init__(context)
        self.step_label = step.label

    @property
    def agent_id(self) -> str:
        return f"step:{self.step.node_id}"

    def register_tools(self, registry: LocalToolRegistry):
        DelegateTool(self.context, step_label=self.step.label).register(registry)

    def system_instruction(self) -> str:
        step = self.step
        if step.upstream_results:
            upstream = "\n\n".join(f"### {u.label}\n{u.result}" for u in step.upstream_results)
        else:
            upstream = "(No upstream results. This is a root step.)"

        parts = [
            "You execute exactly one audit workflow step and produce its deliverable.",
            f"## Step\n{step.label}",
        ]
        if step.description:
            parts.append(f"## Description\n{step.description}")
        parts.append(
            "## Instructions\n"
            + (step.instructions or "No specific instructions. Use the step label and upstream context.")
        )
        parts.append(f"## Upstream results\n{upstream}")
        parts.append(
            "Use delegate_to when the step needs audit data or calculations. "
            "Reply with the deliverable only, without preamble or next steps."
        )
        return "\n\n".join(parts)

    async def draft(self, sink: EventSink) -> str:
        """生成草稿，工具事件发往 sink"""
        logger.info(f"Drafting step {self.step.node_id} ({self.step.label})")
        return await self.complete(f"Execute the step \"{self.step.label}\" now.", sink)


def make_step_drafter(context: DispatchContext) -> StepDrafter:
    """为工作流运行器创建草稿生成函数，每个步骤使用独立的模型会话"""

    async def draft(step: StepContext, sink: EventSink) -> str:
        executor = StepExecutor(context, step)
        try:
            return await executor.draft(sink)
        finally:
            await executor.close()

    return draft
