"""
智能体核心类 - 所有智能体变体共享的流式契约与工具循环
"""
from typing import Dict, Any, Optional, List, Set, AsyncIterator, TYPE_CHECKING
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import aclosing
from dataclasses import dataclass, replace
import asyncio
import json
import logging

from ..core.governor import UsageGovernor
from ..core.ledger import StepLedger
from ..models.events import StreamEvent, StreamEventType, ToolCall, ToolCallStatus
from ..models.usage import UserContext, ModelUsage
from ..storage.repository import WorkflowRepository, ScoreRepository
from .exceptions import AgentRuntimeError
from .model_client import ModelClient, ModelSession, ChatMessage, Attachment, ToolInvocation
from .tools import LocalToolRegistry, ToolContext

if TYPE_CHECKING:
    from .agents.sub_agents import DataTools


logger = logging.getLogger(__name__)


@dataclass
class RunTarget:
    """运行模式下要执行的工作流"""
    workflow_id: str
    workflow_slug: Optional[str] = None


@dataclass
class DispatchContext:
    """
    智能体运行所需的全部协作者，显式传入

    每个请求构造一次，不存在全局的“当前会话”。
    """
    user: UserContext
    model: str
    model_client: ModelClient
    governor: UsageGovernor
    ledger: StepLedger
    workflows: WorkflowRepository
    scores: ScoreRepository
    session_id: Optional[str] = None
    canvas_mode: bool = False
    run_mode: Optional[RunTarget] = None
    data_tools: Optional["DataTools"] = None


class StreamingAgent(ABC):
    """流式智能体接口"""

    agent_id: str = "agent"

    @abstractmethod
    def stream_message(
        self,
        message: str,
        attachments: Optional[List[Attachment]] = None,
        history: Optional[List[ChatMessage]] = None
    ) -> AsyncIterator[StreamEvent]:
        """处理一条消息，产出以 done 结束的事件序列"""
        pass

    @abstractmethod
    async def close(self):
        """释放模型会话，可重复调用"""
        pass


class ModelAgent(StreamingAgent):
    """
    基于托管模型的智能体

    一轮对话：调用模型 → 转发文本/代码/图片 → 执行模型请求的工具 →
    把工具结果交回模型，直到模型不再请求工具。
    """

    max_turns = 8
    max_tool_failures = 3

    def __init__(self, context: DispatchContext):
        self.context = context
        self.registry = LocalToolRegistry()
        self.register_tools(self.registry)
        self.disabled_tools: Set[str] = set()
        self.tool_failures: Dict[str, int] = defaultdict(int)
        self.step_label: Optional[str] = None
        self._session: Optional[ModelSession] = None
        self._usage_tasks: Set[asyncio.Task] = set()
        self._closed = False

    @abstractmethod
    def system_instruction(self) -> str:
        """系统提示词"""
        pass

    def register_tools(self, registry: LocalToolRegistry):
        """注册智能体可用的工具"""
        pass

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def session(self) -> ModelSession:
        """首次使用时打开模型会话"""
        if self._closed:
            raise AgentRuntimeError(f"Agent {self.agent_id} is closed")
        if self._session is None:
            self._session = self.context.model_client.open_session(
                self.context.model,
                self.system_instruction(),
                self.registry.specs(exclude=self.disabled_tools),
            )
        return self._session

    @property
    def tool_context(self) -> ToolContext:
        run_mode = self.context.run_mode
        return ToolContext(
            user=self.context.user,
            session_id=self.context.session_id,
            workflow_id=run_mode.workflow_id if run_mode else None,
        )

    async def stream_message(
        self,
        message: str,
        attachments: Optional[List[Attachment]] = None,
        history: Optional[List[ChatMessage]] = None
    ) -> AsyncIterator[StreamEvent]:
        """处理消息，模型与工具的错误转成 error 事件，最后总是 done"""
        messages = list(history or [])
        messages.append(ChatMessage(role="user", content=message, attachments=list(attachments or [])))

        try:
            async with aclosing(self.respond(messages)) as events:
                async for event in events:
                    yield event
        except AgentRuntimeError as e:
            logger.error(f"Agent {self.agent_id} failed: {e.message}", exc_info=True)
            yield StreamEvent.failure(e.message)
        except Exception as e:
            logger.error(f"Agent {self.agent_id} failed: {e}", exc_info=True)
            yield StreamEvent.failure(f"Agent failed: {e}")

        yield StreamEvent.done()

    async def respond(self, messages: List[ChatMessage]) -> AsyncIterator[StreamEvent]:
        """默认行为：工具循环"""
        async for event in self.run_tool_loop(messages):
            yield event

    async def run_tool_loop(self, messages: List[ChatMessage]) -> AsyncIterator[StreamEvent]:
        """运行模型与工具的交替循环，messages 会被追加"""
        for _ in range(self.max_turns):
            text_parts: List[str] = []
            invocations: List[ToolInvocation] = []

            async for chunk in self.session.generate(messages):
                if chunk.text:
                    text_parts.append(chunk.text)
                    yield StreamEvent.text(chunk.text)
                if chunk.code:
                    yield StreamEvent.code(chunk.code)
                if chunk.code_output is not None:
                    yield StreamEvent.code_result(chunk.code_output)
                if chunk.image:
                    yield StreamEvent.image_data(chunk.image["data"], chunk.image["mime_type"])
                if chunk.tool_calls:
                    invocations.extend(chunk.tool_calls)
                if chunk.usage:
                    self.track_usage(chunk.usage)

            messages.append(ChatMessage(
                role="assistant",
                content="".join(text_parts),
                tool_calls=invocations,
            ))
            if not invocations:
                return

            for invocation in invocations:
                async for event in self.call_tool(invocation, messages):
                    yield event

        logger.warning(f"Agent {self.agent_id} reached the limit of {self.max_turns} model turns")
        yield StreamEvent.failure("Stopped after reaching the maximum number of tool rounds")

    async def call_tool(self, invocation: ToolInvocation, messages: List[ChatMessage]) -> AsyncIterator[StreamEvent]:
        """执行一次工具调用，结果追加到 messages"""
        call = ToolCall(
            id=invocation.id,
            name=invocation.name,
            arguments=invocation.arguments,
            status=ToolCallStatus.RUNNING,
            step_label=self.step_label,
        )
        yield StreamEvent.tool_call_started(call)

        status = ToolCallStatus.COMPLETED
        result: Any = None
        if invocation.name in self.disabled_tools:
            status = ToolCallStatus.ERROR
            result = {"error": f"Tool {invocation.name} is no longer available. Continue without it."}
        else:
            try:
                async for item in self.registry.run(invocation.name, invocation.arguments, self.tool_context):
                    if isinstance(item, StreamEvent):
                        yield item
                    else:
                        result = item
                self.tool_failures[invocation.name] = 0
            except Exception as e:
                status = ToolCallStatus.ERROR
                result = {"error": self._record_tool_failure(invocation.name, e)}

        yield StreamEvent.tool_result(replace(call, status=status, result=result))
        messages.append(ChatMessage(
            role="tool",
            content=json.dumps(result, ensure_ascii=False, default=str),
            tool_call_id=invocation.id,
        ))

    def _record_tool_failure(self, name: str, error: Exception) -> str:
        """记录工具失败，连续失败达到上限后不再提供该工具"""
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        self.tool_failures[name] += 1
        failures = self.tool_failures[name]
        logger.warning(f"Tool {name} failed ({failures} in a row) for agent {self.agent_id}: {message}")

        if failures >= self.max_tool_failures and name in self.registry.tools:
            self.disabled_tools.add(name)
            self.session.set_tools(self.registry.specs(exclude=self.disabled_tools))
            message += (
                f" Tool {name} has failed {failures} times in a row and is no longer available."
                " Continue without it."
            )
        return message

    def track_usage(self, usage: ModelUsage):
        """在后台记录一次模型调用的用量，不阻塞事件流；close() 等待写入完成"""
        task = asyncio.create_task(self.context.governor.track_usage(
            self.context.user,
            self.context.model,
            usage,
            session_id=self.context.session_id,
        ))
        self._usage_tasks.add(task)
        task.add_done_callback(self._usage_tasks.discard)

    async def flush_usage(self):
        """等待尚未完成的用量写入"""
        if self._usage_tasks:
            await asyncio.gather(*self._usage_tasks, return_exceptions=True)

    async def complete(self, prompt: str, sink=None) -> str:
        """
        运行一个独立任务并返回模型的全部文本

        Args:
            prompt: 任务描述
            sink: 可选的事件出口，接收文本以外的事件

        Raises:
            AgentRuntimeError: 模型调用失败或轮数用尽
        """
        text_parts: List[str] = []
        async for event in self.run_tool_loop([ChatMessage(role="user", content=prompt)]):
            if event.type == StreamEventType.TEXT:
                text_parts.append(event.content)
            elif event.type == StreamEventType.ERROR:
                raise AgentRuntimeError(event.error, {"agent_id": self.agent_id})
            elif sink is not None:
                await sink(event)
        return "".join(text_parts).strip()

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            if self._session is not None:
                await self._session.aclose()
        finally:
            await self.flush_usage()
        logger.debug(f"Agent {self.agent_id} closed")
