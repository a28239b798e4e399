"""
托管模型集成 - 对外只暴露“给定上下文，流式返回内容与用量”
"""
from typing import Dict, Any, Optional, List, AsyncIterator, Callable, Union
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from uuid import uuid4
import asyncio
import json
import logging

from openai import AsyncOpenAI

from ..core.governor import MODEL_PRICING
from ..models.usage import ModelUsage
from .exceptions import ModelInvocationError


logger = logging.getLogger(__name__)


SUPPORTED_MODELS: Dict[str, str] = {
    "gpt-4o-mini": "GPT-4o mini",
    "gpt-4.1-mini": "GPT-4.1 mini",
    "gpt-4.1": "GPT-4.1",
    "gpt-4o": "GPT-4o",
}


def is_valid_model(model: str) -> bool:
    """是否为支持的模型"""
    return model in SUPPORTED_MODELS and model in MODEL_PRICING


@dataclass
class ToolSpec:
    """提供给模型的工具声明"""
    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


@dataclass
class ToolInvocation:
    """模型发起的工具调用"""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid4().hex[:12]}")


@dataclass
class Attachment:
    """用户上传的附件（base64）"""
    data: str
    mime_type: str
    name: Optional[str] = None


@dataclass
class ChatMessage:
    """对话消息"""
    role: str  # user / assistant / tool
    content: str = ""
    attachments: List[Attachment] = field(default_factory=list)
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    tool_call_id: Optional[str] = None


@dataclass
class ModelChunk:
    """模型输出片段，最后一个片段携带工具调用与用量"""
    text: Optional[str] = None
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    code: Optional[str] = None
    code_output: Optional[str] = None
    image: Optional[Dict[str, str]] = None
    usage: Optional[ModelUsage] = None


class ModelSession(ABC):
    """一个智能体实例持有的模型会话"""

    def __init__(self, model: str, system_instruction: str, tools: List[ToolSpec]):
        self.model = model
        self.system_instruction = system_instruction
        self.tools = list(tools)
        self.closed = False

    def set_tools(self, tools: List[ToolSpec]):
        """更新可用工具（连续失败的工具会被移除）"""
        self.tools = list(tools)

    @abstractmethod
    def generate(self, messages: List[ChatMessage]) -> AsyncIterator[ModelChunk]:
        """生成一轮响应"""
        pass

    async def aclose(self):
        """释放会话资源"""
        self.closed = True


class ModelClient(ABC):
    """模型客户端接口"""

    @abstractmethod
    def open_session(
        self,
        model: str,
        system_instruction: str,
        tools: Optional[List[ToolSpec]] = None
    ) -> ModelSession:
        """打开模型会话"""
        pass


class OpenAIModelSession(ModelSession):
    """基于 OpenAI Chat Completions 流式接口的会话"""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        system_instruction: str,
        tools: List[ToolSpec],
        temperature: float = 0.2
    ):
        super().__init__(model, system_instruction, tools)
        self.client = client
        self.temperature = temperature

    async def generate(self, messages: List[ChatMessage]) -> AsyncIterator[ModelChunk]:
        """调用 OpenAI API 并转换为 ModelChunk"""
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": self._build_messages(messages),
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if self.tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in self.tools
            ]

        try:
            stream = await self.client.chat.completions.create(**params)

            tool_parts: Dict[int, Dict[str, str]] = {}
            usage = None
            async for chunk in stream:
                if chunk.usage:
                    usage = ModelUsage(
                        prompt_tokens=chunk.usage.prompt_tokens,
                        output_tokens=chunk.usage.completion_tokens,
                        total_tokens=chunk.usage.total_tokens,
                    )
                if not chunk.choices:
                    continue

                delta = chunk.choices[0].delta
                if delta.content:
                    yield ModelChunk(text=delta.content)

                # 工具调用参数分多个片段到达，按 index 拼接
                for tool_call in delta.tool_calls or []:
                    part = tool_parts.setdefault(tool_call.index, {"id": "", "name": "", "arguments": ""})
                    if tool_call.id:
                        part["id"] = tool_call.id
                    if tool_call.function:
                        part["name"] += tool_call.function.name or ""
                        part["arguments"] += tool_call.function.arguments or ""

        except Exception as e:
            logger.error(f"OpenAI API call failed: {str(e)}", exc_info=True)
            raise ModelInvocationError(f"LLM call failed: {str(e)}", self.model, e)

        invocations = []
        for _, part in sorted(tool_parts.items()):
            invocation = ToolInvocation(name=part["name"], arguments=_parse_arguments(part["arguments"]))
            if part["id"]:
                invocation.id = part["id"]
            invocations.append(invocation)

        yield ModelChunk(tool_calls=invocations, usage=usage)

    def _build_messages(self, messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        """转换为 OpenAI 消息格式"""
        result: List[Dict[str, Any]] = [{"role": "system", "content": self.system_instruction}]

        for message in messages:
            if message.role == "tool":
                result.append({
                    "role": "tool",
                    "tool_call_id": message.tool_call_id,
                    "content": message.content,
                })
            elif message.role == "assistant":
                item: Dict[str, Any] = {"role": "assistant", "content": message.content or None}
                if message.tool_calls:
                    item["tool_calls"] = [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
                        }
                        for call in message.tool_calls
                    ]
                result.append(item)
            elif message.attachments:
                parts: List[Dict[str, Any]] = []
                if message.content:
                    parts.append({"type": "text", "text": message.content})
                for attachment in message.attachments:
                    data_url = f"data:{attachment.mime_type};base64,{attachment.data}"
                    if attachment.mime_type.startswith("image/"):
                        parts.append({"type": "image_url", "image_url": {"url": data_url}})
                    else:
                        parts.append({
                            "type": "file",
                            "file": {"filename": attachment.name or "attachment", "file_data": data_url},
                        })
                result.append({"role": "user", "content": parts})
            else:
                result.append({"role": "user", "content": message.content})

        return result

    async def aclose(self):
        if not self.closed:
            await self.client.close()
        await super().aclose()


class OpenAIModelClient(ModelClient):
    """OpenAI 模型客户端，每个会话持有独立的 HTTP 客户端"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
        temperature: float = 0.2
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.organization = organization
        self.temperature = temperature

    def open_session(
        self,
        model: str,
        system_instruction: str,
        tools: Optional[List[ToolSpec]] = None
    ) -> ModelSession:
        client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            organization=self.organization
        )
        return OpenAIModelSession(client, model, system_instruction, tools or [], self.temperature)


ScriptedTurn = Union[List[ModelChunk], Exception]
Responder = Callable[["ScriptedModelSession", List[ChatMessage]], ScriptedTurn]


class ScriptedModelSession(ModelSession):
    """回放预设响应的会话"""

    def __init__(self, client: "ScriptedModelClient", model: str, system_instruction: str, tools: List[ToolSpec]):
        super().__init__(model, system_instruction, tools)
        self.client = client

    async def generate(self, messages: List[ChatMessage]) -> AsyncIterator[ModelChunk]:
        self.client.calls.append(list(messages))
        turn = self.client.next_turn(self, messages)

        if self.client.delay:
            await asyncio.sleep(self.client.delay)
        if isinstance(turn, Exception):
            raise ModelInvocationError(f"LLM call failed: {turn}", self.model, turn)

        for chunk in turn:
            yield chunk

    async def aclose(self):
        if not self.closed:
            self.client.closed_sessions += 1
        await super().aclose()


class ScriptedModelClient(ModelClient):
    """
    模拟模型客户端（用于测试与离线运行）

    responses 按调用顺序依次回放；提供 responder 时由它根据消息决定响应。
    两者都用尽时返回 default_reply。
    """

    def __init__(
        self,
        responses: Optional[List[ScriptedTurn]] = None,
        responder: Optional[Responder] = None,
        default_reply: str = "Done.",
        usage: Optional[ModelUsage] = None,
        delay: float = 0.0
    ):
        self.responses = list(responses or [])
        self.responder = responder
        self.default_reply = default_reply
        self.usage = usage or ModelUsage(prompt_tokens=100, output_tokens=50)
        self.delay = delay
        self.calls: List[List[ChatMessage]] = []
        self.sessions: List[ScriptedModelSession] = []
        self.closed_sessions = 0

    def open_session(
        self,
        model: str,
        system_instruction: str,
        tools: Optional[List[ToolSpec]] = None
    ) -> ModelSession:
        session = ScriptedModelSession(self, model, system_instruction, tools or [])
        self.sessions.append(session)
        return session

    def next_turn(self, session: ScriptedModelSession, messages: List[ChatMessage]) -> ScriptedTurn:
        if self.responder is not None:
            return self.responder(session, messages)
        if self.responses:
            return self.responses.pop(0)
        return [ModelChunk(text=self.default_reply, usage=self.usage)]


def _parse_arguments(raw: str) -> Dict[str, Any]:
    """解析工具参数 JSON，失败时保留原文"""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Model returned malformed tool arguments: {raw[:200]}")
        return {"_raw": raw}
    return value if isinstance(value, dict) else {"value": value}
