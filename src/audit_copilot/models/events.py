"""
流式事件模型
"""
import json
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from enum import Enum
from uuid import uuid4

from .step import StepStatus


class StreamEventType(Enum):
    """流式事件类型"""
    TEXT = "text"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"
    CODE_EXECUTION = "code_execution"
    CODE_RESULT = "code_result"
    IMAGE = "image"
    STEP_STATUS = "step_status"
    ERROR = "error"
    DONE = "done"


class ToolCallStatus(Enum):
    """工具调用状态"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class ToolCall:
    """工具调用"""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Optional[Any] = None
    step_label: Optional[str] = None  # 步骤执行器发出的调用带有步骤标签

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "status": self.status.value,
        }
        if self.result is not None:
            data["result"] = self.result
        if self.step_label:
            data["step_label"] = self.step_label
        return data


@dataclass
class CodeExecution:
    """代码执行片段"""
    code: str
    language: str = "python"
    output: Optional[str] = None
    status: str = "running"

    def to_dict(self) -> Dict[str, Any]:
        data = {"code": self.code, "language": self.language, "status": self.status}
        if self.output is not None:
            data["output"] = self.output
        return data


# step_status 允许的状态，pending 是隐式初始状态，不会出现在事件中
STEP_EVENT_STATUSES = (
    StepStatus.EXECUTING,
    StepStatus.REVIEW,
    StepStatus.COMPLETED,
    StepStatus.ERROR,
)


@dataclass(frozen=True)
class StreamEvent:
    """流式事件（带标签的变体，只有与 type 对应的载荷字段有值）"""
    type: StreamEventType
    content: Optional[str] = None
    tool_call: Optional[ToolCall] = None
    code_execution: Optional[CodeExecution] = None
    image: Optional[Dict[str, str]] = None
    step_status: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @classmethod
    def text(cls, content: str) -> "StreamEvent":
        return cls(type=StreamEventType.TEXT, content=content)

    @classmethod
    def tool_call_started(cls, call: ToolCall) -> "StreamEvent":
        return cls(type=StreamEventType.TOOL_CALL, tool_call=call)

    @classmethod
    def tool_result(cls, call: ToolCall) -> "StreamEvent":
        return cls(type=StreamEventType.TOOL_RESULT, tool_call=call)

    @classmethod
    def code(cls, code: str, language: str = "python") -> "StreamEvent":
        return cls(
            type=StreamEventType.CODE_EXECUTION,
            code_execution=CodeExecution(code=code, language=language),
        )

    @classmethod
    def code_result(cls, output: str, status: str = "completed") -> "StreamEvent":
        return cls(
            type=StreamEventType.CODE_RESULT,
            code_execution=CodeExecution(code="", output=output, status=status),
        )

    @classmethod
    def image_data(cls, data: str, mime_type: str) -> "StreamEvent":
        return cls(type=StreamEventType.IMAGE, image={"data": data, "mime_type": mime_type})

    @classmethod
    def step(cls, node_id: str, status: StepStatus, result: Optional[str] = None) -> "StreamEvent":
        """步骤状态事件，只有 review 状态携带草稿结果"""
        if status not in STEP_EVENT_STATUSES:
            raise ValueError(f"Status '{status.value}' cannot be emitted as a step event")
        if status == StepStatus.REVIEW and result is None:
            raise ValueError("A review event must carry the draft result")
        if status != StepStatus.REVIEW and result is not None:
            raise ValueError("Only review events carry a result")

        payload: Dict[str, Any] = {"node_id": node_id, "status": status.value}
        if result is not None:
            payload["result"] = result
        return cls(type=StreamEventType.STEP_STATUS, step_status=payload)

    @classmethod
    def failure(cls, message: str) -> "StreamEvent":
        return cls(type=StreamEventType.ERROR, error=message)

    @classmethod
    def done(cls) -> "StreamEvent":
        return cls(type=StreamEventType.DONE)

    @property
    def is_done(self) -> bool:
        return self.type == StreamEventType.DONE

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        data: Dict[str, Any] = {"type": self.type.value}
        if self.content is not None:
            data["content"] = self.content
        if self.tool_call is not None:
            data["tool_call"] = self.tool_call.to_dict()
        if self.code_execution is not None:
            data["code_execution"] = self.code_execution.to_dict()
        if self.image is not None:
            data["image"] = dict(self.image)
        if self.step_status is not None:
            data["step_status"] = dict(self.step_status)
        if self.error is not None:
            data["error"] = self.error
        return data

    def to_ndjson(self) -> str:
        """编码为一行 JSON"""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str) + "\n"
