"""
对话请求模型 - 入站请求在触达任何资源之前完成校验
"""
from typing import Optional, List
from enum import Enum
from pydantic import BaseModel, Field, model_validator, field_validator

from ..core.governor import DEFAULT_MODEL
from .model_client import Attachment, ChatMessage


MAX_MESSAGE_LENGTH = 50_000
MAX_ATTACHMENTS = 5
MAX_ATTACHMENT_DATA_LENGTH = 10_000_000
MAX_HISTORY_TURNS = 100


class HistoryRole(str, Enum):
    """历史消息角色"""
    USER = "user"
    ASSISTANT = "assistant"


class AttachmentModel(BaseModel):
    """附件（base64 编码）"""
    data: str = Field(..., min_length=1, max_length=MAX_ATTACHMENT_DATA_LENGTH, description="base64 数据")
    mime_type: str = Field(..., min_length=1, max_length=100, description="MIME 类型")
    name: Optional[str] = Field(None, max_length=255, description="文件名")

    def to_attachment(self) -> Attachment:
        return Attachment(data=self.data, mime_type=self.mime_type, name=self.name)


class HistoryMessage(BaseModel):
    """历史对话"""
    role: HistoryRole
    content: str = Field(..., max_length=MAX_MESSAGE_LENGTH)

    def to_message(self) -> ChatMessage:
        return ChatMessage(role=self.role.value, content=self.content)


class RunMode(BaseModel):
    """运行模式：按依赖顺序执行指定工作流"""
    workflow_id: str = Field(..., min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$")
    workflow_slug: Optional[str] = Field(None, min_length=1, max_length=200, pattern=r"^[a-z0-9-]+$")


class ChatRequest(BaseModel):
    """对话请求"""
    message: str = Field("", max_length=MAX_MESSAGE_LENGTH, description="用户消息")
    attachments: List[AttachmentModel] = Field(default_factory=list, max_length=MAX_ATTACHMENTS)
    model: str = Field(DEFAULT_MODEL, min_length=1, max_length=100, description="模型名称")
    session_id: Optional[str] = Field(None, max_length=100, description="会话ID")
    history: List[HistoryMessage] = Field(default_factory=list, max_length=MAX_HISTORY_TURNS)
    agent_id: str = Field("copilot", max_length=50, description="智能体ID")
    canvas_mode: bool = Field(False, description="画布模式")
    run_mode: Optional[RunMode] = Field(None, description="运行模式")

    @field_validator("agent_id")
    @classmethod
    def default_agent(cls, value: str) -> str:
        return value.strip() or "copilot"

    @model_validator(mode="after")
    def require_content(self) -> "ChatRequest":
        """消息和附件至少有一项"""
        if not self.message.strip() and not self.attachments:
            raise ValueError("Either message or attachments is required")
        return self

    def to_attachments(self) -> List[Attachment]:
        return [a.to_attachment() for a in self.attachments]

    def to_history(self) -> List[ChatMessage]:
        return [h.to_message() for h in self.history]
