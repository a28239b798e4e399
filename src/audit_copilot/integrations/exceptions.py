"""
智能体运行时异常定义
"""
from typing import Optional, Dict, Any


class AgentRuntimeError(Exception):
    """智能体运行时基础异常"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class UnknownAgentRoleError(AgentRuntimeError):
    """未知的智能体角色（包括未知角色人物）"""

    def __init__(self, agent_id: str):
        super().__init__(
            f"Unknown agent: {agent_id}",
            {"agent_id": agent_id}
        )


class ModelInvocationError(AgentRuntimeError):
    """上游模型调用失败"""

    def __init__(self, message: str, model: str, cause: Optional[Exception] = None):
        details = {"model": model}
        if cause:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details)


class ToolExecutionError(AgentRuntimeError):
    """工具执行异常"""

    def __init__(self, tool_name: str, message: str, validation_errors: Optional[list] = None):
        details = {"tool_name": tool_name}
        if validation_errors:
            details["validation_errors"] = validation_errors
        super().__init__(message, details)
