"""
FastAPI 依赖注入
"""
from fastapi import HTTPException, Request, status
from typing import Dict, Any
import logging

from .app import get_app_state
from ..core.engine import CopilotEngine
from ..exceptions import (
    AuditCopilotError, WorkflowNotFoundError, StepNotFoundError, InvalidRequestError,
    WorkflowParseError, WorkflowValidationError, LedgerWriteError,
    SpendLimitExceededError, AdminRequiredError
)
from ..integrations.exceptions import AgentRuntimeError, UnknownAgentRoleError
from ..models.usage import UserContext


logger = logging.getLogger(__name__)


def get_engine() -> CopilotEngine:
    """获取引擎实例"""
    app_state = get_app_state()
    engine = app_state.get("engine")

    if not engine:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "service_unavailable",
                "message": "Copilot engine not initialized"
            }
        )

    return engine


def get_current_user(request: Request) -> UserContext:
    """获取当前用户（由认证中间件设置）"""
    user = getattr(request.state, "user", None)
    if not isinstance(user, UserContext):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "unauthorized",
                "message": "Authentication required"
            }
        )
    return user


# 领域异常到 HTTP 状态码
_STATUS_BY_ERROR = [
    (WorkflowNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (StepNotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (WorkflowParseError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (WorkflowValidationError, status.HTTP_400_BAD_REQUEST, "validation_error"),
    (UnknownAgentRoleError, status.HTTP_400_BAD_REQUEST, "unknown_agent"),
    (SpendLimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS, "spend_limit_exceeded"),
    (AdminRequiredError, status.HTTP_403_FORBIDDEN, "forbidden"),
    (LedgerWriteError, status.HTTP_503_SERVICE_UNAVAILABLE, "ledger_write_failed"),
]


def to_http_exception(error: Exception) -> HTTPException:
    """把领域异常转换为 HTTPException"""
    for error_type, status_code, code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            detail: Dict[str, Any] = {"error": code, "message": str(error)}
            if isinstance(error, AgentRuntimeError):
                detail["details"] = error.details
            if isinstance(error, InvalidRequestError) and error.field:
                detail["field"] = error.field
            return HTTPException(status_code=status_code, detail=detail)

    if isinstance(error, (AuditCopilotError, AgentRuntimeError)):
        logger.error(f"Unmapped domain error: {error}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "internal_error",
            "message": "An unexpected error occurred"
        }
    )
