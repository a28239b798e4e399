"""
对话 API 路由
"""
from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from typing import Dict, Any, List
import logging

from ..dependencies import get_engine, get_current_user, to_http_exception
from ...core.engine import CopilotEngine
from ...exceptions import AuditCopilotError
from ...integrations.dispatcher import AGENT_OPTIONS
from ...integrations.exceptions import AgentRuntimeError
from ...integrations.model_client import SUPPORTED_MODELS
from ...integrations.models import ChatRequest
from ...integrations.transport import NDJSON_MEDIA_TYPE
from ...models.usage import UserContext


logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/chat")
async def chat(
    request: ChatRequest,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> StreamingResponse:
    """
    发送消息，以 NDJSON 流式返回事件

    校验、角色解析和额度检查都在流开始之前完成，失败时返回普通的错误响应。
    """
    try:
        stream = await engine.start_chat(current_user, request)
    except (AuditCopilotError, AgentRuntimeError) as e:
        logger.info(f"Chat request of user {current_user.user_id} rejected: {e}")
        raise to_http_exception(e)

    return StreamingResponse(
        stream,
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )


@router.get("/agents")
async def list_agents() -> Dict[str, List[Dict[str, Any]]]:
    """可选智能体"""
    return {"agents": [option.to_dict() for option in AGENT_OPTIONS]}


@router.get("/models")
async def list_models(engine: CopilotEngine = Depends(get_engine)) -> Dict[str, Any]:
    """可选模型"""
    return {
        "default": engine.governor.default_model,
        "models": [{"id": model_id, "name": name} for model_id, name in SUPPORTED_MODELS.items()],
    }
