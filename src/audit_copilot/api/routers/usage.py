"""
用量 API 路由
"""
from fastapi import APIRouter, Depends

from ..models import SpendCheckResponse
from ..dependencies import get_engine, get_current_user
from ...core.engine import CopilotEngine
from ...models.usage import UserContext


router = APIRouter()


@router.get("/me", response_model=SpendCheckResponse)
async def get_my_usage(
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> SpendCheckResponse:
    """当前用户本月花费与额度"""
    check = await engine.check_usage(current_user)
    return SpendCheckResponse(**check.to_dict())
