"""
管理员 API 路由

额度设置与用量报表，非管理员调用返回 403。
"""
from fastapi import APIRouter, Depends, Query
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from decimal import Decimal
import logging

from ..models import SpendingLimitRequest
from ..dependencies import get_engine, get_current_user, to_http_exception
from ...core.engine import CopilotEngine
from ...core.governor import month_start
from ...exceptions import AuditCopilotError
from ...models.usage import UserContext


logger = logging.getLogger(__name__)
router = APIRouter()


def _period(engine: CopilotEngine, start: Optional[datetime], end: Optional[datetime]):
    """默认统计当前自然月"""
    now = engine.governor.clock()
    start = start or month_start(now)
    end = end or now
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return start, end


@router.get("/limits")
async def list_limits(
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """列出全部用户额度"""
    try:
        limits = await engine.governor.get_all_limits(current_user)
    except AuditCopilotError as e:
        raise to_http_exception(e)
    return {
        "default_limit": float(engine.governor.default_limit),
        "limits": [limit.to_dict() for limit in limits],
    }


@router.put("/limits/{user_id}")
async def set_limit(
    user_id: str,
    request: SpendingLimitRequest,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """设置用户月度额度"""
    try:
        limit = await engine.governor.set_limit(
            current_user, user_id, request.monthly_limit, request.user_email
        )
    except AuditCopilotError as e:
        raise to_http_exception(e)
    return limit.to_dict()


@router.get("/usage")
async def usage_report(
    start: Optional[datetime] = Query(None, description="起始时间，默认本月初"),
    end: Optional[datetime] = Query(None, description="结束时间，默认当前"),
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """按用户汇总的用量报表"""
    start, end = _period(engine, start, end)
    try:
        summaries = await engine.governor.usage_by_user(current_user, start, end)
    except AuditCopilotError as e:
        raise to_http_exception(e)

    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "total_cost": float(sum((s.total_cost for s in summaries), Decimal("0"))),
        "users": [s.to_dict() for s in summaries],
    }


@router.get("/usage/{user_id}")
async def user_usage(
    user_id: str,
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    limit: int = Query(500, ge=1, le=5000),
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """单个用户的用量明细"""
    start, end = _period(engine, start, end)
    try:
        detail = await engine.governor.user_detail(current_user, user_id, start, end, limit=limit)
    except AuditCopilotError as e:
        raise to_http_exception(e)

    return {
        "user_id": detail.user_id,
        "summary": detail.summary.to_dict() if detail.summary else None,
        "records": [record.to_dict() for record in detail.records],
    }
