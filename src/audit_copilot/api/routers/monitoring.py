"""
监控 API 路由
"""
from fastapi import APIRouter
import logging

from ..models import HealthCheckResponse
from ..app import get_app_state
from ... import __version__


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check() -> HealthCheckResponse:
    """健康检查"""
    app_state = get_app_state()
    resources = app_state.get("resources")

    checks = {
        "engine": app_state.get("engine") is not None,
        "database": bool(resources and resources.db_manager and resources.db_manager.engine),
    }
    if resources and resources.db_manager is None:
        # 内存存储无需数据库
        checks["database"] = True

    return HealthCheckResponse(
        status="healthy" if all(checks.values()) else "unhealthy",
        version=__version__,
        checks=checks,
    )
