"""
FastAPI 应用主文件
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from typing import Dict, Any, Optional

from ..config import Settings
from ..integrations.model_client import ModelClient


logger = logging.getLogger(__name__)


# 全局实例
app_state: Dict[str, Any] = {}


def create_app(settings: Optional[Settings] = None, model_client: Optional[ModelClient] = None) -> FastAPI:
    """
    创建应用

    Args:
        settings: 配置，默认在启动时从环境变量读取
        model_client: 模型客户端，默认按配置创建
    """
    from ..core.engine import build_engine
    from .middleware import RequestLoggingMiddleware, AuthenticationMiddleware
    from .models import ErrorResponse
    from .routers import copilot, steps, usage, admin, monitoring

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        logger.info("Starting Audit Copilot API...")

        app_settings = settings or Settings.from_env()
        resources = await build_engine(app_settings, model_client)

        app_state.update({
            "settings": app_settings,
            "engine": resources.engine,
            "resources": resources,
        })

        logger.info("Audit Copilot API started successfully")

        yield

        logger.info("Shutting down Audit Copilot API...")
        await resources.close()
        app_state.clear()
        logger.info("Audit Copilot API shut down successfully")

    app = FastAPI(
        title="Audit Copilot Runtime API",
        description="审计工作流调度与智能体编排 API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 后添加的中间件先执行：日志 → 认证
    app.add_middleware(
        AuthenticationMiddleware,
        settings_provider=lambda: app_state.get("settings") or settings or Settings.from_env()
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(copilot.router, prefix="/api/v1/copilot", tags=["copilot"])
    app.include_router(steps.router, prefix="/api/v1/workflows", tags=["workflows"])
    app.include_router(usage.router, prefix="/api/v1/usage", tags=["usage"])
    app.include_router(admin.router, prefix="/api/v1/admin", tags=["admin"])
    app.include_router(monitoring.router, prefix="/api/v1", tags=["monitoring"])

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """全局异常处理器"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)

        error = ErrorResponse(
            error="internal_server_error",
            message="An unexpected error occurred",
            request_id=getattr(request.state, "request_id", None)
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error.model_dump(mode="json")
        )

    @app.get("/", tags=["root"])
    async def root():
        """API根路径"""
        return {
            "name": "Audit Copilot Runtime API",
            "version": "1.0.0",
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/health"
        }

    return app


def get_app_state() -> Dict[str, Any]:
    """获取应用状态"""
    return app_state
