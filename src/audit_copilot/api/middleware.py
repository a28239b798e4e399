"""
API 中间件
"""
import time
import uuid
import logging
from typing import Callable
from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import jwt

from ..config import Settings
from ..models.usage import UserContext


logger = logging.getLogger(__name__)


DEV_USER = UserContext(user_id="dev-user", email="dev@localhost", is_admin=True)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """请求日志中间件"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # 生成请求ID
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger.info(
            f"Request started: {request.method} {request.url.path} "
            f"[request_id={request_id}]"
        )

        response = await call_next(request)

        # 流式响应只统计到响应头发出
        duration = time.time() - start_time
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(duration)

        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"[request_id={request_id}] "
            f"[status={response.status_code}] "
            f"[duration={duration:.3f}s]"
        )

        return response


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """
    认证中间件

    Bearer JWT 的声明：sub（用户ID）、email、is_admin 或 role=admin。
    DISABLE_AUTH 时所有请求都以开发用户身份处理。
    """

    # 不需要认证的路径
    EXCLUDE_PATHS = [
        "/",
        "/docs",
        "/redoc",
        "/openapi.json",
        "/api/v1/health",
    ]

    def __init__(self, app, settings_provider: Callable[[], Settings]):
        super().__init__(app)
        self.settings_provider = settings_provider

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.EXCLUDE_PATHS:
            return await call_next(request)

        settings = self.settings_provider()

        # 开发模式下跳过认证
        if settings.disable_auth:
            request.state.user = DEV_USER
            return await call_next(request)

        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "unauthorized",
                    "message": "Missing or invalid authorization header"
                }
            )

        token = authorization.split(" ", 1)[1]

        try:
            # PyJWT 会校验 exp
            payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "token_expired",
                    "message": "Token has expired"
                }
            )
        except jwt.InvalidTokenError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "invalid_token",
                    "message": "Invalid token"
                }
            )

        user_id = payload.get("sub")
        if not user_id:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={
                    "error": "invalid_token",
                    "message": "Token has no subject"
                }
            )

        request.state.user = UserContext(
            user_id=str(user_id),
            email=payload.get("email", ""),
            is_admin=bool(payload.get("is_admin")) or payload.get("role") == "admin",
        )
        return await call_next(request)
