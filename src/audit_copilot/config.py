"""
运行配置，从环境变量读取
"""
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Optional, Set
import logging

from .core.governor import DEFAULT_MODEL, DEFAULT_MONTHLY_LIMIT


logger = logging.getLogger(__name__)


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _split(value: Optional[str]) -> Set[str]:
    return {item.strip() for item in (value or "").split(",") if item.strip()}


@dataclass
class Settings:
    """服务配置"""
    database_url: Optional[str] = None  # 为空时使用内存仓库
    default_monthly_limit: Decimal = DEFAULT_MONTHLY_LIMIT
    default_model: str = DEFAULT_MODEL
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    data_source_path: Optional[str] = None
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_reload: bool = False
    api_workers: int = 1
    jwt_secret_key: str = "your-secret-key-here"
    jwt_algorithm: str = "HS256"
    disable_auth: bool = False
    admin_user_ids: Set[str] = field(default_factory=set)

    @classmethod
    def from_env(cls) -> "Settings":
        """读取环境变量（调用方负责先 load_dotenv）"""
        limit = os.getenv("DEFAULT_MONTHLY_LIMIT")
        try:
            default_limit = Decimal(limit) if limit else DEFAULT_MONTHLY_LIMIT
        except InvalidOperation:
            logger.warning(f"Invalid DEFAULT_MONTHLY_LIMIT {limit!r}, using {DEFAULT_MONTHLY_LIMIT}")
            default_limit = DEFAULT_MONTHLY_LIMIT

        return cls(
            database_url=os.getenv("DATABASE_URL") or None,
            default_monthly_limit=default_limit,
            default_model=os.getenv("DEFAULT_MODEL", DEFAULT_MODEL),
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            data_source_path=os.getenv("DATA_SOURCE_PATH") or None,
            api_host=os.getenv("API_HOST", "0.0.0.0"),
            api_port=int(os.getenv("API_PORT", "8000")),
            api_reload=_flag("API_RELOAD"),
            api_workers=int(os.getenv("API_WORKERS", "1")),
            jwt_secret_key=os.getenv("JWT_SECRET_KEY", "your-secret-key-here"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            disable_auth=_flag("DISABLE_AUTH"),
            admin_user_ids=_split(os.getenv("ADMIN_USER_IDS")),
        )
