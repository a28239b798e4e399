"""
Audit Copilot API 主入口
"""
import logging
import uvicorn
from dotenv import load_dotenv

# 加载环境变量
load_dotenv()

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

from audit_copilot.api import app
from audit_copilot.config import Settings


if __name__ == "__main__":
    settings = Settings.from_env()

    if settings.api_reload:
        # 开发模式
        uvicorn.run(
            "audit_copilot.api:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=True,
            log_level="info"
        )
    else:
        # 生产模式
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            workers=settings.api_workers,
            log_level="info"
        )
