"""HTTP API"""

from .app import create_app, app_state, get_app_state

app = create_app()

__all__ = ["app", "create_app", "app_state", "get_app_state"]
