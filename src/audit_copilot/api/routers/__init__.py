"""API routers"""

from . import copilot, steps, usage, admin, monitoring

__all__ = ["copilot", "steps", "usage", "admin", "monitoring"]
