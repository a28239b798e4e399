"""
Audit Copilot Runtime

审计工作流调度与智能体编排
"""

__version__ = "1.0.0"
