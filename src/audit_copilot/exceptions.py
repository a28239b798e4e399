"""
审计工作流引擎异常定义
"""


class AuditCopilotError(Exception):
    """引擎基础异常"""
    pass


class WorkflowParseError(AuditCopilotError):
    """工作流解析异常"""
    pass


class WorkflowValidationError(AuditCopilotError):
    """工作流验证异常"""
    pass


class WorkflowNotFoundError(AuditCopilotError):
    """工作流未找到（或调用者不是所有者）"""
    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow not found: {workflow_id}")


class InvalidRequestError(AuditCopilotError):
    """请求参数异常"""
    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class StateTransitionError(AuditCopilotError):
    """步骤状态转换异常"""
    def __init__(self, node_id: str, current_state: str, target_state: str):
        self.node_id = node_id
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid transition for step '{node_id}' "
            f"from '{current_state}' to '{target_state}'"
        )


class LedgerWriteError(AuditCopilotError):
    """步骤台账写入失败，审批没有生效"""
    def __init__(self, workflow_id: str, node_id: str, cause: Exception = None):
        self.workflow_id = workflow_id
        self.node_id = node_id
        self.cause = cause
        msg = f"Step '{node_id}' of workflow '{workflow_id}' was not saved"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class SpendLimitExceededError(AuditCopilotError):
    """月度额度已用尽"""
    def __init__(self, user_id: str, current_spend, monthly_limit):
        self.user_id = user_id
        self.current_spend = current_spend
        self.monthly_limit = monthly_limit
        super().__init__(
            f"Monthly spending limit reached: ${current_spend:.2f} spent "
            f"of ${monthly_limit:.2f} limit"
        )


class AdminRequiredError(AuditCopilotError):
    """需要管理员权限"""
    def __init__(self, actor_id: str, operation: str):
        self.actor_id = actor_id
        self.operation = operation
        super().__init__(f"Admin access required for {operation}")


class StepNotFoundError(AuditCopilotError):
    """步骤不在工作流中"""
    def __init__(self, workflow_id: str, node_id: str):
        self.workflow_id = workflow_id
        self.node_id = node_id
        super().__init__(f"Step '{node_id}' not found in workflow '{workflow_id}'")
