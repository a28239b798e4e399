"""
API 请求和响应模型
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal


def _now() -> datetime:
    return datetime.now(timezone.utc)


# 工作流相关模型

class WorkflowImportRequest(BaseModel):
    """导入工作流定义（{nodes, edges} 或画布导出格式）"""
    definition: Dict[str, Any] = Field(..., description="工作流定义")


class WorkflowResponse(BaseModel):
    """工作流响应"""
    id: str = Field(..., description="工作流ID")
    slug: str = Field("", description="slug")
    name: str = Field("", description="工作流名称")
    description: Optional[str] = Field(None, description="描述")
    step_count: int = Field(..., description="步骤数量")
    created_at: datetime = Field(..., description="创建时间")
    updated_at: datetime = Field(..., description="更新时间")


class WorkflowDetailResponse(WorkflowResponse):
    """工作流详情响应"""
    nodes: List[Dict[str, Any]] = Field(default_factory=list, description="步骤列表")
    edges: List[Dict[str, Any]] = Field(default_factory=list, description="依赖边")


# 步骤相关模型

class StepUpdateRequest(BaseModel):
    """保存或审批步骤；未提供的字段保持不变"""
    result: Optional[str] = Field(None, max_length=200_000, description="步骤结果")
    completed: Optional[bool] = Field(None, description="是否完成")

    model_config = ConfigDict(extra="forbid")


class StepEntryResponse(BaseModel):
    """台账记录响应"""
    workflow_id: str
    node_id: str
    result: Optional[str] = None
    completed: bool = False
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class StepsResponse(BaseModel):
    """工作流台账与进度"""
    workflow_id: str
    total: int
    completed: int
    progress: int
    steps: List[StepEntryResponse] = Field(default_factory=list)


# 用量相关模型

class SpendCheckResponse(BaseModel):
    """额度检查响应"""
    allowed: bool
    current_spend: float
    monthly_limit: float
    remaining: float


class SpendingLimitRequest(BaseModel):
    """设置用户月度额度"""
    monthly_limit: Decimal = Field(..., description="月度额度（美元）")
    user_email: str = Field("", max_length=255, description="用户邮箱")


# 通用模型

class ErrorResponse(BaseModel):
    """错误响应"""
    error: str = Field(..., description="错误类型")
    message: str = Field(..., description="错误信息")
    details: Optional[Dict[str, Any]] = Field(None, description="错误详情")
    request_id: Optional[str] = Field(None, description="请求ID")
    timestamp: datetime = Field(default_factory=_now, description="时间戳")


class HealthCheckResponse(BaseModel):
    """健康检查响应"""
    status: str = Field(..., description="健康状态", examples=["healthy", "unhealthy"])
    version: str = Field(..., description="版本号")
    timestamp: datetime = Field(default_factory=_now, description="时间戳")
    checks: Dict[str, bool] = Field(default_factory=dict, description="各组件检查结果")
