"""
用量与额度模型
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Any, Optional, List
from datetime import datetime
from uuid import uuid4

from .workflow import utcnow


@dataclass
class UserContext:
    """发起请求的用户"""
    user_id: str
    email: str = ""
    is_admin: bool = False


@dataclass
class ModelUsage:
    """一次模型响应的token用量"""
    prompt_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if not self.total_tokens:
            self.total_tokens = self.prompt_tokens + self.output_tokens


@dataclass(frozen=True)
class UsageRecord:
    """不可变的用量记录，只追加"""
    user_id: str
    model: str
    prompt_tokens: int
    output_tokens: int
    total_tokens: int
    estimated_cost: Decimal
    user_email: str = ""
    session_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "user_email": self.user_email,
            "model": self.model,
            "prompt_tokens": self.prompt_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "estimated_cost": float(self.estimated_cost),
            "session_id": self.session_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SpendingLimit:
    """用户月度额度"""
    user_id: str
    monthly_limit: Decimal
    user_email: str = ""
    updated_by: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_email": self.user_email,
            "monthly_limit": float(self.monthly_limit),
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class SpendCheck:
    """额度检查结果"""
    allowed: bool
    current_spend: Decimal
    monthly_limit: Decimal
    remaining: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "current_spend": float(self.current_spend),
            "monthly_limit": float(self.monthly_limit),
            "remaining": float(self.remaining),
        }


@dataclass
class ModelUsageSummary:
    """按模型汇总"""
    calls: int = 0
    total_tokens: int = 0
    cost: Decimal = Decimal("0")


@dataclass
class UserUsageSummary:
    """按用户汇总"""
    user_id: str
    user_email: str = ""
    total_calls: int = 0
    total_tokens: int = 0
    total_cost: Decimal = Decimal("0")
    by_model: Dict[str, ModelUsageSummary] = field(default_factory=dict)

    def add(self, record: UsageRecord):
        self.total_calls += 1
        self.total_tokens += record.total_tokens
        self.total_cost += record.estimated_cost
        summary = self.by_model.setdefault(record.model, ModelUsageSummary())
        summary.calls += 1
        summary.total_tokens += record.total_tokens
        summary.cost += record.estimated_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "user_email": self.user_email,
            "total_calls": self.total_calls,
            "total_tokens": self.total_tokens,
            "total_cost": float(self.total_cost),
            "by_model": {
                model: {
                    "calls": s.calls,
                    "total_tokens": s.total_tokens,
                    "cost": float(s.cost),
                }
                for model, s in self.by_model.items()
            },
        }


@dataclass
class UserUsageDetail:
    """单个用户的用量明细"""
    user_id: str
    records: List[UsageRecord] = field(default_factory=list)
    summary: Optional[UserUsageSummary] = None
