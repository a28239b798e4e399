"""
用量计量与额度管控
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional
from datetime import datetime, timezone

from ..exceptions import InvalidRequestError, AdminRequiredError
from ..models.workflow import utcnow
from ..models.usage import (
    UserContext, ModelUsage, UsageRecord, SpendingLimit, SpendCheck,
    UserUsageSummary, UserUsageDetail
)
from ..storage.repository import UsageRepository, SpendingLimitRepository, UserDirectory


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRate:
    """每百万token的价格（美元）"""
    input_per_million: Decimal
    output_per_million: Decimal


DEFAULT_MODEL = "gpt-4o-mini"

MODEL_PRICING: Dict[str, ModelRate] = {
    "gpt-4o-mini": ModelRate(Decimal("0.15"), Decimal("0.60")),
    "gpt-4.1-mini": ModelRate(Decimal("0.40"), Decimal("1.60")),
    "gpt-4.1": ModelRate(Decimal("2.00"), Decimal("8.00")),
    "gpt-4o": ModelRate(Decimal("2.50"), Decimal("10.00")),
}

DEFAULT_MONTHLY_LIMIT = Decimal("5.00")

TOKENS_PER_UNIT = Decimal(1_000_000)


def month_start(now: datetime) -> datetime:
    """当前自然月第一天 00:00:00 (UTC)"""
    now = now.astimezone(timezone.utc)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageGovernor:
    """
    用量管控器

    每次智能体调用前检查额度，调用后追加用量记录。
    检查与扣费不是原子操作，同一用户的并发请求最多超出在途调用的费用。
    """

    def __init__(
        self,
        usage_repository: UsageRepository,
        limit_repository: SpendingLimitRepository,
        user_directory: UserDirectory,
        default_limit: Decimal = DEFAULT_MONTHLY_LIMIT,
        pricing: Optional[Dict[str, ModelRate]] = None,
        default_model: str = DEFAULT_MODEL,
        clock: Callable[[], datetime] = utcnow
    ):
        self.usage_repository = usage_repository
        self.limit_repository = limit_repository
        self.user_directory = user_directory
        self.default_limit = Decimal(str(default_limit))
        self.pricing = pricing or MODEL_PRICING
        self.default_model = default_model
        self.clock = clock

        if self.default_model not in self.pricing:
            raise ValueError(f"Default model {default_model} has no pricing")

    def estimate_cost(self, model: str, prompt_tokens: int, output_tokens: int) -> Decimal:
        """估算费用，未知模型按默认模型计价"""
        rate = self.pricing.get(model) or self.pricing[self.default_model]
        return (
            Decimal(prompt_tokens) * rate.input_per_million
            + Decimal(output_tokens) * rate.output_per_million
        ) / TOKENS_PER_UNIT

    async def current_month_spend(self, user_id: str) -> Decimal:
        """本月已用费用"""
        return await self.usage_repository.sum_cost_since(user_id, month_start(self.clock()))

    async def get_limit(self, user_id: str) -> Decimal:
        """用户月度额度，没有设置时使用默认额度"""
        limit = await self.limit_repository.get(user_id)
        return limit.monthly_limit if limit else self.default_limit

    async def check_can_spend(self, user_id: str) -> SpendCheck:
        """检查用户是否还有额度"""
        current_spend = await self.current_month_spend(user_id)
        monthly_limit = await self.get_limit(user_id)
        remaining = max(Decimal("0"), monthly_limit - current_spend)

        return SpendCheck(
            allowed=remaining > 0,
            current_spend=current_spend,
            monthly_limit=monthly_limit,
            remaining=remaining,
        )

    async def track_usage(
        self,
        user: UserContext,
        model: str,
        usage: ModelUsage,
        session_id: Optional[str] = None
    ) -> Optional[UsageRecord]:
        """
        记录一次模型调用的用量

        持久化失败只记录日志，不影响已经返回给用户的响应。
        """
        try:
            record = UsageRecord(
                user_id=user.user_id,
                user_email=user.email,
                model=model,
                prompt_tokens=usage.prompt_tokens,
                output_tokens=usage.output_tokens,
                total_tokens=usage.total_tokens,
                estimated_cost=self.estimate_cost(model, usage.prompt_tokens, usage.output_tokens),
                session_id=session_id,
                created_at=self.clock(),
            )
            await self.usage_repository.append(record)
            return record
        except Exception as e:
            logger.error(f"Failed to track usage for user {user.user_id}: {e}", exc_info=True)
            return None

    async def is_admin(self, actor: UserContext) -> bool:
        """是否管理员"""
        if actor.is_admin:
            return True
        return await self.user_directory.is_admin(actor.user_id)

    async def _require_admin(self, actor: UserContext, operation: str):
        if not await self.is_admin(actor):
            logger.warning(f"User {actor.user_id} denied admin operation {operation}")
            raise AdminRequiredError(actor.user_id, operation)

    async def set_limit(
        self,
        actor: UserContext,
        user_id: str,
        monthly_limit: Decimal,
        user_email: str = ""
    ) -> SpendingLimit:
        """设置用户月度额度（管理员）"""
        await self._require_admin(actor, "set_limit")

        monthly_limit = Decimal(str(monthly_limit))
        if monthly_limit < 0:
            raise InvalidRequestError("Monthly limit must not be negative", "monthly_limit")

        limit = await self.limit_repository.upsert(SpendingLimit(
            user_id=user_id,
            user_email=user_email,
            monthly_limit=monthly_limit,
            updated_by=actor.email or actor.user_id,
            updated_at=self.clock(),
        ))
        logger.info(f"Monthly limit of user {user_id} set to {monthly_limit} by {limit.updated_by}")
        return limit

    async def get_all_limits(self, actor: UserContext) -> List[SpendingLimit]:
        """列出全部额度设置（管理员）"""
        await self._require_admin(actor, "get_all_limits")
        return await self.limit_repository.list_all()

    async def usage_by_user(
        self,
        actor: UserContext,
        start: datetime,
        end: datetime
    ) -> List[UserUsageSummary]:
        """按用户和模型汇总用量，按费用倒序（管理员）"""
        await self._require_admin(actor, "usage_by_user")

        records = await self.usage_repository.list_records(start, end)
        summaries: Dict[str, UserUsageSummary] = {}
        for record in records:
            summary = summaries.get(record.user_id)
            if summary is None:
                summary = UserUsageSummary(user_id=record.user_id, user_email=record.user_email)
                summaries[record.user_id] = summary
            summary.add(record)

        return sorted(summaries.values(), key=lambda s: s.total_cost, reverse=True)

    async def user_detail(
        self,
        actor: UserContext,
        user_id: str,
        start: datetime,
        end: datetime,
        limit: int = 500
    ) -> UserUsageDetail:
        """单个用户的用量明细，最新的在前（管理员）"""
        await self._require_admin(actor, "user_detail")

        records = await self.usage_repository.list_records(start, end, user_id=user_id, limit=limit)
        summary = UserUsageSummary(user_id=user_id)
        for record in records:
            summary.user_email = summary.user_email or record.user_email
            summary.add(record)
        return UserUsageDetail(user_id=user_id, records=records, summary=summary)
