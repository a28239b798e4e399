"""
SQLAlchemy 数据库模型定义
"""
from sqlalchemy import (
    Column, String, Text, Boolean, Integer, Numeric,
    DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, JSON
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid


Base = declarative_base()


def generate_uuid():
    return str(uuid.uuid4())


class User(Base):
    """用户（仅保存管理员标记，身份由外部系统负责）"""
    __tablename__ = 'users'

    id = Column(String(255), primary_key=True)
    email = Column(String(255))
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WorkflowDefinition(Base):
    """工作流定义模型"""
    __tablename__ = 'workflow_definitions'

    id = Column(String(100), primary_key=True, default=generate_uuid)
    slug = Column(String(200), nullable=False)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(255), nullable=False)
    description = Column(Text)
    nodes = Column(JSON, nullable=False, default=list)
    edges = Column(JSON, nullable=False, default=list)
    extra = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('slug', name='unique_workflow_slug'),
        Index('idx_workflow_definitions_owner', 'owner_id'),
    )


class StepResult(Base):
    """步骤台账"""
    __tablename__ = 'step_results'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False)
    workflow_id = Column(
        String(100),
        ForeignKey('workflow_definitions.id', ondelete='CASCADE'),
        nullable=False
    )
    node_id = Column(String(255), nullable=False)
    result = Column(Text)
    completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('user_id', 'workflow_id', 'node_id', name='unique_step_result'),
        Index('idx_step_results_user_workflow', 'user_id', 'workflow_id'),
    )


class ApiUsage(Base):
    """模型调用用量（只追加）"""
    __tablename__ = 'api_usage'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False)
    user_email = Column(String(255))
    model = Column(String(100), nullable=False)
    prompt_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    estimated_cost = Column(Numeric(12, 6), nullable=False)
    session_id = Column(String(100))
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint('estimated_cost >= 0', name='check_usage_cost'),
        Index('idx_api_usage_user_created', 'user_id', 'created_at'),
    )


class UserSpendingLimit(Base):
    """用户月度额度"""
    __tablename__ = 'user_spending_limits'

    user_id = Column(String(255), primary_key=True)
    user_email = Column(String(255))
    monthly_limit = Column(Numeric(10, 2), nullable=False)
    updated_by = Column(String(255))
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint('monthly_limit >= 0', name='check_monthly_limit'),
    )


class AuditScoreRecord(Base):
    """审计评分"""
    __tablename__ = 'audit_scores'

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(255), nullable=False)
    workflow_id = Column(
        String(100),
        ForeignKey('workflow_definitions.id', ondelete='CASCADE'),
        nullable=False
    )
    score = Column(Integer, nullable=False)
    summary = Column(Text)
    findings = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint('score >= 0 AND score <= 100', name='check_audit_score'),
        Index('idx_audit_scores_user_workflow', 'user_id', 'workflow_id'),
    )
