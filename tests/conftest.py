"""
Pytest 配置和公共 fixtures
"""
import pytest
import pytest_asyncio
from typing import AsyncGenerator

from audit_copilot.core.engine import CopilotEngine
from audit_copilot.core.governor import UsageGovernor
from audit_copilot.core.ledger import StepLedger
from audit_copilot.integrations.agent import DispatchContext
from audit_copilot.integrations.model_client import ScriptedModelClient
from audit_copilot.models.usage import UserContext
from audit_copilot.models.workflow import WorkflowGraph, StepNode, Edge
from audit_copilot.storage.repository import (
    InMemoryWorkflowRepository, InMemoryStepResultRepository, InMemoryUsageRepository,
    InMemorySpendingLimitRepository, InMemoryScoreRepository, StaticUserDirectory
)
from audit_copilot.storage.sqlalchemy_repository import DatabaseManager


# 配置 pytest-asyncio
pytest_plugins = ('pytest_asyncio',)


@pytest.fixture
def user() -> UserContext:
    return UserContext(user_id="auditor-1", email="auditor@example.com")


@pytest.fixture
def admin() -> UserContext:
    return UserContext(user_id="admin-1", email="admin@example.com")


@pytest.fixture
def workflow_repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def step_repo() -> InMemoryStepResultRepository:
    return InMemoryStepResultRepository()


@pytest.fixture
def usage_repo() -> InMemoryUsageRepository:
    return InMemoryUsageRepository()


@pytest.fixture
def limit_repo() -> InMemorySpendingLimitRepository:
    return InMemorySpendingLimitRepository()


@pytest.fixture
def score_repo() -> InMemoryScoreRepository:
    return InMemoryScoreRepository()


@pytest.fixture
def ledger(step_repo) -> StepLedger:
    return StepLedger(step_repo)


@pytest.fixture
def governor(usage_repo, limit_repo) -> UsageGovernor:
    """admin-1 为管理员"""
    return UsageGovernor(usage_repo, limit_repo, StaticUserDirectory({"admin-1"}))


@pytest.fixture
def model_client() -> ScriptedModelClient:
    return ScriptedModelClient(default_reply="Draft ready.")


@pytest.fixture
def sample_graph(user) -> WorkflowGraph:
    """A → {B, C}"""
    return WorkflowGraph(
        id="wf-1",
        slug="revenue-audit",
        name="Revenue Audit",
        owner_id=user.user_id,
        nodes=[
            StepNode(id="A", label="Planning", instructions="Plan the audit"),
            StepNode(id="B", label="Sampling", instructions="Sample invoices"),
            StepNode(id="C", label="Cutoff", instructions="Test cutoff"),
        ],
        edges=[Edge(source="A", target="B"), Edge(source="A", target="C")],
    )


@pytest.fixture
def sample_definition() -> dict:
    """示例工作流定义（{nodes, edges} 格式）"""
    return {
        "id": "wf-import",
        "name": "Payroll Audit",
        "nodes": [
            {"id": "plan", "label": "Planning", "instructions": "Plan the payroll audit"},
            {"id": "test", "label": "Testing"},
            {"id": "report", "label": "Report"},
        ],
        "edges": [
            {"source": "plan", "target": "test"},
            {"source": "test", "target": "report"},
        ],
    }


@pytest_asyncio.fixture
async def saved_graph(workflow_repo, sample_graph) -> WorkflowGraph:
    await workflow_repo.save(sample_graph)
    return sample_graph


@pytest.fixture
def dispatch_context(user, model_client, governor, ledger, workflow_repo, score_repo) -> DispatchContext:
    return DispatchContext(
        user=user,
        model="gpt-4o-mini",
        model_client=model_client,
        governor=governor,
        ledger=ledger,
        workflows=workflow_repo,
        scores=score_repo,
        session_id="session-1",
    )


@pytest.fixture
def engine(governor, ledger, workflow_repo, score_repo, model_client) -> CopilotEngine:
    """使用内存存储的引擎"""
    return CopilotEngine(
        governor=governor,
        ledger=ledger,
        workflows=workflow_repo,
        scores=score_repo,
        model_client=model_client,
    )


@pytest_asyncio.fixture
async def test_database() -> AsyncGenerator[DatabaseManager, None]:
    """创建测试数据库"""
    db_manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await db_manager.initialize()

    yield db_manager

    await db_manager.close()
