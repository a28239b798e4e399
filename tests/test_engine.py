"""
引擎入口测试
"""
import json
from decimal import Decimal
import pytest
from pydantic import ValidationError

from audit_copilot.config import Settings
from audit_copilot.core.engine import build_engine
from audit_copilot.exceptions import (
    InvalidRequestError, SpendLimitExceededError, StepNotFoundError, WorkflowNotFoundError
)
from audit_copilot.integrations.exceptions import UnknownAgentRoleError
from audit_copilot.integrations.model_client import ScriptedModelClient
from audit_copilot.models.usage import UsageRecord, UserContext


async def read_lines(stream):
    return [json.loads(line) async for line in stream]


class TestStartChat:
    """对话入口测试类"""

    @pytest.mark.asyncio
    async def test_happy_path_streams_and_tracks_usage(self, engine, user, usage_repo, model_client):
        stream = await engine.start_chat(user, {"message": "What should I do first?", "session_id": "s-1"})
        lines = await read_lines(stream)

        assert lines == [{"type": "text", "content": "Draft ready."}, {"type": "done"}]
        assert len(usage_repo.records) == 1
        assert usage_repo.records[0].session_id == "s-1"
        assert model_client.closed_sessions == 1

    @pytest.mark.asyncio
    async def test_unknown_character_rejected_before_model(self, engine, user, usage_repo, model_client):
        with pytest.raises(UnknownAgentRoleError):
            await engine.start_chat(user, {"message": "Hi", "agent_id": "character:ghost"})

        assert model_client.sessions == []
        assert model_client.calls == []
        assert usage_repo.records == []

    @pytest.mark.asyncio
    async def test_over_budget_rejected(self, engine, user, usage_repo, model_client):
        await usage_repo.append(UsageRecord(
            user_id=user.user_id, model="gpt-4o", prompt_tokens=0, output_tokens=0,
            total_tokens=0, estimated_cost=Decimal("5.00"),
        ))

        with pytest.raises(SpendLimitExceededError) as exc_info:
            await engine.start_chat(user, {"message": "Hi"})

        assert "$5.00 spent of $5.00 limit" in str(exc_info.value)
        assert model_client.sessions == []

    @pytest.mark.asyncio
    async def test_just_under_budget_allowed(self, engine, user, usage_repo):
        await usage_repo.append(UsageRecord(
            user_id=user.user_id, model="gpt-4o", prompt_tokens=0, output_tokens=0,
            total_tokens=0, estimated_cost=Decimal("4.99"),
        ))

        stream = await engine.start_chat(user, {"message": "Hi"})
        assert (await read_lines(stream))[-1] == {"type": "done"}

    @pytest.mark.asyncio
    async def test_unsupported_model(self, engine, user):
        with pytest.raises(InvalidRequestError) as exc_info:
            await engine.start_chat(user, {"message": "Hi", "model": "gpt-2"})
        assert exc_info.value.field == "model"

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, engine, user):
        with pytest.raises(ValidationError):
            await engine.start_chat(user, {"message": "   "})

    @pytest.mark.asyncio
    async def test_run_mode_requires_ownership(self, engine, saved_graph, model_client):
        intruder = UserContext(user_id="intruder")
        with pytest.raises(WorkflowNotFoundError):
            await engine.start_chat(intruder, {"message": "Run", "run_mode": {"workflow_id": "wf-1"}})
        assert model_client.sessions == []

    @pytest.mark.asyncio
    async def test_run_mode_stream(self, engine, user, saved_graph):
        stream = await engine.start_chat(user, {"message": "Run", "run_mode": {"workflow_id": "wf-1"}})
        lines = await read_lines(stream)

        assert lines[0] == {"type": "step_status", "step_status": {"node_id": "A", "status": "executing"}}
        assert lines[1]["step_status"] == {"node_id": "A", "status": "review", "result": "Draft ready."}
        assert lines[-1] == {"type": "done"}


class TestWorkflowOperations:
    """工作流与步骤操作测试类"""

    @pytest.mark.asyncio
    async def test_import_and_list(self, engine, user, sample_definition):
        workflow = await engine.import_workflow(user, sample_definition)

        assert workflow.owner_id == user.user_id
        assert [w.id for w in await engine.list_workflows(user)] == ["wf-import"]
        assert await engine.list_workflows(UserContext(user_id="other")) == []

    @pytest.mark.asyncio
    async def test_import_taken_id(self, engine, user, sample_definition):
        await engine.import_workflow(user, sample_definition)

        with pytest.raises(InvalidRequestError):
            await engine.import_workflow(UserContext(user_id="other"), sample_definition)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("database_url", [None, "sqlite+aiosqlite:///:memory:"])
    async def test_import_taken_slug(self, database_url):
        resources = await build_engine(Settings(database_url=database_url), ScriptedModelClient())
        engine = resources.engine
        owner = UserContext(user_id="auditor-1")
        other = UserContext(user_id="auditor-2")
        nodes = [{"id": "a"}]

        try:
            await engine.import_workflow(owner, {"id": "wf-1", "slug": "revenue-audit", "nodes": nodes})

            with pytest.raises(InvalidRequestError) as exc_info:
                await engine.import_workflow(other, {"id": "wf-2", "slug": "revenue-audit", "nodes": nodes})
            assert exc_info.value.field == "slug"

            # 未设置 slug 的工作流以 ID 作为 slug
            await engine.import_workflow(owner, {"id": "wf-plain", "nodes": nodes})
            with pytest.raises(InvalidRequestError):
                await engine.import_workflow(other, {"id": "wf-3", "slug": "wf-plain", "nodes": nodes})

            assert (await engine.get_workflow(owner, "revenue-audit")).id == "wf-1"
            assert await engine.list_workflows(other) == []
            with pytest.raises(WorkflowNotFoundError):
                await engine.get_workflow(other, "revenue-audit")

            # 所有者重新导入同一工作流
            await engine.import_workflow(
                owner, {"id": "wf-1", "slug": "revenue-audit", "name": "Revenue FY26", "nodes": nodes}
            )
            assert (await engine.get_workflow(owner, "revenue-audit")).name == "Revenue FY26"
        finally:
            await resources.close()

    @pytest.mark.asyncio
    async def test_update_and_progress(self, engine, user, saved_graph):
        entry = await engine.update_step(user, "wf-1", "A", result="Plan", completed=True)
        assert entry.completed is True

        progress = await engine.get_steps(user, "wf-1")
        assert progress.progress == 33

        plan = await engine.get_plan(user, "revenue-audit")
        assert plan.next_steps == ["B", "C"]

        context = await engine.get_step_context(user, "wf-1", "B")
        assert [u.result for u in context.upstream_results] == ["Plan"]

    @pytest.mark.asyncio
    async def test_unknown_step(self, engine, user, saved_graph):
        with pytest.raises(StepNotFoundError):
            await engine.update_step(user, "wf-1", "Z", completed=True)
        with pytest.raises(StepNotFoundError):
            await engine.get_step_context(user, "wf-1", "Z")

    @pytest.mark.asyncio
    async def test_delete_cascades(self, engine, user, saved_graph, ledger):
        await engine.update_step(user, "wf-1", "A", completed=True)

        assert await engine.delete_workflow(user, "wf-1") == 1
        assert await ledger.list_for_workflow(user.user_id, "wf-1") == []
        with pytest.raises(WorkflowNotFoundError):
            await engine.get_workflow(user, "wf-1")


class TestBuildEngine:
    """引擎组装测试类"""

    @pytest.mark.asyncio
    async def test_in_memory(self):
        resources = await build_engine(Settings(admin_user_ids={"boss"}), ScriptedModelClient())

        assert resources.db_manager is None
        assert await resources.engine.governor.is_admin(UserContext(user_id="boss")) is True
        await resources.close()

    @pytest.mark.asyncio
    async def test_without_api_key_uses_scripted_client(self):
        resources = await build_engine(Settings())
        assert isinstance(resources.engine.model_client, ScriptedModelClient)
        await resources.close()

    @pytest.mark.asyncio
    async def test_sqlalchemy(self):
        settings = Settings(database_url="sqlite+aiosqlite:///:memory:", admin_user_ids={"boss"})
        resources = await build_engine(settings, ScriptedModelClient())
        engine = resources.engine

        try:
            user = UserContext(user_id="auditor-1")
            await engine.import_workflow(user, {
                "id": "wf-db", "nodes": [{"id": "a"}, {"id": "b"}], "edges": [["a", "b"]],
            })
            await engine.update_step(user, "wf-db", "a", result="done", completed=True)

            plan = await engine.get_plan(user, "wf-db")
            assert plan.next_steps == ["b"]
            assert await engine.governor.is_admin(UserContext(user_id="boss")) is True
        finally:
            await resources.close()
