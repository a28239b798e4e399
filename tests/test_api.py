"""
API 端点测试
"""
import json
import jwt
import pytest
from fastapi.testclient import TestClient

from audit_copilot.api.app import create_app, app_state
from audit_copilot.config import Settings
from audit_copilot.integrations.model_client import ScriptedModelClient
from audit_copilot.storage.repository import InMemoryStepResultRepository


class FailingStepRepository(InMemoryStepResultRepository):
    async def save(self, entry):
        raise RuntimeError("connection reset")


@pytest.fixture
def client():
    """开发模式客户端（开发用户为管理员）"""
    app = create_app(Settings(disable_auth=True), ScriptedModelClient(default_reply="Draft ready."))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth_client():
    """启用 JWT 认证的客户端"""
    app = create_app(Settings(), ScriptedModelClient())
    with TestClient(app) as client:
        yield client


def bearer(user_id, **claims):
    token = jwt.encode({"sub": user_id, **claims}, "your-secret-key-here", algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def import_workflow(client, definition, headers=None):
    return client.post("/api/v1/workflows", json={"definition": definition}, headers=headers or {})


class TestMonitoringAPI:
    """监控与元数据 API 测试类"""

    def test_health(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"] == {"engine": True, "database": True}

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/api/v1/health"

    def test_agents(self, client):
        agents = client.get("/api/v1/copilot/agents").json()["agents"]
        ids = [agent["id"] for agent in agents]

        assert ids[:2] == ["copilot", "judge"]
        assert all(i.startswith("character:") for i in ids[2:])

    def test_models(self, client):
        data = client.get("/api/v1/copilot/models").json()

        assert data["default"] == "gpt-4o-mini"
        assert "gpt-4o" in [m["id"] for m in data["models"]]


class TestWorkflowAPI:
    """工作流与步骤 API 测试类"""

    def test_import_and_list(self, client, sample_definition):
        response = import_workflow(client, sample_definition)

        assert response.status_code == 201
        data = response.json()
        assert data["id"] == "wf-import"
        assert data["step_count"] == 3
        assert [n["id"] for n in data["nodes"]] == ["plan", "test", "report"]

        listed = client.get("/api/v1/workflows").json()
        assert [w["id"] for w in listed] == ["wf-import"]

    def test_import_invalid(self, client):
        response = import_workflow(client, {"nodes": [{"id": "a"}, {"id": "a"}], "edges": []})

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "validation_error"

    def test_get_unknown_workflow(self, client):
        response = client.get("/api/v1/workflows/missing")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_steps_plan_and_update(self, client, sample_definition):
        import_workflow(client, sample_definition)

        plan = client.get("/api/v1/workflows/wf-import/plan").json()
        assert plan["next_steps"] == ["plan"]

        response = client.patch(
            "/api/v1/workflows/wf-import/steps/plan",
            json={"result": "Scope agreed", "completed": True}
        )
        assert response.status_code == 200
        assert response.json()["completed"] is True

        steps = client.get("/api/v1/workflows/wf-import/steps").json()
        assert steps["completed"] == 1
        assert steps["progress"] == 33
        assert steps["steps"][0]["result"] == "Scope agreed"

        plan = client.get("/api/v1/workflows/wf-import/plan").json()
        assert plan["next_steps"] == ["test"]

        context = client.get("/api/v1/workflows/wf-import/steps/test/context").json()
        assert context["upstream_results"][0]["result"] == "Scope agreed"

    def test_update_keeps_unset_fields(self, client, sample_definition):
        import_workflow(client, sample_definition)
        client.patch("/api/v1/workflows/wf-import/steps/plan", json={"result": "Draft"})

        response = client.patch("/api/v1/workflows/wf-import/steps/plan", json={"completed": True})

        assert response.json()["result"] == "Draft"
        assert response.json()["completed"] is True

    def test_update_requires_fields(self, client, sample_definition):
        import_workflow(client, sample_definition)

        response = client.patch("/api/v1/workflows/wf-import/steps/plan", json={})

        assert response.status_code == 400

    def test_update_unknown_step(self, client, sample_definition):
        import_workflow(client, sample_definition)

        response = client.patch("/api/v1/workflows/wf-import/steps/ghost", json={"completed": True})

        assert response.status_code == 404

    def test_approval_not_saved(self, client, sample_definition):
        import_workflow(client, sample_definition)
        app_state["engine"].ledger.repository = FailingStepRepository()

        response = client.patch("/api/v1/workflows/wf-import/steps/plan", json={"completed": True})

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "ledger_write_failed"
        assert detail["message"].startswith("Your approval was not saved")

    def test_delete(self, client, sample_definition):
        import_workflow(client, sample_definition)
        client.patch("/api/v1/workflows/wf-import/steps/plan", json={"completed": True})

        response = client.delete("/api/v1/workflows/wf-import")

        assert response.json() == {"success": True, "deleted_steps": 1}
        assert client.get("/api/v1/workflows/wf-import").status_code == 404


class TestChatAPI:
    """对话 API 测试类"""

    def test_chat_streams_ndjson(self, client):
        response = client.post("/api/v1/copilot/chat", json={"message": "Where do I start?"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        lines = [json.loads(line) for line in response.text.splitlines() if line.strip()]
        assert lines[0] == {"type": "text", "content": "Draft ready."}
        assert lines[-1] == {"type": "done"}

    def test_unknown_character(self, client):
        response = client.post(
            "/api/v1/copilot/chat",
            json={"message": "Hello", "agent_id": "character:ghost"}
        )

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "unknown_agent"

    def test_unsupported_model(self, client):
        response = client.post("/api/v1/copilot/chat", json={"message": "Hello", "model": "gpt-2"})

        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "model"

    def test_empty_message(self, client):
        response = client.post("/api/v1/copilot/chat", json={"message": ""})
        assert response.status_code == 422

    def test_over_budget(self, client):
        client.put("/api/v1/admin/limits/dev-user", json={"monthly_limit": "0"})

        response = client.post("/api/v1/copilot/chat", json={"message": "Hello"})

        assert response.status_code == 429
        assert response.json()["detail"]["error"] == "spend_limit_exceeded"


class TestUsageAPI:
    """用量与管理员 API 测试类"""

    def test_my_usage_after_chat(self, client):
        client.post("/api/v1/copilot/chat", json={"message": "Hello"})

        data = client.get("/api/v1/usage/me").json()

        assert data["allowed"] is True
        assert data["monthly_limit"] == 5.0
        assert data["current_spend"] > 0

    def test_set_and_list_limits(self, client):
        response = client.put(
            "/api/v1/admin/limits/auditor-1",
            json={"monthly_limit": "12.50", "user_email": "auditor@example.com"}
        )
        assert response.status_code == 200
        assert response.json()["monthly_limit"] == 12.5

        data = client.get("/api/v1/admin/limits").json()
        assert data["default_limit"] == 5.0
        assert [limit["user_id"] for limit in data["limits"]] == ["auditor-1"]

    def test_negative_limit_rejected(self, client):
        response = client.put("/api/v1/admin/limits/auditor-1", json={"monthly_limit": "-1"})
        assert response.status_code == 400

    def test_usage_report(self, client):
        client.post("/api/v1/copilot/chat", json={"message": "Hello", "session_id": "s-9"})

        report = client.get("/api/v1/admin/usage").json()
        assert [u["user_id"] for u in report["users"]] == ["dev-user"]

        detail = client.get("/api/v1/admin/usage/dev-user").json()
        assert detail["records"][0]["session_id"] == "s-9"


class TestAuthentication:
    """认证测试类"""

    def test_missing_token(self, auth_client):
        response = auth_client.get("/api/v1/workflows")

        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    def test_invalid_token(self, auth_client):
        response = auth_client.get(
            "/api/v1/workflows", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.json()["error"] == "invalid_token"

    def test_health_is_public(self, auth_client):
        assert auth_client.get("/api/v1/health").status_code == 200

    def test_workflows_scoped_to_user(self, auth_client, sample_definition):
        import_workflow(auth_client, sample_definition, bearer("auditor-1"))

        mine = auth_client.get("/api/v1/workflows", headers=bearer("auditor-1")).json()
        theirs = auth_client.get("/api/v1/workflows", headers=bearer("auditor-2")).json()

        assert [w["id"] for w in mine] == ["wf-import"]
        assert theirs == []
        assert auth_client.get("/api/v1/workflows/wf-import", headers=bearer("auditor-2")).status_code == 404

    def test_slug_taken_by_other_user(self, auth_client, sample_definition):
        import_workflow(auth_client, {**sample_definition, "slug": "payroll"}, bearer("auditor-1"))

        response = import_workflow(
            auth_client, {**sample_definition, "id": "wf-other", "slug": "payroll"}, bearer("auditor-2")
        )

        assert response.status_code == 400
        assert response.json()["detail"]["field"] == "slug"
        assert auth_client.get("/api/v1/workflows/payroll", headers=bearer("auditor-1")).json()["id"] == "wf-import"

    def test_admin_routes_forbidden(self, auth_client):
        response = auth_client.put(
            "/api/v1/admin/limits/auditor-1",
            json={"monthly_limit": "100"},
            headers=bearer("auditor-1")
        )

        assert response.status_code == 403
        assert response.json()["detail"]["error"] == "forbidden"

    def test_admin_claim(self, auth_client):
        response = auth_client.get("/api/v1/admin/limits", headers=bearer("boss", role="admin"))
        assert response.status_code == 200
