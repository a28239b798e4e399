"""
智能体分发测试
"""
import pytest

from audit_copilot.integrations.agents import CharacterAgent, JudgeAgent, OrchestratorAgent
from audit_copilot.integrations.dispatcher import AgentDispatcher, AgentKind, AgentRole, AGENT_OPTIONS
from audit_copilot.integrations.exceptions import UnknownAgentRoleError


@pytest.mark.parametrize("agent_id, kind", [
    ("copilot", AgentKind.ORCHESTRATOR),
    ("", AgentKind.ORCHESTRATOR),
    (None, AgentKind.ORCHESTRATOR),
    ("judge", AgentKind.JUDGE),
    ("character:michael", AgentKind.CHARACTER),
])
def test_parse_roles(agent_id, kind):
    assert AgentRole.parse(agent_id).kind == kind


@pytest.mark.parametrize("agent_id", ["character:ghost", "character:", "wrangler", "admin"])
def test_unknown_roles_rejected(agent_id):
    with pytest.raises(UnknownAgentRoleError) as exc_info:
        AgentRole.parse(agent_id)
    assert exc_info.value.details == {"agent_id": agent_id}


def test_role_agent_id_round_trip():
    for option in AGENT_OPTIONS:
        assert AgentRole.parse(option.id).agent_id == option.id


def test_agent_options():
    assert len(AGENT_OPTIONS) == 12
    lucille = next(o for o in AGENT_OPTIONS if o.id == "character:lucille")
    assert lucille.to_dict() == {
        "id": "character:lucille",
        "name": "Lucille Bluth",
        "description": "Chairwoman of the board",
        "kind": "character",
        "cooperation": "hostile",
    }


def test_dispatch_creates_variants(dispatch_context, model_client):
    dispatcher = AgentDispatcher()

    assert isinstance(dispatcher.dispatch(AgentRole.parse("copilot"), dispatch_context), OrchestratorAgent)
    assert isinstance(dispatcher.dispatch(AgentRole.parse("judge"), dispatch_context), JudgeAgent)
    character = dispatcher.dispatch(AgentRole.parse("character:gob"), dispatch_context)
    assert isinstance(character, CharacterAgent)
    assert character.agent_id == "character:gob"
    # 分发本身不调用模型
    assert model_client.sessions == []


def test_each_dispatch_is_a_new_instance(dispatch_context):
    dispatcher = AgentDispatcher()
    role = AgentRole.parse("copilot")
    assert dispatcher.dispatch(role, dispatch_context) is not dispatcher.dispatch(role, dispatch_context)
