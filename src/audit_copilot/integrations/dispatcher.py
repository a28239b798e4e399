"""
智能体分发器 - 把角色解析为具体的智能体变体
"""
from typing import Dict, Any, Optional, List
from dataclasses import dataclass
from enum import Enum
import logging

from ..core.runner import ReviewPolicy, defer_review
from .agent import StreamingAgent, DispatchContext
from .agents.character import CharacterAgent, CharacterId, PERSONAS
from .agents.judge import JudgeAgent
from .agents.orchestrator import OrchestratorAgent
from .exceptions import UnknownAgentRoleError


logger = logging.getLogger(__name__)


CHARACTER_PREFIX = "character:"


class AgentKind(Enum):
    """智能体变体"""
    ORCHESTRATOR = "orchestrator"
    JUDGE = "judge"
    CHARACTER = "character"


@dataclass(frozen=True)
class AgentRole:
    """请求的智能体角色"""
    kind: AgentKind
    character: Optional[CharacterId] = None

    @classmethod
    def parse(cls, agent_id: Optional[str]) -> "AgentRole":
        """
        解析角色ID

        "copilot" 或空 → 主控智能体，"judge" → 评审，"character:<id>" → 角色人物。

        Raises:
            UnknownAgentRoleError: 未知角色或未知角色人物
        """
        value = (agent_id or "").strip()
        if value in ("", "copilot"):
            return cls(AgentKind.ORCHESTRATOR)
        if value == "judge":
            return cls(AgentKind.JUDGE)
        if value.startswith(CHARACTER_PREFIX):
            try:
                character = CharacterId(value[len(CHARACTER_PREFIX):])
            except ValueError:
                raise UnknownAgentRoleError(value)
            return cls(AgentKind.CHARACTER, character)
        raise UnknownAgentRoleError(value)

    @property
    def agent_id(self) -> str:
        if self.kind == AgentKind.ORCHESTRATOR:
            return "copilot"
        if self.kind == AgentKind.CHARACTER:
            return f"{CHARACTER_PREFIX}{self.character.value}"
        return self.kind.value


@dataclass(frozen=True)
class AgentOption:
    """可选智能体（列表展示用）"""
    id: str
    name: str
    description: str
    kind: AgentKind
    cooperation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "kind": self.kind.value,
        }
        if self.cooperation:
            data["cooperation"] = self.cooperation
        return data


AGENT_OPTIONS: List[AgentOption] = [
    AgentOption("copilot", "Audit Copilot", "Plans and runs audit workflows", AgentKind.ORCHESTRATOR),
    AgentOption("judge", "Audit Judge", "Evaluates and scores your audit work", AgentKind.JUDGE),
] + [
    AgentOption(
        f"{CHARACTER_PREFIX}{character.value}",
        persona.name,
        persona.title,
        AgentKind.CHARACTER,
        persona.cooperation.value,
    )
    for character, persona in PERSONAS.items()
]


class AgentDispatcher:
    """
    智能体分发器

    无状态，每次调用创建一个新的智能体实例。
    """

    def __init__(self, review_policy: ReviewPolicy = defer_review):
        self.review_policy = review_policy

    def dispatch(self, role: AgentRole, context: DispatchContext) -> StreamingAgent:
        """根据角色创建智能体"""
        if role.kind == AgentKind.ORCHESTRATOR:
            agent = OrchestratorAgent(context, self.review_policy)
        elif role.kind == AgentKind.JUDGE:
            agent = JudgeAgent(context)
        elif role.kind == AgentKind.CHARACTER:
            agent = CharacterAgent(context, role.character)
        else:
            raise UnknownAgentRoleError(role.kind.value)

        logger.info(
            f"Dispatched agent {role.agent_id} for user {context.user.user_id} "
            f"(model={context.model}, session={context.session_id})"
        )
        return agent
