"""
智能体变体
"""
from .character import CharacterAgent, CharacterId, Cooperation, Persona, PERSONAS
from .judge import JudgeAgent
from .orchestrator import OrchestratorAgent
from .step_executor import StepExecutor, make_step_drafter
from .sub_agents import (
    DataTools, InMemoryDataTools, SubAgent, SubAgentKind, DelegateTool
)

__all__ = [
    'CharacterAgent',
    'CharacterId',
    'Cooperation',
    'Persona',
    'PERSONAS',
    'JudgeAgent',
    'OrchestratorAgent',
    'StepExecutor',
    'make_step_drafter',
    'DataTools',
    'InMemoryDataTools',
    'SubAgent',
    'SubAgentKind',
    'DelegateTool',
]
