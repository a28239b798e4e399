"""External system integrations"""

# Model client
from .model_client import (
    ModelClient,
    ModelSession,
    OpenAIModelClient,
    ScriptedModelClient,
    ModelChunk,
    ChatMessage,
    Attachment,
    ToolSpec,
    ToolInvocation,
    SUPPORTED_MODELS,
    is_valid_model
)

# Tools
from .tools import LocalToolRegistry, ToolDefinition, ToolContext, WorkflowTools
from .validators import SchemaValidator

# Agents
from .agent import StreamingAgent, ModelAgent, DispatchContext, RunTarget
from .agents import (
    OrchestratorAgent,
    JudgeAgent,
    CharacterAgent,
    CharacterId,
    StepExecutor,
    make_step_drafter,
    DataTools,
    InMemoryDataTools
)
from .dispatcher import AgentDispatcher, AgentRole, AgentKind, AgentOption, AGENT_OPTIONS
from .transport import stream_ndjson, NDJSON_MEDIA_TYPE

# Models
from .models import ChatRequest, AttachmentModel, HistoryMessage, RunMode

# Exceptions
from .exceptions import (
    AgentRuntimeError,
    UnknownAgentRoleError,
    ModelInvocationError,
    ToolExecutionError
)

__all__ = [
    # Model client
    'ModelClient',
    'ModelSession',
    'OpenAIModelClient',
    'ScriptedModelClient',
    'ModelChunk',
    'ChatMessage',
    'Attachment',
    'ToolSpec',
    'ToolInvocation',
    'SUPPORTED_MODELS',
    'is_valid_model',

    # Tools
    'LocalToolRegistry',
    'ToolDefinition',
    'ToolContext',
    'WorkflowTools',
    'SchemaValidator',

    # Agents
    'StreamingAgent',
    'ModelAgent',
    'DispatchContext',
    'RunTarget',
    'OrchestratorAgent',
    'JudgeAgent',
    'CharacterAgent',
    'CharacterId',
    'StepExecutor',
    'make_step_drafter',
    'DataTools',
    'InMemoryDataTools',
    'AgentDispatcher',
    'AgentRole',
    'AgentKind',
    'AgentOption',
    'AGENT_OPTIONS',
    'stream_ndjson',
    'NDJSON_MEDIA_TYPE',

    # Models
    'ChatRequest',
    'AttachmentModel',
    'HistoryMessage',
    'RunMode',

    # Exceptions
    'AgentRuntimeError',
    'UnknownAgentRoleError',
    'ModelInvocationError',
    'ToolExecutionError',
]
