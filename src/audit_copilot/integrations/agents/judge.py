"""
评审智能体 - 给用户的审计工作打分
"""
from typing import Dict, Any, Optional
import logging

from ...models.step import AuditScore
from ..agent import ModelAgent, DispatchContext
from ..exceptions import ToolExecutionError
from ..tools import LocalToolRegistry, ToolDefinition, ToolContext, WorkflowTools


logger = logging.getLogger(__name__)


JUDGE_INSTRUCTION = (
    "You are the audit judge. Review the user's completed workflow steps, evaluate the quality of "
    "their audit work (coverage, evidence, accuracy of findings), and present a score card. "
    "Score from 1 to 10. After presenting the score call save_audit_score exactly once."
)


class JudgeAgent(ModelAgent):
    """评审智能体"""

    agent_id = "judge"

    def __init__(self, context: DispatchContext):
        super().__init__(context)
        self.last_score: Optional[AuditScore] = None

    def system_instruction(self) -> str:
        return JUDGE_INSTRUCTION

    def register_tools(self, registry: LocalToolRegistry):
        WorkflowTools(self.context.workflows, self.context.ledger).register(registry, read_only=True)

        registry.register_tool(ToolDefinition(
            name="save_audit_score",
            description="Save the audit score for the workflow. Call this after presenting the score.",
            parameters_schema={
                "type": "object",
                "properties": {
                    "workflow_id": {"type": "string"},
                    "score": {"type": "integer", "minimum": 1, "maximum": 10},
                    "summary": {"type": "string"},
                    "findings": {"type": "array", "items": {"type": "object"}},
                },
                "required": ["score", "summary"],
            },
        ), self.save_audit_score)

    async def save_audit_score(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        workflow_id = arguments.get("workflow_id") or context.workflow_id
        if not workflow_id:
            raise ToolExecutionError("save_audit_score", "No workflow_id given")
        workflow = await self.context.workflows.get_owned(workflow_id, context.user.user_id)

        score = await self.context.scores.save(AuditScore(
            user_id=context.user.user_id,
            workflow_id=workflow.id,
            score=arguments["score"],
            summary=arguments["summary"],
            findings=arguments.get("findings") or [],
        ))
        self.last_score = score
        logger.info(f"Saved audit score {score.score} for workflow {workflow.id} of user {score.user_id}")
        return {"saved": True, "score": score.score, "message": "Audit score saved."}

    async def evaluate(self, workflow_id: str, sink=None) -> Dict[str, Any]:
        """一次性评审，供主控智能体调用"""
        response = await self.complete(
            f"Evaluate my audit work on workflow {workflow_id}. "
            "Read the progress and step results first.",
            sink,
        )
        return {
            "response": response,
            "score": self.last_score.to_dict() if self.last_score else None,
        }
