"""
工作流与步骤 API 路由
"""
from fastapi import APIRouter, HTTPException, Depends, status
from typing import List, Dict, Any
import logging

from ..models import (
    WorkflowImportRequest, WorkflowResponse, WorkflowDetailResponse,
    StepUpdateRequest, StepEntryResponse, StepsResponse
)
from ..dependencies import get_engine, get_current_user, to_http_exception
from ...core.engine import CopilotEngine
from ...core.ledger import UNSET
from ...exceptions import AuditCopilotError, LedgerWriteError
from ...models.workflow import WorkflowGraph
from ...models.usage import UserContext


logger = logging.getLogger(__name__)
router = APIRouter()


def _workflow_response(workflow: WorkflowGraph) -> WorkflowResponse:
    return WorkflowResponse(
        id=workflow.id,
        slug=workflow.slug,
        name=workflow.name,
        description=workflow.description,
        step_count=len(workflow.nodes),
        created_at=workflow.created_at,
        updated_at=workflow.updated_at,
    )


@router.get("", response_model=List[WorkflowResponse])
async def list_workflows(
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> List[WorkflowResponse]:
    """列出当前用户的工作流"""
    workflows = await engine.list_workflows(current_user)
    return [_workflow_response(w) for w in workflows]


@router.post("", response_model=WorkflowDetailResponse, status_code=status.HTTP_201_CREATED)
async def import_workflow(
    request: WorkflowImportRequest,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> WorkflowDetailResponse:
    """导入工作流定义"""
    try:
        workflow = await engine.import_workflow(current_user, request.definition)
    except AuditCopilotError as e:
        raise to_http_exception(e)

    data = workflow.to_dict()
    return WorkflowDetailResponse(
        **_workflow_response(workflow).model_dump(),
        nodes=data["nodes"],
        edges=data["edges"],
    )


@router.get("/{workflow_id}", response_model=WorkflowDetailResponse)
async def get_workflow(
    workflow_id: str,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> WorkflowDetailResponse:
    """获取工作流详情"""
    try:
        workflow = await engine.get_workflow(current_user, workflow_id)
    except AuditCopilotError as e:
        raise to_http_exception(e)

    data = workflow.to_dict()
    return WorkflowDetailResponse(
        **_workflow_response(workflow).model_dump(),
        nodes=data["nodes"],
        edges=data["edges"],
    )


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """删除工作流及其台账"""
    try:
        removed = await engine.delete_workflow(current_user, workflow_id)
    except AuditCopilotError as e:
        raise to_http_exception(e)
    return {"success": True, "deleted_steps": removed}


@router.get("/{workflow_id}/steps", response_model=StepsResponse)
async def get_steps(
    workflow_id: str,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> StepsResponse:
    """获取步骤台账与进度"""
    try:
        progress = await engine.get_steps(current_user, workflow_id)
    except AuditCopilotError as e:
        raise to_http_exception(e)

    return StepsResponse(
        workflow_id=progress.workflow_id,
        total=progress.total,
        completed=progress.completed,
        progress=progress.progress,
        steps=[StepEntryResponse.model_validate(entry) for entry in progress.entries],
    )


@router.get("/{workflow_id}/plan")
async def get_plan(
    workflow_id: str,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """获取执行计划"""
    try:
        plan = await engine.get_plan(current_user, workflow_id)
    except AuditCopilotError as e:
        raise to_http_exception(e)
    return plan.to_dict()


@router.get("/{workflow_id}/steps/{node_id}/context")
async def get_step_context(
    workflow_id: str,
    node_id: str,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> Dict[str, Any]:
    """获取步骤上下文（含上游结果）"""
    try:
        context = await engine.get_step_context(current_user, workflow_id, node_id)
    except AuditCopilotError as e:
        raise to_http_exception(e)
    return context.to_dict()


@router.patch("/{workflow_id}/steps/{node_id}", response_model=StepEntryResponse)
async def update_step(
    workflow_id: str,
    node_id: str,
    request: StepUpdateRequest,
    engine: CopilotEngine = Depends(get_engine),
    current_user: UserContext = Depends(get_current_user)
) -> StepEntryResponse:
    """保存或审批步骤结果"""
    fields = request.model_fields_set
    if not fields:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": "validation_error",
                "message": "Provide result and/or completed"
            }
        )

    try:
        entry = await engine.update_step(
            current_user,
            workflow_id,
            node_id,
            result=request.result if "result" in fields else UNSET,
            completed=bool(request.completed) if "completed" in fields else UNSET,
        )
    except LedgerWriteError as e:
        logger.error(f"Approval of step {node_id} in workflow {workflow_id} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "ledger_write_failed",
                "message": f"Your approval was not saved: {e}"
            }
        )
    except AuditCopilotError as e:
        raise to_http_exception(e)

    return StepEntryResponse.model_validate(entry)
