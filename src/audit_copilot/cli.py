"""
Audit Copilot CLI
"""
import click
import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

from .config import Settings
from .core.engine import build_engine
from .core.parser import WorkflowParser
from .core.runner import WorkflowRunner, auto_approve, defer_review
from .core.scheduler import build_execution_plan
from .exceptions import AuditCopilotError
from .integrations.agent import DispatchContext
from .integrations.agents.step_executor import make_step_drafter
from .integrations.model_client import ScriptedModelClient, is_valid_model
from .models.events import StreamEventType
from .models.usage import UserContext


def _load_workflow(workflow_file: str):
    try:
        return WorkflowParser().parse_file(Path(workflow_file))
    except AuditCopilotError as e:
        raise click.ClickException(str(e))


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
def cli(verbose):
    """Audit Copilot CLI"""
    load_dotenv()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


@cli.command()
@click.option('--host', default=None, help='Host to bind to')
@click.option('--port', default=None, type=int, help='Port to bind to')
@click.option('--reload', is_flag=True, help='Enable auto-reload')
def serve(host, port, reload):
    """Start the API server"""
    import uvicorn

    settings = Settings.from_env()
    host = host or settings.api_host
    port = port or settings.api_port

    click.echo(f"Starting API server on {host}:{port}")
    uvicorn.run(
        "audit_copilot.api:app",
        host=host,
        port=port,
        reload=reload or settings.api_reload,
        log_level="info"
    )


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True))
def validate(workflow_file):
    """Validate a workflow definition"""
    workflow = _load_workflow(workflow_file)
    plan = build_execution_plan(workflow, set())

    click.echo(f"Workflow '{workflow.name}' ({workflow.id}): {len(workflow.nodes)} steps, "
               f"{len(workflow.valid_edges())} edges")
    if plan.has_cycles:
        click.echo(f"Warning: {plan.warning}", err=True)
        click.echo(f"Unreachable steps: {', '.join(plan.unreachable)}", err=True)
        raise SystemExit(1)
    click.echo("Workflow is valid")


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True))
@click.option('--completed', '-c', multiple=True, help='Node id treated as completed')
@click.option('--json', 'as_json', is_flag=True, help='Print the plan as JSON')
def plan(workflow_file, completed, as_json):
    """Show the execution plan of a workflow"""
    workflow = _load_workflow(workflow_file)
    execution_plan = build_execution_plan(workflow, set(completed))

    if as_json:
        click.echo(json.dumps(execution_plan.to_dict(), indent=2, ensure_ascii=False))
        return

    labels = {node.id: node.label for node in workflow.nodes}
    click.echo(f"Progress: {execution_plan.completed}/{execution_plan.total} ({execution_plan.progress}%)")
    for index, group in enumerate(execution_plan.parallel_groups, start=1):
        names = ", ".join(f"{labels[node_id]} [{node_id}]" for node_id in group)
        click.echo(f"  Group {index}: {names}")
    if execution_plan.next_steps:
        click.echo(f"Next: {', '.join(execution_plan.next_steps)}")
    if execution_plan.has_cycles:
        click.echo(f"Warning: {execution_plan.warning}", err=True)


@cli.command()
@click.argument('workflow_file', type=click.Path(exists=True))
@click.option('--auto-approve', 'approve_all', is_flag=True, help='Approve every draft without review')
@click.option('--scripted', is_flag=True, help='Use the scripted model client instead of OpenAI')
@click.option('--model', default=None, help='Model used for step drafts')
@click.option('--user', 'user_id', default='cli-user', help='User id recorded in the ledger')
def run(workflow_file, approve_all, scripted, model, user_id):
    """Run a workflow from file"""

    async def _run():
        settings = Settings.from_env()
        # 命令行运行只使用内存仓库
        settings = replace(settings, database_url=None)
        model_client = ScriptedModelClient() if scripted else None
        resources = await build_engine(settings, model_client)
        engine = resources.engine

        try:
            user = UserContext(user_id=user_id)
            chosen_model = model or settings.default_model
            if not is_valid_model(chosen_model):
                raise click.ClickException(f"Unsupported model: {chosen_model}")

            workflow = await engine.import_workflow(user, Path(workflow_file))
            click.echo(f"Loaded workflow: {workflow.name} ({len(workflow.nodes)} steps)")

            context = DispatchContext(
                user=user,
                model=chosen_model,
                model_client=engine.model_client,
                governor=engine.governor,
                ledger=engine.ledger,
                workflows=engine.workflows,
                scores=engine.scores,
                data_tools=engine.data_tools,
            )
            runner = WorkflowRunner(
                engine.ledger,
                make_step_drafter(context),
                auto_approve if approve_all else defer_review
            )

            async for event in runner.run(user.user_id, workflow):
                _echo_event(event)

            summary = runner.summary
            click.echo(summary.message)
            check = await engine.check_usage(user)
            click.echo(f"Spend this month: ${float(check.current_spend):.4f} of ${float(check.monthly_limit):.2f}")
        except AuditCopilotError as e:
            raise click.ClickException(str(e))
        finally:
            await resources.close()

    asyncio.run(_run())


def _echo_event(event):
    if event.type == StreamEventType.STEP_STATUS:
        status = event.step_status
        click.echo(f"[{status['status']}] {status['node_id']}")
        if status.get("result"):
            click.echo(status["result"])
    elif event.type == StreamEventType.TOOL_CALL:
        call = event.tool_call
        prefix = f"{call.step_label}: " if call.step_label else ""
        click.echo(f"  {prefix}calling {call.name}")
    elif event.type == StreamEventType.ERROR:
        click.echo(f"Error: {event.error}", err=True)


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
