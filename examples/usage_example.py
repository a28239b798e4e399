"""
Audit Copilot 使用示例

离线运行：使用 ScriptedModelClient，不需要 OPENAI_API_KEY。
"""
import asyncio
import json
from pathlib import Path
import logging

from audit_copilot.config import Settings
from audit_copilot.core.engine import build_engine
from audit_copilot.integrations.model_client import ScriptedModelClient
from audit_copilot.models.usage import UserContext


# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

EXAMPLES_DIR = Path(__file__).parent


async def print_stream(stream):
    """打印 NDJSON 事件"""
    async for line in stream:
        event = json.loads(line)
        if event["type"] == "step_status":
            print(f"  [{event['step_status']['status']}] {event['step_status']['node_id']}")
        elif event["type"] == "text":
            print(f"  {event['content']}")
        elif event["type"] == "error":
            print(f"  错误: {event['error']}")


async def example_plan(engine, user):
    """执行计划示例"""
    print("\n=== 执行计划 ===")
    workflow = await engine.import_workflow(user, EXAMPLES_DIR / "revenue_audit.yaml")
    plan = await engine.get_plan(user, workflow.id)
    for index, group in enumerate(plan.parallel_groups, start=1):
        print(f"第 {index} 组: {', '.join(group)}")
    print(f"可执行: {plan.next_steps}")
    return workflow


async def example_run(engine, user, workflow):
    """运行模式示例：草稿等待审批，审批后再次运行"""
    print("\n=== 运行模式 ===")
    request = {
        "message": "Run the audit",
        "run_mode": {"workflow_id": workflow.id},
    }
    await print_stream(await engine.start_chat(user, request))

    # 人工审批第一个草稿
    await engine.update_step(user, workflow.id, "planning", completed=True)
    print("已审批 planning，再次运行")
    await print_stream(await engine.start_chat(user, request))

    progress = await engine.get_steps(user, workflow.id)
    print(f"进度: {progress.completed}/{progress.total} ({progress.progress}%)")


async def example_usage(engine, user):
    """用量示例"""
    print("\n=== 用量 ===")
    check = await engine.check_usage(user)
    print(json.dumps(check.to_dict(), indent=2))


async def main():
    """主函数"""
    settings = Settings(data_source_path=str(EXAMPLES_DIR / "audit_data.yaml"))
    resources = await build_engine(settings, ScriptedModelClient(default_reply="Draft ready."))
    engine = resources.engine
    user = UserContext(user_id="auditor-1", email="auditor@example.com")

    try:
        workflow = await example_plan(engine, user)
        await example_run(engine, user, workflow)
        await example_usage(engine, user)
    finally:
        await resources.close()


if __name__ == "__main__":
    asyncio.run(main())
