"""
子智能体与数据源工具
"""
from typing import Dict, Any, Optional, List
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
import json
import logging

import yaml

from ...models.events import StreamEventType
from ..agent import ModelAgent, DispatchContext
from ..exceptions import ToolExecutionError
from ..model_client import ChatMessage
from ..tools import LocalToolRegistry, ToolDefinition, ToolContext


logger = logging.getLogger(__name__)


DEFAULT_QUERY_LIMIT = 50
MAX_QUERY_LIMIT = 500


class DataTools(ABC):
    """审计数据源（外部协作者），以工具的形式提供给智能体"""

    @abstractmethod
    async def get_schema(self, table: Optional[str] = None) -> Dict[str, Any]:
        """表结构与行数"""
        pass

    @abstractmethod
    async def query_data(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0
    ) -> Dict[str, Any]:
        """查询表数据"""
        pass

    def register(self, registry: LocalToolRegistry):
        """注册为工具"""
        registry.register_tool(ToolDefinition(
            name="data_get_schema",
            description=(
                "Get the audit data schema: available tables, their columns and row counts. "
                "Call this first to understand what data is available."
            ),
            parameters_schema={
                "type": "object",
                "properties": {
                    "table": {"type": "string", "description": "Only describe this table"},
                },
            },
        ), self._get_schema_tool)

        registry.register_tool(ToolDefinition(
            name="data_query",
            description="Query a table of the audit data with equality filters, sorting and pagination.",
            parameters_schema={
                "type": "object",
                "properties": {
                    "table": {"type": "string"},
                    "filters": {"type": "object", "description": "Column/value pairs that must match"},
                    "order_by": {"type": "string"},
                    "descending": {"type": "boolean"},
                    "limit": {"type": "integer", "minimum": 1, "maximum": MAX_QUERY_LIMIT},
                    "offset": {"type": "integer", "minimum": 0},
                },
                "required": ["table"],
            },
        ), self._query_tool)

    async def _get_schema_tool(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        return await self.get_schema(arguments.get("table"))

    async def _query_tool(self, arguments: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        return await self.query_data(
            arguments["table"],
            filters=arguments.get("filters"),
            order_by=arguments.get("order_by"),
            descending=arguments.get("descending", False),
            limit=arguments.get("limit", DEFAULT_QUERY_LIMIT),
            offset=arguments.get("offset", 0),
        )


class InMemoryDataTools(DataTools):
    """内存数据源，表为字典列表"""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = dict(tables or {})

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryDataTools":
        """从 YAML/JSON 文件加载，顶层为 {表名: [行, ...]}"""
        path = Path(path)
        with open(path, 'r', encoding='utf-8') as f:
            if path.suffix.lower() == '.json':
                data = json.load(f)
            else:
                data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Data file {path} must map table names to rows")
        logger.info(f"Loaded {len(data)} data tables from {path}")
        return cls(data)

    def _rows(self, table: str) -> List[Dict[str, Any]]:
        for name, rows in self.tables.items():
            if name.lower() == table.lower():
                return rows
        raise ToolExecutionError("data_query", f"Unknown table: {table}")

    async def get_schema(self, table: Optional[str] = None) -> Dict[str, Any]:
        names = [table] if table else list(self.tables)
        schema = {}
        for name in names:
            rows = self._rows(name)
            columns: Dict[str, str] = {}
            for row in rows:
                for column, value in row.items():
                    columns.setdefault(column, type(value).__name__)
            schema[name] = {"columns": columns, "row_count": len(rows)}
        return {"tables": schema}

    async def query_data(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: int = DEFAULT_QUERY_LIMIT,
        offset: int = 0
    ) -> Dict[str, Any]:
        rows = [
            row for row in self._rows(table)
            if all(row.get(column) == value for column, value in (filters or {}).items())
        ]
        if order_by:
            # None 排在最后
            rows.sort(
                key=lambda row: (row.get(order_by) is None, row.get(order_by) or 0),
                reverse=descending
            )

        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        page = rows[offset:offset + limit]
        return {"table": table, "total": len(rows), "count": len(page), "rows": page}


class SubAgentKind(Enum):
    """可委派的子智能体"""
    WRANGLER = "wrangler"
    ANALYZER = "analyzer"


SUB_AGENT_INSTRUCTIONS = {
    SubAgentKind.WRANGLER: (
        "You are the data wrangler. Use the data tools to look up the records the task asks about, "
        "cross-reference tables, and report what you found as concise markdown tables. "
        "Flag anomalies explicitly."
    ),
    SubAgentKind.ANALYZER: (
        "You are the data analyzer. Analyze the data given in the task: compute statistics, "
        "find outliers and patterns, and present the key findings as bullet points. "
        "You have no query tools; work only with the data you are given."
    ),
}


class SubAgent(ModelAgent):
    """被主控智能体委派单个任务的子智能体"""

    def __init__(self, context: DispatchContext, kind: SubAgentKind):
        self.kind = kind
        super().__init__(context)

    @property
    def agent_id(self) -> str:
        return self.kind.value

    def system_instruction(self) -> str:
        return SUB_AGENT_INSTRUCTIONS[self.kind]

    def register_tools(self, registry: LocalToolRegistry):
        if self.kind == SubAgentKind.WRANGLER and self.context.data_tools is not None:
            self.context.data_tools.register(registry)


class DelegateTool:
    """delegate_to 工具：把一个任务交给子智能体，转发其工具事件"""

    def __init__(self, context: DispatchContext, step_label: Optional[str] = None):
        self.context = context
        self.step_label = step_label

    def register(self, registry: LocalToolRegistry):
        registry.register_tool(ToolDefinition(
            name="delegate_to",
            description=(
                "Delegate a task to a specialist sub-agent. 'wrangler' queries the audit data; "
                "'analyzer' analyzes data passed in the task."
            ),
            parameters_schema={
                "type": "object",
                "properties": {
                    "agent": {"type": "string", "enum": [kind.value for kind in SubAgentKind]},
                    "task": {"type": "string", "minLength": 1},
                },
                "required": ["agent", "task"],
            },
        ), self.delegate)

    async def delegate(self, arguments: Dict[str, Any], context: ToolContext):
        kind = SubAgentKind(arguments["agent"])
        agent = SubAgent(self.context, kind)
        agent.step_label = self.step_label

        text_parts: List[str] = []
        try:
            async for event in agent.run_tool_loop([ChatMessage(role="user", content=arguments["task"])]):
                if event.type == StreamEventType.TEXT:
                    text_parts.append(event.content)
                elif event.type == StreamEventType.ERROR:
                    raise ToolExecutionError("delegate_to", event.error)
                else:
                    yield event
        finally:
            await agent.close()

        logger.info(f"Sub-agent {kind.value} finished delegated task")
        yield {"agent": kind.value, "response": "".join(text_parts).strip()}
