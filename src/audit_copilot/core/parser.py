"""
工作流解析器
"""
import yaml
import json
import logging
from typing import Dict, Any, List, Optional, Union
from pathlib import Path

from ..models.workflow import WorkflowGraph, StepNode, Edge
from ..exceptions import WorkflowParseError, WorkflowValidationError


logger = logging.getLogger(__name__)


class WorkflowParser:
    """
    工作流解析器

    支持 YAML/JSON 文件与字符串、画布导出格式
    ({version, data: {workflows: [{diagramJson}]}})、直接的 {nodes, edges}
    格式，以及被二次编码成字符串的 JSON。
    """

    def __init__(self):
        self.parsers = {
            'yaml': self._parse_yaml,
            'yml': self._parse_yaml,
            'json': self._parse_json
        }

    def parse(self, source: Union[str, Path, Dict[str, Any]], owner_id: str = "") -> WorkflowGraph:
        """
        解析工作流定义

        Args:
            source: 文件路径、字符串或字典
            owner_id: 工作流所有者

        Returns:
            WorkflowGraph: 解析后的工作流图
        """
        if isinstance(source, dict):
            return self._parse_dict(source, owner_id)

        if isinstance(source, (str, Path)):
            path = Path(source)
            try:
                is_file = path.is_file()
            except OSError:
                is_file = False
            if is_file:
                return self.parse_file(path, owner_id)
            return self.parse_string(str(source), owner_id)

        raise WorkflowParseError(f"Unsupported source type: {type(source)}")

    def parse_file(self, file_path: Path, owner_id: str = "") -> WorkflowGraph:
        """解析工作流文件"""
        file_path = Path(file_path)
        suffix = file_path.suffix.lower().lstrip('.')
        if suffix not in self.parsers:
            raise WorkflowParseError(f"Unsupported file format: {suffix}")

        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()

        data = self.parsers[suffix](content)
        workflow = self._parse_dict(data, owner_id)
        if not workflow.slug:
            workflow.slug = _slugify(workflow.name or file_path.stem)
        return workflow

    def parse_string(self, content: str, owner_id: str = "") -> WorkflowGraph:
        """解析工作流字符串，JSON 优先，YAML 兜底"""
        try:
            data = self._parse_json(content)
        except WorkflowParseError:
            data = self._parse_yaml(content)
        return self._parse_dict(data, owner_id)

    def _parse_yaml(self, content: str) -> Dict[str, Any]:
        """解析YAML格式"""
        try:
            return yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise WorkflowParseError(f"Failed to parse YAML: {e}")

    def _parse_json(self, content: str) -> Dict[str, Any]:
        """解析JSON格式，处理二次编码的字符串"""
        try:
            data = json.loads(content)
            if isinstance(data, str):
                data = json.loads(data)
            return data
        except json.JSONDecodeError as e:
            raise WorkflowParseError(f"Failed to parse JSON: {e}")

    def _parse_dict(self, data: Any, owner_id: str = "") -> WorkflowGraph:
        """解析字典格式的工作流定义"""
        if not isinstance(data, dict):
            raise WorkflowParseError("Workflow definition must be a mapping")

        if 'workflow' in data and isinstance(data['workflow'], dict):
            data = data['workflow']

        # 画布导出格式
        exported = (data.get('data') or {}).get('workflows') if data.get('version') else None
        if exported and isinstance(exported, list) and exported[0].get('diagramJson'):
            workflow_data = exported[0]
            diagram = workflow_data['diagramJson']
            data = {
                'id': workflow_data.get('id'),
                'slug': workflow_data.get('slug'),
                'name': workflow_data.get('name'),
                'description': workflow_data.get('description'),
                'nodes': diagram.get('nodes') or [],
                'edges': diagram.get('edges') or [],
            }
        elif 'nodes' not in data and 'edges' not in data:
            raise WorkflowParseError("Invalid workflow format: expected nodes and edges")

        workflow = WorkflowGraph(
            slug=data.get('slug') or '',
            name=data.get('name') or '',
            owner_id=owner_id or data.get('owner_id') or '',
            description=data.get('description'),
            nodes=[self._parse_node(n) for n in data.get('nodes') or []],
            metadata=data.get('metadata') or {},
        )
        if data.get('id'):
            workflow.id = str(data['id'])

        workflow.edges = self._parse_edges(data.get('edges') or [], workflow)

        errors = workflow.validate()
        if errors:
            raise WorkflowValidationError(f"Workflow validation failed: {errors}")

        return workflow

    def _parse_node(self, data: Any) -> StepNode:
        """解析节点，画布节点的字段在 data 下"""
        if isinstance(data, str):
            return StepNode(id=data)
        if not isinstance(data, dict):
            raise WorkflowParseError(f"Invalid node definition: {data!r}")

        fields = dict(data.get('data') or {})
        fields.update({k: v for k, v in data.items() if k != 'data'})

        node_id = fields.get('id')
        if not node_id:
            raise WorkflowValidationError(f"Node without id: {data!r}")

        return StepNode(
            id=str(node_id),
            label=fields.get('label') or fields.get('name') or '',
            description=fields.get('description'),
            instructions=fields.get('instructions') or '',
        )

    def _parse_edges(self, edges_data: List[Any], workflow: WorkflowGraph) -> List[Edge]:
        """解析边，悬空边丢弃"""
        known = set(workflow.node_ids)
        edges = []
        for item in edges_data:
            edge = self._parse_edge(item)
            if edge is None:
                continue
            if edge.source not in known or edge.target not in known:
                logger.warning(
                    f"Dropping dangling edge {edge.source} -> {edge.target} "
                    f"in workflow {workflow.name or workflow.id}"
                )
                continue
            edges.append(edge)
        return edges

    def _parse_edge(self, data: Any) -> Optional[Edge]:
        """解析边，支持 source/target 与 from/to 两种写法"""
        if isinstance(data, (list, tuple)) and len(data) == 2:
            return Edge(source=str(data[0]), target=str(data[1]))
        if not isinstance(data, dict):
            return None

        source = data.get('source', data.get('from'))
        target = data.get('target', data.get('to'))
        if source is None or target is None:
            return None

        edge = Edge(source=str(source), target=str(target))
        if data.get('id'):
            edge.id = str(data['id'])
        return edge


def _slugify(value: str) -> str:
    """生成 slug"""
    chars = [c if c.isascii() and c.isalnum() else '-' for c in value.lower()]
    slug = ''.join(chars).strip('-')
    while '--' in slug:
        slug = slug.replace('--', '-')
    return slug
