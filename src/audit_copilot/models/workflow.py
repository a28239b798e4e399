"""
工作流定义模型
"""
from collections import Counter
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Set
from uuid import uuid4
from datetime import datetime, timezone


def utcnow() -> datetime:
    """带时区的当前UTC时间"""
    return datetime.now(timezone.utc)


@dataclass
class StepNode:
    """工作流步骤节点"""
    id: str
    label: str = ""
    description: Optional[str] = None
    instructions: str = ""  # 步骤执行说明
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.label:
            self.label = self.id


@dataclass
class Edge:
    """工作流边（source 完成后 target 才可执行）"""
    source: str = ""
    target: str = ""
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class WorkflowGraph:
    """工作流图"""
    id: str = field(default_factory=lambda: str(uuid4()))
    slug: str = ""
    name: str = ""
    owner_id: str = ""
    description: Optional[str] = None
    nodes: List[StepNode] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def node_ids(self) -> List[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> Optional[StepNode]:
        """根据ID获取节点"""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def valid_edges(self) -> List[Edge]:
        """两端都存在的边，悬空边被丢弃"""
        known: Set[str] = set(self.node_ids)
        return [e for e in self.edges if e.source in known and e.target in known]

    def get_upstream_nodes(self, node_id: str) -> List[StepNode]:
        """获取节点的上游节点"""
        upstream = []
        for edge in self.valid_edges():
            if edge.target == node_id:
                upstream.append(self.get_node(edge.source))
        return upstream

    def validate(self) -> List[str]:
        """验证工作流定义，环和悬空边不算错误"""
        errors = []

        # 检查节点ID唯一性
        node_ids = self.node_ids
        if len(node_ids) != len(set(node_ids)):
            duplicates = sorted(n for n, count in Counter(node_ids).items() if count > 1)
            errors.append(f"Duplicate node IDs found: {duplicates}")

        if any(not node_id for node_id in node_ids):
            errors.append("Node IDs must be non-empty")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "owner_id": self.owner_id,
            "description": self.description,
            "nodes": [
                {
                    "id": n.id,
                    "label": n.label,
                    "description": n.description,
                    "instructions": n.instructions,
                }
                for n in self.nodes
            ],
            "edges": [
                {"id": e.id, "source": e.source, "target": e.target}
                for e in self.edges
            ],
        }
