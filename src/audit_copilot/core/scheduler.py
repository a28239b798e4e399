"""
工作流图调度：拓扑排序、并行分组、环检测与可执行步骤计算

这里的函数都是纯函数，不持有跨调用的状态，每次调度请求都基于调用方
传入的节点与边重新计算。
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Iterable, Union, Set, Mapping

from ..models.workflow import WorkflowGraph, Edge, StepNode


CYCLE_WARNING = (
    "Workflow contains cycles, some steps may not appear in the execution order."
)

NodeLike = Union[str, StepNode]
EdgeLike = Union[Edge, Mapping[str, Any]]


@dataclass
class TopologicalOrder:
    """拓扑排序结果"""
    order: List[str] = field(default_factory=list)
    parallel_groups: List[List[str]] = field(default_factory=list)
    has_cycles: bool = False


def _node_id(node: NodeLike) -> str:
    return node if isinstance(node, str) else node.id


def _endpoints(edge: EdgeLike) -> tuple:
    if isinstance(edge, Mapping):
        return edge.get("source"), edge.get("target")
    return edge.source, edge.target


def topological_order(nodes: Iterable[NodeLike], edges: Iterable[EdgeLike]) -> TopologicalOrder:
    """
    Kahn 算法分层拓扑排序

    每一轮取出全部入度为0的节点作为一个并行组，同组节点保持输入顺序。
    存在环或无法解析的节点时不抛异常，这些节点不出现在 order 中。

    Args:
        nodes: 节点ID或节点对象
        edges: 边对象或 {source, target} 字典

    Returns:
        TopologicalOrder
    """
    # dict 保持插入顺序，同时去重
    in_degree: Dict[str, int] = {}
    for node in nodes:
        in_degree[_node_id(node)] = 0

    adjacency: Dict[str, List[str]] = {node_id: [] for node_id in in_degree}

    for edge in edges:
        source, target = _endpoints(edge)
        # 跳过悬空边
        if source not in in_degree or target not in in_degree:
            continue
        in_degree[target] += 1
        adjacency[source].append(target)

    result = TopologicalOrder()
    queue = [node_id for node_id, degree in in_degree.items() if degree == 0]

    while queue:
        result.parallel_groups.append(queue)
        result.order.extend(queue)

        next_queue = []
        for node_id in queue:
            for neighbor in adjacency[node_id]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    next_queue.append(neighbor)
        queue = next_queue

    result.has_cycles = len(result.order) < len(in_degree)
    return result


def unresolved_nodes(nodes: Iterable[NodeLike], result: TopologicalOrder) -> List[str]:
    """排序中缺失的节点（处于环上或位于环的下游）"""
    ordered = set(result.order)
    return [node_id for node_id in map(_node_id, nodes) if node_id not in ordered]


def next_available_steps(
    order: Iterable[str],
    completed: Iterable[str],
    edges: Iterable[EdgeLike],
    node_ids: Optional[Iterable[str]] = None
) -> List[str]:
    """
    计算当前可执行的步骤

    按 order 顺序遍历，跳过已完成节点；只有当所有指向该节点的边的源节点
    都已完成时才包含该节点。源节点不在已知节点集合中的边被忽略。
    完成状态会在调用之间从外部改变，所以每次都重新计算。

    Args:
        order: 拓扑顺序
        completed: 已完成节点ID集合
        edges: 边
        node_ids: 已知节点集合，默认为 order 与 completed 的并集
    """
    order = list(order)
    completed_set: Set[str] = set(completed)
    known: Set[str] = set(node_ids) if node_ids is not None else set(order) | completed_set

    upstreams: Dict[str, List[str]] = {}
    for edge in edges:
        source, target = _endpoints(edge)
        if source not in known:
            continue
        upstreams.setdefault(target, []).append(source)

    available = []
    for node_id in order:
        if node_id in completed_set:
            continue
        if all(source in completed_set for source in upstreams.get(node_id, ())):
            available.append(node_id)
    return available


def compute_progress(total: int, completed: int) -> int:
    """完成百分比，节点数为0时为0"""
    if total <= 0:
        return 0
    return round(100 * completed / total)


@dataclass
class PlannedStep:
    """执行计划中的单个步骤"""
    node_id: str
    label: str
    completed: bool
    upstreams: List[str] = field(default_factory=list)
    downstreams: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "label": self.label,
            "completed": self.completed,
            "upstreams": self.upstreams,
            "downstreams": self.downstreams,
        }


@dataclass
class ExecutionPlan:
    """工作流执行计划"""
    workflow_id: str
    order: List[str]
    parallel_groups: List[List[str]]
    next_steps: List[str]
    steps: List[PlannedStep]
    total: int
    completed: int
    progress: int
    has_cycles: bool = False
    unreachable: List[str] = field(default_factory=list)
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        labels = {step.node_id: step.label for step in self.steps}
        data = {
            "workflow_id": self.workflow_id,
            "total": self.total,
            "completed": self.completed,
            "progress": self.progress,
            "topological_order": self.order,
            "parallel_groups": [
                [{"node_id": node_id, "label": labels.get(node_id, node_id)} for node_id in group]
                for group in self.parallel_groups
            ],
            "next_steps": [
                {"node_id": node_id, "label": labels.get(node_id, node_id)}
                for node_id in self.next_steps
            ],
            "steps": [step.to_dict() for step in self.steps],
            "has_cycles": self.has_cycles,
            "unreachable": self.unreachable,
        }
        if self.warning:
            data["warning"] = self.warning
        return data


def build_execution_plan(graph: WorkflowGraph, completed: Iterable[str]) -> ExecutionPlan:
    """根据工作流图与已完成集合生成执行计划"""
    completed_set = set(completed) & set(graph.node_ids)
    edges = graph.valid_edges()
    topo = topological_order(graph.nodes, edges)
    next_steps = next_available_steps(topo.order, completed_set, edges, graph.node_ids)

    steps = []
    for node in graph.nodes:
        steps.append(PlannedStep(
            node_id=node.id,
            label=node.label,
            completed=node.id in completed_set,
            upstreams=[e.source for e in edges if e.target == node.id],
            downstreams=[e.target for e in edges if e.source == node.id],
        ))

    total = len(graph.nodes)
    return ExecutionPlan(
        workflow_id=graph.id,
        order=topo.order,
        parallel_groups=topo.parallel_groups,
        next_steps=next_steps,
        steps=steps,
        total=total,
        completed=len(completed_set),
        progress=compute_progress(total, len(completed_set)),
        has_cycles=topo.has_cycles,
        unreachable=unresolved_nodes(graph.nodes, topo),
        warning=CYCLE_WARNING if topo.has_cycles else None,
    )
