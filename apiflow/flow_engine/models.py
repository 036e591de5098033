"""
Flow data model.

A flow is a directed graph of typed nodes. Node payloads are a closed set
of dataclasses, one per NodeType; payloads of unknown node types are kept
as UnknownNodeData so validation can reject them with a clear message.
"""

import base64
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from apiflow.errors import ExecutionError
from apiflow.flow_engine.http_executor import HttpResponse


class NodeType(str, Enum):
    HTTP_REQUEST = 'http_request'
    DELAY = 'delay'
    CONDITION = 'condition'
    VARIABLE_SET = 'variable_set'


class EdgeType(str, Enum):
    SUCCESS = 'success'
    ERROR = 'error'
    TRUE = 'true'
    FALSE = 'false'
    ALWAYS = 'always'


class NodeStatus(str, Enum):
    SUCCESS = 'success'
    ERROR = 'error'


class FlowStatus(str, Enum):
    COMPLETED = 'completed'
    COMPLETED_WITH_ERRORS = 'completed_with_errors'
    FAILED = 'failed'


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def json_safe(value: Any) -> Any:
    """Make a value JSON serializable; bytes become base64 text."""
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode('ascii')
    if isinstance(value, dict):
        return {str(key): json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_safe(item) for item in value]
    return value


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key wins; lets payloads use camelCase or snake_case."""
    for key in keys:
        if key in data:
            return data[key]
    return default


# ============================================================================
# Node payloads
# ============================================================================

@dataclass
class HttpRequestNodeData:
    method: Optional[str] = None
    url: Optional[str] = None
    headers: Dict[str, Any] = field(default_factory=dict)
    body: Any = None
    timeout: Optional[int] = None
    save_response: bool = False
    response_variable: Optional[str] = None
    retries: Optional[int] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HttpRequestNodeData':
        return cls(
            method=data.get('method'),
            url=data.get('url'),
            headers=data.get('headers') or {},
            body=data.get('body'),
            timeout=data.get('timeout'),
            save_response=bool(_pick(data, 'saveResponse', 'save_response', default=False)),
            response_variable=_pick(data, 'responseVariable', 'response_variable'),
            retries=data.get('retries'),
            description=data.get('description'),
        )


@dataclass
class DelayNodeData:
    duration: Any = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DelayNodeData':
        return cls(duration=data.get('duration'), description=data.get('description'))


@dataclass
class ConditionNodeData:
    condition: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ConditionNodeData':
        return cls(condition=data.get('condition'), description=data.get('description'))


@dataclass
class VariableSetNodeData:
    variable: Optional[str] = None
    value: Any = ''
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VariableSetNodeData':
        return cls(
            variable=data.get('variable'),
            value=data.get('value', ''),
            description=data.get('description'),
        )


@dataclass
class UnknownNodeData:
    raw: Dict[str, Any] = field(default_factory=dict)


NodeData = Union[HttpRequestNodeData, DelayNodeData, ConditionNodeData, VariableSetNodeData, UnknownNodeData]

NODE_DATA_TYPES = {
    NodeType.HTTP_REQUEST: HttpRequestNodeData,
    NodeType.DELAY: DelayNodeData,
    NodeType.CONDITION: ConditionNodeData,
    NodeType.VARIABLE_SET: VariableSetNodeData,
}


# ============================================================================
# Graph
# ============================================================================

@dataclass
class FlowNode:
    """One step of a flow. `type` keeps the raw string so unknown types survive parsing."""
    id: str
    type: str
    data: NodeData
    position: Optional[Dict[str, Any]] = None

    @property
    def node_type(self) -> Optional[NodeType]:
        try:
            return NodeType(self.type)
        except ValueError:
            return None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowNode':
        raw_type = data.get('type')
        payload = data.get('data') or {}
        try:
            data_cls = NODE_DATA_TYPES.get(NodeType(raw_type))
        except ValueError:
            data_cls = None

        return cls(
            id=data.get('id'),
            type=raw_type,
            data=data_cls.from_dict(payload) if data_cls else UnknownNodeData(raw=payload),
            position=data.get('position'),
        )


@dataclass
class FlowEdge:
    """
    Directed edge between two nodes.

    Edges leaving the same node are followed in declaration order, stable
    sorted by `priority` (lower first, default 0).
    """
    source: str
    target: str
    type: str = EdgeType.ALWAYS.value
    id: Optional[str] = None
    priority: int = 0
    label: Optional[str] = None

    @property
    def edge_type(self) -> EdgeType:
        """Unrecognized types behave as 'always'."""
        try:
            return EdgeType(self.type)
        except ValueError:
            return EdgeType.ALWAYS

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowEdge':
        priority = data.get('priority', 0)
        return cls(
            source=data.get('source'),
            target=data.get('target'),
            type=data.get('type') or EdgeType.ALWAYS.value,
            id=data.get('id'),
            priority=priority if isinstance(priority, int) and not isinstance(priority, bool) else 0,
            label=data.get('label'),
        )


@dataclass
class FlowConfig:
    """A flow definition as loaded for one execution; treated as read-only."""
    id: str
    nodes: List[FlowNode] = field(default_factory=list)
    edges: List[FlowEdge] = field(default_factory=list)
    name: str = ''
    description: Optional[str] = None
    project_id: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FlowConfig':
        return cls(
            id=str(data.get('id', '')),
            nodes=[FlowNode.from_dict(node) for node in data.get('nodes') or []],
            edges=[FlowEdge.from_dict(edge) for edge in data.get('edges') or []],
            name=data.get('name') or '',
            description=data.get('description'),
            project_id=_pick(data, 'projectId', 'project_id'),
            is_active=bool(_pick(data, 'isActive', 'is_active', default=True)),
        )

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def start_nodes(self) -> List[FlowNode]:
        """Nodes without incoming edges, in declaration order."""
        targets = {edge.target for edge in self.edges}
        return [node for node in self.nodes if node.id not in targets]

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        edges = [edge for edge in self.edges if edge.source == node_id]
        return sorted(edges, key=lambda edge: edge.priority)


# ============================================================================
# Execution state and results
# ============================================================================

@dataclass
class NodeExecutionResult:
    node_id: str
    status: NodeStatus
    execution_time: int
    timestamp: str
    response: Optional[HttpResponse] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'node_id': self.node_id,
            'status': self.status.value,
            'execution_time': self.execution_time,
            'timestamp': self.timestamp,
        }
        if self.response is not None:
            result['response'] = self.response.to_dict()
        if self.data is not None:
            result['data'] = json_safe(self.data)
        if self.error is not None:
            result['error'] = self.error
        return result


@dataclass
class FlowExecutionContext:
    """Mutable state of one run. Never shared between runs."""
    flow_id: str
    environment_id: str
    variables: Dict[str, Any]
    max_execution_time: int
    node_results: Dict[str, NodeExecutionResult] = field(default_factory=dict)
    execution_path: List[str] = field(default_factory=list)
    errors: List[ExecutionError] = field(default_factory=list)
    start_time: float = field(default_factory=time.monotonic)

    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)


@dataclass
class FlowExecutionResult:
    flow_id: str
    status: FlowStatus
    execution_time: int
    node_results: List[NodeExecutionResult] = field(default_factory=list)
    errors: List[ExecutionError] = field(default_factory=list)
    variables: Dict[str, Any] = field(default_factory=dict)
    execution_path: List[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now_iso)

    def summary(self) -> Dict[str, int]:
        return {
            'total': len(self.node_results),
            'success': sum(1 for r in self.node_results if r.status == NodeStatus.SUCCESS),
            'error': sum(1 for r in self.node_results if r.status == NodeStatus.ERROR),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            'flow_id': self.flow_id,
            'status': self.status.value,
            'execution_time': self.execution_time,
            'node_results': [r.to_dict() for r in self.node_results],
            'errors': [e.to_dict() for e in self.errors],
            'variables': json_safe(self.variables),
            'execution_path': self.execution_path,
            'timestamp': self.timestamp,
            'summary': self.summary(),
        }
