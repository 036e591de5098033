"""
Static flow validation, run before any node executes.
"""

from typing import Dict, List, Optional

from apiflow.errors import ExecutionError, FlowCircularDependencyError, FlowValidationError
from apiflow.flow_engine.models import (
    ConditionNodeData,
    DelayNodeData,
    FlowConfig,
    FlowNode,
    HttpRequestNodeData,
    NodeType,
    VariableSetNodeData,
)


def validate_flow(flow: FlowConfig) -> List[ExecutionError]:
    """
    Collect every structural problem of a flow.

    Checks:
    - at least one node, unique ids, known node types
    - at least one start node (no incoming edges)
    - edges reference existing nodes
    - no cycles anywhere in the graph
    - required fields per node type

    Returns:
        List of errors; empty when the flow can run
    """
    if not flow.nodes:
        return [FlowValidationError('Flow must contain at least one node')]

    errors: List[ExecutionError] = []
    node_ids = set()

    for node in flow.nodes:
        if not node.id:
            errors.append(FlowValidationError('Every node must have an id'))
            continue
        if node.id in node_ids:
            errors.append(FlowValidationError(f"Duplicate node id: {node.id}", node_id=node.id))
        node_ids.add(node.id)

    if not flow.start_nodes():
        errors.append(FlowValidationError(
            'Flow has no start node (every node has an incoming edge)'
        ))

    for edge in flow.edges:
        if edge.source not in node_ids:
            errors.append(FlowValidationError(
                f"Edge references unknown source node: {edge.source}",
                details={'edge_id': edge.id},
            ))
        if edge.target not in node_ids:
            errors.append(FlowValidationError(
                f"Edge references unknown target node: {edge.target}",
                details={'edge_id': edge.id},
            ))

    cycle = find_cycle(flow)
    if cycle:
        errors.append(FlowCircularDependencyError(
            f"Circular dependency detected: {' -> '.join(cycle)}",
            details={'cycle': cycle},
        ))

    for node in flow.nodes:
        for message in validate_node(node):
            errors.append(FlowValidationError(message, node_id=node.id))

    return errors


def validate_node(node: FlowNode) -> List[str]:
    """Return the missing/invalid required fields of one node."""
    node_type = node.node_type
    data = node.data

    if node_type is None:
        return [f"Node {node.id} has unknown type '{node.type}'"]

    messages = []

    if node_type == NodeType.HTTP_REQUEST and isinstance(data, HttpRequestNodeData):
        if not _is_filled(data.url):
            messages.append(f"HTTP request node {node.id} is missing a url")
        if not _is_filled(data.method):
            messages.append(f"HTTP request node {node.id} is missing a method")

    elif node_type == NodeType.CONDITION and isinstance(data, ConditionNodeData):
        if not _is_filled(data.condition):
            messages.append(f"Condition node {node.id} is missing a condition")

    elif node_type == NodeType.VARIABLE_SET and isinstance(data, VariableSetNodeData):
        if not _is_filled(data.variable):
            messages.append(f"Variable set node {node.id} is missing a variable name")

    elif node_type == NodeType.DELAY and isinstance(data, DelayNodeData):
        duration = data.duration
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or duration < 0:
            messages.append(f"Delay node {node.id} needs a non-negative numeric duration")

    return messages


def find_cycle(flow: FlowConfig) -> Optional[List[str]]:
    """
    Depth-first search with a recursion stack over the whole graph.

    Returns:
        The node ids forming the first cycle found, closed on its first
        node (['A', 'B', 'A']), or None for an acyclic graph
    """
    adjacency: Dict[str, List[str]] = {node.id: [] for node in flow.nodes if node.id}
    for edge in flow.edges:
        if edge.source in adjacency and edge.target in adjacency:
            adjacency[edge.source].append(edge.target)

    visited = set()

    for root in adjacency:
        if root in visited:
            continue

        # Explicit stack of (node, next child index); on_stack mirrors it
        stack = [(root, 0)]
        on_stack = {root}
        visited.add(root)

        while stack:
            node_id, child_index = stack[-1]
            children = adjacency[node_id]

            if child_index >= len(children):
                stack.pop()
                on_stack.discard(node_id)
                continue

            stack[-1] = (node_id, child_index + 1)
            child = children[child_index]

            if child in on_stack:
                path = [entry[0] for entry in stack]
                return path[path.index(child):] + [child]

            if child not in visited:
                visited.add(child)
                on_stack.add(child)
                stack.append((child, 0))

    return None


def _is_filled(value) -> bool:
    return isinstance(value, str) and bool(value.strip())
