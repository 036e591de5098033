"""
Tests for static flow validation and the flow model
"""

from apiflow.errors import ErrorCode
from apiflow.flow_engine.models import EdgeType, FlowConfig, FlowEdge, HttpRequestNodeData, UnknownNodeData
from apiflow.flow_engine.validation import find_cycle, validate_flow


def node(node_id, node_type='variable_set', **data):
    if node_type == 'variable_set' and not data:
        data = {'variable': node_id, 'value': '1'}
    return {'id': node_id, 'type': node_type, 'data': data}


def edge(source, target, edge_type='always', **extra):
    return {'source': source, 'target': target, 'type': edge_type, **extra}


def flow(nodes, edges=None):
    return FlowConfig.from_dict({'id': 'flow-1', 'nodes': nodes, 'edges': edges or []})


def messages(errors):
    return [error.message for error in errors]


class TestFlowModel:
    """Test parsing of flow definitions"""

    def test_camel_case_payload(self):
        """Test that backend camelCase keys are accepted"""
        parsed = flow([node('a', 'http_request', method='GET', url='http://x', saveResponse=True,
                            responseVariable='user')])
        data = parsed.nodes[0].data

        assert isinstance(data, HttpRequestNodeData)
        assert data.save_response is True
        assert data.response_variable == 'user'

    def test_unknown_node_type_kept(self):
        """Test that unknown types survive parsing for validation to reject"""
        parsed = flow([node('a', 'webhook', url='x')])
        assert isinstance(parsed.nodes[0].data, UnknownNodeData)
        assert parsed.nodes[0].node_type is None

    def test_unknown_edge_type_behaves_as_always(self):
        """Test edge type fallback"""
        assert FlowEdge(source='a', target='b', type='sometimes').edge_type == EdgeType.ALWAYS

    def test_outgoing_edges_sorted_by_priority(self):
        """Test stable priority ordering of outgoing edges"""
        parsed = flow(
            [node('a'), node('b'), node('c'), node('d')],
            [edge('a', 'b', priority=2), edge('a', 'c'), edge('a', 'd')],
        )
        assert [e.target for e in parsed.outgoing_edges('a')] == ['c', 'd', 'b']

    def test_start_nodes(self):
        """Test that start nodes are those without incoming edges"""
        parsed = flow([node('a'), node('b'), node('c')], [edge('a', 'b')])
        assert [n.id for n in parsed.start_nodes()] == ['a', 'c']


class TestValidateFlow:
    """Test structural checks"""

    def test_valid_flow(self):
        """Test that a well-formed flow has no errors"""
        assert validate_flow(flow([node('a'), node('b')], [edge('a', 'b')])) == []

    def test_empty_flow(self):
        """Test that a flow needs nodes"""
        errors = validate_flow(flow([]))
        assert messages(errors) == ['Flow must contain at least one node']
        assert errors[0].code == ErrorCode.FLOW_VALIDATION_ERROR

    def test_duplicate_ids(self):
        """Test duplicate node ids"""
        errors = validate_flow(flow([node('a'), node('a')]))
        assert 'Duplicate node id: a' in messages(errors)

    def test_no_start_node(self):
        """Test that a flow where every node has an incoming edge is rejected"""
        errors = validate_flow(flow([node('a'), node('b')], [edge('a', 'b'), edge('b', 'a')]))
        assert any('no start node' in message for message in messages(errors))

    def test_cycle(self):
        """Test that cycles are detected anywhere in the graph"""
        errors = validate_flow(flow(
            [node('s'), node('a'), node('b')],
            [edge('s', 'a'), edge('a', 'b'), edge('b', 'a')],
        ))

        cycle_errors = [e for e in errors if e.code == ErrorCode.FLOW_CIRCULAR_DEPENDENCY]
        assert len(cycle_errors) == 1
        assert cycle_errors[0].details['cycle'] == ['a', 'b', 'a']
        assert 'a -> b -> a' in cycle_errors[0].message

    def test_self_loop(self):
        """Test that a node pointing at itself is a cycle"""
        parsed = flow([node('s'), node('a')], [edge('s', 'a'), edge('a', 'a')])
        assert find_cycle(parsed) == ['a', 'a']

    def test_unknown_edge_endpoints(self):
        """Test edges referencing missing nodes"""
        errors = validate_flow(flow([node('a')], [edge('a', 'ghost'), edge('phantom', 'a')]))
        assert 'Edge references unknown target node: ghost' in messages(errors)
        assert 'Edge references unknown source node: phantom' in messages(errors)

    def test_required_fields(self):
        """Test per-type required fields"""
        errors = validate_flow(flow([
            node('h', 'http_request', method='GET'),
            node('c', 'condition'),
            node('v', 'variable_set', value='x'),
            node('d', 'delay', duration=-5),
        ]))

        found = messages(errors)
        assert 'HTTP request node h is missing a url' in found
        assert 'Condition node c is missing a condition' in found
        assert 'Variable set node v is missing a variable name' in found
        assert 'Delay node d needs a non-negative numeric duration' in found
        assert {e.node_id for e in errors} == {'h', 'c', 'v', 'd'}

    def test_unknown_node_type(self):
        """Test that unknown node types are rejected up front"""
        errors = validate_flow(flow([node('w', 'webhook', url='x')]))
        assert messages(errors) == ["Node w has unknown type 'webhook'"]
