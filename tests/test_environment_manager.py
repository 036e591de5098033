"""
Tests for EnvironmentManager
"""

import pytest

from apiflow.errors import FlowValidationError
from apiflow.flow_engine.environment_manager import EnvironmentManager, TTLCache
from apiflow.flow_engine.models import FlowConfig, NodeType


class TestTTLCache:
    """Test cache expiry"""

    def test_expires_after_ttl(self, fake_clock):
        """Test that entries vanish once the TTL has passed"""
        cache = TTLCache(ttl=300, clock=fake_clock)
        cache.set('a', 1)

        fake_clock.advance(299)
        assert cache.get('a') == 1

        fake_clock.advance(2)
        assert cache.get('a') is None
        assert cache.keys() == []


class TestLoadEnvironmentVariables:
    """Test environment loading"""

    @pytest.mark.asyncio
    async def test_transforms_records(self, backend_client):
        """Test disabled, keyless and invalid entries are skipped"""
        backend_client.get_environment_variables.return_value = {'variables': [
            {'key': 'baseUrl', 'value': 'http://api.test', 'enabled': True},
            {'key': 'token', 'value': 'secret', 'enabled': False},
            {'key': 'retries', 'value': 3},
            {'key': 'debug', 'value': True, 'enabled': True},
            {'key': 'empty', 'value': None, 'enabled': True},
            {'key': 'bad-name', 'value': 'x', 'enabled': True},
            {'value': 'no key'},
            'not a record',
        ]}
        manager = EnvironmentManager(backend_client)

        variables = await manager.load_environment_variables('env-1')

        assert variables == {
            'baseUrl': 'http://api.test',
            'retries': '3',
            'debug': 'true',
            'empty': '',
        }
        backend_client.get_environment_variables.assert_awaited_once_with('env-1')

    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, backend_client, fake_clock):
        """Test that a second load within the TTL skips the backend"""
        backend_client.get_environment_variables.return_value = {'variables': [{'key': 'a', 'value': '1'}]}
        manager = EnvironmentManager(backend_client, cache_ttl=300, clock=fake_clock)

        await manager.load_environment_variables('env-1')
        await manager.load_environment_variables('env-1')
        assert backend_client.get_environment_variables.await_count == 1

        fake_clock.advance(301)
        await manager.load_environment_variables('env-1')
        assert backend_client.get_environment_variables.await_count == 2

    @pytest.mark.asyncio
    async def test_returns_copy(self, backend_client):
        """Test that callers cannot mutate the cached map"""
        backend_client.get_environment_variables.return_value = {'variables': [{'key': 'a', 'value': '1'}]}
        manager = EnvironmentManager(backend_client)

        first = await manager.load_environment_variables('env-1')
        first['a'] = 'changed'

        assert (await manager.load_environment_variables('env-1'))['a'] == '1'

    @pytest.mark.asyncio
    async def test_backend_failure_yields_empty(self, backend_client, caplog):
        """Test that backend errors are logged and produce an empty map"""
        backend_client.get_environment_variables.side_effect = RuntimeError('backend down')
        manager = EnvironmentManager(backend_client)

        with caplog.at_level('ERROR'):
            variables = await manager.load_environment_variables('env-1')

        assert variables == {}
        assert 'backend down' in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_response_yields_empty(self, backend_client):
        """Test that a response without a variables list produces an empty map"""
        backend_client.get_environment_variables.return_value = {'variables': 'nope'}
        manager = EnvironmentManager(backend_client)

        assert await manager.load_environment_variables('env-1') == {}


class TestLoadDefinitions:
    """Test endpoint and flow loading"""

    @pytest.mark.asyncio
    async def test_endpoint_failure_propagates(self, backend_client):
        """Test that endpoint load errors are re-raised"""
        backend_client.get_endpoint_details.side_effect = RuntimeError('boom')
        manager = EnvironmentManager(backend_client)

        with pytest.raises(RuntimeError):
            await manager.load_endpoint_config('ep-1')

    @pytest.mark.asyncio
    async def test_endpoint_cached(self, backend_client):
        """Test that endpoints are cached"""
        backend_client.get_endpoint_details.return_value = {'id': 'ep-1', 'method': 'GET'}
        manager = EnvironmentManager(backend_client)

        assert await manager.load_endpoint_config('ep-1') == {'id': 'ep-1', 'method': 'GET'}
        await manager.load_endpoint_config('ep-1')
        assert backend_client.get_endpoint_details.await_count == 1

    @pytest.mark.asyncio
    async def test_flow_parsed(self, backend_client):
        """Test that flow definitions become FlowConfig objects"""
        backend_client.get_flow_details.return_value = {
            'id': 'flow-1',
            'name': 'Smoke',
            'nodes': [{'id': 'a', 'type': 'delay', 'data': {'duration': 10}}],
            'edges': [],
        }
        manager = EnvironmentManager(backend_client)

        flow = await manager.load_flow_config('flow-1')

        assert isinstance(flow, FlowConfig)
        assert flow.name == 'Smoke'
        assert flow.nodes[0].node_type == NodeType.DELAY

    @pytest.mark.asyncio
    async def test_missing_flow(self, backend_client):
        """Test that a missing flow is a validation error"""
        backend_client.get_flow_details.return_value = None
        manager = EnvironmentManager(backend_client)

        with pytest.raises(FlowValidationError) as exc_info:
            await manager.load_flow_config('nope')

        assert 'Flow not found: nope' in exc_info.value.message


class TestHelpers:
    """Test merge, validation and cache helpers"""

    def test_merge_variables(self, environment_manager):
        """Test that overrides win and None overrides are ignored"""
        merged = environment_manager.merge_variables({'a': '1', 'b': '2'}, {'b': '3', 'c': None, 'd': 4})
        assert merged == {'a': '1', 'b': '3', 'd': 4}

    def test_merge_without_overrides(self, environment_manager):
        """Test merging with no overrides"""
        assert environment_manager.merge_variables({'a': '1'}, None) == {'a': '1'}

    def test_validate_variable_context(self, environment_manager):
        """Test delegation to the interpolator's context validation"""
        assert environment_manager.validate_variable_context({'ok': 1})['is_valid'] is True
        assert environment_manager.validate_variable_context({'1bad': 1})['is_valid'] is False

    def test_validate_environment_config(self, environment_manager):
        """Test environment record validation"""
        valid = {'id': 'env-1', 'name': 'Staging', 'variables': []}
        assert environment_manager.validate_environment_config(valid) == {'is_valid': True, 'errors': []}

        result = environment_manager.validate_environment_config({'id': 5, 'variables': {}})
        assert result['is_valid'] is False
        assert len(result['errors']) == 3

        assert environment_manager.validate_environment_config(None)['is_valid'] is False

    @pytest.mark.asyncio
    async def test_cache_stats_and_clear(self, backend_client):
        """Test cache introspection and clearing"""
        backend_client.get_environment_variables.return_value = {'variables': [{'key': 'a', 'value': '1'}]}
        manager = EnvironmentManager(backend_client)

        await manager.load_environment_variables('env-1')
        assert manager.get_cache_stats() == {'size': 1, 'keys': ['env_vars_env-1']}

        manager.clear_cache()
        assert manager.get_cache_stats() == {'size': 0, 'keys': []}
