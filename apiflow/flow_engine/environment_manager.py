"""
Environment Manager - loads environment variables, endpoint and flow
definitions from the backend, with a short in-process TTL cache.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from apiflow.errors import FlowValidationError
from apiflow.flow_engine.models import FlowConfig
from apiflow.flow_engine.variable_interpolator import is_valid_variable_name, validate_context

DEFAULT_CACHE_TTL = 300  # seconds


class TTLCache:
    """
    Thread-safe key/value cache with a fixed time-to-live.

    Expired entries are dropped lazily when read.
    """

    def __init__(self, ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self.clock() - stored_at > self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any):
        with self._lock:
            self._entries[key] = (self.clock(), value)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def keys(self):
        with self._lock:
            return list(self._entries.keys())


class EnvironmentManager:
    """
    Supplies variables and definitions to the flow executor.

    Args:
        backend_client: Object exposing get_environment_variables,
            get_endpoint_details and get_flow_details coroutines
        cache_ttl: Cache lifetime in seconds
        logger: Logger to report through
        clock: Time source for the cache (monotonic seconds)
    """

    def __init__(self, backend_client, cache_ttl: float = DEFAULT_CACHE_TTL,
                 logger: Optional[logging.Logger] = None, clock: Callable[[], float] = time.monotonic):
        self.backend_client = backend_client
        self.cache = TTLCache(ttl=cache_ttl, clock=clock)
        self.logger = logger or logging.getLogger(__name__)

    async def load_environment_variables(self, environment_id: str) -> Dict[str, str]:
        """
        Load an environment as a flat name -> value map.

        Disabled entries and entries with invalid names are skipped. Backend
        failures are logged and yield an empty map.
        """
        cache_key = f'env_vars_{environment_id}'
        cached = self.cache.get(cache_key)
        if cached is not None:
            return dict(cached)

        try:
            response = await self.backend_client.get_environment_variables(environment_id)
        except Exception as e:
            self.logger.error(f"Failed to load environment variables for {environment_id}: {e}")
            return {}

        records = response.get('variables') if isinstance(response, dict) else None
        if not isinstance(records, list):
            self.logger.warning(f"Invalid environment variables response for {environment_id}")
            return {}

        variables = self._transform_variables(records)
        self.cache.set(cache_key, variables)
        self.logger.info(f"Loaded {len(variables)} variables for environment {environment_id}")
        return dict(variables)

    async def load_endpoint_config(self, endpoint_id: str) -> Dict[str, Any]:
        """Load an endpoint definition. Failures propagate."""
        cache_key = f'endpoint_{endpoint_id}'
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            endpoint = await self.backend_client.get_endpoint_details(endpoint_id)
        except Exception as e:
            self.logger.error(f"Failed to load endpoint config {endpoint_id}: {e}")
            raise

        self.cache.set(cache_key, endpoint)
        return endpoint

    async def load_flow_config(self, flow_id: str) -> FlowConfig:
        """
        Load a flow definition.

        Raises:
            FlowValidationError: If the backend has no such flow
            Exception: Backend failures propagate unchanged
        """
        cache_key = f'flow_{flow_id}'
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        try:
            data = await self.backend_client.get_flow_details(flow_id)
        except Exception as e:
            self.logger.error(f"Failed to load flow config {flow_id}: {e}")
            raise

        if data is None:
            raise FlowValidationError(f"Flow not found: {flow_id}", details={'flow_id': flow_id})

        flow = data if isinstance(data, FlowConfig) else FlowConfig.from_dict(data)
        self.cache.set(cache_key, flow)
        return flow

    def merge_variables(self, base: Dict[str, Any], overrides: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Shallow merge; overrides win key for key."""
        merged = dict(base or {})
        for key, value in (overrides or {}).items():
            if value is not None:
                merged[key] = value
        return merged

    def validate_variable_context(self, variables: Dict[str, Any]) -> Dict[str, Any]:
        return validate_context(variables)

    def validate_environment_config(self, config: Any) -> Dict[str, Any]:
        """Check an environment record has a string id and name."""
        if not config:
            return {'is_valid': False, 'errors': ['Configuration is empty']}

        if not isinstance(config, dict):
            return {'is_valid': False, 'errors': ['Configuration must be a mapping']}

        errors = []
        if not config.get('id') or not isinstance(config.get('id'), str):
            errors.append('Environment ID is required and must be a string')
        if not config.get('name') or not isinstance(config.get('name'), str):
            errors.append('Environment name is required and must be a string')
        if 'variables' in config and not isinstance(config['variables'], list):
            errors.append('Environment variables must be a list')

        return {'is_valid': not errors, 'errors': errors}

    def clear_cache(self):
        self.cache.clear()
        self.logger.info("Environment cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        keys = self.cache.keys()
        return {'size': len(keys), 'keys': keys}

    def _transform_variables(self, records) -> Dict[str, str]:
        variables = {}

        for record in records:
            if not isinstance(record, dict):
                self.logger.warning(f"Invalid variable format, skipping: {record!r}")
                continue

            key = record.get('key')
            if not isinstance(key, str) or not key.strip():
                self.logger.warning("Variable missing key, skipping")
                continue

            if not record.get('enabled', True):
                continue

            key = key.strip()
            if not is_valid_variable_name(key):
                self.logger.warning(f"Invalid variable name: {key}, skipping")
                continue

            value = record.get('value')
            if value is None:
                value = ''
            elif isinstance(value, bool):
                value = 'true' if value else 'false'
            variables[key] = str(value)

        return variables
