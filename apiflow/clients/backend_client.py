"""
Backend API Client - HTTP client for the API catalog backend.

Only the read operations the flow engine needs are exposed: environment
variables, endpoint details and flow definitions.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

DEFAULT_TIMEOUT = 30.0


class BackendError(Exception):
    """The backend answered with an error or could not be reached."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class BackendNotFoundError(BackendError):
    pass


class BackendClient:
    """
    HTTP client for the backend REST API.

    Responses use the envelope {success, data, message|error}; the `data`
    part is returned when `success` is true.

    Args:
        base_url: Backend root URL, e.g. https://api.example.com/api
        token: Bearer token sent on every call
        timeout: Seconds per call
        transport: Optional httpx transport (httpx.MockTransport in tests)
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = DEFAULT_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None, logger: Optional[logging.Logger] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.transport = transport
        self.logger = logger or logging.getLogger(__name__)

    async def get_environment_variables(self, environment_id: str) -> Dict[str, Any]:
        """Fetch an environment's variables as {'variables': [{key, value, enabled}, ...]}."""
        data = await self._get(f'/environments/{environment_id}/variables')
        if isinstance(data, list):
            return {'variables': data}
        return data or {}

    async def get_endpoint_details(self, endpoint_id: str) -> Dict[str, Any]:
        """Fetch an endpoint definition."""
        return await self._get(f'/endpoints/{endpoint_id}')

    async def get_flow_details(self, flow_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch a flow definition.

        The graph may be stored at the top level or under `flow_data`, either
        as an object or as a JSON string.

        Returns:
            Flow dict with `nodes` and `edges`, or None if the flow does not exist
        """
        try:
            data = await self._get(f'/flow/{flow_id}')
        except BackendNotFoundError:
            return None

        if not data:
            return None

        flow = dict(data)
        graph = flow.get('flow_data')
        if isinstance(graph, str):
            try:
                graph = json.loads(graph) if graph.strip() else {}
            except ValueError as e:
                raise BackendError(f"Flow {flow_id} has malformed flow_data: {e}")

        if isinstance(graph, dict) and 'nodes' not in flow:
            flow['nodes'] = graph.get('nodes') or []
            flow['edges'] = graph.get('edges') or []

        flow.setdefault('id', flow_id)
        return flow

    def _headers(self) -> Dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        return headers

    async def _get(self, path: str) -> Any:
        self.logger.debug(f"Backend GET {path}")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers(),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.get(path)
        except httpx.RequestError as e:
            raise BackendError(f"Backend request to {path} failed: {e}") from e

        if response.status_code == 404:
            raise BackendNotFoundError(f"Resource not found: {path}", status_code=404)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise BackendError(
                f"Backend returned {response.status_code} for {path}",
                status_code=response.status_code,
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            raise BackendError(f"Backend returned invalid JSON for {path}") from e

        if isinstance(payload, dict) and 'success' in payload:
            if not payload['success']:
                message = payload.get('message') or payload.get('error') or 'Request failed'
                raise BackendError(f"Backend error for {path}: {message}", status_code=response.status_code)
            return payload.get('data')

        return payload
