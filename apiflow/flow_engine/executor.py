"""
Flow Executor - Main orchestrator for flow execution

Responsibilities:
- Load the flow definition and validate it
- Load environment variables and merge overrides
- Walk the graph depth-first from every start node
- Dispatch each node to its handler
- Route along outgoing edges based on node results
- Enforce depth and wall-clock limits
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from apiflow.config import EngineConfig
from apiflow.errors import (
    ExecutionError,
    FlowCircularDependencyError,
    FlowTimeoutError,
    FlowValidationError,
)
from apiflow.expressions import SafeExpressionEvaluator
from apiflow.flow_engine.http_executor import HttpRequestConfig, HttpRequestExecutor, HttpResponse
from apiflow.flow_engine.models import (
    EdgeType,
    FlowConfig,
    FlowEdge,
    FlowExecutionContext,
    FlowExecutionResult,
    FlowNode,
    FlowStatus,
    NodeExecutionResult,
    NodeStatus,
    NodeType,
    utc_now_iso,
)
from apiflow.flow_engine.validation import validate_flow
from apiflow.flow_engine.variable_interpolator import (
    interpolate,
    interpolate_body,
    interpolate_headers,
    interpolate_object,
    interpolate_url,
)


class FlowExecutor:
    """
    Main executor for API test flows.

    Usage:
        executor = FlowExecutor(environment_manager)
        result = await executor.execute_flow(
            flow_id='flow-1',
            environment_id='env-1',
            override_variables={'userId': '42'},
        )

    Args:
        environment_manager: Source of flow definitions and environment variables
        http_executor: Sends http_request nodes (built from config if omitted)
        expression_evaluator: Evaluates condition nodes (built from config if omitted)
        config: Engine limits and defaults
        logger: Logger to report through
        sleep: Coroutine used by delay nodes
    """

    def __init__(
        self,
        environment_manager,
        http_executor: Optional[HttpRequestExecutor] = None,
        expression_evaluator: Optional[SafeExpressionEvaluator] = None,
        config: Optional[EngineConfig] = None,
        logger: Optional[logging.Logger] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config or EngineConfig()
        self.environment_manager = environment_manager
        self.logger = logger or logging.getLogger(__name__)
        self.http_executor = http_executor or HttpRequestExecutor(
            default_timeout=self.config.http_timeout_ms,
            default_retries=self.config.http_retries,
            user_agent=self.config.user_agent,
            url_policy=self.config.url_policy(),
        )
        self.expression_evaluator = expression_evaluator or SafeExpressionEvaluator(
            timeout=self.config.expression_timeout_seconds,
        )
        self.sleep = sleep

    async def execute_flow(
        self,
        flow_id: str,
        environment_id: str,
        override_variables: Optional[Dict[str, Any]] = None,
        max_execution_time: Optional[int] = None,
    ) -> FlowExecutionResult:
        """
        Execute a flow.

        Failures never propagate: they are reported in the result, which
        keeps whatever nodes ran before a fatal error.

        Args:
            flow_id: Flow to run
            environment_id: Environment supplying the variables
            override_variables: Variables layered over the environment
            max_execution_time: Wall-clock budget in ms; None or 0 uses the
                configured default

        Returns:
            FlowExecutionResult with status completed, completed_with_errors
            or failed
        """
        start_time = time.monotonic()
        if not max_execution_time:
            max_execution_time = self.config.max_execution_time_ms
        context: Optional[FlowExecutionContext] = None

        self.logger.info(f"Starting flow execution: {flow_id} (environment: {environment_id})")

        try:
            # 1. Load and validate the flow
            flow = await self.environment_manager.load_flow_config(flow_id)

            validation_errors = validate_flow(flow)
            if validation_errors:
                for error in validation_errors:
                    self.logger.warning(f"Flow {flow_id} is invalid: {error.message}")
                return self._build_result(flow_id, FlowStatus.FAILED, start_time, errors=validation_errors)

            # 2. Variables
            base_variables = await self.environment_manager.load_environment_variables(environment_id)
            variables = self.environment_manager.merge_variables(base_variables, override_variables)

            # 3. Run
            context = FlowExecutionContext(
                flow_id=flow_id,
                environment_id=environment_id,
                variables=variables,
                max_execution_time=max_execution_time,
                start_time=start_time,
            )
            await self._execute_flow_graph(flow, context)
            self._check_timeout(context)

            status = FlowStatus.COMPLETED_WITH_ERRORS if context.errors else FlowStatus.COMPLETED
            result = self._build_result(flow_id, status, start_time, context=context)
            self.logger.info(
                f"Flow execution finished: {flow_id} - {status.value} "
                f"({len(result.node_results)} nodes, {result.execution_time}ms)"
            )
            return result

        except ExecutionError as e:
            self.logger.error(f"Flow execution failed: {flow_id} - {e.message}")
            errors = (context.errors if context else []) + [e]
            return self._build_result(flow_id, FlowStatus.FAILED, start_time, context=context, errors=errors)

        except Exception as e:
            self.logger.exception(f"Unexpected error executing flow {flow_id}: {e}")
            error = ExecutionError(f"Flow execution failed: {e}", cause=e)
            errors = (context.errors if context else []) + [error]
            return self._build_result(flow_id, FlowStatus.FAILED, start_time, context=context, errors=errors)

    def validate_flow_config(self, flow: Union[FlowConfig, Dict[str, Any]]) -> Dict[str, Any]:
        """
        Validate a flow definition without running it.

        Returns:
            Dict with 'is_valid' and 'errors' (serialized ExecutionErrors)
        """
        if not isinstance(flow, FlowConfig):
            flow = FlowConfig.from_dict(flow or {})

        errors = validate_flow(flow)
        return {
            'is_valid': not errors,
            'errors': [error.to_dict() for error in errors],
        }

    async def _execute_flow_graph(self, flow: FlowConfig, context: FlowExecutionContext):
        visited: Set[str] = set()
        executing: Set[str] = set()

        for node in flow.start_nodes():
            await self._execute_node_recursive(flow, node, context, visited, executing, 0)

    async def _execute_node_recursive(
        self,
        flow: FlowConfig,
        node: FlowNode,
        context: FlowExecutionContext,
        visited: Set[str],
        executing: Set[str],
        depth: int,
    ):
        if depth > self.config.max_depth:
            raise FlowValidationError(
                f"Maximum execution depth exceeded ({self.config.max_depth})",
                node_id=node.id,
                details={'max_depth': self.config.max_depth},
            )

        if node.id in executing:
            raise FlowCircularDependencyError(
                f"Circular dependency detected at node {node.id}",
                node_id=node.id,
            )

        if node.id in visited:
            return

        self._check_timeout(context)

        executing.add(node.id)
        try:
            result = await self._execute_node(node, context)
            context.execution_path.append(node.id)
            context.node_results[node.id] = result

            for edge in self._get_next_edges(flow, node, result):
                target = flow.get_node(edge.target)
                if target is None:
                    continue
                await self._execute_node_recursive(flow, target, context, visited, executing, depth + 1)

            visited.add(node.id)
        finally:
            executing.discard(node.id)

    async def _execute_node(self, node: FlowNode, context: FlowExecutionContext) -> NodeExecutionResult:
        """
        Execute a single node.

        Errors are recorded on the context and turned into an error result
        so routing can continue along error edges.
        """
        start_time = time.monotonic()
        self.logger.debug(f"Executing node {node.id} ({node.type})")

        response: Optional[HttpResponse] = None
        data: Optional[Dict[str, Any]] = None
        node_type = node.node_type

        try:
            if node_type == NodeType.HTTP_REQUEST:
                response = await self._execute_http_request_node(node, context)
            elif node_type == NodeType.DELAY:
                data = await self._execute_delay_node(node)
            elif node_type == NodeType.CONDITION:
                data = self._execute_condition_node(node, context)
            elif node_type == NodeType.VARIABLE_SET:
                data = self._execute_variable_set_node(node, context)
            else:
                raise FlowValidationError(f"Unsupported node type: {node.type}", node_id=node.id)

        except ExecutionError as e:
            error = e
        except Exception as e:
            error = ExecutionError(f"Node execution failed: {e}", cause=e)
        else:
            return NodeExecutionResult(
                node_id=node.id,
                status=NodeStatus.SUCCESS,
                execution_time=self._elapsed_ms(start_time),
                timestamp=utc_now_iso(),
                response=response,
                data=data,
            )

        if not error.node_id:
            error.node_id = node.id
        context.errors.append(error)
        self.logger.error(f"Node {node.id} failed: {error.message}")

        return NodeExecutionResult(
            node_id=node.id,
            status=NodeStatus.ERROR,
            execution_time=self._elapsed_ms(start_time),
            timestamp=utc_now_iso(),
            error=error.message,
        )

    async def _execute_http_request_node(self, node: FlowNode, context: FlowExecutionContext) -> HttpResponse:
        data = node.data
        variables = context.variables

        request = HttpRequestConfig(
            method=interpolate(data.method, variables),
            url=interpolate_url(data.url, variables),
            headers=interpolate_headers(data.headers, variables),
            body=interpolate_body(data.body, variables),
            timeout=data.timeout or self.config.http_timeout_ms,
        )
        retries = data.retries if data.retries is not None else self.config.node_retries

        response = await self.http_executor.execute_with_retry(request, retries)

        if data.save_response:
            variable_name = data.response_variable or 'response'
            context.variables[variable_name] = response.body
            self.logger.debug(f"Saved response of node {node.id} to '{variable_name}'")

        return response

    async def _execute_delay_node(self, node: FlowNode) -> Dict[str, Any]:
        duration = min(node.data.duration, self.config.max_delay_ms)
        await self.sleep(duration / 1000)
        return {'delay': duration}

    def _execute_condition_node(self, node: FlowNode, context: FlowExecutionContext) -> Dict[str, Any]:
        condition = node.data.condition
        result = self.expression_evaluator.evaluate(condition, context.variables)
        self.logger.debug(f"Condition node {node.id} evaluated to {result!r}")
        return {'condition': condition, 'result': result}

    def _execute_variable_set_node(self, node: FlowNode, context: FlowExecutionContext) -> Dict[str, Any]:
        variable = node.data.variable
        value = interpolate_object(node.data.value, context.variables)
        context.variables[variable] = value
        return {'variable': variable, 'value': value}

    def _get_next_edges(self, flow: FlowConfig, node: FlowNode, result: NodeExecutionResult) -> List[FlowEdge]:
        return [edge for edge in flow.outgoing_edges(node.id) if self._should_follow_edge(edge, result)]

    @staticmethod
    def _should_follow_edge(edge: FlowEdge, result: NodeExecutionResult) -> bool:
        edge_type = edge.edge_type

        if edge_type == EdgeType.SUCCESS:
            return result.status == NodeStatus.SUCCESS
        if edge_type == EdgeType.ERROR:
            return result.status == NodeStatus.ERROR
        if edge_type == EdgeType.TRUE:
            return result.data is not None and result.data.get('result') is True
        if edge_type == EdgeType.FALSE:
            return result.data is not None and result.data.get('result') is False
        return True

    def _check_timeout(self, context: FlowExecutionContext):
        elapsed = context.elapsed_ms()
        if elapsed > context.max_execution_time:
            raise FlowTimeoutError(
                f"Flow execution timeout after {elapsed}ms",
                details={'elapsed': elapsed, 'max_execution_time': context.max_execution_time},
            )

    def _build_result(
        self,
        flow_id: str,
        status: FlowStatus,
        start_time: float,
        context: Optional[FlowExecutionContext] = None,
        errors: Optional[List[ExecutionError]] = None,
    ) -> FlowExecutionResult:
        if errors is None:
            errors = context.errors if context else []

        return FlowExecutionResult(
            flow_id=flow_id,
            status=status,
            execution_time=self._elapsed_ms(start_time),
            node_results=list(context.node_results.values()) if context else [],
            errors=list(errors),
            variables=dict(context.variables) if context else {},
            execution_path=list(context.execution_path) if context else [],
        )

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
