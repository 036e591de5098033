"""
Flows API - Routes for running and checking flows

Endpoints:
- POST /api/v1/flows/:id/execute - Execute flow
- POST /api/v1/flows/validate - Validate a flow definition
- POST /api/v1/expressions/test - Check a condition expression
"""

import asyncio
import logging
from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request

from apiflow.flow_engine.models import FlowStatus

logger = logging.getLogger(__name__)

flows_bp = Blueprint('flows', __name__, url_prefix='/api/v1/flows')
expressions_bp = Blueprint('expressions', __name__, url_prefix='/api/v1/expressions')


def _get_executor():
    return current_app.extensions['flow_executor']


def _validate_execute_arguments(data: Any) -> List[str]:
    if not isinstance(data, dict):
        return ['Request body must be a JSON object']

    errors = []

    environment_id = data.get('environment_id')
    if not isinstance(environment_id, str) or not environment_id.strip():
        errors.append('environment_id is required and must be a string')

    override_variables = data.get('override_variables')
    if override_variables is not None and not isinstance(override_variables, dict):
        errors.append('override_variables must be an object')

    max_execution_time = data.get('max_execution_time')
    if max_execution_time is not None:
        if isinstance(max_execution_time, bool) or not isinstance(max_execution_time, (int, float)) \
                or max_execution_time < 0:
            errors.append('max_execution_time must be a non-negative number')

    return errors


@flows_bp.route('/<flow_id>/execute', methods=['POST'])
def execute_flow(flow_id):
    """
    Execute a flow.

    Body:
        {
            "environment_id": "env-1",
            "override_variables": {...},   # optional
            "max_execution_time": 60000    # optional, ms
        }
    """
    data = request.get_json(silent=True)

    errors = _validate_execute_arguments(data)
    if errors:
        return jsonify({'success': False, 'errors': errors}), 400

    result = asyncio.run(_get_executor().execute_flow(
        flow_id=flow_id,
        environment_id=data['environment_id'],
        override_variables=data.get('override_variables'),
        max_execution_time=data.get('max_execution_time'),
    ))

    logger.info(f"Flow {flow_id} executed with status {result.status.value}")

    return jsonify({
        'success': result.status != FlowStatus.FAILED,
        'data': result.to_dict(),
    }), 200


@flows_bp.route('/validate', methods=['POST'])
def validate_flow():
    """
    Validate a flow definition without running it.

    Body: the flow definition ({"id", "nodes": [...], "edges": [...]})
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'errors': ['Request body must be a JSON object']}), 400

    validation: Dict[str, Any] = _get_executor().validate_flow_config(data)
    return jsonify({'success': True, 'data': validation}), 200


@expressions_bp.route('/test', methods=['POST'])
def test_expression():
    """
    Check that an expression passes the safety filter and parses.

    Body:
        {"expression": "status === 200"}
    """
    data = request.get_json(silent=True) or {}
    expression = data.get('expression') if isinstance(data, dict) else None

    if not isinstance(expression, str):
        return jsonify({'success': False, 'errors': ['expression is required and must be a string']}), 400

    result = _get_executor().expression_evaluator.test_expression(expression)
    return jsonify({'success': True, 'data': result}), 200
