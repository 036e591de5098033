"""
Expression sandbox for condition nodes.

Usage:
    from apiflow.expressions import SafeExpressionEvaluator

    evaluator = SafeExpressionEvaluator()
    evaluator.evaluate('status === 200 && items.length > 0', variables)
"""

from apiflow.expressions.safe_evaluator import SafeExpressionEvaluator
from apiflow.expressions.parser import ExpressionParser, ParseError
from apiflow.expressions.evaluator import ExpressionEvaluator, EvaluationError
from apiflow.expressions.functions import ALLOWED_GLOBALS, FunctionRegistry

__all__ = [
    'SafeExpressionEvaluator',
    'ExpressionParser',
    'ParseError',
    'ExpressionEvaluator',
    'EvaluationError',
    'ALLOWED_GLOBALS',
    'FunctionRegistry',
]
