"""
Safe Expression Evaluator

Entry point used by condition nodes. Expressions go through a static
safety filter, are parsed into an AST and interpreted against a sanitized
copy of the variables, under a wall-clock deadline.
"""

import logging
import re
import time
from typing import Any, Dict, List, Optional

from apiflow.errors import ConditionEvaluationError, UnsafeExpressionError, truncate
from apiflow.expressions.evaluator import EvaluationError, EvaluationTimeout, ExpressionEvaluator
from apiflow.expressions.functions import ALLOWED_GLOBALS, default_function_registry
from apiflow.expressions.lexer import LexerError
from apiflow.expressions.parser import ExpressionParser, MultipleStatementsError, ParseError


MAX_EXPRESSION_LENGTH = 1000
MAX_OPEN_BRACES = 3
MAX_CONTEXT_DEPTH = 10
DEFAULT_TIMEOUT = 5.0

FORBIDDEN_IDENTIFIERS = [
    'eval',
    'require',
    'import',
    'process',
    'global',
    'window',
    'document',
    'console',
    'setTimeout',
    'setInterval',
    'fetch',
    'XMLHttpRequest',
    'constructor',
    'prototype',
    '__proto__',
]

UNSAFE_PATTERNS = [
    (re.compile(r'\bfor\s*\('), 'For loops are not allowed'),
    (re.compile(r'\bwhile\s*\('), 'While loops are not allowed'),
    (re.compile(r'\bdo\s*\{'), 'Do-while loops are not allowed'),
    (re.compile(r'\bfunction\b'), 'Function declarations are not allowed'),
    (re.compile(r'=>'), 'Arrow functions are not allowed'),
    (re.compile(r'\bnew\s+[A-Za-z_$]'), 'Constructor calls are not allowed'),
]

FORBIDDEN_PATTERN = re.compile(
    r'(?<![\w$])(' + '|'.join(re.escape(name) for name in FORBIDDEN_IDENTIFIERS) + r')(?![\w$])'
)

IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*$')


class SafeExpressionEvaluator:
    """
    Evaluates condition expressions inside a sandbox.

    Args:
        timeout: Wall-clock budget per evaluation, in seconds
        function_registry: Whitelisted globals (defaults to the built-in set)
        logger: Logger to report through
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, function_registry=None,
                 logger: Optional[logging.Logger] = None):
        self.timeout = timeout
        self.function_registry = function_registry or default_function_registry
        self.logger = logger or logging.getLogger(__name__)

    def evaluate(self, expression: str, context: Optional[Dict[str, Any]] = None) -> Any:
        """
        Evaluate an expression against a variable context.

        Args:
            expression: Condition source, e.g. 'status === 200 && count > 0'
            context: Variables visible to the expression

        Returns:
            The value of the expression

        Raises:
            UnsafeExpressionError: If the expression fails the safety filter
            ConditionEvaluationError: On syntax errors, runtime errors or timeout
        """
        self.validate_expression(expression)
        safe_context = self._sanitize_context(context or {})
        deadline = time.monotonic() + self.timeout

        try:
            tree = ExpressionParser().parse(expression)
            result = ExpressionEvaluator(safe_context, self.function_registry, deadline).evaluate(tree)
        except MultipleStatementsError as e:
            raise UnsafeExpressionError(str(e), expression=expression, cause=e) from e
        except EvaluationTimeout as e:
            self.logger.warning(f"Expression evaluation timed out: {truncate(expression, 100)}")
            raise ConditionEvaluationError(
                f"Expression evaluation timeout after {self.timeout}s",
                expression=expression,
                cause=e,
            ) from e
        except (LexerError, ParseError, EvaluationError, TypeError, ValueError, ArithmeticError) as e:
            self.logger.warning(f"Expression evaluation failed for '{truncate(expression, 100)}': {e}")
            raise ConditionEvaluationError(
                f"Expression evaluation failed: {e}",
                expression=expression,
                cause=e,
            ) from e

        self.logger.debug(f"Expression '{truncate(expression, 100)}' evaluated to {result!r}")
        return result

    def validate_expression(self, expression: Any):
        """
        Run the static safety filter.

        Raises:
            UnsafeExpressionError: On the first violation found
        """
        if not isinstance(expression, str) or not expression.strip():
            raise UnsafeExpressionError('Expression must be a non-empty string', expression=expression)

        if len(expression) > MAX_EXPRESSION_LENGTH:
            raise UnsafeExpressionError(
                f"Expression too long (max {MAX_EXPRESSION_LENGTH} characters)",
                expression=expression,
            )

        for pattern, message in UNSAFE_PATTERNS:
            if pattern.search(expression):
                raise UnsafeExpressionError(message, expression=expression)

        match = FORBIDDEN_PATTERN.search(expression)
        if match:
            raise UnsafeExpressionError(
                f"Access to '{match.group(1)}' is not allowed",
                expression=expression,
            )

        if expression.count('{') > MAX_OPEN_BRACES:
            raise UnsafeExpressionError('Too many nested braces', expression=expression)

    def test_expression(self, expression: str) -> Dict[str, Any]:
        """
        Validate and parse an expression without evaluating it.

        Returns:
            Dict with 'is_valid' and 'error'
        """
        try:
            self.validate_expression(expression)
            ExpressionParser().parse(expression)
        except UnsafeExpressionError as e:
            return {'is_valid': False, 'error': e.message}
        except (LexerError, ParseError) as e:
            return {'is_valid': False, 'error': str(e)}

        return {'is_valid': True, 'error': None}

    def get_allowed_globals(self) -> List[str]:
        """List the globals an expression may reference."""
        return list(ALLOWED_GLOBALS)

    def _sanitize_context(self, context: Dict[str, Any]) -> Dict[str, Any]:
        safe = {}

        for key, value in context.items():
            if not isinstance(key, str) or not IDENTIFIER_PATTERN.match(key):
                self.logger.debug(f"Skipping context key with invalid name: {key!r}")
                continue
            if key in ALLOWED_GLOBALS:
                self.logger.debug(f"Skipping context key shadowing a global: {key}")
                continue
            safe[key] = self._sanitize_value(value, 0)

        return safe

    def _sanitize_value(self, value: Any, depth: int) -> Any:
        if self._is_primitive(value):
            return value

        if isinstance(value, (list, tuple)):
            return [item for item in value if self._is_primitive(item)]

        if isinstance(value, dict) and depth < MAX_CONTEXT_DEPTH:
            return {
                str(key): self._sanitize_value(item, depth + 1)
                for key, item in value.items()
            }

        return str(value)

    @staticmethod
    def _is_primitive(value: Any) -> bool:
        return value is None or isinstance(value, (bool, int, float, str))
