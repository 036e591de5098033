"""
Expression Evaluator for condition nodes.

Walks the AST produced by ExpressionParser. No host-language code is ever
compiled or executed: identifiers resolve against the sanitized variables
and the whitelisted globals in functions.py only.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import math
import time

from apiflow.expressions.ast import (
    ExpressionNode,
    LiteralNode,
    IdentifierNode,
    MemberNode,
    IndexNode,
    CallNode,
    BinaryOpNode,
    LogicalOpNode,
    UnaryOpNode,
    ConditionalNode,
    ArrayNode,
    MathOp,
    ComparisonOp,
    LogicalOp
)
from apiflow.expressions.functions import (
    ALLOWED_GLOBALS,
    CONSTANTS,
    FunctionError,
    default_function_registry,
    is_number,
    methods_for,
    normalize_number,
    to_bool,
    to_js_string,
    to_number,
)


class EvaluationError(Exception):
    """Error during expression evaluation."""
    pass


class EvaluationTimeout(EvaluationError):
    """The evaluation deadline passed."""
    pass


@dataclass(frozen=True)
class GlobalRef:
    """A reference to an allowed global such as Math or parseInt."""
    name: str


@dataclass(frozen=True)
class BoundMethod:
    """A whitelisted method looked up on a value, awaiting a call."""
    value: Any
    name: str


class ExpressionEvaluator:
    """
    Evaluates expression ASTs against a variable context.

    Supports:
    - Arithmetic: +, -, *, /, %
    - Comparisons: ==, !=, ===, !==, >, <, >=, <=
    - Logical: &&, ||, ! (always yielding booleans)
    - Ternary: cond ? a : b
    - Whitelisted globals and value methods
    """

    # Maximum recursion depth for safety
    MAX_DEPTH = 50

    def __init__(self, context: Dict[str, Any], function_registry=None, deadline: Optional[float] = None):
        self.context = context
        self.function_registry = function_registry or default_function_registry
        self.deadline = deadline
        self._depth = 0

    def evaluate(self, node: ExpressionNode) -> Any:
        """
        Evaluate an AST node.

        Args:
            node: The AST node to evaluate

        Returns:
            The result of the evaluation

        Raises:
            EvaluationTimeout: If the deadline (time.monotonic based) passed
            EvaluationError: On any runtime failure
        """
        self._check_deadline()

        self._depth += 1

        if self._depth > self.MAX_DEPTH:
            self._depth -= 1
            raise EvaluationError("Maximum recursion depth exceeded")

        try:
            return self._evaluate_node(node)
        finally:
            self._depth -= 1

    def _check_deadline(self):
        if self.deadline is not None and time.monotonic() > self.deadline:
            raise EvaluationTimeout("Expression evaluation timeout")

    def _evaluate_node(self, node: ExpressionNode) -> Any:
        """Dispatch evaluation based on node type."""
        if isinstance(node, LiteralNode):
            return node.value

        if isinstance(node, IdentifierNode):
            return self._evaluate_identifier(node)

        if isinstance(node, MemberNode):
            return self._evaluate_member(node)

        if isinstance(node, IndexNode):
            return self._evaluate_index(node)

        if isinstance(node, CallNode):
            return self._evaluate_call(node)

        if isinstance(node, BinaryOpNode):
            return self._evaluate_binary_op(node)

        if isinstance(node, LogicalOpNode):
            return self._evaluate_logical_op(node)

        if isinstance(node, UnaryOpNode):
            return self._evaluate_unary_op(node)

        if isinstance(node, ConditionalNode):
            if to_bool(self.evaluate(node.test)):
                return self.evaluate(node.consequent)
            return self.evaluate(node.alternate)

        if isinstance(node, ArrayNode):
            return [self.evaluate(element) for element in node.elements]

        raise EvaluationError(f"Unknown node type: {type(node).__name__}")

    def _evaluate_identifier(self, node: IdentifierNode) -> Any:
        if node.name in self.context:
            return self.context[node.name]
        if node.name in ALLOWED_GLOBALS:
            return GlobalRef(node.name)
        raise EvaluationError(f"{node.name} is not defined")

    def _evaluate_member(self, node: MemberNode) -> Any:
        target = self.evaluate(node.target)
        return self._get_property(target, node.property)

    def _evaluate_index(self, node: IndexNode) -> Any:
        target = self.evaluate(node.target)
        key = self.evaluate(node.index)

        if isinstance(target, (list, str)) and is_number(key):
            if isinstance(key, float) and not key.is_integer():
                return None
            index = int(key)
            return target[index] if 0 <= index < len(target) else None

        return self._get_property(target, to_js_string(key))

    def _get_property(self, target: Any, name: str) -> Any:
        if target is None:
            raise EvaluationError(f"Cannot read properties of null (reading '{name}')")

        if isinstance(target, GlobalRef):
            qualified = f"{target.name}.{name}"
            if qualified in CONSTANTS:
                return CONSTANTS[qualified]
            if self.function_registry.has(qualified):
                return GlobalRef(qualified)
            return None

        if isinstance(target, dict):
            return target.get(name)

        if name == 'length' and isinstance(target, (list, str)):
            return len(target)

        if name in methods_for(target):
            return BoundMethod(target, name)

        if isinstance(target, list) and name.isdigit():
            index = int(name)
            return target[index] if index < len(target) else None

        return None

    def _evaluate_call(self, node: CallNode) -> Any:
        """Evaluate a call of a whitelisted global or value method."""
        callee = self.evaluate(node.callee)
        args = [self.evaluate(arg) for arg in node.arguments]

        result = self._invoke(node, callee, args)
        # A single call can outlive the budget; its result is discarded then.
        self._check_deadline()
        return result

    def _invoke(self, node: CallNode, callee: Any, args: list) -> Any:
        if isinstance(callee, GlobalRef):
            try:
                return normalize_number(self.function_registry.execute(callee.name, args))
            except FunctionError as e:
                raise EvaluationError(str(e))
            except (TypeError, ValueError, ArithmeticError) as e:
                raise EvaluationError(f"{callee.name} failed: {e}")

        if isinstance(callee, BoundMethod):
            method = methods_for(callee.value)[callee.name]
            try:
                return method(callee.value, *args)
            except FunctionError as e:
                raise EvaluationError(str(e))
            except (TypeError, ValueError, IndexError, AttributeError) as e:
                raise EvaluationError(f"{callee.name} failed: {e}")

        raise EvaluationError(f"{self._describe(node.callee)} is not a function")

    def _evaluate_binary_op(self, node: BinaryOpNode) -> Any:
        """Evaluate a binary operation."""
        left = self.evaluate(node.left)
        right = self.evaluate(node.right)

        op = node.operator

        if isinstance(op, MathOp):
            return self._apply_math_op(op, left, right)

        if isinstance(op, ComparisonOp):
            return self._apply_comparison_op(op, left, right)

        raise EvaluationError(f"Unknown operator: {op}")

    def _apply_math_op(self, op: MathOp, left: Any, right: Any) -> Any:
        """Apply a mathematical operation."""
        # '+' concatenates as soon as either side is not numeric-like
        if op == MathOp.ADD and (self._is_textual(left) or self._is_textual(right)):
            return to_js_string(left) + to_js_string(right)

        left_num = to_number(left)
        right_num = to_number(right)

        if op == MathOp.ADD:
            return normalize_number(left_num + right_num)
        elif op == MathOp.SUB:
            return normalize_number(left_num - right_num)
        elif op == MathOp.MUL:
            return normalize_number(left_num * right_num)
        elif op == MathOp.DIV:
            if right_num == 0:
                raise EvaluationError("Division by zero")
            return normalize_number(left_num / right_num)
        elif op == MathOp.MOD:
            if right_num == 0:
                raise EvaluationError("Modulo by zero")
            return normalize_number(math.fmod(left_num, right_num))

        raise EvaluationError(f"Unknown math operator: {op}")

    def _apply_comparison_op(self, op: ComparisonOp, left: Any, right: Any) -> bool:
        """Apply a comparison operation."""
        if op == ComparisonOp.STRICT_EQ:
            return self._strict_equals(left, right)
        if op == ComparisonOp.STRICT_NE:
            return not self._strict_equals(left, right)
        if op == ComparisonOp.EQ:
            return self._loose_equals(left, right)
        if op == ComparisonOp.NE:
            return not self._loose_equals(left, right)

        if isinstance(left, str) and isinstance(right, str):
            left_value, right_value = left, right
        else:
            left_value, right_value = to_number(left), to_number(right)
            # Any comparison with NaN is false
            if self._is_nan(left_value) or self._is_nan(right_value):
                return False

        if op == ComparisonOp.GT:
            return left_value > right_value
        elif op == ComparisonOp.GTE:
            return left_value >= right_value
        elif op == ComparisonOp.LT:
            return left_value < right_value
        elif op == ComparisonOp.LTE:
            return left_value <= right_value

        raise EvaluationError(f"Unknown comparison operator: {op}")

    def _evaluate_logical_op(self, node: LogicalOpNode) -> bool:
        """Evaluate a logical operation."""
        # Short-circuit evaluation
        if node.operator == LogicalOp.AND:
            left = to_bool(self.evaluate(node.left))
            if not left:
                return False
            return to_bool(self.evaluate(node.right))

        elif node.operator == LogicalOp.OR:
            left = to_bool(self.evaluate(node.left))
            if left:
                return True
            return to_bool(self.evaluate(node.right))

        raise EvaluationError(f"Unknown logical operator: {node.operator}")

    def _evaluate_unary_op(self, node: UnaryOpNode) -> Any:
        """Evaluate a unary operation."""
        operand = self.evaluate(node.operand)

        if node.operator == '-':
            return normalize_number(-to_number(operand))

        elif node.operator == '+':
            return to_number(operand)

        elif node.operator == '!':
            return not to_bool(operand)

        raise EvaluationError(f"Unknown unary operator: {node.operator}")

    @staticmethod
    def _kind(value: Any) -> str:
        if value is None:
            return 'null'
        if isinstance(value, bool):
            return 'boolean'
        if is_number(value):
            return 'number'
        if isinstance(value, str):
            return 'string'
        return 'object'

    def _strict_equals(self, left: Any, right: Any) -> bool:
        kind = self._kind(left)
        if kind != self._kind(right):
            return False
        if kind == 'object':
            # Arrays and objects compare by identity
            return left is right
        return left == right

    def _loose_equals(self, left: Any, right: Any) -> bool:
        left_kind, right_kind = self._kind(left), self._kind(right)

        if left_kind == right_kind:
            return self._strict_equals(left, right)
        if 'null' in (left_kind, right_kind):
            return False
        if left_kind == 'boolean':
            return self._loose_equals(int(left), right)
        if right_kind == 'boolean':
            return self._loose_equals(left, int(right))
        if {left_kind, right_kind} == {'number', 'string'}:
            return to_number(left) == to_number(right)
        if left_kind == 'object' and right_kind in ('string', 'number'):
            return self._loose_equals(to_js_string(left), right)
        if right_kind == 'object' and left_kind in ('string', 'number'):
            return self._loose_equals(left, to_js_string(right))
        return False

    @staticmethod
    def _is_textual(value: Any) -> bool:
        return isinstance(value, (str, list, dict))

    @staticmethod
    def _is_nan(value: Any) -> bool:
        return isinstance(value, float) and math.isnan(value)

    @staticmethod
    def _describe(node: ExpressionNode) -> str:
        if isinstance(node, IdentifierNode):
            return node.name
        if isinstance(node, MemberNode):
            return f"{ExpressionEvaluator._describe(node.target)}.{node.property}"
        return 'expression'
