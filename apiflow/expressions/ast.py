"""
Abstract Syntax Tree (AST) nodes for condition expressions.
"""

from dataclasses import dataclass, field
from typing import List, Any, Union
from enum import Enum


class ComparisonOp(Enum):
    """Comparison operators."""
    STRICT_EQ = '==='
    STRICT_NE = '!=='
    EQ = '=='
    NE = '!='
    GT = '>'
    GTE = '>='
    LT = '<'
    LTE = '<='


class LogicalOp(Enum):
    """Logical operators for combining conditions."""
    AND = '&&'
    OR = '||'


class MathOp(Enum):
    """Mathematical operators."""
    ADD = '+'
    SUB = '-'
    MUL = '*'
    DIV = '/'
    MOD = '%'


@dataclass
class ExpressionNode:
    """Base class for all AST nodes."""
    position: int = 0


@dataclass
class LiteralNode(ExpressionNode):
    """
    A literal value: number, string, true, false, null or undefined.

    Example: 200, "active", null
    """
    value: Any = None


@dataclass
class IdentifierNode(ExpressionNode):
    """
    A bare name, resolved against the variables and allowed globals.

    Example: status, Math
    """
    name: str = ""


@dataclass
class MemberNode(ExpressionNode):
    """
    Property access with a fixed name.

    Example: response.status, name.length
    """
    target: ExpressionNode = None
    property: str = ""


@dataclass
class IndexNode(ExpressionNode):
    """
    Computed property or item access.

    Example: items[0], headers["content-type"]
    """
    target: ExpressionNode = None
    index: ExpressionNode = None


@dataclass
class CallNode(ExpressionNode):
    """
    A call of a whitelisted function or value method.

    Example: Math.max(a, b), parseInt(count), name.includes("x")
    """
    callee: ExpressionNode = None
    arguments: List[ExpressionNode] = field(default_factory=list)


@dataclass
class BinaryOpNode(ExpressionNode):
    """
    A binary operation (math or comparison).

    Example: amount * 1.1, status === 200
    """
    left: ExpressionNode = None
    operator: Union[MathOp, ComparisonOp] = None
    right: ExpressionNode = None


@dataclass
class LogicalOpNode(ExpressionNode):
    """
    A short-circuit logical operation.

    Example: ok && count > 0
    """
    left: ExpressionNode = None
    operator: LogicalOp = None
    right: ExpressionNode = None


@dataclass
class UnaryOpNode(ExpressionNode):
    """
    A unary operation.

    Example: !active, -amount
    """
    operator: str = ""
    operand: ExpressionNode = None


@dataclass
class ConditionalNode(ExpressionNode):
    """
    The ternary operator.

    Example: status == 200 ? "ok" : "failed"
    """
    test: ExpressionNode = None
    consequent: ExpressionNode = None
    alternate: ExpressionNode = None


@dataclass
class ArrayNode(ExpressionNode):
    """An array literal: [1, 2, 3]."""
    elements: List[ExpressionNode] = field(default_factory=list)
