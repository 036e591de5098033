"""
Error taxonomy shared by the flow engine, the HTTP executor and the
expression sandbox.

Every error carries a stable ErrorCode so results can be serialized and
compared without relying on class names.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Stable error codes exposed in execution results."""
    NETWORK_ERROR = 'NETWORK_ERROR'
    TIMEOUT_ERROR = 'TIMEOUT_ERROR'
    SSL_ERROR = 'SSL_ERROR'
    DNS_ERROR = 'DNS_ERROR'
    INVALID_URL = 'INVALID_URL'
    INVALID_METHOD = 'INVALID_METHOD'
    INVALID_HEADERS = 'INVALID_HEADERS'
    INVALID_BODY = 'INVALID_BODY'
    VARIABLE_INTERPOLATION_ERROR = 'VARIABLE_INTERPOLATION_ERROR'
    FLOW_VALIDATION_ERROR = 'FLOW_VALIDATION_ERROR'
    FLOW_CIRCULAR_DEPENDENCY = 'FLOW_CIRCULAR_DEPENDENCY'
    FLOW_TIMEOUT = 'FLOW_TIMEOUT'
    CONDITION_EVALUATION_ERROR = 'CONDITION_EVALUATION_ERROR'
    UNSAFE_EXPRESSION = 'UNSAFE_EXPRESSION'
    NODE_EXECUTION_ERROR = 'NODE_EXECUTION_ERROR'


class ExecutionError(Exception):
    """
    Base class for every error the engine reports.

    Attributes:
        message: Human readable description
        code: ErrorCode of the failure
        details: Extra structured context (ids, limits, elapsed time)
        cause: Underlying exception, if any
        node_id: Node being executed when the error happened
        retryable: Whether the HTTP retry loop may try again
    """

    code: ErrorCode = ErrorCode.NODE_EXECUTION_ERROR
    retryable: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        node_id: Optional[str] = None,
        retryable: Optional[bool] = None,
        code: Optional[ErrorCode] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        self.node_id = node_id
        if retryable is not None:
            self.retryable = retryable
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'code': self.code.value,
            'message': self.message,
            'type': self.__class__.__name__,
        }
        if self.node_id:
            data['node_id'] = self.node_id
        if self.details:
            data['details'] = self.details
        if self.cause is not None:
            data['cause'] = str(self.cause)
        return data


# HTTP layer

class NetworkError(ExecutionError):
    """Transport failure (connection reset, refused, protocol error)."""
    code = ErrorCode.NETWORK_ERROR
    retryable = True


class RequestTimeoutError(ExecutionError):
    """A single HTTP attempt exceeded its timeout."""
    code = ErrorCode.TIMEOUT_ERROR
    retryable = True

    def __init__(self, message: str, elapsed: float = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.elapsed = elapsed
        self.details.setdefault('elapsed', elapsed)


class SslError(ExecutionError):
    code = ErrorCode.SSL_ERROR


class DnsError(ExecutionError):
    code = ErrorCode.DNS_ERROR


class InvalidUrlError(ExecutionError):
    code = ErrorCode.INVALID_URL


class InvalidMethodError(ExecutionError):
    code = ErrorCode.INVALID_METHOD


class InvalidHeadersError(ExecutionError):
    code = ErrorCode.INVALID_HEADERS


class InvalidBodyError(ExecutionError):
    code = ErrorCode.INVALID_BODY


# Interpolation and expressions

class VariableInterpolationError(ExecutionError):
    """Template substitution itself failed (not a missing variable)."""
    code = ErrorCode.VARIABLE_INTERPOLATION_ERROR


class ConditionEvaluationError(ExecutionError):
    """
    Evaluation of a condition failed: syntax, runtime error or timeout.

    Attributes:
        expression: The expression, truncated to 100 characters
    """
    code = ErrorCode.CONDITION_EVALUATION_ERROR

    def __init__(self, message: str, expression: str = '', **kwargs):
        super().__init__(message, **kwargs)
        self.expression = truncate(expression, 100)
        self.details.setdefault('expression', self.expression)


class UnsafeExpressionError(ConditionEvaluationError):
    """The expression was rejected by the safety filter."""
    code = ErrorCode.UNSAFE_EXPRESSION


# Orchestration

class FlowValidationError(ExecutionError):
    code = ErrorCode.FLOW_VALIDATION_ERROR


class FlowCircularDependencyError(ExecutionError):
    code = ErrorCode.FLOW_CIRCULAR_DEPENDENCY


class FlowTimeoutError(ExecutionError):
    code = ErrorCode.FLOW_TIMEOUT


def truncate(text: Any, limit: int) -> str:
    text = '' if text is None else str(text)
    if len(text) <= limit:
        return text
    return text[:limit] + '...'
