"""
Whitelisted globals for condition expressions.

Only what is registered here is callable from an expression:

    Math.max(a, b)          parseInt(value)
    JSON.stringify(body)    encodeURIComponent(name)
    name.toLowerCase()      items.includes("x")

Nothing ever reaches Python attributes of context values; method calls go
through the VALUE_METHODS tables below.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, unquote
import json
import math
import random
import re
import time


ALLOWED_GLOBALS = [
    'Math',
    'Date',
    'JSON',
    'String',
    'Number',
    'Boolean',
    'Array',
    'Object',
    'RegExp',
    'parseInt',
    'parseFloat',
    'isNaN',
    'isFinite',
    'encodeURIComponent',
    'decodeURIComponent',
    'encodeURI',
    'decodeURI',
]

CONSTANTS = {
    'Math.PI': math.pi,
    'Math.E': math.e,
    'Math.LN2': math.log(2),
    'Math.LN10': math.log(10),
    'Math.SQRT2': math.sqrt(2),
    'Number.MAX_SAFE_INTEGER': 2 ** 53 - 1,
    'Number.MIN_SAFE_INTEGER': -(2 ** 53 - 1),
    'Number.NaN': math.nan,
    'Number.POSITIVE_INFINITY': math.inf,
    'Number.NEGATIVE_INFINITY': -math.inf,
}

MAX_REGEX_LENGTH = 200
MAX_REGEX_SUBJECT_LENGTH = 10000
MAX_FIXED_DIGITS = 100


class FunctionError(Exception):
    """Error during function execution."""
    def __init__(self, function_name: str, message: str):
        self.function_name = function_name
        super().__init__(f"Function '{function_name}' failed: {message}")


# ============================================================================
# JavaScript-flavoured conversions
# ============================================================================

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_number(value: Any) -> Any:
    """Collapse integral floats (6 / 3 -> 2) the way JS prints them."""
    if isinstance(value, float) and math.isfinite(value) and value.is_integer():
        return int(value)
    return value


def to_number(value: Any) -> Any:
    """Convert a value to a number, NaN when it has no numeric reading."""
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if is_number(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def to_js_string(value: Any) -> str:
    """Render a value the way String(value) does."""
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float):
        if math.isnan(value):
            return 'NaN'
        if math.isinf(value):
            return 'Infinity' if value > 0 else '-Infinity'
        return str(normalize_number(value))
    if isinstance(value, list):
        return ','.join('' if item is None else to_js_string(item) for item in value)
    if isinstance(value, dict):
        return '[object Object]'
    return str(value)


def to_bool(value: Any) -> bool:
    """Convert a value to boolean."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        # Environment variables are strings, so "false" and "0" read as false
        return value.lower() not in ('', 'false', '0', 'null', 'undefined')
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return bool(value)


# ============================================================================
# Function registry
# ============================================================================

class ExpressionFunction(ABC):
    """Base class for callable globals."""

    name: str = ""
    min_args: int = 0
    max_args: Optional[int] = None  # None means unlimited

    @abstractmethod
    def execute(self, args: List[Any]) -> Any:
        """Execute the function with given arguments."""
        pass

    def validate_args(self, args: List[Any]):
        """Validate argument count."""
        if len(args) < self.min_args:
            raise FunctionError(
                self.name,
                f"Expected at least {self.min_args} arguments, got {len(args)}"
            )
        if self.max_args is not None and len(args) > self.max_args:
            raise FunctionError(
                self.name,
                f"Expected at most {self.max_args} arguments, got {len(args)}"
            )


class BuiltinFunction(ExpressionFunction):
    """Expose a plain Python callable under a qualified name."""

    def __init__(self, name: str, func: Callable, min_args: int = 0, max_args: Optional[int] = None):
        self.name = name
        self.func = func
        self.min_args = min_args
        self.max_args = max_args

    def execute(self, args: List[Any]) -> Any:
        return self.func(*args)


class FunctionRegistry:
    """Registry of callable globals, keyed by qualified name ("Math.max")."""

    def __init__(self):
        self._functions: Dict[str, ExpressionFunction] = {}

    def register(self, func: ExpressionFunction):
        """Register a function."""
        self._functions[func.name] = func

    def get(self, name: str) -> Optional[ExpressionFunction]:
        """Get a function by name."""
        return self._functions.get(name)

    def has(self, name: str) -> bool:
        """Check if a function exists."""
        return name in self._functions

    def names(self) -> List[str]:
        return sorted(self._functions)

    def execute(self, name: str, args: List[Any]) -> Any:
        """Execute a function by name."""
        func = self.get(name)
        if not func:
            raise FunctionError(name, f"{name} is not a function")

        func.validate_args(args)
        return func.execute(args)


# ============================================================================
# Global functions
# ============================================================================

_INT_PREFIX = re.compile(r'^\s*([+-]?)([0-9a-zA-Z]+)')
_FLOAT_PREFIX = re.compile(r'^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?')
_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'


def _parse_int(value: Any, radix: Any = 10) -> Any:
    radix = int(to_number(radix) or 10)
    if radix < 2 or radix > 36:
        return math.nan
    match = _INT_PREFIX.match(to_js_string(value))
    if not match:
        return math.nan
    sign, digits = match.groups()
    allowed = _DIGITS[:radix]
    prefix = ''
    for char in digits.lower():
        if char not in allowed:
            break
        prefix += char
    if not prefix:
        return math.nan
    result = int(prefix, radix)
    return -result if sign == '-' else result


def _parse_float(value: Any) -> Any:
    match = _FLOAT_PREFIX.match(to_js_string(value))
    if not match:
        return math.nan
    return normalize_number(float(match.group(0)))


def _is_nan(value: Any) -> bool:
    number = to_number(value)
    return isinstance(number, float) and math.isnan(number)


def _is_finite(value: Any) -> bool:
    number = to_number(value)
    return not (isinstance(number, float) and not math.isfinite(number))


def _js_round(value: Any) -> Any:
    number = to_number(value)
    if isinstance(number, float) and not math.isfinite(number):
        return number
    return math.floor(number + 0.5)


def _numbers(args: List[Any]) -> List[Any]:
    return [to_number(arg) for arg in args]


def _math_max(*args):
    values = _numbers(list(args))
    if any(isinstance(v, float) and math.isnan(v) for v in values):
        return math.nan
    return max(values) if values else -math.inf


def _math_min(*args):
    values = _numbers(list(args))
    if any(isinstance(v, float) and math.isnan(v) for v in values):
        return math.nan
    return min(values) if values else math.inf


def _math_sqrt(value):
    number = to_number(value)
    return math.nan if number < 0 else normalize_number(math.sqrt(number))


def _math_sign(value):
    number = to_number(value)
    if isinstance(number, float) and math.isnan(number):
        return number
    return (number > 0) - (number < 0)


def _json_stringify(value: Any, *_args) -> str:
    return json.dumps(value, separators=(',', ':'), ensure_ascii=False, default=to_js_string)


def _json_parse(text: Any) -> Any:
    return json.loads(to_js_string(text))


def _object_keys(value: Any) -> List[str]:
    if isinstance(value, dict):
        return list(value.keys())
    if isinstance(value, (list, str)):
        return [str(i) for i in range(len(value))]
    return []


@dataclass(frozen=True)
class JsRegExp:
    """Compiled pattern returned by RegExp(pattern, flags)."""
    source: str
    flags: str
    pattern: Any

    def test(self, value: Any) -> bool:
        subject = to_js_string(value)
        if len(subject) > MAX_REGEX_SUBJECT_LENGTH:
            raise FunctionError('RegExp.test', f"Input longer than {MAX_REGEX_SUBJECT_LENGTH} characters")
        return self.pattern.search(subject) is not None


_QUANTIFIER_BRACE = re.compile(r'\{\d+(,\d*)?\}')


def _is_repeated(source: str, i: int) -> bool:
    """Whether position i starts an unbounded or counted repetition."""
    if i >= len(source):
        return False
    if source[i] in '*+':
        return True
    return source[i] == '{' and _QUANTIFIER_BRACE.match(source, i) is not None


def _has_ambiguous_repetition(source: str) -> bool:
    """
    Detect a repeated group that contains a repetition or an alternation.

    Patterns such as (a+)+ or (a|aa)+ backtrack exponentially in the re
    module, which has no match timeout.
    """
    stack = []
    risky = False
    i = 0
    while i < len(source):
        char = source[i]
        if char == '\\':
            i += 2
            continue
        if char == '[':
            i += 1
            if i < len(source) and source[i] == '^':
                i += 1
            if i < len(source) and source[i] == ']':
                i += 1
            while i < len(source) and source[i] != ']':
                i += 2 if source[i] == '\\' else 1
            i += 1
            if _is_repeated(source, i):
                risky = True
            continue
        if char == '(':
            stack.append(risky)
            risky = False
        elif char == ')' and stack:
            inner = risky
            risky = stack.pop() or inner
            if inner and _is_repeated(source, i + 1):
                return True
            if _is_repeated(source, i + 1):
                risky = True
        elif char == '|':
            risky = True
        elif _is_repeated(source, i):
            risky = True
        i += 1
    return False


def _regexp(pattern: Any, flags: Any = '') -> JsRegExp:
    source = to_js_string(pattern)
    flags = to_js_string(flags) if flags is not None else ''
    if len(source) > MAX_REGEX_LENGTH:
        raise FunctionError('RegExp', f"Pattern longer than {MAX_REGEX_LENGTH} characters")
    if _has_ambiguous_repetition(source):
        raise FunctionError('RegExp', "Repeated groups may not contain repetition or alternation")
    re_flags = 0
    if 'i' in flags:
        re_flags |= re.IGNORECASE
    if 'm' in flags:
        re_flags |= re.MULTILINE
    if 's' in flags:
        re_flags |= re.DOTALL
    try:
        compiled = re.compile(source, re_flags)
    except re.error as e:
        raise FunctionError('RegExp', f"Invalid regular expression: {e}")
    return JsRegExp(source=source, flags=flags, pattern=compiled)


def create_default_function_registry() -> FunctionRegistry:
    """Create a registry with all whitelisted globals."""
    registry = FunctionRegistry()

    # Top-level functions
    registry.register(BuiltinFunction('parseInt', _parse_int, 1, 2))
    registry.register(BuiltinFunction('parseFloat', _parse_float, 1, 1))
    registry.register(BuiltinFunction('isNaN', _is_nan, 1, 1))
    registry.register(BuiltinFunction('isFinite', _is_finite, 1, 1))
    registry.register(BuiltinFunction('encodeURIComponent', lambda v: quote(to_js_string(v), safe="-_.!~*'()"), 1, 1))
    registry.register(BuiltinFunction('decodeURIComponent', lambda v: unquote(to_js_string(v)), 1, 1))
    registry.register(BuiltinFunction('encodeURI', lambda v: quote(to_js_string(v), safe="-_.!~*'();,/?:@&=+$#"), 1, 1))
    registry.register(BuiltinFunction('decodeURI', lambda v: unquote(to_js_string(v)), 1, 1))
    registry.register(BuiltinFunction('String', lambda v='': to_js_string(v), 0, 1))
    registry.register(BuiltinFunction('Number', lambda v=0: to_number(v), 0, 1))
    registry.register(BuiltinFunction('Boolean', lambda v=None: to_bool(v), 0, 1))
    registry.register(BuiltinFunction('RegExp', _regexp, 1, 2))

    # Math
    registry.register(BuiltinFunction('Math.max', _math_max))
    registry.register(BuiltinFunction('Math.min', _math_min))
    registry.register(BuiltinFunction('Math.abs', lambda v: abs(to_number(v)), 1, 1))
    registry.register(BuiltinFunction('Math.round', _js_round, 1, 1))
    registry.register(BuiltinFunction('Math.floor', lambda v: math.floor(to_number(v)), 1, 1))
    registry.register(BuiltinFunction('Math.ceil', lambda v: math.ceil(to_number(v)), 1, 1))
    registry.register(BuiltinFunction('Math.trunc', lambda v: math.trunc(to_number(v)), 1, 1))
    registry.register(BuiltinFunction('Math.pow', lambda a, b: normalize_number(math.pow(to_number(a), to_number(b))), 2, 2))
    registry.register(BuiltinFunction('Math.sqrt', _math_sqrt, 1, 1))
    registry.register(BuiltinFunction('Math.sign', _math_sign, 1, 1))
    registry.register(BuiltinFunction('Math.random', random.random, 0, 0))

    # JSON
    registry.register(BuiltinFunction('JSON.stringify', _json_stringify, 1, 3))
    registry.register(BuiltinFunction('JSON.parse', _json_parse, 1, 1))

    # Date
    registry.register(BuiltinFunction('Date.now', lambda: int(time.time() * 1000), 0, 0))

    # Number / Array / Object helpers
    registry.register(BuiltinFunction('Number.isInteger', lambda v: is_number(v) and float(v).is_integer(), 1, 1))
    registry.register(BuiltinFunction('Number.isFinite', lambda v: is_number(v) and math.isfinite(v), 1, 1))
    registry.register(BuiltinFunction('Number.parseInt', _parse_int, 1, 2))
    registry.register(BuiltinFunction('Number.parseFloat', _parse_float, 1, 1))
    registry.register(BuiltinFunction('Array.isArray', lambda v: isinstance(v, list), 1, 1))
    registry.register(BuiltinFunction('Object.keys', _object_keys, 1, 1))

    return registry


# ============================================================================
# Value methods
# ============================================================================

def _index_of(container, item, start=0):
    try:
        return container.index(item, int(to_number(start)))
    except ValueError:
        return -1


def _slice(value, start=None, end=None):
    start = None if start is None else int(to_number(start))
    end = None if end is None else int(to_number(end))
    return value[start:end]


def _substring(value, start=0, end=None):
    size = len(value)
    start = min(max(int(to_number(start)), 0), size)
    end = size if end is None else min(max(int(to_number(end)), 0), size)
    if start > end:
        start, end = end, start
    return value[start:end]


def _split(value, separator=None, limit=None):
    if separator is None:
        parts = [value]
    elif separator == '':
        parts = list(value)
    else:
        parts = value.split(to_js_string(separator))
    if limit is not None:
        parts = parts[:int(to_number(limit))]
    return parts


def _join(value, separator=','):
    return to_js_string(separator).join('' if item is None else to_js_string(item) for item in value)


STRING_METHODS: Dict[str, Callable] = {
    'includes': lambda s, sub, start=0: to_js_string(sub) in s[int(to_number(start)):],
    'startsWith': lambda s, prefix: s.startswith(to_js_string(prefix)),
    'endsWith': lambda s, suffix: s.endswith(to_js_string(suffix)),
    'toLowerCase': lambda s: s.lower(),
    'toUpperCase': lambda s: s.upper(),
    'trim': lambda s: s.strip(),
    'indexOf': lambda s, sub, start=0: s.find(to_js_string(sub), int(to_number(start))),
    'split': _split,
    'slice': _slice,
    'substring': _substring,
    'charAt': lambda s, i=0: s[int(to_number(i))] if 0 <= int(to_number(i)) < len(s) else '',
    'replace': lambda s, old, new: s.replace(to_js_string(old), to_js_string(new), 1),
    'toString': lambda s: s,
}

LIST_METHODS: Dict[str, Callable] = {
    'includes': lambda items, item: item in items,
    'indexOf': _index_of,
    'join': _join,
    'slice': _slice,
    'toString': lambda items: to_js_string(items),
}

def _to_fixed(n: Any, digits: Any = 0) -> str:
    count = int(to_number(digits))
    if not 0 <= count <= MAX_FIXED_DIGITS:
        raise FunctionError('toFixed', f"digits argument must be between 0 and {MAX_FIXED_DIGITS}")
    return f"{float(n):.{count}f}"


NUMBER_METHODS: Dict[str, Callable] = {
    'toFixed': _to_fixed,
    'toString': lambda n: to_js_string(n),
}

REGEXP_METHODS: Dict[str, Callable] = {
    'test': lambda regexp, value: regexp.test(value),
}


def methods_for(value: Any) -> Dict[str, Callable]:
    """Return the method table available on a value."""
    if isinstance(value, str):
        return STRING_METHODS
    if isinstance(value, list):
        return LIST_METHODS
    if is_number(value):
        return NUMBER_METHODS
    if isinstance(value, JsRegExp):
        return REGEXP_METHODS
    return {}


default_function_registry = create_default_function_registry()
