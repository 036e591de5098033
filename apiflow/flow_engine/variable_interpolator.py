"""
Variable Interpolator - Substitutes {{name}} placeholders with variable values

Supports:
- {{baseUrl}}/users/{{userId}} - placeholders anywhere in a string
- Recursive substitution in dicts (keys included) and lists
- Typed wrappers for URLs, headers and request bodies

Missing variables are left untouched and logged; interpolation never fails
because a variable is absent.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from apiflow.errors import VariableInterpolationError, truncate

logger = logging.getLogger(__name__)

# Pattern to match {{name}}
VARIABLE_PATTERN = re.compile(r'\{\{([A-Za-z0-9_]+)\}\}')

# Identifier rule for variable names (environment keys, variable_set targets)
VALID_NAME_PATTERN = re.compile(r'^[A-Za-z_$][A-Za-z0-9_$]*$')


def interpolate(text: Any, variables: Dict[str, Any]) -> Any:
    """
    Replace every {{name}} in text with its value.

    Args:
        text: Template string; non-string values are returned unchanged
        variables: Flat name -> value map

    Returns:
        The interpolated string

    Raises:
        VariableInterpolationError: If converting a value to text fails

    Examples:
        interpolate("{{base}}/items", {"base": "http://api.test"}) -> "http://api.test/items"
        interpolate("{{missing}}", {}) -> "{{missing}}"
    """
    if not isinstance(text, str) or '{{' not in text:
        return text

    def replace(match: re.Match) -> str:
        name = match.group(1)
        if name not in variables:
            logger.warning(f"Variable not found: {name}")
            return match.group(0)
        return _stringify(variables[name])

    try:
        return VARIABLE_PATTERN.sub(replace, text)
    except VariableInterpolationError:
        raise
    except Exception as e:
        raise VariableInterpolationError(
            f"Failed to interpolate template: {e}",
            details={'template': truncate(text, 100)},
            cause=e,
        ) from e


def interpolate_object(obj: Any, variables: Dict[str, Any]) -> Any:
    """
    Interpolate recursively through dicts and lists.

    Strings and dict keys are interpolated; numbers, booleans and None pass
    through unchanged. A new structure is returned.
    """
    if isinstance(obj, str):
        return interpolate(obj, variables)
    elif isinstance(obj, dict):
        return {
            interpolate(key, variables): interpolate_object(value, variables)
            for key, value in obj.items()
        }
    elif isinstance(obj, (list, tuple)):
        return [interpolate_object(item, variables) for item in obj]
    else:
        return obj


def interpolate_url(url: str, variables: Dict[str, Any]) -> str:
    return interpolate(url, variables)


def interpolate_headers(headers: Optional[Dict[str, Any]], variables: Dict[str, Any]) -> Dict[str, Any]:
    if not headers:
        return {}
    return {
        interpolate(name, variables): interpolate(value, variables)
        for name, value in headers.items()
    }


def interpolate_body(body: Any, variables: Dict[str, Any]) -> Any:
    if not body:
        return body
    if isinstance(body, str):
        return interpolate(body, variables)
    return interpolate_object(body, variables)


def is_valid_variable_name(name: Any) -> bool:
    return isinstance(name, str) and bool(VALID_NAME_PATTERN.match(name))


def extract_variables(text: Any) -> List[str]:
    """
    List placeholder names used in text, in first-seen order.

    Example:
        extract_variables("{{a}}/{{b}}/{{a}}") -> ["a", "b"]
    """
    if not isinstance(text, str):
        return []

    names = []
    for name in VARIABLE_PATTERN.findall(text):
        if name not in names:
            names.append(name)
    return names


def has_variables(text: Any) -> bool:
    return isinstance(text, str) and VARIABLE_PATTERN.search(text) is not None


def validate_context(variables: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check a variable map before using it for interpolation.

    Returns:
        Dict with 'is_valid' and a list of 'errors'
    """
    errors = []

    if not isinstance(variables, dict):
        return {'is_valid': False, 'errors': ['Variables must be a mapping']}

    for name, value in variables.items():
        if not is_valid_variable_name(name):
            errors.append(f"Invalid variable name: {name}")
        elif callable(value):
            errors.append(f"Variable '{name}' cannot be a function")
        elif value is not None and not isinstance(value, (str, int, float, bool, dict, list)):
            errors.append(f"Variable '{name}' has unsupported type {type(value).__name__}")

    return {'is_valid': not errors, 'errors': errors}


def _stringify(value: Any) -> str:
    """Render a value the way a JS template literal would."""
    if value is None:
        return ''
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(',', ':'))
    return str(value)
