"""
Tests for the variable interpolator
"""

import pytest

from apiflow.errors import ErrorCode, VariableInterpolationError
from apiflow.flow_engine import variable_interpolator
from apiflow.flow_engine.variable_interpolator import (
    extract_variables,
    has_variables,
    interpolate,
    interpolate_body,
    interpolate_headers,
    interpolate_object,
    interpolate_url,
    is_valid_variable_name,
    validate_context,
)


class TestInterpolate:
    """Test placeholder substitution in strings"""

    def test_simple_variable(self):
        """Test replacing a single placeholder"""
        assert interpolate('Hello {{name}}', {'name': 'Ana'}) == 'Hello Ana'

    def test_multiple_variables(self):
        """Test replacing several placeholders, repeated ones included"""
        result = interpolate('{{base}}/users/{{id}}/{{id}}', {'base': 'http://api.test', 'id': 7})
        assert result == 'http://api.test/users/7/7'

    def test_unknown_variable_left_verbatim(self):
        """Test that a missing variable keeps its placeholder"""
        assert interpolate('{{missing}}', {}) == '{{missing}}'

    def test_unknown_variable_is_logged(self, caplog):
        """Test that a missing variable produces a warning"""
        with caplog.at_level('WARNING'):
            interpolate('{{missing}}', {})
        assert 'missing' in caplog.text

    def test_none_value_renders_empty(self):
        """Test that None renders as an empty string"""
        assert interpolate('[{{value}}]', {'value': None}) == '[]'

    def test_boolean_and_number_rendering(self):
        """Test JS-style rendering of booleans and integral floats"""
        variables = {'flag': True, 'off': False, 'count': 3.0, 'ratio': 0.5}
        assert interpolate('{{flag}} {{off}} {{count}} {{ratio}}', variables) == 'true false 3 0.5'

    def test_structured_values_render_as_json(self):
        """Test that dicts and lists render as compact JSON"""
        result = interpolate('{{user}}', {'user': {'id': 1, 'tags': ['a']}})
        assert result == '{"id":1,"tags":["a"]}'

    def test_non_identifier_placeholder_untouched(self):
        """Test that placeholders with dots or spaces are not variables"""
        text = '{{ name }} {{user.name}}'
        assert interpolate(text, {'name': 'x'}) == text

    def test_non_string_passthrough(self):
        """Test that non-string input is returned unchanged"""
        assert interpolate(42, {'a': 1}) == 42
        assert interpolate(None, {}) is None

    def test_idempotent_without_nested_placeholders(self):
        """Test that interpolating twice equals interpolating once"""
        variables = {'base': 'http://api.test', 'id': '5'}
        text = '{{base}}/items/{{id}}?q={{unknown}}'
        once = interpolate(text, variables)
        assert interpolate(once, variables) == once

    def test_stringify_failure_wrapped(self, monkeypatch):
        """Test that conversion failures raise VariableInterpolationError"""
        def broken(value):
            raise RuntimeError('boom')

        monkeypatch.setattr(variable_interpolator, '_stringify', broken)

        with pytest.raises(VariableInterpolationError) as exc_info:
            interpolate('{{a}}', {'a': 1})

        assert exc_info.value.code == ErrorCode.VARIABLE_INTERPOLATION_ERROR
        assert exc_info.value.details['template'] == '{{a}}'


class TestInterpolateStructures:
    """Test interpolation of objects, headers and bodies"""

    def test_object_recursion_with_keys(self):
        """Test that dict keys, values and list items are interpolated"""
        obj = {'{{key}}': ['{{a}}', 1, None, {'nested': '{{a}}'}], 'flag': True}
        result = interpolate_object(obj, {'key': 'name', 'a': 'x'})
        assert result == {'name': ['x', 1, None, {'nested': 'x'}], 'flag': True}

    def test_object_returns_new_structure(self):
        """Test that the input is not modified"""
        obj = {'a': '{{v}}'}
        interpolate_object(obj, {'v': '1'})
        assert obj == {'a': '{{v}}'}

    def test_url(self):
        """Test URL interpolation"""
        assert interpolate_url('{{base}}/items', {'base': 'http://api.test'}) == 'http://api.test/items'

    def test_headers(self):
        """Test header names and values are interpolated"""
        headers = {'Authorization': 'Bearer {{token}}', 'X-{{name}}': '1'}
        result = interpolate_headers(headers, {'token': 'abc', 'name': 'Trace'})
        assert result == {'Authorization': 'Bearer abc', 'X-Trace': '1'}

    def test_headers_none(self):
        """Test that missing headers become an empty dict"""
        assert interpolate_headers(None, {}) == {}

    def test_body_string_and_object(self):
        """Test string and structured bodies"""
        assert interpolate_body('{"id": "{{id}}"}', {'id': '9'}) == '{"id": "9"}'
        assert interpolate_body({'id': '{{id}}'}, {'id': '9'}) == {'id': '9'}
        assert interpolate_body(None, {}) is None


class TestVariableHelpers:
    """Test name validation and placeholder discovery"""

    def test_valid_names(self):
        """Test identifier rules for variable names"""
        assert is_valid_variable_name('baseUrl')
        assert is_valid_variable_name('_private')
        assert is_valid_variable_name('$ref')
        assert not is_valid_variable_name('1abc')
        assert not is_valid_variable_name('with-dash')
        assert not is_valid_variable_name('')
        assert not is_valid_variable_name(None)

    def test_extract_variables_in_order(self):
        """Test placeholder names are listed once in first-seen order"""
        assert extract_variables('{{b}}/{{a}}/{{b}}') == ['b', 'a']
        assert extract_variables(None) == []

    def test_has_variables(self):
        """Test placeholder detection"""
        assert has_variables('x {{y}}')
        assert not has_variables('plain')

    def test_validate_context(self):
        """Test variable map validation"""
        assert validate_context({'a': 1, 'b': 'x', 'c': None}) == {'is_valid': True, 'errors': []}

        result = validate_context({'bad-name': 1, 'fn': len, 'obj': object()})
        assert result['is_valid'] is False
        assert len(result['errors']) == 3

    def test_validate_context_not_a_mapping(self):
        """Test that non-dict input is rejected"""
        assert validate_context(['a'])['is_valid'] is False
