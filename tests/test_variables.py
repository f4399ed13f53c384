"""Test variable definitions, value resolution and validation."""

import pytest

from stack_engine.manifest.variables import (
    VariableDefinition,
    VariableType,
    has_placeholders,
    merge_variable_layers,
    resolve_placeholders,
    resolve_variable_values,
    validate_variable_values,
)


def define(**kwargs) -> VariableDefinition:
    return VariableDefinition.model_validate(kwargs)


class TestVariableType:
    """Test type name parsing."""

    def test_names_are_case_insensitive(self):
        assert VariableType.parse("password") == VariableType.PASSWORD
        assert VariableType.parse("SQLSERVERCONNECTIONSTRING") == VariableType.SQLSERVER_CONNECTION_STRING

    def test_missing_type_is_string(self):
        assert define().type == VariableType.STRING

    def test_unknown_type_fails(self):
        with pytest.raises(ValueError):
            VariableType.parse("Color")


class TestPlaceholders:
    """Test ${NAME} and ${NAME:-default} substitution."""

    def test_supplied_value_wins(self):
        assert resolve_placeholders("${HOST:-localhost}:${PORT}", {"HOST": "db", "PORT": "5432"}) == "db:5432"

    def test_inline_default_used_when_value_missing_or_empty(self):
        assert resolve_placeholders("${HOST:-localhost}", {}) == "localhost"
        assert resolve_placeholders("${HOST:-localhost}", {"HOST": ""}) == "localhost"

    def test_unresolved_becomes_empty_string(self):
        assert resolve_placeholders("redis://${REDIS_HOST}/0", {}) == "redis:///0"

    def test_resolution_is_idempotent(self):
        once = resolve_placeholders("${A}-${B:-b}", {"A": "a"})
        assert resolve_placeholders(once, {"A": "a"}) == once

    def test_has_placeholders(self):
        assert has_placeholders("${X}")
        assert not has_placeholders("plain")


class TestLayering:
    """Test shared + stack variable merging and value precedence."""

    @pytest.fixture
    def shared(self):
        return {
            "TIER": define(type="Select", label="Tier", default="small",
                           options=[{"value": "small"}, {"value": "large"}]),
            "REGION": define(default="eu"),
        }

    def test_stack_override_only_replaces_default(self, shared):
        merged = merge_variable_layers(shared, {"TIER": define(default="large", label="ignored")})

        assert merged["TIER"].default == "large"
        assert merged["TIER"].label == "Tier"
        assert merged["TIER"].type == VariableType.SELECT
        assert [o.value for o in merged["TIER"].options] == ["small", "large"]

    def test_shared_definitions_are_not_mutated(self, shared):
        merge_variable_layers(shared, {"TIER": define(default="large")})
        assert shared["TIER"].default == "small"

    def test_stack_only_variables_are_added(self, shared):
        merged = merge_variable_layers(shared, {"DEBUG": define(type="Boolean", default="false")})
        assert set(merged) == {"TIER", "REGION", "DEBUG"}

    def test_precedence_user_over_default_over_empty(self, shared):
        definitions = dict(shared, TOKEN=define())
        values = resolve_variable_values(definitions, {"REGION": "us", "EXTRA": 5})

        assert values == {"TIER": "small", "REGION": "us", "TOKEN": "", "EXTRA": "5"}

    def test_boolean_user_values_are_normalized(self):
        values = resolve_variable_values({"DEBUG": define(type="Boolean")}, {"DEBUG": True})
        assert values["DEBUG"] == "true"


class TestValueValidation:
    """Test the explicit validation step."""

    def test_required(self):
        errors = validate_variable_values({"API_KEY": define(required=True, label="API key")}, {"API_KEY": " "})
        assert errors == ["API key is required."]

    def test_number_bounds(self):
        definitions = {"WORKERS": define(type="Number", min=1, max=8)}

        assert validate_variable_values(definitions, {"WORKERS": "abc"}) == ["WORKERS must be a valid number."]
        assert validate_variable_values(definitions, {"WORKERS": "0"}) == ["WORKERS must be at least 1."]
        assert validate_variable_values(definitions, {"WORKERS": "9"}) == ["WORKERS must be at most 8."]
        assert validate_variable_values(definitions, {"WORKERS": "4"}) == []

    def test_port_range(self):
        errors = validate_variable_values({"PORT": define(type="Port")}, {"PORT": "70000"})
        assert errors == ["PORT must be a valid port (1-65535)."]

    def test_boolean(self):
        definitions = {"DEBUG": define(type="Boolean")}
        assert validate_variable_values(definitions, {"DEBUG": "1"}) == []
        assert validate_variable_values(definitions, {"DEBUG": "yes"}) == ["DEBUG must be true or false."]

    def test_select_membership(self):
        definitions = {"TIER": define(type="Select", options=[{"value": "small"}, {"value": "large"}])}
        assert validate_variable_values(definitions, {"TIER": "huge"}) == ["TIER must be one of: small, large."]

    def test_pattern_with_custom_error(self):
        definitions = {"SLUG": define(pattern="^[a-z]+$", patternError="Lowercase letters only")}
        assert validate_variable_values(definitions, {"SLUG": "Shop1"}) == ["Lowercase letters only"]

    def test_url_and_email(self):
        definitions = {"HOOK": define(type="Url"), "MAIL": define(type="Email")}
        errors = validate_variable_values(definitions, {"HOOK": "ftp://x", "MAIL": "nobody"})

        assert errors == ["HOOK must be a valid http(s) URL.", "MAIL must be a valid email address."]

    def test_empty_optional_values_pass(self):
        assert validate_variable_values({"PORT": define(type="Port", min=1000)}, {"PORT": ""}) == []
