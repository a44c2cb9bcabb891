"""Unit tests for variable resolution and template validation."""

from __future__ import annotations

import pytest

from yardmaster.orchestrator.errors import DuplicateSlugError, ValidationError
from yardmaster.orchestrator.execution.resolver import resolve_variables, validate_template, validate_value
from yardmaster.orchestrator.models.template import AppSpec, ValidationRule, VariableSpec, WorkspaceTemplate

# ---------------------------------------------------------------------------
# Defaults and overrides
# ---------------------------------------------------------------------------


def test_override_wins_over_default() -> None:
    specs = [VariableSpec(name="cpu_limit", type="number", default="1", validation=ValidationRule(min=1, max=8))]

    assert resolve_variables(specs, {"cpu_limit": "4"}) == {"cpu_limit": "4"}


def test_default_used_without_override() -> None:
    specs = [VariableSpec(name="cpu_limit", type="number", default="1")]

    assert resolve_variables(specs) == {"cpu_limit": "1"}


def test_missing_required_variable() -> None:
    specs = [VariableSpec(name="repo_url")]

    with pytest.raises(ValidationError) as exc_info:
        resolve_variables(specs, {})

    assert exc_info.value.variable == "repo_url"
    assert "required" in exc_info.value.message


def test_unknown_override_rejected() -> None:
    specs = [VariableSpec(name="cpu_limit", default="1")]

    with pytest.raises(ValidationError, match="not declared") as exc_info:
        resolve_variables(specs, {"memory": "2"})

    assert exc_info.value.variable == "memory"


def test_declaration_order_preserved() -> None:
    specs = [VariableSpec(name="b", default="2"), VariableSpec(name="a", default="1")]

    assert list(resolve_variables(specs)) == ["b", "a"]


# ---------------------------------------------------------------------------
# Type checks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("var_type", "value"),
    [
        ("number", "four"),
        ("bool", "yes"),
        ("list(string)", "not-json"),
        ("list(string)", "[1, 2]"),
        ("list(string)", '{"a": "b"}'),
    ],
)
def test_type_mismatch(var_type: str, value: str) -> None:
    spec = VariableSpec(name="v", type=var_type)

    with pytest.raises(ValidationError):
        validate_value(spec, value)


@pytest.mark.parametrize(
    ("var_type", "value"),
    [
        ("number", "2.5"),
        ("number", "-3"),
        ("bool", "true"),
        ("bool", "false"),
        ("list(string)", '["a", "b"]'),
        ("string", "anything at all"),
    ],
)
def test_type_accepted(var_type: str, value: str) -> None:
    validate_value(VariableSpec(name="v", type=var_type), value)


# ---------------------------------------------------------------------------
# Validation rules
# ---------------------------------------------------------------------------


def test_range_violation() -> None:
    specs = [VariableSpec(name="cpu_limit", type="number", default="1", validation=ValidationRule(min=1, max=8))]

    with pytest.raises(ValidationError, match="above the maximum"):
        resolve_variables(specs, {"cpu_limit": "32"})
    with pytest.raises(ValidationError, match="below the minimum"):
        resolve_variables(specs, {"cpu_limit": "0"})


def test_regex_must_match_whole_value() -> None:
    spec = VariableSpec(name="image", validation=ValidationRule(regex=r"[a-z]+:[0-9.]+"))

    validate_value(spec, "ubuntu:22.04")
    with pytest.raises(ValidationError):
        validate_value(spec, "ubuntu:22.04-extra")


def test_options() -> None:
    spec = VariableSpec(name="region", validation=ValidationRule(options=["eu-west", "us-east"]))

    validate_value(spec, "us-east")
    with pytest.raises(ValidationError, match="not one of"):
        validate_value(spec, "ap-south")


def test_custom_error_message() -> None:
    spec = VariableSpec(
        name="disk",
        type="number",
        validation=ValidationRule(min=10, error_message="Disk must be at least 10 GB."),
    )

    with pytest.raises(ValidationError) as exc_info:
        validate_value(spec, "5")

    assert exc_info.value.message == "Disk must be at least 10 GB."
    assert str(exc_info.value) == "Variable 'disk': Disk must be at least 10 GB."


# ---------------------------------------------------------------------------
# Updates: previous values, immutability, monotonic
# ---------------------------------------------------------------------------


def test_update_keeps_previous_value_over_default() -> None:
    specs = [VariableSpec(name="cpu_limit", type="number", default="1")]

    assert resolve_variables(specs, {}, previous={"cpu_limit": "4"}) == {"cpu_limit": "4"}


def test_immutable_variable_cannot_change() -> None:
    specs = [VariableSpec(name="region", default="eu-west", mutable=False)]

    assert resolve_variables(specs, {"region": "eu-west"}, previous={"region": "eu-west"}) == {"region": "eu-west"}
    with pytest.raises(ValidationError, match="immutable"):
        resolve_variables(specs, {"region": "us-east"}, previous={"region": "eu-west"})


def test_immutable_variable_free_on_first_build() -> None:
    specs = [VariableSpec(name="region", default="eu-west", mutable=False)]

    assert resolve_variables(specs, {"region": "us-east"}) == {"region": "us-east"}


def test_monotonic_increasing() -> None:
    specs = [
        VariableSpec(
            name="disk_gb",
            type="number",
            default="10",
            validation=ValidationRule(monotonic="increasing"),
        )
    ]

    assert resolve_variables(specs, {"disk_gb": "20"}, previous={"disk_gb": "10"}) == {"disk_gb": "20"}
    with pytest.raises(ValidationError, match="must not decrease"):
        resolve_variables(specs, {"disk_gb": "5"}, previous={"disk_gb": "10"})


def test_monotonic_decreasing() -> None:
    specs = [
        VariableSpec(
            name="ttl",
            type="number",
            default="60",
            validation=ValidationRule(monotonic="decreasing"),
        )
    ]

    with pytest.raises(ValidationError, match="must not increase"):
        resolve_variables(specs, {"ttl": "90"}, previous={"ttl": "60"})


def test_monotonic_ignored_without_previous() -> None:
    rule = ValidationRule(monotonic="increasing")
    specs = [VariableSpec(name="disk_gb", type="number", default="10", validation=rule)]

    assert resolve_variables(specs, {"disk_gb": "1"}) == {"disk_gb": "1"}


# ---------------------------------------------------------------------------
# Template validation
# ---------------------------------------------------------------------------


def test_validate_template_accepts_sample(template: WorkspaceTemplate) -> None:
    validate_template(template)


def test_validate_template_duplicate_slug(template: WorkspaceTemplate) -> None:
    broken = template.model_copy(update={"apps": [AppSpec(slug="code-server"), AppSpec(slug="code-server")]})

    with pytest.raises(DuplicateSlugError) as exc_info:
        validate_template(broken)

    assert exc_info.value.slug == "code-server"


def test_validate_template_duplicate_variable(template: WorkspaceTemplate) -> None:
    broken = template.model_copy(update={"variables": [VariableSpec(name="a"), VariableSpec(name="a")]})

    with pytest.raises(ValidationError, match="more than once"):
        validate_template(broken)


def test_validate_template_bad_default(template: WorkspaceTemplate) -> None:
    bad = VariableSpec(name="cpu_limit", type="number", default="64", validation=ValidationRule(max=16))

    with pytest.raises(ValidationError):
        validate_template(template.model_copy(update={"variables": [bad]}))


def test_validate_template_malformed_regex(template: WorkspaceTemplate) -> None:
    bad = VariableSpec(name="branch", default="main", validation=ValidationRule(regex="["))

    with pytest.raises(ValidationError, match="invalid regex") as exc_info:
        validate_template(template.model_copy(update={"variables": [bad]}))

    assert exc_info.value.variable == "branch"


def test_validate_template_min_above_max(template: WorkspaceTemplate) -> None:
    bad = VariableSpec(name="disk_gb", type="number", validation=ValidationRule(min=100, max=10))

    with pytest.raises(ValidationError, match="minimum 100 above maximum 10") as exc_info:
        validate_template(template.model_copy(update={"variables": [bad]}))

    assert exc_info.value.variable == "disk_gb"


def test_template_schema_rejects_bad_slug() -> None:
    from pydantic import ValidationError as SchemaError

    with pytest.raises(SchemaError):
        WorkspaceTemplate.model_validate(
            {"name": "t", "resource": {"type": "docker_container"}, "apps": [{"slug": "Code_Server"}]}
        )
