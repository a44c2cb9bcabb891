"""Template resolver -- turns raw variable overrides into a resolved mapping.

Resolution order for each declared variable:

1. Per-request override (string), if present.
2. Template default.
3. Otherwise the variable is required -> ``ValidationError``.

The resolved value is then checked against the variable's type and its
validation rule.  On update, the previous build's values are consulted for
immutable variables and ``monotonic`` rules.

Everything here is pure: no I/O, no workspace state.
"""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

from yardmaster.orchestrator.errors import DuplicateSlugError, ValidationError
from yardmaster.orchestrator.models.enums import Monotonic, VariableType

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from yardmaster.orchestrator.models.template import VariableSpec, WorkspaceTemplate

_BOOL_VALUES = ("true", "false")


# ---------------------------------------------------------------------------
# Single-variable checks
# ---------------------------------------------------------------------------


def _parse_number(spec: VariableSpec, value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValidationError(spec.name, f"'{value}' is not a number") from None


def _check_type(spec: VariableSpec, value: str) -> None:
    if spec.type == VariableType.NUMBER:
        _parse_number(spec, value)
    elif spec.type == VariableType.BOOL:
        if value not in _BOOL_VALUES:
            raise ValidationError(spec.name, f"'{value}' is not a bool (expected 'true' or 'false')")
    elif spec.type == VariableType.LIST:
        try:
            items = json.loads(value)
        except json.JSONDecodeError:
            items = None
        if not isinstance(items, list) or not all(isinstance(i, str) for i in items):
            raise ValidationError(spec.name, "expected a JSON array of strings")


def _check_rule(spec: VariableSpec, value: str, previous: str | None) -> None:
    rule = spec.validation
    if rule is None:
        return

    def fail(default_message: str) -> ValidationError:
        return ValidationError(spec.name, rule.error_message or default_message)

    if rule.options is not None and value not in rule.options:
        raise fail(f"'{value}' is not one of {rule.options}")

    if rule.regex is not None and re.fullmatch(rule.regex, value) is None:
        raise fail(f"'{value}' does not match /{rule.regex}/")

    if rule.min is not None or rule.max is not None or rule.monotonic is not None:
        number = _parse_number(spec, value)
        if rule.min is not None and number < rule.min:
            raise fail(f"{number:g} is below the minimum {rule.min:g}")
        if rule.max is not None and number > rule.max:
            raise fail(f"{number:g} is above the maximum {rule.max:g}")
        if rule.monotonic is not None and previous is not None:
            before = _parse_number(spec, previous)
            if rule.monotonic == Monotonic.INCREASING and number < before:
                raise fail(f"must not decrease (was {before:g})")
            if rule.monotonic == Monotonic.DECREASING and number > before:
                raise fail(f"must not increase (was {before:g})")


def _check_rule_definition(spec: VariableSpec) -> None:
    """Reject rules that can never be evaluated or never be satisfied."""
    rule = spec.validation
    if rule is None:
        return
    if rule.regex is not None:
        try:
            re.compile(rule.regex)
        except re.error as exc:
            raise ValidationError(spec.name, f"has an invalid regex /{rule.regex}/: {exc}") from exc
    if rule.min is not None and rule.max is not None and rule.min > rule.max:
        raise ValidationError(spec.name, f"has minimum {rule.min:g} above maximum {rule.max:g}")


def validate_value(spec: VariableSpec, value: str, *, previous: str | None = None) -> None:
    """Raise ``ValidationError`` if *value* is not acceptable for *spec*."""
    _check_type(spec, value)
    _check_rule(spec, value, previous)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_variables(
    specs: Sequence[VariableSpec],
    overrides: Mapping[str, str] | None = None,
    *,
    previous: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Resolve every declared variable against *overrides*.

    Parameters
    ----------
    specs:
        Declared template variables.
    overrides:
        User-supplied values by variable name.  Names that are not declared
        are rejected.
    previous:
        Values of the workspace's previous build (update only).  Immutable
        variables must keep their value; on update, a variable without an
        override keeps its previous value rather than the default.

    Returns
    -------
    dict[str, str]
        Resolved value per variable name, in declaration order.
    """
    overrides = dict(overrides or {})
    declared = {spec.name for spec in specs}
    unknown = sorted(set(overrides) - declared)
    if unknown:
        raise ValidationError(unknown[0], "is not declared by the template")

    resolved: dict[str, str] = {}
    for spec in specs:
        prior = previous.get(spec.name) if previous is not None else None

        if spec.name in overrides:
            value = overrides[spec.name]
        elif prior is not None:
            value = prior
        elif spec.default is not None:
            value = spec.default
        else:
            raise ValidationError(spec.name, "is required and has no default")

        if prior is not None and not spec.mutable and value != prior:
            raise ValidationError(spec.name, "is immutable and cannot change after the first build")

        validate_value(spec, value, previous=prior)
        resolved[spec.name] = value
    return resolved


def validate_template(template: WorkspaceTemplate) -> None:
    """Check a template's internal consistency before it is stored or used.

    Raises ``ValidationError`` for duplicate variable names, malformed rules
    (bad regex, ``min`` above ``max``) or defaults that fail their own rule,
    and ``DuplicateSlugError`` for repeated app slugs.
    """
    seen_names: set[str] = set()
    for spec in template.variables:
        if spec.name in seen_names:
            raise ValidationError(spec.name, "is declared more than once")
        seen_names.add(spec.name)
        _check_rule_definition(spec)
        if spec.default is not None:
            validate_value(spec, spec.default)

    seen_slugs: set[str] = set()
    for app in template.apps:
        if app.slug in seen_slugs:
            raise DuplicateSlugError(app.slug)
        seen_slugs.add(app.slug)
