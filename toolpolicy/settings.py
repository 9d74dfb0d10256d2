"""Schema-on-read validation of per-tool settings."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from jsonschema import validators
from jsonschema.exceptions import SchemaError

from .models import _thaw

__all__ = ["SettingsSchemaError", "check_settings_schema", "validate_settings"]

LOGGER = logging.getLogger(__name__)


class SettingsSchemaError(ValueError):
    """Raised when a tool declares a settings schema that is not valid JSON Schema."""


def check_settings_schema(tool_id: str, schema: Mapping[str, Any]) -> None:
    plain = _thaw(schema)
    try:
        validators.validator_for(plain).check_schema(plain)
    except SchemaError as exc:
        raise SettingsSchemaError(
            f"settings schema for tool '{tool_id}' is invalid: {exc.message}"
        ) from exc


def validate_settings(
    tool_id: str,
    schema: Mapping[str, Any] | None,
    settings: Mapping[str, Any],
) -> list[str]:
    """Return human-readable violations of ``settings`` against ``schema``.

    Settings are never corrected here; callers decide what to do with the
    returned issues. An absent schema accepts anything.
    """

    if schema is None or not settings:
        return []
    plain_schema = _thaw(schema)
    validator_cls = validators.validator_for(plain_schema)
    validator = validator_cls(plain_schema)
    issues: list[str] = []
    errors = sorted(
        validator.iter_errors(_thaw(settings)),
        key=lambda err: [str(part) for part in err.path],
    )
    for error in errors:
        location = "/".join(str(part) for part in error.path) or "<root>"
        issues.append(f"tool '{tool_id}' settings {location}: {error.message}")
    if issues:
        LOGGER.warning("settings for tool '%s' do not match its schema: %s", tool_id, "; ".join(issues))
    return issues
