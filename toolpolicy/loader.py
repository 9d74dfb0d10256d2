"""Load policy documents (YAML or JSON) into resolver inputs."""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from jsonschema import validators
from jsonschema.exceptions import ValidationError
from packaging.version import InvalidVersion, Version

from .context import ContextShapeError, ToolContext, context_from_mapping
from .defaults import create_default_registry, visibility_predicate
from .inputs import AccommodationProfile, PolicyInput, PolicyInputError, parse_profile
from .mapping import AccommodationMapper
from .models import ToolDescriptor
from .registry import ToolRegistry
from .settings import SettingsSchemaError, check_settings_schema

__all__ = [
    "PolicyDocument",
    "PolicyDocumentError",
    "SUPPORTED_MAJOR_VERSION",
    "load_policy_document",
    "load_profile",
    "parse_policy_document",
]

LOGGER = logging.getLogger(__name__)

SUPPORTED_MAJOR_VERSION = 1

_SCHEMA_PATH = Path(__file__).resolve().parent / "schemas" / "policy_document.schema.json"

_POLICY_KEYS = ("institution", "session", "toolConfigs", "item", "profile")

_LEGACY_TOP_LEVEL_KEYS = {
    "tool_configs": "toolConfigs",
    "accommodation_profile": "profile",
}


class PolicyDocumentError(Exception):
    """Raised when a policy document cannot be read or fails validation."""


@dataclass(frozen=True)
class PolicyDocument:
    """In-memory representation of a policy document."""

    policy_input: PolicyInput
    context: ToolContext | None = None
    tools: tuple[ToolDescriptor, ...] = ()
    mappings: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    visibility: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    version: str | None = None
    document_id: str | None = None
    source_path: Path | None = None

    def build_registry(self, *, min_readable_chars: int | None = None) -> ToolRegistry:
        """Return the built-in catalog extended with this document's tools.

        ``min_readable_chars`` applies to built-in and custom ``readable-text``
        tools alike.
        """

        if min_readable_chars is None:
            return create_default_registry(overrides=self.tools)
        tools = [
            dataclasses.replace(
                tool,
                is_visible_in_context=visibility_predicate(
                    self.visibility[tool.tool_id], min_readable_chars=min_readable_chars
                ),
            )
            if self.visibility.get(tool.tool_id) == "readable-text"
            else tool
            for tool in self.tools
        ]
        return create_default_registry(overrides=tools, min_readable_chars=min_readable_chars)

    def build_mapper(self) -> AccommodationMapper:
        return AccommodationMapper(self.mappings)


@lru_cache(maxsize=1)
def _document_schema() -> Mapping[str, Any]:
    with _SCHEMA_PATH.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _read_structured(path: Path) -> Any:
    if not path.exists():
        raise PolicyDocumentError(f"Policy document not found: {path}")
    with path.open("r", encoding="utf-8") as handle:
        try:
            if path.suffix.lower() == ".json":
                return json.load(handle)
            return yaml.safe_load(handle)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise PolicyDocumentError(f"Failed to parse policy document {path}: {exc}") from exc


def load_policy_document(path: Path | str) -> PolicyDocument:
    source = Path(path).expanduser().resolve()
    data = _read_structured(source)
    return parse_policy_document(data, source_path=source)


def load_profile(path: Path | str) -> AccommodationProfile:
    """Load a standalone accommodation profile, or the ``profile`` of a document."""

    source = Path(path).expanduser().resolve()
    data = _read_structured(source)
    if not isinstance(data, Mapping):
        raise PolicyDocumentError(f"Profile {source} must contain a mapping")
    if "profile" in data and isinstance(data["profile"], Mapping):
        data = data["profile"]
    try:
        return parse_profile(data)
    except PolicyInputError as exc:
        raise PolicyDocumentError(f"Profile {source} is invalid: {exc}") from exc


def parse_policy_document(data: Any, *, source_path: Path | None = None) -> PolicyDocument:
    label = str(source_path) if source_path is not None else "<memory>"
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise PolicyDocumentError(f"Policy document {label} must be a mapping")

    data = _apply_legacy_shim(data, label)
    _validate_document(data, label)

    version = data.get("version")
    if version is not None:
        # YAML reads an unquoted ``1.0`` as a float.
        version = str(version)
        _validate_version(version, label)

    try:
        policy_input = PolicyInput.from_mapping({key: data[key] for key in _POLICY_KEYS if key in data})
    except PolicyInputError as exc:
        raise PolicyDocumentError(f"Policy document {label}: {exc}") from exc

    context = None
    if data.get("context") is not None:
        try:
            context = context_from_mapping(data["context"])
        except ContextShapeError as exc:
            raise PolicyDocumentError(f"Policy document {label} has an invalid context: {exc}") from exc

    tools = tuple(_build_tool(entry, label) for entry in data.get("tools") or ())
    seen: set[str] = set()
    for tool in tools:
        if tool.tool_id in seen:
            raise PolicyDocumentError(f"Duplicate tool id '{tool.tool_id}' found in {label}")
        seen.add(tool.tool_id)

    return PolicyDocument(
        policy_input=policy_input,
        context=context,
        tools=tools,
        mappings=MappingProxyType(dict(data.get("mappings") or {})),
        visibility=MappingProxyType(
            {entry["id"]: entry.get("visibleWhen", "always") for entry in data.get("tools") or ()}
        ),
        version=version,
        document_id=data.get("id"),
        source_path=source_path,
    )


def _validate_document(data: Mapping[str, Any], label: str) -> None:
    schema = _document_schema()
    validator_cls = validators.validator_for(schema)
    validator = validator_cls(schema)
    try:
        validator.validate(dict(data))
    except ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise PolicyDocumentError(
            f"Policy document {label} failed schema validation at {location}: {exc.message}"
        ) from exc


def _validate_version(version: str, label: str) -> None:
    try:
        parsed = Version(version)
    except InvalidVersion as exc:
        raise PolicyDocumentError(f"Policy document {label} has an invalid version: {exc}") from exc
    if parsed.major != SUPPORTED_MAJOR_VERSION:
        raise PolicyDocumentError(
            f"Policy document {label} version '{version}' is not supported "
            f"(expected {SUPPORTED_MAJOR_VERSION}.x)"
        )


def _apply_legacy_shim(data: Mapping[str, Any], label: str) -> Mapping[str, Any]:
    updated = dict(data)
    rewritten: list[str] = []
    for legacy_key, modern_key in _LEGACY_TOP_LEVEL_KEYS.items():
        if legacy_key in updated and modern_key not in updated:
            updated[modern_key] = updated.pop(legacy_key)
            rewritten.append(legacy_key)
    if rewritten:
        LOGGER.warning(
            "Policy document %s used legacy keys; converted to current names (%s).",
            label,
            ", ".join(sorted(rewritten)),
        )
    return updated


def _build_tool(entry: Mapping[str, Any], label: str) -> ToolDescriptor:
    tool_id = entry["id"]
    try:
        if entry.get("settingsSchema") is not None:
            check_settings_schema(tool_id, entry["settingsSchema"])
        predicate = visibility_predicate(entry.get("visibleWhen", "always"))
        return ToolDescriptor.from_spec(
            tool_id,
            name=entry.get("name"),
            levels=entry["levels"],
            accommodations=entry.get("accommodations"),
            description=entry.get("description", ""),
            icon=entry.get("icon", ""),
            is_visible_in_context=predicate,
            settings_schema=entry.get("settingsSchema"),
        )
    except (ValueError, ContextShapeError, SettingsSchemaError) as exc:
        raise PolicyDocumentError(f"Tool '{tool_id}' in {label} is invalid: {exc}") from exc
