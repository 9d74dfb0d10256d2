"""Boundary models for the configuration sources fed into policy resolution.

Sources accept both ``snake_case`` field names and the camelCase keys used by
assessment payloads. Every source is optional; an absent source has no
opinion about any tool.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

__all__ = [
    "AccommodationProfile",
    "InstitutionalPolicy",
    "ItemSettings",
    "PolicyInput",
    "PolicyInputError",
    "SessionOverride",
]


class PolicyInputError(ValueError):
    """Raised when a configuration source is malformed."""

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts)


class _Source(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    id: str | None = None
    name: str | None = None


class InstitutionalPolicy(_Source):
    """District or organisation level policy."""

    blocked_tools: tuple[str, ...] = Field(default=(), alias="blockedTools")
    required_tools: tuple[str, ...] = Field(default=(), alias="requiredTools")


class SessionOverride(_Source):
    """Proctor or test-administrator overrides for one session."""

    tool_overrides: dict[str, bool] = Field(default_factory=dict, alias="toolOverrides")


class ItemSettings(_Source):
    required_tools: tuple[str, ...] = Field(default=(), alias="requiredTools")
    restricted_tools: tuple[str, ...] = Field(default=(), alias="restrictedTools")
    tool_parameters: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="toolParameters")


class AccommodationProfile(_Source):
    """Student accommodation profile (personal needs profile)."""

    supports: tuple[str, ...] = ()
    prohibited_supports: tuple[str, ...] = Field(default=(), alias="prohibitedSupports")
    activate_at_init: tuple[str, ...] = Field(default=(), alias="activateAtInit")


class PolicyInput(BaseModel):
    """All configuration sources for a single resolution."""

    model_config = ConfigDict(extra="forbid", frozen=True, populate_by_name=True)

    institution: InstitutionalPolicy | None = None
    session: SessionOverride | None = None
    tool_configs: dict[str, dict[str, Any]] = Field(default_factory=dict, alias="toolConfigs")
    item: ItemSettings | None = None
    profile: AccommodationProfile | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> PolicyInput:
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise PolicyInputError(f"policy input must be a mapping, got {type(data).__name__}")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise PolicyInputError(
                f"invalid policy input: {_format_errors(exc)}",
                errors=exc.errors(include_url=False),
            ) from exc

    def with_profile(self, profile: AccommodationProfile | Mapping[str, Any] | None) -> PolicyInput:
        """Return a copy whose profile is replaced wholesale by ``profile``."""

        if profile is not None and not isinstance(profile, AccommodationProfile):
            profile = parse_profile(profile)
        return self.model_copy(update={"profile": profile})

    def with_item(self, item: ItemSettings | None) -> PolicyInput:
        return self.model_copy(update={"item": item})

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def parse_profile(data: Mapping[str, Any]) -> AccommodationProfile:
    try:
        return AccommodationProfile.model_validate(dict(data))
    except ValidationError as exc:
        raise PolicyInputError(
            f"invalid accommodation profile: {_format_errors(exc)}",
            errors=exc.errors(include_url=False),
        ) from exc


def parse_item_settings(data: Mapping[str, Any]) -> ItemSettings:
    try:
        return ItemSettings.model_validate(dict(data))
    except ValidationError as exc:
        raise PolicyInputError(
            f"invalid item settings: {_format_errors(exc)}",
            errors=exc.errors(include_url=False),
        ) from exc
