"""Core data models shared by the registry, resolver and provenance trail.

Records exposed here are frozen and favour ``frozenset`` / ``MappingProxyType``
containers so that a resolution can be shared between callers without anyone
mutating it after construction.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

from .context import ContextLevel, ToolContext

__all__ = [
    "ConfigSource",
    "DecisionAction",
    "ModuleLoader",
    "PolicyRule",
    "ResolvedToolConfig",
    "RuleOutcome",
    "SourceType",
    "ToolDescriptor",
    "always_visible",
]

ModuleLoader = Callable[[], Any]


def always_visible(context: ToolContext) -> bool:  # noqa: ARG001
    return True


def _freeze_value(value: Any) -> Any:
    """Recursively convert mappings/sequences into immutable counterparts."""

    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze_value(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze_value(item) for item in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze_value(item) for item in value)
    return value


def _freeze_mapping(value: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if value is None:
        return MappingProxyType({})
    return _freeze_value(value)


@dataclass(frozen=True, slots=True)
class ToolDescriptor:
    """Catalog entry for a tool that may be offered to a student."""

    tool_id: str
    name: str
    supported_levels: frozenset[ContextLevel]
    accommodation_ids: tuple[str, ...] = ()
    description: str = ""
    icon: str = ""
    is_visible_in_context: Callable[[ToolContext], bool] = always_visible
    settings_schema: Mapping[str, Any] | None = None
    module_loader: ModuleLoader | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.tool_id, str) or not self.tool_id:
            raise ValueError("tool_id must be a non-empty string")
        levels = frozenset(ContextLevel.from_str(level) for level in self.supported_levels)
        object.__setattr__(self, "supported_levels", levels)
        object.__setattr__(self, "accommodation_ids", tuple(dict.fromkeys(self.accommodation_ids)))
        if self.settings_schema is not None:
            object.__setattr__(self, "settings_schema", MappingProxyType(dict(self.settings_schema)))

    @classmethod
    def from_spec(
        cls,
        tool_id: str,
        *,
        name: str | None = None,
        levels: Iterable[str | ContextLevel] = (),
        accommodations: Sequence[str] | None = None,
        **extra: Any,
    ) -> ToolDescriptor:
        return cls(
            tool_id=tool_id,
            name=name or tool_id,
            supported_levels=frozenset(levels),
            accommodation_ids=tuple(accommodations or ()),
            **extra,
        )

    def supports(self, level: ContextLevel | str) -> bool:
        return ContextLevel.from_str(level) in self.supported_levels

    def metadata(self) -> dict[str, Any]:
        """Return a JSON-friendly summary for configuration UIs."""

        return {
            "toolId": self.tool_id,
            "name": self.name,
            "description": self.description,
            "accommodationIds": list(self.accommodation_ids),
            "supportedLevels": sorted(level.value for level in self.supported_levels),
            "hasSettingsSchema": self.settings_schema is not None,
        }


class ConfigSource(str, Enum):
    """Precedence level that produced an enabled tool."""

    INSTITUTION = "institution"
    ITEM = "item"
    STUDENT = "student"


class SourceType(str, Enum):
    """Kind of configuration source referenced by a decision record."""

    INSTITUTION = "institution"
    SESSION = "session"
    ASSESSMENT = "assessment"
    ITEM = "item"
    STUDENT = "student"
    SYSTEM = "system"


class DecisionAction(str, Enum):
    ENABLE = "enable"
    BLOCK = "block"
    SKIP = "skip"


class PolicyRule(str, Enum):
    """Named rules of the precedence chain; ``precedence`` is the rank (1 = veto)."""

    INSTITUTION_BLOCK = "institution-block"
    SESSION_OVERRIDE = "session-override"
    ITEM_RESTRICTION = "item-restriction"
    ITEM_REQUIREMENT = "item-requirement"
    INSTITUTION_REQUIREMENT = "institution-requirement"
    ACCOMMODATION_GRANT = "accommodation-grant"
    ACCOMMODATION_PROHIBITED = "accommodation-prohibited"
    NOT_CONFIGURED = "not-configured"

    @property
    def precedence(self) -> int:
        return _RULE_PRECEDENCE[self]

    @property
    def label(self) -> str:
        return _RULE_LABELS[self]


_RULE_PRECEDENCE = {
    PolicyRule.INSTITUTION_BLOCK: 1,
    PolicyRule.SESSION_OVERRIDE: 2,
    PolicyRule.ITEM_RESTRICTION: 3,
    PolicyRule.ITEM_REQUIREMENT: 4,
    PolicyRule.INSTITUTION_REQUIREMENT: 5,
    PolicyRule.ACCOMMODATION_GRANT: 6,
    PolicyRule.ACCOMMODATION_PROHIBITED: 6,
    PolicyRule.NOT_CONFIGURED: 6,
}

_RULE_LABELS = {
    PolicyRule.INSTITUTION_BLOCK: "Institutional Block",
    PolicyRule.SESSION_OVERRIDE: "Session Override",
    PolicyRule.ITEM_RESTRICTION: "Item Restriction",
    PolicyRule.ITEM_REQUIREMENT: "Item Requirement",
    PolicyRule.INSTITUTION_REQUIREMENT: "Institutional Requirement",
    PolicyRule.ACCOMMODATION_GRANT: "Student Accommodation",
    PolicyRule.ACCOMMODATION_PROHIBITED: "Prohibited Accommodation",
    PolicyRule.NOT_CONFIGURED: "Not Configured",
}


@dataclass(frozen=True, slots=True)
class RuleOutcome:
    """Terminal outcome of the precedence chain for one accommodation id.

    ``shadowed`` lists lower-ranked rules that also matched but never fired.
    """

    accommodation_id: str
    tool_id: str
    rule: PolicyRule
    action: DecisionAction
    source_type: SourceType
    reason: str
    value: Any = None
    shadowed: tuple[PolicyRule, ...] = ()

    @property
    def precedence(self) -> int:
        return self.rule.precedence

    @property
    def is_terminal(self) -> bool:
        return self.action is not DecisionAction.SKIP


@dataclass(frozen=True, slots=True)
class ResolvedToolConfig:
    """Final, immutable availability decision for a single tool."""

    tool_id: str
    enabled: bool
    source: ConfigSource
    required: bool = False
    always_available: bool = False
    settings: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    accommodation_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "settings", _freeze_mapping(self.settings))

    @property
    def id(self) -> str:
        return self.tool_id

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.tool_id,
            "enabled": self.enabled,
            "required": self.required,
            "alwaysAvailable": self.always_available,
            "settings": _thaw(self.settings),
            "source": self.source.value,
            "accommodationId": self.accommodation_id,
        }


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_thaw(item) for item in value)
    return value
