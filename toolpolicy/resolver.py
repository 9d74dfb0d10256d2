"""Policy resolution: which tools a student may use, and why."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from .config import ResolverConfig
from .context import ToolContext
from .inputs import (
    AccommodationProfile,
    InstitutionalPolicy,
    ItemSettings,
    PolicyInput,
    SessionOverride,
    parse_item_settings,
)
from .mapping import AccommodationMapper
from .models import (
    ConfigSource,
    DecisionAction,
    PolicyRule,
    ResolvedToolConfig,
    RuleOutcome,
    SourceType,
    ToolDescriptor,
    _thaw,
)
from .provenance import NullProvenanceBuilder, ProvenanceBuilder, ProvenanceTrail, to_payload
from .settings import validate_settings

__all__ = [
    "CatalogUnavailableError",
    "PolicyResolver",
    "Resolution",
    "ToolCatalog",
]

LOGGER = logging.getLogger(__name__)


class CatalogUnavailableError(RuntimeError):
    """Raised when the resolver is used without a usable tool catalog."""


@runtime_checkable
class ToolCatalog(Protocol):
    def get(self, tool_id: str) -> ToolDescriptor | None: ...

    def tools_for_accommodation(self, accommodation_id: str) -> frozenset[str]: ...


_EMPTY: Mapping[str, Any] = MappingProxyType({})

_ENABLE_SOURCES = {
    PolicyRule.ITEM_REQUIREMENT: ConfigSource.ITEM,
    PolicyRule.INSTITUTION_REQUIREMENT: ConfigSource.INSTITUTION,
    PolicyRule.ACCOMMODATION_GRANT: ConfigSource.STUDENT,
}


@dataclass(frozen=True, slots=True)
class Resolution:
    """Outcome of one resolution run.

    ``tools`` holds one entry per enabled tool; ``outcomes`` holds the terminal
    rule for every accommodation id that was considered.
    """

    tools: tuple[ResolvedToolConfig, ...]
    outcomes: Mapping[str, RuleOutcome]
    provenance: ProvenanceTrail
    warnings: tuple[str, ...] = ()
    auto_activate: tuple[str, ...] = ()
    _by_tool: Mapping[str, ResolvedToolConfig] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_tool", MappingProxyType({tool.tool_id: tool for tool in self.tools}))

    def get(self, tool_id: str) -> ResolvedToolConfig | None:
        return self._by_tool.get(tool_id)

    def is_enabled(self, tool_id: str) -> bool:
        config = self._by_tool.get(tool_id)
        return config is not None and config.enabled

    def is_required(self, tool_id: str) -> bool:
        config = self._by_tool.get(tool_id)
        return config is not None and (config.required or config.always_available)

    def auto_activate_tools(self) -> tuple[str, ...]:
        """Tool ids from the profile's ``activateAtInit`` list, in profile order.

        Only tools that ended up enabled are included; an id whose tool was
        blocked or never granted is dropped rather than activated.
        """

        return self.auto_activate

    def enabled_tools(self) -> tuple[ResolvedToolConfig, ...]:
        return tuple(tool for tool in self.tools if tool.enabled)

    def required_tools(self) -> tuple[ResolvedToolConfig, ...]:
        return tuple(tool for tool in self.tools if tool.required or tool.always_available)

    def allowed_tool_ids(self) -> tuple[str, ...]:
        return tuple(tool.tool_id for tool in self.tools if tool.enabled)

    def settings_for(self, tool_id: str) -> Mapping[str, Any] | None:
        config = self._by_tool.get(tool_id)
        return config.settings if config is not None else None

    def outcome_for(self, accommodation_id: str) -> RuleOutcome | None:
        return self.outcomes.get(accommodation_id)

    def blocked_accommodations(self) -> tuple[str, ...]:
        return tuple(
            accommodation_id
            for accommodation_id, outcome in self.outcomes.items()
            if outcome.action is DecisionAction.BLOCK
        )

    def to_payload(self, *, include_provenance: bool = True) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tools": [tool.to_payload() for tool in self.tools],
            "outcomes": {
                accommodation_id: {
                    "toolId": outcome.tool_id,
                    "rule": outcome.rule.value,
                    "precedence": outcome.precedence,
                    "action": outcome.action.value,
                    "source": outcome.source_type.value,
                    "reason": outcome.reason,
                }
                for accommodation_id, outcome in self.outcomes.items()
            },
            "autoActivate": list(self.auto_activate),
            "warnings": list(self.warnings),
        }
        if include_provenance:
            payload["provenance"] = to_payload(self.provenance)
        return payload


@dataclass(frozen=True, slots=True)
class _Sources:
    institution: InstitutionalPolicy | None
    session: SessionOverride | None
    tool_configs: Mapping[str, Mapping[str, Any]]
    item: ItemSettings | None
    profile: AccommodationProfile | None

    def accommodation_ids(self) -> tuple[str, ...]:
        collected: dict[str, None] = {}
        if self.profile is not None:
            collected.update(dict.fromkeys(self.profile.supports))
        if self.institution is not None:
            collected.update(dict.fromkeys(self.institution.blocked_tools))
            collected.update(dict.fromkeys(self.institution.required_tools))
        if self.item is not None:
            collected.update(dict.fromkeys(self.item.required_tools))
            collected.update(dict.fromkeys(self.item.restricted_tools))
        return tuple(collected)


class PolicyResolver:
    """Apply the fixed precedence chain to every accommodation id in play.

    Resolution is synchronous and never mutates the catalog or the mapper.
    """

    def __init__(
        self,
        catalog: ToolCatalog | None,
        mapper: AccommodationMapper | None = None,
        config: ResolverConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if catalog is None:
            raise CatalogUnavailableError("a tool catalog is required for policy resolution")
        if not isinstance(catalog, ToolCatalog):
            raise CatalogUnavailableError(
                f"{type(catalog).__name__} does not provide get() and tools_for_accommodation()"
            )
        self._catalog = catalog
        self._mapper = mapper if mapper is not None else AccommodationMapper()
        self._config = config or ResolverConfig()
        self._clock = clock

    @property
    def catalog(self) -> ToolCatalog:
        return self._catalog

    @property
    def mapper(self) -> AccommodationMapper:
        return self._mapper

    @property
    def config(self) -> ResolverConfig:
        return self._config

    def tool_id_for(self, accommodation_id: str) -> str:
        """Map an accommodation id to a tool id, falling back to the id itself."""

        mapped = self._mapper.tool_for(accommodation_id)
        if mapped:
            return mapped
        candidates = self._catalog.tools_for_accommodation(accommodation_id)
        if candidates:
            return sorted(candidates)[0]
        return accommodation_id

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------
    def resolve(
        self,
        policy_input: PolicyInput | Mapping[str, Any] | None = None,
        context: ToolContext | None = None,
        *,
        context_id: str | None = None,
    ) -> Resolution:
        if not isinstance(policy_input, PolicyInput):
            policy_input = PolicyInput.from_mapping(policy_input)
        sources = _Sources(
            institution=policy_input.institution,
            session=policy_input.session,
            tool_configs=policy_input.tool_configs,
            item=policy_input.item or _item_from_context(context),
            profile=policy_input.profile,
        )

        builder_cls = ProvenanceBuilder if self._config.track_provenance else NullProvenanceBuilder
        builder = builder_cls(context_id or self._config.context_id, clock=self._clock)
        _add_sources(builder, sources)

        outcomes: dict[str, RuleOutcome] = {}
        winners: dict[str, RuleOutcome] = {}
        for accommodation_id in sources.accommodation_ids():
            tool_id = self.tool_id_for(accommodation_id)
            outcome = _evaluate(accommodation_id, tool_id, sources)
            outcomes[accommodation_id] = outcome
            builder.record_outcome(outcome)
            if not outcome.is_terminal:
                continue
            current = winners.get(tool_id)
            if current is None or _strength(outcome) < _strength(current):
                winners[tool_id] = outcome

        tools: list[ResolvedToolConfig] = []
        warnings: list[str] = []
        for tool_id, outcome in winners.items():
            if outcome.action is not DecisionAction.ENABLE:
                continue
            settings = _merge_settings(sources, outcome.accommodation_id, tool_id)
            descriptor = self._catalog.get(tool_id)
            if descriptor is not None and descriptor.settings_schema is not None:
                warnings.extend(validate_settings(tool_id, descriptor.settings_schema, settings))
            tools.append(
                ResolvedToolConfig(
                    tool_id=tool_id,
                    enabled=True,
                    source=_ENABLE_SOURCES[outcome.rule],
                    required=outcome.rule is not PolicyRule.ACCOMMODATION_GRANT,
                    always_available=outcome.rule is PolicyRule.ACCOMMODATION_GRANT,
                    settings=settings,
                    accommodation_id=outcome.accommodation_id,
                )
            )

        enabled_ids = {tool.tool_id for tool in tools}
        auto_activate: dict[str, None] = {}
        if sources.profile is not None:
            for accommodation_id in sources.profile.activate_at_init:
                tool_id = self.tool_id_for(accommodation_id)
                if tool_id in enabled_ids:
                    auto_activate[tool_id] = None

        LOGGER.debug(
            "resolved %d accommodation ids into %d enabled tools (%d warnings)",
            len(outcomes),
            len(tools),
            len(warnings),
        )
        return Resolution(
            tools=tuple(tools),
            outcomes=MappingProxyType(outcomes),
            provenance=builder.build(),
            warnings=tuple(warnings),
            auto_activate=tuple(auto_activate),
        )

    def resolve_with_override(
        self,
        policy_input: PolicyInput | Mapping[str, Any] | None,
        profile: AccommodationProfile | Mapping[str, Any] | None,
        context: ToolContext | None = None,
        *,
        context_id: str | None = None,
    ) -> Resolution:
        """Resolve with ``profile`` replacing the input's profile wholesale."""

        if not isinstance(policy_input, PolicyInput):
            policy_input = PolicyInput.from_mapping(policy_input)
        return self.resolve(policy_input.with_profile(profile), context, context_id=context_id)

    def visible_tools(
        self,
        policy_input: PolicyInput | Mapping[str, Any] | None,
        context: ToolContext,
    ) -> list[ToolDescriptor]:
        """Run both passes: policy resolution, then context relevance."""

        filter_visible = getattr(self._catalog, "filter_visible_in_context", None)
        if filter_visible is None:
            raise CatalogUnavailableError(
                f"{type(self._catalog).__name__} cannot filter tools by context"
            )
        resolution = self.resolve(policy_input, context)
        return filter_visible(resolution.allowed_tool_ids(), context)


def _item_from_context(context: ToolContext | None) -> ItemSettings | None:
    item_ref = getattr(context, "item_ref", None)
    if not isinstance(item_ref, Mapping):
        return None
    settings = item_ref.get("settings")
    if not isinstance(settings, Mapping):
        return None
    return parse_item_settings(settings)


def _source_config(model: Any) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"id", "name"})


def _add_sources(builder: ProvenanceBuilder, sources: _Sources) -> None:
    if sources.institution is not None:
        builder.add_source(
            SourceType.INSTITUTION,
            sources.institution.id or "institution",
            name=sources.institution.name,
            config=_source_config(sources.institution),
        )
    if sources.session is not None:
        builder.add_source(
            SourceType.SESSION,
            sources.session.id or "session",
            name=sources.session.name,
            config=_source_config(sources.session),
        )
    if sources.tool_configs:
        builder.add_source(SourceType.ASSESSMENT, "assessment", config=_thaw(sources.tool_configs))
    if sources.item is not None:
        builder.add_source(
            SourceType.ITEM,
            sources.item.id or "item",
            name=sources.item.name,
            config=_source_config(sources.item),
        )
    if sources.profile is not None:
        builder.add_source(
            SourceType.STUDENT,
            sources.profile.id or "student",
            name=sources.profile.name,
            config=_source_config(sources.profile),
        )


def _evaluate(accommodation_id: str, tool_id: str, sources: _Sources) -> RuleOutcome:
    """Walk the precedence chain; the first matching rule is terminal."""

    matches: list[tuple[PolicyRule, DecisionAction, SourceType, str, Any]] = []
    institution, session, item, profile = (
        sources.institution,
        sources.session,
        sources.item,
        sources.profile,
    )

    if institution is not None and accommodation_id in institution.blocked_tools:
        matches.append(
            (
                PolicyRule.INSTITUTION_BLOCK,
                DecisionAction.BLOCK,
                SourceType.INSTITUTION,
                "Blocked by institutional policy",
                True,
            )
        )
    if session is not None and session.tool_overrides.get(accommodation_id) is False:
        matches.append(
            (
                PolicyRule.SESSION_OVERRIDE,
                DecisionAction.BLOCK,
                SourceType.SESSION,
                "Disabled by session override",
                False,
            )
        )
    if item is not None and accommodation_id in item.restricted_tools:
        matches.append(
            (
                PolicyRule.ITEM_RESTRICTION,
                DecisionAction.BLOCK,
                SourceType.ITEM,
                "Restricted for this item",
                True,
            )
        )
    if item is not None and accommodation_id in item.required_tools:
        matches.append(
            (
                PolicyRule.ITEM_REQUIREMENT,
                DecisionAction.ENABLE,
                SourceType.ITEM,
                "Required by this item",
                True,
            )
        )
    if institution is not None and accommodation_id in institution.required_tools:
        matches.append(
            (
                PolicyRule.INSTITUTION_REQUIREMENT,
                DecisionAction.ENABLE,
                SourceType.INSTITUTION,
                "Required by institutional policy",
                True,
            )
        )
    if profile is not None and accommodation_id in profile.supports:
        if accommodation_id in profile.prohibited_supports:
            matches.append(
                (
                    PolicyRule.ACCOMMODATION_PROHIBITED,
                    DecisionAction.BLOCK,
                    SourceType.STUDENT,
                    "Listed as prohibited in the student's accommodation profile",
                    True,
                )
            )
        else:
            matches.append(
                (
                    PolicyRule.ACCOMMODATION_GRANT,
                    DecisionAction.ENABLE,
                    SourceType.STUDENT,
                    "Granted by the student's accommodation profile",
                    True,
                )
            )

    if not matches:
        return RuleOutcome(
            accommodation_id=accommodation_id,
            tool_id=tool_id,
            rule=PolicyRule.NOT_CONFIGURED,
            action=DecisionAction.SKIP,
            source_type=SourceType.SYSTEM,
            reason="Not enabled by any configuration source",
        )

    rule, action, source_type, reason, value = matches[0]
    return RuleOutcome(
        accommodation_id=accommodation_id,
        tool_id=tool_id,
        rule=rule,
        action=action,
        source_type=source_type,
        reason=reason,
        value=value,
        shadowed=tuple(match[0] for match in matches[1:]),
    )


def _strength(outcome: RuleOutcome) -> tuple[int, int]:
    # Lower sorts stronger; a block beats an enable at equal rank.
    return (outcome.precedence, 0 if outcome.action is DecisionAction.BLOCK else 1)


def _lookup(
    table: Mapping[str, Mapping[str, Any]],
    accommodation_id: str,
    tool_id: str,
) -> Mapping[str, Any]:
    found = table.get(accommodation_id)
    if found is None:
        found = table.get(tool_id)
    return found if isinstance(found, Mapping) else _EMPTY


def _merge_settings(sources: _Sources, accommodation_id: str, tool_id: str) -> dict[str, Any]:
    merged: dict[str, Any] = dict(_lookup(sources.tool_configs, accommodation_id, tool_id))
    if sources.item is not None:
        merged.update(_lookup(sources.item.tool_parameters, accommodation_id, tool_id))
    return merged
