"""Provenance trail recording why each accommodation id resolved as it did."""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any

from .models import DecisionAction, PolicyRule, RuleOutcome, SourceType, _freeze_value, _thaw

__all__ = [
    "DecisionRecord",
    "FeatureState",
    "FeatureTrail",
    "NullProvenanceBuilder",
    "ProvenanceBuilder",
    "ProvenanceSummary",
    "ProvenanceTrail",
    "SourceRecord",
    "format_json",
    "format_markdown",
    "to_payload",
]

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FeatureState(str, Enum):
    ENABLED = "enabled"
    BLOCKED = "blocked"
    NOT_CONFIGURED = "not-configured"


@dataclass(frozen=True, slots=True)
class SourceRecord:
    """Configuration source consulted during a resolution."""

    source_type: SourceType
    source_id: str
    name: str
    config: Any = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "config", _freeze_value(self.config))


@dataclass(frozen=True, slots=True)
class DecisionRecord:
    """One step of the decision log."""

    step: int
    precedence: int
    rule: PolicyRule
    accommodation_id: str
    tool_id: str
    action: DecisionAction
    source_type: SourceType
    reason: str
    source_id: str | None = None
    source_name: str | None = None
    value: Any = None
    shadowed: tuple[PolicyRule, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "value", _freeze_value(self.value))
        object.__setattr__(self, "shadowed", tuple(self.shadowed))


@dataclass(frozen=True, slots=True)
class FeatureTrail:
    """All decisions recorded for one accommodation id and the one that won."""

    accommodation_id: str
    final_state: FeatureState
    decisions: tuple[DecisionRecord, ...]
    winning: DecisionRecord | None = None
    explanation: str = ""


@dataclass(frozen=True, slots=True)
class ProvenanceSummary:
    total_features: int = 0
    enabled: int = 0
    blocked: int = 0
    not_configured: int = 0
    by_action: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    by_source: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    by_rule: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True, slots=True)
class ProvenanceTrail:
    """Immutable record of one resolution run."""

    context_id: str
    resolved_at: datetime
    sources: Mapping[SourceType, SourceRecord]
    decisions: tuple[DecisionRecord, ...]
    features: Mapping[str, FeatureTrail]
    summary: ProvenanceSummary
    tracked: bool = True

    def feature(self, accommodation_id: str) -> FeatureTrail | None:
        return self.features.get(accommodation_id)

    def explain(self, accommodation_id: str) -> str | None:
        trail = self.features.get(accommodation_id)
        if trail is None:
            return None
        return trail.explanation

    def decisions_for_tool(self, tool_id: str) -> tuple[DecisionRecord, ...]:
        return tuple(decision for decision in self.decisions if decision.tool_id == tool_id)


class ProvenanceBuilder:
    """Accumulate sources and decisions, then freeze them into a trail.

    Step numbers are assigned in insertion order; wall-clock time is only read
    once, from ``clock``, when the trail is built.
    """

    tracking = True

    def __init__(self, context_id: str = "default", *, clock: Clock | None = None) -> None:
        self._context_id = context_id
        self._clock = clock or _utc_now
        self._sources: dict[SourceType, SourceRecord] = {}
        self._decisions: list[DecisionRecord] = []

    @property
    def context_id(self) -> str:
        return self._context_id

    def add_source(
        self,
        source_type: SourceType | str,
        source_id: str,
        *,
        name: str | None = None,
        config: Any = None,
    ) -> SourceRecord | None:
        resolved = SourceType(source_type)
        record = SourceRecord(
            source_type=resolved,
            source_id=source_id,
            name=name or source_id,
            config=config,
        )
        self._sources[resolved] = record
        return record

    def add_decision(
        self,
        *,
        accommodation_id: str,
        tool_id: str,
        rule: PolicyRule,
        action: DecisionAction,
        source_type: SourceType,
        reason: str,
        value: Any = None,
        shadowed: Iterable[PolicyRule] = (),
    ) -> DecisionRecord | None:
        source = self._sources.get(source_type)
        record = DecisionRecord(
            step=len(self._decisions) + 1,
            precedence=rule.precedence,
            rule=rule,
            accommodation_id=accommodation_id,
            tool_id=tool_id,
            action=action,
            source_type=source_type,
            reason=reason,
            source_id=source.source_id if source else None,
            source_name=source.name if source else None,
            value=value,
            shadowed=tuple(shadowed),
        )
        self._decisions.append(record)
        return record

    def record_outcome(self, outcome: RuleOutcome) -> DecisionRecord | None:
        return self.add_decision(
            accommodation_id=outcome.accommodation_id,
            tool_id=outcome.tool_id,
            rule=outcome.rule,
            action=outcome.action,
            source_type=outcome.source_type,
            reason=outcome.reason,
            value=outcome.value,
            shadowed=outcome.shadowed,
        )

    def build(self) -> ProvenanceTrail:
        grouped: dict[str, list[DecisionRecord]] = {}
        for decision in self._decisions:
            grouped.setdefault(decision.accommodation_id, []).append(decision)

        features: dict[str, FeatureTrail] = {}
        for accommodation_id, decisions in grouped.items():
            winning = _winning_decision(decisions)
            state = _state_for(winning)
            features[accommodation_id] = FeatureTrail(
                accommodation_id=accommodation_id,
                final_state=state,
                decisions=tuple(decisions),
                winning=winning,
                explanation=_explain(accommodation_id, state, winning, decisions),
            )

        return ProvenanceTrail(
            context_id=self._context_id,
            resolved_at=self._clock(),
            sources=MappingProxyType(dict(self._sources)),
            decisions=tuple(self._decisions),
            features=MappingProxyType(features),
            summary=_summarise(self._decisions, features.values()),
            tracked=True,
        )


class NullProvenanceBuilder(ProvenanceBuilder):
    """Builder used when tracking is disabled; records nothing."""

    tracking = False

    def add_source(self, source_type, source_id, *, name=None, config=None):  # type: ignore[override]
        return None

    def add_decision(self, **_: Any) -> None:  # type: ignore[override]
        return None

    def record_outcome(self, outcome: RuleOutcome) -> None:  # noqa: ARG002
        return None

    def build(self) -> ProvenanceTrail:
        return ProvenanceTrail(
            context_id=self._context_id,
            resolved_at=self._clock(),
            sources=MappingProxyType({}),
            decisions=(),
            features=MappingProxyType({}),
            summary=ProvenanceSummary(),
            tracked=False,
        )


def _winning_decision(decisions: Iterable[DecisionRecord]) -> DecisionRecord | None:
    winning: DecisionRecord | None = None
    for decision in decisions:
        if decision.action is DecisionAction.SKIP:
            continue
        if winning is None or decision.precedence < winning.precedence:
            winning = decision
    return winning


def _state_for(winning: DecisionRecord | None) -> FeatureState:
    if winning is None:
        return FeatureState.NOT_CONFIGURED
    if winning.action is DecisionAction.ENABLE:
        return FeatureState.ENABLED
    return FeatureState.BLOCKED


def _explain(
    accommodation_id: str,
    state: FeatureState,
    winning: DecisionRecord | None,
    decisions: Iterable[DecisionRecord],
) -> str:
    if winning is None:
        return f'Feature "{accommodation_id}" was not configured at any level.'

    source_name = winning.source_name or winning.source_type.value
    lines = [
        f'Feature "{accommodation_id}" is {state.value}.',
        "",
        f"**Primary Reason** ({winning.rule.label}):",
        winning.reason,
        f"Source: {source_name} ({winning.source_type.value})",
    ]

    overridden = [
        f"- {decision.rule.label}: {decision.reason} (overridden by higher precedence)"
        for decision in decisions
        if decision.step != winning.step
        and decision.action is not DecisionAction.SKIP
        and decision.precedence > winning.precedence
    ]
    overridden.extend(
        f"- {rule.label} (overridden by higher precedence)" for rule in winning.shadowed
    )
    if overridden:
        lines.extend(["", "**Overridden Rules**:", *overridden])
    return "\n".join(lines)


def _summarise(
    decisions: Iterable[DecisionRecord],
    features: Iterable[FeatureTrail],
) -> ProvenanceSummary:
    by_action: Counter[str] = Counter()
    by_source: Counter[str] = Counter()
    by_rule: Counter[str] = Counter()
    for decision in decisions:
        by_action[decision.action.value] += 1
        by_source[decision.source_type.value] += 1
        by_rule[decision.rule.value] += 1

    states = Counter(trail.final_state for trail in features)
    return ProvenanceSummary(
        total_features=sum(states.values()),
        enabled=states[FeatureState.ENABLED],
        blocked=states[FeatureState.BLOCKED],
        not_configured=states[FeatureState.NOT_CONFIGURED],
        by_action=MappingProxyType(dict(by_action)),
        by_source=MappingProxyType(dict(by_source)),
        by_rule=MappingProxyType(dict(by_rule)),
    )


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------
def _decision_payload(decision: DecisionRecord) -> dict[str, Any]:
    return {
        "step": decision.step,
        "precedence": decision.precedence,
        "rule": decision.rule.value,
        "accommodationId": decision.accommodation_id,
        "toolId": decision.tool_id,
        "action": decision.action.value,
        "source": {
            "type": decision.source_type.value,
            "id": decision.source_id,
            "name": decision.source_name,
        },
        "reason": decision.reason,
        "value": _thaw(decision.value),
        "shadowed": [rule.value for rule in decision.shadowed],
    }


def to_payload(trail: ProvenanceTrail) -> dict[str, Any]:
    """Return a JSON-serialisable view of ``trail``."""

    return {
        "contextId": trail.context_id,
        "resolvedAt": trail.resolved_at.isoformat(),
        "tracked": trail.tracked,
        "sources": {
            source_type.value: {
                "id": source.source_id,
                "name": source.name,
                "config": _thaw(source.config),
            }
            for source_type, source in trail.sources.items()
        },
        "features": [
            {
                "accommodationId": feature.accommodation_id,
                "finalState": feature.final_state.value,
                "winningStep": feature.winning.step if feature.winning else None,
                "decisionSteps": [decision.step for decision in feature.decisions],
                "explanation": feature.explanation,
            }
            for feature in trail.features.values()
        ],
        "decisionLog": [_decision_payload(decision) for decision in trail.decisions],
        "summary": {
            "totalFeatures": trail.summary.total_features,
            "enabled": trail.summary.enabled,
            "blocked": trail.summary.blocked,
            "notConfigured": trail.summary.not_configured,
            "byAction": dict(trail.summary.by_action),
            "bySource": dict(trail.summary.by_source),
            "byRule": dict(trail.summary.by_rule),
        },
    }


def format_json(trail: ProvenanceTrail, *, indent: int | None = 2) -> str:
    return json.dumps(to_payload(trail), indent=indent, sort_keys=False)


def format_markdown(trail: ProvenanceTrail) -> str:
    summary = trail.summary
    lines = [
        "# Tool Policy Resolution Report",
        "",
        f"**Context**: {trail.context_id}",
        f"**Resolved At**: {trail.resolved_at.isoformat()}",
        "",
        "## Summary",
        "",
        f"- Total Features: {summary.total_features}",
        f"- Enabled: {summary.enabled}",
        f"- Blocked: {summary.blocked}",
        f"- Not Configured: {summary.not_configured}",
        "",
        "## Configuration Sources",
        "",
    ]
    for source_type, source in trail.sources.items():
        lines.append(f"- **{source_type.value}**: {source.name} ({source.source_id})")
    lines.extend(["", "## Feature Resolution", ""])
    for feature in trail.features.values():
        lines.extend(
            [
                f"### {feature.accommodation_id}",
                "",
                f"**Status**: {feature.final_state.value}",
                "",
                feature.explanation,
                "",
            ]
        )
    lines.extend(["## Decision Log", ""])
    for decision in trail.decisions:
        lines.extend(
            [
                f"{decision.step}. **{decision.rule.value}** (precedence {decision.precedence})",
                f"   - Feature: {decision.accommodation_id}",
                f"   - Tool: {decision.tool_id}",
                f"   - Action: {decision.action.value}",
                f"   - Source: {decision.source_name or decision.source_type.value}",
                f"   - Reason: {decision.reason}",
                "",
            ]
        )
    return "\n".join(lines).rstrip() + "\n"
