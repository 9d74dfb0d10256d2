from __future__ import annotations

import json

from tests.helpers.clock import FIXED_NOW, fixed_clock
from toolpolicy.inputs import PolicyInput
from toolpolicy.models import DecisionAction, PolicyRule, SourceType
from toolpolicy.provenance import (
    FeatureState,
    NullProvenanceBuilder,
    ProvenanceBuilder,
    format_json,
    format_markdown,
    to_payload,
)


def _builder() -> ProvenanceBuilder:
    builder = ProvenanceBuilder("session-42", clock=fixed_clock)
    builder.add_source(SourceType.INSTITUTION, "district-7", name="District Seven")
    builder.add_source(SourceType.STUDENT, "student-1")
    return builder


def test_builder_assigns_steps_and_links_sources() -> None:
    builder = _builder()
    first = builder.add_decision(
        accommodation_id="calculator",
        tool_id="calculator",
        rule=PolicyRule.INSTITUTION_BLOCK,
        action=DecisionAction.BLOCK,
        source_type=SourceType.INSTITUTION,
        reason="Blocked by institutional policy",
    )
    second = builder.add_decision(
        accommodation_id="ruler",
        tool_id="ruler",
        rule=PolicyRule.ACCOMMODATION_GRANT,
        action=DecisionAction.ENABLE,
        source_type=SourceType.STUDENT,
        reason="Granted",
    )

    assert (first.step, second.step) == (1, 2)
    assert first.precedence == 1
    assert first.source_name == "District Seven"
    assert second.source_id == "student-1"


def test_build_produces_features_and_summary() -> None:
    builder = _builder()
    builder.add_decision(
        accommodation_id="calculator",
        tool_id="calculator",
        rule=PolicyRule.INSTITUTION_BLOCK,
        action=DecisionAction.BLOCK,
        source_type=SourceType.INSTITUTION,
        reason="Blocked by institutional policy",
        shadowed=[PolicyRule.ACCOMMODATION_GRANT],
    )
    builder.add_decision(
        accommodation_id="ruler",
        tool_id="ruler",
        rule=PolicyRule.ACCOMMODATION_GRANT,
        action=DecisionAction.ENABLE,
        source_type=SourceType.STUDENT,
        reason="Granted",
    )
    builder.add_decision(
        accommodation_id="x-unused",
        tool_id="x-unused",
        rule=PolicyRule.NOT_CONFIGURED,
        action=DecisionAction.SKIP,
        source_type=SourceType.SYSTEM,
        reason="Not enabled by any configuration source",
    )

    trail = builder.build()

    assert trail.resolved_at == FIXED_NOW
    assert trail.feature("calculator").final_state is FeatureState.BLOCKED
    assert trail.feature("ruler").final_state is FeatureState.ENABLED
    assert trail.feature("x-unused").final_state is FeatureState.NOT_CONFIGURED
    assert trail.feature("x-unused").winning is None
    assert trail.summary.total_features == 3
    assert (trail.summary.enabled, trail.summary.blocked, trail.summary.not_configured) == (1, 1, 1)
    assert dict(trail.summary.by_action) == {"block": 1, "enable": 1, "skip": 1}
    assert dict(trail.summary.by_source) == {"institution": 1, "student": 1, "system": 1}
    assert trail.summary.by_rule["institution-block"] == 1


def test_explanation_names_primary_reason_and_overridden_rules() -> None:
    builder = _builder()
    builder.add_decision(
        accommodation_id="calculator",
        tool_id="calculator",
        rule=PolicyRule.INSTITUTION_BLOCK,
        action=DecisionAction.BLOCK,
        source_type=SourceType.INSTITUTION,
        reason="Blocked by institutional policy",
        shadowed=[PolicyRule.ACCOMMODATION_GRANT],
    )

    explanation = builder.build().explain("calculator")

    assert explanation.startswith('Feature "calculator" is blocked.')
    assert "**Primary Reason** (Institutional Block):" in explanation
    assert "Source: District Seven (institution)" in explanation
    assert "**Overridden Rules**:" in explanation
    assert "- Student Accommodation (overridden by higher precedence)" in explanation


def test_explanation_for_unconfigured_and_unknown_features() -> None:
    builder = _builder()
    builder.add_decision(
        accommodation_id="x-unused",
        tool_id="x-unused",
        rule=PolicyRule.NOT_CONFIGURED,
        action=DecisionAction.SKIP,
        source_type=SourceType.SYSTEM,
        reason="Not enabled by any configuration source",
    )
    trail = builder.build()

    assert trail.explain("x-unused") == 'Feature "x-unused" was not configured at any level.'
    assert trail.explain("missing") is None


def test_lower_precedence_decision_never_replaces_winner() -> None:
    builder = _builder()
    builder.add_decision(
        accommodation_id="calculator",
        tool_id="calculator",
        rule=PolicyRule.ACCOMMODATION_GRANT,
        action=DecisionAction.ENABLE,
        source_type=SourceType.STUDENT,
        reason="Granted",
    )
    builder.add_decision(
        accommodation_id="calculator",
        tool_id="calculator",
        rule=PolicyRule.SESSION_OVERRIDE,
        action=DecisionAction.BLOCK,
        source_type=SourceType.SESSION,
        reason="Disabled by proctor",
    )

    feature = builder.build().feature("calculator")

    assert feature.winning.rule is PolicyRule.SESSION_OVERRIDE
    assert "- Student Accommodation: Granted (overridden by higher precedence)" in feature.explanation


def test_null_builder_returns_empty_trail() -> None:
    builder = NullProvenanceBuilder("ctx", clock=fixed_clock)
    assert builder.add_source(SourceType.STUDENT, "s1") is None
    assert (
        builder.add_decision(
            accommodation_id="calculator",
            tool_id="calculator",
            rule=PolicyRule.ACCOMMODATION_GRANT,
            action=DecisionAction.ENABLE,
            source_type=SourceType.STUDENT,
            reason="Granted",
        )
        is None
    )

    trail = builder.build()

    assert trail.tracked is False
    assert trail.context_id == "ctx"
    assert trail.decisions == ()
    assert trail.summary.total_features == 0
    assert to_payload(trail)["decisionLog"] == []


def test_markdown_report_sections(resolver) -> None:
    resolution = resolver.resolve(
        PolicyInput.from_mapping(
            {
                "institution": {"id": "d7", "name": "District Seven", "blockedTools": ["calculator"]},
                "profile": {"id": "s1", "supports": ["calculator", "ruler"]},
            }
        )
    )

    report = format_markdown(resolution.provenance)

    assert report.startswith("# Tool Policy Resolution Report")
    assert "**Context**: test-session" in report
    assert "- **institution**: District Seven (d7)" in report
    assert "### calculator" in report
    assert "**Status**: blocked" in report
    assert "1. **institution-block** (precedence 1)" in report
    assert "## Decision Log" in report


def test_json_output_round_trips_through_json(resolver) -> None:
    resolution = resolver.resolve(
        PolicyInput.from_mapping({"profile": {"supports": ["ruler"]}, "toolConfigs": {"ruler": {"units": ["cm"]}}})
    )

    payload = json.loads(format_json(resolution.provenance))

    assert payload["contextId"] == "test-session"
    assert payload["resolvedAt"] == FIXED_NOW.isoformat()
    assert payload["features"][0]["finalState"] == "enabled"
    assert payload["decisionLog"][0]["source"] == {"type": "student", "id": "student", "name": "student"}
    assert payload["sources"]["assessment"]["config"] == {"ruler": {"units": ["cm"]}}
