"""Property-based checks for precedence resolution and accommodation mapping."""

from __future__ import annotations

from typing import Any

import pytest

from tests.helpers.clock import fixed_clock
from toolpolicy.config import ResolverConfig
from toolpolicy.defaults import create_default_registry
from toolpolicy.mapping import AccommodationMapper
from toolpolicy.models import DecisionAction, PolicyRule
from toolpolicy.resolver import PolicyResolver

hypothesis = pytest.importorskip("hypothesis")
given = hypothesis.given
settings = hypothesis.settings
st = hypothesis.strategies

ACCOMMODATION_IDS = (
    "calculator",
    "graphingCalculator",
    "textToSpeech",
    "readAloud",
    "ruler",
    "magnifier",
    "highlighter",
    "x-unmapped",
)

_VETO_RULES = {
    PolicyRule.INSTITUTION_BLOCK,
    PolicyRule.SESSION_OVERRIDE,
    PolicyRule.ITEM_RESTRICTION,
}

_RESOLVER = PolicyResolver(create_default_registry(), config=ResolverConfig(context_id="prop"), clock=fixed_clock)

_ids = st.lists(st.sampled_from(ACCOMMODATION_IDS), max_size=5)


def _policy_strategy() -> st.SearchStrategy[dict[str, Any]]:
    return st.fixed_dictionaries(
        {
            "institution": st.fixed_dictionaries({"blockedTools": _ids, "requiredTools": _ids}),
            "session": st.fixed_dictionaries(
                {"toolOverrides": st.dictionaries(st.sampled_from(ACCOMMODATION_IDS), st.booleans(), max_size=4)}
            ),
            "item": st.fixed_dictionaries({"requiredTools": _ids, "restrictedTools": _ids}),
            "profile": st.fixed_dictionaries(
                {"supports": _ids, "prohibitedSupports": _ids, "activateAtInit": _ids}
            ),
        }
    )


@settings(max_examples=75, deadline=None)
@given(_policy_strategy())
def test_resolution_is_deterministic(policy: dict[str, Any]) -> None:
    assert _RESOLVER.resolve(policy).to_payload() == _RESOLVER.resolve(policy).to_payload()


@settings(max_examples=75, deadline=None)
@given(_policy_strategy())
def test_one_decision_per_accommodation_id(policy: dict[str, Any]) -> None:
    resolution = _RESOLVER.resolve(policy)
    decided = [decision.accommodation_id for decision in resolution.provenance.decisions]

    assert len(decided) == len(set(decided))
    assert set(decided) == set(resolution.outcomes)


@settings(max_examples=75, deadline=None)
@given(_policy_strategy())
def test_veto_on_any_alias_disables_the_tool(policy: dict[str, Any]) -> None:
    resolution = _RESOLVER.resolve(policy)
    vetoed = {outcome.tool_id for outcome in resolution.outcomes.values() if outcome.rule in _VETO_RULES}

    assert vetoed.isdisjoint(resolution.allowed_tool_ids())


@settings(max_examples=75, deadline=None)
@given(_policy_strategy())
def test_enabled_tools_have_an_enabling_outcome(policy: dict[str, Any]) -> None:
    resolution = _RESOLVER.resolve(policy)
    enabling = {
        outcome.tool_id for outcome in resolution.outcomes.values() if outcome.action is DecisionAction.ENABLE
    }

    assert set(resolution.allowed_tool_ids()) <= enabling
    assert set(resolution.auto_activate) <= set(resolution.allowed_tool_ids())


@settings(max_examples=100, deadline=None)
@given(
    st.lists(
        st.tuples(st.sampled_from(["a", "b", "c", "d", "e"]), st.sampled_from(["t1", "t2", "t3"])),
        max_size=20,
    )
)
def test_mapper_reverse_tracks_latest_registration(registrations: list[tuple[str, str]]) -> None:
    mapper = AccommodationMapper(include_standard=False)
    for accommodation_id, tool_id in registrations:
        mapper.register(accommodation_id, tool_id)

    forward = dict(mapper.forward)
    expected: dict[str, str] = {}
    for accommodation_id, tool_id in forward.items():
        expected[tool_id] = accommodation_id

    assert dict(mapper.reverse) == expected
