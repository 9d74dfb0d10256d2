from __future__ import annotations

import pathlib
import sys
from typing import Any

import pytest

REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from tests.helpers.clock import fixed_clock  # noqa: E402
from toolpolicy.config import ResolverConfig  # noqa: E402
from toolpolicy.defaults import create_default_registry  # noqa: E402
from toolpolicy.registry import ToolRegistry  # noqa: E402
from toolpolicy.resolver import PolicyResolver  # noqa: E402


@pytest.fixture(scope="session")
def repo_root() -> pathlib.Path:
    return REPO_ROOT


@pytest.fixture()
def registry() -> ToolRegistry:
    return create_default_registry()


@pytest.fixture()
def resolver(registry: ToolRegistry) -> PolicyResolver:
    return PolicyResolver(registry, config=ResolverConfig(context_id="test-session"), clock=fixed_clock)


@pytest.fixture()
def math_item() -> dict[str, Any]:
    return {
        "id": "item-math",
        "config": {
            "markup": "<p>Solve for x: 3 + 4 = x</p><multiple-choice id='q1'></multiple-choice>",
            "elements": {"q1": "<multiple-choice id='q1'></multiple-choice>"},
            "models": [
                {
                    "id": "q1",
                    "element": "multiple-choice",
                    "prompt": "What is 3 + 4?",
                    "choices": [
                        {"label": "Seven", "value": "a"},
                        {"label": "Eight", "value": "b"},
                    ],
                }
            ],
        },
    }


@pytest.fixture()
def essay_item() -> dict[str, Any]:
    return {
        "id": "item-essay",
        "config": {
            "markup": "<p>Describe your favourite season and explain why you like it.</p>",
            "elements": {"e1": "<extended-text-entry id='e1'></extended-text-entry>"},
            "models": [{"id": "e1", "element": "extended-text-entry"}],
        },
    }
