from __future__ import annotations

import pytest

from toolpolicy.config import ENV_CONTEXT_ID, ENV_MIN_READABLE_CHARS, ENV_PROVENANCE, ResolverConfig


def test_defaults() -> None:
    config = ResolverConfig()

    assert config.track_provenance is True
    assert config.min_readable_chars == 10
    assert config.context_id == "default"


def test_from_env_reads_overrides() -> None:
    config = ResolverConfig.from_env(
        {ENV_PROVENANCE: "off", ENV_MIN_READABLE_CHARS: " 25 ", ENV_CONTEXT_ID: "session-9"}
    )

    assert config == ResolverConfig(track_provenance=False, min_readable_chars=25, context_id="session-9")


def test_from_env_with_empty_environment_uses_defaults() -> None:
    assert ResolverConfig.from_env({}) == ResolverConfig()


@pytest.mark.parametrize(
    "environ",
    [
        {ENV_PROVENANCE: "maybe"},
        {ENV_MIN_READABLE_CHARS: "ten"},
        {ENV_MIN_READABLE_CHARS: "-1"},
    ],
)
def test_from_env_rejects_invalid_values(environ) -> None:
    with pytest.raises(ValueError):
        ResolverConfig.from_env(environ)


def test_empty_context_id_is_rejected() -> None:
    with pytest.raises(ValueError):
        ResolverConfig(context_id="")
