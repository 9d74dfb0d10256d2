"""Resolver configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .context import DEFAULT_MIN_READABLE_CHARS

__all__ = ["ENV_CONTEXT_ID", "ENV_MIN_READABLE_CHARS", "ENV_PROVENANCE", "ResolverConfig"]

ENV_PROVENANCE = "TOOLPOLICY_PROVENANCE"
ENV_MIN_READABLE_CHARS = "TOOLPOLICY_MIN_READABLE_CHARS"
ENV_CONTEXT_ID = "TOOLPOLICY_CONTEXT_ID"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be one of {sorted(_TRUE_VALUES | _FALSE_VALUES)}, got '{raw}'")


@dataclass(frozen=True, slots=True)
class ResolverConfig:
    """Tunables shared by the resolver and the built-in catalog."""

    track_provenance: bool = True
    min_readable_chars: int = DEFAULT_MIN_READABLE_CHARS
    context_id: str = "default"

    def __post_init__(self) -> None:
        if self.min_readable_chars < 0:
            raise ValueError("min_readable_chars must be a non-negative integer")
        if not self.context_id:
            raise ValueError("context_id must be a non-empty string")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ResolverConfig:
        env = os.environ if environ is None else environ
        raw_chars = env.get(ENV_MIN_READABLE_CHARS, "").strip()
        try:
            min_chars = int(raw_chars) if raw_chars else DEFAULT_MIN_READABLE_CHARS
        except ValueError as exc:
            raise ValueError(f"{ENV_MIN_READABLE_CHARS} must be an integer, got '{raw_chars}'") from exc
        return cls(
            track_provenance=_env_flag(env, ENV_PROVENANCE, True),
            min_readable_chars=min_chars,
            context_id=env.get(ENV_CONTEXT_ID, "").strip() or "default",
        )
