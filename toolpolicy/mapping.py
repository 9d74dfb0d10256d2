"""Bidirectional accommodation id <-> tool id dictionary."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from types import MappingProxyType

__all__ = ["AccommodationMapper", "STANDARD_ACCOMMODATION_MAP"]

# Interoperability vocabulary ids (plus widely used extensions) -> catalog tool ids.
STANDARD_ACCOMMODATION_MAP: Mapping[str, str] = MappingProxyType(
    {
        "textToSpeech": "textToSpeech",
        "calculator": "calculator",
        "ruler": "ruler",
        "protractor": "protractor",
        "highlighter": "highlighter",
        "lineReader": "lineReader",
        "magnifier": "magnifier",
        "colorContrast": "colorScheme",
        "answerMasking": "answerEliminator",
        "dictionaryLookup": "dictionary",
        "graphingCalculator": "calculator",
        "scientificCalculator": "calculator",
        "basicCalculator": "calculator",
    }
)


class AccommodationMapper:
    """Translate accommodation ids to tool ids and back.

    Many accommodation ids may point at one tool; the reverse direction keeps
    the most recently registered accommodation id for each tool. Both sides
    live in one tuple that is replaced with a single assignment, so a reader
    that goes through :meth:`snapshot` never sees a half-applied registration. Extensions should use the
    ``x-`` prefix.
    """

    def __init__(
        self,
        mappings: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        *,
        include_standard: bool = True,
    ) -> None:
        self._lock = threading.Lock()
        self._maps: tuple[dict[str, str], dict[str, str]] = ({}, {})
        if include_standard:
            self.register_many(STANDARD_ACCOMMODATION_MAP)
        if mappings:
            self.register_many(mappings)

    def register(self, accommodation_id: str, tool_id: str) -> None:
        if not accommodation_id or not tool_id:
            raise ValueError("accommodation_id and tool_id must be non-empty strings")
        with self._lock:
            current_forward, current_reverse = self._maps
            forward = dict(current_forward)
            reverse = dict(current_reverse)
            previous = forward.pop(accommodation_id, None)
            # Re-insert so dict order reflects registration recency.
            forward[accommodation_id] = tool_id
            reverse[tool_id] = accommodation_id
            if previous is not None and previous != tool_id and reverse.get(previous) == accommodation_id:
                remaining = [acc for acc, tool in forward.items() if tool == previous]
                if remaining:
                    reverse[previous] = remaining[-1]
                else:
                    del reverse[previous]
            self._maps = (forward, reverse)

    def register_many(self, mappings: Mapping[str, str] | Iterable[tuple[str, str]]) -> None:
        items = mappings.items() if isinstance(mappings, Mapping) else mappings
        for accommodation_id, tool_id in items:
            self.register(accommodation_id, tool_id)

    def tool_for(self, accommodation_id: str) -> str | None:
        return self._maps[0].get(accommodation_id)

    def accommodation_for(self, tool_id: str) -> str | None:
        return self._maps[1].get(tool_id)

    def is_registered(self, accommodation_id: str) -> bool:
        return accommodation_id in self._maps[0]

    def accommodation_ids(self) -> tuple[str, ...]:
        return tuple(self._maps[0])

    def snapshot(self) -> tuple[Mapping[str, str], Mapping[str, str]]:
        """Return read-only forward and reverse views taken from the same registration state."""

        forward, reverse = self._maps
        return MappingProxyType(forward), MappingProxyType(reverse)

    @property
    def forward(self) -> Mapping[str, str]:
        return MappingProxyType(self._maps[0])

    @property
    def reverse(self) -> Mapping[str, str]:
        return MappingProxyType(self._maps[1])

    def __contains__(self, accommodation_id: object) -> bool:
        return accommodation_id in self._maps[0]

    def __len__(self) -> int:
        return len(self._maps[0])
