"""Context models describing where a tool visibility check happens.

Each level is its own frozen dataclass carrying exactly the payload that level
needs. The level tag is a class constant, so a variant can never disagree with
its own tag. Payloads (assessments, items, passages, rubric blocks) are opaque
mappings supplied by the content system; only the handful of keys used by the
relevance heuristics below are ever read.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, ClassVar, Union

__all__ = [
    "AssessmentContext",
    "ContextLevel",
    "ContextShapeError",
    "ElementContext",
    "ItemContext",
    "PassageContext",
    "RubricContext",
    "SectionContext",
    "ToolContext",
    "context_from_mapping",
    "extract_text",
    "has_choice_interaction",
    "has_math_content",
    "has_readable_text",
    "has_science_content",
]

_EMPTY: Mapping[str, Any] = MappingProxyType({})


class ContextShapeError(ValueError):
    """Raised when a context variant is built without its required payload."""


class ContextLevel(str, Enum):
    ASSESSMENT = "assessment"
    SECTION = "section"
    ITEM = "item"
    PASSAGE = "passage"
    RUBRIC = "rubric"
    ELEMENT = "element"

    @classmethod
    def from_str(cls, raw: str) -> ContextLevel:
        if isinstance(raw, cls):
            return raw
        normalised = str(raw).strip().lower()
        for level in cls:
            if level.value == normalised:
                return level
        raise ContextShapeError(f"unknown context level '{raw}'")


def _require_mapping(value: Any, field_name: str, level: ContextLevel) -> None:
    if not isinstance(value, Mapping):
        raise ContextShapeError(
            f"{level.value} context requires a '{field_name}' mapping, got {type(value).__name__}"
        )


def _optional_mapping(value: Any, field_name: str, level: ContextLevel) -> None:
    if value is not None:
        _require_mapping(value, field_name, level)


@dataclass(frozen=True, slots=True)
class AssessmentContext:
    level: ClassVar[ContextLevel] = ContextLevel.ASSESSMENT

    assessment: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def __post_init__(self) -> None:
        _require_mapping(self.assessment, "assessment", self.level)

    @property
    def item_ref(self) -> Mapping[str, Any] | None:
        return None


@dataclass(frozen=True, slots=True)
class SectionContext:
    level: ClassVar[ContextLevel] = ContextLevel.SECTION

    section: Mapping[str, Any]
    assessment: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)

    def __post_init__(self) -> None:
        _require_mapping(self.section, "section", self.level)
        _require_mapping(self.assessment, "assessment", self.level)

    @property
    def item_ref(self) -> Mapping[str, Any] | None:
        return None


@dataclass(frozen=True, slots=True)
class ItemContext:
    """Item toolbar context; ``passage`` is set when the item has a stimulus."""

    level: ClassVar[ContextLevel] = ContextLevel.ITEM

    item: Mapping[str, Any]
    item_ref: Mapping[str, Any] | None = None
    assessment: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    section: Mapping[str, Any] | None = None
    passage: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_mapping(self.item, "item", self.level)
        _optional_mapping(self.item_ref, "item_ref", self.level)
        _optional_mapping(self.section, "section", self.level)
        _optional_mapping(self.passage, "passage", self.level)


@dataclass(frozen=True, slots=True)
class PassageContext:
    """Passage header context, standalone or embedded in a stimulus rubric block."""

    level: ClassVar[ContextLevel] = ContextLevel.PASSAGE

    passage: Mapping[str, Any]
    item_ref: Mapping[str, Any] | None = None
    assessment: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    items: tuple[Mapping[str, Any], ...] = ()
    rubric_block: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_mapping(self.passage, "passage", self.level)
        _optional_mapping(self.item_ref, "item_ref", self.level)
        _optional_mapping(self.rubric_block, "rubric_block", self.level)
        object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True, slots=True)
class RubricContext:
    level: ClassVar[ContextLevel] = ContextLevel.RUBRIC

    rubric_block: Mapping[str, Any]
    section: Mapping[str, Any]
    assessment: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    passage: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_mapping(self.rubric_block, "rubric_block", self.level)
        _require_mapping(self.section, "section", self.level)
        _optional_mapping(self.passage, "passage", self.level)

    @property
    def item_ref(self) -> Mapping[str, Any] | None:
        return None


@dataclass(frozen=True, slots=True)
class ElementContext:
    """Inline context for a single interaction inside an item."""

    level: ClassVar[ContextLevel] = ContextLevel.ELEMENT

    item: Mapping[str, Any]
    element_id: str
    item_ref: Mapping[str, Any] | None = None
    assessment: Mapping[str, Any] = field(default_factory=lambda: _EMPTY)
    passage: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        _require_mapping(self.item, "item", self.level)
        if not isinstance(self.element_id, str) or not self.element_id:
            raise ContextShapeError("element context requires a non-empty 'element_id'")
        _optional_mapping(self.item_ref, "item_ref", self.level)
        _optional_mapping(self.passage, "passage", self.level)


ToolContext = Union[
    AssessmentContext,
    SectionContext,
    ItemContext,
    PassageContext,
    RubricContext,
    ElementContext,
]

_VARIANTS: Mapping[ContextLevel, type] = MappingProxyType(
    {
        ContextLevel.ASSESSMENT: AssessmentContext,
        ContextLevel.SECTION: SectionContext,
        ContextLevel.ITEM: ItemContext,
        ContextLevel.PASSAGE: PassageContext,
        ContextLevel.RUBRIC: RubricContext,
        ContextLevel.ELEMENT: ElementContext,
    }
)

_MAPPING_KEYS = {
    "itemRef": "item_ref",
    "elementId": "element_id",
    "rubricBlock": "rubric_block",
}


def context_from_mapping(data: Mapping[str, Any]) -> ToolContext:
    """Build the context variant named by ``data['level']``.

    Accepts both ``snake_case`` and the camelCase keys used by content
    payloads (``itemRef``, ``elementId``, ``rubricBlock``).
    """

    if not isinstance(data, Mapping):
        raise ContextShapeError(f"context must be a mapping, got {type(data).__name__}")
    if "level" not in data:
        raise ContextShapeError("context mapping requires a 'level' key")
    level = ContextLevel.from_str(data["level"])
    variant = _VARIANTS[level]

    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key == "level":
            continue
        kwargs[_MAPPING_KEYS.get(key, key)] = value
    if "items" in kwargs:
        kwargs["items"] = tuple(kwargs["items"] or ())

    try:
        return variant(**kwargs)
    except TypeError as exc:
        raise ContextShapeError(f"invalid {level.value} context: {exc}") from exc


# ---------------------------------------------------------------------------
# Text extraction
# ---------------------------------------------------------------------------
_TAG_PATTERN = re.compile(r"<[^>]*>")


def _strip_markup(value: str) -> str:
    return _TAG_PATTERN.sub(" ", value).strip()


def _item_config(item: Mapping[str, Any] | None) -> Mapping[str, Any]:
    if not isinstance(item, Mapping):
        return _EMPTY
    config = item.get("config")
    return config if isinstance(config, Mapping) else _EMPTY


def _models(config: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    raw = config.get("models")
    if isinstance(raw, Mapping):
        candidates: Iterable[Any] = raw.values()
    elif isinstance(raw, (list, tuple)):
        candidates = raw
    else:
        return []
    return [model for model in candidates if isinstance(model, Mapping)]


def _model_strings(model: Mapping[str, Any]) -> list[str]:
    # Prompts and labels live at the top level; choices one level down.
    chunks: list[str] = []
    for value in model.values():
        if isinstance(value, str):
            chunks.append(value)
        elif isinstance(value, (list, tuple)):
            for entry in value:
                if isinstance(entry, Mapping):
                    chunks.extend(nested for nested in entry.values() if isinstance(nested, str))
    return chunks


def _find_model(config: Mapping[str, Any], element_id: str) -> Mapping[str, Any] | None:
    for model in _models(config):
        if model.get("id") == element_id:
            return model
    return None


def _passage_markup(passage: Mapping[str, Any] | None) -> list[str]:
    if not isinstance(passage, Mapping):
        return []
    config = passage.get("config")
    if not isinstance(config, Mapping):
        return []
    markup = config.get("markup")
    return [markup] if isinstance(markup, str) else []


def _raw_chunks(context: ToolContext) -> list[str]:
    """Return the raw (unstripped) markup strings relevant to ``context``."""

    if isinstance(context, ElementContext):
        config = _item_config(context.item)
        chunks: list[str] = []
        elements = config.get("elements")
        if isinstance(elements, Mapping):
            markup = elements.get(context.element_id)
            if isinstance(markup, str):
                chunks.append(markup)
        # Some content only exists in the model, never in element markup.
        model = _find_model(config, context.element_id)
        if model is not None:
            chunks.extend(_model_strings(model))
        return chunks

    if isinstance(context, ItemContext):
        config = _item_config(context.item)
        chunks = []
        markup = config.get("markup")
        if isinstance(markup, str):
            chunks.append(markup)
        elements = config.get("elements")
        if isinstance(elements, Mapping):
            chunks.extend(value for value in elements.values() if isinstance(value, str))
        for model in _models(config):
            chunks.extend(_model_strings(model))
        return chunks

    if isinstance(context, PassageContext):
        return _passage_markup(context.passage)

    if isinstance(context, RubricContext):
        embedded = context.rubric_block.get("passage")
        if isinstance(embedded, Mapping) and isinstance(embedded.get("config"), Mapping):
            return _passage_markup(embedded)
        content = context.rubric_block.get("content")
        return [content] if isinstance(content, str) else []

    return []


def extract_text(context: ToolContext) -> str:
    """Flatten the content visible in ``context`` to plain text."""

    stripped = (_strip_markup(chunk) for chunk in _raw_chunks(context))
    return " ".join(chunk for chunk in stripped if chunk).strip()


# ---------------------------------------------------------------------------
# Relevance heuristics
# ---------------------------------------------------------------------------
_MATHML_PATTERN = re.compile(r"<math[>\s]", re.IGNORECASE)
_MATH_PATTERNS = (
    re.compile(r"\\\[([^\]]+)\\\]"),
    re.compile(r"\$\$[^$]+\$\$"),
    re.compile(r"\\\("),
    re.compile(r"[+*/=<>≤≥∑∫√π×÷]"),
    re.compile(r"\d+\s*[+\-*/=]\s*\d+"),
)

_SCIENCE_PATTERNS = (
    re.compile(r"chemistry|chemical|element|atom|molecule|compound", re.IGNORECASE),
    re.compile(r"periodic\s+table", re.IGNORECASE),
    re.compile(r"H₂O|CO₂|NaCl|O₂|N₂"),
    re.compile(r"\b(?:[A-Z][a-z]?\d+)+\b"),
    re.compile(r"biology|organism|cell|DNA|RNA|protein", re.IGNORECASE),
    re.compile(r"physics|force|energy|velocity|acceleration", re.IGNORECASE),
)

CHOICE_INTERACTIONS = frozenset(
    {
        "pie-multiple-choice",
        "pie-inline-choice",
        "pie-select-text",
        "multiple-choice",
        "inline-choice",
        "select-text",
    }
)

DEFAULT_MIN_READABLE_CHARS = 10


def has_math_content(context: ToolContext) -> bool:
    if any(_MATHML_PATTERN.search(chunk) for chunk in _raw_chunks(context)):
        return True
    text = extract_text(context)
    return any(pattern.search(text) for pattern in _MATH_PATTERNS)


def has_science_content(context: ToolContext) -> bool:
    text = extract_text(context)
    return any(pattern.search(text) for pattern in _SCIENCE_PATTERNS)


def has_choice_interaction(context: ToolContext) -> bool:
    """Return True when the element (or any model of the item) is choice based."""

    if isinstance(context, ElementContext):
        model = _find_model(_item_config(context.item), context.element_id)
        if model is None:
            return False
        return model.get("element") in CHOICE_INTERACTIONS

    if isinstance(context, ItemContext):
        for model in _models(_item_config(context.item)):
            if model.get("element") in CHOICE_INTERACTIONS:
                return True
            # Configs without canonical element names still list their choices.
            choices = model.get("choices")
            if isinstance(choices, (list, tuple)) and choices:
                return True
    return False


def has_readable_text(context: ToolContext, *, min_chars: int = DEFAULT_MIN_READABLE_CHARS) -> bool:
    return len(extract_text(context)) >= min_chars
