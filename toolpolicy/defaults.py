"""Built-in tool catalog."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from functools import partial

from .context import (
    DEFAULT_MIN_READABLE_CHARS,
    ContextLevel,
    ToolContext,
    has_choice_interaction,
    has_math_content,
    has_readable_text,
    has_science_content,
)
from .models import ModuleLoader, ToolDescriptor, always_visible
from .registry import ToolRegistry

__all__ = [
    "CALCULATOR_SETTINGS_SCHEMA",
    "DEFAULT_TOOL_ORDER",
    "TEXT_TO_SPEECH_SETTINGS_SCHEMA",
    "VISIBILITY_PREDICATES",
    "build_default_descriptors",
    "create_default_registry",
    "visibility_predicate",
]

LOGGER = logging.getLogger(__name__)

Predicate = Callable[[ToolContext], bool]

_L = ContextLevel

CALCULATOR_SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "calculatorType": {"enum": ["basic", "scientific", "graphing"]},
        "availableTypes": {
            "type": "array",
            "items": {"enum": ["basic", "scientific", "graphing"]},
            "uniqueItems": True,
        },
        "provider": {"type": "string"},
    },
}

TEXT_TO_SPEECH_SETTINGS_SCHEMA = {
    "type": "object",
    "properties": {
        "rate": {"type": "number", "exclusiveMinimum": 0, "maximum": 4},
        "voice": {"type": "string"},
        "highlightWords": {"type": "boolean"},
    },
}

DEFAULT_TOOL_ORDER: tuple[str, ...] = (
    "colorScheme",
    "magnifier",
    "textToSpeech",
    "calculator",
    "graph",
    "ruler",
    "protractor",
    "periodicTable",
    "lineReader",
    "highlighter",
    "annotationToolbar",
    "answerEliminator",
)


def _calculator_visible(context: ToolContext) -> bool:
    # Section and item toolbars always offer the calculator.
    if context.level in (_L.SECTION, _L.ITEM):
        return True
    return has_math_content(context)


def visibility_predicate(
    kind: str,
    *,
    min_readable_chars: int = DEFAULT_MIN_READABLE_CHARS,
) -> Predicate:
    """Return the relevance predicate named ``kind``."""

    if kind == "readable-text":
        return partial(has_readable_text, min_chars=min_readable_chars)
    try:
        return VISIBILITY_PREDICATES[kind]
    except KeyError:
        raise ValueError(f"unknown visibility predicate '{kind}'") from None


VISIBILITY_PREDICATES: Mapping[str, Predicate] = {
    "always": always_visible,
    "readable-text": has_readable_text,
    "math": has_math_content,
    "science": has_science_content,
    "choice": has_choice_interaction,
}


def build_default_descriptors(
    *,
    min_readable_chars: int = DEFAULT_MIN_READABLE_CHARS,
) -> list[ToolDescriptor]:
    readable = visibility_predicate("readable-text", min_readable_chars=min_readable_chars)
    return [
        ToolDescriptor.from_spec(
            "colorScheme",
            name="Color Scheme",
            description="High contrast and custom color themes",
            levels=(_L.ASSESSMENT, _L.SECTION),
            accommodations=(
                "highContrastDisplay",
                "colorContrast",
                "invertColors",
                "colorScheme",
                "highContrast",
                "customColors",
            ),
        ),
        ToolDescriptor.from_spec(
            "magnifier",
            name="Magnifier",
            description="Screen magnification",
            levels=(_L.ASSESSMENT, _L.SECTION, _L.ITEM, _L.PASSAGE),
            accommodations=("magnification", "screenMagnifier", "magnifier", "zoomable"),
        ),
        ToolDescriptor.from_spec(
            "textToSpeech",
            name="Text to Speech",
            description="Read content aloud",
            levels=(_L.SECTION, _L.ITEM, _L.PASSAGE, _L.RUBRIC),
            accommodations=("textToSpeech", "readAloud", "tts", "speechOutput"),
            is_visible_in_context=readable,
            settings_schema=TEXT_TO_SPEECH_SETTINGS_SCHEMA,
        ),
        ToolDescriptor.from_spec(
            "calculator",
            name="Calculator",
            description="Basic, scientific or graphing calculator",
            levels=(_L.SECTION, _L.ITEM, _L.PASSAGE, _L.RUBRIC, _L.ELEMENT),
            accommodations=(
                "calculator",
                "graphingCalculator",
                "basicCalculator",
                "scientificCalculator",
            ),
            is_visible_in_context=_calculator_visible,
            settings_schema=CALCULATOR_SETTINGS_SCHEMA,
        ),
        ToolDescriptor.from_spec(
            "graph",
            name="Graph",
            description="Coordinate plane graphing tool",
            levels=(_L.ITEM, _L.ELEMENT),
            accommodations=("graph", "graphingCalculator", "coordinatePlane", "graphingTool"),
            is_visible_in_context=has_math_content,
        ),
        ToolDescriptor.from_spec(
            "ruler",
            name="Ruler",
            description="On-screen measurement ruler",
            levels=(_L.ITEM, _L.ELEMENT),
            accommodations=("ruler", "measurement"),
            is_visible_in_context=has_math_content,
        ),
        ToolDescriptor.from_spec(
            "protractor",
            name="Protractor",
            description="Angle measurement",
            levels=(_L.ITEM, _L.ELEMENT),
            accommodations=("protractor", "angleMeasurement"),
            is_visible_in_context=has_math_content,
        ),
        ToolDescriptor.from_spec(
            "periodicTable",
            name="Periodic Table",
            description="Chemistry reference sheet",
            levels=(_L.ITEM, _L.ELEMENT),
            accommodations=("periodicTable", "chemistryReference", "elementReference"),
            is_visible_in_context=has_science_content,
        ),
        ToolDescriptor.from_spec(
            "lineReader",
            name="Line Reader",
            description="Reading guide that masks surrounding lines",
            levels=(_L.PASSAGE, _L.RUBRIC, _L.ITEM),
            accommodations=(
                "readingMask",
                "readingGuide",
                "readingRuler",
                "lineReader",
                "trackingGuide",
            ),
            is_visible_in_context=readable,
        ),
        ToolDescriptor.from_spec(
            "highlighter",
            name="Highlighter",
            description="Highlight text",
            levels=(_L.PASSAGE, _L.RUBRIC, _L.ITEM, _L.ELEMENT),
            accommodations=("highlighter", "textHighlight", "annotation"),
            is_visible_in_context=readable,
        ),
        ToolDescriptor.from_spec(
            "annotationToolbar",
            name="Annotation Toolbar",
            description="Highlight and annotate selected text",
            levels=(_L.PASSAGE, _L.RUBRIC, _L.ITEM, _L.ELEMENT),
            accommodations=(
                "highlighting",
                "annotations",
                "highlighter",
                "textHighlight",
                "annotation",
            ),
            is_visible_in_context=readable,
        ),
        ToolDescriptor.from_spec(
            "answerEliminator",
            name="Answer Eliminator",
            description="Strike through answer choices",
            levels=(_L.ELEMENT,),
            accommodations=("answerMasking", "answerEliminator", "strikethrough", "choiceMasking"),
            is_visible_in_context=has_choice_interaction,
        ),
    ]


def create_default_registry(
    overrides: Iterable[ToolDescriptor] | None = None,
    module_loaders: Mapping[str, ModuleLoader] | None = None,
    *,
    min_readable_chars: int = DEFAULT_MIN_READABLE_CHARS,
) -> ToolRegistry:
    """Return a registry populated with the built-in tools.

    ``overrides`` replace built-ins with the same id and register new ones.
    """

    registry = ToolRegistry(build_default_descriptors(min_readable_chars=min_readable_chars))
    for descriptor in overrides or ():
        if registry.has(descriptor.tool_id):
            LOGGER.debug("overriding built-in tool '%s'", descriptor.tool_id)
            registry.override(descriptor)
        else:
            registry.register(descriptor)
    for tool_id, loader in (module_loaders or {}).items():
        if not registry.has(tool_id):
            LOGGER.warning("module loader supplied for unknown tool '%s'", tool_id)
        registry.set_module_loader(tool_id, loader)
    return registry
