from __future__ import annotations

import dataclasses

import pytest

from toolpolicy.context import (
    AssessmentContext,
    ContextLevel,
    ContextShapeError,
    ElementContext,
    ItemContext,
    PassageContext,
    RubricContext,
    SectionContext,
    context_from_mapping,
    extract_text,
    has_choice_interaction,
    has_math_content,
    has_readable_text,
    has_science_content,
)


def test_level_tag_is_fixed_per_variant() -> None:
    assert AssessmentContext().level is ContextLevel.ASSESSMENT
    assert SectionContext(section={}).level is ContextLevel.SECTION
    assert PassageContext(passage={}).level is ContextLevel.PASSAGE
    assert RubricContext(rubric_block={}, section={}).level is ContextLevel.RUBRIC


def test_contexts_are_immutable() -> None:
    context = ItemContext(item={"id": "i1"})

    with pytest.raises(dataclasses.FrozenInstanceError):
        context.item = {}  # type: ignore[misc]


@pytest.mark.parametrize(
    "factory",
    [
        lambda: PassageContext(passage=None),  # type: ignore[arg-type]
        lambda: ItemContext(item="not-a-mapping"),  # type: ignore[arg-type]
        lambda: ElementContext(item={}, element_id=""),
        lambda: RubricContext(rubric_block={}, section=None),  # type: ignore[arg-type]
    ],
)
def test_missing_payload_raises_shape_error(factory) -> None:
    with pytest.raises(ContextShapeError):
        factory()


def test_context_from_mapping_accepts_camel_case_keys(math_item) -> None:
    context = context_from_mapping(
        {"level": "element", "item": math_item, "elementId": "q1", "itemRef": {"id": "ref-1"}}
    )

    assert isinstance(context, ElementContext)
    assert context.element_id == "q1"
    assert context.item_ref == {"id": "ref-1"}


def test_context_from_mapping_rejects_unknown_level_and_keys() -> None:
    with pytest.raises(ContextShapeError):
        context_from_mapping({"level": "galaxy"})
    with pytest.raises(ContextShapeError):
        context_from_mapping({"level": "passage", "passage": {}, "colour": "red"})
    with pytest.raises(ContextShapeError):
        context_from_mapping({"passage": {}})


def test_element_text_merges_markup_and_model(math_item) -> None:
    text = extract_text(ElementContext(item=math_item, element_id="q1"))

    assert "What is 3 + 4?" in text
    assert "Seven" in text
    assert "<" not in text


def test_item_text_includes_markup_and_models(math_item) -> None:
    text = extract_text(ItemContext(item=math_item))

    assert text.startswith("Solve for x")
    assert "Eight" in text


def test_rubric_prefers_embedded_passage() -> None:
    rubric = RubricContext(
        rubric_block={
            "content": "<p>Rubric body</p>",
            "passage": {"config": {"markup": "<p>Embedded passage text</p>"}},
        },
        section={},
    )
    plain = RubricContext(rubric_block={"content": "<p>Rubric body</p>"}, section={})

    assert extract_text(rubric) == "Embedded passage text"
    assert extract_text(plain) == "Rubric body"


def test_assessment_and_section_have_no_text() -> None:
    assert extract_text(AssessmentContext()) == ""
    assert extract_text(SectionContext(section={"title": "Part 1"})) == ""


def test_math_detection(math_item, essay_item) -> None:
    assert has_math_content(ItemContext(item=math_item))
    assert not has_math_content(ItemContext(item=essay_item))

    mathml = PassageContext(passage={"config": {"markup": "<math><mi>x</mi></math>"}})
    latex = PassageContext(passage={"config": {"markup": "<p>Evaluate \\(x^2\\)</p>"}})
    hyphenated = PassageContext(passage={"config": {"markup": "<p>A well-known long-form story</p>"}})

    assert has_math_content(mathml)
    assert has_math_content(latex)
    assert not has_math_content(hyphenated)


def test_science_detection() -> None:
    chemistry = PassageContext(passage={"config": {"markup": "<p>Water is H2O and salt is NaCl.</p>"}})
    prose = PassageContext(passage={"config": {"markup": "<p>The summer was long and warm.</p>"}})

    assert has_science_content(chemistry)
    assert not has_science_content(prose)


def test_choice_detection(math_item, essay_item) -> None:
    assert has_choice_interaction(ElementContext(item=math_item, element_id="q1"))
    assert has_choice_interaction(ItemContext(item=math_item))
    assert not has_choice_interaction(ElementContext(item=essay_item, element_id="e1"))
    assert not has_choice_interaction(ElementContext(item=math_item, element_id="missing"))
    assert not has_choice_interaction(PassageContext(passage={}))


def test_readable_text_threshold() -> None:
    context = PassageContext(passage={"config": {"markup": "<p>0123456789</p>"}})

    assert has_readable_text(context)
    assert not has_readable_text(context, min_chars=11)
