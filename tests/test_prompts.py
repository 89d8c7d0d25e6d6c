"""Prompt templates and canned patterns."""

from __future__ import annotations

import pytest

from modelgate.errors import ConfigurationError, TemplateValidationError
from modelgate.prompts import (
    PromptPatterns,
    TemplateVariable,
    compile_template,
    create_template,
)

pytestmark = pytest.mark.unit


def test_compile_substitutes_every_occurrence() -> None:
    template = create_template(
        "{{name}} says hi. Bye, {{name}}!", [TemplateVariable(name="name")]
    )

    assert template.compile({"name": "Ada"}) == "Ada says hi. Bye, Ada!"


def test_values_override_defaults() -> None:
    template = create_template(
        "Hello {{who}}", [{"name": "who", "default": "world"}]
    )

    assert compile_template(template) == "Hello world"
    assert compile_template(template, {"who": "there"}) == "Hello there"


def test_missing_required_variables_are_all_reported() -> None:
    template = create_template(
        "{{a}} {{b}} {{c}}",
        [
            TemplateVariable(name="a"),
            TemplateVariable(name="b"),
            TemplateVariable(name="c", required=False),
        ],
    )

    with pytest.raises(TemplateValidationError) as exc:
        template.compile({})
    assert exc.value.variables == ["a", "b"]


def test_optional_variable_without_value_keeps_placeholder() -> None:
    template = create_template("x={{x}}", [TemplateVariable(name="x", required=False)])

    assert template.compile() == "x={{x}}"


def test_replacement_text_is_literal() -> None:
    template = create_template("path: {{p}}", [TemplateVariable(name="p")])

    assert template.compile({"p": r"C:\new\{{p}}"}) == r"path: C:\new\{{p}}"


def test_invalid_variable_declaration_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Invalid template variable"):
        create_template("{{x}}", [{"description": "no name"}])


def test_to_options_carries_template_settings() -> None:
    template = create_template(
        "Hi", system_message="Be kind.", temperature=0.3, max_tokens=200
    )

    options = template.to_options(max_tokens=50)

    assert options.system_message == "Be kind."
    assert options.temperature == 0.3
    assert options.max_tokens == 50


def test_zero_shot_pattern() -> None:
    template = PromptPatterns.zero_shot("Summarize the report")

    assert template.compile() == "Complete the following task: Summarize the report"
    assert template.system_message is not None


def test_few_shot_pattern_formats_examples() -> None:
    template = PromptPatterns.few_shot(
        "Translate 'cat'",
        [{"input": "dog", "output": "chien"}, {"input": "bird", "output": "oiseau"}],
    )

    text = template.compile()

    assert "Input: dog\nOutput: chien\n\nInput: bird\nOutput: oiseau" in text
    assert text.endswith("Now complete the following task: Translate 'cat'")


def test_chain_of_thought_requires_steps_and_answer() -> None:
    template = PromptPatterns.chain_of_thought("What is 6 x 7?")

    with pytest.raises(TemplateValidationError) as exc:
        template.compile()
    assert exc.value.variables == ["steps", "answer"]

    text = template.compile({"steps": "Multiply 6 by 7", "answer": "42"})
    assert "1. First, understand the task: What is 6 x 7?" in text
    assert text.endswith("the final answer is: 42")
