"""Prompt templates with ``{{variable}}`` placeholders and canned patterns."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
import re
from typing import Any

from pydantic import BaseModel, ValidationError

from modelgate.errors import ConfigurationError, TemplateValidationError
from modelgate.options import TextGenerationOptions


class TemplateVariable(BaseModel):
    """A placeholder declared by a template."""

    name: str
    description: str | None = None
    required: bool = True
    default: Any = None


@dataclass(frozen=True)
class PromptTemplate:
    template: str
    variables: list[TemplateVariable] = field(default_factory=list)
    system_message: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None

    def compile(self, values: Mapping[str, Any] | None = None) -> str:
        return compile_template(self, values)

    def to_options(self, **overrides: Any) -> TextGenerationOptions:
        """Return generation options carrying this template's settings."""
        settings: dict[str, Any] = {
            "system_message": self.system_message,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        settings.update(overrides)
        return TextGenerationOptions(**settings)


def create_template(
    template: str,
    variables: Sequence[TemplateVariable | Mapping[str, Any]] = (),
    system_message: str | None = None,
    *,
    temperature: float | None = None,
    max_tokens: int | None = None,
) -> PromptTemplate:
    """Build a template, validating each variable declaration."""
    parsed = []
    for variable in variables:
        if isinstance(variable, TemplateVariable):
            parsed.append(variable)
            continue
        try:
            parsed.append(TemplateVariable.model_validate(variable))
        except ValidationError as e:
            raise ConfigurationError(
                "Invalid template variable declaration",
                hint=str(e),
            ) from e
    return PromptTemplate(
        template=template,
        variables=parsed,
        system_message=system_message,
        temperature=temperature,
        max_tokens=max_tokens,
    )


def compile_template(
    template: PromptTemplate, values: Mapping[str, Any] | None = None
) -> str:
    """Substitute ``{{name}}`` placeholders.

    A caller value wins over the variable's default. Placeholders with no
    declared variable are left as-is.

    Raises:
        TemplateValidationError: If a required variable has neither a value
            nor a default. ``variables`` lists every missing name.
    """
    values = values or {}
    missing = [
        v.name
        for v in template.variables
        if v.required and values.get(v.name) is None and v.default is None
    ]
    if missing:
        raise TemplateValidationError(
            "Missing required variables",
            missing,
            hint=f"Provide values for: {', '.join(missing)}",
        )

    result = template.template
    for variable in template.variables:
        value = values.get(variable.name)
        if value is None:
            value = variable.default
        if value is None:
            continue
        pattern = re.compile(r"\{\{" + re.escape(variable.name) + r"\}\}")
        result = pattern.sub(lambda _m, text=str(value): text, result)
    return result


class PromptPatterns:
    """Ready-made templates for common prompting styles."""

    @staticmethod
    def zero_shot(task: str) -> PromptTemplate:
        return create_template(
            "Complete the following task: {{task}}",
            [TemplateVariable(name="task", description="Task to complete", default=task)],
            "You are a helpful assistant that completes tasks accurately.",
        )

    @staticmethod
    def few_shot(task: str, examples: Sequence[Mapping[str, str]]) -> PromptTemplate:
        """Template showing ``examples`` (``input``/``output`` pairs) before ``task``."""
        formatted = "\n\n".join(
            f"Input: {example['input']}\nOutput: {example['output']}"
            for example in examples
        )
        return create_template(
            "Here are some examples:\n{{examples}}\n\n"
            "Now complete the following task: {{task}}",
            [
                TemplateVariable(
                    name="examples",
                    description="Examples formatted as input -> output pairs",
                    default=formatted,
                ),
                TemplateVariable(name="task", description="Task to complete", default=task),
            ],
            "You are a helpful assistant that learns from examples.",
        )

    @staticmethod
    def chain_of_thought(task: str) -> PromptTemplate:
        """Template whose ``steps`` and ``answer`` must be supplied at compile time."""
        return create_template(
            "Let's solve this step by step:\n"
            "1. First, understand the task: {{task}}\n"
            "2. {{steps}}\n"
            "3. Therefore, the final answer is: {{answer}}",
            [
                TemplateVariable(name="task", description="Task to solve", default=task),
                TemplateVariable(name="steps", description="Step-by-step reasoning process"),
                TemplateVariable(name="answer", description="Final answer based on reasoning"),
            ],
            "You are a helpful assistant that explains your reasoning step by step.",
        )
