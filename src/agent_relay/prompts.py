"""Prompt composition: a rendered context block followed by opaque instructions."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping


CONTEXT_HEADER = "CONTEXT:"


@dataclass(frozen=True)
class Prompt:
    """
    A step prompt kept as two fields until it is rendered.

    ``instructions`` is static text and is never treated as a template: braces,
    dollar signs and percent signs in it are passed through untouched.
    """

    context: Dict[str, str] = field(default_factory=dict)
    instructions: str = ""

    def render_context(self) -> str:
        lines = [CONTEXT_HEADER]
        lines.extend(f"- {label}: {value}" for label, value in self.context.items())
        return "\n".join(lines)

    def render(self) -> str:
        return f"{self.render_context()}\n\n{self.instructions}"


def compose_prompt(context_fields: Mapping[str, str], instructions: str) -> Prompt:
    """Return a :class:`Prompt`, preserving the display order of *context_fields*."""
    return Prompt(context={str(k): str(v) for k, v in context_fields.items()}, instructions=instructions)


def build_prompt(context_fields: Mapping[str, str], instructions: str) -> str:
    """Render *context_fields* and *instructions* into the single prompt string sent to the agent."""
    return compose_prompt(context_fields, instructions).render()


__all__ = ["Prompt", "compose_prompt", "build_prompt", "CONTEXT_HEADER"]
