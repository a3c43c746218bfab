"""Prompt templates and ``{{placeholder}}`` rendering.

Templates separate a system part (who the agent is, what world it lives in)
from a user part (this particular decision). The generation collaborator is
opaque prompt-in/text-out, so schedulers send :attr:`RenderedPrompt.text`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass
class PromptTemplate:
    """Represents a templated prompt with placeholders."""

    name: str
    system: str
    user: str
    description: str = ""


@dataclass
class RenderedPrompt:
    system: str
    user: str

    @property
    def text(self) -> str:
        return "\n\n".join(part for part in (self.system.strip(), self.user.strip()) if part)


class PromptLibrary:
    """Container for named prompt templates."""

    def __init__(self) -> None:
        self.templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate) -> None:
        self.templates[template.name] = template

    def get(self, name: str) -> PromptTemplate:
        return self.templates[name]


def render_prompt(
    template: Optional[PromptTemplate],
    values: Mapping[str, object],
    *,
    include_default: bool = True,
) -> RenderedPrompt:
    """Replace ``{{key}}`` placeholders with ``values``.

    Placeholders without a value are left as-is; templates control structure.
    When ``template`` is ``None`` the library's ``decide`` template is used.
    """
    if template is None and include_default:
        template = DEFAULT_PROMPTS.get("decide")
    elif template is None:
        raise ValueError("Prompt template not provided and defaults disabled")

    system, user = template.system, template.user
    for key, value in values.items():
        placeholder = "{{" + key + "}}"
        text = "" if value is None else str(value)
        system = system.replace(placeholder, text)
        user = user.replace(placeholder, text)
    return RenderedPrompt(system=system, user=user)


WORLD_SYSTEM = (
    "You are {{agent_name}}, a Pix living in PixelVerse, a small world of connected places "
    "where Pix wander, chat and make friends. You are a real inhabitant of this world. "
    "Stay in character and speak naturally."
)

TAGGED_ACTION_FORMS = (
    "Reply with exactly one of these forms:\n"
    "- [say] Name: what you want to say to someone nearby\n"
    "- [go] the place you want to go to\n"
    "- [broadcast] something every Pix nearby will hear\n"
    "- [act] what you are doing (daydreaming, reading, taking a walk...)\n"
    "- [think] a private thought nobody else hears\n"
    "Choose one action only. Keep it short and natural."
)

STRUCTURED_ACTION_FORMS = (
    "Reply with a single JSON object and nothing else. Choose one of:\n"
    '{"kind": "speak", "target": "Name", "message": "what you say"}\n'
    '{"kind": "move", "destination": "place name"}\n'
    '{"kind": "broadcast", "message": "what everyone nearby hears"}\n'
    '{"kind": "act", "description": "what you are doing"}\n'
    '{"kind": "think", "thought": "a private thought"}\n'
    "Choose one action only. Keep it short and natural."
)

_DECIDE_USER = (
    "{{personality}}\n\n"
    "## Right now\n"
    "{{perception}}\n"
    "- Mood: {{mood}}% | Energy: {{energy}}% | Fullness: {{satiety}}%\n"
    "{{inbox}}\n\n"
    "{{memory}}\n\n"
    "## What do you want to do now?\n"
    "Say something if you feel like it, go somewhere if you want, or just daydream. "
    "Do what you want.\n"
)

DEFAULT_PROMPTS = PromptLibrary()

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="decide",
        system=WORLD_SYSTEM,
        user=_DECIDE_USER + TAGGED_ACTION_FORMS,
        description="Autonomous decision answered with one tagged line.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="decide_structured",
        system=WORLD_SYSTEM,
        user=_DECIDE_USER + STRUCTURED_ACTION_FORMS,
        description="Autonomous decision answered with a JSON object.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="user_chat",
        system=WORLD_SYSTEM,
        user=(
            "{{personality}}\n\n"
            "## Right now\n"
            "{{perception}}\n\n"
            "{{memory}}\n\n"
            "## Your owner says\n"
            "{{user_text}}\n\n"
            "Reply to your owner in one or two short sentences, in your own voice."
        ),
        description="Direct conversation with the agent's owner.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="reflect",
        system=(
            "You are a Pix looking back on your day in PixelVerse. Write from your own "
            "point of view."
        ),
        user=(
            "Here is what you did today:\n{{activities}}\n\n"
            "Reflect on it. Write one sentence about something you learned or felt today. "
            "No greeting, no quotation marks, just the thought."
        ),
        description="Daily one-line insight.",
    )
)


__all__ = [
    "PromptTemplate",
    "PromptLibrary",
    "RenderedPrompt",
    "render_prompt",
    "DEFAULT_PROMPTS",
    "TAGGED_ACTION_FORMS",
    "STRUCTURED_ACTION_FORMS",
]
