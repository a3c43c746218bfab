import pytest

from pixelverse.actions import parse_decision
from pixelverse.prompts import (
    DEFAULT_PROMPTS,
    PromptLibrary,
    PromptTemplate,
    RenderedPrompt,
    render_prompt,
)


def test_placeholders_fill_system_and_user():
    tmpl = PromptTemplate(name="t", system="You are {{agent_name}}.", user="Hi {{agent_name}}, {{mood}}%")

    rendered = render_prompt(tmpl, {"agent_name": "Mochi", "mood": 70}, include_default=False)

    assert rendered.system == "You are Mochi."
    assert rendered.user == "Hi Mochi, 70%"


def test_missing_values_leave_placeholder_and_none_renders_empty():
    tmpl = PromptTemplate(name="t", system="S", user="{{known}}|{{unknown}}")

    rendered = render_prompt(tmpl, {"known": None}, include_default=False)

    assert rendered.user == "|{{unknown}}"


def test_text_joins_non_empty_parts():
    assert RenderedPrompt(system="  sys ", user="user").text == "sys\n\nuser"
    assert RenderedPrompt(system="", user="user").text == "user"


def test_default_template_is_used_when_none_given():
    rendered = render_prompt(None, {"agent_name": "Tofu"})

    assert rendered.system.startswith("You are Tofu, a Pix")
    assert "[say] Name:" in rendered.user


def test_defaults_disabled_without_template_raises():
    with pytest.raises(ValueError):
        render_prompt(None, {}, include_default=False)


def test_library_register_and_get():
    library = PromptLibrary()
    library.register(PromptTemplate(name="hello", system="S", user="U"))

    assert library.get("hello").user == "U"
    with pytest.raises(KeyError):
        library.get("missing")


def test_structured_template_examples_are_valid_decisions():
    user = DEFAULT_PROMPTS.get("decide_structured").user
    examples = [line for line in user.splitlines() if line.startswith('{"')]

    assert len(examples) == 5
    assert {parse_decision(line).kind for line in examples} == {
        "speak",
        "move",
        "broadcast",
        "act",
        "think",
    }
    assert all(parse_decision(line).source == "structured" for line in examples)


def test_builtin_templates_are_registered():
    assert {"decide", "decide_structured", "user_chat", "reflect"} <= set(DEFAULT_PROMPTS.templates)
