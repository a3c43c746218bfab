"""Action grammar: what a generated decision is allowed to say.

Five action forms exist, in precedence order: speak, move, broadcast, act,
think. Text is parsed in three stages:

1. Structured: a JSON object validated against the ``Decision`` union
   (discriminated on ``kind``).
2. Tagged: ``[say] Name: message``, ``[go] place``, ``[broadcast] text``,
   ``[act] description``, ``[think] thought``. The first form that matches
   anywhere in the text wins, in the precedence order above.
3. Fallback: anything else becomes a free-form ``act`` with the whole text,
   so no generation result is ever dropped.
"""

from __future__ import annotations

import json
import re
from typing import Annotated, Any, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

ActionKind = Literal["speak", "move", "broadcast", "act", "think"]
ParseSource = Literal["structured", "tagged", "fallback"]

MAX_CONTENT_CHARS = 200


class SpeakDecision(BaseModel):
    kind: Literal["speak"] = "speak"
    target: str = Field(..., min_length=1, description="Name of a nearby agent")
    message: str = Field(..., min_length=1)


class MoveDecision(BaseModel):
    kind: Literal["move"] = "move"
    destination: str = Field(..., min_length=1, description="Name or id of a place")


class BroadcastDecision(BaseModel):
    kind: Literal["broadcast"] = "broadcast"
    message: str = Field(..., min_length=1)


class ActDecision(BaseModel):
    kind: Literal["act"] = "act"
    description: str = Field(..., min_length=1)


class ThinkDecision(BaseModel):
    kind: Literal["think"] = "think"
    thought: str = Field(..., min_length=1)


Decision = Annotated[
    Union[SpeakDecision, MoveDecision, BroadcastDecision, ActDecision, ThinkDecision],
    Field(discriminator="kind"),
]

_DECISION_ADAPTER: TypeAdapter[Any] = TypeAdapter(Decision)


class DecisionResponse(BaseModel):
    """Response model for structured generation calls."""

    decision: Decision


class ParsedAction(BaseModel):
    """One recognised action, whichever stage recognised it."""

    kind: ActionKind
    source: ParseSource
    target: Optional[str] = None
    content: str = ""
    raw: str = ""


# Ordered by precedence; first pattern with a match wins
TAG_PATTERNS: List[Tuple[ActionKind, re.Pattern[str]]] = [
    (
        "speak",
        re.compile(r"\[(?:say|speak|talk)\]\s*(?P<target>[^:\n\[\]]+?)\s*:\s*(?P<content>\S.*)", re.I),
    ),
    ("move", re.compile(r"\[(?:go|move)\]\s*(?:to\s+)?(?P<content>\S.*)", re.I)),
    ("broadcast", re.compile(r"\[(?:broadcast|shout)\]\s*(?P<content>\S.*)", re.I)),
    ("act", re.compile(r"\[(?:act|action|do)\]\s*(?P<content>\S.*)", re.I)),
    ("think", re.compile(r"\[(?:think|thought)\]\s*(?P<content>\S.*)", re.I)),
]

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.I)


def _clip(text: str) -> str:
    return text.strip()[:MAX_CONTENT_CHARS]


def _extract_json(text: str) -> Optional[Any]:
    stripped = _FENCE.sub("", text.strip())
    start, end = stripped.find("{"), stripped.rfind("}")
    if start == -1 or end <= start:
        return None
    try:
        return json.loads(stripped[start : end + 1])
    except json.JSONDecodeError:
        return None


def parse_structured(text: str) -> Optional[ParsedAction]:
    """Validate a JSON decision. Returns ``None`` when the text is not a valid one."""
    payload = _extract_json(text)
    if isinstance(payload, dict) and isinstance(payload.get("decision"), dict):
        payload = payload["decision"]
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("kind"), str):
        payload = {**payload, "kind": payload["kind"].strip().lower()}
    try:
        decision = _DECISION_ADAPTER.validate_python(payload)
    except ValidationError:
        return None
    return from_decision(decision, raw=text)


def from_decision(decision: BaseModel, *, raw: str = "") -> ParsedAction:
    target: Optional[str] = None
    if isinstance(decision, SpeakDecision):
        target, content = decision.target.strip(), decision.message
    elif isinstance(decision, MoveDecision):
        target, content = decision.destination.strip(), decision.destination
    elif isinstance(decision, BroadcastDecision):
        content = decision.message
    elif isinstance(decision, ActDecision):
        content = decision.description
    elif isinstance(decision, ThinkDecision):
        content = decision.thought
    else:
        raise TypeError(f"Unsupported decision type: {type(decision).__name__}")
    return ParsedAction(
        kind=decision.kind, source="structured", target=target, content=_clip(content), raw=raw
    )


def parse_tagged(text: str) -> Optional[ParsedAction]:
    """Match the tag grammar. Returns ``None`` when no tag is present."""
    for kind, pattern in TAG_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        content = _clip(match.group("content"))
        target: Optional[str] = None
        if kind == "speak":
            target = match.group("target").strip()
        elif kind == "move":
            target = content.rstrip(".!")
        return ParsedAction(kind=kind, source="tagged", target=target, content=content, raw=text)
    return None


def parse_decision(text: Optional[str]) -> ParsedAction:
    """Parse generated text into exactly one action. Never raises."""
    text = text or ""
    parsed = parse_structured(text) or parse_tagged(text)
    if parsed is not None:
        return parsed
    return ParsedAction(kind="act", source="fallback", content=_clip(text), raw=text)


__all__ = [
    "ActionKind",
    "ActDecision",
    "BroadcastDecision",
    "Decision",
    "DecisionResponse",
    "MoveDecision",
    "ParsedAction",
    "SpeakDecision",
    "TAG_PATTERNS",
    "ThinkDecision",
    "from_decision",
    "parse_decision",
    "parse_structured",
    "parse_tagged",
]
