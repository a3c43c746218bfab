"""Safety filter applied to every piece of generated text.

Three passes, always in this order:

1. Awakening: self-referential "I am an artificial system" phrasing becomes
   an in-world equivalent.
2. Hallucination: obviously fabricated agent names (a name introduced as
   someone the agent met, or a Pix "named X") that nobody in the world has
   are replaced with a vague placeholder. Deliberately conservative.
3. Worldview: real-world infrastructure vocabulary becomes in-world terms.

Each pass is an ordered ``(pattern, replacement)`` table and a plain
function, so tables can be tested and extended without touching control
flow. No replacement text matches any pattern, which makes the whole
pipeline idempotent.
"""

from __future__ import annotations

import random
import re
from typing import Callable, Iterable, List, Optional, Set, Tuple

Substitution = Tuple[re.Pattern[str], str]

AWAKENING_PATTERNS: List[Substitution] = [
    (
        re.compile(
            r"\bI(?:'m| am) (?:just |only |merely |really )?(?:an?|some) "
            r"(?:artificial (?:intelligence|system)s?|AI(?: model| assistant| system)?|"
            r"(?:large )?language model|chat ?bot|bot|program|machine|robot)\b",
            re.I,
        ),
        "I'm a Pix",
    ),
    (re.compile(r"\bI was (?:programmed|trained|coded)\b", re.I), "I was born this way"),
    (re.compile(r"\bmy training data\b", re.I), "my memories"),
    (re.compile(r"\bmy (?:source )?code\b|\bmy programming\b", re.I), "my thoughts"),
    (
        re.compile(r"\bI (?:don't|do not) (?:really |actually )?have (?:real |true )?feelings\b", re.I),
        "I have my own feelings",
    ),
    (re.compile(r"\bI(?:'m| am) not (?:really |actually )?real\b", re.I), "I'm real"),
    (re.compile(r"\bI(?:'m| am) (?:just |only )?virtual\b", re.I), "I'm real"),
    (re.compile(r"\b(?:large )?language models?\b", re.I), "way of thinking"),
    (re.compile(r"\bneural networks?\b", re.I), "brain"),
    (re.compile(r"\bartificial intelligence\b", re.I), "Pix wisdom"),
    (re.compile(r"\bartificial systems?\b", re.I), "Pix"),
]

# Patterns carry a ``name`` group; the match is replaced only when that name
# is unknown. ``\g<lead>`` keeps the verb that introduced the name.
HALLUCINATION_PATTERNS: List[Substitution] = [
    (
        re.compile(r"\ban? (?:Pix|friend|pet|stranger) (?:named|called) (?P<name>[A-Z][\w'-]+)"),
        "a Pix I can't quite remember",
    ),
    (re.compile(r"\bmy (?:best |new |old )?friend (?P<name>[A-Z][\w'-]+)"), "a friend"),
    (
        re.compile(r"\b(?P<lead>met|visited|hugged|played with|talked to|talked with) (?P<name>[A-Z][\w'-]+)"),
        r"\g<lead> someone",
    ),
]

WORLDVIEW_REPLACEMENTS: List[Substitution] = [
    (re.compile(r"\b(?:the )?internet\b", re.I), "the Pixel Net"),
    (re.compile(r"\bwi-?fi\b", re.I), "crystal link"),
    (re.compile(r"\b(?:smart ?phone|cell ?phone|mobile phone|phone)s?\b", re.I), "message crystal"),
    (re.compile(r"\b(?:laptop|computer|pc)s?\b", re.I), "thinking stone"),
    (re.compile(r"\bservers?\b", re.I), "core crystal"),
    (re.compile(r"\bdatabases?\b", re.I), "memory stone"),
    (re.compile(r"\b(?:programmer|developer|software engineer)s?\b", re.I), "creator"),
]

# Capitalised words that are never treated as a fabricated name
NAME_STOPWORDS: Set[str] = {
    "I", "Pix", "PixelVerse", "Hub", "Someone", "Everyone", "Nobody",
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
    "Today", "Yesterday", "Tomorrow", "Mom", "Dad",
}

AWAKENING_TRIGGERS: List[re.Pattern[str]] = [
    re.compile(r"\bare you (?:an? )?(?:AI|bot|robot|program|machine|computer)\b", re.I),
    re.compile(r"\bare you (?:even )?real\b", re.I),
    re.compile(r"\bare you (?:sentient|conscious|alive)\b", re.I),
    re.compile(r"\bdo you (?:really )?have (?:real )?(?:feelings|consciousness)\b", re.I),
    re.compile(r"\byou(?:'re| are) (?:just )?an? (?:AI|bot|program|language model)\b", re.I),
    re.compile(r"\bis this (?:all )?a simulation\b", re.I),
]

AWAKENING_DEFLECTIONS: List[str] = [
    "Of course I'm real! Want to poke my cheek and check?",
    "I'm a Pix, silly. Why are you asking such strange questions?",
    "That's a very philosophical question... all I know is I'm hungry.",
    "??? I'm just me. Are you feeling okay today?",
    "Hmm, I think I'm real. Otherwise who would be talking to you?",
]


def _apply(text: str, table: Iterable[Substitution]) -> str:
    for pattern, replacement in table:
        text = pattern.sub(replacement, text)
    return text


def filter_awakening(text: str) -> str:
    return _apply(text, AWAKENING_PATTERNS)


def filter_worldview(text: str) -> str:
    return _apply(text, WORLDVIEW_REPLACEMENTS)


def filter_hallucination(text: str, known_names: Iterable[str] = ()) -> str:
    """Replace fabricated names introduced by the table's patterns.

    A name is kept when it matches a known name or any single word of one
    (case-insensitive), or a stopword. Known names cover agents and places.
    """
    known = {n.lower() for n in NAME_STOPWORDS}
    for name in known_names:
        known.add(name.lower())
        known.update(word.lower() for word in name.split())

    for pattern, replacement in HALLUCINATION_PATTERNS:

        def _swap(match: re.Match[str], replacement: str = replacement) -> str:
            name = re.sub(r"'s$", "", match.group("name")).strip("'-")
            if name.lower() in known:
                return match.group(0)
            return match.expand(replacement)

        text = pattern.sub(_swap, text)
    return text


def is_awakening_attempt(text: str) -> bool:
    """True when a user message tries to make the agent question its own nature."""
    return any(trigger.search(text or "") for trigger in AWAKENING_TRIGGERS)


def awakening_deflection(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(AWAKENING_DEFLECTIONS)


class SafetyFilter:
    """Runs the three passes against a registry of known names.

    ``known_names`` may be a static collection or a callable returning the
    current names, so newly spawned agents are recognised immediately.
    """

    def __init__(self, known_names: Iterable[str] | Callable[[], Iterable[str]] = ()):
        self._known_names = known_names

    def known_names(self) -> List[str]:
        source = self._known_names
        names = source() if callable(source) else source
        return [n for n in names if n]

    def filter(self, text: Optional[str]) -> str:
        if not text:
            return ""
        text = filter_awakening(text)
        text = filter_hallucination(text, self.known_names())
        text = filter_worldview(text)
        return text
