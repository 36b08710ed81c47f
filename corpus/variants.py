"""Content variant parsing and selection.

A node's source text holds a base rendering followed by optional alternate
sections introduced by delimiters:

    ---[3]---            eligible once the node has been visited 3 times
    ---after-algorithm---  named section, chosen by journey context

Parsing keeps section bodies exactly as authored so that the base plus all
bodies, in source order, reproduces the source minus its delimiters.
Whitespace is trimmed only when a section is selected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any


logger = logging.getLogger(__name__)

DELIMITER = re.compile(r"---(?:\[(\d+)\]|([A-Za-z0-9_-]+))---")

BASE_KEY = "base"
RECURSIVE_AWARENESS_KEY = "recursive-awareness"
CHARACTER_FOCUS_KEY = "character-focus"
CYCLICAL_PATTERN_KEY = "cyclical-pattern"

BLEED_SECTIONS = {
    "Algorithm": "after-algorithm",
    "Archaeologist": "after-archaeologist",
    "LastHuman": "after-last-human",
}

ATTRACTOR_SECTIONS = {
    "recursion-pattern": "recursion-pattern-engaged",
    "recursive-loop": "recursion-pattern-engaged",
    "memory-fragment": "memory-fragment-engaged",
    "memory-artifact": "memory-fragment-engaged",
    "quantum-perception": "quantum-awareness",
    "quantum-uncertainty": "quantum-awareness",
}


@dataclass(frozen=True)
class Section:
    key: str
    body: str
    min_visits: int | None = None


@dataclass(frozen=True)
class EnhancedContent:
    base: str
    sections: tuple[Section, ...] = ()

    def section(self, key: str) -> Section | None:
        """Return the last section authored under ``key``."""
        found = None
        for section in self.sections:
            if section.key == key:
                found = section
        return found

    def has(self, key: str) -> bool:
        return self.section(key) is not None

    def text(self, key: str) -> str:
        if key == BASE_KEY:
            return self.base.strip()
        section = self.section(key)
        if section is None:
            raise KeyError(key)
        return section.body.strip()

    def visit_thresholds(self) -> list[int]:
        return sorted(
            {s.min_visits for s in self.sections if s.min_visits is not None}, reverse=True
        )

    def reconstruct(self) -> str:
        return self.base + "".join(section.body for section in self.sections)


@dataclass(frozen=True)
class VariantContext:
    visit_count: int = 0
    node_character: str | None = None
    last_visited_character: str | None = None
    recent_path: tuple[str, ...] = ()
    character_sequence: tuple[str, ...] = ()
    attractors_engaged: dict[str, int] = field(default_factory=dict)
    recursive_awareness: float = 0.0


def parse(source: str) -> EnhancedContent:
    """Split ``source`` into its base text and delimited sections."""
    pieces = DELIMITER.split(source)
    # re.split yields: text, (digits, name), text, (digits, name), text, ...
    base = pieces[0]
    sections = []
    for i in range(1, len(pieces), 3):
        digits, name, body = pieces[i], pieces[i + 1], pieces[i + 2]
        if digits is not None:
            sections.append(Section(key=f"[{int(digits)}]", body=body, min_visits=int(digits)))
        else:
            sections.append(Section(key=name, body=body))
    return EnhancedContent(base=base, sections=tuple(sections))


def recursive_awareness(path: list[str] | tuple[str, ...]) -> float:
    """Share of visits that returned to an already-seen node."""
    if not path:
        return 0.0
    return 1.0 - len(set(path)) / len(path)


def build_context(node_state: Any, reader: Any, nodes: dict | None = None) -> VariantContext:
    """Derive the selection context for ``node_state`` from the reader's journey.

    ``node_state`` is a NodeDefinition or anything carrying one as
    ``definition``; ``reader`` is a ReaderState. The last visited character
    is the one of the path entry before the current visit.
    """
    node = getattr(node_state, "definition", node_state)
    visits = reader.detailed_visits
    if len(visits) >= 2:
        previous = visits[-2].character
    elif len(reader.sequence) >= 2 and nodes and reader.sequence[-2] in nodes:
        previous = nodes[reader.sequence[-2]].character
    else:
        previous = None
    return VariantContext(
        visit_count=reader.visit_count(node.id),
        node_character=node.character,
        last_visited_character=previous,
        recent_path=tuple(reader.recent_path(5)),
        character_sequence=tuple(v.character for v in visits[-5:]),
        attractors_engaged=dict(reader.attractor_engagements),
        recursive_awareness=recursive_awareness(reader.sequence),
    )


def _journey_section(context: VariantContext) -> str | None:
    recent = context.character_sequence[-3:]
    if len(recent) == 3 and len(set(recent)) == 1:
        return CHARACTER_FOCUS_KEY
    path = context.recent_path[-3:]
    if len(path) == 3 and path[0] == path[2] and path[0] != path[1]:
        return CYCLICAL_PATTERN_KEY
    return None


def select_key(
    content: EnhancedContent,
    context: VariantContext,
    recursive_threshold: float = 0.5,
    attractor_threshold: int = 3,
) -> str:
    """Return the key of the section to display, or ``"base"``."""
    last = context.last_visited_character
    if last and context.node_character and last != context.node_character:
        key = BLEED_SECTIONS.get(last)
        if key and content.has(key):
            return key

    if context.recursive_awareness > recursive_threshold and content.has(RECURSIVE_AWARENESS_KEY):
        return RECURSIVE_AWARENESS_KEY

    key = _journey_section(context)
    if key and content.has(key):
        return key

    for attractor in sorted(context.attractors_engaged):
        key = ATTRACTOR_SECTIONS.get(attractor)
        if key and context.attractors_engaged[attractor] > attractor_threshold and content.has(key):
            return key

    for threshold in content.visit_thresholds():
        if context.visit_count >= threshold:
            return f"[{threshold}]"

    return BASE_KEY


def select(
    content: EnhancedContent,
    context: VariantContext,
    recursive_threshold: float = 0.5,
    attractor_threshold: int = 3,
) -> str:
    key = select_key(content, context, recursive_threshold, attractor_threshold)
    logger.debug("Selected variant %s (visit %d)", key, context.visit_count)
    return content.text(key)
