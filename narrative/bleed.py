"""Character bleed: the previous perspective leaking into the current node."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any
import zlib

from corpus.models import TextTransformation

from .state import ReaderState


logger = logging.getLogger(__name__)


_TECHNICAL_TERMS = (
    "system", "process", "data", "algorithm", "compute", "execute",
    "protocol", "interface", "network", "digital", "binary", "code",
)

_TIME_TERMS = (
    "past", "present", "future", "time", "when", "before", "after",
    "now", "then", "moment", "history", "ancient", "memory",
)

_EMOTIONAL_TERMS = (
    "feel", "remember", "love", "fear", "hope", "dream", "wish",
    "heart", "soul", "mind", "consciousness", "awareness", "experience",
)

_TEMPORAL_MARKERS = ("⟨t−1⟩", "⟨t+∞⟩", "⟨Δt: unstable⟩", "⟨timestamp lost⟩", "⟨t₀ ≠ t₀⟩")

_STRIKETHROUGH = "\u0336"

_SENTENCE = re.compile(r"[^.!?\n]+[.!?]?")
_WORD = re.compile(r"[A-Za-z][A-Za-z'-]{3,}")

MAX_SPECIFIC_EFFECTS = 2


@dataclass(frozen=True)
class CharacterBleedEffect:
    source_character: str
    target_character: str
    selector: str
    transformation: TextTransformation
    reason: str
    intensity: int


def _scaled(base: int, awareness: float) -> int:
    return max(1, min(5, int(base * (1.0 + awareness) + 0.5)))


def _first_term(content: str, terms: tuple[str, ...]) -> str | None:
    """Return the earliest vocabulary word in ``content``, as written there."""
    best = None
    for term in terms:
        match = re.search(rf"\b{term}\b", content, re.IGNORECASE)
        if match and (best is None or match.start() < best.start()):
            best = match
    return best.group(0) if best else None


def _repeated_word(content: str) -> str | None:
    seen: dict[str, str] = {}
    counts: dict[str, int] = {}
    for match in _WORD.finditer(content):
        word = match.group(0)
        lower = word.lower()
        seen.setdefault(lower, word)
        counts[lower] = counts.get(lower, 0) + 1
    for lower, word in seen.items():
        if counts[lower] > 1:
            return word
    return None


def sentences(content: str) -> list[str]:
    """Sentences longer than ten characters, in reading order."""
    return [s.strip() for s in _SENTENCE.findall(content) if len(s.strip()) > 10]


def _effect(
    source: str,
    target: str,
    transformation: TextTransformation,
    reason: str,
) -> CharacterBleedEffect:
    return CharacterBleedEffect(
        source_character=source,
        target_character=target,
        selector=transformation.selector,
        transformation=transformation,
        reason=reason,
        intensity=transformation.intensity or 1,
    )


def _algorithm_to_archaeologist(content, awareness, node_id):
    effects = []
    term = _first_term(content, _TECHNICAL_TERMS)
    if term:
        effects.append(
            (
                TextTransformation(
                    type="fragment",
                    selector=term,
                    priority="high",
                    intensity=_scaled(3, awareness),
                    fragment_pattern=_STRIKETHROUGH,
                    fragment_style="character",
                ),
                "analytical vocabulary struck through",
            )
        )
    found = sentences(content)
    if found:
        effects.append(
            (
                TextTransformation(
                    type="metaComment",
                    selector=found[-1],
                    priority="high",
                    intensity=_scaled(2, awareness),
                    replacement="data integrity compromised",
                    comment_style="marginalia",
                ),
                "integrity note in the margin",
            )
        )
    return effects


def _algorithm_to_last_human(content, awareness, node_id):
    effects = []
    word = _repeated_word(content)
    if word:
        effects.append(
            (
                TextTransformation(
                    type="emphasize",
                    selector=word,
                    priority="high",
                    intensity=_scaled(4, awareness),
                    emphasis="glitch",
                ),
                "repetition flagged as a pattern",
            )
        )
    found = sentences(content)
    if found:
        effects.append(
            (
                TextTransformation(
                    type="expand",
                    selector=found[-1],
                    priority="high",
                    intensity=_scaled(3, awareness),
                    replacement="[pattern recognized: recurrence in human signal]",
                    expand_style="inline",
                ),
                "pattern recognition overlay",
            )
        )
    return effects


def _archaeologist_to_algorithm(content, awareness, node_id):
    effects = []
    term = _first_term(content, _TIME_TERMS)
    if term:
        seed = zlib.crc32(f"{node_id}:{term}".encode("utf-8"))
        marker = _TEMPORAL_MARKERS[seed % len(_TEMPORAL_MARKERS)]
        effects.append(
            (
                TextTransformation(
                    type="expand",
                    selector=term,
                    priority="high",
                    intensity=_scaled(3, awareness),
                    replacement=marker,
                    expand_style="inline",
                ),
                "temporal marker on time vocabulary",
            )
        )
    found = sentences(content)
    if found:
        effects.append(
            (
                TextTransformation(
                    type="metaComment",
                    selector=found[-1],
                    priority="high",
                    intensity=_scaled(2, awareness),
                    replacement="chronological displacement detected",
                    comment_style="interlinear",
                ),
                "displacement note",
            )
        )
    return effects


def _last_human_to_any(content, awareness, node_id):
    effects = []
    term = _first_term(content, _EMOTIONAL_TERMS)
    if term:
        effects.append(
            (
                TextTransformation(
                    type="emphasize",
                    selector=term,
                    priority="high",
                    intensity=_scaled(2, awareness),
                    emphasis="fade",
                ),
                "emotional vocabulary fading in",
            )
        )
    found = sentences(content)
    if found:
        effects.append(
            (
                TextTransformation(
                    type="expand",
                    selector=found[-1],
                    priority="high",
                    intensity=_scaled(2, awareness),
                    replacement="(a memory surface, warm and fading)",
                    expand_style="append",
                ),
                "memory overlay",
            )
        )
    return effects


_TRANSITIONS = {
    ("Algorithm", "Archaeologist"): _algorithm_to_archaeologist,
    ("Algorithm", "LastHuman"): _algorithm_to_last_human,
    ("Archaeologist", "Algorithm"): _archaeologist_to_algorithm,
}


def _specific_effects(source: str, target: str):
    handler = _TRANSITIONS.get((source, target))
    if handler is None and source == "LastHuman":
        handler = _last_human_to_any
    return handler


def calculate_bleed_effects(
    node_state: Any,
    reader: ReaderState,
    content: str | None = None,
    awareness: float | None = None,
) -> list[CharacterBleedEffect]:
    """Return bleed effects for the visit in which the perspective just changed.

    ``node_state`` needs ``id`` and ``character``; ``content`` defaults to
    its ``original_content``.
    """
    visits = reader.detailed_visits
    if len(visits) < 2:
        return []
    previous, last = visits[-2], visits[-1]
    if last.node_id != node_state.id or previous.character == last.character:
        return []

    if content is None:
        content = getattr(node_state, "original_content", None) or ""
    if awareness is None:
        path = reader.sequence
        awareness = 1.0 - len(set(path)) / len(path) if path else 0.0

    source, target = previous.character, last.character
    effects: list[CharacterBleedEffect] = []

    handler = _specific_effects(source, target)
    if handler is not None:
        for transformation, reason in handler(content, awareness, node_state.id)[:MAX_SPECIFIC_EFFECTS]:
            effects.append(_effect(source, target, transformation, reason))

    found = sentences(content)
    if found:
        shifts = sum(1 for a, b in zip(visits, visits[1:]) if a.character != b.character)
        transformation = TextTransformation(
            type="metaComment",
            selector=found[0],
            priority="high",
            intensity=min(5, max(1, shifts // 2 + 1)),
            replacement=f"perspective shift: {source} → {target}",
            comment_style="marginalia",
        )
        effects.append(_effect(source, target, transformation, "perspective shift"))

    logger.debug("Bleed %s -> %s on %s: %d effects", source, target, node_state.id, len(effects))
    return effects
