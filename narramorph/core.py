"""Transformation engine: gathers, orders and applies text transformations.

Per node view the engine merges three sources, in this order:

1. character bleed effects (high priority, capped by ``max_bleed``)
2. journey transformations derived from reading patterns (high, ``max_journey``)
3. authored rules whose conditions hold (medium by default, ``max_rule``)

The merged list is stably sorted by priority, deduplicated by
(type, selector) keeping the first occurrence, and truncated to
``max_transformations``.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any

from corpus.models import (
    PRIORITY_RANK,
    Condition,
    NodeDefinition,
    TextTransformation,
    TransformationRule,
)
from narrative.bleed import calculate_bleed_effects, sentences
from narrative.path_analyzer import ATTRACTOR_THEME_GROUPS, PathAnalyzer, ReadingPattern
from narrative.state import ReaderState

from .cache import EngineCaches, fingerprint
from .conditions import ConditionEvaluator
from .config import EnginePolicy
from .selectors import MatcherRegistry
from .transforms import ApplicationReport, apply_with_report


logger = logging.getLogger(__name__)

_LOOP_ANCHORS = ("pattern", "again", "return", "loop", "repeat")
_PERSPECTIVE_ANCHORS = ("I", "perspective", "thought")
_TIME_ANCHORS = ("moment", "now", "time", "then")


def _definition(node_state: Any) -> NodeDefinition:
    return getattr(node_state, "definition", node_state)


def _anchor(content: str, words: tuple[str, ...]) -> str | None:
    """First of ``words`` found in ``content``, as written there."""
    for word in words:
        flags = 0 if word == "I" else re.IGNORECASE
        match = re.search(rf"\b{re.escape(word)}\b", content, flags)
        if match:
            return match.group(0)
    return None


def _intensity(strength: float) -> int:
    return max(1, min(5, math.ceil(strength * 5)))


class TransformationEngine:
    """Compute and apply the transformation list for a node view."""

    def __init__(self, config: dict | None = None, caches: EngineCaches | None = None):
        self.policy = EnginePolicy.from_config(config)
        self.caches = caches if caches is not None else EngineCaches.from_policy(self.policy)
        self.analyzer = PathAnalyzer(self.policy.analysis, cache=self.caches.analysis)
        self.evaluator = ConditionEvaluator(self.analyzer, cache=self.caches.conditions)
        self.registry = MatcherRegistry(self.caches.selectors)

    def reset(self) -> None:
        self.caches.reset()

    # -- conditions -------------------------------------------------------

    def evaluate(
        self,
        condition: Condition,
        reader: ReaderState,
        node_state: Any,
        nodes: dict[str, NodeDefinition] | None = None,
    ) -> bool:
        return self.evaluator.evaluate(condition, reader, _definition(node_state), nodes)

    def evaluate_rules(
        self,
        rules: tuple[TransformationRule, ...] | list[TransformationRule],
        reader: ReaderState,
        node_state: Any,
        nodes: dict[str, NodeDefinition] | None = None,
    ) -> list[TextTransformation]:
        """Transformations of every rule whose condition holds, in rule order."""
        node = _definition(node_state)
        collected: list[TextTransformation] = []
        for index, rule in enumerate(rules):
            key = (node.id, index, rule.condition.key(), reader.fingerprint())
            matched = self.caches.rules.get_or_compute(
                key,
                lambda rule=rule: tuple(rule.transformations)
                if self.evaluator.evaluate(rule.condition, reader, node, nodes)
                else (),
            )
            collected.extend(matched)
        return collected

    # -- journey transformations -------------------------------------------

    def journey_transformations(
        self,
        content: str,
        node_state: Any,
        reader: ReaderState,
        patterns: list[ReadingPattern],
    ) -> list[TextTransformation]:
        node = _definition(node_state)
        found = sentences(content)
        result: list[TextTransformation] = []

        loop = next((p for p in patterns if p.type == "sequence" and p.strength >= 0.5), None)
        if loop:
            selector = _anchor(content, _LOOP_ANCHORS) or (found[-1] if found else None)
            if selector:
                description = loop.description.replace(
                    "recursive navigation", "recursive navigation detected"
                )
                result.append(
                    TextTransformation(
                        type="metaComment",
                        selector=selector,
                        priority="high",
                        intensity=_intensity(loop.strength),
                        replacement=description,
                        comment_style="marginalia",
                    )
                )

        focus = next(
            (
                p
                for p in patterns
                if p.type == "character" and p.strength >= 0.6 and len(p.characters) == 1
            ),
            None,
        )
        if focus:
            selector = _anchor(content, _PERSPECTIVE_ANCHORS)
            if selector:
                result.append(
                    TextTransformation(
                        type="emphasize",
                        selector=selector,
                        priority="high",
                        intensity=_intensity(focus.strength),
                        emphasis="glitch",
                    )
                )
            if focus.characters[0] != node.character and found:
                result.append(
                    TextTransformation(
                        type="metaComment",
                        selector=found[0],
                        priority="high",
                        intensity=_intensity(focus.strength),
                        replacement=f"{focus.characters[0]} perspective persists",
                        comment_style="inline",
                    )
                )

        temporal = self.analyzer.temporal_jumping(reader)
        if temporal.volatility > 0.5:
            selector = _anchor(content, _TIME_ANCHORS)
            if selector:
                result.append(
                    TextTransformation(
                        type="fragment",
                        selector=selector,
                        priority="high",
                        intensity=_intensity(temporal.volatility),
                        fragment_pattern="≈",
                        fragment_style="character",
                    )
                )

        theme = next(
            (p for p in patterns if p.type == "thematic" and p.strength >= 0.5 and p.attractors),
            None,
        )
        engagements = self.analyzer.attractor_engagement(reader)
        group = self.analyzer.dominant_theme(reader)
        if theme:
            attractor, strength = theme.attractors[0], theme.strength
        elif group:
            # strongest engaged attractor of the dominant theme group
            attractor = max(
                (a for a in ATTRACTOR_THEME_GROUPS[group] if a in engagements),
                key=lambda a: engagements[a].score,
            )
            strength = engagements[attractor].score / 100
        else:
            attractor = None
        if attractor:
            phrase = attractor.replace("-", " ")
            selector = _anchor(content, (phrase, phrase.split()[0]))
            if selector:
                engagement = engagements.get(attractor)
                score = engagement.score if engagement else 0.0
                result.append(
                    TextTransformation(
                        type="emphasize",
                        selector=selector,
                        priority="high",
                        intensity=5 if score > 75 else _intensity(strength),
                        emphasis="color" if score > 75 else "highlight",
                    )
                )
                note = f"strange attractor resonance: {phrase}"
                if group and attractor in ATTRACTOR_THEME_GROUPS[group]:
                    note += f" ({group} theme)"
                if engagement and engagement.trend == "rising":
                    note += " [amplifying]"
                result.append(
                    TextTransformation(
                        type="metaComment",
                        selector=selector,
                        priority="high",
                        intensity=_intensity(strength),
                        replacement=note,
                        comment_style="footnote",
                    )
                )

        return result

    # -- coordination ---------------------------------------------------------

    def calculate_all_transformations(
        self,
        content: str,
        node_state: Any,
        reader: ReaderState,
        nodes: dict[str, NodeDefinition],
    ) -> list[TextTransformation]:
        node = _definition(node_state)
        active = sorted(name for name, count in reader.attractor_engagements.items() if count)
        key = (
            fingerprint(content),
            node.id,
            node.character,
            reader.visit_count(node.id),
            tuple(reader.recent_path()),
            tuple(active),
            reader.fingerprint(),
        )
        return list(
            self.caches.master.get_or_compute(
                key, lambda: tuple(self._calculate(content, node, reader, nodes))
            )
        )

    def _calculate(self, content, node, reader, nodes) -> list[TextTransformation]:
        policy = self.policy
        bleed = [
            effect.transformation
            for effect in calculate_bleed_effects(node, reader, content=content)
        ][: policy.max_bleed]

        patterns = self.analyzer.analyze_path_patterns(reader, nodes)
        journey = self.journey_transformations(content, node, reader, patterns)[: policy.max_journey]

        authored = self.evaluate_rules(node.rules, reader, node, nodes)[: policy.max_rule]

        merged = sorted(bleed + journey + authored, key=lambda t: PRIORITY_RANK[t.priority])
        seen: set[tuple[str, str]] = set()
        result: list[TextTransformation] = []
        for transformation in merged:
            if transformation.dedupe_key in seen:
                continue
            seen.add(transformation.dedupe_key)
            result.append(transformation)
        result = result[: policy.max_transformations]

        logger.info(
            "%s: %d transformations (bleed=%d journey=%d rules=%d)",
            node.id,
            len(result),
            len(bleed),
            len(journey),
            len(authored),
        )
        return result

    # -- application -------------------------------------------------------------

    def apply_with_report(
        self, content: str, transformations: list[TextTransformation]
    ) -> ApplicationReport:
        return apply_with_report(content, transformations, self.registry)

    def apply(self, content: str, transformations: list[TextTransformation]) -> str:
        return self.apply_with_report(content, transformations).content

    def get_transformed_content(
        self,
        node_state: Any,
        reader: ReaderState,
        nodes: dict[str, NodeDefinition],
    ) -> str:
        original = node_state.original_content
        if original is None:
            raise ValueError(f"{_definition(node_state).id} has no original content yet")
        return self.apply(
            original, self.calculate_all_transformations(original, node_state, reader, nodes)
        )
