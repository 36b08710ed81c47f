"""Evaluating authored rule conditions against the reader's journey."""

from __future__ import annotations

import logging
from typing import Any, Callable

from corpus.models import Condition, NodeDefinition
from narrative.path_analyzer import PathAnalyzer
from narrative.state import ReaderState

from .cache import FingerprintCache


logger = logging.getLogger(__name__)


class InsufficientData(Exception):
    """A predicate cannot be decided from the recorded journey."""


def _ids(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"expected a list of node ids, got {value!r}")
    return [str(item) for item in value]


def _contains_run(path: list[str], run: list[str]) -> bool:
    width = len(run)
    return any(path[i : i + width] == run for i in range(len(path) - width + 1))


class ConditionEvaluator:
    """Decides conditions; failures resolve to False with a warning."""

    def __init__(
        self,
        analyzer: PathAnalyzer | None = None,
        cache: FingerprintCache | None = None,
    ):
        self.analyzer = analyzer or PathAnalyzer()
        self._cache = cache
        self._predicates: dict[str, Callable[..., bool]] = {
            "visitCount": self._visit_count,
            "visitPattern": self._visit_pattern,
            "previouslyVisitedNodes": self._previously_visited,
            "strangeAttractorsEngaged": self._attractors_engaged,
            "temporalPosition": self._temporal_position,
            "endpointProgress": self._endpoint_progress,
            "revisitPattern": self._revisit_pattern,
            "characterBleed": self._character_bleed,
            "journeyPattern": self._journey_pattern,
            "characterFocus": self._character_focus,
            "temporalFocus": self._temporal_focus,
            "attractorAffinity": self._attractor_affinity,
            "attractorEngagement": self._attractor_engagement,
            "recursivePattern": self._recursive_pattern,
            "journeyFingerprint": self._journey_fingerprint,
        }

    def evaluate(
        self,
        condition: Condition,
        reader: ReaderState,
        node: NodeDefinition,
        nodes: dict[str, NodeDefinition] | None = None,
    ) -> bool:
        if self._cache is None:
            return self._evaluate(condition, reader, node, nodes)
        key = (condition.key(), node.id, reader.visit_count(node.id), reader.fingerprint())
        return self._cache.get_or_compute(
            key, lambda: self._evaluate(condition, reader, node, nodes)
        )

    def _evaluate(self, condition, reader, node, nodes) -> bool:
        kind = condition.kind
        if kind == "always":
            return True
        if kind == "allOf":
            return all(self._evaluate(c, reader, node, nodes) for c in condition.children)
        if kind == "anyOf":
            return any(self._evaluate(c, reader, node, nodes) for c in condition.children)
        if kind == "not":
            return not self._evaluate(condition.children[0], reader, node, nodes)

        predicate = self._predicates.get(kind)
        if predicate is None:
            logger.warning("Unknown condition %r on %s, treating as false", kind, node.id)
            return False
        try:
            return bool(predicate(condition.params, reader, node, nodes))
        except InsufficientData as exc:
            logger.debug("Condition %s on %s undecidable: %s", kind, node.id, exc)
            return False
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            logger.warning("Malformed %s condition on %s: %s", kind, node.id, exc)
            return False

    # -- leaf predicates --------------------------------------------------

    def _visit_count(self, params, reader, node, nodes) -> bool:
        count = reader.visit_count(node.id)
        if isinstance(params, dict):
            if "exactly" in params:
                return count == int(params["exactly"])
            low = int(params.get("min", 0))
            high = params.get("max")
            return count >= low and (high is None or count <= int(high))
        return count >= int(params)

    def _visit_pattern(self, params, reader, node, nodes) -> bool:
        run = _ids(params)
        if not run:
            raise ValueError("empty visit pattern")
        return _contains_run(reader.sequence, run)

    def _previously_visited(self, params, reader, node, nodes) -> bool:
        visited = set(reader.sequence)
        return all(node_id in visited for node_id in _ids(params))

    def _attractors_engaged(self, params, reader, node, nodes) -> bool:
        counts = reader.attractor_engagements
        if isinstance(params, dict):
            return all(counts.get(name, 0) >= int(n) for name, n in params.items())
        return all(counts.get(name, 0) >= 1 for name in _ids(params))

    def _temporal_position(self, params, reader, node, nodes) -> bool:
        if not reader.detailed_visits:
            raise InsufficientData("no visits recorded")
        return reader.detailed_visits[-1].temporal_layer == params

    def _endpoint_progress(self, params, reader, node, nodes) -> bool:
        orientation = params["orientation"]
        if orientation not in reader.endpoint_progress:
            raise InsufficientData(f"no progress toward {orientation}")
        return reader.endpoint_progress[orientation] >= float(params.get("minValue", 0))

    def _revisit_pattern(self, params, reader, node, nodes) -> bool:
        if isinstance(params, dict):
            params = [{"nodeId": k, "minVisits": v} for k, v in params.items()]
        return all(
            reader.visit_count(item["nodeId"]) >= int(item.get("minVisits", 2)) for item in params
        )

    def _character_bleed(self, params, reader, node, nodes) -> bool:
        if len(reader.detailed_visits) < 2:
            raise InsufficientData("fewer than two visits")
        previous = reader.detailed_visits[-2].character
        if isinstance(params, dict):
            source = params.get("from")
            target = params.get("to", node.character)
            return previous != node.character and previous == source and node.character == target
        bled = previous != node.character
        return bled if params else not bled

    def _journey_pattern(self, params, reader, node, nodes) -> bool:
        run = _ids(params)
        if not run:
            raise ValueError("empty journey pattern")
        return reader.sequence[-len(run) :] == run

    def _character_focus(self, params, reader, node, nodes) -> bool:
        focus = self.analyzer.character_focus_intensity(reader)
        if not focus:
            raise InsufficientData("path too short for focus")
        minimum = float(params.get("minFocusRatio", 0.4))
        characters = params.get("characters") or [params["character"]]
        return any(c in focus and focus[c].ratio >= minimum for c in characters)

    def _temporal_focus(self, params, reader, node, nodes) -> bool:
        temporal = self.analyzer.temporal_jumping(reader)
        if not temporal.anchoring:
            raise InsufficientData("path too short for temporal focus")
        minimum = float(params.get("minFocusRatio", 0.4))
        layers = params.get("temporalLayers") or [params["temporalLayer"]]
        if not any(temporal.anchoring.get(layer, 0.0) >= minimum for layer in layers):
            return False
        if params.get("includeProgression"):
            return temporal.bias == "forward"
        return True

    def _attractor_affinity(self, params, reader, node, nodes) -> bool:
        if not nodes:
            raise InsufficientData("no node table")
        patterns = self.analyzer.analyze_path_patterns(reader, nodes)
        if not patterns:
            raise InsufficientData("path too short for affinity")
        minimum = float(params.get("minAffinityRatio", 0.25))
        wanted = set(params.get("attractors") or [params["attractor"]])
        path = reader.sequence
        hits = 0
        for attractor in wanted:
            carried = sum(1 for n in path if n in nodes and attractor in nodes[n].strange_attractors)
            if carried / len(path) >= minimum:
                hits += 1
        if not hits:
            return False
        if params.get("includeThematicContinuity"):
            return any(
                p.type == "thematic" and p.description == "thematic continuity" for p in patterns
            )
        return True

    def _attractor_engagement(self, params, reader, node, nodes) -> bool:
        engagement = self.analyzer.attractor_engagement(reader).get(params["attractor"])
        if engagement is None:
            raise InsufficientData(f"{params['attractor']} never engaged")
        if engagement.score < float(params.get("minEngagementScore", 50)):
            return False
        trend = params.get("trendRequired", "any")
        return trend == "any" or engagement.trend == trend

    def _recursive_pattern(self, params, reader, node, nodes) -> bool:
        params = params if isinstance(params, dict) else {}
        max_length = int(params.get("maxPatternLength", 4))
        minimum = float(params.get("minPatternStrength", 0.6))
        total = len(reader.sequence)
        for loop in self.analyzer.recursive_patterns(reader, max_length):
            if loop.strength < minimum:
                continue
            if params.get("requireRecency") and loop.last_index < 0.7 * total - loop.length:
                continue
            return True
        return False

    def _journey_fingerprint(self, params, reader, node, nodes) -> bool:
        fp = self.analyzer.journey_fingerprint(reader)
        if fp.exploration_style == "undetermined":
            raise InsufficientData("path too short for a fingerprint")
        for field_name, attr in (
            ("explorationStyle", "exploration_style"),
            ("temporalPreference", "temporal_preference"),
            ("narrativeApproach", "narrative_approach"),
        ):
            if field_name in params and getattr(fp, attr) != params[field_name]:
                return False
        if fp.complexity_index < float(params.get("minComplexityIndex", 0.0)):
            return False
        return fp.focus_index >= float(params.get("minFocusIndex", 0.0))
