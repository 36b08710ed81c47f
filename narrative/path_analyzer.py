"""Statistical signals derived from the reader's journey.

Every analyzer is a pure function of the ReaderState (and, for the
consolidated pattern list, the node table). Paths shorter than two visits
produce neutral results.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
import logging
import statistics
from types import MappingProxyType
from typing import Any, Callable, Mapping

from corpus.models import CHARACTERS, TEMPORAL_LAYERS, NodeDefinition

from .state import ReaderState


logger = logging.getLogger(__name__)


DEFAULT_SETTINGS = {
    "pattern_max_length": 4,
    "focus_window": 10,
    "window_weight": 0.7,
    "trend_epsilon": 0.05,
    "focus_ratio": 0.4,
    "oscillation_ratio": 0.3,
    "affinity_ratio": 0.25,
    "continuity_window": 10,
    "continuity_ratio": 0.5,
    "theme_threshold": 50,
    "fingerprint": {
        "recursive_revisit_ratio": 0.4,
        "chaotic_volatility": 0.6,
        "focused_ratio": 0.6,
        "linear_entropy": 0.9,
        "linear_volatility": 0.34,
        "layer_anchor": 0.5,
        "thematic_ratio": 0.5,
        "experimental_volatility": 0.5,
        "systematic_variance": 0.25,
        "systematic_entropy": 0.7,
    },
}

_LAYER_ORDER = {layer: i for i, layer in enumerate(TEMPORAL_LAYERS)}

_LAYER_PREFERENCE = {
    "past": "past-oriented",
    "present": "present-focused",
    "future": "future-seeking",
}

UNDETERMINED = "undetermined"

# Attractors grouped by the broader idea they circle; an attractor may sit in
# more than one group.
ATTRACTOR_THEME_GROUPS = {
    "identity": (
        "identity-pattern",
        "verification-ritual",
        "recognition-pattern",
        "recursive-symbol",
    ),
    "memory": ("memory-fragment", "memory-artifact", "memory-sphere", "quantum-déjà-vu"),
    "recursion": (
        "recursion-pattern",
        "recursion-chamber",
        "recursive-loop",
        "recursive-symbol",
    ),
    "quantum": (
        "quantum-perception",
        "quantum-uncertainty",
        "quantum-transformation",
        "quantum-déjà-vu",
        "quantum-choice",
    ),
    "consciousness": (
        "distributed-consciousness",
        "autonomous-fragment",
        "process-language",
        "continuity-interface",
    ),
    "entropy": ("system-decay", "autonomous-fragment", "memory-fragment"),
}


@dataclass(frozen=True)
class RecursivePattern:
    sequence: tuple[str, ...]
    occurrences: int
    strength: float
    last_index: int

    @property
    def length(self) -> int:
        return len(self.sequence)


@dataclass(frozen=True)
class CharacterFocus:
    ratio: float
    trend: str  # "rising" | "falling" | "stable"


@dataclass(frozen=True)
class TemporalJumping:
    jump_count: int = 0
    bias: str = "none"  # "forward" | "backward" | "balanced" | "none"
    volatility: float = 0.0
    anchoring: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class AttractorEngagement:
    score: float
    trend: str


@dataclass(frozen=True)
class JourneyFingerprint:
    exploration_style: str = UNDETERMINED
    temporal_preference: str = UNDETERMINED
    narrative_approach: str = UNDETERMINED
    complexity_index: float = 0.0
    focus_index: float = 0.0


@dataclass(frozen=True)
class ReadingPattern:
    type: str  # "sequence" | "character" | "temporal" | "thematic" | "rhythm"
    strength: float
    description: str
    nodes: tuple[str, ...] = ()
    characters: tuple[str, ...] = ()
    attractors: tuple[str, ...] = ()


def _settings(overrides: dict | None) -> dict:
    merged = dict(DEFAULT_SETTINGS)
    merged["fingerprint"] = dict(DEFAULT_SETTINGS["fingerprint"])
    for key, value in (overrides or {}).items():
        if key == "fingerprint":
            merged["fingerprint"].update(value or {})
        else:
            merged[key] = value
    return merged


def _trend(recent: float, historical: float, epsilon: float) -> str:
    diff = recent - historical
    if diff > epsilon:
        return "rising"
    if diff < -epsilon:
        return "falling"
    return "stable"


def _focus_strength(ratio: float, threshold: float) -> float:
    span = 1.0 - threshold
    if span <= 0:
        return 1.0
    return min(1.0, 0.5 + 0.5 * (ratio - threshold) / span)


# ---------------------------------------------------------------------------
# Individual analyzers
# ---------------------------------------------------------------------------


def recursive_patterns(reader: ReaderState, max_length: int = 4) -> list[RecursivePattern]:
    """Find exact subsequences of the path that repeat.

    Strength is ``(occurrences - 1) / length``, boosted by up to 25% the
    closer the last occurrence ends to the end of the path.
    """
    path = reader.sequence
    total = len(path)
    if total < 2:
        return []

    found: list[RecursivePattern] = []
    for width in range(2, min(max_length, total) + 1):
        starts: dict[tuple[str, ...], list[int]] = {}
        for i in range(total - width + 1):
            starts.setdefault(tuple(path[i : i + width]), []).append(i)

        for sequence, positions in starts.items():
            if len(positions) < 2:
                continue
            last_end = positions[-1] + width
            recency = 1.0 + 0.25 * last_end / total
            strength = min(1.0, (len(positions) - 1) / width * recency)
            found.append(
                RecursivePattern(
                    sequence=sequence,
                    occurrences=len(positions),
                    strength=strength,
                    last_index=positions[-1],
                )
            )

    found.sort(key=lambda p: (-p.strength, -p.length, p.sequence))
    return found


def character_focus_intensity(
    reader: ReaderState,
    window: int = 10,
    window_weight: float = 0.7,
    epsilon: float = 0.05,
) -> dict[str, CharacterFocus]:
    characters = [visit.character for visit in reader.detailed_visits]
    if len(characters) < 2:
        return {}

    recent = characters[-window:]
    result = {}
    for character in dict.fromkeys(characters):
        historical = characters.count(character) / len(characters)
        windowed = recent.count(character) / len(recent)
        ratio = window_weight * windowed + (1.0 - window_weight) * historical
        result[character] = CharacterFocus(
            ratio=ratio, trend=_trend(windowed, historical, epsilon)
        )
    return result


def temporal_jumping(reader: ReaderState) -> TemporalJumping:
    layers = [visit.temporal_layer for visit in reader.detailed_visits]
    if len(layers) < 2:
        return TemporalJumping()

    forward = backward = 0
    for before, after in zip(layers, layers[1:]):
        if before == after:
            continue
        if _LAYER_ORDER.get(after, 1) > _LAYER_ORDER.get(before, 1):
            forward += 1
        else:
            backward += 1

    jumps = forward + backward
    if jumps == 0:
        bias = "none"
    elif forward > backward:
        bias = "forward"
    elif backward > forward:
        bias = "backward"
    else:
        bias = "balanced"

    counts = Counter(layers)
    anchoring = MappingProxyType(
        {layer: counts[layer] / len(layers) for layer in TEMPORAL_LAYERS}
    )
    return TemporalJumping(
        jump_count=jumps,
        bias=bias,
        volatility=jumps / len(layers),
        anchoring=anchoring,
    )


def attractor_engagement(reader: ReaderState) -> dict[str, AttractorEngagement]:
    """Score each engaged attractor 0-100 with a rising/falling/stable trend.

    The score blends the attractor's share of all engagements, how recently
    it was engaged, and how many visits engaged it at all.
    """
    visits = reader.detailed_visits
    total_visits = len(visits)
    total_engagements = sum(reader.attractor_engagements.values())
    if total_visits < 2 or total_engagements == 0:
        return {}

    half = total_visits // 2
    result = {}
    for attractor in sorted(reader.attractor_engagements):
        count = reader.attractor_engagements[attractor]
        per_visit = [visit.engaged_attractors.count(attractor) for visit in visits]
        engaged_at = [i for i, n in enumerate(per_visit) if n]

        relative = count / total_engagements * 100
        if engaged_at:
            recency = 1.0 - (total_visits - 1 - engaged_at[-1]) / total_visits
        else:
            recency = 0.0
        consistency = len(engaged_at) / total_visits
        score = min(100.0, relative * 0.5 + recency * 30 + consistency * 20)

        historical_rate = sum(per_visit) / total_visits
        recent = per_visit[half:]
        recent_rate = sum(recent) / len(recent)
        if historical_rate == 0:
            trend = "stable"
        elif recent_rate > historical_rate * 1.2:
            trend = "rising"
        elif recent_rate < historical_rate * 0.8:
            trend = "falling"
        else:
            trend = "stable"

        result[attractor] = AttractorEngagement(score=score, trend=trend)
    return result


def theme_group_engagement(engagements: Mapping[str, AttractorEngagement]) -> dict[str, float]:
    """Sum attractor scores per theme group, scaled so the strongest group is 100."""
    scores = {theme: 0.0 for theme in ATTRACTOR_THEME_GROUPS}
    for attractor, engagement in engagements.items():
        for theme, members in ATTRACTOR_THEME_GROUPS.items():
            if attractor in members:
                scores[theme] += engagement.score
    top = max(scores.values())
    if top > 0:
        scores = {theme: score / top * 100 for theme, score in scores.items()}
    return scores


def dominant_theme(scores: Mapping[str, float], threshold: float = 50) -> str | None:
    # ties go to the group listed first
    ranked = sorted(scores.items(), key=lambda item: -item[1])
    for theme, score in ranked:
        if score >= threshold and score > 0:
            return theme
    return None


def journey_fingerprint(reader: ReaderState, settings: dict | None = None) -> JourneyFingerprint:
    """Classify how the reader moves through the nodes."""
    path = reader.sequence
    total = len(path)
    if total < 2 or len(reader.detailed_visits) < 2:
        return JourneyFingerprint()

    cfg = _settings(settings)
    limits = cfg["fingerprint"]

    entropy = len(set(path)) / total
    revisit_ratio = 1.0 - entropy
    temporal = temporal_jumping(reader)
    layer_values = [_LAYER_ORDER.get(v.temporal_layer, 1) for v in reader.detailed_visits]
    variance = statistics.pvariance(layer_values)
    focus = character_focus_intensity(
        reader, cfg["focus_window"], cfg["window_weight"], cfg["trend_epsilon"]
    )
    focus_index = max((f.ratio for f in focus.values()), default=0.0)
    loops = recursive_patterns(reader, cfg["pattern_max_length"])

    if revisit_ratio >= limits["recursive_revisit_ratio"] and loops:
        style = "recursive"
    elif temporal.volatility >= limits["chaotic_volatility"]:
        style = "chaotic"
    elif focus_index >= limits["focused_ratio"]:
        style = "focused"
    elif entropy >= limits["linear_entropy"] and temporal.volatility < limits["linear_volatility"]:
        style = "linear"
    else:
        style = "wandering"

    anchor_layer, anchor_share = max(
        temporal.anchoring.items(), key=lambda item: (item[1], -_LAYER_ORDER[item[0]])
    )
    if anchor_share >= limits["layer_anchor"]:
        preference = _LAYER_PREFERENCE[anchor_layer]
    else:
        preference = "time-fluid"

    engaged_visits = sum(1 for v in reader.detailed_visits if v.engaged_attractors)
    thematic_ratio = engaged_visits / len(reader.detailed_visits)
    if thematic_ratio >= limits["thematic_ratio"]:
        approach = "thematic"
    elif temporal.volatility >= limits["experimental_volatility"]:
        approach = "experimental"
    elif variance <= limits["systematic_variance"] and entropy >= limits["systematic_entropy"]:
        approach = "systematic"
    else:
        approach = "intuitive"

    complexity = min(1.0, (entropy + temporal.volatility + min(1.0, variance)) / 3)
    return JourneyFingerprint(
        exploration_style=style,
        temporal_preference=preference,
        narrative_approach=approach,
        complexity_index=complexity,
        focus_index=focus_index,
    )


# ---------------------------------------------------------------------------
# Consolidated patterns
# ---------------------------------------------------------------------------


def _oscillation(characters: list[str]) -> tuple[float, tuple[str, str] | None]:
    if len(characters) < 3:
        return 0.0, None
    pairs: Counter[tuple[str, str]] = Counter()
    for i in range(2, len(characters)):
        a, b, c = characters[i - 2], characters[i - 1], characters[i]
        if a == c and a != b:
            pairs[tuple(sorted((a, b)))] += 1
    if not pairs:
        return 0.0, None
    pair, count = max(pairs.items(), key=lambda item: (item[1], item[0]))
    return sum(pairs.values()) / (len(characters) - 2), pair


def _thematic_continuity(
    path: list[str], nodes: dict[str, NodeDefinition], window: int
) -> tuple[float, list[str]]:
    recent = path[-window:]
    if len(recent) < 2:
        return 0.0, []
    shared: Counter[str] = Counter()
    linked = 0
    for before, after in zip(recent, recent[1:]):
        a = set(nodes[before].strange_attractors) if before in nodes else set()
        b = set(nodes[after].strange_attractors) if after in nodes else set()
        common = a & b
        if common:
            linked += 1
            shared.update(common)
    return linked / (len(recent) - 1), [name for name, _ in shared.most_common()]


def analyze_path_patterns(
    reader: ReaderState,
    nodes: dict[str, NodeDefinition],
    settings: dict | None = None,
) -> list[ReadingPattern]:
    """Consolidate every analyzer into a strength-ordered ReadingPattern list."""
    path = reader.sequence
    if len(path) < 2:
        return []

    cfg = _settings(settings)
    patterns: list[ReadingPattern] = []

    for loop in recursive_patterns(reader, cfg["pattern_max_length"])[:3]:
        patterns.append(
            ReadingPattern(
                type="sequence",
                strength=loop.strength,
                description=f"recursive navigation: {'→'.join(loop.sequence)} (×{loop.occurrences})",
                nodes=loop.sequence,
            )
        )

    focus = character_focus_intensity(
        reader, cfg["focus_window"], cfg["window_weight"], cfg["trend_epsilon"]
    )
    for character in CHARACTERS:
        if character in focus and focus[character].ratio >= cfg["focus_ratio"]:
            ratio = focus[character].ratio
            patterns.append(
                ReadingPattern(
                    type="character",
                    strength=_focus_strength(ratio, cfg["focus_ratio"]),
                    description=f"focus on {character} ({ratio:.0%}, {focus[character].trend})",
                    characters=(character,),
                )
            )

    ratio, pair = _oscillation([v.character for v in reader.detailed_visits])
    if pair and ratio >= cfg["oscillation_ratio"]:
        patterns.append(
            ReadingPattern(
                type="character",
                strength=min(1.0, ratio),
                description=f"oscillation between {pair[0]} and {pair[1]}",
                characters=pair,
            )
        )

    temporal = temporal_jumping(reader)
    if temporal.jump_count:
        patterns.append(
            ReadingPattern(
                type="temporal",
                strength=min(1.0, temporal.volatility),
                description=f"temporal jumping ({temporal.bias}, {temporal.jump_count} jumps)",
            )
        )
    for layer in TEMPORAL_LAYERS:
        share = temporal.anchoring.get(layer, 0.0)
        if share >= cfg["focus_ratio"]:
            patterns.append(
                ReadingPattern(
                    type="temporal",
                    strength=_focus_strength(share, cfg["focus_ratio"]),
                    description=f"anchored in the {layer}",
                )
            )
    layer_values = [_LAYER_ORDER.get(v.temporal_layer, 1) for v in reader.detailed_visits]
    if len(set(layer_values)) > 1 and layer_values == sorted(layer_values):
        patterns.append(
            ReadingPattern(type="temporal", strength=0.8, description="chronological progression")
        )

    visited = [node_id for node_id in path if node_id in nodes]
    if visited:
        for attractor in sorted({a for node in nodes.values() for a in node.strange_attractors}):
            hits = [node_id for node_id in visited if attractor in nodes[node_id].strange_attractors]
            affinity = len(hits) / len(path)
            if affinity < cfg["affinity_ratio"]:
                continue
            carriers = [n for n in nodes.values() if attractor in n.strange_attractors]
            coverage = len(set(hits)) / len(carriers)
            patterns.append(
                ReadingPattern(
                    type="thematic",
                    strength=min(1.0, 0.7 * affinity + 0.3 * coverage),
                    description=f"affinity for {attractor}",
                    nodes=tuple(dict.fromkeys(hits)),
                    attractors=(attractor,),
                )
            )

        continuity, shared = _thematic_continuity(path, nodes, cfg["continuity_window"])
        if continuity >= cfg["continuity_ratio"]:
            patterns.append(
                ReadingPattern(
                    type="thematic",
                    strength=continuity,
                    description="thematic continuity",
                    attractors=tuple(shared[:3]),
                )
            )

    fingerprint = journey_fingerprint(reader, settings)
    if fingerprint.exploration_style != UNDETERMINED:
        patterns.append(
            ReadingPattern(
                type="rhythm",
                strength=max(fingerprint.complexity_index, fingerprint.focus_index),
                description=f"{fingerprint.exploration_style} exploration",
            )
        )

    # sort is stable, so equal strengths keep discovery order
    patterns.sort(key=lambda p: -p.strength)
    return patterns


def _frozen(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    if isinstance(value, dict):
        return MappingProxyType(value)
    return value


class PathAnalyzer:
    """Wraps each analyzer with a cache keyed on the reader fingerprint.

    ``cache`` is any object with ``get_or_compute(key, compute)``; without
    one every call recomputes. Cached entries are shared, so results come
    back as tuples and read-only mappings.
    """

    def __init__(self, settings: dict | None = None, cache: Any = None):
        self._settings = _settings(settings)
        self._cache = cache

    def _cached(self, name: str, reader: ReaderState, compute: Callable[[], Any], *extra: Any):
        if self._cache is None:
            return _frozen(compute())
        key = (name, reader.fingerprint(), *extra)
        return self._cache.get_or_compute(key, lambda: _frozen(compute()))

    def recursive_patterns(self, reader: ReaderState, max_length: int | None = None):
        length = max_length or self._settings["pattern_max_length"]
        return self._cached(
            "recursive", reader, lambda: recursive_patterns(reader, length), length
        )

    def character_focus_intensity(self, reader: ReaderState):
        cfg = self._settings
        return self._cached(
            "character_focus",
            reader,
            lambda: character_focus_intensity(
                reader, cfg["focus_window"], cfg["window_weight"], cfg["trend_epsilon"]
            ),
        )

    def temporal_jumping(self, reader: ReaderState):
        return self._cached("temporal", reader, lambda: temporal_jumping(reader))

    def attractor_engagement(self, reader: ReaderState):
        return self._cached("attractors", reader, lambda: attractor_engagement(reader))

    def theme_group_engagement(self, reader: ReaderState):
        return self._cached(
            "themes", reader, lambda: theme_group_engagement(attractor_engagement(reader))
        )

    def dominant_theme(self, reader: ReaderState) -> str | None:
        scores = self.theme_group_engagement(reader)
        return dominant_theme(scores, self._settings["theme_threshold"])

    def journey_fingerprint(self, reader: ReaderState):
        return self._cached(
            "fingerprint", reader, lambda: journey_fingerprint(reader, self._settings)
        )

    def analyze_path_patterns(self, reader: ReaderState, nodes: dict[str, NodeDefinition]):
        return self._cached(
            "patterns",
            reader,
            lambda: analyze_path_patterns(reader, nodes, self._settings),
            tuple(sorted(nodes)),
        )
