"""Tests for condition evaluation."""

import logging

import pytest

from corpus.models import Condition, NodeDefinition
from narramorph.cache import FingerprintCache
from narramorph.conditions import ConditionEvaluator
from narrative import ReaderState, engage_attractor, record_visit, update_endpoint_progress


NODES = {
    "a": NodeDefinition("a", "Archaeologist", 2, strange_attractors=("memory-fragment",)),
    "b": NodeDefinition("b", "Algorithm", 5, strange_attractors=("memory-fragment",)),
    "c": NodeDefinition("c", "LastHuman", 8),
}


def _reader(*ids: str) -> ReaderState:
    reader = ReaderState()
    for node_id in ids:
        record_visit(reader, NODES[node_id])
    return reader


def _check(data, reader, node_id=None, nodes=NODES) -> bool:
    node = NODES[node_id or reader.current_node_id]
    return ConditionEvaluator().evaluate(Condition.from_dict(data), reader, node, nodes)


def test_visit_count_forms():
    reader = _reader("a", "b", "a")
    assert _check({"visitCount": 2}, reader)
    assert not _check({"visitCount": 3}, reader)
    assert _check({"visitCount": {"exactly": 2}}, reader)
    assert _check({"visitCount": {"min": 1, "max": 2}}, reader)
    assert not _check({"visitCount": {"max": 1}}, reader)


def test_visit_and_journey_patterns():
    reader = _reader("a", "b", "c", "a")
    assert _check({"visitPattern": ["b", "c"]}, reader)
    assert not _check({"visitPattern": ["c", "b"]}, reader)
    assert _check({"journeyPattern": ["c", "a"]}, reader)
    assert not _check({"journeyPattern": ["b", "c"]}, reader)


def test_previously_visited_and_revisit_pattern():
    reader = _reader("a", "b", "a")
    assert _check({"previouslyVisitedNodes": ["a", "b"]}, reader)
    assert not _check({"previouslyVisitedNodes": ["c"]}, reader)
    assert _check({"revisitPattern": [{"nodeId": "a", "minVisits": 2}]}, reader)
    assert not _check({"revisitPattern": {"b": 2}}, reader)


def test_attractors_engaged_list_and_thresholds():
    reader = _reader("a")
    engage_attractor(reader, "memory-fragment")
    engage_attractor(reader, "memory-fragment")
    assert _check({"strangeAttractorsEngaged": ["memory-fragment"]}, reader)
    assert _check({"strangeAttractorsEngaged": {"memory-fragment": 2}}, reader)
    assert not _check({"strangeAttractorsEngaged": {"memory-fragment": 3}}, reader)
    assert not _check({"strangeAttractorsEngaged": ["recursion-pattern"]}, reader)


def test_temporal_position_uses_last_visit():
    reader = _reader("a", "c")
    assert _check({"temporalPosition": "future"}, reader)
    assert not _check({"temporalPosition": "past"}, reader)


def test_endpoint_progress_missing_orientation_is_false():
    reader = _reader("c")
    condition = {"endpointProgress": {"orientation": "future", "minValue": 50}}
    assert not _check(condition, reader)
    update_endpoint_progress(reader, "future", 60)
    assert _check(condition, reader)


def test_character_bleed():
    reader = _reader("b", "a")
    assert _check({"characterBleed": True}, reader)
    assert not _check({"characterBleed": False}, reader)
    assert _check({"characterBleed": {"from": "Algorithm", "to": "Archaeologist"}}, reader)
    assert not _check({"characterBleed": {"from": "LastHuman"}}, reader)


def test_character_bleed_needs_two_visits():
    assert not _check({"characterBleed": True}, _reader("a"))
    # undecidable is false, so negation holds
    assert _check({"not": {"characterBleed": True}}, _reader("a"))


def test_character_and_temporal_focus():
    reader = _reader("a", "a", "a", "b")
    assert _check({"characterFocus": {"characters": ["Archaeologist"]}}, reader)
    assert not _check({"characterFocus": {"character": "LastHuman"}}, reader)
    assert _check({"temporalFocus": {"temporalLayer": "past", "minFocusRatio": 0.5}}, reader)
    assert _check(
        {"temporalFocus": {"temporalLayers": ["past"], "includeProgression": True}}, reader
    )


def test_attractor_affinity_needs_node_table():
    reader = _reader("a", "b", "a")
    condition = {"attractorAffinity": {"attractor": "memory-fragment"}}
    assert _check(condition, reader)
    assert not _check(condition, reader, nodes=None)
    assert _check(
        {"attractorAffinity": {"attractors": ["memory-fragment"], "includeThematicContinuity": True}},
        reader,
    )


def test_attractor_engagement_score_and_trend():
    reader = _reader("c", "c", "a", "b")
    engage_attractor(reader, "memory-fragment")
    assert _check({"attractorEngagement": {"attractor": "memory-fragment"}}, reader)
    assert _check(
        {"attractorEngagement": {"attractor": "memory-fragment", "trendRequired": "rising"}},
        reader,
    )
    assert not _check(
        {"attractorEngagement": {"attractor": "memory-fragment", "minEngagementScore": 95}},
        reader,
    )
    assert not _check({"attractorEngagement": {"attractor": "unknown"}}, reader)


def test_recursive_pattern():
    reader = _reader("a", "b", "a", "b")
    assert _check({"recursivePattern": {"minPatternStrength": 0.6}}, reader)
    assert not _check({"recursivePattern": {"minPatternStrength": 0.9}}, reader)
    assert _check({"recursivePattern": {"requireRecency": True}}, reader)


def test_journey_fingerprint_fields():
    reader = _reader("a", "b", "a", "b", "a", "b")
    assert _check({"journeyFingerprint": {"explorationStyle": "recursive"}}, reader)
    assert not _check({"journeyFingerprint": {"explorationStyle": "linear"}}, reader)
    assert not _check({"journeyFingerprint": {"minComplexityIndex": 1.1}}, reader)
    assert not _check({"journeyFingerprint": {"explorationStyle": "recursive"}}, _reader("a"))


def test_composites():
    reader = _reader("a", "b", "a")
    assert _check({"allOf": [{"visitCount": 2}, {"previouslyVisitedNodes": ["b"]}]}, reader)
    assert _check({"anyOf": [{"visitCount": 5}, {"journeyPattern": ["b", "a"]}]}, reader)
    assert not _check({"not": {"visitCount": 1}}, reader)
    assert _check({}, reader)


def test_unknown_and_malformed_conditions_are_false(caplog):
    reader = _reader("a")
    with caplog.at_level(logging.WARNING):
        assert not _check({"moonPhase": "full"}, reader)
        assert not _check({"visitCount": "many"}, reader)
        assert not _check({"endpointProgress": {}}, reader)
    assert "Unknown condition" in caplog.text
    assert "Malformed" in caplog.text


@pytest.mark.parametrize("kind", ["characterFocus", "temporalFocus", "recursivePattern"])
def test_short_paths_are_false(kind):
    params = {"characters": ["Archaeologist"], "temporalLayers": ["past"]}
    assert not _check({kind: params}, _reader("a"))


def test_results_are_cached_until_the_journey_changes():
    cache = FingerprintCache("conditions", 16)
    evaluator = ConditionEvaluator(cache=cache)
    reader = _reader("a")
    condition = Condition.from_dict({"visitCount": 2})

    assert not evaluator.evaluate(condition, reader, NODES["a"])
    assert not evaluator.evaluate(condition, reader, NODES["a"])
    assert cache.hits == 1

    record_visit(reader, NODES["a"])
    assert evaluator.evaluate(condition, reader, NODES["a"])
