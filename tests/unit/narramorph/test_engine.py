"""Tests for the transformation engine."""

from types import SimpleNamespace

import pytest

from corpus.models import Condition, NodeDefinition, TextTransformation, TransformationRule
from narramorph.core import TransformationEngine
from narramorph.sanitizer import marker_depth
from narrative import ReaderState, engage_attractor, record_visit


CONTENT = "The archaeologist catalogued the fragments. The system was silent."


def _rule(condition: dict, *transformations: TextTransformation) -> TransformationRule:
    return TransformationRule(Condition.from_dict(condition), tuple(transformations))


def _nodes(*rules: TransformationRule) -> dict[str, NodeDefinition]:
    return {
        "algo": NodeDefinition("algo", "Algorithm", 2),
        "arch": NodeDefinition("arch", "Archaeologist", 2, rules=tuple(rules)),
    }


def _bled_reader(nodes) -> ReaderState:
    reader = ReaderState()
    record_visit(reader, nodes["algo"])
    record_visit(reader, nodes["arch"])
    return reader


def _state(node: NodeDefinition, content: str | None = CONTENT) -> SimpleNamespace:
    return SimpleNamespace(definition=node, id=node.id, character=node.character, original_content=content)


def test_bleed_comes_before_rules():
    nodes = _nodes(_rule({}, TextTransformation("emphasize", "fragments")))
    engine = TransformationEngine()
    result = engine.calculate_all_transformations(
        CONTENT, _state(nodes["arch"]), _bled_reader(nodes), nodes
    )
    assert [(t.type, t.selector, t.priority) for t in result] == [
        ("fragment", "system", "high"),
        ("metaComment", "The system was silent.", "high"),
        ("metaComment", "The archaeologist catalogued the fragments.", "high"),
        ("emphasize", "fragments", "medium"),
    ]


def test_priority_order_is_stable_across_sources():
    nodes = _nodes(
        _rule(
            {"visitCount": 1},
            TextTransformation("emphasize", "archaeologist", priority="low"),
            TextTransformation("replace", "catalogued", priority="high", replacement="remembered"),
        )
    )
    result = TransformationEngine().calculate_all_transformations(
        CONTENT, _state(nodes["arch"]), _bled_reader(nodes), nodes
    )
    ranks = [{"high": 0, "medium": 1, "low": 2}[t.priority] for t in result]
    assert ranks == sorted(ranks)
    assert result[3].type == "replace"
    assert result[-1].selector == "archaeologist"


def test_duplicate_type_and_selector_keep_first():
    nodes = _nodes(_rule({}, TextTransformation("fragment", "system", fragment_pattern="-")))
    result = TransformationEngine().calculate_all_transformations(
        CONTENT, _state(nodes["arch"]), _bled_reader(nodes), nodes
    )
    fragments = [t for t in result if t.dedupe_key == ("fragment", "system")]
    assert len(fragments) == 1
    assert fragments[0].priority == "high"


def test_caps_from_config():
    nodes = _nodes(
        _rule({}, TextTransformation("emphasize", "fragments"), TextTransformation("emphasize", "silent"))
    )
    engine = TransformationEngine({"transformations": {"max_bleed": 1, "max_rule": 1, "max_total": 10}})
    result = engine.calculate_all_transformations(
        CONTENT, _state(nodes["arch"]), _bled_reader(nodes), nodes
    )
    assert [t.selector for t in result] == ["system", "fragments"]

    engine = TransformationEngine({"transformations": {"max_total": 2}})
    assert len(engine.calculate_all_transformations(
        CONTENT, _state(nodes["arch"]), _bled_reader(nodes), nodes
    )) == 2


def test_rules_with_false_conditions_contribute_nothing():
    nodes = _nodes(_rule({"visitCount": 3}, TextTransformation("emphasize", "fragments")))
    engine = TransformationEngine()
    reader = _bled_reader(nodes)
    assert engine.evaluate_rules(nodes["arch"].rules, reader, _state(nodes["arch"]), nodes) == []
    assert not engine.evaluate(nodes["arch"].rules[0].condition, reader, _state(nodes["arch"]))


def test_journey_loop_and_focus_transformations():
    nodes = {
        "a": NodeDefinition("a", "Archaeologist", 2),
        "b": NodeDefinition("b", "Archaeologist", 2),
    }
    reader = ReaderState()
    for node_id in ("a", "b", "a", "b", "a"):
        record_visit(reader, nodes[node_id])
    engine = TransformationEngine()
    content = "I return to the site again. The dust settles."
    patterns = engine.analyzer.analyze_path_patterns(reader, nodes)

    result = engine.journey_transformations(content, _state(nodes["a"], content), reader, patterns)
    loop = result[0]
    assert (loop.type, loop.selector, loop.comment_style) == ("metaComment", "again", "marginalia")
    assert loop.replacement.startswith("recursive navigation detected: ")
    assert ("emphasize", "I") in [(t.type, t.selector) for t in result]
    assert all(t.priority == "high" for t in result)


def test_master_cache_reuses_results_until_journey_changes():
    nodes = _nodes()
    engine = TransformationEngine()
    reader = _bled_reader(nodes)
    state = _state(nodes["arch"])
    first = engine.calculate_all_transformations(CONTENT, state, reader, nodes)
    second = engine.calculate_all_transformations(CONTENT, state, reader, nodes)
    assert first == second
    assert engine.caches.master.hits == 1

    record_visit(reader, nodes["arch"])
    engine.calculate_all_transformations(CONTENT, state, reader, nodes)
    assert engine.caches.master.misses == 2

    engine.reset()
    assert engine.caches.master.stats()["size"] == 0


def test_get_transformed_content_applies_with_flat_markup():
    nodes = _nodes(_rule({}, TextTransformation("emphasize", "fragments")))
    engine = TransformationEngine()
    result = engine.get_transformed_content(_state(nodes["arch"]), _bled_reader(nodes), nodes)
    assert result.count("data-transform-id") == 4
    assert marker_depth(result) == 1


def test_get_transformed_content_requires_original():
    nodes = _nodes()
    with pytest.raises(ValueError):
        TransformationEngine().get_transformed_content(
            _state(nodes["arch"], None), _bled_reader(nodes), nodes
        )


def test_fresh_engines_agree_on_transformations_and_output():
    nodes = _nodes(
        _rule(
            {},
            TextTransformation("emphasize", "fragments"),
            TextTransformation(
                "fragment", "catalogued", fragment_pattern="~", fragment_style="random"
            ),
        )
    )
    results = []
    for _ in range(2):
        engine = TransformationEngine()
        state = _state(nodes["arch"])
        transformations = engine.calculate_all_transformations(
            CONTENT, state, _bled_reader(nodes), nodes
        )
        results.append((transformations, engine.apply(CONTENT, transformations)))
    assert results[0] == results[1]


def test_reset_recomputes_the_same_transformations():
    nodes = _nodes(_rule({}, TextTransformation("emphasize", "fragments")))
    engine = TransformationEngine()
    reader = _bled_reader(nodes)
    state = _state(nodes["arch"])
    before = engine.calculate_all_transformations(CONTENT, state, reader, nodes)
    engine.reset()
    after = engine.calculate_all_transformations(CONTENT, state, reader, nodes)
    assert after == before
    assert engine.caches.master.hits == 0
    assert engine.apply(CONTENT, after) == engine.apply(CONTENT, before)


def test_default_caps_bound_a_large_candidate_list():
    many = [TextTransformation("emphasize", f"word{i}") for i in range(12)]
    nodes = _nodes(_rule({}, *many[:6]), _rule({}, *many[6:]))
    engine = TransformationEngine()
    result = engine.calculate_all_transformations(
        CONTENT, _state(nodes["arch"]), _bled_reader(nodes), nodes
    )
    assert engine.policy.max_transformations == 10
    assert len(result) <= 10
    assert [t.priority for t in result[:3]] == ["high", "high", "high"]
    assert [t.selector for t in result[3:]] == ["word0", "word1", "word2"]


def test_dominant_theme_group_drives_attractor_resonance():
    nodes = {
        "a": NodeDefinition("a", "Archaeologist", 2),
        "b": NodeDefinition("b", "Archaeologist", 2),
    }
    reader = ReaderState()
    record_visit(reader, nodes["a"])
    record_visit(reader, nodes["b"])
    engage_attractor(reader, "memory-artifact")
    engine = TransformationEngine()
    content = "Every memory artifact hums."
    patterns = engine.analyzer.analyze_path_patterns(reader, nodes)

    result = engine.journey_transformations(content, _state(nodes["b"], content), reader, patterns)
    assert [(t.type, t.selector) for t in result] == [
        ("emphasize", "memory artifact"),
        ("metaComment", "memory artifact"),
    ]
    assert (result[0].emphasis, result[0].intensity) == ("color", 5)
    assert result[1].replacement == (
        "strange attractor resonance: memory artifact (memory theme) [amplifying]"
    )
