"""Tests for character bleed effects."""

from types import SimpleNamespace

from corpus.models import NodeDefinition
from narrative import ReaderState, calculate_bleed_effects, record_visit
from narrative.bleed import sentences


ARCH_TEXT = "The system hums beneath the ruins. Every data point is a memory."


def _walk(*steps: tuple[str, str]) -> ReaderState:
    reader = ReaderState()
    for node_id, character in steps:
        record_visit(reader, NodeDefinition(id=node_id, character=character, temporal_value=5))
    return reader


def _state(node_id: str, character: str, content: str) -> SimpleNamespace:
    return SimpleNamespace(id=node_id, character=character, original_content=content)


def test_algorithm_into_archaeologist():
    reader = _walk(("algo", "Algorithm"), ("arch", "Archaeologist"))
    effects = calculate_bleed_effects(_state("arch", "Archaeologist", ARCH_TEXT), reader)

    kinds = [(e.transformation.type, e.selector) for e in effects]
    assert kinds == [
        ("fragment", "system"),
        ("metaComment", "Every data point is a memory."),
        ("metaComment", "The system hums beneath the ruins."),
    ]
    assert effects[0].transformation.fragment_pattern == "\u0336"
    assert all(e.transformation.priority == "high" for e in effects)
    assert all(e.source_character == "Algorithm" for e in effects)
    assert effects[-1].transformation.replacement == "perspective shift: Algorithm → Archaeologist"


def test_algorithm_into_last_human_flags_repetition():
    text = "Again the signal. Again the quiet shelter holds."
    reader = _walk(("algo", "Algorithm"), ("human", "LastHuman"))
    effects = calculate_bleed_effects(_state("human", "LastHuman", text), reader)
    assert effects[0].transformation.emphasis == "glitch"
    assert effects[0].selector == "Again"
    assert effects[1].transformation.type == "expand"


def test_archaeologist_into_algorithm_marks_time_vocabulary():
    text = "Process the present stream. Return the result to memory."
    reader = _walk(("arch", "Archaeologist"), ("algo", "Algorithm"))
    effects = calculate_bleed_effects(_state("algo", "Algorithm", text), reader)
    assert effects[0].selector == "present"
    assert effects[0].transformation.replacement.startswith("⟨")
    assert effects[1].transformation.comment_style == "interlinear"


def test_last_human_bleeds_into_any_character():
    text = "I remember the shelter and its warmth."
    reader = _walk(("human", "LastHuman"), ("algo", "Algorithm"))
    effects = calculate_bleed_effects(_state("algo", "Algorithm", text), reader)
    assert effects[0].transformation.emphasis == "fade"
    assert effects[0].selector == "remember"


def test_no_bleed_on_first_visit():
    reader = _walk(("arch", "Archaeologist"))
    assert calculate_bleed_effects(_state("arch", "Archaeologist", ARCH_TEXT), reader) == []


def test_no_bleed_between_same_character():
    reader = _walk(("a", "Archaeologist"), ("b", "Archaeologist"))
    assert calculate_bleed_effects(_state("b", "Archaeologist", ARCH_TEXT), reader) == []


def test_no_bleed_for_a_node_other_than_the_last_visited():
    reader = _walk(("algo", "Algorithm"), ("arch", "Archaeologist"))
    assert calculate_bleed_effects(_state("other", "Archaeologist", ARCH_TEXT), reader) == []


def test_general_effect_intensity_grows_with_shifts():
    reader = _walk(
        ("a", "Algorithm"),
        ("b", "Archaeologist"),
        ("c", "Algorithm"),
        ("d", "Archaeologist"),
        ("e", "Algorithm"),
        ("f", "Archaeologist"),
    )
    effects = calculate_bleed_effects(_state("f", "Archaeologist", ARCH_TEXT), reader)
    assert effects[-1].transformation.intensity == 3


def test_awareness_raises_intensity():
    reader = _walk(("algo", "Algorithm"), ("arch", "Archaeologist"))
    calm = calculate_bleed_effects(_state("arch", "Archaeologist", ARCH_TEXT), reader, awareness=0.0)
    aware = calculate_bleed_effects(_state("arch", "Archaeologist", ARCH_TEXT), reader, awareness=0.6)
    assert aware[0].intensity > calm[0].intensity


def test_sentences_skip_short_fragments():
    assert sentences("Ok. This one is long enough! Tiny") == ["This one is long enough!"]
