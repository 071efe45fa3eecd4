import random

import pytest

from sectionstream.markers import ALL_MARKERS, Marker, MarkerKind, Section
from sectionstream.parsing import (
    TRANSITIONS,
    Phase,
    StreamParser,
    create_state,
    finalize,
    finalize_state,
    mark_error,
    process_chunk,
    snapshot,
    transition,
)


WELL_FORMED = (
    "<reasoning>Check the ring system.</reasoning>"
    "<tools>- PubChem\n- RDKit</tools>"
    "<conclusion>The molecule is aromatic benzene.</conclusion>"
)


def _feed(chunks):
    state = create_state()
    for chunk in chunks:
        state = process_chunk(state, chunk)
    return state


def _parse(chunks):
    return finalize(_feed(chunks))


def test_round_trip_single_chunk():
    result = _parse([WELL_FORMED])

    assert result.reasoning == "Check the ring system."
    assert result.tools == ["PubChem", "RDKit"]
    assert result.conclusion == "The molecule is aromatic benzene."
    assert result.normal_content == "The molecule is aromatic benzene."
    assert result.error is None


def test_chunk_invariance_two_way_splits():
    expected = _parse([WELL_FORMED])

    for i in range(len(WELL_FORMED) + 1):
        assert _parse([WELL_FORMED[:i], WELL_FORMED[i:]]) == expected, i


def test_chunk_invariance_character_by_character():
    assert _parse(list(WELL_FORMED)) == _parse([WELL_FORMED])


def test_chunk_invariance_random_chunking():
    text = "Preamble <reasoning>if a<b then c</reasoning><conclusion>x <y> z and more</conclusion>"
    expected = _parse([text])
    rng = random.Random(7)

    for _ in range(50):
        chunks = []
        i = 0
        while i < len(text):
            size = rng.randint(1, 6)
            chunks.append(text[i : i + size])
            i += size
        assert _parse(chunks) == expected


def test_partial_open_marker_is_held_back():
    state = _feed(["Hello <conc"])

    assert state.phase is Phase.IDLE
    assert state.prefix == ""
    assert state.conclusion == ""
    assert state.pending == "Hello <conc"

    state = process_chunk(state, "lusion>Hi there")

    assert state.phase is Phase.CONCLUSION
    assert state.prefix == "Hello "
    assert state.conclusion == "Hi there"
    assert state.pending == ""


def test_partial_close_marker_is_held_back():
    state = _feed(["<reasoning>abc</reaso"])

    assert state.phase is Phase.REASONING
    assert state.reasoning == ""
    assert state.pending == "abc</reaso"

    state = process_chunk(state, "ning>rest")

    assert state.phase is Phase.IDLE
    assert state.reasoning == "abc"
    assert "</reaso" not in state.prefix


def test_fragment_released_once_it_cannot_be_a_marker():
    state = _feed(["<conclusion>a <co"])
    assert state.conclusion == ""

    state = process_chunk(state, "w> moo")

    assert state.conclusion == "a <cow> moo"
    assert state.pending == ""


def test_process_chunk_leaves_input_state_untouched():
    state = create_state()
    new_state = process_chunk(state, "<reasoning>abc")

    assert state.phase is Phase.IDLE
    assert state.pending == ""
    assert new_state.reasoning == "abc"


def test_many_transitions_in_one_chunk():
    state = _feed(["<reasoning>r</reasoning><tools>t</tools><conclusion>c</conclusion>"])

    assert state.reasoning == "r"
    assert state.tools == "t"
    assert state.conclusion == "c"
    assert state.phase is Phase.DONE
    assert state.pending == ""


def test_no_structure_falls_back_to_plain_content():
    result = _parse(["Just a plain ", "reply without markers."])

    assert result.normal_content == "Just a plain reply without markers."
    assert result.conclusion == "Just a plain reply without markers."
    assert result.reasoning is None
    assert result.tools is None


def test_prefix_dropped_once_structure_appears():
    result = _parse(["Sure! <reasoning>think</reasoning><conclusion>The final answer text.</conclusion>"])

    assert result.reasoning == "think"
    assert result.normal_content == "The final answer text."


def test_duplicate_open_concatenates():
    result = _parse(["<reasoning>a<reasoning>b</reasoning>"])

    assert result.reasoning == "ab"


def test_stray_close_is_ignored():
    state = _feed(["<conclusion>x</tools>y</conclusion>"])

    assert state.phase is Phase.DONE
    assert finalize(state).conclusion == "xy"


def test_open_while_other_section_open_switches():
    result = _parse(["<reasoning>a<tools>b</tools>"])

    assert result.reasoning == "a"
    assert result.tools == ["b"]


def test_trailing_content_after_done_goes_to_conclusion():
    state = _feed(["<conclusion>Answer is 42.</conclusion>", " Extra words."])

    assert state.phase is Phase.DONE
    assert state.conclusion == "Answer is 42. Extra words."


def test_reopening_after_done():
    result = _parse(["<conclusion>c</conclusion><reasoning>r</reasoning>"])

    assert result.conclusion == "c"
    assert result.reasoning == "r"


def test_unterminated_section_at_end_of_stream():
    result = _parse(["<reasoning>partial ", "thought"])

    assert result.reasoning == "partial thought"
    assert result.error is None
    assert result.normal_content == ""


def test_finalize_flushes_pending_without_marker_fragments():
    state = _feed(["<conclusion>The answer is clear </conc"])
    assert state.pending.endswith("</conc")

    final = finalize_state(state)

    assert final.pending == ""
    assert final.phase is Phase.DONE
    assert final.conclusion == "The answer is clear </conc"


def test_short_conclusion_suppressed_when_reasoning_present():
    result = _parse(["<reasoning>Long reasoning here.</reasoning><conclusion>OK.</conclusion>"])

    assert result.reasoning == "Long reasoning here."
    assert result.conclusion == "OK."
    assert result.normal_content == ""


def test_short_conclusion_kept_without_other_sections():
    assert _parse(["<conclusion>OK.</conclusion>"]).normal_content == "OK."
    assert _parse(["OK."]).normal_content == "OK."


def test_noise_threshold_is_configurable():
    state = _feed(["<reasoning>r</reasoning><conclusion>Looks fine overall.</conclusion>"])

    assert finalize(state).normal_content == "Looks fine overall."
    assert finalize(state, noise_threshold=20).normal_content == ""


def test_attachments_extracted_from_conclusion():
    text = (
        "<reasoning>Looked it up.</reasoning><conclusion>See the attached report for details."
        '<file name="hits.csv" size="2KB">id,smiles</file></conclusion>'
    )
    result = _parse([text[:50], text[50:]])

    assert [f.name for f in result.files] == ["hits.csv"]
    assert result.files[0].type == "csv"
    assert result.normal_content == "See the attached report for details."


def test_transition_table():
    reasoning_open = Marker(Section.REASONING, MarkerKind.OPEN)
    conclusion_close = Marker(Section.CONCLUSION, MarkerKind.CLOSE)
    reasoning_close = Marker(Section.REASONING, MarkerKind.CLOSE)

    assert transition(Phase.IDLE, reasoning_open) is Phase.REASONING
    assert transition(Phase.DONE, reasoning_open) is Phase.REASONING
    assert transition(Phase.REASONING, reasoning_open) is Phase.REASONING
    assert transition(Phase.REASONING, reasoning_close) is Phase.IDLE
    assert transition(Phase.CONCLUSION, conclusion_close) is Phase.DONE
    assert transition(Phase.TOOLS, reasoning_close) is Phase.TOOLS
    assert transition(Phase.IDLE, conclusion_close) is Phase.IDLE


@pytest.mark.parametrize("marker", ALL_MARKERS)
def test_error_phase_is_terminal(marker):
    assert transition(Phase.ERROR, marker) is Phase.ERROR


def test_error_phase_unreachable_through_markers():
    for (phase, _marker), new_phase in TRANSITIONS.items():
        if phase is not Phase.ERROR:
            assert new_phase is not Phase.ERROR

    rng = random.Random(3)
    pieces = [m.literal for m in ALL_MARKERS] + ["text", "<", "</", " ", ">"]
    for _ in range(200):
        text = "".join(rng.choice(pieces) for _ in range(20))
        state = _feed([text[: len(text) // 2], text[len(text) // 2 :]])
        assert state.phase is not Phase.ERROR
        assert finalize(state).error is None


def test_mark_error_stops_accumulation():
    state = mark_error(_feed(["<reasoning>before"]), "connection reset")
    state = process_chunk(state, " after</reasoning>")

    assert state.phase is Phase.ERROR
    assert state.reasoning == "before"

    result = finalize(state)
    assert result.error == "connection reset"
    assert result.reasoning == "before"


def test_snapshot_of_in_flight_stream():
    state = _feed(["<reasoning>thinking so far", "</reasoning><tools>PubChem, RDKit"])
    preview = snapshot(state)

    assert preview.reasoning == "thinking so far"
    assert preview.tools == ["PubChem", "RDKit"]
    assert preview.normal_content == ""
    assert state.phase is Phase.TOOLS


def test_snapshot_shows_plain_prefix():
    assert snapshot(_feed(["Hi!"])).normal_content == "Hi!"


def test_stream_parser_object():
    parser = StreamParser()
    for chunk in ["<reason", "ing>r</reasoning><conc", "lusion>A complete answer.</conclusion>"]:
        parser.feed(chunk)

    result = parser.finalize()

    assert result.reasoning == "r"
    assert result.normal_content == "A complete answer."
    assert parser.state.phase is Phase.DONE


def test_stream_parser_fail():
    parser = StreamParser()
    parser.feed("<conclusion>half an ans")
    parser.fail("upstream closed")
    parser.feed("wer</conclusion>")

    result = parser.finalize()

    assert result.conclusion == "half an ans"
    assert result.error == "upstream closed"
    assert parser.state.phase is Phase.ERROR
