"""Tests for edugenie.parsers module.

Covers the response shapes small local models actually produce: prose
around the array, schema-shaped envelopes, schema fragments mixed into the
records, nested data objects, and non-string field values.
"""

import json

import pytest

from edugenie.core import EmptyResultSet, UnexpectedResponseShape, UnparsableResponse
from edugenie.parsers import (
    BareArray,
    DataEnvelope,
    ItemsEnvelope,
    classify_shape,
    extract_json,
    parse_flashcards,
    parse_quiz,
    reconcile_answer,
    select_entries,
)

from tests.conftest import MOCK_QUIZ, PHOTOSYNTHESIS_CARDS


# ─────────────────────────────────────────────────────────────────────
# extract_json / classify_shape
# ─────────────────────────────────────────────────────────────────────

class TestExtractJson:

    def test_plain_json(self):
        assert extract_json('[{"front": "a"}]') == [{"front": "a"}]

    def test_array_inside_prose(self):
        text = 'Sure! Here are your cards:\n[{"front": "a", "back": "b"}]\nGood luck!'
        assert extract_json(text) == [{"front": "a", "back": "b"}]

    def test_no_brackets(self):
        with pytest.raises(UnparsableResponse, match="no array found"):
            extract_json("I cannot help with that.")

    def test_brackets_in_wrong_order(self):
        with pytest.raises(UnparsableResponse, match="no array found"):
            extract_json("] nothing here [")

    def test_malformed_span(self):
        with pytest.raises(UnparsableResponse, match="malformed JSON"):
            extract_json('Cards: [{"front": "a", "back": }]')


class TestClassifyShape:

    def test_bare_array(self):
        assert classify_shape([1]) == BareArray([1])

    def test_items_envelope(self):
        assert classify_shape({"type": "array", "items": [1]}) == ItemsEnvelope([1])

    def test_data_envelope(self):
        assert classify_shape({"type": "array", "data": [1]}) == DataEnvelope([1])

    def test_array_type_without_payload(self):
        with pytest.raises(UnexpectedResponseShape, match="no data/items field"):
            classify_shape({"type": "array", "items": {"type": "object"}})

    def test_plain_object(self):
        with pytest.raises(UnexpectedResponseShape, match="not an array"):
            classify_shape({"front": "a", "back": "b"})

    def test_items_envelope_through_full_parse(self):
        text = json.dumps({"type": "array", "items": PHOTOSYNTHESIS_CARDS[:2]})
        cards = parse_flashcards(text)
        assert [c.front for c in cards] == [c["front"] for c in PHOTOSYNTHESIS_CARDS[:2]]


# ─────────────────────────────────────────────────────────────────────
# ENTRY SELECTION
# ─────────────────────────────────────────────────────────────────────

class TestSelectEntries:

    def test_drops_schema_fragments_and_non_objects(self):
        entries = [
            {"type": "object", "properties": {"front": {"type": "string"}}},
            "stray string",
            42,
            {"front": "Q", "back": "A"},
        ]
        assert select_entries(entries, ("front", "back")) == [{"front": "Q", "back": "A"}]

    def test_unwraps_nested_data(self):
        entries = [{"data": {"front": "Q", "back": "A"}}]
        assert select_entries(entries, ("front", "back")) == [{"front": "Q", "back": "A"}]

    def test_drops_entries_without_key_fields(self):
        entries = [{"title": "nope"}, {"back": "only back"}]
        assert select_entries(entries, ("front", "back")) == [{"back": "only back"}]


# ─────────────────────────────────────────────────────────────────────
# FLASHCARDS
# ─────────────────────────────────────────────────────────────────────

class TestParseFlashcards:

    def test_photosynthesis_cards(self, photosynthesis_json):
        cards = parse_flashcards(photosynthesis_json)

        assert len(cards) == 5
        assert cards[0].front == "What is photosynthesis?"
        assert all(card.image_url is None for card in cards)

    def test_ids_unique_and_prefixed(self, photosynthesis_json):
        cards = parse_flashcards(photosynthesis_json)
        ids = [card.id for card in cards]

        assert len(set(ids)) == len(ids)
        assert all(card_id.startswith("card-") for card_id in ids)
        assert ids[-1].endswith("-4")

    def test_mixed_schema_and_records(self):
        text = json.dumps({
            "type": "array",
            "data": [
                {"type": "object", "properties": {"front": {}, "back": {}}},
                {"front": "Q1", "back": "A1"},
                {"data": {"front": "Q2", "back": "A2"}},
            ],
        })

        cards = parse_flashcards(text)

        assert [(c.front, c.back) for c in cards] == [("Q1", "A1"), ("Q2", "A2")]

    def test_coerces_field_types(self):
        cards = parse_flashcards('[{"front": 42, "back": null}]')

        assert cards[0].front == "42"
        assert cards[0].back == ""

    def test_reparse_of_own_output_is_stable(self, photosynthesis_json):
        cards = parse_flashcards(photosynthesis_json)
        again = parse_flashcards(json.dumps([c.model_dump(include={"front", "back"}) for c in cards]))

        assert [(c.front, c.back) for c in again] == [(c.front, c.back) for c in cards]

    def test_only_schema_fragments(self):
        text = json.dumps([{"type": "object", "properties": {"front": {"type": "string"}}}])

        with pytest.raises(EmptyResultSet, match="No valid flashcards"):
            parse_flashcards(text)

    def test_empty_array(self):
        with pytest.raises(EmptyResultSet):
            parse_flashcards("[]")


# ─────────────────────────────────────────────────────────────────────
# QUIZ
# ─────────────────────────────────────────────────────────────────────

class TestReconcileAnswer:

    OPTIONS = ["Nucleus", "Mitochondria", "Ribosome", "Golgi body"]

    def test_exact(self):
        assert reconcile_answer(self.OPTIONS, "Ribosome") == "Ribosome"

    def test_case_and_whitespace(self):
        assert reconcile_answer(self.OPTIONS, "  mitochondria ") == "Mitochondria"

    @pytest.mark.parametrize("answer,expected", [
        ("B", "Mitochondria"),
        ("c)", "Ribosome"),
        ("Option D", "Golgi body"),
        ("a.", "Nucleus"),
    ])
    def test_option_letters(self, answer, expected):
        assert reconcile_answer(self.OPTIONS, answer) == expected

    def test_no_match(self):
        assert reconcile_answer(self.OPTIONS, "Chloroplast") is None


class TestParseQuiz:

    def test_valid_quiz(self, quiz_json):
        questions = parse_quiz(quiz_json)

        assert len(questions) == 2
        assert questions[0].correct_answer == "Mitochondria"
        assert questions[0].explanation == "Mitochondria produce ATP."
        assert all(q.id.startswith("quiz-") for q in questions)

    def test_reparse_of_own_output_is_stable(self, quiz_json):
        questions = parse_quiz(quiz_json)
        again = parse_quiz(json.dumps([q.model_dump(by_alias=True) for q in questions]))

        assert [q.model_dump(exclude={"id"}) for q in again] == [
            q.model_dump(exclude={"id"}) for q in questions
        ]

    def test_answer_letter_is_repaired(self):
        entry = dict(MOCK_QUIZ[1], correctAnswer="B")

        questions = parse_quiz(json.dumps([entry]))

        assert questions[0].correct_answer == "Water"

    def test_unmatched_answer_is_dropped(self):
        bad = dict(MOCK_QUIZ[0], correctAnswer="Chloroplast")

        questions = parse_quiz(json.dumps([bad, MOCK_QUIZ[1]]))

        assert [q.question for q in questions] == ["What is H2O?"]

    def test_wrong_option_count_is_dropped(self):
        bad = dict(MOCK_QUIZ[0], options=["Nucleus", "Mitochondria"])

        questions = parse_quiz(json.dumps([bad, MOCK_QUIZ[1]]))

        assert len(questions) == 1

    def test_duplicate_options_collapse_then_drop(self):
        bad = dict(MOCK_QUIZ[0], options=["Nucleus", "Nucleus", "Ribosome", "Mitochondria"])

        with pytest.raises(EmptyResultSet, match="No valid quiz questions"):
            parse_quiz(json.dumps([bad]))

    def test_non_string_options_coerced(self):
        entry = {
            "question": "2 + 2?",
            "options": [3, 4, 5, 6],
            "correctAnswer": 4,
            "explanation": None,
        }

        question = parse_quiz(json.dumps([entry]))[0]

        assert question.options == ["3", "4", "5", "6"]
        assert question.correct_answer == "4"
        assert question.explanation == ""

    def test_nested_data_entries(self):
        text = json.dumps([{"data": MOCK_QUIZ[0]}])

        questions = parse_quiz(text)

        assert questions[0].question == MOCK_QUIZ[0]["question"]
