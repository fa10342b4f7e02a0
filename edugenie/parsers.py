"""
Response repair for structured generations.

Small and local models asked for a JSON array often wrap it in prose, answer
with a schema-shaped envelope, or mix schema fragments in with the records.
This module recovers the records and turns them into Flashcard and
QuizQuestion objects:

- Bare array:      [{"front": ..., "back": ...}, ...]
- Items envelope:  {"type": "array", "items": [...]}
- Data envelope:   {"type": "array", "data": [...]}
"""

import json
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from pydantic import ValidationError

from edugenie.config import QUIZ_OPTION_COUNT, Flashcard, QuizQuestion
from edugenie.core import (
    EmptyResultSet,
    UnexpectedResponseShape,
    UnparsableResponse,
    excerpt,
)

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# WRAPPER SHAPES
# ─────────────────────────────────────────────────────────────────────

@dataclass
class BareArray:
    entries: list


@dataclass
class ItemsEnvelope:
    entries: list


@dataclass
class DataEnvelope:
    entries: list


WrapperShape = Union[BareArray, ItemsEnvelope, DataEnvelope]


def extract_json(text: str) -> Any:
    """
    Parse text that should contain a JSON array.

    Tries the whole string first, then the span from the first "[" to the
    last "]".

    Raises:
        UnparsableResponse: no array could be recovered
    """
    try:
        return json.loads(text)
    except ValueError:
        pass

    start = text.find("[")
    end = text.rfind("]")
    if start == -1 or end <= start:
        raise UnparsableResponse("AI returned invalid format (no array found).")

    try:
        return json.loads(text[start:end + 1])
    except ValueError as e:
        raise UnparsableResponse(f"AI returned malformed JSON: {e}") from e


def classify_shape(value: Any) -> WrapperShape:
    """Identify which known wrapper shape a parsed value has."""
    if isinstance(value, list):
        return BareArray(value)
    if isinstance(value, dict) and value.get("type") == "array":
        if isinstance(value.get("items"), list):
            return ItemsEnvelope(value["items"])
        if isinstance(value.get("data"), list):
            return DataEnvelope(value["data"])
        raise UnexpectedResponseShape(
            'AI response has type "array" but no data/items field found.'
        )
    raise UnexpectedResponseShape("AI response parsed but is not an array.")


def unwrap_shape(shape: WrapperShape) -> list:
    if isinstance(shape, BareArray):
        return shape.entries
    if isinstance(shape, ItemsEnvelope):
        return shape.entries
    if isinstance(shape, DataEnvelope):
        return shape.entries
    raise TypeError(f"Unhandled wrapper shape: {type(shape).__name__}")


# ─────────────────────────────────────────────────────────────────────
# RECORDS
# ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class RecordSpec:
    """How to recognise and build one kind of record."""
    kind: str  # plural noun used in messages
    id_prefix: str
    key_fields: tuple[str, ...]  # an entry needs at least one of these
    build: Callable[[dict, str], Optional[Any]]


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _unwrap_entry(entry: Any) -> Any:
    """Lift a nested {"data": {...}} record up to flat fields."""
    if isinstance(entry, dict) and isinstance(entry.get("data"), dict):
        return entry["data"]
    return entry


def _is_schema_fragment(entry: dict) -> bool:
    return "properties" in entry


def select_entries(entries: list, key_fields: tuple[str, ...]) -> list[dict]:
    """Drop schema fragments and entries carrying none of the key fields."""
    selected = []
    for entry in entries:
        if not isinstance(entry, dict) or _is_schema_fragment(entry):
            continue
        if not any(field in entry for field in key_fields):
            entry = _unwrap_entry(entry)
        if not isinstance(entry, dict) or _is_schema_fragment(entry):
            continue
        if any(field in entry for field in key_fields):
            selected.append(entry)
    return selected


def _build_flashcard(entry: dict, record_id: str) -> Flashcard:
    return Flashcard(
        id=record_id,
        front=_as_text(entry.get("front")),
        back=_as_text(entry.get("back")),
    )


_OPTION_LETTER = re.compile(r"^(?:option\s+)?([a-d])\s*[).:]?\s*$", re.IGNORECASE)


def reconcile_answer(options: list[str], answer: str) -> Optional[str]:
    """
    Map a model's answer onto the exact text of one option.

    Accepts exact matches, matches differing only in case or surrounding
    whitespace, and bare option letters ("B", "c)", "Option D").
    Returns None when the answer matches no option.
    """
    if answer in options:
        return answer

    folded = answer.strip().casefold()
    for option in options:
        if option.strip().casefold() == folded:
            return option

    letter = _OPTION_LETTER.match(answer.strip())
    if letter:
        index = ord(letter.group(1).lower()) - ord("a")
        if index < len(options):
            return options[index]
    return None


def _build_quiz_question(entry: dict, record_id: str) -> Optional[QuizQuestion]:
    raw_options = entry.get("options")
    options: list[str] = []
    if isinstance(raw_options, list):
        for option in raw_options:
            text = _as_text(option)
            if text not in options:
                options.append(text)

    question = _as_text(entry.get("question"))
    if len(options) != QUIZ_OPTION_COUNT:
        logger.warning(
            "Dropping quiz question with %d options: %s", len(options), excerpt(question)
        )
        return None

    answer = _as_text(entry.get("correctAnswer", entry.get("correct_answer")))
    matched = reconcile_answer(options, answer)
    if matched is None:
        logger.warning(
            "Dropping quiz question whose answer %r matches no option: %s",
            answer, excerpt(question),
        )
        return None

    try:
        return QuizQuestion(
            id=record_id,
            question=question,
            options=options,
            correct_answer=matched,
            explanation=_as_text(entry.get("explanation")),
        )
    except ValidationError as e:
        logger.warning("Dropping invalid quiz question: %s", e)
        return None


FLASHCARD_SPEC = RecordSpec(
    kind="flashcards",
    id_prefix="card",
    key_fields=("front", "back"),
    build=_build_flashcard,
)

QUIZ_SPEC = RecordSpec(
    kind="quiz questions",
    id_prefix="quiz",
    key_fields=("question",),
    build=_build_quiz_question,
)


def parse_records(text: str, record_spec: RecordSpec) -> list:
    """
    Recover a list of records from raw model output.

    Raises:
        UnparsableResponse: no JSON array in the text
        UnexpectedResponseShape: JSON found but not an array or array envelope
        EmptyResultSet: nothing usable left after filtering
    """
    shape = classify_shape(extract_json(text))
    entries = select_entries(unwrap_shape(shape), record_spec.key_fields)

    batch = uuid.uuid4().hex[:12]
    records = []
    for entry in entries:
        record = record_spec.build(entry, f"{record_spec.id_prefix}-{batch}-{len(records)}")
        if record is not None:
            records.append(record)

    if not records:
        logger.error("No valid %s in response: %s", record_spec.kind, excerpt(text, 500))
        raise EmptyResultSet(f"No valid {record_spec.kind} found in response.")
    return records


def parse_flashcards(text: str) -> list[Flashcard]:
    return parse_records(text, FLASHCARD_SPEC)


def parse_quiz(text: str) -> list[QuizQuestion]:
    return parse_records(text, QUIZ_SPEC)
