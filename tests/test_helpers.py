"""Tests for the shared text utilities."""
import datetime
import enum
from dataclasses import dataclass, field
from typing import List

import pytest

from aerotrain.utils.helpers import (
    clamp,
    count_occurrences,
    jaccard_similarity,
    normalize_key,
    normalize_text,
    safe_divide,
    split_paragraphs,
    term_frequencies,
    to_jsonable,
    tokenize,
)


def test_normalize_text_keeps_lines():
    assert normalize_text("  Engine\r\nstart \t\t checklist  ") == "Engine\nstart checklist"


def test_normalize_key():
    assert normalize_key("  Hydraulic   Pressure ") == "hydraulic_pressure"


def test_tokenize_strips_punctuation():
    assert tokenize("Flaps, gear; (down)!") == ["flaps", "gear", "down"]


@pytest.mark.parametrize("a, b, expected", [
    ("hydraulic pressure", "hydraulic pressure", 1.0),
    ("hydraulic pressure", "hydraulic system", 1 / 3),
    ("an of to", "at by in", 0.0),
])
def test_jaccard_similarity(a, b, expected):
    assert jaccard_similarity(a, b) == pytest.approx(expected)


def test_split_paragraphs():
    assert split_paragraphs("First.\n\n  \nSecond.\n") == ["First.", "Second."]


def test_term_frequencies_keep_first_seen_order():
    assert list(term_frequencies(["fire", "engine", "fire"]).items()) == [("fire", 2), ("engine", 1)]


def test_count_occurrences_whole_words():
    text = "The A320 fleet. An A320neo is not counted; a320 is."
    assert count_occurrences("A320", text) == 2


def test_clamp_and_safe_divide():
    assert clamp(1.7) == 1.0
    assert clamp(-0.2) == 0.0
    assert safe_divide(1, 0, default=-1.0) == -1.0
    assert safe_divide(3, 2) == 1.5


class _Phase(str, enum.Enum):
    GROUND = "ground"


@dataclass
class _Record:
    phase: _Phase
    day: datetime.date
    tags: List[str] = field(default_factory=list)


def test_to_jsonable():
    record = _Record(phase=_Phase.GROUND, day=datetime.date(2024, 5, 1), tags=["a"])
    assert to_jsonable({_Phase.GROUND: [record]}) == {
        "ground": [{"phase": "ground", "day": "2024-05-01", "tags": ["a"]}],
    }
