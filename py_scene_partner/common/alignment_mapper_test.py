"""Tests for the alignment_mapper module."""

from unittest.mock import Mock

import pytest
from common import alignment_mapper
from common.audio_timing import AlignmentWord, LineTiming
from common.models import ScriptElement


@pytest.fixture(autouse=True, name='mock_logger')
def mock_logger_fixture(monkeypatch):
  mock_log = Mock()
  monkeypatch.setattr(alignment_mapper, 'logger', mock_log)
  return mock_log


def _words(*triples) -> list[AlignmentWord]:
  return [AlignmentWord(text=t, start=s, end=e) for t, s, e in triples]


def _lines(*texts, first_index: int = 0) -> list[ScriptElement]:
  return [
    ScriptElement(index=first_index + i, text=text)
    for i, text in enumerate(texts)
  ]


def _sequential_words(text: str, start: float = 0.0, step: float = 0.25):
  """Aligned words for `text`, one `step` seconds apart."""
  triples = []
  for i, word in enumerate(text.split()):
    triples.append((word, start + i * step, start + (i + 1) * step))
  return _words(*triples)


def _json_fields(mock_method) -> list[dict]:
  return [c.kwargs["extra"]["json_fields"] for c in mock_method.call_args_list]


def test_exact_match():
  words = _words(("the", 0.0, 0.2), ("cat", 0.2, 0.5), ("sat", 0.5, 0.9))

  timing = alignment_mapper.map_alignment_to_lines(words,
                                                   _lines("The cat sat."))

  assert timing == {0: LineTiming(start_time=0.0, end_time=0.9)}


def test_punctuation_on_aligned_words_is_ignored():
  words = _words(("Hello,", 0.0, 0.4), ("world!", 0.4, 0.9),
                 ("It's", 1.2, 1.4), ("late.", 1.4, 1.8))

  timing = alignment_mapper.map_alignment_to_lines(
    words, _lines("Hello, world!", "It's late."))

  assert timing == {
    0: LineTiming(start_time=0.0, end_time=0.9),
    1: LineTiming(start_time=1.2, end_time=1.8),
  }


def test_contraction_against_split_tokens_leaves_line_unmatched():
  words = _words(("don't", 1.0, 1.4))

  timing = alignment_mapper.map_alignment_to_lines(words, _lines("Do not."))

  assert timing == {}


def test_compound_word_absorbs_consecutive_tokens():
  words = _words(("well...okay", 0.3, 1.1), ("fine", 1.1, 1.5))

  timing = alignment_mapper.map_alignment_to_lines(
    words, _lines("Well, okay.", "Fine."))

  assert timing == {
    0: LineTiming(start_time=0.3, end_time=1.1),
    1: LineTiming(start_time=1.1, end_time=1.5),
  }


def test_fuzzy_match_handles_pluralization_drift():
  words = _words(("three", 0.0, 0.3), ("dollars", 0.3, 0.8))

  timing = alignment_mapper.map_alignment_to_lines(words,
                                                   _lines("Three dollar."))

  assert timing == {0: LineTiming(start_time=0.0, end_time=0.8)}


def test_short_words_require_exact_match():
  words = _words(("an", 0.0, 0.2), ("ant", 0.2, 0.5))

  timing = alignment_mapper.map_alignment_to_lines(words, _lines("A."))

  assert timing == {}


def test_lookahead_skips_filler_word(mock_logger):
  words = _words(("well", 0.0, 0.3), ("um", 0.3, 0.5), ("hello", 0.5, 0.8),
                 ("there", 0.8, 1.1), ("goodbye", 1.5, 2.0))

  timing = alignment_mapper.map_alignment_to_lines(
    words, _lines("Well hello there.", "Goodbye."))

  assert timing == {
    0: LineTiming(start_time=0.0, end_time=1.1),
    1: LineTiming(start_time=1.5, end_time=2.0),
  }
  skips = [
    f for f in _json_fields(mock_logger.debug)
    if f["decision"] == "lookahead_skip"
  ]
  assert skips == [{
    "batch_index": None,
    "line_index": 0,
    "decision": "lookahead_skip",
    "skipped_from": 1,
    "offset": 1,
  }]


def test_missing_line_is_omitted_and_later_lines_still_match(mock_logger):
  lines = _lines("Good morning.", "How are you?", "Fine thanks.",
                 "Purple elephants dance.", "See you later.")
  words = _sequential_words(
    "good morning how are you fine thanks see you later")

  timing = alignment_mapper.map_alignment_to_lines(words,
                                                   lines,
                                                   batch_index=2)

  assert sorted(timing) == [0, 1, 2, 4]
  assert timing[4] == LineTiming(start_time=1.75, end_time=2.5)
  starts = [timing[i].start_time for i in sorted(timing)]
  assert starts == sorted(starts)

  unmatched = [
    f for f in _json_fields(mock_logger.warn) if f["decision"] == "unmatched"
  ]
  assert len(unmatched) == 1
  assert unmatched[0]["line_index"] == 3
  assert unmatched[0]["batch_index"] == 2
  assert unmatched[0]["backtrack"] == "resume_after_last_line"
  assert unmatched[0]["resume_index"] == 7


def test_partial_match_resumes_after_last_matched_word(mock_logger):
  words = _words(("alpha", 0.0, 0.5), ("beta", 0.5, 1.0), ("delta", 1.0, 1.5),
                 ("epsilon", 1.5, 2.0))

  timing = alignment_mapper.map_alignment_to_lines(
    words, _lines("Alpha beta gamma.", "Delta epsilon."))

  assert timing == {1: LineTiming(start_time=1.0, end_time=2.0)}
  unmatched = [
    f for f in _json_fields(mock_logger.warn) if f["decision"] == "unmatched"
  ]
  assert unmatched[0]["backtrack"] == "resume_after_partial_match"
  assert unmatched[0]["resume_index"] == 2


def test_unmatched_first_line_skips_forward(mock_logger):
  words = _words(("cat", 0.0, 0.3), ("dog", 0.3, 0.6), ("cow", 0.6, 0.9))

  timing = alignment_mapper.map_alignment_to_lines(words,
                                                   _lines("Zebra.", "Dog."))

  assert timing == {}
  decisions = [
    f["backtrack"] for f in _json_fields(mock_logger.warn)
    if f["decision"] == "unmatched"
  ]
  # The second line starts scanning at the last word and never sees "dog".
  assert decisions == ["skip_forward", "skip_forward"]


def test_line_without_words_is_skipped(mock_logger):
  words = _words(("hello", 0.0, 0.5))

  timing = alignment_mapper.map_alignment_to_lines(words,
                                                   _lines("--", "Hello."))

  assert timing == {1: LineTiming(start_time=0.0, end_time=0.5)}
  assert _json_fields(mock_logger.warn)[0]["decision"] == "empty_line"


def test_no_words_leaves_every_line_unmatched():
  assert alignment_mapper.map_alignment_to_lines([], _lines("Hi.")) == {}
