"""Tests for the dialogue_batches module."""

from common import dialogue_batches
from common.models import DialogueEntry


def _entry(index: int, length: int) -> DialogueEntry:
  return DialogueEntry(text="x" * length, voice_id="v", line_index=index)


def test_empty_input_gives_no_batches():
  assert dialogue_batches.split_dialogue_into_batches([]) == []


def test_entries_fit_in_one_batch():
  entries = [_entry(0, 100), _entry(1, 200), _entry(2, 200)]
  batches = dialogue_batches.split_dialogue_into_batches(entries)
  assert batches == [entries]


def test_budget_closes_batch_before_overflowing_entry():
  entries = [_entry(0, 300), _entry(1, 150), _entry(2, 100), _entry(3, 10)]

  batches = dialogue_batches.split_dialogue_into_batches(entries, max_chars=500)

  assert [[e.line_index for e in b] for b in batches] == [[0, 1], [2, 3]]
  for batch in batches:
    assert sum(len(e.text) for e in batch) <= 500


def test_over_budget_entry_forms_singleton_batch():
  entries = [_entry(0, 50), _entry(1, 900), _entry(2, 50)]

  batches = dialogue_batches.split_dialogue_into_batches(entries, max_chars=500)

  assert [[e.line_index for e in b] for b in batches] == [[0], [1], [2]]


def test_batches_preserve_global_line_order():
  entries = [_entry(i, 70 + (i * 37) % 200) for i in range(40)]

  batches = dialogue_batches.split_dialogue_into_batches(entries, max_chars=300)

  flattened = [e.line_index for batch in batches for e in batch]
  assert flattened == list(range(40))
  assert all(batch for batch in batches)
  for batch in batches:
    if len(batch) > 1:
      assert sum(len(e.text) for e in batch) <= 300
