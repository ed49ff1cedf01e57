"""Group dialogue entries into character-budgeted synthesis batches."""

from __future__ import annotations

from common.models import DialogueEntry

DEFAULT_MAX_BATCH_CHARS = 500


def split_dialogue_into_batches(
  entries: list[DialogueEntry],
  max_chars: int = DEFAULT_MAX_BATCH_CHARS,
) -> list[list[DialogueEntry]]:
  """Greedily pack consecutive entries into batches of at most `max_chars`.

  Entries are never split or reordered. An entry that alone exceeds the
  budget still gets a batch of its own.

  Args:
    entries: Dialogue entries in line order.
    max_chars: Maximum summed text length of a batch.

  Returns:
    The batches, in line order. Empty if `entries` is empty.
  """
  batches: list[list[DialogueEntry]] = []
  current: list[DialogueEntry] = []
  current_chars = 0

  for entry in entries:
    entry_chars = len(entry.text)
    if current and current_chars + entry_chars > max_chars:
      batches.append(current)
      current = [entry]
      current_chars = entry_chars
    else:
      current.append(entry)
      current_chars += entry_chars

  if current:
    batches.append(current)

  return batches
