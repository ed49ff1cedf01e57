"""Map forced-alignment words back onto the script lines of one batch.

The mapper walks a single forward pointer over the aligned words. Each line
is matched token by token; unexpected words (fillers the TTS model inserted)
are skipped with a short lookahead, and a line whose tokens never all appear
is left out of the timing map instead of raising. After a failed line the
pointer is moved back to a nearby safe position rather than rescanning from
the start, so mapping stays linear in the number of words.
"""

from __future__ import annotations

import re
from typing import Sequence

from common.audio_timing import AlignmentWord, LineTiming, TimingMap
from common.line_tokenizer import preprocess_line_for_alignment
from common.models import ScriptElement
from firebase_functions import logger

LOOKAHEAD_WINDOW = 10
"""How many words past an unexpected word to search for the next token."""

_FUZZY_MIN_LENGTH = 3

_APOSTROPHES_RE = re.compile(r"['’]")
_ELLIPSIS_RE = re.compile(r"\.{2,}")
_NON_WORD_RE = re.compile(r"[^\w\s]")


def _word_parts(text: str) -> list[str]:
  """Normalize an aligned word into comparable parts.

  The aligner sometimes returns compound tokens ("well...okay"), so one word
  can yield several parts.
  """
  normalized = _APOSTROPHES_RE.sub("", text.lower())
  normalized = _ELLIPSIS_RE.sub(" ", normalized)
  normalized = _NON_WORD_RE.sub(" ", normalized)
  return normalized.split()


def _lookahead_form(text: str) -> str:
  return _NON_WORD_RE.sub("", text.lower())


def _target_form(token: str) -> str:
  return _NON_WORD_RE.sub("", token)


def _matches(part: str, target: str) -> bool:
  """Exact match, or containment when both words are long enough."""
  if part == target:
    return True
  return (len(part) >= _FUZZY_MIN_LENGTH and
          len(target) >= _FUZZY_MIN_LENGTH and
          (part in target or target in part))


def map_alignment_to_lines(
  words: Sequence[AlignmentWord],
  lines: Sequence[ScriptElement],
  batch_index: int | None = None,
) -> TimingMap:
  """Assign a start/end time to each line found in the aligned words.

  Args:
    words: Aligned words for one batch, in audio order.
    lines: The batch's lines in line order. Their `text` should already be
      sanitized the same way as the transcript sent to the aligner.
    batch_index: Only used to tag log entries.

  Returns:
    Timing per matched line index. Unmatched lines are omitted.
  """
  timing_map: TimingMap = {}
  word_count = len(words)
  word_index = 0
  last_successful_end_index = 0

  for line in lines:
    line_words = preprocess_line_for_alignment(line.text)
    log_fields = {
      "batch_index": batch_index,
      "line_index": line.index,
    }
    if not line_words:
      logger.warn(
        f"Line {line.index} has no words to align",
        extra={"json_fields": {
          **log_fields, "decision": "empty_line"
        }},
      )
      continue

    words_found = 0
    start_time: float | None = None
    end_time: float | None = None
    last_match_index = -1

    while word_index < word_count and words_found < len(line_words):
      word = words[word_index]
      parts = _word_parts(word.text)
      target = _target_form(line_words[words_found])

      matched = False
      for part in parts:
        if not _matches(part, target):
          continue
        matched = True
        if words_found == 0:
          start_time = word.start

        # Later tokens of the line may be packed into the same compound word.
        absorbed = 0
        for i, compound_part in enumerate(parts):
          if words_found + i >= len(line_words):
            break
          if not _matches(compound_part,
                          _target_form(line_words[words_found + i])):
            break
          absorbed += 1

        words_found += absorbed
        last_match_index = word_index
        end_time = word.end
        break

      if not matched and words_found > 0:
        for offset in range(1, LOOKAHEAD_WINDOW + 1):
          if word_index + offset >= word_count:
            break
          future = _lookahead_form(words[word_index + offset].text)
          if _matches(future, target):
            logger.debug(
              f"Skipping {offset} unexpected word(s) in line {line.index}",
              extra={
                "json_fields": {
                  **log_fields,
                  "decision": "lookahead_skip",
                  "skipped_from": word_index,
                  "offset": offset,
                }
              },
            )
            # The pointer is advanced by one more below.
            word_index += offset - 1
            break

      word_index += 1

      if words_found == len(line_words):
        if start_time is not None and end_time is not None:
          timing_map[line.index] = LineTiming(start_time=start_time,
                                              end_time=end_time)
          last_successful_end_index = word_index
          logger.debug(
            f"Line {line.index} matched",
            extra={
              "json_fields": {
                **log_fields,
                "decision": "matched",
                "start_time": start_time,
                "end_time": end_time,
                "word_index": word_index,
              }
            },
          )
        break

    if line.index in timing_map:
      continue

    if words_found > 0 and last_match_index >= 0:
      word_index = last_match_index + 1
      reason = "resume_after_partial_match"
    elif last_successful_end_index > 0:
      word_index = last_successful_end_index
      reason = "resume_after_last_line"
    else:
      word_index = max(0, min(word_index + LOOKAHEAD_WINDOW, word_count - 1))
      reason = "skip_forward"

    logger.warn(
      f"Line {line.index} not found in alignment "
      f"({words_found}/{len(line_words)} words)",
      extra={
        "json_fields": {
          **log_fields,
          "decision": "unmatched",
          "backtrack": reason,
          "words_found": words_found,
          "word_count": len(line_words),
          "resume_index": word_index,
        }
      },
    )

  logger.info(
    f"Mapped {len(timing_map)}/{len(lines)} lines",
    extra={
      "json_fields": {
        "batch_index": batch_index,
        "matched_lines": sorted(timing_map),
        "unmatched_lines": [
          line.index for line in lines if line.index not in timing_map
        ],
      }
    },
  )
  return timing_map
