"""Normalize script-line text into comparable word tokens.

The same function builds the comparison tokens for every line handed to the
alignment mapper, so it must stay deterministic and side-effect free: any
asymmetry between how a transcript is tokenized and how its lines are
re-tokenized breaks matching.
"""

from __future__ import annotations

import re

# Apostrophes between two letters are contractions ("don't", "o'clock").
_CONTRACTION_RE = re.compile(r"(?<=[^\W\d_])['’](?=[^\W\d_])")
_CONTRACTION_SENTINEL = "__apos__"

_WORD_THEN_PUNCT_RE = re.compile(r"([^\W\d_])([.,!?;:])")
_PUNCT_THEN_WORD_RE = re.compile(r"([.,!?;:])([^\W\d_])")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_WHITESPACE_RE = re.compile(r"\s+")


def preprocess_line_for_alignment(text: str) -> list[str]:
  """Split a line into lowercase word tokens for alignment matching.

  Contractions keep their apostrophe; all other punctuation is removed, and
  tokens without any alphanumeric character are dropped.

  Args:
    text: The raw (or alignment-sanitized) line text.

  Returns:
    Ordered list of lowercase tokens, e.g. "Don't go, Sam!" ->
    ["don't", "go", "sam"].
  """
  cleaned = _CONTRACTION_RE.sub(_CONTRACTION_SENTINEL, text)
  cleaned = _WORD_THEN_PUNCT_RE.sub(r"\1 \2", cleaned)
  cleaned = _PUNCT_THEN_WORD_RE.sub(r"\1 \2", cleaned)
  cleaned = _NON_WORD_RE.sub(" ", cleaned)
  cleaned = cleaned.replace(_CONTRACTION_SENTINEL, "'")
  cleaned = _WHITESPACE_RE.sub(" ", cleaned).strip().lower()

  return [
    word for word in cleaned.split(" ")
    if word and any(ch.isalnum() for ch in word)
  ]
