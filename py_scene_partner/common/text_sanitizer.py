"""Text sanitization for dialogue synthesis and forced alignment.

Script lines carry stage directions and performance tags in parentheses,
braces and brackets. Synthesis keeps only the bracket tags the TTS model
understands; alignment drops every tag so the transcript contains only words
that are actually spoken.
"""

from __future__ import annotations

import re

APPROVED_AUDIO_TAGS: frozenset[str] = frozenset({
  # Voice-related
  "laugh",
  "laughs",
  "laughs harder",
  "starts laughing",
  "wheezing",
  "whisper",
  "whispers",
  "sigh",
  "sighs",
  "exhales",
  "sarcastic",
  "curious",
  "excited",
  "crying",
  "snorts",
  "mischievously",
  "gasp",
  "giggles",
  "panicked",
  "tired",
  "shouting",
  "trembling",
  "serious",
  "robotically",
  "amazed",
  "pause",
  "flirty",
  # Sound effects
  "gunshot",
  "applause",
  "clapping",
  "explosion",
  "swallows",
  "gulps",
  "door slams",
  "rainfall",
  "distant echo",
  "heartbeat",
  "thunder",
  # Unique/special
  "sings",
  "woo",
  "fart",
  "asmr mode",
  "underwater",
  "echoes",
})

_PAREN_RE = re.compile(r"\(\s*([^)]+?)\s*\)")
_BRACE_RE = re.compile(r"\{\s*([^}]+?)\s*\}")
_BRACKET_RE = re.compile(r"\[([^\]]+)\]")
_TAG_PREFIX_RE = re.compile(r"\[\s*tag:\s*([^\]]+?)\s*\]", re.IGNORECASE)
_UNDERSCORES_RE = re.compile(r"_+")
_WHITESPACE_RE = re.compile(r"\s+")

_PAUSE_TAG = "[pause]"

_DASHES = "\u2014\u2013"


def is_approved_tag(tag: str) -> bool:
  """Whether `tag` is an audio tag the dialogue model understands."""
  return tag.strip().lower() in APPROVED_AUDIO_TAGS


def _to_bracket_tag(match: re.Match[str]) -> str:
  return f"[{match.group(1).strip()}]"


def _collapse_whitespace(text: str) -> str:
  return _WHITESPACE_RE.sub(" ", text).strip()


def sanitize_for_dialogue_mode(text: str) -> str:
  """Sanitize a line for multi-voice dialogue synthesis.

  Only approved audio tags survive (a `tag:` prefix is dropped first), with
  their original casing preserved.
  """

  def _filter(match: re.Match[str]) -> str:
    content = match.group(1).strip()
    if content.lower() == "beat":
      return _PAUSE_TAG
    if is_approved_tag(content):
      return f"[{content}]"
    return ""

  cleaned = _PAREN_RE.sub(_to_bracket_tag, text)
  cleaned = _BRACE_RE.sub(_to_bracket_tag, cleaned)
  cleaned = _TAG_PREFIX_RE.sub(_to_bracket_tag, cleaned)
  cleaned = _BRACKET_RE.sub(_filter, cleaned)
  cleaned = _UNDERSCORES_RE.sub(f" {_PAUSE_TAG} ", cleaned)
  return _collapse_whitespace(cleaned)


def sanitize_for_alignment(text: str) -> str:
  """Reduce a line to the words that will be spoken, for forced alignment.

  Returns an empty string when nothing speakable remains. Otherwise the result
  always ends with sentence punctuation, which helps the aligner find line
  boundaries.
  """
  # Directions, asides and tags are never spoken.
  cleaned = re.sub(r"\([^)]*\)", " ", text)
  cleaned = re.sub(r"\[[^\]]*\]", " ", cleaned)
  cleaned = re.sub(r"\{[^}]*\}", " ", cleaned)

  cleaned = re.sub(r"^\.{3,}", "", cleaned)
  cleaned = re.sub(r"^--+", "", cleaned)

  # "I'll... tell you" -> "I'll tell you", "I was thinking..." -> "...thinking."
  cleaned = re.sub(r"(\w)\.{3,}(\s+\w)", r"\1 \2", cleaned)
  cleaned = re.sub(r"\.{3,}$", ".", cleaned)
  cleaned = re.sub(r"\.{3,}", " ", cleaned)

  cleaned = re.sub(r"(\w)--+(\s+\w)", r"\1 \2", cleaned)
  cleaned = re.sub(r"--+$", ".", cleaned)
  cleaned = re.sub(r"--+", " ", cleaned)

  cleaned = re.sub(rf"(\w)[{_DASHES}](\s+\w)", r"\1 \2", cleaned)
  cleaned = re.sub(rf"[{_DASHES}]$", ".", cleaned)
  cleaned = re.sub(rf"[{_DASHES}]", " ", cleaned)

  cleaned = re.sub(r"([.!?])\s*\1+", r"\1", cleaned)
  cleaned = re.sub(r"([.!?])\s*", r"\1 ", cleaned)

  cleaned = re.sub(r"^[^\w]+", "", cleaned)
  cleaned = re.sub(r"[^\w.!?]+$", "", cleaned)
  cleaned = _collapse_whitespace(cleaned)

  if not re.search(r"\w", cleaned):
    return ""
  if not re.search(r"[.!?]$", cleaned):
    cleaned += "."
  return cleaned
