"""Audio timing primitives (forced alignment words and per-line timing).

The forced-alignment service returns a flat, time-ordered list of
`AlignmentWord`s for one batch of synthesized dialogue. The alignment mapper
turns that list into a `TimingMap`: one `LineTiming` per matched script line.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class AlignmentWord:
  """A single aligned word with an absolute time window (seconds)."""

  text: str
  start: float
  end: float

  @classmethod
  def from_dict(cls, data: dict[str, Any]) -> AlignmentWord:
    """Create an AlignmentWord from a `{text, start, end}` JSON object."""
    return cls(
      text=str(data.get("text") or ""),
      start=float(data.get("start") or 0.0),
      end=float(data.get("end") or 0.0),
    )


@dataclass(frozen=True)
class LineTiming:
  """Start/end of one script line within its batch audio (seconds)."""

  start_time: float
  end_time: float

  @property
  def duration(self) -> float:
    """Length of the line's spoken window."""
    return self.end_time - self.start_time


TimingMap = dict[int, LineTiming]
"""Line index -> timing, only for lines that were matched."""

SegmentMap = dict[int, bytes]
"""Line index -> self-contained WAV bytes for that line."""


def parse_alignment_words(payload: dict[str, Any] | None) -> list[AlignmentWord]:
  """Parse a forced-alignment JSON response (`{"words": [...]}`)."""
  if not payload:
    return []
  words = payload.get("words") or []
  return [AlignmentWord.from_dict(w) for w in words if isinstance(w, dict)]
