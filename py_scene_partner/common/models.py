"""Models for the Firestore database."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any

from common.audio_timing import LineTiming

_INTERPRETED_FIELDS = frozenset({
  "index", "type", "text", "character", "role", "voiceId", "ttsUrl",
  "startTime", "endTime", "duration"
})


class ElementType(Enum):
  """Kind of script element. Stored as string in Firestore."""
  SCENE = "scene"
  LINE = "line"
  DIRECTION = "direction"


class ElementRole(Enum):
  """Who speaks a line during rehearsal."""
  USER = "user"
  AI = "ai"
  SCENE_PARTNER = "scene-partner"


class HydrationStatus(Enum):
  """Per-line lifecycle of generated scene-partner audio."""
  PENDING = "pending"
  UPDATING = "updating"
  READY = "ready"
  FAILED = "failed"


@dataclass(frozen=True, kw_only=True)
class ScriptElement:
  """A single element of a parsed script.

  `index` is the stable identity key of the element within its script. Audio
  fields are attached by hydration: `tts_url` once a clip is uploaded, and
  `timing` only as a complete record (never a partial start/end pair).
  """

  index: int
  type: ElementType = ElementType.LINE
  text: str = ""
  character: str | None = None
  role: ElementRole | None = None
  voice_id: str | None = None
  tts_url: str | None = None
  timing: LineTiming | None = None
  extra: dict[str, Any] = dataclasses.field(default_factory=dict)
  """Stored fields this model does not interpret, written back unchanged."""

  @property
  def is_line(self) -> bool:
    """Whether this element is a spoken line."""
    return self.type is ElementType.LINE

  @property
  def needs_audio(self) -> bool:
    """Whether this element is a line without generated audio."""
    return self.is_line and not self.tts_url

  def with_audio(self, url: str, timing: LineTiming) -> ScriptElement:
    """Return a copy carrying the uploaded clip URL and its timing."""
    return dataclasses.replace(self, tts_url=url, timing=timing)

  @classmethod
  def from_firestore_dict(cls, data: dict[str, Any]) -> ScriptElement:
    """Create a ScriptElement from a Firestore script array entry.

    Field names follow the web client (`voiceId`, `ttsUrl`, `startTime`, ...).
    Timing is restored only when both `startTime` and `endTime` are present.
    """
    data = dict(data or {})
    extra = {k: v for k, v in data.items() if k not in _INTERPRETED_FIELDS}

    parsed: dict[str, Any] = {
      'index': int(data.get('index', 0)),
      'text': str(data.get('text') or ''),
      'character': data.get('character') or None,
      'voice_id': data.get('voiceId') or None,
      'tts_url': data.get('ttsUrl') or None,
    }
    _parse_enum_field(data, 'type', ElementType, ElementType.LINE)
    parsed['type'] = data['type']
    if data.get('role'):
      raw_role = data['role']
      _parse_enum_field(data, 'role', ElementRole, None)
      parsed['role'] = data['role']
      if parsed['role'] is None:
        extra['role'] = raw_role
    parsed['extra'] = extra

    start_time = data.get('startTime')
    end_time = data.get('endTime')
    if start_time is not None and end_time is not None:
      parsed['timing'] = LineTiming(start_time=float(start_time),
                                    end_time=float(end_time))

    return cls(**parsed)

  def to_dict(self) -> dict[str, Any]:
    """Convert to a Firestore script array entry.

    - Serializes enums to their string values
    - Omits unset optional fields
    - Flattens `timing` into `startTime`/`endTime`/`duration`
    - Writes back the stored fields kept in `extra`
    """
    data: dict[str, Any] = {
      'index': self.index,
      'type': self.type.value,
      'text': self.text,
    }
    if self.character:
      data['character'] = self.character
    if self.role is not None:
      data['role'] = self.role.value
    if self.voice_id:
      data['voiceId'] = self.voice_id
    if self.tts_url:
      data['ttsUrl'] = self.tts_url
    if self.timing is not None:
      data['startTime'] = self.timing.start_time
      data['endTime'] = self.timing.end_time
      data['duration'] = self.timing.duration
    return {**self.extra, **data}


@dataclass(frozen=True)
class DialogueEntry:
  """One line of text to synthesize as part of a dialogue batch."""

  text: str
  voice_id: str
  line_index: int

  def to_request_dict(self) -> dict[str, Any]:
    """Serialize for the dialogue synthesis request body."""
    return {
      'text': self.text,
      'voiceId': self.voice_id,
      'lineIndex': self.line_index,
    }


def _parse_enum_field(
  data: dict,
  field_name: str,
  enum_cls: type[Enum],
  default_value: Enum | None,
) -> None:
  """Coerce a string value in `data[field_name]` to the given Enum.

  If the field is missing, empty, or invalid, sets it to `default_value`.
  """
  value = data.get(field_name)
  try:
    data[field_name] = enum_cls(value) if value else default_value
  except Exception:
    data[field_name] = default_value
