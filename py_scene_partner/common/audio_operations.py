"""Audio operations on the fixed dialogue PCM format.

Synthesized dialogue arrives as raw 48 kHz mono 16-bit PCM covering a whole
batch of lines. These helpers wrap it in WAV containers and cut it into one
clip per line using the alignment timing map.
"""

from __future__ import annotations

import io
import math
import wave
from dataclasses import dataclass
from typing import Any

from common.audio_timing import LineTiming, SegmentMap, TimingMap
from firebase_functions import logger

# --- Audio format ---

SAMPLE_RATE = 48000
CHANNELS = 1
SAMPLE_WIDTH_BYTES = 2
FRAME_SIZE_BYTES = CHANNELS * SAMPLE_WIDTH_BYTES
BYTES_PER_SECOND = SAMPLE_RATE * FRAME_SIZE_BYTES
WAV_HEADER_SIZE = 44

# --- Segment padding ---

# Padding before a line's first word. Grows to half the preceding silence.
START_PADDING_SEC = 0.06

# Upper bound on padding after a line's last word.
END_PADDING_SEC = 0.05

# Below this gap to the next line no end padding is added at all.
TIGHT_GAP_SEC = 0.1

# Gap assumed when a line has no matched neighbor on that side.
DEFAULT_NEIGHBOR_GAP_SEC = 1.0


@dataclass(frozen=True, kw_only=True)
class SegmentPlan:
  """Byte range of one line's clip within the batch PCM."""

  line_index: int
  start_byte: int
  end_byte: int
  """Exclusive."""
  start_padding: float
  end_padding: float
  safety_margin: float

  @property
  def length(self) -> int:
    """Number of PCM bytes in the clip."""
    return self.end_byte - self.start_byte


def has_wav_header(audio_bytes: bytes) -> bool:
  """Whether the buffer starts with a RIFF container."""
  return audio_bytes[:4] == b"RIFF"


def add_wav_header(pcm_bytes: bytes) -> bytes:
  """Wrap raw dialogue PCM in a 44-byte WAV header."""
  buffer = io.BytesIO()
  with wave.open(buffer, "wb") as wf:
    # pylint: disable=no-member
    wf.setnchannels(CHANNELS)
    wf.setsampwidth(SAMPLE_WIDTH_BYTES)
    wf.setframerate(SAMPLE_RATE)
    wf.writeframes(pcm_bytes)
    # pylint: enable=no-member
  return buffer.getvalue()


def strip_wav_header(audio_bytes: bytes) -> bytes:
  """Return the PCM payload of a WAV buffer, or the buffer if it is raw PCM."""
  if not has_wav_header(audio_bytes):
    return audio_bytes
  _params, frames = read_wav_bytes(audio_bytes)
  return frames


def pcm_duration_sec(pcm_bytes: bytes) -> float:
  """Duration of raw dialogue PCM."""
  return len(pcm_bytes) / BYTES_PER_SECOND


def get_wav_duration_sec(wav_bytes: bytes) -> float:
  """Compute WAV duration from bytes."""
  params, _frames = read_wav_bytes(wav_bytes)
  framerate = float(params.framerate)
  if framerate <= 0:
    raise ValueError("WAV framerate must be positive")
  return float(params.nframes) / framerate


def read_wav_bytes(wav_bytes: bytes) -> tuple[Any, bytes]:
  """Parse WAV bytes into (params, raw PCM frame bytes)."""
  with wave.open(io.BytesIO(wav_bytes), "rb") as wf:
    # pylint: disable=no-member
    params = wf.getparams()
    nframes = wf.getnframes()
    frames = wf.readframes(nframes)
    # pylint: enable=no-member

  if params.comptype != "NONE":
    raise ValueError(f"Unsupported WAV compression: {params.comptype}")

  frame_size_bytes = int(params.nchannels) * int(params.sampwidth)
  expected_len = int(params.nframes) * frame_size_bytes
  if expected_len and len(frames) != expected_len:
    # Streaming providers may write placeholder chunk sizes (0xFFFFFFFF), which
    # makes `wave` report an absurd nframes count. Infer it from the payload.
    if (frame_size_bytes > 0 and expected_len > len(frames)
        and len(frames) % frame_size_bytes == 0):
      params = params._replace(nframes=len(frames) // frame_size_bytes)
    else:
      raise ValueError(
        f"Unexpected WAV frame byte length: expected={expected_len} got={len(frames)}"
      )
  return params, frames


def _start_padding(gap_from_prev: float) -> float:
  if gap_from_prev < 0:
    return 0.0
  return max(START_PADDING_SEC, gap_from_prev * 0.5)


def _end_padding_and_safety_margin(gap_to_next: float) -> tuple[float, float]:
  """End padding and the margin kept clear before the next line's start."""
  if gap_to_next < TIGHT_GAP_SEC:
    # The margin is negative when the lines overlap.
    return 0.0, gap_to_next * 0.5

  end_padding = min(END_PADDING_SEC, gap_to_next * 0.3)
  if gap_to_next < 0.2:
    safety_margin = gap_to_next * 0.4
  elif gap_to_next < 0.5:
    safety_margin = gap_to_next * 0.3
  else:
    safety_margin = min(0.15, gap_to_next * 0.2)
  return end_padding, safety_margin


def _time_to_byte(time_sec: float) -> int:
  return math.floor(time_sec * SAMPLE_RATE) * FRAME_SIZE_BYTES


def _padded_start_byte(timing: LineTiming, gap_from_prev: float) -> int:
  return _time_to_byte(
    max(0.0, timing.start_time - _start_padding(gap_from_prev)))


def plan_segments(
  timing_map: TimingMap,
  pcm_length: int,
  batch_index: int | None = None,
) -> list[SegmentPlan]:
  """Compute the byte range of every matched line's clip.

  Lines are processed in ascending index order. Padding around each line is
  proportional to the silence separating it from its matched neighbors, and
  a line's clip always ends at or before the point where the next line's clip
  starts.

  Args:
    timing_map: Timing of the matched lines of one batch.
    pcm_length: Length in bytes of the batch PCM (without WAV header).
    batch_index: Only used to tag log entries.

  Returns:
    Plans for lines whose clip is non-empty, in line order.
  """
  usable_length = pcm_length - pcm_length % FRAME_SIZE_BYTES
  audio_duration = usable_length / BYTES_PER_SECOND
  entries = sorted(timing_map.items())

  plans: list[SegmentPlan] = []
  for i, (line_index, timing) in enumerate(entries):
    prev_timing = entries[i - 1][1] if i > 0 else None
    next_timing = entries[i + 1][1] if i + 1 < len(entries) else None

    gap_to_next = (next_timing.start_time - timing.end_time
                   if next_timing else DEFAULT_NEIGHBOR_GAP_SEC)
    gap_from_prev = (timing.start_time - prev_timing.end_time
                     if prev_timing else DEFAULT_NEIGHBOR_GAP_SEC)

    end_padding, safety_margin = _end_padding_and_safety_margin(gap_to_next)
    start_padding = _start_padding(gap_from_prev)

    start_time = max(0.0, timing.start_time - start_padding)
    end_time = timing.end_time + end_padding
    if next_timing:
      end_time = min(end_time, next_timing.start_time - safety_margin)
    end_time = min(end_time, audio_duration)

    start_byte = _time_to_byte(start_time)
    end_byte = _time_to_byte(end_time)
    if next_timing:
      next_start_byte = _padded_start_byte(next_timing, gap_to_next)
      if end_byte > next_start_byte:
        logger.debug(
          f"Trimmed line {line_index} to stop at the next line's start",
          extra={
            "json_fields": {
              "batch_index": batch_index,
              "line_index": line_index,
              "decision": "trim_to_next_start",
              "end_byte": end_byte,
              "next_start_byte": next_start_byte,
            }
          },
        )
        end_byte = next_start_byte

    start_byte = max(0, min(start_byte, usable_length))
    end_byte = max(0, min(end_byte, usable_length))

    log_fields = {
      "batch_index": batch_index,
      "line_index": line_index,
      "gap_from_prev": gap_from_prev,
      "gap_to_next": gap_to_next,
      "start_padding": start_padding,
      "end_padding": end_padding,
      "safety_margin": safety_margin,
      "start_byte": start_byte,
      "end_byte": end_byte,
    }
    if end_byte - start_byte <= 0:
      logger.warn(
        f"Line {line_index} has an empty audio segment",
        extra={"json_fields": {
          **log_fields, "decision": "empty_segment"
        }},
      )
      continue

    logger.debug(
      f"Planned segment for line {line_index}",
      extra={"json_fields": {
        **log_fields, "decision": "segment"
      }},
    )
    plans.append(
      SegmentPlan(
        line_index=line_index,
        start_byte=start_byte,
        end_byte=end_byte,
        start_padding=start_padding,
        end_padding=end_padding,
        safety_margin=safety_margin,
      ))

  return plans


def split_audio_into_segments(
  audio_bytes: bytes,
  timing_map: TimingMap,
  batch_index: int | None = None,
) -> SegmentMap:
  """Cut batch audio into one self-contained WAV clip per matched line.

  Args:
    audio_bytes: The batch audio, as raw PCM or with a WAV header.
    timing_map: Timing of the matched lines of the batch.
    batch_index: Only used to tag log entries.

  Returns:
    WAV bytes per line index. Lines whose clip would be empty are omitted.
  """
  pcm = strip_wav_header(audio_bytes)
  plans = plan_segments(timing_map, len(pcm), batch_index=batch_index)
  return {
    plan.line_index: add_wav_header(pcm[plan.start_byte:plan.end_byte])
    for plan in plans
  }
