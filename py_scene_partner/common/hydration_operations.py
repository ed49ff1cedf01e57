"""Hydration of script lines with generated scene-partner audio.

A hydration run synthesizes every line that has no audio yet, in
character-budgeted batches. Each batch is one audio clip: it is force-aligned
against its transcript, the aligned words are mapped back onto the batch's
lines, and the clip is cut into one WAV per line. The per-line clips are then
uploaded concurrently and the script is saved with the new URLs and timings.

Failures are scoped as narrowly as possible. A synthesis or alignment error
ends the run, since a batch is a single audio unit. A line that cannot be
matched or cut, or whose upload fails, is reported in `failed_lines` while
the rest of the run continues.
"""

from __future__ import annotations

import dataclasses
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable

from common import (alignment_mapper, audio_operations, config,
                    dialogue_batches, hydration_progress, text_sanitizer)
from common.audio_timing import LineTiming, SegmentMap, TimingMap
from common.models import DialogueEntry, HydrationStatus, ScriptElement
from firebase_functions import logger
from services import audio_client, cloud_storage, firestore

RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later"
SYNTHESIS_FAILED_MESSAGE = "Unable to generate scene partner audio"
ALIGNMENT_FAILED_MESSAGE = "Unable to align scene partner audio"
UPLOAD_FAILED_MESSAGE = "Unable to save scene partner audio"
CANCELLED_MESSAGE = "Audio generation cancelled"
FAILED_STAGE_MESSAGE = "Failed to load audio"


class Error(Exception):
  """Base class for exceptions in this module."""


class HydrationError(Error):
  """A hydration run or line retry failed as a whole."""

  def __init__(
    self,
    message: str,
    *,
    user_message: str,
    error_type: str,
    rate_limited: bool = False,
  ):
    super().__init__(message)
    self.user_message: str = user_message
    self.error_type: str = error_type
    self.rate_limited: bool = rate_limited


class HydrationCancelledError(Error):
  """The run was cancelled before it finished."""


class HydrationObserver:
  """Receives line status, progress and stage updates from a run.

  All methods are no-ops; subclasses override the ones they care about.
  Callbacks are always issued from the thread that started the run.
  """

  def on_status(self, line_index: int, status: HydrationStatus) -> None:
    """A line moved to a new hydration status."""

  def on_progress(self, completed: int, total: int = 100) -> None:
    """Overall progress, as `completed` out of `total` units."""

  def on_stage_message(self, text: str) -> None:
    """Human-readable description of the current stage."""


@dataclass(frozen=True, kw_only=True)
class HydrationSettings:
  """Per-run tuning of the hydration pipeline."""

  default_voice_id: str = config.DEFAULT_VOICE_ID
  max_batch_chars: int = config.MAX_BATCH_CHARS
  upload_concurrency: int = config.UPLOAD_CONCURRENCY
  inter_batch_delay_sec: float = config.INTER_BATCH_DELAY_SEC


@dataclass(frozen=True, kw_only=True)
class HydrationResult:
  """Outcome of a hydration run."""

  success: bool
  """True only if every line that needed audio got it."""
  failed_lines: list[int]
  script: list[ScriptElement]
  work_done: bool = True
  """False when every line already had audio."""


@dataclass(frozen=True)
class BatchAudio:
  """Timing and per-line clips produced by one or more batches."""

  timing_map: TimingMap = field(default_factory=dict)
  segment_map: SegmentMap = field(default_factory=dict)

  def merge(self, other: BatchAudio) -> BatchAudio:
    """Combine with the results of a later batch."""
    return BatchAudio(
      timing_map={
        **self.timing_map,
        **other.timing_map
      },
      segment_map={
        **self.segment_map,
        **other.segment_map
      },
    )


def hydrate_script_with_dialogue(
  script: list[ScriptElement],
  *,
  user_id: str,
  script_id: str,
  client: audio_client.DialogueAudioClient,
  observer: HydrationObserver | None = None,
  settings: HydrationSettings | None = None,
  cancel_event: threading.Event | None = None,
) -> HydrationResult:
  """Generate audio for every line of the script that has none.

  Args:
    script: All elements of the script, in order.
    user_id: Owner of the script.
    script_id: The script's document ID.
    client: Dialogue synthesis and alignment client.
    observer: Receives status, progress and stage updates.
    settings: Pipeline tuning. Defaults to the configured values.
    cancel_event: When set, the run stops before the next batch, and uploads
      that have not started yet are skipped. An in-flight synthesis or
      alignment call is always allowed to finish.

  Returns:
    The updated script and the indexes of lines that did not get audio.

  Raises:
    HydrationError: If synthesis or alignment of a batch fails. Every line of
      the run is marked failed and nothing is saved.
    HydrationCancelledError: If cancelled before all batches were processed.
  """
  observer = observer or HydrationObserver()
  settings = settings or HydrationSettings()

  lines_needing_audio = [e for e in script if e.needs_audio]
  if not lines_needing_audio:
    for element in script:
      if element.is_line:
        observer.on_status(element.index, HydrationStatus.READY)
    observer.on_stage_message("Script ready!")
    logger.info(
      "All scene partner lines already have audio",
      extra={"json_fields": {
        "script_id": script_id
      }},
    )
    return HydrationResult(success=True,
                           failed_lines=[],
                           script=list(script),
                           work_done=False)

  line_indexes = [line.index for line in lines_needing_audio]
  for line_index in line_indexes:
    observer.on_status(line_index, HydrationStatus.PENDING)

  observer.on_stage_message("Beginning audio generation")
  entries = _build_dialogue_entries(lines_needing_audio, settings, observer)
  alignment_lines = {
    line.index:
    dataclasses.replace(line,
                        text=text_sanitizer.sanitize_for_alignment(line.text))
    for line in lines_needing_audio
  }
  batches = dialogue_batches.split_dialogue_into_batches(
    entries, max_chars=settings.max_batch_chars)
  calculate_progress = hydration_progress.create_weighted_progress_calculator(
    len(batches), len(lines_needing_audio))

  logger.info(
    f"Hydrating {len(lines_needing_audio)} lines in {len(batches)} batches",
    extra={
      "json_fields": {
        "script_id":
        script_id,
        "line_count":
        len(lines_needing_audio),
        "batch_sizes": [len(batch) for batch in batches],
        "batch_characters":
        [sum(len(e.text) for e in batch) for batch in batches],
      }
    },
  )

  completed_operations = 0

  def advance_progress() -> None:
    nonlocal completed_operations
    completed_operations += 1
    observer.on_progress(calculate_progress(completed_operations), 100)

  audio = BatchAudio()
  try:
    for batch_index, batch in enumerate(batches):
      _raise_if_cancelled(cancel_event)
      observer.on_stage_message(
        f"Generating dialogue audio {batch_index + 1}/{len(batches)}...")
      audio = audio.merge(
        hydrate_batch(
          batch,
          batch_index=batch_index,
          alignment_lines=alignment_lines,
          client=client,
          observer=observer,
          advance_progress=advance_progress,
        ))
      if batch_index < len(batches) - 1:
        time.sleep(settings.inter_batch_delay_sec)
  except HydrationCancelledError:
    _mark_failed(line_indexes, observer)
    observer.on_stage_message(CANCELLED_MESSAGE)
    logger.warn("Hydration cancelled",
                extra={"json_fields": {
                  "script_id": script_id
                }})
    raise
  except audio_client.Error as e:
    _mark_failed(line_indexes, observer)
    observer.on_stage_message(FAILED_STAGE_MESSAGE)
    logger.error(
      f"Hydration failed: {e}\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id
      }},
    )
    raise _to_hydration_error(e) from e
  except Exception:  # pylint: disable=broad-except
    _mark_failed(line_indexes, observer)
    observer.on_stage_message(FAILED_STAGE_MESSAGE)
    logger.error(
      f"Hydration failed unexpectedly:\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id
      }},
    )
    raise

  # Lines with timing but an empty clip cannot be uploaded either.
  failed_lines = [i for i in line_indexes if i not in audio.segment_map]
  if failed_lines:
    _mark_failed(failed_lines, observer)
    logger.warn(
      f"Some lines could not be aligned: {failed_lines}",
      extra={
        "json_fields": {
          "script_id": script_id,
          "failed_lines": failed_lines,
          "unmatched_lines":
          [i for i in failed_lines if i not in audio.timing_map],
        }
      },
    )

  observer.on_stage_message("Uploading audio segments...")
  uploaded_urls, upload_failures = _upload_segments(
    audio.segment_map,
    user_id=user_id,
    script_id=script_id,
    concurrency=settings.upload_concurrency,
    observer=observer,
    advance_progress=advance_progress,
    cancel_event=cancel_event,
  )
  failed_lines = sorted(failed_lines + upload_failures)

  updated_script = [
    element.with_audio(uploaded_urls[element.index],
                       audio.timing_map[element.index])
    if element.index in uploaded_urls else element for element in script
  ]

  observer.on_stage_message("Saving...")
  _persist_script(user_id, script_id, updated_script)

  observer.on_stage_message("Ready for rehearsal!")
  logger.info(
    f"Hydrated {len(uploaded_urls)}/{len(line_indexes)} lines",
    extra={
      "json_fields": {
        "script_id": script_id,
        "uploaded_lines": sorted(uploaded_urls),
        "failed_lines": failed_lines,
      }
    },
  )
  return HydrationResult(
    success=not failed_lines,
    failed_lines=failed_lines,
    script=updated_script,
  )


def hydrate_batch(
  batch: list[DialogueEntry],
  *,
  batch_index: int,
  alignment_lines: dict[int, ScriptElement],
  client: audio_client.DialogueAudioClient,
  observer: HydrationObserver,
  advance_progress: Callable[[], None],
) -> BatchAudio:
  """Synthesize, align, map and cut one batch.

  Args:
    batch: The batch's dialogue entries, in line order.
    batch_index: Position of the batch in the run.
    alignment_lines: Lines by index, with text sanitized for alignment.
    client: Dialogue synthesis and alignment client.
    observer: Receives stage updates.
    advance_progress: Called once after each of the four steps.

  Returns:
    The batch's timing map and per-line clips.
  """
  label = f"batch {batch_index + 1}"
  pcm_bytes = client.generate_dialogue(batch, label=label)
  advance_progress()

  observer.on_stage_message("Aligning audio with script")
  wav_bytes = audio_operations.add_wav_header(pcm_bytes)
  lines = [alignment_lines[entry.line_index] for entry in batch]
  transcript = " ".join(line.text for line in lines if line.text)
  if transcript:
    words = client.align(wav_bytes, transcript, label=label)
  else:
    logger.warn(
      f"Batch {batch_index} has no speakable text to align",
      extra={"json_fields": {
        "batch_index": batch_index
      }},
    )
    words = []
  advance_progress()

  observer.on_stage_message("Creating audio map")
  timing_map = alignment_mapper.map_alignment_to_lines(words,
                                                       lines,
                                                       batch_index=batch_index)
  advance_progress()

  observer.on_stage_message("Finalizing line audio")
  segment_map = audio_operations.split_audio_into_segments(
    wav_bytes, timing_map, batch_index=batch_index)
  advance_progress()

  return BatchAudio(timing_map=timing_map, segment_map=segment_map)


def retry_line_audio(
  script: list[ScriptElement],
  line_index: int,
  *,
  user_id: str,
  script_id: str,
  client: audio_client.DialogueAudioClient,
  observer: HydrationObserver | None = None,
  settings: HydrationSettings | None = None,
) -> ScriptElement:
  """Regenerate the audio of a single line.

  The line is synthesized on its own and cut with the same alignment and
  segmentation as a batch. If the aligner cannot find the line, the whole clip
  is used.

  Returns:
    The updated line element.

  Raises:
    ValueError: If the script has no line with that index.
    HydrationError: If synthesis, alignment or upload fails.
  """
  observer = observer or HydrationObserver()
  settings = settings or HydrationSettings()

  element = next((e for e in script if e.index == line_index and e.is_line),
                 None)
  if element is None:
    raise ValueError(f"Script has no line with index {line_index}")

  observer.on_status(line_index, HydrationStatus.UPDATING)
  entries = _build_dialogue_entries([element], settings, observer)
  if not entries:
    _mark_failed([line_index], observer)
    raise HydrationError(
      f"Line {line_index} has no text to synthesize",
      user_message=SYNTHESIS_FAILED_MESSAGE,
      error_type="synthesis_failed",
    )

  alignment_line = dataclasses.replace(
    element, text=text_sanitizer.sanitize_for_alignment(element.text))
  label = f"line {line_index}"
  try:
    pcm_bytes = client.generate_dialogue(entries, label=label)
    wav_bytes = audio_operations.add_wav_header(pcm_bytes)
    timing_map: TimingMap = {}
    if alignment_line.text:
      words = client.align(wav_bytes, alignment_line.text, label=label)
      timing_map = alignment_mapper.map_alignment_to_lines(
        words, [alignment_line])
  except audio_client.Error as e:
    _mark_failed([line_index], observer)
    logger.error(
      f"Line audio retry failed: {e}\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id,
        "line_index": line_index
      }},
    )
    raise _to_hydration_error(e) from e
  except Exception:  # pylint: disable=broad-except
    _mark_failed([line_index], observer)
    logger.error(
      f"Line audio retry failed unexpectedly:\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id,
        "line_index": line_index
      }},
    )
    raise

  segments = audio_operations.split_audio_into_segments(wav_bytes, timing_map)
  if line_index in segments:
    clip_bytes = segments[line_index]
    timing = timing_map[line_index]
  else:
    logger.warn(
      f"Line {line_index} not aligned, using the whole clip",
      extra={"json_fields": {
        "script_id": script_id,
        "line_index": line_index
      }},
    )
    clip_bytes = wav_bytes
    timing = LineTiming(start_time=0.0,
                        end_time=audio_operations.pcm_duration_sec(pcm_bytes))

  try:
    url = cloud_storage.upload_line_audio(user_id, script_id, line_index,
                                          clip_bytes)
  except Exception as e:  # pylint: disable=broad-except
    _mark_failed([line_index], observer)
    logger.error(
      f"Failed to upload audio for line {line_index}:\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id,
        "line_index": line_index
      }},
    )
    raise HydrationError(
      f"Upload failed for line {line_index}: {e}",
      user_message=UPLOAD_FAILED_MESSAGE,
      error_type="upload_failed",
    ) from e

  updated = element.with_audio(url, timing)
  observer.on_status(line_index, HydrationStatus.READY)
  _persist_script(
    user_id,
    script_id,
    [updated if e.index == line_index else e for e in script],
  )
  return updated


def _build_dialogue_entries(
  lines: list[ScriptElement],
  settings: HydrationSettings,
  observer: HydrationObserver,
) -> list[DialogueEntry]:
  """Project lines into synthesis entries, dropping lines with no text."""
  missing_voice = [line.index for line in lines if not line.voice_id]
  if missing_voice:
    observer.on_stage_message("Missing voice selection, using default voice")
    logger.warn(
      f"Lines without a voice use the default voice: {missing_voice}",
      extra={
        "json_fields": {
          "line_indexes": missing_voice,
          "default_voice_id": settings.default_voice_id,
        }
      },
    )

  entries: list[DialogueEntry] = []
  for line in lines:
    text = text_sanitizer.sanitize_for_dialogue_mode(line.text)
    if not text:
      logger.warn(
        f"Line {line.index} has no text to synthesize",
        extra={"json_fields": {
          "line_index": line.index
        }},
      )
      continue
    entries.append(
      DialogueEntry(
        text=text,
        voice_id=line.voice_id or settings.default_voice_id,
        line_index=line.index,
      ))
  return entries


def _upload_segments(
  segment_map: SegmentMap,
  *,
  user_id: str,
  script_id: str,
  concurrency: int,
  observer: HydrationObserver,
  advance_progress: Callable[[], None],
  cancel_event: threading.Event | None,
) -> tuple[dict[int, str], list[int]]:
  """Upload every clip, isolating failures per line.

  Returns:
    (URL by line index for successful uploads, indexes of failed lines)
  """
  uploaded: dict[int, str] = {}
  failed: list[int] = []
  if not segment_map:
    return uploaded, failed

  def upload(line_index: int) -> str:
    _raise_if_cancelled(cancel_event)
    return cloud_storage.upload_line_audio(user_id, script_id, line_index,
                                           segment_map[line_index])

  with ThreadPoolExecutor(max_workers=max(1, concurrency)) as executor:
    futures = {
      executor.submit(upload, line_index): line_index
      for line_index in sorted(segment_map)
    }
    for future in as_completed(futures):
      line_index = futures[future]
      try:
        uploaded[line_index] = future.result()
      except HydrationCancelledError:
        logger.warn(
          f"Skipped upload for line {line_index} after cancellation",
          extra={"json_fields": {
            "script_id": script_id,
            "line_index": line_index
          }},
        )
        failed.append(line_index)
        observer.on_status(line_index, HydrationStatus.FAILED)
      except Exception:  # pylint: disable=broad-except
        logger.error(
          f"Failed to upload audio for line {line_index}:\n"
          f"{traceback.format_exc()}",
          extra={"json_fields": {
            "script_id": script_id,
            "line_index": line_index
          }},
        )
        failed.append(line_index)
        observer.on_status(line_index, HydrationStatus.FAILED)
      else:
        observer.on_status(line_index, HydrationStatus.READY)
        advance_progress()

  return uploaded, failed


def _persist_script(user_id: str, script_id: str,
                    script: list[ScriptElement]) -> None:
  """Save the script to the cache and the script document, best-effort."""
  try:
    firestore.update_script_cache(user_id, script_id, script)
  except Exception:  # pylint: disable=broad-except
    logger.error(
      f"Failed to cache script:\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id
      }},
    )

  try:
    firestore.update_script(user_id, script_id, script)
  except Exception:  # pylint: disable=broad-except
    logger.error(
      f"Failed to save script:\n{traceback.format_exc()}",
      extra={"json_fields": {
        "script_id": script_id
      }},
    )


def _mark_failed(line_indexes: list[int], observer: HydrationObserver) -> None:
  for line_index in line_indexes:
    observer.on_status(line_index, HydrationStatus.FAILED)


def _raise_if_cancelled(cancel_event: threading.Event | None) -> None:
  if cancel_event is not None and cancel_event.is_set():
    raise HydrationCancelledError("Hydration cancelled")


def _to_hydration_error(error: audio_client.Error) -> HydrationError:
  if isinstance(error, audio_client.AudioGenerationError):
    if error.is_rate_limited:
      return HydrationError(str(error),
                            user_message=RATE_LIMIT_MESSAGE,
                            error_type="rate_limited",
                            rate_limited=True)
    return HydrationError(str(error),
                          user_message=SYNTHESIS_FAILED_MESSAGE,
                          error_type="synthesis_failed")
  return HydrationError(str(error),
                        user_message=ALIGNMENT_FAILED_MESSAGE,
                        error_type="alignment_failed")
