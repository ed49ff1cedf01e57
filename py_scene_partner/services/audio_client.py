"""Dialogue audio client.

Synthesizes multi-voice dialogue batches and force-aligns the resulting audio
against its transcript. Two backends share the retry and logging behavior of
the base class: the ElevenLabs SDK called directly, and an HTTP proxy service
exposing `/api/tts/dialogue` and `/api/alignment`.
"""
from __future__ import annotations

import time
import traceback
from abc import ABC, abstractmethod
from typing import Any, Callable, Generic, TypeVar, override

import httpx
import requests
from common import config
from common.audio_timing import AlignmentWord, parse_alignment_words
from common.models import DialogueEntry
from elevenlabs.client import ElevenLabs
from elevenlabs.core.api_error import ApiError
from firebase_functions import logger

_T = TypeVar("_T")
_R = TypeVar("_R")

_RETRYABLE_STATUS_CODES = (408, 429)


class Error(Exception):
  """Base class for exceptions in this module."""

  def __init__(self, message: str, *, status_code: int | None = None):
    super().__init__(message)
    self.status_code: int | None = status_code


class AudioGenerationError(Error):
  """Exception raised for errors during dialogue synthesis."""

  @property
  def is_rate_limited(self) -> bool:
    """Whether the synthesis service rejected the request with HTTP 429."""
    return self.status_code == 429


class ForcedAlignmentError(Error):
  """Exception raised for errors during forced alignment."""


def get_dialogue_audio_client(
  *,
  label: str,
  max_retries: int = 2,
  **kwargs: Any,
) -> DialogueAudioClient[Any]:
  """Get the dialogue client for the configured backend.

  The proxy service is used when `DIALOGUE_SERVICE_BASE_URL` is configured;
  otherwise ElevenLabs is called directly.
  """
  if config.DIALOGUE_SERVICE_BASE_URL:
    return HttpDialogueAudioClient(
      label=label,
      base_url=config.DIALOGUE_SERVICE_BASE_URL,
      max_retries=max_retries,
      **kwargs,
    )
  return ElevenlabsDialogueAudioClient(
    label=label,
    max_retries=max_retries,
    **kwargs,
  )


class DialogueAudioClient(ABC, Generic[_T]):
  """Abstract base class for dialogue synthesis and alignment clients."""

  def __init__(
    self,
    *,
    label: str,
    max_retries: int = 2,
    model_id: str = config.DIALOGUE_MODEL_ID,
    output_format: str = config.DIALOGUE_OUTPUT_FORMAT,
    text_normalization: str = config.DIALOGUE_TEXT_NORMALIZATION,
    timeout_sec: int = config.DIALOGUE_SERVICE_TIMEOUT_SEC,
  ):
    self.label: str = label
    self.max_retries: int = max_retries
    self.model_id: str = model_id
    self.output_format: str = output_format
    self.text_normalization: str = text_normalization
    self.timeout_sec: int = timeout_sec

    self._model_client: _T | None = None

  @property
  def model_client(self) -> _T:
    """Get the underlying API client (lazily constructed)."""

    if self._model_client is None:
      self._model_client = self._create_model_client()
    return self._model_client

  @abstractmethod
  def _create_model_client(self) -> _T:
    """Create the underlying API client."""

  def generate_dialogue(
    self,
    entries: list[DialogueEntry],
    *,
    label: str | None = None,
  ) -> bytes:
    """Synthesize one batch of dialogue.

    Args:
      entries: The batch's entries in line order.
      label: Label for log entries; defaults to the client label.

    Returns:
      Raw PCM audio (48 kHz mono 16-bit, no container header).

    Raises:
      AudioGenerationError: If synthesis fails after retries.
    """
    if not entries:
      raise AudioGenerationError("At least one dialogue entry must be provided")

    label = label or self.label
    audio_bytes = self._call_with_retries(
      lambda: self._generate_dialogue_internal(entries),
      operation="dialogue synthesis",
      label=label,
      error_cls=AudioGenerationError,
    )
    if not audio_bytes:
      raise AudioGenerationError(f"Dialogue synthesis ({label}) returned no audio")

    logger.info(
      f"Dialogue synthesis complete: {label}",
      extra={
        "json_fields": {
          "label": label,
          "model_id": self.model_id,
          "line_indexes": [e.line_index for e in entries],
          "characters": sum(len(e.text) for e in entries),
          "audio_bytes": len(audio_bytes),
        }
      },
    )
    return audio_bytes

  def align(
    self,
    wav_bytes: bytes,
    transcript: str,
    *,
    label: str | None = None,
  ) -> list[AlignmentWord]:
    """Force-align synthesized audio against its transcript.

    Args:
      wav_bytes: The batch audio with a WAV header.
      transcript: The spoken text, in order.
      label: Label for log entries; defaults to the client label.

    Returns:
      The aligned words in audio order.

    Raises:
      ForcedAlignmentError: If alignment fails after retries.
    """
    if not transcript.strip():
      raise ForcedAlignmentError("Transcript must be non-empty")

    label = label or self.label
    words = self._call_with_retries(
      lambda: self._align_internal(wav_bytes, transcript),
      operation="forced alignment",
      label=label,
      error_cls=ForcedAlignmentError,
    )
    logger.info(
      f"Forced alignment complete: {label}",
      extra={
        "json_fields": {
          "label": label,
          "transcript_characters": len(transcript),
          "audio_bytes": len(wav_bytes),
          "words": len(words),
        }
      },
    )
    return words

  def _call_with_retries(
    self,
    fn: Callable[[], _R],
    *,
    operation: str,
    label: str,
    error_cls: type[Error],
  ) -> _R:
    """Call `fn`, retrying transient failures with exponential backoff."""
    initial_delay = 5
    backoff_factor = 2
    max_delay = 60

    retry_count = 0
    while True:
      try:
        return fn()
      except Exception as e:  # pylint: disable=broad-except
        retryable = self._is_retryable_error(e)
        status_code = _get_status_code(e)
        logger.error(
          f"{operation} call failed with "
          f"{'retryable' if retryable else 'non-retryable'} error:\n"
          f"{traceback.format_exc()}",
          extra={
            "json_fields": {
              "label": label,
              "operation": operation,
              "retryable": retryable,
              "status_code": status_code,
            }
          },
        )
        if not retryable:
          if isinstance(e, error_cls):
            raise
          raise error_cls(
            f"{operation} ({label}) failed with non-retryable error: {e}",
            status_code=status_code,
          ) from e

        retry_count += 1
        if retry_count > self.max_retries:
          raise error_cls(
            f"{operation} ({label}) failed after {self.max_retries} retries: {e}",
            status_code=status_code,
          ) from e

        delay = min(max_delay,
                    initial_delay * (backoff_factor**(retry_count - 1)))
        logger.warn(
          f"Retrying {operation} for {label} in {delay} seconds... "
          f"({retry_count}/{self.max_retries})",
          extra={
            "json_fields": {
              "label": label,
              "operation": operation,
              "delay_sec": delay,
              "retry_count": retry_count,
              "max_retries": self.max_retries,
            }
          },
        )
        time.sleep(delay)

  @abstractmethod
  def _generate_dialogue_internal(self, entries: list[DialogueEntry]) -> bytes:
    """Backend-specific synthesis."""

  @abstractmethod
  def _align_internal(self, wav_bytes: bytes,
                      transcript: str) -> list[AlignmentWord]:
    """Backend-specific forced alignment."""

  @abstractmethod
  def _is_retryable_error(self, error: Exception) -> bool:
    """Whether the error is retryable."""


def _get_status_code(error: Exception) -> int | None:
  try:
    status = int(getattr(error, "status_code", None) or 0)
  except (TypeError, ValueError):
    return None
  return status or None


def _is_retryable_status(status: int | None) -> bool:
  if status is None:
    return False
  return status in _RETRYABLE_STATUS_CODES or status >= 500


class ElevenlabsDialogueAudioClient(DialogueAudioClient[ElevenLabs]):
  """Calls ElevenLabs text-to-dialogue and forced alignment directly."""

  @override
  def _create_model_client(self) -> ElevenLabs:
    return ElevenLabs(
      api_key=config.get_elevenlabs_api_key(),
      timeout=float(self.timeout_sec),
    )

  @override
  def _generate_dialogue_internal(self, entries: list[DialogueEntry]) -> bytes:
    inputs = [{"text": e.text, "voice_id": e.voice_id} for e in entries]
    unique_voice_ids = {i["voice_id"] for i in inputs}
    if len(unique_voice_ids) > 10:
      raise AudioGenerationError(
        "ElevenLabs text-to-dialogue supports up to 10 unique voice IDs")

    chunks = self.model_client.text_to_dialogue.convert(
      inputs=inputs,
      model_id=self.model_id,
      output_format=self.output_format,
      apply_text_normalization=self.text_normalization,
    )
    return b"".join(chunks)

  @override
  def _align_internal(self, wav_bytes: bytes,
                      transcript: str) -> list[AlignmentWord]:
    response = self.model_client.forced_alignment.create(
      file=("audio.wav", wav_bytes, "audio/wav"),
      text=transcript,
    )
    return [
      AlignmentWord(text=str(w.text or ""),
                    start=float(w.start or 0.0),
                    end=float(w.end or 0.0)) for w in (response.words or [])
    ]

  @override
  def _is_retryable_error(self, error: Exception) -> bool:
    if isinstance(error, httpx.TimeoutException):
      return True
    if isinstance(error, httpx.TransportError):
      return True
    if isinstance(error, ApiError):
      return _is_retryable_status(_get_status_code(error))
    return False


class HttpDialogueAudioClient(DialogueAudioClient[requests.Session]):
  """Calls the dialogue proxy service over HTTP."""

  def __init__(self, *, base_url: str, **kwargs: Any):
    super().__init__(**kwargs)
    self.base_url: str = base_url.rstrip("/")

  @override
  def _create_model_client(self) -> requests.Session:
    session = requests.Session()
    session.headers["Authorization"] = (
      f"Bearer {config.get_dialogue_service_token()}")
    return session

  @override
  def _generate_dialogue_internal(self, entries: list[DialogueEntry]) -> bytes:
    response = self.model_client.post(
      f"{self.base_url}/api/tts/dialogue",
      json={
        "dialogue": [e.to_request_dict() for e in entries],
        "modelId": self.model_id,
        "outputFormat": self.output_format,
        "applyTextNormalization": self.text_normalization,
      },
      timeout=self.timeout_sec,
    )
    if not response.ok:
      raise AudioGenerationError(
        f"Dialogue synthesis failed: {response.status_code}: {response.text}",
        status_code=response.status_code,
      )
    return response.content

  @override
  def _align_internal(self, wav_bytes: bytes,
                      transcript: str) -> list[AlignmentWord]:
    response = self.model_client.post(
      f"{self.base_url}/api/alignment",
      files={"audio": ("audio.wav", wav_bytes, "audio/wav")},
      data={"transcript": transcript},
      timeout=self.timeout_sec,
    )
    if not response.ok:
      raise ForcedAlignmentError(
        _error_message(response) or
        f"Forced alignment failed: {response.status_code}",
        status_code=response.status_code,
      )
    return parse_alignment_words(response.json())

  @override
  def _is_retryable_error(self, error: Exception) -> bool:
    if isinstance(error, (requests.Timeout, requests.ConnectionError)):
      return True
    if isinstance(error, Error):
      return _is_retryable_status(error.status_code)
    return False


def _error_message(response: requests.Response) -> str | None:
  """The `error` field of a JSON error body, if any."""
  try:
    data = response.json()
  except ValueError:
    return None
  if isinstance(data, dict) and data.get("error"):
    return str(data["error"])
  return None
