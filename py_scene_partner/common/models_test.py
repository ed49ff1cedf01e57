"""Tests for the models module."""

import pytest
from common import models
from common.audio_timing import LineTiming


def test_script_element_defaults_to_line_without_audio():
  """A bare element is a line that still needs audio."""
  element = models.ScriptElement(index=3, text="Hello.")
  assert element.is_line
  assert element.needs_audio
  assert element.timing is None


def test_direction_never_needs_audio():
  element = models.ScriptElement(index=1,
                                 type=models.ElementType.DIRECTION,
                                 text="He exits.")
  assert not element.needs_audio


def test_from_firestore_dict_maps_web_client_fields():
  """Test that camelCase Firestore fields map onto the dataclass."""
  data = {
    "index": 7,
    "type": "line",
    "text": "Where were you?",
    "character": "ANNA",
    "role": "ai",
    "voiceId": "voice-1",
    "ttsUrl": "https://example.com/7.wav",
    "startTime": 1.25,
    "endTime": 2.5,
    "duration": 1.25,
  }
  element = models.ScriptElement.from_firestore_dict(data)

  assert element.index == 7
  assert element.type == models.ElementType.LINE
  assert element.role == models.ElementRole.AI
  assert element.voice_id == "voice-1"
  assert element.tts_url == "https://example.com/7.wav"
  assert element.timing == LineTiming(start_time=1.25, end_time=2.5)
  assert not element.needs_audio


def test_from_firestore_dict_ignores_partial_timing():
  """A lone startTime is never turned into a partial timing record."""
  element = models.ScriptElement.from_firestore_dict({
    "index": 2,
    "type": "line",
    "text": "Hi",
    "startTime": 0.5,
  })
  assert element.timing is None


def test_from_firestore_dict_invalid_type_defaults_to_line():
  element = models.ScriptElement.from_firestore_dict({
    "index": 0,
    "type": "song",
    "text": "La la",
  })
  assert element.type == models.ElementType.LINE


def test_to_dict_flattens_timing_and_omits_unset_fields():
  element = models.ScriptElement(index=4, text="Go.").with_audio(
    "https://example.com/4.wav", LineTiming(start_time=0.5, end_time=1.75))

  data = element.to_dict()

  assert data == {
    "index": 4,
    "type": "line",
    "text": "Go.",
    "ttsUrl": "https://example.com/4.wav",
    "startTime": 0.5,
    "endTime": 1.75,
    "duration": pytest.approx(1.25),
  }


def test_with_audio_returns_new_element():
  element = models.ScriptElement(index=1, text="Hi")
  updated = element.with_audio("u", LineTiming(start_time=0.0, end_time=1.0))
  assert element.tts_url is None
  assert updated.tts_url == "u"
  assert updated.index == element.index


def test_dialogue_entry_request_dict_uses_service_field_names():
  entry = models.DialogueEntry(text="Hello", voice_id="v", line_index=9)
  assert entry.to_request_dict() == {
    "text": "Hello",
    "voiceId": "v",
    "lineIndex": 9,
  }


def test_stored_fields_survive_round_trip():
  """Fields written by the web client are kept when the element is saved."""
  stored = {
    "index": 5,
    "type": "line",
    "text": "You came back.",
    "character": "ANNA",
    "gender": "female",
    "tone": "wistful",
    "role": "scene-partner",
    "lineEndKeywords": ["came", "back"],
    "actingInstructions": "Quietly, without looking up.",
    "expectedEmbedding": [0.12, -0.5, 0.33],
    "voiceId": "voice-2",
    "voiceName": "Rachel",
    "customDelay": 1.5,
  }

  element = models.ScriptElement.from_firestore_dict(stored)

  assert element.role == models.ElementRole.SCENE_PARTNER
  assert element.to_dict() == stored


def test_unknown_role_is_written_back_unchanged():
  stored = {"index": 1, "type": "line", "text": "Hi.", "role": "narrator"}

  element = models.ScriptElement.from_firestore_dict(stored)

  assert element.role is None
  assert element.to_dict() == stored


def test_with_audio_keeps_stored_fields():
  element = models.ScriptElement.from_firestore_dict({
    "index": 2,
    "type": "line",
    "text": "Go.",
    "actingInstructions": "Urgent.",
    "customDelay": None,
  })

  data = element.with_audio("https://example.com/2.wav",
                            LineTiming(start_time=0.0, end_time=1.0)).to_dict()

  assert data["actingInstructions"] == "Urgent."
  assert "customDelay" in data and data["customDelay"] is None
  assert data["ttsUrl"] == "https://example.com/2.wav"
