"""Tests for the cloud_storage module."""

from unittest.mock import MagicMock

import pytest
from services import cloud_storage


@pytest.fixture(name='mock_gcs_client')
def mock_gcs_client_fixture(monkeypatch):
  gcs_client = MagicMock()
  monkeypatch.setattr(cloud_storage, "_client", gcs_client)
  return gcs_client


def test_get_line_audio_blob_name():
  assert cloud_storage.get_line_audio_blob_name("user-1", "script-9", 12) == (
    "users/user-1/scripts/script-9/tts-audio/12.wav")


def test_upload_line_audio_uploads_wav_and_returns_public_url(
    monkeypatch, mock_gcs_client):
  monkeypatch.setattr("services.cloud_storage.config.AUDIO_BUCKET_NAME",
                      "test-bucket")
  blob = mock_gcs_client.bucket.return_value.blob.return_value
  blob.public_url = "https://storage.googleapis.com/test-bucket/x.wav"

  url = cloud_storage.upload_line_audio("user-1", "script-9", 3, b"RIFFdata")

  assert url == "https://storage.googleapis.com/test-bucket/x.wav"
  mock_gcs_client.bucket.assert_called_once_with("test-bucket")
  mock_gcs_client.bucket.return_value.blob.assert_called_once_with(
    "users/user-1/scripts/script-9/tts-audio/3.wav")
  blob.upload_from_string.assert_called_once_with(b"RIFFdata",
                                                  content_type="audio/wav")
