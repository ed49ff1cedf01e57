"""Cloud Storage for generated line audio."""

from common import config
from google.cloud import storage as gcs

_client = None  # pylint: disable=invalid-name

WAV_CONTENT_TYPE = "audio/wav"


def client() -> gcs.Client:
  """Get the Google Cloud Storage client."""
  global _client  # pylint: disable=global-statement
  if _client is None:
    _client = gcs.Client(project=config.PROJECT_ID)
  return _client


def get_line_audio_blob_name(user_id: str, script_id: str,
                             line_index: int) -> str:
  """Blob path of a script line's audio clip.

  The path is stable per line, so regenerating a line's audio replaces it.
  """
  return f"users/{user_id}/scripts/{script_id}/tts-audio/{line_index}.wav"


def upload_line_audio(
  user_id: str,
  script_id: str,
  line_index: int,
  wav_bytes: bytes,
) -> str:
  """Upload a line's WAV clip to the audio bucket.

  Args:
    user_id: Owner of the script.
    script_id: The script's document ID.
    line_index: Index of the line within the script.
    wav_bytes: The clip, with a WAV header.

  Returns:
    The public URL clients play the clip from.
  """
  bucket = client().bucket(config.AUDIO_BUCKET_NAME)
  blob = bucket.blob(get_line_audio_blob_name(user_id, script_id, line_index))
  blob.upload_from_string(wav_bytes, content_type=WAV_CONTENT_TYPE)
  return blob.public_url
