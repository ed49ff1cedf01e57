"""Global configuration constants."""

import os

from google.cloud import secretmanager

# Google Cloud Project ID
PROJECT_ID = "scene-partner-rehearsal"

# Google Cloud Storage buckets
AUDIO_BUCKET_NAME = "scene-partner-rehearsal.firebasestorage.app"
ADMIN_HOST = "scenepartner.app"

# Dialogue synthesis (ElevenLabs text-to-dialogue)
DIALOGUE_MODEL_ID = "eleven_v3"
DIALOGUE_OUTPUT_FORMAT = "pcm_48000"
DIALOGUE_TEXT_NORMALIZATION = "auto"
DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

# Proxy service exposing /api/tts/dialogue and /api/alignment. When unset, the
# ElevenLabs SDK is called directly.
DIALOGUE_SERVICE_BASE_URL = os.environ.get("DIALOGUE_SERVICE_BASE_URL", "")
DIALOGUE_SERVICE_TIMEOUT_SEC = 300

# Hydration pipeline
MAX_BATCH_CHARS = 500
UPLOAD_CONCURRENCY = 5
INTER_BATCH_DELAY_SEC = 0.1


def _get_secret(secret_id: str) -> str:
  """Return the latest version of a Secret Manager secret as a UTF-8 string."""
  client = secretmanager.SecretManagerServiceClient()
  name = f"projects/{PROJECT_ID}/secrets/{secret_id}/versions/latest"
  response = client.access_secret_version(name=name)
  return response.payload.data.decode("UTF-8")


def get_elevenlabs_api_key() -> str:
  """Gets the ElevenLabs API key from the secret manager."""
  return _get_secret("ELEVENLABS_API_KEY")


def get_dialogue_service_token() -> str:
  """Gets the bearer token used to call the dialogue proxy service."""
  return _get_secret("DIALOGUE_SERVICE_TOKEN")
