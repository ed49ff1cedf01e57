"""Cloud Functions entry point."""

import logging

from firebase_admin import initialize_app
from functions import hydration_fns

# Configure basic logging for the application (primarily for emulator visibility)
logging.basicConfig(level=logging.INFO)

app = initialize_app()

# Export the script audio functions
hydrate_script_audio = hydration_fns.hydrate_script_audio
retry_line_audio_http = hydration_fns.retry_line_audio_http
