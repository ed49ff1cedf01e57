"""Cloud functions that generate scene-partner audio for scripts."""

from __future__ import annotations

import traceback

from common import hydration_operations
from common.models import HydrationStatus
from firebase_functions import https_fn, logger, options
from functions.function_utils import (error_response, get_int_param,
                                      get_param, get_user_id,
                                      handle_cors_preflight,
                                      handle_health_check, success_response)
from services import audio_client, firestore


class FirestoreHydrationObserver(hydration_operations.HydrationObserver):
  """Mirrors hydration updates into the script's status document.

  The web client listens to this document to show per-line status, the
  progress bar and the stage text. A failed status write is logged and
  otherwise ignored.
  """

  def __init__(self, user_id: str, script_id: str):
    self.user_id = user_id
    self.script_id = script_id

  def on_status(self, line_index: int, status: HydrationStatus) -> None:
    self._write(line_statuses={line_index: status})

  def on_progress(self, completed: int, total: int = 100) -> None:
    percent = round(completed * 100 / total) if total else 0
    self._write(progress=percent)

  def on_stage_message(self, text: str) -> None:
    self._write(stage=text)

  def _write(self, **kwargs) -> None:
    try:
      firestore.update_hydration_status(self.user_id, self.script_id, **kwargs)
    except Exception:  # pylint: disable=broad-except
      logger.warn(
        f"Failed to update hydration status:\n{traceback.format_exc()}",
        extra={"json_fields": {
          "script_id": self.script_id,
          "update": sorted(kwargs)
        }},
      )


def _hydration_error_response(
  error: hydration_operations.HydrationError,
  req: https_fn.Request,
) -> https_fn.Response:
  return error_response(
    error.user_message,
    error_type=error.error_type,
    req=req,
    status=429 if error.rate_limited else 502,
  )


@https_fn.on_request(
  memory=options.MemoryOption.GB_1,
  timeout_sec=540,
)
def hydrate_script_audio(req: https_fn.Request) -> https_fn.Response:
  """Generate audio for every line of a script that has none yet."""
  preflight = handle_cors_preflight(req)
  if preflight:
    return preflight
  health = handle_health_check(req)
  if health:
    return health

  try:
    if req.method != 'POST':
      return error_response(f'Method not allowed: {req.method}',
                            req=req,
                            status=405)

    user_id = get_user_id(req)
    if not user_id:
      return error_response('Unauthorized',
                            error_type='unauthorized',
                            req=req,
                            status=401)
    script_id = get_param(req, 'script_id', required=True)

    script = firestore.get_script(user_id, script_id)
    if script is None:
      return error_response(f'Script not found: {script_id}',
                            error_type='not_found',
                            req=req,
                            status=404)

    result = hydration_operations.hydrate_script_with_dialogue(
      script,
      user_id=user_id,
      script_id=script_id,
      client=audio_client.get_dialogue_audio_client(
        label="hydrate_script_audio"),
      observer=FirestoreHydrationObserver(user_id, script_id),
    )
    return success_response(
      {
        'success': result.success,
        'failed_lines': result.failed_lines,
        'work_done': result.work_done,
      },
      req=req,
    )
  except hydration_operations.HydrationError as e:
    return _hydration_error_response(e, req)
  except ValueError as e:
    return error_response(str(e),
                          error_type='invalid_request',
                          req=req,
                          status=400)
  except Exception as e:  # pylint: disable=broad-except
    logger.error(
      f"Failed to hydrate script audio: {e}\n{traceback.format_exc()}")
    return error_response(f'Failed to hydrate script audio: {e}',
                          error_type='internal_error',
                          req=req)


@https_fn.on_request(
  memory=options.MemoryOption.GB_1,
  timeout_sec=300,
)
def retry_line_audio_http(req: https_fn.Request) -> https_fn.Response:
  """Regenerate the audio of one line of a script."""
  preflight = handle_cors_preflight(req)
  if preflight:
    return preflight
  health = handle_health_check(req)
  if health:
    return health

  try:
    if req.method != 'POST':
      return error_response(f'Method not allowed: {req.method}',
                            req=req,
                            status=405)

    user_id = get_user_id(req)
    if not user_id:
      return error_response('Unauthorized',
                            error_type='unauthorized',
                            req=req,
                            status=401)
    script_id = get_param(req, 'script_id', required=True)
    line_index = get_int_param(req, 'line_index', required=True)

    script = firestore.get_script(user_id, script_id)
    if script is None:
      return error_response(f'Script not found: {script_id}',
                            error_type='not_found',
                            req=req,
                            status=404)
    if not any(e.index == line_index and e.is_line for e in script):
      return error_response(f'Line not found: {line_index}',
                            error_type='not_found',
                            req=req,
                            status=404)

    updated = hydration_operations.retry_line_audio(
      script,
      line_index,
      user_id=user_id,
      script_id=script_id,
      client=audio_client.get_dialogue_audio_client(
        label="retry_line_audio"),
      observer=FirestoreHydrationObserver(user_id, script_id),
    )
    return success_response({'line': updated.to_dict()}, req=req)
  except hydration_operations.HydrationError as e:
    return _hydration_error_response(e, req)
  except ValueError as e:
    return error_response(str(e),
                          error_type='invalid_request',
                          req=req,
                          status=400)
  except Exception as e:  # pylint: disable=broad-except
    logger.error(f"Failed to retry line audio: {e}\n{traceback.format_exc()}")
    return error_response(f'Failed to retry line audio: {e}',
                          error_type='internal_error',
                          req=req)
