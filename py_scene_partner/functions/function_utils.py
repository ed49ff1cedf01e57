"""Request and response helpers shared by the Cloud Functions."""

import json
from typing import Any

from common import config, utils
from firebase_admin import auth
from firebase_functions import https_fn, logger

_CORS_HEADERS = {
  "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
  "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

_EMULATOR_ORIGINS = frozenset({
  "http://127.0.0.1:5000",
  "http://localhost:5000",
  "http://localhost:5173",  # Vite
})


def _allowed_origins() -> frozenset[str]:
  if utils.is_emulator():
    return _EMULATOR_ORIGINS
  return frozenset({
    f"https://{config.ADMIN_HOST}",
    f"https://www.{config.ADMIN_HOST}",
  })


def get_cors_headers(req: https_fn.Request | None) -> dict[str, str]:
  """CORS headers for the request's origin, or none if it is not allowed."""
  origin = req.headers.get("Origin") if req else None
  if not origin or origin.rstrip("/") not in _allowed_origins():
    return {}
  return {**_CORS_HEADERS, "Access-Control-Allow-Origin": origin}


def handle_cors_preflight(req: https_fn.Request) -> https_fn.Response | None:
  """Answer OPTIONS preflight requests; None for any other method."""
  if req.method != "OPTIONS":
    return None
  return https_fn.Response("",
                           status=204,
                           headers=get_cors_headers(req) or _CORS_HEADERS)


def handle_health_check(req: https_fn.Request) -> https_fn.Response | None:
  """Answer the hosting health probe; None for any other path."""
  if req.path != "/__/health":
    return None
  return https_fn.Response("OK", status=200, headers=get_cors_headers(req))


def get_user_id(req: https_fn.Request) -> str | None:
  """Get the caller's uid from a `Bearer <Firebase ID token>` header.

  Returns:
    The uid, or None if the header is missing or malformed or the token does
    not verify.
  """
  auth_header = req.headers.get('Authorization')
  if not auth_header:
    logger.warn("Authorization header is missing")
    return None

  scheme, _, id_token = auth_header.partition(' ')
  if scheme.lower() != 'bearer' or not id_token:
    logger.warn("Authorization header is not 'Bearer <token>'")
    return None

  try:
    return auth.verify_id_token(id_token)['uid']
  except Exception as e:  # pylint: disable=broad-except
    logger.error(f"Error verifying ID token: {e}")
    return None


def _json_response(
  payload: dict[str, Any],
  req: https_fn.Request | None,
  status: int,
) -> https_fn.Response:
  return https_fn.Response(
    json.dumps({"data": payload}),
    status=status,
    headers=get_cors_headers(req),
    mimetype='application/json',
  )


def success_response(
  data: dict[str, Any],
  req: https_fn.Request | None = None,
  status: int = 200,
) -> https_fn.Response:
  """JSON response wrapping `data` in the callable-function envelope."""
  logger.info(f"Success response: {data}")
  return _json_response(data, req, status)


def error_response(
  message: str,
  *,
  error_type: str | None = None,
  req: https_fn.Request | None = None,
  status: int = 500,
) -> https_fn.Response:
  """JSON error response: `{"data": {"error": ..., "error_type": ...}}`."""
  logger.error(f"Error response: {message} ({error_type})")
  payload: dict[str, Any] = {"error": message}
  if error_type:
    payload["error_type"] = error_type
  return _json_response(payload, req, status)


def get_param(
  req: https_fn.Request,
  param_name: str,
  default: Any | None = None,
  required: bool = False,
) -> Any | None:
  """Get a parameter from the JSON body's `data` object or the query string."""
  if req.is_json:
    json_data = req.get_json()
    data = json_data.get('data', {}) if isinstance(json_data, dict) else {}
    val = data.get(param_name, default)
  else:
    val = req.args.get(param_name, default)

  if val is None and required:
    raise ValueError(f"Missing required parameter '{param_name}'")
  return val


def get_int_param(
  req: https_fn.Request,
  param_name: str,
  default: int | None = None,
  required: bool = False,
) -> int | None:
  """Get an integer parameter from the request.

  Raises:
    ValueError: If the parameter is required and missing, or is not an integer.
  """
  value = get_param(req, param_name, default, required=required)
  if value is None:
    return None
  try:
    return int(value)
  except (ValueError, TypeError) as e:
    raise ValueError(
      f"Parameter '{param_name}' must be an integer: {value}") from e
