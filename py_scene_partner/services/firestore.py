"""Firestore operations."""

from typing import Any

from common import models
from firebase_admin import firestore
from google.cloud.firestore import SERVER_TIMESTAMP, DocumentReference

_db = None  # pylint: disable=invalid-name


def db() -> firestore.client:
  """Get the firestore client."""
  global _db  # pylint: disable=global-statement
  if _db is None:
    _db = firestore.client()
  return _db


def _script_ref(user_id: str, script_id: str) -> DocumentReference:
  return (db().collection('users').document(user_id).collection(
    'scripts').document(script_id))


def _serialize_script(script: list[models.ScriptElement]) -> list[dict[str, Any]]:
  return [element.to_dict() for element in script]


def get_script(user_id: str,
               script_id: str) -> list[models.ScriptElement] | None:
  """Get the parsed elements of a user's script.

  Returns:
      The elements in script order, or None if the script does not exist.
  """
  doc = _script_ref(user_id, script_id).get()
  if not doc.exists:
    return None
  data = doc.to_dict() or {}
  elements = [
    models.ScriptElement.from_firestore_dict(item)
    for item in (data.get('script') or []) if isinstance(item, dict)
  ]
  return sorted(elements, key=lambda e: e.index)


def update_script(user_id: str, script_id: str,
                  script: list[models.ScriptElement]) -> None:
  """Replace the element list of an existing script."""
  _script_ref(user_id, script_id).update({
    'script': _serialize_script(script),
    'updatedAt': SERVER_TIMESTAMP,
  })


def update_script_cache(user_id: str, script_id: str,
                        script: list[models.ScriptElement]) -> None:
  """Write the hydrated element list to the user's script cache.

  Clients read the cache first so rehearsal can start without waiting for the
  full script document.
  """
  cache_ref = (db().collection('users').document(user_id).collection(
    'script_cache').document(script_id))
  cache_ref.set({
    'script': _serialize_script(script),
    'cachedAt': SERVER_TIMESTAMP,
  })


def update_hydration_status(
  user_id: str,
  script_id: str,
  *,
  line_statuses: dict[int, models.HydrationStatus] | None = None,
  progress: int | None = None,
  stage: str | None = None,
) -> None:
  """Merge hydration progress into the script's status document.

  Line statuses are keyed by line index and merged, so each call only needs to
  carry the lines whose status changed.
  """
  update_data: dict[str, Any] = {'updatedAt': SERVER_TIMESTAMP}
  if line_statuses:
    update_data['lineStatuses'] = {
      str(index): status.value
      for index, status in line_statuses.items()
    }
  if progress is not None:
    update_data['progress'] = progress
  if stage is not None:
    update_data['stage'] = stage

  status_ref = _script_ref(user_id, script_id).collection('hydration').document(
    'status')
  status_ref.set(update_data, merge=True)
