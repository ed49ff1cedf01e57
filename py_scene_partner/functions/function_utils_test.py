"""Tests for function_utils request and response helpers."""

import json

import pytest
from functions import function_utils


class FakeArgs:

  def __init__(self, data: dict[str, object] | None = None) -> None:
    self._data = data or {}

  def get(self, key: str, default=None):
    return self._data.get(key, default)


class FakeRequest:

  def __init__(self,
               *,
               json_data: dict | None = None,
               args: dict[str, object] | None = None,
               headers: dict[str, str] | None = None,
               method: str = "POST",
               path: str = "/") -> None:
    self._json_data = json_data
    self.args = FakeArgs(args)
    self.is_json = json_data is not None
    self.headers = headers or {}
    self.method = method
    self.path = path

  def get_json(self):
    return self._json_data


def _json_request(data: dict | None = None) -> FakeRequest:
  return FakeRequest(json_data={'data': data or {}})


def _query_request(args: dict[str, object] | None = None) -> FakeRequest:
  return FakeRequest(args=args)


def test_get_param_returns_value_from_json_request():
  req = _json_request({'script_id': 'abc'})

  assert function_utils.get_param(req, 'script_id') == 'abc'


def test_get_param_reads_query_string():
  req = _query_request({'script_id': 'abc'})

  assert function_utils.get_param(req, 'script_id') == 'abc'


def test_get_param_raises_when_required_missing():
  req = _json_request()

  with pytest.raises(ValueError, match="Missing required parameter 'foo'"):
    function_utils.get_param(req, 'foo', required=True)


def test_get_param_returns_default_when_optional_missing():
  req = _query_request()

  assert function_utils.get_param(req, 'foo', default='fallback') == 'fallback'


@pytest.mark.parametrize("value, expected", [
  (3, 3),
  ("7", 7),
  (None, None),
])
def test_get_int_param(value, expected):
  req = _json_request({'line_index': value})

  assert function_utils.get_int_param(req, 'line_index') == expected


def test_get_int_param_rejects_non_integer():
  req = _query_request({'line_index': 'three'})

  with pytest.raises(ValueError, match="must be an integer"):
    function_utils.get_int_param(req, 'line_index')


def test_get_user_id_verifies_bearer_token(monkeypatch):

  def fake_verify_id_token(token):
    assert token == "id-token-123"
    return {"uid": "bearer-uid"}

  monkeypatch.setattr(function_utils.auth, "verify_id_token",
                      fake_verify_id_token)

  req = FakeRequest(headers={"Authorization": "Bearer id-token-123"})

  assert function_utils.get_user_id(req) == "bearer-uid"


def test_get_user_id_returns_none_for_invalid_token(monkeypatch):

  def fake_verify_id_token(token):
    raise ValueError(f"bad token {token}")

  monkeypatch.setattr(function_utils.auth, "verify_id_token",
                      fake_verify_id_token)

  req = FakeRequest(headers={"Authorization": "Bearer nope"})

  assert function_utils.get_user_id(req) is None


def test_get_user_id_missing_header():
  assert function_utils.get_user_id(FakeRequest()) is None


def test_get_user_id_rejects_malformed_header():
  req = FakeRequest(headers={"Authorization": "Basic abc"})

  assert function_utils.get_user_id(req) is None


def test_cors_headers_only_for_allowed_origins(monkeypatch):
  monkeypatch.setattr(function_utils.utils, "is_emulator", lambda: False)
  allowed = FakeRequest(headers={"Origin": "https://scenepartner.app/"})
  other = FakeRequest(headers={"Origin": "https://evil.example"})

  assert function_utils.get_cors_headers(allowed)[
    "Access-Control-Allow-Origin"] == "https://scenepartner.app/"
  assert function_utils.get_cors_headers(other) == {}


def test_cors_allows_localhost_in_emulator(monkeypatch):
  monkeypatch.setattr(function_utils.utils, "is_emulator", lambda: True)
  req = FakeRequest(headers={"Origin": "http://localhost:5173"})

  assert "Access-Control-Allow-Origin" in function_utils.get_cors_headers(req)


def test_handle_cors_preflight():
  assert function_utils.handle_cors_preflight(FakeRequest()) is None

  response = function_utils.handle_cors_preflight(
    FakeRequest(method="OPTIONS"))

  assert response.status_code == 204


def test_error_response_carries_error_type():
  response = function_utils.error_response("Slow down",
                                           error_type="rate_limited",
                                           status=429)

  assert response.status_code == 429
  assert json.loads(response.get_data(as_text=True)) == {
    "data": {
      "error": "Slow down",
      "error_type": "rate_limited"
    }
  }
