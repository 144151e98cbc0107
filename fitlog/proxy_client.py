"""
Client helpers for invoking a remote AI proxy endpoint.

Lets a tracker deployment that holds no model credentials forward its AI work
to another instance's ``/api/proxy``. The client exposes the same operations
as ``GeminiGateway`` so the tracker can use either.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Type, Union

import requests
from pydantic import BaseModel, ValidationError

from fitlog.gemini import AIServiceError
from fitlog.schemas import AnalysisReport, FullDayAnalysis, MealAnalysis

logger = logging.getLogger(__name__)


class ProxyClient:
  """
  Call ``/api/proxy`` over HTTP.

  Parameters
  ----------
  url:
      Fully-qualified proxy endpoint, e.g. ``https://example.org/api/proxy``.
  api_key:
      Optional bearer token injected as ``Authorization`` header.
  timeout:
      Request timeout in seconds; ``None`` waits for the model indefinitely.
  """

  def __init__(self, url: str, *, api_key: Optional[str] = None, timeout: Optional[float] = None) -> None:
    if not url:
      raise AIServiceError("Proxy URL is not configured.")
    self.url = url
    self.api_key = api_key
    self.timeout = timeout

  def call(self, action: str, payload: Dict[str, Any]) -> Union[Dict[str, Any], Iterator[str]]:
    """
    Post ``{"action", "payload"}`` and return decoded JSON, or an iterator of
    text chunks when the proxy answers with a ``text/plain`` stream.
    """
    headers = {"Content-Type": "application/json"}
    if self.api_key:
      headers["Authorization"] = f"Bearer {self.api_key}"

    try:
      response = requests.post(
        self.url,
        json={"action": action, "payload": payload},
        headers=headers,
        timeout=self.timeout,
        stream=action == "chat",
      )
    except requests.RequestException as exc:
      raise AIServiceError(f"Proxy request failed: {exc}") from exc

    if not response.ok:
      try:
        error_data = response.json()
      except ValueError:
        error_data = {"error": "An unknown API error occurred"}
      logger.error("Proxy call failed for action %s: %s", action, error_data)
      message = error_data.get("details") or error_data.get("error") if isinstance(error_data, dict) else None
      raise AIServiceError(message or f"Request failed with status {response.status_code}")

    if "text/plain" in response.headers.get("Content-Type", ""):
      response.encoding = response.encoding or "utf-8"
      return response.iter_content(chunk_size=None, decode_unicode=True)

    try:
      return response.json()
    except ValueError as exc:
      raise AIServiceError("Proxy did not return JSON.") from exc

  def _call_validated(self, action: str, payload: Dict[str, Any], schema: Type[BaseModel]) -> Dict[str, Any]:
    result = self.call(action, payload)
    try:
      return schema.model_validate(result).model_dump()
    except ValidationError as exc:
      logger.warning("Proxy response for %s did not match %s: %s", action, schema.__name__, exc)
      raise AIServiceError(f"Proxy response did not match the {schema.__name__} schema.") from exc

  def analyze_meal_input(
    self,
    user_input: str = "",
    image_base64: Optional[str] = None,
    image_mime_type: Optional[str] = None,
    meal_type_hint: str = "",
  ) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"userInput": user_input, "mealTypeHint": meal_type_hint}
    if image_base64:
      payload.update(imageBase64=image_base64, imageMimeType=image_mime_type)
    return self._call_validated("analyzeMealInput", payload, MealAnalysis)

  def analyze_full_day(self, log_data: Dict[str, Any]) -> Dict[str, Any]:
    return self._call_validated("analyzeFullDayNutrition", {"logData": log_data}, FullDayAnalysis)

  def generate_report(self, user_info: Dict[str, Any], logs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return self._call_validated("generateAnalysisReport", {"userInfo": user_info, "logs": logs}, AnalysisReport)

  def chat_stream(self, history: List[Dict[str, Any]], new_user_parts: List[Dict[str, Any]]) -> Iterator[str]:
    return self.call("chat", {"modelHistory": history, "newUserMessageParts": new_user_parts})


__all__ = ["ProxyClient"]
