"""
Gateway to the Gemini generative model.

All of the tracker's "intelligence" (meal estimates, full-day analysis,
progress reports and the coaching chat) is produced upstream. This module owns
the prompts and schemas, performs the call with the server-held API key and
validates what comes back.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any, Dict, Iterator, List, Optional, Type

from google import genai
from google.genai import types
from pydantic import BaseModel, ValidationError

from fitlog.schemas import AnalysisReport, FullDayAnalysis, MealAnalysis

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
REPORT_LOG_WINDOW = 60

CHAT_SYSTEM_INSTRUCTION = (
  "You are a strict but professional weight-loss coach. Your answers must be objective, rigorous "
  "and based on facts.\n"
  "- Answer questions directly and accurately.\n"
  "- When the user uploads a food photo, identify the food and estimate its energy and nutrients. "
  "Stay neutral, e.g. 'This meal is about X kcal with Y g of protein', not 'this looks delicious'.\n"
  "- Your goal is honest, useful guidance rather than blanket encouragement."
)


class AIServiceError(RuntimeError):
  """Raised when the generative model call fails or returns unusable data."""


class MissingCredentialsError(AIServiceError):
  """Raised before any network call when no API key is configured."""


class InvalidRequestError(ValueError):
  """Raised when a request lacks the input an action needs."""


def _meal_prompt(user_input: str, meal_type_hint: str) -> str:
  return (
    "You are a professional nutrition analyst known for precision and objectivity. Analyse the "
    "meal strictly from the photo and/or description the user supplied and answer with the JSON "
    "schema.\n\n"
    f'Context:\n- Meal: "{meal_type_hint or "unspecified"}"\n'
    f'- User description: "{user_input or "none"}"\n\n'
    "Rules:\n"
    "1. If a photo is provided it is the primary evidence; the text only supplements it.\n"
    "2. Identify every food and drink and estimate total kcal, protein, carbohydrates and fat.\n"
    "3. Give the meal a short, objective name.\n\n"
    "Reply with the JSON object only."
  )


def _full_day_prompt(log_data: Dict[str, Any]) -> str:
  return (
    "You are a strict, professional weight-loss coach. Analyse this single day's log and answer "
    "with the JSON schema.\n\n"
    f"The day's log:\n{json.dumps(log_data, ensure_ascii=False)}\n\n"
    "Tasks:\n"
    "1. Intake: estimate total kcal, protein, carbohydrates and fat across all meals.\n"
    "2. Burn: estimate kcal burned by the logged activity; 0 if there is none.\n"
    "3. dailySummary: one objective, strict sentence judging the day. No vague encouragement.\n\n"
    "Reply with the JSON object only."
  )


def _report_prompt(user_info: Dict[str, Any], logs: List[Dict[str, Any]]) -> str:
  return (
    "You are a strict, professional weight-loss coach known for objective, data-driven analysis. "
    "Analyse the data below and return a report following the JSON schema. Be direct; avoid empty "
    "encouragement and focus on evidence and actionable advice.\n\n"
    f"Profile: {json.dumps(user_info, ensure_ascii=False)}\n"
    f"Daily logs (most recent {REPORT_LOG_WINDOW} days): {json.dumps(logs, ensure_ascii=False)}\n\n"
    "Principles:\n"
    "1. Every score, average and trend must come from the data provided.\n"
    "2. Use every field: weight, waist, water, sleep, activity burn and macros.\n"
    "3. Compute totalWaistReduction, avgActivityExpenditure, avgWaterL and macroDistribution exactly.\n"
    "4. achievements and actionableTips must be specific and actionable."
  )


def _image_part(data: str, mime_type: str) -> types.Part:
  return types.Part.from_bytes(data=base64.b64decode(data), mime_type=mime_type)


def _to_parts(raw_parts: List[Dict[str, Any]]) -> List[types.Part]:
  """Convert ``{"text"}`` / ``{"inlineData": {"data", "mimeType"}}`` dicts into SDK parts."""
  parts: List[types.Part] = []
  for raw in raw_parts or []:
    inline = raw.get("inlineData") if isinstance(raw, dict) else None
    if isinstance(inline, dict) and inline.get("data"):
      parts.append(_image_part(inline["data"], inline.get("mimeType") or "image/jpeg"))
    elif isinstance(raw, dict) and raw.get("text"):
      parts.append(types.Part.from_text(text=str(raw["text"])))
  return parts


class GeminiGateway:
  """
  Thin wrapper around ``genai.Client`` for the four tracker actions.

  Parameters
  ----------
  api_key:
      Server-side Gemini API key. Missing keys fail before any request is made.
  model:
      Model name used for every call.
  client:
      Optional pre-built client, mainly for tests.
  """

  def __init__(self, api_key: Optional[str], model: str = DEFAULT_MODEL, client: Any = None) -> None:
    if not api_key and client is None:
      raise MissingCredentialsError(
        "The GEMINI_API_KEY environment variable is not set on the server."
      )
    self.model = model
    self._client = client or genai.Client(api_key=api_key)

  def _generate_json(self, contents: Any, schema: Type[BaseModel]) -> Dict[str, Any]:
    try:
      response = self._client.models.generate_content(
        model=self.model,
        contents=contents,
        config=types.GenerateContentConfig(
          response_mime_type="application/json",
          response_schema=schema,
        ),
      )
    except Exception as exc:
      raise AIServiceError(f"Gemini request failed: {exc}") from exc

    try:
      return schema.model_validate_json(response.text or "").model_dump()
    except ValidationError as exc:
      logger.warning("Gemini response did not match %s: %s", schema.__name__, exc)
      raise AIServiceError(f"Gemini response did not match the {schema.__name__} schema.") from exc

  def analyze_meal_input(
    self,
    user_input: str = "",
    image_base64: Optional[str] = None,
    image_mime_type: Optional[str] = None,
    meal_type_hint: str = "",
  ) -> Dict[str, Any]:
    """Estimate name, kcal and macros of one meal from text and/or a photo."""
    user_input = (user_input or "").strip()
    if not user_input and not image_base64:
      raise InvalidRequestError("User input or image is required.")

    prompt = _meal_prompt(user_input, meal_type_hint)
    if image_base64 and image_mime_type:
      contents: Any = [_image_part(image_base64, image_mime_type), types.Part.from_text(text=prompt)]
    else:
      contents = prompt
    return self._generate_json(contents, MealAnalysis)

  def analyze_full_day(self, log_data: Dict[str, Any]) -> Dict[str, Any]:
    """Estimate a whole day's intake, activity burn and a one-line verdict."""
    return self._generate_json(_full_day_prompt(log_data), FullDayAnalysis)

  def generate_report(self, user_info: Dict[str, Any], logs: List[Dict[str, Any]]) -> Dict[str, Any]:
    return self._generate_json(_report_prompt(user_info, logs[-REPORT_LOG_WINDOW:]), AnalysisReport)

  def chat_stream(
    self,
    history: List[Dict[str, Any]],
    new_user_parts: List[Dict[str, Any]],
  ) -> Iterator[str]:
    """
    Stream the coach's reply as text chunks.

    The first chunk is fetched eagerly so upstream failures surface as an
    ``AIServiceError`` before the caller starts writing a response.
    """
    contents = [
      types.Content(role=item.get("role", "user"), parts=_to_parts(item.get("parts", [])))
      for item in history or []
    ]
    contents.append(types.Content(role="user", parts=_to_parts(new_user_parts)))

    try:
      stream = iter(
        self._client.models.generate_content_stream(
          model=self.model,
          contents=contents,
          config=types.GenerateContentConfig(system_instruction=CHAT_SYSTEM_INSTRUCTION),
        )
      )
      first = next(stream, None)
    except Exception as exc:
      raise AIServiceError(f"Gemini chat request failed: {exc}") from exc

    def _texts() -> Iterator[str]:
      if first is not None and first.text:
        yield first.text
      for chunk in stream:
        if chunk.text:
          yield chunk.text

    return _texts()


__all__ = [
  "AIServiceError",
  "CHAT_SYSTEM_INSTRUCTION",
  "DEFAULT_MODEL",
  "GeminiGateway",
  "InvalidRequestError",
  "MissingCredentialsError",
]
