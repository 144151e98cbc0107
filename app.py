"""
Flask backend for the personal fitness and diet tracker.

The service keeps a user's profile, daily logs and latest progress report in a
local key/value store, recomputes BMR/TDEE/calorie-deficit after every change,
imports spreadsheet exports, and forwards all AI work (meal analysis, full-day
nutrition estimates, progress reports and the coaching chat) to Gemini through
a single proxy endpoint that keeps the API key server-side.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv
from flask import Flask, Response, jsonify, request, stream_with_context
from flask_cors import CORS

from fitlog.csv_import import CsvImportError
from fitlog.gemini import DEFAULT_MODEL, AIServiceError, GeminiGateway, InvalidRequestError, MissingCredentialsError
from fitlog.metrics import sort_by_date
from fitlog.proxy_client import ProxyClient
from fitlog.storage import DEFAULT_QUOTA_BYTES, LocalStorage
from fitlog.store import TrackerStore
from fitlog.tracker import DuplicateDateError, EntryNotFoundError, Tracker, TrackerError

BASE_DIR = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


def _safe_int(value: Optional[str], default: int) -> int:
  try:
    return int(value) if value is not None else default
  except (TypeError, ValueError):
    return default


def _safe_float(value: Optional[str], default: Optional[float]) -> Optional[float]:
  try:
    return float(value) if value else default
  except (TypeError, ValueError):
    return default


GEMINI_API_KEY = (os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY") or "").strip()
GEMINI_MODEL = (os.environ.get("GEMINI_MODEL") or DEFAULT_MODEL).strip()
PROXY_URL = os.environ.get("PROXY_URL", "").strip()
PROXY_API_KEY = os.environ.get("PROXY_API_KEY", "").strip() or None
PROXY_TIMEOUT = _safe_float(os.environ.get("PROXY_TIMEOUT"), None)
STORAGE_PATH = Path(os.environ.get("STORAGE_PATH", str(BASE_DIR / "local_storage.db"))).resolve()
STORAGE_QUOTA_BYTES = _safe_int(os.environ.get("STORAGE_QUOTA_BYTES"), DEFAULT_QUOTA_BYTES)

PROXY_ACTIONS = ("analyzeMealInput", "analyzeFullDayNutrition", "generateAnalysisReport", "chat")


def create_app(test_config: Optional[Dict[str, Any]] = None, gateway: Any = None) -> Flask:
  """Instantiate the Flask application and register routes."""
  app = Flask(__name__)
  CORS(app, resources={r"/*": {"origins": "*"}})
  app.config.update(
    GEMINI_API_KEY=GEMINI_API_KEY,
    GEMINI_MODEL=GEMINI_MODEL,
    PROXY_URL=PROXY_URL,
    PROXY_API_KEY=PROXY_API_KEY,
    PROXY_TIMEOUT=PROXY_TIMEOUT,
    STORAGE_PATH=str(STORAGE_PATH),
    STORAGE_QUOTA_BYTES=STORAGE_QUOTA_BYTES,
  )
  if test_config:
    app.config.update(test_config)

  def _get_gateway() -> Any:
    if gateway is not None:
      return gateway
    return GeminiGateway(app.config["GEMINI_API_KEY"], model=app.config["GEMINI_MODEL"])

  if app.config["PROXY_URL"]:
    analyzer: Any = ProxyClient(
      app.config["PROXY_URL"],
      api_key=app.config["PROXY_API_KEY"],
      timeout=app.config["PROXY_TIMEOUT"],
    )
  elif gateway is not None:
    analyzer = gateway
  elif app.config["GEMINI_API_KEY"]:
    analyzer = _get_gateway()
  else:
    app.logger.warning("GEMINI_API_KEY is not set; AI features are disabled.")
    analyzer = None

  storage = LocalStorage(app.config["STORAGE_PATH"], quota_bytes=app.config["STORAGE_QUOTA_BYTES"])
  store = TrackerStore(storage)
  tracker = Tracker(store, analyzer)
  app.extensions["tracker"] = tracker

  def _ok(payload: Dict[str, Any], status: int = 200) -> Tuple[Dict[str, Any], int]:
    """Attach a storage warning to a successful response when the last write failed."""
    if store.last_error:
      payload["warning"] = store.last_error
    return payload, status

  def _ai_failure(exc: Exception) -> Tuple[Dict[str, Any], int]:
    app.logger.warning("AI request failed: %s", exc)
    return {"error": "AI analysis failed. Please try again later.", "details": str(exc)}, 502

  def _uploaded_image() -> Tuple[Optional[bytes], Optional[str]]:
    upload_key = "photo" if "photo" in request.files else "image"
    uploaded_file = request.files.get(upload_key)
    if uploaded_file is None or uploaded_file.filename == "":
      return None, None
    binary_content = uploaded_file.read()
    if not binary_content:
      return None, None
    return binary_content, uploaded_file.mimetype or "image/jpeg"

  @app.errorhandler(TrackerError)
  def handle_tracker_error(exc: TrackerError):
    status = 400
    if isinstance(exc, EntryNotFoundError):
      status = 404
    elif isinstance(exc, DuplicateDateError):
      status = 409
    return jsonify({"error": str(exc)}), status

  @app.errorhandler(CsvImportError)
  def handle_csv_error(exc: CsvImportError):
    return jsonify({"error": str(exc)}), 400

  @app.errorhandler(405)
  def method_not_allowed(_exc):
    return jsonify({"error": "Method Not Allowed"}), 405

  @app.route("/api/proxy", methods=["POST"])
  def proxy():
    """Forward one AI action to Gemini and return its JSON (or a text stream for chat)."""
    body = request.get_json(silent=True) or {}
    action = body.get("action")
    payload = body.get("payload") or {}

    try:
      upstream = _get_gateway()
    except MissingCredentialsError as exc:
      app.logger.error("Proxy error: %s", exc)
      return {
        "error": "Server configuration error.",
        "details": f"{exc} Set it in the server environment and restart the service.",
      }, 500

    if action not in PROXY_ACTIONS:
      return {"error": "Invalid action"}, 400

    try:
      if action == "analyzeMealInput":
        result = upstream.analyze_meal_input(
          user_input=payload.get("userInput") or "",
          image_base64=payload.get("imageBase64"),
          image_mime_type=payload.get("imageMimeType"),
          meal_type_hint=payload.get("mealTypeHint") or "",
        )
      elif action == "analyzeFullDayNutrition":
        result = upstream.analyze_full_day(payload.get("logData") or {})
      elif action == "generateAnalysisReport":
        result = upstream.generate_report(payload.get("userInfo") or {}, payload.get("logs") or [])
      else:
        chunks = upstream.chat_stream(payload.get("modelHistory") or [], payload.get("newUserMessageParts") or [])
        return Response(
          stream_with_context(chunks),
          content_type="text/plain; charset=utf-8",
          headers={"Cache-Control": "no-cache"},
        )
    except InvalidRequestError as exc:
      return {"error": str(exc)}, 400
    except AIServiceError as exc:
      app.logger.exception("Error in API proxy for action [%s]: %s", action, exc)
      return {"error": "An internal server error occurred", "details": str(exc)}, 500

    return jsonify(result), 200

  @app.route("/profile", methods=["GET"])
  def get_profile() -> Tuple[Dict[str, Any], int]:
    profile = tracker.profile
    return {"profile": profile.to_dict(), "complete": profile.is_complete}, 200

  @app.route("/profile", methods=["PUT"])
  def put_profile() -> Tuple[Dict[str, Any], int]:
    """Merge profile changes; derived metrics of every entry are refreshed."""
    payload = request.get_json(silent=True) or {}
    profile = tracker.update_profile(payload)
    return _ok({"profile": profile.to_dict(), "complete": profile.is_complete})

  @app.route("/logs", methods=["GET"])
  def list_logs() -> Tuple[Dict[str, Any], int]:
    """Return entries ordered from newest to oldest."""
    items = [entry.to_dict() for entry in sort_by_date(tracker.logs, newest_first=True)]
    return {"items": items}, 200

  @app.route("/logs", methods=["POST"])
  def add_row() -> Tuple[Dict[str, Any], int]:
    entry = tracker.add_today_row()
    return _ok({"entry": entry.to_dict()}, 201)

  @app.route("/logs", methods=["DELETE"])
  def clear_logs() -> Tuple[Dict[str, Any], int]:
    tracker.clear_logs()
    return _ok({"items": []})

  @app.route("/logs/<entry_id>", methods=["PATCH"])
  def update_entry(entry_id: str) -> Tuple[Dict[str, Any], int]:
    payload = request.get_json(silent=True) or {}
    field = payload.get("field")
    if not field:
      return {"error": "A field name is required."}, 400
    entry = tracker.update_field(entry_id, field, payload.get("value"))
    return _ok({"entry": entry.to_dict()})

  @app.route("/logs/<entry_id>", methods=["DELETE"])
  def delete_entry(entry_id: str) -> Tuple[Dict[str, Any], int]:
    tracker.delete_entry(entry_id)
    return _ok({"deleted": 1})

  @app.route("/logs/delete", methods=["POST"])
  def delete_selected() -> Tuple[Dict[str, Any], int]:
    payload = request.get_json(silent=True) or {}
    removed = tracker.delete_entries(payload.get("ids") or [])
    return _ok({"deleted": removed})

  @app.route("/logs/import", methods=["POST"])
  def import_logs() -> Tuple[Dict[str, Any], int]:
    """Import a CSV export, from a multipart ``file`` field or the raw body."""
    uploaded_file = request.files.get("file")
    data = uploaded_file.read() if uploaded_file is not None else request.get_data()
    if not data:
      return {"error": "No CSV file provided"}, 400
    imported = tracker.import_csv(data)
    app.logger.info("Imported %d log entries from CSV", imported)
    return _ok({"imported": imported, "total": len(tracker.logs)})

  @app.route("/logs/meal", methods=["POST"])
  def log_meal() -> Tuple[Dict[str, Any], int]:
    """Analyse a meal description and/or photo and add it to that day's entry."""
    if request.files or request.form:
      fields = request.form
    else:
      fields = request.get_json(silent=True) or {}
    image_bytes, mime_type = _uploaded_image()
    meal_date = fields.get("meal_date") or datetime.now().date().isoformat()

    try:
      entry = tracker.analyze_meal(
        fields.get("text") or "",
        meal_date,
        fields.get("meal_type") or "lunch",
        image_bytes=image_bytes,
        mime_type=mime_type,
      )
    except AIServiceError as exc:
      return _ai_failure(exc)
    return _ok({"entry": entry.to_dict()})

  @app.route("/logs/<entry_id>/analyze", methods=["POST"])
  def analyze_entry(entry_id: str) -> Tuple[Dict[str, Any], int]:
    try:
      entry = tracker.reanalyze_entry(entry_id)
    except AIServiceError as exc:
      return _ai_failure(exc)
    return _ok({"entry": entry.to_dict()})

  @app.route("/logs/analyze", methods=["POST"])
  def analyze_selected() -> Tuple[Dict[str, Any], int]:
    """Analyse the selected entries concurrently; failures leave entries untouched."""
    payload = request.get_json(silent=True) or {}
    ids = payload.get("ids") or []
    if not ids:
      return {"error": "Select at least one entry."}, 400
    result = tracker.batch_analyze(ids)
    return _ok({
      "succeeded": result.succeeded,
      "total": result.total,
      "failed_ids": result.failed_ids,
      "message": result.message,
    })

  @app.route("/report", methods=["GET"])
  def get_report() -> Tuple[Dict[str, Any], int]:
    return tracker.store.report.to_dict(), 200

  @app.route("/report", methods=["POST"])
  def generate_report() -> Tuple[Dict[str, Any], int]:
    try:
      report = tracker.generate_report()
    except AIServiceError as exc:
      return _ai_failure(exc)
    return _ok(report.to_dict())

  @app.route("/chat", methods=["POST"])
  def chat():
    """Stream a coaching reply; the client sends the visible history with every call."""
    if request.files or request.form:
      text = request.form.get("text") or ""
      history: Any = []
    else:
      payload = request.get_json(silent=True) or {}
      text = payload.get("text") or ""
      history = payload.get("history") or []
    image_bytes, mime_type = _uploaded_image()

    try:
      chunks = tracker.chat(history, text, image_bytes=image_bytes, mime_type=mime_type)
    except AIServiceError as exc:
      return _ai_failure(exc)
    return Response(stream_with_context(chunks), content_type="text/plain; charset=utf-8")

  @app.route("/health", methods=["GET"])
  def health() -> Tuple[Dict[str, str], int]:
    """Simple health-check endpoint."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}, 200

  return app


if __name__ == "__main__":
  flask_app = create_app()
  flask_app.run(host="0.0.0.0", port=5000, debug=True)
