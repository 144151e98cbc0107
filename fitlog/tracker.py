"""
User-facing tracker operations.

Every operation that changes the log collection finishes by recomputing the
derived metrics and persisting the result through the store. AI work is
delegated to an analyzer, either ``GeminiGateway`` in-process or a
``ProxyClient`` pointing at a remote proxy.
"""

from __future__ import annotations

import base64
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from fitlog.csv_import import parse_csv
from fitlog.metrics import js_round, parse_log_date, recompute_derived, same_day, sort_by_date
from fitlog.models import (
  DERIVED_FIELDS,
  MEAL_FIELDS,
  MEAL_TYPES,
  NUMERIC_FIELDS,
  DailyLogEntry,
  MealSlot,
  StoredReport,
  UserProfile,
  attribute_for,
  to_number,
)
from fitlog.store import TrackerStore

logger = logging.getLogger(__name__)

MIN_REPORT_LOGS = 3
BATCH_WORKERS = 8


class TrackerError(ValueError):
  """A user action that cannot be applied; the message is shown to the user."""


class DuplicateDateError(TrackerError):
  pass


class EntryNotFoundError(TrackerError):
  pass


class InvalidDateError(TrackerError):
  pass


@dataclass
class BatchResult:
  succeeded: int
  total: int
  failed_ids: List[str] = field(default_factory=list)

  @property
  def message(self) -> str:
    return f"{self.succeeded} / {self.total} entries analysed."


def _data_url(image_bytes: bytes, mime_type: str) -> str:
  return f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"


def _append_line(existing: str, line: str) -> str:
  return f"{existing}\n{line}" if existing and existing.strip() else line


def _full_day_update(result: Dict[str, Any]) -> Dict[str, Any]:
  return {
    "actual_intake": js_round(result["estimatedIntakeCalories"]),
    "protein_g": js_round(result["estimatedIntakeProteinG"]),
    "carbs_g": js_round(result["estimatedIntakeCarbsG"]),
    "fat_g": js_round(result["estimatedIntakeFatG"]),
    "estimated_expenditure": js_round(result["estimatedExpenditureCalories"]),
    "summary": result["dailySummary"],
  }


class Tracker:
  def __init__(self, store: TrackerStore, analyzer: Any = None) -> None:
    self.store = store
    self.analyzer = analyzer
    self._lock = threading.RLock()

  @property
  def profile(self) -> UserProfile:
    return self.store.profile

  @property
  def logs(self) -> List[DailyLogEntry]:
    return self.store.logs

  def _require_analyzer(self) -> Any:
    if self.analyzer is None:
      raise TrackerError("AI analysis is not configured on this server.")
    return self.analyzer

  def _commit(self, logs: Iterable[DailyLogEntry]) -> None:
    self.store.set_logs(recompute_derived(logs, self.store.profile))

  def _get(self, entry_id: str) -> DailyLogEntry:
    entry = self.store.find(entry_id)
    if entry is None:
      raise EntryNotFoundError(f"No log entry with id {entry_id}.")
    return entry

  def _apply(self, changes: Dict[str, Dict[str, Any]]) -> None:
    """Merge per-entry field changes into the current entries and commit."""
    with self._lock:
      self._commit(
        entry.with_values(**changes[entry.id]) if entry.id in changes else entry
        for entry in self.store.logs
      )

  # Profile

  def update_profile(self, changes: Dict[str, Any]) -> UserProfile:
    """Merge ``changes`` (camelCase keys) into the profile and refresh every entry."""
    merged = self.profile.to_dict()
    merged.update(changes or {})
    profile = UserProfile.from_dict(merged)

    for key in ("gender", "activityLevel"):
      if merged.get(key) not in (None, "") and merged.get(key) != profile.to_dict()[key]:
        raise TrackerError(f"Invalid value for {key}: {merged.get(key)!r}.")
    for key in ("age", "height", "initialWeight"):
      if merged.get(key) not in (None, "") and profile.to_dict()[key] is None:
        raise TrackerError(f"{key} must be a number.")

    with self._lock:
      self.store.set_profile(profile)
      self._commit(self.store.logs)
    return profile

  # Log rows

  def add_today_row(self, today: Optional[date] = None) -> DailyLogEntry:
    """Start an empty entry for today; refuses when today already has one."""
    today_str = (today or date.today()).isoformat()
    with self._lock:
      if any(same_day(entry.date, today_str) for entry in self.store.logs):
        raise DuplicateDateError("Today already has an entry. Edit the existing row instead.")

      entry = DailyLogEntry(date=today_str)
      self._commit([entry] + self.store.logs)
      return self._get(entry.id)

  def update_field(self, entry_id: str, key: str, value: Any) -> DailyLogEntry:
    if key in DERIVED_FIELDS or key == "id":
      raise TrackerError(f"{key} is calculated automatically and cannot be edited.")
    try:
      attr = attribute_for(key)
    except KeyError:
      raise TrackerError(f"Unknown field: {key}.") from None

    text = "" if value is None else str(value)
    with self._lock:
      entry = self._get(entry_id)
      if key in NUMERIC_FIELDS:
        new_value: Any = to_number(text)
      elif key in MEAL_FIELDS:
        slot = getattr(entry, key)
        new_value = MealSlot(text=text, image=slot.image, analysis=slot.analysis)
      else:
        new_value = text
      self._apply({entry_id: {attr: new_value}})
      return self._get(entry_id)

  def delete_entry(self, entry_id: str) -> None:
    with self._lock:
      self._get(entry_id)
      self._commit([entry for entry in self.store.logs if entry.id != entry_id])

  def delete_entries(self, entry_ids: Iterable[str]) -> int:
    selected = set(entry_ids)
    with self._lock:
      kept = [entry for entry in self.store.logs if entry.id not in selected]
      removed = len(self.store.logs) - len(kept)
      self._commit(kept)
    return removed

  def clear_logs(self) -> None:
    with self._lock:
      self.store.set_logs([])

  # Meals

  def log_meal(
    self,
    analysis: Dict[str, Any],
    date_str: str,
    meal_type: str,
    image: Optional[str] = None,
  ) -> DailyLogEntry:
    """
    Add an analysed meal to the entry for ``date_str``, creating it if needed.

    Intake and macros accumulate. The meal line is appended to its slot, or to
    the summary for snacks.
    """
    if meal_type not in MEAL_TYPES:
      raise TrackerError(f"Unknown meal type: {meal_type}.")
    if parse_log_date(date_str) is None:
      raise InvalidDateError("The date provided is invalid; the meal was not logged.")

    details = f"{analysis['generatedMealName']} (~{js_round(analysis['estimatedCalories'])} kcal)"
    with self._lock:
      existing = next((entry for entry in self.store.logs if same_day(entry.date, date_str)), None)
      base = existing or DailyLogEntry(date=date_str)

      changes: Dict[str, Any] = {
        "actual_intake": (base.actual_intake or 0) + analysis["estimatedCalories"],
        "protein_g": (base.protein_g or 0) + analysis["estimatedProteinG"],
        "carbs_g": (base.carbs_g or 0) + analysis["estimatedCarbsG"],
        "fat_g": (base.fat_g or 0) + analysis["estimatedFatG"],
      }
      if meal_type == "snack":
        changes["summary"] = _append_line(base.summary, f"[Snack] {details}")
      else:
        slot = getattr(base, meal_type)
        changes[meal_type] = MealSlot(
          text=_append_line(slot.text, details),
          image=image or slot.image,
          analysis=dict(analysis),
        )

      if existing is None:
        self._commit([base.with_values(**changes)] + self.store.logs)
      else:
        self._apply({existing.id: changes})
      return self._get(base.id)

  def analyze_meal(
    self,
    user_input: str,
    date_str: str,
    meal_type: str,
    image_bytes: Optional[bytes] = None,
    mime_type: Optional[str] = None,
  ) -> DailyLogEntry:
    """Send a meal description and/or photo for analysis, then log the result."""
    if not (user_input or "").strip() and not image_bytes:
      raise TrackerError("Describe the meal or attach a photo.")
    if meal_type not in MEAL_TYPES:
      raise TrackerError(f"Unknown meal type: {meal_type}.")

    image_b64 = base64.b64encode(image_bytes).decode("ascii") if image_bytes else None
    mime_type = mime_type or "image/jpeg"
    analysis = self._require_analyzer().analyze_meal_input(
      user_input=user_input or "",
      image_base64=image_b64,
      image_mime_type=mime_type if image_bytes else None,
      meal_type_hint=meal_type,
    )
    image = _data_url(image_bytes, mime_type) if image_bytes else None
    return self.log_meal(analysis, date_str, meal_type, image=image)

  # Full-day analysis

  def reanalyze_entry(self, entry_id: str) -> DailyLogEntry:
    entry = self._get(entry_id)
    result = self._require_analyzer().analyze_full_day(entry.to_dict())
    with self._lock:
      self._get(entry_id)
      self._apply({entry_id: _full_day_update(result)})
      return self._get(entry_id)

  def batch_analyze(self, entry_ids: Iterable[str]) -> BatchResult:
    """
    Analyse every selected entry concurrently and apply whatever succeeded.

    All requests are allowed to settle; failures are logged and leave their
    entries untouched.
    """
    analyzer = self._require_analyzer()
    selected = list(dict.fromkeys(entry_ids))
    wanted = set(selected)
    targets = [entry for entry in self.store.logs if entry.id in wanted]

    def _analyze(entry: DailyLogEntry) -> Optional[Dict[str, Any]]:
      try:
        return _full_day_update(analyzer.analyze_full_day(entry.to_dict()))
      except Exception as exc:
        logger.error("Failed to analyse log %s: %s", entry.id, exc)
        return None

    updates: Dict[str, Dict[str, Any]] = {}
    failed: List[str] = [entry_id for entry_id in selected if self.store.find(entry_id) is None]
    if targets:
      with ThreadPoolExecutor(max_workers=min(BATCH_WORKERS, len(targets))) as pool:
        results = list(pool.map(_analyze, targets))
      for entry, changes in zip(targets, results):
        if changes is None:
          failed.append(entry.id)
        else:
          updates[entry.id] = changes

    if updates:
      self._apply(updates)

    result = BatchResult(succeeded=len(updates), total=len(selected), failed_ids=failed)
    logger.info(result.message)
    return result

  # Import

  def import_csv(self, data: Any) -> int:
    """Import CSV rows; entries on an imported date are replaced."""
    imported = parse_csv(data)
    imported_days = {parse_log_date(entry.date) for entry in imported} - {None}
    with self._lock:
      kept = [entry for entry in self.store.logs if parse_log_date(entry.date) not in imported_days]
      self._commit(imported + kept)
    return len(imported)

  # Report

  def generate_report(self, now: Optional[datetime] = None) -> StoredReport:
    if not self.profile.is_complete:
      raise TrackerError("Complete your profile (age, gender and height) before generating a report.")
    if len(self.store.logs) < MIN_REPORT_LOGS:
      raise TrackerError(f"Log at least {MIN_REPORT_LOGS} days of data to generate a report.")

    logs = [entry.to_dict() for entry in sort_by_date(self.store.logs)]
    data = self._require_analyzer().generate_report(self.profile.to_dict(), logs)
    report = StoredReport(data=data, generated_at=(now or datetime.now(timezone.utc)).isoformat())
    self.store.set_report(report)
    return report

  # Chat

  def chat(
    self,
    history: List[Dict[str, Any]],
    text: str = "",
    image_bytes: Optional[bytes] = None,
    mime_type: Optional[str] = None,
  ) -> Iterator[str]:
    """Stream a coaching reply. Only text from earlier turns is resent."""
    model_history = [
      {"role": item.get("role", "user"), "parts": [{"text": item.get("text", "")}]}
      for item in history or []
      if item.get("text")
    ]
    parts: List[Dict[str, Any]] = []
    if image_bytes:
      parts.append({
        "inlineData": {
          "data": base64.b64encode(image_bytes).decode("ascii"),
          "mimeType": mime_type or "image/jpeg",
        }
      })
    if (text or "").strip():
      parts.append({"text": text})
    if not parts:
      raise TrackerError("Type a message or attach a photo.")
    return self._require_analyzer().chat_stream(model_history, parts)


__all__ = [
  "BatchResult",
  "DuplicateDateError",
  "EntryNotFoundError",
  "InvalidDateError",
  "Tracker",
  "TrackerError",
]
