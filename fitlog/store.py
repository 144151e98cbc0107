"""
In-memory tracker state mirrored to local storage.

The profile, the log collection and the cached report are each kept under
their own storage key as serialized JSON. State is read once when the store is
created, with derived metrics refreshed against the stored profile, and
written back whenever it changes.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional

from fitlog.metrics import recompute_derived
from fitlog.models import DailyLogEntry, StoredReport, UserProfile, entries_from_list
from fitlog.storage import LocalStorage, StorageQuotaError

logger = logging.getLogger(__name__)

PROFILE_KEY = "userInfo"
LOGS_KEY = "dailyLogs"
REPORT_KEY = "analysisReport"


class TrackerStore:
  """Holds profile, logs and report; every setter persists immediately."""

  def __init__(self, storage: LocalStorage) -> None:
    self.storage = storage
    self.last_error: Optional[str] = None
    self.profile = UserProfile.from_dict(self._load(PROFILE_KEY))
    # Derived values are not trusted from storage.
    self.logs: List[DailyLogEntry] = recompute_derived(entries_from_list(self._load(LOGS_KEY)), self.profile)
    self.report = StoredReport.from_dict(self._load(REPORT_KEY))

  def _load(self, key: str) -> Any:
    raw = self.storage.get_item(key)
    if not raw:
      return None
    try:
      return json.loads(raw)
    except ValueError:
      logger.error("Failed to parse stored '%s'; starting from an empty value.", key)
      return None

  def _persist(self, key: str, value: Any) -> None:
    self.last_error = None
    try:
      self.storage.set_item(key, json.dumps(value, ensure_ascii=False))
    except StorageQuotaError as exc:
      logger.warning("Could not save '%s': %s", key, exc)
      self.last_error = (
        "Saving failed because local storage is full. "
        "Try deleting old entries or meal photos."
      )

  def set_profile(self, profile: UserProfile) -> None:
    self.profile = profile
    self._persist(PROFILE_KEY, profile.to_dict())

  def set_logs(self, logs: List[DailyLogEntry]) -> None:
    self.logs = list(logs)
    self._persist(LOGS_KEY, [entry.to_dict() for entry in self.logs])

  def set_report(self, report: StoredReport) -> None:
    self.report = report
    self._persist(REPORT_KEY, report.to_dict())

  def find(self, entry_id: str) -> Optional[DailyLogEntry]:
    return next((entry for entry in self.logs if entry.id == entry_id), None)


__all__ = ["LOGS_KEY", "PROFILE_KEY", "REPORT_KEY", "TrackerStore"]
