import json

import pytest

from fitlog.metrics import recompute_derived
from fitlog.models import DailyLogEntry, MealSlot, StoredReport, UserProfile
from fitlog.storage import LocalStorage, StorageQuotaError
from fitlog.store import LOGS_KEY, PROFILE_KEY, REPORT_KEY, TrackerStore


def test_set_get_remove_roundtrip(storage):
  assert storage.get_item("missing") is None
  storage.set_item("k", "v1")
  storage.set_item("k", "v2")
  assert storage.get_item("k") == "v2"
  storage.remove_item("k")
  assert storage.get_item("k") is None


def test_quota_blocks_oversized_write_and_keeps_old_value(tmp_path):
  storage = LocalStorage(tmp_path / "small.db", quota_bytes=20)
  storage.set_item("a", "12345")
  with pytest.raises(StorageQuotaError):
    storage.set_item("a", "x" * 50)
  assert storage.get_item("a") == "12345"


def test_overwriting_a_key_does_not_count_its_old_value(tmp_path):
  storage = LocalStorage(tmp_path / "small.db", quota_bytes=12)
  storage.set_item("a", "x" * 10)
  storage.set_item("a", "y" * 10)
  assert storage.get_item("a") == "y" * 10


def test_store_persists_under_three_keys_and_reloads(storage):
  store = TrackerStore(storage)
  store.set_profile(UserProfile(age=30, gender="female", height=160))
  store.set_logs(recompute_derived([DailyLogEntry(date="2024-05-01", weight_kg=60, lunch=MealSlot(text="Soup"))], store.profile))
  store.set_report(StoredReport(data={"progressScore": 50}, generated_at="2024-05-02T00:00:00+00:00"))

  assert json.loads(storage.get_item(PROFILE_KEY))["gender"] == "female"
  assert json.loads(storage.get_item(LOGS_KEY))[0]["lunch"]["text"] == "Soup"
  assert json.loads(storage.get_item(REPORT_KEY))["data"] == {"progressScore": 50}

  reloaded = TrackerStore(storage)
  assert reloaded.profile == store.profile
  assert reloaded.logs == store.logs
  assert reloaded.report == store.report


def test_store_sanitizes_legacy_and_broken_logs(storage):
  storage.set_item(LOGS_KEY, json.dumps([
    {"date": "2024-05-01", "weightKg": "71.5", "waterL": "abc", "breakfast": "Eggs", "notes": "old note"},
    {"weightKg": 70},
    "not an entry",
  ]))
  store = TrackerStore(storage)
  [entry] = store.logs
  assert entry.id
  assert entry.weight_kg == 71.5
  assert entry.water_l is None
  assert entry.breakfast.text == "Eggs"
  assert entry.summary == "old note"


def test_store_survives_corrupt_json(storage):
  storage.set_item(PROFILE_KEY, "{not json")
  store = TrackerStore(storage)
  assert store.profile == UserProfile()


def test_quota_failure_is_reported_not_raised(tmp_path):
  store = TrackerStore(LocalStorage(tmp_path / "tiny.db", quota_bytes=200))
  store.set_logs([DailyLogEntry(date="2024-05-01", summary="x" * 500)])
  assert store.last_error is not None
  assert len(store.logs) == 1
  store.set_logs([])
  assert store.last_error is None


def test_reload_recomputes_derived_metrics(storage):
  storage.set_item(PROFILE_KEY, json.dumps({"age": 30, "gender": "male", "height": 175}))
  storage.set_item(LOGS_KEY, json.dumps([
    {"id": "a", "date": "2024-05-01", "weightKg": 80, "actualIntake": 1749, "bmr": 1500, "calorieDeficit": 0},
  ]))
  [entry] = TrackerStore(storage).logs
  assert entry.bmr == 1749
  assert entry.tdee == 1749
  assert entry.calorie_deficit == 0
