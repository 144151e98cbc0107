from __future__ import annotations

from typing import Any, Dict, List

import pytest

from app import create_app
from fitlog.storage import LocalStorage
from fitlog.store import TrackerStore
from fitlog.tracker import Tracker


class FakeAnalyzer:
  """Stands in for the Gemini gateway; records calls and returns canned data."""

  def __init__(self) -> None:
    self.calls: List[tuple] = []
    self.meal: Dict[str, Any] = {
      "generatedMealName": "Chicken salad",
      "estimatedCalories": 420.4,
      "estimatedProteinG": 35,
      "estimatedCarbsG": 12,
      "estimatedFatG": 20,
    }
    self.fail_dates: set = set()
    self.chunks = ["Eat ", "more ", "protein."]

  def analyze_meal_input(self, user_input="", image_base64=None, image_mime_type=None, meal_type_hint=""):
    self.calls.append(("meal", user_input, image_base64, image_mime_type, meal_type_hint))
    return dict(self.meal)

  def analyze_full_day(self, log_data: Dict[str, Any]) -> Dict[str, Any]:
    self.calls.append(("day", log_data["id"]))
    if log_data["date"] in self.fail_dates:
      raise RuntimeError("upstream exploded")
    return {
      "estimatedIntakeCalories": 1800.6,
      "estimatedIntakeProteinG": 110.2,
      "estimatedIntakeCarbsG": 150.5,
      "estimatedIntakeFatG": 60.4,
      "estimatedExpenditureCalories": 300,
      "dailySummary": "Deficit on target.",
    }

  def generate_report(self, user_info, logs):
    self.calls.append(("report", user_info, logs))
    return {"progressScore": 72, "achievements": ["Logged every day"]}

  def chat_stream(self, history, new_user_parts):
    self.calls.append(("chat", history, new_user_parts))
    return iter(self.chunks)


@pytest.fixture
def analyzer() -> FakeAnalyzer:
  return FakeAnalyzer()


@pytest.fixture
def storage(tmp_path) -> LocalStorage:
  return LocalStorage(tmp_path / "state.db")


@pytest.fixture
def tracker(storage, analyzer) -> Tracker:
  return Tracker(TrackerStore(storage), analyzer)


@pytest.fixture
def app(tmp_path, analyzer):
  flask_app = create_app(
    {
      "TESTING": True,
      "STORAGE_PATH": str(tmp_path / "app.db"),
      "GEMINI_API_KEY": "",
      "PROXY_URL": "",
    },
    gateway=analyzer,
  )
  return flask_app


@pytest.fixture
def client(app):
  return app.test_client()
