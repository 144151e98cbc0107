"""
Data model for the tracker: user profile, daily log entries and the cached
analysis report.

Entries are stored as JSON using the camelCase keys the front end expects, so
each dataclass knows how to convert itself to and from that wire form. Loading
is forgiving because stored data may come from older versions of the app.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

GENDERS = ("male", "female", "other")
ACTIVITY_LEVELS = ("sedentary", "light", "moderate", "active", "very_active")
MEAL_FIELDS = ("breakfast", "lunch", "dinner")
MEAL_TYPES = MEAL_FIELDS + ("snack",)

# camelCase key -> attribute name
NUMERIC_FIELDS = {
  "weightKg": "weight_kg",
  "waistCm": "waist_cm",
  "waterL": "water_l",
  "sleepH": "sleep_h",
  "bmr": "bmr",
  "tdee": "tdee",
  "estimatedExpenditure": "estimated_expenditure",
  "actualIntake": "actual_intake",
  "proteinG": "protein_g",
  "carbsG": "carbs_g",
  "fatG": "fat_g",
  "calorieDeficit": "calorie_deficit",
}
TEXT_FIELDS = {"date": "date", "activity": "activity", "summary": "summary"}
DERIVED_FIELDS = ("bmr", "tdee", "calorieDeficit")


def to_number(value: Any) -> Optional[float]:
  """Coerce ``value`` to a finite number, or ``None`` when it is not one."""
  if value is None or isinstance(value, bool):
    return None
  if isinstance(value, (int, float)):
    number = float(value)
  else:
    text = str(value).strip()
    if not text:
      return None
    try:
      number = float(text)
    except ValueError:
      return None
  if not math.isfinite(number):
    return None
  return int(number) if number.is_integer() else number


def _stored_number(value: Any) -> Optional[float]:
  # Zero was never distinguishable from "empty" in stored data.
  number = to_number(value)
  return number if number else None


@dataclass
class UserProfile:
  age: Optional[int] = None
  gender: Optional[str] = None
  height: Optional[float] = None
  initial_weight: Optional[float] = None
  activity_level: Optional[str] = None

  @property
  def is_complete(self) -> bool:
    """True when the fields needed for BMR are all filled in."""
    return bool(self.age and self.gender and self.height)

  def to_dict(self) -> Dict[str, Any]:
    return {
      "age": self.age,
      "gender": self.gender,
      "height": self.height,
      "initialWeight": self.initial_weight,
      "activityLevel": self.activity_level,
    }

  @classmethod
  def from_dict(cls, raw: Any) -> "UserProfile":
    if not isinstance(raw, dict):
      return cls()
    gender = raw.get("gender")
    activity = raw.get("activityLevel")
    age = to_number(raw.get("age"))
    return cls(
      age=int(age) if age is not None else None,
      gender=gender if gender in GENDERS else None,
      height=to_number(raw.get("height")),
      initial_weight=to_number(raw.get("initialWeight")),
      activity_level=activity if activity in ACTIVITY_LEVELS else None,
    )


@dataclass
class MealSlot:
  text: str = ""
  image: Optional[str] = None
  analysis: Optional[Dict[str, Any]] = None

  def to_dict(self) -> Dict[str, Any]:
    return {"text": self.text, "image": self.image, "analysis": self.analysis}

  @classmethod
  def from_raw(cls, raw: Any) -> "MealSlot":
    if isinstance(raw, dict):
      analysis = raw.get("analysis")
      return cls(
        text=str(raw.get("text") or ""),
        image=raw.get("image") or None,
        analysis=analysis if isinstance(analysis, dict) else None,
      )
    return cls(text=str(raw) if raw else "")


@dataclass
class DailyLogEntry:
  date: str
  id: str = field(default_factory=lambda: uuid.uuid4().hex)
  weight_kg: Optional[float] = None
  waist_cm: Optional[float] = None
  water_l: Optional[float] = None
  sleep_h: Optional[float] = None
  breakfast: MealSlot = field(default_factory=MealSlot)
  lunch: MealSlot = field(default_factory=MealSlot)
  dinner: MealSlot = field(default_factory=MealSlot)
  activity: str = ""
  summary: str = ""
  bmr: Optional[int] = None
  tdee: Optional[int] = None
  estimated_expenditure: Optional[float] = None
  actual_intake: Optional[float] = None
  protein_g: Optional[float] = None
  carbs_g: Optional[float] = None
  fat_g: Optional[float] = None
  calorie_deficit: Optional[float] = None

  def with_values(self, **changes: Any) -> "DailyLogEntry":
    return replace(self, **changes)

  def to_dict(self) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"id": self.id, "date": self.date}
    for key, attr in NUMERIC_FIELDS.items():
      payload[key] = getattr(self, attr)
    for meal in MEAL_FIELDS:
      payload[meal] = getattr(self, meal).to_dict()
    payload["activity"] = self.activity
    payload["summary"] = self.summary
    return payload

  @classmethod
  def from_dict(cls, raw: Any) -> Optional["DailyLogEntry"]:
    """Build an entry from stored JSON, or return ``None`` for unusable rows."""
    if not isinstance(raw, dict) or not raw.get("date"):
      return None
    values: Dict[str, Any] = {
      "id": str(raw.get("id") or uuid.uuid4().hex),
      "date": str(raw["date"]),
      "activity": str(raw.get("activity") or ""),
      "summary": str(raw.get("summary") or raw.get("notes") or ""),
    }
    for key, attr in NUMERIC_FIELDS.items():
      values[attr] = _stored_number(raw.get(key))
    for meal in MEAL_FIELDS:
      values[meal] = MealSlot.from_raw(raw.get(meal))
    return cls(**values)


def attribute_for(key: str) -> str:
  """Map a camelCase entry key to its dataclass attribute."""
  if key in NUMERIC_FIELDS:
    return NUMERIC_FIELDS[key]
  if key in TEXT_FIELDS or key in MEAL_FIELDS or key == "id":
    return key
  raise KeyError(key)


@dataclass
class StoredReport:
  data: Optional[Dict[str, Any]] = None
  generated_at: Optional[str] = None

  def to_dict(self) -> Dict[str, Any]:
    return {"data": self.data, "generatedAt": self.generated_at}

  @classmethod
  def from_dict(cls, raw: Any) -> "StoredReport":
    if not isinstance(raw, dict):
      return cls()
    data = raw.get("data")
    return cls(
      data=data if isinstance(data, dict) else None,
      generated_at=raw.get("generatedAt") or None,
    )


def entries_from_list(raw: Any) -> List[DailyLogEntry]:
  if not isinstance(raw, list):
    return []
  entries = (DailyLogEntry.from_dict(item) for item in raw)
  return [entry for entry in entries if entry is not None]


__all__ = [
  "ACTIVITY_LEVELS",
  "DERIVED_FIELDS",
  "DailyLogEntry",
  "GENDERS",
  "MEAL_FIELDS",
  "MEAL_TYPES",
  "MealSlot",
  "NUMERIC_FIELDS",
  "StoredReport",
  "UserProfile",
  "attribute_for",
  "entries_from_list",
  "to_number",
]
