"""
Derived metrics for the daily log: BMR, TDEE and calorie deficit.

The pass is a pure function of the log collection and the profile, so it is
re-run after every mutation and always yields the same result for the same
inputs regardless of the order edits were made in.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Iterable, List, Optional

from fitlog.models import DailyLogEntry, UserProfile

_DATE_PATTERN = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})")


def parse_log_date(value: Optional[str]) -> Optional[date]:
  """
  Return the calendar day for a log date string.

  ``YYYY-MM-DD`` and ``YYYY/M/D`` are read directly and validated, so a
  non-existent day such as ``2024-02-30`` is rejected. Anything else goes
  through ISO parsing. Unparsable input returns ``None``.
  """
  if not value:
    return None
  cleaned = str(value).strip()

  match = _DATE_PATTERN.match(cleaned)
  if match:
    year, month, day = (int(part) for part in match.groups())
    try:
      return date(year, month, day)
    except ValueError:
      pass

  try:
    return datetime.fromisoformat(cleaned).date()
  except ValueError:
    return None


def same_day(first: Optional[str], second: Optional[str]) -> bool:
  left = parse_log_date(first)
  return left is not None and left == parse_log_date(second)


def js_round(value: float) -> int:
  """Round half up, matching the rounding the front end displays."""
  return int(math.floor(value + 0.5))


def calculate_bmr(profile: UserProfile, weight_kg: Optional[float]) -> Optional[float]:
  """Mifflin-St Jeor BMR, or ``None`` when it cannot be computed."""
  if not profile.age or not profile.gender or not profile.height or not weight_kg:
    return None

  base = 10 * weight_kg + 6.25 * profile.height - 5 * profile.age
  if profile.gender == "male":
    return base + 5
  if profile.gender == "female":
    return base - 161
  return None


def _sort_key(entry: DailyLogEntry) -> date:
  return parse_log_date(entry.date) or date.min


def recompute_derived(entries: Iterable[DailyLogEntry], profile: UserProfile) -> List[DailyLogEntry]:
  """
  Recompute ``bmr``, ``tdee`` and ``calorie_deficit`` for every entry.

  Entries are walked in ascending date order carrying the last positive
  recorded weight forward, seeded from the profile's initial weight. The
  returned list keeps the input order; only the derived fields change.
  """
  ordered = list(entries)
  last_known_weight = profile.initial_weight
  computed = {}

  for position in sorted(range(len(ordered)), key=lambda index: _sort_key(ordered[index])):
    entry = ordered[position]
    if entry.weight_kg is not None and entry.weight_kg > 0:
      last_known_weight = entry.weight_kg

    bmr = calculate_bmr(profile, last_known_weight)
    tdee = None
    if bmr is not None:
      tdee = js_round(bmr + (entry.estimated_expenditure or 0))

    deficit = None
    if tdee is not None and entry.actual_intake is not None:
      deficit = tdee - entry.actual_intake

    computed[position] = entry.with_values(
      bmr=js_round(bmr) if bmr is not None else None,
      tdee=tdee,
      calorie_deficit=deficit,
    )

  return [computed[position] for position in range(len(ordered))]


def sort_by_date(entries: Iterable[DailyLogEntry], newest_first: bool = False) -> List[DailyLogEntry]:
  return sorted(entries, key=_sort_key, reverse=newest_first)


__all__ = [
  "calculate_bmr",
  "js_round",
  "parse_log_date",
  "recompute_derived",
  "same_day",
  "sort_by_date",
]
