"""
CSV import for daily log entries.

Spreadsheets exported by users name their columns in many ways, in Chinese or
English, with or without units. Headers are normalised and looked up in
``FIELD_ALIASES``; the only mandatory column is the date.
"""

from __future__ import annotations

import io
import logging
from typing import Dict, List, Optional, Union

import pandas as pd

from fitlog.models import MEAL_FIELDS, NUMERIC_FIELDS, DailyLogEntry, MealSlot, attribute_for, to_number

logger = logging.getLogger(__name__)


class CsvImportError(ValueError):
  """Raised when a CSV file cannot be imported at all."""


FIELD_ALIASES: Dict[str, tuple] = {
  "date": ("日期天数", "日期", "date"),
  "weightKg": ("晨重kg", "体重kg", "体重", "晨重", "weight", "weightkg"),
  "waistCm": ("腰围cm", "腰围", "waist", "waistcm"),
  "waterL": ("饮水量l", "饮水l", "饮水量", "饮水", "water", "waterl"),
  "sleepH": ("睡眠h", "睡眠", "sleep", "sleeph"),
  "breakfast": ("早餐", "breakfast"),
  "lunch": ("午餐", "lunch"),
  "dinner": ("晚餐", "dinner"),
  "activity": ("运动情况", "运动", "activity"),
  "estimatedExpenditure": (
    "预估消耗kcal", "运动消耗kcal", "运动消耗", "消耗热量", "expenditure", "estimatedexpenditure",
  ),
  "actualIntake": ("实际摄入kcal", "实际摄入", "actualintake", "intake"),
  "proteinG": ("蛋白质g", "蛋白质", "蛋白g", "protein", "proteing"),
  "carbsG": ("碳水g", "碳水", "碳水化合物", "carbs", "carbsg"),
  "fatG": ("脂肪g", "脂肪", "fat", "fatg"),
  "calorieDeficit": ("热量缺口kcal", "热量缺口", "caloriedeficit"),
  "summary": ("备注感受", "备注", "感受", "notes", "当日小结", "summary"),
}

_ALIAS_LOOKUP = {alias: key for key, aliases in FIELD_ALIASES.items() for alias in aliases}


def normalise_header(header: str) -> str:
  """Keep only letters and digits, lower-cased: ``"体重 (kg)"`` -> ``"体重kg"``."""
  return "".join(char for char in (header or "") if char.isalnum()).lower()


def resolve_columns(headers: List[str]) -> Dict[int, str]:
  """Return ``{column index: entry key}`` for every recognised header."""
  mapping: Dict[int, str] = {}
  for index, header in enumerate(headers):
    key = _ALIAS_LOOKUP.get(normalise_header(str(header)))
    if key:
      mapping[index] = key
  return mapping


def parse_numeric_cell(value: Optional[str]) -> Optional[float]:
  """Parse a numeric cell; ``"70.5~72"`` ranges resolve to the upper bound."""
  if value is None:
    return None
  text = str(value).strip()
  if "~" in text:
    text = text.split("~")[-1]
  return to_number(text)


def _decode(data: Union[bytes, str]) -> str:
  if isinstance(data, bytes):
    try:
      return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
      raise CsvImportError("CSV file must be UTF-8 encoded.") from exc
  return data[1:] if data.startswith("\ufeff") else data


def _read_frame(text: str) -> pd.DataFrame:
  text = text.strip()
  options = {"dtype": str, "keep_default_na": False, "skip_blank_lines": True, "header": None}
  try:
    width = len(pd.read_csv(io.StringIO(text), nrows=1, **options).columns)
    # Cells beyond the header width are ignored.
    frame = pd.read_csv(
      io.StringIO(text),
      engine="python",
      on_bad_lines=lambda cells: cells[:width],
      **options,
    )
  except pd.errors.EmptyDataError as exc:
    raise CsvImportError("The CSV file needs a header row and at least one data row.") from exc
  except pd.errors.ParserError as exc:
    raise CsvImportError(f"The CSV file could not be parsed: {exc}") from exc
  return frame.fillna("")


def _row_to_entry(cells: List[str], columns: Dict[int, str]) -> Optional[DailyLogEntry]:
  if not any(str(cell).strip() for cell in cells):
    return None

  values: Dict[str, object] = {}
  for index, key in columns.items():
    if index >= len(cells):
      continue
    cell = str(cells[index]).strip()
    if key in NUMERIC_FIELDS:
      values[attribute_for(key)] = parse_numeric_cell(cell)
    elif key in MEAL_FIELDS:
      values[key] = MealSlot(text=cell)
    else:
      values[key] = cell

  if not values.get("date"):
    return None
  return DailyLogEntry(**values)


def parse_csv(data: Union[bytes, str]) -> List[DailyLogEntry]:
  """
  Turn CSV content into log entries.

  Raises ``CsvImportError`` when the file has no data rows, no recognisable
  date column, or no row with a date. Individual rows without a date are
  dropped.
  """
  frame = _read_frame(_decode(data))
  if len(frame.index) < 2:
    raise CsvImportError("The CSV file needs a header row and at least one data row.")

  rows = frame.values.tolist()
  headers = [str(cell).strip() for cell in rows[0]]
  columns = resolve_columns(headers)
  if "date" not in columns.values():
    raise CsvImportError('Import failed: the CSV file must contain a recognisable "date" column.')

  entries = []
  for cells in rows[1:]:
    entry = _row_to_entry(cells, columns)
    if entry is not None:
      entries.append(entry)

  logger.info("Parsed %d of %d CSV rows into log entries", len(entries), len(rows) - 1)
  if not entries:
    raise CsvImportError("Import failed: no valid rows with a date were found in the CSV file.")
  return entries


__all__ = [
  "CsvImportError",
  "FIELD_ALIASES",
  "normalise_header",
  "parse_csv",
  "parse_numeric_cell",
  "resolve_columns",
]
