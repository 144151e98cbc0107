from datetime import date, datetime, timezone

import pytest

from fitlog.csv_import import CsvImportError
from fitlog.models import DailyLogEntry
from fitlog.store import TrackerStore
from fitlog.tracker import DuplicateDateError, EntryNotFoundError, InvalidDateError, Tracker, TrackerError


@pytest.fixture
def profiled(tracker):
  tracker.update_profile({"age": 30, "gender": "male", "height": 175, "initialWeight": 82})
  return tracker


def _seed(tracker, *entries):
  tracker.store.set_logs(list(entries))
  return tracker


def test_add_today_row_blocks_duplicate_date(profiled):
  entry = profiled.add_today_row(today=date(2024, 5, 1))
  assert entry.date == "2024-05-01"
  assert entry.bmr == 1769

  with pytest.raises(DuplicateDateError, match="already"):
    profiled.add_today_row(today=date(2024, 5, 1))
  assert len(profiled.logs) == 1


def test_duplicate_guard_matches_other_date_formats(profiled):
  _seed(profiled, DailyLogEntry(date="2024/5/1"))
  with pytest.raises(DuplicateDateError):
    profiled.add_today_row(today=date(2024, 5, 1))


def test_update_field_parses_numbers_and_recomputes(profiled):
  entry = profiled.add_today_row(today=date(2024, 5, 1))
  updated = profiled.update_field(entry.id, "weightKg", " 80 ")
  assert updated.weight_kg == 80
  assert updated.bmr == 1749

  updated = profiled.update_field(entry.id, "actualIntake", "1500")
  assert updated.calorie_deficit == 1749 - 1500

  updated = profiled.update_field(entry.id, "actualIntake", "lots")
  assert updated.actual_intake is None
  assert updated.calorie_deficit is None


def test_update_field_sets_meal_text_and_rejects_derived(profiled):
  entry = profiled.add_today_row(today=date(2024, 5, 1))
  assert profiled.update_field(entry.id, "dinner", "Fish").dinner.text == "Fish"
  with pytest.raises(TrackerError):
    profiled.update_field(entry.id, "bmr", "2000")
  with pytest.raises(TrackerError):
    profiled.update_field(entry.id, "mood", "good")
  with pytest.raises(EntryNotFoundError):
    profiled.update_field("nope", "weightKg", "70")


def test_profile_change_refreshes_existing_entries(profiled):
  entry = profiled.add_today_row(today=date(2024, 5, 1))
  profiled.update_profile({"gender": "other"})
  assert profiled.store.find(entry.id).bmr is None


def test_profile_validation(tracker):
  with pytest.raises(TrackerError):
    tracker.update_profile({"gender": "robot"})
  with pytest.raises(TrackerError):
    tracker.update_profile({"age": "old"})


def test_delete_operations(profiled):
  first = DailyLogEntry(date="2024-05-01")
  second = DailyLogEntry(date="2024-05-02")
  third = DailyLogEntry(date="2024-05-03")
  _seed(profiled, first, second, third)

  profiled.delete_entry(first.id)
  assert [entry.id for entry in profiled.logs] == [second.id, third.id]
  assert profiled.delete_entries([second.id, "unknown"]) == 1
  profiled.clear_logs()
  assert profiled.logs == []


def test_deleting_the_only_weigh_in_falls_back_to_initial_weight(tracker):
  tracker.update_profile({"age": 30, "gender": "male", "height": 175, "initialWeight": 90})
  tracker.import_csv("date,weight\n2024-01-01,70\n2024-01-02,\n")
  weigh_in = next(entry for entry in tracker.logs if entry.date == "2024-01-01")
  later = next(entry for entry in tracker.logs if entry.date == "2024-01-02")
  assert later.bmr == 1649

  tracker.delete_entry(weigh_in.id)
  assert tracker.store.find(later.id).bmr == 1849

  tracker.update_field(later.id, "weightKg", "70")
  extra = tracker.add_today_row(today=date(2024, 1, 3))
  tracker.delete_entries([later.id])
  assert tracker.store.find(extra.id).bmr == 1849


def test_edits_made_during_analysis_are_kept(profiled, analyzer):
  entry = profiled.add_today_row(today=date(2024, 5, 1))
  original = analyzer.analyze_full_day

  def analyze_while_user_edits(log_data):
    profiled.update_field(entry.id, "weightKg", "75")
    return original(log_data)

  analyzer.analyze_full_day = analyze_while_user_edits
  profiled.batch_analyze([entry.id])
  current = profiled.store.find(entry.id)
  assert current.weight_kg == 75
  assert current.actual_intake == 1801

  def analyze_while_user_logs_dinner(log_data):
    profiled.update_field(entry.id, "dinner", "Fish")
    return original(log_data)

  analyzer.analyze_full_day = analyze_while_user_logs_dinner
  updated = profiled.reanalyze_entry(entry.id)
  assert updated.dinner.text == "Fish"
  assert updated.weight_kg == 75


def test_log_meal_creates_then_accumulates(profiled, analyzer):
  created = profiled.log_meal(analyzer.meal, "2024-05-01", "lunch")
  assert created.actual_intake == pytest.approx(420.4)
  assert created.lunch.text == "Chicken salad (~420 kcal)"
  assert created.lunch.analysis["generatedMealName"] == "Chicken salad"

  again = profiled.log_meal(analyzer.meal, "2024/5/1", "lunch")
  assert again.id == created.id
  assert again.protein_g == 70
  assert again.lunch.text == "Chicken salad (~420 kcal)\nChicken salad (~420 kcal)"

  snack = profiled.log_meal(analyzer.meal, "2024-05-01", "snack")
  assert snack.summary == "[Snack] Chicken salad (~420 kcal)"
  assert len(profiled.logs) == 1


def test_log_meal_rejects_bad_date(profiled, analyzer):
  with pytest.raises(InvalidDateError):
    profiled.log_meal(analyzer.meal, "31/31/2024", "lunch")


def test_analyze_meal_sends_photo_and_keeps_it(profiled, analyzer):
  entry = profiled.analyze_meal("", "2024-05-01", "dinner", image_bytes=b"\xff\xd8jpeg", mime_type="image/jpeg")
  kind, text, image_b64, mime, hint = analyzer.calls[-1]
  assert kind == "meal" and image_b64 and mime == "image/jpeg" and hint == "dinner"
  assert entry.dinner.image.startswith("data:image/jpeg;base64,")

  with pytest.raises(TrackerError):
    profiled.analyze_meal("  ", "2024-05-01", "dinner")


def test_reanalyze_entry_rounds_results(profiled):
  entry = profiled.add_today_row(today=date(2024, 5, 1))
  updated = profiled.reanalyze_entry(entry.id)
  assert (updated.actual_intake, updated.protein_g, updated.carbs_g, updated.fat_g) == (1801, 110, 151, 60)
  assert updated.estimated_expenditure == 300
  assert updated.summary == "Deficit on target."
  assert updated.tdee is not None


def test_batch_analyze_applies_only_successes(profiled, analyzer):
  ok_one = DailyLogEntry(date="2024-05-01", summary="before")
  bad = DailyLogEntry(date="2024-05-02", summary="before", actual_intake=999)
  ok_two = DailyLogEntry(date="2024-05-03", summary="before")
  untouched = DailyLogEntry(date="2024-05-04", summary="before")
  _seed(profiled, ok_one, bad, ok_two, untouched)
  analyzer.fail_dates = {"2024-05-02"}

  result = profiled.batch_analyze([ok_one.id, bad.id, ok_two.id])

  assert (result.succeeded, result.total) == (2, 3)
  assert result.failed_ids == [bad.id]
  assert result.message == "2 / 3 entries analysed."
  assert profiled.store.find(ok_one.id).summary == "Deficit on target."
  assert profiled.store.find(ok_two.id).actual_intake == 1801
  assert profiled.store.find(bad.id).summary == "before"
  assert profiled.store.find(bad.id).actual_intake == 999
  assert profiled.store.find(untouched.id).summary == "before"


def test_import_csv_merges_by_calendar_date(profiled):
  old_same_day = DailyLogEntry(date="2024/5/1", weight_kg=90)
  other_day = DailyLogEntry(date="2024-04-30", weight_kg=91)
  _seed(profiled, old_same_day, other_day)

  count = profiled.import_csv("日期,体重kg,实际摄入\n2024-05-01,70.5~72,1600\n".encode("utf-8"))

  assert count == 1
  dates = sorted(entry.date for entry in profiled.logs)
  assert dates == ["2024-04-30", "2024-05-01"]
  imported = next(entry for entry in profiled.logs if entry.date == "2024-05-01")
  assert imported.weight_kg == 72
  assert imported.calorie_deficit == imported.tdee - 1600


def test_failed_import_leaves_logs_alone(profiled):
  entry = DailyLogEntry(date="2024-05-01")
  _seed(profiled, entry)
  with pytest.raises(CsvImportError):
    profiled.import_csv("weight\n70\n")
  assert profiled.logs == [entry]


def test_report_requires_profile_and_three_logs(tracker, analyzer):
  _seed(tracker, DailyLogEntry(date="2024-05-01"), DailyLogEntry(date="2024-05-02"), DailyLogEntry(date="2024-05-03"))
  with pytest.raises(TrackerError, match="profile"):
    tracker.generate_report()

  tracker.update_profile({"age": 30, "gender": "male", "height": 175})
  tracker.store.set_logs(tracker.logs[:2])
  with pytest.raises(TrackerError, match="3"):
    tracker.generate_report()


def test_report_sends_sorted_logs_and_is_cached(profiled, analyzer):
  _seed(profiled, DailyLogEntry(date="2024-05-03"), DailyLogEntry(date="2024-05-01"), DailyLogEntry(date="2024-05-02"))
  now = datetime(2024, 5, 4, tzinfo=timezone.utc)

  report = profiled.generate_report(now=now)

  _, user_info, logs = analyzer.calls[-1]
  assert user_info["gender"] == "male"
  assert [log["date"] for log in logs] == ["2024-05-01", "2024-05-02", "2024-05-03"]
  assert report.data["progressScore"] == 72
  assert profiled.store.report.generated_at == now.isoformat()


def test_chat_drops_history_images_and_requires_content(tracker, analyzer):
  history = [{"role": "user", "text": "Hi", "image": "data:..."}, {"role": "model", "text": "Hello"}]
  chunks = tracker.chat(history, "What now?")
  assert "".join(chunks) == "Eat more protein."
  _, model_history, parts = analyzer.calls[-1]
  assert model_history[0] == {"role": "user", "parts": [{"text": "Hi"}]}
  assert parts == [{"text": "What now?"}]

  with pytest.raises(TrackerError):
    tracker.chat([], "   ")


def test_missing_analyzer_is_a_user_error(storage):
  tracker = Tracker(TrackerStore(storage), analyzer=None)
  with pytest.raises(TrackerError, match="not configured"):
    tracker.analyze_meal("toast", "2024-05-01", "breakfast")
