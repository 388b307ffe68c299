from datetime import date, datetime

import pytest
from marshmallow import ValidationError

from healthportal import services
from healthportal.storage import EntityNotFound


def add_dose(storage, when, status="pending", user_id="u1"):
    return storage.dose_records.create({
        "user_id": user_id, "medication_id": "m1", "scheduled_time": when, "status": status,
    })


def test_parse_dt():
    assert services.parse_dt(None) is None
    assert services.parse_dt("2024-01-15T08:00") == datetime(2024, 1, 15, 8, 0)
    with pytest.raises(ValueError):
        services.parse_dt("not a time")


def test_dashboard_stats_counts_only_today(storage):
    today = date(2024, 1, 15)
    for status in ("taken", "taken", "taken", "skipped"):
        add_dose(storage, "2024-01-15T08:00", status)
    add_dose(storage, "2024-01-14T08:00", "taken")
    add_dose(storage, "2024-01-15T08:00", "taken", user_id="u2")

    stats = services.dashboard_stats(storage, "u1", today=today)
    assert stats["total_doses"] == 4
    assert stats["taken_doses"] == 3
    assert stats["pending_doses"] == 0
    assert stats["adherence_rate"] == 75
    assert stats["latest_metrics"] is None


def test_dashboard_stats_no_doses_is_zero_adherence(storage):
    stats = services.dashboard_stats(storage, "u1", today=date(2024, 1, 15))
    assert stats["adherence_rate"] == 0
    assert stats["total_doses"] == 0


def test_generate_doses_walks_inclusive_range(storage):
    med = storage.medications.create({"user_id": "u1", "medicine_name": "Metformin", "times": ["08:00", "20:00"]})
    doses = services.generate_doses(storage, "u1", med["id"], date(2024, 2, 28), date(2024, 3, 1), max_days=10)

    assert len(doses) == 6
    assert {d["scheduled_time"][:10] for d in doses} == {"2024-02-28", "2024-02-29", "2024-03-01"}
    assert all(d["status"] == "pending" and d["user_id"] == "u1" for d in doses)


def test_generate_doses_without_times_creates_nothing(storage):
    med = storage.medications.create({"user_id": "u1", "medicine_name": "PRN", "times": []})
    assert services.generate_doses(storage, "u1", med["id"], date(2024, 1, 1), date(2024, 1, 5), 10) == []


def test_generate_doses_limits(storage):
    med = storage.medications.create({"user_id": "u1", "medicine_name": "Metformin", "times": ["08:00"]})
    with pytest.raises(ValidationError):
        services.generate_doses(storage, "u1", med["id"], date(2024, 1, 1), date(2024, 1, 11), max_days=10)
    with pytest.raises(EntityNotFound):
        services.generate_doses(storage, "u2", med["id"], date(2024, 1, 1), date(2024, 1, 2), max_days=10)


def test_due_and_overdue_windows(storage):
    now = datetime(2024, 1, 15, 8, 10)
    add_dose(storage, "2024-01-15T12:00")
    on_time = add_dose(storage, "2024-01-15T08:00")
    late = add_dose(storage, "2024-01-15T07:00")
    add_dose(storage, "2024-01-15T08:05", "taken")
    add_dose(storage, "garbage")

    due = services.due_doses(storage, "u1", 30, now=now)
    assert [d["id"] for d in due] == [on_time["id"]]

    flipped = services.mark_overdue(storage, "u1", 30, now=now)
    assert [d["id"] for d in flipped] == [late["id"]]
    assert storage.dose_records.get(late["id"])["status"] == "overdue"
    assert storage.dose_records.get(on_time["id"])["status"] == "pending"


def test_take_dose_records_actual_time(storage):
    dose = add_dose(storage, "2024-01-15T08:00")
    taken = services.take_dose(storage, "u1", dose["id"], now=datetime(2024, 1, 15, 8, 3))
    assert taken["status"] == "taken"
    assert taken["actual_time"] == "2024-01-15T08:03:00"
    assert taken["dose_taken"] == taken["actual_time"]

    with pytest.raises(EntityNotFound):
        services.skip_dose(storage, "u2", dose["id"])
