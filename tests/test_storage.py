import threading
from datetime import datetime, timezone

import pytest

from healthportal.storage import EntityNotFound, Storage


def make_med(storage, user_id="u1", **extra):
    fields = {"user_id": user_id, "medicine_name": "Aspirin", "times": ["08:00"], "is_running": True}
    fields.update(extra)
    return storage.medications.create(fields)


def test_create_stamps_id_and_timestamps(storage):
    med = make_med(storage)
    assert med["id"].startswith("med_")
    assert med["created_at"] == med["updated_at"]
    assert med["user_id"] == "u1"


def test_get_returns_what_create_returned(storage):
    med = make_med(storage)
    fetched = storage.medications.get(med["id"])
    assert fetched == med
    assert fetched["updated_at"] >= fetched["created_at"]


def test_missing_id(storage):
    assert storage.medications.get("med_missing") is None
    assert storage.medications.delete("med_missing") is False
    with pytest.raises(EntityNotFound) as exc:
        storage.medications.update("med_missing", {"dosage": "1 tablet"})
    assert str(exc.value) == "Medication not found"


def test_update_merges_and_is_idempotent(storage):
    med = make_med(storage, dosage="1 tablet")
    first = storage.medications.update(med["id"], {"dosage": "2 tablets"})
    second = storage.medications.update(med["id"], {"dosage": "2 tablets"})

    assert first["dosage"] == second["dosage"] == "2 tablets"
    assert second["medicine_name"] == "Aspirin"
    assert med["updated_at"] <= first["updated_at"] <= second["updated_at"]
    assert second["created_at"] == med["created_at"]


def test_update_cannot_touch_id_timestamps_or_owner(storage):
    med = make_med(storage)
    updated = storage.medications.update(
        med["id"],
        {"id": "med_other", "user_id": "u2", "created_at": datetime(2000, 1, 1, tzinfo=timezone.utc)},
    )
    assert updated["id"] == med["id"]
    assert updated["user_id"] == "u1"
    assert updated["created_at"] == med["created_at"]


def test_list_only_returns_callers_entities(storage):
    make_med(storage, "u1")
    make_med(storage, "u1", medicine_name="Metformin")
    make_med(storage, "u2")

    mine = storage.medications.list("u1")
    assert len(mine) == 2
    assert all(m["user_id"] == "u1" for m in mine)
    assert storage.medications.list("nobody") == []


def test_owner_scoped_access_hides_foreign_entities(storage):
    med = make_med(storage, "u1")

    assert storage.medications.get(med["id"], user_id="u2") is None
    assert storage.medications.delete(med["id"], user_id="u2") is False
    with pytest.raises(EntityNotFound):
        storage.medications.update(med["id"], {"dosage": "x"}, user_id="u2")

    assert storage.medications.get(med["id"], user_id="u1") is not None


def test_delete_removes_and_does_not_cascade(storage):
    med = make_med(storage)
    dose = storage.dose_records.create({
        "user_id": "u1", "medication_id": med["id"],
        "scheduled_time": "2024-01-15T08:00", "status": "pending",
    })
    assert storage.medications.delete(med["id"]) is True
    assert storage.medications.get(med["id"]) is None
    assert storage.dose_records.get(dose["id"]) is not None


def test_returned_entities_are_copies(storage):
    med = make_med(storage)
    med["times"].append("20:00")
    fetched = storage.medications.get(med["id"])
    fetched["times"].append("22:00")
    assert storage.medications.get(med["id"])["times"] == ["08:00"]


def test_dose_records_by_date(storage):
    for when in ("2024-01-15T08:00", "2024-01-15T20:00", "2024-01-16T08:00"):
        storage.dose_records.create({"user_id": "u1", "medication_id": "m", "scheduled_time": when})
    storage.dose_records.create({"user_id": "u2", "medication_id": "m", "scheduled_time": "2024-01-15T08:00"})

    on_15th = storage.list_dose_records_by_date("u1", "2024-01-15")
    assert sorted(d["scheduled_time"] for d in on_15th) == ["2024-01-15T08:00", "2024-01-15T20:00"]


def test_latest_health_metrics_by_recorded_at(storage):
    assert storage.latest_health_metrics("u1") is None
    older = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    newer = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
    storage.health_metrics.create({"user_id": "u1", "weight": 80.0, "recorded_at": newer})
    storage.health_metrics.create({"user_id": "u1", "weight": 82.0, "recorded_at": older})
    storage.health_metrics.create({"user_id": "u2", "weight": 60.0, "recorded_at": newer})

    latest = storage.latest_health_metrics("u1")
    assert latest["weight"] == 80.0
    assert latest["recorded_at"] == newer


def test_users_own_themselves(storage):
    user = storage.users.create({"username": "alice", "role": "patient"})
    assert user["id"].startswith("usr_")
    assert storage.users.get(user["id"], user_id=user["id"]) == user
    assert storage.users.get(user["id"], user_id="someone-else") is None
    assert storage.get_user_by_username("alice")["id"] == user["id"]
    assert storage.get_user_by_username("bob") is None


def test_memory_table_concurrent_creates():
    storage = Storage.memory()

    def worker(n):
        for i in range(50):
            storage.medications.create({"user_id": "u1", "medicine_name": f"m{n}-{i}"})

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    meds = storage.medications.list("u1")
    assert len(meds) == 400
    assert len({m["id"] for m in meds}) == 400


def test_unset_fields_are_left_off(storage):
    med = make_med(storage)
    assert "dosage" not in med
    assert "dosage" not in storage.medications.get(med["id"])
    assert all(v is not None for v in storage.medications.list("u1")[0].values())


def test_failed_commit_rolls_back(storage, monkeypatch):
    if storage.backend != "sql":
        pytest.skip("sql backend only")
    from healthportal.extensions import db

    def broken_commit():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db.session, "commit", broken_commit)
    with pytest.raises(RuntimeError):
        make_med(storage, medicine_name="Lost")
    monkeypatch.undo()

    make_med(storage)
    meds = storage.medications.list("u1")
    assert [m["medicine_name"] for m in meds] == ["Aspirin"]
