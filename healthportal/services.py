# healthportal/services.py
"""Operations that span more than one table or more than one record."""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone

from marshmallow import ValidationError

from .analysis import parse_parameter_lines, summarize
from .storage import EntityNotFound, Storage

log = logging.getLogger(__name__)


def parse_dt(s: str | None):
    """Parse ISO8601 date/time; accept 'Z' as UTC. Aware values become local naive."""
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError(f"Invalid datetime: {s}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def dashboard_stats(storage: Storage, user_id: str, today: date | None = None) -> dict:
    """
    Fold a caller's medications, doses, reports and metrics into one summary.
    "Today" is the process-local calendar date.
    """
    today = today or date.today()
    medications = storage.medications.list(user_id)
    today_doses = storage.list_dose_records_by_date(user_id, today.isoformat())
    reports = storage.reports.list(user_id)
    latest = storage.latest_health_metrics(user_id)

    taken = sum(1 for d in today_doses if d.get("status") == "taken")
    pending = sum(1 for d in today_doses if d.get("status") == "pending")
    total = len(today_doses)

    return {
        "active_medications": sum(1 for m in medications if m.get("is_running")),
        "total_doses": total,
        "taken_doses": taken,
        "pending_doses": pending,
        "adherence_rate": (taken / total) * 100 if total else 0,
        "total_reports": len(reports),
        "latest_metrics": latest,
    }


def generate_doses(storage: Storage, user_id: str, medication_id: str,
                   start: date, end: date, max_days: int) -> list[dict]:
    """
    Create one pending dose record per day in [start, end] and per scheduled
    time of the medication.
    """
    medication = storage.medications.get(medication_id, user_id=user_id)
    if medication is None:
        raise EntityNotFound(storage.medications.label)

    days = (end - start).days + 1
    if days > max_days:
        raise ValidationError({"endDate": [f"Range exceeds {max_days} days"]})

    doses = []
    for offset in range(days):
        day = (start + timedelta(days=offset)).isoformat()
        for time_of_day in medication.get("times") or []:
            doses.append(storage.dose_records.create({
                "user_id": user_id,
                "medication_id": medication_id,
                "scheduled_time": f"{day}T{time_of_day}",
                "status": "pending",
            }))
    log.info("generated %d doses for medication %s", len(doses), medication_id)
    return doses


def take_dose(storage: Storage, user_id: str, dose_id: str,
              dose_taken: str | None = None, notes: str | None = None,
              now: datetime | None = None) -> dict:
    actual = (now or datetime.now(timezone.utc)).isoformat()
    changes = {"status": "taken", "actual_time": actual, "dose_taken": dose_taken or actual}
    if notes is not None:
        changes["notes"] = notes
    return storage.dose_records.update(dose_id, changes, user_id=user_id)


def skip_dose(storage: Storage, user_id: str, dose_id: str, notes: str | None = None) -> dict:
    changes = {"status": "skipped"}
    if notes is not None:
        changes["notes"] = notes
    return storage.dose_records.update(dose_id, changes, user_id=user_id)


def _pending_with_times(storage: Storage, user_id: str):
    for dose in storage.dose_records.list(user_id):
        if dose.get("status") != "pending":
            continue
        try:
            scheduled = parse_dt(dose.get("scheduled_time"))
        except ValueError:
            continue
        if scheduled is not None:
            yield scheduled, dose


def due_doses(storage: Storage, user_id: str, window_minutes: int,
              now: datetime | None = None) -> list[dict]:
    """Pending doses scheduled within ``window_minutes`` of now, earliest first."""
    now = now or datetime.now()
    window = timedelta(minutes=window_minutes)
    due = [(s, d) for s, d in _pending_with_times(storage, user_id) if abs(now - s) <= window]
    return [d for _, d in sorted(due, key=lambda pair: pair[0])]


def mark_overdue(storage: Storage, user_id: str, window_minutes: int,
                 now: datetime | None = None) -> list[dict]:
    """Flip pending doses scheduled more than the window ago to "overdue"."""
    now = now or datetime.now()
    cutoff = now - timedelta(minutes=window_minutes)
    stale = [d for s, d in _pending_with_times(storage, user_id) if s < cutoff]
    return [
        storage.dose_records.update(d["id"], {"status": "overdue"}, user_id=user_id)
        for d in stale
    ]


def analyze_report(storage: Storage, user_id: str, report_id: str,
                   parameters_text: str, metadata: dict | None = None) -> dict:
    """Parse parameter lines, summarize them and attach the analysis to a report."""
    if storage.reports.get(report_id, user_id=user_id) is None:
        raise EntityNotFound(storage.reports.label)

    parameters = parse_parameter_lines(parameters_text)
    if not parameters:
        raise ValidationError({"parametersText": ["No valid parameter lines"]})

    analysis = {"parameters": parameters, "summary": summarize(parameters)}
    if metadata:
        analysis["metadata"] = metadata
    return storage.reports.update(report_id, {"analysis": analysis}, user_id=user_id)
