# healthportal/storage.py
"""
Entity store.

One table per entity type, each with the same small CRUD surface. Entities
travel as plain dicts keyed by snake_case attribute names; the marshmallow
schemas translate them to and from the camelCase wire format.

Two backends share the interface:

* ``MemoryTable``  insertion-ordered dict behind a per-table lock
* ``SqlTable``     Flask-SQLAlchemy model, one commit per mutation

Passing ``user_id`` to get/update/delete restricts the call to entities the
caller owns; anything else behaves exactly like a missing id.
"""
from __future__ import annotations

import copy
import logging
import threading
from datetime import datetime, timezone
from uuid import uuid4

from . import models
from .extensions import db

log = logging.getLogger(__name__)

PROTECTED = ("id", "created_at", "updated_at")


class EntityNotFound(Exception):
    """Raised when an id does not resolve to an entity visible to the caller."""

    def __init__(self, label: str):
        super().__init__(f"{label} not found")
        self.label = label


def uid(prefix: str) -> str:
    """Generate a short unique id with a prefix."""
    return f"{prefix}_{uuid4().hex[:12]}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _compact(entity: dict) -> dict:
    # unset and null fields are both left off the entity
    return {k: copy.deepcopy(v) for k, v in entity.items() if v is not None}


class Table:
    def __init__(self, label: str, prefix: str, owner_field: str = "user_id"):
        self.label = label
        self.prefix = prefix
        self.owner_field = owner_field

    def list(self, user_id: str) -> list[dict]:
        raise NotImplementedError

    def list_by_prefix(self, user_id: str, field: str, prefix: str) -> list[dict]:
        raise NotImplementedError

    def latest(self, user_id: str, field: str) -> dict | None:
        raise NotImplementedError

    def find_first(self, field: str, value) -> dict | None:
        raise NotImplementedError

    def get(self, entity_id: str, user_id: str | None = None) -> dict | None:
        raise NotImplementedError

    def create(self, fields: dict) -> dict:
        raise NotImplementedError

    def update(self, entity_id: str, changes: dict, user_id: str | None = None) -> dict:
        raise NotImplementedError

    def delete(self, entity_id: str, user_id: str | None = None) -> bool:
        raise NotImplementedError

    def _new_entity(self, fields: dict) -> dict:
        now = utcnow()
        entity = {k: v for k, v in fields.items() if k not in PROTECTED}
        entity["id"] = uid(self.prefix)
        entity["created_at"] = now
        entity["updated_at"] = now
        return entity

    def _changes(self, changes: dict) -> dict:
        # id, timestamps and ownership never move through update
        return {k: v for k, v in changes.items() if k not in PROTECTED and k != self.owner_field}

    def _visible(self, owner, user_id: str | None) -> bool:
        return user_id is None or owner == user_id


class MemoryTable(Table):
    def __init__(self, label: str, prefix: str, owner_field: str = "user_id"):
        super().__init__(label, prefix, owner_field)
        self._rows: dict[str, dict] = {}
        self._lock = threading.RLock()

    def _select(self, predicate) -> list[dict]:
        with self._lock:
            return [_compact(e) for e in self._rows.values() if predicate(e)]

    def list(self, user_id):
        return self._select(lambda e: e.get(self.owner_field) == user_id)

    def list_by_prefix(self, user_id, field, prefix):
        return self._select(
            lambda e: e.get(self.owner_field) == user_id
            and isinstance(e.get(field), str)
            and e[field].startswith(prefix)
        )

    def latest(self, user_id, field):
        rows = [e for e in self.list(user_id) if e.get(field) is not None]
        return max(rows, key=lambda e: e[field], default=None)

    def find_first(self, field, value):
        rows = self._select(lambda e: e.get(field) == value)
        return rows[0] if rows else None

    def get(self, entity_id, user_id=None):
        with self._lock:
            entity = self._rows.get(entity_id)
            if entity is None or not self._visible(entity.get(self.owner_field), user_id):
                return None
            return _compact(entity)

    def create(self, fields):
        entity = self._new_entity(fields)
        with self._lock:
            self._rows[entity["id"]] = copy.deepcopy(entity)
        return _compact(entity)

    def update(self, entity_id, changes, user_id=None):
        with self._lock:
            entity = self._rows.get(entity_id)
            if entity is None or not self._visible(entity.get(self.owner_field), user_id):
                raise EntityNotFound(self.label)
            merged = {**entity, **copy.deepcopy(self._changes(changes)), "updated_at": utcnow()}
            self._rows[entity_id] = merged
            return _compact(merged)

    def delete(self, entity_id, user_id=None):
        with self._lock:
            entity = self._rows.get(entity_id)
            if entity is None or not self._visible(entity.get(self.owner_field), user_id):
                return False
            del self._rows[entity_id]
            return True


def _to_utc(value):
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc)
    return value


def _from_db(value):
    # SQLite hands datetimes back without tzinfo; they were stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlTable(Table):
    def __init__(self, model, label: str, prefix: str, owner_field: str = "user_id"):
        super().__init__(label, prefix, owner_field)
        self.model = model

    def _to_dict(self, row) -> dict:
        return _compact({c.name: _from_db(getattr(row, c.name)) for c in row.__table__.columns})

    def _commit(self):
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            log.exception("%s commit failed, rolled back", self.label)
            raise

    def _owned_by(self, user_id):
        return self.model.query.filter_by(**{self.owner_field: user_id})

    def _visible_row(self, entity_id, user_id):
        row = db.session.get(self.model, entity_id)
        if row is None or not self._visible(getattr(row, self.owner_field), user_id):
            return None
        return row

    def list(self, user_id):
        rows = self._owned_by(user_id).order_by(self.model.created_at).all()
        return [self._to_dict(r) for r in rows]

    def list_by_prefix(self, user_id, field, prefix):
        column = getattr(self.model, field)
        rows = (
            self._owned_by(user_id)
            .filter(column.startswith(prefix, autoescape=True))
            .order_by(self.model.created_at)
            .all()
        )
        return [self._to_dict(r) for r in rows]

    def latest(self, user_id, field):
        column = getattr(self.model, field)
        row = self._owned_by(user_id).filter(column.isnot(None)).order_by(column.desc()).first()
        return self._to_dict(row) if row else None

    def find_first(self, field, value):
        row = self.model.query.filter_by(**{field: value}).order_by(self.model.created_at).first()
        return self._to_dict(row) if row else None

    def get(self, entity_id, user_id=None):
        row = self._visible_row(entity_id, user_id)
        return self._to_dict(row) if row else None

    def create(self, fields):
        entity = self._new_entity(fields)
        row = self.model(**{k: _to_utc(v) for k, v in entity.items()})
        db.session.add(row)
        self._commit()
        return self._to_dict(row)

    def update(self, entity_id, changes, user_id=None):
        row = self._visible_row(entity_id, user_id)
        if row is None:
            raise EntityNotFound(self.label)
        for key, value in self._changes(changes).items():
            setattr(row, key, _to_utc(value))
        row.updated_at = utcnow()
        self._commit()
        return self._to_dict(row)

    def delete(self, entity_id, user_id=None):
        row = self._visible_row(entity_id, user_id)
        if row is None:
            return False
        db.session.delete(row)
        self._commit()
        return True


# attribute name, label used in "<label> not found", id prefix, model, owner field
TABLES = [
    ("users", "User", "usr", models.User, "id"),
    ("medications", "Medication", "med", models.Medication, "user_id"),
    ("dose_records", "Dose record", "dose", models.DoseRecord, "user_id"),
    ("reports", "Report", "rpt", models.HealthReport, "user_id"),
    ("health_metrics", "Health metrics", "hm", models.HealthMetrics, "user_id"),
    ("family_members", "Family member", "fam", models.FamilyMember, "user_id"),
]


class Storage:
    """All entity tables of one application instance."""

    def __init__(self, tables: dict[str, Table], backend: str):
        self.backend = backend
        self.users = tables["users"]
        self.medications = tables["medications"]
        self.dose_records = tables["dose_records"]
        self.reports = tables["reports"]
        self.health_metrics = tables["health_metrics"]
        self.family_members = tables["family_members"]

    @classmethod
    def memory(cls) -> "Storage":
        tables = {name: MemoryTable(label, prefix, owner) for name, label, prefix, _, owner in TABLES}
        return cls(tables, "memory")

    @classmethod
    def sql(cls) -> "Storage":
        tables = {name: SqlTable(model, label, prefix, owner) for name, label, prefix, model, owner in TABLES}
        return cls(tables, "sql")

    def get_user_by_username(self, username: str) -> dict | None:
        return self.users.find_first("username", username)

    def list_dose_records_by_date(self, user_id: str, day: str) -> list[dict]:
        """Dose records whose scheduledTime starts with ``day`` (YYYY-MM-DD)."""
        return self.dose_records.list_by_prefix(user_id, "scheduled_time", day)

    def latest_health_metrics(self, user_id: str) -> dict | None:
        return self.health_metrics.latest(user_id, "recorded_at")


def build_storage(app) -> Storage:
    """Create the storage selected by STORAGE_BACKEND and attach it to ``app``."""
    backend = app.config.get("STORAGE_BACKEND", "memory")
    if backend == "memory":
        storage = Storage.memory()
    elif backend == "sql":
        storage = Storage.sql()
        if app.config.get("AUTO_CREATE_TABLES"):
            with app.app_context():
                db.create_all()
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")

    app.extensions["storage"] = storage
    log.info("storage backend: %s", backend)
    return storage
