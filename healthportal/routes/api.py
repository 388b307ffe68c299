# healthportal/routes/api.py
from __future__ import annotations

from datetime import datetime, timezone
from functools import wraps

from flask import Blueprint, current_app, g, request
from marshmallow import ValidationError

from .. import services
from ..analysis import complete_analysis
from ..schemas import (
    AnalyzeReportSchema,
    DashboardStatsSchema,
    DoseActionSchema,
    DoseGenerateSchema,
    DoseRecordSchema,
    FamilyMemberSchema,
    HealthMetricsSchema,
    HealthReportSchema,
    MedicationSchema,
    UserSchema,
    check_medication_window,
)
from ..storage import EntityNotFound

api_bp = Blueprint("api", __name__, url_prefix="/api")


def error(http: int, message: str, details=None):
    """Return a consistent JSON error payload with HTTP status."""
    payload = {"error": message}
    if details is not None:
        payload["details"] = details
    return payload, http


def get_storage():
    return current_app.extensions["storage"]


def require_user(view):
    """
    Read the caller identity from the USER_ID_HEADER header into ``g.user_id``.
    Requests without it are rejected before any storage access.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        user_id = request.headers.get(current_app.config["USER_ID_HEADER"])
        if not user_id:
            return error(401, "User ID required")
        g.user_id = user_id
        return view(*args, **kwargs)
    return wrapper


def json_body():
    body = request.get_json(silent=True)
    return {} if body is None else body


def load_changes(schema, body):
    """
    Load a PUT body. Only top-level fields may be omitted; a nested object
    that is sent replaces the stored one, so it must be complete.
    """
    return schema.load(body, partial=tuple(schema.fields))


@api_bp.errorhandler(EntityNotFound)
def handle_not_found(e):
    return error(404, str(e))


@api_bp.errorhandler(ValidationError)
def handle_validation_error(e):
    return error(400, "Invalid payload", e.messages)


def register_resource(path: str, table_name: str, schema, lister=None, prepare=None, check=None):
    """
    Expose one entity table as GET/POST /api/<path> and GET/PUT/DELETE
    /api/<path>/<id>. ``lister`` replaces the plain per-user listing;
    ``prepare`` rewrites loaded fields before they reach the table;
    ``check`` validates the stored entity with the changes merged in.
    """
    name = path.replace("-", "_")

    def table():
        return getattr(get_storage(), table_name)

    def prepared(fields):
        return prepare(fields) if prepare else fields

    @require_user
    def list_entities():
        if lister:
            entities = lister(get_storage(), g.user_id)
        else:
            entities = table().list(g.user_id)
        return schema.dump(entities, many=True)

    @require_user
    def get_entity(entity_id):
        entity = table().get(entity_id, user_id=g.user_id)
        if entity is None:
            raise EntityNotFound(table().label)
        return schema.dump(entity)

    @require_user
    def create_entity():
        fields = prepared(schema.load(json_body()))
        # ownership always comes from the header, never from the body
        fields["user_id"] = g.user_id
        return schema.dump(table().create(fields)), 201

    @require_user
    def update_entity(entity_id):
        changes = prepared(load_changes(schema, json_body()))
        if check:
            stored = table().get(entity_id, user_id=g.user_id)
            if stored is None:
                raise EntityNotFound(table().label)
            check({**stored, **changes})
        return schema.dump(table().update(entity_id, changes, user_id=g.user_id))

    @require_user
    def delete_entity(entity_id):
        if not table().delete(entity_id, user_id=g.user_id):
            raise EntityNotFound(table().label)
        return {"message": f"{table().label} deleted successfully"}

    api_bp.add_url_rule(f"/{path}", f"list_{name}", list_entities, methods=["GET"])
    api_bp.add_url_rule(f"/{path}", f"create_{name}", create_entity, methods=["POST"])
    api_bp.add_url_rule(f"/{path}/<entity_id>", f"get_{name}", get_entity, methods=["GET"])
    api_bp.add_url_rule(f"/{path}/<entity_id>", f"update_{name}", update_entity, methods=["PUT"])
    api_bp.add_url_rule(f"/{path}/<entity_id>", f"delete_{name}", delete_entity, methods=["DELETE"])


def _dose_records_for_request(storage, user_id):
    day = request.args.get("date")
    if day:
        return storage.list_dose_records_by_date(user_id, day)
    return storage.dose_records.list(user_id)


def _complete_report(fields):
    if fields.get("analysis"):
        fields["analysis"] = complete_analysis(fields["analysis"])
    return fields


register_resource("medications", "medications", MedicationSchema(), check=check_medication_window)
register_resource("dose-records", "dose_records", DoseRecordSchema(), lister=_dose_records_for_request)
register_resource("reports", "reports", HealthReportSchema(), prepare=_complete_report)
register_resource("health-metrics", "health_metrics", HealthMetricsSchema())
register_resource("family-members", "family_members", FamilyMemberSchema())


# ---------------------------------------------------------------- users

user_schema = UserSchema()


@api_bp.post("/users")
def create_user():
    """Create a user; the only storage route that needs no caller identity."""
    fields = user_schema.load(json_body())
    return user_schema.dump(get_storage().users.create(fields)), 201


@api_bp.get("/users/by-username/<username>")
@require_user
def find_user(username):
    """Directory lookup; only public fields are returned."""
    user = get_storage().get_user_by_username(username)
    if user is None:
        raise EntityNotFound(get_storage().users.label)
    return {"id": user["id"], "username": user["username"], "role": user.get("role")}


@api_bp.get("/users/<user_id>")
@require_user
def get_user(user_id):
    user = get_storage().users.get(user_id, user_id=g.user_id)
    if user is None:
        raise EntityNotFound(get_storage().users.label)
    return user_schema.dump(user)


@api_bp.put("/users/<user_id>")
@require_user
def update_user(user_id):
    changes = load_changes(user_schema, json_body())
    return user_schema.dump(get_storage().users.update(user_id, changes, user_id=g.user_id))


@api_bp.delete("/users/<user_id>")
@require_user
def delete_user(user_id):
    if not get_storage().users.delete(user_id, user_id=g.user_id):
        raise EntityNotFound(get_storage().users.label)
    return {"message": "User deleted successfully"}


# ---------------------------------------------------------------- doses

dose_schema = DoseRecordSchema()


@api_bp.post("/dose-records/generate")
@require_user
def generate_doses():
    """
    Create pending dose records for every day in [startDate, endDate] and
    every scheduled time of the medication.
    """
    body = DoseGenerateSchema().load(json_body())
    doses = services.generate_doses(
        get_storage(), g.user_id, body["medication_id"],
        body["start_date"], body["end_date"],
        current_app.config["MAX_DOSE_GENERATION_DAYS"],
    )
    return {
        "message": f"{len(doses)} doses generated",
        "count": len(doses),
        "doses": dose_schema.dump(doses, many=True),
    }, 201


@api_bp.post("/dose-records/<dose_id>/take")
@require_user
def take_dose(dose_id):
    body = DoseActionSchema().load(json_body())
    dose = services.take_dose(get_storage(), g.user_id, dose_id,
                              dose_taken=body.get("dose_taken"), notes=body.get("notes"))
    return dose_schema.dump(dose)


@api_bp.post("/dose-records/<dose_id>/skip")
@require_user
def skip_dose(dose_id):
    body = DoseActionSchema().load(json_body())
    return dose_schema.dump(services.skip_dose(get_storage(), g.user_id, dose_id, notes=body.get("notes")))


@api_bp.get("/dose-records/due")
@require_user
def due_doses():
    window = current_app.config["DOSE_DUE_WINDOW_MINUTES"]
    return dose_schema.dump(services.due_doses(get_storage(), g.user_id, window), many=True)


@api_bp.post("/dose-records/mark-overdue")
@require_user
def mark_overdue():
    window = current_app.config["DOSE_DUE_WINDOW_MINUTES"]
    doses = services.mark_overdue(get_storage(), g.user_id, window)
    return {"count": len(doses), "doses": dose_schema.dump(doses, many=True)}


# ---------------------------------------------------------------- reports / metrics

@api_bp.post("/reports/<report_id>/analyze")
@require_user
def analyze_report(report_id):
    body = AnalyzeReportSchema().load(json_body())
    metadata = {k: v for k, v in body.items() if k != "parameters_text"}
    report = services.analyze_report(get_storage(), g.user_id, report_id, body["parameters_text"], metadata)
    return HealthReportSchema().dump(report)


@api_bp.get("/health-metrics/latest")
@require_user
def latest_health_metrics():
    metrics = get_storage().latest_health_metrics(g.user_id)
    if metrics is None:
        return error(404, "No health metrics found")
    return HealthMetricsSchema().dump(metrics)


@api_bp.get("/dashboard/stats")
@require_user
def dashboard_stats():
    """Counts and adherence for the caller, recomputed on every call."""
    stats = services.dashboard_stats(get_storage(), g.user_id)
    return DashboardStatsSchema().dump(stats)


@api_bp.get("/health")
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}
