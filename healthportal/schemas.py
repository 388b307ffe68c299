# healthportal/schemas.py
from datetime import datetime, timezone

from marshmallow import EXCLUDE, Schema, ValidationError, fields, validate, validates_schema

DOSE_STATUSES = ["pending", "taken", "skipped", "overdue"]
PARAMETER_STATUSES = ["normal", "high", "low", "critical"]

_time_of_day = validate.Regexp(r"^([01]\d|2[0-3]):[0-5]\d(:[0-5]\d)?$", error="Expected HH:MM")
_iso_date_prefix = validate.Regexp(r"^\d{4}-\d{2}-\d{2}", error="Must start with YYYY-MM-DD")


def _now():
    return datetime.now(timezone.utc)


def check_medication_window(medication):
    """Reject a medication whose endDate falls before its startDate."""
    start, end = medication.get("start_date"), medication.get("end_date")
    if start and end and end < start:
        raise ValidationError("endDate must not be before startDate", "endDate")


class BaseSchema(Schema):
    """Entity fields shared by every resource; the server owns all of them."""

    class Meta:
        unknown = EXCLUDE

    id = fields.String(dump_only=True)
    user_id = fields.String(dump_only=True, data_key="userId")
    created_at = fields.DateTime(dump_only=True, data_key="createdAt")
    updated_at = fields.DateTime(dump_only=True, data_key="updatedAt")


class UserSchema(BaseSchema):
    class Meta(BaseSchema.Meta):
        # a user owns itself
        exclude = ("user_id",)

    username = fields.String(required=True, validate=validate.Length(min=1))
    email = fields.Email(allow_none=True)
    role = fields.String(load_default="patient", validate=validate.OneOf(["patient", "doctor", "lab"]))
    plan = fields.String(load_default="personal", validate=validate.OneOf(["personal", "family"]))


class MedicationSchema(BaseSchema):
    medicine_name = fields.String(required=True, data_key="medicineName", validate=validate.Length(min=1))
    dosage = fields.String(allow_none=True)
    dose_strength = fields.String(allow_none=True, data_key="doseStrength")
    dose_form = fields.String(allow_none=True, data_key="doseForm")
    frequency = fields.String(allow_none=True)
    times = fields.List(fields.String(validate=_time_of_day), load_default=list)
    start_date = fields.Date(allow_none=True, data_key="startDate")
    end_date = fields.Date(allow_none=True, data_key="endDate")
    instructions = fields.String(allow_none=True)
    side_effects = fields.List(fields.String(), allow_none=True, data_key="sideEffects")
    administration_method = fields.String(allow_none=True, data_key="administrationMethod")
    special_instructions = fields.String(allow_none=True, data_key="specialInstructions")
    is_running = fields.Boolean(load_default=True, data_key="isRunning")

    @validates_schema
    def check_window(self, data, **kwargs):
        check_medication_window(data)


class DoseRecordSchema(BaseSchema):
    medication_id = fields.String(required=True, data_key="medicationId")
    scheduled_time = fields.String(required=True, data_key="scheduledTime", validate=_iso_date_prefix)
    actual_time = fields.String(allow_none=True, data_key="actualTime")
    status = fields.String(load_default="pending", validate=validate.OneOf(DOSE_STATUSES))
    notes = fields.String(allow_none=True)
    dose_taken = fields.String(allow_none=True, data_key="doseTaken")
    side_effects = fields.List(fields.String(), allow_none=True, data_key="sideEffects")


class ParameterSchema(Schema):
    value = fields.Float(required=True)
    unit = fields.String(load_default="")
    normal_range = fields.String(load_default="", data_key="normalRange")
    status = fields.String(required=True, validate=validate.OneOf(PARAMETER_STATUSES))
    trend = fields.String(validate=validate.OneOf(["increasing", "decreasing", "stable"]))
    previous_value = fields.Float(data_key="previousValue")
    change = fields.Float()
    significance = fields.String(validate=validate.OneOf(["significant", "moderate", "minimal"]))


class SummarySchema(Schema):
    normal_count = fields.Integer(required=True, data_key="normalCount")
    abnormal_count = fields.Integer(required=True, data_key="abnormalCount")
    critical_count = fields.Integer(required=True, data_key="criticalCount")
    overall_status = fields.String(
        required=True, data_key="overallStatus",
        validate=validate.OneOf(["healthy", "attention", "critical"]),
    )
    risk_level = fields.String(required=True, data_key="riskLevel", validate=validate.OneOf(["low", "medium", "high"]))
    recommendations = fields.List(fields.String(), load_default=list)


class AnalysisMetadataSchema(Schema):
    lab_name = fields.String(allow_none=True, data_key="labName")
    doctor_name = fields.String(allow_none=True, data_key="doctorName")
    test_date = fields.String(allow_none=True, data_key="testDate")
    report_number = fields.String(allow_none=True, data_key="reportNumber")


class ReportAnalysisSchema(Schema):
    parameters = fields.Dict(keys=fields.String(), values=fields.Nested(ParameterSchema), load_default=dict)
    summary = fields.Nested(SummarySchema)
    metadata = fields.Nested(AnalysisMetadataSchema)


class HealthReportSchema(BaseSchema):
    title = fields.String(required=True, validate=validate.Length(min=1))
    report_type = fields.String(allow_none=True, data_key="reportType")
    file_url = fields.String(required=True, data_key="fileUrl")
    uploaded_at = fields.AwareDateTime(default_timezone=timezone.utc, load_default=_now, data_key="uploadedAt")
    valid_till = fields.AwareDateTime(default_timezone=timezone.utc, allow_none=True, data_key="validTill")
    analysis = fields.Nested(ReportAnalysisSchema, allow_none=True)
    source = fields.String(allow_none=True, validate=validate.OneOf(["uploaded", "web", "demo"]))
    lab_name = fields.String(allow_none=True, data_key="labName")
    doctor_name = fields.String(allow_none=True, data_key="doctorName")


class BPField(Schema):
    systolic = fields.Integer(required=True, validate=validate.Range(min=0, max=300))
    diastolic = fields.Integer(required=True, validate=validate.Range(min=0, max=200))


class HealthMetricsSchema(BaseSchema):
    blood_pressure = fields.Nested(BPField, allow_none=True, data_key="bloodPressure")
    blood_sugar = fields.Float(allow_none=True, data_key="bloodSugar")
    cholesterol = fields.Float(allow_none=True)
    bmi = fields.Float(allow_none=True)
    weight = fields.Float(allow_none=True, validate=validate.Range(min=0))
    height = fields.Float(allow_none=True, validate=validate.Range(min=0))
    recorded_at = fields.AwareDateTime(default_timezone=timezone.utc, load_default=_now, data_key="recordedAt")


class FamilyMemberSchema(BaseSchema):
    name = fields.String(required=True, validate=validate.Length(min=1))
    relationship = fields.String(allow_none=True)
    age = fields.Integer(allow_none=True, validate=validate.Range(min=0, max=150))
    gender = fields.String(allow_none=True, validate=validate.OneOf(["male", "female", "other"]))
    health_conditions = fields.List(fields.String(), allow_none=True, data_key="healthConditions")
    medications = fields.List(fields.String(), allow_none=True)


class DoseGenerateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    medication_id = fields.String(required=True, data_key="medicationId")
    start_date = fields.Date(required=True, data_key="startDate")
    end_date = fields.Date(required=True, data_key="endDate")

    @validates_schema
    def check_range(self, data, **kwargs):
        if data["end_date"] < data["start_date"]:
            raise ValidationError("endDate must not be before startDate", "endDate")


class DoseActionSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    dose_taken = fields.String(data_key="doseTaken")
    notes = fields.String()


class AnalyzeReportSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    parameters_text = fields.String(required=True, data_key="parametersText")
    lab_name = fields.String(data_key="labName")
    doctor_name = fields.String(data_key="doctorName")
    test_date = fields.String(data_key="testDate")
    report_number = fields.String(data_key="reportNumber")


class DashboardStatsSchema(Schema):
    active_medications = fields.Integer(data_key="activeMedications")
    total_doses = fields.Integer(data_key="totalDoses")
    taken_doses = fields.Integer(data_key="takenDoses")
    pending_doses = fields.Integer(data_key="pendingDoses")
    adherence_rate = fields.Float(data_key="adherenceRate")
    total_reports = fields.Integer(data_key="totalReports")
    latest_metrics = fields.Nested(HealthMetricsSchema, allow_none=True, data_key="latestMetrics")
