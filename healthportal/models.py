# healthportal/models.py
# Tables behind the "sql" storage backend. Column names match the attribute
# names the marshmallow schemas load into.
from .extensions import db


class TimestampMixin:
    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False)


class User(TimestampMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.String, primary_key=True)
    username = db.Column(db.String, nullable=False, index=True)
    email = db.Column(db.String)
    role = db.Column(db.String, default="patient")
    plan = db.Column(db.String, default="personal")


class Medication(TimestampMixin, db.Model):
    __tablename__ = "medications"
    id = db.Column(db.String, primary_key=True)
    user_id = db.Column(db.String, index=True, nullable=False)
    medicine_name = db.Column(db.String, nullable=False)
    dosage = db.Column(db.String)
    dose_strength = db.Column(db.String)
    dose_form = db.Column(db.String)
    frequency = db.Column(db.String)
    times = db.Column(db.JSON)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    instructions = db.Column(db.Text)
    side_effects = db.Column(db.JSON)
    administration_method = db.Column(db.String)
    special_instructions = db.Column(db.Text)
    is_running = db.Column(db.Boolean, default=True)


class DoseRecord(TimestampMixin, db.Model):
    __tablename__ = "dose_records"
    id = db.Column(db.String, primary_key=True)
    user_id = db.Column(db.String, index=True, nullable=False)
    # no foreign key: records may outlive their medication
    medication_id = db.Column(db.String, index=True)
    scheduled_time = db.Column(db.String, index=True, nullable=False)
    actual_time = db.Column(db.String)
    status = db.Column(db.String, default="pending")
    notes = db.Column(db.Text)
    dose_taken = db.Column(db.String)
    side_effects = db.Column(db.JSON)


class HealthReport(TimestampMixin, db.Model):
    __tablename__ = "health_reports"
    id = db.Column(db.String, primary_key=True)
    user_id = db.Column(db.String, index=True, nullable=False)
    title = db.Column(db.String, nullable=False)
    report_type = db.Column(db.String)
    file_url = db.Column(db.String, nullable=False)
    uploaded_at = db.Column(db.DateTime(timezone=True))
    valid_till = db.Column(db.DateTime(timezone=True))
    analysis = db.Column(db.JSON)
    source = db.Column(db.String)
    lab_name = db.Column(db.String)
    doctor_name = db.Column(db.String)


class HealthMetrics(TimestampMixin, db.Model):
    __tablename__ = "health_metrics"
    id = db.Column(db.String, primary_key=True)
    user_id = db.Column(db.String, index=True, nullable=False)
    blood_pressure = db.Column(db.JSON)
    blood_sugar = db.Column(db.Float)
    cholesterol = db.Column(db.Float)
    bmi = db.Column(db.Float)
    weight = db.Column(db.Float)
    height = db.Column(db.Float)
    recorded_at = db.Column(db.DateTime(timezone=True), index=True)


class FamilyMember(TimestampMixin, db.Model):
    __tablename__ = "family_members"
    id = db.Column(db.String, primary_key=True)
    user_id = db.Column(db.String, index=True, nullable=False)
    name = db.Column(db.String, nullable=False)
    relationship = db.Column(db.String)
    age = db.Column(db.Integer)
    gender = db.Column(db.String)
    health_conditions = db.Column(db.JSON)
    medications = db.Column(db.JSON)
