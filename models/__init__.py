"""Core data models for phone identities, one-time codes, and the complaint lifecycle."""
from datetime import datetime, timezone

from flask_login import UserMixin

from extensions import db


def utcnow() -> datetime:
	"""Naive UTC timestamp, matching the column type used across the schema."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value: datetime | None) -> str | None:
	return value.isoformat() if value else None


COMPLAINT_STATUSES: tuple[str, ...] = (
	"submitted",
	"in_progress",
	"under_review",
	"resolved",
	"closed",
	"rejected",
)

OPEN_STATUSES: tuple[str, ...] = (
	"submitted",
	"in_progress",
	"under_review",
)

RESOLVED_STATUSES: tuple[str, ...] = (
	"resolved",
	"closed",
)

COMPLAINT_PRIORITIES: tuple[str, ...] = (
	"low",
	"medium",
	"high",
	"urgent",
)

REPORTER_TYPES: tuple[str, ...] = (
	"anonymous",
	"pseudonymous",
	"verified",
)

DEFAULT_DEPARTMENTS: tuple[tuple[str, str, str, str], ...] = (
	("Roads & Infrastructure", "Handles road maintenance, potholes, and infrastructure issues", "roads@naiyaksetu.gov", "+91-1234567801"),
	("Water Supply", "Manages water supply, quality, and distribution issues", "water@naiyaksetu.gov", "+91-1234567802"),
	("Electricity", "Handles power outages, electrical faults, and billing issues", "electricity@naiyaksetu.gov", "+91-1234567803"),
	("Sanitation & Waste", "Manages garbage collection, waste disposal, and cleanliness", "sanitation@naiyaksetu.gov", "+91-1234567804"),
)

TRACKING_ID_MAX_LENGTH = 20


def _enum_check(column: str, values: tuple[str, ...], name: str) -> db.CheckConstraint:
	allowed = ",".join(f"'{v}'" for v in values)
	return db.CheckConstraint(f"{column} IN ({allowed})", name=name)


class User(UserMixin, db.Model):
	__tablename__ = "users"

	id = db.Column(db.Integer, primary_key=True)
	phone = db.Column(db.String(20), unique=True, nullable=False, index=True)
	name = db.Column(db.String(100), nullable=True)
	is_verified = db.Column(db.Boolean, default=False, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
	last_login = db.Column(db.DateTime, nullable=True)

	complaints = db.relationship("Complaint", back_populates="user", lazy="dynamic")

	@staticmethod
	def find_or_create_by_phone(phone: str) -> "User":
		"""Atomic upsert keyed on phone. Runs inside the caller's transaction and does not commit."""
		now = utcnow()
		dialect = db.session.get_bind().dialect.name
		if dialect == "postgresql":
			from sqlalchemy.dialects.postgresql import insert
		elif dialect == "sqlite":
			from sqlalchemy.dialects.sqlite import insert
		else:
			insert = None

		if insert is not None:
			stmt = insert(User.__table__).values(phone=phone, is_verified=False, created_at=now, updated_at=now)
			stmt = stmt.on_conflict_do_update(index_elements=["phone"], set_={"updated_at": now})
			db.session.execute(stmt)
			return User.query.filter_by(phone=phone).one()

		user = User.query.filter_by(phone=phone).first()
		if user:
			user.updated_at = now
			return user
		user = User(phone=phone, is_verified=False, created_at=now, updated_at=now)
		db.session.add(user)
		db.session.flush()
		return user

	@property
	def is_new_user(self) -> bool:
		return not self.name

	def public_profile(self) -> dict:
		return {
			"id": self.id,
			"phone": self.phone,
			"name": self.name,
			"isVerified": self.is_verified,
			"memberSince": isoformat(self.created_at),
			"lastLogin": isoformat(self.last_login),
		}


class OneTimeCode(db.Model):
	__tablename__ = "otp_codes"

	id = db.Column(db.Integer, primary_key=True)
	phone = db.Column(db.String(20), db.ForeignKey("users.phone"), nullable=False, index=True)
	code = db.Column(db.String(10), nullable=False)
	expires_at = db.Column(db.DateTime, nullable=False, index=True)
	is_used = db.Column(db.Boolean, default=False, nullable=False)
	attempts = db.Column(db.Integer, default=0, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		db.Index("ix_otp_codes_phone_used_created", "phone", "is_used", "created_at"),
	)

	def is_expired(self, now: datetime | None = None) -> bool:
		return (now or utcnow()) > self.expires_at


class Department(db.Model):
	__tablename__ = "departments"

	id = db.Column(db.Integer, primary_key=True)
	name = db.Column(db.String(100), unique=True, nullable=False, index=True)
	description = db.Column(db.Text, nullable=True)
	contact_email = db.Column(db.String(255), nullable=True)
	contact_phone = db.Column(db.String(20), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	@staticmethod
	def seed_defaults() -> int:
		"""Insert any missing default departments. Returns the number created."""
		existing = {name for (name,) in db.session.query(Department.name).all()}
		created = 0
		for name, description, email, phone in DEFAULT_DEPARTMENTS:
			if name in existing:
				continue
			db.session.add(Department(name=name, description=description, contact_email=email, contact_phone=phone))
			created += 1
		if created:
			db.session.commit()
		return created


class Complaint(db.Model):
	__tablename__ = "complaints"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.String(TRACKING_ID_MAX_LENGTH), unique=True, nullable=False, index=True)
	title = db.Column(db.String(255), nullable=False)
	category = db.Column(db.String(100), nullable=False, index=True)
	description = db.Column(db.Text, nullable=False)
	priority = db.Column(db.String(10), nullable=False, default="medium", index=True)
	status = db.Column(db.String(20), nullable=False, default="submitted", index=True)
	reporter_type = db.Column(db.String(20), nullable=False, default="anonymous")
	contact_method = db.Column(db.String(20), nullable=True)
	phone = db.Column(db.String(20), nullable=True)
	location_address = db.Column(db.Text, nullable=True)
	location_latitude = db.Column(db.Float, nullable=False)
	location_longitude = db.Column(db.Float, nullable=False)
	location_formatted = db.Column(db.Text, nullable=True)
	user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
	department = db.Column(db.String(100), nullable=True, index=True)
	assigned_to = db.Column(db.String(100), nullable=True)
	estimated_resolution_date = db.Column(db.Date, nullable=True)
	resolved_at = db.Column(db.DateTime, nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		_enum_check("status", COMPLAINT_STATUSES, "ck_complaint_status_valid"),
		_enum_check("priority", COMPLAINT_PRIORITIES, "ck_complaint_priority_valid"),
		_enum_check("reporter_type", REPORTER_TYPES, "ck_complaint_reporter_type_valid"),
	)

	user = db.relationship("User", back_populates="complaints")
	attachments = db.relationship(
		"ComplaintAttachment",
		back_populates="complaint",
		order_by="ComplaintAttachment.id",
		cascade="all, delete-orphan",
	)
	identity_record = db.relationship(
		"ComplaintIdentityRecord",
		back_populates="complaint",
		uselist=False,
		cascade="all, delete-orphan",
	)
	status_history = db.relationship(
		"ComplaintStatusHistory",
		back_populates="complaint",
		order_by="ComplaintStatusHistory.id",
		cascade="all, delete-orphan",
	)

	def location_payload(self) -> dict:
		return {
			"address": self.location_address,
			"latitude": self.location_latitude,
			"longitude": self.location_longitude,
			"formatted": self.location_formatted,
		}

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"complaintId": self.complaint_id,
			"title": self.title,
			"category": self.category,
			"description": self.description,
			"status": self.status,
			"priority": self.priority,
			"reporterType": self.reporter_type,
			"contactMethod": self.contact_method,
			"phone": self.phone,
			"location": self.location_payload(),
			"department": self.department,
			"assignedTo": self.assigned_to,
			"estimatedResolutionDate": self.estimated_resolution_date.isoformat() if self.estimated_resolution_date else None,
			"createdAt": isoformat(self.created_at),
			"updatedAt": isoformat(self.updated_at),
			"resolvedAt": isoformat(self.resolved_at),
		}

	def public_payload(self) -> dict:
		"""Fields safe to show without authentication: no contact or ownership data."""
		return {
			"complaintId": self.complaint_id,
			"title": self.title,
			"category": self.category,
			"status": self.status,
			"priority": self.priority,
			"reporterType": self.reporter_type,
			"createdAt": isoformat(self.created_at),
			"updatedAt": isoformat(self.updated_at),
		}


class ComplaintStatusHistory(db.Model):
	__tablename__ = "complaint_status_history"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.Integer, db.ForeignKey("complaints.id"), nullable=False, index=True)
	status = db.Column(db.String(20), nullable=False)
	notes = db.Column(db.Text, nullable=True)
	changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
	changed_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)

	__table_args__ = (
		_enum_check("status", COMPLAINT_STATUSES, "ck_status_history_status_valid"),
	)

	complaint = db.relationship("Complaint", back_populates="status_history")
	actor = db.relationship("User")

	def to_dict(self, include_actor: bool = True) -> dict:
		payload = {
			"status": self.status,
			"notes": self.notes,
			"changedAt": isoformat(self.changed_at),
		}
		if include_actor:
			payload["changedBy"] = self.changed_by
			payload["changedByName"] = self.actor.name if self.actor else None
		return payload


class ComplaintAttachment(db.Model):
	__tablename__ = "complaint_attachments"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.Integer, db.ForeignKey("complaints.id"), nullable=False, index=True)
	filename = db.Column(db.String(255), nullable=False)
	original_name = db.Column(db.String(255), nullable=True)
	file_type = db.Column(db.String(100), nullable=True)
	file_size = db.Column(db.Integer, nullable=True)
	file_path = db.Column(db.String(500), nullable=True)
	url = db.Column(db.String(500), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	complaint = db.relationship("Complaint", back_populates="attachments")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"filename": self.filename,
			"originalName": self.original_name,
			"fileType": self.file_type,
			"fileSize": self.file_size,
			"filePath": self.file_path,
			"url": self.url,
			"createdAt": isoformat(self.created_at),
		}


class ComplaintIdentityRecord(db.Model):
	__tablename__ = "complaint_aadhaar_data"

	id = db.Column(db.Integer, primary_key=True)
	complaint_id = db.Column(db.Integer, db.ForeignKey("complaints.id"), nullable=False, unique=True)
	aadhaar_number = db.Column(db.String(12), nullable=False)
	name = db.Column(db.String(150), nullable=True)
	gender = db.Column(db.String(20), nullable=True)
	state = db.Column(db.String(100), nullable=True)
	district = db.Column(db.String(100), nullable=True)
	verified_at = db.Column(db.DateTime, default=utcnow, nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	complaint = db.relationship("Complaint", back_populates="identity_record")

	@property
	def masked_number(self) -> str:
		digits = (self.aadhaar_number or "").strip()
		if len(digits) <= 4:
			return "*" * len(digits)
		return f"{'X' * (len(digits) - 4)}{digits[-4:]}"

	def to_dict(self) -> dict:
		return {
			"aadhaarNumber": self.masked_number,
			"name": self.name,
			"gender": self.gender,
			"state": self.state,
			"district": self.district,
			"verifiedAt": isoformat(self.verified_at),
		}
