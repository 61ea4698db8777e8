"""Request payload validation built on WTForms.

JSON bodies are mapped onto form data so the same validators the HTML forms
would use apply to the API. Failures surface as ``ValidationError``.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping

from werkzeug.datastructures import MultiDict
from wtforms import Form, StringField
from wtforms.validators import AnyOf, DataRequired, Length, Optional, Regexp
from wtforms.validators import ValidationError as FieldError

from models import COMPLAINT_PRIORITIES, REPORTER_TYPES
from utils.errors import ValidationError

PHONE_PATTERN = r"^\+91\d{10}$"
REQUIRED_COMPLAINT_FIELDS = "Title, category, and description are required"


def strip_filter(value):
    return value.strip() if isinstance(value, str) else value


def formdata_from_json(payload: Mapping[str, Any] | None, mapping: Mapping[str, str]) -> MultiDict:
    """Copy scalar JSON values into form data, renaming ``json_key`` to ``field_name``."""
    data = MultiDict()
    if not isinstance(payload, Mapping):
        return data
    for json_key, field_name in mapping.items():
        value = payload.get(json_key)
        if value is None or isinstance(value, (dict, list)):
            continue
        data.add(field_name, value if isinstance(value, str) else str(value))
    return data


def validated(form: Form) -> Form:
    if not form.validate():
        first_error = next(iter(form.errors.values()))[0]
        raise ValidationError(first_error, payload={"errors": form.errors})
    return form


class SendOtpForm(Form):
    phone_number = StringField(
        filters=[strip_filter],
        validators=[
            DataRequired(message="Phone number is required"),
            Regexp(PHONE_PATTERN, message="Invalid phone number format. Use +91XXXXXXXXXX"),
        ],
    )


class VerifyOtpForm(Form):
    phone_number = StringField(
        filters=[strip_filter],
        validators=[
            DataRequired(message="Phone number and OTP are required"),
            Regexp(PHONE_PATTERN, message="Invalid phone number format"),
        ],
    )
    otp = StringField(filters=[strip_filter], validators=[DataRequired(message="Phone number and OTP are required")])

    def __init__(self, formdata=None, otp_length: int = 6, **kwargs) -> None:
        super().__init__(formdata=formdata, **kwargs)
        self.otp_length = otp_length

    def validate_otp(self, field):
        if not (field.data.isdigit() and len(field.data) == self.otp_length):
            raise FieldError(f"OTP must be {self.otp_length} digits")


class ProfileForm(Form):
    name = StringField(
        filters=[strip_filter],
        validators=[
            DataRequired(message="Name is required"),
            Length(min=2, max=50, message="Name must be between 2 and 50 characters"),
        ],
    )


class ComplaintForm(Form):
    title = StringField(
        filters=[strip_filter],
        validators=[DataRequired(message=REQUIRED_COMPLAINT_FIELDS), Length(max=255)],
    )
    category = StringField(
        filters=[strip_filter],
        validators=[DataRequired(message=REQUIRED_COMPLAINT_FIELDS), Length(max=100)],
    )
    description = StringField(
        filters=[strip_filter],
        validators=[DataRequired(message=REQUIRED_COMPLAINT_FIELDS), Length(max=5000)],
    )
    priority = StringField(
        filters=[strip_filter],
        validators=[Optional(), AnyOf(COMPLAINT_PRIORITIES, message="Invalid priority level")],
    )
    reporter_type = StringField(
        filters=[strip_filter],
        validators=[Optional(), AnyOf(REPORTER_TYPES, message="Invalid reporter type")],
    )
    contact_method = StringField(filters=[strip_filter], validators=[Optional(), Length(max=20)])
    phone = StringField(filters=[strip_filter], validators=[Optional(), Length(max=20)])


COMPLAINT_FIELD_MAP = {
    "title": "title",
    "category": "category",
    "description": "description",
    "priority": "priority",
    "reporterType": "reporter_type",
    "contactMethod": "contact_method",
    "phone": "phone",
}


def _coordinate(location: Mapping[str, Any], *keys: str) -> float | None:
    for key in keys:
        value = location.get(key)
        if value is None or value == "":
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ValidationError("Invalid location coordinates")
    return None


def clean_location(location: Any) -> Dict[str, Any]:
    if not isinstance(location, Mapping):
        raise ValidationError("Location with coordinates is required")
    latitude = _coordinate(location, "latitude", "lat")
    longitude = _coordinate(location, "longitude", "lng", "lon")
    if latitude is None or longitude is None:
        raise ValidationError("Location with coordinates is required")
    if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
        raise ValidationError("Invalid location coordinates")
    return {
        "address": strip_filter(location.get("address")) or None,
        "latitude": latitude,
        "longitude": longitude,
        "formatted": strip_filter(location.get("formatted")) or None,
    }


def clean_attachments(attachments: Any) -> List[Dict[str, Any]]:
    if attachments in (None, ""):
        return []
    if not isinstance(attachments, list):
        raise ValidationError("Attachments must be a list")
    cleaned = []
    for item in attachments:
        if not isinstance(item, Mapping) or not item.get("filename"):
            raise ValidationError("Each attachment requires a filename")
        size = item.get("fileSize")
        try:
            size = int(size) if size is not None else None
        except (TypeError, ValueError):
            raise ValidationError("Attachment fileSize must be an integer")
        cleaned.append(
            {
                "filename": str(item["filename"]),
                "original_name": item.get("originalName"),
                "file_type": item.get("fileType"),
                "file_size": size,
                "file_path": item.get("filePath"),
                "url": item.get("url"),
            }
        )
    return cleaned


def clean_aadhaar(data: Any) -> Dict[str, Any] | None:
    if not data:
        return None
    if not isinstance(data, Mapping):
        raise ValidationError("Invalid Aadhaar data")
    number = str(data.get("aadhaarNumber") or "").replace(" ", "")
    if not number.isdigit() or len(number) != 12:
        raise ValidationError("Invalid Aadhaar number")
    return {
        "aadhaar_number": number,
        "name": data.get("name"),
        "gender": data.get("gender"),
        "state": data.get("state"),
        "district": data.get("district"),
    }


def clean_complaint_payload(payload: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Validate a complaint submission body. Any ``status`` in the input is ignored."""
    if not isinstance(payload, Mapping):
        payload = {}
    form = validated(ComplaintForm(formdata=formdata_from_json(payload, COMPLAINT_FIELD_MAP)))
    location = clean_location(payload.get("location"))
    reporter_type = form.reporter_type.data or "anonymous"
    return {
        "title": form.title.data,
        "category": form.category.data,
        "description": form.description.data,
        "priority": form.priority.data or "medium",
        "reporter_type": reporter_type,
        "contact_method": form.contact_method.data or "email",
        "phone": form.phone.data or None,
        "location": location,
        "attachments": clean_attachments(payload.get("attachments")),
        "aadhaar": clean_aadhaar(payload.get("aadhaarData")) if reporter_type == "verified" else None,
    }


def parse_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
