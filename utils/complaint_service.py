"""Complaint lifecycle: intake, status transitions with audit history, lookups, and statistics."""
from __future__ import annotations

import math
import secrets
import string
import threading
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    COMPLAINT_PRIORITIES,
    COMPLAINT_STATUSES,
    OPEN_STATUSES,
    RESOLVED_STATUSES,
    Complaint,
    ComplaintAttachment,
    ComplaintIdentityRecord,
    ComplaintStatusHistory,
    Department,
    User,
    utcnow,
)
from utils.errors import Conflict, NotFound, ValidationError

TRACKING_PREFIX = "CMP"
TRACKING_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
TRACKING_ID_ATTEMPTS = 5

SORTABLE_COLUMNS = {
    "created_at": Complaint.created_at,
    "createdAt": Complaint.created_at,
    "updated_at": Complaint.updated_at,
    "updatedAt": Complaint.updated_at,
    "priority": Complaint.priority,
    "status": Complaint.status,
    "category": Complaint.category,
    "title": Complaint.title,
}

INITIAL_HISTORY_NOTE = "Complaint submitted successfully"
RECENT_WINDOW_DAYS = 30


class TrackingIdGenerator:
    """Builds ``CMP`` + 8 clock digits + 4 random characters (15 characters).

    The clock component never repeats within one generator, so ids drawn from
    the same instance are unique even when many are drawn per millisecond.
    """

    def __init__(self, clock=None) -> None:
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._last_stamp = 0
        self._lock = threading.Lock()

    def _next_stamp(self) -> int:
        with self._lock:
            stamp = self._clock()
            if stamp <= self._last_stamp:
                stamp = self._last_stamp + 1
            self._last_stamp = stamp
            return stamp

    def generate(self) -> str:
        digits = str(self._next_stamp())[-8:].rjust(8, "0")
        suffix = "".join(secrets.choice(TRACKING_SUFFIX_ALPHABET) for _ in range(4))
        return f"{TRACKING_PREFIX}{digits}{suffix}"


@dataclass
class ComplaintFilters:
    owner_id: Optional[int] = None
    status: Optional[str] = None
    category: Optional[str] = None
    priority: Optional[str] = None


@dataclass
class PageRequest:
    page: int = 1
    limit: int = 10
    sort_by: str = "created_at"
    sort_order: str = "desc"


@dataclass
class ComplaintPage:
    items: List[Complaint] = field(default_factory=list)
    page: int = 1
    limit: int = 10
    total_count: int = 0

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def pagination(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "limit": self.limit,
            "totalPages": self.total_pages,
            "totalCount": self.total_count,
            "hasNext": self.has_next,
            "hasPrev": self.has_prev,
        }


def _unused_tracking_id(generator: TrackingIdGenerator) -> str:
    for _ in range(TRACKING_ID_ATTEMPTS):
        candidate = generator.generate()
        if not db.session.query(Complaint.id).filter_by(complaint_id=candidate).first():
            return candidate
    raise Conflict("Could not allocate a unique complaint tracking id")


def create_complaint(payload: Dict[str, Any], generator: TrackingIdGenerator, user: User | None = None) -> Complaint:
    """Persist a validated complaint with its child rows and initial history entry.

    ``payload`` is the cleaned output of ``ComplaintForm``. Status is always
    ``submitted`` and ownership comes only from ``user``.
    """
    now = utcnow()
    try:
        complaint = Complaint(
            complaint_id=_unused_tracking_id(generator),
            title=payload["title"],
            category=payload["category"],
            description=payload["description"],
            priority=payload.get("priority") or "medium",
            status="submitted",
            reporter_type=payload.get("reporter_type") or "anonymous",
            contact_method=payload.get("contact_method"),
            phone=payload.get("phone"),
            location_address=payload["location"].get("address"),
            location_latitude=payload["location"]["latitude"],
            location_longitude=payload["location"]["longitude"],
            location_formatted=payload["location"].get("formatted"),
            user_id=user.id if user else None,
            department=payload["category"],
            created_at=now,
            updated_at=now,
        )
        db.session.add(complaint)
        db.session.flush()

        identity = payload.get("aadhaar")
        if complaint.reporter_type == "verified" and identity:
            db.session.add(
                ComplaintIdentityRecord(
                    complaint_id=complaint.id,
                    aadhaar_number=identity["aadhaar_number"],
                    name=identity.get("name"),
                    gender=identity.get("gender"),
                    state=identity.get("state"),
                    district=identity.get("district"),
                    verified_at=now,
                    created_at=now,
                )
            )

        for attachment in payload.get("attachments") or []:
            db.session.add(
                ComplaintAttachment(
                    complaint_id=complaint.id,
                    filename=attachment["filename"],
                    original_name=attachment.get("original_name"),
                    file_type=attachment.get("file_type"),
                    file_size=attachment.get("file_size"),
                    file_path=attachment.get("file_path"),
                    url=attachment.get("url"),
                    created_at=now,
                )
            )

        db.session.add(
            ComplaintStatusHistory(
                complaint_id=complaint.id,
                status="submitted",
                notes=INITIAL_HISTORY_NOTE,
                changed_by=user.id if user else None,
                changed_at=now,
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while saving complaint")
        raise

    current_app.logger.info(
        "Complaint created",
        extra={
            "complaint_id": complaint.complaint_id,
            "category": complaint.category,
            "priority": complaint.priority,
            "anonymous": user is None,
        },
    )
    return complaint


def resolve_complaint(identifier: str | int) -> Complaint | None:
    """Find a complaint by internal id, falling back to its public tracking id."""
    raw = str(identifier).strip()
    if not raw:
        return None
    if raw.isdigit():
        complaint = db.session.get(Complaint, int(raw))
        if complaint:
            return complaint
    return Complaint.query.filter_by(complaint_id=raw).first()


def update_status(identifier: str | int, new_status: str, notes: str | None, actor: User | None) -> Complaint:
    if new_status not in COMPLAINT_STATUSES:
        raise ValidationError("Invalid status. Must be one of: " + ", ".join(COMPLAINT_STATUSES))

    complaint = resolve_complaint(identifier)
    if complaint is None:
        raise NotFound("Complaint not found")

    now = utcnow()
    previous = complaint.status
    try:
        complaint.status = new_status
        complaint.updated_at = now
        if new_status in RESOLVED_STATUSES and complaint.resolved_at is None:
            complaint.resolved_at = now
        elif new_status in OPEN_STATUSES:
            complaint.resolved_at = None
        db.session.add(
            ComplaintStatusHistory(
                complaint_id=complaint.id,
                status=new_status,
                notes=(notes or "").strip() or f"Status changed to {new_status}",
                changed_by=actor.id if actor else None,
                changed_at=now,
            )
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while updating complaint status")
        raise

    current_app.logger.info(
        "Complaint status updated",
        extra={
            "complaint_id": complaint.complaint_id,
            "from": previous,
            "to": new_status,
            "actor": actor.id if actor else None,
        },
    )
    return complaint


def list_complaints(filters: ComplaintFilters, page_request: PageRequest, max_limit: int = 50) -> ComplaintPage:
    sort_column = SORTABLE_COLUMNS.get(page_request.sort_by)
    if sort_column is None:
        raise ValidationError(f"Cannot sort by '{page_request.sort_by}'")
    order = (page_request.sort_order or "desc").lower()
    if order not in {"asc", "desc"}:
        raise ValidationError("sortOrder must be 'asc' or 'desc'")
    if filters.status and filters.status not in COMPLAINT_STATUSES:
        raise ValidationError("Invalid status filter")
    if filters.priority and filters.priority not in COMPLAINT_PRIORITIES:
        raise ValidationError("Invalid priority filter")

    page = max(page_request.page, 1)
    limit = min(max(page_request.limit, 1), max_limit)

    query = db.session.query(Complaint, func.count().over().label("total_count"))
    if filters.owner_id is not None:
        query = query.filter(Complaint.user_id == filters.owner_id)
    if filters.status:
        query = query.filter(Complaint.status == filters.status)
    if filters.category:
        query = query.filter(Complaint.category == filters.category)
    if filters.priority:
        query = query.filter(Complaint.priority == filters.priority)

    ordering = sort_column.asc() if order == "asc" else sort_column.desc()
    rows = query.order_by(ordering, Complaint.id.desc()).limit(limit).offset((page - 1) * limit).all()

    if rows:
        total = int(rows[0].total_count)
    elif page > 1:
        # Past the last page the window count has no row to ride on.
        total = query.with_entities(func.count(Complaint.id)).scalar() or 0
    else:
        total = 0
    return ComplaintPage(items=[row[0] for row in rows], page=page, limit=limit, total_count=total)


def get_complaint_detail(identifier: str | int) -> Dict[str, Any]:
    complaint = resolve_complaint(identifier)
    if complaint is None:
        raise NotFound("Complaint not found")

    department = Department.query.filter_by(name=complaint.department).first() if complaint.department else None
    history = sorted(complaint.status_history, key=lambda h: (h.changed_at, h.id), reverse=True)

    detail = complaint.to_dict()
    detail["department"] = {
        "name": complaint.department,
        "displayName": department.name if department else None,
        "contactEmail": department.contact_email if department else None,
    }
    detail["attachments"] = [a.to_dict() for a in complaint.attachments]
    detail["aadhaarData"] = complaint.identity_record.to_dict() if complaint.identity_record else None
    detail["statusHistory"] = [h.to_dict() for h in history]
    detail["userId"] = complaint.user_id
    return detail


def track_complaint(tracking_id: str) -> Dict[str, Any]:
    complaint = Complaint.query.filter_by(complaint_id=(tracking_id or "").strip()).first()
    if complaint is None:
        raise NotFound("Complaint not found with this ID")
    payload = complaint.public_payload()
    payload["description"] = complaint.description
    payload["statusHistory"] = [
        h.to_dict(include_actor=False)
        for h in sorted(complaint.status_history, key=lambda h: (h.changed_at, h.id), reverse=True)
    ]
    return payload


def recent_complaints(limit: int, offset: int = 0) -> List[Dict[str, Any]]:
    rows = (
        Complaint.query.order_by(Complaint.created_at.desc(), Complaint.id.desc())
        .limit(limit)
        .offset(max(offset, 0))
        .all()
    )
    return [c.public_payload() for c in rows]


def compute_statistics(owner_id: Optional[int] = None, include_categories: bool = False) -> Dict[str, Any]:
    def scoped(query):
        return query.filter(Complaint.user_id == owner_id) if owner_id is not None else query

    status_counts = {status: 0 for status in COMPLAINT_STATUSES}
    for status, count in scoped(db.session.query(Complaint.status, func.count(Complaint.id))).group_by(Complaint.status):
        status_counts[status] = count

    priority_counts = {priority: 0 for priority in COMPLAINT_PRIORITIES}
    for priority, count in scoped(db.session.query(Complaint.priority, func.count(Complaint.id))).group_by(Complaint.priority):
        priority_counts[priority] = count

    durations = [
        (resolved_at - created_at).total_seconds() / 86400
        for created_at, resolved_at in scoped(
            db.session.query(Complaint.created_at, Complaint.resolved_at).filter(Complaint.resolved_at.isnot(None))
        )
    ]
    average_days = round(sum(durations) / len(durations), 1) if durations else None
    recent_cutoff = utcnow() - timedelta(days=RECENT_WINDOW_DAYS)
    last_30_days = scoped(db.session.query(func.count(Complaint.id))).filter(Complaint.created_at >= recent_cutoff).scalar()

    stats: Dict[str, Any] = {
        "totalComplaints": sum(status_counts.values()),
        "statusCounts": status_counts,
        "priorityCounts": priority_counts,
        "averageResolutionDays": average_days,
        "last30Days": last_30_days or 0,
    }
    if include_categories:
        category_rows = (
            scoped(db.session.query(Complaint.category, func.count(Complaint.id).label("count")))
            .group_by(Complaint.category)
            .order_by(func.count(Complaint.id).desc(), Complaint.category)
            .all()
        )
        stats["byCategory"] = [{"category": category, "count": count} for category, count in category_rows]
    return stats
