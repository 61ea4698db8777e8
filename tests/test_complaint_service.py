"""Tests for the complaint lifecycle store.

Coverage:
- Tracking id format, length bound, and uniqueness per generator
- Creation writes the initial history entry with the creation timestamp
- Status updates append history and keep the current status in sync
- Resolution timestamps and statistics
- Listing pagination, clamping, sort validation
- Detail, public tracking, and recent feed payloads
- Failed writes roll back every row of the transaction
"""

import re
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from models import Complaint, ComplaintAttachment, ComplaintIdentityRecord, ComplaintStatusHistory, User, utcnow
from extensions import db
from utils.complaint_service import (
    ComplaintFilters,
    PageRequest,
    TrackingIdGenerator,
    compute_statistics,
    create_complaint,
    get_complaint_detail,
    list_complaints,
    recent_complaints,
    resolve_complaint,
    track_complaint,
    update_status,
)
from utils.errors import Conflict, NotFound, ValidationError

TRACKING_PATTERN = re.compile(r"^CMP\d{8}[A-Z0-9]{4}$")


@pytest.fixture
def generator():
    return TrackingIdGenerator()


@pytest.fixture
def citizen(app_ctx):
    user = User(phone="+919876543210", name="Asha", is_verified=True)
    db.session.add(user)
    db.session.commit()
    return user


class TestTrackingIds:
    def test_format_fits_column(self, generator):
        tracking_id = generator.generate()
        assert TRACKING_PATTERN.match(tracking_id)
        assert len(tracking_id) <= 20

    def test_unique_under_a_frozen_clock(self):
        generator = TrackingIdGenerator(clock=lambda: 1_700_000_000_000)
        ids = {generator.generate() for _ in range(100_000)}
        assert len(ids) == 100_000

    def test_clock_digits_strictly_increase(self):
        generator = TrackingIdGenerator(clock=lambda: 42)
        first, second = generator.generate(), generator.generate()
        assert int(second[3:11]) == int(first[3:11]) + 1


class TestCreateComplaint:
    def test_anonymous_submission(self, app_ctx, generator, complaint_payload):
        complaint = create_complaint(complaint_payload(), generator)

        assert TRACKING_PATTERN.match(complaint.complaint_id)
        assert complaint.status == "submitted"
        assert complaint.user_id is None
        assert complaint.department == "Roads & Infrastructure"

    def test_initial_history_matches_creation(self, app_ctx, generator, complaint_payload, citizen):
        complaint = create_complaint(complaint_payload(), generator, user=citizen)

        history = ComplaintStatusHistory.query.filter_by(complaint_id=complaint.id).all()
        assert len(history) == 1
        assert history[0].status == "submitted"
        assert history[0].changed_at == complaint.created_at
        assert complaint.user_id == citizen.id

    def test_children_written_with_complaint(self, app_ctx, generator, complaint_payload):
        payload = complaint_payload(
            reporter_type="verified",
            aadhaar={"aadhaar_number": "123456789012", "name": "Asha", "gender": "F", "state": "KA", "district": "Bengaluru"},
            attachments=[{"filename": "pothole.jpg", "file_type": "image/jpeg", "file_size": 2048}],
        )
        complaint = create_complaint(payload, generator)

        assert complaint.identity_record.masked_number == "XXXXXXXX9012"
        assert [a.filename for a in complaint.attachments] == ["pothole.jpg"]

    def test_exhausted_tracking_ids_conflict(self, app_ctx, complaint_payload):
        class FixedGenerator:
            def generate(self):
                return "CMP12345678ABCD"

        create_complaint(complaint_payload(), FixedGenerator())
        with pytest.raises(Conflict):
            create_complaint(complaint_payload(), FixedGenerator())

    def test_identity_ignored_unless_verified(self, app_ctx, generator, complaint_payload):
        payload = complaint_payload(aadhaar={"aadhaar_number": "123456789012"})
        complaint = create_complaint(payload, generator)
        assert complaint.identity_record is None


class TestUpdateStatus:
    def test_history_tracks_every_transition(self, app_ctx, generator, complaint_payload, citizen):
        complaint = create_complaint(complaint_payload(), generator)
        for status in ("in_progress", "under_review", "resolved", "in_progress", "closed"):
            update_status(complaint.complaint_id, status, None, citizen)
            latest = (
                ComplaintStatusHistory.query.filter_by(complaint_id=complaint.id)
                .order_by(ComplaintStatusHistory.id.desc())
                .first()
            )
            assert latest.status == status
            assert db.session.get(Complaint, complaint.id).status == status

        assert ComplaintStatusHistory.query.filter_by(complaint_id=complaint.id).count() == 6

    def test_default_note_and_actor(self, app_ctx, generator, complaint_payload, citizen):
        complaint = create_complaint(complaint_payload(), generator)
        update_status(str(complaint.id), "in_progress", "  ", citizen)

        latest = complaint.status_history[-1]
        assert latest.notes == "Status changed to in_progress"
        assert latest.changed_by == citizen.id

    def test_resolution_timestamp(self, app_ctx, generator, complaint_payload):
        complaint = create_complaint(complaint_payload(), generator)

        update_status(complaint.complaint_id, "resolved", "Fixed", None)
        resolved_at = complaint.resolved_at
        assert resolved_at is not None

        update_status(complaint.complaint_id, "closed", None, None)
        assert complaint.resolved_at == resolved_at

        update_status(complaint.complaint_id, "in_progress", "Reopened", None)
        assert complaint.resolved_at is None

    def test_rejects_unknown_status_before_lookup(self, app_ctx):
        with pytest.raises(ValidationError):
            update_status("CMP00000000AAAA", "done", None, None)

    def test_unknown_complaint(self, app_ctx):
        with pytest.raises(NotFound):
            update_status("CMP00000000AAAA", "resolved", None, None)


class TestLookups:
    def test_resolve_by_id_or_tracking_id(self, app_ctx, generator, complaint_payload):
        complaint = create_complaint(complaint_payload(), generator)

        assert resolve_complaint(complaint.id) is complaint
        assert resolve_complaint(complaint.complaint_id) is complaint
        assert resolve_complaint("") is None

    def test_detail_payload(self, app_ctx, generator, complaint_payload, citizen):
        complaint = create_complaint(complaint_payload(), generator, user=citizen)
        update_status(complaint.complaint_id, "in_progress", "Crew assigned", citizen)

        detail = get_complaint_detail(complaint.complaint_id)

        assert detail["userId"] == citizen.id
        assert detail["department"]["contactEmail"] == "roads@naiyaksetu.gov"
        assert [h["status"] for h in detail["statusHistory"]] == ["in_progress", "submitted"]
        assert detail["statusHistory"][0]["changedByName"] == "Asha"

    def test_public_tracking_hides_private_fields(self, app_ctx, generator, complaint_payload, citizen):
        complaint = create_complaint(complaint_payload(phone="+919876543210"), generator, user=citizen)

        payload = track_complaint(complaint.complaint_id)

        assert payload["complaintId"] == complaint.complaint_id
        assert "phone" not in payload
        assert "userId" not in payload
        assert "changedBy" not in payload["statusHistory"][0]

    def test_tracking_unknown_id(self, app_ctx):
        with pytest.raises(NotFound):
            track_complaint("CMP00000000ZZZZ")

    def test_recent_newest_first(self, app_ctx, generator, complaint_payload):
        first = create_complaint(complaint_payload(title="First"), generator)
        second = create_complaint(complaint_payload(title="Second"), generator)

        feed = recent_complaints(limit=10)

        assert [c["complaintId"] for c in feed] == [second.complaint_id, first.complaint_id]
        assert recent_complaints(limit=1, offset=1)[0]["complaintId"] == first.complaint_id


class TestListComplaints:
    def test_pagination(self, app_ctx, generator, complaint_payload, citizen):
        for i in range(3):
            create_complaint(complaint_payload(title=f"Issue {i}"), generator, user=citizen)
        create_complaint(complaint_payload(title="Someone else"), generator)

        page = list_complaints(ComplaintFilters(owner_id=citizen.id), PageRequest(page=1, limit=2))

        assert len(page.items) == 2
        assert page.pagination() == {
            "page": 1,
            "limit": 2,
            "totalPages": 2,
            "totalCount": 3,
            "hasNext": True,
            "hasPrev": False,
        }

    def test_page_past_the_end_keeps_total(self, app_ctx, generator, complaint_payload, citizen):
        create_complaint(complaint_payload(), generator, user=citizen)

        page = list_complaints(ComplaintFilters(owner_id=citizen.id), PageRequest(page=5, limit=10))

        assert page.items == []
        assert page.total_count == 1

    def test_limit_is_clamped(self, app_ctx):
        page = list_complaints(ComplaintFilters(), PageRequest(page=0, limit=500), max_limit=50)
        assert page.limit == 50
        assert page.page == 1

    def test_filters_and_sorting(self, app_ctx, generator, complaint_payload, citizen):
        create_complaint(complaint_payload(title="B", priority="high"), generator, user=citizen)
        create_complaint(complaint_payload(title="A", priority="low"), generator, user=citizen)

        page = list_complaints(
            ComplaintFilters(owner_id=citizen.id),
            PageRequest(sort_by="title", sort_order="ASC"),
        )
        assert [c.title for c in page.items] == ["A", "B"]

        page = list_complaints(ComplaintFilters(owner_id=citizen.id, priority="high"), PageRequest())
        assert [c.title for c in page.items] == ["B"]

    @pytest.mark.parametrize(
        "filters, page_request",
        [
            (ComplaintFilters(), PageRequest(sort_by="description")),
            (ComplaintFilters(), PageRequest(sort_order="sideways")),
            (ComplaintFilters(status="done"), PageRequest()),
            (ComplaintFilters(priority="critical"), PageRequest()),
        ],
    )
    def test_rejects_unknown_keys(self, app_ctx, filters, page_request):
        with pytest.raises(ValidationError):
            list_complaints(filters, page_request)


class TestStatistics:
    def test_counts_and_average(self, app_ctx, generator, complaint_payload, citizen):
        mine = create_complaint(complaint_payload(category="Water Supply", priority="urgent"), generator, user=citizen)
        create_complaint(complaint_payload(), generator, user=citizen)
        create_complaint(complaint_payload(), generator)
        update_status(mine.complaint_id, "resolved", None, citizen)

        stats = compute_statistics(owner_id=citizen.id)

        assert stats["totalComplaints"] == 2
        assert stats["statusCounts"]["resolved"] == 1
        assert stats["statusCounts"]["submitted"] == 1
        assert stats["statusCounts"]["rejected"] == 0
        assert stats["priorityCounts"]["urgent"] == 1
        assert stats["averageResolutionDays"] == 0.0
        assert "byCategory" not in stats

    def test_average_ignores_open_complaints(self, app_ctx, generator, complaint_payload, citizen):
        resolved = create_complaint(complaint_payload(), generator, user=citizen)
        create_complaint(complaint_payload(), generator, user=citizen)
        resolved.status = "resolved"
        resolved.resolved_at = resolved.created_at + timedelta(days=4)
        db.session.commit()

        stats = compute_statistics(owner_id=citizen.id)

        assert stats["totalComplaints"] == 2
        assert stats["averageResolutionDays"] == 4.0

    def test_last_30_days(self, app_ctx, generator, complaint_payload, citizen):
        old = create_complaint(complaint_payload(), generator, user=citizen)
        create_complaint(complaint_payload(), generator, user=citizen)
        old.created_at = utcnow() - timedelta(days=40)
        db.session.commit()

        stats = compute_statistics(owner_id=citizen.id)

        assert stats["totalComplaints"] == 2
        assert stats["last30Days"] == 1

    def test_system_statistics_by_category(self, app_ctx, generator, complaint_payload):
        create_complaint(complaint_payload(category="Water Supply"), generator)
        create_complaint(complaint_payload(category="Water Supply"), generator)
        create_complaint(complaint_payload(category="Electricity"), generator)

        stats = compute_statistics(include_categories=True)

        assert stats["totalComplaints"] == 3
        assert stats["averageResolutionDays"] is None
        assert stats["byCategory"] == [
            {"category": "Water Supply", "count": 2},
            {"category": "Electricity", "count": 1},
        ]


class TestRollback:
    def test_failed_creation_leaves_no_rows(self, app_ctx, generator, complaint_payload, monkeypatch):
        session = db.session()

        def failing_commit():
            session.flush()
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(session, "commit", failing_commit)
        payload = complaint_payload(
            reporter_type="verified",
            aadhaar={"aadhaar_number": "123456789012"},
            attachments=[{"filename": "pothole.jpg"}],
        )

        with pytest.raises(SQLAlchemyError):
            create_complaint(payload, generator)

        assert Complaint.query.count() == 0
        assert ComplaintStatusHistory.query.count() == 0
        assert ComplaintAttachment.query.count() == 0
        assert ComplaintIdentityRecord.query.count() == 0

    def test_failed_status_update_keeps_status(self, app_ctx, generator, complaint_payload, monkeypatch):
        complaint = create_complaint(complaint_payload(), generator)
        session = db.session()

        def failing_add(instance, *args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("database is locked"))

        monkeypatch.setattr(session, "add", failing_add)

        with pytest.raises(SQLAlchemyError):
            update_status(complaint.complaint_id, "resolved", None, None)

        monkeypatch.undo()
        reloaded = db.session.get(Complaint, complaint.id)
        assert reloaded.status == "submitted"
        assert reloaded.resolved_at is None
        assert ComplaintStatusHistory.query.filter_by(complaint_id=complaint.id).count() == 1
