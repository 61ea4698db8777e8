"""Complaint intake, owner views, status transitions, and the public tracking feed."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from models import isoformat
from utils.complaint_service import (
    ComplaintFilters,
    PageRequest,
    compute_statistics,
    create_complaint,
    get_complaint_detail,
    list_complaints,
    recent_complaints,
    track_complaint,
    update_status,
)
from utils.errors import NotFound, ValidationError
from utils.validation import clean_complaint_payload, parse_int

complaints_bp = Blueprint("complaints", __name__)


def _submission_response(complaint):
    return (
        jsonify(
            {
                "success": True,
                "message": "Complaint submitted successfully",
                "data": {
                    "complaintId": complaint.complaint_id,
                    "id": complaint.id,
                    "status": complaint.status,
                    "createdAt": isoformat(complaint.created_at),
                    "tracking": {
                        "complaintNumber": complaint.complaint_id,
                        "status": complaint.status,
                        "submittedAt": isoformat(complaint.created_at),
                    },
                },
            }
        ),
        201,
    )


def _submit(user):
    payload = clean_complaint_payload(request.get_json(silent=True))
    complaint = create_complaint(payload, current_app.extensions["tracking_ids"], user=user)
    return _submission_response(complaint)


@complaints_bp.route("/complaints", methods=["POST"])
@login_required
def submit_complaint():
    return _submit(current_user._get_current_object())


@complaints_bp.route("/complaints/anonymous", methods=["POST"])
def submit_anonymous_complaint():
    return _submit(None)


@complaints_bp.route("/complaints/my", methods=["GET"])
@login_required
def my_complaints():
    args = request.args
    config = current_app.config
    filters = ComplaintFilters(
        owner_id=current_user.id,
        status=args.get("status") or None,
        category=args.get("category") or None,
        priority=args.get("priority") or None,
    )
    page_request = PageRequest(
        page=parse_int(args.get("page"), 1),
        limit=parse_int(args.get("limit"), config["COMPLAINTS_DEFAULT_PAGE_SIZE"]),
        sort_by=args.get("sortBy") or "created_at",
        sort_order=args.get("sortOrder") or "desc",
    )
    page = list_complaints(filters, page_request, max_limit=config["COMPLAINTS_MAX_PAGE_SIZE"])
    return jsonify(
        {
            "success": True,
            "data": {
                "complaints": [c.to_dict() for c in page.items],
                "pagination": page.pagination(),
            },
        }
    )


@complaints_bp.route("/complaints/stats/my", methods=["GET"])
@login_required
def my_statistics():
    return jsonify({"success": True, "stats": compute_statistics(owner_id=current_user.id)})


@complaints_bp.route("/complaints/stats", methods=["GET"])
def system_statistics():
    return jsonify({"success": True, "stats": compute_statistics(include_categories=True)})


@complaints_bp.route("/complaints/recent", methods=["GET"])
def recent_feed():
    max_limit = current_app.config["COMPLAINTS_MAX_PAGE_SIZE"]
    limit = min(max(parse_int(request.args.get("limit"), 10), 1), max_limit)
    offset = max(parse_int(request.args.get("offset"), 0), 0)
    complaints = recent_complaints(limit, offset)
    return jsonify({"success": True, "complaints": complaints, "count": len(complaints)})


@complaints_bp.route("/complaints/<string:identifier>", methods=["GET"])
@login_required
def complaint_detail(identifier):
    detail = get_complaint_detail(identifier)
    # Other users' complaints are indistinguishable from missing ones.
    if detail["userId"] != current_user.id:
        current_app.logger.warning(
            "Complaint access denied",
            extra={"complaint_id": detail["complaintId"], "user_id": current_user.id},
        )
        raise NotFound("Complaint not found")
    return jsonify({"success": True, "data": detail})


@complaints_bp.route("/complaints/<string:identifier>/status", methods=["PUT"])
@login_required
def change_status(identifier):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        payload = {}
    status = payload.get("status")
    if not isinstance(status, str) or not status.strip():
        raise ValidationError("Status is required")
    notes = payload.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("Notes must be text")

    complaint = update_status(identifier, status.strip(), notes, current_user._get_current_object())
    return jsonify(
        {
            "success": True,
            "message": "Complaint status updated successfully",
            "data": {
                "complaintId": complaint.complaint_id,
                "status": complaint.status,
                "updatedAt": isoformat(complaint.updated_at),
            },
        }
    )


@complaints_bp.route("/track/<string:tracking_id>", methods=["GET"])
def track(tracking_id):
    return jsonify({"success": True, "complaint": track_complaint(tracking_id)})
