"""Blueprint registration, service index, and health probe."""
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import isoformat, utcnow
from .auth import auth_bp
from .complaints import complaints_bp

main_bp = Blueprint("main", __name__)

ENDPOINTS = {
    "health": "GET /api/health",
    "sendOtp": "POST /api/send-otp",
    "verifyOtp": "POST /api/verify-otp",
    "validateToken": "GET /api/validate-token",
    "updateProfile": "PUT /api/user/profile",
    "createComplaint": "POST /api/complaints",
    "createAnonymousComplaint": "POST /api/complaints/anonymous",
    "myComplaints": "GET /api/complaints/my",
    "complaintDetail": "GET /api/complaints/:id",
    "updateStatus": "PUT /api/complaints/:id/status",
    "myStats": "GET /api/complaints/stats/my",
    "systemStats": "GET /api/complaints/stats",
    "recentComplaints": "GET /api/complaints/recent",
    "trackComplaint": "GET /api/track/:complaintId",
}


@main_bp.route("/")
def index():
    return jsonify(
        {
            "success": True,
            "message": "CivicSecure API",
            "version": current_app.config.get("API_VERSION", "1.0.0"),
            "endpoints": ENDPOINTS,
        }
    )


@main_bp.route("/api/health")
def health():
    started = time.perf_counter()
    uptime = round(time.monotonic() - current_app.extensions["started_at"], 3)
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Health check failed", extra={"error": str(exc)})
        body = {
            "success": False,
            "status": "unhealthy",
            "message": "Database connection failed",
            "timestamp": isoformat(utcnow()),
            "database": {"connected": False},
            "server": {"uptime": uptime},
        }
        if current_app.config.get("EXPOSE_ERROR_DETAIL"):
            body["error"] = str(exc)
        return jsonify(body), 500

    elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
    return jsonify(
        {
            "success": True,
            "status": "healthy",
            "timestamp": isoformat(utcnow()),
            "database": {"connected": True, "responseTime": f"{elapsed_ms}ms"},
            "server": {"uptime": uptime},
        }
    )


__all__ = ["main_bp", "auth_bp", "complaints_bp"]
