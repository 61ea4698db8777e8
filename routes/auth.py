"""Phone OTP login, session token validation, and profile updates."""
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import utcnow
from utils.decorators import log_phone, rate_limited
from utils.otp_service import OtpPolicy, issue_code, verify_code
from utils.security import mint_session_token
from utils.validation import ProfileForm, SendOtpForm, VerifyOtpForm, formdata_from_json, validated

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/send-otp", methods=["POST"])
@rate_limited("otp")
def send_otp():
    payload = request.get_json(silent=True) or {}
    form = validated(SendOtpForm(formdata=formdata_from_json(payload, {"phoneNumber": "phone_number"})))
    phone = form.phone_number.data

    issued = issue_code(
        phone,
        current_app.extensions["sms_notifier"],
        OtpPolicy.from_config(current_app.config),
    )
    current_app.logger.info("OTP requested", extra=log_phone(phone))
    return jsonify({"success": True, "message": "OTP sent successfully", "expiresIn": issued.expires_in})


@auth_bp.route("/verify-otp", methods=["POST"])
@rate_limited("verify")
def verify_otp():
    payload = request.get_json(silent=True) or {}
    policy = OtpPolicy.from_config(current_app.config)
    form = validated(
        VerifyOtpForm(
            formdata=formdata_from_json(payload, {"phoneNumber": "phone_number", "otp": "otp"}),
            otp_length=policy.length,
        )
    )

    user = verify_code(form.phone_number.data, form.otp.data, policy)
    token = mint_session_token(
        user.id,
        user.phone,
        current_app.config["JWT_SECRET"],
        current_app.config.get("JWT_EXPIRY_DAYS", 30),
    )
    profile = user.public_profile()
    profile["isNewUser"] = user.is_new_user
    return jsonify({"success": True, "message": "Login successful", "token": token, "user": profile})


@auth_bp.route("/validate-token", methods=["GET"])
@login_required
def validate_token():
    return jsonify({"success": True, "user": current_user.public_profile()})


@auth_bp.route("/user/profile", methods=["PUT"])
@login_required
def update_profile():
    payload = request.get_json(silent=True) or {}
    form = validated(ProfileForm(formdata=formdata_from_json(payload, {"name": "name"})))

    user = current_user._get_current_object()
    try:
        user.name = form.name.data
        user.updated_at = utcnow()
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while updating profile")
        raise

    current_app.logger.info("Profile updated", extra={"user_id": user.id})
    return jsonify({"success": True, "message": "Profile updated successfully", "user": user.public_profile()})
