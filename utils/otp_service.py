"""Phone verification by one-time code: issuance, verification, and expiry sweeps.

Each call runs as a single transaction on the request-scoped session. Issuance
commits only after the notifier accepted the code; every verification outcome
that changes a row commits that change before the error is raised, so failed
attempts are counted even though the request fails.

Two concurrent issuances for one phone can both pass the cleanup step and leave
two unused codes. Verification always picks the most recent unused code, and a
successful verification discards the older ones.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import OneTimeCode, User, utcnow
from utils.errors import CodeExpired, CodeNotFound, Internal, InvalidCode, TooManyAttempts
from utils.logger import mask_phone
from utils.security import generate_otp
from utils.sms_service import SmsDeliveryError


@dataclass(frozen=True)
class OtpPolicy:
    length: int = 6
    ttl_seconds: int = 300
    max_attempts: int = 3

    @classmethod
    def from_config(cls, config) -> "OtpPolicy":
        return cls(
            length=int(config.get("OTP_LENGTH", 6)),
            ttl_seconds=int(config.get("OTP_TTL_SECONDS", 300)),
            max_attempts=int(config.get("OTP_MAX_ATTEMPTS", 3)),
        )


@dataclass(frozen=True)
class IssuedCode:
    phone: str
    expires_at: datetime
    expires_in: int


def issue_code(phone: str, notifier, policy: OtpPolicy, now: datetime | None = None) -> IssuedCode:
    """Create a fresh code for ``phone`` and hand it to ``notifier``.

    The phone must already be validated. Raises ``Internal`` when delivery
    fails, in which case nothing written here is kept.
    """
    now = now or utcnow()
    try:
        User.find_or_create_by_phone(phone)
        OneTimeCode.query.filter(
            OneTimeCode.phone == phone,
            or_(OneTimeCode.is_used.is_(True), OneTimeCode.expires_at < now),
        ).delete(synchronize_session=False)

        code = generate_otp(policy.length)
        expires_at = now + timedelta(seconds=policy.ttl_seconds)
        db.session.add(OneTimeCode(phone=phone, code=code, expires_at=expires_at, attempts=0, created_at=now))
        db.session.flush()

        notifier.send_otp(phone, code, policy.ttl_seconds)
        db.session.commit()
    except SmsDeliveryError as exc:
        db.session.rollback()
        current_app.logger.warning("OTP delivery failed", extra={"phone": mask_phone(phone), "error": str(exc)})
        raise Internal("Failed to send OTP") from exc
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while issuing OTP")
        raise

    current_app.logger.info("OTP issued", extra={"phone": mask_phone(phone), "expires_at": expires_at.isoformat()})
    return IssuedCode(phone=phone, expires_at=expires_at, expires_in=policy.ttl_seconds)


def _latest_unused(phone: str) -> OneTimeCode | None:
    return (
        OneTimeCode.query.filter_by(phone=phone, is_used=False)
        .order_by(OneTimeCode.created_at.desc(), OneTimeCode.id.desc())
        .first()
    )


def verify_code(phone: str, submitted: str, policy: OtpPolicy, now: datetime | None = None) -> User:
    """Check ``submitted`` against the newest unused code for ``phone``.

    Order of checks: expiry, then attempt exhaustion, then the value itself.
    Returns the verified user on success.
    """
    now = now or utcnow()
    try:
        record = _latest_unused(phone)
        if record is None:
            raise CodeNotFound()

        if record.is_expired(now):
            db.session.delete(record)
            db.session.commit()
            raise CodeExpired()

        if record.attempts >= policy.max_attempts:
            db.session.delete(record)
            db.session.commit()
            raise TooManyAttempts()

        if record.code != submitted:
            remaining = policy.max_attempts - (record.attempts + 1)
            record.attempts = OneTimeCode.attempts + 1
            db.session.commit()
            current_app.logger.info("OTP mismatch", extra={"phone": mask_phone(phone), "remaining": remaining})
            raise InvalidCode(max(remaining, 0))

        record.is_used = True
        OneTimeCode.query.filter(
            OneTimeCode.phone == phone,
            OneTimeCode.is_used.is_(False),
            OneTimeCode.id != record.id,
        ).delete(synchronize_session=False)

        user = User.query.filter_by(phone=phone).one()
        user.is_verified = True
        user.last_login = now
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while verifying OTP")
        raise

    current_app.logger.info("OTP verified", extra={"phone": mask_phone(phone), "user_id": user.id})
    return user


def sweep_expired_codes(now: datetime | None = None) -> int:
    """Delete every code past its expiry, whatever its state. Returns the number removed."""
    now = now or utcnow()
    try:
        removed = OneTimeCode.query.filter(OneTimeCode.expires_at < now).delete(synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Database error while sweeping expired OTPs")
        raise
    if removed:
        current_app.logger.info("Cleaned up expired OTPs", extra={"removed": removed})
    return removed
