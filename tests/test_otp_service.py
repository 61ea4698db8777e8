"""Tests for one-time code issuance, verification, and sweeping.

Coverage:
- A correct code verifies exactly once
- Check order: expiry, then attempt exhaustion, then value match
- Remaining-attempt counts on mismatch
- Issuance cleanup keeps only fresh unused codes; verification prefers the newest
- Failed delivery leaves nothing behind
- Expiry sweep
"""

from datetime import timedelta

import pytest

from extensions import db
from models import OneTimeCode, User, utcnow
from tests.conftest import FailingSmsNotifier
from utils.errors import CodeExpired, CodeNotFound, Internal, InvalidCode, TooManyAttempts
from utils.otp_service import OtpPolicy, issue_code, sweep_expired_codes, verify_code

PHONE = "+911234567890"
POLICY = OtpPolicy(length=6, ttl_seconds=300, max_attempts=3)


def _issue(sms, phone=PHONE, now=None) -> str:
    issue_code(phone, sms, POLICY, now=now)
    return sms.last_code(phone)


class TestIssueCode:
    def test_creates_user_and_code(self, app_ctx, sms):
        issued = issue_code(PHONE, sms, POLICY)

        assert issued.expires_in == 300
        code = sms.last_code(PHONE)
        assert len(code) == 6 and code.isdigit()
        user = User.query.filter_by(phone=PHONE).one()
        assert user.is_verified is False
        assert OneTimeCode.query.filter_by(phone=PHONE, is_used=False).count() == 1

    def test_reissue_keeps_single_user(self, app_ctx, sms):
        _issue(sms)
        _issue(sms)

        assert User.query.filter_by(phone=PHONE).count() == 1
        assert OneTimeCode.query.filter_by(phone=PHONE).count() == 2

    def test_cleanup_removes_used_and_expired_codes(self, app_ctx, sms):
        start = utcnow()
        _issue(sms, now=start - timedelta(minutes=10))
        code = _issue(sms, now=start - timedelta(seconds=30))
        verify_code(PHONE, code, POLICY, now=start)

        _issue(sms, now=start)

        remaining = OneTimeCode.query.filter_by(phone=PHONE).all()
        assert len(remaining) == 1
        assert remaining[0].is_used is False

    def test_delivery_failure_rolls_back(self, app_ctx):
        with pytest.raises(Internal) as excinfo:
            issue_code(PHONE, FailingSmsNotifier(), POLICY)

        assert excinfo.value.message == "Failed to send OTP"
        assert OneTimeCode.query.count() == 0
        assert User.query.count() == 0


class TestVerifyCode:
    def test_correct_code_verifies_once(self, app_ctx, sms):
        code = _issue(sms)

        user = verify_code(PHONE, code, POLICY)

        assert user.phone == PHONE
        assert user.is_verified is True
        assert user.last_login is not None
        with pytest.raises(CodeNotFound):
            verify_code(PHONE, code, POLICY)

    def test_unknown_phone(self, app_ctx):
        with pytest.raises(CodeNotFound) as excinfo:
            verify_code("+919999999999", "123456", POLICY)
        assert excinfo.value.status_code == 400

    def test_wrong_code_reports_remaining_attempts(self, app_ctx, sms):
        code = _issue(sms)
        wrong = "000000" if code != "000000" else "111111"

        remaining = []
        for _ in range(3):
            with pytest.raises(InvalidCode) as excinfo:
                verify_code(PHONE, wrong, POLICY)
            remaining.append(excinfo.value.attempts_remaining)

        assert remaining == [2, 1, 0]
        assert OneTimeCode.query.filter_by(phone=PHONE).one().attempts == 3

    def test_fourth_attempt_fails_even_with_correct_code(self, app_ctx, sms):
        code = _issue(sms)
        wrong = "000000" if code != "000000" else "111111"
        for _ in range(3):
            with pytest.raises(InvalidCode):
                verify_code(PHONE, wrong, POLICY)

        with pytest.raises(TooManyAttempts):
            verify_code(PHONE, code, POLICY)
        assert OneTimeCode.query.filter_by(phone=PHONE).count() == 0

    def test_expired_code_fails_even_when_correct(self, app_ctx, sms):
        start = utcnow()
        code = _issue(sms, now=start)

        with pytest.raises(CodeExpired):
            verify_code(PHONE, code, POLICY, now=start + timedelta(seconds=301))
        assert OneTimeCode.query.filter_by(phone=PHONE).count() == 0

    def test_expiry_checked_before_attempts(self, app_ctx, sms):
        start = utcnow()
        code = _issue(sms, now=start)
        record = OneTimeCode.query.filter_by(phone=PHONE).one()
        record.attempts = 3
        db.session.commit()

        with pytest.raises(CodeExpired):
            verify_code(PHONE, code, POLICY, now=start + timedelta(seconds=301))

    def test_newest_code_wins_and_older_codes_are_discarded(self, app_ctx, sms):
        start = utcnow()
        older = _issue(sms, now=start - timedelta(seconds=20))
        newer = _issue(sms, now=start - timedelta(seconds=10))

        if older != newer:
            with pytest.raises(InvalidCode):
                verify_code(PHONE, older, POLICY, now=start)

        verify_code(PHONE, newer, POLICY, now=start)

        assert OneTimeCode.query.filter_by(phone=PHONE, is_used=False).count() == 0


class TestSweep:
    def test_removes_only_expired_codes(self, app_ctx, sms):
        start = utcnow()
        _issue(sms, phone="+911111111111", now=start - timedelta(hours=1))
        _issue(sms, phone="+912222222222", now=start)

        removed = sweep_expired_codes(now=start)

        assert removed == 1
        assert [c.phone for c in OneTimeCode.query.all()] == ["+912222222222"]

    def test_sweeper_run_once(self, app, sms):
        with app.app_context():
            _issue(sms, now=utcnow() - timedelta(hours=1))

        assert app.extensions["otp_sweeper"].run_once() == 1
        assert app.extensions["otp_sweeper"].running is False
