"""SMS dispatch for one-time codes: MSG91 gateway in production, log output elsewhere."""
from __future__ import annotations

import logging

import requests

from utils.logger import mask_phone


class SmsDeliveryError(Exception):
    """Raised when a one-time code could not be handed to the SMS gateway."""


def otp_message(code: str, ttl_seconds: int) -> str:
    minutes = max(ttl_seconds // 60, 1)
    return f"Your CivicSecure verification code is {code}. Valid for {minutes} minutes."


class ConsoleSmsNotifier:
    """Development transport: writes the code to the application log."""

    def __init__(self, logger: logging.Logger) -> None:
        self.logger = logger

    def send_otp(self, phone: str, code: str, ttl_seconds: int) -> None:
        self.logger.info("Development OTP for %s: %s", phone, code)


class Msg91SmsNotifier:
    def __init__(self, api_key: str, sender_id: str, url: str, logger: logging.Logger, timeout: int = 10) -> None:
        self.api_key = api_key
        self.sender_id = sender_id
        self.url = url
        self.logger = logger
        self.timeout = timeout

    def send_otp(self, phone: str, code: str, ttl_seconds: int) -> None:
        if not self.api_key:
            raise SmsDeliveryError("MSG91 API key is not configured")
        params = {
            "authkey": self.api_key,
            "mobiles": phone.lstrip("+"),
            "message": otp_message(code, ttl_seconds),
            "sender": self.sender_id,
            "route": 4,
        }
        try:
            response = requests.get(self.url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            self.logger.warning("MSG91 request failed", extra={"phone": mask_phone(phone), "error": str(exc)})
            raise SmsDeliveryError("SMS gateway unreachable") from exc

        body = response.text or ""
        if not response.ok or "ERROR" in body.upper():
            self.logger.warning(
                "MSG91 rejected message",
                extra={"phone": mask_phone(phone), "status": response.status_code, "body": body[:200]},
            )
            raise SmsDeliveryError(f"SMS gateway returned status {response.status_code}")
        self.logger.info("OTP SMS dispatched", extra={"phone": mask_phone(phone)})


def build_notifier(config, logger: logging.Logger):
    provider = (config.get("SMS_PROVIDER") or "console").lower()
    if provider == "msg91":
        return Msg91SmsNotifier(
            api_key=config.get("MSG91_API_KEY", ""),
            sender_id=config.get("MSG91_SENDER_ID", "CIVSEC"),
            url=config.get("MSG91_URL"),
            logger=logger,
            timeout=int(config.get("SMS_TIMEOUT_SECONDS", 10)),
        )
    if provider == "console":
        return ConsoleSmsNotifier(logger)
    raise ValueError(f"Unknown SMS_PROVIDER: {provider}")
