"""Request guards shared by the API blueprints."""
from functools import wraps

from flask import current_app, request

from utils.errors import RateLimited
from utils.logger import mask_phone
from utils.security import client_address


def enforce_rate_limit(bucket: str) -> None:
    limiter = current_app.extensions["rate_limiter"]
    address = client_address()
    allowed, retry_after = limiter.hit(bucket, address)
    if allowed:
        return

    current_app.logger.warning(
        "Rate limit exceeded",
        extra={"bucket": bucket, "address": address, "path": request.path, "retry_after": retry_after},
    )
    if bucket == "otp":
        raise RateLimited("Too many OTP requests. Please try again later.", retry_after=retry_after)
    raise RateLimited(retry_after=retry_after)


def rate_limited(bucket):
    def decorator(view_func):
        @wraps(view_func)
        def wrapped(*args, **kwargs):
            enforce_rate_limit(bucket)
            return view_func(*args, **kwargs)

        return wrapped

    return decorator


def log_phone(phone: str | None) -> dict:
    return {"phone": mask_phone(phone), "address": client_address()}
