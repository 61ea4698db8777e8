"""Security helpers for headers, one-time codes, session tokens, and request rate limiting."""
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Dict, Tuple

import jwt
from flask import request

from utils.errors import BadToken, TokenExpired

JWT_ALGORITHM = "HS256"


def apply_security_headers(response, force_https: bool = False):
    """Apply headers suitable for a JSON API that is never rendered as a document."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cross-Origin-Resource-Policy", "same-site")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains")
    return response


def generate_otp(length: int = 6) -> str:
    digits = "0123456789"
    return "".join(secrets.choice(digits) for _ in range(length))


def client_address() -> str:
    """Peer address of the request. Forwarded headers are only trusted through ProxyFix."""
    return request.remote_addr or "unknown"


def bearer_token(header_value: str | None) -> str | None:
    if not header_value or not header_value.startswith("Bearer "):
        return None
    token = header_value[len("Bearer "):].strip()
    return token or None


def mint_session_token(user_id: int, phone: str, secret: str, expiry_days: int = 30) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "userId": user_id,
        "phone": phone,
        "timestamp": int(now.timestamp() * 1000),
        "iat": now,
        "exp": now + timedelta(days=expiry_days),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)


def decode_session_token(token: str, secret: str) -> dict:
    """Return the token claims, raising TokenExpired or BadToken on failure."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except jwt.InvalidTokenError as exc:
        raise BadToken() from exc
    if not claims.get("phone"):
        raise BadToken()
    return claims


class RateLimiter:
    """Fixed-window request counter keyed by bucket and client address.

    One instance is owned by the application. Counters live in process
    memory, so each worker process enforces its own caps.
    """

    def __init__(self, window_seconds: int, limits: Dict[str, int], enabled: bool = True) -> None:
        self.window_seconds = max(int(window_seconds), 1)
        self.limits = dict(limits)
        self.enabled = enabled
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._next_prune = 0.0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def _prune(self, current: float) -> None:
        if current < self._next_prune:
            return
        stale = [key for key, (started, _) in self._windows.items() if current - started >= self.window_seconds]
        for key in stale:
            del self._windows[key]
        self._next_prune = current + self.window_seconds

    def hit(self, bucket: str, key: str, now: float | None = None) -> Tuple[bool, int]:
        """Count one request. Returns (allowed, seconds until the window resets)."""
        limit = self.limits.get(bucket, 0)
        if not self.enabled or limit <= 0:
            return True, 0
        current = time.monotonic() if now is None else now
        with self._lock:
            self._prune(current)
            started, count = self._windows.get((bucket, key), (current, 0))
            if current - started >= self.window_seconds:
                started, count = current, 0
            count += 1
            self._windows[(bucket, key)] = (started, count)
        retry_after = max(int(started + self.window_seconds - current), 1)
        return count <= limit, retry_after

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._next_prune = 0.0
