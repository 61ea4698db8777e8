"""Periodic removal of expired one-time codes on a daemon thread."""
import threading

from utils.otp_service import sweep_expired_codes


class OtpSweeper:
    """Runs ``sweep_expired_codes`` every ``interval`` seconds inside an app context."""

    def __init__(self, app, interval: int = 3600) -> None:
        self.app = app
        self.interval = max(int(interval), 1)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        with self.app.app_context():
            return sweep_expired_codes()

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.run_once()
            except Exception:
                self.app.logger.exception("Scheduled OTP sweep failed")

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="otp-sweeper", daemon=True)
        self._thread.start()
        self.app.logger.info("OTP sweeper started", extra={"interval": self.interval})

    def stop(self, timeout: float | None = 5) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
