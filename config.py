"""Environment-aware configuration for the Flask application."""
import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class BaseConfig:
    def __init__(self) -> None:
        # Defaults for local dev: SQLite db and non-empty secrets. Override via env for production.
        self.SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "dev-jwt-secret-change-me-before-deploying")
        self.JWT_EXPIRY_DAYS = int(os.getenv("JWT_EXPIRY_DAYS", 30))
        db_url = os.getenv("DATABASE_URL")
        if db_url:
            self.SQLALCHEMY_DATABASE_URI = db_url
        else:
            self.SQLALCHEMY_DATABASE_URI = os.getenv(
                "SQLITE_URL",
                f"sqlite:///{os.path.join(os.getcwd(), 'instance', 'civicsecure.db')}",
            )
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False
        self.SQLALCHEMY_ENGINE_OPTIONS = {
            "pool_size": int(os.getenv("DB_POOL_SIZE", 20)),
            "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", 10)),
            "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", 30)),
            "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", 1800)),
            "pool_pre_ping": True,
        }
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.LOG_DIR = os.getenv("LOG_DIR", os.path.join(os.getcwd(), "logs"))
        self.EXPOSE_ERROR_DETAIL = False

        # One-time code policy
        self.OTP_LENGTH = int(os.getenv("OTP_LENGTH", 6))
        self.OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", 300))
        self.OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", 3))
        self.OTP_SWEEP_INTERVAL_SECONDS = int(os.getenv("OTP_SWEEP_INTERVAL_SECONDS", 3600))
        self.OTP_SWEEP_ENABLED = _env_flag("OTP_SWEEP_ENABLED", "true")

        # SMS gateway
        self.SMS_PROVIDER = os.getenv("SMS_PROVIDER", "console").lower()
        self.MSG91_API_KEY = os.getenv("MSG91_API_KEY", "")
        self.MSG91_SENDER_ID = os.getenv("MSG91_SENDER_ID", "CIVSEC")
        self.MSG91_URL = os.getenv("MSG91_URL", "https://control.msg91.com/api/sendhttp.php")
        self.SMS_TIMEOUT_SECONDS = int(os.getenv("SMS_TIMEOUT_SECONDS", 10))

        # Per-address request caps over a shared window
        self.RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED", "true")
        # Number of trusted reverse proxies in front of the app; 0 means the peer address is the client.
        self.PROXY_FIX_X_FOR = int(os.getenv("PROXY_FIX_X_FOR", 0))
        self.RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 15 * 60))
        self.RATE_LIMIT_OTP = int(os.getenv("RATE_LIMIT_OTP", 5))
        self.RATE_LIMIT_VERIFY = int(os.getenv("RATE_LIMIT_VERIFY", 10))
        self.RATE_LIMIT_GENERAL = int(os.getenv("RATE_LIMIT_GENERAL", 100))

        self.COMPLAINTS_DEFAULT_PAGE_SIZE = int(os.getenv("COMPLAINTS_DEFAULT_PAGE_SIZE", 10))
        self.COMPLAINTS_MAX_PAGE_SIZE = int(os.getenv("COMPLAINTS_MAX_PAGE_SIZE", 50))
        self.MAX_CONTENT_LENGTH = int(os.getenv("MAX_REQUEST_BYTES", 1 * 1024 * 1024))


class DevelopmentConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = True
        self.ENV = "development"
        self.EXPOSE_ERROR_DETAIL = True


class ProductionConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.DEBUG = False
        self.ENV = "production"
        self.SMS_PROVIDER = os.getenv("SMS_PROVIDER", "msg91").lower()
        if self.SMS_PROVIDER == "console":
            raise RuntimeError("SMS_PROVIDER=console would log live OTPs; configure a gateway in production")
        # Signing secrets never fall back to a baked-in value outside development.
        self.SECRET_KEY = os.getenv("SECRET_KEY") or ""
        self.JWT_SECRET = os.getenv("JWT_SECRET") or ""
        if not self.JWT_SECRET:
            raise RuntimeError("JWT_SECRET must be set in production")
        if not self.SECRET_KEY:
            self.SECRET_KEY = self.JWT_SECRET


class TestingConfig(BaseConfig):
    def __init__(self) -> None:
        super().__init__()
        self.TESTING = True
        self.DEBUG = False
        self.ENV = "testing"
        self.SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite://")
        # SQLite in-memory uses a static pool; pool sizing options do not apply.
        self.SQLALCHEMY_ENGINE_OPTIONS = {}
        self.JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"
        self.SMS_PROVIDER = "console"
        self.OTP_SWEEP_ENABLED = False
        self.LOG_LEVEL = "WARNING"
