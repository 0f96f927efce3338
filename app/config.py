import os


def _env_bool(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).lower() == "true"


class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    WTF_CSRF_TIME_LIMIT = None

    # Database (env in prod; dev/test may use default)
    try:
        from dotenv import dotenv_values
        _ENV_FALLBACK = dotenv_values(".env")
    except OSError:
        _ENV_FALLBACK = {}
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL") or _ENV_FALLBACK.get("DATABASE_URL") or "sqlite:///feedback.db"
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Cookies: secure-by-default
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    SITE_NAME = os.getenv("SITE_NAME", "Feedback Portal")

    # --- Classifier trigger (external workflow webhook) ---
    # No defaults for credentials; a missing URL skips the call with a warning.
    N8N_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL")
    N8N_WEBHOOK_USER = os.getenv("N8N_WEBHOOK_USER")
    N8N_WEBHOOK_PASSWORD = os.getenv("N8N_WEBHOOK_PASSWORD")
    CLASSIFIER_TIMEOUT = float(os.getenv("CLASSIFIER_TIMEOUT", "10"))

    # Shared secret for the classifier's write-back webhook
    CLASSIFIER_CALLBACK_SECRET = os.getenv("CLASSIFIER_CALLBACK_SECRET")

    # --- Status reconciliation (poll fallback) ---
    POLL_INITIAL_DELAY = float(os.getenv("POLL_INITIAL_DELAY", "1.5"))
    POLL_INTERVAL = float(os.getenv("POLL_INTERVAL", "2.0"))
    POLL_MAX_ATTEMPTS = int(os.getenv("POLL_MAX_ATTEMPTS", "5"))
    # One "Feedback Processed!" toast per record even when push and poll both see it
    RECONCILE_DEDUPE_NOTIFICATIONS = _env_bool("RECONCILE_DEDUPE_NOTIFICATIONS", "true")
    # Boards not polled for this many seconds are stopped; 0 keeps them until logout
    RECONCILER_IDLE_TTL = float(os.getenv("RECONCILER_IDLE_TTL", "900"))

    # Run trigger/poll work inline instead of on background threads
    BACKGROUND_SYNC = _env_bool("BACKGROUND_SYNC", "false")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # Required in production; create_app() refuses to boot without them
    SECRET_KEY = os.environ.get("SECRET_KEY")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL")
    SESSION_COOKIE_SECURE = True
    REMEMBER_COOKIE_SECURE = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get("TEST_DATABASE_URL", "sqlite:///:memory:")
    SESSION_COOKIE_SECURE = False
    REMEMBER_COOKIE_SECURE = False
    BACKGROUND_SYNC = True
    RATELIMIT_ENABLED = False
    POLL_INITIAL_DELAY = 0.0
    POLL_INTERVAL = 0.0


_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
