import os
from flask import Flask, render_template, request

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=False)


from .config import get_config
from .extensions import db, migrate, csrf, login_manager, limiter
from .security import init_security
from .observability import init_logging, init_sentry


def _wants_json() -> bool:
    accept = (request.headers.get("Accept") or "").lower()
    return "application/json" in accept or request.is_json or request.path.endswith(".json")


def create_app():
    app = Flask(__name__, template_folder="templates", static_folder="static")

    # ---- Rate limiting storage ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())
    app.config["APP_ENV"] = app_env

    # --- Required env validation for prod-like envs (staging/production) ---
    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        _require("SECRET_KEY")
        _require("DATABASE_URL")
        _require("CLASSIFIER_CALLBACK_SECRET")

    # --- Observability & Security ---
    init_logging(app)
    init_sentry(app)
    if app_env in ("staging", "production"):
        init_security(app)

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory="migrations")
    csrf.init_app(app)
    login_manager.init_app(app)
    limiter.init_app(app)

    # Change feed + per-user status reconciliation
    from .models.feedback import Feedback
    from .services.notifier import notifier
    from .services.reconciliation import reconcilers
    from .services.records import FeedbackStore
    notifier.watch_session(db.session, Feedback)
    reconcilers.init_app(app, store=FeedbackStore(), notifier=notifier)

    # Blueprints (explicit, consistent prefixes)
    from .blueprints.main import bp as main_bp
    from .blueprints.auth import bp as auth_bp
    from .blueprints.dashboard import bp as dashboard_bp
    from .blueprints.webhooks import bp as webhooks_bp

    app.register_blueprint(main_bp)                              # "/"
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(dashboard_bp, url_prefix="/dashboard")
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Exempt Flask's static endpoint from default/global limits
    if "static" in app.view_functions:
        limiter.exempt(app.view_functions["static"])

    @app.context_processor
    def inject_globals():
        """Inject global template variables."""
        from datetime import datetime, timezone
        return {
            "current_year": datetime.now(timezone.utc).year,
            "SITE_NAME": app.config.get("SITE_NAME", "Feedback Portal"),
            "APP_ENV": app_env,
        }

    # Health
    @app.get("/healthz")
    @limiter.exempt
    def healthz():
        return {"status": "ok"}, 200

    # Error handlers: JSON for API callers, HTML otherwise
    @app.errorhandler(404)
    def not_found(e):
        if _wants_json():
            return {"error": "not_found", "code": 404}, 404
        return render_template("errors/error.html", code=404, message="Not Found"), 404

    @app.errorhandler(500)
    def server_error(e):
        if _wants_json():
            return {"error": "server_error", "code": 500}, 500
        return render_template("errors/error.html", code=500, message="Internal Server Error"), 500

    # CSRF error handler (clean 400 instead of generic 500)
    from flask_wtf.csrf import CSRFError

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        if _wants_json():
            return {"error": "csrf_failed", "code": 400, "detail": e.description}, 400
        return render_template("errors/error.html", code=400, message=f"CSRF validation failed: {e.description}"), 400

    @app.errorhandler(401)
    def unauthorized(e):
        if _wants_json():
            return {"error": "unauthorized", "code": 401}, 401
        return render_template("errors/error.html", code=401, message="Unauthorized"), 401

    # 429 Too Many Requests: consistent JSON/HTML with Retry-After
    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
        if _wants_json():
            payload = {"error": "rate_limited", "code": 429}
            if retry_after is not None:
                payload["retry_after"] = int(retry_after)
            return (payload, 429, headers)
        return (render_template("errors/error.html", code=429, message="Too many requests. Please slow down."), 429, headers)

    # CLI commands (ops-grade utilities)
    from .cli import register_cli
    register_cli(app)

    if not app.config.get("N8N_WEBHOOK_URL"):
        app.logger.warning("N8N_WEBHOOK_URL not set; new feedback will not be sent for classification")

    return app
