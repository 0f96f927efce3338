from flask import render_template, request, redirect, url_for, flash, jsonify
from flask_login import login_user, logout_user, current_user
from sqlalchemy import func
from flask_wtf.csrf import generate_csrf

from app.extensions import db, limiter, csrf
from app.models.user import User
from app.services.reconciliation import reconcilers
from . import bp

PASSWORD_MIN_LEN = 6


def _login_email_scope():
    email = (request.form.get("email") or "").strip().lower()
    # Keep a stable scope even if email is blank
    return f"login-email:{email or 'missing'}"


# Only allow internal paths like "/dashboard" (no external URLs or "//" protocol-relative).
def _safe_next_path(next_raw: str) -> str:
    next_raw = (next_raw or "").strip()
    if next_raw.startswith("/") and not next_raw.startswith("//"):
        return next_raw
    return url_for("dashboard.index")


def _find_user(email: str):
    return db.session.execute(
        db.select(User).where(func.lower(User.email) == func.lower(email))
    ).scalar_one_or_none()


@bp.get("/login")
def login_get():
    if current_user.is_authenticated:
        return redirect(_safe_next_path(request.args.get("next")))
    return render_template("auth/login.html")


@bp.post("/login")
@limiter.limit("10 per minute; 100 per hour")
@limiter.limit("5 per minute; 20 per hour", key_func=_login_email_scope)
def login_post():
    email = (request.form.get("email") or "").strip()
    password = request.form.get("password") or ""

    if not email or not password:
        return render_template("auth/login.html", error="Email and password are required", email=email), 400

    user = _find_user(email)
    if not user or not user.check_password(password) or not user.is_active:
        return render_template("auth/login.html", error="Invalid credentials", email=email), 400

    # Identity switch: the previous user's board stops listening
    if current_user.is_authenticated and current_user.id != user.id:
        reconcilers.release(current_user.id)
        logout_user()

    login_user(user)
    flash("Welcome back!", "success")
    return redirect(_safe_next_path(request.args.get("next")))


@bp.get("/register")
def register_get():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))
    return render_template("auth/register.html")


@bp.post("/register")
@limiter.limit("5 per minute; 20 per hour")
def register_post():
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))

    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    confirm = request.form.get("confirm_password") or ""

    errors = []
    if not email:
        errors.append("Email is required.")
    if password != confirm:
        errors.append("Passwords do not match.")
    if len(password) < PASSWORD_MIN_LEN:
        errors.append(f"Password must be at least {PASSWORD_MIN_LEN} characters.")
    if email and _find_user(email):
        errors.append("An account with that email already exists. Try signing in.")

    if errors:
        return render_template("auth/register.html", errors=errors, email=email), 400

    user = User(email=email)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()

    flash("Account Created! You can sign in now.", "success")
    return redirect(url_for("auth.login_get"))


def _sign_out():
    if current_user.is_authenticated:
        reconcilers.release(current_user.id)
        logout_user()
        flash("Signed out successfully", "success")
    return redirect(url_for("auth.login_get"))


@bp.get("/logout")
def logout():
    return _sign_out()


@bp.post("/logout")
def logout_post():
    return _sign_out()


@csrf.exempt
@bp.get("/csrf-token")
def csrf_token():
    token = generate_csrf()
    resp = jsonify({"csrf_token": token})
    # keep tokens fresh; avoid caches holding stale tokens
    resp.headers["Cache-Control"] = "no-store"
    return resp
