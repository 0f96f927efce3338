from flask import redirect, url_for
from flask_login import current_user

from . import bp


@bp.get("/")
def home():
    """Session gate: signed-in viewers go to their dashboard, everyone else to login."""
    if current_user.is_authenticated:
        return redirect(url_for("dashboard.index"))
    return redirect(url_for("auth.login_get"))
