import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import func

from app.extensions import db
from app.models.feedback import Feedback, STATUS_PROCESSED
from app.models.user import User
from app.services.classifier import ClassifierTrigger, ClassifierTriggerError
from app.services.records import FeedbackStore, RecordNotFound


def _user_by_email(email: str):
    return db.session.query(User).filter(func.lower(User.email) == email.strip().lower()).one_or_none()


@click.group()
def users():
    """User management."""


@users.command("create")
@click.option("--email", required=True)
@click.option("--password", required=True)
@with_appcontext
def users_create(email, password):
    if _user_by_email(email):
        raise click.ClickException("User already exists")
    if len(password) < 6:
        raise click.ClickException("Password must be at least 6 characters")

    user = User(email=email.strip().lower(), is_active=True)
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    click.echo(f"User created id={user.id} email={user.email}")


@click.group()
def feedback():
    """Feedback records and classification ops."""


@feedback.command("list")
@click.option("--email", required=True, help="Owner email")
@with_appcontext
def feedback_list(email):
    user = _user_by_email(email)
    if not user:
        raise click.ClickException("User not found")
    for row in FeedbackStore().list_for_owner(user.id):
        click.echo(f"{row['id']}  {row['status']:<10} {row['category'] or '-':<12} {row['priority'] or '-':<8} {row['title']}")


@feedback.command("classify")
@click.argument("record_id")
@click.option("--category", default=None)
@click.option("--priority", default=None)
@click.option("--status", default=STATUS_PROCESSED, show_default=True)
@with_appcontext
def feedback_classify(record_id, category, priority, status):
    """Write a classification result by hand (stands in for the workflow)."""
    try:
        row = FeedbackStore().apply_classification(record_id, status=status, category=category, priority=priority)
    except RecordNotFound:
        raise click.ClickException(f"Feedback {record_id} not found")
    click.echo(f"Updated {row['id']} status={row['status']} category={row['category']} priority={row['priority']}")


@feedback.command("trigger")
@click.argument("record_id")
@with_appcontext
def feedback_trigger(record_id):
    """Send one record to the classification webhook again."""
    row = db.session.get(Feedback, record_id)
    if row is None:
        raise click.ClickException(f"Feedback {record_id} not found")
    trigger = ClassifierTrigger.from_config(current_app.config)
    if not trigger.configured:
        raise click.ClickException("N8N_WEBHOOK_URL is not configured")
    try:
        result = trigger.trigger(row)
    except ClassifierTriggerError as exc:
        raise click.ClickException(f"Trigger failed: {exc}")
    click.echo(f"Triggered {record_id}: {result}")


def register_cli(app):
    app.cli.add_command(users)
    app.cli.add_command(feedback)
