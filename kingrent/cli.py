# kingrent/cli.py
from __future__ import annotations

import json
import os

import click
from flask import Flask

from .extensions import db
from .models import AppRole, User
from .services.mailer import MailerNotConfigured
from .services.reminders import run_payment_reminders
from .utils.parsers import parse_uuid
from .utils.passwords import hash_password, validate_password


def register_commands(app: Flask) -> None:
    @app.cli.command("send-payment-reminders")
    @click.option("--booking-id", default=None, help="Only process this booking.")
    def send_payment_reminders(booking_id):
        """Send due balance and security-deposit reminders (run hourly from cron)."""
        bid = None
        if booking_id:
            bid = parse_uuid(booking_id)
            if bid is None:
                raise click.BadParameter("not a UUID", param_hint="--booking-id")

        try:
            result = run_payment_reminders(booking_id=bid)
        except MailerNotConfigured as exc:
            app.logger.error("Reminder run aborted: %s", exc)
            raise click.ClickException(str(exc)) from exc

        click.echo(json.dumps(result, indent=2))
        failed = [r for r in result["results"] if not r.get("sent")]
        if failed:
            raise SystemExit(1)

    @app.cli.command("create-admin")
    @click.option("--email", default=lambda: os.getenv("ADMIN_EMAIL"), help="Defaults to $ADMIN_EMAIL.")
    @click.option("--name", default=lambda: os.getenv("ADMIN_NAME", "KingRent Admin"))
    @click.option("--password", default=lambda: os.getenv("ADMIN_PASSWORD"), help="Defaults to $ADMIN_PASSWORD.")
    def create_admin(email, name, password):
        """Create an admin user, or promote and reset an existing one."""
        email = (email or "").strip().lower()
        if not email or not password:
            raise click.UsageError("email and password are required (options or ADMIN_EMAIL / ADMIN_PASSWORD)")

        ok, msg = validate_password(password)
        if not ok:
            raise click.UsageError(msg)

        user = User.query.filter(db.func.lower(User.email) == email).first()
        if user is None:
            user = User(email=email, name=name)
            db.session.add(user)
            action = "Created"
        else:
            action = "Updated"

        user.role = AppRole.ADMIN.value
        user.is_active = True
        user.password_hash = hash_password(password)
        user.must_change_password = True
        user.failed_login_attempts = 0
        user.locked_until = None

        db.session.commit()
        click.echo(f"{action} admin: {email}")
