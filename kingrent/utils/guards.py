# kingrent/utils/guards.py

from __future__ import annotations

from functools import wraps
from typing import Callable, Any

from flask import abort
from flask_login import login_required, current_user


ADMIN_ROLES = {"admin"}
WRITE_ROLES = {"admin", "staff"}


def _role(user) -> str:
    return (getattr(user, "role", "") or "").strip().lower()


def admin_required(view: Callable[..., Any]) -> Callable[..., Any]:
    """
    Allow only admin.
    Returns 403 for all other logged-in roles.
    """
    @wraps(view)
    @login_required
    def wrapped(*args, **kwargs):
        if _role(current_user) not in ADMIN_ROLES:
            abort(403)
        return view(*args, **kwargs)

    return wrapped


def role_required(*allowed_roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Generic role gate:
        @role_required("admin", "staff")
        def view(): ...
    """
    def decorator(view: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(view)
        @login_required
        def wrapped(*args, **kwargs):
            if _role(current_user) not in allowed_roles:
                abort(403)
            return view(*args, **kwargs)
        return wrapped
    return decorator


# read_only users can see everything but change nothing
write_required = role_required(*sorted(WRITE_ROLES))
