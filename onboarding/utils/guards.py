# onboarding/utils/guards.py
from __future__ import annotations

from functools import wraps
from typing import Any, Callable

from flask import abort
from flask_login import current_user, login_required

from onboarding.constants import Role


def user_has_any_role(user, *roles: Role) -> bool:
    """Roles are a set: a user passes if they hold any of ``roles``."""
    if not user or not getattr(user, "is_authenticated", False):
        return False
    return bool(set(user.roles) & set(roles))


def admin_required(view: Callable[..., Any]) -> Callable[..., Any]:
    """Gate for /api/admin: 401 when anonymous, 403 without the ADMIN role."""

    @wraps(view)
    @login_required
    def guarded(*args, **kwargs):
        if not user_has_any_role(current_user, Role.ADMIN):
            abort(403)
        return view(*args, **kwargs)

    return guarded
