# onboarding/admin.py
from __future__ import annotations

import re

import sqlalchemy as sa
from flask import Blueprint, abort, current_app, jsonify, request
from flask_login import current_user
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .constants import Label, Language, Role
from .exceptions import DuplicateValueError, InvalidFieldError, InvalidStatusError, MissingFieldError
from .extensions import db
from .models import User
from .services.registry import get_notifier, get_services
from .services.tokens import TokenPurpose
from .utils.guards import admin_required

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

# -------------------------------------------------------------------
# Helpers / Constants
# -------------------------------------------------------------------
EMAIL_MAXLEN = 120
NAME_MAXLEN = 100
MIDDLE_NAME_MAXLEN = 50
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _clean_str(value, maxlen: int) -> str:
    return (str(value) if value is not None else "").strip()[:maxlen]


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _parse_set(enum_cls, values, field: str) -> set:
    if not isinstance(values, (list, tuple)):
        raise InvalidFieldError(f"{field} must be a list.", field=field)
    try:
        return {enum_cls(v) for v in values}
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidFieldError(f"{field} must only contain: {allowed}.", field=field) from None


def _parse_language(value) -> str:
    try:
        return Language(value or Language.NL.value).value
    except ValueError:
        raise InvalidFieldError("Unsupported language.", field="preferredLanguage") from None


def _get_user_or_404(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        abort(404)
    return user


def _commit_or_rollback(action: str) -> None:
    """Commit session; rollback + log on failure, mapping a duplicate email."""
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise DuplicateValueError("A user with this email already exists.", field="email") from None
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("%s failed", action)
        raise


def _issue_activation(user: User):
    token = get_services().tokens.issue(TokenPurpose.ACTIVATION)
    user.activation_token = token.value
    user.activation_expires_at = token.expires_at
    return token


# -------------------------------------------------------------------
# Users
# GET /api/admin/users
# -------------------------------------------------------------------
@admin_bp.route("/users", methods=["GET"])
@admin_required
def list_users():
    users = db.session.scalars(sa.select(User).order_by(User.last_name, User.first_name)).all()
    return jsonify([u.to_dict() for u in users])


# -------------------------------------------------------------------
# POST /api/admin/users
# Creates a pending account and mails an activation link.
# -------------------------------------------------------------------
@admin_bp.route("/users", methods=["POST"])
@admin_required
def create_user():
    data = _payload()

    email = _clean_str(data.get("email"), EMAIL_MAXLEN).lower()
    first_name = _clean_str(data.get("firstName"), NAME_MAXLEN)
    last_name = _clean_str(data.get("lastName"), NAME_MAXLEN)
    if not email:
        raise MissingFieldError("Email is required.", field="email")
    if not EMAIL_RE.match(email):
        raise InvalidFieldError("Invalid email address.", field="email")
    if not first_name:
        raise MissingFieldError("First name is required.", field="firstName")
    if not last_name:
        raise MissingFieldError("Last name is required.", field="lastName")

    roles = _parse_set(Role, data.get("roles") or [], "roles")
    if not roles:
        raise MissingFieldError("At least one role is required.", field="roles")
    labels = _parse_set(Label, data.get("labels") or [Label.COLORIGINZ.value], "labels")

    if db.session.scalar(sa.select(sa.func.count()).select_from(User).where(sa.func.lower(User.email) == email)):
        raise DuplicateValueError("A user with this email already exists.", field="email")

    user = User(
        email=email,
        first_name=first_name,
        middle_name=_clean_str(data.get("middleName"), MIDDLE_NAME_MAXLEN) or None,
        last_name=last_name,
        is_active=False,
        receive_emails=bool(data.get("receiveEmails", True)),
        preferred_language=_parse_language(data.get("preferredLanguage")),
    )
    user.set_roles(roles)
    user.set_labels(labels)
    token = _issue_activation(user)

    db.session.add(user)
    _commit_or_rollback("Creating user")

    current_app.logger.info("user %s created by admin %s", user.id, current_user.id)
    get_notifier().notify_account(user, "activation", token.value, token.expires_at)
    return jsonify(user.to_dict()), 201


# -------------------------------------------------------------------
# PATCH /api/admin/users/<id>
# -------------------------------------------------------------------
@admin_bp.route("/users/<int:user_id>", methods=["PATCH"])
@admin_required
def update_user(user_id: int):
    user = _get_user_or_404(user_id)
    data = _payload()

    if "firstName" in data:
        user.first_name = _clean_str(data["firstName"], NAME_MAXLEN) or user.first_name
    if "middleName" in data:
        user.middle_name = _clean_str(data["middleName"], MIDDLE_NAME_MAXLEN) or None
    if "lastName" in data:
        user.last_name = _clean_str(data["lastName"], NAME_MAXLEN) or user.last_name
    if "roles" in data:
        roles = _parse_set(Role, data["roles"], "roles")
        if not roles:
            raise MissingFieldError("At least one role is required.", field="roles")
        user.set_roles(roles)
    if "labels" in data:
        user.set_labels(_parse_set(Label, data["labels"], "labels"))
    if "receiveEmails" in data:
        user.receive_emails = bool(data["receiveEmails"])
    if "preferredLanguage" in data:
        user.preferred_language = _parse_language(data["preferredLanguage"])
    if "isActive" in data:
        active = bool(data["isActive"])
        if not active and user.id == current_user.id:
            raise InvalidFieldError("You cannot deactivate your own account.", field="isActive")
        user.is_active = active

    _commit_or_rollback("Updating user")
    return jsonify(user.to_dict())


# -------------------------------------------------------------------
# DELETE /api/admin/users/<id>  (soft: deactivates, never deletes)
# -------------------------------------------------------------------
@admin_bp.route("/users/<int:user_id>", methods=["DELETE"])
@admin_required
def deactivate_user(user_id: int):
    user = _get_user_or_404(user_id)
    if user.id == current_user.id:
        raise InvalidFieldError("You cannot deactivate your own account.", field="id")

    user.is_active = False
    _commit_or_rollback("Deactivating user")
    return jsonify(user.to_dict())


# -------------------------------------------------------------------
# POST /api/admin/users/<id>/resend-activation
# -------------------------------------------------------------------
@admin_bp.route("/users/<int:user_id>/resend-activation", methods=["POST"])
@admin_required
def resend_activation(user_id: int):
    user = _get_user_or_404(user_id)
    if user.password_hash is not None:
        raise InvalidStatusError("This account is already activated.")

    token = _issue_activation(user)
    _commit_or_rollback("Resending activation")

    outcome = get_notifier().notify_account(user, "activation", token.value, token.expires_at)
    return jsonify({"success": True, "emailSent": outcome.delivered})
