# onboarding/auth.py
from __future__ import annotations

import sqlalchemy as sa
from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from sqlalchemy.exc import SQLAlchemyError

from .constants import Language
from .exceptions import InvalidFieldError, MissingFieldError
from .extensions import db, limiter, login_manager
from .models import User
from .services.registry import get_notifier, get_services
from .services.tokens import TokenPurpose
from .utils.passwords import hash_password, validate_password, verify_password

auth = Blueprint("auth", __name__, url_prefix="/api/auth")


# =========================================================
# Flask-Login user loader
# =========================================================
@login_manager.user_loader
def load_user(user_id: str):
    try:
        return db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        return None


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required."}), 401


# =========================================================
# Helpers
# =========================================================
def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict() or {}


def _normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _find_by_email(email: str) -> User | None:
    if not email:
        return None
    return db.session.scalars(sa.select(User).where(sa.func.lower(User.email) == email)).first()


def _find_by_token(token: str) -> User | None:
    token = (token or "").strip()
    if not token:
        return None
    return db.session.scalars(sa.select(User).where(User.activation_token == token)).first()


def _commit_or_rollback(action: str) -> bool:
    try:
        db.session.commit()
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("%s failed", action)
        return False


def _set_new_password(user: User, data: dict) -> None:
    password = data.get("password") or ""
    ok, message = validate_password(password)
    if not ok:
        raise InvalidFieldError(message, field="password")
    confirm = data.get("confirmPassword", data.get("confirm_password"))
    if confirm is not None and confirm != password:
        raise InvalidFieldError("Password and confirmation do not match.", field="confirmPassword")
    user.password_hash = hash_password(password)


# =========================================================
# Login / Logout
# =========================================================
@auth.route("/login", methods=["POST"])
@limiter.limit("10 per minute")
def login():
    data = _payload()
    email = _normalize_email(data.get("email"))
    password = data.get("password") or ""

    if not email or not password:
        raise MissingFieldError("Email and password are required.", field="email" if not email else "password")

    user = _find_by_email(email)
    if not user or not verify_password(user.password_hash, password):
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "This account is inactive. Contact an admin."}), 403

    login_user(user)

    user.last_login_at = get_services().clock.now()
    _commit_or_rollback("Stamping last login")

    return jsonify(user.to_dict())


@auth.route("/logout", methods=["POST"])
def logout():
    """Not login_required: logging out twice is harmless."""
    logout_user()
    return jsonify({"success": True})


@auth.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(current_user.to_dict())


# =========================================================
# Activation (admin-created accounts)
# =========================================================
@auth.route("/activate", methods=["POST"])
@limiter.limit("10 per minute")
def activate():
    data = _payload()
    services = get_services()

    user = _find_by_token(data.get("token"))
    # Pending accounts only: an active user's token is a password reset token.
    if user is not None and user.password_hash is not None:
        user = None
    services.tokens.validate(user, "activation_token", "activation_expires_at")

    _set_new_password(user, data)
    user.is_active = True
    services.tokens.consume(user, "activation_token", "activation_expires_at")

    if not _commit_or_rollback("Account activation"):
        return jsonify({"error": "Could not activate the account. Please try again."}), 500

    current_app.logger.info("user %s activated", user.id)
    return jsonify({"success": True})


# =========================================================
# Forgot / Reset password
# =========================================================
@auth.route("/forgot-password", methods=["POST"])
@limiter.limit("5 per minute")
def forgot_password():
    data = _payload()
    email = _normalize_email(data.get("email"))
    if not email:
        raise MissingFieldError("Email is required.", field="email")

    # Same answer whether or not the account exists.
    response = jsonify({"success": True, "message": "If the account exists, a reset link has been sent."})

    user = _find_by_email(email)
    if user is None or not user.is_active or user.password_hash is None:
        return response

    token = get_services().tokens.issue(TokenPurpose.PASSWORD_RESET)
    user.activation_token = token.value
    user.activation_expires_at = token.expires_at
    if not _commit_or_rollback("Issuing password reset"):
        return response

    get_notifier().notify_account(user, "password_reset", token.value, token.expires_at)
    return response


@auth.route("/reset-password", methods=["POST"])
@limiter.limit("10 per minute")
def reset_password():
    data = _payload()
    services = get_services()

    user = _find_by_token(data.get("token"))
    if user is not None and user.password_hash is None:
        user = None
    services.tokens.validate(user, "activation_token", "activation_expires_at")

    _set_new_password(user, data)
    services.tokens.consume(user, "activation_token", "activation_expires_at")

    if not _commit_or_rollback("Password reset"):
        return jsonify({"error": "Could not reset the password. Please try again."}), 500

    return jsonify({"success": True})


# =========================================================
# Change Password (Logged-in users)
# =========================================================
@auth.route("/change-password", methods=["POST"])
@login_required
def change_password():
    data = _payload()
    current_password = data.get("currentPassword", data.get("current_password")) or ""

    if not verify_password(current_user.password_hash, current_password):
        raise InvalidFieldError("Current password is incorrect.", field="currentPassword")

    new_password = data.get("password") or ""
    if verify_password(current_user.password_hash, new_password):
        raise InvalidFieldError("New password must be different from the current password.", field="password")

    _set_new_password(current_user, data)
    if not _commit_or_rollback("Password change"):
        return jsonify({"error": "Failed to update password. Please try again."}), 500

    return jsonify({"success": True})


# =========================================================
# Own profile (notification opt-in, email language)
# =========================================================
def _profile(user: User) -> dict:
    return {"receiveEmails": user.receive_emails, "preferredLanguage": user.preferred_language}


@auth.route("/profile", methods=["GET"])
@login_required
def profile():
    return jsonify(_profile(current_user))


@auth.route("/profile", methods=["PATCH"])
@login_required
def update_profile():
    data = _payload()
    changes = {}

    if "receiveEmails" in data:
        if not isinstance(data["receiveEmails"], bool):
            raise InvalidFieldError("receiveEmails must be true or false.", field="receiveEmails")
        changes["receive_emails"] = data["receiveEmails"]

    if "preferredLanguage" in data:
        try:
            changes["preferred_language"] = Language(data["preferredLanguage"]).value
        except ValueError:
            raise InvalidFieldError("Unsupported language.", field="preferredLanguage") from None

    for name, value in changes.items():
        setattr(current_user, name, value)
    if changes and not _commit_or_rollback("Profile update"):
        return jsonify({"error": "Could not save your profile. Please try again."}), 500

    return jsonify(_profile(current_user))
