# onboarding/utils/passwords.py
from __future__ import annotations

from typing import Tuple

from werkzeug.security import check_password_hash, generate_password_hash

MIN_PASSWORD_LENGTH = 8


# =========================
# Hashing
# =========================
def hash_password(plain_password: str) -> str:
    """scrypt hash for ``User.password_hash``; blank input is a programming error."""
    if not isinstance(plain_password, str) or not plain_password.strip():
        raise ValueError("Cannot hash an empty password.")
    return generate_password_hash(plain_password, method="scrypt")


def verify_password(password_hash: str | None, plain_password: str | None) -> bool:
    # Pending users have no hash until they activate.
    if not (password_hash and plain_password):
        return False
    return check_password_hash(password_hash, plain_password)


# =========================
# Policy
# =========================
def validate_password(plain_password) -> Tuple[bool, str]:
    """
    Check a new password chosen at activation, reset or change.

    Returns ``(ok, message)``; the message is shown to the user as-is.
    """
    if not isinstance(plain_password, str) or not plain_password.strip():
        return False, "Choose a password."
    if len(plain_password) < MIN_PASSWORD_LENGTH:
        return False, f"Use at least {MIN_PASSWORD_LENGTH} characters."
    return True, ""
