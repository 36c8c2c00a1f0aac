# onboarding/services/tokens.py
from __future__ import annotations

import enum
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from onboarding.exceptions import TokenExpiredError, TokenInvalidError

from .clock import Clock


class TokenPurpose(enum.Enum):
    INVITATION = "invitation"
    ACTIVATION = "activation"
    PASSWORD_RESET = "password_reset"


DEFAULT_TTLS = {
    TokenPurpose.INVITATION: timedelta(days=14),
    TokenPurpose.ACTIVATION: timedelta(days=7),
    TokenPurpose.PASSWORD_RESET: timedelta(hours=1),
}


@dataclass(frozen=True)
class IssuedToken:
    value: str
    purpose: TokenPurpose
    issued_at: datetime
    expires_at: datetime


def _urlsafe_token() -> str:
    return secrets.token_urlsafe(32)  # ~43 chars


class TokenIssuer:
    """
    Issues unguessable single-use tokens with an absolute expiry.

    The issuer does not store tokens: the owning record keeps the value and
    expiry, and clears both when the token is consumed. Uniqueness is backed
    by a unique constraint on the owning column.
    """

    def __init__(
        self,
        clock: Clock,
        ttls: dict[TokenPurpose, timedelta] | None = None,
        token_factory: Callable[[], str] = _urlsafe_token,
    ):
        self.clock = clock
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._token_factory = token_factory

    @classmethod
    def from_config(cls, config, clock: Clock) -> "TokenIssuer":
        return cls(
            clock,
            ttls={
                TokenPurpose.INVITATION: timedelta(days=config.get("INVITATION_TTL_DAYS", 14)),
                TokenPurpose.ACTIVATION: timedelta(days=config.get("ACTIVATION_TTL_DAYS", 7)),
                TokenPurpose.PASSWORD_RESET: timedelta(hours=config.get("PASSWORD_RESET_TTL_HOURS", 1)),
            },
        )

    def issue(self, purpose: TokenPurpose) -> IssuedToken:
        now = self.clock.now()
        return IssuedToken(
            value=self._token_factory(),
            purpose=purpose,
            issued_at=now,
            expires_at=now + self.ttls[purpose],
        )

    def validate(self, record, token_attr: str, expires_attr: str) -> None:
        """
        Check a record found by token lookup.

        ``record`` is None when no pending record holds the token (never
        existed or already consumed). An expired token is reported separately
        so callers can offer a "request a new link" flow.
        """
        if record is None or not getattr(record, token_attr, None):
            raise TokenInvalidError("Invalid or already used link.")

        expires_at = getattr(record, expires_attr, None)
        if expires_at is None:
            raise TokenInvalidError("Invalid or already used link.")
        if self.clock.now() > expires_at:
            raise TokenExpiredError("This link has expired. Please request a new one.")

    @staticmethod
    def consume(record, token_attr: str, expires_attr: str | None = None) -> None:
        setattr(record, token_attr, None)
        if expires_attr:
            setattr(record, expires_attr, None)
