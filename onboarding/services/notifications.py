# onboarding/services/notifications.py
"""
Who gets which email after a lifecycle event.

The dispatcher only resolves recipients and template keys; rendering and
transport belong to the email sender. Every send is isolated so one bad
address or SMTP hiccup never stops the others, and nothing here raises into
the lifecycle.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from onboarding.config import label_context
from onboarding.constants import RequestStatus, Role

logger = logging.getLogger(__name__)


class NotificationEvent(enum.Enum):
    INVITATION = "invitation"
    SUPPLIER_SAVED = "supplier_saved"
    SUPPLIER_SUBMITTED = "supplier_submitted"
    PURCHASER_SUBMITTED = "purchaser_submitted"
    FINANCE_SUBMITTED = "finance_submitted"
    ERP_SUBMITTED = "erp_submitted"
    REMINDER = "reminder"


STAGE_NAMES = {
    RequestStatus.INVITATION_SENT: "supplier details",
    RequestStatus.AWAITING_PURCHASER: "purchaser review",
    RequestStatus.AWAITING_FINANCE: "finance review",
    RequestStatus.AWAITING_ERP: "ERP registration",
}


@dataclass(frozen=True)
class Recipient:
    email: str
    name: str
    language: str
    template_key: str


@dataclass(frozen=True)
class DeliveryOutcome:
    email: str
    template_key: str
    delivered: bool
    delivery_id: str | None = None
    error: str | None = None


def _wants_mail(user) -> bool:
    return bool(user and user.is_active and user.receive_emails and user.email)


def _staff(user, template_key: str) -> Recipient:
    return Recipient(
        email=user.email,
        name=user.full_name,
        language=user.preferred_language or "nl",
        template_key=template_key,
    )


def _supplier(request, template_key: str) -> Recipient:
    return Recipient(
        email=request.supplier_email,
        name=request.supplier_name,
        language=request.supplier_language or "nl",
        template_key=template_key,
    )


class NotificationDispatcher:
    def __init__(self, sender, repository, app_url: str = ""):
        self.sender = sender
        self.repository = repository
        self.app_url = (app_url or "").rstrip("/")

    # ---------------------------------------------------------
    # Recipient resolution
    # ---------------------------------------------------------
    def _role_recipients(self, role: Role, template_key: str) -> list[Recipient]:
        return [_staff(u, template_key) for u in self.repository.find_users_by_role(role) if _wants_mail(u)]

    def _creator_recipients(self, request, template_key: str) -> list[Recipient]:
        creator = request.created_by
        return [_staff(creator, template_key)] if _wants_mail(creator) else []

    def recipients_for(self, event: NotificationEvent, request, *, target_email: str | None = None) -> list[Recipient]:
        if event is NotificationEvent.INVITATION:
            found = [_supplier(request, "invitation")]
        elif event is NotificationEvent.SUPPLIER_SAVED:
            found = [_supplier(request, "supplier_saved")]
        elif event is NotificationEvent.SUPPLIER_SUBMITTED:
            found = [_supplier(request, "supplier_confirmation")]
            found += self._creator_recipients(request, "purchaser_notification")
        elif event is NotificationEvent.PURCHASER_SUBMITTED:
            found = self._role_recipients(Role.FINANCE, "finance_notification")
        elif event is NotificationEvent.FINANCE_SUBMITTED:
            found = self._role_recipients(Role.ERP, "erp_notification")
        elif event is NotificationEvent.ERP_SUBMITTED:
            found = self._role_recipients(Role.FINANCE, "completion")
            found += self._creator_recipients(request, "completion")
        elif event is NotificationEvent.REMINDER:
            found = self._reminder_recipients(request, target_email)
        else:
            raise ValueError(f"Unhandled notification event: {event}")

        return _dedupe(found)

    def _reminder_recipients(self, request, target_email: str | None) -> list[Recipient]:
        if target_email:
            if target_email.strip().lower() == (request.supplier_email or "").lower():
                return [_supplier(request, "reminder")]
            return [Recipient(email=target_email.strip(), name=target_email.strip(), language="nl", template_key="reminder")]

        status = request.status
        if status is RequestStatus.INVITATION_SENT:
            return [_supplier(request, "reminder")]
        if status is RequestStatus.AWAITING_PURCHASER:
            return self._creator_recipients(request, "reminder")
        if status is RequestStatus.AWAITING_FINANCE:
            return self._role_recipients(Role.FINANCE, "reminder")
        if status is RequestStatus.AWAITING_ERP:
            return self._role_recipients(Role.ERP, "reminder")
        return []

    # ---------------------------------------------------------
    # Template variables
    # ---------------------------------------------------------
    def request_url(self, request) -> str:
        return f"{self.app_url}/requests/{request.id}"

    def invitation_url(self, request) -> str:
        if not request.invitation_token:
            return ""
        return f"{self.app_url}/supplier/{request.invitation_token}"

    def _variables(self, request, recipient: Recipient) -> dict:
        invitation_url = self.invitation_url(request)
        to_supplier = recipient.email.lower() == (request.supplier_email or "").lower()
        expires_at = request.invitation_expires_at

        return {
            **label_context(request.label, self.app_url),
            "recipient_name": recipient.name,
            "supplier_name": request.supplier_name,
            "request_url": self.request_url(request),
            "invitation_url": invitation_url,
            "expires_on": expires_at.strftime("%d-%m-%Y") if expires_at else "",
            "creditor_number": request.creditor_number or "",
            "kbt_code": request.kbt_code or "",
            "stage": STAGE_NAMES.get(request.status, request.status.value),
            "action_url": invitation_url if (to_supplier and invitation_url) else self.request_url(request),
        }

    # ---------------------------------------------------------
    # Dispatch
    # ---------------------------------------------------------
    def dispatch(self, event: NotificationEvent, request, *, target_email: str | None = None) -> list[DeliveryOutcome]:
        try:
            recipients = self.recipients_for(event, request, target_email=target_email)
        except Exception:
            logger.exception("Resolving recipients for %s on request %s failed", event.value, request.id)
            return []

        if not recipients:
            logger.info("No recipients for %s on request %s", event.value, request.id)
        return self.send_to(recipients, request)

    def send_to(self, recipients: list[Recipient], request) -> list[DeliveryOutcome]:
        """Send to already resolved recipients, one isolated attempt each."""
        outcomes = []
        for recipient in recipients:
            try:
                variables = self._variables(request, recipient)
            except Exception:
                logger.exception("Building %r variables for request %s failed", recipient.template_key, request.id)
                outcomes.append(DeliveryOutcome(recipient.email, recipient.template_key, delivered=False))
                continue
            outcomes.append(self._send_one(recipient, variables))
        return outcomes

    def notify_account(self, user, template_key: str, token: str, expires_at=None) -> DeliveryOutcome:
        """Activation / password reset mail. Transactional, so opt-in does not apply."""
        paths = {"activation": ("activation_url", "activate"), "password_reset": ("reset_url", "reset-password")}
        if template_key not in paths:
            raise ValueError(f"Not an account template: {template_key}")

        url_key, path = paths[template_key]
        variables = {
            "recipient_name": user.full_name,
            url_key: f"{self.app_url}/{path}/{token}",
            "expires_on": expires_at.strftime("%d-%m-%Y %H:%M") if expires_at else "",
        }
        return self._send_one(_staff(user, template_key), variables)

    def _send_one(self, recipient: Recipient, variables: dict) -> DeliveryOutcome:
        try:
            delivery_id = self.sender.send(recipient.email, recipient.template_key, variables, recipient.language)
        except Exception as exc:
            logger.exception("Sending %r to %s failed", recipient.template_key, recipient.email)
            return DeliveryOutcome(recipient.email, recipient.template_key, delivered=False, error=str(exc))

        if not delivery_id:
            logger.warning("Email %r to %s was not delivered", recipient.template_key, recipient.email)
            return DeliveryOutcome(recipient.email, recipient.template_key, delivered=False)

        return DeliveryOutcome(recipient.email, recipient.template_key, delivered=True, delivery_id=delivery_id)


def _dedupe(recipients: list[Recipient]) -> list[Recipient]:
    seen: set[str] = set()
    out: list[Recipient] = []
    for r in recipients:
        key = r.email.strip().lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(r)
    return out
