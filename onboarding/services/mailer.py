# onboarding/services/mailer.py
from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import make_msgid

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

logger = logging.getLogger(__name__)


# Subjects are Jinja strings rendered with the same variables as the body.
SUBJECTS = {
    "invitation": "Invitation: supplier onboarding for {{ supplier_name }}",
    "supplier_saved": "Your supplier details have been saved",
    "supplier_confirmation": "Confirmation: we received your details",
    "purchaser_notification": "Supplier {{ supplier_name }} has submitted their details",
    "finance_notification": "Supplier {{ supplier_name }} - awaiting Finance",
    "erp_notification": "Supplier {{ supplier_name }} - awaiting ERP",
    "completion": "Supplier {{ supplier_name }} - registration completed",
    "reminder": "Reminder: supplier request {{ supplier_name }}",
    "activation": "Activate your account - Supplier Onboarding",
    "password_reset": "Reset your password - Supplier Onboarding",
}


@dataclass(frozen=True)
class RenderedEmail:
    to: str
    subject: str
    body: str
    template_key: str
    language: str
    variables: dict = field(default_factory=dict)


class EmailSender:
    """
    Renders a template key and hands the message to a transport.

    ``send`` returns a delivery id, or None when nothing was delivered.
    """

    def __init__(self, *, mail_from: str, app_url: str = "", redirect_to: str | None = None):
        self.mail_from = mail_from
        self.app_url = app_url.rstrip("/")
        self.redirect_to = redirect_to
        self._env = Environment(
            loader=PackageLoader("onboarding", "templates/email"),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render(self, to: str, template_key: str, variables: dict, language: str = "nl") -> RenderedEmail:
        if template_key not in SUBJECTS:
            raise KeyError(f"Unknown email template: {template_key}")
        context = {"app_url": self.app_url, "language": language, **variables}
        subject = self._env.from_string(SUBJECTS[template_key]).render(context)
        body = self._env.get_template(f"{template_key}.txt").render(context)

        if self.redirect_to:
            # Demo mode: deliver everything to one inbox, keep the real recipient visible.
            body = f"DEMO MODE - original recipient: {to}\n\n{body}"
            subject = f"[DEMO] {subject}"
            to = self.redirect_to

        return RenderedEmail(
            to=to,
            subject=subject,
            body=body,
            template_key=template_key,
            language=language,
            variables=dict(variables),
        )

    def send(self, to: str, template_key: str, variables: dict, language: str = "nl") -> str | None:
        try:
            message = self.render(to, template_key, variables, language)
        except (KeyError, TemplateError):
            logger.exception("Rendering email %r for %s failed", template_key, to)
            return None
        return self.deliver(message)

    def deliver(self, message: RenderedEmail) -> str | None:
        raise NotImplementedError


class SmtpEmailSender(EmailSender):
    def __init__(
        self,
        *,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        use_tls: bool = True,
        timeout: float = 10.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def deliver(self, message: RenderedEmail) -> str | None:
        msg = EmailMessage()
        msg["From"] = self.mail_from
        msg["To"] = message.to
        msg["Subject"] = message.subject
        msg["Content-Language"] = message.language
        msg["Message-ID"] = make_msgid(domain="supplier-onboarding.local")
        msg.set_content(message.body)

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Failed to send %r email to %s", message.template_key, message.to)
            return None

        logger.info("Email %r sent to %s", message.template_key, message.to)
        return msg["Message-ID"]


class LoggingEmailSender(EmailSender):
    """Development transport: writes the message to the log instead of sending."""

    def deliver(self, message: RenderedEmail) -> str | None:
        logger.info("Email %r to %s: %s\n%s", message.template_key, message.to, message.subject, message.body)
        return f"log:{message.template_key}:{message.to}"


class MemoryEmailSender(EmailSender):
    """Keeps every message in ``outbox``."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.outbox: list[RenderedEmail] = []

    def deliver(self, message: RenderedEmail) -> str | None:
        self.outbox.append(message)
        return f"memory:{len(self.outbox)}"

    def sent_to(self, address: str) -> list[RenderedEmail]:
        return [m for m in self.outbox if m.to == address]

    def clear(self) -> None:
        self.outbox.clear()


def build_email_sender(config) -> EmailSender:
    common = {
        "mail_from": config.get("MAIL_FROM", "noreply@supplier-onboarding.local"),
        "app_url": config.get("APP_URL", ""),
        "redirect_to": config.get("MAIL_REDIRECT_TO"),
    }
    backend = (config.get("MAIL_BACKEND") or "smtp").lower()
    if backend == "memory":
        return MemoryEmailSender(**common)
    if backend == "log":
        return LoggingEmailSender(**common)
    return SmtpEmailSender(
        host=config.get("SMTP_HOST"),
        port=int(config.get("SMTP_PORT", 587)),
        user=config.get("SMTP_USER"),
        password=config.get("SMTP_PASSWORD"),
        use_tls=bool(config.get("SMTP_USE_TLS", True)),
        timeout=float(config.get("SMTP_TIMEOUT", 10)),
        **common,
    )
