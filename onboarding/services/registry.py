# onboarding/services/registry.py
"""
Process-wide collaborators, built once in ``create_app`` and kept on
``app.extensions["onboarding"]``. Session-bound pieces (repository,
lifecycle) are built per call on top of ``db.session``.
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from onboarding.extensions import db

from .audit import AuditTrail
from .clock import Clock
from .file_storage import FileStorage, upload_dir_for
from .lifecycle import RequestLifecycle
from .mailer import EmailSender, build_email_sender
from .notifications import NotificationDispatcher
from .repository import RequestRepository
from .sanctions import SanctionsClient
from .tokens import TokenIssuer
from .vies import ViesClient

EXTENSION_KEY = "onboarding"


@dataclass
class Services:
    clock: Clock
    tokens: TokenIssuer
    mailer: EmailSender
    storage: FileStorage
    vies: ViesClient
    sanctions: SanctionsClient


def init_services(app, *, clock: Clock | None = None, mailer: EmailSender | None = None) -> Services:
    clock = clock or Clock()
    services = Services(
        clock=clock,
        tokens=TokenIssuer.from_config(app.config, clock),
        mailer=mailer or build_email_sender(app.config),
        storage=FileStorage(upload_dir_for(app)),
        vies=ViesClient.from_config(app.config),
        sanctions=SanctionsClient.from_config(app.config, clock),
    )
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]


def get_repository() -> RequestRepository:
    return RequestRepository(db.session)


def get_notifier(repository: RequestRepository | None = None) -> NotificationDispatcher:
    services = get_services()
    return NotificationDispatcher(
        services.mailer,
        repository or get_repository(),
        app_url=current_app.config.get("APP_URL", ""),
    )


def get_lifecycle() -> RequestLifecycle:
    services = get_services()
    repository = get_repository()
    return RequestLifecycle(
        repository,
        services.tokens,
        AuditTrail(repository, services.clock),
        get_notifier(repository),
        services.storage,
        services.clock,
        reopen_source=current_app.config.get("REOPEN_STATUS_SOURCE", "fields"),
    )
