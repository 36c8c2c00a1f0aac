# onboarding/services/lifecycle.py
"""
Request lifecycle: the status state machine for supplier requests.

    INVITATION_SENT -> AWAITING_PURCHASER -> AWAITING_FINANCE -> AWAITING_ERP -> COMPLETED
          (any non-terminal status)  -> CANCELLED -> (reopen) -> recomputed

Every command runs as one unit of work:
  1) load the request (NOT_FOUND)
  2) check the actor's roles (FORBIDDEN_ROLE)
  3) check the current status (INVALID_STATUS)
  4) validate the payload (MISSING_REQUIRED_FIELD / INVALID_FIELD / DUPLICATE_VALUE)
  5) conditional UPDATE on the expected status (CONFLICT when it lost a race)
  6) file rows + audit entries, commit
  7) notifications, after commit and best effort
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from onboarding.constants import TERMINAL_STATUSES, AuditAction, RequestStatus, Role
from onboarding.exceptions import (
    DuplicateValueError,
    ForbiddenRoleError,
    InvalidStatusError,
    MissingFieldError,
    RequestNotFoundError,
    TransitionError,
)
from onboarding.models import SupplierRequest

from .commands import (
    Actor,
    Cancel,
    ChangeType,
    Command,
    CreateRequest,
    ErpSubmit,
    FinanceSubmit,
    PurchaserSubmit,
    Reopen,
    ResendInvitation,
    SendReminder,
    SupplierSave,
    SupplierSubmit,
)
from .notifications import NotificationEvent
from .repository import FileMeta
from .supplier_types import SECTION_REQUIRED_FIELDS, requires_incoterm, visible_sections
from .tokens import TokenPurpose

logger = logging.getLogger(__name__)

REOPEN_FROM_FIELDS = "fields"
REOPEN_FROM_AUDIT = "audit"

PURCHASER_STAGE_FIELDS = ("incoterm", "account_manager", "payment_term")


@dataclass(frozen=True)
class _Notice:
    """A notification to send once the unit of work has committed."""

    event: NotificationEvent | None = None
    target_email: str | None = None
    recipients: tuple = ()


def status_from_fields(request) -> RequestStatus:
    """
    Where a reopened request re-enters the pipeline, judged by which fields are
    filled. Each later stage wins over an earlier one.
    """
    status = RequestStatus.INVITATION_SENT
    if request.supplier_submitted_at or request.self_fill:
        status = RequestStatus.AWAITING_PURCHASER
    if any(getattr(request, name) for name in PURCHASER_STAGE_FIELDS):
        status = RequestStatus.AWAITING_FINANCE
    if request.creditor_number:
        status = RequestStatus.AWAITING_ERP
    if request.kbt_code:
        status = RequestStatus.COMPLETED
    return status


def _required_role(actor: Actor, *roles: Role) -> None:
    if not actor.has_any_role(*roles):
        wanted = " or ".join(r.value for r in roles)
        raise ForbiddenRoleError(f"This action requires the {wanted} role.")


def _authenticated(actor: Actor) -> None:
    if not actor.is_authenticated:
        raise ForbiddenRoleError("You must be logged in to do this.")


def _expect_status(request, *allowed: RequestStatus) -> None:
    if request.status not in allowed:
        raise InvalidStatusError(
            f"This action is not possible while the request is {request.status.value}."
        )


def _not_terminal(request) -> None:
    if request.status in TERMINAL_STATUSES:
        raise InvalidStatusError(f"The request is already {request.status.value}.")


class RequestLifecycle:
    def __init__(
        self,
        repository,
        tokens,
        audit,
        notifier,
        storage,
        clock,
        *,
        reopen_source: str = REOPEN_FROM_FIELDS,
    ):
        self.repository = repository
        self.tokens = tokens
        self.audit = audit
        self.notifier = notifier
        self.storage = storage
        self.clock = clock
        if reopen_source not in (REOPEN_FROM_FIELDS, REOPEN_FROM_AUDIT):
            raise ValueError(f"Unknown reopen status source: {reopen_source}")
        self.reopen_source = reopen_source

    # =========================================================
    # Entry point
    # =========================================================
    def handle(self, command: Command, actor: Actor) -> SupplierRequest:
        try:
            request, notices = self._apply(command, actor)
            self.repository.commit()
        except TransitionError as exc:
            self.repository.rollback()
            logger.info("%s rejected: %s (%s)", type(command).__name__, exc.reason, exc.message)
            raise
        except SQLAlchemyError:
            self.repository.rollback()
            logger.exception("%s failed", type(command).__name__)
            raise
        except Exception:
            # e.g. OSError from file storage; pending file and audit rows go too
            self.repository.rollback()
            logger.exception("%s aborted", type(command).__name__)
            raise

        for notice in notices:
            if notice.recipients:
                self.notifier.send_to(list(notice.recipients), request)
            else:
                self.notifier.dispatch(notice.event, request, target_email=notice.target_email)
        return request

    def _apply(self, command: Command, actor: Actor):
        match command:
            case CreateRequest():
                return self._create(command, actor)
            case SupplierSave():
                return self._supplier_save(command, actor)
            case SupplierSubmit():
                return self._supplier_submit(command, actor)
            case PurchaserSubmit():
                return self._purchaser_submit(command, actor)
            case FinanceSubmit():
                return self._finance_submit(command, actor)
            case ErpSubmit():
                return self._erp_submit(command, actor)
            case ChangeType():
                return self._change_type(command, actor)
            case Cancel():
                return self._cancel(command, actor)
            case Reopen():
                return self._reopen(command, actor)
            case ResendInvitation():
                return self._resend_invitation(command, actor)
            case SendReminder():
                return self._send_reminder(command, actor)
            case _:
                raise TypeError(f"Unsupported command: {type(command).__name__}")

    # =========================================================
    # Helpers
    # =========================================================
    def _load(self, request_id, actor: Actor) -> SupplierRequest:
        # Requests under another label do not exist for this user; the
        # token-holding supplier is turned away by the role checks instead.
        request = self.repository.get(request_id)
        hidden = request is not None and actor.is_authenticated and not actor.can_view(request.label)
        if request is None or hidden:
            raise RequestNotFoundError("Request not found.")
        return request

    def _load_by_token(self, token: str) -> SupplierRequest:
        request = self.repository.get_by_invitation_token(token)
        self.tokens.validate(request, "invitation_token", "invitation_expires_at")
        return request

    def _transition(self, request, patch: dict) -> SupplierRequest:
        from_status = request.status
        patch = {**patch, "updated_at": self.clock.now()}
        updated = self.repository.update(request.id, from_status, patch)
        if updated.status is not from_status:
            logger.info("request %s: %s -> %s", updated.id, from_status.value, updated.status.value)
        return updated

    def _store_files(self, request, files, actor: Actor) -> list[dict]:
        stored = []
        for upload in files:
            result = self.storage.store(request.id, upload.data, upload.file_name)
            self.repository.create_file(
                request.id,
                FileMeta(
                    file_type=upload.file_type,
                    file_name=upload.file_name,
                    file_path=result.path,
                    sha256=result.sha256,
                    uploaded_at=self.clock.now(),
                    uploaded_by_id=actor.user_id,
                ),
            )
            info = {"fileType": upload.file_type, "fileName": upload.file_name}
            self.audit.record(request.id, AuditAction.FILE_UPLOADED, info, actor.user_id)
            stored.append(info)
        return stored

    def _check_unique(self, field_name: str, value: str, exclude_id) -> None:
        counter = {
            "creditor_number": self.repository.count_by_creditor_number,
            "kbt_code": self.repository.count_by_kbt_code,
        }[field_name]
        if counter(value, exclude_id) > 0:
            raise DuplicateValueError(f"This {field_name.replace('_', ' ')} is already in use.", field=field_name)

    # =========================================================
    # Create
    # =========================================================
    def _create(self, cmd: CreateRequest, actor: Actor):
        _required_role(actor, Role.INKOPER)

        if self.repository.count_active_suppliers(cmd.supplier_name, cmd.supplier_email) > 0:
            raise DuplicateValueError(
                "A request for this supplier (same name or email) already exists.",
                field="supplier_email",
            )

        now = self.clock.now()
        request = SupplierRequest(
            id=uuid.uuid4(),
            supplier_type=cmd.supplier_type,
            region=cmd.region,
            label=cmd.label,
            self_fill=cmd.self_fill,
            created_by_id=actor.user_id,
            supplier_name=cmd.supplier_name,
            supplier_email=cmd.supplier_email,
            supplier_language=cmd.supplier_language,
            created_at=now,
            updated_at=now,
        )

        invitation = None
        if cmd.self_fill:
            request.status = RequestStatus.AWAITING_PURCHASER
        else:
            invitation = self.tokens.issue(TokenPurpose.INVITATION)
            request.status = RequestStatus.INVITATION_SENT
            request.invitation_token = invitation.value
            request.invitation_expires_at = invitation.expires_at
            request.invitation_sent_at = now

        self.repository.add(request)

        self.audit.record(
            request.id,
            AuditAction.REQUEST_CREATED,
            {
                "supplierName": cmd.supplier_name,
                "supplierEmail": cmd.supplier_email,
                "supplierType": cmd.supplier_type,
                "region": cmd.region,
                "label": cmd.label,
                "selfFill": cmd.self_fill,
            },
            actor.user_id,
        )
        logger.info("request %s created with status %s", request.id, request.status.value)

        if invitation is None:
            return request, []

        self.audit.record(
            request.id,
            AuditAction.INVITATION_SENT,
            {"email": cmd.supplier_email, "expiresAt": invitation.expires_at},
            actor.user_id,
        )
        return request, [_Notice(NotificationEvent.INVITATION)]

    # =========================================================
    # Supplier (token holder)
    # =========================================================
    def _supplier_save(self, cmd: SupplierSave, actor: Actor):
        request = self._load_by_token(cmd.token)
        _expect_status(request, RequestStatus.INVITATION_SENT)

        patch = {**cmd.supplier.as_patch(), "supplier_saved_at": self.clock.now()}
        stored = self._store_files(request, cmd.files, actor)
        request = self._transition(request, patch)

        self.audit.record(request.id, AuditAction.SUPPLIER_SAVED, {"filesUploaded": len(stored)}, actor.user_id)
        return request, [_Notice(NotificationEvent.SUPPLIER_SAVED)]

    def _supplier_submit(self, cmd: SupplierSubmit, actor: Actor):
        request = self._load_by_token(cmd.token)
        _expect_status(request, RequestStatus.INVITATION_SENT)

        values = cmd.supplier.as_patch()
        for section in sorted(visible_sections(request.supplier_type, request.region)):
            for name in SECTION_REQUIRED_FIELDS.get(section, ()):
                if not (values.get(name) or getattr(request, name)):
                    raise MissingFieldError(f"{name.replace('_', ' ').capitalize()} is required.", field=name)

        now = self.clock.now()
        patch = {
            **values,
            "status": RequestStatus.AWAITING_PURCHASER,
            "supplier_submitted_at": now,
            # single use: the link stops working once submitted
            "invitation_token": None,
        }
        stored = self._store_files(request, cmd.files, actor)
        request = self._transition(request, patch)

        self.audit.record(
            request.id,
            AuditAction.SUPPLIER_SUBMITTED,
            {"filesUploaded": len(stored), "fields": sorted(values)},
            actor.user_id,
        )
        return request, [_Notice(NotificationEvent.SUPPLIER_SUBMITTED)]

    # =========================================================
    # Staff stages
    # =========================================================
    def _purchaser_submit(self, cmd: PurchaserSubmit, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _required_role(actor, Role.INKOPER)
        _expect_status(request, RequestStatus.AWAITING_PURCHASER)

        purchaser = cmd.purchaser.as_patch()
        if requires_incoterm(request.supplier_type) and not (purchaser.get("incoterm") or request.incoterm):
            raise MissingFieldError("Incoterm is required for this supplier type.", field="incoterm")

        patch = {**cmd.supplier.as_patch(), **purchaser, "status": RequestStatus.AWAITING_FINANCE}
        self._store_files(request, cmd.files, actor)
        request = self._transition(request, patch)

        details = {k: v for k, v in patch.items() if k != "status"}
        self.audit.record(request.id, AuditAction.PURCHASER_SUBMITTED, details, actor.user_id)
        return request, [_Notice(NotificationEvent.PURCHASER_SUBMITTED)]

    def _finance_submit(self, cmd: FinanceSubmit, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _required_role(actor, Role.FINANCE)
        _expect_status(request, RequestStatus.AWAITING_FINANCE)

        if not cmd.creditor_number:
            raise MissingFieldError("Creditor number is required.", field="creditor_number")
        self._check_unique("creditor_number", cmd.creditor_number, request.id)

        patch = {
            **cmd.supplier.as_patch(),
            "creditor_number": cmd.creditor_number,
            "status": RequestStatus.AWAITING_ERP,
        }
        request = self._transition(request, patch)

        self.audit.record(
            request.id, AuditAction.FINANCE_SUBMITTED, {"creditorNumber": cmd.creditor_number}, actor.user_id
        )
        return request, [_Notice(NotificationEvent.FINANCE_SUBMITTED)]

    def _erp_submit(self, cmd: ErpSubmit, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _required_role(actor, Role.ERP)
        _expect_status(request, RequestStatus.AWAITING_ERP)

        if not cmd.kbt_code:
            raise MissingFieldError("KBT code is required.", field="kbt_code")
        self._check_unique("kbt_code", cmd.kbt_code, request.id)

        request = self._transition(request, {"kbt_code": cmd.kbt_code, "status": RequestStatus.COMPLETED})

        self.audit.record(request.id, AuditAction.ERP_SUBMITTED, {"kbtCode": cmd.kbt_code}, actor.user_id)
        return request, [_Notice(NotificationEvent.ERP_SUBMITTED)]

    # =========================================================
    # Housekeeping actions
    # =========================================================
    def _change_type(self, cmd: ChangeType, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _required_role(actor, Role.INKOPER)
        _not_terminal(request)

        old_type = request.supplier_type
        request = self._transition(request, {"supplier_type": cmd.supplier_type})

        self.audit.record(
            request.id,
            AuditAction.SUPPLIER_TYPE_CHANGED,
            {"oldType": old_type, "newType": cmd.supplier_type},
            actor.user_id,
        )
        return request, []

    def _cancel(self, cmd: Cancel, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _authenticated(actor)
        _not_terminal(request)

        previous = request.status
        request = self._transition(request, {"status": RequestStatus.CANCELLED})

        details = {"previousStatus": previous}
        if cmd.reason:
            details["reason"] = cmd.reason
        self.audit.record(request.id, AuditAction.REQUEST_CANCELLED, details, actor.user_id)
        return request, []

    def _reopen(self, cmd: Reopen, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _authenticated(actor)
        _expect_status(request, RequestStatus.CANCELLED)

        new_status = self._reopen_status(request)
        request = self._transition(request, {"status": new_status})

        self.audit.record(
            request.id,
            AuditAction.REQUEST_REOPENED,
            {"newStatus": new_status, "source": self.reopen_source},
            actor.user_id,
        )
        return request, []

    def _reopen_status(self, request) -> RequestStatus:
        if self.reopen_source == REOPEN_FROM_AUDIT:
            entry = self.audit.latest(request.id, AuditAction.REQUEST_CANCELLED)
            previous = (entry.details or {}).get("previousStatus") if entry else None
            if previous:
                return RequestStatus(previous)
            logger.warning("request %s: no cancellation record, falling back to field heuristic", request.id)
        return status_from_fields(request)

    def _resend_invitation(self, cmd: ResendInvitation, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _authenticated(actor)

        invitation = self.tokens.issue(TokenPurpose.INVITATION)
        request = self._transition(
            request,
            {
                "invitation_token": invitation.value,
                "invitation_expires_at": invitation.expires_at,
                "invitation_sent_at": invitation.issued_at,
            },
        )

        self.audit.record(
            request.id,
            AuditAction.INVITATION_RESENT,
            {"email": request.supplier_email, "expiresAt": invitation.expires_at},
            actor.user_id,
        )
        return request, [_Notice(NotificationEvent.INVITATION)]

    def _send_reminder(self, cmd: SendReminder, actor: Actor):
        request = self._load(cmd.request_id, actor)
        _authenticated(actor)
        _not_terminal(request)

        recipients = self.notifier.recipients_for(NotificationEvent.REMINDER, request, target_email=cmd.target_email)
        # Touch the row through the status guard so a reminder never races a transition.
        request = self._transition(request, {})

        self.audit.record(
            request.id,
            AuditAction.REMINDER_SENT,
            {"stage": request.status, "emails": [r.email for r in recipients]},
            actor.user_id,
        )
        if not recipients:
            return request, []
        return request, [_Notice(recipients=tuple(recipients))]
