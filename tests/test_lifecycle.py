import uuid

import pytest
import sqlalchemy as sa

from conftest import START
from onboarding.constants import AuditAction, FileType, Incoterm, Label, Region, RequestStatus, SupplierType
from onboarding.exceptions import (
    ConflictError,
    DuplicateValueError,
    ForbiddenRoleError,
    InvalidStatusError,
    MissingFieldError,
    RequestNotFoundError,
    TokenExpiredError,
    TokenInvalidError,
)
from onboarding.extensions import db
from onboarding.models import AuditLog, SupplierFile, SupplierRequest
from onboarding.services.commands import (
    Actor,
    Cancel,
    ChangeType,
    CreateRequest,
    ErpSubmit,
    FinanceSubmit,
    PurchaserFields,
    PurchaserSubmit,
    Reopen,
    ResendInvitation,
    SendReminder,
    SupplierFields,
    SupplierSave,
    SupplierSubmit,
    UploadedFile,
)
from onboarding.services.lifecycle import status_from_fields
from onboarding.services.registry import get_lifecycle, get_services

SUPPLIER = Actor.supplier()


def actions(request_id) -> list[str]:
    rows = db.session.scalars(
        sa.select(AuditLog.action).where(AuditLog.request_id == request_id).order_by(AuditLog.id)
    )
    return list(rows)


def latest_entry(request_id, action):
    return db.session.scalars(
        sa.select(AuditLog)
        .where(AuditLog.request_id == request_id, AuditLog.action == action.value)
        .order_by(AuditLog.id.desc())
    ).first()


def purchaser(lifecycle, actors, request_id, **fields):
    fields.setdefault("incoterm", Incoterm.CIF)
    return lifecycle.handle(PurchaserSubmit(request_id, purchaser=PurchaserFields(**fields)), actors["inkoper"])


def to_finance(lifecycle, actors, create_request, **create_kwargs):
    req = create_request(self_fill=True, **create_kwargs)
    return purchaser(lifecycle, actors, req.id)


# =========================================================
# Creation
# =========================================================
class TestCreate:
    def test_invitation_flow_starts_at_invitation_sent(self, create_request, mailer):
        req = create_request(supplier_email="acme@example.com")

        assert req.status is RequestStatus.INVITATION_SENT
        assert req.invitation_token
        assert req.invitation_sent_at == START
        assert req.invitation_expires_at > START
        assert actions(req.id) == ["REQUEST_CREATED", "INVITATION_SENT"]

        sent = mailer.sent_to("acme@example.com")
        assert [m.template_key for m in sent] == ["invitation"]
        assert req.invitation_token in sent[0].body

    def test_self_fill_skips_the_supplier(self, create_request, mailer):
        req = create_request(self_fill=True)

        assert req.status is RequestStatus.AWAITING_PURCHASER
        assert req.invitation_token is None
        assert actions(req.id) == ["REQUEST_CREATED"]
        assert mailer.outbox == []

    def test_requires_inkoper(self, lifecycle, actors):
        cmd = CreateRequest(supplier_name="Acme", supplier_email="acme@example.com", region=Region.EU)
        for key in ("finance", "erp", "admin"):
            with pytest.raises(ForbiddenRoleError):
                lifecycle.handle(cmd, actors[key])
        assert db.session.scalar(sa.select(sa.func.count()).select_from(SupplierRequest)) == 0

    def test_duplicate_supplier_rejected_until_cancelled(self, lifecycle, actors, create_request):
        first = create_request(supplier_name="Acme", supplier_email="acme@example.com")

        with pytest.raises(DuplicateValueError) as exc:
            create_request(supplier_name="Other", supplier_email="ACME@example.com")
        assert exc.value.reason == "DUPLICATE_VALUE"

        lifecycle.handle(Cancel(first.id), actors["inkoper"])
        again = create_request(supplier_name="Acme", supplier_email="acme@example.com")
        assert again.status is RequestStatus.INVITATION_SENT


# =========================================================
# Happy path
# =========================================================
class TestFullPath:
    def test_invited_koop_supplier_reaches_completed(self, lifecycle, actors, create_request, mailer):
        req = create_request(supplier_type=SupplierType.KOOP, region=Region.EU, supplier_email="koop@example.com")
        token = req.invitation_token

        req = lifecycle.handle(
            SupplierSubmit(token, supplier=SupplierFields(company_name="Koop BV", iban="NL91ABNA0417164300")),
            SUPPLIER,
        )
        assert req.status is RequestStatus.AWAITING_PURCHASER
        assert req.company_name == "Koop BV"
        assert req.invitation_token is None
        assert req.supplier_submitted_at == START

        req = purchaser(lifecycle, actors, req.id, payment_term="30 days")
        assert req.status is RequestStatus.AWAITING_FINANCE
        assert req.incoterm == "CIF"

        req = lifecycle.handle(FinanceSubmit(req.id, creditor_number="CRED-1"), actors["finance"])
        assert req.status is RequestStatus.AWAITING_ERP
        assert req.creditor_number == "CRED-1"

        req = lifecycle.handle(ErpSubmit(req.id, kbt_code="KBT-1"), actors["erp"])
        assert req.status is RequestStatus.COMPLETED
        assert req.kbt_code == "KBT-1"

        assert actions(req.id) == [
            "REQUEST_CREATED",
            "INVITATION_SENT",
            "SUPPLIER_SUBMITTED",
            "PURCHASER_SUBMITTED",
            "FINANCE_SUBMITTED",
            "ERP_SUBMITTED",
        ]

        assert [m.template_key for m in mailer.sent_to("koop@example.com")] == [
            "invitation",
            "supplier_confirmation",
        ]
        assert [m.template_key for m in mailer.sent_to("inkoper@example.com")] == [
            "purchaser_notification",
            "completion",
        ]
        assert [m.template_key for m in mailer.sent_to("finance@example.com")] == [
            "finance_notification",
            "completion",
        ]
        assert [m.template_key for m in mailer.sent_to("erp@example.com")] == ["erp_notification"]
        assert mailer.sent_to("finance.quiet@example.com") == []

    def test_completed_request_is_terminal(self, lifecycle, actors, create_request):
        req = to_finance(lifecycle, actors, create_request)
        lifecycle.handle(FinanceSubmit(req.id, creditor_number="CRED-9"), actors["finance"])
        lifecycle.handle(ErpSubmit(req.id, kbt_code="KBT-9"), actors["erp"])

        for command in (Cancel(req.id), ChangeType(req.id, SupplierType.X_KWEKER), SendReminder(req.id)):
            with pytest.raises(InvalidStatusError):
                lifecycle.handle(command, actors["inkoper"])


# =========================================================
# Guards and check order
# =========================================================
class TestGuards:
    def test_unknown_request_is_not_found_before_role_check(self, lifecycle, actors):
        with pytest.raises(RequestNotFoundError):
            lifecycle.handle(FinanceSubmit(uuid.uuid4(), creditor_number="X"), actors["erp"])

    def test_role_checked_before_status(self, lifecycle, actors, create_request):
        req = create_request()  # INVITATION_SENT, so the status is also wrong
        with pytest.raises(ForbiddenRoleError):
            lifecycle.handle(FinanceSubmit(req.id, creditor_number="X"), actors["erp"])

    def test_admin_role_does_not_imply_stage_roles(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True)
        with pytest.raises(ForbiddenRoleError):
            purchaser(lifecycle, actors | {"inkoper": actors["admin"]}, req.id)

    def test_stage_submit_is_not_repeatable(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True)
        purchaser(lifecycle, actors, req.id)

        with pytest.raises(InvalidStatusError):
            purchaser(lifecycle, actors, req.id)
        assert actions(req.id).count("PURCHASER_SUBMITTED") == 1

    def test_rejected_action_writes_nothing(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True)
        before = actions(req.id)

        with pytest.raises(MissingFieldError):
            lifecycle.handle(
                PurchaserSubmit(req.id, purchaser=PurchaserFields(payment_term="60 days")),
                actors["inkoper"],
            )

        req = db.session.get(SupplierRequest, req.id, populate_existing=True)
        assert req.status is RequestStatus.AWAITING_PURCHASER
        assert req.payment_term is None
        assert actions(req.id) == before

    def test_supplier_cannot_cancel(self, lifecycle, create_request):
        req = create_request()
        with pytest.raises(ForbiddenRoleError):
            lifecycle.handle(Cancel(req.id), SUPPLIER)

    def test_request_under_another_label_is_not_found(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True, label=Label.PFC)

        with pytest.raises(RequestNotFoundError):
            purchaser(lifecycle, actors, req.id)
        with pytest.raises(RequestNotFoundError):
            lifecycle.handle(Cancel(req.id), actors["finance"])

        req = db.session.get(SupplierRequest, req.id, populate_existing=True)
        assert req.status is RequestStatus.AWAITING_PURCHASER
        assert actions(req.id) == ["REQUEST_CREATED"]

        # ADMIN sees every label but still lacks the stage role.
        with pytest.raises(ForbiddenRoleError):
            purchaser(lifecycle, actors | {"inkoper": actors["admin"]}, req.id)


# =========================================================
# Type-dependent rules
# =========================================================
class TestSupplierTypes:
    def test_incoterm_required_for_koop(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True, supplier_type=SupplierType.KOOP)
        with pytest.raises(MissingFieldError) as exc:
            lifecycle.handle(PurchaserSubmit(req.id), actors["inkoper"])
        assert exc.value.field == "incoterm"

    def test_incoterm_optional_for_x_kweker(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True, supplier_type=SupplierType.X_KWEKER)
        req = lifecycle.handle(PurchaserSubmit(req.id), actors["inkoper"])
        assert req.status is RequestStatus.AWAITING_FINANCE

    def test_row_director_required_on_supplier_submit(self, lifecycle, create_request):
        req = create_request(supplier_type=SupplierType.O_KWEKER, region=Region.ROW)
        token = req.invitation_token

        with pytest.raises(MissingFieldError) as exc:
            lifecycle.handle(SupplierSubmit(token), SUPPLIER)
        assert exc.value.field == "director_name"

        req = lifecycle.handle(SupplierSubmit(token, supplier=SupplierFields(director_name="J. Doe")), SUPPLIER)
        assert req.status is RequestStatus.AWAITING_PURCHASER

    def test_saved_director_counts_on_submit(self, lifecycle, create_request):
        req = create_request(supplier_type=SupplierType.KOOP, region=Region.ROW)
        token = req.invitation_token

        lifecycle.handle(SupplierSave(token, supplier=SupplierFields(director_name="J. Doe")), SUPPLIER)
        req = lifecycle.handle(SupplierSubmit(token), SUPPLIER)
        assert req.status is RequestStatus.AWAITING_PURCHASER
        assert req.director_name == "J. Doe"

    def test_x_kweker_needs_auction_number(self, lifecycle, create_request):
        req = create_request(supplier_type=SupplierType.X_KWEKER)
        with pytest.raises(MissingFieldError) as exc:
            lifecycle.handle(SupplierSubmit(req.invitation_token), SUPPLIER)
        assert exc.value.field == "auction_number_rfh"

    def test_change_type_is_audited(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True, supplier_type=SupplierType.KOOP)
        req = lifecycle.handle(ChangeType(req.id, SupplierType.X_KWEKER), actors["inkoper"])

        assert req.supplier_type is SupplierType.X_KWEKER
        assert req.status is RequestStatus.AWAITING_PURCHASER
        entry = latest_entry(req.id, AuditAction.SUPPLIER_TYPE_CHANGED)
        assert entry.details == {"oldType": "KOOP", "newType": "X_KWEKER"}


# =========================================================
# Invitation tokens
# =========================================================
class TestInvitationToken:
    def test_save_keeps_the_link_usable(self, lifecycle, create_request, mailer):
        req = create_request(supplier_email="draft@example.com")
        token = req.invitation_token

        req = lifecycle.handle(SupplierSave(token, supplier=SupplierFields(city="Aalsmeer")), SUPPLIER)
        assert req.status is RequestStatus.INVITATION_SENT
        assert req.invitation_token == token
        assert req.supplier_saved_at == START
        assert req.city == "Aalsmeer"
        assert [m.template_key for m in mailer.sent_to("draft@example.com")] == ["invitation", "supplier_saved"]

    def test_token_is_single_use(self, lifecycle, create_request):
        req = create_request()
        token = req.invitation_token
        lifecycle.handle(SupplierSubmit(token), SUPPLIER)

        with pytest.raises(TokenInvalidError):
            lifecycle.handle(SupplierSave(token), SUPPLIER)
        with pytest.raises(TokenInvalidError):
            lifecycle.handle(SupplierSubmit(token), SUPPLIER)

    def test_unknown_token(self, lifecycle):
        with pytest.raises(TokenInvalidError):
            lifecycle.handle(SupplierSave("not-a-token"), SUPPLIER)

    def test_expired_token(self, lifecycle, create_request, clock):
        req = create_request()
        token = req.invitation_token
        clock.advance(days=15)

        with pytest.raises(TokenExpiredError) as exc:
            lifecycle.handle(SupplierSubmit(token), SUPPLIER)
        assert exc.value.reason == "TOKEN_EXPIRED"

    def test_resend_replaces_the_token(self, lifecycle, actors, create_request, clock, mailer):
        req = create_request(supplier_email="slow@example.com")
        old_token = req.invitation_token
        clock.advance(days=20)

        req = lifecycle.handle(ResendInvitation(req.id), actors["inkoper"])
        assert req.status is RequestStatus.INVITATION_SENT
        assert req.invitation_token != old_token
        assert req.invitation_sent_at == clock.now()

        with pytest.raises(TokenInvalidError):
            lifecycle.handle(SupplierSave(old_token), SUPPLIER)
        lifecycle.handle(SupplierSave(req.invitation_token), SUPPLIER)

        assert "INVITATION_RESENT" in actions(req.id)
        assert [m.template_key for m in mailer.sent_to("slow@example.com")] == [
            "invitation",
            "invitation",
            "supplier_saved",
        ]


# =========================================================
# Uniqueness
# =========================================================
class TestUniqueness:
    def test_creditor_number_unique_among_open_requests(self, lifecycle, actors, create_request):
        first = to_finance(lifecycle, actors, create_request)
        second = to_finance(lifecycle, actors, create_request)

        lifecycle.handle(FinanceSubmit(first.id, creditor_number="CRED-1"), actors["finance"])
        with pytest.raises(DuplicateValueError) as exc:
            lifecycle.handle(FinanceSubmit(second.id, creditor_number="CRED-1"), actors["finance"])
        assert exc.value.field == "creditor_number"

        lifecycle.handle(Cancel(first.id), actors["inkoper"])
        second = lifecycle.handle(FinanceSubmit(second.id, creditor_number="CRED-1"), actors["finance"])
        assert second.status is RequestStatus.AWAITING_ERP

    def test_kbt_code_unique(self, lifecycle, actors, create_request):
        ids = []
        for n in (1, 2):
            req = to_finance(lifecycle, actors, create_request)
            lifecycle.handle(FinanceSubmit(req.id, creditor_number=f"CRED-{n}"), actors["finance"])
            ids.append(req.id)

        lifecycle.handle(ErpSubmit(ids[0], kbt_code="KBT-1"), actors["erp"])
        with pytest.raises(DuplicateValueError) as exc:
            lifecycle.handle(ErpSubmit(ids[1], kbt_code="KBT-1"), actors["erp"])
        assert exc.value.field == "kbt_code"

    def test_missing_creditor_number(self, lifecycle, actors, create_request):
        req = to_finance(lifecycle, actors, create_request)
        with pytest.raises(MissingFieldError):
            lifecycle.handle(FinanceSubmit(req.id, creditor_number=None), actors["finance"])


# =========================================================
# Concurrency
# =========================================================
class TestConflict:
    def test_lost_status_race_is_a_conflict(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True)
        assert req.status is RequestStatus.AWAITING_PURCHASER  # loaded, now stale below

        # Another writer moves the row on without this session noticing.
        db.session.execute(
            sa.update(SupplierRequest)
            .where(SupplierRequest.id == req.id)
            .values(status=RequestStatus.AWAITING_FINANCE)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConflictError) as exc:
            purchaser(lifecycle, actors, req.id)
        assert exc.value.reason == "CONFLICT"
        assert "PURCHASER_SUBMITTED" not in actions(req.id)


# =========================================================
# Cancel / reopen
# =========================================================
class TestCancelReopen:
    def test_cancel_records_previous_status_and_reason(self, lifecycle, actors, create_request):
        req = to_finance(lifecycle, actors, create_request)
        req = lifecycle.handle(Cancel(req.id, reason="Supplier withdrew"), actors["finance"])

        assert req.status is RequestStatus.CANCELLED
        entry = latest_entry(req.id, AuditAction.REQUEST_CANCELLED)
        assert entry.details == {"previousStatus": "AWAITING_FINANCE", "reason": "Supplier withdrew"}

        with pytest.raises(InvalidStatusError):
            lifecycle.handle(Cancel(req.id), actors["inkoper"])

    def test_reopen_only_from_cancelled(self, lifecycle, actors, create_request):
        req = create_request()
        with pytest.raises(InvalidStatusError):
            lifecycle.handle(Reopen(req.id), actors["inkoper"])

    def test_reopen_from_fields(self, lifecycle, actors, create_request):
        req = to_finance(lifecycle, actors, create_request)
        lifecycle.handle(FinanceSubmit(req.id, creditor_number="CRED-5"), actors["finance"])
        lifecycle.handle(Cancel(req.id), actors["inkoper"])

        req = lifecycle.handle(Reopen(req.id), actors["inkoper"])
        assert req.status is RequestStatus.AWAITING_ERP
        entry = latest_entry(req.id, AuditAction.REQUEST_REOPENED)
        assert entry.details == {"newStatus": "AWAITING_ERP", "source": "fields"}

    def test_account_manager_alone_reopens_at_finance(self, lifecycle, actors, create_request):
        req = create_request(self_fill=True, supplier_type=SupplierType.X_KWEKER)
        req = lifecycle.handle(
            PurchaserSubmit(req.id, purchaser=PurchaserFields(account_manager="Jan de Vries")),
            actors["inkoper"],
        )
        assert req.incoterm is None
        assert req.payment_term is None
        lifecycle.handle(Cancel(req.id), actors["inkoper"])

        req = lifecycle.handle(Reopen(req.id), actors["inkoper"])

        assert req.status is RequestStatus.AWAITING_FINANCE
        entry = latest_entry(req.id, AuditAction.REQUEST_REOPENED)
        assert entry.details["newStatus"] == "AWAITING_FINANCE"

    def test_field_heuristic_and_audit_source_can_disagree(self, app, actors, create_request, lifecycle):
        # X_KWEKER passes the purchaser stage without any purchaser fields.
        req = create_request(self_fill=True, supplier_type=SupplierType.X_KWEKER)
        req = lifecycle.handle(PurchaserSubmit(req.id), actors["inkoper"])
        assert req.status is RequestStatus.AWAITING_FINANCE
        lifecycle.handle(Cancel(req.id), actors["inkoper"])

        assert status_from_fields(req) is RequestStatus.AWAITING_PURCHASER

        app.config["REOPEN_STATUS_SOURCE"] = "audit"
        req = get_lifecycle().handle(Reopen(req.id), actors["inkoper"])
        assert req.status is RequestStatus.AWAITING_FINANCE

    def test_audit_source_falls_back_without_cancel_record(self, app, actors, create_request):
        req = create_request(self_fill=True)
        db.session.execute(
            sa.update(SupplierRequest).where(SupplierRequest.id == req.id).values(status=RequestStatus.CANCELLED)
        )
        db.session.commit()

        app.config["REOPEN_STATUS_SOURCE"] = "audit"
        req = get_lifecycle().handle(Reopen(req.id), actors["inkoper"])
        assert req.status is RequestStatus.AWAITING_PURCHASER

    def test_reopen_does_not_bypass_uniqueness(self, lifecycle, actors, create_request):
        first = to_finance(lifecycle, actors, create_request)
        lifecycle.handle(FinanceSubmit(first.id, creditor_number="CRED-7"), actors["finance"])
        lifecycle.handle(Cancel(first.id), actors["inkoper"])

        second = to_finance(lifecycle, actors, create_request)
        lifecycle.handle(FinanceSubmit(second.id, creditor_number="CRED-7"), actors["finance"])

        with pytest.raises(DuplicateValueError):
            lifecycle.handle(Reopen(first.id), actors["inkoper"])
        assert db.session.get(SupplierRequest, first.id).status is RequestStatus.CANCELLED


# =========================================================
# Reminders
# =========================================================
class TestReminder:
    def test_reminder_goes_to_the_current_stage(self, lifecycle, actors, create_request, mailer):
        req = to_finance(lifecycle, actors, create_request)
        mailer.clear()

        lifecycle.handle(SendReminder(req.id), actors["inkoper"])

        assert [m.to for m in mailer.outbox] == ["finance@example.com"]
        assert mailer.outbox[0].template_key == "reminder"
        entry = latest_entry(req.id, AuditAction.REMINDER_SENT)
        assert entry.details == {"stage": "AWAITING_FINANCE", "emails": ["finance@example.com"]}

    def test_reminder_to_supplier_links_the_form(self, lifecycle, actors, create_request, mailer):
        req = create_request(supplier_email="late@example.com")
        mailer.clear()

        req = lifecycle.handle(SendReminder(req.id), actors["inkoper"])
        (message,) = mailer.outbox
        assert message.to == "late@example.com"
        assert f"/supplier/{req.invitation_token}" in message.body
        assert req.status is RequestStatus.INVITATION_SENT

    def test_explicit_target(self, lifecycle, actors, create_request, mailer):
        req = create_request(self_fill=True)
        mailer.clear()

        lifecycle.handle(SendReminder(req.id, target_email="someone@example.com"), actors["inkoper"])
        assert [m.to for m in mailer.outbox] == ["someone@example.com"]


# =========================================================
# Files
# =========================================================
class TestFiles:
    def test_uploads_are_stored_and_audited(self, lifecycle, create_request):
        req = create_request()
        upload = UploadedFile(FileType.KVK, "kvk extract.pdf", b"%PDF-1.4 kvk")

        req = lifecycle.handle(SupplierSubmit(req.invitation_token, files=(upload,)), SUPPLIER)

        (record,) = db.session.scalars(sa.select(SupplierFile).where(SupplierFile.request_id == req.id)).all()
        assert record.file_type is FileType.KVK
        assert record.file_name == "kvk extract.pdf"
        assert record.uploaded_by_id is None
        assert get_services().storage.load(record.file_path) == b"%PDF-1.4 kvk"

        entry = latest_entry(req.id, AuditAction.FILE_UPLOADED)
        assert entry.details == {"fileType": "KVK", "fileName": "kvk extract.pdf"}

    def test_storage_failure_rolls_back_earlier_files(self, lifecycle, create_request, monkeypatch):
        req = create_request()
        token = req.invitation_token
        store = lifecycle.storage.store
        calls = []

        def store_once(request_id, data, file_name):
            calls.append(file_name)
            if len(calls) > 1:
                raise OSError("disk full")
            return store(request_id, data, file_name)

        monkeypatch.setattr(lifecycle.storage, "store", store_once)
        uploads = (
            UploadedFile(FileType.KVK, "kvk.pdf", b"%PDF kvk"),
            UploadedFile(FileType.BANK_DETAILS, "bank.pdf", b"%PDF bank"),
        )

        with pytest.raises(OSError):
            lifecycle.handle(SupplierSubmit(token, files=uploads), SUPPLIER)

        assert calls == ["kvk.pdf", "bank.pdf"]
        assert db.session.scalars(sa.select(SupplierFile).where(SupplierFile.request_id == req.id)).all() == []
        assert "FILE_UPLOADED" not in actions(req.id)
        req = db.session.get(SupplierRequest, req.id, populate_existing=True)
        assert req.status is RequestStatus.INVITATION_SENT
        assert req.invitation_token == token


def test_notification_failure_does_not_undo_the_transition(lifecycle, actors, create_request, mailer, monkeypatch):
    req = create_request(self_fill=True)

    def boom(*args, **kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(mailer, "deliver", boom)
    req = purchaser(lifecycle, actors, req.id)

    assert req.status is RequestStatus.AWAITING_FINANCE
    assert db.session.get(SupplierRequest, req.id, populate_existing=True).status is RequestStatus.AWAITING_FINANCE
