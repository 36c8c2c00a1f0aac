# onboarding/models.py
from __future__ import annotations

import uuid
from datetime import datetime

import sqlalchemy as sa
from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB

from .constants import (
    FileType,
    Label,
    Region,
    RequestStatus,
    Role,
    SupplierType,
)
from .extensions import db


# Use **naive UTC** everywhere: DB columns are "timestamp without time zone".
def utcnow_naive() -> datetime:
    return datetime.utcnow()


def _enum_column(enum_cls, name: str):
    """Non-native enum (VARCHAR + CHECK) so only declared values can be stored."""
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda enum_cls: [e.value for e in enum_cls],
        native_enum=False,
        create_constraint=True,
        validate_strings=True,
    )


JSONType = sa.JSON().with_variant(JSONB(), "postgresql")

_NOT_CANCELLED = sa.text("status <> 'CANCELLED'")


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


# =========================================================
# User model (Authentication + Roles + Labels)
# =========================================================
class User(UserMixin, db.Model):
    __tablename__ = "user"

    id = db.Column(db.Integer, primary_key=True)

    # Identity
    email = db.Column(db.String(120), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    middle_name = db.Column(db.String(50), nullable=True)
    last_name = db.Column(db.String(100), nullable=False)

    # Auth (password_hash stays NULL until the account is activated)
    password_hash = db.Column(db.String(255), nullable=True)

    # Account lifecycle
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    receive_emails = db.Column(db.Boolean, nullable=False, default=True)
    preferred_language = db.Column(db.String(5), nullable=False, default="nl")

    # Single-use token shared by activation and password reset
    activation_token = db.Column(db.String(128), nullable=True, unique=True)
    activation_expires_at = db.Column(db.DateTime, nullable=True)

    last_login_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utcnow_naive,
        onupdate=utcnow_naive,
    )

    role_links = db.relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    label_links = db.relationship(
        "UserLabel",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        db.UniqueConstraint("email", name="user_email_key"),
    )

    # ---- roles / labels are sets ----
    @property
    def roles(self) -> frozenset[Role]:
        return frozenset(link.role for link in self.role_links)

    def set_roles(self, roles) -> None:
        wanted = {Role(r) for r in roles}
        self.role_links = [link for link in self.role_links if link.role in wanted]
        have = {link.role for link in self.role_links}
        for role in sorted(wanted - have, key=lambda r: r.value):
            self.role_links.append(UserRole(role=role))

    @property
    def labels(self) -> frozenset[Label]:
        return frozenset(link.label for link in self.label_links)

    def set_labels(self, labels) -> None:
        wanted = {Label(lb) for lb in labels}
        self.label_links = [link for link in self.label_links if link.label in wanted]
        have = {link.label for link in self.label_links}
        for label in sorted(wanted - have, key=lambda lb: lb.value):
            self.label_links.append(UserLabel(label=label))

    def has_any_role(self, *roles: Role) -> bool:
        return bool(self.roles & set(roles))

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(p for p in parts if p)

    @property
    def is_pending_activation(self) -> bool:
        return self.password_hash is None and self.activation_token is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "middleName": self.middle_name,
            "lastName": self.last_name,
            "roles": sorted(r.value for r in self.roles),
            "labels": sorted(lb.value for lb in self.labels),
            "isActive": self.is_active,
            "pendingActivation": self.is_pending_activation,
            "receiveEmails": self.receive_emails,
            "preferredLanguage": self.preferred_language,
            "lastLoginAt": _iso(self.last_login_at),
            "createdAt": _iso(self.created_at),
        }

    def __repr__(self) -> str:
        return f"<User {self.id} {self.email}>"


class UserRole(db.Model):
    __tablename__ = "user_role"

    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), primary_key=True)
    role = db.Column(_enum_column(Role, "user_role_role"), primary_key=True)

    user = db.relationship("User", back_populates="role_links")


class UserLabel(db.Model):
    __tablename__ = "user_label"

    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="CASCADE"), primary_key=True)
    label = db.Column(_enum_column(Label, "user_label_label"), primary_key=True)

    user = db.relationship("User", back_populates="label_links")


# =========================================================
# SupplierRequest (aggregate root)
# =========================================================
class SupplierRequest(db.Model):
    __tablename__ = "supplier_request"

    id = db.Column(db.Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Classification
    supplier_type = db.Column(
        _enum_column(SupplierType, "supplier_type"), nullable=False, default=SupplierType.KOOP
    )
    region = db.Column(_enum_column(Region, "region"), nullable=False)
    label = db.Column(_enum_column(Label, "label"), nullable=False, default=Label.COLORIGINZ, index=True)

    status = db.Column(_enum_column(RequestStatus, "request_status"), nullable=False, index=True)

    # Provenance
    created_by_id = db.Column(db.Integer, db.ForeignKey("user.id"), nullable=False, index=True)
    created_by = db.relationship("User", foreign_keys=[created_by_id], lazy="joined")
    self_fill = db.Column(db.Boolean, nullable=False, default=False)

    # Invitee
    supplier_name = db.Column(db.String(200), nullable=False)
    supplier_email = db.Column(db.String(254), nullable=False)
    supplier_language = db.Column(db.String(5), nullable=False, default="nl")

    # Company / contact (supplier-submitted)
    company_name = db.Column(db.String(200), nullable=True)
    address = db.Column(db.String(500), nullable=True)
    postal_code = db.Column(db.String(20), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    country = db.Column(db.String(100), nullable=True)
    contact_name = db.Column(db.String(200), nullable=True)
    contact_phone = db.Column(db.String(50), nullable=True)
    contact_email = db.Column(db.String(254), nullable=True)

    # Financial identifiers
    chamber_of_commerce_number = db.Column(db.String(50), nullable=True)
    vat_number = db.Column(db.String(50), nullable=True)
    iban = db.Column(db.String(50), nullable=True)
    bank_name = db.Column(db.String(100), nullable=True)
    gln_number = db.Column(db.String(50), nullable=True)

    # Invoice block (financial section)
    invoice_email = db.Column(db.String(254), nullable=True)
    invoice_address = db.Column(db.String(500), nullable=True)
    invoice_postal_code = db.Column(db.String(20), nullable=True)
    invoice_city = db.Column(db.String(100), nullable=True)
    invoice_currency = db.Column(db.String(10), nullable=True)

    # Director section (KOOP / O_KWEKER, ROW)
    director_name = db.Column(db.String(200), nullable=True)
    director_function = db.Column(db.String(100), nullable=True)
    director_date_of_birth = db.Column(db.String(20), nullable=True)
    director_passport_number = db.Column(db.String(50), nullable=True)

    # Auction section (X_KWEKER)
    auction_number_rfh = db.Column(db.String(50), nullable=True)
    sales_sheet_email = db.Column(db.String(254), nullable=True)
    mandate_rfh = db.Column(db.Boolean, nullable=True)
    api_key_floriday = db.Column(db.String(200), nullable=True)

    # Purchaser stage
    incoterm = db.Column(db.String(3), nullable=True)
    commission_percentage = db.Column(db.Float, nullable=True)
    payment_term = db.Column(db.String(100), nullable=True)
    account_manager = db.Column(db.String(200), nullable=True)

    # Finance / ERP stage
    creditor_number = db.Column(db.String(50), nullable=True)
    kbt_code = db.Column(db.String(50), nullable=True)

    # Invitation state
    invitation_token = db.Column(db.String(128), nullable=True, unique=True)
    invitation_expires_at = db.Column(db.DateTime, nullable=True)
    invitation_sent_at = db.Column(db.DateTime, nullable=True)
    supplier_saved_at = db.Column(db.DateTime, nullable=True)
    supplier_submitted_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, onupdate=utcnow_naive)

    files = db.relationship(
        "SupplierFile",
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="select",
        order_by="SupplierFile.uploaded_at",
    )
    audit_logs = db.relationship(
        "AuditLog",
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="select",
        order_by=lambda: (AuditLog.created_at.desc(), AuditLog.id.desc()),
    )

    __table_args__ = (
        # Unique among non-cancelled requests only.
        db.Index(
            "uq_supplier_request_creditor_number_active",
            "creditor_number",
            unique=True,
            postgresql_where=_NOT_CANCELLED,
            sqlite_where=_NOT_CANCELLED,
        ),
        db.Index(
            "uq_supplier_request_kbt_code_active",
            "kbt_code",
            unique=True,
            postgresql_where=_NOT_CANCELLED,
            sqlite_where=_NOT_CANCELLED,
        ),
    )

    def to_dict(self, *, include_children: bool = False) -> dict:
        data = {
            "id": str(self.id),
            "status": self.status.value,
            "supplierType": self.supplier_type.value,
            "region": self.region.value,
            "label": self.label.value,
            "selfFill": self.self_fill,
            "createdById": self.created_by_id,
            "supplierName": self.supplier_name,
            "supplierEmail": self.supplier_email,
            "supplierLanguage": self.supplier_language,
            "companyName": self.company_name,
            "address": self.address,
            "postalCode": self.postal_code,
            "city": self.city,
            "country": self.country,
            "contactName": self.contact_name,
            "contactPhone": self.contact_phone,
            "contactEmail": self.contact_email,
            "chamberOfCommerceNumber": self.chamber_of_commerce_number,
            "vatNumber": self.vat_number,
            "iban": self.iban,
            "bankName": self.bank_name,
            "glnNumber": self.gln_number,
            "invoiceEmail": self.invoice_email,
            "invoiceAddress": self.invoice_address,
            "invoicePostalCode": self.invoice_postal_code,
            "invoiceCity": self.invoice_city,
            "invoiceCurrency": self.invoice_currency,
            "directorName": self.director_name,
            "directorFunction": self.director_function,
            "directorDateOfBirth": self.director_date_of_birth,
            "directorPassportNumber": self.director_passport_number,
            "auctionNumberRFH": self.auction_number_rfh,
            "salesSheetEmail": self.sales_sheet_email,
            "mandateRFH": self.mandate_rfh,
            "apiKeyFloriday": self.api_key_floriday,
            "incoterm": self.incoterm,
            "commissionPercentage": self.commission_percentage,
            "paymentTerm": self.payment_term,
            "accountManager": self.account_manager,
            "creditorNumber": self.creditor_number,
            "kbtCode": self.kbt_code,
            "invitationExpiresAt": _iso(self.invitation_expires_at),
            "invitationSentAt": _iso(self.invitation_sent_at),
            "supplierSavedAt": _iso(self.supplier_saved_at),
            "supplierSubmittedAt": _iso(self.supplier_submitted_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
        if include_children:
            data["files"] = [f.to_dict() for f in self.files]
            data["auditLogs"] = [a.to_dict() for a in self.audit_logs]
        return data

    def __repr__(self) -> str:
        return f"<SupplierRequest {self.id} {self.supplier_name} {self.status}>"


# =========================================================
# SupplierFile
# =========================================================
class SupplierFile(db.Model):
    __tablename__ = "supplier_file"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Uuid(as_uuid=True),
        db.ForeignKey("supplier_request.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    request = db.relationship("SupplierRequest", back_populates="files")

    file_type = db.Column(_enum_column(FileType, "file_type"), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    file_path = db.Column(db.String(500), nullable=False)
    sha256 = db.Column(db.String(64), nullable=True)

    uploaded_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive)
    uploaded_by_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "fileType": self.file_type.value,
            "fileName": self.file_name,
            "filePath": self.file_path,
            "uploadedAt": _iso(self.uploaded_at),
            "uploadedById": self.uploaded_by_id,
        }

    def __repr__(self) -> str:
        return f"<SupplierFile {self.id} {self.file_type}>"


# =========================================================
# AuditLog (append-only; see services/audit.py)
# =========================================================
class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(
        db.Uuid(as_uuid=True),
        db.ForeignKey("supplier_request.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    request = db.relationship("SupplierRequest", back_populates="audit_logs")

    action = db.Column(db.String(50), nullable=False)
    details = db.Column(JSONType, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow_naive, index=True)

    # NULL for system / supplier (token) actions
    user_id = db.Column(db.Integer, db.ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    user = db.relationship("User", foreign_keys=[user_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action,
            "details": self.details,
            "createdAt": _iso(self.created_at),
            "userId": self.user_id,
            "userName": self.user.full_name if self.user else None,
        }

    def __repr__(self) -> str:
        return f"<AuditLog {self.id} {self.action}>"
