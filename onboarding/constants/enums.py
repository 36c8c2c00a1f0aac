# onboarding/constants/enums.py
from __future__ import annotations

import enum


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    INKOPER = "INKOPER"
    FINANCE = "FINANCE"
    ERP = "ERP"


ROLE_LABELS = {
    Role.ADMIN: "Admin",
    Role.INKOPER: "Inkoper",
    Role.FINANCE: "Finance",
    Role.ERP: "ERP",
}


class Label(str, enum.Enum):
    COLORIGINZ = "COLORIGINZ"
    PFC = "PFC"


class Region(str, enum.Enum):
    EU = "EU"
    ROW = "ROW"


class SupplierType(str, enum.Enum):
    KOOP = "KOOP"
    X_KWEKER = "X_KWEKER"
    O_KWEKER = "O_KWEKER"


class RequestStatus(str, enum.Enum):
    INVITATION_SENT = "INVITATION_SENT"        # waiting for supplier
    AWAITING_PURCHASER = "AWAITING_PURCHASER"
    AWAITING_FINANCE = "AWAITING_FINANCE"
    AWAITING_ERP = "AWAITING_ERP"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED})


class Incoterm(str, enum.Enum):
    CIF = "CIF"
    FOB = "FOB"


class FileType(str, enum.Enum):
    KVK = "KVK"
    PASSPORT = "PASSPORT"
    BANK_DETAILS = "BANK_DETAILS"
    OTHER = "OTHER"


class Language(str, enum.Enum):
    NL = "nl"
    EN = "en"
    ES = "es"


class AuditAction(str, enum.Enum):
    REQUEST_CREATED = "REQUEST_CREATED"
    INVITATION_SENT = "INVITATION_SENT"
    INVITATION_RESENT = "INVITATION_RESENT"
    SUPPLIER_SAVED = "SUPPLIER_SAVED"
    SUPPLIER_SUBMITTED = "SUPPLIER_SUBMITTED"
    PURCHASER_SUBMITTED = "PURCHASER_SUBMITTED"
    FINANCE_SUBMITTED = "FINANCE_SUBMITTED"
    ERP_SUBMITTED = "ERP_SUBMITTED"
    SUPPLIER_TYPE_CHANGED = "SUPPLIER_TYPE_CHANGED"
    REQUEST_CANCELLED = "REQUEST_CANCELLED"
    REQUEST_REOPENED = "REQUEST_REOPENED"
    FILE_UPLOADED = "FILE_UPLOADED"
    REMINDER_SENT = "REMINDER_SENT"
