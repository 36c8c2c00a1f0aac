# onboarding/services/commands.py
"""
Lifecycle commands.

Each transition has its own frozen payload type; ``Command`` is the closed
union the lifecycle matches on. The ``parse_*`` helpers turn loose JSON/form
payloads (camelCase or snake_case keys) into commands and raise
``InvalidFieldError`` for malformed values.
"""
from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, fields as dc_fields
from typing import Union

from onboarding.constants import FileType, Incoterm, Label, Language, Region, Role, SupplierType
from onboarding.exceptions import InvalidFieldError, MissingFieldError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# =========================================================
# Actor
# =========================================================
@dataclass(frozen=True)
class Actor:
    """Who is acting. ``user_id`` is None for the token-holding supplier."""

    user_id: int | None
    roles: frozenset = frozenset()
    labels: frozenset = frozenset()

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, roles=frozenset(user.roles), labels=frozenset(user.labels))

    @classmethod
    def supplier(cls) -> "Actor":
        return cls(user_id=None)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    def has_any_role(self, *roles: Role) -> bool:
        return bool(self.roles & set(roles))

    def can_view(self, label) -> bool:
        return self.is_admin or Label(label) in self.labels


# =========================================================
# Payload pieces
# =========================================================
@dataclass(frozen=True)
class UploadedFile:
    file_type: FileType
    file_name: str
    data: bytes


@dataclass(frozen=True)
class SupplierFields:
    """Supplier-section values. None means "not provided", never "clear"."""

    company_name: str | None = None
    address: str | None = None
    postal_code: str | None = None
    city: str | None = None
    country: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None
    contact_email: str | None = None
    chamber_of_commerce_number: str | None = None
    vat_number: str | None = None
    iban: str | None = None
    bank_name: str | None = None
    gln_number: str | None = None
    invoice_email: str | None = None
    invoice_address: str | None = None
    invoice_postal_code: str | None = None
    invoice_city: str | None = None
    invoice_currency: str | None = None
    director_name: str | None = None
    director_function: str | None = None
    director_date_of_birth: str | None = None
    director_passport_number: str | None = None
    auction_number_rfh: str | None = None
    sales_sheet_email: str | None = None
    mandate_rfh: bool | None = None
    api_key_floriday: str | None = None

    def as_patch(self) -> dict:
        return {f.name: getattr(self, f.name) for f in dc_fields(self) if getattr(self, f.name) is not None}


@dataclass(frozen=True)
class PurchaserFields:
    incoterm: Incoterm | None = None
    payment_term: str | None = None
    account_manager: str | None = None
    commission_percentage: float | None = None

    def as_patch(self) -> dict:
        patch = {f.name: getattr(self, f.name) for f in dc_fields(self) if getattr(self, f.name) is not None}
        if "incoterm" in patch:
            patch["incoterm"] = Incoterm(patch["incoterm"]).value
        return patch


# =========================================================
# Commands
# =========================================================
@dataclass(frozen=True)
class CreateRequest:
    supplier_name: str
    supplier_email: str
    region: Region
    supplier_type: SupplierType = SupplierType.KOOP
    label: Label = Label.COLORIGINZ
    self_fill: bool = False
    supplier_language: str = Language.NL.value


@dataclass(frozen=True)
class SupplierSave:
    token: str
    supplier: SupplierFields = field(default_factory=SupplierFields)
    files: tuple = ()


@dataclass(frozen=True)
class SupplierSubmit:
    token: str
    supplier: SupplierFields = field(default_factory=SupplierFields)
    files: tuple = ()


@dataclass(frozen=True)
class PurchaserSubmit:
    request_id: uuid.UUID
    purchaser: PurchaserFields = field(default_factory=PurchaserFields)
    supplier: SupplierFields = field(default_factory=SupplierFields)
    files: tuple = ()


@dataclass(frozen=True)
class FinanceSubmit:
    request_id: uuid.UUID
    creditor_number: str | None
    supplier: SupplierFields = field(default_factory=SupplierFields)


@dataclass(frozen=True)
class ErpSubmit:
    request_id: uuid.UUID
    kbt_code: str | None


@dataclass(frozen=True)
class ChangeType:
    request_id: uuid.UUID
    supplier_type: SupplierType


@dataclass(frozen=True)
class Cancel:
    request_id: uuid.UUID
    reason: str | None = None


@dataclass(frozen=True)
class Reopen:
    request_id: uuid.UUID


@dataclass(frozen=True)
class ResendInvitation:
    request_id: uuid.UUID


@dataclass(frozen=True)
class SendReminder:
    request_id: uuid.UUID
    target_email: str | None = None


Command = Union[
    CreateRequest,
    SupplierSave,
    SupplierSubmit,
    PurchaserSubmit,
    FinanceSubmit,
    ErpSubmit,
    ChangeType,
    Cancel,
    Reopen,
    ResendInvitation,
    SendReminder,
]


# ======================
# Parsers
# ======================
def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


# Keys whose camelCase spelling is not a plain conversion.
_KEY_ALIASES = {
    "auction_number_rfh": "auctionNumberRFH",
    "mandate_rfh": "mandateRFH",
}


def _get(data, name: str):
    for key in (name, _KEY_ALIASES.get(name), _camel(name)):
        if key and key in data:
            return data.get(key)
    return None


def _clean_str(val, *, maxlen: int = 500) -> str | None:
    if val is None:
        return None
    s = str(val).strip()
    if not s:
        return None
    return s[:maxlen]


def _parse_bool(val) -> bool | None:
    if val is None or val == "":
        return None
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def _parse_float(val, name: str) -> float | None:
    if val is None or str(val).strip() == "":
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        raise InvalidFieldError(f"{name} must be a number.", field=name) from None


def _parse_enum(enum_cls, val, name: str, *, default=None):
    if val is None or str(val).strip() == "":
        return default
    try:
        return enum_cls(str(val).strip())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise InvalidFieldError(f"{name} must be one of: {allowed}.", field=name) from None


def parse_uuid(val, name: str = "id") -> uuid.UUID:
    try:
        return uuid.UUID(str(val).strip())
    except (TypeError, ValueError, AttributeError):
        raise InvalidFieldError(f"{name} is not a valid id.", field=name) from None


def _parse_email(val, name: str) -> str | None:
    email = _clean_str(val, maxlen=254)
    if email is None:
        return None
    email = email.lower()
    if not EMAIL_RE.match(email):
        raise InvalidFieldError("Please enter a valid email address.", field=name)
    return email


_EMAIL_FIELDS = {"contact_email", "invoice_email", "sales_sheet_email"}


def parse_supplier_fields(data) -> SupplierFields:
    values = {}
    for f in dc_fields(SupplierFields):
        raw = _get(data, f.name)
        if f.name == "mandate_rfh":
            values[f.name] = _parse_bool(raw)
        elif f.name in _EMAIL_FIELDS:
            values[f.name] = _parse_email(raw, f.name)
        else:
            values[f.name] = _clean_str(raw)
    return SupplierFields(**values)


def parse_purchaser_fields(data) -> PurchaserFields:
    return PurchaserFields(
        incoterm=_parse_enum(Incoterm, _get(data, "incoterm"), "incoterm"),
        payment_term=_clean_str(_get(data, "payment_term"), maxlen=100),
        account_manager=_clean_str(_get(data, "account_manager"), maxlen=200),
        commission_percentage=_parse_float(_get(data, "commission_percentage"), "commission_percentage"),
    )


def parse_create(data) -> CreateRequest:
    name = _clean_str(_get(data, "supplier_name"), maxlen=200)
    if not name:
        raise MissingFieldError("Supplier name is required.", field="supplier_name")
    email = _parse_email(_get(data, "supplier_email"), "supplier_email")
    if not email:
        raise MissingFieldError("Supplier email is required.", field="supplier_email")
    region = _parse_enum(Region, _get(data, "region"), "region")
    if region is None:
        raise MissingFieldError("Region is required.", field="region")

    return CreateRequest(
        supplier_name=name,
        supplier_email=email,
        region=region,
        supplier_type=_parse_enum(SupplierType, _get(data, "supplier_type"), "supplier_type", default=SupplierType.KOOP),
        label=_parse_enum(Label, _get(data, "label"), "label", default=Label.COLORIGINZ),
        self_fill=bool(_parse_bool(_get(data, "self_fill"))),
        supplier_language=_parse_enum(
            Language, _get(data, "supplier_language"), "supplier_language", default=Language.NL
        ).value,
    )


def parse_action(request_id, data, files: tuple = ()) -> Command:
    """Map a ``{"action": ...}`` payload on an existing request to its command."""
    action = (_clean_str(data.get("action")) or "").lower().replace("_", "-")
    rid = parse_uuid(request_id)

    match action:
        case "purchaser-submit":
            return PurchaserSubmit(
                rid,
                purchaser=parse_purchaser_fields(data),
                supplier=parse_supplier_fields(data),
                files=tuple(files),
            )
        case "finance-submit":
            return FinanceSubmit(
                rid,
                creditor_number=_clean_str(_get(data, "creditor_number"), maxlen=50),
                supplier=parse_supplier_fields(data),
            )
        case "erp-submit":
            return ErpSubmit(rid, kbt_code=_clean_str(_get(data, "kbt_code"), maxlen=50))
        case "change-type":
            supplier_type = _parse_enum(SupplierType, _get(data, "supplier_type"), "supplier_type")
            if supplier_type is None:
                raise MissingFieldError("Supplier type is required.", field="supplier_type")
            return ChangeType(rid, supplier_type)
        case "cancel":
            return Cancel(rid, reason=_clean_str(_get(data, "reason")))
        case "reopen":
            return Reopen(rid)
        case "resend-invitation":
            return ResendInvitation(rid)
        case "send-reminder":
            return SendReminder(rid, target_email=_parse_email(_get(data, "target_email"), "target_email"))
        case _:
            raise InvalidFieldError(f"Unknown action: {action or '(none)'}", field="action")
