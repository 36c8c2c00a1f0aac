# onboarding/public.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify

from .constants import RequestStatus
from .exceptions import InvalidFieldError, InvalidStatusError, MissingFieldError
from .services.commands import Actor, SupplierSave, SupplierSubmit, parse_supplier_fields
from .services.registry import get_lifecycle, get_repository, get_services
from .services.supplier_types import visible_sections
from .services.vies import parse_vat_number
from .extensions import limiter
from .utils.uploads import collect_uploads, request_payload


public = Blueprint("public", __name__, url_prefix="/api")

# Fields the supplier form may pre-fill from a saved draft.
_PREFILL_KEYS = (
    "supplierName", "supplierEmail", "supplierType", "region", "label", "supplierLanguage",
    "companyName", "address", "postalCode", "city", "country",
    "contactName", "contactPhone", "contactEmail",
    "chamberOfCommerceNumber", "vatNumber", "iban", "bankName", "glnNumber",
    "invoiceEmail", "invoiceAddress", "invoicePostalCode", "invoiceCity", "invoiceCurrency",
    "directorName", "directorFunction", "directorDateOfBirth", "directorPassportNumber",
    "auctionNumberRFH", "salesSheetEmail", "mandateRFH", "apiKeyFloriday",
    "invitationExpiresAt", "supplierSavedAt",
)


# =========================================================
# Supplier form (token holder, no session)
# =========================================================
@public.route("/supplier/<token>", methods=["GET"])
@limiter.limit("30 per minute")
def supplier_form(token: str):
    supplier_request = get_repository().get_by_invitation_token(token)
    get_services().tokens.validate(supplier_request, "invitation_token", "invitation_expires_at")

    if supplier_request.status is not RequestStatus.INVITATION_SENT:
        raise InvalidStatusError("The form has already been submitted.")

    data = supplier_request.to_dict()
    body = {key: data[key] for key in _PREFILL_KEYS}
    body["visibleSections"] = sorted(visible_sections(supplier_request.supplier_type, supplier_request.region))
    return jsonify(body)


@public.route("/supplier/<token>", methods=["POST"])
@limiter.limit("10 per minute")
def supplier_form_submit(token: str):
    data = request_payload()
    action = (str(data.get("action") or "submit")).strip().lower()
    if action not in ("save", "submit"):
        raise InvalidFieldError("Action must be 'save' or 'submit'.", field="action")

    fields = parse_supplier_fields(data)
    files = collect_uploads()
    if action == "save":
        command = SupplierSave(token=token, supplier=fields, files=files)
    else:
        command = SupplierSubmit(token=token, supplier=fields, files=files)

    get_lifecycle().handle(command, Actor.supplier())
    return jsonify({"success": True, "saved": action == "save"})


# =========================================================
# VAT check (VIES), used from the supplier form
# =========================================================
@public.route("/vies", methods=["POST"])
@limiter.limit("20 per minute")
def vies_check():
    data = request_payload()
    vat_number = data.get("vatNumber", data.get("vat_number"))
    if not vat_number or not isinstance(vat_number, str):
        raise MissingFieldError("VAT number is required.", field="vatNumber")

    if parse_vat_number(vat_number) is None:
        raise InvalidFieldError(
            "Invalid VAT number format. Must start with a valid EU country code.", field="vatNumber"
        )

    result = get_services().vies.check(vat_number)
    if result is None:
        current_app.logger.warning("VIES unavailable")
        return jsonify({"error": "VIES service is currently unavailable.", "available": False}), 503

    return jsonify(result.to_dict())
