# onboarding/services/exact_xml.py
"""
eExact XML for importing a supplier into Exact Globe.

Globe layout notes:
- the account type is "S" (supplier); "C" would create a customer
- addresses sit inside <Contact>, bank accounts inside <Creditor>
- country codes are ISO alpha-2; the bank country is taken from the IBAN

Values are escaped by Jinja autoescape.
"""
from __future__ import annotations

import re

from jinja2 import Environment, PackageLoader, StrictUndefined, select_autoescape

from onboarding.services.supplier_types import show_financial

_IBAN_COUNTRY = re.compile(r"^[A-Z]{2}")
_WHITESPACE = re.compile(r"\s+")

_env = Environment(
    loader=PackageLoader("onboarding", "templates/xml"),
    autoescape=select_autoescape(["xml"]),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def compact_iban(iban: str | None) -> str:
    return _WHITESPACE.sub("", iban or "")


def country_from_iban(iban: str | None) -> str | None:
    match = _IBAN_COUNTRY.match(compact_iban(iban))
    return match.group(0) if match else None


def split_contact_name(name: str | None) -> dict | None:
    """'Jan de Vries' -> first 'Jan', last 'de Vries'."""
    parts = (name or "").split()
    if not parts:
        return None
    return {"first_name": parts[0], "last_name": " ".join(parts[1:])}


def _addresses(request, financial: bool) -> list[dict]:
    addresses = []
    if request.address or request.postal_code or request.city or request.country:
        # V: visiting address
        addresses.append(
            {"type": "V", "line1": request.address, "postal_code": request.postal_code, "city": request.city}
        )
    if financial and (request.invoice_address or request.invoice_postal_code or request.invoice_city):
        # P: postal (invoice) address
        addresses.append(
            {
                "type": "P",
                "line1": request.invoice_address,
                "postal_code": request.invoice_postal_code,
                "city": request.invoice_city,
            }
        )
    return addresses


def render_exact_xml(request) -> str:
    """Render one SupplierRequest; bank and invoice data only for financial supplier types."""
    financial = show_financial(request.supplier_type)
    iban = compact_iban(request.iban) if financial else ""

    return _env.get_template("exact_globe.xml").render(
        r=request,
        code=request.creditor_number or "",
        contact=split_contact_name(request.contact_name),
        addresses=_addresses(request, financial),
        iban=iban,
        iban_country=country_from_iban(iban),
    )
