# onboarding/services/supplier_types.py
"""
Which optional field groups apply to a supplier, by type and region.

    type      | financial | director   | auction | bank upload | incoterm
    ----------|-----------|------------|---------|-------------|---------
    KOOP      | yes       | ROW only   | no      | yes         | required
    O_KWEKER  | yes       | ROW only   | no      | yes         | required
    X_KWEKER  | no        | no         | yes     | no          | optional
"""
from __future__ import annotations

from onboarding.constants import Region, SupplierType

SECTION_FINANCIAL = "financial"
SECTION_DIRECTOR = "director"
SECTION_AUCTION = "auction"
SECTION_BANK_UPLOAD = "bank_upload"

_FINANCIAL_TYPES = frozenset({SupplierType.KOOP, SupplierType.O_KWEKER})

# Fields that must be filled on supplier submit when their section is visible.
SECTION_REQUIRED_FIELDS = {
    SECTION_DIRECTOR: ("director_name",),
    SECTION_AUCTION: ("auction_number_rfh",),
}


def show_financial(supplier_type) -> bool:
    return SupplierType(supplier_type) in _FINANCIAL_TYPES


def show_director(supplier_type, region) -> bool:
    return show_financial(supplier_type) and Region(region) is Region.ROW


def show_auction(supplier_type) -> bool:
    return SupplierType(supplier_type) is SupplierType.X_KWEKER


def show_bank_upload(supplier_type) -> bool:
    return show_financial(supplier_type)


def requires_incoterm(supplier_type) -> bool:
    return show_financial(supplier_type)


def visible_sections(supplier_type, region) -> frozenset[str]:
    sections = set()
    if show_financial(supplier_type):
        sections.add(SECTION_FINANCIAL)
    if show_director(supplier_type, region):
        sections.add(SECTION_DIRECTOR)
    if show_auction(supplier_type):
        sections.add(SECTION_AUCTION)
    if show_bank_upload(supplier_type):
        sections.add(SECTION_BANK_UPLOAD)
    return frozenset(sections)


def required_supplier_fields(supplier_type, region) -> tuple[str, ...]:
    fields: list[str] = []
    for section in sorted(visible_sections(supplier_type, region)):
        fields.extend(SECTION_REQUIRED_FIELDS.get(section, ()))
    return tuple(fields)
