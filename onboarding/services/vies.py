# onboarding/services/vies.py
"""
VAT number check against the EU VIES REST API.

Out-of-band helper for the supplier form: it never takes part in a
transition, and an unreachable registry simply yields ``None``.
"""
from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

import requests

logger = logging.getLogger(__name__)

# Member states VIES answers for (XI = Northern Ireland, EL = Greece).
EU_COUNTRY_CODES = frozenset({
    "AT", "BE", "BG", "CY", "CZ", "DE", "DK", "EE", "EL", "ES",
    "FI", "FR", "HR", "HU", "IE", "IT", "LT", "LU", "LV", "MT",
    "NL", "PL", "PT", "RO", "SE", "SI", "SK", "XI",
})

_SEPARATORS = re.compile(r"[\s.\-]")


@dataclass(frozen=True)
class ParsedVat:
    country_code: str
    number: str


@dataclass(frozen=True)
class VatCheckResult:
    is_valid: bool
    name: str
    address: str
    country_code: str
    vat_number: str
    request_date: str = ""
    user_error: str = ""
    request_identifier: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        return {
            "isValid": data["is_valid"],
            "name": data["name"],
            "address": data["address"],
            "countryCode": data["country_code"],
            "vatNumber": data["vat_number"],
            "requestDate": data["request_date"],
            "userError": data["user_error"],
            "requestIdentifier": data["request_identifier"],
        }


def parse_vat_number(vat_number: str) -> ParsedVat | None:
    """Strip spaces, dots and dashes; the first two letters must be an EU country code."""
    cleaned = _SEPARATORS.sub("", vat_number or "").upper()
    if len(cleaned) < 4:
        return None
    country_code, number = cleaned[:2], cleaned[2:]
    if country_code not in EU_COUNTRY_CODES or not number:
        return None
    return ParsedVat(country_code=country_code, number=number)


class ViesClient:
    def __init__(self, base_url: str, timeout: float = 10.0, session=None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "ViesClient":
        return cls(
            config.get("VIES_URL", "https://ec.europa.eu/taxation_customs/vies/rest-api"),
            timeout=float(config.get("VIES_TIMEOUT", 10)),
        )

    def check(self, vat_number: str) -> VatCheckResult | None:
        parsed = parse_vat_number(vat_number)
        if parsed is None:
            return None

        url = f"{self.base_url}/ms/{parsed.country_code}/vat/{parsed.number}"
        try:
            r = self.session.get(url, timeout=self.timeout)
            if not r.ok:
                logger.warning("VIES answered %s for %s", r.status_code, parsed.country_code)
                return None
            data = r.json()
        except (requests.RequestException, ValueError):
            logger.warning("VIES unavailable for %s%s", parsed.country_code, parsed.number, exc_info=True)
            return None

        return VatCheckResult(
            is_valid=data.get("isValid") is True,
            name=data.get("name") or "",
            address=data.get("address") or "",
            country_code=parsed.country_code,
            vat_number=data.get("vatNumber") or parsed.number,
            request_date=data.get("requestDate") or "",
            user_error=data.get("userError") or "",
            request_identifier=data.get("requestIdentifier") or "",
        )
