# onboarding/services/sanctions.py
"""
Screening of a supplier (and its director) against OpenSanctions.

Like the VIES check this is advisory and out-of-band: a missing API key,
timeout or bad response gives ``None`` and nothing else changes.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

import requests

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.7
MAX_RESULTS = 3


@dataclass(frozen=True)
class SanctionsMatch:
    name: str
    score: float
    datasets: list = field(default_factory=list)
    countries: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"name": self.name, "score": self.score, "datasets": self.datasets, "countries": self.countries}


@dataclass(frozen=True)
class SanctionsResult:
    company_match: bool
    company_results: list
    director_match: bool
    director_results: list
    checked_at: datetime

    def to_dict(self) -> dict:
        return {
            "companyMatch": self.company_match,
            "companyResults": [m.to_dict() for m in self.company_results],
            "directorMatch": self.director_match,
            "directorResults": [m.to_dict() for m in self.director_results],
            "checkedAt": self.checked_at.isoformat(),
        }


def _matches(response: dict | None) -> list[SanctionsMatch]:
    results = (response or {}).get("results") or []
    return [
        SanctionsMatch(
            name=r.get("caption") or "",
            score=round(float(r.get("score") or 0), 2),
            datasets=list(r.get("datasets") or []),
            countries=list((r.get("properties") or {}).get("country") or []),
        )
        for r in results[:MAX_RESULTS]
    ]


def build_queries(company_name: str, country: str | None = None, director: dict | None = None) -> dict:
    company_props = {"name": [company_name]}
    if country:
        company_props["country"] = [country]
    queries = {"company": {"schema": "Company", "properties": company_props}}

    director_name = ((director or {}).get("name") or "").strip()
    if director_name:
        person_props = {"name": [director_name]}
        if director.get("date_of_birth"):
            person_props["birthDate"] = [director["date_of_birth"]]
        if director.get("passport_number"):
            person_props["passportNumber"] = [director["passport_number"]]
        queries["director"] = {"schema": "Person", "properties": person_props}
    return queries


class SanctionsClient:
    def __init__(self, url: str, api_key: str | None, timeout: float = 15.0, clock=None, session=None):
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.clock = clock
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config, clock=None) -> "SanctionsClient":
        return cls(
            config.get("OPENSANCTIONS_URL", "https://api.opensanctions.org/match/default"),
            config.get("OPENSANCTIONS_API_KEY"),
            timeout=float(config.get("OPENSANCTIONS_TIMEOUT", 15)),
            clock=clock,
        )

    def check(self, company_name: str, country: str | None = None, director: dict | None = None) -> SanctionsResult | None:
        if not self.api_key:
            logger.warning("OPENSANCTIONS_API_KEY is not configured; skipping sanctions check.")
            return None
        if not (company_name or "").strip():
            return None

        queries = build_queries(company_name.strip(), country, director)
        try:
            r = self.session.post(
                self.url,
                json={"queries": queries},
                headers={"Authorization": f"ApiKey {self.api_key}"},
                timeout=self.timeout,
            )
            if not r.ok:
                logger.warning("OpenSanctions answered %s", r.status_code)
                return None
            data = r.json()
        except (requests.RequestException, ValueError):
            logger.warning("OpenSanctions unavailable", exc_info=True)
            return None

        responses = data.get("responses") or {}
        company_results = _matches(responses.get("company"))
        director_results = _matches(responses.get("director")) if "director" in queries else []

        return SanctionsResult(
            company_match=any(m.score >= MATCH_THRESHOLD for m in company_results),
            company_results=company_results,
            director_match=any(m.score >= MATCH_THRESHOLD for m in director_results),
            director_results=director_results,
            checked_at=self.clock.now() if self.clock else datetime.utcnow(),
        )
