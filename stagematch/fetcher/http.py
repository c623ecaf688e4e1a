"""
Company source client over the internship marketplace's JSON search API.
"""
import logging
from typing import Any, Dict, List, Optional

import requests

from config.settings import settings
from ..errors import PermanentSourceError, TransientSourceError
from ..models import CompanyRecord, Contact, EducationTrack, Query
from .base import Fetcher

logger = logging.getLogger("search.fetcher")

# Source-specific filter value per education track (crebo qualification codes)
TRACK_FILTERS: Dict[EducationTrack, str] = {
    EducationTrack.MEDEWERKER_HOVENIER: "25400",
    EducationTrack.VAKBEKWAAM_HOVENIER: "25401",
    EducationTrack.MEDEWERKER_GROENE_RUIMTE: "25403",
    EducationTrack.MEDEWERKER_BLOEMSIERKUNST: "25393",
    EducationTrack.VAKBEKWAAM_BLOEMSIERKUNST: "25394",
}

# Statuses worth trying again
TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


def _get_headers(api_key: Optional[str]) -> dict:
    """Get API authentication headers."""
    headers = {"Accept": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def parse_company(raw: Any) -> CompanyRecord:
    """
    Convert one raw company object into a CompanyRecord.

    Raises:
        PermanentSourceError: If the object is not shaped like a company
    """
    if not isinstance(raw, dict) or not _text(raw.get("name")):
        raise PermanentSourceError(f"Unexpected company entry: {raw!r:.200}")

    contact = raw.get("contact") or {}
    if not isinstance(contact, dict):
        raise PermanentSourceError(f"Unexpected contact entry: {contact!r:.200}")

    return CompanyRecord(
        name=_text(raw.get("name")),
        address=_text(raw.get("address")),
        city=_text(raw.get("city")),
        contact=Contact(
            name=_text(contact.get("name")),
            phone=_text(contact.get("phone")),
            email=_text(contact.get("email")),
        ),
    )


def parse_companies(payload: Any) -> List[CompanyRecord]:
    """Parse a search payload of the form {"companies": [...]}."""
    if not isinstance(payload, dict) or not isinstance(payload.get("companies"), list):
        raise PermanentSourceError("Search payload has no 'companies' list")
    return [parse_company(raw) for raw in payload["companies"]]


class HttpCompanyFetcher(Fetcher):
    """
    Fetches companies from the marketplace search endpoint with requests.

    Timeouts, connection failures, throttling and server errors are
    reported as transient; client errors and malformed bodies as permanent.
    """

    def __init__(
        self,
        base_url: str = settings.source_base_url,
        api_key: Optional[str] = settings.source_api_key,
        timeout: float = settings.fetch_timeout_seconds,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

    @property
    def provider_name(self) -> str:
        return "stagemarkt_http"

    def _params(self, query: Query) -> dict:
        return {
            "qualification": TRACK_FILTERS[query.education_track],
            "location": query.location,
            "radius": query.radius_km,
        }

    def fetch(self, query: Query) -> List[CompanyRecord]:
        try:
            response = self._session.get(
                f"{self.base_url}/companies/search",
                headers=_get_headers(self.api_key),
                params=self._params(query),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientSourceError(f"Source unreachable: {e}") from e
        except requests.RequestException as e:
            raise PermanentSourceError(f"Request failed: {e}") from e

        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientSourceError(f"Source returned HTTP {response.status_code}")
        if response.status_code >= 400:
            raise PermanentSourceError(f"Source returned HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise PermanentSourceError("Source returned a non-JSON body") from e

        companies = parse_companies(payload)
        logger.info(f"Fetched {len(companies)} companies for {query.cache_key}")
        return companies
