"""Clients for eCFR, openFDA and the Federal Register."""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel

from services.citation_parser import fda_510k_url, fda_classification_url, format_citation, parse_citation
from services.errors import ServerError, ValidationError
from services.fetcher import ResilientFetcher
from services.models import RegulationCitation

logger = logging.getLogger(__name__)

ECFR_BASE_URL = "https://www.ecfr.gov/api/versioner/v1/"
FDA_CLASSIFICATION_URL = "https://api.fda.gov/device/classification.json"
FDA_510K_URL = "https://api.fda.gov/device/510k.json"
FEDERAL_REGISTER_URL = "https://www.federalregister.gov/api/v1/"


def _require_results(data: dict, source: str, label: str) -> dict:
    if not isinstance(data.get("results"), list):
        raise ServerError(f"Invalid response format from {label} API", source=source)
    return data


def _with_lookup_urls(data: dict, key: str, url_for: Callable[[str], str]) -> dict:
    """Add the public FDA database page for each record as ``lookup_url``."""
    for record in data["results"]:
        if isinstance(record, dict) and record.get(key):
            record["lookup_url"] = url_for(record[key])
    return data


class ECFRClient:
    """Structure/content lookup of CFR sections."""

    source = "eCFR"

    def __init__(self, fetcher: ResilientFetcher):
        self.fetcher = fetcher

    async def fetch_section(self, citation: RegulationCitation) -> dict:
        """
        Fetch the current text of a CFR section.

        Invalid citations are rejected before any request is made.
        """
        if not citation.is_valid:
            raise ValidationError(citation.error_message or "Invalid citation", source=self.source)

        title, part, section = citation.title, citation.part, citation.section
        url = f"{ECFR_BASE_URL}full/current/title-{title}/part-{part}/section-{part}.{section}"
        return await self.fetcher.get_json(
            url,
            source=self.source,
            not_found_message=f"CFR section {format_citation(title, part, section)} not found",
        )


class OpenFDAClient:
    """Device classification and 510(k) clearance search."""

    source = "FDA"

    def __init__(self, fetcher: ResilientFetcher):
        self.fetcher = fetcher

    @staticmethod
    def _search_params(field_values: list[tuple[str, Optional[str]]], limit: int) -> list[tuple[str, str]]:
        params = [("search", f'{field}:"{value}"') for field, value in field_values if value]
        params.append(("limit", str(limit)))
        return params

    async def search_classification(
        self,
        search_term: Optional[str] = None,
        product_code: Optional[str] = None,
        limit: int = 10,
    ) -> dict:
        """
        Search the device classification database.

        Args:
            search_term: Device name (e.g., "glucose monitor")
            product_code: Three-letter FDA product code (e.g., "MDS")
            limit: Max results to return

        Returns:
            openFDA payload with ``meta`` and ``results``
        """
        params = self._search_params(
            [("device_name", search_term), ("product_code", product_code)], limit
        )
        data = await self.fetcher.get_json(
            FDA_CLASSIFICATION_URL,
            params=params,
            source=self.source,
            not_found_message="FDA classification data not found",
        )
        data = _require_results(data, self.source, "FDA classification")
        return _with_lookup_urls(data, "product_code", fda_classification_url)

    async def search_510k(
        self,
        search_term: Optional[str] = None,
        k_number: Optional[str] = None,
        limit: int = 10,
    ) -> dict:
        """
        Search 510(k) premarket notifications (prior clearances).

        Args:
            search_term: Device name
            k_number: Submission number (e.g., "K123456")
            limit: Max results to return
        """
        params = self._search_params(
            [("device_name", search_term), ("k_number", k_number)], limit
        )
        data = await self.fetcher.get_json(
            FDA_510K_URL,
            params=params,
            source=self.source,
            not_found_message="FDA 510(k) data not found",
        )
        data = _require_results(data, self.source, "FDA 510(k)")
        return _with_lookup_urls(data, "k_number", fda_510k_url)

    async def get_device_classification(self, product_code: str) -> Optional[dict]:
        """First classification record for a product code, if any."""
        data = await self.search_classification(product_code=product_code, limit=1)
        return data["results"][0] if data["results"] else None

    async def get_510k(self, k_number: str) -> Optional[dict]:
        """First 510(k) record for a K-number, if any."""
        data = await self.search_510k(k_number=k_number, limit=1)
        return data["results"][0] if data["results"] else None


class FederalRegisterClient:
    """Published rules and notices by topic and CFR reference."""

    source = "FederalRegister"

    def __init__(self, fetcher: ResilientFetcher):
        self.fetcher = fetcher

    async def search_documents(
        self,
        search_term: Optional[str] = None,
        cfr_title: Optional[int] = None,
        cfr_part: Optional[int] = None,
        limit: int = 10,
    ) -> dict:
        """
        Search Federal Register documents, newest first.

        The CFR filter is applied only when both title and part are given.
        """
        params: list[tuple[str, str]] = []
        if search_term:
            params.append(("conditions[term]", search_term))
        if cfr_title and cfr_part:
            params.append(("conditions[cfr][title]", str(cfr_title)))
            params.append(("conditions[cfr][part]", str(cfr_part)))
        params.append(("per_page", str(limit)))
        params.append(("order", "newest"))

        data = await self.fetcher.get_json(
            f"{FEDERAL_REGISTER_URL}documents.json",
            params=params,
            source=self.source,
            not_found_message="Federal Register documents not found",
        )
        return _require_results(data, self.source, "Federal Register")


class APIErrorRecord(BaseModel):
    """One failed source call inside a fan-out search."""
    code: str = "API_ERROR"
    message: str
    source: str
    details: Optional[dict] = None
    timestamp: str


class SearchSummary(BaseModel):
    total_apis_called: int
    successful_calls: int
    failed_calls: int


class SourceResult(BaseModel):
    type: str  # ecfr, fda_classification, fda_510k, federal_register
    data: Any


class ComprehensiveSearchResult(BaseModel):
    results: list[SourceResult]
    errors: list[APIErrorRecord]
    summary: SearchSummary


class RegulatoryDataService:
    """Facade over the three regulatory data sources."""

    def __init__(self, fetcher: Optional[ResilientFetcher] = None):
        self.fetcher = fetcher or ResilientFetcher()
        self.ecfr = ECFRClient(self.fetcher)
        self.fda = OpenFDAClient(self.fetcher)
        self.federal_register = FederalRegisterClient(self.fetcher)

    async def comprehensive_search(
        self,
        citation: Optional[str] = None,
        search_term: Optional[str] = None,
        cfr_title: Optional[int] = None,
        cfr_part: Optional[int] = None,
        limit: int = 10,
    ) -> ComprehensiveSearchResult:
        """
        Query every applicable source concurrently.

        A failing source is recorded in ``errors`` and does not affect the
        others. An invalid citation simply skips the eCFR call.
        """
        calls = []

        if citation:
            parsed = parse_citation(citation)
            if parsed.is_valid:
                calls.append(("ecfr", self.ecfr.source, {"citation": citation},
                              self.ecfr.fetch_section(parsed)))

        if search_term:
            details = {"searchTerm": search_term}
            calls.append(("fda_classification", self.fda.source, details,
                          self.fda.search_classification(search_term, None, limit)))
            calls.append(("fda_510k", self.fda.source, details,
                          self.fda.search_510k(search_term, None, limit)))
            calls.append(("federal_register", self.federal_register.source, details,
                          self.federal_register.search_documents(search_term, cfr_title, cfr_part, limit)))

        outcomes = await asyncio.gather(*(call[3] for call in calls), return_exceptions=True)

        results: list[SourceResult] = []
        errors: list[APIErrorRecord] = []
        for (result_type, source, details, _), outcome in zip(calls, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"{source} lookup failed during comprehensive search: {outcome}")
                errors.append(APIErrorRecord(
                    message=getattr(outcome, "message", str(outcome)),
                    source=source,
                    details=details,
                    timestamp=datetime.now(timezone.utc).isoformat(),
                ))
            else:
                results.append(SourceResult(type=result_type, data=outcome))

        return ComprehensiveSearchResult(
            results=results,
            errors=errors,
            summary=SearchSummary(
                total_apis_called=len(calls),
                successful_calls=len(results),
                failed_calls=len(errors),
            ),
        )

    async def aclose(self) -> None:
        await self.fetcher.aclose()


# Singleton service instance
_service: Optional[RegulatoryDataService] = None


def get_regulatory_service() -> RegulatoryDataService:
    """Get or create the regulatory data service singleton."""
    global _service
    if _service is None:
        _service = RegulatoryDataService()
    return _service


async def close_regulatory_service() -> None:
    global _service
    if _service is not None:
        await _service.aclose()
        _service = None
