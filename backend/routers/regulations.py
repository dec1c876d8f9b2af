"""Regulatory lookup endpoints: citations, eCFR, openFDA, Federal Register, search."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from services import database
from services.auth import get_current_user_id
from services.citation_parser import parse_citation
from services.errors import (
    NotFoundError,
    RateLimitError,
    RegulatoryAPIError,
    SearchUnavailableError,
    UpstreamTimeoutError,
    ValidationError,
)
from services.models import RegulationCitation, RetrievedDocument, SearchResult
from services.regulatory_sources import (
    ComprehensiveSearchResult,
    RegulatoryDataService,
    get_regulatory_service,
)
from services.search import hybrid_search

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(get_current_user_id)])


class ParseCitationRequest(BaseModel):
    citation: str


class ComprehensiveSearchRequest(BaseModel):
    """Fan-out search across every regulatory source."""

    model_config = ConfigDict(populate_by_name=True)

    citation: Optional[str] = None
    search_term: Optional[str] = Field(default=None, alias="searchTerm")
    cfr_title: Optional[int] = Field(default=None, alias="cfrTitle")
    cfr_part: Optional[int] = Field(default=None, alias="cfrPart")
    limit: int = Field(default=10, ge=1, le=100)


class RegulationSearchRequest(BaseModel):
    """Hybrid search over the indexed regulatory documents."""

    model_config = ConfigDict(populate_by_name=True)

    query: str
    max_results: int = Field(default=5, ge=1, le=50, alias="maxResults")
    similarity_threshold: float = Field(default=0.7, ge=0.0, le=1.0, alias="similarityThreshold")


def _http_error(error: RegulatoryAPIError) -> HTTPException:
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=error.message)
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=error.message)
    if isinstance(error, RateLimitError):
        return HTTPException(status_code=429, detail=error.message)
    if isinstance(error, UpstreamTimeoutError):
        return HTTPException(status_code=504, detail=error.message)
    return HTTPException(status_code=502, detail=f"{error.source or 'Upstream'} API error: {error.message}")


async def _logged(action: str, request_data: dict, call):
    """Run a source call, write the outcome to api_logs and map errors to HTTP."""
    try:
        result = await call
    except RegulatoryAPIError as e:
        await database.record_api_log(
            action, "error", request_data,
            errors=[{"code": e.code, "message": e.message, "source": e.source}],
        )
        raise _http_error(e)

    response_data = result.model_dump() if isinstance(result, BaseModel) else result
    errors = response_data.get("errors") if isinstance(response_data, dict) else None
    await database.record_api_log(action, "success", request_data, response_data, errors)
    return result


@router.post("/citations/parse", response_model=RegulationCitation, response_model_by_alias=True)
async def parse_citation_endpoint(request: ParseCitationRequest):
    """
    Parse a CFR citation such as "21 CFR 820.30".

    Always returns 200; check `isValid` and `errorMessage`.
    """
    return parse_citation(request.citation)


@router.get("/ecfr")
async def fetch_ecfr(
    citation: str = Query(..., description='CFR citation, e.g. "21 CFR 820.30"'),
    service: RegulatoryDataService = Depends(get_regulatory_service),
):
    """Current eCFR text of a section. Malformed citations fail with 400."""
    parsed = parse_citation(citation)
    return await _logged("fetch_ecfr", {"citation": citation}, service.ecfr.fetch_section(parsed))


@router.get("/fda/classification")
async def search_fda_classification(
    search_term: Optional[str] = Query(None, alias="searchTerm"),
    product_code: Optional[str] = Query(None, alias="productCode"),
    limit: int = Query(10, ge=1, le=100),
    service: RegulatoryDataService = Depends(get_regulatory_service),
):
    """Search FDA device classifications by device name or product code."""
    return await _logged(
        "search_fda_classification",
        {"searchTerm": search_term, "productCode": product_code, "limit": limit},
        service.fda.search_classification(search_term, product_code, limit),
    )


@router.get("/fda/510k")
async def search_fda_510k(
    search_term: Optional[str] = Query(None, alias="searchTerm"),
    k_number: Optional[str] = Query(None, alias="kNumber"),
    limit: int = Query(10, ge=1, le=100),
    service: RegulatoryDataService = Depends(get_regulatory_service),
):
    """Search 510(k) clearances (predicate devices) by device name or K-number."""
    return await _logged(
        "search_fda_510k",
        {"searchTerm": search_term, "kNumber": k_number, "limit": limit},
        service.fda.search_510k(search_term, k_number, limit),
    )


@router.get("/federal-register")
async def search_federal_register(
    search_term: Optional[str] = Query(None, alias="searchTerm"),
    cfr_title: Optional[int] = Query(None, alias="cfrTitle"),
    cfr_part: Optional[int] = Query(None, alias="cfrPart"),
    limit: int = Query(10, ge=1, le=100),
    service: RegulatoryDataService = Depends(get_regulatory_service),
):
    """Search Federal Register documents by topic and CFR reference."""
    return await _logged(
        "search_federal_register",
        {"searchTerm": search_term, "cfrTitle": cfr_title, "cfrPart": cfr_part, "limit": limit},
        service.federal_register.search_documents(search_term, cfr_title, cfr_part, limit),
    )


@router.post("/comprehensive", response_model=ComprehensiveSearchResult)
async def comprehensive_search(
    request: ComprehensiveSearchRequest,
    service: RegulatoryDataService = Depends(get_regulatory_service),
):
    """
    Query eCFR, openFDA and the Federal Register concurrently.

    Per-source failures are reported in `errors`; the request itself succeeds.
    """
    if not request.citation and not request.search_term:
        raise HTTPException(status_code=400, detail="Provide a citation or a searchTerm")

    return await _logged(
        "comprehensive_search",
        request.model_dump(by_alias=True),
        service.comprehensive_search(
            citation=request.citation,
            search_term=request.search_term,
            cfr_title=request.cfr_title,
            cfr_part=request.cfr_part,
            limit=request.limit,
        ),
    )


@router.post("/search", response_model=SearchResult)
async def search_regulations(request: RegulationSearchRequest):
    """Hybrid semantic + keyword search over indexed regulations."""
    if not request.query.strip():
        raise HTTPException(status_code=400, detail="Query cannot be empty")

    try:
        return await hybrid_search(
            request.query,
            similarity_threshold=request.similarity_threshold,
            limit=request.max_results,
        )
    except SearchUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)


@router.get("/cfr/{cfr_title}/{cfr_part}", response_model=list[RetrievedDocument])
async def get_cfr_section(
    cfr_title: int,
    cfr_part: int,
    section: Optional[str] = None,
):
    """Stored regulatory documents for a CFR part, optionally one section."""
    try:
        return await database.get_cfr_section(cfr_title, cfr_part, section)
    except Exception as e:
        logger.error(f"CFR lookup failed: {e}")
        raise HTTPException(status_code=500, detail="CFR lookup failed")
