"""Citation extraction and confidence scoring for generated answers."""
import re
import uuid

from services.citation_parser import ecfr_url, format_citation
from services.models import Citation, ConfidenceAssessment, RetrievedDocument

SIMILARITY_THRESHOLD = 0.7

CFR_CITATION_PATTERN = re.compile(r"\[21CFR§(\d+)\.(\d+)\]")
ISO_CITATION_PATTERN = re.compile(r"\[ISO§(\d+(?::\d+)?)\]")
EU_MDR_CITATION_PATTERN = re.compile(r"\[EUMDR§(Article\d+)\]")

CFR_CONFIDENCE = 0.9
ISO_CONFIDENCE = 0.8
EU_MDR_CONFIDENCE = 0.8

EU_MDR_URL = "https://eur-lex.europa.eu/legal-content/EN/TXT/?uri=CELEX:32017R0745"

# Heuristic scoring weights. Tunable; chosen empirically.
CITATION_WEIGHT = 0.3
DOCUMENT_WEIGHT = 0.2
ASSERTIVE_BONUS = 0.2
HEDGING_PENALTY = 0.1
HIGH_THRESHOLD = 0.8
MEDIUM_THRESHOLD = 0.5

ASSERTIVE_MARKERS = ("specifically states", "according to")
HEDGING_MARKERS = ("may", "generally")


def _citation_id() -> str:
    return uuid.uuid4().hex[:9]


def extract_citations(
    text: str,
    documents: list[RetrievedDocument],
    similarity_threshold: float = SIMILARITY_THRESHOLD,
) -> list[Citation]:
    """
    Structured citations for a finished answer.

    Bracket citations in the text come first (CFR, then ISO, then EU MDR),
    followed by every retrieved document scoring above the threshold. A
    section cited both ways appears twice.
    """
    citations: list[Citation] = []

    for match in CFR_CITATION_PATTERN.finditer(text):
        part, section = match.groups()
        citations.append(Citation(
            id=_citation_id(),
            code=format_citation(21, int(part), section),
            title=f"Code of Federal Regulations Title 21 Part {part} Section {section}",
            url=ecfr_url(21, int(part), section),
            type="fda",
            confidence=CFR_CONFIDENCE,
        ))

    for match in ISO_CITATION_PATTERN.finditer(text):
        standard = match.group(1)
        citations.append(Citation(
            id=_citation_id(),
            code=f"ISO {standard}",
            title=f"International Organization for Standardization {standard}",
            url=f"https://www.iso.org/standard/{standard.replace(':', '-')}.html",
            type="iso",
            confidence=ISO_CONFIDENCE,
        ))

    for match in EU_MDR_CITATION_PATTERN.finditer(text):
        article = match.group(1)
        citations.append(Citation(
            id=_citation_id(),
            code=f"EU MDR {article}",
            title=f"European Medical Device Regulation {article}",
            url=EU_MDR_URL,
            type="eu-mdr",
            confidence=EU_MDR_CONFIDENCE,
        ))

    for doc in documents:
        if doc.similarity and doc.similarity > similarity_threshold:
            citations.append(Citation(
                id=doc.id,
                code=format_citation(doc.cfr_title, doc.cfr_part, doc.cfr_section),
                title=doc.title,
                url=doc.source_url,
                type="regulatory",
                confidence=doc.similarity,
            ))

    return citations


def confidence_label(score: float) -> str:
    if score >= HIGH_THRESHOLD:
        return "High"
    if score >= MEDIUM_THRESHOLD:
        return "Medium"
    return "Low"


def score_confidence(text: str, documents: list[RetrievedDocument]) -> ConfidenceAssessment:
    """
    Heuristic confidence of an answer.

    Markers are plain substring checks, so "may" also matches inside longer
    words such as "mayor".
    """
    score = len(CFR_CITATION_PATTERN.findall(text)) * CITATION_WEIGHT
    score += len(documents) * DOCUMENT_WEIGHT

    if any(marker in text for marker in ASSERTIVE_MARKERS):
        score += ASSERTIVE_BONUS
    if any(marker in text for marker in HEDGING_MARKERS):
        score -= HEDGING_PENALTY

    return ConfidenceAssessment(score=round(score, 4), label=confidence_label(score))
