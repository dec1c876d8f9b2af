"""CFR citation parsing and URL helpers.

Everything here is pure: no I/O, no exceptions from ``parse_citation``.
"""
import re

from services.errors import ValidationError
from services.models import RegulationCitation

CFR_PATTERN = re.compile(r"^(\d{1,2})\s+CFR\s+(\d{1,4})\.(\d{1,4}[a-z]?)$", re.IGNORECASE)
SECTION_PATTERN = re.compile(r"^\d{1,4}[a-z]?$")

MIN_TITLE, MAX_TITLE = 1, 50
MIN_PART, MAX_PART = 1, 9999

FORMAT_ERROR = (
    'Invalid CFR citation format. Expected format: "XX CFR YYY.ZZ" '
    '(e.g., "21 CFR 820.30")'
)

ECFR_SITE_URL = "https://www.ecfr.gov/current"
FDA_CLASSIFICATION_SITE_URL = (
    "https://www.accessdata.fda.gov/scripts/cdrh/cfdocs/cfpcd/classification.cfm"
)
FDA_510K_SITE_URL = "https://www.accessdata.fda.gov/scripts/cdrh/cfdocs/cfpmn/pmn.cfm"


def _invalid(title: int, part: int, section: str, message: str) -> RegulationCitation:
    return RegulationCitation(
        title=title,
        part=part,
        section=section,
        is_valid=False,
        error_message=message,
    )


def parse_citation(citation: str) -> RegulationCitation:
    """
    Parse a citation like "21 CFR 820.30".

    Checks run in order: overall format, title range, part range, section
    format. The first failing check decides the error message.
    """
    normalized = " ".join(citation.split())

    match = CFR_PATTERN.match(normalized)
    if not match:
        return _invalid(0, 0, "", FORMAT_ERROR)

    title_str, part_str, section = match.groups()
    title = int(title_str)
    part = int(part_str)

    if not MIN_TITLE <= title <= MAX_TITLE:
        return _invalid(
            title, part, section,
            f"Invalid CFR title: {title}. CFR titles must be between {MIN_TITLE} and {MAX_TITLE}.",
        )

    if not MIN_PART <= part <= MAX_PART:
        return _invalid(
            title, part, section,
            f"Invalid CFR part: {part}. Part numbers must be between {MIN_PART} and {MAX_PART}.",
        )

    # The case-insensitive outer pattern lets "30A" through; sections are lowercase.
    if not SECTION_PATTERN.match(section):
        return _invalid(
            title, part, section,
            f"Invalid CFR section format: {section}. "
            "Expected format: number optionally followed by a letter.",
        )

    return RegulationCitation(title=title, part=part, section=section, is_valid=True)


def validate_citation(citation: str) -> RegulationCitation:
    """Parse a citation and raise ValidationError if it is not valid."""
    parsed = parse_citation(citation)
    if not parsed.is_valid:
        raise ValidationError(parsed.error_message or "Invalid citation")
    return parsed


def format_citation(title: int, part: int, section: str) -> str:
    """Format CFR citation for display."""
    return f"{title} CFR {part}.{section}"


def ecfr_url(title: int, part: int, section: str) -> str:
    """Public eCFR page for a section."""
    return f"{ECFR_SITE_URL}/title-{title}/part-{part}/section-{part}.{section}"


def fda_classification_url(product_code: str) -> str:
    return f"{FDA_CLASSIFICATION_SITE_URL}?ID={product_code}"


def fda_510k_url(k_number: str) -> str:
    return f"{FDA_510K_SITE_URL}?ID={k_number}"
