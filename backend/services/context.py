"""Prompt assembly from query, retrieved documents, history and profile."""
from typing import Optional

from prompts.system import RESPONSE_INSTRUCTIONS, get_system_prompt
from services.citation_parser import format_citation
from services.models import ConversationMessage, RegulatoryProfile, RetrievedDocument

# Fixed character budgets; this is not token accounting.
DOCUMENT_CHAR_LIMIT = 800
HISTORY_CHAR_LIMIT = 200
HISTORY_MESSAGES = 4
MAX_APPLICABLE_REGULATIONS = 5
MAX_REQUIRED_STANDARDS = 3


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def build_profile_section(profile: RegulatoryProfile) -> str:
    """Bounded summary of the user's regulatory profile."""
    lines = ["User's Regulatory Profile:"]

    device = profile.device_info
    if device:
        device_class = (
            (profile.classification.device_class if profile.classification else None)
            or device.classification
            or "Not specified"
        )
        lines.append(f"Device: {device.name or 'Not specified'}")
        lines.append(f"Classification: Class {device_class}")
        if device.product_code:
            lines.append(f"Product Code: {device.product_code}")
        if device.regulation_number:
            lines.append(f"Regulation Number: {device.regulation_number}")

    if profile.pathway:
        lines.append(f"Regulatory Pathway: {profile.pathway.name or 'Not specified'}")

    overview = profile.regulatory_overview
    if overview and overview.applicable_regulations:
        lines.append("")
        lines.append("Applicable Regulations:")
        lines.extend(f"- {reg}" for reg in overview.applicable_regulations[:MAX_APPLICABLE_REGULATIONS])

    if overview and overview.required_standards:
        lines.append("")
        lines.append("Required Standards:")
        lines.extend(f"- {std}" for std in overview.required_standards[:MAX_REQUIRED_STANDARDS])

    return "\n".join(lines) + "\n\n"


def build_documents_section(documents: list[RetrievedDocument]) -> str:
    """Numbered excerpts with their CFR locator and source URL."""
    parts = ["Relevant Regulatory Context:"]
    for i, doc in enumerate(documents, 1):
        parts.append(
            f"\n[Document {i}] {doc.title}\n"
            f"CFR: {format_citation(doc.cfr_title, doc.cfr_part, doc.cfr_section)}\n"
            f"URL: {doc.source_url}\n"
            f"Content: {truncate(doc.content, DOCUMENT_CHAR_LIMIT)}"
        )
    return "\n".join(parts) + "\n\n"


def build_history_section(history: list[ConversationMessage]) -> str:
    recent = [msg for msg in history if msg.role != "system"][-HISTORY_MESSAGES:]
    lines = ["Recent Conversation Context:"]
    lines.extend(f"{msg.role}: {truncate(msg.content, HISTORY_CHAR_LIMIT)}" for msg in recent)
    return "\n".join(lines) + "\n\n"


def build_context_prompt(
    query: str,
    documents: list[RetrievedDocument],
    history: list[ConversationMessage],
    profile: Optional[RegulatoryProfile] = None,
    max_documents: int = 5,
) -> str:
    """
    Build the user prompt for one chat turn.

    Sections, in order: the query, the regulatory profile (if any), the
    retrieved documents (if any), recent conversation (only when the thread
    has more than the current message) and the answer instructions.
    """
    prompt = f"User Query: {query}\n\n"

    if profile:
        prompt += build_profile_section(profile)

    if documents:
        prompt += build_documents_section(documents[:max_documents])

    if len(history) > 1:
        prompt += build_history_section(history)

    prompt += RESPONSE_INSTRUCTIONS
    return prompt


def build_messages(prompt: str) -> list[dict]:
    """System + user turns for the chat completion request."""
    return [
        {"role": "system", "content": get_system_prompt()},
        {"role": "user", "content": prompt},
    ]
