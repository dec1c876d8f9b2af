"""Shared models for services."""
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    """Base model that accepts and emits camelCase wire names."""

    model_config = ConfigDict(populate_by_name=True)


class RegulationCitation(CamelModel):
    """Structured result of parsing a free-text CFR citation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: int
    part: int
    section: str
    is_valid: bool = Field(alias="isValid")
    error_message: Optional[str] = Field(default=None, alias="errorMessage")


class RetrievedDocument(BaseModel):
    """Regulatory document returned by vector or keyword search."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    content: str
    cfr_title: int
    cfr_part: int
    cfr_section: str
    source_url: str
    similarity: Optional[float] = None


SearchType = Literal["semantic", "keyword", "hybrid", "none"]


class SearchResult(BaseModel):
    """Merged hybrid search output."""
    documents: list[RetrievedDocument]
    search_type: SearchType
    total_results: int
    processing_time_ms: float


CitationType = Literal["regulatory", "fda", "iso", "eu-mdr"]


class Citation(BaseModel):
    """Source citation attached to an assistant message."""

    model_config = ConfigDict(frozen=True)

    id: str
    code: str  # e.g., "21 CFR 820.30"
    title: str
    url: str
    type: CitationType
    confidence: float = Field(ge=0.0, le=1.0)


class ConversationMessage(BaseModel):
    """Persisted chat message."""
    id: str
    thread_id: str
    role: Literal["user", "assistant", "system"]
    content: str
    citations: list[Citation] = []
    created_at: Optional[datetime] = None


class Thread(BaseModel):
    """Conversation thread owned by one user."""
    id: str
    user_id: str
    title: str
    is_saved: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RetryConfig(BaseModel):
    """Retry policy for outbound calls. Delays are in seconds."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = 1.0
    max_delay: float = 10.0


class ConfidenceAssessment(BaseModel):
    """Heuristic confidence of a generated answer."""
    score: float
    label: Literal["High", "Medium", "Low"]


# --- Regulatory profile (onboarding roadmap) ---

class DeviceInfo(CamelModel):
    name: Optional[str] = None
    classification: Optional[str] = None
    product_code: Optional[str] = Field(default=None, alias="productCode")
    regulation_number: Optional[str] = Field(default=None, alias="regulationNumber")


class DeviceClassification(CamelModel):
    device_class: Optional[str] = None


class RegulatoryPathway(CamelModel):
    name: Optional[str] = None


class RegulatoryOverview(CamelModel):
    applicable_regulations: list[str] = Field(default_factory=list, alias="applicableRegulations")
    required_standards: list[str] = Field(default_factory=list, alias="requiredStandards")


class RegulatoryProfile(CamelModel):
    """User's device and pathway summary used to tailor answers."""
    device_info: Optional[DeviceInfo] = Field(default=None, alias="deviceInfo")
    classification: Optional[DeviceClassification] = None
    pathway: Optional[RegulatoryPathway] = None
    regulatory_overview: Optional[RegulatoryOverview] = Field(default=None, alias="regulatoryOverview")


# --- Stream events ---

class ContentEvent(CamelModel):
    """Incremental delta plus the text accumulated so far."""
    type: Literal["content"] = "content"
    content: str
    full_content: str = Field(alias="fullContent")


class CompleteEvent(CamelModel):
    """Terminal event after a successful generation."""
    type: Literal["complete"] = "complete"
    content: str
    citations: list[Citation]
    confidence: str
    message_id: Optional[str] = Field(default=None, alias="messageId")
    retrieved_docs: int = Field(alias="retrievedDocs")


class ErrorEvent(CamelModel):
    """Terminal event after a failed request."""
    type: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[
    Union[ContentEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]


def to_sse(event: StreamEvent) -> str:
    """Encode an event as one SSE frame."""
    return f"data: {event.model_dump_json(by_alias=True)}\n\n"
