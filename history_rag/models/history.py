"""
Browser History Models
Pydantic schemas for visited-page entries, history queries and statistics

Entity: HistoryEntry
Purpose: A visited page with extracted content and topic, stored in Qdrant
Collection: browser_history

Features:
- User-scoped access (every query, stats scan and delete filters by user_id)
- Immutable entries (created once at ingestion, never updated)
- Similarity search over extracted page content
- Time-bucketed statistics relative to local midnight
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

UNCATEGORIZED_TOPIC = "Uncategorized"


# ============================================================================
# Stored entries
# ============================================================================


class HistoryEntryMetadata(BaseModel):
    """URL-derived and client-supplied metadata for a history entry."""

    model_config = ConfigDict(frozen=True)

    domain: str = Field(..., description="Hostname of the visited URL ('unknown-domain' if unparsable)")
    path: str = Field("", description="Path plus query string of the visited URL")
    device_id: Optional[str] = Field(None, description="Client device identifier")
    referrer: Optional[str] = Field(None, description="Referring URL, if the client reported one")
    visit_duration: Optional[int] = Field(None, ge=0, description="Time spent on page in ms")


class HistoryEntry(BaseModel):
    """
    A visited page stored in the history index.

    Attributes:
        id (str): uuid4 generated at ingestion time
        url (str): Visited URL as submitted
        title (str): Page title as submitted
        timestamp (int): Visit time in epoch milliseconds
        content (str): Extracted plain text (empty if extraction failed)
        topic (str): Short category label ('Uncategorized' if classification failed)
        user_id (str): Owning user
        metadata (HistoryEntryMetadata): domain/path and optional client fields
        score (float): Similarity score, only set on similarity queries
    """

    model_config = ConfigDict(frozen=True)

    id: str
    url: str
    title: str
    timestamp: int
    content: str = ""
    topic: str = UNCATEGORIZED_TOPIC
    user_id: str
    metadata: HistoryEntryMetadata
    score: Optional[float] = None


class SkippedVisit(BaseModel):
    """Ingestion outcome for a URL that was intentionally not stored."""

    skipped: bool = True
    url: str
    message: str = "Search engine URL skipped"


# ============================================================================
# Requests
# ============================================================================


class VisitCreate(BaseModel):
    """Schema for storing a visited page."""

    url: str = Field(..., min_length=1, description="Visited URL")
    title: str = Field(..., min_length=1, description="Page title")
    timestamp: int = Field(..., ge=0, description="Visit time in epoch milliseconds")
    user_id: str = Field(..., min_length=1, max_length=255, description="Owning user")
    device_id: Optional[str] = None
    referrer: Optional[str] = None
    visit_duration: Optional[int] = Field(None, ge=0)

    @field_validator("url", "title", "user_id")
    @classmethod
    def validate_not_blank(cls, v):
        """Reject whitespace-only values."""
        if not v.strip():
            raise ValueError("must not be empty or whitespace only")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "url": "https://example.com/articles/vector-search",
                "title": "An introduction to vector search",
                "timestamp": 1718000000000,
                "user_id": "user-123",
            }
        }
    )


class BulkVisitRequest(BaseModel):
    """
    Schema for storing many visited pages in one call.

    Entries are validated one by one during ingestion (as VisitCreate), so an
    invalid entry is counted as failed instead of rejecting the batch.
    """

    entries: List[Dict[str, Any]] = Field(..., min_length=1, description="Visits to store (VisitCreate shape)")


class TimeRange(BaseModel):
    """Inclusive bounds on entry timestamps (epoch ms)."""

    start: Optional[int] = Field(None, ge=0)
    end: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_order(self):
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"time_range.start ({self.start}) must be <= end ({self.end})")
        return self


class SimilarityQuery(BaseModel):
    """Free text probe for semantic search over page content."""

    text: str = Field(..., min_length=1, max_length=2000)
    min_score: Optional[float] = Field(None, description="Drop results scoring below this value")


class HistoryQuery(BaseModel):
    """
    Filter and similarity query over one user's history.

    Without `similarity`, returns entries matching the filters in the store's
    natural order. With `similarity`, returns entries ranked by relevance.
    """

    user_id: str = Field(..., min_length=1, max_length=255)
    time_range: Optional[TimeRange] = None
    topics: Optional[List[str]] = None
    similarity: Optional[SimilarityQuery] = None
    limit: Optional[int] = Field(None, ge=1, le=1000)
    offset: int = Field(0, ge=0)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v):
        if not v.strip():
            raise ValueError("user_id must be non-empty")
        return v

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "user_id": "user-123",
                "time_range": {"start": 1717000000000, "end": 1718000000000},
                "topics": ["Technology"],
                "similarity": {"text": "vector databases"},
                "limit": 20,
            }
        }
    )


# ============================================================================
# Responses
# ============================================================================


class TopicSummary(BaseModel):
    topic: str
    count: int = Field(..., ge=0)
    first_visit: int
    last_visit: int


class TimeRangeCounts(BaseModel):
    """Visit counts per recency bucket. Each entry is counted in exactly one bucket."""

    today: int = 0
    yesterday: int = 0
    last_week: int = 0
    last_month: int = 0
    older: int = 0

    def total(self) -> int:
        return self.today + self.yesterday + self.last_week + self.last_month + self.older


class HistoryStats(BaseModel):
    """Aggregate statistics over all of a user's history entries."""

    total_entries: int = Field(0, ge=0)
    domains: Dict[str, int] = Field(default_factory=dict)
    topics: List[TopicSummary] = Field(default_factory=list, description="Sorted by count descending")
    time_ranges: TimeRangeCounts = Field(default_factory=TimeRangeCounts)


class BulkIngestResult(BaseModel):
    total: int = 0
    successful: int = 0
    skipped: int = 0
    failed: int = 0


class DeleteResult(BaseModel):
    success: bool = True
    message: str
    count: int = Field(..., ge=0)
