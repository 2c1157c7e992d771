import hashlib
from uuid import UUID
from typing import Any, Dict, List, Optional
from datetime import date, datetime
from pydantic import BaseModel, ConfigDict, Field, computed_field


class ScrapeResult(BaseModel):
    """What the external scraper hands over for one fetch of a document URL."""
    plain_text: str = Field(..., min_length=1)
    raw_html: Optional[str] = None
    markdown: Optional[str] = None
    http_status: Optional[int] = None
    final_url: Optional[str] = None
    language: Optional[str] = None
    effective_date: Optional[date] = None
    metadata: Optional[Dict[str, Any]] = None

    @computed_field
    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.plain_text.encode("utf-8")).hexdigest()

    @computed_field
    @property
    def word_count(self) -> int:
        return len(self.plain_text.split())

    @computed_field
    @property
    def character_count(self) -> int:
        return len(self.plain_text)


class DocumentCreate(BaseModel):
    name: str
    source_url: str
    company_name: Optional[str] = None
    document_type: str = "other"


class DocumentResponse(BaseModel):
    id: UUID
    name: str
    company_name: Optional[str]
    document_type: str
    source_url: str
    canonical_url: Optional[str]
    scrape_status: str
    last_scraped_at: Optional[datetime]
    last_changed_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentVersionResponse(BaseModel):
    id: UUID
    document_id: UUID
    version_number: str
    content_hash: str
    word_count: int
    character_count: int
    language: Optional[str]
    scraped_at: Optional[datetime]
    effective_date: Optional[date]
    is_current: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VersionComparisonResponse(BaseModel):
    id: UUID
    document_id: UUID
    old_version_id: UUID
    new_version_id: UUID
    diff_blocks: Optional[List[Dict[str, Any]]] = None
    diff_stats: Optional[Dict[str, Any]]
    changes: Optional[List[Dict[str, Any]]]
    additions_count: int
    deletions_count: int
    modifications_count: int
    similarity_score: Optional[float]
    change_severity: Optional[str]
    is_analyzed: bool
    ai_change_summary: Optional[str]
    ai_impact_analysis: Optional[str]
    impact_score_delta: Optional[int]
    change_flags: Optional[Dict[str, Any]]
    overall_direction: Optional[str]
    chunk_summaries: Optional[List[Dict[str, Any]]]
    is_suspicious_timing: bool
    suspicious_timing_score: Optional[int]
    timing_context: Optional[Dict[str, Any]]
    ai_model_used: Optional[str]
    ai_tokens_used: Optional[int]
    ai_analysis_cost: Optional[float]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IngestResponse(BaseModel):
    changed: bool
    version: Optional[DocumentVersionResponse] = None
    comparison_id: Optional[UUID] = None
