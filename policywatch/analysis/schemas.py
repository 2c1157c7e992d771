from typing import Any, Dict, List, Literal, Optional
from uuid import UUID
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field

FlagColor = Literal["red", "yellow", "green"]
FLAG_COLORS = ("red", "yellow", "green")


class Flag(BaseModel):
    type: str = Field(..., min_length=1, description="Taxonomy key, e.g. 'forced_arbitration'")
    description: str = ""
    section_reference: Optional[str] = None
    severity: int = Field(5, ge=1, le=10)
    color: FlagColor


class FlagSet(BaseModel):
    red: List[Flag] = []
    yellow: List[Flag] = []
    green: List[Flag] = []

    def all(self) -> List[Flag]:
        return [*self.red, *self.yellow, *self.green]

    def counts(self) -> Dict[str, int]:
        return {"red": len(self.red), "yellow": len(self.yellow), "green": len(self.green)}

    def types(self, color: FlagColor) -> List[str]:
        return [flag.type for flag in getattr(self, color)]


class FaqEntry(BaseModel):
    question: str
    short_answer: str = ""
    long_answer: str = ""
    risk_level: Optional[int] = None
    what_to_watch_for: Optional[str] = None


class ChunkResult(BaseModel):
    index: int
    plain_summary: str = ""
    flags: FlagSet = FlagSet()
    error: Optional[str] = None
    repaired: bool = False
    truncated: bool = False


class AnalyzeVersionRequest(BaseModel):
    analysis_type: Literal["full_analysis", "quick_scan"] = "full_analysis"


class AnalysisResultResponse(BaseModel):
    id: UUID
    document_version_id: UUID
    analysis_type: str
    overall_score: Optional[int]
    overall_rating: Optional[str]
    summary: Optional[str]
    key_concerns: Optional[str]
    positive_aspects: Optional[str]
    recommendations: Optional[str]
    extracted_data: Optional[Dict[str, Any]]
    flags: Optional[Dict[str, Any]]
    behavioral_signals: Optional[Dict[str, Any]]
    tags: Optional[List[str]]
    model_used: Optional[str]
    tokens_used: Optional[int]
    analysis_cost: Optional[float]
    confidence: str
    processing_errors: Optional[List[str]]
    is_current: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnalysisJobResponse(BaseModel):
    id: UUID
    document_version_id: UUID
    analysis_type: str
    status: str
    model_used: Optional[str]
    tokens_used: Optional[int]
    analysis_cost: Optional[float]
    analysis_result_id: Optional[UUID]
    progress_log: Optional[List[Dict[str, Any]]]
    error_message: Optional[str]
    total_chunks: Optional[int]
    processed_chunks: Optional[int]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    duration_ms: Optional[int]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
