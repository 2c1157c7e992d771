from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from policywatch.analysis.schemas import Flag


class FlagEffect(BaseModel):
    dimension: str
    base_delta: float
    delta: float


class ScoreBreakdownEntry(BaseModel):
    type: str
    color: Optional[str] = None
    severity: int
    multiplier: float
    effects: List[FlagEffect] = []


class ScoreReport(BaseModel):
    dimension_scores: Dict[str, float]
    total_score: int = Field(..., ge=0, le=100)
    grade: str
    grade_label: str
    grade_color: str
    flag_summary: Dict[str, int]


class ScorePreviewRequest(BaseModel):
    flags: List[Flag]


class ScorePreviewResponse(ScoreReport):
    breakdown: List[ScoreBreakdownEntry] = []
