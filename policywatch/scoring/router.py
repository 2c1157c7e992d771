from typing import Dict, List
from fastapi import APIRouter

from policywatch.scoring.schemas import ScorePreviewRequest, ScorePreviewResponse
from policywatch.scoring.service import ScoringEngine

router = APIRouter(prefix="/scoring", tags=["scoring"])


@router.post("/preview", response_model=ScorePreviewResponse)
async def preview_score(request: ScorePreviewRequest):
    """Score an arbitrary flag list without persisting anything."""
    engine = ScoringEngine()
    report = engine.process_analysis(request.flags)
    return ScorePreviewResponse(**report.model_dump(), breakdown=engine.score_breakdown(request.flags))


@router.get("/flag-types", response_model=Dict[str, List[str]])
async def list_flag_types():
    engine = ScoringEngine()
    categories = {
        category: engine.flag_types_for_category(category)
        for category in engine.config.flag_categories
    }
    categorized = {flag_type for types in categories.values() for flag_type in types}
    categories["other"] = [t for t in engine.all_flag_types() if t not in categorized]
    return categories
