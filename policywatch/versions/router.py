from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.database import get_db
from policywatch.documents.models import VersionComparison
from policywatch.documents.schemas import VersionComparisonResponse
from policywatch.pipeline.tasks import run_change_analysis

router = APIRouter(prefix="/comparisons", tags=["comparisons"])


@router.get("/{comparison_id}", response_model=VersionComparisonResponse)
async def get_comparison(comparison_id: UUID, db: AsyncSession = Depends(get_db)):
    comparison = await db.get(VersionComparison, comparison_id)
    if not comparison:
        raise HTTPException(status_code=404, detail="Comparison not found")
    return comparison


@router.post("/{comparison_id}/analyze", response_model=VersionComparisonResponse, status_code=202)
async def analyze_comparison(
    comparison_id: UUID,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    """Queue AI change analysis; poll the comparison for ``is_analyzed``."""
    comparison = await db.get(VersionComparison, comparison_id)
    if not comparison:
        raise HTTPException(status_code=404, detail="Comparison not found")

    background_tasks.add_task(run_change_analysis, comparison.id)
    return comparison
