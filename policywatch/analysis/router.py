from typing import Optional
from uuid import UUID
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.database import get_db
from policywatch.analysis.models import AnalysisJob, AnalysisResult, AnalysisType
from policywatch.analysis.schemas import AnalysisJobResponse, AnalysisResultResponse, AnalyzeVersionRequest
from policywatch.pipeline.tasks import create_analysis_job, fail_stale_jobs, run_document_analysis

router = APIRouter(tags=["analysis"])


@router.post("/versions/{version_id}/analyze", response_model=AnalysisJobResponse, status_code=202)
async def analyze_version(
    version_id: UUID,
    background_tasks: BackgroundTasks,
    request: AnalyzeVersionRequest = AnalyzeVersionRequest(),
    db: AsyncSession = Depends(get_db),
):
    """Queue a full analysis of one version and return its job record."""
    try:
        job = await create_analysis_job(db, version_id, request.analysis_type)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    background_tasks.add_task(run_document_analysis, job.id)
    return job


@router.get("/analysis-jobs/{job_id}", response_model=AnalysisJobResponse)
async def get_analysis_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    job = await db.get(AnalysisJob, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Analysis job not found")
    return job


@router.post("/analysis-jobs/fail-stale")
async def fail_stale_analysis_jobs(
    older_than_minutes: Optional[int] = Query(default=None, ge=1),
    db: AsyncSession = Depends(get_db),
):
    """Mark jobs stuck in running state as failed."""
    return {"failed": await fail_stale_jobs(db, older_than_minutes)}


@router.get("/versions/{version_id}/analysis", response_model=AnalysisResultResponse)
async def get_current_analysis(
    version_id: UUID,
    analysis_type: AnalysisType = AnalysisType.FULL_ANALYSIS,
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        select(AnalysisResult).where(
            AnalysisResult.document_version_id == version_id,
            AnalysisResult.analysis_type == analysis_type.value,
            AnalysisResult.is_current == True,
        )
    )
    analysis = result.scalar_one_or_none()
    if not analysis:
        raise HTTPException(status_code=404, detail="No analysis found for this version")
    return analysis
