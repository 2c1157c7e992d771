"""
Pipeline stages. Each stage opens its own session so it can run from a
FastAPI background task or any external worker.
"""
import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.analysis.change_service import ChangeAnalysisService
from policywatch.analysis.models import AnalysisJob, AnalysisJobStatus, AnalysisType
from policywatch.analysis.service import PolicyAnalysisService
from policywatch.config import settings
from policywatch.database import AsyncSessionLocal
from policywatch.documents.models import DocumentVersion
from policywatch.documents.schemas import ScrapeResult
from policywatch.llm.client import LLMClient
from policywatch.versions.service import VersioningService

logger = logging.getLogger(__name__)


async def create_analysis_job(
    db: AsyncSession, version_id: UUID, analysis_type: str = AnalysisType.FULL_ANALYSIS.value
) -> AnalysisJob:
    version = await db.get(DocumentVersion, version_id)
    if not version:
        raise ValueError(f"Document version {version_id} not found")
    job = AnalysisJob(
        document_version_id=version_id,
        analysis_type=analysis_type,
        status=AnalysisJobStatus.PENDING.value,
    )
    job.log_progress("Analysis queued")
    db.add(job)
    await db.commit()
    await db.refresh(job)
    return job


async def run_document_analysis(
    job_id: UUID,
    llm_client: Optional[LLMClient] = None,
    session_factory=None,
    cancel_event: Optional[asyncio.Event] = None,
) -> None:
    """Run one AnalysisJob to completion. The job always ends completed or failed."""
    factory = session_factory or AsyncSessionLocal

    async with factory() as db:
        job = await db.get(AnalysisJob, job_id)
        if not job:
            logger.error(f"Analysis job {job_id} not found")
            return
        if job.status != AnalysisJobStatus.PENDING.value:
            logger.warning(f"Analysis job {job_id} is {job.status}, not starting it again")
            return

        job.mark_running()
        await db.commit()

        async def progress(done: int, total: int, message: str) -> None:
            job.total_chunks = total
            job.processed_chunks = done
            job.log_progress(message)
            await db.commit()

        timeout = settings.ANALYSIS_DEADLINE_SECONDS
        try:
            service = PolicyAnalysisService(db, llm_client=llm_client)
            version = await service.get_version(job.document_version_id)
            result = await asyncio.wait_for(
                service.analyze(
                    version,
                    job.analysis_type,
                    cancel_event=cancel_event,
                    progress=progress,
                    deadline=time.monotonic() + timeout,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            await _fail_job(db, job, f"Analysis exceeded the {timeout}s deadline")
            return
        except Exception as e:
            logger.exception(f"Analysis job {job_id} failed")
            await _fail_job(db, job, str(e) or type(e).__name__)
            return

        job.mark_completed(result.id, result.model_used, result.tokens_used, result.analysis_cost)
        await db.commit()
        logger.info(f"Analysis job {job_id} completed in {job.duration_ms}ms")


async def _fail_job(db: AsyncSession, job: AnalysisJob, message: str) -> None:
    await db.rollback()
    await db.refresh(job)
    job.mark_failed(message)
    await db.commit()
    logger.error(f"Analysis job {job.id} failed: {message}")


async def run_change_analysis(
    comparison_id: UUID,
    llm_client: Optional[LLMClient] = None,
    session_factory=None,
) -> bool:
    """Annotate one comparison. True when the comparison ends up analyzed."""
    factory = session_factory or AsyncSessionLocal

    async with factory() as db:
        try:
            service = ChangeAnalysisService(db, llm_client=llm_client)
            comparison = await asyncio.wait_for(
                service.analyze_comparison(comparison_id),
                timeout=settings.ANALYSIS_DEADLINE_SECONDS,
            )
        except asyncio.TimeoutError:
            await db.rollback()
            logger.error(f"Change analysis for comparison {comparison_id} exceeded the deadline")
            return False
        except Exception:
            await db.rollback()
            logger.exception(f"Change analysis for comparison {comparison_id} failed")
            return False
        return comparison.is_analyzed


async def ingest_scrape(
    document_id: UUID,
    scrape: ScrapeResult,
    llm_client: Optional[LLMClient] = None,
    session_factory=None,
    analyze: bool = True,
) -> Optional[UUID]:
    """
    Record a scrape and, when it produced a new version, run change analysis
    for the new comparison and a full analysis of the version.
    Returns the new version id, or None when the content was unchanged.
    """
    factory = session_factory or AsyncSessionLocal

    async with factory() as db:
        versioning = VersioningService(db)
        document = await versioning.get_document(document_id)
        version, comparison = await versioning.record_scrape(document, scrape)
        if version is None or not analyze:
            return version.id if version else None

        job = await create_analysis_job(db, version.id)

    if comparison is not None:
        await run_change_analysis(comparison.id, llm_client=llm_client, session_factory=factory)
    await run_document_analysis(job.id, llm_client=llm_client, session_factory=factory)
    return version.id


async def fail_stale_jobs(db: AsyncSession, older_than_minutes: Optional[int] = None) -> int:
    """
    Mark analysis jobs still running after ``older_than_minutes`` as failed.
    A worker that died mid-run leaves its job in running state; this is the
    cleanup for that. Returns the number of jobs marked failed.
    """
    minutes = older_than_minutes if older_than_minutes is not None else settings.ANALYSIS_STALE_JOB_MINUTES
    now = datetime.utcnow()
    result = await db.execute(
        select(AnalysisJob).where(
            AnalysisJob.status == AnalysisJobStatus.RUNNING.value,
            AnalysisJob.started_at < now - timedelta(minutes=minutes),
        )
    )
    stale = result.scalars().all()
    if not stale:
        logger.info(f"No analysis jobs running longer than {minutes} minutes")
        return 0

    for job in stale:
        running_minutes = int((now - job.started_at).total_seconds() // 60)
        job.mark_failed(f"Job timed out after {running_minutes} minutes")
        logger.warning(f"Analysis job {job.id} marked failed after running {running_minutes} minutes")
    await db.commit()
    return len(stale)
