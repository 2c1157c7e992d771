from typing import List
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.database import get_db
from policywatch.documents.models import Document
from policywatch.documents.schemas import (
    DocumentCreate, DocumentResponse, DocumentVersionResponse, IngestResponse, ScrapeResult,
)
from policywatch.timing.schemas import HistoryReport
from policywatch.timing.service import BehavioralSignalsService
from policywatch.versions.service import VersioningService

router = APIRouter(prefix="/documents", tags=["documents"])


@router.post("", response_model=DocumentResponse, status_code=201)
async def create_document(request: DocumentCreate, db: AsyncSession = Depends(get_db)):
    document = Document(
        name=request.name,
        source_url=request.source_url,
        company_name=request.company_name,
        document_type=request.document_type,
    )
    db.add(document)
    await db.commit()
    await db.refresh(document)
    return document


@router.get("/{document_id}", response_model=DocumentResponse)
async def get_document(document_id: UUID, db: AsyncSession = Depends(get_db)):
    document = await db.get(Document, document_id)
    if not document:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@router.post("/{document_id}/versions", response_model=IngestResponse)
async def ingest_scrape(document_id: UUID, scrape: ScrapeResult, db: AsyncSession = Depends(get_db)):
    """Record a scrape; creates a version (and comparison) only when the content changed."""
    service = VersioningService(db)
    try:
        document = await service.get_document(document_id)
        version, comparison = await service.record_scrape(document, scrape)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    if version is None:
        return IngestResponse(changed=False)

    return IngestResponse(
        changed=True,
        version=DocumentVersionResponse.model_validate(version),
        comparison_id=comparison.id if comparison else None,
    )


@router.get("/{document_id}/versions", response_model=List[DocumentVersionResponse])
async def list_versions(document_id: UUID, db: AsyncSession = Depends(get_db)):
    service = VersioningService(db)
    try:
        await service.get_document(document_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await service.list_versions(document_id)


@router.get("/{document_id}/history/timing", response_model=HistoryReport)
async def timing_history(document_id: UUID, db: AsyncSession = Depends(get_db)):
    """Timing patterns across every version of the document."""
    try:
        await VersioningService(db).get_document(document_id)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return await BehavioralSignalsService(db).document_history(document_id)
