from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from policywatch.database import get_db
from policywatch.documents.models import DocumentVersion
from policywatch.timing.schemas import BehavioralReport
from policywatch.timing.service import BehavioralSignalsService

router = APIRouter(prefix="/versions", tags=["timing"])


@router.get("/{version_id}/timing", response_model=BehavioralReport)
async def version_timing(version_id: UUID, db: AsyncSession = Depends(get_db)):
    version = await db.get(DocumentVersion, version_id)
    if not version:
        raise HTTPException(status_code=404, detail="Document version not found")
    return await BehavioralSignalsService(db).signals_for_version(version)
