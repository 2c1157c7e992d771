from fastapi import APIRouter

from policywatch.documents.router import router as documents_router
from policywatch.versions.router import router as comparisons_router
from policywatch.analysis.router import router as analysis_router
from policywatch.timing.router import router as timing_router
from policywatch.scoring.router import router as scoring_router

api_router = APIRouter()

api_router.include_router(documents_router)
api_router.include_router(comparisons_router)
api_router.include_router(analysis_router)
api_router.include_router(timing_router)
api_router.include_router(scoring_router)
