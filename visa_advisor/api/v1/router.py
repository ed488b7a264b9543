from fastapi import APIRouter

from visa_advisor.api.v1.endpoints import submissions, visas

# Create API router
api_router = APIRouter()

api_router.include_router(submissions.router, prefix="/submissions", tags=["Submissions"])
api_router.include_router(visas.router, prefix="/visas", tags=["Visas"])

__all__ = ["api_router"]
