from typing import Annotated

from fastapi import APIRouter, Depends, Request

from visa_advisor.core.auth import get_current_user
from visa_advisor.schemas.auth import CurrentUser
from visa_advisor.schemas.responses import ApiResponse
from visa_advisor.services.code_resolver import RULES_VERSION
from visa_advisor.services.visa_catalog import catalog_entries
from visa_advisor.utils.responses import create_api_response

router = APIRouter()


@router.get(
    "",
    response_model=ApiResponse,
    summary="List supported visa categories",
    operation_id="list_visas",
)
async def list_visas(
    request: Request,
    current_user: Annotated[CurrentUser, Depends(get_current_user)],
) -> ApiResponse:
    """Return the canonical visa catalog."""
    return create_api_response(
        data={"items": catalog_entries(), "rules_version": RULES_VERSION},
        message="Visa catalog retrieved successfully",
        request=request,
    )
