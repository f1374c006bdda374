"""Voter document API routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends

from fieldengine.api.deps import get_voter_service
from fieldengine.core.responses import success_response
from fieldengine.services.voters import VoterService

router = APIRouter(prefix="/voters", tags=["Voters"])


@router.get("/details/{voter_id}", response_model=dict)
async def get_voter_details(
    voter_id: str,
    voters: Annotated[VoterService, Depends(get_voter_service)],
) -> dict[str, Any]:
    """Get one voter with every attribute in its flat form."""
    voter = await voters.get_voter(voter_id)
    return success_response(data=voter)


@router.put("/{voter_id}", response_model=dict)
async def update_voter(
    voter_id: str,
    attributes: Annotated[dict[str, Any], Body()],
    voters: Annotated[VoterService, Depends(get_voter_service)],
) -> dict[str, Any]:
    """
    Update attributes on one voter.

    Identity and timestamp attributes in the body are ignored.
    """
    voter = await voters.update_voter(voter_id, attributes)
    return success_response(data=voter, message="Voter updated successfully")
