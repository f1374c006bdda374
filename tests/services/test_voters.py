"""Tests for the voter document service."""

import pytest

from fieldengine.core.exceptions import EntityNotFound

VOTER_B = "00000000-0000-0000-0000-00000000000b"


@pytest.mark.asyncio
async def test_get_voter_unwraps_attributes(voter_service):
    """Test that legacy attributes are presented flat."""
    voter = await voter_service.get_voter(VOTER_B)

    assert voter["id"] == VOTER_B
    assert voter["caste"] == "SC"
    assert voter["mobile"] == "9800000002"
    assert voter["name"] == "Bala"


@pytest.mark.asyncio
async def test_get_voter_missing(voter_service):
    with pytest.raises(EntityNotFound):
        await voter_service.get_voter("missing")


@pytest.mark.asyncio
async def test_update_voter_writes_flat(voter_service, entities):
    """Test that editing a legacy attribute stores the raw value."""
    voter = await voter_service.update_voter(
        VOTER_B, {"caste": {"value": "ST", "visible": True}, "ward": 12}
    )

    assert voter["caste"] == "ST"
    assert voter["ward"] == 12
    assert entities.documents[VOTER_B]["caste"] == "ST"
    assert entities.documents[VOTER_B]["mobile"] == {"value": "9800000002", "visible": True}


@pytest.mark.asyncio
async def test_update_voter_ignores_identity_attributes(voter_service, entities):
    voter = await voter_service.update_voter(
        VOTER_B, {"id": "other", "createdAt": "2020-01-01", "name": "Bala K"}
    )

    assert voter["id"] == VOTER_B
    assert voter["name"] == "Bala K"
    assert "createdAt" not in entities.documents[VOTER_B]


@pytest.mark.asyncio
async def test_update_voter_missing(voter_service):
    with pytest.raises(EntityNotFound):
        await voter_service.update_voter("missing", {"ward": 1})
