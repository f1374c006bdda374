"""API dependencies for the field schema services."""

from fastapi import Request

from fieldengine.services.bulk_mutations import FieldMutationEngine
from fieldengine.services.field_inspection import FieldInspector
from fieldengine.services.field_registry import FieldRegistry
from fieldengine.services.voters import VoterService


def get_field_engine(request: Request) -> FieldMutationEngine:
    return request.app.state.field_engine


def get_field_registry(request: Request) -> FieldRegistry:
    return request.app.state.field_registry


def get_field_inspector(request: Request) -> FieldInspector:
    return request.app.state.field_inspector


def get_voter_service(request: Request) -> VoterService:
    return request.app.state.voter_service
