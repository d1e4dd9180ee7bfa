"""
/personas endpoints - thin translation from HTTP to the mutation router.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..core.outcomes import MutationResult, Outcome
from ..core.router import PersonService
from .schemas import DeferredResponse, MessageResponse, PersonListResponse, PersonPayload

router = APIRouter(prefix="/personas", tags=["personas"])

# Outcome -> HTTP status for failures
STATUS_CODES = {
    Outcome.VALIDATION_FAILED: 400,
    Outcome.DUPLICATE_IDENTIFIER: 409,
    Outcome.IMMUTABLE_IDENTIFIER: 409,
    Outcome.NOT_FOUND: 404,
    Outcome.SERVICE_UNAVAILABLE: 503,
}

DEFERRED_RESPONSE = {202: {"model": DeferredResponse, "description": "Stored locally, applied when the remote store is back"}}


def get_person_service(request: Request) -> PersonService:
    return request.app.state.person_service


def _deferred(result: MutationResult) -> JSONResponse:
    return JSONResponse(status_code=202, content=DeferredResponse(message=result.message).model_dump())


def _raise_for_outcome(result: MutationResult) -> None:
    if result.outcome in STATUS_CODES:
        raise HTTPException(status_code=STATUS_CODES[result.outcome], detail=result.message)


@router.post("", response_model=PersonPayload, responses=DEFERRED_RESPONSE)
def create_person(payload: PersonPayload, service: PersonService = Depends(get_person_service)):
    """Create a person. The identifier must be unique."""
    result = service.create(payload.to_person())
    if result.deferred:
        return _deferred(result)
    _raise_for_outcome(result)
    return PersonPayload.from_person(result.record)


@router.get("", response_model=PersonListResponse)
def list_persons(service: PersonService = Depends(get_person_service)):
    """List every stored person. Never served from the local queue."""
    result = service.list()
    _raise_for_outcome(result)
    items = [PersonPayload.from_person(p) for p in result.records]
    return PersonListResponse(items=items, count=len(items))


@router.get("/{identifier}", response_model=PersonPayload)
def get_person(identifier: str, service: PersonService = Depends(get_person_service)):
    result = service.get(identifier)
    _raise_for_outcome(result)
    return PersonPayload.from_person(result.record)


@router.put("/{identifier}", response_model=PersonPayload, responses=DEFERRED_RESPONSE)
def update_person(identifier: str, payload: PersonPayload, service: PersonService = Depends(get_person_service)):
    """Replace a person record. The identifier itself cannot change."""
    result = service.update(identifier, payload.to_person())
    if result.deferred:
        return _deferred(result)
    _raise_for_outcome(result)
    return PersonPayload.from_person(result.record)


@router.delete("/{identifier}", response_model=MessageResponse, responses=DEFERRED_RESPONSE)
def delete_person(identifier: str, service: PersonService = Depends(get_person_service)):
    result = service.delete(identifier)
    if result.deferred:
        return _deferred(result)
    _raise_for_outcome(result)
    return MessageResponse(message=result.message)
