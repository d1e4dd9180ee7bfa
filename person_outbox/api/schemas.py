"""
HTTP request/response models. Birth dates travel as dd-MM-yyyy strings.
"""

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, field_serializer, field_validator

from ..core.schema import Person

DATE_FORMAT = "%d-%m-%Y"


class PersonPayload(Person):
    """Person as exchanged over HTTP."""

    @field_validator('birth_date', mode='before')
    @classmethod
    def parse_birth_date(cls, v):
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, date):
            return v
        if isinstance(v, str):
            try:
                return datetime.strptime(v.strip(), DATE_FORMAT).date()
            except ValueError:
                raise ValueError('birth_date must use the dd-MM-yyyy format')
        raise ValueError('birth_date must be a dd-MM-yyyy string')

    @field_serializer('birth_date', when_used='json')
    def format_birth_date(self, v: date) -> str:
        return v.strftime(DATE_FORMAT)

    def to_person(self) -> Person:
        return Person.model_validate(self.model_dump())

    @classmethod
    def from_person(cls, person: Person) -> "PersonPayload":
        return cls.model_validate(person.model_dump())


class PersonListResponse(BaseModel):
    items: List[PersonPayload]
    count: int


class DeferredResponse(BaseModel):
    status: str = "deferred"
    message: str


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    version: str
    outbox_health: bool
    pending_operations: int
    remote_status: str  # available|unavailable|offline|misconfigured


class SyncStatusResponse(BaseModel):
    pending_operations: int
    running: bool
    heartbeat: Dict[str, Any]
    last_report: Optional[Dict[str, Any]] = None
