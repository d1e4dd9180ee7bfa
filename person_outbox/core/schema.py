"""
Core data shapes: the person record and the queued pending operation.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Address(BaseModel):
    model_config = ConfigDict(extra="ignore")

    street: str
    district: str
    region: str

    @field_validator('street', 'district', 'region')
    @classmethod
    def must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError('address fields cannot be empty')
        return v.strip()


class Person(BaseModel):
    """A person record. The identifier is not checksum-validated here; see core.identifier."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    surname: str
    birth_date: date
    address: Optional[Address] = None

    @field_validator('id')
    @classmethod
    def strip_identifier(cls, v):
        return v.strip()

    @field_validator('name', 'surname')
    @classmethod
    def must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError('name fields cannot be empty')
        return v.strip()


class OperationKind(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


# Payload stored for DELETE operations
EMPTY_PAYLOAD = "{}"


@dataclass
class PendingOperation:
    id: int
    identifier: str
    kind: str  # raw value from storage; may be unknown if the row was tampered with
    payload: str
    created_at: Optional[datetime] = None


@dataclass
class ReconciliationReport:
    """Summary of one reconciliation pass."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    reason: str = ""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    dropped: int = 0   # entries removed without being applied (corrupt/obsolete)
    retained: int = 0  # entries left queued for the next run
    errors: list = field(default_factory=list)

    def to_dict(self):
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "reason": self.reason,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "dropped": self.dropped,
            "retained": self.retained,
            "errors": list(self.errors),
        }
