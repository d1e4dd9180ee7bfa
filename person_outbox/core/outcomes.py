"""
Outcomes returned by the mutation router and exceptions raised at the remote seam.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .schema import Person


class Outcome(str, Enum):
    OK = "ok"
    DEFERRED = "deferred"
    VALIDATION_FAILED = "validation_failed"
    DUPLICATE_IDENTIFIER = "duplicate_identifier"
    IMMUTABLE_IDENTIFIER = "immutable_identifier"
    NOT_FOUND = "not_found"
    SERVICE_UNAVAILABLE = "service_unavailable"


@dataclass
class MutationResult:
    outcome: Outcome
    record: Optional[Person] = None
    records: Optional[List[Person]] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK

    @property
    def deferred(self) -> bool:
        return self.outcome == Outcome.DEFERRED


class RemoteStoreError(Exception):
    """A remote store operation failed."""


class RemoteUnavailableError(RemoteStoreError):
    """The remote store could not be reached."""


class StoreConfigurationError(Exception):
    """Local configuration of the remote client is broken (e.g. malformed or rejected credentials)."""


class ImmutableIdentifierError(Exception):
    """A queued update tries to change the identifier of its target record."""

    def __init__(self, target: str, payload_identifier: str):
        super().__init__(f"Queued update for {target} carries identifier {payload_identifier}")
        self.target = target
        self.payload_identifier = payload_identifier
