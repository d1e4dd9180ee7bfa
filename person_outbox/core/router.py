"""
Mutation router - entry point for person CRUD.

Every call re-resolves the remote client and re-runs the availability probe.
When the store is unreachable, mutations are queued in the pending-operation
store and reported as DEFERRED; reads fail with SERVICE_UNAVAILABLE.
"""

from typing import Optional

from .client import RemoteStoreHandle, default_handle
from .identifier import is_valid_identifier
from .outbox import PendingOperationStore
from .outcomes import MutationResult, Outcome, RemoteUnavailableError
from .remote import DocumentStore, document_to_person, person_to_document
from .schema import EMPTY_PAYLOAD, OperationKind, Person
from ..util.logging import logger

DEFERRED_MESSAGE = "Operation stored temporarily"
INVALID_IDENTIFIER_MESSAGE = "Invalid identifier (format or check digit)"


class PersonService:
    """Routes each mutation to the live store or the durable queue."""

    def __init__(self, outbox: PendingOperationStore, handle: Optional[RemoteStoreHandle] = None):
        self.outbox = outbox
        self.handle = handle or default_handle

    def _connect(self) -> Optional[DocumentStore]:
        # Client object present AND probe succeeds; either may change between calls
        return self.handle.connect()

    def _defer(self, identifier: str, kind: OperationKind, payload: str) -> MutationResult:
        self.outbox.append(identifier, kind, payload)
        logger.log_person_mutation(kind.value.lower(), identifier, "deferred")
        return MutationResult(Outcome.DEFERRED, message=DEFERRED_MESSAGE)

    def create(self, person: Person) -> MutationResult:
        logger.log_person_mutation("create", person.id, "started")
        if not is_valid_identifier(person.id):
            logger.log_person_mutation("create", person.id, "rejected", {"reason": "invalid identifier"})
            return MutationResult(Outcome.VALIDATION_FAILED, message=INVALID_IDENTIFIER_MESSAGE)

        client = self._connect()
        if client is None:
            return self._defer(person.id, OperationKind.CREATE, person.model_dump_json())

        try:
            if client.exists(person.id):
                logger.log_person_mutation("create", person.id, "conflict", {"reason": "duplicate identifier"})
                return MutationResult(Outcome.DUPLICATE_IDENTIFIER, message="Identifier already registered")
            client.put(person.id, person_to_document(person))
        except RemoteUnavailableError as e:
            # Lost the store after the probe; replay of CREATE is idempotent
            logger.warning(f"Remote store dropped during create of {person.id}: {e}")
            return self._defer(person.id, OperationKind.CREATE, person.model_dump_json())

        logger.log_person_mutation("create", person.id)
        return MutationResult(Outcome.OK, record=person)

    def update(self, identifier: str, person: Person) -> MutationResult:
        logger.log_person_mutation("update", identifier, "started")
        # Identifier immutability is enforced locally, before any remote round trip
        if identifier != person.id:
            logger.log_person_mutation("update", identifier, "conflict",
                                       {"reason": "identifier change blocked", "payload_identifier": person.id})
            return MutationResult(Outcome.IMMUTABLE_IDENTIFIER, message="The identifier of a person cannot be changed")

        if not is_valid_identifier(identifier):
            logger.log_person_mutation("update", identifier, "rejected", {"reason": "invalid identifier"})
            return MutationResult(Outcome.VALIDATION_FAILED, message=INVALID_IDENTIFIER_MESSAGE)

        client = self._connect()
        if client is None:
            return self._defer(identifier, OperationKind.UPDATE, person.model_dump_json())

        try:
            if not client.exists(identifier):
                logger.log_person_mutation("update", identifier, "not_found")
                return MutationResult(Outcome.NOT_FOUND, message="Person not found")
            client.put(identifier, person_to_document(person))
        except RemoteUnavailableError as e:
            logger.warning(f"Remote store dropped during update of {identifier}: {e}")
            return self._defer(identifier, OperationKind.UPDATE, person.model_dump_json())

        logger.log_person_mutation("update", identifier)
        return MutationResult(Outcome.OK, record=person)

    def delete(self, identifier: str) -> MutationResult:
        logger.log_person_mutation("delete", identifier, "started")
        if not is_valid_identifier(identifier):
            logger.log_person_mutation("delete", identifier, "rejected", {"reason": "invalid identifier"})
            return MutationResult(Outcome.VALIDATION_FAILED, message=INVALID_IDENTIFIER_MESSAGE)

        client = self._connect()
        if client is None:
            return self._defer(identifier, OperationKind.DELETE, EMPTY_PAYLOAD)

        try:
            if not client.exists(identifier):
                logger.log_person_mutation("delete", identifier, "not_found")
                return MutationResult(Outcome.NOT_FOUND, message="Person not found")
            client.delete(identifier)
        except RemoteUnavailableError as e:
            logger.warning(f"Remote store dropped during delete of {identifier}: {e}")
            return self._defer(identifier, OperationKind.DELETE, EMPTY_PAYLOAD)

        logger.log_person_mutation("delete", identifier)
        return MutationResult(Outcome.OK, message="Person deleted")

    def get(self, identifier: str) -> MutationResult:
        if not is_valid_identifier(identifier):
            return MutationResult(Outcome.VALIDATION_FAILED, message=INVALID_IDENTIFIER_MESSAGE)

        client = self._connect()
        if client is None:
            logger.log_person_mutation("get", identifier, "unavailable")
            return MutationResult(Outcome.SERVICE_UNAVAILABLE, message="Remote store not available")

        document = client.get(identifier)
        if document is None:
            logger.log_person_mutation("get", identifier, "not_found")
            return MutationResult(Outcome.NOT_FOUND, message="Person not found")

        logger.log_person_mutation("get", identifier)
        return MutationResult(Outcome.OK, record=document_to_person(document))

    def list(self) -> MutationResult:
        client = self._connect()
        if client is None:
            logger.log_operation("person.list", "unavailable")
            return MutationResult(Outcome.SERVICE_UNAVAILABLE, message="Remote store not available")

        records = [document_to_person(document) for document in client.list_all()]
        logger.log_operation("person.list", "success", {"count": len(records)})
        return MutationResult(Outcome.OK, records=records)
