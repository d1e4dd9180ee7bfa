"""
Remote document store - the authoritative home of person records.

Two implementations share the DocumentStore interface:
- FirestoreRestStore talks to Cloud Firestore (or its emulator) over the REST API.
- InMemoryDocumentStore keeps documents in a dict; used for local development and tests.
"""

import copy
import re
import threading
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests
from google.auth import exceptions as google_auth_exceptions
from pydantic import ValidationError

from .outcomes import RemoteStoreError, RemoteUnavailableError, StoreConfigurationError
from .schema import Person


class DocumentStore(ABC):
    """Abstract interface for the remote person collection."""

    @abstractmethod
    def ping(self) -> None:
        """Canary read; raises RemoteUnavailableError when the backend is not reachable."""
        pass

    @abstractmethod
    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        """Read a document by id. Returns None if it does not exist."""
        pass

    def exists(self, doc_id: str) -> bool:
        """Check whether a document exists."""
        return self.get(doc_id) is not None

    @abstractmethod
    def put(self, doc_id: str, data: Dict[str, Any]) -> None:
        """Write a document, replacing every field of any existing one."""
        pass

    @abstractmethod
    def delete(self, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        pass

    @abstractmethod
    def list_all(self) -> List[Dict[str, Any]]:
        """Scan the whole collection."""
        pass


# Person <-> document mapping

def person_to_document(person: Person) -> Dict[str, Any]:
    """Birth dates are stored as timestamps at midnight UTC."""
    birth = person.birth_date
    return {
        "id": person.id,
        "name": person.name,
        "surname": person.surname,
        "birth_date": datetime(birth.year, birth.month, birth.day, tzinfo=timezone.utc),
        "address": person.address.model_dump() if person.address else None,
    }


def document_to_person(document: Dict[str, Any]) -> Person:
    data = dict(document)
    birth = data.get("birth_date")
    if isinstance(birth, datetime):
        data["birth_date"] = birth.astimezone(timezone.utc).date() if birth.tzinfo else birth.date()
    try:
        return Person.model_validate(data)
    except ValidationError as e:
        raise RemoteStoreError(f"Stored document {data.get('id')!r} is not a valid person: {e.error_count()} error(s)") from e


# Firestore typed value codec

_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def encode_value(value: Any) -> Dict[str, Any]:
    if value is None:
        return {"nullValue": None}
    if isinstance(value, bool):
        return {"booleanValue": value}
    if isinstance(value, int):
        return {"integerValue": str(value)}
    if isinstance(value, float):
        return {"doubleValue": value}
    if isinstance(value, str):
        return {"stringValue": value}
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        stamp = value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
        return {"timestampValue": stamp}
    if isinstance(value, date):
        return encode_value(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, dict):
        return {"mapValue": {"fields": encode_fields(value)}}
    if isinstance(value, (list, tuple)):
        return {"arrayValue": {"values": [encode_value(v) for v in value]}}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def encode_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {key: encode_value(value) for key, value in data.items()}


def parse_timestamp(text: str) -> datetime:
    # Firestore may return nanosecond precision; datetime keeps microseconds
    text = _FRACTION_RE.sub(r".\1", text)
    return datetime.fromisoformat(text.replace("Z", "+00:00"))


def decode_value(value: Dict[str, Any]) -> Any:
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return value["booleanValue"]
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "timestampValue" in value:
        return parse_timestamp(value["timestampValue"])
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    raise RemoteStoreError(f"Unsupported Firestore value: {list(value.keys())}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}


class FirestoreRestStore(DocumentStore):
    """Firestore REST v1 client bound to one collection."""

    # Statuses that mean "try again later" rather than "this request is wrong"
    UNAVAILABLE_STATUSES = {429, 502, 503, 504}
    PAGE_SIZE = 300

    def __init__(self, project_id: str, session: requests.Session, collection: str = "personas",
                 database: str = "(default)", base_url: str = "https://firestore.googleapis.com/v1",
                 timeout: float = 10.0, probe_collection: str = "test", probe_document: str = "test"):
        self.project_id = project_id
        self.session = session
        self.collection = collection
        self.database = database
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_collection = probe_collection
        self.probe_document = probe_document

    @property
    def documents_url(self) -> str:
        return f"{self.base_url}/projects/{self.project_id}/databases/{self.database}/documents"

    def _document_url(self, collection: str, doc_id: str) -> str:
        return f"{self.documents_url}/{quote(collection, safe='')}/{quote(doc_id, safe='')}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise RemoteUnavailableError(f"Firestore unreachable: {e}") from e
        except google_auth_exceptions.TransportError as e:
            raise RemoteUnavailableError(f"Token endpoint unreachable: {e}") from e
        except google_auth_exceptions.RefreshError as e:
            raise StoreConfigurationError(f"Credentials rejected: {e}") from e
        except requests.RequestException as e:
            raise RemoteStoreError(f"Firestore request failed: {e}") from e

        if response.status_code in (401, 403):
            raise StoreConfigurationError(f"Firestore rejected credentials ({response.status_code}): {_error_message(response)}")
        if response.status_code in self.UNAVAILABLE_STATUSES:
            raise RemoteUnavailableError(f"Firestore unavailable ({response.status_code}): {_error_message(response)}")
        return response

    def ping(self) -> None:
        url = self._document_url(self.probe_collection, self.probe_document)
        response = self._request("GET", url)
        if response.status_code == 200:
            return
        if response.status_code == 404:
            message = _error_message(response).lower()
            if "database" in message and "does not exist" in message:
                raise RemoteUnavailableError(f"Firestore database not initialized: {_error_message(response)}")
            return
        raise RemoteStoreError(f"Probe failed ({response.status_code}): {_error_message(response)}")

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        response = self._request("GET", self._document_url(self.collection, doc_id))
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise RemoteStoreError(f"Read of {doc_id} failed ({response.status_code}): {_error_message(response)}")
        return decode_fields(response.json().get("fields", {}))

    def put(self, doc_id: str, data: Dict[str, Any]) -> None:
        # PATCH without an update mask replaces the whole document
        response = self._request("PATCH", self._document_url(self.collection, doc_id),
                                 json={"fields": encode_fields(data)})
        if response.status_code != 200:
            raise RemoteStoreError(f"Write of {doc_id} failed ({response.status_code}): {_error_message(response)}")

    def delete(self, doc_id: str) -> None:
        response = self._request("DELETE", self._document_url(self.collection, doc_id))
        if response.status_code not in (200, 204, 404):
            raise RemoteStoreError(f"Delete of {doc_id} failed ({response.status_code}): {_error_message(response)}")

    def list_all(self) -> List[Dict[str, Any]]:
        url = f"{self.documents_url}/{quote(self.collection, safe='')}"
        documents = []
        page_token = None
        while True:
            params = {"pageSize": self.PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            response = self._request("GET", url, params=params)
            if response.status_code != 200:
                raise RemoteStoreError(f"Scan of {self.collection} failed ({response.status_code}): {_error_message(response)}")
            body = response.json()
            for document in body.get("documents", []):
                documents.append(decode_fields(document.get("fields", {})))
            page_token = body.get("nextPageToken")
            if not page_token:
                return documents


def _error_message(response: requests.Response) -> str:
    try:
        return response.json().get("error", {}).get("message", "") or response.text[:200]
    except ValueError:
        return response.text[:200]


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store whose reachability can be toggled."""

    def __init__(self, online: bool = True):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.online = online

    def set_online(self, online: bool) -> None:
        self.online = online

    def _check(self) -> None:
        if not self.online:
            raise RemoteUnavailableError("In-memory store is offline")

    def ping(self) -> None:
        self._check()

    def get(self, doc_id: str) -> Optional[Dict[str, Any]]:
        self._check()
        with self._lock:
            document = self._documents.get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def put(self, doc_id: str, data: Dict[str, Any]) -> None:
        self._check()
        with self._lock:
            self._documents[doc_id] = copy.deepcopy(data)

    def delete(self, doc_id: str) -> None:
        self._check()
        with self._lock:
            self._documents.pop(doc_id, None)

    def list_all(self) -> List[Dict[str, Any]]:
        self._check()
        with self._lock:
            return [copy.deepcopy(d) for d in self._documents.values()]
