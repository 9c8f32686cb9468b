"""Test fixtures for the OrgMeter sync.

Provides:
- An in-memory document repository with the Firestore filter vocabulary
- A funder with funding statuses, fee types and expense types
- Builders for OrgMeter source documents
"""

import copy
import itertools
from typing import Any, Dict, List, Optional

import pytest

from orgmeter_sync.services.repository import (
    Collections, DocumentRepository, Document, Filters, sort_documents
)

FUNDER_ID = "funder-1"

_MISSING = object()


def _lookup(document: Dict[str, Any], path: str) -> Any:
    current: Any = document
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return _MISSING
        current = current[segment]
    return current


def _set_field(document: Dict[str, Any], path: str, value: Any) -> None:
    segments = path.split(".")
    current = document
    for segment in segments[:-1]:
        if not isinstance(current.get(segment), dict):
            current[segment] = {}
        current = current[segment]
    current[segments[-1]] = value


def _matches(document: Dict[str, Any], filters: Filters) -> bool:
    for field_path, op, value in filters:
        actual = _lookup(document, field_path)
        if actual is _MISSING:
            return False
        if op == "==" and actual != value:
            return False
        if op == "!=" and actual == value:
            return False
        if op == "in" and actual not in value:
            return False
        if op == "array_contains" and (not isinstance(actual, list) or value not in actual):
            return False
    return True


class InMemoryRepository(DocumentRepository):
    """Dict-backed repository following Firestore's filter semantics."""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._ids = itertools.count(1)

    def _store(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self.collections.setdefault(collection, {})

    def find(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Document]:
        documents = [
            copy.deepcopy(document)
            for document in self._store(collection).values()
            if _matches(document, filters or [])
        ]
        if order_by:
            documents = sort_documents(documents, order_by, descending)
        documents = documents[offset:]
        if limit is not None:
            documents = documents[:limit]
        return documents

    def find_by_id(self, collection: str, doc_id: str) -> Optional[Document]:
        document = self._store(collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    def create(self, collection: str, data: Dict[str, Any]) -> Document:
        doc_id = f"{collection}-{next(self._ids)}"
        document = copy.deepcopy(data)
        document["_id"] = doc_id
        self._store(collection)[doc_id] = document
        return copy.deepcopy(document)

    def find_by_id_and_update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Optional[Document]:
        document = self._store(collection).get(doc_id)
        if document is None:
            return None
        for path, value in updates.items():
            _set_field(document, path, copy.deepcopy(value))
        return copy.deepcopy(document)

    def delete(self, collection: str, doc_id: str) -> bool:
        return self._store(collection).pop(doc_id, None) is not None

    # Test helpers

    def all(self, collection: str) -> List[Document]:
        return self.find(collection)

    def insert(self, collection: str, data: Dict[str, Any]) -> Document:
        return self.create(collection, data)


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def funder_id(repository) -> str:
    """Funder with its lookup tables, stored under a fixed id."""
    repository._store(Collections.FUNDERS)[FUNDER_ID] = {
        "_id": FUNDER_ID, "name": "Acme Funding", "email": "ops@acme.test", "phone": "555-0100",
    }
    for name, initial, closed in [("New", True, False), ("Funded", False, False), ("Paid Off", False, True)]:
        repository.insert(Collections.FUNDING_STATUSES, {
            "funder": FUNDER_ID, "name": name, "initial": initial, "closed": closed,
        })
    for name in ["Bank Fee", "Merchant Application Fee"]:
        repository.insert(Collections.FEE_TYPES, {"funder": FUNDER_ID, "name": name})
    for name in ["ISO Commission", "ISO Application Fee"]:
        repository.insert(Collections.EXPENSE_TYPES, {"funder": FUNDER_ID, "name": name})
    return FUNDER_ID


def source_record(source_id: int, funder: str = FUNDER_ID, needs_sync: bool = True,
                  sync_id: Optional[str] = None, deleted: bool = False, **fields: Any) -> Dict[str, Any]:
    """Build a mirrored OrgMeter document with import and sync bookkeeping."""
    record = {
        "id": source_id,
        "deleted": deleted,
        "importMetadata": {"funder": funder, "importedAt": f"2024-01-{source_id % 28 + 1:02d}T00:00:00"},
        "syncMetadata": {"needsSync": needs_sync, "syncId": sync_id, "lastSyncedAt": None, "lastSyncedBy": None},
        "updatedAt": f"2024-02-{source_id % 28 + 1:02d}T00:00:00",
    }
    record.update(fields)
    return record


@pytest.fixture
def add_source(repository):
    """Insert an OrgMeter source document and return it."""
    def _add(collection: str, source_id: int, **fields: Any) -> Document:
        return repository.insert(collection, source_record(source_id, **fields))
    return _add


def sync_id_of(repository: InMemoryRepository, collection: str, source_id: int) -> Optional[str]:
    record = repository.find_one(collection, [("id", "==", source_id)])
    return (record or {}).get("syncMetadata", {}).get("syncId")
