"""
Firestore-backed document repository.
"""

import logging
from typing import Dict, List, Any, Optional
from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.cloud import firestore
from google.auth import default

from ..exceptions import RepositoryError
from .repository import DocumentRepository, Document, Filters, sort_documents

logger = logging.getLogger(__name__)

# Firestore caps `in` queries at 30 values and a write batch at 500 operations
MAX_IN_VALUES = 30
MAX_BATCH_WRITES = 500

INEQUALITY_OPS = {"!=", "<", "<=", ">", ">=", "not-in"}


class FirestoreRepository(DocumentRepository):
    """
    Document repository on top of a Firestore database.
    """

    def __init__(self, project_id: Optional[str] = None, collection_prefix: str = ""):
        """
        Initialize Firestore repository.

        Args:
            project_id: Google Cloud project ID. If None, uses default from environment.
            collection_prefix: Prefix applied to every collection name
        """
        try:
            if project_id:
                self.db = firestore.Client(project=project_id)
            else:
                # Use application default credentials
                credentials, project = default()
                self.db = firestore.Client(project=project, credentials=credentials)

            self.collection_prefix = collection_prefix

            logger.info(f"Firestore repository initialized for project: {self.db.project}")

        except Exception as e:
            logger.error(f"Failed to initialize Firestore: {e}")
            raise

    def _collection(self, name: str):
        return self.db.collection(f"{self.collection_prefix}{name}")

    def _query(self, collection: str, filters: Filters):
        query = self._collection(collection)
        for field_path, op, value in filters:
            query = query.where(field_path, op, value)
        return query

    @staticmethod
    def _chunk_filters(filters: Filters) -> List[Filters]:
        """Split a filter list whose `in` clause exceeds the Firestore limit."""
        for index, (field_path, op, value) in enumerate(filters):
            if op == "in" and len(value) > MAX_IN_VALUES:
                values = list(value)
                return [
                    filters[:index] + [(field_path, "in", values[start:start + MAX_IN_VALUES])] + filters[index + 1:]
                    for start in range(0, len(values), MAX_IN_VALUES)
                ]
        return [filters]

    @staticmethod
    def _to_document(snapshot) -> Document:
        data = snapshot.to_dict() or {}
        data["_id"] = snapshot.id
        return data

    @staticmethod
    def _payload(data: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in data.items() if key != "_id"}

    def find(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Document]:
        filters = list(filters or [])
        chunks = self._chunk_filters(filters)
        # Ordering on a field other than an inequality field needs a client-side sort
        client_side = len(chunks) > 1 or any(op in INEQUALITY_OPS for _, op, _ in filters)

        try:
            documents = []
            for chunk in chunks:
                query = self._query(collection, chunk)
                if not client_side:
                    if order_by:
                        direction = firestore.Query.DESCENDING if descending else firestore.Query.ASCENDING
                        query = query.order_by(order_by, direction=direction)
                    if offset:
                        query = query.offset(offset)
                    if limit:
                        query = query.limit(limit)
                documents.extend(self._to_document(snapshot) for snapshot in query.stream())

            if client_side:
                documents = sort_documents(documents, order_by, descending)
                end = offset + limit if limit else None
                documents = documents[offset:end]

            return documents

        except GoogleAPICallError as e:
            logger.error(f"Failed to query {collection}: {e}")
            raise RepositoryError(f"Failed to query {collection}: {e}") from e

    def find_by_id(self, collection: str, doc_id: str) -> Optional[Document]:
        try:
            snapshot = self._collection(collection).document(str(doc_id)).get()
            if snapshot.exists:
                return self._to_document(snapshot)
            return None

        except GoogleAPICallError as e:
            logger.error(f"Failed to get {collection}/{doc_id}: {e}")
            raise RepositoryError(f"Failed to get {collection}/{doc_id}: {e}") from e

    def create(self, collection: str, data: Dict[str, Any]) -> Document:
        try:
            doc_ref = self._collection(collection).document()
            payload = self._payload(data)
            doc_ref.set(payload)

            logger.debug(f"Created {collection}/{doc_ref.id}")
            return {**payload, "_id": doc_ref.id}

        except GoogleAPICallError as e:
            logger.error(f"Failed to create document in {collection}: {e}")
            raise RepositoryError(f"Failed to create document in {collection}: {e}") from e

    def find_by_id_and_update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Optional[Document]:
        try:
            doc_ref = self._collection(collection).document(str(doc_id))
            doc_ref.update(self._payload(updates))
            return self._to_document(doc_ref.get())

        except NotFound:
            logger.warning(f"Document {collection}/{doc_id} not found for update")
            return None
        except GoogleAPICallError as e:
            logger.error(f"Failed to update {collection}/{doc_id}: {e}")
            raise RepositoryError(f"Failed to update {collection}/{doc_id}: {e}") from e

    def delete(self, collection: str, doc_id: str) -> bool:
        try:
            self._collection(collection).document(str(doc_id)).delete()
            return True

        except GoogleAPICallError as e:
            logger.error(f"Failed to delete {collection}/{doc_id}: {e}")
            raise RepositoryError(f"Failed to delete {collection}/{doc_id}: {e}") from e

    def update_many(self, collection: str, filters: Filters, updates: Dict[str, Any]) -> int:
        try:
            snapshots = [s for chunk in self._chunk_filters(list(filters)) for s in self._query(collection, chunk).stream()]
            for start in range(0, len(snapshots), MAX_BATCH_WRITES):
                batch = self.db.batch()
                for snapshot in snapshots[start:start + MAX_BATCH_WRITES]:
                    batch.update(snapshot.reference, self._payload(updates))
                batch.commit()

            logger.info(f"Updated {len(snapshots)} documents in {collection}")
            return len(snapshots)

        except GoogleAPICallError as e:
            logger.error(f"Failed to update documents in {collection}: {e}")
            raise RepositoryError(f"Failed to update documents in {collection}: {e}") from e

    def delete_many(self, collection: str, filters: Filters) -> int:
        try:
            snapshots = [s for chunk in self._chunk_filters(list(filters)) for s in self._query(collection, chunk).stream()]
            for start in range(0, len(snapshots), MAX_BATCH_WRITES):
                batch = self.db.batch()
                for snapshot in snapshots[start:start + MAX_BATCH_WRITES]:
                    batch.delete(snapshot.reference)
                batch.commit()
            return len(snapshots)

        except GoogleAPICallError as e:
            logger.error(f"Failed to delete documents in {collection}: {e}")
            raise RepositoryError(f"Failed to delete documents in {collection}: {e}") from e

    def count_documents(self, collection: str, filters: Optional[Filters] = None) -> int:
        try:
            total = 0
            for chunk in self._chunk_filters(list(filters or [])):
                results = self._query(collection, chunk).count(alias="total").get()
                total += int(results[0][0].value)
            return total

        except GoogleAPICallError as e:
            logger.error(f"Failed to count documents in {collection}: {e}")
            raise RepositoryError(f"Failed to count documents in {collection}: {e}") from e

    def create_many(self, collection: str, documents: List[Dict[str, Any]]) -> List[Document]:
        if len(documents) > MAX_BATCH_WRITES:
            return super().create_many(collection, documents)

        try:
            batch = self.db.batch()
            created = []
            for data in documents:
                doc_ref = self._collection(collection).document()
                payload = self._payload(data)
                batch.set(doc_ref, payload)
                created.append({**payload, "_id": doc_ref.id})
            batch.commit()
            return created

        except GoogleAPICallError as e:
            logger.error(f"Failed to create documents in {collection}: {e}")
            raise RepositoryError(f"Failed to create documents in {collection}: {e}") from e

    def replace_many(self, collection: str, filters: Filters, documents: List[Dict[str, Any]]) -> List[Document]:
        """Delete and recreate a document set in one atomic write batch."""
        try:
            existing = list(self._query(collection, list(filters)).stream())
            if len(existing) + len(documents) > MAX_BATCH_WRITES:
                return super().replace_many(collection, filters, documents)

            batch = self.db.batch()
            for snapshot in existing:
                batch.delete(snapshot.reference)

            created = []
            for data in documents:
                doc_ref = self._collection(collection).document()
                payload = self._payload(data)
                batch.set(doc_ref, payload)
                created.append({**payload, "_id": doc_ref.id})
            batch.commit()

            logger.debug(f"Replaced {len(existing)} {collection} documents with {len(created)}")
            return created

        except GoogleAPICallError as e:
            logger.error(f"Failed to replace documents in {collection}: {e}")
            raise RepositoryError(f"Failed to replace documents in {collection}: {e}") from e
