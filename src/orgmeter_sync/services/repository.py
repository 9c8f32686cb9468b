"""
Document store abstraction shared by every sync engine.

Filters are lists of ``(field_path, op, value)`` triples using dotted field
paths and the Firestore operator vocabulary (``==``, ``!=``, ``in``,
``array_contains``). A field that is absent never satisfies ``==`` or ``!=``.
Documents are plain dicts carrying their store id under ``_id``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional, Tuple

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Filter = Tuple[str, str, Any]
Filters = List[Filter]


class Collections:
    """Collection names for source mirrors, CRM targets, lookups and joins."""

    # OrgMeter mirrors (source side)
    ORGMETER_ADVANCES = "orgmeter_advances"
    ORGMETER_ISOS = "orgmeter_isos"
    ORGMETER_MERCHANTS = "orgmeter_merchants"
    ORGMETER_LENDERS = "orgmeter_lenders"
    ORGMETER_USERS = "orgmeter_users"
    ORGMETER_SYNDICATORS = "orgmeter_syndicators"
    ORGMETER_SALES_REP_USERS = "orgmeter_sales_rep_users"
    ORGMETER_UNDERWRITER_USERS = "orgmeter_underwriter_users"
    ORGMETER_PAYMENTS = "orgmeter_payments"

    # CRM entities
    FUNDERS = "funders"
    FUNDINGS = "fundings"
    ISOS = "isos"
    MERCHANTS = "merchants"
    LENDERS = "lenders"
    SYNDICATORS = "syndicators"
    USERS = "users"
    REPRESENTATIVES = "representatives"

    # Funding dependents
    PAYBACK_PLANS = "payback_plans"
    FUNDING_FEES = "funding_fees"
    FUNDING_EXPENSES = "funding_expenses"
    DISBURSEMENT_INTENTS = "disbursement_intents"
    DISBURSEMENTS = "disbursements"
    COMMISSION_INTENTS = "commission_intents"
    COMMISSIONS = "commissions"
    SYNDICATIONS = "syndications"
    PAYBACKS = "paybacks"

    # Funder-scoped lookups
    FUNDING_STATUSES = "funding_statuses"
    FEE_TYPES = "fee_types"
    EXPENSE_TYPES = "expense_types"

    # Join tables
    ISO_FUNDERS = "iso_funders"
    MERCHANT_FUNDERS = "merchant_funders"
    SYNDICATOR_FUNDERS = "syndicator_funders"
    USER_FUNDERS = "user_funders"
    USER_LENDERS = "user_lenders"
    REPRESENTATIVE_ISOS = "representative_isos"
    ISO_MERCHANTS = "iso_merchants"

    # Job tracking
    SYNC_JOBS = "sync_jobs"


def get_field(document: Optional[Dict[str, Any]], path: str, default: Any = None) -> Any:
    """
    Read a dotted field path from a nested document.

    Args:
        document: Document to read from
        path: Dotted path such as ``syncMetadata.syncId``
        default: Value returned when any segment is missing

    Returns:
        The stored value or ``default``
    """
    current: Any = document
    for segment in path.split("."):
        if not isinstance(current, dict) or segment not in current:
            return default
        current = current[segment]
    return current


def sort_documents(documents: List[Document], order_by: Optional[str], descending: bool = False) -> List[Document]:
    """Sort documents by a field path, keeping documents without it last."""
    if not order_by:
        return list(documents)
    present = [doc for doc in documents if get_field(doc, order_by) is not None]
    absent = [doc for doc in documents if get_field(doc, order_by) is None]
    present.sort(key=lambda doc: get_field(doc, order_by), reverse=descending)
    return present + absent


class DocumentRepository(ABC):
    """
    Abstract document store.

    Concrete stores implement the five primitive operations; the bulk
    operations have portable defaults that stores may override with
    native batching.
    """

    @abstractmethod
    def find(
        self,
        collection: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Document]:
        """
        Find documents matching all filters.

        Args:
            collection: Collection name
            filters: Filter triples, all of which must match
            order_by: Optional field path to sort by
            descending: Sort direction
            limit: Maximum number of documents to return
            offset: Number of matching documents to skip

        Returns:
            Matching documents
        """
        pass

    @abstractmethod
    def find_by_id(self, collection: str, doc_id: str) -> Optional[Document]:
        pass

    @abstractmethod
    def create(self, collection: str, data: Dict[str, Any]) -> Document:
        """Insert a document and return it with its assigned ``_id``."""
        pass

    @abstractmethod
    def find_by_id_and_update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> Optional[Document]:
        """
        Set the given (possibly dotted) fields on one document.

        Returns:
            The updated document, or None when no document has that id
        """
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        pass

    def find_one(self, collection: str, filters: Filters) -> Optional[Document]:
        results = self.find(collection, filters, limit=1)
        return results[0] if results else None

    def find_one_and_update(self, collection: str, filters: Filters, updates: Dict[str, Any]) -> Optional[Document]:
        document = self.find_one(collection, filters)
        if document is None:
            return None
        return self.find_by_id_and_update(collection, document["_id"], updates)

    def update_many(self, collection: str, filters: Filters, updates: Dict[str, Any]) -> int:
        documents = self.find(collection, filters)
        for document in documents:
            self.find_by_id_and_update(collection, document["_id"], updates)
        return len(documents)

    def delete_many(self, collection: str, filters: Filters) -> int:
        documents = self.find(collection, filters)
        for document in documents:
            self.delete(collection, document["_id"])
        return len(documents)

    def count_documents(self, collection: str, filters: Optional[Filters] = None) -> int:
        return len(self.find(collection, filters))

    def aggregate_counts(self, collection: str, base_filters: Filters, buckets: Dict[str, Filters]) -> Dict[str, int]:
        """
        Count documents per named bucket.

        Args:
            collection: Collection name
            base_filters: Filters shared by every bucket
            buckets: Bucket name to the extra filters of that bucket

        Returns:
            Bucket name to document count
        """
        return {
            name: self.count_documents(collection, list(base_filters) + list(extra))
            for name, extra in buckets.items()
        }

    def create_many(self, collection: str, documents: List[Dict[str, Any]]) -> List[Document]:
        return [self.create(collection, data) for data in documents]

    def replace_many(self, collection: str, filters: Filters, documents: List[Dict[str, Any]]) -> List[Document]:
        """
        Replace the set of documents matching ``filters`` with ``documents``.

        If recreation fails partway, the documents created so far are removed
        again so the parent is never left with a partial set.

        Returns:
            The newly created documents
        """
        removed = self.delete_many(collection, filters)
        created: List[Document] = []
        try:
            for data in documents:
                created.append(self.create(collection, data))
        except Exception as e:
            logger.error(f"Failed to recreate {collection} set, removing {len(created)} partial documents: {e}")
            for document in created:
                self.delete(collection, document["_id"])
            raise

        logger.debug(f"Replaced {removed} {collection} documents with {len(created)}")
        return created
