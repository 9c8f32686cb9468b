"""
Funder-scoped lookups of CRM reference records.
"""

import logging
from typing import Any, Dict, List, Optional

from ..services.repository import Collections, DocumentRepository, Document

logger = logging.getLogger(__name__)

SNAPSHOT_FIELDS = ("name", "email", "phone")


class LookupService:
    """
    Reads the CRM records the transformers reference by name or id.
    """

    def __init__(self, repository: DocumentRepository, funder_id: str):
        self.repository = repository
        self.funder_id = funder_id
        self._status_cache: Dict[str, Optional[Document]] = {}

    def _find_by_name(self, collection: str, name: str, skip_inactive: bool = True) -> Optional[Document]:
        """Case-insensitive exact name match among the funder's records."""
        wanted = name.strip().lower()
        for record in self.repository.find(collection, [("funder", "==", self.funder_id)]):
            if skip_inactive and record.get("inactive") is True:
                continue
            if str(record.get("name") or "").strip().lower() == wanted:
                return record
        return None

    def find_funding_status(self, name: Optional[str]) -> Optional[str]:
        """
        Resolve an OrgMeter status name to a funding status id.

        Falls back to the funder's status flagged ``initial``, then to any
        status of the funder.

        Args:
            name: Advance status name

        Returns:
            Funding status id, or None when the funder has no statuses
        """
        if name:
            status = self._find_by_name(Collections.FUNDING_STATUSES, name, skip_inactive=False)
            if status:
                return status["_id"]

        initial = self.repository.find_one(Collections.FUNDING_STATUSES, [
            ("funder", "==", self.funder_id),
            ("initial", "==", True),
        ])
        if initial:
            return initial["_id"]

        fallback = self.repository.find_one(Collections.FUNDING_STATUSES, [("funder", "==", self.funder_id)])
        if fallback is None:
            logger.warning(f"No funding statuses configured for funder {self.funder_id}")
            return None
        return fallback["_id"]

    def is_closed_status(self, status_id: Optional[str]) -> bool:
        if not status_id:
            return False
        if status_id not in self._status_cache:
            self._status_cache[status_id] = self.repository.find_by_id(Collections.FUNDING_STATUSES, status_id)
        status = self._status_cache[status_id]
        return bool(status and status.get("closed"))

    def find_fee_type(self, name: str) -> Optional[str]:
        fee_type = self._find_by_name(Collections.FEE_TYPES, name)
        if fee_type is None:
            logger.warning(f"Fee type not found: {name} for funder: {self.funder_id}")
            return None
        return fee_type["_id"]

    def find_expense_type(self, name: str) -> Optional[str]:
        expense_type = self._find_by_name(Collections.EXPENSE_TYPES, name)
        if expense_type is None:
            logger.warning(f"Expense type not found: {name} for funder: {self.funder_id}")
            return None
        return expense_type["_id"]

    def embed(self, collection: str, doc_id: Optional[str]) -> Optional[Dict[str, Any]]:
        """Denormalized ``{id, name, email, phone}`` snapshot of a CRM record."""
        if not doc_id:
            return None
        record = self.repository.find_by_id(collection, doc_id)
        if record is None:
            return {"id": doc_id, "name": None, "email": None, "phone": None}
        snapshot = {"id": doc_id}
        for field in SNAPSHOT_FIELDS:
            snapshot[field] = record.get(field)
        if snapshot["name"] is None and (record.get("first_name") or record.get("last_name")):
            snapshot["name"] = self.full_name(record)
        if snapshot["phone"] is None:
            snapshot["phone"] = record.get("phone_mobile")
        return snapshot

    @staticmethod
    def full_name(user: Optional[Document]) -> Optional[str]:
        if not user:
            return None
        name = f"{user.get('first_name') or ''} {user.get('last_name') or ''}".strip()
        return name or None

    def user_name(self, user_id: Optional[str]) -> Optional[str]:
        if not user_id:
            return None
        return self.full_name(self.repository.find_by_id(Collections.USERS, user_id))

    def synced_lender_ids(self) -> List[str]:
        """CRM ids of every OrgMeter lender of the funder that has been synced."""
        lenders = self.repository.find(Collections.ORGMETER_LENDERS, [
            ("importMetadata.funder", "==", self.funder_id),
            ("syncMetadata.syncId", "!=", None),
        ])
        return [lender["syncMetadata"]["syncId"] for lender in lenders]
