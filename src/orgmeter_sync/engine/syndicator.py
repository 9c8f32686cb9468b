"""
OrgMeter syndicator to CRM syndicator sync.
"""

import logging
from typing import Any, Dict, Optional

from ..models.crm import PayoutFrequency
from ..services.repository import Collections, Document
from .base import EntitySyncEngine, UpdatePolicy
from .transforms import parse_human_name, to_cents

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


class SyndicatorSyncEngine(EntitySyncEngine):
    """
    Syndicators participating in fundings.

    Matched by email when no syncId is stored, and linked to the funder
    through a SyndicatorFunder record that carries the available balance.
    """

    entity_type = "syndicator"
    label = "Syndicator"
    source_collection = Collections.ORGMETER_SYNDICATORS
    target_collection = Collections.SYNDICATORS
    depends_on = []

    update_policy = UpdatePolicy.MERGE
    merge_fields = ["name", "email", "phone_mobile", "first_name", "last_name", "inactive"]
    search_fields = ["name", "email"]

    def find_soft_match(self, record: Dict[str, Any]) -> Optional[Document]:
        email = normalize_email(record.get("email"))
        if not email:
            return None
        return self.repository.find_one(self.target_collection, [("email", "==", email)])

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        first_name, last_name = parse_human_name(record.get("name"))
        return {
            "name": record.get("name"),
            "email": normalize_email(record.get("email")),
            "phone_mobile": record.get("phone") or None,
            "first_name": first_name,
            "last_name": last_name,
            "inactive": bool(record.get("deleted", False)),
        }

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        self.ensure_syndicator_funder(target["_id"], record)

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        self.ensure_syndicator_funder(target["_id"], record)

    def ensure_syndicator_funder(self, syndicator_id: str, record: Dict[str, Any]) -> None:
        """
        Create the SyndicatorFunder link, or bring its balance and state up to date.

        Args:
            syndicator_id: CRM syndicator id
            record: Source syndicator carrying availableBalanceAmount
        """
        available_balance = to_cents(record.get("availableBalanceAmount"))
        inactive = bool(record.get("deleted", False))

        try:
            existing = self.repository.find_one(Collections.SYNDICATOR_FUNDERS, [
                ("syndicator", "==", syndicator_id),
                ("funder", "==", self.funder_id),
            ])

            if existing is None:
                self.repository.create(Collections.SYNDICATOR_FUNDERS, {
                    "syndicator": syndicator_id,
                    "funder": self.funder_id,
                    "available_balance": available_balance,
                    "payout_frequency": PayoutFrequency.WEEKLY.value,
                    "inactive": inactive,
                })
                logger.info(
                    f"Created SyndicatorFunder relationship: Syndicator {syndicator_id}, "
                    f"Funder {self.funder_id}, Balance: {available_balance}"
                )
                return

            changes: Dict[str, Any] = {}
            if existing.get("available_balance") != available_balance:
                changes["available_balance"] = available_balance
            if existing.get("inactive") != inactive:
                changes["inactive"] = inactive

            if changes:
                self.repository.find_by_id_and_update(Collections.SYNDICATOR_FUNDERS, existing["_id"], changes)
                logger.info(f"Updated SyndicatorFunder relationship for syndicator {syndicator_id}: {changes}")

        except Exception as e:
            logger.error(f"Failed to maintain SyndicatorFunder relationship for syndicator {syndicator_id}: {e}")
