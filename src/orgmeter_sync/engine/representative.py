"""
OrgMeter sales rep to CRM representative sync.
"""

import logging
from typing import Any, Dict, List, Optional

from ..models.crm import UserType
from ..services.repository import Collections, Document, get_field
from .base import EntitySyncEngine, UpdatePolicy
from .resolver import extract_id

logger = logging.getLogger(__name__)


class RepresentativeSyncEngine(EntitySyncEngine):
    """
    ISO sales representatives.

    Sales reps carry no email, so an unsynced rep is matched by first and
    last name. Each rep is linked to every synced ISO that lists it.
    """

    entity_type = "representative"
    label = "Representative"
    source_collection = Collections.ORGMETER_SALES_REP_USERS
    target_collection = Collections.REPRESENTATIVES
    depends_on = ["iso"]

    update_policy = UpdatePolicy.MERGE
    merge_fields = ["first_name", "last_name", "type", "inactive"]
    search_fields = ["firstName", "lastName"]
    order_by = "importMetadata.importedAt"

    def display_name(self, record: Dict[str, Any]) -> str:
        if record.get("firstName") and record.get("lastName"):
            return f"{record['firstName']} {record['lastName']}"
        return f"Sales Rep {record.get('id')}"

    def find_soft_match(self, record: Dict[str, Any]) -> Optional[Document]:
        if not (record.get("firstName") and record.get("lastName")):
            return None
        return self.repository.find_one(self.target_collection, [
            ("first_name", "==", record["firstName"]),
            ("last_name", "==", record["lastName"]),
        ])

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "first_name": record.get("firstName") or "Unknown",
            "last_name": record.get("lastName") or "Representative",
            "email": None,
            "type": UserType.ISO_SALES.value,
            "online": False,
            "inactive": False,
        }

    def find_isos(self, record: Dict[str, Any]) -> List[Document]:
        """Synced OrgMeter ISOs of the funder whose salesRepUsers include this rep."""
        rep_id = extract_id(record)
        isos = self.repository.find(Collections.ORGMETER_ISOS, [
            ("importMetadata.funder", "==", self.funder_id),
        ])
        return [
            iso for iso in isos
            if any(extract_id(rep) == rep_id for rep in iso.get("salesRepUsers") or [])
        ]

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        self.link_isos(target["_id"], record)

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        self.link_isos(target["_id"], record)

    def link_isos(self, representative_id: str, record: Dict[str, Any]) -> None:
        try:
            isos = self.find_isos(record)
        except Exception as e:
            logger.error(f"Failed to find ISOs for sales rep {record.get('id')}: {e}")
            return

        if not isos:
            logger.info(f"No ISOs found for sales rep {record.get('id')}, skipping RepresentativeISO creation")
            return

        for iso in isos:
            iso_id = get_field(iso, "syncMetadata.syncId")
            if not iso_id:
                logger.info(f"ISO {iso.get('id')} has no syncId, skipping RepresentativeISO creation")
                continue
            self.ensure_link(Collections.REPRESENTATIVE_ISOS, {"representative": representative_id, "iso": iso_id})
