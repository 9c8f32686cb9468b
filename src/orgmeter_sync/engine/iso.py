"""
OrgMeter ISO to CRM ISO sync.
"""

import logging
from typing import Any, Dict

from ..services.repository import Collections, Document
from .base import EntitySyncEngine, UpdatePolicy

logger = logging.getLogger(__name__)


class ISOSyncEngine(EntitySyncEngine):
    """Independent sales organizations, linked to the funder through ISOFunder."""

    entity_type = "iso"
    label = "ISO"
    source_collection = Collections.ORGMETER_ISOS
    target_collection = Collections.ISOS
    depends_on = []

    update_policy = UpdatePolicy.MERGE
    merge_fields = ["name", "email", "type", "business_detail", "inactive"]
    search_fields = ["name", "email"]

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        iso_type = record.get("type")
        return {
            "name": record.get("name"),
            "email": record.get("email") or None,
            "phone": record.get("phone") or None,
            "type": str(iso_type).lower() if iso_type else "internal",
            "business_detail": {"ein": record.get("federalId") or None},
            "inactive": bool(record.get("deleted", False)),
        }

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        self.ensure_link(Collections.ISO_FUNDERS, {"iso": target["_id"], "funder": self.funder_id})

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        self.ensure_link(Collections.ISO_FUNDERS, {"iso": target["_id"], "funder": self.funder_id})
