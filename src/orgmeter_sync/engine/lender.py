"""
OrgMeter lender to CRM lender sync.
"""

from typing import Any, Dict

from ..services.repository import Collections
from .base import EntitySyncEngine, UpdatePolicy


class LenderSyncEngine(EntitySyncEngine):
    """Lenders are owned by the funder and carry no join table."""

    entity_type = "lender"
    label = "Lender"
    source_collection = Collections.ORGMETER_LENDERS
    target_collection = Collections.LENDERS
    depends_on = []

    update_policy = UpdatePolicy.MERGE
    merge_fields = ["name", "email", "type", "inactive"]
    search_fields = ["name", "email"]

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "funder": self.funder_id,
            "name": record.get("name"),
            "email": record.get("email") or None,
            "phone": None,
            "website": None,
            "type": record.get("type"),
            "inactive": bool(record.get("deleted", False)),
        }
