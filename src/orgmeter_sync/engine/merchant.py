"""
OrgMeter merchant to CRM merchant sync.
"""

import logging
from typing import Any, Dict, List

from ..services.repository import Collections, Document
from .base import EntitySyncEngine, UpdatePolicy
from .transforms import FieldTransformer

logger = logging.getLogger(__name__)


class MerchantSyncEngine(EntitySyncEngine):
    """Merchants receiving advances, linked to the funder through MerchantFunder."""

    entity_type = "merchant"
    label = "Merchant"
    source_collection = Collections.ORGMETER_MERCHANTS
    target_collection = Collections.MERCHANTS
    depends_on = []

    update_policy = UpdatePolicy.MERGE
    merge_fields = [
        "name", "dba_name", "email", "phone", "website",
        "sic_detail", "naics_detail", "business_detail", "address_list", "inactive",
    ]
    search_fields = ["businessName", "businessDba", "businessEmails"]

    def display_name(self, record: Dict[str, Any]) -> str:
        return record.get("businessName") or f"Merchant {record.get('id')}"

    @staticmethod
    def map_addresses(addresses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "type": address.get("type") or "physical",
                "address_1": address.get("address1"),
                "address_2": address.get("address2") or None,
                "city": address.get("city"),
                "state": address.get("state"),
                "zip": address.get("zip"),
                "primary": bool(address.get("primary", False)),
                "verified": bool(address.get("verified", False)),
            }
            for address in addresses or []
        ]

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        business_detail = {
            "ein": FieldTransformer.primary_or_first(record.get("federalIds"), "number"),
        }
        entity_type = FieldTransformer.map_business_type(record.get("businessType"))
        if entity_type:
            business_detail["entity_type"] = entity_type
        if record.get("businessStartDate"):
            business_detail["incorporation_date"] = record["businessStartDate"]

        return {
            "name": record.get("businessName"),
            "dba_name": record.get("businessDba") or None,
            "email": FieldTransformer.primary_or_first(record.get("businessEmails"), "email"),
            "phone": FieldTransformer.primary_or_first(record.get("businessPhones"), "number"),
            "website": record.get("businessWebsite") or None,
            "sic_detail": {"code": record.get("sicCode") or None},
            "naics_detail": {"code": record.get("naicsCode") or None},
            "business_detail": business_detail,
            "address_list": self.map_addresses(record.get("businessAddresses")),
            "primary_contact": None,
            "primary_owner": None,
            "inactive": bool(record.get("deleted", False)),
        }

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        self.ensure_link(Collections.MERCHANT_FUNDERS, {"merchant": target["_id"], "funder": self.funder_id})

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        self.ensure_link(Collections.MERCHANT_FUNDERS, {"merchant": target["_id"], "funder": self.funder_id})
