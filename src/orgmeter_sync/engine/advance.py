"""
OrgMeter advance to CRM funding sync.
"""

import logging
from typing import Any, Dict, List, Optional

from ..services.crm import CrmServices
from ..services.repository import Collections, DocumentRepository, Document, get_field
from .base import EntitySyncEngine, UpdatePolicy
from .fanout import FundingFanout, advance_display_name
from .transforms import FieldTransformer, to_cents

logger = logging.getLogger(__name__)


class AdvanceSyncEngine(EntitySyncEngine):
    """
    Advances become fundings.

    Every party of the advance is resolved through the records synced
    before it, so this engine runs last. A created or updated funding is
    fanned out into its dependent records.
    """

    entity_type = "advance"
    label = "Advance"
    source_collection = Collections.ORGMETER_ADVANCES
    target_collection = Collections.FUNDINGS
    depends_on = ["lender", "iso", "merchant", "syndicator", "user", "underwriter", "representative"]

    update_policy = UpdatePolicy.REPLACE
    search_fields = ["name", "idText", "merchantBusinessName"]

    def __init__(
        self,
        repository: DocumentRepository,
        funder_id: str,
        user_id: Optional[str] = None,
        crm: Optional[CrmServices] = None
    ):
        super().__init__(repository, funder_id, user_id, crm)
        self.fanout = FundingFanout(repository, self.crm, self.resolver, self.lookups, funder_id, user_id)

    def display_name(self, record: Dict[str, Any]) -> str:
        return advance_display_name(record)

    def find_soft_match(self, record: Dict[str, Any]) -> Optional[Document]:
        name = record.get("idText") or record.get("name")
        if not name:
            return None
        return self.repository.find_one(self.target_collection, [
            ("name", "==", name),
            ("funder.id", "==", self.funder_id),
        ])

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Build the funding document for an advance.

        Unresolved references are left as None rather than failing the
        advance.

        Args:
            record: OrgMeter advance

        Returns:
            Funding document with funder, lender, merchant and iso embedded
        """
        resolve = self.resolver.resolve

        lender_source = self.resolver.find_synced(Collections.ORGMETER_LENDERS, record.get("lender"))
        lender_id = get_field(lender_source, "syncMetadata.syncId")
        internal = FieldTransformer.is_internal_lender((lender_source or {}).get("type"))

        merchant_id = resolve(Collections.ORGMETER_MERCHANTS, record.get("merchantId"))
        iso_id = resolve(Collections.ORGMETER_ISOS, record.get("iso"))
        assigned_user = resolve(Collections.ORGMETER_UNDERWRITER_USERS, record.get("underwriter"))
        assigned_manager = self.resolver.resolve_user(record.get("assignedTo"))

        follower_list: List[str] = []
        for user_id in (assigned_user, assigned_manager):
            if user_id and user_id not in follower_list:
                follower_list.append(user_id)

        terms = record.get("funding") or {}
        return {
            "funder": self.lookups.embed(Collections.FUNDERS, self.funder_id),
            "lender": self.lookups.embed(Collections.LENDERS, lender_id),
            "merchant": self.lookups.embed(Collections.MERCHANTS, merchant_id),
            "iso": self.lookups.embed(Collections.ISOS, iso_id),
            "syndicator_list": [],
            "name": advance_display_name(record),
            "type": FieldTransformer.map_funding_type(record.get("type")),
            "status": self.lookups.find_funding_status(record.get("status")),
            "funded_amount": to_cents(terms.get("principalAmount")),
            "payback_amount": to_cents(terms.get("paybackAmount")),
            "assigned_manager": assigned_manager,
            "assigned_user": assigned_user,
            "follower_list": follower_list,
            "representative": resolve(Collections.ORGMETER_SALES_REP_USERS, record.get("salesRep")),
            "created_by_user": self.resolver.resolve_user(record.get("createdBy")),
            "updated_by_user": self.resolver.resolve_user(record.get("updatedBy")),
            "internal": internal,
            "inactive": bool(record.get("deleted", False)),
        }

    def persist_new(self, data: Dict[str, Any]) -> Document:
        return self.crm.fundings.create(data)

    def persist_update(self, target_id: str, changes: Dict[str, Any]) -> Optional[Document]:
        return self.crm.fundings.update(target_id, changes)

    def prepare_replacement(self, existing: Document, data: Dict[str, Any]) -> Dict[str, Any]:
        """Keep followers added in the CRM: the new list extends the stored one."""
        followers = list(existing.get("follower_list") or [])
        for user_id in data.get("follower_list") or []:
            if user_id not in followers:
                followers.append(user_id)
        return dict(data, follower_list=followers)

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        self.fanout.run(record, target, replace=False)
        self.link_iso_merchant(target, record)

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        self.fanout.run(record, target, replace=True)
        self.link_iso_merchant(target, record)

    def link_iso_merchant(self, funding: Document, record: Dict[str, Any]) -> None:
        iso_id = get_field(funding, "iso.id")
        merchant_id = get_field(funding, "merchant.id")
        if not iso_id or not merchant_id:
            logger.info(f"Skipping ISO-Merchant relationship for advance {self.display_name(record)}: ISO or Merchant missing")
            return

        try:
            self.crm.iso_merchants.create_iso_merchant(iso_id, merchant_id)
            logger.info(f"Created/Updated ISO-Merchant relationship for advance {self.display_name(record)}")
        except Exception as e:
            logger.error(f"Failed to create ISO-Merchant relationship for advance {self.display_name(record)}: {e}")
