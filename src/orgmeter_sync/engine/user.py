"""
OrgMeter user to CRM user sync.

OrgMeter users whose entity is a syndicator are not CRM users: they are
routed to the syndicator engine instead.
"""

import logging
from typing import Any, Dict, Optional

from ..exceptions import RecordSyncError
from ..models.sync import SyncAction, SyncMetadata, SyncOutcome, SyncTargetType
from ..services.repository import Collections, Document, get_field
from .base import EntitySyncEngine, UpdatePolicy
from .syndicator import SyndicatorSyncEngine, normalize_email
from .transforms import FieldTransformer

logger = logging.getLogger(__name__)


class UserSyncEngine(EntitySyncEngine):
    """Funder staff users, linked to the funder and to every synced lender."""

    entity_type = "user"
    label = "User"
    source_collection = Collections.ORGMETER_USERS
    target_collection = Collections.USERS
    depends_on = ["lender", "syndicator"]

    update_policy = UpdatePolicy.MERGE
    merge_fields = ["first_name", "last_name", "email", "phone_mobile", "type", "inactive"]
    search_fields = ["firstName", "lastName", "username", "email"]

    default_first_name = "Unknown"
    default_last_name = "User"

    def display_name(self, record: Dict[str, Any]) -> str:
        if record.get("firstName") and record.get("lastName"):
            return f"{record['firstName']} {record['lastName']}"
        return record.get("username") or record.get("email") or f"{self.label} {record.get('id')}"

    def find_soft_match(self, record: Dict[str, Any]) -> Optional[Document]:
        email = normalize_email(record.get("email"))
        if not email:
            return None
        return self.repository.find_one(self.target_collection, [("email", "==", email)])

    def user_type(self, record: Dict[str, Any]) -> str:
        return FieldTransformer.map_user_type(record.get("roles"))

    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "first_name": record.get("firstName") or self.default_first_name,
            "last_name": record.get("lastName") or self.default_last_name,
            "email": normalize_email(record.get("email")),
            "phone_mobile": record.get("phone") or None,
            "type": self.user_type(record),
            "inactive": not record.get("enabled", True),
        }

    def sync_one(self, record: Dict[str, Any], update_existing: bool = True) -> SyncOutcome:
        if get_field(record, "entity.type") == "syndicator":
            outcome = self.sync_syndicator_user(record)
            outcome.target_type = SyncTargetType.SYNDICATOR.value
        else:
            outcome = super().sync_one(record, update_existing)
            outcome.target_type = SyncTargetType.USER.value
        return outcome

    def synced_collection(self, metadata: SyncMetadata) -> str:
        if metadata.type == SyncTargetType.SYNDICATOR.value:
            return Collections.SYNDICATORS
        return self.target_collection

    def sync_syndicator_user(self, record: Dict[str, Any]) -> SyncOutcome:
        """
        Route a syndicator's login to the syndicator it belongs to.

        Skips when that syndicator is already synced. Otherwise syncs a
        syndicator built from the user's entity.

        Args:
            record: OrgMeter user whose entity type is syndicator

        Returns:
            Outcome pointing at the CRM syndicator

        Raises:
            RecordSyncError: If the syndicator sync fails
        """
        name = self.display_name(record)
        entity = record.get("entity") or {}
        try:
            source = self.resolver.find_synced(Collections.ORGMETER_SYNDICATORS, entity)
            if source is not None:
                syndicator = self.repository.find_by_id(Collections.SYNDICATORS, source["syncMetadata"]["syncId"])
                if syndicator is not None:
                    return SyncOutcome(
                        action=SyncAction.SKIPPED,
                        target_id=syndicator["_id"],
                        message=f"Skipped existing syndicator user: {name}"
                    )

            engine = SyndicatorSyncEngine(self.repository, self.funder_id, self.user_id, self.crm)
            return engine.sync_one({
                "id": entity.get("id"),
                "name": f"{entity.get('firstName') or ''} {entity.get('lastName') or ''}".strip(),
                "email": entity.get("email"),
                "deleted": not record.get("enabled", True),
                "importMetadata": record.get("importMetadata"),
            })

        except RecordSyncError:
            raise
        except Exception as e:
            raise RecordSyncError(f"Failed to sync syndicator user {name}: {e}", source_id=record.get("id")) from e

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        self.link_user(target["_id"])

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        self.link_user(target["_id"])

    def link_user(self, user_id: str) -> None:
        self.ensure_link(Collections.USER_FUNDERS, {"user": user_id, "funder": self.funder_id})
        for lender_id in self.lookups.synced_lender_ids():
            self.ensure_link(Collections.USER_LENDERS, {"user": user_id, "lender": lender_id})
