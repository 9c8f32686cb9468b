"""
OrgMeter underwriter to CRM user sync.
"""

import logging
from typing import Any, Dict

from ..models.crm import UserType
from ..services.repository import Collections, Document
from .user import UserSyncEngine

logger = logging.getLogger(__name__)


class UnderwriterSyncEngine(UserSyncEngine):
    """Underwriters become funder users, linked to the funder only."""

    entity_type = "underwriter"
    label = "Underwriter"
    source_collection = Collections.ORGMETER_UNDERWRITER_USERS
    target_collection = Collections.USERS
    depends_on = []

    search_fields = ["firstName", "lastName", "email"]
    order_by = "importMetadata.importedAt"

    default_last_name = "Underwriter"

    def display_name(self, record: Dict[str, Any]) -> str:
        if record.get("firstName") and record.get("lastName"):
            return f"{record['firstName']} {record['lastName']}"
        return record.get("email") or f"{self.label} {record.get('id')}"

    def user_type(self, record: Dict[str, Any]) -> str:
        return UserType.FUNDER_USER.value

    def link_user(self, user_id: str) -> None:
        self.ensure_link(Collections.USER_FUNDERS, {"user": user_id, "funder": self.funder_id})
