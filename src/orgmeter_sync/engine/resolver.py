"""
Identity resolution from OrgMeter references to synced CRM ids.
"""

import logging
from typing import Any, Callable, Dict, Optional, Union

from ..models.sync import SyncTargetType
from ..services.repository import Collections, DocumentRepository, get_field

logger = logging.getLogger(__name__)

# A reference to another OrgMeter record arrives as a bare id, an embedded
# ``{"id": ...}`` snapshot, or an object whose ``id`` is an accessor method.
EmbeddedRef = Dict[str, Any]
Ref = Union[int, str, EmbeddedRef, Any]


def _coerce_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def extract_id(ref: Optional[Ref]) -> Optional[int]:
    """
    Normalize any reference shape to a plain OrgMeter id.

    Args:
        ref: Bare id, embedded dict with ``id``, or object exposing ``id``
            as a value or accessor method

    Returns:
        The integer id, or None when the reference is empty or malformed
    """
    if ref is None:
        return None

    if isinstance(ref, dict):
        value = ref.get("id")
        if value is None:
            value = ref.get("_id")
        return _coerce_int(value) or None

    candidate: Union[Any, Callable[[], Any]] = getattr(ref, "id", ref)
    if callable(candidate):
        candidate = candidate()
    return _coerce_int(candidate) or None


class IdentityResolver:
    """
    Resolves OrgMeter references to the CRM ids they were synced to.
    """

    def __init__(self, repository: DocumentRepository, funder_id: str):
        self.repository = repository
        self.funder_id = funder_id

    def find_synced(
        self,
        source_collection: str,
        ref: Optional[Ref],
        target_type: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Return the synced source record a reference points at, if any.

        When target_type is given, a record whose syncMetadata.type names
        another kind of CRM record does not match.
        """
        source_id = extract_id(ref)
        if not source_id:
            return None

        record = self.repository.find_one(source_collection, [
            ("id", "==", source_id),
            ("importMetadata.funder", "==", self.funder_id),
            ("syncMetadata.syncId", "!=", None),
        ])
        if record is None or not target_type:
            return record

        synced_type = get_field(record, "syncMetadata.type")
        if synced_type and synced_type != target_type:
            logger.debug(f"{source_collection} record {source_id} was synced to a {synced_type}, not a {target_type}")
            return None
        return record

    def resolve(
        self,
        source_collection: str,
        ref: Optional[Ref],
        target_type: Optional[str] = None
    ) -> Optional[str]:
        """
        Look up the CRM id of a referenced OrgMeter record.

        Args:
            source_collection: OrgMeter mirror collection the reference points into
            ref: Reference in any supported shape
            target_type: Required kind of CRM record, any kind when None

        Returns:
            The CRM id, or None when the record is missing or not yet synced
        """
        record = self.find_synced(source_collection, ref, target_type)
        if record is None:
            logger.debug(f"No synced {source_collection} record for reference {extract_id(ref)}")
            return None
        return get_field(record, "syncMetadata.syncId")

    def resolve_user(self, ref: Optional[Ref]) -> Optional[str]:
        """CRM user id of an OrgMeter user, None for logins synced to a syndicator."""
        return self.resolve(Collections.ORGMETER_USERS, ref, SyncTargetType.USER.value)
