"""
Base entity sync engine: match-or-create per record, batch driver,
sync bookkeeping, selection and status reporting.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Any, Optional

from ..exceptions import FunderNotFoundError, RecordSyncError
from ..models.sync import (
    MarkResult, Pagination, StatusCounts, SyncAction, SyncMetadata, SyncOutcome,
    SyncRunResult, SyncStats, SyncStatusFilter, SyncStatusPage
)
from ..services.crm import CrmServices
from ..services.repository import Collections, DocumentRepository, Document, Filters, get_field
from .lookups import LookupService
from .resolver import IdentityResolver

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


class UpdatePolicy(str, Enum):
    """How an existing CRM record is updated from its source record."""
    REPLACE = "replace"  # write every transformed field
    MERGE = "merge"      # write only fields whose new value differs


class EntitySyncEngine(ABC):
    """
    Syncs one OrgMeter entity type into its CRM counterpart.

    Subclasses declare their collections, update policy and upstream
    entity types as class attributes and implement `transform`.
    """

    entity_type: str = ""
    label: str = ""
    source_collection: str = ""
    target_collection: str = ""
    depends_on: List[str] = []

    update_policy: UpdatePolicy = UpdatePolicy.MERGE
    merge_fields: List[str] = []

    search_fields: List[str] = ["name"]
    order_by: str = "updatedAt"

    def __init__(
        self,
        repository: DocumentRepository,
        funder_id: str,
        user_id: Optional[str] = None,
        crm: Optional[CrmServices] = None
    ):
        """
        Initialize the engine for one funder.

        Args:
            repository: Document store holding source and target collections
            funder_id: CRM funder every record is scoped to
            user_id: Actor recorded as lastSyncedBy, "system" when None
            crm: CRM collaborators, built on the repository when None
        """
        self.repository = repository
        self.funder_id = funder_id
        self.user_id = user_id
        self.crm = crm or CrmServices(repository)
        self.resolver = IdentityResolver(repository, funder_id)
        self.lookups = LookupService(repository, funder_id)

    # Per-record hooks

    @abstractmethod
    def transform(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """Map a source record to the CRM document shape."""
        pass

    def display_name(self, record: Dict[str, Any]) -> str:
        return record.get("name") or f"{self.label} {record.get('id')}"

    def find_soft_match(self, record: Dict[str, Any]) -> Optional[Document]:
        """Locate an existing CRM record by natural key. None when the entity has none."""
        return None

    def persist_new(self, data: Dict[str, Any]) -> Document:
        return self.repository.create(self.target_collection, data)

    def persist_update(self, target_id: str, changes: Dict[str, Any]) -> Optional[Document]:
        return self.repository.find_by_id_and_update(self.target_collection, target_id, changes)

    def prepare_replacement(self, existing: Document, data: Dict[str, Any]) -> Dict[str, Any]:
        return data

    def after_create(self, target: Document, record: Dict[str, Any]) -> None:
        pass

    def after_update(self, target: Document, record: Dict[str, Any]) -> None:
        pass

    # Match-or-create state machine

    def sync_one(self, record: Dict[str, Any], update_existing: bool = True) -> SyncOutcome:
        """
        Sync a single source record.

        Args:
            record: Source document
            update_existing: Update the matched CRM record instead of skipping it

        Returns:
            Outcome with the action taken and the CRM id

        Raises:
            RecordSyncError: If any step of the sync fails
        """
        name = self.display_name(record)
        try:
            existing = self.find_existing(record)

            if existing is not None:
                if not update_existing:
                    return SyncOutcome(
                        action=SyncAction.SKIPPED,
                        target_id=existing["_id"],
                        message=f"Skipped existing {self.label}: {name}"
                    )
                target = self.update_target(existing, record)
                return SyncOutcome(
                    action=SyncAction.UPDATED,
                    target_id=target["_id"],
                    message=f"Updated existing {self.label}: {name}"
                )

            target = self.create_target(record)
            return SyncOutcome(
                action=SyncAction.SYNCED,
                target_id=target["_id"],
                message=f"Created new {self.label}: {name}"
            )

        except RecordSyncError:
            raise
        except Exception as e:
            raise RecordSyncError(f"Failed to sync {self.label} {name}: {e}", source_id=record.get("id")) from e

    def find_existing(self, record: Dict[str, Any]) -> Optional[Document]:
        """Look up the CRM record by syncId, else by natural key, adopting a soft match."""
        existing = None
        sync_id = get_field(record, "syncMetadata.syncId")
        if sync_id:
            existing = self.repository.find_by_id(self.target_collection, sync_id)

        if existing is None:
            existing = self.find_soft_match(record)
            if existing is not None:
                logger.info(f"Found existing {self.label} by natural key: {self.display_name(record)} (ID: {existing['_id']})")
                self.update_sync_metadata(record, existing["_id"])

        return existing

    def create_target(self, record: Dict[str, Any]) -> Document:
        data = self.transform(record)
        target = self.persist_new(data)
        logger.info(f"Created new {self.label}: {self.display_name(record)} (ID: {target['_id']})")
        self.after_create(target, record)
        return target

    def update_target(self, existing: Document, record: Dict[str, Any]) -> Document:
        data = self.transform(record)

        if self.update_policy == UpdatePolicy.REPLACE:
            changes = self.prepare_replacement(existing, data)
        else:
            changes = self.diff(existing, data)

        target = existing
        if changes:
            updated = self.persist_update(existing["_id"], changes)
            if updated is not None:
                target = updated
            logger.info(f"Updated {self.label}: {self.display_name(record)} (ID: {existing['_id']})")
        else:
            logger.info(f"No changes needed for {self.label}: {self.display_name(record)}")

        self.after_update(target, record)
        return target

    def diff(self, existing: Document, data: Dict[str, Any]) -> Dict[str, Any]:
        """Fields whose transformed value is set and differs from the stored one."""
        fields = self.merge_fields or list(data.keys())
        return {
            field: data[field]
            for field in fields
            if data.get(field) is not None and existing.get(field) != data[field]
        }

    def ensure_link(self, collection: str, link: Dict[str, Any]) -> None:
        """
        Create a join-table record unless one with the same fields exists.

        Join tables never decide the outcome of a record sync, so failures
        are logged and swallowed.

        Args:
            collection: Join collection name
            link: Field values identifying the relationship
        """
        description = ", ".join(f"{key} {value}" for key, value in link.items())
        try:
            filters = [(key, "==", value) for key, value in link.items()]
            if self.repository.find_one(collection, filters) is not None:
                logger.debug(f"Relationship already exists in {collection}: {description}")
                return
            self.repository.create(collection, dict(link))
            logger.info(f"Created {collection} relationship: {description}")
        except Exception as e:
            logger.error(f"Failed to create {collection} relationship ({description}): {e}")

    # Bookkeeping

    def record_key(self, record: Dict[str, Any]) -> Filters:
        """Natural composite key of a mirrored source record."""
        return [
            ("id", "==", record.get("id")),
            ("importMetadata.funder", "==", get_field(record, "importMetadata.funder")),
        ]

    def update_sync_metadata(
        self,
        record: Dict[str, Any],
        target_id: Optional[str] = None,
        target_type: Optional[str] = None
    ) -> None:
        """
        Stamp a source record as synced.

        Sets lastSyncedAt and lastSyncedBy, and syncId when a target id is
        given. needsSync is left as the user selected it. Failures are
        logged, never raised.

        Args:
            record: Source document
            target_id: CRM id the record was synced to
            target_type: Kind of CRM record behind target_id, stored as
                syncMetadata.type when the source collection maps to more
                than one kind
        """
        updates: Dict[str, Any] = {
            "syncMetadata.lastSyncedAt": datetime.utcnow(),
            "syncMetadata.lastSyncedBy": self.user_id or "system",
        }
        if target_id:
            updates["syncMetadata.syncId"] = target_id
            logger.debug(f"Updating {self.label} {record.get('id')} syncId to: {target_id}")
        if target_type:
            updates["syncMetadata.type"] = target_type

        try:
            result = self.repository.find_one_and_update(self.source_collection, self.record_key(record), updates)
            if result is None:
                logger.warning(f"{self.label} {record.get('id')} not found for sync metadata update")
        except Exception as e:
            logger.error(f"Failed to update sync metadata for {self.label} {record.get('id')}: {e}")

    # Batch driver

    def verify_funder(self) -> Document:
        funder = self.repository.find_by_id(Collections.FUNDERS, self.funder_id)
        if funder is None:
            raise FunderNotFoundError(f"Funder not found: {self.funder_id}")
        return funder

    def selection_filters(self, only_selected: bool) -> Filters:
        filters: Filters = [("importMetadata.funder", "==", self.funder_id)]
        if only_selected:
            filters.append(("syncMetadata.needsSync", "==", True))
        return filters

    def load_records(self, only_selected: bool) -> List[Document]:
        records = self.repository.find(
            self.source_collection,
            self.selection_filters(only_selected),
            order_by=self.order_by
        )
        # Some OrgMeter collections have no `deleted` field.
        return [record for record in records if record.get("deleted") is not True]

    def sync_all(
        self,
        dry_run: bool = False,
        update_existing: bool = True,
        only_selected: bool = True,
        progress_callback: Optional[ProgressCallback] = None,
        resume_from_index: int = 0
    ) -> SyncRunResult:
        """
        Sync every selected source record of this entity type.

        Args:
            dry_run: Count the records without writing anything
            update_existing: Update matched CRM records instead of skipping them
            only_selected: Restrict to records flagged needsSync
            progress_callback: Called as (processed, total, name) after every
                record, counted from the resume offset
            resume_from_index: Index of the first record to process

        Returns:
            Run result with aggregate statistics

        Raises:
            FunderNotFoundError: If the funder does not exist
        """
        logger.info(f"Starting OrgMeter {self.entity_type} sync for funder {self.funder_id}")
        self.verify_funder()

        stats = SyncStats()
        records = self.load_records(only_selected)
        stats.total_processed = len(records)

        if not records:
            logger.info(f"No OrgMeter {self.entity_type} records found for syncing")
            return self._result(stats, "No records to sync")

        logger.info(f"Found {len(records)} OrgMeter {self.entity_type} records to sync")

        if dry_run:
            logger.info("Dry run mode - not saving to database")
            return self._result(stats, f"Dry run: {len(records)} {self.entity_type} records would be synced")

        start = min(max(resume_from_index, 0), len(records))
        if start > 0:
            logger.info(f"Resuming sync from index {start} ({start}/{len(records)} already processed)")
        total = len(records) - start

        for index in range(start, len(records)):
            record = records[index]
            name = self.display_name(record)

            try:
                outcome = self.sync_one(record, update_existing)
                stats.record(outcome.action)
                self.update_sync_metadata(record, outcome.target_id, outcome.target_type)
            except Exception as e:
                logger.error(f"Failed to sync {self.label} {record.get('id')}: {e}")
                stats.record_failure(record.get("id"), name, str(e))

            if progress_callback:
                try:
                    progress_callback(index - start + 1, total, name)
                except Exception as e:
                    logger.error(f"Failed to report progress for {self.label} {record.get('id')}: {e}")

        logger.info(
            f"OrgMeter {self.entity_type} sync completed: {stats.total_synced} synced, "
            f"{stats.total_updated} updated, {stats.total_skipped} skipped, {stats.total_failed} failed"
        )
        return self._result(stats, f"{self.label} sync completed")

    def _result(self, stats: SyncStats, message: str) -> SyncRunResult:
        stats.error_count = len(stats.errors)
        return SyncRunResult(success=True, message=message, entity_type=self.entity_type, stats=stats)

    # Selection and status

    def mark_for_sync(self, source_ids: List[int], funder_id: Optional[str] = None) -> MarkResult:
        """
        Select source records for the next run.

        Sets needsSync and clears lastSyncedAt and syncId for the given ids.

        Args:
            source_ids: OrgMeter ids to select
            funder_id: Funder scope, defaults to the engine's funder

        Returns:
            Result with the number of modified records
        """
        if not source_ids:
            return MarkResult(success=True, message="No records given", modified_count=0)

        modified = self.repository.update_many(
            self.source_collection,
            [
                ("id", "in", list(source_ids)),
                ("importMetadata.funder", "==", funder_id or self.funder_id),
            ],
            {
                "syncMetadata.needsSync": True,
                "syncMetadata.lastSyncedAt": None,
                "syncMetadata.syncId": None,
                "syncMetadata.type": None,
            }
        )
        logger.info(f"Marked {modified} {self.entity_type} records for sync")
        return MarkResult(
            success=True,
            message=f"Marked {modified} {self.entity_type} records for sync",
            modified_count=modified
        )

    def status_filters(self, sync_status: SyncStatusFilter) -> Filters:
        filters: Filters = [("importMetadata.funder", "==", self.funder_id)]
        if sync_status == SyncStatusFilter.PENDING:
            filters.append(("syncMetadata.needsSync", "==", True))
        elif sync_status == SyncStatusFilter.SYNCED:
            filters.append(("syncMetadata.syncId", "!=", None))
        elif sync_status == SyncStatusFilter.IGNORED:
            filters.append(("syncMetadata.needsSync", "==", False))
        return filters

    def matches_search(self, record: Dict[str, Any], pattern: "re.Pattern") -> bool:
        return any(pattern.search(str(get_field(record, field) or "")) for field in self.search_fields)

    def get_sync_status(
        self,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        sync_status: SyncStatusFilter = SyncStatusFilter.ALL
    ) -> SyncStatusPage:
        """
        Paginated view of source records with their sync bookkeeping.

        Args:
            page: 1-based page number
            limit: Page size
            search: Case-insensitive substring matched against the entity's search fields
            sync_status: all, pending (selected and not synced), synced or ignored

        Returns:
            Page of records plus aggregate counts for the funder
        """
        sync_status = SyncStatusFilter(sync_status)
        page = max(page, 1)
        limit = max(limit, 1)

        records = self.repository.find(
            self.source_collection,
            self.status_filters(sync_status),
            order_by=self.order_by,
            descending=True
        )
        if sync_status == SyncStatusFilter.PENDING:
            records = [r for r in records if get_field(r, "syncMetadata.syncId") is None]
        if search:
            pattern = re.compile(re.escape(search), re.IGNORECASE)
            records = [r for r in records if self.matches_search(r, pattern)]

        total = len(records)
        page_records = records[(page - 1) * limit:page * limit]

        counts = self.repository.aggregate_counts(
            self.source_collection,
            [("importMetadata.funder", "==", self.funder_id)],
            {
                "total": [],
                "selected": [("syncMetadata.needsSync", "==", True)],
                "synced": [("syncMetadata.syncId", "!=", None)],
                "ignored": [("syncMetadata.needsSync", "==", False)],
            }
        )

        return SyncStatusPage(
            entity_type=self.entity_type,
            records=[self._status_row(record) for record in page_records],
            pagination=Pagination(current=page, pages=math.ceil(total / limit), total=total, limit=limit),
            stats=StatusCounts(
                total=counts["total"],
                selected=counts["selected"],
                pending=counts["selected"] - counts["synced"],
                synced=counts["synced"],
                ignored=counts["ignored"],
            )
        )

    def synced_collection(self, metadata: SyncMetadata) -> str:
        """Collection holding the CRM record a source record was synced to."""
        return self.target_collection

    def _status_row(self, record: Dict[str, Any]) -> Dict[str, Any]:
        metadata = SyncMetadata.model_validate(record.get("syncMetadata") or {})
        target = None
        if metadata.sync_id:
            document = self.repository.find_by_id(self.synced_collection(metadata), metadata.sync_id)
            if document is not None:
                target = {
                    "id": document["_id"],
                    "name": document.get("name") or LookupService.full_name(document),
                    "email": document.get("email"),
                }
        return {
            "id": record.get("id"),
            "name": self.display_name(record),
            "deleted": record.get("deleted", False),
            "syncMetadata": metadata.to_dict(),
            "syncedTarget": target,
        }
