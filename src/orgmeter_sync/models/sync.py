"""
Models for sync run results, bookkeeping and status reporting.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Any, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that serializes to the camelCase shape callers expect."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class SyncAction(str, Enum):
    """Terminal state of a single source record."""
    SYNCED = "synced"
    UPDATED = "updated"
    SKIPPED = "skipped"
    FAILED = "failed"


class SyncStatusFilter(str, Enum):
    """Filter values accepted by the sync status view."""
    ALL = "all"
    PENDING = "pending"
    SYNCED = "synced"
    IGNORED = "ignored"


class SyncTargetType(str, Enum):
    """Kind of CRM record an OrgMeter user was synced to."""
    USER = "user"
    SYNDICATOR = "syndicator"


class SyncMetadata(CamelModel):
    """Per-source-record bookkeeping written by the sync engine."""
    needs_sync: bool = False
    last_synced_at: Optional[datetime] = None
    last_synced_by: Optional[str] = None
    sync_id: Optional[str] = None
    type: Optional[str] = None


class SyncOptions(CamelModel):
    """Options accepted by a batch run."""
    dry_run: bool = False
    update_existing: bool = True
    only_selected: bool = True
    resume_from_index: int = Field(0, ge=0)


class SyncOutcome(BaseModel):
    """Result of syncing one source record."""
    action: SyncAction
    target_id: Optional[str] = None
    target_type: Optional[str] = None
    message: str = ""


class SyncErrorEntry(CamelModel):
    """A failed record as reported in the run statistics."""
    source_id: Optional[Any] = None
    name: Optional[str] = None
    error: str


class SyncStats(CamelModel):
    """Aggregate counters for one batch run."""
    total_processed: int = 0
    total_synced: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    total_failed: int = 0
    error_count: int = 0
    errors: List[SyncErrorEntry] = Field(default_factory=list)

    def record(self, action: SyncAction) -> None:
        """Count a successful outcome."""
        if action == SyncAction.SYNCED:
            self.total_synced += 1
        elif action == SyncAction.UPDATED:
            self.total_updated += 1
        elif action == SyncAction.SKIPPED:
            self.total_skipped += 1

    def record_failure(self, source_id: Any, name: Optional[str], error: str) -> None:
        self.total_failed += 1
        self.errors.append(SyncErrorEntry(source_id=source_id, name=name, error=error))
        self.error_count = len(self.errors)


class SyncRunResult(CamelModel):
    """Result of `sync_all` for one entity type."""
    success: bool = True
    message: str = ""
    entity_type: Optional[str] = None
    stats: SyncStats = Field(default_factory=SyncStats)


class MarkResult(CamelModel):
    """Result of selecting source records for the next run."""
    success: bool = True
    message: str = ""
    modified_count: int = 0


class Pagination(CamelModel):
    current: int
    pages: int
    total: int
    limit: int


class StatusCounts(CamelModel):
    """Aggregate bookkeeping counts for one entity type and funder."""
    total: int = 0
    selected: int = 0
    pending: int = 0
    synced: int = 0
    ignored: int = 0


class SyncStatusPage(CamelModel):
    """Paginated view of source records joined with their bookkeeping."""
    success: bool = True
    entity_type: str
    records: List[Dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination
    stats: StatusCounts
