"""
Models for tracked sync jobs.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Status of a sync job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobProgress(BaseModel):
    total: int = 0
    processed: int = 0
    percentage: int = 0
    current_entity: Optional[str] = None


class JobParameters(BaseModel):
    funder: str
    update_existing: bool = True
    only_selected: bool = True
    dry_run: bool = False


class JobResults(BaseModel):
    synced: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    details: Optional[Dict[str, Any]] = None


class SyncJob(BaseModel):
    """
    A single tracked run of one entity type's batch driver.
    This is stored in Firestore.
    """
    id: str = Field(..., description="Unique job identifier")
    entity_type: str = Field(..., description="Entity type the job syncs")
    status: JobStatus = Field(JobStatus.PENDING, description="Current status")
    progress: JobProgress = Field(default_factory=JobProgress)
    parameters: JobParameters
    results: JobResults = Field(default_factory=JobResults)
    error_message: Optional[str] = None
    created_by: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def update_progress(self, processed: int, total: int, current_entity: Optional[str] = None) -> None:
        self.progress.processed = processed
        self.progress.total = total
        self.progress.percentage = round(processed / total * 100) if total else 0
        if current_entity is not None:
            self.progress.current_entity = current_entity

    def mark_started(self) -> None:
        self.status = JobStatus.RUNNING
        self.started_at = datetime.utcnow()
        self.error_message = None

    def mark_completed(self, results: JobResults) -> None:
        self.status = JobStatus.COMPLETED
        self.results = results
        self.completed_at = datetime.utcnow()

    def mark_failed(self, error: str) -> None:
        self.status = JobStatus.FAILED
        self.error_message = error
        self.completed_at = datetime.utcnow()

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        data = self.model_dump(mode="json", exclude={"id"})
        return data

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "SyncJob":
        """Create from Firestore document."""
        data = {key: value for key, value in data.items() if key != "_id"}
        return cls(id=doc_id, **data)
