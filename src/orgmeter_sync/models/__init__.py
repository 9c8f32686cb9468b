"""
Models for the OrgMeter sync system.
"""

from .sync import (
    SyncAction, SyncStatusFilter, SyncTargetType, SyncMetadata, SyncOptions, SyncOutcome,
    SyncErrorEntry, SyncStats, SyncRunResult, MarkResult, Pagination,
    StatusCounts, SyncStatusPage
)
from .jobs import SyncJob, JobStatus, JobProgress, JobParameters, JobResults

__all__ = [
    # Run and bookkeeping models
    "SyncAction",
    "SyncStatusFilter",
    "SyncTargetType",
    "SyncMetadata",
    "SyncOptions",
    "SyncOutcome",
    "SyncErrorEntry",
    "SyncStats",
    "SyncRunResult",
    "MarkResult",
    "Pagination",
    "StatusCounts",
    "SyncStatusPage",

    # Job tracking
    "SyncJob",
    "JobStatus",
    "JobProgress",
    "JobParameters",
    "JobResults",
]
