"""
Tracked sync jobs persisted alongside the synced data.
"""

import logging
from typing import Dict, Optional, Type

from ..engine.base import EntitySyncEngine
from ..engine.graph import get_engine_class
from ..exceptions import JobConflictError, JobNotFoundError
from ..models.jobs import JobParameters, JobResults, JobStatus, SyncJob
from .repository import Collections, DocumentRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = [JobStatus.PENDING.value, JobStatus.RUNNING.value]


class SyncJobService:
    """
    Creates sync jobs, runs them through the entity engines and keeps their
    progress in the job store.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        user_id: Optional[str] = None,
        registry: Optional[Dict[str, Type[EntitySyncEngine]]] = None
    ):
        self.repository = repository
        self.user_id = user_id
        self.registry = registry

    def create_job(self, entity_type: str, parameters: JobParameters, created_by: Optional[str] = None) -> SyncJob:
        """
        Register a pending job for one entity type.

        Args:
            entity_type: Entity type to sync
            parameters: Funder and batch options
            created_by: Actor starting the job

        Returns:
            The stored job

        Raises:
            ConfigurationError: If the entity type is unknown
            JobConflictError: If a job for the funder and entity type is active
        """
        get_engine_class(entity_type, self.registry)

        active = self.find_active(entity_type, parameters.funder)
        if active is not None:
            raise JobConflictError(
                f"A {entity_type} sync job is already {active.status.value} for funder {parameters.funder}: {active.id}"
            )

        job = SyncJob(id="", entity_type=entity_type, parameters=parameters, created_by=created_by or self.user_id)
        document = self.repository.create(Collections.SYNC_JOBS, job.to_firestore())
        job.id = document["_id"]

        logger.info(f"Created {entity_type} sync job {job.id} for funder {parameters.funder}")
        return job

    def get_job(self, job_id: str) -> SyncJob:
        document = self.repository.find_by_id(Collections.SYNC_JOBS, job_id)
        if document is None:
            raise JobNotFoundError(f"Sync job not found: {job_id}")
        return SyncJob.from_firestore(job_id, document)

    def find_active(self, entity_type: str, funder_id: str) -> Optional[SyncJob]:
        document = self.repository.find_one(Collections.SYNC_JOBS, [
            ("entity_type", "==", entity_type),
            ("parameters.funder", "==", funder_id),
            ("status", "in", ACTIVE_STATUSES),
        ])
        if document is None:
            return None
        return SyncJob.from_firestore(document["_id"], document)

    def save_job(self, job: SyncJob) -> None:
        self.repository.find_by_id_and_update(Collections.SYNC_JOBS, job.id, job.to_firestore())

    def run_job(self, job: SyncJob, resume_from_index: int = 0) -> SyncJob:
        """
        Run a job to completion, persisting progress after every record.

        Failures are recorded on the job instead of raised, so the job can
        be run from a background task.

        Args:
            job: Job to run
            resume_from_index: Records already processed by an earlier attempt

        Returns:
            The job in its final state
        """
        parameters = job.parameters
        job.mark_started()
        self.save_job(job)
        logger.info(f"Running sync job {job.id} ({job.entity_type}) from index {resume_from_index}")

        def on_progress(processed: int, total: int, current_entity: str) -> None:
            job.update_progress(resume_from_index + processed, resume_from_index + total, current_entity)
            try:
                self.save_job(job)
            except Exception as e:
                logger.error(f"Failed to persist progress of sync job {job.id}: {e}")

        try:
            engine_class = get_engine_class(job.entity_type, self.registry)
            engine = engine_class(self.repository, parameters.funder, self.user_id)
            result = engine.sync_all(
                dry_run=parameters.dry_run,
                update_existing=parameters.update_existing,
                only_selected=parameters.only_selected,
                progress_callback=on_progress,
                resume_from_index=resume_from_index
            )

            stats = result.stats
            if parameters.dry_run or stats.total_processed == 0:
                job.update_progress(0, stats.total_processed)
            job.mark_completed(JobResults(
                synced=stats.total_synced,
                updated=stats.total_updated,
                skipped=stats.total_skipped,
                failed=stats.total_failed,
                details={
                    "message": result.message,
                    "errors": [error.to_dict() for error in stats.errors],
                },
            ))
            logger.info(f"Sync job {job.id} completed: {result.message}")

        except Exception as e:
            logger.error(f"Sync job {job.id} failed: {e}")
            job.mark_failed(str(e))

        self.save_job(job)
        return job

    def claim_continuation(self, job_id: str) -> SyncJob:
        """
        Load a job that may be resumed.

        Raises:
            JobNotFoundError: If the job does not exist
            JobConflictError: If the job is running or already completed
        """
        job = self.get_job(job_id)
        if job.status in (JobStatus.RUNNING, JobStatus.COMPLETED):
            raise JobConflictError(f"Sync job {job_id} is {job.status.value} and cannot be continued")
        return job

    def continue_job(self, job_id: str) -> SyncJob:
        """Re-run a failed or interrupted job from its stored processed count."""
        job = self.claim_continuation(job_id)
        logger.info(f"Continuing sync job {job_id} from record {job.progress.processed}")
        return self.run_job(job, resume_from_index=job.progress.processed)
