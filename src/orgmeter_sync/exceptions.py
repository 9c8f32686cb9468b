"""
Custom exceptions for the OrgMeter sync application.
"""

class OrgMeterSyncError(Exception):
    """Base exception for all application-specific errors."""
    pass

class ConfigurationError(OrgMeterSyncError):
    """Error related to settings, environment or entity type configuration."""
    pass

class FunderNotFoundError(ConfigurationError):
    """The funder a sync run is scoped to does not exist."""
    pass

class DependencyCycleError(ConfigurationError):
    """The declared entity dependencies do not form a DAG."""
    pass

class RepositoryError(OrgMeterSyncError):
    """Error raised by the document store."""
    pass

class TransformationError(OrgMeterSyncError):
    """Error during data transformation."""
    pass

class RecordSyncError(OrgMeterSyncError):
    """Error while syncing a single source record."""

    def __init__(self, message: str, source_id=None):
        super().__init__(message)
        self.source_id = source_id

class JobNotFoundError(OrgMeterSyncError):
    """No sync job exists with the given id."""
    pass

class JobConflictError(OrgMeterSyncError):
    """A sync job for the same funder and entity type is already running."""
    pass
