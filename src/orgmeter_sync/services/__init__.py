"""
Persistence and CRM services for the OrgMeter sync.
"""

from .repository import Collections, DocumentRepository
from .firestore import FirestoreRepository
from .crm import CrmServices

__all__ = [
    "Collections",
    "DocumentRepository",
    "FirestoreRepository",
    "CrmServices",
]
