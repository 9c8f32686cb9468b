"""
Sync engines mapping OrgMeter records into the CRM.
"""

from .base import EntitySyncEngine, UpdatePolicy
from .lender import LenderSyncEngine
from .iso import ISOSyncEngine
from .merchant import MerchantSyncEngine
from .syndicator import SyndicatorSyncEngine
from .user import UserSyncEngine
from .underwriter import UnderwriterSyncEngine
from .representative import RepresentativeSyncEngine
from .advance import AdvanceSyncEngine
from .fanout import FundingFanout
from .graph import ENGINE_REGISTRY, SyncPipeline, get_engine_class, resolve_sync_order
from .resolver import IdentityResolver, extract_id
from .transforms import FieldTransformer, parse_money, to_cents

__all__ = [
    "EntitySyncEngine",
    "UpdatePolicy",
    "LenderSyncEngine",
    "ISOSyncEngine",
    "MerchantSyncEngine",
    "SyndicatorSyncEngine",
    "UserSyncEngine",
    "UnderwriterSyncEngine",
    "RepresentativeSyncEngine",
    "AdvanceSyncEngine",
    "FundingFanout",
    "ENGINE_REGISTRY",
    "SyncPipeline",
    "get_engine_class",
    "resolve_sync_order",
    "IdentityResolver",
    "extract_id",
    "FieldTransformer",
    "parse_money",
    "to_cents",
]
