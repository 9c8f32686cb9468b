"""
Entity dependency graph and the pipeline that syncs entity types in order.
"""

import logging
from typing import Dict, Iterable, List, Optional, Type

from ..exceptions import ConfigurationError, DependencyCycleError
from ..models.sync import SyncOptions, SyncRunResult
from ..services.crm import CrmServices
from ..services.repository import DocumentRepository
from .advance import AdvanceSyncEngine
from .base import EntitySyncEngine, ProgressCallback
from .iso import ISOSyncEngine
from .lender import LenderSyncEngine
from .merchant import MerchantSyncEngine
from .representative import RepresentativeSyncEngine
from .syndicator import SyndicatorSyncEngine
from .underwriter import UnderwriterSyncEngine
from .user import UserSyncEngine

logger = logging.getLogger(__name__)

# Canonical order; independent entity types keep this relative order
ENGINE_REGISTRY: Dict[str, Type[EntitySyncEngine]] = {
    engine.entity_type: engine
    for engine in (
        LenderSyncEngine,
        ISOSyncEngine,
        MerchantSyncEngine,
        SyndicatorSyncEngine,
        UserSyncEngine,
        UnderwriterSyncEngine,
        RepresentativeSyncEngine,
        AdvanceSyncEngine,
    )
}


def get_engine_class(entity_type: str, registry: Optional[Dict[str, Type[EntitySyncEngine]]] = None) -> Type[EntitySyncEngine]:
    registry = ENGINE_REGISTRY if registry is None else registry
    try:
        return registry[entity_type]
    except KeyError:
        raise ConfigurationError(
            f"Unknown entity type: {entity_type}. Supported types: {', '.join(registry)}"
        ) from None


def resolve_sync_order(
    entity_types: Optional[Iterable[str]] = None,
    registry: Optional[Dict[str, Type[EntitySyncEngine]]] = None
) -> List[str]:
    """
    Order entity types so every type runs after the types it references.

    Requested types pull in their upstream types. Among types with no
    ordering constraint between them, registry order is kept.

    Args:
        entity_types: Types to sync, every registered type when None
        registry: Entity type to engine class, defaults to ENGINE_REGISTRY

    Returns:
        Entity types in sync order

    Raises:
        ConfigurationError: If a type is not registered
        DependencyCycleError: If the dependencies form a cycle
    """
    registry = ENGINE_REGISTRY if registry is None else registry
    requested = list(registry) if entity_types is None else list(entity_types)

    needed = set()
    pending = list(requested)
    while pending:
        entity_type = pending.pop()
        if entity_type in needed:
            continue
        needed.add(entity_type)
        pending.extend(get_engine_class(entity_type, registry).depends_on)

    order: List[str] = []
    done = set()
    while len(order) < len(needed):
        ready = [
            entity_type for entity_type in registry
            if entity_type in needed and entity_type not in done
            and all(dep in done for dep in registry[entity_type].depends_on)
        ]
        if not ready:
            stuck = sorted(needed - done)
            raise DependencyCycleError(f"Entity dependencies form a cycle among: {', '.join(stuck)}")
        order.append(ready[0])
        done.add(ready[0])

    return order


class SyncPipeline:
    """
    Runs the batch driver of several entity types in dependency order.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        funder_id: str,
        user_id: Optional[str] = None,
        registry: Optional[Dict[str, Type[EntitySyncEngine]]] = None
    ):
        self.repository = repository
        self.funder_id = funder_id
        self.user_id = user_id
        self.registry = ENGINE_REGISTRY if registry is None else registry
        self.crm = CrmServices(repository)

    def engine(self, entity_type: str) -> EntitySyncEngine:
        engine_class = get_engine_class(entity_type, self.registry)
        return engine_class(self.repository, self.funder_id, self.user_id, self.crm)

    def run(
        self,
        entity_types: Optional[Iterable[str]] = None,
        options: Optional[SyncOptions] = None,
        progress_callback: Optional[ProgressCallback] = None
    ) -> Dict[str, SyncRunResult]:
        """
        Sync the given entity types and their upstream types.

        Args:
            entity_types: Types to sync, every registered type when None
            options: Batch options applied to every type; resume_from_index
                only applies to the first requested type in sync order, not
                to the upstream types pulled in before it
            progress_callback: Passed to every batch driver

        Returns:
            Entity type to run result, in sync order

        Raises:
            FunderNotFoundError: If the funder does not exist
        """
        options = options or SyncOptions()
        requested = None if entity_types is None else list(entity_types)
        order = resolve_sync_order(requested, self.registry)
        logger.info(f"Sync order: {' -> '.join(order)}")

        resume_type = next((t for t in order if requested is None or t in requested), None)
        if options.resume_from_index and resume_type:
            logger.info(f"Resuming {resume_type} from index {options.resume_from_index}")

        results: Dict[str, SyncRunResult] = {}
        if order:
            self.engine(order[0]).verify_funder()

        for entity_type in order:
            engine = self.engine(entity_type)
            results[entity_type] = engine.sync_all(
                dry_run=options.dry_run,
                update_existing=options.update_existing,
                only_selected=options.only_selected,
                progress_callback=progress_callback,
                resume_from_index=options.resume_from_index if entity_type == resume_type else 0
            )
        return results
