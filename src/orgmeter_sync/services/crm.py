"""
CRM domain services consumed by the sync engines.

These wrap the writes the CRM performs for fundings, paybacks, syndications
and ISO-merchant relationships. Each validates its input and surfaces
failures as exceptions.
"""

import logging
from datetime import datetime
from typing import Dict, List, Any, Optional

from ..exceptions import TransformationError
from .repository import Collections, DocumentRepository, Document

logger = logging.getLogger(__name__)


def _stamp(data: Dict[str, Any], created: bool) -> Dict[str, Any]:
    now = datetime.utcnow()
    stamped = dict(data)
    stamped["updatedAt"] = now
    if created:
        stamped["createdAt"] = now
    return stamped


class FundingService:
    """Create and update CRM fundings."""

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def create(self, data: Dict[str, Any]) -> Document:
        if not data.get("name"):
            raise TransformationError("Funding name is required")
        if not data.get("funder"):
            raise TransformationError("Funding funder is required")

        funding = self.repository.create(Collections.FUNDINGS, _stamp(data, created=True))
        logger.debug(f"Created funding {funding['_id']}")
        return funding

    def update(self, funding_id: str, data: Dict[str, Any]) -> Optional[Document]:
        return self.repository.find_by_id_and_update(Collections.FUNDINGS, funding_id, _stamp(data, created=False))


class PaybackService:
    """Create and update paybacks collected against a funding."""

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def create_payback(self, data: Dict[str, Any]) -> Document:
        if not data.get("funding"):
            raise TransformationError("Payback funding is required")
        return self.repository.create(Collections.PAYBACKS, _stamp(data, created=True))

    def update_payback(self, payback_id: str, data: Dict[str, Any]) -> Optional[Document]:
        return self.repository.find_by_id_and_update(Collections.PAYBACKS, payback_id, _stamp(data, created=False))


class SyndicationService:
    """Create and list syndications of a funding."""

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def get_syndication_list(self, funding_id: str, syndicator_id: Optional[str] = None) -> List[Document]:
        filters = [("funding", "==", funding_id)]
        if syndicator_id:
            filters.append(("syndicator", "==", syndicator_id))
        return self.repository.find(Collections.SYNDICATIONS, filters)

    def create_syndication(self, data: Dict[str, Any]) -> Document:
        percent = data.get("participate_percent") or 0
        if percent < 0 or percent > 1:
            raise TransformationError(f"Invalid participation percent: {percent}")
        return self.repository.create(Collections.SYNDICATIONS, _stamp(data, created=True))


class ISOMerchantService:
    """Maintain the ISO-merchant relationship table."""

    def __init__(self, repository: DocumentRepository):
        self.repository = repository

    def create_iso_merchant(self, iso_id: str, merchant_id: str) -> Document:
        """
        Create or reactivate the relationship between an ISO and a merchant.

        Args:
            iso_id: CRM ISO id
            merchant_id: CRM merchant id

        Returns:
            The active relationship document
        """
        filters = [("iso", "==", iso_id), ("merchant", "==", merchant_id)]
        existing = self.repository.find_one(Collections.ISO_MERCHANTS, filters)
        if existing:
            if existing.get("inactive"):
                return self.repository.find_by_id_and_update(
                    Collections.ISO_MERCHANTS, existing["_id"], {"inactive": False}
                )
            return existing

        return self.repository.create(
            Collections.ISO_MERCHANTS,
            _stamp({"iso": iso_id, "merchant": merchant_id, "inactive": False}, created=True)
        )


class CrmServices:
    """Bundle of CRM collaborators sharing one repository."""

    def __init__(self, repository: DocumentRepository):
        self.fundings = FundingService(repository)
        self.paybacks = PaybackService(repository)
        self.syndications = SyndicationService(repository)
        self.iso_merchants = ISOMerchantService(repository)
