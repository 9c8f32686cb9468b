"""
Fixed vocabularies of the CRM target model.
"""

from enum import Enum


class FundingType(str, Enum):
    NEW = "NEW"
    RENEWAL = "RENEWAL"
    REFINANCE = "REFINANCE"
    BUYOUT = "BUYOUT"


class BusinessEntityType(str, Enum):
    C_CORP = "C_CORP"
    LLC = "LLC"
    SOLE_PROP = "SOLE_PROP"


class UserType(str, Enum):
    FUNDER_MANAGER = "FUNDER_MANAGER"
    FUNDER_USER = "FUNDER_USER"
    ISO_SALES = "ISO_SALES"


class PaybackFrequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


class PaymentMethod(str, Enum):
    ACH = "ACH"
    WIRE = "WIRE"
    OTHER = "OTHER"


class DistributionPriority(str, Enum):
    EQUAL = "EQUAL"


class PlanStatus(str, Enum):
    """Status shared by payback plans and syndications."""
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class IntentStatus(str, Enum):
    SCHEDULED = "SCHEDULED"
    SUCCEED = "SUCCEED"


class PaybackStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    SUCCEED = "SUCCEED"
    BOUNCED = "BOUNCED"
    FAILED = "FAILED"


class PayoutFrequency(str, Enum):
    WEEKLY = "WEEKLY"
