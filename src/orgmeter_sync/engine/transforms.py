"""
Field transformation utilities for mapping OrgMeter records to CRM records.
"""

import logging
import math
import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from ..exceptions import TransformationError
from ..models.crm import (
    BusinessEntityType, FundingType, PaybackFrequency, PaybackStatus, UserType
)

logger = logging.getLogger(__name__)

_MONEY_NOISE = re.compile(r"[$,\s]")


def parse_money(value: Any) -> Optional[float]:
    """
    Parse a dollar amount once, tolerating the shapes OrgMeter exports.

    Args:
        value: Number, Decimal or decimal string such as ``"1,234.56"``

    Returns:
        The amount in dollars, or None when absent or malformed
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float, Decimal)):
        amount = float(value)
    elif isinstance(value, str):
        cleaned = _MONEY_NOISE.sub("", value)
        if not cleaned:
            return None
        try:
            amount = float(cleaned)
        except ValueError:
            logger.warning(f"Unparseable amount: {value!r}")
            return None
    else:
        return None

    if not math.isfinite(amount):
        return None
    return amount


def to_cents(value: Any, default: int = 0) -> int:
    """
    Convert a dollar amount to integer cents, rounding halves up.

    Args:
        value: Anything `parse_money` accepts
        default: Cents returned when the amount is absent or malformed

    Returns:
        Amount in cents
    """
    amount = parse_money(value)
    if amount is None:
        return default
    return int(math.floor(amount * 100 + 0.5))


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept datetimes or ISO-8601 strings (with a trailing ``Z``)."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable date: {value!r}")
    return None


# Name parsing for syndicators whose single name field may hold a person or a company

COMPANY_INDICATORS = [
    "Inc", "LLC", "Corp", "Corporation", "Ltd", "Limited", "Company", "Co",
    "Enterprises", "Enterprise", "Solutions", "Group", "Holdings", "Partners",
    "Associates", "Services", "Consulting", "Management", "Ventures", "Venture",
    "Capital", "Investments", "Financial", "Funding", "Finance",
]

# "Co" is left out here: as a trailing word it matches too many surnames
COMPANY_WORDS = [word for word in COMPANY_INDICATORS if word != "Co"]

COMMON_FIRST_NAMES = {
    "Aaron", "Adam", "Adrian", "Alan", "Albert", "Alex", "Alexander", "Andrew", "Anthony", "Antonio",
    "Arthur", "Benjamin", "Bernard", "Bobby", "Brandon", "Brian", "Bruce", "Carl", "Carlos", "Charles",
    "Chris", "Christopher", "Daniel", "David", "Dennis", "Donald", "Douglas", "Eddie", "Edward", "Eltin",
    "Eric", "Eugene", "Frank", "Gary", "George", "Gerald", "Gregory", "Harold", "Henry", "Jack",
    "James", "Jared", "Jason", "Jeffrey", "Jeremy", "Jerry", "Jesse", "Joe", "John", "Johnny",
    "Jonathan", "Joseph", "Joshua", "Juan", "Justin", "Keith", "Kenneth", "Kevin", "Larry", "Lawrence",
    "Louis", "Mark", "Martin", "Matthew", "Michael", "Nicholas", "Patrick", "Paul", "Peter", "Philip",
    "Ralph", "Raymond", "Richard", "Robert", "Roger", "Ronald", "Roy", "Russell", "Ryan", "Samuel",
    "Scott", "Sean", "Stephen", "Steven", "Thomas", "Timothy", "Victor", "Walter", "Wayne", "William",
}

_COMPANY_DASH_PERSON = re.compile(r"^.+?\s*-\s*([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)$")
_PERSON_PAREN_COMPANY = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)\s*\(.+\)$")
_PERSON_COMPANY_WORD = [
    re.compile(rf"^([A-Z][a-z]+\s+[A-Z][a-z]+)\s+{word}", re.IGNORECASE) for word in COMPANY_WORDS
]
_LEADING_TWO_WORDS = re.compile(r"^([A-Z][a-z]+)\s+([A-Z][a-z]+)")

HumanName = Tuple[Optional[str], Optional[str]]


def parse_person_name(name: str) -> HumanName:
    """Split a plain person name into first name and the remainder."""
    parts = name.split()
    if not parts:
        return None, None
    if len(parts) == 1:
        return parts[0], None
    return parts[0], " ".join(parts[1:])


def parse_human_name(full_name: Optional[str]) -> HumanName:
    """
    Extract a person's first and last name from a free-text name.

    Names without a company indicator are split as person names. Names with
    one are tried against, in order: "Company - First Last", "First Last
    (Company)", "First Last <CompanyWord>" and a leading "First Last" whose
    first name is on the common first-name list.

    Args:
        full_name: Name as entered in OrgMeter

    Returns:
        ``(first_name, last_name)``; both None when no person is recognizable
    """
    if not full_name or not isinstance(full_name, str):
        return None, None

    name = full_name.strip()
    lowered = name.lower()
    if not any(indicator.lower() in lowered for indicator in COMPANY_INDICATORS):
        return parse_person_name(name)

    match = _COMPANY_DASH_PERSON.match(name) or _PERSON_PAREN_COMPANY.match(name)
    if match:
        return parse_person_name(match.group(1))

    for pattern in _PERSON_COMPANY_WORD:
        match = pattern.match(name)
        if match:
            return parse_person_name(match.group(1))

    match = _LEADING_TWO_WORDS.match(name)
    if match and match.group(1) in COMMON_FIRST_NAMES:
        return match.group(1), match.group(2)

    return None, None


class FieldTransformer:
    """
    Mapping helpers shared by the entity engines.
    """

    BUSINESS_TYPES = {
        "Corporation": BusinessEntityType.C_CORP.value,
        "Limited Liability Company": BusinessEntityType.LLC.value,
        "Sole Proprietor": BusinessEntityType.SOLE_PROP.value,
    }

    USER_ROLES = {
        "ROLE_ADMIN": UserType.FUNDER_MANAGER.value,
        "ROLE_USER": UserType.FUNDER_USER.value,
    }

    WEEKDAYS = [1, 2, 3, 4, 5]
    EVERY_DAY = [1, 2, 3, 4, 5, 6, 7]

    @staticmethod
    def map_funding_type(value: Optional[str]) -> str:
        """Uppercase an advance type into the funding vocabulary, default NEW."""
        if not value:
            return FundingType.NEW.value
        candidate = str(value).strip().upper()
        if candidate in FundingType.__members__:
            return candidate
        logger.debug(f"Unknown advance type {value!r}, using NEW")
        return FundingType.NEW.value

    @staticmethod
    def is_internal_lender(lender_type: Optional[str]) -> bool:
        return bool(lender_type) and str(lender_type).lower() == "internal"

    @staticmethod
    def map_business_type(value: Optional[str]) -> Optional[str]:
        return FieldTransformer.BUSINESS_TYPES.get(value or "")

    @staticmethod
    def map_user_type(roles: Optional[List[str]]) -> str:
        """
        Map OrgMeter roles to a CRM user type.

        Raises:
            TransformationError: If no supported role is present
        """
        for role in ("ROLE_ADMIN", "ROLE_USER"):
            if role in (roles or []):
                return FieldTransformer.USER_ROLES[role]
        raise TransformationError(f"Unsupported user roles: {roles}")

    @staticmethod
    def primary_or_first(items: Optional[List[Dict[str, Any]]], key: str) -> Optional[Any]:
        """Pick ``key`` from the item flagged primary, else from the first item."""
        if not items:
            return None
        for item in items:
            if item.get("primary") and item.get(key):
                return item[key]
        return items[0].get(key)

    @staticmethod
    def map_collection_frequency(terms: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """
        Derive payback plan frequency settings from advance funding terms.

        Args:
            terms: The advance's ``funding`` sub-object

        Returns:
            ``{"frequency", "payday_list", "avoid_holiday"}`` or None when the
            advance has no usable collection frequency
        """
        terms = terms or {}
        frequency = terms.get("collectionFrequencyType")
        if not frequency:
            return None

        frequency = str(frequency).lower()
        daily_custom = terms.get("collectionFrequencyDailyCustom")

        if frequency == "daily":
            if daily_custom == "custom_days" and terms.get("collectionFrequencyDailyCustomDays"):
                payday_list = list(terms["collectionFrequencyDailyCustomDays"])
            elif daily_custom == "every_day":
                payday_list = list(FieldTransformer.EVERY_DAY)
            else:
                # weekdays, banking_days and unknown values all collect Monday to Friday
                payday_list = list(FieldTransformer.WEEKDAYS)
            result_frequency = PaybackFrequency.DAILY.value
        elif frequency == "weekly":
            day = terms.get("collectionFrequencyWeeklyCustom")
            payday_list = [day] if isinstance(day, int) and 1 <= day <= 7 else [1]
            result_frequency = PaybackFrequency.WEEKLY.value
        elif frequency == "monthly":
            day = terms.get("collectionFrequencyMonthlyCustom")
            payday_list = [day] if isinstance(day, int) and 1 <= day <= 28 else [1]
            result_frequency = PaybackFrequency.MONTHLY.value
        else:
            logger.warning(f"Unknown collection frequency: {frequency}")
            return None

        return {
            "frequency": result_frequency,
            "payday_list": payday_list,
            "avoid_holiday": daily_custom == "banking_days",
        }

    @staticmethod
    def disbursement_amount(terms: Optional[Dict[str, Any]]) -> Optional[int]:
        """
        Net amount sent to the merchant in cents.

        Returns:
            principal minus bank fee minus merchant application fee, or None
            when that is not positive
        """
        terms = terms or {}
        amount = (
            to_cents(terms.get("principalAmount"))
            - to_cents(get_amount(terms, "lenderMerchantBankFee"))
            - to_cents(get_amount(terms, "merchantApplicationFee"))
        )
        if amount <= 0:
            return None
        return amount

    @staticmethod
    def payback_status(payment: Dict[str, Any]) -> str:
        """Payment flags in priority order: paid, bounced, ignored."""
        if payment.get("paid"):
            return PaybackStatus.SUCCEED.value
        if payment.get("bounced"):
            return PaybackStatus.BOUNCED.value
        if payment.get("ignored"):
            return PaybackStatus.FAILED.value
        return PaybackStatus.SUBMITTED.value

    @staticmethod
    def bounce_response(payment: Dict[str, Any]) -> str:
        code = payment.get("bouncedReasonCode")
        reason = payment.get("bouncedReason") or ""
        if not code and not reason:
            return ""
        prefix = f"[{code}]" if code else ""
        return f"{prefix} {reason}".strip()

    @staticmethod
    def format_note(author: Optional[str], text: Optional[str], created_at: Any) -> str:
        """Render one payment note as ``"<Author> - <text> (<date>)"``."""
        timestamp = parse_datetime(created_at)
        formatted_date = timestamp.strftime("%b %d, %Y, %I:%M %p") if timestamp else ""
        return f"{author or 'Unknown User'} - {text or ''} ({formatted_date})"


def get_amount(terms: Optional[Dict[str, Any]], key: str) -> Any:
    """Read the ``amount`` of a fee-like sub-object such as ``{"amount": "25.00"}``."""
    item = (terms or {}).get(key)
    if isinstance(item, dict):
        return item.get("amount")
    return None
