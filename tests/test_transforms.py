"""Tests for field transformation helpers."""

from datetime import datetime

import pytest

from orgmeter_sync.engine.resolver import extract_id
from orgmeter_sync.engine.transforms import (
    FieldTransformer, parse_datetime, parse_human_name, parse_money, to_cents
)
from orgmeter_sync.exceptions import TransformationError


class TestMoney:
    """Money parsing and cent conversion."""

    @pytest.mark.parametrize("value, expected", [
        ("1234.56", 123456),
        ("0.005", 1),
        ("$1,234.50", 123450),
        (25, 2500),
        (19.99, 1999),
    ])
    def test_to_cents(self, value, expected):
        assert to_cents(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", "nan", True])
    def test_unusable_amounts_fall_back_to_default(self, value):
        assert to_cents(value) == 0
        assert to_cents(value, default=-1) == -1

    def test_parse_money_rejects_non_finite(self):
        assert parse_money("inf") is None
        assert parse_money(float("inf")) is None

    def test_parse_money_strips_noise(self):
        assert parse_money(" $ 1,000.25 ") == 1000.25


class TestHumanName:
    """Person/company name heuristics for syndicators."""

    def test_plain_person_name(self):
        assert parse_human_name("Jane Smith") == ("Jane", "Smith")

    def test_multi_part_last_name(self):
        assert parse_human_name("Mary Ann Jones") == ("Mary", "Ann Jones")

    def test_single_word(self):
        assert parse_human_name("Cher") == ("Cher", None)

    def test_company_dash_person(self):
        assert parse_human_name("Acme Capital - John Doe") == ("John", "Doe")

    def test_person_then_company_in_parens(self):
        assert parse_human_name("John Doe (Acme Holdings LLC)") == ("John", "Doe")

    def test_person_followed_by_company_word(self):
        assert parse_human_name("Robert Brown Capital") == ("Robert", "Brown")

    def test_company_only(self):
        assert parse_human_name("Acme LLC") == (None, None)

    @pytest.mark.parametrize("value", [None, "", 42])
    def test_empty_input(self, value):
        assert parse_human_name(value) == (None, None)


class TestCollectionFrequency:

    def test_daily_weekdays(self):
        result = FieldTransformer.map_collection_frequency({
            "collectionFrequencyType": "daily", "collectionFrequencyDailyCustom": "weekdays",
        })
        assert result == {"frequency": "DAILY", "payday_list": [1, 2, 3, 4, 5], "avoid_holiday": False}

    def test_daily_banking_days_avoids_holidays(self):
        result = FieldTransformer.map_collection_frequency({
            "collectionFrequencyType": "Daily", "collectionFrequencyDailyCustom": "banking_days",
        })
        assert result["payday_list"] == [1, 2, 3, 4, 5]
        assert result["avoid_holiday"] is True

    def test_daily_every_day_and_custom(self):
        every_day = FieldTransformer.map_collection_frequency({
            "collectionFrequencyType": "daily", "collectionFrequencyDailyCustom": "every_day",
        })
        custom = FieldTransformer.map_collection_frequency({
            "collectionFrequencyType": "daily",
            "collectionFrequencyDailyCustom": "custom_days",
            "collectionFrequencyDailyCustomDays": [2, 4],
        })
        assert every_day["payday_list"] == [1, 2, 3, 4, 5, 6, 7]
        assert custom["payday_list"] == [2, 4]

    def test_weekly_and_monthly_fall_back_to_first_day(self):
        weekly = FieldTransformer.map_collection_frequency({
            "collectionFrequencyType": "weekly", "collectionFrequencyWeeklyCustom": 9,
        })
        monthly = FieldTransformer.map_collection_frequency({
            "collectionFrequencyType": "monthly", "collectionFrequencyMonthlyCustom": 15,
        })
        assert weekly == {"frequency": "WEEKLY", "payday_list": [1], "avoid_holiday": False}
        assert monthly["payday_list"] == [15]

    def test_missing_or_unknown_frequency(self):
        assert FieldTransformer.map_collection_frequency({}) is None
        assert FieldTransformer.map_collection_frequency({"collectionFrequencyType": "yearly"}) is None


class TestDisbursementAmount:

    def test_principal_minus_upfront_fees(self):
        terms = {
            "principalAmount": "1000",
            "lenderMerchantBankFee": {"amount": "600"},
        }
        assert FieldTransformer.disbursement_amount(terms) == 40000

    def test_non_positive_amount_is_none(self):
        terms = {
            "principalAmount": "1000",
            "lenderMerchantBankFee": {"amount": "600"},
            "merchantApplicationFee": {"amount": "500"},
        }
        assert FieldTransformer.disbursement_amount(terms) is None


class TestFieldMappings:

    def test_user_type_prefers_admin(self):
        assert FieldTransformer.map_user_type(["ROLE_USER", "ROLE_ADMIN"]) == "FUNDER_MANAGER"
        assert FieldTransformer.map_user_type(["ROLE_USER"]) == "FUNDER_USER"

    def test_unsupported_role_raises(self):
        with pytest.raises(TransformationError):
            FieldTransformer.map_user_type(["ROLE_VIEWER"])

    def test_funding_type(self):
        assert FieldTransformer.map_funding_type("renewal") == "RENEWAL"
        assert FieldTransformer.map_funding_type(None) == "NEW"
        assert FieldTransformer.map_funding_type("something") == "NEW"

    def test_business_type(self):
        assert FieldTransformer.map_business_type("Limited Liability Company") == "LLC"
        assert FieldTransformer.map_business_type("Partnership") is None

    def test_primary_or_first(self):
        items = [{"email": "a@x.test"}, {"email": "b@x.test", "primary": True}]
        assert FieldTransformer.primary_or_first(items, "email") == "b@x.test"
        assert FieldTransformer.primary_or_first(items[:1], "email") == "a@x.test"
        assert FieldTransformer.primary_or_first([], "email") is None

    def test_payback_status_priority(self):
        assert FieldTransformer.payback_status({"paid": True, "bounced": True}) == "SUCCEED"
        assert FieldTransformer.payback_status({"bounced": True, "ignored": True}) == "BOUNCED"
        assert FieldTransformer.payback_status({"ignored": True}) == "FAILED"
        assert FieldTransformer.payback_status({}) == "SUBMITTED"

    def test_bounce_response(self):
        assert FieldTransformer.bounce_response({"bouncedReasonCode": "R01", "bouncedReason": "NSF"}) == "[R01] NSF"
        assert FieldTransformer.bounce_response({"bouncedReason": "NSF"}) == "NSF"
        assert FieldTransformer.bounce_response({}) == ""

    def test_format_note(self):
        note = FieldTransformer.format_note("Jane Smith", "Called merchant", "2024-03-05T14:07:00Z")
        assert note == "Jane Smith - Called merchant (Mar 05, 2024, 02:07 PM)"

    def test_format_note_without_author(self):
        assert FieldTransformer.format_note(None, "Hi", None) == "Unknown User - Hi ()"


class TestReferences:

    class _Ref:
        def __init__(self, value):
            self._value = value

        def id(self):
            return self._value

    @pytest.mark.parametrize("ref, expected", [
        (7, 7),
        ("12", 12),
        ({"id": 5}, 5),
        ({"_id": "9"}, 9),
        (None, None),
        (0, None),
        ({"name": "no id"}, None),
        ("abc", None),
    ])
    def test_extract_id(self, ref, expected):
        assert extract_id(ref) == expected

    def test_extract_id_from_accessor(self):
        assert extract_id(self._Ref(31)) == 31

    def test_parse_datetime(self):
        assert parse_datetime("2024-01-02T03:04:05Z").year == 2024
        assert parse_datetime("not a date") is None
        now = datetime.utcnow()
        assert parse_datetime(now) is now
