"""Tests for the advance engine and the funding fan-out."""

import pytest

from orgmeter_sync.engine import AdvanceSyncEngine
from orgmeter_sync.models.sync import SyncAction
from orgmeter_sync.services.repository import Collections

from conftest import source_record, sync_id_of


@pytest.fixture
def parties(repository, funder_id, add_source):
    """CRM records with the synced OrgMeter records pointing at them."""
    def synced(source_collection, source_id, target_collection, target, **fields):
        document = repository.insert(target_collection, target)
        add_source(source_collection, source_id, sync_id=document["_id"], **fields)
        return document["_id"]

    return {
        "lender": synced(Collections.ORGMETER_LENDERS, 1, Collections.LENDERS,
                         {"name": "House Lender", "email": "lend@acme.test", "funder": funder_id}, type="internal"),
        "merchant": synced(Collections.ORGMETER_MERCHANTS, 2, Collections.MERCHANTS,
                           {"name": "Joe's Diner", "email": "joe@diner.test", "phone": "555-0102"}),
        "iso": synced(Collections.ORGMETER_ISOS, 3, Collections.ISOS,
                      {"name": "Broker One", "email": "iso@broker.test", "phone": "555-0103"}),
        "underwriter": synced(Collections.ORGMETER_UNDERWRITER_USERS, 4, Collections.USERS,
                              {"first_name": "Uma", "last_name": "Underwriter"}),
        "manager": synced(Collections.ORGMETER_USERS, 5, Collections.USERS,
                          {"first_name": "Max", "last_name": "Manager"}),
        "representative": synced(Collections.ORGMETER_SALES_REP_USERS, 6, Collections.REPRESENTATIVES,
                                 {"first_name": "Rita", "last_name": "Rep"}),
        "syndicator": synced(Collections.ORGMETER_SYNDICATORS, 7, Collections.SYNDICATORS,
                             {"name": "Sam Synd", "email": "sam@synd.test"}),
    }


def advance_fields(**overrides):
    fields = {
        "idText": "ADV-100",
        "name": "Joe's Diner advance",
        "type": "renewal",
        "status": "Funded",
        "lender": {"id": 1},
        "merchantId": 2,
        "iso": {"id": 3},
        "underwriter": 4,
        "assignedTo": {"id": 5},
        "salesRep": 6,
        "createdBy": 5,
        "funding": {
            "principalAmount": "10000",
            "paybackAmount": "13500",
            "paymentCount": 60,
            "collectionFrequencyType": "daily",
            "collectionFrequencyDailyCustom": "banking_days",
            "fundedAt": "2024-03-01T00:00:00Z",
            "originalExpectedEndedAt": "2024-06-01T00:00:00Z",
            "lenderMerchantBankFee": {"amount": "100"},
            "merchantApplicationFee": {"amount": "0"},
            "isoOriginationCommission": {"amount": "500"},
            "isoApplicationFee": {"amount": "50"},
        },
        "participation": {
            "syndicators": [
                {
                    "id": 7,
                    "principalSyndicationPercent": 25,
                    "syndicationAmount": "2500",
                    "paybackAmount": "3375",
                    "commission": {"amount": "25"},
                    "fees": [{"description": "Wire", "amount": "15", "chargeMode": "frontend"}],
                },
                {"id": 99, "principalSyndicationPercent": 10},
            ]
        },
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def payments(add_source):
    add_source(
        Collections.ORGMETER_PAYMENTS, 1000,
        advanceId=100, type="advance_payback", amount="225", paid=True,
        dueAt="2024-03-04T00:00:00Z", createdAt="2024-03-04T01:00:00Z",
        notes=[{"createdBy": 5, "text": "Collected", "createdAt": "2024-03-04T14:07:00Z"}],
    )
    add_source(
        Collections.ORGMETER_PAYMENTS, 1001,
        advanceId=100, type="advance_payback", amount="225", bounced=True,
        bouncedReasonCode="R01", bouncedReason="Insufficient funds",
        dueAt="2024-03-05T00:00:00Z", createdAt="2024-03-05T01:00:00Z",
    )
    add_source(Collections.ORGMETER_PAYMENTS, 1002, advanceId=100, type="fee", amount="10",
               createdAt="2024-03-05T02:00:00Z")


def status_id(repository, name):
    return repository.find_one(Collections.FUNDING_STATUSES, [("name", "==", name)])["_id"]


def test_funding_resolves_every_party(repository, funder_id, parties, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 100, **advance_fields())

    result = AdvanceSyncEngine(repository, funder_id).sync_all()

    assert result.stats.total_synced == 1
    funding = repository.find_by_id(Collections.FUNDINGS, sync_id_of(repository, Collections.ORGMETER_ADVANCES, 100))
    assert funding["name"] == "ADV-100"
    assert funding["funder"] == {"id": funder_id, "name": "Acme Funding", "email": "ops@acme.test", "phone": "555-0100"}
    assert funding["lender"]["id"] == parties["lender"]
    assert funding["merchant"]["name"] == "Joe's Diner"
    assert funding["iso"]["phone"] == "555-0103"
    assert funding["internal"] is True
    assert funding["type"] == "RENEWAL"
    assert funding["status"] == status_id(repository, "Funded")
    assert funding["funded_amount"] == 1000000
    assert funding["payback_amount"] == 1350000
    assert funding["assigned_user"] == parties["underwriter"]
    assert funding["assigned_manager"] == parties["manager"]
    assert funding["follower_list"] == [parties["underwriter"], parties["manager"]]
    assert funding["representative"] == parties["representative"]
    assert funding["created_by_user"] == parties["manager"]
    assert funding["syndicator_list"] == []

    links = repository.all(Collections.ISO_MERCHANTS)
    assert [(link["iso"], link["merchant"], link["inactive"]) for link in links] == [
        (parties["iso"], parties["merchant"], False)
    ]


def test_unknown_status_falls_back_to_initial(repository, funder_id, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 101, idText="ADV-101", status="Archived")

    AdvanceSyncEngine(repository, funder_id).sync_all()

    funding = repository.all(Collections.FUNDINGS)[0]
    assert funding["status"] == status_id(repository, "New")


def test_unresolved_references_do_not_fail_the_advance(repository, funder_id, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 102, idText="ADV-102", lender={"id": 404}, merchantId=405)

    result = AdvanceSyncEngine(repository, funder_id).sync_all()

    assert result.stats.total_synced == 1
    funding = repository.all(Collections.FUNDINGS)[0]
    assert funding["lender"] is None
    assert funding["merchant"] is None
    assert funding["internal"] is False
    assert funding["follower_list"] == []
    assert repository.all(Collections.PAYBACK_PLANS) == []
    assert repository.all(Collections.DISBURSEMENT_INTENTS) == []
    assert repository.all(Collections.ISO_MERCHANTS) == []


def test_syndicator_logins_are_not_funding_users(repository, funder_id, add_source):
    add_source(
        Collections.ORGMETER_USERS, 13, firstName="Sam", lastName="Synd",
        syncMetadata={"needsSync": True, "syncId": "syndicators-9", "type": "syndicator"},
    )
    add_source(Collections.ORGMETER_ADVANCES, 103, idText="ADV-103", createdBy=13, assignedTo=13, updatedBy=13)

    AdvanceSyncEngine(repository, funder_id).sync_all()

    funding = repository.all(Collections.FUNDINGS)[0]
    assert funding["assigned_manager"] is None
    assert funding["created_by_user"] is None
    assert funding["updated_by_user"] is None
    assert funding["follower_list"] == []


def test_fanout_creates_dependent_records(repository, funder_id, parties, payments, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 100, **advance_fields())

    AdvanceSyncEngine(repository, funder_id).sync_all()
    funding_id = sync_id_of(repository, Collections.ORGMETER_ADVANCES, 100)

    plans = repository.all(Collections.PAYBACK_PLANS)
    assert len(plans) == 1
    plan = plans[0]
    assert plan["funding"] == funding_id
    assert plan["frequency"] == "DAILY"
    assert plan["payday_list"] == [1, 2, 3, 4, 5]
    assert plan["avoid_holiday"] is True
    assert plan["total_amount"] == 1350000
    assert plan["payback_count"] == 60
    assert plan["status"] == "ACTIVE"

    fees = repository.all(Collections.FUNDING_FEES)
    assert [(fee["name"], fee["amount"], fee["upfront"]) for fee in fees] == [("Bank Fee", 10000, True)]
    assert fees[0]["fee_type"] is not None

    expenses = {expense["name"]: expense for expense in repository.all(Collections.FUNDING_EXPENSES)}
    assert expenses["ISO Commission"]["amount"] == 50000
    assert expenses["ISO Commission"]["commission"] is True
    assert expenses["ISO Application Fee"]["amount"] == 5000
    assert expenses["ISO Application Fee"]["commission"] is False

    intent = repository.all(Collections.DISBURSEMENT_INTENTS)[0]
    assert intent["amount"] == 990000
    assert intent["status"] == "SUCCEED"
    assert intent["merchant"]["email"] == "joe@diner.test"
    disbursement = repository.all(Collections.DISBURSEMENTS)[0]
    assert disbursement["disbursement_intent"] == intent["_id"]
    assert disbursement["reconciled"] is False

    commission_intent = repository.all(Collections.COMMISSION_INTENTS)[0]
    assert commission_intent["amount"] == 50000
    assert commission_intent["status"] == "SUCCEED"
    assert len(repository.all(Collections.COMMISSIONS)) == 1

    syndications = repository.all(Collections.SYNDICATIONS)
    assert len(syndications) == 1
    syndication = syndications[0]
    assert syndication["syndicator"] == parties["syndicator"]
    assert syndication["participate_percent"] == 0.25
    assert syndication["participate_amount"] == 250000
    assert syndication["payback_amount"] == 337500
    assert [(fee["name"], fee["amount"], fee["upfront"]) for fee in syndication["fee_list"]] == [
        ("Commission", 2500, True), ("Wire", 1500, True)
    ]

    paybacks = sorted(repository.all(Collections.PAYBACKS), key=lambda payback: payback["due_date"])
    assert [payback["status"] for payback in paybacks] == ["SUCCEED", "BOUNCED"]
    assert [payback["payback_amount"] for payback in paybacks] == [22500, 22500]
    assert paybacks[0]["payback_plan"] == plan["_id"]
    assert paybacks[0]["note"] == "Max Manager - Collected (Mar 04, 2024, 02:07 PM)"
    assert paybacks[1]["response"] == "[R01] Insufficient funds"
    assert sync_id_of(repository, Collections.ORGMETER_PAYMENTS, 1000) == paybacks[0]["_id"]
    assert sync_id_of(repository, Collections.ORGMETER_PAYMENTS, 1002) is None


def test_scheduled_commission_without_funded_date(repository, funder_id, parties, add_source):
    fields = advance_fields()
    fields["funding"] = dict(fields["funding"], fundedAt=None)
    add_source(Collections.ORGMETER_ADVANCES, 100, **fields)

    AdvanceSyncEngine(repository, funder_id).sync_all()

    assert repository.all(Collections.COMMISSION_INTENTS)[0]["status"] == "SCHEDULED"
    assert repository.all(Collections.COMMISSIONS) == []


def test_closed_status_closes_plan_and_syndications(repository, funder_id, parties, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 100, **advance_fields(status="Paid Off"))

    AdvanceSyncEngine(repository, funder_id).sync_all()

    assert repository.all(Collections.PAYBACK_PLANS)[0]["status"] == "CLOSED"
    assert repository.all(Collections.SYNDICATIONS)[0]["status"] == "CLOSED"


def test_update_replaces_sets_and_keeps_the_rest(repository, funder_id, parties, payments, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 100, **advance_fields())
    engine = AdvanceSyncEngine(repository, funder_id)
    engine.sync_all()
    funding_id = sync_id_of(repository, Collections.ORGMETER_ADVANCES, 100)
    funding = repository.find_by_id(Collections.FUNDINGS, funding_id)
    repository.find_by_id_and_update(
        Collections.FUNDINGS, funding_id, {"follower_list": funding["follower_list"] + ["crm-follower"]}
    )
    fields = advance_fields()
    fields["funding"] = dict(fields["funding"], lenderMerchantBankFee={"amount": "200"})
    repository.find_one_and_update(Collections.ORGMETER_ADVANCES, [("id", "==", 100)], {"funding": fields["funding"]})

    result = engine.sync_all()

    assert result.stats.total_updated == 1
    assert len(repository.all(Collections.FUNDINGS)) == 1
    fees = repository.all(Collections.FUNDING_FEES)
    assert [fee["amount"] for fee in fees] == [20000]
    assert len(repository.all(Collections.PAYBACK_PLANS)) == 1
    assert len(repository.all(Collections.FUNDING_EXPENSES)) == 2
    assert len(repository.all(Collections.DISBURSEMENT_INTENTS)) == 1
    assert len(repository.all(Collections.COMMISSION_INTENTS)) == 1
    assert len(repository.all(Collections.SYNDICATIONS)) == 1
    assert len(repository.all(Collections.PAYBACKS)) == 2
    assert len(repository.all(Collections.ISO_MERCHANTS)) == 1

    funding = repository.find_by_id(Collections.FUNDINGS, funding_id)
    assert funding["follower_list"] == [parties["underwriter"], parties["manager"], "crm-follower"]

    plan = repository.all(Collections.PAYBACK_PLANS)[0]
    assert all(payback["payback_plan"] == plan["_id"] for payback in repository.all(Collections.PAYBACKS))


def test_adopts_existing_funding_by_name(repository, funder_id, add_source):
    existing = repository.insert(Collections.FUNDINGS, {"name": "ADV-200", "funder": {"id": funder_id}})
    record = source_record(200, idText="ADV-200")
    repository.insert(Collections.ORGMETER_ADVANCES, record)

    outcome = AdvanceSyncEngine(repository, funder_id).sync_one(record)

    assert outcome.action == SyncAction.UPDATED
    assert outcome.target_id == existing["_id"]
    assert sync_id_of(repository, Collections.ORGMETER_ADVANCES, 200) == existing["_id"]


def test_payback_matched_by_due_date_and_amount(repository, funder_id, parties, payments, add_source):
    add_source(Collections.ORGMETER_ADVANCES, 100, **advance_fields())
    engine = AdvanceSyncEngine(repository, funder_id)
    engine.sync_all()
    repository.update_many(Collections.ORGMETER_PAYMENTS, [("advanceId", "==", 100)], {"syncMetadata.syncId": None})

    engine.sync_all()

    assert len(repository.all(Collections.PAYBACKS)) == 2
    assert sync_id_of(repository, Collections.ORGMETER_PAYMENTS, 1001) is not None
