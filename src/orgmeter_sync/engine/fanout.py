"""
Dependent records created alongside a funding.

After a funding is created or updated, its advance is fanned out into a
payback plan, fees, expenses, a disbursement, a commission, syndications
and paybacks. Each sub-sync is independent: a failure is logged and the
remaining sub-syncs still run.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..models.crm import DistributionPriority, IntentStatus, PaymentMethod, PlanStatus
from ..services.crm import CrmServices
from ..services.repository import Collections, DocumentRepository, Document, get_field
from .lookups import LookupService
from .resolver import IdentityResolver
from .transforms import FieldTransformer, get_amount, parse_datetime, to_cents

logger = logging.getLogger(__name__)

# (name, fee type name, source key) of the upfront fees charged to the merchant
FEE_CONFIGURATIONS = [
    ("Bank Fee", "Bank Fee", "lenderMerchantBankFee"),
    ("Merchant Application Fee", "Merchant Application Fee", "merchantApplicationFee"),
]

# (name, expense type name, source key, commission, syndication)
EXPENSE_CONFIGURATIONS = [
    ("ISO Commission", "ISO Commission", "isoOriginationCommission", True, True),
    ("ISO Application Fee", "ISO Application Fee", "isoApplicationFee", False, True),
]

SNAPSHOT_FIELDS = ("id", "name", "email", "phone")


def advance_display_name(advance: Dict[str, Any]) -> str:
    return advance.get("idText") or advance.get("name") or f"Advance {advance.get('id')}"


def snapshot(funding: Document, key: str) -> Dict[str, Any]:
    """Copy an embedded party of the funding as ``{id, name, email, phone}``."""
    party = funding.get(key) or {}
    return {field: party.get(field) for field in SNAPSHOT_FIELDS}


class FundingFanout:
    """
    Syncs the records that hang off one funding.

    In create mode every sub-sync skips when records of its kind already
    exist for the funding. In replace mode the payback plan, fees and
    expenses are deleted and recreated as one set; the other sub-syncs keep
    their create-if-absent behaviour.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        crm: CrmServices,
        resolver: IdentityResolver,
        lookups: LookupService,
        funder_id: str,
        user_id: Optional[str] = None
    ):
        self.repository = repository
        self.crm = crm
        self.resolver = resolver
        self.lookups = lookups
        self.funder_id = funder_id
        self.user_id = user_id

    def run(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        """
        Run every sub-sync for a funding.

        Args:
            advance: Source advance the funding was built from
            funding: The persisted funding
            replace: Recreate the replaceable sets instead of skipping them
        """
        steps: List[Tuple[str, Callable[[Dict[str, Any], Document, bool], None]]] = [
            ("payback plan", self.sync_payback_plan),
            ("funding fees", self.sync_fees),
            ("funding expenses", self.sync_expenses),
            ("disbursement", self.sync_disbursement),
            ("commission", self.sync_commission),
            ("syndications", self.sync_syndications),
            ("paybacks", self.sync_paybacks),
        ]
        for name, step in steps:
            try:
                step(advance, funding, replace)
            except Exception as e:
                logger.error(f"Failed to sync {name} for funding {funding['_id']}: {e}")

    def _base(self, funding: Document) -> Dict[str, Any]:
        return {
            "funding": funding["_id"],
            "funder": get_field(funding, "funder.id"),
            "lender": get_field(funding, "lender.id"),
            "merchant": get_field(funding, "merchant.id"),
            "created_by_user": funding.get("created_by_user"),
            "updated_by_user": funding.get("updated_by_user"),
            "createdAt": datetime.utcnow(),
        }

    def _write_set(self, collection: str, funding: Document, documents: List[Dict[str, Any]], replace: bool) -> None:
        funding_filter = [("funding", "==", funding["_id"])]
        if replace:
            self.repository.replace_many(collection, funding_filter, documents)
            logger.info(f"Replaced {collection} for funding {funding['_id']} with {len(documents)} records")
            return

        if self.repository.find_one(collection, funding_filter) is not None:
            logger.info(f"{collection} already exist for funding {funding['_id']}")
            return
        if documents:
            self.repository.create_many(collection, documents)
            logger.info(f"Created {len(documents)} {collection} for funding {funding['_id']}")

    # Payback plan

    def payback_plan(self, advance: Dict[str, Any], funding: Document) -> Optional[Dict[str, Any]]:
        terms = advance.get("funding") or {}
        frequency = FieldTransformer.map_collection_frequency(terms)
        if frequency is None:
            return None

        closed = self.lookups.is_closed_status(funding.get("status"))
        plan = self._base(funding)
        plan.update({
            "payment_method": PaymentMethod.OTHER.value,
            "total_amount": to_cents(terms.get("paybackAmount")),
            "payback_count": terms.get("paymentCount") or 0,
            "start_date": parse_datetime(terms.get("fundedAt")) or datetime.utcnow(),
            "end_date": parse_datetime(terms.get("originalExpectedEndedAt")),
            "next_payback_date": None,
            "distribution_priority": DistributionPriority.EQUAL.value,
            "status": PlanStatus.CLOSED.value if closed else PlanStatus.ACTIVE.value,
        })
        plan.update(frequency)
        return plan

    def sync_payback_plan(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        plan = self.payback_plan(advance, funding)
        if plan is None:
            logger.info(f"No payback plan data available for advance: {advance_display_name(advance)}")
        self._write_set(Collections.PAYBACK_PLANS, funding, [plan] if plan else [], replace)

    # Fees and expenses

    def funding_fees(self, advance: Dict[str, Any], funding: Document) -> List[Dict[str, Any]]:
        terms = advance.get("funding") or {}
        fees = []
        for name, type_name, key in FEE_CONFIGURATIONS:
            amount = to_cents(get_amount(terms, key))
            if amount <= 0:
                continue
            fee = self._base(funding)
            fee.update({
                "iso": get_field(funding, "iso.id"),
                "name": name,
                "fee_type": self.lookups.find_fee_type(type_name),
                "amount": amount,
                "upfront": True,
                "fee_date": datetime.utcnow(),
                "inactive": False,
            })
            fees.append(fee)
        return fees

    def sync_fees(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        self._write_set(Collections.FUNDING_FEES, funding, self.funding_fees(advance, funding), replace)

    def funding_expenses(self, advance: Dict[str, Any], funding: Document) -> List[Dict[str, Any]]:
        terms = advance.get("funding") or {}
        expenses = []
        for name, type_name, key, commission, syndication in EXPENSE_CONFIGURATIONS:
            amount = to_cents(get_amount(terms, key))
            if amount <= 0:
                continue
            expense = self._base(funding)
            expense.update({
                "iso": get_field(funding, "iso.id"),
                "name": name,
                "expense_type": self.lookups.find_expense_type(type_name),
                "amount": amount,
                "commission": commission,
                "syndication": syndication,
                "expense_date": datetime.utcnow(),
                "inactive": False,
            })
            expenses.append(expense)
        return expenses

    def sync_expenses(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        self._write_set(Collections.FUNDING_EXPENSES, funding, self.funding_expenses(advance, funding), replace)

    # Disbursement and commission

    def sync_disbursement(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        if self.repository.find_one(Collections.DISBURSEMENT_INTENTS, [("funding", "==", funding["_id"])]):
            logger.debug(f"Disbursement intent already exists for funding {funding['_id']}")
            return

        terms = advance.get("funding") or {}
        amount = FieldTransformer.disbursement_amount(terms)
        if amount is None:
            logger.warning(f"Invalid disbursement amount for advance: {advance_display_name(advance)}")
            return

        disbursement_date = parse_datetime(terms.get("fundedAt")) or datetime.utcnow()
        intent = self.repository.create(Collections.DISBURSEMENT_INTENTS, {
            "funding": funding["_id"],
            "funder": snapshot(funding, "funder"),
            "lender": snapshot(funding, "lender"),
            "merchant": snapshot(funding, "merchant"),
            "disbursement_date": disbursement_date,
            "amount": amount,
            "payment_method": PaymentMethod.OTHER.value,
            "funder_account": None,
            "merchant_account": None,
            "created_by_user": funding.get("created_by_user"),
            "updated_by_user": funding.get("updated_by_user"),
            "note": f"Disbursement for advance {advance_display_name(advance)}",
            "status": IntentStatus.SUCCEED.value,
        })

        self.repository.create(Collections.DISBURSEMENTS, {
            "disbursement_intent": intent["_id"],
            "payment_method": intent["payment_method"],
            "submitted_date": disbursement_date,
            "processed_date": disbursement_date,
            "responsed_date": disbursement_date,
            "amount": amount,
            "status": IntentStatus.SUCCEED.value,
            "created_by_user": funding.get("created_by_user"),
            "updated_by_user": funding.get("updated_by_user"),
            "reconciled": False,
        })
        logger.info(f"Created disbursement of {amount} cents for funding {funding['_id']}")

    def sync_commission(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        if self.repository.find_one(Collections.COMMISSION_INTENTS, [("funding", "==", funding["_id"])]):
            logger.debug(f"Commission intent already exists for funding {funding['_id']}")
            return

        terms = advance.get("funding") or {}
        amount = to_cents(get_amount(terms, "isoOriginationCommission"))
        if amount <= 0:
            return

        commission_date = parse_datetime(terms.get("fundedAt"))
        status = IntentStatus.SUCCEED if commission_date else IntentStatus.SCHEDULED
        intent = self.repository.create(Collections.COMMISSION_INTENTS, {
            "funding": funding["_id"],
            "funder": snapshot(funding, "funder"),
            "lender": snapshot(funding, "lender"),
            "iso": snapshot(funding, "iso"),
            "commission_date": commission_date,
            "amount": amount,
            "payment_method": PaymentMethod.OTHER.value,
            "funder_account": None,
            "iso_account": None,
            "created_by_user": funding.get("created_by_user"),
            "updated_by_user": funding.get("updated_by_user"),
            "note": f"Commission for advance {advance_display_name(advance)}",
            "status": status.value,
        })

        if status == IntentStatus.SUCCEED:
            self.repository.create(Collections.COMMISSIONS, {
                "commission_intent": intent["_id"],
                "payment_method": intent["payment_method"],
                "submitted_date": commission_date,
                "processed_date": commission_date,
                "responsed_date": commission_date,
                "amount": amount,
                "status": IntentStatus.SUCCEED.value,
                "created_by_user": funding.get("created_by_user"),
                "updated_by_user": funding.get("updated_by_user"),
                "reconciled": False,
            })
        logger.info(f"Created {status.value.lower()} commission of {amount} cents for funding {funding['_id']}")

    # Syndications

    def syndication(self, funding: Document, participant: Dict[str, Any], syndicator_id: str) -> Dict[str, Any]:
        fee_list = []
        commission = to_cents(get_amount(participant, "commission"))
        if commission > 0:
            fee_list.append({
                "name": "Commission",
                "expense_type": self.lookups.find_expense_type("ISO Commission"),
                "amount": commission,
                "upfront": True,
            })
        for fee in participant.get("fees") or []:
            amount = to_cents(fee.get("amount"))
            if amount > 0:
                fee_list.append({
                    "name": fee.get("description") or "Fee",
                    "expense_type": None,
                    "amount": amount,
                    "upfront": fee.get("chargeMode") == "frontend",
                })

        percent = participant.get("principalSyndicationPercent")
        closed = self.lookups.is_closed_status(funding.get("status"))
        return {
            "funding": funding["_id"],
            "funder": self.funder_id,
            "lender": get_field(funding, "lender.id"),
            "syndicator": syndicator_id,
            "participate_percent": float(percent) / 100 if percent else 0,
            "participate_amount": to_cents(participant.get("syndicationAmount")),
            "payback_amount": to_cents(participant.get("paybackAmount")),
            "fee_list": fee_list,
            "credit_list": [],
            "start_date": parse_datetime(participant.get("createdAt")) or datetime.utcnow(),
            "end_date": funding.get("end_date"),
            "status": PlanStatus.CLOSED.value if closed else PlanStatus.ACTIVE.value,
        }

    def sync_syndications(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        participants = get_field(advance, "participation.syndicators") or []
        if not participants:
            logger.info(f"No syndication data available for advance: {advance_display_name(advance)}")
            return

        created = 0
        for participant in participants:
            try:
                syndicator_id = self.resolver.resolve(Collections.ORGMETER_SYNDICATORS, participant)
                if not syndicator_id:
                    logger.warning(f"Syndicator not found or not synced for ID: {participant.get('id')}")
                    continue

                if self.crm.syndications.get_syndication_list(funding["_id"], syndicator_id):
                    logger.info(f"Syndication already exists for funding {funding['_id']} and syndicator {syndicator_id}")
                    continue

                self.crm.syndications.create_syndication(self.syndication(funding, participant, syndicator_id))
                created += 1
            except Exception as e:
                logger.error(f"Failed to create syndication for syndicator {participant.get('id')}: {e}")

        logger.info(f"Created {created} syndications for funding {funding['_id']}")

    # Paybacks

    def format_notes(self, notes: Optional[List[Dict[str, Any]]]) -> str:
        lines = []
        for note in notes or []:
            author = self.lookups.user_name(self.resolver.resolve_user(note.get("createdBy")))
            lines.append(FieldTransformer.format_note(author, note.get("text"), note.get("createdAt")))
        return "\n".join(lines)

    def payback(self, funding: Document, payment: Dict[str, Any], plan: Optional[Document]) -> Dict[str, Any]:
        amount = to_cents(payment.get("amount"))
        return {
            "funding": funding["_id"],
            "merchant": get_field(funding, "merchant.id"),
            "funder": get_field(funding, "funder.id"),
            "lender": get_field(funding, "lender.id"),
            "merchant_account": None,
            "funder_account": None,
            "payback_plan": plan["_id"] if plan else None,
            "due_date": parse_datetime(payment.get("dueAt")),
            "submitted_date": parse_datetime(payment.get("createdAt")),
            "processed_date": parse_datetime(payment.get("updatedAt")),
            "responsed_date": parse_datetime(payment.get("paidAt") or payment.get("bouncedAt")),
            "response": FieldTransformer.bounce_response(payment),
            "payback_amount": amount,
            "funded_amount": amount,
            "fee_amount": 0,
            "payment_method": PaymentMethod.OTHER.value,
            "status": FieldTransformer.payback_status(payment),
            "note": self.format_notes(payment.get("notes")),
            "created_by_user": self.resolver.resolve_user(payment.get("createdBy")),
            "updated_by_user": self.resolver.resolve_user(payment.get("updatedBy")),
        }

    def sync_paybacks(self, advance: Dict[str, Any], funding: Document, replace: bool = False) -> None:
        payments = self.repository.find(
            Collections.ORGMETER_PAYMENTS,
            [
                ("advanceId", "==", advance.get("id")),
                ("importMetadata.funder", "==", self.funder_id),
                ("deleted", "==", False),
                ("type", "==", "advance_payback"),
            ],
            order_by="createdAt"
        )
        if not payments:
            logger.info(f"No advance_payback payments found for advance: {advance_display_name(advance)}")
            return

        plans = self.repository.find(
            Collections.PAYBACK_PLANS, [("funding", "==", funding["_id"])], order_by="createdAt", limit=1
        )
        plan = plans[0] if plans else None

        for payment in payments:
            try:
                self.sync_payback(funding, payment, plan)
            except Exception as e:
                logger.error(f"Failed to create/update payback for payment {payment.get('id')}: {e}")

        logger.info(f"Processed {len(payments)} payments for funding {funding['_id']}")

    def find_payback(self, funding: Document, payment: Dict[str, Any]) -> Optional[Document]:
        """Payback recorded for a payment: by its syncId, else by funding, due date and amount."""
        sync_id = get_field(payment, "syncMetadata.syncId")
        if sync_id:
            existing = self.repository.find_by_id(Collections.PAYBACKS, sync_id)
            if existing is not None:
                return existing

        return self.repository.find_one(Collections.PAYBACKS, [
            ("funding", "==", funding["_id"]),
            ("due_date", "==", parse_datetime(payment.get("dueAt"))),
            ("payback_amount", "==", to_cents(payment.get("amount"))),
        ])

    def sync_payback(self, funding: Document, payment: Dict[str, Any], plan: Optional[Document]) -> Document:
        data = self.payback(funding, payment, plan)
        existing = self.find_payback(funding, payment)

        if existing is not None:
            payback = self.crm.paybacks.update_payback(existing["_id"], data) or existing
        else:
            payback = self.crm.paybacks.create_payback(data)

        self.update_payment_sync_metadata(payment, payback["_id"])
        return payback

    def update_payment_sync_metadata(self, payment: Dict[str, Any], payback_id: str) -> None:
        try:
            result = self.repository.find_one_and_update(
                Collections.ORGMETER_PAYMENTS,
                [
                    ("id", "==", payment.get("id")),
                    ("importMetadata.funder", "==", get_field(payment, "importMetadata.funder")),
                ],
                {
                    "syncMetadata.lastSyncedAt": datetime.utcnow(),
                    "syncMetadata.lastSyncedBy": self.user_id or "system",
                    "syncMetadata.syncId": payback_id,
                }
            )
            if result is None:
                logger.warning(f"Payment {payment.get('id')} not found for syncMetadata update")
        except Exception as e:
            logger.error(f"Failed to update syncMetadata for payment {payment.get('id')}: {e}")
