"""
Status lifecycle for quotes and customers.

Statuses are enums and every allowed move is listed in a transition table.
Anything not in the table raises ``InvalidTransition``; asking for the status
a record already has is a no-op.

Quote:     pending -> approved | rejected           (approved, rejected terminal)
Customer:  quotation -> confirmed | cancelled,  confirmed -> cancelled
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import StoreUnavailable, to_object_id, utcnow
from logging_config import get_logger

logger = get_logger(__name__)


class InvalidTransition(Exception):
    """Transition out of a terminal state, not in the table, or to an unknown status."""


class RecordNotFound(Exception):
    """The record to transition no longer exists."""


class QuoteStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CustomerStatus(str, Enum):
    QUOTATION = "quotation"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


# Older records and the admin UI still use these spellings
QUOTE_STATUS_ALIASES: Dict[str, QuoteStatus] = {
    "completed": QuoteStatus.APPROVED,
    "cancelled": QuoteStatus.REJECTED,
}

QUOTE_TRANSITIONS: Mapping[QuoteStatus, FrozenSet[QuoteStatus]] = {
    QuoteStatus.PENDING: frozenset({QuoteStatus.APPROVED, QuoteStatus.REJECTED}),
    QuoteStatus.APPROVED: frozenset(),
    QuoteStatus.REJECTED: frozenset(),
}

CUSTOMER_TRANSITIONS: Mapping[CustomerStatus, FrozenSet[CustomerStatus]] = {
    CustomerStatus.QUOTATION: frozenset({CustomerStatus.CONFIRMED, CustomerStatus.CANCELLED}),
    CustomerStatus.CONFIRMED: frozenset({CustomerStatus.CANCELLED}),
    CustomerStatus.CANCELLED: frozenset(),
}


def parse_quote_status(value: Union[str, QuoteStatus]) -> QuoteStatus:
    if isinstance(value, QuoteStatus):
        return value
    key = str(value).strip().lower()
    if key in QUOTE_STATUS_ALIASES:
        return QUOTE_STATUS_ALIASES[key]
    try:
        return QuoteStatus(key)
    except ValueError:
        raise InvalidTransition(f"Unknown quote status: {value!r}") from None


def parse_customer_status(value: Union[str, CustomerStatus]) -> CustomerStatus:
    if isinstance(value, CustomerStatus):
        return value
    try:
        return CustomerStatus(str(value).strip().lower())
    except ValueError:
        raise InvalidTransition(f"Unknown customer status: {value!r}") from None


def is_terminal(table: Mapping[Enum, FrozenSet[Enum]], status: Enum) -> bool:
    return not table.get(status)


def check_transition(table: Mapping[Enum, FrozenSet[Enum]], current: Enum, target: Enum) -> bool:
    """
    Validate ``current -> target`` against ``table``.

    Returns False when nothing needs to change (target equals current) and
    True when the move is allowed. Raises InvalidTransition otherwise.
    """
    if current == target:
        return False
    if target not in table.get(current, frozenset()):
        if is_terminal(table, current):
            raise InvalidTransition(f"Status '{current.value}' is terminal, cannot move to '{target.value}'")
        raise InvalidTransition(f"Cannot move from '{current.value}' to '{target.value}'")
    return True


def _apply_status(
    db: Database,
    collection_name: str,
    record: Dict[str, Any],
    current: Enum,
    target: Enum,
) -> Dict[str, Any]:
    # Filtering on the validated status keeps the single-document update atomic
    # against a concurrent transition of the same record.
    updates = {"status": target.value, "updated_at": utcnow()}

    collection = db[collection_name]
    exists = None
    try:
        updated = collection.find_one_and_update(
            {"_id": record["_id"], "status": record["status"]},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            exists = collection.find_one({"_id": record["_id"]}, {"_id": 1})
    except PyMongoError as e:
        raise StoreUnavailable(str(e)) from e

    if updated is None:
        if exists is None:
            raise RecordNotFound(f"{collection_name} {record['_id']} not found")
        raise InvalidTransition(f"{collection_name} {record['_id']} changed status concurrently")

    logger.info(
        "status_transition",
        collection=collection_name,
        record_id=str(record["_id"]),
        from_status=current.value,
        to_status=target.value,
    )
    return updated


def _confirm_customer(db: Database, customer_id: Optional[str]) -> None:
    if not customer_id:
        return
    try:
        oid = to_object_id(customer_id)
    except ValueError:
        logger.warning("quote_customer_id_invalid", customer_id=customer_id)
        return

    try:
        result = db["customer"].update_one(
            {"_id": oid, "status": CustomerStatus.QUOTATION.value},
            {"$set": {"status": CustomerStatus.CONFIRMED.value, "updated_at": utcnow()}},
        )
    except PyMongoError as e:
        raise StoreUnavailable(str(e)) from e

    if result.modified_count:
        logger.info("customer_confirmed", customer_id=customer_id)


def transition_quote(db: Database, quote: Dict[str, Any], target_status: Union[str, QuoteStatus]) -> Dict[str, Any]:
    """
    Move ``quote`` to ``target_status`` and persist it.

    Approving a quote, or approving it again, also confirms its customer if
    that customer is still at the quotation stage. Returns the updated document, or ``quote`` itself when
    it already has the target status.
    """
    current = parse_quote_status(quote["status"])
    target = parse_quote_status(target_status)

    if not check_transition(QUOTE_TRANSITIONS, current, target):
        # Re-approving finishes a customer confirmation an earlier attempt left undone
        if target is QuoteStatus.APPROVED:
            _confirm_customer(db, quote.get("customer_id"))
        return quote

    updated = _apply_status(db, "quote", quote, current, target)
    if target is QuoteStatus.APPROVED:
        _confirm_customer(db, updated.get("customer_id"))
    return updated


def quote_status_spellings(status: QuoteStatus) -> List[str]:
    """Every stored spelling of ``status``, aliases included."""
    return [status.value] + [alias for alias, target in QUOTE_STATUS_ALIASES.items() if target is status]


def has_approved_quote(db: Database, customer_id: str) -> bool:
    approved = quote_status_spellings(QuoteStatus.APPROVED)
    try:
        return db["quote"].find_one({"customer_id": customer_id, "status": {"$in": approved}}) is not None
    except PyMongoError as e:
        raise StoreUnavailable(str(e)) from e


def transition_customer(
    db: Database, customer: Dict[str, Any], target_status: Union[str, CustomerStatus]
) -> Dict[str, Any]:
    """
    Move ``customer`` to ``target_status`` and persist it.

    A customer can only be confirmed once one of their quotes is approved.
    """
    current = parse_customer_status(customer["status"])
    target = parse_customer_status(target_status)

    if not check_transition(CUSTOMER_TRANSITIONS, current, target):
        return customer

    if target is CustomerStatus.CONFIRMED and not has_approved_quote(db, str(customer["_id"])):
        raise InvalidTransition("Customer has no approved quote")

    return _apply_status(db, "customer", customer, current, target)
