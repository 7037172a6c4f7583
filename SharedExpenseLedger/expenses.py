"""
Expenses Module

This module handles the expense records of a group and their lifecycle.

Features:
    - Expense, payer and beneficiary records in integer minor units
    - Four split modes with mode-specific weights
    - Multiple simultaneous payers
    - Recurring expenses linked through RecurringExpenseLink records
    - Validation of expenses before they reach the ledger computations
    - Add/edit/delete expenses, keeping recurrence links in step
    - Itemized expenses whose split is derived from receipt lines
    - Every change is recorded in the group's activity log

Data Model:
    Expense stored at: groups/{group_id}/expenses/{expense_id}
    Fields:
        - expense_id: string
        - group_id: string
        - title: string
        - amount: int (minor units, sum of paid_by amounts)
        - expense_date: datetime (UTC)
        - split_mode: EVENLY | BY_SHARES | BY_PERCENTAGE | BY_AMOUNT
        - paid_by: list of {participant_id, amount}
        - paid_for: list of {participant_id, shares}
        - is_reimbursement: bool
        - recurrence_rule: NONE | DAILY | WEEKLY | MONTHLY
        - category_id: int
        - document_ids: list of strings
        - items: list of {item_id, name, price, participant_ids}
        - notes: string or None
        - created_at: datetime (UTC)

    RecurringExpenseLink stored at: recurring_expense_links/{link_id}
    Fields:
        - link_id: string
        - group_id: string
        - current_frame_expense_id: string (expense the link belongs to)
        - next_expense_date: datetime (date of the next clone)
        - next_expense_created_at: datetime or None (claim token)

Functions:
    validate_expense: Check an expense against the validation rules.
    new_recurring_expense_link: Build the link for a freshly created expense.
    split_by_items: Derive payers and beneficiaries from receipt items.
    add_expense: Add a new expense to a group.
    update_expense: Edit an existing expense.
    delete_expense: Delete an expense and its recurrence link.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional

from activities import ActivityType, log_activity
from ledger_store import ExpenseStore, NotFoundError
from participants import Group, get_group
from recurrence import RecurrenceRule, calculate_next_date
from utils import amount_as_minor_units, as_utc, generate_id, utc_now


logger = logging.getLogger(__name__)

TITLE_MIN_LENGTH = 2
PERCENTAGE_TOTAL = 10000  # basis points
MAX_AMOUNT_MAJOR_UNITS = 10_000_000


class ExpenseValidationError(ValueError):
    """Raised when an expense breaks the validation rules."""


class SplitMode(str, Enum):
    """
    How an expense is divided between its beneficiaries.

    The meaning of a PaidFor row's `shares` depends on the mode:
        EVENLY: ignored, every row weighs 1
        BY_SHARES: arbitrary positive share count
        BY_PERCENTAGE: basis points (10000 = 100%)
        BY_AMOUNT: amount in minor units

    The rows themselves stay untyped so they serialize the same way in every
    mode; weight() is the one place that reads `shares` per mode.
    """
    EVENLY = "EVENLY"
    BY_SHARES = "BY_SHARES"
    BY_PERCENTAGE = "BY_PERCENTAGE"
    BY_AMOUNT = "BY_AMOUNT"

    def weight(self, shares: int) -> int:
        """Allocation weight of a row with the given `shares`."""
        if self is SplitMode.EVENLY:
            return 1
        return shares


class PaidBy:
    """One payer of an expense and the amount (minor units) they paid."""

    def __init__(self, participant_id: str, amount: int):
        self.participant_id = participant_id
        self.amount = amount

    def to_dict(self) -> dict:
        return {"participant_id": self.participant_id, "amount": self.amount}

    @classmethod
    def from_dict(cls, data: dict) -> "PaidBy":
        return cls(participant_id=data.get("participant_id"), amount=data.get("amount", 0))

    def __eq__(self, other) -> bool:
        return isinstance(other, PaidBy) and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"PaidBy('{self.participant_id}', {self.amount})"


class PaidFor:
    """One beneficiary of an expense and their weight (see SplitMode)."""

    def __init__(self, participant_id: str, shares: int = 1):
        self.participant_id = participant_id
        self.shares = shares

    def to_dict(self) -> dict:
        return {"participant_id": self.participant_id, "shares": self.shares}

    @classmethod
    def from_dict(cls, data: dict) -> "PaidFor":
        return cls(participant_id=data.get("participant_id"), shares=data.get("shares", 1))

    def __eq__(self, other) -> bool:
        return isinstance(other, PaidFor) and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"PaidFor('{self.participant_id}', {self.shares})"


class ExpenseItem:
    """
    One line of an itemized expense (e.g. a receipt line).

    An item with no participants is excluded from the split.
    """

    def __init__(self, item_id: str, name: str, price: int, participant_ids: Optional[list[str]] = None):
        self.item_id = item_id
        self.name = name
        self.price = price
        self.participant_ids = participant_ids or []

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "price": self.price,
            "participant_ids": list(self.participant_ids)
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExpenseItem":
        return cls(
            item_id=data.get("item_id"),
            name=data.get("name"),
            price=data.get("price", 0),
            participant_ids=list(data.get("participant_ids") or [])
        )

    def __eq__(self, other) -> bool:
        return isinstance(other, ExpenseItem) and self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"ExpenseItem('{self.name}', {self.price}, {self.participant_ids})"


class Expense:
    """
    Represents a single expense of a group.

    Attributes:
        expense_id (str): Unique identifier.
        group_id (str): Group the expense belongs to.
        title (str): Short description.
        amount (int): Total amount in minor units.
        expense_date (datetime): When the expense happened (UTC).
        split_mode (SplitMode): How the amount is divided.
        paid_by (list[PaidBy]): Who paid, possibly several people.
        paid_for (list[PaidFor]): Who benefits and with which weight.
        is_reimbursement (bool): Marks a money transfer between participants.
        recurrence_rule (RecurrenceRule): Repetition of the expense.
        category_id (int): Category of the expense (0 = general).
        document_ids (list[str]): Attached documents.
        items (list[ExpenseItem]): Receipt lines the split was derived from.
        notes (str | None): Optional notes.
        created_at (datetime | None): When the record was created.
    """

    def __init__(
        self,
        expense_id: str,
        group_id: str,
        title: str,
        amount: int,
        expense_date: datetime,
        paid_by: list[PaidBy],
        paid_for: list[PaidFor],
        split_mode: SplitMode = SplitMode.EVENLY,
        is_reimbursement: bool = False,
        recurrence_rule: RecurrenceRule = RecurrenceRule.NONE,
        category_id: int = 0,
        document_ids: Optional[list[str]] = None,
        items: Optional[list[ExpenseItem]] = None,
        notes: Optional[str] = None,
        created_at: Optional[datetime] = None
    ):
        self.expense_id = expense_id
        self.group_id = group_id
        self.title = title
        self.amount = amount
        self.expense_date = expense_date
        self.paid_by = paid_by
        self.paid_for = paid_for
        self.split_mode = SplitMode(split_mode)
        self.is_reimbursement = is_reimbursement
        self.recurrence_rule = RecurrenceRule(recurrence_rule)
        self.category_id = category_id
        self.document_ids = document_ids or []
        self.items = items or []
        self.notes = notes
        self.created_at = created_at

    def to_dict(self) -> dict:
        """Convert expense to dictionary for storage."""
        return {
            "expense_id": self.expense_id,
            "group_id": self.group_id,
            "title": self.title,
            "amount": self.amount,
            "expense_date": self.expense_date,
            "split_mode": self.split_mode.value,
            "paid_by": [p.to_dict() for p in self.paid_by],
            "paid_for": [p.to_dict() for p in self.paid_for],
            "is_reimbursement": self.is_reimbursement,
            "recurrence_rule": self.recurrence_rule.value,
            "category_id": self.category_id,
            "document_ids": list(self.document_ids),
            "items": [i.to_dict() for i in self.items],
            "notes": self.notes,
            "created_at": self.created_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Expense":
        """Create an Expense instance from a dictionary."""
        return cls(
            expense_id=data.get("expense_id"),
            group_id=data.get("group_id"),
            title=data.get("title"),
            amount=data.get("amount", 0),
            expense_date=data.get("expense_date"),
            paid_by=[PaidBy.from_dict(p) for p in data.get("paid_by", [])],
            paid_for=[PaidFor.from_dict(p) for p in data.get("paid_for", [])],
            split_mode=data.get("split_mode", SplitMode.EVENLY),
            is_reimbursement=data.get("is_reimbursement", False),
            recurrence_rule=data.get("recurrence_rule", RecurrenceRule.NONE),
            category_id=data.get("category_id", 0),
            document_ids=list(data.get("document_ids") or []),
            items=[ExpenseItem.from_dict(i) for i in data.get("items") or []],
            notes=data.get("notes"),
            created_at=data.get("created_at")
        )

    def __repr__(self) -> str:
        return (
            f"Expense(id='{self.expense_id}', title='{self.title}', amount={self.amount}, "
            f"split_mode={self.split_mode.value}, date={self.expense_date})"
        )


class RecurringExpenseLink:
    """
    Points from an expense to the date of its next recurrence.

    `next_expense_created_at` is the claim token: None while the next
    occurrence has not been materialized, set once it has. Each materialized
    occurrence owns a fresh link, so links form a forward chain.
    """

    def __init__(
        self,
        link_id: str,
        group_id: str,
        current_frame_expense_id: str,
        next_expense_date: datetime,
        next_expense_created_at: Optional[datetime] = None
    ):
        self.link_id = link_id
        self.group_id = group_id
        self.current_frame_expense_id = current_frame_expense_id
        self.next_expense_date = next_expense_date
        self.next_expense_created_at = next_expense_created_at

    @property
    def is_claimed(self) -> bool:
        return self.next_expense_created_at is not None

    def to_dict(self) -> dict:
        return {
            "link_id": self.link_id,
            "group_id": self.group_id,
            "current_frame_expense_id": self.current_frame_expense_id,
            "next_expense_date": self.next_expense_date,
            "next_expense_created_at": self.next_expense_created_at
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RecurringExpenseLink":
        return cls(
            link_id=data.get("link_id"),
            group_id=data.get("group_id"),
            current_frame_expense_id=data.get("current_frame_expense_id"),
            next_expense_date=data.get("next_expense_date"),
            next_expense_created_at=data.get("next_expense_created_at")
        )

    def __repr__(self) -> str:
        return (
            f"RecurringExpenseLink(id='{self.link_id}', expense='{self.current_frame_expense_id}', "
            f"next={self.next_expense_date}, claimed={self.is_claimed})"
        )


def new_recurring_expense_link(
    recurrence_rule: RecurrenceRule,
    prior_date: datetime,
    group_id: str,
    expense_id: str
) -> RecurringExpenseLink:
    """Build an unclaimed link pointing at the occurrence after `prior_date`."""
    return RecurringExpenseLink(
        link_id=generate_id(),
        group_id=group_id,
        current_frame_expense_id=expense_id,
        next_expense_date=calculate_next_date(recurrence_rule, prior_date)
    )


def _check_unique_participants(rows: list, field_name: str) -> None:
    seen = set()
    for row in rows:
        if row.participant_id in seen:
            raise ExpenseValidationError(
                f"{field_name} lists participant '{row.participant_id}' more than once"
            )
        seen.add(row.participant_id)


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_by_items(
    paid_by: list[PaidBy], items: list[ExpenseItem]
) -> tuple[list[PaidBy], list[PaidFor], list[ExpenseItem]]:
    """
    Derive the split of an itemized expense from its items.

    The items must add up to what was paid. Items without participants are
    left out of the split: the payers' amounts are scaled down to the total
    of the included items, and each included item is divided evenly among
    its participants.

    Args:
        paid_by: Payers with the amounts they paid for the whole receipt.
        items: Receipt lines.

    Returns:
        tuple: (scaled paid_by, BY_AMOUNT paid_for, included items)

    Raises:
        ExpenseValidationError: If the items do not match the paid total or
            no item has participants.
    """
    paid_total = sum(p.amount for p in paid_by)
    items_total = sum(i.price for i in items)
    if items_total != paid_total:
        raise ExpenseValidationError(
            f"items sum to {items_total}, expected the paid_by total {paid_total}"
        )

    included = [i for i in items if i.participant_ids]
    if not included:
        raise ExpenseValidationError("at least one item must have participants")
    for item in included:
        if len(set(item.participant_ids)) != len(item.participant_ids):
            raise ExpenseValidationError(f"item '{item.name}' lists a participant more than once")

    split_total = sum(i.price for i in included)

    scaled = []
    remaining = split_total
    for index, payer in enumerate(paid_by):
        if index == len(paid_by) - 1:
            amount = remaining
        elif paid_total == 0:
            amount = 0
        else:
            amount = _round(Decimal(payer.amount) * Decimal(split_total) / Decimal(paid_total))
        remaining -= amount
        scaled.append(PaidBy(payer.participant_id, amount))

    owed = {}
    for item in included:
        portion = Decimal(item.price) / Decimal(len(item.participant_ids))
        for participant_id in item.participant_ids:
            owed[participant_id] = owed.get(participant_id, Decimal(0)) + portion

    paid_for = [PaidFor(participant_id, _round(total)) for participant_id, total in owed.items()]
    return scaled, paid_for, included


def validate_expense(expense: Expense, group: Group) -> None:
    """
    Validate an expense before it is stored.

    Rules:
        - title has at least 2 characters
        - expense_date is timezone-aware
        - paid_by and paid_for are non-empty, without duplicate participants
        - every paid_for weight is strictly positive
        - amount equals the sum of paid_by amounts, is not zero and stays
          within the maximum amount
        - BY_AMOUNT weights sum to the amount, unless derived from items
        - BY_PERCENTAGE weights sum to 10000
        - every participant, including item participants, belongs to the group

    Raises:
        ExpenseValidationError: On the first broken rule.
    """
    if not isinstance(expense.title, str) or len(expense.title.strip()) < TITLE_MIN_LENGTH:
        raise ExpenseValidationError(f"title must have at least {TITLE_MIN_LENGTH} characters")

    if not isinstance(expense.expense_date, datetime):
        raise ExpenseValidationError("expense_date must be a datetime")
    if expense.expense_date.tzinfo is None or expense.expense_date.utcoffset() is None:
        raise ExpenseValidationError("expense_date must be timezone-aware")

    if not expense.paid_by:
        raise ExpenseValidationError("paid_by must list at least one payer")
    if not expense.paid_for:
        raise ExpenseValidationError("paid_for must list at least one participant")

    _check_unique_participants(expense.paid_by, "paid_by")
    _check_unique_participants(expense.paid_for, "paid_for")

    for row in expense.paid_for:
        if row.shares <= 0:
            raise ExpenseValidationError(
                f"shares of participant '{row.participant_id}' must be greater than 0"
            )

    paid_total = sum(p.amount for p in expense.paid_by)
    if expense.amount != paid_total:
        raise ExpenseValidationError(
            f"amount {expense.amount} does not match the paid_by total {paid_total}"
        )
    if expense.amount == 0:
        raise ExpenseValidationError("amount must not be zero")
    max_amount = amount_as_minor_units(MAX_AMOUNT_MAJOR_UNITS, group.decimal_digits)
    if abs(expense.amount) > max_amount:
        raise ExpenseValidationError(f"amount must not exceed {max_amount} minor units")

    weight_total = sum(p.shares for p in expense.paid_for)
    # Item splits round per participant, so their total may drift by a unit
    if (
        expense.split_mode is SplitMode.BY_AMOUNT
        and not expense.items
        and weight_total != expense.amount
    ):
        raise ExpenseValidationError(
            f"BY_AMOUNT shares sum to {weight_total}, expected {expense.amount}"
        )
    if expense.split_mode is SplitMode.BY_PERCENTAGE and weight_total != PERCENTAGE_TOTAL:
        raise ExpenseValidationError(
            f"BY_PERCENTAGE shares sum to {weight_total}, expected {PERCENTAGE_TOTAL}"
        )

    members = group.participant_ids
    participant_ids = [row.participant_id for row in [*expense.paid_by, *expense.paid_for]]
    for item in expense.items:
        participant_ids.extend(item.participant_ids)
    for participant_id in participant_ids:
        if participant_id not in members:
            raise ExpenseValidationError(
                f"participant '{participant_id}' does not belong to group {group.group_id}"
            )


def _prepare_split(expense_date, paid_by, paid_for, split_mode, items):
    """Normalize the date to UTC and derive the split from items when there are any."""
    if isinstance(expense_date, datetime):
        expense_date = as_utc(expense_date)
    if items:
        paid_by, paid_for, items = split_by_items(paid_by, items)
        split_mode = SplitMode.BY_AMOUNT
    return expense_date, paid_by, paid_for, split_mode, items or []


def add_expense(
    store: ExpenseStore,
    group_id: str,
    title: str,
    expense_date: datetime,
    paid_by: list[PaidBy],
    paid_for: list[PaidFor],
    split_mode: SplitMode = SplitMode.EVENLY,
    is_reimbursement: bool = False,
    recurrence_rule: RecurrenceRule = RecurrenceRule.NONE,
    category_id: int = 0,
    document_ids: Optional[list[str]] = None,
    notes: Optional[str] = None,
    items: Optional[list[ExpenseItem]] = None,
    participant_id: Optional[str] = None
) -> Expense:
    """
    Add a new expense to a group.

    The amount is the sum of the paid_by amounts. A naive expense_date is
    read as UTC. When `items` are given, payers and beneficiaries are derived
    from them (see split_by_items) and the split mode becomes BY_AMOUNT.
    When the expense recurs, its RecurringExpenseLink is stored together
    with it.

    Returns:
        Expense: The created expense.

    Raises:
        NotFoundError: If the group does not exist.
        ExpenseValidationError: If the expense breaks a validation rule.
        RuntimeError: If the store is not available.
    """
    group = get_group(store, group_id)
    expense_date, paid_by, paid_for, split_mode, items = _prepare_split(
        expense_date, paid_by, paid_for, split_mode, items
    )

    expense = Expense(
        expense_id=generate_id(),
        group_id=group_id,
        title=title.strip() if isinstance(title, str) else title,
        amount=sum(p.amount for p in paid_by),
        expense_date=expense_date,
        paid_by=paid_by,
        paid_for=paid_for,
        split_mode=split_mode,
        is_reimbursement=is_reimbursement,
        recurrence_rule=recurrence_rule,
        category_id=category_id,
        document_ids=document_ids,
        items=items,
        notes=notes.strip() if notes else None,
        created_at=utc_now()
    )
    validate_expense(expense, group)

    link = None
    if expense.recurrence_rule is not RecurrenceRule.NONE:
        link = new_recurring_expense_link(
            expense.recurrence_rule, expense.expense_date, group_id, expense.expense_id
        )

    store.create_expense(expense, link)
    logger.info("Created expense %s in group %s", expense.expense_id, group_id)
    log_activity(
        store, group_id, ActivityType.CREATE_EXPENSE,
        participant_id=participant_id, expense_id=expense.expense_id, data=expense.title
    )
    return expense


def get_expense(store: ExpenseStore, group_id: str, expense_id: str) -> Expense:
    """
    Get one expense of a group.

    Raises:
        NotFoundError: If the expense does not exist.
    """
    expense = store.get_expense(group_id, expense_id)
    if expense is None:
        raise NotFoundError(f"expense {expense_id} not found in group {group_id}")
    return expense


def update_expense(
    store: ExpenseStore,
    group_id: str,
    expense_id: str,
    title: str,
    expense_date: datetime,
    paid_by: list[PaidBy],
    paid_for: list[PaidFor],
    split_mode: SplitMode = SplitMode.EVENLY,
    is_reimbursement: bool = False,
    recurrence_rule: RecurrenceRule = RecurrenceRule.NONE,
    category_id: int = 0,
    document_ids: Optional[list[str]] = None,
    notes: Optional[str] = None,
    items: Optional[list[ExpenseItem]] = None,
    participant_id: Optional[str] = None
) -> Expense:
    """
    Edit an existing expense.

    Recurrence link handling:
        - rule changed to NONE, link not yet claimed: the link is deleted
        - rule changed to another rule, link not yet claimed: the link's next
          date is projected again from the existing expense date
        - rule was NONE, becomes recurring, no link yet: a link is created
          from the new expense date
        - a claimed link is never modified

    Raises:
        NotFoundError: If the group or the expense does not exist.
        ExpenseValidationError: If the edited expense breaks a validation rule.
        RuntimeError: If the store is not available.
    """
    group = get_group(store, group_id)
    existing = get_expense(store, group_id, expense_id)
    expense_date, paid_by, paid_for, split_mode, items = _prepare_split(
        expense_date, paid_by, paid_for, split_mode, items
    )
    link = store.get_recurring_link(expense_id)

    updated = Expense(
        expense_id=existing.expense_id,
        group_id=group_id,
        title=title.strip() if isinstance(title, str) else title,
        amount=sum(p.amount for p in paid_by),
        expense_date=expense_date,
        paid_by=paid_by,
        paid_for=paid_for,
        split_mode=split_mode,
        is_reimbursement=is_reimbursement,
        recurrence_rule=recurrence_rule,
        category_id=category_id,
        document_ids=document_ids,
        items=items,
        notes=notes.strip() if notes else None,
        created_at=existing.created_at
    )
    validate_expense(updated, group)

    old_rule = existing.recurrence_rule
    new_rule = updated.recurrence_rule
    link_is_open = link is not None and not link.is_claimed

    if old_rule is not RecurrenceRule.NONE and new_rule is RecurrenceRule.NONE and link_is_open:
        store.delete_recurring_link(link.link_id)
    elif old_rule is not new_rule and link_is_open:
        link.next_expense_date = calculate_next_date(new_rule, existing.expense_date)
        store.save_recurring_link(link)
    elif old_rule is RecurrenceRule.NONE and new_rule is not RecurrenceRule.NONE and link is None:
        store.save_recurring_link(
            new_recurring_expense_link(new_rule, updated.expense_date, group_id, expense_id)
        )

    store.save_expense(updated)
    logger.info("Updated expense %s in group %s", expense_id, group_id)
    log_activity(
        store, group_id, ActivityType.UPDATE_EXPENSE,
        participant_id=participant_id, expense_id=expense_id, data=updated.title
    )
    return updated


def delete_expense(
    store: ExpenseStore,
    group_id: str,
    expense_id: str,
    participant_id: Optional[str] = None
) -> None:
    """
    Delete an expense together with its recurrence link.

    Raises:
        NotFoundError: If the expense does not exist.
        RuntimeError: If the store is not available.
    """
    expense = get_expense(store, group_id, expense_id)
    store.delete_expense(group_id, expense_id)
    logger.info("Deleted expense %s from group %s", expense_id, group_id)
    log_activity(
        store, group_id, ActivityType.DELETE_EXPENSE,
        participant_id=participant_id, expense_id=expense_id, data=expense.title
    )
