"""
Shared fixtures for the ledger tests.

Expenses are built directly from the model classes; no store is involved
unless a test asks for the `store` fixture.
"""

from datetime import datetime, timezone

import pytest

from expenses import Expense, PaidBy, PaidFor, SplitMode
from memory_store import InMemoryExpenseStore
from participants import create_group
from recurrence import RecurrenceRule


def utc(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _make_expense(
    amount,
    paid_by,
    paid_for,
    split_mode=SplitMode.EVENLY,
    expense_id="E001",
    group_id="G001",
    is_reimbursement=False,
    expense_date=None,
    category_id=0,
    recurrence_rule=RecurrenceRule.NONE,
):
    """
    paid_by: list of (participant_id, amount)
    paid_for: list of participant_id or (participant_id, shares)
    """
    rows = []
    for row in paid_for:
        if isinstance(row, tuple):
            rows.append(PaidFor(row[0], row[1]))
        else:
            rows.append(PaidFor(row, 1))

    return Expense(
        expense_id=expense_id,
        group_id=group_id,
        title="Test expense",
        amount=amount,
        expense_date=expense_date or utc(2025, 3, 1),
        paid_by=[PaidBy(pid, paid) for pid, paid in paid_by],
        paid_for=rows,
        split_mode=split_mode,
        is_reimbursement=is_reimbursement,
        recurrence_rule=recurrence_rule,
        category_id=category_id,
        created_at=expense_date or utc(2025, 3, 1),
    )


@pytest.fixture
def make_expense():
    return _make_expense


@pytest.fixture
def store():
    return InMemoryExpenseStore()


@pytest.fixture
def group(store):
    """Group with Alice (P001), Bob (P002) and Carol (P003)."""
    return create_group(store, "Flat share", ["Alice", "Bob", "Carol"])
