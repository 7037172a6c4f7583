"""
Recurring Expenses Module

This module materializes recurring expenses into concrete dated instances.

Every expense with a recurrence rule owns a RecurringExpenseLink pointing at
the date of its next occurrence. Materialization walks each overdue link
forward: it clones the expense for the link's date, gives the clone a fresh
link for the following date, and claims the old link, all in one store
transaction. The claim only succeeds while the link is unclaimed, so
concurrent or repeated runs create each occurrence at most once.

It runs on the read path before balances or expense lists are computed; there
is no background scheduler. Failures are logged and never raised: reads go on
with whatever expenses are already stored.

Functions:
    clone_expense: Copy a template expense for a new occurrence date.
    create_recurring_expenses: Catch up every overdue recurrence.
"""

import logging
from datetime import datetime
from typing import Optional

from expenses import Expense, RecurringExpenseLink, new_recurring_expense_link
from ledger_store import ClaimConflictError, ExpenseStore
from utils import as_utc, generate_id, utc_now, utc_now_minute


logger = logging.getLogger(__name__)


def clone_expense(template: Expense, expense_date: datetime, created_at: datetime) -> Expense:
    """
    Copy `template` into a new expense dated `expense_date`.

    Title, amount, split configuration, payers, beneficiaries, category,
    documents, notes and recurrence rule are carried over.
    """
    data = template.to_dict()
    data.update(
        expense_id=generate_id(),
        expense_date=expense_date,
        created_at=created_at
    )
    return Expense.from_dict(data)


def _catch_up_link(store: ExpenseStore, link: RecurringExpenseLink, now: datetime) -> int:
    """
    Materialize every missed occurrence of one link.

    Stops at the first failed transaction, including a lost claim.

    Returns:
        int: Number of occurrences created.
    """
    template = store.get_expense(link.group_id, link.current_frame_expense_id)
    if template is None:
        logger.warning(
            "Recurring expense link %s points at missing expense %s",
            link.link_id, link.current_frame_expense_id
        )
        return 0

    created = 0
    cursor_date = link.next_expense_date
    current_link_id = link.link_id

    while cursor_date < now:
        try:
            new_expense = clone_expense(template, cursor_date, utc_now())
            new_link = new_recurring_expense_link(
                template.recurrence_rule, cursor_date, new_expense.group_id, new_expense.expense_id
            )
            store.create_recurring_occurrence(
                current_link_id, new_expense, new_link, claimed_at=new_expense.created_at
            )
        except ClaimConflictError:
            logger.warning(
                "Recurring expense link %s was already claimed, skipping expense %s",
                current_link_id, template.expense_id
            )
            break
        except Exception:
            logger.exception(
                "Failed to create recurring expense for expense %s (link %s)",
                template.expense_id, current_link_id
            )
            break

        created += 1
        template = new_expense
        current_link_id = new_link.link_id
        cursor_date = new_link.next_expense_date

    return created


def create_recurring_expenses(
    store: ExpenseStore,
    now: Optional[datetime] = None,
    group_id: Optional[str] = None
) -> int:
    """
    Catch up all overdue recurring expenses.

    For every unclaimed link with next_expense_date <= now, occurrences are
    created one transaction at a time until the chain reaches `now`.

    Args:
        store: Backing expense store.
        now: Reference time (UTC); defaults to the current minute.
        group_id: Only process links of this group when given.

    Returns:
        int: Number of expenses created.

    Notes:
        - Never raises: failures are logged and the affected link is skipped
        - Safe to call concurrently; losers of a claim simply stop
    """
    now = as_utc(now) if now else utc_now_minute()

    try:
        links = store.get_due_recurring_links(now, group_id)
    except Exception:
        logger.exception("Could not load due recurring expense links")
        return 0

    created = 0
    for link in links:
        try:
            created += _catch_up_link(store, link, now)
        except Exception:
            logger.exception("Failed to process recurring expense link %s", link.link_id)

    if created:
        logger.info("Materialized %d recurring expense(s)", created)
    return created
