"""
Analytics Module

This module provides spending totals and statistics for a group.

Features:
    - Total group spending
    - Amount a participant paid and the share they consumed
    - Spending per category, per day and per participant

Reimbursement expenses move money between participants without anything
being consumed, so every figure here leaves them out, except the share
total which follows the balances.

Functions:
    get_total_group_spending: Sum of all non-reimbursement expenses.
    get_total_participant_paid_for: Amount a participant paid.
    get_total_participant_share: Amount a participant consumed.
    generate_group_stats: Totals plus chart-ready breakdowns.
"""

from collections import defaultdict
from typing import Iterable, Optional

from expenses import Expense
from participants import Group
from splitter import calculate_share, calculate_shares


UNCATEGORIZED = "Uncategorized"


def get_total_group_spending(expenses: Iterable[Expense]) -> int:
    """Sum of the amounts of all expenses that are not reimbursements."""
    return sum(e.amount for e in expenses if not e.is_reimbursement)


def get_total_participant_paid_for(participant_id: Optional[str], expenses: Iterable[Expense]) -> int:
    """Sum of what `participant_id` paid over all non-reimbursement expenses."""
    total = 0
    for expense in expenses:
        if expense.is_reimbursement:
            continue
        for payer in expense.paid_by:
            if payer.participant_id == participant_id:
                total += payer.amount
                break
    return total


def get_total_participant_share(participant_id: Optional[str], expenses: Iterable[Expense]) -> int:
    """Sum of the shares `participant_id` owes over all expenses."""
    return sum(calculate_share(participant_id, expense) for expense in expenses)


def generate_group_stats(
    group: Group,
    expenses: list[Expense],
    participant_id: Optional[str] = None,
    category_names: Optional[dict[int, str]] = None
) -> dict:
    """
    Generate spending statistics for a group.

    Args:
        group: The group, used to resolve participant names.
        expenses: Already materialized expenses of the group.
        participant_id: Participant to compute personal totals for.
        category_names: Optional category_id -> name lookup.

    Returns:
        dict: Contains:
            - total_group_spending: int
            - total_participant_spending: int or None
            - total_participant_share: int or None
            - category_spending: list of {name, value}, highest first
            - daily_spending: list of {date, value}, chronological
            - participant_spending: list of {participant_id, name, amount},
              highest first
    """
    category_names = category_names or {}
    category_totals = defaultdict(int)
    daily_totals = defaultdict(int)
    consumption = defaultdict(int)

    for expense in expenses:
        if expense.is_reimbursement:
            continue

        category = category_names.get(expense.category_id, UNCATEGORIZED)
        category_totals[category] += expense.amount

        day = expense.expense_date.date().isoformat()
        daily_totals[day] += expense.amount

        for pid, share in calculate_shares(expense).items():
            consumption[pid] += share

    participant_spending = []
    for pid, amount in consumption.items():
        participant = group.get_participant(pid)
        participant_spending.append({
            "participant_id": pid,
            "name": participant.name if participant else "Unknown",
            "amount": amount
        })

    return {
        "total_group_spending": get_total_group_spending(expenses),
        "total_participant_spending": (
            get_total_participant_paid_for(participant_id, expenses)
            if participant_id is not None else None
        ),
        "total_participant_share": (
            get_total_participant_share(participant_id, expenses)
            if participant_id is not None else None
        ),
        "category_spending": sorted(
            ({"name": name, "value": value} for name, value in category_totals.items()),
            key=lambda item: item["value"],
            reverse=True
        ),
        "daily_spending": [
            {"date": day, "value": daily_totals[day]} for day in sorted(daily_totals)
        ],
        "participant_spending": sorted(
            participant_spending, key=lambda item: item["amount"], reverse=True
        )
    }
