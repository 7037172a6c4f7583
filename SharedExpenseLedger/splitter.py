"""
Splitter Module

This module handles the expense splitting logic of the shared expense ledger.

Features:
    - Per-expense share allocation for all four split modes
    - Per-participant balance aggregation over an expense history
    - Exact integer arithmetic on minor currency units

Share formula:
    For every paid_for row i of an expense:
        owed_i = round(amount * weight_i / sum(weight_j))
    rounded half away from zero. Each row is rounded on its own and the
    remainder is NOT redistributed, so the shares of an expense may differ
    from its amount by up to (rows - 1) minor units. Settlement tolerates
    that drift.

Data Model:
    Output - balances (dict keyed by participant_id):
        - paid: int (sum of amounts paid by this participant)
        - owed: int (sum of shares owed by this participant)
        - net: int (paid - owed; positive = the group owes them)

Functions:
    calculate_shares: Owed amount per beneficiary of one expense.
    calculate_share: Owed amount of one participant for one expense.
    calculate_balances: Per-participant balances over an expense history.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from expenses import Expense


class InvalidSplitError(ValueError):
    """Raised when an expense cannot be split (no beneficiaries or no weight)."""


def _normalize_zero(value):
    """Turn a negative zero into a plain zero."""
    return 0 if value == 0 else value


def _round_half_away_from_zero(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_shares(expense: Expense) -> dict[str, int]:
    """
    Calculate how much each beneficiary owes for one expense.

    Weights are interpreted through the expense's split mode:
        - EVENLY: every row weighs 1
        - BY_SHARES: share count
        - BY_PERCENTAGE: basis points
        - BY_AMOUNT: minor-unit amount

    Args:
        expense: Expense with amount, split_mode and paid_for rows.

    Returns:
        dict: participant_id -> owed amount in minor units, one entry per
        paid_for row, in paid_for order.

    Raises:
        InvalidSplitError: If paid_for is empty or the total weight is not positive.

    Notes:
        - A single beneficiary always owes exactly the full amount
        - Does not assume BY_AMOUNT weights sum to the amount
    """
    if not expense.paid_for:
        raise InvalidSplitError(f"expense {expense.expense_id} has no beneficiaries")

    weights = [(row.participant_id, expense.split_mode.weight(row.shares)) for row in expense.paid_for]
    total_weight = sum(weight for _, weight in weights)
    if total_weight <= 0:
        raise InvalidSplitError(
            f"expense {expense.expense_id} has a non-positive total weight ({total_weight})"
        )

    amount = Decimal(expense.amount)
    divisor = Decimal(total_weight)

    shares = {}
    for participant_id, weight in weights:
        owed = _round_half_away_from_zero(amount * Decimal(weight) / divisor)
        shares[participant_id] = shares.get(participant_id, 0) + owed

    return shares


def calculate_share(participant_id: Optional[str], expense: Expense) -> int:
    """Owed amount of one participant for one expense (0 if not a beneficiary)."""
    if not participant_id:
        return 0
    return calculate_shares(expense).get(participant_id, 0)


def calculate_balances(expenses: Iterable[Expense]) -> dict[str, dict[str, int]]:
    """
    Calculate per-participant balances from an expense history.

    For each expense:
        1. Every payer's `paid` increases by the amount they paid
        2. Every beneficiary's `owed` increases by their share

    Reimbursement expenses are aggregated like any other expense.

    Args:
        expenses: Already materialized expenses of a group.

    Returns:
        dict: participant_id -> {"paid", "owed", "net"} for every participant
        appearing in any expense.

    Raises:
        InvalidSplitError: If an expense cannot be split.
    """
    totals = {}

    for expense in expenses:
        for payer in expense.paid_by:
            entry = totals.setdefault(payer.participant_id, {"paid": 0, "owed": 0})
            entry["paid"] += payer.amount

        for participant_id, owed in calculate_shares(expense).items():
            entry = totals.setdefault(participant_id, {"paid": 0, "owed": 0})
            entry["owed"] += owed

    balances = {}
    for participant_id, entry in totals.items():
        paid = _normalize_zero(entry["paid"])
        owed = _normalize_zero(entry["owed"])
        balances[participant_id] = {
            "paid": paid,
            "owed": owed,
            "net": _normalize_zero(paid - owed)
        }

    return balances
