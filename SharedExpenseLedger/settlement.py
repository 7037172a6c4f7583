"""
Settlement Module

This module turns balances into suggested reimbursements.

Features:
    - Convert net balances into payer -> payee reimbursements
    - Settle exact opposite balances directly before anything else
    - Deterministic greedy pairing for the rest
    - Direct (non-simplified) reimbursements per expense
    - Balances reconstructed from a list of reimbursements

Data Model:
    Input - balances (dict keyed by participant_id):
        - paid, owed: amounts in minor units
        - net: paid - owed (positive = owed money, negative = owes money)

    Output - list of reimbursements:
        - from_participant: string (debtor who pays)
        - to_participant: string (creditor who receives)
        - amount: positive number of minor units

Functions:
    get_suggested_reimbursements: Near-minimal reimbursements for a balance map.
    get_direct_reimbursements: Pairwise reimbursements derived expense by expense.
    get_public_balances: Balances implied by a list of reimbursements.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from expenses import Expense
from splitter import calculate_shares


# Balances within this tolerance count as settled
EPSILON = 0.01

# Direct reimbursements at or below this amount are dropped
DIRECT_REIMBURSEMENT_MINIMUM = 0.5


def _reimbursement(from_participant: str, to_participant: str, amount) -> dict:
    return {
        "from_participant": from_participant,
        "to_participant": to_participant,
        "amount": amount
    }


def _rounds_to_zero(amount) -> bool:
    return Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP) == 0


def _settle_exact_matches(entries: list[dict], reimbursements: list[dict]) -> list[dict]:
    """
    Pair up entries whose totals cancel out and return the unpaired rest.

    Scans in input order; each entry is paired with the first later entry
    that cancels it.
    """
    settled = set()

    for i, first in enumerate(entries):
        if i in settled:
            continue

        for j in range(i + 1, len(entries)):
            if j in settled:
                continue

            second = entries[j]
            if abs(first["total"] + second["total"]) <= EPSILON:
                if first["total"] > 0:
                    reimbursements.append(
                        _reimbursement(second["participant_id"], first["participant_id"], first["total"])
                    )
                else:
                    reimbursements.append(
                        _reimbursement(first["participant_id"], second["participant_id"], second["total"])
                    )
                settled.add(i)
                settled.add(j)
                break

    return [entry for index, entry in enumerate(entries) if index not in settled]


def _settle_greedily(entries: list[dict], reimbursements: list[dict]) -> None:
    """
    Settle the remaining entries by pairing the head creditor with the tail debtor.

    Creditors come first, debtors last; within each side entries are ordered
    by participant ID. This is not a sort by magnitude.
    """
    remaining = sorted(entries, key=lambda e: (0 if e["total"] > 0 else 1, e["participant_id"]))

    while len(remaining) > 1:
        first = remaining[0]
        last = remaining[-1]

        if abs(first["total"]) <= EPSILON:
            remaining.pop(0)
            continue
        if abs(last["total"]) <= EPSILON:
            remaining.pop()
            continue

        if first["total"] > -last["total"]:
            # Debtor pays everything they owe, creditor still needs more
            reimbursements.append(
                _reimbursement(last["participant_id"], first["participant_id"], -last["total"])
            )
            first["total"] += last["total"]
            remaining.pop()
        else:
            # Creditor is fully paid, debtor still owes the difference
            reimbursements.append(
                _reimbursement(last["participant_id"], first["participant_id"], first["total"])
            )
            last["total"] += first["total"]
            remaining.pop(0)


def get_suggested_reimbursements(balances: dict) -> list[dict]:
    """
    Suggest reimbursements that bring every balance back to zero.

    Algorithm:
        1. Drop participants whose |net| is within EPSILON
        2. Exact-match pass: settle pairs whose nets cancel out directly
        3. Greedy pass: creditors (by ID) first, debtors (by ID) last; the
           tail debtor repeatedly pays the head creditor
        4. Drop reimbursements whose amount rounds to zero

    The result is deterministic for a given balance map but not guaranteed to
    use the minimum possible number of transactions.

    Args:
        balances: participant_id -> {"net": ...} (other keys are ignored).

    Returns:
        list[dict]: Reimbursements with from_participant, to_participant, amount.

    Notes:
        - Does NOT modify input balances
    """
    entries = [
        {"participant_id": participant_id, "total": balance["net"]}
        for participant_id, balance in balances.items()
        if abs(balance["net"]) > EPSILON
    ]

    reimbursements = []
    remaining = _settle_exact_matches(entries, reimbursements)
    _settle_greedily(remaining, reimbursements)

    return [r for r in reimbursements if not _rounds_to_zero(r["amount"])]


def _expense_balances(expense: Expense) -> dict[str, int]:
    """Net position of every participant within a single expense."""
    shares = calculate_shares(expense)
    paid = {}
    for payer in expense.paid_by:
        paid[payer.participant_id] = paid.get(payer.participant_id, 0) + payer.amount

    participant_ids = list(dict.fromkeys([*paid, *shares]))
    return {pid: paid.get(pid, 0) - shares.get(pid, 0) for pid in participant_ids}


def get_direct_reimbursements(expenses: Iterable[Expense]) -> list[dict]:
    """
    Calculate reimbursements from who actually paid for whom.

    Each expense is settled on its own (largest debtor pays largest creditor
    first), the resulting debts are accumulated per (debtor, creditor) pair,
    and mutual debts between two participants are netted into one transfer.

    Args:
        expenses: Already materialized expenses of a group.

    Returns:
        list[dict]: Reimbursements larger than DIRECT_REIMBURSEMENT_MINIMUM.
    """
    debts = {}  # debtor -> creditor -> amount

    for expense in expenses:
        local = _expense_balances(expense)

        debtors = sorted(
            ([pid, bal] for pid, bal in local.items() if bal < -EPSILON),
            key=lambda item: item[1]
        )
        creditors = sorted(
            ([pid, bal] for pid, bal in local.items() if bal > EPSILON),
            key=lambda item: item[1],
            reverse=True
        )

        debtor_idx = 0
        creditor_idx = 0
        while debtor_idx < len(debtors) and creditor_idx < len(creditors):
            debtor_id, debtor_balance = debtors[debtor_idx]
            creditor_id, creditor_balance = creditors[creditor_idx]

            amount = min(abs(debtor_balance), creditor_balance)
            owed_to = debts.setdefault(debtor_id, {})
            owed_to[creditor_id] = owed_to.get(creditor_id, 0) + amount

            debtors[debtor_idx][1] += amount
            creditors[creditor_idx][1] -= amount

            if abs(debtors[debtor_idx][1]) < EPSILON:
                debtor_idx += 1
            if creditors[creditor_idx][1] < EPSILON:
                creditor_idx += 1

    reimbursements = []
    processed_pairs = set()
    for debtor_id, owed_to in debts.items():
        for creditor_id in owed_to:
            pair = tuple(sorted((debtor_id, creditor_id)))
            if pair in processed_pairs:
                continue
            processed_pairs.add(pair)

            a_to_b = debts.get(debtor_id, {}).get(creditor_id, 0)
            b_to_a = debts.get(creditor_id, {}).get(debtor_id, 0)

            if a_to_b > b_to_a:
                reimbursements.append(_reimbursement(debtor_id, creditor_id, a_to_b - b_to_a))
            elif b_to_a > a_to_b:
                reimbursements.append(_reimbursement(creditor_id, debtor_id, b_to_a - a_to_b))

    return [r for r in reimbursements if r["amount"] > DIRECT_REIMBURSEMENT_MINIMUM]


def get_public_balances(reimbursements: Iterable[dict]) -> dict[str, dict]:
    """
    Build the balance map implied by a list of reimbursements.

    The payer of a reimbursement ends up owing the amount, the receiver ends
    up having paid it.
    """
    balances = {}
    for r in reimbursements:
        payer = balances.setdefault(r["from_participant"], {"paid": 0, "owed": 0, "net": 0})
        receiver = balances.setdefault(r["to_participant"], {"paid": 0, "owed": 0, "net": 0})

        payer["owed"] += r["amount"]
        payer["net"] -= r["amount"]
        receiver["paid"] += r["amount"]
        receiver["net"] += r["amount"]

    return balances
