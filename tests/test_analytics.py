"""
tests/test_analytics.py — Spending totals and statistics.

Scenario used throughout (Alice P001, Bob P002, Carol P003):
  E1: Alice pays 1000 for Alice and Bob        (category 1, March 1)
  E2: Bob pays 600 for everyone                (category 2, March 2)
  E3: Bob reimburses Alice 500                 (reimbursement, March 3)
"""

from datetime import datetime, timezone

import pytest

from analytics import (
    UNCATEGORIZED,
    generate_group_stats,
    get_total_group_spending,
    get_total_participant_paid_for,
    get_total_participant_share,
)


def utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


@pytest.fixture
def expenses(make_expense):
    return [
        make_expense(1000, [("P001", 1000)], ["P001", "P002"],
                     expense_id="E1", category_id=1, expense_date=utc(2025, 3, 1)),
        make_expense(600, [("P002", 600)], ["P001", "P002", "P003"],
                     expense_id="E2", category_id=2, expense_date=utc(2025, 3, 2)),
        make_expense(500, [("P002", 500)], ["P001"],
                     expense_id="E3", is_reimbursement=True, expense_date=utc(2025, 3, 3)),
    ]


# ── Totals ──────────────────────────────────────────────────────────────────

def test_group_spending_excludes_reimbursements(expenses):
    assert get_total_group_spending(expenses) == 1600


def test_participant_paid_for_excludes_reimbursements(expenses):
    assert get_total_participant_paid_for("P001", expenses) == 1000
    assert get_total_participant_paid_for("P002", expenses) == 600
    assert get_total_participant_paid_for("P003", expenses) == 0


def test_participant_share_follows_balances(expenses):
    assert get_total_participant_share("P001", expenses) == 1200
    assert get_total_participant_share("P003", expenses) == 200
    assert get_total_participant_share(None, expenses) == 0


# ── Statistics ──────────────────────────────────────────────────────────────

def test_group_stats(group, expenses):
    stats = generate_group_stats(group, expenses, participant_id="P001", category_names={1: "Groceries"})

    assert stats["total_group_spending"] == 1600
    assert stats["total_participant_spending"] == 1000
    assert stats["total_participant_share"] == 1200
    assert stats["category_spending"] == [
        {"name": "Groceries", "value": 1000},
        {"name": UNCATEGORIZED, "value": 600},
    ]
    assert stats["daily_spending"] == [
        {"date": "2025-03-01", "value": 1000},
        {"date": "2025-03-02", "value": 600},
    ]
    assert stats["participant_spending"] == [
        {"participant_id": "P001", "name": "Alice", "amount": 700},
        {"participant_id": "P002", "name": "Bob", "amount": 700},
        {"participant_id": "P003", "name": "Carol", "amount": 200},
    ]


def test_group_stats_without_participant(group, expenses):
    stats = generate_group_stats(group, expenses)

    assert stats["total_participant_spending"] is None
    assert stats["total_participant_share"] is None
    assert {item["name"] for item in stats["category_spending"]} == {UNCATEGORIZED}


def test_group_stats_of_empty_group(group):
    stats = generate_group_stats(group, [])

    assert stats["total_group_spending"] == 0
    assert stats["category_spending"] == []
    assert stats["daily_spending"] == []
    assert stats["participant_spending"] == []
