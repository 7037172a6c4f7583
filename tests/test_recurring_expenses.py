"""
tests/test_recurring_expenses.py — Materialization of recurring expenses.

What this file proves:
  - Every missed occurrence up to `now` is created, dated on the projected dates
  - Clones carry the template's split configuration
  - Repeated and concurrent runs create each occurrence exactly once
  - Naive expense dates and reference times are read as UTC
  - Storage failures are logged, never raised
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from expenses import Expense, PaidBy, PaidFor, SplitMode, add_expense
from memory_store import InMemoryExpenseStore
from participants import create_group
from recurrence import RecurrenceRule
from recurring_expenses import clone_expense, create_recurring_expenses


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _add_recurring(store, group, rule, expense_date, title="Rent"):
    return add_expense(
        store,
        group.group_id,
        title=title,
        expense_date=expense_date,
        paid_by=[PaidBy("P001", 90000)],
        paid_for=[PaidFor("P001", 1), PaidFor("P002", 2)],
        split_mode=SplitMode.BY_SHARES,
        recurrence_rule=rule,
        category_id=3,
        document_ids=["doc-1"],
    )


def _dates(store, group):
    return sorted(e.expense_date for e in store.get_group_expenses(group.group_id))


# ── Catch-up ────────────────────────────────────────────────────────────────

def test_creates_every_missed_daily_occurrence(store, group):
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))

    created = create_recurring_expenses(store, now=utc(2025, 3, 5))

    assert created == 3
    assert _dates(store, group) == [utc(2025, 3, 1), utc(2025, 3, 2), utc(2025, 3, 3), utc(2025, 3, 4)]


def test_occurrence_due_exactly_now_waits(store, group):
    _add_recurring(store, group, RecurrenceRule.WEEKLY, utc(2025, 3, 1))

    assert create_recurring_expenses(store, now=utc(2025, 3, 8)) == 0
    assert create_recurring_expenses(store, now=utc(2025, 3, 8, 0, 1)) == 1
    assert _dates(store, group) == [utc(2025, 3, 1), utc(2025, 3, 8)]


def test_monthly_chain_keeps_clamped_day(store, group):
    _add_recurring(store, group, RecurrenceRule.MONTHLY, utc(2025, 1, 31))

    create_recurring_expenses(store, now=utc(2025, 5, 1))

    assert _dates(store, group) == [utc(2025, 1, 31), utc(2025, 2, 28), utc(2025, 3, 28), utc(2025, 4, 28)]


def test_chain_moves_forward_one_link_per_occurrence(store, group):
    template = _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))

    create_recurring_expenses(store, now=utc(2025, 3, 3))

    first_link = store.get_recurring_link(template.expense_id)
    assert first_link.is_claimed

    latest = store.get_group_expenses(group.group_id)[0]
    latest_link = store.get_recurring_link(latest.expense_id)
    assert latest.expense_date == utc(2025, 3, 2)
    assert latest_link.next_expense_date == utc(2025, 3, 3)
    assert not latest_link.is_claimed


def test_clones_copy_the_template(store, group):
    template = _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))

    create_recurring_expenses(store, now=utc(2025, 3, 2, 12))

    clone = store.get_group_expenses(group.group_id)[0]
    assert clone.expense_id != template.expense_id
    assert clone.expense_date == utc(2025, 3, 2)
    assert clone.title == template.title
    assert clone.amount == template.amount
    assert clone.split_mode is SplitMode.BY_SHARES
    assert clone.paid_by == template.paid_by
    assert clone.paid_for == template.paid_for
    assert clone.category_id == 3
    assert clone.document_ids == ["doc-1"]
    assert clone.recurrence_rule is RecurrenceRule.DAILY


def test_clone_expense_gets_new_identity():
    template = Expense(
        expense_id="E1", group_id="G1", title="Gym", amount=3000, expense_date=utc(2025, 1, 1),
        paid_by=[PaidBy("P001", 3000)], paid_for=[PaidFor("P001")],
        recurrence_rule=RecurrenceRule.MONTHLY,
    )

    clone = clone_expense(template, utc(2025, 2, 1), created_at=utc(2025, 2, 3))

    assert clone.expense_id != "E1"
    assert clone.expense_date == utc(2025, 2, 1)
    assert clone.created_at == utc(2025, 2, 3)
    assert template.expense_date == utc(2025, 1, 1)


def test_only_the_requested_group_is_processed(store, group):
    other = create_group(store, "Holiday", ["Dana", "Eve"])
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))
    add_expense(
        store, other.group_id, title="Parking", expense_date=utc(2025, 3, 1),
        paid_by=[PaidBy("P001", 500)], paid_for=[PaidFor("P002")],
        recurrence_rule=RecurrenceRule.DAILY,
    )

    create_recurring_expenses(store, now=utc(2025, 3, 3), group_id=group.group_id)

    assert len(store.get_group_expenses(group.group_id)) == 2
    assert len(store.get_group_expenses(other.group_id)) == 1


def test_naive_and_aware_dates_are_caught_up_together(store, group):
    other = create_group(store, "Holiday", ["Dana", "Eve"])
    _add_recurring(store, group, RecurrenceRule.DAILY, datetime(2025, 3, 1))
    add_expense(
        store, other.group_id, title="Parking", expense_date=utc(2025, 3, 1),
        paid_by=[PaidBy("P001", 500)], paid_for=[PaidFor("P002")],
        recurrence_rule=RecurrenceRule.DAILY,
    )

    created = create_recurring_expenses(store, now=utc(2025, 3, 3))

    assert created == 2
    assert _dates(store, group) == [utc(2025, 3, 1), utc(2025, 3, 2)]
    assert _dates(store, other) == [utc(2025, 3, 1), utc(2025, 3, 2)]


def test_naive_reference_time_is_read_as_utc(store, group):
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))

    assert create_recurring_expenses(store, now=datetime(2025, 3, 3)) == 1


# ── Idempotency ─────────────────────────────────────────────────────────────

def test_running_twice_creates_nothing_new(store, group):
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))

    first = create_recurring_expenses(store, now=utc(2025, 3, 5))
    second = create_recurring_expenses(store, now=utc(2025, 3, 5))

    assert (first, second) == (3, 0)
    assert len(store.get_group_expenses(group.group_id)) == 4


def test_concurrent_runs_create_each_occurrence_once(store, group):
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))
    now = utc(2025, 3, 11)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: create_recurring_expenses(store, now=now), range(8)))

    dates = _dates(store, group)
    assert sum(results) == 9
    assert len(dates) == 10
    assert len(set(dates)) == 10


class ClaimedMeanwhileStore(InMemoryExpenseStore):
    """Another worker claims every due link right after it was listed."""

    def get_due_recurring_links(self, now, group_id=None):
        links = super().get_due_recurring_links(now, group_id)
        for link in links:
            claimed = self.get_recurring_link(link.current_frame_expense_id)
            claimed.next_expense_created_at = now
            self.save_recurring_link(claimed)
        return links


def test_lost_claim_stops_without_side_effects(caplog):
    store = ClaimedMeanwhileStore()
    group = create_group(store, "Flat share", ["Alice", "Bob"])
    template = _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))
    link = store.get_recurring_link(template.expense_id)

    with caplog.at_level(logging.WARNING, logger="recurring_expenses"):
        created = create_recurring_expenses(store, now=utc(2025, 3, 5))

    assert created == 0
    assert len(store.get_group_expenses(group.group_id)) == 1
    assert link.link_id in caplog.text


# ── Failures ────────────────────────────────────────────────────────────────

class FailingWriteStore(InMemoryExpenseStore):
    def create_recurring_occurrence(self, current_link_id, new_expense, new_link, claimed_at):
        raise RuntimeError("storage is down")


class FailingReadStore(InMemoryExpenseStore):
    def get_due_recurring_links(self, now, group_id=None):
        raise RuntimeError("storage is down")


def test_storage_failure_is_logged_not_raised(caplog):
    store = FailingWriteStore()
    group = create_group(store, "Flat share", ["Alice", "Bob"])
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1))

    with caplog.at_level(logging.ERROR, logger="recurring_expenses"):
        created = create_recurring_expenses(store, now=utc(2025, 3, 5))

    assert created == 0
    assert len(store.get_group_expenses(group.group_id)) == 1
    assert "storage is down" in caplog.text


def test_failure_to_list_links_is_logged_not_raised(caplog):
    with caplog.at_level(logging.ERROR, logger="recurring_expenses"):
        assert create_recurring_expenses(FailingReadStore(), now=utc(2025, 3, 5)) == 0

    assert "Could not load due recurring expense links" in caplog.text


def test_failure_on_one_link_does_not_block_others(store, group):
    broken = _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1), title="Broken")
    _add_recurring(store, group, RecurrenceRule.DAILY, utc(2025, 3, 1), title="Healthy")

    # The broken template has lost its recurrence rule, so no next date exists
    broken_record = store.get_expense(group.group_id, broken.expense_id)
    broken_record.recurrence_rule = RecurrenceRule.NONE
    store.save_expense(broken_record)

    created = create_recurring_expenses(store, now=utc(2025, 3, 3))

    titles = sorted(e.title for e in store.get_group_expenses(group.group_id))
    assert created == 1
    assert titles == ["Broken", "Healthy", "Healthy"]
