"""
tests/test_activities.py — Activity log of a group.

What this file proves:
  - Creating, editing and deleting expenses is logged with the expense title
  - Editing a group is logged
  - The log reads newest first, pages with offset/length and carries the
    expense each entry refers to while it still exists
  - Failed changes leave no entry
"""

from datetime import datetime, timezone

import pytest

from activities import Activity, ActivityType, get_activities, log_activity, sort_activities
from expenses import ExpenseValidationError, PaidBy, PaidFor, add_expense, delete_expense, update_expense
from participants import Participant, update_group


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


def _add(store, group, title="Groceries", participant_id="P001"):
    return add_expense(
        store, group.group_id, title=title, expense_date=utc(2025, 3, 1),
        paid_by=[PaidBy("P001", 900)], paid_for=[PaidFor("P001"), PaidFor("P002")],
        participant_id=participant_id,
    )


# ── Logging ─────────────────────────────────────────────────────────────────

def test_expense_lifecycle_is_logged(store, group):
    expense = _add(store, group)
    update_expense(
        store, group.group_id, expense.expense_id, title="Dinner", expense_date=utc(2025, 3, 1),
        paid_by=[PaidBy("P002", 900)], paid_for=[PaidFor("P001")], participant_id="P002",
    )
    delete_expense(store, group.group_id, expense.expense_id, participant_id="P003")

    log = [entry["activity"] for entry in get_activities(store, group.group_id)]

    assert [a.activity_type for a in log] == [
        ActivityType.DELETE_EXPENSE, ActivityType.UPDATE_EXPENSE, ActivityType.CREATE_EXPENSE
    ]
    assert [a.participant_id for a in log] == ["P003", "P002", "P001"]
    assert [a.data for a in log] == ["Dinner", "Dinner", "Groceries"]
    assert {a.expense_id for a in log} == {expense.expense_id}


def test_group_edit_is_logged(store, group):
    update_group(
        store, group.group_id, "Flat",
        [Participant(p.participant_id, p.name) for p in group.participants],
        participant_id="P001",
    )

    [entry] = get_activities(store, group.group_id)

    assert entry["activity"].activity_type is ActivityType.UPDATE_GROUP
    assert entry["activity"].participant_id == "P001"
    assert entry["activity"].expense_id is None
    assert entry["expense"] is None


def test_rejected_expense_is_not_logged(store, group):
    with pytest.raises(ExpenseValidationError):
        add_expense(
            store, group.group_id, title="X", expense_date=utc(2025, 3, 1),
            paid_by=[PaidBy("P001", 900)], paid_for=[PaidFor("P001")],
        )

    assert get_activities(store, group.group_id) == []


# ── Reading ─────────────────────────────────────────────────────────────────

def test_entries_carry_their_expense_until_it_is_deleted(store, group):
    kept = _add(store, group, title="Rent")
    gone = _add(store, group, title="Taxi")
    delete_expense(store, group.group_id, gone.expense_id)

    entries = get_activities(store, group.group_id)

    by_title = {(e["activity"].activity_type, e["activity"].data): e["expense"] for e in entries}
    assert by_title[(ActivityType.CREATE_EXPENSE, "Rent")].expense_id == kept.expense_id
    assert by_title[(ActivityType.CREATE_EXPENSE, "Taxi")] is None
    assert by_title[(ActivityType.DELETE_EXPENSE, "Taxi")] is None


def test_offset_and_length_page_the_log(store, group):
    for title in ["One", "Two", "Three", "Four"]:
        _add(store, group, title=title)

    page = get_activities(store, group.group_id, offset=1, length=2)

    assert [e["activity"].data for e in page] == ["Three", "Two"]


def test_logs_are_kept_per_group(store, group):
    log_activity(store, "another-group", ActivityType.UPDATE_GROUP)

    assert get_activities(store, group.group_id) == []


def test_sort_is_newest_first_and_stable_for_equal_times():
    first = Activity("A1", "G1", ActivityType.CREATE_EXPENSE, utc(2025, 3, 1))
    second = Activity("A2", "G1", ActivityType.UPDATE_EXPENSE, utc(2025, 3, 1))
    older = Activity("A0", "G1", ActivityType.UPDATE_GROUP, utc(2025, 2, 1))

    assert [a.activity_id for a in sort_activities([older, first, second])] == ["A2", "A1", "A0"]


def test_activity_round_trips_through_dict():
    activity = Activity(
        "A1", "G1", ActivityType.DELETE_EXPENSE, utc(2025, 3, 1),
        participant_id="P001", expense_id="E1", data="Rent",
    )

    assert Activity.from_dict(activity.to_dict()).to_dict() == activity.to_dict()
