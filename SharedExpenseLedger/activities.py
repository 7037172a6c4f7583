"""
Activities Module

This module keeps the activity log of a group.

Every change to a group or its expenses is recorded as an Activity so the
group can see who changed what and when. Entries are only ever added; the log
is read back newest first.

Data Model:
    Activity stored at: groups/{group_id}/activities/{activity_id}
    Fields:
        - activity_id: string
        - group_id: string
        - activity_type: UPDATE_GROUP | CREATE_EXPENSE | UPDATE_EXPENSE | DELETE_EXPENSE
        - time: datetime (UTC)
        - participant_id: string or None (who made the change)
        - expense_id: string or None (expense the change is about)
        - data: string or None (expense title at the time of the change)

Functions:
    log_activity: Record one activity.
    get_activities: Read the log of a group, newest first.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from utils import generate_id, utc_now

if TYPE_CHECKING:
    from ledger_store import ExpenseStore


class ActivityType(str, Enum):
    UPDATE_GROUP = "UPDATE_GROUP"
    CREATE_EXPENSE = "CREATE_EXPENSE"
    UPDATE_EXPENSE = "UPDATE_EXPENSE"
    DELETE_EXPENSE = "DELETE_EXPENSE"


class Activity:
    """One entry of a group's activity log."""

    def __init__(
        self,
        activity_id: str,
        group_id: str,
        activity_type: ActivityType,
        time: datetime,
        participant_id: Optional[str] = None,
        expense_id: Optional[str] = None,
        data: Optional[str] = None
    ):
        self.activity_id = activity_id
        self.group_id = group_id
        self.activity_type = ActivityType(activity_type)
        self.time = time
        self.participant_id = participant_id
        self.expense_id = expense_id
        self.data = data

    def to_dict(self) -> dict:
        return {
            "activity_id": self.activity_id,
            "group_id": self.group_id,
            "activity_type": self.activity_type.value,
            "time": self.time,
            "participant_id": self.participant_id,
            "expense_id": self.expense_id,
            "data": self.data
        }

    @classmethod
    def from_dict(cls, data: dict) -> Activity:
        return cls(
            activity_id=data.get("activity_id"),
            group_id=data.get("group_id"),
            activity_type=data.get("activity_type"),
            time=data.get("time"),
            participant_id=data.get("participant_id"),
            expense_id=data.get("expense_id"),
            data=data.get("data")
        )

    def __repr__(self) -> str:
        return f"Activity('{self.activity_type.value}', group='{self.group_id}', time={self.time})"


def sort_activities(activities: list[Activity]) -> list[Activity]:
    """Newest first; entries logged at the same instant keep newest-first insertion order."""
    return sorted(reversed(activities), key=lambda a: a.time, reverse=True)


def log_activity(
    store: ExpenseStore,
    group_id: str,
    activity_type: ActivityType,
    participant_id: Optional[str] = None,
    expense_id: Optional[str] = None,
    data: Optional[str] = None
) -> Activity:
    """
    Record one activity for a group.

    Args:
        store: Backing expense store.
        group_id: Group the change belongs to.
        activity_type: Kind of change.
        participant_id: Participant who made the change, when known.
        expense_id: Expense the change is about, if any.
        data: Short description, the expense title for expense changes.

    Returns:
        Activity: The stored activity.
    """
    activity = Activity(
        activity_id=generate_id(),
        group_id=group_id,
        activity_type=activity_type,
        time=utc_now(),
        participant_id=participant_id,
        expense_id=expense_id,
        data=data
    )
    return store.add_activity(activity)


def get_activities(
    store: ExpenseStore,
    group_id: str,
    offset: int = 0,
    length: Optional[int] = None
) -> list[dict]:
    """
    Read the activity log of a group, newest first.

    Each entry carries the expense it refers to, or None when it has no
    expense or the expense has since been deleted.

    Args:
        store: Backing expense store.
        group_id: Group to read.
        offset: Number of newest entries to skip.
        length: Maximum number of entries to return (all when None).

    Returns:
        list[dict]: {"activity": Activity, "expense": Expense | None}
    """
    activities = store.get_group_activities(group_id)
    end = None if length is None else offset + length
    page = activities[offset:end]

    expenses = {}
    for activity in page:
        if activity.expense_id and activity.expense_id not in expenses:
            expenses[activity.expense_id] = store.get_expense(group_id, activity.expense_id)

    return [
        {"activity": activity, "expense": expenses.get(activity.expense_id)}
        for activity in page
    ]
