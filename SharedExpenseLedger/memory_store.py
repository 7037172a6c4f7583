"""
Memory Store Module

In-process implementation of the ledger store.

Every public method holds one lock for its whole duration, which gives each
call the atomicity of a single transaction. Records are copied on the way in
and out so callers never share mutable state with the store.

Classes:
    InMemoryExpenseStore: Dict-backed ExpenseStore.
"""

import threading
from datetime import datetime
from typing import Optional

from activities import Activity, sort_activities
from expenses import Expense, RecurringExpenseLink
from ledger_store import ClaimConflictError, ExpenseStore, NotFoundError, sort_expenses
from participants import Group


def _copy_expense(expense: Expense) -> Expense:
    return Expense.from_dict(expense.to_dict())


def _copy_link(link: RecurringExpenseLink) -> RecurringExpenseLink:
    return RecurringExpenseLink.from_dict(link.to_dict())


class InMemoryExpenseStore(ExpenseStore):
    """Thread-safe ExpenseStore kept in plain dictionaries."""

    def __init__(self):
        self._lock = threading.Lock()
        self._groups: dict[str, dict] = {}
        self._expenses: dict[str, dict[str, Expense]] = {}
        self._links: dict[str, RecurringExpenseLink] = {}
        self._activities: dict[str, list[dict]] = {}

    def create_group(self, group: Group) -> Group:
        with self._lock:
            self._groups[group.group_id] = group.to_dict()
            self._expenses.setdefault(group.group_id, {})
        return group

    def get_group(self, group_id: str) -> Optional[Group]:
        with self._lock:
            data = self._groups.get(group_id)
        return Group.from_dict(data) if data is not None else None

    def save_group(self, group: Group) -> Group:
        with self._lock:
            if group.group_id not in self._groups:
                raise NotFoundError(f"group {group.group_id} not found")
            self._groups[group.group_id] = group.to_dict()
        return group

    def create_expense(self, expense: Expense, link: Optional[RecurringExpenseLink] = None) -> Expense:
        with self._lock:
            self._expenses.setdefault(expense.group_id, {})[expense.expense_id] = _copy_expense(expense)
            if link is not None:
                self._links[link.link_id] = _copy_link(link)
        return expense

    def save_expense(self, expense: Expense) -> Expense:
        with self._lock:
            group_expenses = self._expenses.get(expense.group_id, {})
            if expense.expense_id not in group_expenses:
                raise NotFoundError(f"expense {expense.expense_id} not found in group {expense.group_id}")
            group_expenses[expense.expense_id] = _copy_expense(expense)
        return expense

    def delete_expense(self, group_id: str, expense_id: str) -> None:
        with self._lock:
            self._expenses.get(group_id, {}).pop(expense_id, None)
            for link_id, link in list(self._links.items()):
                if link.current_frame_expense_id == expense_id:
                    del self._links[link_id]

    def get_expense(self, group_id: str, expense_id: str) -> Optional[Expense]:
        with self._lock:
            expense = self._expenses.get(group_id, {}).get(expense_id)
            return _copy_expense(expense) if expense is not None else None

    def get_group_expenses(self, group_id: str) -> list[Expense]:
        with self._lock:
            expenses = [_copy_expense(e) for e in self._expenses.get(group_id, {}).values()]
        return sort_expenses(expenses)

    def get_recurring_link(self, expense_id: str) -> Optional[RecurringExpenseLink]:
        with self._lock:
            for link in self._links.values():
                if link.current_frame_expense_id == expense_id:
                    return _copy_link(link)
        return None

    def save_recurring_link(self, link: RecurringExpenseLink) -> RecurringExpenseLink:
        with self._lock:
            self._links[link.link_id] = _copy_link(link)
        return link

    def delete_recurring_link(self, link_id: str) -> None:
        with self._lock:
            self._links.pop(link_id, None)

    def get_due_recurring_links(
        self, now: datetime, group_id: Optional[str] = None
    ) -> list[RecurringExpenseLink]:
        with self._lock:
            return [
                _copy_link(link)
                for link in self._links.values()
                if link.next_expense_created_at is None
                and link.next_expense_date <= now
                and (group_id is None or link.group_id == group_id)
            ]

    def create_recurring_occurrence(
        self,
        current_link_id: str,
        new_expense: Expense,
        new_link: RecurringExpenseLink,
        claimed_at: datetime
    ) -> Expense:
        with self._lock:
            current = self._links.get(current_link_id)
            if current is None or current.next_expense_created_at is not None:
                raise ClaimConflictError(f"recurring expense link {current_link_id} is already claimed")

            self._expenses.setdefault(new_expense.group_id, {})[new_expense.expense_id] = _copy_expense(new_expense)
            self._links[new_link.link_id] = _copy_link(new_link)
            current.next_expense_created_at = claimed_at
        return new_expense

    def add_activity(self, activity: Activity) -> Activity:
        with self._lock:
            self._activities.setdefault(activity.group_id, []).append(activity.to_dict())
        return activity

    def get_group_activities(self, group_id: str) -> list[Activity]:
        with self._lock:
            activities = [Activity.from_dict(a) for a in self._activities.get(group_id, [])]
        return sort_activities(activities)
