"""
Ledger Store Module

This module defines the storage contract the ledger relies on.

Features:
    - Group and expense reads/writes
    - Recurrence link bookkeeping
    - Append-only activity log per group
    - One atomic "materialize occurrence" primitive guarded by the link's
      claim token (compare-and-swap on next_expense_created_at)

Implementations:
    memory_store.InMemoryExpenseStore: in-process, thread-safe
    firebase_store.FirestoreExpenseStore: Cloud Firestore

Classes:
    ExpenseStore: Abstract store interface.
    NotFoundError: Unknown group or expense.
    StoreUnavailableError: Backing store cannot be reached.
    ClaimConflictError: A recurrence link was already claimed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from activities import Activity
    from expenses import Expense, RecurringExpenseLink
    from participants import Group


class NotFoundError(LookupError):
    """Raised when a group or an expense does not exist."""


class StoreUnavailableError(RuntimeError):
    """Raised when the backing store cannot be reached."""


class ClaimConflictError(Exception):
    """Raised when a recurrence link has already been claimed by someone else."""


class ExpenseStore(ABC):
    """Transactional storage for groups, expenses and recurrence links."""

    @abstractmethod
    def create_group(self, group: Group) -> Group:
        """Persist a new group."""

    @abstractmethod
    def get_group(self, group_id: str) -> Optional[Group]:
        """Return the group, or None if it does not exist."""

    @abstractmethod
    def save_group(self, group: Group) -> Group:
        """
        Overwrite an existing group.

        Raises:
            NotFoundError: If the group does not exist.
        """

    @abstractmethod
    def create_expense(self, expense: Expense, link: Optional[RecurringExpenseLink] = None) -> Expense:
        """Persist a new expense and, if given, its recurrence link in one write."""

    @abstractmethod
    def save_expense(self, expense: Expense) -> Expense:
        """Overwrite an existing expense."""

    @abstractmethod
    def delete_expense(self, group_id: str, expense_id: str) -> None:
        """Delete an expense and the recurrence link it owns."""

    @abstractmethod
    def get_expense(self, group_id: str, expense_id: str) -> Optional[Expense]:
        """Return one expense, or None if it does not exist."""

    @abstractmethod
    def get_group_expenses(self, group_id: str) -> list[Expense]:
        """Return all expenses of a group, newest expense date first, then newest created."""

    @abstractmethod
    def get_recurring_link(self, expense_id: str) -> Optional[RecurringExpenseLink]:
        """Return the recurrence link owned by an expense, if any."""

    @abstractmethod
    def save_recurring_link(self, link: RecurringExpenseLink) -> RecurringExpenseLink:
        """Create or overwrite a recurrence link."""

    @abstractmethod
    def delete_recurring_link(self, link_id: str) -> None:
        """Delete a recurrence link."""

    @abstractmethod
    def get_due_recurring_links(
        self, now: datetime, group_id: Optional[str] = None
    ) -> list[RecurringExpenseLink]:
        """Return unclaimed links whose next_expense_date is at or before `now`."""

    @abstractmethod
    def create_recurring_occurrence(
        self,
        current_link_id: str,
        new_expense: Expense,
        new_link: RecurringExpenseLink,
        claimed_at: datetime
    ) -> Expense:
        """
        Atomically materialize one occurrence of a recurring expense.

        Creates `new_expense` and `new_link`, and sets the current link's
        next_expense_created_at to `claimed_at` only if it is still None.

        Raises:
            ClaimConflictError: If the current link is missing or already
                claimed. Nothing is written in that case.
        """

    @abstractmethod
    def add_activity(self, activity: Activity) -> Activity:
        """Append an entry to a group's activity log."""

    @abstractmethod
    def get_group_activities(self, group_id: str) -> list[Activity]:
        """Return the activity log of a group, newest first."""


def sort_expenses(expenses: list[Expense]) -> list[Expense]:
    """Order expenses by expense date, then creation time, newest first."""
    return sorted(
        expenses,
        key=lambda e: (e.expense_date, e.created_at or e.expense_date),
        reverse=True
    )
