"""
Firebase Store Module

This module stores groups, expenses and recurrence links in Cloud Firestore.

Features:
    - Groups with embedded participants
    - Expenses and the activity log per group
    - Recurrence links in one top-level collection so overdue links of all
      groups can be found with a single query
    - Materialization of a recurring occurrence inside a Firestore
      transaction that re-checks the link's claim token

Firestore Structure:
    groups/{group_id}
        - group_id, name, currency, decimal_digits, simplify_debts,
          information, participants
    groups/{group_id}/expenses/{expense_id}
        - expense_id, group_id, title, amount, expense_date, split_mode,
          paid_by, paid_for, is_reimbursement, recurrence_rule, category_id,
          document_ids, items, notes, created_at
    groups/{group_id}/activities/{activity_id}
        - activity_id, group_id, activity_type, time, participant_id,
          expense_id, data
    recurring_expense_links/{link_id}
        - link_id, group_id, current_frame_expense_id, next_expense_date,
          next_expense_created_at

Classes:
    FirestoreExpenseStore: ExpenseStore backed by Firestore.
"""

import logging
from datetime import datetime
from typing import Optional

from firebase_admin import firestore

from activities import Activity, sort_activities
from config.firebase_config import get_db
from expenses import Expense, RecurringExpenseLink
from ledger_store import ClaimConflictError, ExpenseStore, NotFoundError, StoreUnavailableError, sort_expenses
from participants import Group


logger = logging.getLogger(__name__)

GROUPS = "groups"
EXPENSES = "expenses"
RECURRING_LINKS = "recurring_expense_links"
ACTIVITIES = "activities"


class FirestoreExpenseStore(ExpenseStore):
    """ExpenseStore persisting to Cloud Firestore."""

    def __init__(self, db=None):
        self._db = db

    @property
    def db(self):
        if self._db is None:
            self._db = get_db()
        if self._db is None:
            raise StoreUnavailableError("Firestore is not available")
        return self._db

    def _group_ref(self, group_id: str):
        return self.db.collection(GROUPS).document(group_id)

    def _expense_ref(self, group_id: str, expense_id: str):
        return self._group_ref(group_id).collection(EXPENSES).document(expense_id)

    def _link_ref(self, link_id: str):
        return self.db.collection(RECURRING_LINKS).document(link_id)

    def _links_of_expense(self, expense_id: str):
        return self.db.collection(RECURRING_LINKS) \
                   .where(filter=firestore.FieldFilter("current_frame_expense_id", "==", expense_id)) \
                   .stream()

    # Groups

    def create_group(self, group: Group) -> Group:
        self._group_ref(group.group_id).set(group.to_dict())
        return group

    def get_group(self, group_id: str) -> Optional[Group]:
        doc = self._group_ref(group_id).get()
        if not doc.exists:
            return None
        return Group.from_dict(doc.to_dict())

    def save_group(self, group: Group) -> Group:
        doc_ref = self._group_ref(group.group_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"group {group.group_id} not found")
        doc_ref.set(group.to_dict())
        return group

    # Expenses

    def create_expense(self, expense: Expense, link: Optional[RecurringExpenseLink] = None) -> Expense:
        batch = self.db.batch()
        batch.set(self._expense_ref(expense.group_id, expense.expense_id), expense.to_dict())
        if link is not None:
            batch.set(self._link_ref(link.link_id), link.to_dict())
        batch.commit()
        return expense

    def save_expense(self, expense: Expense) -> Expense:
        doc_ref = self._expense_ref(expense.group_id, expense.expense_id)
        if not doc_ref.get().exists:
            raise NotFoundError(f"expense {expense.expense_id} not found in group {expense.group_id}")
        doc_ref.set(expense.to_dict())
        return expense

    def delete_expense(self, group_id: str, expense_id: str) -> None:
        batch = self.db.batch()
        batch.delete(self._expense_ref(group_id, expense_id))
        for doc in self._links_of_expense(expense_id):
            batch.delete(doc.reference)
        batch.commit()

    def get_expense(self, group_id: str, expense_id: str) -> Optional[Expense]:
        doc = self._expense_ref(group_id, expense_id).get()
        if not doc.exists:
            return None
        return Expense.from_dict(doc.to_dict())

    def get_group_expenses(self, group_id: str) -> list[Expense]:
        docs = self._group_ref(group_id).collection(EXPENSES).stream()
        return sort_expenses([Expense.from_dict(doc.to_dict()) for doc in docs])

    # Recurrence links

    def get_recurring_link(self, expense_id: str) -> Optional[RecurringExpenseLink]:
        for doc in self._links_of_expense(expense_id):
            return RecurringExpenseLink.from_dict(doc.to_dict())
        return None

    def save_recurring_link(self, link: RecurringExpenseLink) -> RecurringExpenseLink:
        self._link_ref(link.link_id).set(link.to_dict())
        return link

    def delete_recurring_link(self, link_id: str) -> None:
        self._link_ref(link_id).delete()

    def get_due_recurring_links(
        self, now: datetime, group_id: Optional[str] = None
    ) -> list[RecurringExpenseLink]:
        query = self.db.collection(RECURRING_LINKS) \
                    .where(filter=firestore.FieldFilter("next_expense_created_at", "==", None)) \
                    .where(filter=firestore.FieldFilter("next_expense_date", "<=", now))
        if group_id is not None:
            query = query.where(filter=firestore.FieldFilter("group_id", "==", group_id))

        return [RecurringExpenseLink.from_dict(doc.to_dict()) for doc in query.stream()]

    def create_recurring_occurrence(
        self,
        current_link_id: str,
        new_expense: Expense,
        new_link: RecurringExpenseLink,
        claimed_at: datetime
    ) -> Expense:
        current_ref = self._link_ref(current_link_id)
        expense_ref = self._expense_ref(new_expense.group_id, new_expense.expense_id)
        new_link_ref = self._link_ref(new_link.link_id)

        @firestore.transactional
        def _materialize(transaction):
            snapshot = current_ref.get(transaction=transaction)
            if not snapshot.exists or snapshot.get("next_expense_created_at") is not None:
                raise ClaimConflictError(f"recurring expense link {current_link_id} is already claimed")

            transaction.set(expense_ref, new_expense.to_dict())
            transaction.set(new_link_ref, new_link.to_dict())
            transaction.update(current_ref, {"next_expense_created_at": claimed_at})

        _materialize(self.db.transaction())
        logger.debug(
            "Materialized expense %s from link %s", new_expense.expense_id, current_link_id
        )
        return new_expense

    # Activity log

    def add_activity(self, activity: Activity) -> Activity:
        self._group_ref(activity.group_id).collection(ACTIVITIES) \
            .document(activity.activity_id).set(activity.to_dict())
        return activity

    def get_group_activities(self, group_id: str) -> list[Activity]:
        docs = self._group_ref(group_id).collection(ACTIVITIES).stream()
        return sort_activities([Activity.from_dict(doc.to_dict()) for doc in docs])
