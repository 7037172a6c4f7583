"""
SharedExpenseLedger - FastAPI Web Backend

This module serves as the main entry point for the shared expense ledger API.

Features:
    - RESTful API for managing groups and expenses
    - Balances and suggested reimbursements per group
    - Recurring expenses caught up before every read
    - Spending statistics
    - Activity log of every group and expense change

Endpoints:
    POST   /groups                                  - Create a new group
    GET    /groups/{group_id}                       - Get a group
    PUT    /groups/{group_id}                       - Edit a group and its participants
    POST   /groups/{group_id}/expenses              - Add expense to group
    GET    /groups/{group_id}/expenses              - List expenses
    GET    /groups/{group_id}/expenses/{expense_id} - Get one expense
    PUT    /groups/{group_id}/expenses/{expense_id} - Edit an expense
    DELETE /groups/{group_id}/expenses/{expense_id} - Delete an expense
    GET    /groups/{group_id}/balances              - Balances and reimbursements
    GET    /groups/{group_id}/stats                 - Spending statistics
    GET    /groups/{group_id}/activities            - Activity log, newest first

Usage:
    uvicorn main:app --reload
"""

from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel, Field, field_validator

from activities import get_activities
from analytics import generate_group_stats
from config.settings import configure_logging, get_settings
from expenses import (
    Expense,
    ExpenseItem,
    PaidBy,
    PaidFor,
    SplitMode,
    add_expense,
    delete_expense,
    get_expense,
    update_expense,
)
from firebase_store import FirestoreExpenseStore
from ledger_store import ExpenseStore, NotFoundError
from memory_store import InMemoryExpenseStore
from participants import Group, Participant, create_group, get_group, update_group
from recurrence import RecurrenceRule
from recurring_expenses import create_recurring_expenses
from settlement import get_direct_reimbursements, get_public_balances, get_suggested_reimbursements
from splitter import calculate_balances
from utils import as_utc, generate_id


# =============================================================================
# Pydantic Models for Request/Response Validation
# =============================================================================

class GroupCreate(BaseModel):
    """Request model for creating a new group."""
    name: str = Field(..., min_length=2, max_length=50, description="Group name")
    participants: list[str] = Field(..., min_length=1, description="Participant names")
    currency: str = Field("$", min_length=1, max_length=5, description="Currency symbol")
    decimal_digits: int = Field(2, ge=0, le=4, description="Minor-unit digits of the currency")
    simplify_debts: bool = Field(True, description="Suggest simplified reimbursements")
    information: Optional[str] = Field(None, description="Optional notes")


class ParticipantResponse(BaseModel):
    """Response model for participant data."""
    participant_id: str
    name: str


class GroupResponse(BaseModel):
    """Response model for group data."""
    group_id: str
    name: str
    currency: str
    decimal_digits: int
    simplify_debts: bool
    information: Optional[str]
    participants: list[ParticipantResponse]


class PaidByItem(BaseModel):
    participant_id: str = Field(..., min_length=1)
    amount: int = Field(..., description="Amount paid in minor units")


class PaidForItem(BaseModel):
    participant_id: str = Field(..., min_length=1)
    shares: int = Field(1, description="Weight; meaning depends on split_mode")


class ExpenseItemModel(BaseModel):
    item_id: Optional[str] = None
    name: str = Field(..., min_length=1)
    price: int = Field(..., description="Price in minor units")
    participant_ids: list[str] = Field(default_factory=list, description="Empty to leave the item out")


class ExpenseWrite(BaseModel):
    """
    Request model for adding or editing an expense.

    When `items` are given, paid_for and split_mode are derived from them.
    """
    title: str = Field(..., min_length=2, description="Expense title")
    expense_date: datetime = Field(..., description="Expense date (ISO 8601)")
    paid_by: list[PaidByItem] = Field(..., min_length=1)
    paid_for: list[PaidForItem] = Field(default_factory=list)
    split_mode: SplitMode = SplitMode.EVENLY
    is_reimbursement: bool = False
    recurrence_rule: RecurrenceRule = RecurrenceRule.NONE
    category_id: int = 0
    document_ids: list[str] = Field(default_factory=list)
    items: list[ExpenseItemModel] = Field(default_factory=list)
    notes: Optional[str] = None

    @field_validator("expense_date")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ExpenseResponse(BaseModel):
    """Response model for expense data."""
    expense_id: str
    group_id: str
    title: str
    amount: int
    expense_date: datetime
    split_mode: SplitMode
    paid_by: list[PaidByItem]
    paid_for: list[PaidForItem]
    is_reimbursement: bool
    recurrence_rule: RecurrenceRule
    category_id: int
    document_ids: list[str]
    items: list[ExpenseItemModel]
    notes: Optional[str]
    created_at: Optional[datetime]


class ParticipantUpdate(BaseModel):
    participant_id: Optional[str] = Field(None, description="Omit to add a new participant")
    name: str


class GroupUpdate(BaseModel):
    """Request model for editing a group; `participants` is the complete new list."""
    name: str = Field(..., min_length=2, max_length=50, description="Group name")
    participants: list[ParticipantUpdate] = Field(..., min_length=1)
    currency: Optional[str] = Field(None, min_length=1, max_length=5)
    simplify_debts: Optional[bool] = None
    information: Optional[str] = None


class ActivityResponse(BaseModel):
    """Response model for one activity log entry."""
    activity_id: str
    group_id: str
    activity_type: str
    time: datetime
    participant_id: Optional[str]
    expense_id: Optional[str]
    data: Optional[str]
    expense: Optional[ExpenseResponse]


class BalanceEntry(BaseModel):
    paid: int
    owed: int
    net: int


class ReimbursementResponse(BaseModel):
    from_participant: str
    to_participant: str
    amount: float


class BalancesResponse(BaseModel):
    """Response model for group balances."""
    balances: dict[str, BalanceEntry]
    reimbursements: list[ReimbursementResponse]
    public_balances: dict[str, dict[str, float]]


# =============================================================================
# FastAPI Application
# =============================================================================

@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    yield


app = FastAPI(
    title="Shared Expense Ledger",
    description="Balances, settlements and recurring expenses for groups sharing costs",
    version="1.0.0",
    lifespan=lifespan
)


@lru_cache(maxsize=1)
def get_store() -> ExpenseStore:
    """Store dependency selected by LEDGER_STORE_BACKEND."""
    if get_settings().store_backend == "memory":
        return InMemoryExpenseStore()
    return FirestoreExpenseStore()


# =============================================================================
# Helper Functions
# =============================================================================

def _group_to_response(group: Group) -> GroupResponse:
    return GroupResponse(
        group_id=group.group_id,
        name=group.name,
        currency=group.currency,
        decimal_digits=group.decimal_digits,
        simplify_debts=group.simplify_debts,
        information=group.information,
        participants=[
            ParticipantResponse(participant_id=p.participant_id, name=p.name)
            for p in group.participants
        ]
    )


def _expense_to_response(expense: Expense) -> ExpenseResponse:
    return ExpenseResponse(**expense.to_dict())


def _expense_arguments(expense_data: ExpenseWrite) -> dict:
    return {
        "title": expense_data.title,
        "expense_date": expense_data.expense_date,
        "paid_by": [PaidBy(p.participant_id, p.amount) for p in expense_data.paid_by],
        "paid_for": [PaidFor(p.participant_id, p.shares) for p in expense_data.paid_for],
        "split_mode": expense_data.split_mode,
        "is_reimbursement": expense_data.is_reimbursement,
        "recurrence_rule": expense_data.recurrence_rule,
        "category_id": expense_data.category_id,
        "document_ids": expense_data.document_ids,
        "items": [
            ExpenseItem(i.item_id or generate_id(), i.name, i.price, i.participant_ids)
            for i in expense_data.items
        ],
        "notes": expense_data.notes
    }


def _fresh_expenses(store: ExpenseStore, group_id: str) -> list[Expense]:
    """Catch up recurring expenses of the group, then read its expenses."""
    create_recurring_expenses(store, group_id=group_id)
    return store.get_group_expenses(group_id)


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, HTTPException):
        return error
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValueError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, RuntimeError):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


# =============================================================================
# API Endpoints
# =============================================================================

@app.post("/groups", response_model=GroupResponse, status_code=201)
def create_new_group(group_data: GroupCreate, store: ExpenseStore = Depends(get_store)):
    """
    Create a new group.

    Request flow:
        1. Validate input using Pydantic model
        2. Call create_group() from participants.py
        3. Return the created group
    """
    try:
        group = create_group(
            store,
            name=group_data.name,
            participant_names=group_data.participants,
            currency=group_data.currency,
            decimal_digits=group_data.decimal_digits,
            simplify_debts=group_data.simplify_debts,
            information=group_data.information
        )
        return _group_to_response(group)
    except Exception as e:
        raise _to_http_error(e)


@app.get("/groups/{group_id}", response_model=GroupResponse)
def read_group(group_id: str, store: ExpenseStore = Depends(get_store)):
    """Get a group and its participants."""
    try:
        return _group_to_response(get_group(store, group_id))
    except Exception as e:
        raise _to_http_error(e)


@app.put("/groups/{group_id}", response_model=GroupResponse)
def edit_group(
    group_id: str,
    group_data: GroupUpdate,
    participant_id: Optional[str] = Query(None, description="Participant making the change"),
    store: ExpenseStore = Depends(get_store)
):
    """Edit a group: name, currency, settings and participants."""
    try:
        group = update_group(
            store,
            group_id,
            name=group_data.name,
            participants=[Participant(p.participant_id, p.name) for p in group_data.participants],
            currency=group_data.currency,
            simplify_debts=group_data.simplify_debts,
            information=group_data.information,
            participant_id=participant_id
        )
        return _group_to_response(group)
    except Exception as e:
        raise _to_http_error(e)


@app.post("/groups/{group_id}/expenses", response_model=ExpenseResponse, status_code=201)
def add_group_expense(
    group_id: str,
    expense_data: ExpenseWrite,
    participant_id: Optional[str] = Query(None, description="Participant making the change"),
    store: ExpenseStore = Depends(get_store)
):
    """
    Add an expense to a group.

    Request flow:
        1. Validate input using Pydantic model
        2. Call add_expense() from expenses.py (validation rules, recurrence link)
        3. Return created expense data
    """
    try:
        expense = add_expense(
            store, group_id, participant_id=participant_id, **_expense_arguments(expense_data)
        )
        return _expense_to_response(expense)
    except Exception as e:
        raise _to_http_error(e)


@app.get("/groups/{group_id}/expenses", response_model=list[ExpenseResponse])
def list_group_expenses(group_id: str, store: ExpenseStore = Depends(get_store)):
    """List the expenses of a group, newest first, after catching up recurrences."""
    try:
        get_group(store, group_id)
        return [_expense_to_response(e) for e in _fresh_expenses(store, group_id)]
    except Exception as e:
        raise _to_http_error(e)


@app.get("/groups/{group_id}/expenses/{expense_id}", response_model=ExpenseResponse)
def read_group_expense(group_id: str, expense_id: str, store: ExpenseStore = Depends(get_store)):
    """Get one expense."""
    try:
        return _expense_to_response(get_expense(store, group_id, expense_id))
    except Exception as e:
        raise _to_http_error(e)


@app.put("/groups/{group_id}/expenses/{expense_id}", response_model=ExpenseResponse)
def edit_group_expense(
    group_id: str,
    expense_id: str,
    expense_data: ExpenseWrite,
    participant_id: Optional[str] = Query(None, description="Participant making the change"),
    store: ExpenseStore = Depends(get_store)
):
    """Edit an expense, keeping its recurrence link in step."""
    try:
        expense = update_expense(
            store, group_id, expense_id,
            participant_id=participant_id, **_expense_arguments(expense_data)
        )
        return _expense_to_response(expense)
    except Exception as e:
        raise _to_http_error(e)


@app.delete("/groups/{group_id}/expenses/{expense_id}", status_code=204)
def remove_group_expense(
    group_id: str,
    expense_id: str,
    participant_id: Optional[str] = Query(None, description="Participant making the change"),
    store: ExpenseStore = Depends(get_store)
):
    """Delete an expense and its recurrence link."""
    try:
        delete_expense(store, group_id, expense_id, participant_id=participant_id)
    except Exception as e:
        raise _to_http_error(e)


@app.get("/groups/{group_id}/balances", response_model=BalancesResponse)
def read_group_balances(group_id: str, store: ExpenseStore = Depends(get_store)):
    """
    Calculate balances and reimbursements for a group.

    Request flow:
        1. Catch up recurring expenses (recurring_expenses.py)
        2. Fetch expenses from the store
        3. Calculate balances (splitter.py)
        4. Suggest reimbursements, simplified or direct per the group setting
           (settlement.py)
        5. Derive the balances implied by those reimbursements
    """
    try:
        group = get_group(store, group_id)
        expenses = _fresh_expenses(store, group_id)

        balances = calculate_balances(expenses)
        if group.simplify_debts:
            reimbursements = get_suggested_reimbursements(balances)
        else:
            reimbursements = get_direct_reimbursements(expenses)

        return BalancesResponse(
            balances=balances,
            reimbursements=reimbursements,
            public_balances=get_public_balances(reimbursements)
        )
    except Exception as e:
        raise _to_http_error(e)


@app.get("/groups/{group_id}/stats")
def read_group_stats(
    group_id: str,
    participant_id: Optional[str] = None,
    store: ExpenseStore = Depends(get_store)
):
    """Spending totals and breakdowns for a group."""
    try:
        group = get_group(store, group_id)
        expenses = _fresh_expenses(store, group_id)
        return generate_group_stats(group, expenses, participant_id=participant_id)
    except Exception as e:
        raise _to_http_error(e)


@app.get("/groups/{group_id}/activities", response_model=list[ActivityResponse])
def read_group_activities(
    group_id: str,
    offset: int = Query(0, ge=0),
    length: Optional[int] = Query(None, ge=1),
    store: ExpenseStore = Depends(get_store)
):
    """Activity log of a group, newest first, with the expense each entry refers to."""
    try:
        get_group(store, group_id)
        return [
            ActivityResponse(
                **entry["activity"].to_dict(),
                expense=_expense_to_response(entry["expense"]) if entry["expense"] else None
            )
            for entry in get_activities(store, group_id, offset=offset, length=length)
        ]
    except Exception as e:
        raise _to_http_error(e)


# =============================================================================
# Health Check Endpoint
# =============================================================================

@app.get("/health")
def health_check():
    """Health check endpoint to verify API is running."""
    return {"status": "healthy", "service": "Shared Expense Ledger"}


# =============================================================================
# Run with: python main.py
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
