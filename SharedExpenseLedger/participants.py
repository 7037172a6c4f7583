"""
Participants Module

This module handles groups and the participants that belong to them.

Features:
    - Create a group with its participants
    - Validate group and participant names
    - Look up a group or a participant by ID
    - Edit a group: rename it, change its currency, add, rename or remove
      participants

Data Model:
    Group stored at: groups/{group_id}
    Fields:
        - group_id: string
        - name: string (2-50 characters)
        - currency: string (display symbol)
        - decimal_digits: int (minor-unit digits of the currency)
        - simplify_debts: bool (suggested vs. direct reimbursements)
        - information: string or None
        - participants: list of {participant_id, name}

Functions:
    create_group: Validate and persist a new group.
    get_group: Get a group by ID.
    update_group: Edit a group and its participants.
"""

from typing import Optional

from activities import ActivityType, log_activity
from ledger_store import ExpenseStore, NotFoundError
from utils import generate_id


NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50


class Participant:
    """
    Represents a participant of a group.

    Attributes:
        participant_id (str): Unique identifier for the participant.
        name (str): Display name, unique within the group.
    """

    def __init__(self, participant_id: str, name: str):
        self.participant_id = participant_id
        self.name = name

    def to_dict(self) -> dict:
        return {"participant_id": self.participant_id, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict) -> "Participant":
        return cls(participant_id=data.get("participant_id"), name=data.get("name"))

    def __repr__(self) -> str:
        return f"Participant(id='{self.participant_id}', name='{self.name}')"


class Group:
    """
    Represents a group sharing expenses.

    Attributes:
        group_id (str): Unique identifier for the group.
        name (str): Name of the group.
        participants (list[Participant]): Members of the group.
        currency (str): Currency symbol used for display.
        decimal_digits (int): Minor-unit digits of the currency (2 for cents).
        simplify_debts (bool): Suggest simplified reimbursements when True,
            direct per-expense reimbursements otherwise.
        information (str | None): Free-form notes.
    """

    def __init__(
        self,
        group_id: str,
        name: str,
        participants: list[Participant],
        currency: str = "$",
        decimal_digits: int = 2,
        simplify_debts: bool = True,
        information: Optional[str] = None
    ):
        self.group_id = group_id
        self.name = name
        self.participants = participants
        self.currency = currency
        self.decimal_digits = decimal_digits
        self.simplify_debts = simplify_debts
        self.information = information

    @property
    def participant_ids(self) -> set[str]:
        return {p.participant_id for p in self.participants}

    def get_participant(self, participant_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.participant_id == participant_id:
                return participant
        return None

    def to_dict(self) -> dict:
        """Convert group to dictionary for storage."""
        return {
            "group_id": self.group_id,
            "name": self.name,
            "currency": self.currency,
            "decimal_digits": self.decimal_digits,
            "simplify_debts": self.simplify_debts,
            "information": self.information,
            "participants": [p.to_dict() for p in self.participants]
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Group":
        """Create a Group instance from a dictionary."""
        return cls(
            group_id=data.get("group_id"),
            name=data.get("name"),
            participants=[Participant.from_dict(p) for p in data.get("participants", [])],
            currency=data.get("currency", "$"),
            decimal_digits=data.get("decimal_digits", 2),
            simplify_debts=data.get("simplify_debts", True),
            information=data.get("information")
        )

    def __repr__(self) -> str:
        return f"Group(id='{self.group_id}', name='{self.name}', participants={len(self.participants)})"


def _validate_name(value: str, field_name: str) -> str:
    """
    Validate a group or participant name and return it stripped.

    Raises:
        ValueError: If the name is not a string of 2-50 characters.
    """
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    value = value.strip()
    if not NAME_MIN_LENGTH <= len(value) <= NAME_MAX_LENGTH:
        raise ValueError(
            f"{field_name} must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters, got: '{value}'"
        )
    return value


def create_group(
    store: ExpenseStore,
    name: str,
    participant_names: list[str],
    currency: str = "$",
    decimal_digits: int = 2,
    simplify_debts: bool = True,
    information: Optional[str] = None
) -> Group:
    """
    Create a new group with its participants.

    Participant IDs are generated sequentially within the group
    (P001, P002, ...) in the order the names are given.

    Args:
        store: Backing expense store.
        name: Name of the group (2-50 characters).
        participant_names: Names of the members (at least one, unique).
        currency: Currency symbol for display.
        decimal_digits: Minor-unit digits of the currency.
        simplify_debts: Whether balances use simplified reimbursements.
        information: Optional notes.

    Returns:
        Group: The created group.

    Raises:
        ValueError: If input validation fails.
        RuntimeError: If the store is not available.
    """
    name = _validate_name(name, "name")

    if not participant_names:
        raise ValueError("a group needs at least one participant")

    participants = []
    seen_names = set()
    for index, participant_name in enumerate(participant_names, start=1):
        participant_name = _validate_name(participant_name, "participant name")
        if participant_name in seen_names:
            raise ValueError(f"duplicate participant name: '{participant_name}'")
        seen_names.add(participant_name)
        participants.append(Participant(participant_id=f"P{index:03d}", name=participant_name))

    if not isinstance(decimal_digits, int) or decimal_digits < 0:
        raise ValueError(f"decimal_digits must be a non-negative integer, got: {decimal_digits}")

    group = Group(
        group_id=generate_id(),
        name=name,
        participants=participants,
        currency=currency,
        decimal_digits=decimal_digits,
        simplify_debts=simplify_debts,
        information=information.strip() if information else None
    )
    return store.create_group(group)


def get_group(store: ExpenseStore, group_id: str) -> Group:
    """
    Get a group by ID.

    Raises:
        NotFoundError: If the group does not exist.
        RuntimeError: If the store is not available.
    """
    group = store.get_group(group_id)
    if group is None:
        raise NotFoundError(f"group {group_id} not found")
    return group


def _participant_number(participant_id: str) -> int:
    digits = participant_id[1:] if participant_id else ""
    return int(digits) if digits.isdigit() else 0


def _referenced_participant_ids(store: ExpenseStore, group_id: str) -> set[str]:
    referenced = set()
    for expense in store.get_group_expenses(group_id):
        referenced.update(p.participant_id for p in expense.paid_by)
        referenced.update(p.participant_id for p in expense.paid_for)
        for item in expense.items:
            referenced.update(item.participant_ids)
    return referenced


def update_group(
    store: ExpenseStore,
    group_id: str,
    name: str,
    participants: list[Participant],
    currency: Optional[str] = None,
    simplify_debts: Optional[bool] = None,
    information: Optional[str] = None,
    participant_id: Optional[str] = None
) -> Group:
    """
    Edit a group and its participants.

    `participants` is the complete new member list:
        - an entry with a known participant_id renames that participant
        - an entry without participant_id adds a participant, numbered after
          the highest existing ID
        - an existing participant missing from the list is removed

    decimal_digits cannot change, since stored amounts depend on it.

    Args:
        store: Backing expense store.
        group_id: Group to edit.
        name: New name of the group (2-50 characters).
        participants: New member list.
        currency: New currency symbol; unchanged when None.
        simplify_debts: New reimbursement mode; unchanged when None.
        information: New notes.
        participant_id: Participant making the change, for the activity log.

    Returns:
        Group: The updated group.

    Raises:
        NotFoundError: If the group does not exist.
        ValueError: If input validation fails, a participant ID is unknown,
            or a removed participant still appears in an expense.
        RuntimeError: If the store is not available.
    """
    group = get_group(store, group_id)
    name = _validate_name(name, "name")

    if not participants:
        raise ValueError("a group needs at least one participant")

    existing_ids = group.participant_ids
    next_number = max((_participant_number(pid) for pid in existing_ids), default=0) + 1

    updated_participants = []
    seen_names = set()
    kept_ids = set()
    for participant in participants:
        participant_name = _validate_name(participant.name, "participant name")
        if participant_name in seen_names:
            raise ValueError(f"duplicate participant name: '{participant_name}'")
        seen_names.add(participant_name)

        if participant.participant_id:
            if participant.participant_id not in existing_ids:
                raise ValueError(f"unknown participant: '{participant.participant_id}'")
            if participant.participant_id in kept_ids:
                raise ValueError(f"participant '{participant.participant_id}' is listed more than once")
            kept_ids.add(participant.participant_id)
            new_id = participant.participant_id
        else:
            new_id = f"P{next_number:03d}"
            next_number += 1
        updated_participants.append(Participant(participant_id=new_id, name=participant_name))

    removed_ids = existing_ids - kept_ids
    if removed_ids:
        still_used = sorted(removed_ids & _referenced_participant_ids(store, group_id))
        if still_used:
            raise ValueError(
                f"participants {', '.join(still_used)} appear in expenses and cannot be removed"
            )

    group.name = name
    group.participants = updated_participants
    if currency is not None:
        group.currency = currency
    if simplify_debts is not None:
        group.simplify_debts = simplify_debts
    group.information = information.strip() if information else None

    store.save_group(group)
    log_activity(store, group_id, ActivityType.UPDATE_GROUP, participant_id=participant_id)
    return group
