"""Pydantic domain models for RoomLedger."""

import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .exceptions import PartialWriteError


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ============================================================================
# Participants
# ============================================================================


class ParticipantRef(BaseModel):
    """A household participant, resolved once at the boundary.

    Identity is the canonical display name. ``account_id`` is set when the
    participant has a registered account; ``email`` is the handle used to
    look one up.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    account_id: str | None = None
    email: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Participant name must not be empty")
        return value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ParticipantRef):
            return NotImplemented
        return self.name == other.name

    def __hash__(self) -> int:
        return hash(self.name)

    def __str__(self) -> str:
        return self.name


class Member(BaseModel):
    """A roster entry as supplied by the identity resolver."""

    name: str
    email: str | None = None
    account_id: str | None = None
    upi_id: str | None = None

    def ref(self) -> ParticipantRef:
        """Participant reference for this member."""
        return ParticipantRef(name=self.name, account_id=self.account_id, email=self.email)


# ============================================================================
# Expenses
# ============================================================================


class Expense(BaseModel):
    """A shared expense. Immutable once created except for deletion."""

    id: str = Field(default_factory=_new_id)
    description: str
    amount: Decimal
    paid_by: ParticipantRef
    date: date
    category: str = "General"
    sharers: list[ParticipantRef] = Field(default_factory=list)

    @field_validator("sharers")
    @classmethod
    def _dedupe_sharers(cls, value: list[ParticipantRef]) -> list[ParticipantRef]:
        # Ordered set: first occurrence wins
        return list(dict.fromkeys(value))


class ExpenseSummary(BaseModel):
    """Spending totals for a set of expenses."""

    total: Decimal
    by_category: dict[str, Decimal]
    by_month: dict[str, Decimal]  # "YYYY-MM" -> total


# ============================================================================
# Settlements
# ============================================================================


class SettlementStatus(StrEnum):
    """Lifecycle state shared by every row of a settlement group."""

    PENDING = "pending"
    DEBTOR_PAID = "debtor_paid"
    SETTLED = "settled"


class SettlementType(StrEnum):
    """Side of the transaction relative to the row owner."""

    OWES = "owes"  # owner is the debtor
    OWED = "owed"  # owner is the creditor

    def mirrored(self) -> "SettlementType":
        return SettlementType.OWED if self is SettlementType.OWES else SettlementType.OWES


class SettlementRecord(BaseModel):
    """One participant's row of a settlement group."""

    id: str = Field(default_factory=_new_id)
    transaction_group_id: str
    owner: ParticipantRef
    counterparty: ParticipantRef
    amount: Decimal
    type: SettlementType
    status: SettlementStatus = SettlementStatus.PENDING
    upi_ref: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    settled_at: datetime | None = None

    @property
    def debtor(self) -> ParticipantRef:
        return self.owner if self.type is SettlementType.OWES else self.counterparty

    @property
    def creditor(self) -> ParticipantRef:
        return self.owner if self.type is SettlementType.OWED else self.counterparty


class SettlementGroup(BaseModel):
    """One debt-clearing event between two participants.

    Holds the debtor's row and the creditor's row. A group whose
    counterparty has no account has only one of the two. Every row must
    share status and amount; a group that does not is reported as a
    partial write.
    """

    transaction_group_id: str
    debtor_row: SettlementRecord | None = None
    creditor_row: SettlementRecord | None = None

    @model_validator(mode="after")
    def _check_rows(self) -> "SettlementGroup":
        if self.debtor_row is None and self.creditor_row is None:
            raise ValueError("A settlement group needs at least one row")
        if self.debtor_row is not None and self.debtor_row.type is not SettlementType.OWES:
            raise ValueError("debtor_row must have type 'owes'")
        if self.creditor_row is not None and self.creditor_row.type is not SettlementType.OWED:
            raise ValueError("creditor_row must have type 'owed'")
        for row in self.records:
            if row.transaction_group_id != self.transaction_group_id:
                raise ValueError(
                    f"Row {row.id} belongs to group {row.transaction_group_id}, "
                    f"not {self.transaction_group_id}"
                )
        return self

    @classmethod
    def from_records(cls, records: list[SettlementRecord]) -> "SettlementGroup":
        """
        Build the aggregate from the rows stored for one group id.

        Raises:
            ValueError: If no rows are given
            PartialWriteError: If the rows cannot form one group
        """
        if not records:
            raise ValueError("Cannot build a settlement group from zero rows")

        group_id = records[0].transaction_group_id
        by_type: dict[SettlementType, SettlementRecord] = {}
        for record in records:
            if record.transaction_group_id != group_id or record.type in by_type:
                raise PartialWriteError(
                    group_id,
                    f"Settlement group {group_id} has conflicting rows",
                    mixed_status=True,
                )
            by_type[record.type] = record

        return cls(
            transaction_group_id=group_id,
            debtor_row=by_type.get(SettlementType.OWES),
            creditor_row=by_type.get(SettlementType.OWED),
        )

    @property
    def records(self) -> list[SettlementRecord]:
        return [row for row in (self.debtor_row, self.creditor_row) if row is not None]

    @property
    def is_mirrored(self) -> bool:
        return self.debtor_row is not None and self.creditor_row is not None

    @property
    def statuses(self) -> set[SettlementStatus]:
        """Distinct statuses across the rows; more than one means a mixed group."""
        return {row.status for row in self.records}

    def is_consistent(self) -> bool:
        """True when every row carries the same status and amount."""
        rows = self.records
        return all(
            row.status == rows[0].status and row.amount == rows[0].amount
            for row in rows
        )

    def _require_consistent(self) -> SettlementRecord:
        if not self.is_consistent():
            raise PartialWriteError(
                self.transaction_group_id,
                f"Settlement group {self.transaction_group_id} has rows with "
                f"different status or amount",
                mixed_status=True,
            )
        return self.records[0]

    @property
    def status(self) -> SettlementStatus:
        return self._require_consistent().status

    @property
    def amount(self) -> Decimal:
        return self._require_consistent().amount

    @property
    def debtor(self) -> ParticipantRef:
        if self.debtor_row is not None:
            return self.debtor_row.owner
        assert self.creditor_row is not None
        return self.creditor_row.counterparty

    @property
    def creditor(self) -> ParticipantRef:
        if self.creditor_row is not None:
            return self.creditor_row.owner
        assert self.debtor_row is not None
        return self.debtor_row.counterparty

    @property
    def settled_at(self) -> datetime | None:
        return self._require_consistent().settled_at

    def row_owned_by(self, account_id: str) -> SettlementRecord | None:
        """Return the row whose owner has this account id, if any."""
        for row in self.records:
            if row.owner.account_id == account_id:
                return row
        return None


class BalanceLine(BaseModel):
    """One row of the balance overview shown to an account."""

    participant: ParticipantRef
    balance: Decimal
    settlement_status: SettlementStatus | None = None  # between viewer and participant

    @property
    def is_creditor(self) -> bool:
        return self.balance > 0

    @property
    def is_debtor(self) -> bool:
        return self.balance < 0
