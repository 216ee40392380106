"""SQLite database operations for RoomLedger."""

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path

from pydantic import TypeAdapter

from .exceptions import UpstreamUnavailableError
from .models import (
    Expense,
    Member,
    ParticipantRef,
    SettlementRecord,
    SettlementStatus,
    SettlementType,
)
from .stores import ExpenseStore, IdentityResolver, SettlementStore

_PARTICIPANTS = TypeAdapter(list[ParticipantRef])

_SETTLEMENT_COLUMNS = """
    id, transaction_group_id, owner_account_id, owner_name, owner_email,
    counterparty_name, counterparty_email, counterparty_account_id,
    amount, type, status, upi_ref, created_at, settled_at
"""


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    """Re-raise sqlite failures as UpstreamUnavailableError."""
    try:
        yield
    except sqlite3.Error as e:
        raise UpstreamUnavailableError(f"SQLite error while {action}: {e}") from e


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class Database(ExpenseStore, IdentityResolver, SettlementStore):
    """SQLite database manager implementing every RoomLedger store."""

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        with _store_errors("opening the database"):
            self.conn = sqlite3.connect(str(db_path))
            self.conn.row_factory = sqlite3.Row
            self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Household roster
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                email TEXT,
                account_id TEXT UNIQUE,
                upi_id TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Shared expenses
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS expenses (
                id TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                amount TEXT NOT NULL,
                paid_by TEXT NOT NULL,
                date DATE NOT NULL,
                category TEXT NOT NULL,
                sharers TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Settlement rows, one per owning account per group
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS settlements (
                id TEXT PRIMARY KEY,
                transaction_group_id TEXT NOT NULL,
                owner_account_id TEXT NOT NULL,
                owner_name TEXT NOT NULL,
                owner_email TEXT,
                counterparty_name TEXT NOT NULL,
                counterparty_email TEXT,
                counterparty_account_id TEXT,
                amount TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('owes', 'owed')),
                status TEXT NOT NULL
                    CHECK (status IN ('pending', 'debtor_paid', 'settled')),
                upi_ref TEXT,
                created_at TIMESTAMP NOT NULL,
                settled_at TIMESTAMP,
                UNIQUE (owner_account_id, transaction_group_id)
            )
        """
        )
        cursor.execute(
            """
            CREATE INDEX IF NOT EXISTS idx_settlements_group
            ON settlements (transaction_group_id)
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Member operations
    # ========================================================================

    def add_member(self, member: Member) -> Member:
        """Add a member to the roster."""
        with _store_errors("adding a member"), self.conn:
            self.conn.execute(
                """
                INSERT INTO members (name, email, account_id, upi_id)
                VALUES (?, ?, ?, ?)
                """,
                (
                    member.name,
                    member.email.lower() if member.email else None,
                    member.account_id,
                    member.upi_id,
                ),
            )
        return member

    def list_members(self) -> list[Member]:
        """Return the roster in the order members were added."""
        with _store_errors("listing members"):
            rows = self.conn.execute(
                "SELECT name, email, account_id, upi_id FROM members ORDER BY id"
            ).fetchall()
        return [self._row_to_member(row) for row in rows]

    def resolve(self, handle: str) -> Member | None:
        """Find a member with an account by email, account id or name."""
        with _store_errors("resolving a participant"):
            row = self.conn.execute(
                """
                SELECT name, email, account_id, upi_id FROM members
                WHERE account_id IS NOT NULL
                  AND (lower(email) = lower(?) OR account_id = ? OR name = ?)
                ORDER BY id
                LIMIT 1
                """,
                (handle, handle, handle),
            ).fetchone()
        return self._row_to_member(row) if row else None

    @staticmethod
    def _row_to_member(row: sqlite3.Row) -> Member:
        return Member(
            name=row["name"],
            email=row["email"],
            account_id=row["account_id"],
            upi_id=row["upi_id"],
        )

    # ========================================================================
    # Expense operations
    # ========================================================================

    def create_expense(self, expense: Expense) -> Expense:
        """Save an expense."""
        with _store_errors("saving an expense"), self.conn:
            self.conn.execute(
                """
                INSERT INTO expenses (
                    id, description, amount, paid_by, date, category, sharers
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    expense.id,
                    expense.description,
                    str(expense.amount),
                    expense.paid_by.model_dump_json(),
                    expense.date.isoformat(),
                    expense.category,
                    _PARTICIPANTS.dump_json(expense.sharers).decode(),
                ),
            )
        return expense

    def list_expenses(self) -> list[Expense]:
        """Return every expense, newest first."""
        with _store_errors("listing expenses"):
            rows = self.conn.execute(
                """
                SELECT id, description, amount, paid_by, date, category, sharers
                FROM expenses
                ORDER BY date DESC, created_at DESC
                """
            ).fetchall()
        return [
            Expense(
                id=row["id"],
                description=row["description"],
                amount=Decimal(row["amount"]),
                paid_by=ParticipantRef.model_validate_json(row["paid_by"]),
                date=date.fromisoformat(row["date"]),
                category=row["category"],
                sharers=_PARTICIPANTS.validate_json(row["sharers"]),
            )
            for row in rows
        ]

    def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense by id."""
        with _store_errors("deleting an expense"), self.conn:
            cursor = self.conn.execute(
                "DELETE FROM expenses WHERE id = ?", (expense_id,)
            )
        return cursor.rowcount > 0

    # ========================================================================
    # Settlement operations
    # ========================================================================

    def insert_record(self, record: SettlementRecord) -> SettlementRecord:
        """Insert one settlement row."""
        with _store_errors("saving a settlement"), self.conn:
            self.conn.execute(
                f"""
                INSERT INTO settlements ({_SETTLEMENT_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.transaction_group_id,
                    record.owner.account_id,
                    record.owner.name,
                    record.owner.email,
                    record.counterparty.name,
                    record.counterparty.email,
                    record.counterparty.account_id,
                    str(record.amount),
                    record.type.value,
                    record.status.value,
                    record.upi_ref,
                    _timestamp(record.created_at),
                    _timestamp(record.settled_at),
                ),
            )
        return record

    def get_record(
        self, owner_account_id: str, transaction_group_id: str
    ) -> SettlementRecord | None:
        """Get the row an account owns in a group."""
        with _store_errors("reading a settlement"):
            row = self.conn.execute(
                f"""
                SELECT {_SETTLEMENT_COLUMNS} FROM settlements
                WHERE owner_account_id = ? AND transaction_group_id = ?
                """,
                (owner_account_id, transaction_group_id),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def list_group(self, transaction_group_id: str) -> list[SettlementRecord]:
        """Get every row of a group."""
        with _store_errors("reading a settlement group"):
            rows = self.conn.execute(
                f"""
                SELECT {_SETTLEMENT_COLUMNS} FROM settlements
                WHERE transaction_group_id = ?
                ORDER BY type DESC
                """,
                (transaction_group_id,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_by_owner(self, owner_account_id: str) -> list[SettlementRecord]:
        """Get the rows an account owns, newest first."""
        with _store_errors("listing settlements"):
            rows = self.conn.execute(
                f"""
                SELECT {_SETTLEMENT_COLUMNS} FROM settlements
                WHERE owner_account_id = ?
                ORDER BY created_at DESC
                """,
                (owner_account_id,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def list_by_status(self, status: SettlementStatus) -> list[SettlementRecord]:
        """Get every row in a status."""
        with _store_errors("listing settlements"):
            rows = self.conn.execute(
                f"""
                SELECT {_SETTLEMENT_COLUMNS} FROM settlements
                WHERE status = ?
                ORDER BY created_at
                """,
                (status.value,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def update_group_status(
        self,
        transaction_group_id: str,
        status: SettlementStatus,
        settled_at: datetime | None,
    ) -> list[SettlementRecord]:
        """Update every row of a group in a single transaction."""
        with _store_errors("updating a settlement group"), self.conn:
            self.conn.execute(
                """
                UPDATE settlements SET status = ?, settled_at = ?
                WHERE transaction_group_id = ?
                """,
                (status.value, _timestamp(settled_at), transaction_group_id),
            )
        return self.list_group(transaction_group_id)

    def delete_group(self, transaction_group_id: str) -> int:
        """Delete every row of a group."""
        with _store_errors("deleting a settlement group"), self.conn:
            cursor = self.conn.execute(
                "DELETE FROM settlements WHERE transaction_group_id = ?",
                (transaction_group_id,),
            )
        return cursor.rowcount

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> SettlementRecord:
        created_at = _parse_timestamp(row["created_at"])
        assert created_at is not None
        return SettlementRecord(
            id=row["id"],
            transaction_group_id=row["transaction_group_id"],
            owner=ParticipantRef(
                name=row["owner_name"],
                account_id=row["owner_account_id"],
                email=row["owner_email"],
            ),
            counterparty=ParticipantRef(
                name=row["counterparty_name"],
                account_id=row["counterparty_account_id"],
                email=row["counterparty_email"],
            ),
            amount=Decimal(row["amount"]),
            type=SettlementType(row["type"]),
            status=SettlementStatus(row["status"]),
            upi_ref=row["upi_ref"],
            created_at=created_at,
            settled_at=_parse_timestamp(row["settled_at"]),
        )
