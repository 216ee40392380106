"""Tests for the SQLite store."""

import sqlite3
from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from roomledger.db import Database
from roomledger.exceptions import UpstreamUnavailableError
from roomledger.models import (
    Expense,
    Member,
    ParticipantRef,
    SettlementRecord,
    SettlementStatus,
    SettlementType,
)


class TestMembers:
    """Tests for the roster table."""

    def test_list_members_in_insertion_order(self, household):
        names = [member.name for member in household.list_members()]

        assert names == ["Alice", "Bob", "Carol"]

    def test_emails_are_stored_lowercase(self, db):
        db.add_member(Member(name="Dana", email="Dana@Example.COM", account_id="acct-dana"))

        assert db.list_members()[0].email == "dana@example.com"

    @pytest.mark.parametrize("handle", ["ALICE@example.com", "acct-alice", "Alice"])
    def test_resolve_by_email_account_or_name(self, household, handle):
        member = household.resolve(handle)

        assert member is not None
        assert member.account_id == "acct-alice"
        assert member.upi_id == "alice@upi"

    def test_resolve_skips_members_without_account(self, household):
        assert household.resolve("Carol") is None
        assert household.resolve("nobody@example.com") is None

    def test_duplicate_name_is_a_store_error(self, household):
        with pytest.raises(UpstreamUnavailableError):
            household.add_member(Member(name="Alice"))


class TestExpenses:
    """Tests for the expenses table."""

    def test_round_trip_keeps_decimal_and_sharers(self, db, alice, bob, carol):
        expense = Expense(
            description="Groceries",
            amount=Decimal("123.45"),
            paid_by=alice,
            date=date(2024, 5, 1),
            category="Food",
            sharers=[alice, bob, carol],
        )
        db.create_expense(expense)

        (stored,) = db.list_expenses()

        assert stored.amount == Decimal("123.45")
        assert stored.paid_by.account_id == "acct-alice"
        assert stored.sharers == [alice, bob, carol]
        assert stored.sharers[2].account_id is None

    def test_newest_first(self, db, alice):
        for day in (1, 3, 2):
            db.create_expense(
                Expense(
                    description=f"Day {day}",
                    amount=Decimal("1"),
                    paid_by=alice,
                    date=date(2024, 5, day),
                )
            )

        assert [e.date.day for e in db.list_expenses()] == [3, 2, 1]

    def test_delete_expense(self, db, alice):
        expense = db.create_expense(
            Expense(description="Tea", amount=Decimal("20"), paid_by=alice, date=date.today())
        )

        assert db.delete_expense(expense.id)
        assert not db.delete_expense(expense.id)
        assert db.list_expenses() == []


class TestSettlements:
    """Tests for the settlements table."""

    def record(self, owner, counterparty, settlement_type, group_id="g1"):
        return SettlementRecord(
            transaction_group_id=group_id,
            owner=owner,
            counterparty=counterparty,
            amount=Decimal("99.99"),
            type=settlement_type,
            created_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
        )

    def test_get_record_by_owner_and_group(self, db, alice, bob):
        db.insert_record(self.record(alice, bob, SettlementType.OWED))

        record = db.get_record("acct-alice", "g1")

        assert record is not None
        assert record.amount == Decimal("99.99")
        assert record.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        assert record.counterparty.account_id == "acct-bob"
        assert db.get_record("acct-bob", "g1") is None

    def test_one_row_per_owner_per_group(self, db, alice, bob):
        db.insert_record(self.record(alice, bob, SettlementType.OWED))

        with pytest.raises(UpstreamUnavailableError):
            db.insert_record(self.record(alice, bob, SettlementType.OWED))

    def test_group_update_touches_every_row(self, db, alice, bob):
        db.insert_record(self.record(alice, bob, SettlementType.OWED))
        db.insert_record(self.record(bob, alice, SettlementType.OWES))
        db.insert_record(self.record(alice, bob, SettlementType.OWED, group_id="g2"))
        settled_at = datetime(2024, 5, 2, tzinfo=UTC)

        rows = db.update_group_status("g1", SettlementStatus.SETTLED, settled_at)

        assert len(rows) == 2
        assert all(row.settled_at == settled_at for row in rows)
        assert db.get_record("acct-alice", "g2").status is SettlementStatus.PENDING
        assert len(db.list_by_status(SettlementStatus.SETTLED)) == 2

    def test_delete_group(self, db, alice, bob):
        db.insert_record(self.record(alice, bob, SettlementType.OWED))
        db.insert_record(self.record(bob, alice, SettlementType.OWES))

        assert db.delete_group("g1") == 2
        assert db.list_by_owner("acct-alice") == []

    def test_status_is_constrained(self, db, alice, bob):
        db.insert_record(self.record(alice, bob, SettlementType.OWED))

        with pytest.raises(sqlite3.IntegrityError):
            db.conn.execute("UPDATE settlements SET status = 'paid'")


class TestConnectionErrors:
    """Tests for storage failures."""

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(UpstreamUnavailableError):
            Database(tmp_path / "missing-dir" / "x.db")
