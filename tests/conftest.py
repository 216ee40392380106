"""Shared fixtures for RoomLedger tests."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from roomledger.db import Database
from roomledger.models import (
    Member,
    ParticipantRef,
    SettlementRecord,
    SettlementStatus,
    SettlementType,
)


@pytest.fixture
def alice():
    return ParticipantRef(name="Alice", account_id="acct-alice", email="alice@example.com")


@pytest.fixture
def bob():
    return ParticipantRef(name="Bob", account_id="acct-bob", email="bob@example.com")


@pytest.fixture
def carol():
    return ParticipantRef(name="Carol")


@pytest.fixture
def db(tmp_path):
    """Empty SQLite database in a temp directory."""
    database = Database(tmp_path / "test.db")
    yield database
    database.close()


@pytest.fixture
def household(db):
    """Database with Alice and Bob registered and Carol on the roster only."""
    db.add_member(
        Member(
            name="Alice",
            email="alice@example.com",
            account_id="acct-alice",
            upi_id="alice@upi",
        )
    )
    db.add_member(
        Member(name="Bob", email="bob@example.com", account_id="acct-bob", upi_id="bob@upi")
    )
    db.add_member(Member(name="Carol"))
    return db


def _make_pair(
    group_id: str,
    debtor: ParticipantRef,
    creditor: ParticipantRef,
    amount: str,
    status: SettlementStatus = SettlementStatus.SETTLED,
) -> list[SettlementRecord]:
    """Build the debtor's and creditor's rows of one settlement group."""
    settled_at = datetime.now(UTC) if status is SettlementStatus.SETTLED else None
    return [
        SettlementRecord(
            transaction_group_id=group_id,
            owner=debtor,
            counterparty=creditor,
            amount=Decimal(amount),
            type=SettlementType.OWES,
            status=status,
            settled_at=settled_at,
        ),
        SettlementRecord(
            transaction_group_id=group_id,
            owner=creditor,
            counterparty=debtor,
            amount=Decimal(amount),
            type=SettlementType.OWED,
            status=status,
            settled_at=settled_at,
        ),
    ]


@pytest.fixture
def make_pair():
    """Factory for the two rows of a settlement group."""
    return _make_pair
