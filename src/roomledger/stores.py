"""
Abstract interfaces for the external stores the ledger talks to.

The ledger never talks to a database directly. Both backends (the local
SQLite database and the hosted Supabase tables) implement these three
interfaces. Implementations raise UpstreamUnavailableError when the backend
fails and otherwise return plain domain models.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from .models import Expense, Member, SettlementRecord, SettlementStatus


class ExpenseStore(ABC):
    """Read-mostly source of shared expenses."""

    @abstractmethod
    def list_expenses(self) -> list[Expense]:
        """Return every expense, newest first."""
        pass

    @abstractmethod
    def create_expense(self, expense: Expense) -> Expense:
        """Persist a new expense and return it as stored."""
        pass

    @abstractmethod
    def delete_expense(self, expense_id: str) -> bool:
        """
        Delete an expense.

        Returns:
            True if a row was removed
        """
        pass


class IdentityResolver(ABC):
    """Household roster and account lookup."""

    @abstractmethod
    def resolve(self, handle: str) -> Member | None:
        """
        Look up a registered account by email or handle.

        Returns:
            The member with a non-null ``account_id``, or None when the handle
            does not belong to a registered account
        """
        pass

    @abstractmethod
    def list_members(self) -> list[Member]:
        """Return the household roster."""
        pass


class SettlementStore(ABC):
    """Table of settlement rows keyed by id."""

    @abstractmethod
    def insert_record(self, record: SettlementRecord) -> SettlementRecord:
        """Insert one row and return it as stored."""
        pass

    @abstractmethod
    def get_record(
        self, owner_account_id: str, transaction_group_id: str
    ) -> SettlementRecord | None:
        """Return the row an account owns in a group, if any."""
        pass

    @abstractmethod
    def list_group(self, transaction_group_id: str) -> list[SettlementRecord]:
        """Return every row of a group (empty when the group is unknown)."""
        pass

    @abstractmethod
    def list_by_owner(self, owner_account_id: str) -> list[SettlementRecord]:
        """Return the rows owned by an account, newest first."""
        pass

    @abstractmethod
    def list_by_status(self, status: SettlementStatus) -> list[SettlementRecord]:
        """Return every row in the given status."""
        pass

    @abstractmethod
    def update_group_status(
        self,
        transaction_group_id: str,
        status: SettlementStatus,
        settled_at: datetime | None,
    ) -> list[SettlementRecord]:
        """
        Set status and settled_at on every row of a group in one write.

        Returns:
            The updated rows (empty when the group is unknown)
        """
        pass

    @abstractmethod
    def delete_group(self, transaction_group_id: str) -> int:
        """
        Delete every row of a group.

        Returns:
            Number of rows removed
        """
        pass
