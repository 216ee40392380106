"""Service layer that composes the stores, the ledger and the state machine.

This is the entry point request handlers and the CLI call. Participants are
resolved against the roster here, once, and the acting account is always an
explicit argument.
"""

import logging
from datetime import date
from decimal import Decimal

from .balances import compute_balances, summarize_expenses
from .config import Settings
from .exceptions import (
    ConfigurationError,
    PermissionDeniedError,
    TransitionNotAllowedError,
    ValidationError,
)
from .ledger import DEFAULT_MAX_SETTLEMENT_AMOUNT, SettlementLedger, validate_amount
from .models import (
    BalanceLine,
    Expense,
    ExpenseSummary,
    Member,
    ParticipantRef,
    SettlementGroup,
    SettlementStatus,
)
from .money import is_zero
from .protocol import (
    Role,
    parse_status,
    role_of,
    summarize_pair,
    validate_creation,
    validate_transition,
)
from .stores import ExpenseStore, IdentityResolver, SettlementStore

logger = logging.getLogger(__name__)


def open_backend(settings: Settings):
    """
    Open the store backend named in the settings.

    Returns:
        An object implementing ExpenseStore, IdentityResolver and SettlementStore

    Raises:
        ConfigurationError: If the hosted backend is selected without credentials
    """
    if settings.store_backend == "supabase":
        if not settings.supabase_url or not settings.supabase_api_key:
            raise ConfigurationError(
                "SUPABASE_URL and SUPABASE_API_KEY are required for the supabase backend"
            )
        from .clients.supabase import SupabaseClient

        return SupabaseClient(
            settings.supabase_url,
            settings.supabase_api_key,
            timeout=settings.request_timeout,
        )

    from .db import Database

    return Database(settings.database_path)


class SettlementService:
    """Balances and settlement actions for one household."""

    def __init__(
        self,
        expenses: ExpenseStore,
        settlements: SettlementStore,
        resolver: IdentityResolver,
        max_amount: Decimal = DEFAULT_MAX_SETTLEMENT_AMOUNT,
    ):
        """Initialize the settlement service."""
        self.expenses = expenses
        self.settlements = settlements
        self.resolver = resolver
        self.max_amount = max_amount
        self.ledger = SettlementLedger(settlements, resolver, max_amount=max_amount)

    @classmethod
    def from_backend(cls, backend, settings: Settings | None = None) -> "SettlementService":
        """Build a service whose three stores are the same backend object."""
        max_amount = (
            settings.max_settlement_amount if settings else DEFAULT_MAX_SETTLEMENT_AMOUNT
        )
        return cls(backend, backend, backend, max_amount=max_amount)

    # ========================================================================
    # Participants
    # ========================================================================

    def members(self) -> list[Member]:
        return self.resolver.list_members()

    def roster(self) -> list[ParticipantRef]:
        """Participant references for every roster member."""
        return [member.ref() for member in self.members()]

    def resolve_participant(self, handle: str) -> ParticipantRef:
        """
        Resolve a name, email or account id to a participant.

        Unknown handles become participants without an account.
        """
        handle = handle.strip()
        folded = handle.casefold()
        for member in self.members():
            if (
                member.account_id == handle
                or (member.email and member.email.casefold() == folded)
                or member.name.casefold() == folded
            ):
                return member.ref()
        return ParticipantRef(name=handle, email=handle if "@" in handle else None)

    def acting_participant(self, handle: str) -> ParticipantRef:
        """
        Resolve the account performing an action.

        Raises:
            ValidationError: If the handle is not a member with an account
        """
        participant = self.resolve_participant(handle)
        if participant.account_id is None:
            raise ValidationError(f"{handle} is not a registered account")
        return participant

    def _upi_for(self, participant: ParticipantRef) -> str | None:
        for member in self.members():
            if member.name == participant.name:
                return member.upi_id
        return None

    # ========================================================================
    # Expenses and balances
    # ========================================================================

    def add_expense(
        self,
        description: str,
        amount: Decimal | int | float | str,
        paid_by: str,
        sharers: list[str] | None = None,
        category: str = "General",
        on: date | None = None,
    ) -> Expense:
        """
        Validate and store a new shared expense.

        Raises:
            ValidationError: If the amount is invalid, or there are no sharers
                and no roster to fall back to
        """
        value = validate_amount(amount, self.max_amount)
        if not description.strip():
            raise ValidationError("Expense description is required")

        sharer_refs = [self.resolve_participant(s) for s in sharers or []]
        if not sharer_refs and not self.members():
            raise ValidationError("Expense has no sharers and the roster is empty")

        expense = Expense(
            description=description.strip(),
            amount=value,
            paid_by=self.resolve_participant(paid_by),
            date=on or date.today(),
            category=category,
            sharers=sharer_refs,
        )
        stored = self.expenses.create_expense(expense)
        logger.info(f"Added expense {stored.id}: {stored.description} {stored.amount}")
        return stored

    def delete_expense(self, expense_id: str) -> bool:
        deleted = self.expenses.delete_expense(expense_id)
        if deleted:
            logger.info(f"Deleted expense {expense_id}")
        return deleted

    def list_expenses(self) -> list[Expense]:
        return self.expenses.list_expenses()

    def compute_balances(self) -> dict[ParticipantRef, Decimal]:
        """Recompute every balance from expenses and settled groups."""
        return compute_balances(
            self.expenses.list_expenses(),
            self.settlements.list_by_status(SettlementStatus.SETTLED),
            self.roster(),
        )

    def expense_summary(self) -> ExpenseSummary:
        return summarize_expenses(self.expenses.list_expenses())

    def balance_overview(self, acting: ParticipantRef) -> list[BalanceLine]:
        """
        Balances for everyone, each tagged with the settlement state between
        that participant and the acting account.
        """
        balances = self.compute_balances()
        groups = self.groups_for(acting)
        return [
            BalanceLine(
                participant=participant,
                balance=balance,
                settlement_status=(
                    None
                    if participant == acting
                    else summarize_pair(groups, acting, participant)
                ),
            )
            for participant, balance in balances.items()
        ]

    # ========================================================================
    # Creating settlement groups
    # ========================================================================

    def _create(
        self,
        acting: ParticipantRef,
        debtor: ParticipantRef,
        creditor: ParticipantRef,
        amount: Decimal | int | float | str,
        status: SettlementStatus,
        upi_ref: str | None,
    ) -> str:
        role = Role.DEBTOR if acting == debtor else Role.CREDITOR
        validate_creation(status, role)
        return self.ledger.create_settlement_group(
            acting,
            debtor,
            creditor,
            amount,
            initial_status=status,
            upi_ref=upi_ref if upi_ref is not None else self._upi_for(creditor),
        )

    def request_payment(
        self,
        acting: ParticipantRef,
        debtor: ParticipantRef,
        amount: Decimal | int | float | str,
        upi_ref: str | None = None,
    ) -> str:
        """Creditor asks the debtor to pay. Creates a pending group."""
        return self._create(
            acting, debtor, acting, amount, SettlementStatus.PENDING, upi_ref
        )

    def record_obligation(
        self,
        acting: ParticipantRef,
        creditor: ParticipantRef,
        amount: Decimal | int | float | str,
        upi_ref: str | None = None,
    ) -> str:
        """Debtor records that they owe the creditor. Creates a pending group."""
        return self._create(
            acting, acting, creditor, amount, SettlementStatus.PENDING, upi_ref
        )

    def record_payment(
        self,
        acting: ParticipantRef,
        creditor: ParticipantRef,
        amount: Decimal | int | float | str,
        upi_ref: str | None = None,
    ) -> str:
        """Debtor records a payment already made; the creditor must confirm it."""
        return self._create(
            acting, acting, creditor, amount, SettlementStatus.DEBTOR_PAID, upi_ref
        )

    def settle_instantly(
        self,
        acting: ParticipantRef,
        debtor: ParticipantRef,
        amount: Decimal | int | float | str,
        upi_ref: str | None = None,
    ) -> str:
        """Creditor records money already received. Creates a settled group."""
        return self._create(
            acting, debtor, acting, amount, SettlementStatus.SETTLED, upi_ref
        )

    # ========================================================================
    # Advancing settlement groups
    # ========================================================================

    def transition(
        self,
        acting: ParticipantRef,
        transaction_group_id: str,
        new_status: SettlementStatus | str,
    ) -> SettlementGroup:
        """
        Move a group to a new status on behalf of one of its parties.

        Raises:
            InvalidStatusError: If new_status is not a recognized state
            NotFoundError: If the group has no rows
            PermissionDeniedError: If the acting account owns no row in the group
            TransitionNotAllowedError: If the acting role may not make the move
                from the status of some row
            PartialWriteError: If the rows still disagree after the update
        """
        status = parse_status(new_status)
        group = self.ledger.get_group(transaction_group_id)

        role = role_of(group, acting.account_id)
        if role is None:
            raise PermissionDeniedError(
                f"{acting.name} is not a party to settlement {transaction_group_id}"
            )
        for row_status in group.statuses:
            validate_transition(row_status, status, role)

        self.ledger.update_group_status(transaction_group_id, status)
        return self.ledger.get_group(transaction_group_id)

    def mark_debtor_paid(
        self, acting: ParticipantRef, transaction_group_id: str
    ) -> SettlementGroup:
        """Debtor asserts they have paid."""
        return self.transition(acting, transaction_group_id, SettlementStatus.DEBTOR_PAID)

    def confirm_receipt(
        self, acting: ParticipantRef, transaction_group_id: str
    ) -> SettlementGroup:
        """Creditor confirms the money arrived. Repeating it is harmless."""
        return self.transition(acting, transaction_group_id, SettlementStatus.SETTLED)

    def cancel(self, acting: ParticipantRef, transaction_group_id: str) -> int:
        """
        Delete an unsettled group for both parties.

        Returns:
            Number of rows removed

        Raises:
            NotFoundError: If the group has no rows
            PermissionDeniedError: If the acting account owns no row in the group
            TransitionNotAllowedError: If any row of the group is already settled
        """
        group = self.ledger.get_group(transaction_group_id)
        if role_of(group, acting.account_id) is None:
            raise PermissionDeniedError(
                f"{acting.name} is not a party to settlement {transaction_group_id}"
            )
        if SettlementStatus.SETTLED in group.statuses:
            message = f"Settlement {transaction_group_id} is already settled"
            if not group.is_consistent():
                message += " for one party; repair it instead"
            raise TransitionNotAllowedError(
                SettlementStatus.SETTLED.value, "deleted", message
            )
        return self.ledger.delete_settlement_group(transaction_group_id)

    def repair(self, acting: ParticipantRef, transaction_group_id: str) -> SettlementGroup:
        """
        Bring a group a failed write left behind back to one consistent state.

        Rows that disagree on status are moved to the furthest status any of
        them reached, then a missing mirrored row is written if the other
        party has an account. A healthy group is returned unchanged.

        Raises:
            NotFoundError: If the group has no rows
            PermissionDeniedError: If the acting account owns no row in the group
            PartialWriteError: If the group still could not be completed
        """
        group = self.ledger.get_group(transaction_group_id)
        if role_of(group, acting.account_id) is None:
            raise PermissionDeniedError(
                f"{acting.name} is not a party to settlement {transaction_group_id}"
            )
        self.ledger.repair_group_status(transaction_group_id)
        return self.ledger.repair_mirror(transaction_group_id)

    # ========================================================================
    # Views
    # ========================================================================

    def groups_for(self, acting: ParticipantRef) -> list[SettlementGroup]:
        if acting.account_id is None:
            return []
        return self.ledger.list_groups_for(acting.account_id)

    def pending_groups(self, acting: ParticipantRef) -> list[SettlementGroup]:
        """Groups still awaiting payment or confirmation, or needing repair."""
        return [
            g
            for g in self.groups_for(acting)
            if not g.is_consistent() or g.status is not SettlementStatus.SETTLED
        ]

    def settlement_history(self, acting: ParticipantRef) -> list[SettlementGroup]:
        """Settled groups, most recently settled first."""
        settled = [
            g
            for g in self.groups_for(acting)
            if g.is_consistent() and g.status is SettlementStatus.SETTLED
        ]
        return sorted(
            settled,
            key=lambda g: g.settled_at or g.records[0].created_at,
            reverse=True,
        )

    def outstanding_with(
        self, acting: ParticipantRef, other: ParticipantRef
    ) -> Decimal | None:
        """
        Amount the acting participant could settle with ``other`` right now.

        Only a debtor/creditor pair with opposite-signed balances has
        something to settle; the amount is the smaller of the two.

        Returns:
            Positive amount, or None when there is nothing to settle
        """
        balances = self.compute_balances()
        mine = balances.get(acting)
        theirs = balances.get(other)
        if mine is None or theirs is None or is_zero(mine) or is_zero(theirs):
            return None
        if (mine > 0) == (theirs > 0):
            return None
        return min(abs(mine), abs(theirs))
