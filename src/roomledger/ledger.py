"""Settlement ledger: paired settlement rows and their group-wide lifecycle.

A settlement group is written as one row for the acting account and, when the
other party has a registered account, a mirrored row for them. Status changes
and deletes always address the whole group by its transaction group id.
"""

import logging
import uuid
from datetime import UTC, datetime
from decimal import Decimal

from .exceptions import (
    NotFoundError,
    PartialWriteError,
    UpstreamUnavailableError,
    ValidationError,
)
from .models import (
    Member,
    ParticipantRef,
    SettlementGroup,
    SettlementRecord,
    SettlementStatus,
    SettlementType,
)
from .money import ZERO, round_money, to_decimal
from .protocol import furthest_status, parse_status, validate_transition
from .stores import IdentityResolver, SettlementStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_SETTLEMENT_AMOUNT = Decimal("1000000")

# Writes of a group status before a mixed group is reported
UPDATE_ATTEMPTS = 2


def validate_amount(
    amount: Decimal | int | float | str,
    max_amount: Decimal = DEFAULT_MAX_SETTLEMENT_AMOUNT,
) -> Decimal:
    """
    Check an amount and round it to cents.

    The rounded value must be positive and no larger than ``max_amount``.

    Raises:
        ValidationError: If the amount is not numeric, not positive or too large
    """
    try:
        value = to_decimal(amount)
    except ValueError as e:
        raise ValidationError(str(e)) from e

    if not value.is_finite() or value <= ZERO:
        raise ValidationError(f"Amount must be positive, got {amount}")
    value = round_money(value)
    if value <= ZERO:
        raise ValidationError(f"Amount {amount} rounds to zero")
    if value > max_amount:
        raise ValidationError(f"Amount {value} exceeds the maximum of {max_amount}")
    return value


class SettlementLedger:
    """Manages settlement groups in a SettlementStore."""

    def __init__(
        self,
        store: SettlementStore,
        resolver: IdentityResolver | None = None,
        max_amount: Decimal = DEFAULT_MAX_SETTLEMENT_AMOUNT,
    ):
        """Initialize the ledger."""
        self.store = store
        self.resolver = resolver
        self.max_amount = max_amount

    # ========================================================================
    # Create
    # ========================================================================

    def create_settlement_group(
        self,
        acting: ParticipantRef,
        debtor: ParticipantRef,
        creditor: ParticipantRef,
        amount: Decimal | int | float | str,
        initial_status: SettlementStatus | str = SettlementStatus.PENDING,
        upi_ref: str | None = None,
    ) -> str:
        """
        Record a new debt-clearing event between debtor and creditor.

        Writes the acting participant's row first. If the other party resolves
        to a registered account, a mirrored row is written for them; otherwise
        the group stays single-sided.

        Args:
            acting: The participant performing the call (must have an account)
            debtor: Who pays
            creditor: Who receives
            amount: Positive amount
            initial_status: Status both rows start in
            upi_ref: Optional payment handle stored on every row

        Returns:
            The new transaction group id

        Raises:
            InvalidStatusError: If initial_status is not a recognized state
            ValidationError: If the amount or parties are invalid
            PartialWriteError: If the mirrored row could not be written
            UpstreamUnavailableError: If the primary write failed
        """
        status = parse_status(initial_status)
        value = validate_amount(amount, self.max_amount)

        if debtor == creditor:
            raise ValidationError("Debtor and creditor must be different participants")
        if acting.account_id is None:
            raise ValidationError(
                f"{acting.name} has no account and cannot record settlements"
            )
        if acting == debtor:
            own_type, other = SettlementType.OWES, creditor
        elif acting == creditor:
            own_type, other = SettlementType.OWED, debtor
        else:
            raise ValidationError(
                f"{acting.name} is neither the debtor nor the creditor of this settlement"
            )

        other_account = self._resolve_account(other, acting)
        other = ParticipantRef(
            name=other.name,
            account_id=other_account.account_id if other_account else None,
            email=other.email or (other_account.email if other_account else None),
        )

        transaction_group_id = str(uuid.uuid4())
        now = datetime.now(UTC)
        primary = SettlementRecord(
            transaction_group_id=transaction_group_id,
            owner=acting,
            counterparty=other,
            amount=value,
            type=own_type,
            status=status,
            upi_ref=upi_ref,
            created_at=now,
            settled_at=now if status is SettlementStatus.SETTLED else None,
        )
        self.store.insert_record(primary)

        if other.account_id is None:
            logger.warning(
                f"No account found for {other.name}; "
                f"group {transaction_group_id} is single-sided"
            )
        else:
            self._insert_mirror(primary)

        logger.info(
            f"Created settlement group {transaction_group_id}: "
            f"{debtor.name} -> {creditor.name} {value} ({status.value})"
        )
        return transaction_group_id

    def repair_mirror(self, transaction_group_id: str) -> SettlementGroup:
        """
        Write the missing mirrored row of a single-sided group, if possible.

        Safe to retry after a PartialWriteError: an existing mirrored row is
        never duplicated.

        Raises:
            NotFoundError: If the group has no rows
            PartialWriteError: If the mirrored row still could not be written
        """
        group = self.get_group(transaction_group_id)
        if group.is_mirrored:
            return group

        (primary,) = group.records
        counterparty = primary.counterparty
        account = self._resolve_account(counterparty, primary.owner)
        if account is None:
            logger.info(
                f"Group {transaction_group_id} stays single-sided: "
                f"{counterparty.name} has no account"
            )
            return group

        primary = primary.model_copy(
            update={
                "counterparty": ParticipantRef(
                    name=counterparty.name,
                    account_id=account.account_id,
                    email=counterparty.email or account.email,
                )
            }
        )
        self._insert_mirror(primary)
        return self.get_group(transaction_group_id)

    def _resolve_account(
        self, participant: ParticipantRef, acting: ParticipantRef
    ) -> Member | None:
        """Find the registered account behind a participant, never the actor's own."""
        if participant.account_id is not None:
            account: Member | None = Member(
                name=participant.name,
                email=participant.email,
                account_id=participant.account_id,
            )
        elif self.resolver is not None:
            account = self.resolver.resolve(participant.email or participant.name)
        else:
            account = None

        if account is None or account.account_id is None:
            return None
        if account.account_id == acting.account_id:
            logger.warning(
                f"{participant.name} resolves to the acting account "
                f"{acting.account_id}; skipping mirrored row"
            )
            return None
        return account

    def _insert_mirror(self, primary: SettlementRecord) -> None:
        other_account_id = primary.counterparty.account_id
        assert other_account_id is not None
        group_id = primary.transaction_group_id

        if self.store.get_record(other_account_id, group_id) is not None:
            logger.info(
                f"Mirrored row for {other_account_id} in group {group_id} "
                f"already exists"
            )
            return

        mirror = SettlementRecord(
            transaction_group_id=group_id,
            owner=primary.counterparty,
            counterparty=primary.owner,
            amount=primary.amount,
            type=primary.type.mirrored(),
            status=primary.status,
            upi_ref=primary.upi_ref,
            created_at=primary.created_at,
            settled_at=primary.settled_at,
        )
        try:
            self.store.insert_record(mirror)
        except UpstreamUnavailableError as e:
            logger.error(
                f"Failed to write mirrored row for {primary.counterparty.name} "
                f"in group {group_id}: {e}"
            )
            raise PartialWriteError(
                group_id,
                f"Recorded for you, but {primary.counterparty.name} may not see "
                f"this settlement (group {group_id})",
            ) from e

    # ========================================================================
    # Read
    # ========================================================================

    def get_group(self, transaction_group_id: str) -> SettlementGroup:
        """
        Load a settlement group.

        Raises:
            NotFoundError: If no rows carry the group id
        """
        rows = self.store.list_group(transaction_group_id)
        if not rows:
            raise NotFoundError(transaction_group_id)
        return SettlementGroup.from_records(rows)

    def list_groups_for(self, account_id: str) -> list[SettlementGroup]:
        """Return every group the account owns a row in, newest first."""
        groups = []
        seen: set[str] = set()
        for row in self.store.list_by_owner(account_id):
            if row.transaction_group_id in seen:
                continue
            seen.add(row.transaction_group_id)
            rows = self.store.list_group(row.transaction_group_id)
            if rows:
                groups.append(SettlementGroup.from_records(rows))
        return groups

    # ========================================================================
    # Update / delete
    # ========================================================================

    def update_group_status(
        self,
        transaction_group_id: str,
        new_status: SettlementStatus | str,
    ) -> list[SettlementRecord]:
        """
        Move every row of a group to ``new_status``.

        ``settled_at`` is stamped when the group becomes settled and cleared
        otherwise. A group already in ``new_status`` is left untouched, and an
        unknown group id is a no-op, so retries are harmless.

        A group left mixed by an interrupted update is completed here: the
        move must be legal from every row's status, and rows that already
        reached ``new_status`` keep their ``settled_at``.

        Returns:
            The rows of the group after the call (empty for an unknown group)

        Raises:
            InvalidStatusError: If new_status is not a recognized state
            TransitionNotAllowedError: If the move is not an edge of the graph
                from the status of some row
            PartialWriteError: If the rows still disagree after the write
        """
        status = parse_status(new_status)

        rows = self.store.list_group(transaction_group_id)
        if not rows:
            logger.warning(
                f"Status update to {status.value} for unknown group "
                f"{transaction_group_id}; nothing to do"
            )
            return []

        group = SettlementGroup.from_records(rows)
        current = group.statuses
        for row_status in current:
            validate_transition(row_status, status)
        if current == {status}:
            logger.info(f"Group {transaction_group_id} is already {status.value}")
            return group.records
        if len(current) > 1:
            logger.warning(
                f"Group {transaction_group_id} has mixed statuses "
                f"{sorted(s.value for s in current)}; completing update to {status.value}"
            )

        settled_at = None
        if status is SettlementStatus.SETTLED:
            settled_at = next(
                (row.settled_at for row in rows if row.settled_at is not None),
                datetime.now(UTC),
            )

        updated = self._apply_group_status(
            transaction_group_id, status, settled_at, expected_rows=len(rows)
        )
        logger.info(
            f"Settlement group {transaction_group_id}: "
            f"{'/'.join(sorted(s.value for s in current))} -> {status.value} "
            f"({len(updated)} rows)"
        )
        return updated

    def repair_group_status(self, transaction_group_id: str) -> SettlementGroup:
        """
        Finish an interrupted status update on a mixed group.

        Every row is moved to the most advanced status any row reached.
        A consistent group is returned unchanged.

        Raises:
            NotFoundError: If the group has no rows
            PartialWriteError: If the rows still disagree after the write
        """
        group = self.get_group(transaction_group_id)
        if len(group.statuses) == 1:
            return group

        target = furthest_status(group.statuses)
        self.update_group_status(transaction_group_id, target)
        return self.get_group(transaction_group_id)

    def _apply_group_status(
        self,
        transaction_group_id: str,
        status: SettlementStatus,
        settled_at: datetime | None,
        expected_rows: int,
    ) -> list[SettlementRecord]:
        """Write the status group-wide, re-issuing it while a read-back disagrees."""
        rows: list[SettlementRecord] = []
        for attempt in range(1, UPDATE_ATTEMPTS + 1):
            self.store.update_group_status(transaction_group_id, status, settled_at)
            rows = self.store.list_group(transaction_group_id)
            if len(rows) == expected_rows and all(row.status is status for row in rows):
                return rows
            logger.warning(
                f"Group {transaction_group_id} not fully at {status.value} after "
                f"attempt {attempt}: {[(row.id, row.status.value) for row in rows]}"
            )

        logger.error(
            f"Group {transaction_group_id} is inconsistent after update to "
            f"{status.value}: {[(row.id, row.status.value) for row in rows]}"
        )
        raise PartialWriteError(
            transaction_group_id,
            f"Settlement group {transaction_group_id} was not fully updated "
            f"to {status.value}",
            mixed_status=True,
        )

    def delete_settlement_group(self, transaction_group_id: str) -> int:
        """
        Delete every row of a group, for both participants.

        Returns:
            Number of rows removed (0 for an unknown group)
        """
        deleted = self.store.delete_group(transaction_group_id)
        if deleted:
            logger.info(
                f"Deleted settlement group {transaction_group_id} ({deleted} rows)"
            )
        else:
            logger.warning(f"Delete of unknown settlement group {transaction_group_id}")
        return deleted
