"""Core balance netting for shared expenses and settled payments.

Balances are derived, never stored: every call recomputes them from the full
expense history plus the settled settlement rows.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal

from .models import (
    Expense,
    ExpenseSummary,
    ParticipantRef,
    SettlementGroup,
    SettlementRecord,
    SettlementStatus,
)
from .money import ZERO, round_money

logger = logging.getLogger(__name__)


def group_records(records: Iterable[SettlementRecord]) -> list[SettlementGroup]:
    """
    Collapse settlement rows into groups by transaction group id.

    Mirrored rows describe the same payment once; grouping keeps them from
    being counted twice. Group order follows first appearance.
    """
    by_group: dict[str, list[SettlementRecord]] = {}
    for record in records:
        rows = by_group.setdefault(record.transaction_group_id, [])
        # The same row may be listed twice when fetched per owner
        if all(row.id != record.id for row in rows):
            rows.append(record)
    return [SettlementGroup.from_records(rows) for rows in by_group.values()]


def compute_raw_balances(
    expenses: Iterable[Expense],
    settlements: Iterable[SettlementRecord],
    roster: Iterable[ParticipantRef],
) -> dict[ParticipantRef, Decimal]:
    """
    Net expenses and settled payments into unrounded signed balances.

    Positive means the participant is owed money, negative means they owe.

    Args:
        expenses: Full expense history
        settlements: Settlement rows; only ``settled`` groups are applied
        roster: Household members. Seeds the result and is the sharer set for
            expenses that list no sharers. Participants outside the roster are
            added as they appear.

    Returns:
        Participant -> balance, roster members first, in first-seen order
    """
    roster = list(dict.fromkeys(roster))
    balances: dict[ParticipantRef, Decimal] = {p: ZERO for p in roster}

    for expense in expenses:
        amount = expense.amount
        balances[expense.paid_by] = balances.get(expense.paid_by, ZERO) + amount

        sharers = expense.sharers or roster
        if amount == ZERO:
            continue
        if not sharers:
            logger.warning(
                f"Expense {expense.id} has no sharers and the roster is empty; "
                f"only the payer is credited"
            )
            continue

        share = amount / len(sharers)
        for sharer in sharers:
            balances[sharer] = balances.get(sharer, ZERO) - share

    settled = [s for s in settlements if s.status is SettlementStatus.SETTLED]
    for group in group_records(settled):
        debtor, creditor = group.debtor, group.creditor
        balances[debtor] = balances.get(debtor, ZERO) + group.amount
        balances[creditor] = balances.get(creditor, ZERO) - group.amount

    return balances


def compute_balances(
    expenses: Iterable[Expense],
    settlements: Iterable[SettlementRecord],
    roster: Iterable[ParticipantRef],
) -> dict[ParticipantRef, Decimal]:
    """
    Compute per-participant balances rounded to two decimal places.

    Rounding happens once, after all netting. See ``compute_raw_balances``.
    """
    raw = compute_raw_balances(expenses, settlements, roster)
    return {participant: round_money(amount) for participant, amount in raw.items()}


def summarize_expenses(expenses: Iterable[Expense]) -> ExpenseSummary:
    """Total spend overall, per category and per calendar month."""
    total = ZERO
    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    by_month: dict[str, Decimal] = defaultdict(lambda: ZERO)

    for expense in expenses:
        total += expense.amount
        by_category[expense.category] += expense.amount
        by_month[expense.date.strftime("%Y-%m")] += expense.amount

    return ExpenseSummary(
        total=round_money(total),
        by_category={k: round_money(v) for k, v in by_category.items()},
        by_month={k: round_money(v) for k, v in sorted(by_month.items())},
    )
