"""Settlement state machine.

A settlement group moves ``pending -> debtor_paid -> settled`` or straight
``pending -> settled``. The debtor may only assert payment; only the
creditor may mark a group settled. ``settled`` is terminal: the only way
out is deleting the whole group.
"""

from enum import StrEnum

from .exceptions import InvalidStatusError, TransitionNotAllowedError
from .models import ParticipantRef, SettlementGroup, SettlementStatus, SettlementType


class Role(StrEnum):
    """Part an account plays in a settlement group."""

    DEBTOR = "debtor"
    CREDITOR = "creditor"


# (from, to) -> roles allowed to trigger it
TRANSITIONS: dict[tuple[SettlementStatus, SettlementStatus], frozenset[Role]] = {
    (SettlementStatus.PENDING, SettlementStatus.DEBTOR_PAID): frozenset({Role.DEBTOR}),
    (SettlementStatus.PENDING, SettlementStatus.SETTLED): frozenset({Role.CREDITOR}),
    (SettlementStatus.DEBTOR_PAID, SettlementStatus.SETTLED): frozenset({Role.CREDITOR}),
}

# Lifecycle order; a group only ever moves forward through it
STATUS_ORDER: tuple[SettlementStatus, ...] = (
    SettlementStatus.PENDING,
    SettlementStatus.DEBTOR_PAID,
    SettlementStatus.SETTLED,
)


def parse_status(value: SettlementStatus | str) -> SettlementStatus:
    """
    Coerce a raw value into a SettlementStatus.

    Raises:
        InvalidStatusError: If the value is not one of the three states
    """
    if isinstance(value, SettlementStatus):
        return value
    try:
        return SettlementStatus(value)
    except ValueError as e:
        raise InvalidStatusError(value) from e


def furthest_status(statuses: set[SettlementStatus]) -> SettlementStatus:
    """The most advanced of the given states, the target of an interrupted update."""
    return max(statuses, key=STATUS_ORDER.index)


def role_for_type(settlement_type: SettlementType) -> Role:
    return Role.DEBTOR if settlement_type is SettlementType.OWES else Role.CREDITOR


def validate_transition(
    current: SettlementStatus,
    new: SettlementStatus,
    role: Role | None = None,
) -> None:
    """
    Check that moving a group from ``current`` to ``new`` is allowed.

    Staying in the same state is always allowed so retried calls succeed.
    When ``role`` is given, the role must also be one that may trigger the
    edge.

    Raises:
        TransitionNotAllowedError: If the edge is missing or the role may not use it
    """
    if current == new:
        return

    allowed_roles = TRANSITIONS.get((current, new))
    if allowed_roles is None:
        raise TransitionNotAllowedError(current.value, new.value)

    if role is not None and role not in allowed_roles:
        allowed = " or ".join(sorted(r.value for r in allowed_roles))
        raise TransitionNotAllowedError(
            current.value,
            new.value,
            f"Only the {allowed} may move a settlement from {current.value} "
            f"to {new.value}",
        )


def validate_creation(initial_status: SettlementStatus, role: Role) -> None:
    """
    Check that a group may be created directly at ``initial_status``.

    Either party may record a pending debt. A later state is allowed when the
    creating role could reach it from ``pending`` in one step, so a debtor may
    record an already-paid debt and a creditor may record one already settled.

    Raises:
        TransitionNotAllowedError: If the role cannot create at that state
    """
    if initial_status is SettlementStatus.PENDING:
        return
    validate_transition(SettlementStatus.PENDING, initial_status, role)


def role_of(group: SettlementGroup, account_id: str | None) -> Role | None:
    """Role of the account in the group, or None if it owns no row."""
    if account_id is None:
        return None
    row = group.row_owned_by(account_id)
    if row is None:
        return None
    return role_for_type(row.type)


def available_transitions(
    group: SettlementGroup, role: Role
) -> list[SettlementStatus]:
    """States the given role may move the group to next. None for a mixed group."""
    if not group.is_consistent():
        return []
    current = group.status
    return [
        new
        for (start, new), roles in TRANSITIONS.items()
        if start == current and role in roles
    ]


def can_cancel(group: SettlementGroup, account_id: str | None) -> bool:
    """Either owning party may cancel a group while no row of it is settled."""
    return (
        role_of(group, account_id) is not None
        and SettlementStatus.SETTLED not in group.statuses
    )


def summarize_pair(
    groups: list[SettlementGroup], first: ParticipantRef, second: ParticipantRef
) -> SettlementStatus | None:
    """
    Summarize the settlement state between two participants.

    An asserted payment awaiting confirmation outranks an open request,
    which outranks groups that are all settled. A mixed group counts with
    each of its row statuses, so it never reads as settled.

    Returns:
        DEBTOR_PAID, PENDING or SETTLED, or None if the pair has no groups
    """
    pair = {first, second}
    statuses = {
        status
        for g in groups
        if {g.debtor, g.creditor} == pair
        for status in g.statuses
    }
    if not statuses:
        return None
    if SettlementStatus.DEBTOR_PAID in statuses:
        return SettlementStatus.DEBTOR_PAID
    if SettlementStatus.PENDING in statuses:
        return SettlementStatus.PENDING
    return SettlementStatus.SETTLED
