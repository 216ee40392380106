"""Tests for the settlement state machine."""

import pytest

from roomledger.exceptions import InvalidStatusError, TransitionNotAllowedError
from roomledger.models import SettlementGroup, SettlementStatus
from roomledger.protocol import (
    Role,
    available_transitions,
    can_cancel,
    furthest_status,
    parse_status,
    role_of,
    summarize_pair,
    validate_creation,
    validate_transition,
)

PENDING = SettlementStatus.PENDING
DEBTOR_PAID = SettlementStatus.DEBTOR_PAID
SETTLED = SettlementStatus.SETTLED


class TestParseStatus:
    """Tests for parse_status."""

    @pytest.mark.parametrize("raw", ["pending", "debtor_paid", "settled"])
    def test_known_states(self, raw):
        assert parse_status(raw).value == raw

    def test_enum_passes_through(self):
        assert parse_status(SETTLED) is SETTLED

    @pytest.mark.parametrize("raw", ["paid", "SETTLED", "", "deleted"])
    def test_unknown_states_are_rejected(self, raw):
        with pytest.raises(InvalidStatusError) as exc_info:
            parse_status(raw)

        assert exc_info.value.status == raw


class TestValidateTransition:
    """Tests for validate_transition."""

    @pytest.mark.parametrize(
        "current,new,role",
        [
            (PENDING, DEBTOR_PAID, Role.DEBTOR),
            (PENDING, SETTLED, Role.CREDITOR),
            (DEBTOR_PAID, SETTLED, Role.CREDITOR),
        ],
    )
    def test_allowed_edges(self, current, new, role):
        validate_transition(current, new, role)
        validate_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            (SETTLED, PENDING),
            (SETTLED, DEBTOR_PAID),
            (DEBTOR_PAID, PENDING),
        ],
    )
    def test_backwards_moves_are_rejected(self, current, new):
        with pytest.raises(TransitionNotAllowedError) as exc_info:
            validate_transition(current, new)

        assert exc_info.value.current == current.value
        assert exc_info.value.new == new.value

    def test_debtor_cannot_settle(self):
        with pytest.raises(TransitionNotAllowedError, match="creditor"):
            validate_transition(PENDING, SETTLED, Role.DEBTOR)

        with pytest.raises(TransitionNotAllowedError):
            validate_transition(DEBTOR_PAID, SETTLED, Role.DEBTOR)

    def test_creditor_cannot_assert_payment(self):
        with pytest.raises(TransitionNotAllowedError, match="debtor"):
            validate_transition(PENDING, DEBTOR_PAID, Role.CREDITOR)

    @pytest.mark.parametrize("status", [PENDING, DEBTOR_PAID, SETTLED])
    def test_same_state_is_allowed_for_anyone(self, status):
        validate_transition(status, status, Role.DEBTOR)
        validate_transition(status, status, Role.CREDITOR)


class TestValidateCreation:
    """Tests for creating a group directly at a later state."""

    def test_either_role_may_create_pending(self):
        validate_creation(PENDING, Role.DEBTOR)
        validate_creation(PENDING, Role.CREDITOR)

    def test_debtor_may_record_a_payment(self):
        validate_creation(DEBTOR_PAID, Role.DEBTOR)

    def test_creditor_may_record_a_settlement(self):
        validate_creation(SETTLED, Role.CREDITOR)

    def test_debtor_cannot_create_settled(self):
        with pytest.raises(TransitionNotAllowedError):
            validate_creation(SETTLED, Role.DEBTOR)

    def test_creditor_cannot_create_debtor_paid(self):
        with pytest.raises(TransitionNotAllowedError):
            validate_creation(DEBTOR_PAID, Role.CREDITOR)


class TestGroupQueries:
    """Tests for role_of, available_transitions, can_cancel and summarize_pair."""

    @pytest.fixture
    def group(self, alice, bob, make_pair):
        """Bob owes Alice 100, still pending."""
        return SettlementGroup.from_records(make_pair("g1", bob, alice, "100", PENDING))

    def test_role_of(self, group):
        assert role_of(group, "acct-bob") is Role.DEBTOR
        assert role_of(group, "acct-alice") is Role.CREDITOR
        assert role_of(group, "acct-mallory") is None
        assert role_of(group, None) is None

    def test_available_transitions(self, group):
        assert available_transitions(group, Role.DEBTOR) == [DEBTOR_PAID]
        assert available_transitions(group, Role.CREDITOR) == [SETTLED]

    def test_no_transitions_out_of_settled(self, alice, bob, make_pair):
        group = SettlementGroup.from_records(make_pair("g1", bob, alice, "100"))

        assert available_transitions(group, Role.DEBTOR) == []
        assert available_transitions(group, Role.CREDITOR) == []

    def test_can_cancel(self, alice, bob, group, make_pair):
        settled = SettlementGroup.from_records(make_pair("g2", bob, alice, "100"))

        assert can_cancel(group, "acct-bob")
        assert can_cancel(group, "acct-alice")
        assert not can_cancel(group, "acct-mallory")
        assert not can_cancel(settled, "acct-alice")

    def test_summarize_pair_priority(self, alice, bob, carol, make_pair):
        settled = SettlementGroup.from_records(make_pair("g1", bob, alice, "10"))
        pending = SettlementGroup.from_records(
            make_pair("g2", alice, bob, "20", PENDING)
        )
        paid = SettlementGroup.from_records(
            make_pair("g3", bob, alice, "30", DEBTOR_PAID)
        )

        assert summarize_pair([settled], alice, bob) is SETTLED
        assert summarize_pair([settled, pending], alice, bob) is PENDING
        assert summarize_pair([settled, pending, paid], bob, alice) is DEBTOR_PAID
        assert summarize_pair([settled, pending, paid], alice, carol) is None


class TestMixedGroups:
    """Tests for groups whose rows disagree on status."""

    @pytest.fixture
    def mixed(self, alice, bob, make_pair):
        """Bob owes Alice 100; only Alice's row reached settled."""
        debtor_row, creditor_row = make_pair("g1", bob, alice, "100", PENDING)
        creditor_row = creditor_row.model_copy(update={"status": SETTLED})
        return SettlementGroup.from_records([debtor_row, creditor_row])

    @pytest.mark.parametrize(
        "statuses, expected",
        [
            ({PENDING}, PENDING),
            ({PENDING, DEBTOR_PAID}, DEBTOR_PAID),
            ({PENDING, SETTLED}, SETTLED),
            ({DEBTOR_PAID, SETTLED}, SETTLED),
        ],
    )
    def test_furthest_status(self, statuses, expected):
        assert furthest_status(statuses) is expected

    def test_no_transitions_offered(self, mixed):
        assert mixed.statuses == {PENDING, SETTLED}
        assert available_transitions(mixed, Role.DEBTOR) == []
        assert available_transitions(mixed, Role.CREDITOR) == []

    def test_cannot_cancel(self, mixed):
        assert not can_cancel(mixed, "acct-bob")
        assert not can_cancel(mixed, "acct-alice")

    def test_summarize_pair_is_not_settled(self, alice, bob, mixed):
        assert summarize_pair([mixed], alice, bob) is PENDING
