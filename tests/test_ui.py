"""Tests for the interactive participant picker."""

from prompt_toolkit.document import Document

from roomledger.models import Member
from roomledger.ui import ParticipantCompleter, fuzzy_match


def test_fuzzy_match_in_order():
    assert fuzzy_match("ali", "alice")
    assert fuzzy_match("bb", "bobby")
    assert not fuzzy_match("ila", "alice")


def test_completer_filters_and_labels_members():
    members = [
        Member(name="Alice", email="alice@example.com", account_id="acct-alice"),
        Member(name="Bob"),
    ]
    completer = ParticipantCompleter(members)

    completions = list(completer.get_completions(Document("al"), None))

    assert [c.text for c in completions] == ["Alice"]
    assert completions[0].start_position == -2


def test_completer_shows_everyone_for_empty_query():
    completer = ParticipantCompleter([Member(name="Alice"), Member(name="Bob")])

    assert len(list(completer.get_completions(Document(""), None))) == 2
