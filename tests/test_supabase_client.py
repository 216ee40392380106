"""Tests for the Supabase PostgREST client."""

import json
from datetime import UTC, date, datetime
from decimal import Decimal

import httpx
import pytest

from roomledger.clients.supabase import SupabaseClient
from roomledger.exceptions import UpstreamUnavailableError
from roomledger.models import SettlementStatus, SettlementType

PROFILES = [
    {"id": "acct-alice", "name": "Alice", "email": "alice@example.com", "upi_id": "alice@upi"},
    {"id": "acct-bob", "name": "Bob", "email": "bob@example.com", "upi_id": None},
]


def settlement_row(owner, name, email, settlement_type, status="settled"):
    return {
        "id": f"row-{owner}",
        "user_id": owner,
        "name": name,
        "email": email,
        "upi_id": "alice@upi",
        "type": settlement_type,
        "amount": 100.5,
        "status": status,
        "transaction_group_id": "g1",
        "created_at": "2024-05-01T12:00:00Z",
        "settled_date": "2024-05-02T08:00:00+00:00" if status == "settled" else None,
    }


@pytest.fixture
def requests():
    """Requests seen by the mock transport."""
    return []


@pytest.fixture
def make_client(requests):
    """Build a client whose HTTP calls go to a handler instead of the network."""
    clients = []

    def _make(handler):
        def recording_handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = SupabaseClient("https://demo.supabase.co", "anon-key")
        client.client.close()
        client.client = httpx.Client(
            base_url="https://demo.supabase.co/rest/v1",
            transport=httpx.MockTransport(recording_handler),
        )
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()


class TestClientSetup:
    """Tests for client construction."""

    def test_headers_and_base_url(self):
        with SupabaseClient("https://demo.supabase.co/", "anon-key", timeout=5.0) as client:
            assert client.url == "https://demo.supabase.co"
            assert str(client.client.base_url).startswith("https://demo.supabase.co/rest/v1")
            assert client.client.headers["apikey"] == "anon-key"
            assert client.client.headers["Authorization"] == "Bearer anon-key"
            assert client.client.headers["Prefer"] == "return=representation"


class TestErrors:
    """Tests for mapping HTTP failures."""

    def test_http_error_status(self, make_client):
        client = make_client(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(UpstreamUnavailableError, match="500"):
            client.list_members()

    def test_transport_error(self, make_client):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(UpstreamUnavailableError):
            client.list_expenses()

    def test_empty_body(self, make_client):
        client = make_client(lambda request: httpx.Response(204))

        assert client.delete_group("g1") == 0


class TestProfiles:
    """Tests for roster lookups."""

    def test_resolve_falls_back_to_name(self, make_client, requests):
        def handler(request):
            if "name" in request.url.params:
                return httpx.Response(200, json=[PROFILES[1]])
            return httpx.Response(200, json=[])

        client = make_client(handler)

        member = client.resolve("Bob")

        assert member.account_id == "acct-bob"
        assert requests[0].url.params["email"] == "eq.bob"
        assert requests[1].url.params["name"] == "eq.Bob"

    def test_member_without_name_uses_email_prefix(self, make_client):
        client = make_client(
            lambda request: httpx.Response(
                200, json=[{"id": "acct-x", "name": None, "email": "xavier@example.com"}]
            )
        )

        (member,) = client.list_members()

        assert member.name == "xavier"
        assert member.upi_id is None


class TestExpenses:
    """Tests for expense rows."""

    def test_list_expenses(self, make_client, requests):
        row = {
            "id": 7,
            "description": "Groceries",
            "amount": "300.00",
            "paid_by": "Alice",
            "date": "2024-05-01T00:00:00",
            "category": None,
            "sharers": ["Alice", "Bob"],
        }
        client = make_client(lambda request: httpx.Response(200, json=[row]))

        (expense,) = client.list_expenses()

        assert expense.id == "7"
        assert expense.amount == Decimal("300.00")
        assert expense.date == date(2024, 5, 1)
        assert expense.category == "General"
        assert [s.name for s in expense.sharers] == ["Alice", "Bob"]
        assert requests[0].url.params["order"] == "date.desc"


class TestSettlements:
    """Tests for settlement rows."""

    def handler(self, rows):
        def _handler(request):
            if request.url.path.endswith("/profiles"):
                return httpx.Response(200, json=PROFILES)
            return httpx.Response(200, json=rows)

        return _handler

    def test_update_is_one_filtered_patch(self, make_client, requests):
        rows = [
            settlement_row("acct-alice", "Bob", "bob@example.com", "owed"),
            settlement_row("acct-bob", "Alice", "alice@example.com", "owes"),
        ]
        client = make_client(self.handler(rows))
        settled_at = datetime(2024, 5, 2, 8, 0, tzinfo=UTC)

        records = client.update_group_status("g1", SettlementStatus.SETTLED, settled_at)

        patch = requests[0]
        assert patch.method == "PATCH"
        assert patch.url.path == "/rest/v1/settlements"
        assert patch.url.params["transaction_group_id"] == "eq.g1"
        assert json.loads(patch.content) == {
            "status": "settled",
            "settled_date": "2024-05-02T08:00:00+00:00",
        }
        assert [r.owner.name for r in records] == ["Alice", "Bob"]
        assert records[0].counterparty.account_id == "acct-bob"
        assert records[0].amount == Decimal("100.5")
        assert records[0].settled_at == settled_at
        assert records[1].type is SettlementType.OWES

    def test_unknown_owner_gets_placeholder_name(self, make_client):
        rows = [settlement_row("0123456789", "Carol", None, "owed", "pending")]
        client = make_client(self.handler(rows))

        (record,) = client.list_by_owner("0123456789")

        assert record.owner.name == "User 01234"
        assert record.counterparty.account_id is None
        assert record.created_at == datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def test_get_record_filters_by_owner_and_group(self, make_client, requests):
        client = make_client(self.handler([]))

        assert client.get_record("acct-alice", "g1") is None
        assert requests[0].url.params["user_id"] == "eq.acct-alice"
        assert requests[0].url.params["transaction_group_id"] == "eq.g1"

    def test_delete_group_counts_rows(self, make_client, requests):
        rows = [
            settlement_row("acct-alice", "Bob", "bob@example.com", "owed"),
            settlement_row("acct-bob", "Alice", "alice@example.com", "owes"),
        ]
        client = make_client(self.handler(rows))

        assert client.delete_group("g1") == 2
        assert requests[0].method == "DELETE"
