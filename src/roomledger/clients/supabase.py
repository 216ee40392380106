"""Supabase (PostgREST) client backing the RoomLedger stores."""

import logging
from datetime import UTC, date, datetime
from typing import Any

import httpx

from ..exceptions import UpstreamUnavailableError
from ..models import (
    Expense,
    Member,
    ParticipantRef,
    SettlementRecord,
    SettlementStatus,
    SettlementType,
)
from ..money import to_decimal
from ..stores import ExpenseStore, IdentityResolver, SettlementStore

logger = logging.getLogger(__name__)


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class SupabaseClient(ExpenseStore, IdentityResolver, SettlementStore):
    """Client for the hosted household tables over the PostgREST API."""

    def __init__(self, url: str, api_key: str, timeout: float = 30.0):
        """Initialize the Supabase client."""
        self.url = url.rstrip("/")
        self.client = httpx.Client(
            base_url=f"{self.url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
            timeout=timeout,
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> list[dict[str, Any]]:
        """Send a request and return the decoded rows."""
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Supabase API error: {e}")
            logger.error(f"Response body: {e.response.text}")
            raise UpstreamUnavailableError(
                f"Supabase {method} {path} failed with {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Supabase request failed: {e}")
            raise UpstreamUnavailableError(f"Supabase {method} {path} failed: {e}") from e

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    # ========================================================================
    # Profiles (identity resolver)
    # ========================================================================

    def list_members(self) -> list[Member]:
        """Get every profile as a roster member."""
        rows = self._request(
            "GET", "/profiles", params={"select": "id,name,email,upi_id", "order": "name"}
        )
        return [self._row_to_member(row) for row in rows]

    def resolve(self, handle: str) -> Member | None:
        """Look up a profile by email, falling back to display name."""
        for column, value in (("email", handle.lower()), ("name", handle)):
            rows = self._request(
                "GET",
                "/profiles",
                params={
                    "select": "id,name,email,upi_id",
                    column: f"eq.{value}",
                    "limit": 1,
                },
            )
            if rows:
                return self._row_to_member(rows[0])
        return None

    @staticmethod
    def _row_to_member(row: dict[str, Any]) -> Member:
        email = row.get("email")
        name = row.get("name") or (email.split("@")[0] if email else row["id"])
        return Member(
            name=name, email=email, account_id=row["id"], upi_id=row.get("upi_id")
        )

    # ========================================================================
    # Expenses
    # ========================================================================

    def list_expenses(self) -> list[Expense]:
        """Get every expense, newest first."""
        rows = self._request(
            "GET", "/expenses", params={"select": "*", "order": "date.desc"}
        )
        return [
            Expense(
                id=str(row["id"]),
                description=row["description"],
                amount=to_decimal(row["amount"]),
                paid_by=ParticipantRef(name=row["paid_by"]),
                date=date.fromisoformat(row["date"][:10]),
                category=row.get("category") or "General",
                sharers=[ParticipantRef(name=name) for name in row.get("sharers") or []],
            )
            for row in rows
        ]

    def create_expense(self, expense: Expense) -> Expense:
        """Insert an expense row."""
        self._request(
            "POST",
            "/expenses",
            json={
                "id": expense.id,
                "description": expense.description,
                "amount": str(expense.amount),
                "paid_by": expense.paid_by.name,
                "date": expense.date.isoformat(),
                "category": expense.category,
                "sharers": [sharer.name for sharer in expense.sharers],
            },
        )
        return expense

    def delete_expense(self, expense_id: str) -> bool:
        """Delete an expense row."""
        rows = self._request("DELETE", "/expenses", params={"id": f"eq.{expense_id}"})
        return len(rows) > 0

    # ========================================================================
    # Settlements
    # ========================================================================

    def insert_record(self, record: SettlementRecord) -> SettlementRecord:
        """Insert one settlement row."""
        self._request(
            "POST",
            "/settlements",
            json={
                "id": record.id,
                "user_id": record.owner.account_id,
                "name": record.counterparty.name,
                "email": record.counterparty.email,
                "upi_id": record.upi_ref,
                "type": record.type.value,
                "amount": str(record.amount),
                "status": record.status.value,
                "transaction_group_id": record.transaction_group_id,
                "created_at": record.created_at.isoformat(),
                "settled_date": (
                    record.settled_at.isoformat() if record.settled_at else None
                ),
            },
        )
        return record

    def get_record(
        self, owner_account_id: str, transaction_group_id: str
    ) -> SettlementRecord | None:
        """Get the row an account owns in a group."""
        records = self._fetch_settlements(
            {
                "user_id": f"eq.{owner_account_id}",
                "transaction_group_id": f"eq.{transaction_group_id}",
            }
        )
        return records[0] if records else None

    def list_group(self, transaction_group_id: str) -> list[SettlementRecord]:
        """Get every row of a group."""
        return self._fetch_settlements(
            {"transaction_group_id": f"eq.{transaction_group_id}"}
        )

    def list_by_owner(self, owner_account_id: str) -> list[SettlementRecord]:
        """Get the rows an account owns, newest first."""
        return self._fetch_settlements(
            {"user_id": f"eq.{owner_account_id}", "order": "created_at.desc"}
        )

    def list_by_status(self, status: SettlementStatus) -> list[SettlementRecord]:
        """Get every row in a status."""
        return self._fetch_settlements({"status": f"eq.{status.value}"})

    def update_group_status(
        self,
        transaction_group_id: str,
        status: SettlementStatus,
        settled_at: datetime | None,
    ) -> list[SettlementRecord]:
        """Update every row of a group with one filtered PATCH."""
        rows = self._request(
            "PATCH",
            "/settlements",
            params={"transaction_group_id": f"eq.{transaction_group_id}"},
            json={
                "status": status.value,
                "settled_date": settled_at.isoformat() if settled_at else None,
            },
        )
        return self._rows_to_records(rows)

    def delete_group(self, transaction_group_id: str) -> int:
        """Delete every row of a group with one filtered DELETE."""
        rows = self._request(
            "DELETE",
            "/settlements",
            params={"transaction_group_id": f"eq.{transaction_group_id}"},
        )
        return len(rows)

    def _fetch_settlements(self, params: dict[str, str]) -> list[SettlementRecord]:
        rows = self._request("GET", "/settlements", params={"select": "*", **params})
        return self._rows_to_records(rows)

    def _rows_to_records(self, rows: list[dict[str, Any]]) -> list[SettlementRecord]:
        """Map settlement rows to records, naming owners from their profiles."""
        if not rows:
            return []

        members = self.list_members()
        by_id = {m.account_id: m for m in members}
        by_email = {m.email.lower(): m for m in members if m.email}

        records = []
        for row in rows:
            owner_id = row["user_id"]
            owner = by_id.get(owner_id)
            email = row.get("email")
            counterparty = by_email.get(email.lower()) if email else None
            records.append(
                SettlementRecord(
                    id=str(row["id"]),
                    transaction_group_id=row["transaction_group_id"],
                    owner=ParticipantRef(
                        name=owner.name if owner else f"User {owner_id[:5]}",
                        account_id=owner_id,
                        email=owner.email if owner else None,
                    ),
                    counterparty=ParticipantRef(
                        name=row["name"],
                        account_id=counterparty.account_id if counterparty else None,
                        email=email,
                    ),
                    amount=to_decimal(row["amount"]),
                    type=SettlementType(row["type"]),
                    status=SettlementStatus(row["status"]),
                    upi_ref=row.get("upi_id"),
                    created_at=_parse_timestamp(row.get("created_at"))
                    or datetime.now(UTC),
                    settled_at=_parse_timestamp(row.get("settled_date")),
                )
            )
        return records
