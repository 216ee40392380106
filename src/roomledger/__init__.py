"""RoomLedger - Shared-expense balances and two-party settlement reconciliation."""

__version__ = "0.1.0"

from .balances import compute_balances, compute_raw_balances, summarize_expenses
from .config import Settings, load_settings
from .db import Database
from .ledger import SettlementLedger
from .models import (
    Expense,
    Member,
    ParticipantRef,
    SettlementGroup,
    SettlementRecord,
    SettlementStatus,
    SettlementType,
)
from .protocol import validate_transition
from .service import SettlementService, open_backend

__all__ = [
    "Settings",
    "load_settings",
    "Database",
    "Expense",
    "Member",
    "ParticipantRef",
    "SettlementGroup",
    "SettlementRecord",
    "SettlementStatus",
    "SettlementType",
    "compute_balances",
    "compute_raw_balances",
    "summarize_expenses",
    "validate_transition",
    "SettlementLedger",
    "SettlementService",
    "open_backend",
]
