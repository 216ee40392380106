"""Custom exceptions for RoomLedger."""


class RoomLedgerError(Exception):
    """Base exception for all RoomLedger errors."""

    pass


class ConfigurationError(RoomLedgerError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(RoomLedgerError):
    """Raised when input is rejected before any write is attempted."""

    pass


class InvalidStatusError(ValidationError):
    """Raised when a status value is not one of the recognized settlement states."""

    def __init__(self, status: object, message: str | None = None):
        self.status = status
        super().__init__(
            message
            or f"Invalid status value: {status!r}. "
            f"Must be one of: pending, debtor_paid, settled"
        )


class TransitionNotAllowedError(ValidationError):
    """Raised when a status change is not an edge of the settlement graph."""

    def __init__(self, current: str, new: str, message: str | None = None):
        self.current = current
        self.new = new
        super().__init__(message or f"Cannot move settlement from {current} to {new}")


class PermissionDeniedError(RoomLedgerError):
    """Raised when the acting account has no row in the settlement group."""

    pass


class NotFoundError(RoomLedgerError):
    """Raised when a settlement group that must exist has no rows."""

    def __init__(self, transaction_group_id: str, message: str | None = None):
        self.transaction_group_id = transaction_group_id
        super().__init__(
            message or f"Settlement group {transaction_group_id} not found"
        )


class PartialWriteError(RoomLedgerError):
    """Raised when only part of a settlement group was written.

    When ``mixed_status`` is False the mirrored row is missing: the acting
    user's own row is kept and the caller should tell the user that the other
    party may not see the record. When it is True the rows of the group
    disagree on status or amount and the group needs repair.
    """

    def __init__(
        self,
        transaction_group_id: str,
        message: str | None = None,
        mixed_status: bool = False,
    ):
        self.transaction_group_id = transaction_group_id
        self.mixed_status = mixed_status
        super().__init__(
            message
            or f"Settlement group {transaction_group_id} was only partially written"
        )


class UpstreamUnavailableError(RoomLedgerError):
    """Raised when an external store fails."""

    pass
