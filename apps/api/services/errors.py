"""Typed errors raised by the credit ledger and tuning request services.

Every error carries the HTTP status it maps to, a stable machine-readable
``code`` and a human message. Extra structured fields (required/available
credits, current status, ...) are exposed through ``fields`` so the HTTP layer
can render them without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional


class ServiceError(Exception):
    """Base class for all core service failures."""

    status_code = 400
    code = "service_error"

    def __init__(self, message: str, **fields: Any) -> None:
        super().__init__(message)
        self.message = message
        self.fields: Dict[str, Any] = fields

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.fields}


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Admin access required.") -> None:
        super().__init__(message)


class InvalidAmount(ServiceError):
    status_code = 422
    code = "invalid_amount"


class InsufficientBalance(ServiceError):
    status_code = 402
    code = "insufficient_balance"

    def __init__(self, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}.",
            required=required,
            available=available,
        )
        self.required = required
        self.available = available


class InsufficientCredits(InsufficientBalance):
    code = "insufficient_credits"


class InvalidSelection(ServiceError):
    status_code = 422
    code = "invalid_selection"


class EmptySelection(InvalidSelection):
    code = "empty_selection"

    def __init__(self) -> None:
        super().__init__("Select at least one tuning option.")


class ZeroCostSelection(InvalidSelection):
    code = "zero_cost_selection"

    def __init__(self) -> None:
        super().__init__("The selected tuning options carry no credit cost.")


class UnknownOption(InvalidSelection):
    code = "unknown_option"

    def __init__(self, option_ids: Iterable[int]) -> None:
        missing = sorted(option_ids)
        super().__init__(
            f"Unknown tuning option(s): {', '.join(str(option_id) for option_id in missing)}.",
            option_ids=missing,
        )
        self.option_ids = missing


class InvalidVehicle(InvalidSelection):
    code = "invalid_vehicle"


class InvalidTransition(ServiceError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current: str, requested: str, reason: Optional[str] = None) -> None:
        message = f"Cannot move tuning request from '{current}' to '{requested}'."
        if reason:
            message = f"{message} {reason}"
        super().__init__(message, current_status=current, requested_status=requested)
        self.current = current
        self.requested = requested


class InvalidState(ServiceError):
    status_code = 409
    code = "invalid_state"


class InvalidPriority(ServiceError):
    status_code = 422
    code = "invalid_priority"


class InvalidEstimate(ServiceError):
    status_code = 422
    code = "invalid_estimate"


class InvalidUpload(ServiceError):
    status_code = 422
    code = "invalid_upload"


class DuplicateCharge(ServiceError):
    status_code = 409
    code = "duplicate_charge"

    def __init__(self, external_reference: str) -> None:
        super().__init__(
            f"Charge '{external_reference}' has already been credited.",
            external_reference=external_reference,
        )
        self.external_reference = external_reference


class StorageFailure(ServiceError):
    status_code = 503
    code = "storage_failure"
