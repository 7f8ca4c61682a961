"""
WAQF ENGINE EXCEPTIONS

Every rejection raised by the hook layer is one of five kinds:

1. DocumentDecodeError        - payload could not be decoded into the schema
2. StructuralValidationError  - decoded but violates shape/range rules (all violations collected)
3. PermissionDeniedError      - caller may not make this change
4. BusinessStateError         - change conflicts with lifecycle or financial state
5. NotFoundError              - referenced waqf or tranche does not exist

Version conflicts live with the document store (retryable, not a rejection).
"""

from typing import List, Optional


class WaqfEngineError(Exception):
    """Base exception for the waqf hook layer."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


# =============================================================================
# DECODE
# =============================================================================

class DocumentDecodeError(WaqfEngineError):
    """Raised when a stored payload cannot be decoded."""
    pass


# =============================================================================
# STRUCTURAL VALIDATION
# =============================================================================

class StructuralValidationError(WaqfEngineError):
    """Raised with every violation found, joined into one message."""

    prefix = "Validation failed"

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"{self.prefix}: {'; '.join(self.errors)}")


class WaqfValidationError(StructuralValidationError):
    prefix = "Waqf validation failed"


class WaqfTypeValidationError(StructuralValidationError):
    prefix = "Waqf type validation failed"


class TrancheValidationError(StructuralValidationError):
    prefix = "Tranche validation failed"


# =============================================================================
# PERMISSIONS
# =============================================================================

class PermissionDeniedError(WaqfEngineError):
    """Raised when the caller is not allowed to make a change."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = fields or []
        super().__init__(message)


class ImmutableFieldError(PermissionDeniedError):
    """Raised when anyone attempts to change a field fixed at creation."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message, [field])


# =============================================================================
# BUSINESS STATE
# =============================================================================

class BusinessStateError(WaqfEngineError):
    """Raised when a change conflicts with lifecycle or financial state."""
    pass


class LifecycleLockedError(BusinessStateError):
    """Raised when a completed or archived waqf is modified."""

    def __init__(self, status: str, fields: List[str]):
        self.status = status
        self.fields = fields
        super().__init__(
            f"Waqf is {status} and cannot be modified. Attempted changes: {', '.join(fields)}"
        )


class LockPeriodReductionError(BusinessStateError):
    def __init__(self, previous: int, proposed: int):
        self.previous = previous
        self.proposed = proposed
        super().__init__(
            f"Lock period cannot be reduced from {previous} to {proposed} months. "
            f"Donor contributions are committed for the original period."
        )


class MinimumCapitalError(BusinessStateError):
    def __init__(self, minimum: float, provided: float):
        self.minimum = minimum
        self.provided = provided
        super().__init__(
            f"Minimum initial capital required: ${minimum:.2f}. Provided: ${provided:.2f}"
        )


class DeletionBlockedError(BusinessStateError):
    """Raised when a document may not be deleted."""
    pass


class TrancheAlreadyReturnedError(BusinessStateError):
    def __init__(self, tranche_id: str, message: str = "Tranche has already been returned"):
        self.tranche_id = tranche_id
        super().__init__(message)


class TrancheNotMaturedError(BusinessStateError):
    def __init__(self, tranche_id: str, days_until_maturity: int):
        self.tranche_id = tranche_id
        self.days_until_maturity = days_until_maturity
        super().__init__(
            f"Tranche has not matured yet. Matures in {days_until_maturity} days"
        )


class EarlyWithdrawalError(BusinessStateError):
    def __init__(self, tranche_id: str, maturity_date: str):
        self.tranche_id = tranche_id
        self.maturity_date = maturity_date
        super().__init__(
            f"Early withdrawals are not allowed for this waqf. Tranche matures at: {maturity_date}"
        )


class InsufficientBalanceError(BusinessStateError):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient waqf balance for conversion. Required: {required:.2f}, "
            f"Available: {available:.2f}"
        )


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(WaqfEngineError):
    pass


class WaqfNotFoundError(NotFoundError):
    def __init__(self, waqf_id: str):
        self.waqf_id = waqf_id
        super().__init__(f"Waqf not found: {waqf_id}")


class TrancheNotFoundError(NotFoundError):
    def __init__(self, tranche_id: str, waqf_id: Optional[str] = None):
        self.tranche_id = tranche_id
        self.waqf_id = waqf_id
        where = f" in waqf {waqf_id}" if waqf_id else ""
        super().__init__(f"Tranche not found: {tranche_id}{where}")
