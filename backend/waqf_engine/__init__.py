"""
Waqf engine: validation, permission rules and tranche lifecycle for waqf documents
"""
from .errors import (
    WaqfEngineError,
    DocumentDecodeError,
    StructuralValidationError,
    WaqfValidationError,
    WaqfTypeValidationError,
    TrancheValidationError,
    PermissionDeniedError,
    ImmutableFieldError,
    BusinessStateError,
    LifecycleLockedError,
    LockPeriodReductionError,
    MinimumCapitalError,
    DeletionBlockedError,
    TrancheAlreadyReturnedError,
    TrancheNotMaturedError,
    EarlyWithdrawalError,
    InsufficientBalanceError,
    NotFoundError,
    WaqfNotFoundError,
    TrancheNotFoundError,
)

from .policy import WaqfPolicy, DEFAULT_POLICY

from .state_machine import (
    StateMachine,
    InvalidTransitionError,
    build_state_machine,
    WAQF_STATUS_MACHINE,
    TRANCHE_STATUS_MACHINE,
)

from .waqf_validator import validate_waqf_data, validate_waqf_data_detailed

from .waqf_type_validator import validate_waqf_type_and_details, validate_waqf_type_details

from .allocation_initializer import (
    compute_cause_allocations,
    initialize_cause_allocations,
    needs_cause_allocation_init,
)

from .tranche_validation import (
    validate_expiration_preference,
    validate_tranche_conversion,
    validate_tranche_data,
    validate_tranche_rollover,
    validate_waqf_tranches,
)

from .tranche_engine import (
    TrancheReturnOutcome,
    RevolvingBalance,
    add_contribution_tranche,
    calculate_revolving_balance,
    ensure_initialized,
    get_matured_tranches,
    mark_missed_installments,
    mark_tranche_as_returned,
    record_installment_payment,
    refresh_tranche_statuses,
    revolving_eligible_amount,
    rollover_tranche,
    update_expiration_preference,
)

from .tranche_conversion import ConversionOutcome, convert_tranche
