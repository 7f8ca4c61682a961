"""
WAQF TYPE VALIDATOR

The waqf_type decides which detail sub-records a waqf must and must not
carry. Every rule is checked and every violation reported together.

    permanent             no consumable/revolving details, not hybrid
    temporary_consumable  consumable_details with a coherent spending schedule
    temporary_revolving   revolving_details with lock period and return method
    hybrid                is_hybrid set, per-cause three-way split
"""

import logging

from .errors import WaqfTypeValidationError
from .financial_precision import safe_add, within_tolerance
from .policy import WaqfPolicy, DEFAULT_POLICY
from .validation import ValidationResult
from models import (
    WaqfData,
    WaqfType,
    ConsumableDetails,
    RevolvingDetails,
    HybridCauseAllocation,
)

logger = logging.getLogger(__name__)


def validate_lock_period(months: int, policy: WaqfPolicy, result: ValidationResult, field: str) -> None:
    if months < policy.min_lock_period_months:
        result.add_error("LOCK_PERIOD_TOO_SHORT", "Lock period must be at least 1 month", field)
    elif months > policy.max_lock_period_months:
        result.add_error(
            "LOCK_PERIOD_TOO_LONG",
            f"Lock period cannot exceed {policy.max_lock_period_months} months "
            f"({policy.max_lock_period_months // 12} years)",
            field,
        )


def _validate_consumable(details: ConsumableDetails, policy: WaqfPolicy, result: ValidationResult) -> None:
    schedule = details.spending_schedule
    if schedule not in policy.spending_schedules:
        result.add_error(
            "INVALID_SPENDING_SCHEDULE",
            f"Invalid spending schedule: {schedule}",
            "consumable_details.spending_schedule",
        )
    elif schedule == "milestone-based":
        if not details.milestones:
            result.add_error(
                "MILESTONES_REQUIRED",
                "Milestone-based spending requires at least one milestone",
                "consumable_details.milestones",
            )
    elif schedule == "phased":
        if not (details.start_date or details.end_date or details.minimum_monthly_distribution is not None):
            result.add_error(
                "PHASED_BOUNDARIES_REQUIRED",
                "Phased spending requires either time boundaries or minimum distribution amount",
                "consumable_details",
            )
    elif schedule == "ongoing":
        if (
            details.minimum_monthly_distribution is None
            and details.target_amount is None
            and details.target_beneficiaries is None
        ):
            result.add_error(
                "ONGOING_TARGET_REQUIRED",
                "Ongoing spending requires minimum distribution or target criteria",
                "consumable_details",
            )

    if details.start_date is not None and details.end_date is not None:
        if not details.start_date.strip() or not details.end_date.strip():
            result.add_error("EMPTY_DATES", "Start and end dates cannot be empty", "consumable_details")

    if details.target_amount is not None and details.target_amount <= 0:
        result.add_error("INVALID_TARGET_AMOUNT", "Target amount must be positive", "consumable_details.target_amount")
    if details.target_beneficiaries is not None and details.target_beneficiaries < 1:
        result.add_error(
            "INVALID_TARGET_BENEFICIARIES",
            "Target beneficiaries must be at least 1",
            "consumable_details.target_beneficiaries",
        )
    if details.minimum_monthly_distribution is not None and details.minimum_monthly_distribution <= 0:
        result.add_error(
            "INVALID_MINIMUM_DISTRIBUTION",
            "Minimum monthly distribution must be positive",
            "consumable_details.minimum_monthly_distribution",
        )


def _validate_revolving(details: RevolvingDetails, policy: WaqfPolicy, result: ValidationResult) -> None:
    validate_lock_period(details.lock_period_months, policy, result, "revolving_details.lock_period_months")

    method = details.principal_return_method
    if method not in policy.principal_return_methods:
        result.add_error(
            "INVALID_RETURN_METHOD",
            f"Invalid principal return method: {method}",
            "revolving_details.principal_return_method",
        )
    elif method == "installments" and details.installment_schedule is None:
        result.add_error(
            "INSTALLMENT_SCHEDULE_REQUIRED",
            "Installment method requires installment schedule",
            "revolving_details.installment_schedule",
        )

    schedule = details.installment_schedule
    if schedule is not None:
        if schedule.frequency not in policy.installment_interval_days:
            result.add_error(
                "INVALID_INSTALLMENT_FREQUENCY",
                f"Invalid installment frequency: {schedule.frequency}",
                "revolving_details.installment_schedule.frequency",
            )
        if schedule.number_of_installments < 1:
            result.add_error(
                "INVALID_INSTALLMENT_COUNT",
                "Installment schedule requires at least one installment",
                "revolving_details.installment_schedule.number_of_installments",
            )

    penalty = details.early_withdrawal_penalty
    if penalty is not None and not 0 <= penalty <= 1:
        result.add_error(
            "INVALID_PENALTY",
            f"Early withdrawal penalty must be between 0 and 1, got {penalty}",
            "revolving_details.early_withdrawal_penalty",
        )

    preference = details.auto_rollover_preference
    if preference is not None and preference not in policy.auto_rollover_preferences:
        result.add_error(
            "INVALID_ROLLOVER_PREFERENCE",
            f"Invalid auto rollover preference: {preference}",
            "revolving_details.auto_rollover_preference",
        )


def hybrid_allocation_total(allocation: HybridCauseAllocation):
    split = allocation.allocations
    return safe_add(
        split.permanent or 0,
        split.temporary_consumable or 0,
        split.temporary_revolving or 0,
    )


def _validate_hybrid(
    waqf: WaqfData, policy: WaqfPolicy, result: ValidationResult
) -> None:
    if not waqf.is_hybrid:
        result.add_error("HYBRID_FLAG_REQUIRED", "Hybrid waqf type must have is_hybrid flag set to true", "is_hybrid")
    if not waqf.hybrid_allocations:
        result.add_error(
            "HYBRID_ALLOCATIONS_REQUIRED",
            "Hybrid waqf must have at least one cause allocation",
            "hybrid_allocations",
        )
        return

    if not policy.enforce_hybrid_allocation_sum:
        logger.warning(
            f"[WAQF_TYPE] Hybrid allocation sum check is disabled by policy; "
            f"accepting allocations for waqf {waqf.id} unchecked"
        )
        return

    for allocation in waqf.hybrid_allocations:
        total = hybrid_allocation_total(allocation)
        if not within_tolerance(total, 100, policy.allocation_tolerance):
            result.add_error(
                "HYBRID_ALLOCATION_SUM",
                f"Hybrid allocations for cause {allocation.cause_id} must sum to 100%, got {float(total):.2f}%",
                "hybrid_allocations",
            )


def validate_waqf_type_details(waqf: WaqfData, policy: WaqfPolicy = DEFAULT_POLICY) -> ValidationResult:
    result = ValidationResult()
    waqf_type = waqf.waqf_type

    if waqf_type == WaqfType.PERMANENT:
        if waqf.consumable_details is not None:
            result.add_error("PERMANENT_HAS_CONSUMABLE", "Permanent waqf cannot have consumable details", "consumable_details")
        if waqf.revolving_details is not None:
            result.add_error("PERMANENT_HAS_REVOLVING", "Permanent waqf cannot have revolving details", "revolving_details")
        if waqf.is_hybrid:
            result.add_error("PERMANENT_IS_HYBRID", "Permanent waqf cannot be hybrid", "is_hybrid")

    elif waqf_type == WaqfType.TEMPORARY_CONSUMABLE:
        if waqf.consumable_details is None:
            result.add_error(
                "CONSUMABLE_DETAILS_REQUIRED",
                "Temporary consumable waqf requires consumable details",
                "consumable_details",
            )
        else:
            _validate_consumable(waqf.consumable_details, policy, result)
        if waqf.revolving_details is not None:
            result.add_error(
                "CONSUMABLE_HAS_REVOLVING",
                "Temporary consumable waqf cannot have revolving details",
                "revolving_details",
            )

    elif waqf_type == WaqfType.TEMPORARY_REVOLVING:
        if waqf.revolving_details is None:
            result.add_error(
                "REVOLVING_DETAILS_REQUIRED",
                "Temporary revolving waqf requires revolving details",
                "revolving_details",
            )
        else:
            _validate_revolving(waqf.revolving_details, policy, result)
        if waqf.consumable_details is not None:
            result.add_error(
                "REVOLVING_HAS_CONSUMABLE",
                "Temporary revolving waqf cannot have consumable details",
                "consumable_details",
            )

    elif waqf_type == WaqfType.HYBRID:
        _validate_hybrid(waqf, policy, result)
        # Hybrid slices carry their own detail records
        if waqf.consumable_details is not None:
            _validate_consumable(waqf.consumable_details, policy, result)
        if waqf.revolving_details is not None:
            _validate_revolving(waqf.revolving_details, policy, result)

    if waqf_type != WaqfType.HYBRID and waqf.hybrid_allocations:
        result.add_error(
            "NON_HYBRID_HAS_ALLOCATIONS",
            "Non-hybrid waqf cannot have hybrid allocations",
            "hybrid_allocations",
        )

    return result


def validate_waqf_type_and_details(waqf: WaqfData, policy: WaqfPolicy = DEFAULT_POLICY) -> None:
    """Raise WaqfTypeValidationError naming every violated type rule."""
    validate_waqf_type_details(waqf, policy).raise_for_errors(WaqfTypeValidationError)
