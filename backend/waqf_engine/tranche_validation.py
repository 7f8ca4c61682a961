"""
Tranche validation: field checks, expiration preferences and the
eligibility checks that run before a rollover or conversion.
"""

from typing import Optional
import logging

from .clock import days_until, is_nanos, parse_nanos, resolve_now
from .errors import (
    InsufficientBalanceError,
    TrancheAlreadyReturnedError,
    TrancheNotMaturedError,
    TrancheValidationError,
)
from .policy import WaqfPolicy, DEFAULT_POLICY
from .validation import ValidationResult
from models import (
    ContributionTranche,
    ExpirationAction,
    InstallmentStatus,
    TrancheExpirationPreference,
    TrancheStatus,
    WaqfData,
    WaqfType,
)

logger = logging.getLogger(__name__)

CONVERSION_TARGET_TYPES = (WaqfType.PERMANENT, WaqfType.TEMPORARY_CONSUMABLE)


def _check_rollover_months(months: int, policy: WaqfPolicy, result: ValidationResult) -> None:
    if months < policy.min_lock_period_months:
        result.add_error("ROLLOVER_TOO_SHORT", "Rollover period must be at least 1 month", "rollover_months")
    elif months > policy.max_lock_period_months:
        result.add_error(
            "ROLLOVER_TOO_LONG",
            f"Rollover period cannot exceed {policy.max_lock_period_months} months "
            f"({policy.max_lock_period_months // 12} years)",
            "rollover_months",
        )


def check_expiration_preference(
    preference: TrancheExpirationPreference, policy: WaqfPolicy = DEFAULT_POLICY
) -> ValidationResult:
    result = ValidationResult()
    action = preference.action

    if action == ExpirationAction.ROLLOVER:
        if preference.rollover_months is None:
            result.add_error(
                "ROLLOVER_MONTHS_REQUIRED",
                "Rollover action requires rollover_months to be specified",
                "rollover_months",
            )
        else:
            _check_rollover_months(preference.rollover_months, policy, result)

    elif action == ExpirationAction.CONVERT_CONSUMABLE:
        schedule = preference.consumable_schedule
        if schedule is not None and schedule not in policy.spending_schedules:
            result.add_error(
                "INVALID_CONSUMABLE_SCHEDULE", f"Invalid consumable schedule: {schedule}", "consumable_schedule"
            )
        duration = preference.consumable_duration
        if duration is not None:
            if duration < policy.min_consumable_duration_months:
                result.add_error(
                    "CONSUMABLE_DURATION_TOO_SHORT",
                    "Consumable duration must be at least 1 month",
                    "consumable_duration",
                )
            elif duration > policy.max_consumable_duration_months:
                result.add_error(
                    "CONSUMABLE_DURATION_TOO_LONG",
                    f"Consumable duration cannot exceed {policy.max_consumable_duration_months} months",
                    "consumable_duration",
                )

    # refund and convert_permanent carry no extra settings
    return result


def validate_expiration_preference(
    preference: TrancheExpirationPreference, policy: WaqfPolicy = DEFAULT_POLICY
) -> None:
    check_expiration_preference(preference, policy).raise_for_errors(TrancheValidationError)


def _check_timestamp(value: Optional[str], label: str, code: str, result: ValidationResult, required: bool) -> None:
    if value is None or not value.strip():
        if required:
            result.add_error(f"{code}_REQUIRED", f"{label} is required", code.lower())
        return
    if not is_nanos(value):
        result.add_error(f"{code}_INVALID", f"Invalid {label.lower()} format", code.lower())


def check_tranche_data(tranche: ContributionTranche, policy: WaqfPolicy = DEFAULT_POLICY) -> ValidationResult:
    """
    Field-level checks for one tranche. Status values are closed enums and
    are rejected when the payload is decoded.
    """
    result = ValidationResult()

    if not tranche.id.strip():
        result.add_error("TRANCHE_ID_EMPTY", "Tranche ID cannot be empty", "id")
    if not tranche.amount > 0:
        result.add_error("TRANCHE_AMOUNT_INVALID", "Tranche amount must be positive", "amount")

    _check_timestamp(tranche.contribution_date, "Contribution date", "CONTRIBUTION_DATE", result, required=True)
    _check_timestamp(tranche.maturity_date, "Maturity date", "MATURITY_DATE", result, required=True)
    _check_timestamp(tranche.returned_date, "Returned date", "RETURNED_DATE", result, required=False)

    if tranche.penalty_applied is not None and tranche.penalty_applied < 0:
        result.add_error("NEGATIVE_PENALTY", "Penalty applied cannot be negative", "penalty_applied")

    for payment in tranche.installment_payments or []:
        if not payment.amount > 0:
            result.add_error(
                "INSTALLMENT_AMOUNT_INVALID",
                f"Installment payment amount must be positive ({payment.id})",
                "installment_payments",
            )
        _check_timestamp(
            payment.due_date, "Installment payment due date", "INSTALLMENT_DUE_DATE", result, required=True
        )
        _check_timestamp(
            payment.paid_date, "Installment payment paid date", "INSTALLMENT_PAID_DATE", result, required=False
        )

    if tranche.expiration_preference is not None:
        result.extend(check_expiration_preference(tranche.expiration_preference, policy))

    conversion = tranche.conversion_details
    if conversion is not None:
        if not conversion.converted_at.strip():
            result.add_error("CONVERSION_TIMESTAMP_EMPTY", "Conversion timestamp cannot be empty", "conversion_details")
        if not conversion.new_waqf_id.strip():
            result.add_error(
                "CONVERSION_WAQF_ID_EMPTY", "New waqf ID cannot be empty in conversion details", "conversion_details"
            )
        if conversion.target_waqf_type not in CONVERSION_TARGET_TYPES:
            result.add_error(
                "INVALID_CONVERSION_TARGET",
                f"Invalid target waqf type in conversion: {conversion.target_waqf_type.value}",
                "conversion_details",
            )

    return result


def validate_tranche_data(tranche: ContributionTranche, policy: WaqfPolicy = DEFAULT_POLICY) -> None:
    check_tranche_data(tranche, policy).raise_for_errors(TrancheValidationError)


def validate_waqf_tranches(waqf: WaqfData, policy: WaqfPolicy = DEFAULT_POLICY) -> None:
    """Validate every tranche of a waqf and report all problems together."""
    if not waqf.revolving_details:
        return
    result = ValidationResult()
    for tranche in waqf.revolving_details.contribution_tranches:
        for issue in check_tranche_data(tranche, policy).errors:
            issue.message = f"Tranche {tranche.id or '<unnamed>'}: {issue.message}"
            result.errors.append(issue)
    if waqf.revolving_details.default_expiration_preference is not None:
        result.extend(check_expiration_preference(waqf.revolving_details.default_expiration_preference, policy))
    result.raise_for_errors(TrancheValidationError)


# =============================================================================
# ELIGIBILITY
# =============================================================================

def _maturity_nanos(tranche: ContributionTranche) -> int:
    try:
        return parse_nanos(tranche.maturity_date)
    except ValueError:
        raise TrancheValidationError(["Invalid maturity date format"])


def ensure_matured(tranche: ContributionTranche, now: int) -> None:
    maturity = _maturity_nanos(tranche)
    if now < maturity:
        raise TrancheNotMaturedError(tranche.id, days_until(maturity, now))


def ensure_not_scheduled(tranche: ContributionTranche, operation: str) -> None:
    """A tranche being paid out in installments belongs to that schedule."""
    if tranche.status == TrancheStatus.RETURN_SCHEDULED:
        raise TrancheAlreadyReturnedError(
            tranche.id, f"Cannot {operation} a tranche whose return has already been scheduled"
        )
    if any(p.status == InstallmentStatus.PAID for p in tranche.installment_payments or []):
        raise TrancheAlreadyReturnedError(
            tranche.id, f"Cannot {operation} a tranche with paid installments"
        )


def validate_tranche_conversion(
    tranche: ContributionTranche, waqf: WaqfData, now: Optional[int] = None
) -> None:
    now = resolve_now(now)
    if tranche.is_returned:
        raise TrancheAlreadyReturnedError(tranche.id, "Cannot convert an already returned tranche")
    if tranche.conversion_details is not None:
        raise TrancheAlreadyReturnedError(tranche.id, "Tranche has already been converted")
    if tranche.status == TrancheStatus.ROLLED_OVER:
        raise TrancheAlreadyReturnedError(tranche.id, "Cannot convert a rolled-over tranche")
    ensure_not_scheduled(tranche, "convert")
    ensure_matured(tranche, now)
    if waqf.financial.current_balance < tranche.amount:
        raise InsufficientBalanceError(tranche.amount, waqf.financial.current_balance)
    logger.info(f"[TRANCHE] Tranche {tranche.id} is eligible for conversion (amount: {tranche.amount})")


def validate_tranche_rollover(
    tranche: ContributionTranche,
    rollover_months: int,
    now: Optional[int] = None,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> None:
    now = resolve_now(now)
    if tranche.is_returned:
        raise TrancheAlreadyReturnedError(tranche.id, "Cannot rollover an already returned tranche")
    if tranche.status == TrancheStatus.ROLLED_OVER:
        raise TrancheAlreadyReturnedError(tranche.id, "Tranche has already been rolled over")
    ensure_not_scheduled(tranche, "rollover")
    ensure_matured(tranche, now)

    result = ValidationResult()
    _check_rollover_months(rollover_months, policy, result)
    result.raise_for_errors(TrancheValidationError)
    logger.info(f"[TRANCHE] Tranche {tranche.id} is eligible for rollover ({rollover_months} months)")
