"""
WAQF DOCUMENT VALIDATOR

General shape and range rules for every waqf write:
1. Identity, name and description
2. Initial capital is a finite amount within range
3. Donor profile
4. Selected causes and reporting preferences
5. Financial metrics are non-negative and reconcile with the balance
6. Creator and timestamps are present

All violations are collected into one ValidationResult.
"""

from typing import Optional
import logging

from .financial_precision import is_finite_amount, safe_add, safe_subtract, within_tolerance
from .policy import WaqfPolicy, DEFAULT_POLICY
from .validation import ValidationResult
from .errors import WaqfValidationError
from models import WaqfData, WaqfStatus, DonorProfile, ReportingPreferences, FinancialMetrics

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
MIN_DESCRIPTION_LENGTH = 10
MAX_DESCRIPTION_LENGTH = 2000
MIN_PHONE_LENGTH = 10
MAX_PHONE_LENGTH = 20
MIN_ADDRESS_LENGTH = 10
MAX_ADDRESS_LENGTH = 200

TEXT_PUNCTUATION = ".,!?;:()[]{}\"'-_/\\@#$%&*+=<>|~`^°§"


def is_valid_text_character(c: str) -> bool:
    return c.isalnum() or c.isspace() or c in TEXT_PUNCTUATION


def is_valid_email(email: str) -> bool:
    return "@" in email and "." in email and len(email) > 5


def expected_balance(financial: FinancialMetrics):
    return safe_subtract(
        safe_add(financial.total_donations, financial.total_investment_return),
        safe_add(financial.total_distributed, financial.total_principal_released),
    )


def _validate_text(
    value: str, label: str, min_length: int, max_length: int, result: ValidationResult, check_chars: bool
) -> None:
    trimmed = value.strip()
    if not trimmed:
        result.add_error(f"{label.upper()}_EMPTY", f"{label} cannot be empty", label.lower())
        return
    if len(trimmed) < min_length:
        result.add_error(
            f"{label.upper()}_TOO_SHORT",
            f"{label} too short: minimum {min_length} characters, got {len(trimmed)}",
            label.lower(),
        )
    if len(trimmed) > max_length:
        result.add_error(
            f"{label.upper()}_TOO_LONG",
            f"{label} too long: maximum {max_length} characters, got {len(trimmed)}",
            label.lower(),
        )
    if check_chars:
        invalid = "".join(sorted({c for c in trimmed if not is_valid_text_character(c)}))
        if invalid:
            result.add_error(
                f"{label.upper()}_INVALID_CHARACTERS",
                f"{label} contains invalid characters: {invalid}",
                label.lower(),
            )


def _validate_asset(amount: float, policy: WaqfPolicy, result: ValidationResult) -> None:
    if not is_finite_amount(amount):
        result.add_error("ASSET_INVALID", f"Invalid initial capital: {amount}", "waqf_asset")
        return
    # The creation-time minimum is enforced separately by the write hook
    if amount <= 0:
        result.add_error("ASSET_INVALID", "Invalid initial capital: must be positive", "waqf_asset")
    if amount > policy.max_waqf_asset:
        result.add_error(
            "ASSET_TOO_HIGH",
            f"Initial capital too high: maximum {policy.max_waqf_asset}, got {amount}",
            "waqf_asset",
        )
    if round(amount, 2) != amount:
        result.add_warning("Initial capital has more than 2 decimal places - will be rounded")


def _validate_donor(donor: DonorProfile, result: ValidationResult) -> None:
    name = donor.name.strip()
    if not name:
        result.add_error("DONOR_NAME_EMPTY", "Donor name cannot be empty", "donor.name")
    elif len(name) < MIN_NAME_LENGTH:
        result.add_error(
            "DONOR_NAME_TOO_SHORT",
            f"Donor name too short: minimum {MIN_NAME_LENGTH} characters, got {len(name)}",
            "donor.name",
        )

    if not donor.email.strip():
        result.add_error("DONOR_EMAIL_EMPTY", "Donor email cannot be empty", "donor.email")
    elif not is_valid_email(donor.email):
        result.add_error("DONOR_EMAIL_INVALID", f"Invalid donor email format: {donor.email}", "donor.email")

    phone = donor.phone.strip()
    if phone and not MIN_PHONE_LENGTH <= len(phone) <= MAX_PHONE_LENGTH:
        result.add_error(
            "DONOR_PHONE_INVALID",
            f"Donor phone invalid length: expected {MIN_PHONE_LENGTH}-{MAX_PHONE_LENGTH} "
            f"characters, got {len(phone)}",
            "donor.phone",
        )

    address = donor.address.strip()
    if address and len(address) < MIN_ADDRESS_LENGTH:
        result.add_error(
            "DONOR_ADDRESS_TOO_SHORT",
            f"Donor address too short: minimum {MIN_ADDRESS_LENGTH} characters, got {len(address)}",
            "donor.address",
        )
    if len(address) > MAX_ADDRESS_LENGTH:
        result.add_error(
            "DONOR_ADDRESS_TOO_LONG",
            f"Donor address too long: maximum {MAX_ADDRESS_LENGTH} characters, got {len(address)}",
            "donor.address",
        )


def _validate_reporting(prefs: ReportingPreferences, policy: WaqfPolicy, result: ValidationResult) -> None:
    if prefs.frequency not in policy.reporting_frequencies:
        result.add_error(
            "INVALID_REPORTING_FREQUENCY",
            f"Invalid reporting frequency '{prefs.frequency}'. "
            f"Valid frequencies: {', '.join(sorted(policy.reporting_frequencies))}",
            "reporting_preferences.frequency",
        )
    for report_type in prefs.report_types:
        if report_type not in policy.report_types:
            result.add_error(
                "INVALID_REPORT_TYPE",
                f"Invalid report type '{report_type}'. "
                f"Valid types: {', '.join(sorted(policy.report_types))}",
                "reporting_preferences.report_types",
            )
    if prefs.delivery_method not in policy.delivery_methods:
        result.add_error(
            "INVALID_DELIVERY_METHOD",
            f"Invalid delivery method '{prefs.delivery_method}'. "
            f"Valid methods: {', '.join(sorted(policy.delivery_methods))}",
            "reporting_preferences.delivery_method",
        )


def _validate_financial(financial: FinancialMetrics, policy: WaqfPolicy, result: ValidationResult) -> None:
    bad_values = False
    for field_name in ("total_donations", "total_distributed", "current_balance", "total_principal_released"):
        value = getattr(financial, field_name)
        if not is_finite_amount(value):
            bad_values = True
            result.add_error(
                "INVALID_FINANCIAL_VALUE",
                f"Financial field '{field_name}' is not a number",
                f"financial.{field_name}",
            )
        elif value < 0:
            bad_values = True
            result.add_error(
                "NEGATIVE_FINANCIAL_VALUE",
                f"Financial field '{field_name}' cannot be negative: {value}",
                f"financial.{field_name}",
            )
    if bad_values or not is_finite_amount(financial.total_investment_return):
        return
    if not within_tolerance(expected_balance(financial), financial.current_balance, policy.allocation_tolerance):
        result.add_error(
            "INCONSISTENT_FINANCIAL_DATA",
            "Inconsistent financial data: Current balance doesn't match calculated balance",
            "financial.current_balance",
        )


def validate_waqf_data_detailed(
    data: WaqfData,
    current: Optional[WaqfData] = None,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> ValidationResult:
    result = ValidationResult()

    if not data.id.strip():
        result.add_error("ID_EMPTY", "Waqf ID cannot be empty", "id")
    _validate_text(data.name, "Name", MIN_NAME_LENGTH, MAX_NAME_LENGTH, result, check_chars=True)
    _validate_text(
        data.description, "Description", MIN_DESCRIPTION_LENGTH, MAX_DESCRIPTION_LENGTH, result, check_chars=False
    )
    _validate_asset(data.waqf_asset, policy, result)
    _validate_donor(data.donor, result)

    if not data.selected_causes:
        result.add_error("NO_CAUSES_SELECTED", "At least one cause must be selected", "selected_causes")
    for cause_id in data.selected_causes:
        if not cause_id.strip():
            result.add_error("INVALID_CAUSE_ID", f"Invalid cause ID: '{cause_id}'", "selected_causes")

    _validate_reporting(data.reporting_preferences, policy, result)
    _validate_financial(data.financial, policy, result)

    if not data.created_at.strip():
        result.add_error("CREATED_AT_EMPTY", "Created timestamp cannot be empty", "created_at")
    if data.updated_at is not None and not data.updated_at.strip():
        result.add_error("INVALID_TIMESTAMP", "Invalid timestamp format: Updated timestamp is empty", "updated_at")
    if not data.created_by.strip():
        result.add_error("CREATED_BY_EMPTY", "Created by field cannot be empty", "created_by")

    if current is not None and current.status == WaqfStatus.ACTIVE and current.name != data.name:
        result.add_warning("Changing name of active waqf requires additional approval")

    return result


def validate_waqf_data(data: WaqfData, current: Optional[WaqfData] = None, policy: WaqfPolicy = DEFAULT_POLICY) -> None:
    """Raise WaqfValidationError listing every violation; log warnings."""
    result = validate_waqf_data_detailed(data, current, policy)
    for warning in result.warnings:
        logger.warning(f"[WAQF_VALIDATOR] {data.id}: {warning}")
    result.raise_for_errors(WaqfValidationError)
