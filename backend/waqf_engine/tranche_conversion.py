"""
Tranche conversion: turn a matured tranche into a new standalone waqf.

The tranche's principal moves out of the revolving waqf and becomes the
initial capital of a permanent or temporary-consumable waqf owned by the
same creator.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
import logging

from .allocation_initializer import initialize_cause_allocations
from .clock import resolve_now
from .errors import TrancheValidationError
from .financial_precision import to_decimal, to_float
from .policy import WaqfPolicy, DEFAULT_POLICY
from .state_machine import TRANCHE_STATUS_MACHINE
from .tranche_engine import release_funds, require_revolving, require_tranche, effective_status
from .tranche_validation import CONVERSION_TARGET_TYPES, validate_tranche_conversion
from .waqf_type_validator import validate_waqf_type_and_details
from models import (
    ConsumableDetails,
    ConversionDetails,
    FinancialMetrics,
    InvestmentStrategy,
    TrancheStatus,
    WaqfData,
    WaqfStatus,
    WaqfType,
)

logger = logging.getLogger(__name__)

DEFAULT_INVESTMENT_STRATEGY = InvestmentStrategy(
    asset_allocation="60% Sukuk, 40% Equity",
    expected_annual_return=7.0,
    distribution_frequency="quarterly",
)

CONVERSION_LABELS = {
    WaqfType.PERMANENT: "Permanent",
    WaqfType.TEMPORARY_CONSUMABLE: "Consumable",
}


@dataclass
class ConversionOutcome:
    source: WaqfData
    converted: WaqfData
    tranche_id: str
    amount: float


def _converted_waqf(
    source: WaqfData,
    new_waqf_id: str,
    amount: float,
    target_type: WaqfType,
    investment_strategy: Optional[InvestmentStrategy],
    consumable_details: Optional[ConsumableDetails],
    now: int,
) -> WaqfData:
    label = CONVERSION_LABELS[target_type]
    converted_on = datetime.fromtimestamp(now / 1_000_000_000, tz=timezone.utc).strftime("%Y-%m-%d")
    waqf = WaqfData(
        id=new_waqf_id,
        name=f"{source.name} - {label} Conversion"[:100],
        description=f"Converted from revolving waqf tranche on {converted_on}",
        waqf_asset=amount,
        donor=source.donor.model_copy(deep=True),
        selected_causes=list(source.selected_causes),
        cause_allocation=dict(source.cause_allocation),
        status=WaqfStatus.ACTIVE,
        notifications=source.notifications.model_copy(deep=True),
        reporting_preferences=source.reporting_preferences.model_copy(deep=True),
        financial=FinancialMetrics(total_donations=amount, current_balance=amount),
        created_by=source.created_by,
        created_at=str(now),
        updated_at=str(now),
        waqf_type=target_type,
        is_hybrid=False,
    )
    if target_type == WaqfType.PERMANENT:
        waqf.investment_strategy = (investment_strategy or DEFAULT_INVESTMENT_STRATEGY).model_copy(deep=True)
    else:
        waqf.consumable_details = consumable_details.model_copy(deep=True)
    return initialize_cause_allocations(waqf)


def convert_tranche(
    waqf: WaqfData,
    tranche_id: str,
    target_type: WaqfType,
    investment_strategy: Optional[InvestmentStrategy] = None,
    consumable_details: Optional[ConsumableDetails] = None,
    now: Optional[int] = None,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> ConversionOutcome:
    now = resolve_now(now)
    if target_type not in CONVERSION_TARGET_TYPES:
        raise TrancheValidationError([f"Invalid target waqf type in conversion: {target_type.value}"])
    if target_type == WaqfType.TEMPORARY_CONSUMABLE and consumable_details is None:
        raise TrancheValidationError(["Consumable details are required for conversion"])

    source = waqf.model_copy(deep=True)
    details = require_revolving(source)
    tranche = require_tranche(source, tranche_id)
    validate_tranche_conversion(tranche, source, now)

    new_waqf_id = f"waqf_converted_{tranche_id}_{now}"
    converted = _converted_waqf(
        source, new_waqf_id, tranche.amount, target_type, investment_strategy, consumable_details, now
    )
    validate_waqf_type_and_details(converted, policy)

    TRANCHE_STATUS_MACHINE.validate_transition(effective_status(tranche, now), TrancheStatus.RETURNED)
    tranche.status = TrancheStatus.RETURNED
    tranche.is_returned = True
    tranche.returned_date = str(now)
    tranche.conversion_details = ConversionDetails(
        converted_at=str(now),
        new_waqf_id=new_waqf_id,
        target_waqf_type=target_type,
        notes=f"Converted to {CONVERSION_LABELS[target_type].lower()} waqf",
    )
    release_funds(source, to_decimal(tranche.amount))
    details.pending_notifications.append(
        f"Tranche {tranche_id} ({tranche.amount:.2f}) converted to "
        f"{CONVERSION_LABELS[target_type].lower()} waqf: {new_waqf_id}"
    )

    logger.info(
        f"[TRANCHE] Converted tranche {tranche_id} of waqf {waqf.id} into "
        f"{target_type.value} waqf {new_waqf_id} ({tranche.amount:.2f})"
    )
    return ConversionOutcome(
        source=source, converted=converted, tranche_id=tranche_id, amount=to_float(tranche.amount)
    )
