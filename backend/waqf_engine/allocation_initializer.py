"""
Cause allocation initializer.

Turns the per-cause percentages of a new waqf into the amounts stored in
financial.cause_allocations. Causes without an explicit percentage get an
equal share.
"""

from decimal import Decimal
from typing import Dict, List
import logging

from .financial_precision import calculate_percentage, round_financial, safe_divide, safe_subtract, to_float
from models import WaqfData, FinancialMetrics

logger = logging.getLogger(__name__)


def needs_cause_allocation_init(financial: FinancialMetrics) -> bool:
    """True when cause_allocations is empty or every amount is zero."""
    return all(amount == 0 for amount in financial.cause_allocations.values())


def compute_cause_allocations(
    waqf_asset: float, selected_causes: List[str], cause_allocation: Dict[str, float]
) -> Dict[str, float]:
    if not selected_causes:
        return {}

    equal_share = Decimal(100) if len(selected_causes) == 1 else safe_divide(100, len(selected_causes))
    percentages = [
        (cause_id, Decimal(str(cause_allocation[cause_id])) if cause_id in cause_allocation else equal_share)
        for cause_id in selected_causes
    ]

    amounts = {cause_id: round_financial(calculate_percentage(waqf_asset, pct)) for cause_id, pct in percentages}

    # When the shares cover the whole asset, put the cent rounding residue on
    # the last cause so the amounts add back up to waqf_asset exactly
    total_pct = sum(pct for _, pct in percentages)
    if abs(total_pct - 100) <= Decimal("0.01"):
        last_cause = selected_causes[-1]
        residue = safe_subtract(round_financial(waqf_asset), sum(amounts.values()))
        amounts[last_cause] = amounts[last_cause] + residue

    return {cause_id: to_float(amount) for cause_id, amount in amounts.items()}


def initialize_cause_allocations(waqf: WaqfData) -> WaqfData:
    """Return a copy of waqf with cause_allocations filled in, if they were unset."""
    if not needs_cause_allocation_init(waqf.financial):
        return waqf

    updated = waqf.model_copy(deep=True)
    updated.financial.cause_allocations = compute_cause_allocations(
        waqf.waqf_asset, waqf.selected_causes, waqf.cause_allocation
    )
    logger.info(
        f"[ALLOCATION] Initialized cause allocations for waqf {waqf.id}: "
        f"{updated.financial.cause_allocations}"
    )
    return updated
