"""
Waqf policy tables.

A WaqfPolicy is built once at process start (see config.Settings) and passed
by reference into validators and the tranche engine. It is frozen so no
request can change the rules another request sees.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Mapping
from types import MappingProxyType


SPENDING_SCHEDULES = frozenset({"immediate", "phased", "milestone-based", "ongoing"})
PRINCIPAL_RETURN_METHODS = frozenset({"lump_sum", "installments"})
AUTO_ROLLOVER_PREFERENCES = frozenset({"none", "same_cause", "cause_pool"})

# Installment frequency -> interval length in days
INSTALLMENT_INTERVAL_DAYS: Mapping[str, int] = MappingProxyType({
    "monthly": 30,
    "quarterly": 90,
    "annually": 365,
})

REPORTING_FREQUENCIES = frozenset({"quarterly", "semiannually", "yearly"})
REPORT_TYPES = frozenset({"financial", "impact"})
DELIVERY_METHODS = frozenset({"email", "platform", "both"})


@dataclass(frozen=True)
class WaqfPolicy:
    min_waqf_asset: float = 100.0
    max_waqf_asset: float = 1_000_000_000.0
    min_lock_period_months: int = 1
    max_lock_period_months: int = 240
    min_consumable_duration_months: int = 1
    max_consumable_duration_months: int = 60
    days_per_month: int = 30
    allocation_tolerance: float = 0.01
    enforce_hybrid_allocation_sum: bool = True

    spending_schedules: FrozenSet[str] = SPENDING_SCHEDULES
    principal_return_methods: FrozenSet[str] = PRINCIPAL_RETURN_METHODS
    auto_rollover_preferences: FrozenSet[str] = AUTO_ROLLOVER_PREFERENCES
    installment_interval_days: Mapping[str, int] = field(
        default_factory=lambda: INSTALLMENT_INTERVAL_DAYS
    )
    reporting_frequencies: FrozenSet[str] = REPORTING_FREQUENCIES
    report_types: FrozenSet[str] = REPORT_TYPES
    delivery_methods: FrozenSet[str] = DELIVERY_METHODS


DEFAULT_POLICY = WaqfPolicy()
