"""
TRANCHE LIFECYCLE ENGINE

Each contribution to a revolving waqf (or the revolving slice of a hybrid
waqf) becomes a ContributionTranche:

    locked -> matured (by time) -> returned
                                -> return_scheduled -> returned
                                -> rolled_over

Maturity is never scheduled; it is evaluated when an operation runs.
All public functions take a waqf and return an updated deep copy, leaving
the input untouched. `now` is a nanosecond timestamp (defaults to the clock).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

from .allocation_initializer import initialize_cause_allocations, needs_cause_allocation_init
from .clock import days_to_nanos, days_until, months_to_nanos, parse_nanos, resolve_now
from .errors import (
    BusinessStateError,
    EarlyWithdrawalError,
    TrancheAlreadyReturnedError,
    TrancheNotFoundError,
    TrancheValidationError,
)
from .financial_precision import (
    safe_add,
    safe_divide,
    safe_multiply,
    safe_subtract,
    to_decimal,
    to_float,
)
from .policy import WaqfPolicy, DEFAULT_POLICY
from .state_machine import TRANCHE_STATUS_MACHINE
from .tranche_validation import check_expiration_preference, validate_tranche_rollover
from models import (
    ContributionTranche,
    InstallmentPayment,
    InstallmentStatus,
    RevolvingDetails,
    TrancheExpirationPreference,
    TrancheStatus,
    WaqfData,
    WaqfType,
)

logger = logging.getLogger(__name__)

RETURN_PATH_INSTALLMENTS = "installments"
RETURN_PATH_ROLLOVER = "rollover"
RETURN_PATH_RETURNED = "returned"


@dataclass
class TrancheReturnOutcome:
    waqf: WaqfData
    tranche_id: str
    path: str
    penalty: float
    net_return: float
    released: float
    is_early: bool
    new_tranche_id: Optional[str] = None


@dataclass
class RevolvingBalance:
    total_principal: float
    locked_balance: float
    matured_balance: float
    returned_balance: float
    scheduled_balance: float
    locked_tranches: List[str] = field(default_factory=list)
    matured_tranches: List[str] = field(default_factory=list)
    returned_tranches: List[str] = field(default_factory=list)
    next_maturity_date: Optional[str] = None
    next_maturity_amount: float = 0.0


# =============================================================================
# HELPERS
# =============================================================================

def require_revolving(waqf: WaqfData) -> RevolvingDetails:
    if waqf.revolving_details is None:
        raise BusinessStateError("Waqf is not a revolving waqf")
    return waqf.revolving_details


def require_tranche(waqf: WaqfData, tranche_id: str) -> ContributionTranche:
    tranche = waqf.find_tranche(tranche_id)
    if tranche is None:
        raise TrancheNotFoundError(tranche_id, waqf.id)
    return tranche


def _maturity(tranche: ContributionTranche) -> int:
    try:
        return parse_nanos(tranche.maturity_date)
    except ValueError:
        raise TrancheValidationError([f"Invalid maturity date format for tranche {tranche.id}"])


def effective_status(tranche: ContributionTranche, now: Optional[int] = None) -> TrancheStatus:
    """Stored status, with untagged legacy tranches and lapsed lock periods resolved."""
    status = tranche.status
    if status is None:
        status = TrancheStatus.RETURNED if tranche.is_returned else TrancheStatus.LOCKED
    if status == TrancheStatus.LOCKED and now is not None:
        try:
            if now >= parse_nanos(tranche.maturity_date):
                return TrancheStatus.MATURED
        except ValueError:
            pass
    return status


def _set_status(tranche: ContributionTranche, to_state: TrancheStatus, now: int) -> None:
    TRANCHE_STATUS_MACHINE.validate_transition(effective_status(tranche, now), to_state)
    tranche.status = to_state


def _notify(details: RevolvingDetails, message: str) -> None:
    details.pending_notifications.append(message)


def _unique_tranche_id(details: RevolvingDetails, candidate: str) -> str:
    existing = {t.id for t in details.contribution_tranches}
    if candidate not in existing:
        return candidate
    suffix = 2
    while f"{candidate}_{suffix}" in existing:
        suffix += 1
    return f"{candidate}_{suffix}"


def release_funds(waqf: WaqfData, amount: Decimal) -> float:
    """Deduct principal from the balance, floored at zero. Returns what was deducted."""
    balance = to_decimal(waqf.financial.current_balance)
    deducted = min(balance, max(amount, Decimal("0")))
    waqf.financial.current_balance = to_float(safe_subtract(balance, deducted))
    waqf.financial.total_principal_released = to_float(
        safe_add(waqf.financial.total_principal_released, deducted)
    )
    return to_float(deducted)


def refresh_tranche_statuses(waqf: WaqfData, now: Optional[int] = None) -> WaqfData:
    """Promote locked tranches whose lock period has lapsed to matured."""
    now = resolve_now(now)
    if waqf.revolving_details is None:
        return waqf
    updated = waqf.model_copy(deep=True)
    for tranche in updated.revolving_details.contribution_tranches:
        if tranche.status in (None, TrancheStatus.LOCKED) and not tranche.is_returned:
            if effective_status(tranche, now) == TrancheStatus.MATURED:
                tranche.status = TrancheStatus.MATURED
    return updated


# =============================================================================
# CREATION
# =============================================================================

def _average_hybrid_revolving_ratio(waqf: WaqfData) -> Optional[Decimal]:
    allocations = waqf.hybrid_allocations or []
    if not allocations:
        return None
    total = safe_add(*[a.allocations.temporary_revolving or 0 for a in allocations])
    return safe_divide(safe_divide(total, len(allocations)), 100)


def revolving_eligible_amount(waqf: WaqfData, amount: float) -> float:
    """
    Portion of a contribution that belongs to the revolving part of the waqf.

    Hybrid waqfs keep the proportion already established by their original
    (non-rollover) tranches against the principal contributed so far, and
    fall back to the average revolving percentage of their cause splits.
    """
    if waqf.waqf_type == WaqfType.TEMPORARY_REVOLVING:
        return to_float(amount)
    if waqf.waqf_type != WaqfType.HYBRID:
        return 0.0

    originals = [
        t for t in (waqf.revolving_details.contribution_tranches if waqf.revolving_details else [])
        if t.rollover_origin_id is None
    ]
    base = waqf.financial.total_donations if waqf.financial.total_donations > 0 else waqf.waqf_asset
    if originals and base > 0:
        ratio = min(safe_divide(safe_add(*[t.amount for t in originals]), base), Decimal("1"))
    else:
        ratio = _average_hybrid_revolving_ratio(waqf)
        if ratio is None:
            logger.warning(
                f"[TRANCHE] Hybrid waqf {waqf.id} has no tranches or allocations to "
                f"derive a revolving share from; skipping tranche creation"
            )
            return 0.0
    return to_float(safe_multiply(amount, ratio))


def add_contribution_tranche(
    waqf: WaqfData,
    contribution_amount: float,
    now: Optional[int] = None,
    lock_period_months: Optional[int] = None,
    id_prefix: str = "tranche",
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> Tuple[WaqfData, Optional[ContributionTranche]]:
    """
    Append a locked tranche for the revolving slice of a contribution.

    Returns the updated waqf and the new tranche, or the waqf unchanged and
    None when the contribution has no revolving slice.
    """
    now = resolve_now(now)
    if waqf.revolving_details is None:
        if waqf.waqf_type in (WaqfType.TEMPORARY_REVOLVING, WaqfType.HYBRID):
            logger.warning(f"[TRANCHE] Waqf {waqf.id} has no revolving details; no tranche created")
        return waqf, None

    amount = revolving_eligible_amount(waqf, contribution_amount)
    if amount <= 0:
        logger.info(f"[TRANCHE] No revolving slice in contribution of {contribution_amount} to waqf {waqf.id}")
        return waqf, None

    updated = waqf.model_copy(deep=True)
    details = updated.revolving_details
    months = lock_period_months if lock_period_months is not None else details.lock_period_months
    tranche = ContributionTranche(
        id=_unique_tranche_id(details, f"{id_prefix}_{now}"),
        amount=amount,
        contribution_date=str(now),
        maturity_date=str(now + months_to_nanos(months, policy.days_per_month)),
        is_returned=False,
        status=TrancheStatus.LOCKED,
        expiration_preference=(
            details.default_expiration_preference.model_copy(deep=True)
            if details.default_expiration_preference else None
        ),
    )
    details.contribution_tranches.append(tranche)
    logger.info(
        f"[TRANCHE] Created tranche {tranche.id} ({amount:.2f}) for waqf {waqf.id}, "
        f"locked for {months} months"
    )
    return updated, tranche


def has_tranches(waqf: WaqfData) -> bool:
    return bool(waqf.revolving_details and waqf.revolving_details.contribution_tranches)


def ensure_initialized(
    waqf: WaqfData, now: Optional[int] = None, policy: WaqfPolicy = DEFAULT_POLICY
) -> Tuple[WaqfData, bool]:
    """
    Creation-time setup: cause allocation amounts, opening financial totals
    and the initial tranche. Each step only runs if its result is absent,
    so calling this twice on the same waqf changes nothing the second time.
    """
    now = resolve_now(now)
    changed = False

    if needs_cause_allocation_init(waqf.financial) and waqf.selected_causes:
        waqf = initialize_cause_allocations(waqf)
        changed = True

    financial = waqf.financial
    if (
        financial.total_donations == 0
        and financial.current_balance == 0
        and financial.total_distributed == 0
        and financial.total_principal_released == 0
    ):
        waqf = waqf.model_copy(deep=True)
        waqf.financial.total_donations = to_float(waqf.waqf_asset)
        waqf.financial.current_balance = to_float(
            safe_add(waqf.waqf_asset, waqf.financial.total_investment_return)
        )
        changed = True

    if waqf.waqf_type in (WaqfType.TEMPORARY_REVOLVING, WaqfType.HYBRID) and not has_tranches(waqf):
        waqf, tranche = add_contribution_tranche(waqf, waqf.waqf_asset, now, id_prefix="tranche_initial", policy=policy)
        changed = changed or tranche is not None

    return waqf, changed


# =============================================================================
# RETURN
# =============================================================================

def _build_installments(
    tranche: ContributionTranche, net_return: Decimal, details: RevolvingDetails, now: int, policy: WaqfPolicy
) -> List[InstallmentPayment]:
    schedule = details.installment_schedule
    count = max(schedule.number_of_installments, 1)
    interval = days_to_nanos(policy.installment_interval_days.get(schedule.frequency, 30))
    per_installment = safe_divide(net_return, count)

    payments = []
    allocated = Decimal("0")
    for index in range(count):
        amount = to_decimal(to_float(per_installment))
        if index == count - 1:
            amount = safe_subtract(net_return, allocated)
        allocated += amount
        payments.append(InstallmentPayment(
            id=f"inst_{tranche.id}_{index + 1}",
            amount=to_float(amount),
            due_date=str(now + interval * (index + 1)),
            status=InstallmentStatus.SCHEDULED,
        ))
    return payments


def mark_tranche_as_returned(
    waqf: WaqfData,
    tranche_id: str,
    now: Optional[int] = None,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> TrancheReturnOutcome:
    """
    Process a return request for one tranche.

    installments: payment plan created, nothing released yet
    rollover:     matured tranche re-locked as a successor, nothing released
    returned:     net amount released from the balance at once
    """
    now = resolve_now(now)
    updated = waqf.model_copy(deep=True)
    details = require_revolving(updated)
    tranche = require_tranche(updated, tranche_id)

    if tranche.is_returned:
        raise TrancheAlreadyReturnedError(tranche_id)
    if tranche.status == TrancheStatus.RETURN_SCHEDULED:
        raise TrancheAlreadyReturnedError(tranche_id, "Tranche return has already been scheduled")

    maturity = _maturity(tranche)
    is_early = now < maturity
    if is_early and not details.early_withdrawal_allowed:
        raise EarlyWithdrawalError(tranche_id, tranche.maturity_date)

    rate = (details.early_withdrawal_penalty or 0) if is_early else 0
    penalty = max(safe_multiply(tranche.amount, rate), Decimal("0"))
    net_return = max(safe_subtract(tranche.amount, penalty), Decimal("0"))
    uses_installments = (
        details.principal_return_method == "installments" and details.installment_schedule is not None
    )
    rollover_preference = details.auto_rollover_preference

    released = 0.0
    new_tranche_id = None

    if uses_installments:
        if not tranche.installment_payments:
            tranche.installment_payments = _build_installments(tranche, net_return, details, now, policy)
        _set_status(tranche, TrancheStatus.RETURN_SCHEDULED, now)
        tranche.is_returned = False
        tranche.returned_date = None
        path = RETURN_PATH_INSTALLMENTS
        _notify(details, f"Installment schedule created for tranche {tranche_id}. Total to return: {net_return:.2f}")

    elif not is_early and rollover_preference and rollover_preference != "none":
        _set_status(tranche, TrancheStatus.ROLLED_OVER, now)
        successor = ContributionTranche(
            id=_unique_tranche_id(details, f"tranche_rollover_{tranche_id}_{now}"),
            amount=to_float(net_return),
            contribution_date=str(now),
            maturity_date=str(now + months_to_nanos(details.lock_period_months, policy.days_per_month)),
            is_returned=False,
            status=TrancheStatus.LOCKED,
            rollover_origin_id=tranche_id,
            cause_id=details.auto_rollover_target_cause or tranche.cause_id,
            expiration_preference=(
                tranche.expiration_preference.model_copy(deep=True) if tranche.expiration_preference else None
            ),
        )
        details.contribution_tranches.append(successor)
        tranche.rollover_target_id = successor.id
        tranche.is_returned = True
        tranche.returned_date = str(now)
        new_tranche_id = successor.id
        path = RETURN_PATH_ROLLOVER
        if details.auto_rollover_target_cause:
            _notify(
                details,
                f"Matured tranche {tranche_id} rolled over into {successor.id} "
                f"for cause {details.auto_rollover_target_cause}",
            )
        else:
            _notify(
                details,
                f"Matured tranche {tranche_id} rolled over into {successor.id} (strategy: {rollover_preference})",
            )

    else:
        _set_status(tranche, TrancheStatus.RETURNED, now)
        tranche.is_returned = True
        tranche.returned_date = str(now)
        released = release_funds(updated, net_return)
        path = RETURN_PATH_RETURNED

    tranche.penalty_applied = to_float(penalty) if penalty > 0 else None
    if is_early:
        _notify(details, f"Early withdrawal processed for tranche {tranche_id}. Penalty applied: {penalty:.2f}")

    logger.info(
        f"[TRANCHE] Tranche {tranche_id} ({tranche.amount:.2f}) processed for waqf {waqf.id} via {path}. "
        f"Released: {released:.2f}, Penalty: {to_float(penalty):.2f}"
    )
    return TrancheReturnOutcome(
        waqf=updated,
        tranche_id=tranche_id,
        path=path,
        penalty=to_float(penalty),
        net_return=to_float(net_return),
        released=released,
        is_early=is_early,
        new_tranche_id=new_tranche_id,
    )


# =============================================================================
# INSTALLMENTS
# =============================================================================

def record_installment_payment(
    waqf: WaqfData,
    tranche_id: str,
    installment_id: str,
    now: Optional[int] = None,
) -> Tuple[WaqfData, float]:
    """
    Pay one scheduled installment. The amount leaves the balance now; the
    tranche becomes returned once no installment is left scheduled.
    """
    now = resolve_now(now)
    updated = waqf.model_copy(deep=True)
    require_revolving(updated)
    tranche = require_tranche(updated, tranche_id)

    if tranche.status != TrancheStatus.RETURN_SCHEDULED:
        raise BusinessStateError(f"Tranche {tranche_id} has no scheduled installments")

    payment = next((p for p in tranche.installment_payments or [] if p.id == installment_id), None)
    if payment is None:
        raise TrancheNotFoundError(installment_id, waqf.id)
    if payment.status == InstallmentStatus.PAID:
        raise BusinessStateError(f"Installment {installment_id} has already been paid")

    payment.status = InstallmentStatus.PAID
    payment.paid_date = str(now)
    released = release_funds(updated, to_decimal(payment.amount))

    if all(p.status == InstallmentStatus.PAID for p in tranche.installment_payments):
        _set_status(tranche, TrancheStatus.RETURNED, now)
        tranche.is_returned = True
        tranche.returned_date = str(now)
        logger.info(f"[TRANCHE] All installments paid; tranche {tranche_id} returned")

    return updated, released


def mark_missed_installments(waqf: WaqfData, now: Optional[int] = None) -> Tuple[WaqfData, List[str]]:
    """Flag scheduled installments past their due date as missed."""
    now = resolve_now(now)
    if waqf.revolving_details is None:
        return waqf, []
    updated = waqf.model_copy(deep=True)
    missed = []
    for tranche in updated.revolving_details.contribution_tranches:
        for payment in tranche.installment_payments or []:
            if payment.status == InstallmentStatus.SCHEDULED and parse_nanos(payment.due_date) < now:
                payment.status = InstallmentStatus.MISSED
                missed.append(payment.id)
    if missed:
        logger.warning(f"[TRANCHE] Waqf {waqf.id} missed installments: {', '.join(missed)}")
    return updated, missed


# =============================================================================
# ROLLOVER
# =============================================================================

def rollover_tranche(
    waqf: WaqfData,
    tranche_id: str,
    rollover_months: int,
    target_cause_id: Optional[str] = None,
    now: Optional[int] = None,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> Tuple[WaqfData, ContributionTranche]:
    """Re-lock a matured tranche for rollover_months as a new successor tranche."""
    now = resolve_now(now)
    updated = waqf.model_copy(deep=True)
    details = require_revolving(updated)
    tranche = require_tranche(updated, tranche_id)
    validate_tranche_rollover(tranche, rollover_months, now, policy)

    _set_status(tranche, TrancheStatus.ROLLED_OVER, now)
    successor = ContributionTranche(
        id=_unique_tranche_id(details, f"tranche_rollover_{tranche_id}_{now}"),
        amount=tranche.amount,
        contribution_date=str(now),
        maturity_date=str(now + months_to_nanos(rollover_months, policy.days_per_month)),
        is_returned=False,
        status=TrancheStatus.LOCKED,
        rollover_origin_id=tranche_id,
        cause_id=target_cause_id or tranche.cause_id,
        expiration_preference=(
            tranche.expiration_preference.model_copy(deep=True) if tranche.expiration_preference else None
        ),
    )
    details.contribution_tranches.append(successor)
    tranche.rollover_target_id = successor.id
    tranche.is_returned = True
    tranche.returned_date = str(now)

    target = f" for cause {target_cause_id}" if target_cause_id else ""
    _notify(details, f"Tranche {tranche_id} rolled over into {successor.id} for {rollover_months} months{target}")
    logger.info(f"[TRANCHE] Tranche {tranche_id} rolled over into {successor.id} for waqf {waqf.id}")
    return updated, successor


def update_expiration_preference(
    waqf: WaqfData,
    tranche_id: str,
    preference: TrancheExpirationPreference,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> WaqfData:
    updated = waqf.model_copy(deep=True)
    require_revolving(updated)
    tranche = require_tranche(updated, tranche_id)
    if tranche.is_returned or tranche.status in (TrancheStatus.ROLLED_OVER, TrancheStatus.RETURN_SCHEDULED):
        raise TrancheAlreadyReturnedError(
            tranche_id, "Expiration preference cannot be changed after the tranche is settled"
        )
    check_expiration_preference(preference, policy).raise_for_errors(TrancheValidationError)
    tranche.expiration_preference = preference.model_copy(deep=True)
    return updated


# =============================================================================
# QUERIES
# =============================================================================

def get_matured_tranches(waqf: WaqfData, now: Optional[int] = None) -> List[ContributionTranche]:
    """Tranches past maturity that are still waiting for a return decision."""
    now = resolve_now(now)
    if waqf.revolving_details is None:
        return []
    return [
        t for t in waqf.revolving_details.contribution_tranches
        if not t.is_returned and effective_status(t, now) == TrancheStatus.MATURED
    ]


def calculate_revolving_balance(waqf: WaqfData, now: Optional[int] = None) -> RevolvingBalance:
    now = resolve_now(now)
    balance = RevolvingBalance(
        total_principal=waqf.financial.total_donations,
        locked_balance=0.0,
        matured_balance=0.0,
        returned_balance=0.0,
        scheduled_balance=0.0,
    )
    if waqf.revolving_details is None:
        return balance

    locked, matured, returned, scheduled = Decimal("0"), Decimal("0"), Decimal("0"), Decimal("0")
    next_tranche = None
    for tranche in waqf.revolving_details.contribution_tranches:
        status = effective_status(tranche, now)
        if status == TrancheStatus.LOCKED:
            locked += to_decimal(tranche.amount)
            balance.locked_tranches.append(tranche.id)
            if next_tranche is None or _maturity(tranche) < _maturity(next_tranche):
                next_tranche = tranche
        elif status == TrancheStatus.MATURED:
            matured += to_decimal(tranche.amount)
            balance.matured_tranches.append(tranche.id)
        elif status == TrancheStatus.RETURNED:
            returned += to_decimal(tranche.amount)
            balance.returned_tranches.append(tranche.id)
        elif status == TrancheStatus.RETURN_SCHEDULED:
            scheduled += to_decimal(tranche.amount)

    balance.locked_balance = to_float(locked)
    balance.matured_balance = to_float(matured)
    balance.returned_balance = to_float(returned)
    balance.scheduled_balance = to_float(scheduled)
    if next_tranche is not None:
        balance.next_maturity_date = next_tranche.maturity_date
        balance.next_maturity_amount = next_tranche.amount
    return balance


def days_until_maturity(tranche: ContributionTranche, now: Optional[int] = None) -> int:
    return max(days_until(_maturity(tranche), resolve_now(now)), 0)
