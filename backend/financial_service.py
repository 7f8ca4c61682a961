from typing import Optional
import logging

from audit_service import AuditService
from config import Settings
from models import DonationData, WaqfAction, WaqfData
from waqf_engine.clock import resolve_now
from waqf_engine.errors import BusinessStateError
from waqf_engine.financial_precision import safe_add, to_float
from waqf_engine.policy import DEFAULT_POLICY, WaqfPolicy
from waqf_engine.tranche_engine import add_contribution_tranche
from waqf_repository import WaqfRepository

logger = logging.getLogger(__name__)


def apply_donation_to_waqf(
    waqf: WaqfData,
    donation: DonationData,
    now: Optional[int] = None,
    policy: WaqfPolicy = DEFAULT_POLICY,
) -> WaqfData:
    """
    Post a completed donation to its waqf and return the updated copy.

    The revolving slice is sized against the totals as they stood before
    this donation, so the tranche is created before the totals move.
    """
    now = resolve_now(now)
    if donation.amount <= 0:
        raise BusinessStateError(f"Donation amount must be positive, got {donation.amount}")

    updated, tranche = add_contribution_tranche(
        waqf,
        donation.amount,
        now,
        lock_period_months=donation.lock_period_months,
        id_prefix=f"tranche_{donation.id}",
        policy=policy,
    )
    if updated is waqf:
        updated = waqf.model_copy(deep=True)

    updated.financial.total_donations = to_float(safe_add(updated.financial.total_donations, donation.amount))
    updated.financial.current_balance = to_float(safe_add(updated.financial.current_balance, donation.amount))
    updated.updated_at = str(now)
    updated.last_contribution_date = str(now)
    updated.applied_donation_ids.append(donation.id)

    logger.info(
        f"[DONATION] Applied donation {donation.id} ({donation.amount:.2f}) to waqf {waqf.id}. "
        f"Balance: {updated.financial.current_balance:.2f}"
        + (f", tranche {tranche.id}" if tranche else "")
    )
    return updated


class DonationFinancialService:
    """
    Applies completed donations to waqf financials.

    RULES:
    - Donation must reference an existing waqf (WaqfNotFoundError otherwise)
    - Each donation id is applied once; the waqf keeps the ids it has applied
    - Writes are compare-and-swap on the waqf version, retried on conflict
    - Writes bypass creator restrictions: only financial totals, contribution
      dates and the tranche list change
    """

    def __init__(self, repository: WaqfRepository, audit: AuditService, settings: Settings):
        self.repository = repository
        self.audit = audit
        self.settings = settings

    async def apply_donation(self, donation: DonationData, now: Optional[int] = None) -> WaqfData:
        now = resolve_now(now)
        policy = self.settings.policy

        def mutate(waqf: WaqfData):
            if donation.id in waqf.applied_donation_ids:
                return None, (waqf, False)
            updated = apply_donation_to_waqf(waqf, donation, now, policy)
            return updated, (updated, True)

        updated, applied = await self.repository.update(donation.waqf_id, mutate)
        if not applied:
            logger.info(f"[DONATION] Donation {donation.id} already applied to waqf {donation.waqf_id}")
            return updated

        await self.audit.log_action(
            donation.waqf_id,
            WaqfAction.DONATION_APPLIED,
            self.settings.system_principal,
            notes=f"Donation {donation.id}: {donation.amount:.2f} {donation.currency}",
            timestamp=now,
        )
        return updated
