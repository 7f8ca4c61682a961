"""
TRANCHE SERVICE

Async wrappers that run the tranche engine against stored waqfs. Each
operation loads the waqf, applies the pure engine function, writes the
result back with compare-and-swap and records an audit entry. Conversion
creates the new waqf first and removes it again if the source write fails.
"""

from typing import List, Optional
import logging

from audit_service import AuditService
from config import Settings
from models import (
    ConsumableDetails,
    ContributionTranche,
    InvestmentStrategy,
    TrancheExpirationPreference,
    WaqfAction,
    WaqfData,
    WaqfType,
)
from waqf_engine.clock import resolve_now
from waqf_engine.errors import PermissionDeniedError
from waqf_engine.tranche_conversion import ConversionOutcome, convert_tranche
from waqf_engine.tranche_engine import (
    RevolvingBalance,
    TrancheReturnOutcome,
    calculate_revolving_balance,
    get_matured_tranches,
    mark_missed_installments,
    mark_tranche_as_returned,
    record_installment_payment,
    refresh_tranche_statuses,
    rollover_tranche,
    update_expiration_preference,
)
from waqf_repository import WaqfRepository

logger = logging.getLogger(__name__)


class TrancheService:

    def __init__(self, repository: WaqfRepository, audit: AuditService, settings: Settings):
        self.repository = repository
        self.audit = audit
        self.settings = settings

    @property
    def policy(self):
        return self.settings.policy

    def authorize(self, waqf: WaqfData, caller: str, operation: str) -> None:
        """Tranche operations belong to the waqf creator and system principals."""
        if caller != waqf.created_by and not self.settings.is_system(caller):
            logger.warning(f"[SECURITY] {caller} attempted {operation} on waqf {waqf.id} without permission")
            raise PermissionDeniedError(
                f"Only the waqf creator or a system principal can perform {operation}", ["created_by"]
            )

    # =========================================================================
    # RETURN
    # =========================================================================

    async def return_tranche(
        self, waqf_id: str, tranche_id: str, caller: str, now: Optional[int] = None
    ) -> TrancheReturnOutcome:
        now = resolve_now(now)

        def mutate(waqf: WaqfData):
            self.authorize(waqf, caller, "tranche return")
            outcome = mark_tranche_as_returned(waqf, tranche_id, now, self.policy)
            return outcome.waqf, outcome

        outcome = await self.repository.update(waqf_id, mutate)
        notes = f"Tranche {tranche_id} via {outcome.path}: net {outcome.net_return:.2f}, penalty {outcome.penalty:.2f}"
        if outcome.new_tranche_id:
            notes += f", successor {outcome.new_tranche_id}"
        await self.audit.log_action(waqf_id, WaqfAction.TRANCHE_RETURN, caller, notes, now)
        return outcome

    # =========================================================================
    # ROLLOVER
    # =========================================================================

    async def rollover_tranche(
        self,
        waqf_id: str,
        tranche_id: str,
        rollover_months: int,
        caller: str,
        target_cause_id: Optional[str] = None,
        now: Optional[int] = None,
    ) -> ContributionTranche:
        now = resolve_now(now)

        def mutate(waqf: WaqfData):
            self.authorize(waqf, caller, "tranche rollover")
            return rollover_tranche(waqf, tranche_id, rollover_months, target_cause_id, now, self.policy)

        successor = await self.repository.update(waqf_id, mutate)
        await self.audit.log_action(
            waqf_id,
            WaqfAction.TRANCHE_ROLLOVER,
            caller,
            f"Tranche {tranche_id} rolled over into {successor.id} for {rollover_months} months",
            now,
        )
        return successor

    async def process_auto_rollover(self, waqf_id: str, now: Optional[int] = None) -> List[str]:
        """
        Roll over every matured tranche of a waqf whose auto-rollover preference
        is set (and not "none"). Also marks overdue installments as missed.
        Returns the ids of the successor tranches created.
        """
        now = resolve_now(now)

        def mutate(waqf: WaqfData):
            waqf = refresh_tranche_statuses(waqf, now)
            waqf, missed = mark_missed_installments(waqf, now)
            details = waqf.revolving_details
            if details is None:
                return None, []

            preference = details.auto_rollover_preference
            if not preference or preference == "none":
                return (waqf if missed else None), []

            created = []
            for tranche in get_matured_tranches(waqf, now):
                waqf, successor = rollover_tranche(
                    waqf,
                    tranche.id,
                    details.lock_period_months,
                    details.auto_rollover_target_cause,
                    now,
                    self.policy,
                )
                created.append(successor.id)
            return waqf, created

        created = await self.repository.update(waqf_id, mutate)
        if created:
            await self.audit.log_action(
                waqf_id,
                WaqfAction.TRANCHE_ROLLOVER,
                self.settings.system_principal,
                f"Auto-rollover created tranches: {', '.join(created)}",
                now,
            )
        return created

    # =========================================================================
    # CONVERSION
    # =========================================================================

    async def convert_tranche(
        self,
        waqf_id: str,
        tranche_id: str,
        target_type: WaqfType,
        caller: str,
        investment_strategy: Optional[InvestmentStrategy] = None,
        consumable_details: Optional[ConsumableDetails] = None,
        now: Optional[int] = None,
    ) -> ConversionOutcome:
        now = resolve_now(now)

        def mutate(waqf: WaqfData):
            self.authorize(waqf, caller, "tranche conversion")
            outcome = convert_tranche(
                waqf, tranche_id, target_type, investment_strategy, consumable_details, now, self.policy
            )
            return outcome.source, outcome

        # The new waqf exists before the source gives up the tranche
        source, _ = await self.repository.load(waqf_id)
        _, planned = mutate(source)
        converted = planned.converted
        await self.repository.create(
            converted,
            owner=converted.created_by,
            description=f"converted_from:{waqf_id};tranche:{tranche_id}",
        )

        try:
            outcome = await self.repository.update(waqf_id, mutate)
        except Exception as e:
            logger.error(
                f"[TRANCHE] Conversion of tranche {tranche_id} in waqf {waqf_id} failed, "
                f"removing converted waqf {converted.id}: {e}"
            )
            await self.repository.discard(converted.id)
            raise
        outcome.converted = converted

        await self.audit.log_action(
            waqf_id,
            WaqfAction.TRANCHE_CONVERSION,
            caller,
            f"Tranche {tranche_id} ({outcome.amount:.2f}) converted into waqf {outcome.converted.id}",
            now,
        )
        await self.audit.log_action(
            outcome.converted.id,
            WaqfAction.CREATE,
            caller,
            f"Created by conversion of tranche {tranche_id} from waqf {waqf_id}",
            now,
        )
        return outcome

    # =========================================================================
    # INSTALLMENTS & PREFERENCES
    # =========================================================================

    async def record_installment_payment(
        self, waqf_id: str, tranche_id: str, installment_id: str, caller: str, now: Optional[int] = None
    ) -> float:
        now = resolve_now(now)

        def mutate(waqf: WaqfData):
            self.authorize(waqf, caller, "installment payment")
            return record_installment_payment(waqf, tranche_id, installment_id, now)

        released = await self.repository.update(waqf_id, mutate)
        await self.audit.log_action(
            waqf_id,
            WaqfAction.INSTALLMENT_PAYMENT,
            caller,
            f"Installment {installment_id} of tranche {tranche_id} paid: {released:.2f}",
            now,
        )
        return released

    async def update_expiration_preference(
        self,
        waqf_id: str,
        tranche_id: str,
        preference: TrancheExpirationPreference,
        caller: str,
        now: Optional[int] = None,
    ) -> WaqfData:
        now = resolve_now(now)

        def mutate(waqf: WaqfData):
            self.authorize(waqf, caller, "expiration preference change")
            updated = update_expiration_preference(waqf, tranche_id, preference, self.policy)
            updated.updated_at = str(now)
            return updated, updated

        updated = await self.repository.update(waqf_id, mutate)
        await self.audit.log_action(
            waqf_id,
            WaqfAction.UPDATE,
            caller,
            f"Expiration preference of tranche {tranche_id} set to {preference.action.value}",
            now,
        )
        return updated

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_balance_summary(self, waqf_id: str, now: Optional[int] = None) -> RevolvingBalance:
        waqf, _ = await self.repository.load(waqf_id)
        return calculate_revolving_balance(waqf, resolve_now(now))
