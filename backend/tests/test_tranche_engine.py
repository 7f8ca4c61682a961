"""
Tranche lifecycle: creation, return paths, rollover, installments, conversion
"""
import pytest

from conftest import DAY, NOW, make_hybrid_waqf, make_revolving_waqf, make_waqf
from financial_service import apply_donation_to_waqf
from models import (
    ConsumableDetails,
    DonationData,
    DonationStatus,
    ExpirationAction,
    InstallmentSchedule,
    InstallmentStatus,
    TrancheExpirationPreference,
    TrancheStatus,
    WaqfType,
)
from waqf_engine.allocation_initializer import compute_cause_allocations, initialize_cause_allocations
from waqf_engine.errors import (
    BusinessStateError,
    EarlyWithdrawalError,
    InsufficientBalanceError,
    TrancheAlreadyReturnedError,
    TrancheNotMaturedError,
    TrancheValidationError,
)
from waqf_engine.tranche_conversion import convert_tranche
from waqf_engine.tranche_engine import (
    calculate_revolving_balance,
    days_until_maturity,
    ensure_initialized,
    get_matured_tranches,
    mark_missed_installments,
    mark_tranche_as_returned,
    record_installment_payment,
    rollover_tranche,
    update_expiration_preference,
)
from waqf_engine.waqf_validator import validate_waqf_data_detailed

SIX_MONTHS = 6 * 30 * DAY
AFTER_MATURITY = NOW + SIX_MONTHS + DAY


def initialised(waqf):
    waqf, _ = ensure_initialized(waqf, NOW)
    return waqf


def only_tranche(waqf):
    tranches = waqf.revolving_details.contribution_tranches
    assert len(tranches) == 1
    return tranches[0]


class TestCauseAllocation:
    """Allocation amounts at creation"""

    def test_equal_split_sums_to_asset(self):
        amounts = compute_cause_allocations(1000, ["a", "b", "c"], {})
        assert amounts == {"a": 333.33, "b": 333.33, "c": 333.34}

    def test_single_cause_takes_everything(self):
        assert compute_cause_allocations(750, ["a"], {}) == {"a": 750.0}

    def test_explicit_percentages(self):
        amounts = compute_cause_allocations(1000, ["a", "b"], {"a": 70, "b": 30})
        assert amounts == {"a": 700.0, "b": 300.0}

    def test_existing_allocations_are_kept(self):
        waqf = make_waqf()
        waqf.financial.cause_allocations = {"cause_edu": 10.0}
        assert initialize_cause_allocations(waqf) is waqf

    def test_all_zero_allocations_are_recomputed(self):
        waqf = make_waqf()
        waqf.financial.cause_allocations = {"cause_edu": 0.0}
        assert initialize_cause_allocations(waqf).financial.cause_allocations == {"cause_edu": 1000.0}


class TestCreation:

    def test_revolving_waqf_gets_initial_tranche(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500, lock_period_months=6))
        tranche = only_tranche(waqf)
        assert tranche.id == f"tranche_initial_{NOW}"
        assert tranche.amount == 500
        assert tranche.status == TrancheStatus.LOCKED
        assert int(tranche.maturity_date) == NOW + SIX_MONTHS
        assert waqf.financial.total_donations == 500
        assert waqf.financial.current_balance == 500
        assert validate_waqf_data_detailed(waqf).is_valid

    def test_initialisation_is_idempotent(self):
        waqf = initialised(make_revolving_waqf())
        again, changed = ensure_initialized(waqf, NOW + DAY)
        assert not changed
        assert len(again.revolving_details.contribution_tranches) == 1

    def test_permanent_waqf_has_no_tranches(self):
        waqf, changed = ensure_initialized(make_waqf(), NOW)
        assert changed
        assert waqf.revolving_details is None
        assert waqf.financial.cause_allocations == {"cause_edu": 1000.0}

    def test_donation_adds_tranche_and_balance(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500, lock_period_months=6))
        donation = DonationData(
            id="don_1", waqf_id=waqf.id, date=str(NOW), amount=200, status=DonationStatus.COMPLETED
        )
        updated = apply_donation_to_waqf(waqf, donation, NOW + DAY)

        tranches = updated.revolving_details.contribution_tranches
        assert [t.amount for t in tranches] == [500, 200]
        assert tranches[1].id == f"tranche_don_1_{NOW + DAY}"
        assert updated.financial.current_balance == 700
        assert updated.financial.total_donations == 700
        assert updated.last_contribution_date == str(NOW + DAY)
        assert waqf.financial.current_balance == 500

    def test_donation_lock_period_override(self):
        waqf = initialised(make_revolving_waqf(lock_period_months=6))
        donation = DonationData(id="don_2", waqf_id=waqf.id, date=str(NOW), amount=100, lock_period_months=12)
        updated = apply_donation_to_waqf(waqf, donation, NOW)
        tranche = updated.revolving_details.contribution_tranches[-1]
        assert int(tranche.maturity_date) == NOW + 12 * 30 * DAY

    def test_non_positive_donation_rejected(self):
        waqf = initialised(make_revolving_waqf())
        donation = DonationData(id="don_3", waqf_id=waqf.id, date=str(NOW), amount=0)
        with pytest.raises(BusinessStateError):
            apply_donation_to_waqf(waqf, donation, NOW)

    def test_hybrid_tranche_uses_revolving_share(self):
        waqf = initialised(make_hybrid_waqf(waqf_asset=1000, revolving_pct=50))
        assert only_tranche(waqf).amount == 500

    def test_hybrid_donation_keeps_established_ratio(self):
        waqf = initialised(make_hybrid_waqf(waqf_asset=1000, revolving_pct=50))
        donation = DonationData(id="don_4", waqf_id=waqf.id, date=str(NOW), amount=200)
        updated = apply_donation_to_waqf(waqf, donation, NOW + DAY)
        assert updated.revolving_details.contribution_tranches[-1].amount == 100
        assert updated.financial.current_balance == 1200

    def test_default_expiration_preference_is_copied(self):
        preference = TrancheExpirationPreference(action=ExpirationAction.ROLLOVER, rollover_months=3)
        waqf = initialised(make_revolving_waqf(default_expiration_preference=preference))
        assert only_tranche(waqf).expiration_preference == preference


class TestReturn:

    def test_early_return_rejected_when_not_allowed(self):
        waqf = initialised(make_revolving_waqf())
        tranche = only_tranche(waqf)
        with pytest.raises(EarlyWithdrawalError):
            mark_tranche_as_returned(waqf, tranche.id, NOW + DAY)

    def test_early_return_applies_penalty(self):
        waqf = initialised(make_revolving_waqf(
            waqf_asset=500, early_withdrawal_allowed=True, early_withdrawal_penalty=0.1
        ))
        tranche = only_tranche(waqf)
        outcome = mark_tranche_as_returned(waqf, tranche.id, NOW + DAY)

        returned = only_tranche(outcome.waqf)
        assert outcome.is_early
        assert outcome.penalty == 50
        assert returned.penalty_applied == 50
        assert returned.status == TrancheStatus.RETURNED
        assert returned.is_returned
        assert outcome.waqf.financial.current_balance == 50
        assert outcome.waqf.financial.total_principal_released == 450
        assert any("Penalty applied: 50.00" in n for n in outcome.waqf.revolving_details.pending_notifications)
        assert validate_waqf_data_detailed(outcome.waqf).is_valid

    def test_matured_return_releases_full_amount(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500))
        outcome = mark_tranche_as_returned(waqf, only_tranche(waqf).id, AFTER_MATURITY)
        assert not outcome.is_early
        assert outcome.penalty == 0
        assert only_tranche(outcome.waqf).penalty_applied is None
        assert outcome.waqf.financial.current_balance == 0

    def test_second_return_fails(self):
        waqf = initialised(make_revolving_waqf())
        tranche_id = only_tranche(waqf).id
        outcome = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY)
        with pytest.raises(TrancheAlreadyReturnedError, match="already been returned"):
            mark_tranche_as_returned(outcome.waqf, tranche_id, AFTER_MATURITY)

    def test_non_revolving_waqf_rejected(self):
        with pytest.raises(BusinessStateError, match="not a revolving waqf"):
            mark_tranche_as_returned(make_waqf(), "tranche_x", NOW)

    def test_auto_rollover_on_return(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500, auto_rollover_preference="same_cause"))
        original_id = only_tranche(waqf).id
        outcome = mark_tranche_as_returned(waqf, original_id, AFTER_MATURITY)

        tranches = outcome.waqf.revolving_details.contribution_tranches
        assert len(tranches) == 2
        original, successor = tranches
        assert outcome.path == "rollover"
        assert successor.rollover_origin_id == original_id
        assert successor.amount == 500
        assert successor.status == TrancheStatus.LOCKED
        assert original.status == TrancheStatus.ROLLED_OVER
        assert original.rollover_target_id == successor.id
        assert outcome.waqf.financial.current_balance == 500
        assert outcome.waqf.revolving_details.pending_notifications

    def test_input_waqf_is_not_mutated(self):
        waqf = initialised(make_revolving_waqf())
        mark_tranche_as_returned(waqf, only_tranche(waqf).id, AFTER_MATURITY)
        assert not only_tranche(waqf).is_returned
        assert waqf.financial.current_balance == 500


class TestInstallments:

    def make(self):
        return initialised(make_revolving_waqf(
            waqf_asset=500,
            principal_return_method="installments",
            installment_schedule=InstallmentSchedule(frequency="monthly", number_of_installments=3),
        ))

    def test_return_schedules_installments_without_release(self):
        waqf = self.make()
        outcome = mark_tranche_as_returned(waqf, only_tranche(waqf).id, AFTER_MATURITY)
        tranche = only_tranche(outcome.waqf)

        assert outcome.path == "installments"
        assert tranche.status == TrancheStatus.RETURN_SCHEDULED
        assert not tranche.is_returned
        assert [p.amount for p in tranche.installment_payments] == [166.67, 166.67, 166.66]
        assert [int(p.due_date) for p in tranche.installment_payments] == [
            AFTER_MATURITY + 30 * DAY, AFTER_MATURITY + 60 * DAY, AFTER_MATURITY + 90 * DAY
        ]
        assert outcome.waqf.financial.current_balance == 500

    def test_scheduled_return_cannot_be_requested_again(self):
        waqf = self.make()
        tranche_id = only_tranche(waqf).id
        outcome = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY)
        with pytest.raises(TrancheAlreadyReturnedError, match="already been scheduled"):
            mark_tranche_as_returned(outcome.waqf, tranche_id, AFTER_MATURITY)

    def test_payments_release_funds_progressively(self):
        waqf = self.make()
        tranche_id = only_tranche(waqf).id
        waqf = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY).waqf
        payment_ids = [p.id for p in only_tranche(waqf).installment_payments]
        assert payment_ids[0] == f"inst_{tranche_id}_1"

        waqf, released = record_installment_payment(waqf, tranche_id, payment_ids[0], AFTER_MATURITY + 30 * DAY)
        assert released == 166.67
        assert waqf.financial.current_balance == 333.33
        assert only_tranche(waqf).status == TrancheStatus.RETURN_SCHEDULED

        for payment_id in payment_ids[1:]:
            waqf, _ = record_installment_payment(waqf, tranche_id, payment_id, AFTER_MATURITY + 90 * DAY)
        tranche = only_tranche(waqf)
        assert tranche.status == TrancheStatus.RETURNED
        assert tranche.is_returned
        assert waqf.financial.current_balance == 0
        assert waqf.financial.total_principal_released == 500

    def test_paying_twice_rejected(self):
        waqf = self.make()
        tranche_id = only_tranche(waqf).id
        waqf = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY).waqf
        payment_id = only_tranche(waqf).installment_payments[0].id
        waqf, _ = record_installment_payment(waqf, tranche_id, payment_id, AFTER_MATURITY)
        with pytest.raises(BusinessStateError, match="already been paid"):
            record_installment_payment(waqf, tranche_id, payment_id, AFTER_MATURITY)

    def test_overdue_installments_marked_missed(self):
        waqf = self.make()
        tranche_id = only_tranche(waqf).id
        waqf = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY).waqf
        waqf, missed = mark_missed_installments(waqf, AFTER_MATURITY + 45 * DAY)
        assert missed == [f"inst_{tranche_id}_1"]
        assert only_tranche(waqf).installment_payments[0].status == InstallmentStatus.MISSED

    def test_scheduled_tranche_cannot_roll_over(self):
        waqf = self.make()
        tranche_id = only_tranche(waqf).id
        waqf = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY).waqf
        with pytest.raises(TrancheAlreadyReturnedError, match="Cannot rollover"):
            rollover_tranche(waqf, tranche_id, 6, now=AFTER_MATURITY)


class TestManualRollover:

    def test_rollover_before_maturity_reports_days(self):
        waqf = initialised(make_revolving_waqf())
        with pytest.raises(TrancheNotMaturedError) as exc_info:
            rollover_tranche(waqf, only_tranche(waqf).id, 6, now=NOW + 10 * DAY)
        assert exc_info.value.days_until_maturity == 170
        assert "Matures in 170 days" in exc_info.value.message

    def test_rollover_period_bounds(self):
        waqf = initialised(make_revolving_waqf())
        with pytest.raises(TrancheValidationError, match="cannot exceed 240 months"):
            rollover_tranche(waqf, only_tranche(waqf).id, 241, now=AFTER_MATURITY)

    def test_rollover_keeps_balance(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500))
        original_id = only_tranche(waqf).id
        updated, successor = rollover_tranche(waqf, original_id, 12, "cause_health", AFTER_MATURITY)
        assert successor.cause_id == "cause_health"
        assert int(successor.maturity_date) == AFTER_MATURITY + 12 * 30 * DAY
        assert updated.find_tranche(original_id).status == TrancheStatus.ROLLED_OVER
        assert updated.financial.current_balance == 500

        with pytest.raises(TrancheAlreadyReturnedError):
            rollover_tranche(updated, original_id, 12, now=AFTER_MATURITY)


class TestConversion:

    def test_convert_to_permanent(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500))
        tranche_id = only_tranche(waqf).id
        outcome = convert_tranche(waqf, tranche_id, WaqfType.PERMANENT, now=AFTER_MATURITY)

        converted = outcome.converted
        assert converted.id == f"waqf_converted_{tranche_id}_{AFTER_MATURITY}"
        assert converted.waqf_type == WaqfType.PERMANENT
        assert converted.waqf_asset == 500
        assert converted.created_by == waqf.created_by
        assert converted.investment_strategy.distribution_frequency == "quarterly"
        assert converted.financial.cause_allocations == {"cause_edu": 500.0}

        source_tranche = only_tranche(outcome.source)
        assert source_tranche.status == TrancheStatus.RETURNED
        assert source_tranche.conversion_details.new_waqf_id == converted.id
        assert outcome.source.financial.current_balance == 0

    def test_convert_to_consumable_requires_details(self):
        waqf = initialised(make_revolving_waqf())
        with pytest.raises(TrancheValidationError, match="Consumable details are required"):
            convert_tranche(waqf, only_tranche(waqf).id, WaqfType.TEMPORARY_CONSUMABLE, now=AFTER_MATURITY)

        outcome = convert_tranche(
            waqf,
            only_tranche(waqf).id,
            WaqfType.TEMPORARY_CONSUMABLE,
            consumable_details=ConsumableDetails(spending_schedule="immediate"),
            now=AFTER_MATURITY,
        )
        assert outcome.converted.name.endswith("Consumable Conversion")

    def test_cannot_convert_to_revolving(self):
        waqf = initialised(make_revolving_waqf())
        with pytest.raises(TrancheValidationError):
            convert_tranche(waqf, only_tranche(waqf).id, WaqfType.TEMPORARY_REVOLVING, now=AFTER_MATURITY)

    def test_unmatured_tranche_cannot_convert(self):
        waqf = initialised(make_revolving_waqf())
        with pytest.raises(TrancheNotMaturedError):
            convert_tranche(waqf, only_tranche(waqf).id, WaqfType.PERMANENT, now=NOW)

    def test_insufficient_balance(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500))
        waqf.financial.current_balance = 100
        waqf.financial.total_distributed = 400
        with pytest.raises(InsufficientBalanceError):
            convert_tranche(waqf, only_tranche(waqf).id, WaqfType.PERMANENT, now=AFTER_MATURITY)

    def test_tranche_in_installments_cannot_convert(self):
        waqf = initialised(make_revolving_waqf(
            waqf_asset=500,
            principal_return_method="installments",
            installment_schedule=InstallmentSchedule(frequency="monthly", number_of_installments=2),
        ))
        tranche_id = only_tranche(waqf).id
        waqf = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY).waqf
        with pytest.raises(TrancheAlreadyReturnedError, match="return has already been scheduled"):
            convert_tranche(waqf, tranche_id, WaqfType.PERMANENT, now=AFTER_MATURITY)

        payment_id = only_tranche(waqf).installment_payments[0].id
        waqf, released = record_installment_payment(waqf, tranche_id, payment_id, AFTER_MATURITY + 30 * DAY)
        assert released == 250
        with pytest.raises(TrancheAlreadyReturnedError):
            convert_tranche(waqf, tranche_id, WaqfType.PERMANENT, now=AFTER_MATURITY + 30 * DAY)
        assert waqf.financial.total_principal_released == 250
        assert waqf.financial.current_balance == 250

    def test_paid_installment_blocks_conversion_whatever_the_status(self):
        waqf = initialised(make_revolving_waqf(
            waqf_asset=500,
            principal_return_method="installments",
            installment_schedule=InstallmentSchedule(frequency="monthly", number_of_installments=2),
        ))
        tranche_id = only_tranche(waqf).id
        waqf = mark_tranche_as_returned(waqf, tranche_id, AFTER_MATURITY).waqf
        waqf, _ = record_installment_payment(
            waqf, tranche_id, only_tranche(waqf).installment_payments[0].id, AFTER_MATURITY
        )
        only_tranche(waqf).status = TrancheStatus.MATURED
        with pytest.raises(TrancheAlreadyReturnedError, match="paid installments"):
            convert_tranche(waqf, tranche_id, WaqfType.PERMANENT, now=AFTER_MATURITY)


class TestQueries:

    def test_balance_summary(self):
        waqf = initialised(make_revolving_waqf(waqf_asset=500))
        donation = DonationData(id="don_5", waqf_id=waqf.id, date=str(NOW), amount=200)
        waqf = apply_donation_to_waqf(waqf, donation, NOW + 30 * DAY)

        balance = calculate_revolving_balance(waqf, AFTER_MATURITY)
        assert balance.matured_balance == 500
        assert balance.locked_balance == 200
        assert balance.next_maturity_date == str(NOW + 30 * DAY + SIX_MONTHS)
        assert [t.amount for t in get_matured_tranches(waqf, AFTER_MATURITY)] == [500]

    def test_days_until_maturity(self):
        waqf = initialised(make_revolving_waqf())
        assert days_until_maturity(only_tranche(waqf), NOW) == 180
        assert days_until_maturity(only_tranche(waqf), AFTER_MATURITY) == 0

    def test_expiration_preference_update(self):
        waqf = initialised(make_revolving_waqf())
        tranche_id = only_tranche(waqf).id
        preference = TrancheExpirationPreference(
            action=ExpirationAction.CONVERT_CONSUMABLE, consumable_schedule="phased", consumable_duration=12
        )
        updated = update_expiration_preference(waqf, tranche_id, preference)
        assert updated.find_tranche(tranche_id).expiration_preference.consumable_duration == 12

        with pytest.raises(TrancheValidationError, match="cannot exceed 60 months"):
            update_expiration_preference(
                waqf,
                tranche_id,
                TrancheExpirationPreference(action=ExpirationAction.CONVERT_CONSUMABLE, consumable_duration=61),
            )
