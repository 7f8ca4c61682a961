from typing import Dict, List, Optional
import logging

from models import WaqfData, WaqfStatus
from waqf_engine.errors import (
    ImmutableFieldError,
    LifecycleLockedError,
    LockPeriodReductionError,
    PermissionDeniedError,
)
from waqf_engine.state_machine import WAQF_STATUS_MACHINE

logger = logging.getLogger(__name__)

# Fixed at creation. No caller, system principals included, may change these.
IMMUTABLE_FIELDS = {
    "waqf_asset": (
        "FORBIDDEN: Waqf asset (principal endowment) is immutable and cannot be changed after creation. "
        "This preserves the integrity of the Islamic Waqf principle where the principal must remain intact forever."
    ),
    "created_by": "FORBIDDEN: Creator identity cannot be changed after waqf creation.",
    "created_at": "FORBIDDEN: Creation timestamp cannot be modified.",
}

# Fields a creator may not touch on their own waqf (order is the reporting order)
CREATOR_RESTRICTED_FIELDS = [
    "selected_causes",
    "status",
    "is_donated",
    "notifications",
    "reporting_preferences",
    "financial",
    "last_contribution_date",
    "next_contribution_date",
    "next_report_date",
]

# Restricted fields that must be untouched for a change to count as financial-only
FINANCIAL_ONLY_GUARDED_FIELDS = [
    "selected_causes",
    "status",
    "is_donated",
    "notifications",
    "reporting_preferences",
]

CREATOR_EDITABLE_FIELDS = ["name", "description", "donor.name", "donor.email", "donor.phone", "donor.address"]

# Written only by the tranche lifecycle and donation posting, never through a waqf update
ENGINE_RECORDS = {
    "revolving_details.contribution_tranches": (
        "FORBIDDEN: Contribution tranches are managed by the tranche lifecycle and cannot be "
        "added, edited or removed through a waqf update."
    ),
    "applied_donation_ids": "FORBIDDEN: The record of applied donations cannot be modified.",
}

# Fields a completed waqf may still change
COMPLETED_MUTABLE_FIELDS = {"financial", "updated_at"}


def changed_fields(previous: WaqfData, updated: WaqfData) -> List[str]:
    """Top-level fields (extras included) whose values differ between two versions."""
    before = previous.model_dump(mode="json")
    after = updated.model_dump(mode="json")
    keys = list(before.keys()) + [k for k in after.keys() if k not in before]
    return [k for k in keys if before.get(k) != after.get(k)]


def _dotted(data: Dict, path: str):
    value = data
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _tranche_records(waqf: WaqfData) -> List[Dict]:
    if waqf.revolving_details is None:
        return []
    return [t.model_dump(mode="json") for t in waqf.revolving_details.contribution_tranches]


def _engine_record(waqf: WaqfData, field: str):
    if field == "revolving_details.contribution_tranches":
        return _tranche_records(waqf)
    return list(getattr(waqf, field))


class WaqfPermissionGuard:
    """
    Field-level rules for updates to an existing waqf.

    RULES (checked in order, first failure wins):
    1. waqf_asset, created_by, created_at never change
    2. Contribution tranches and applied donations are engine records
    3. Archived waqfs are frozen
    4. Completed waqfs accept only financial postings or archival
    5. Status changes follow the waqf status graph
    6. A creator editing their own waqf may only change name, description
       and donor details, unless the change is confined to financial
    7. Revolving lock period never decreases
    """

    def validate_update(self, previous: WaqfData, updated: WaqfData, caller: str) -> None:
        changes = changed_fields(previous, updated)

        self.check_immutable_fields(previous, updated, caller)
        self.check_engine_records(previous, updated, caller)
        self.check_lifecycle_lock(previous, updated, changes)

        if previous.status != updated.status:
            WAQF_STATUS_MACHINE.validate_transition(previous.status, updated.status)

        if caller == previous.created_by:
            self.check_creator_restrictions(previous, updated, caller, changes)

        self.check_lock_period(previous, updated)

    def check_immutable_fields(self, previous: WaqfData, updated: WaqfData, caller: str) -> None:
        for field, message in IMMUTABLE_FIELDS.items():
            if getattr(previous, field) != getattr(updated, field):
                logger.warning(
                    f"[SECURITY] {caller} attempted to modify immutable {field} "
                    f"from {getattr(previous, field)} to {getattr(updated, field)} for waqf: {updated.id}"
                )
                raise ImmutableFieldError(field, message)

    def check_engine_records(self, previous: WaqfData, updated: WaqfData, caller: str) -> None:
        for field, message in ENGINE_RECORDS.items():
            if _engine_record(previous, field) != _engine_record(updated, field):
                logger.warning(f"[SECURITY] {caller} attempted to rewrite {field} for waqf: {updated.id}")
                raise ImmutableFieldError(field, message)

    def check_new_waqf(self, waqf: WaqfData, caller: str) -> None:
        """A new waqf starts with no engine records; creation builds the initial tranche."""
        for field, message in ENGINE_RECORDS.items():
            if _engine_record(waqf, field):
                logger.warning(f"[SECURITY] {caller} submitted a new waqf {waqf.id} with {field}")
                raise ImmutableFieldError(field, message)

    def check_lifecycle_lock(self, previous: WaqfData, updated: WaqfData, changes: List[str]) -> None:
        if not changes:
            return
        if previous.status == WaqfStatus.ARCHIVED:
            raise LifecycleLockedError(WaqfStatus.ARCHIVED.value, changes)
        if previous.status == WaqfStatus.COMPLETED:
            if updated.status == WaqfStatus.ARCHIVED:
                return
            blocked = [f for f in changes if f not in COMPLETED_MUTABLE_FIELDS]
            if blocked:
                raise LifecycleLockedError(WaqfStatus.COMPLETED.value, blocked)

    def check_creator_restrictions(
        self, previous: WaqfData, updated: WaqfData, caller: str, changes: Optional[List[str]] = None
    ) -> None:
        if changes is None:
            changes = changed_fields(previous, updated)

        financial_only = "financial" in changes and not any(
            f in changes for f in FINANCIAL_ONLY_GUARDED_FIELDS
        )
        if financial_only:
            logger.info(f"[PERMISSIONS] Financial-only update detected for waqf: {updated.id}")
            return

        restricted = [f for f in CREATOR_RESTRICTED_FIELDS if f in changes]
        if restricted:
            logger.warning(
                f"[SECURITY] Creator {caller} attempted to modify restricted fields: "
                f"{', '.join(restricted)} for waqf: {updated.id}"
            )
            raise PermissionDeniedError(
                "Waqf creators can only update name, description, and donor fields. "
                f"Unauthorized changes: {', '.join(restricted)}",
                restricted,
            )

        before = previous.model_dump(mode="json")
        after = updated.model_dump(mode="json")
        allowed = [f for f in CREATOR_EDITABLE_FIELDS if _dotted(before, f) != _dotted(after, f)]
        if allowed:
            logger.info(
                f"[PERMISSIONS] Creator {caller} updated allowed fields: {', '.join(allowed)} for waqf: {updated.id}"
            )

    def check_lock_period(self, previous: WaqfData, updated: WaqfData) -> None:
        if previous.revolving_details is None or updated.revolving_details is None:
            return
        old_months = previous.revolving_details.lock_period_months
        new_months = updated.revolving_details.lock_period_months
        if new_months < old_months:
            raise LockPeriodReductionError(old_months, new_months)
