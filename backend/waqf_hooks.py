"""
WAQF WRITE HOOKS

ASSERT (pre-commit):
    decode -> general validation -> type validation -> tranche validation
    creation: no engine records, minimum capital, then initialise
              allocations, totals and the initial tranche (the committed
              payload is the initialised copy)
    update:   permission guard against the stored version

ON_SET (post-commit):
    re-run initialisation idempotently (persist only if it changed anything)
    and write the audit entry
"""

from typing import Optional
import logging

from audit_service import AuditService
from config import Settings
from doc_codec import decode_doc_data, encode_doc_data
from document_store import DocumentStore
from hook_dispatcher import AssertDeleteContext, AssertSetContext, CollectionHooks, OnSetContext
from models import WaqfAction, WaqfData, WaqfStatus
from permissions import WaqfPermissionGuard
from waqf_engine.clock import resolve_now
from waqf_engine.errors import (
    DeletionBlockedError,
    DocumentDecodeError,
    MinimumCapitalError,
    WaqfValidationError,
)
from waqf_engine.tranche_engine import ensure_initialized
from waqf_engine.tranche_validation import validate_waqf_tranches
from waqf_engine.waqf_type_validator import validate_waqf_type_and_details
from waqf_engine.waqf_validator import validate_waqf_data

logger = logging.getLogger(__name__)


class WaqfHooks(CollectionHooks):

    def __init__(
        self,
        store: DocumentStore,
        audit: AuditService,
        settings: Settings,
        guard: Optional[WaqfPermissionGuard] = None,
    ):
        self.store = store
        self.audit = audit
        self.settings = settings
        self.guard = guard or WaqfPermissionGuard()

    @property
    def policy(self):
        return self.settings.policy

    def check_minimum_capital(self, waqf: WaqfData) -> None:
        minimum = self.policy.min_waqf_asset
        if waqf.waqf_asset < minimum:
            logger.warning(
                f"[WAQF] Creation rejected - insufficient initial capital: ${waqf.waqf_asset:.2f} "
                f"for waqf: {waqf.name} by creator: {waqf.created_by}"
            )
            raise MinimumCapitalError(minimum, waqf.waqf_asset)

    async def assert_set(self, context: AssertSetContext, now: Optional[int] = None) -> bytes:
        waqf = decode_doc_data(context.proposed, WaqfData, "Invalid waqf data structure")
        if waqf.id != context.key:
            raise WaqfValidationError([f"Waqf ID '{waqf.id}' does not match document key '{context.key}'"])

        previous = None
        if context.current is not None:
            previous = decode_doc_data(context.current.data, WaqfData, "Cannot decode previous waqf data")

        validate_waqf_data(waqf, previous, self.policy)
        validate_waqf_type_and_details(waqf, self.policy)
        validate_waqf_tranches(waqf, self.policy)

        if previous is None:
            self.guard.check_new_waqf(waqf, context.caller)
            self.check_minimum_capital(waqf)
            initialised, _ = ensure_initialized(waqf, resolve_now(now), self.policy)
            logger.info(
                f"[WAQF] Creation accepted - initial capital: ${waqf.waqf_asset:.2f} "
                f"for waqf: {waqf.id} by creator: {waqf.created_by}"
            )
            return encode_doc_data(initialised)

        self.guard.validate_update(previous, waqf, context.caller)
        return context.proposed

    async def assert_delete(self, context: AssertDeleteContext) -> None:
        if context.current is None:
            return
        waqf = decode_doc_data(context.current.data, WaqfData, "Invalid waqf data structure")
        if waqf.status == WaqfStatus.ACTIVE:
            raise DeletionBlockedError("Cannot delete active waqf - change status first")

    async def on_set(self, context: OnSetContext, now: Optional[int] = None) -> None:
        now = resolve_now(now)
        try:
            waqf = decode_doc_data(context.after.data, WaqfData, "Invalid waqf data structure")
        except DocumentDecodeError as e:
            # The write is already committed; nothing left to block
            logger.error(f"[WAQF] Post-commit decode failed for {context.key}: {e.message}")
            return

        if context.before is None:
            initialised, changed = ensure_initialized(waqf, now, self.policy)
            if changed:
                await self.store.set(
                    context.collection,
                    context.key,
                    encode_doc_data(initialised),
                    expected_version=context.after.version,
                )
                logger.info(f"[WAQF] Completed initialisation of waqf {waqf.id} after commit")
            await self.audit.log_action(
                waqf.id, WaqfAction.CREATE, context.caller, f"Waqf created: {waqf.name}", now
            )
        else:
            await self.audit.log_action(
                waqf.id, WaqfAction.UPDATE, context.caller, f"Waqf updated: {waqf.name}", now
            )
