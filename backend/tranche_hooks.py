import logging

from config import Settings
from doc_codec import decode_doc_data
from hook_dispatcher import AssertDeleteContext, AssertSetContext, CollectionHooks, OnSetContext
from models import TrancheReturnRequest
from tranche_service import TrancheService
from waqf_engine.errors import (
    DeletionBlockedError,
    PermissionDeniedError,
    TrancheAlreadyReturnedError,
    TrancheNotFoundError,
)
from waqf_engine.tranche_engine import mark_tranche_as_returned

logger = logging.getLogger(__name__)


class TrancheReturnHooks(CollectionHooks):
    """
    Each record in tranche_returns is a request to return one tranche.
    Records are write-once and kept forever as the audit trail of returns.
    """

    def __init__(self, tranches: TrancheService, settings: Settings):
        self.tranches = tranches
        self.settings = settings

    async def assert_set(self, context: AssertSetContext) -> bytes:
        request = decode_doc_data(context.proposed, TrancheReturnRequest, "Invalid tranche return request format")
        if context.current is not None:
            raise TrancheAlreadyReturnedError(
                request.tranche_id, "Tranche return requests cannot be modified once submitted"
            )

        waqf, _ = await self.tranches.repository.load(request.waqf_id)
        if waqf.find_tranche(request.tranche_id) is None:
            raise TrancheNotFoundError(request.tranche_id, request.waqf_id)

        if context.caller != waqf.created_by and not self.settings.is_system(context.caller):
            logger.warning(
                f"[SECURITY] {context.caller} attempted to return tranche {request.tranche_id} "
                f"of waqf {request.waqf_id}"
            )
            raise PermissionDeniedError(
                "Only the waqf creator or a system principal can request a tranche return", ["requested_by"]
            )

        # Dry run so an ineligible return is rejected before the request is stored
        mark_tranche_as_returned(waqf, request.tranche_id, policy=self.settings.policy)
        return context.proposed

    async def assert_delete(self, context: AssertDeleteContext) -> None:
        raise DeletionBlockedError("Tranche return records cannot be deleted for audit purposes")

    async def on_set(self, context: OnSetContext) -> None:
        request = decode_doc_data(context.after.data, TrancheReturnRequest, "Invalid tranche return request format")
        outcome = await self.tranches.return_tranche(request.waqf_id, request.tranche_id, context.caller)
        logger.info(
            f"[TRANCHE] Return request {context.key} processed: tranche {request.tranche_id} via {outcome.path}"
        )
