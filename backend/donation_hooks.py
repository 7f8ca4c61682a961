import logging

from doc_codec import decode_doc_data
from financial_service import DonationFinancialService
from hook_dispatcher import AssertSetContext, CollectionHooks, OnSetContext
from models import DonationData, DonationStatus
from waqf_engine.errors import BusinessStateError

logger = logging.getLogger(__name__)


class DonationHooks(CollectionHooks):
    """
    Donations post to their waqf when they are stored as completed, either
    created completed or moved to completed later. A completed donation is
    final: the only write it accepts is an identical resubmission, which
    retries a posting that failed after commit. Posting is idempotent per
    donation id, so a resubmission never applies the amount twice.
    """

    def __init__(self, financial: DonationFinancialService):
        self.financial = financial

    async def assert_set(self, context: AssertSetContext) -> bytes:
        donation = decode_doc_data(context.proposed, DonationData, "Invalid donation data structure")
        if context.current is not None:
            previous = decode_doc_data(context.current.data, DonationData, "Invalid donation data structure")
            if previous.waqf_id != donation.waqf_id:
                raise BusinessStateError(f"Donation {previous.id} cannot be moved to another waqf")
            if previous.status == DonationStatus.COMPLETED and previous != donation:
                raise BusinessStateError(f"Completed donation {previous.id} cannot be modified")
        if donation.amount <= 0:
            raise BusinessStateError(f"Donation amount must be positive, got {donation.amount}")

        # WaqfNotFoundError before anything is stored
        await self.financial.repository.load(donation.waqf_id)
        return context.proposed

    async def on_set(self, context: OnSetContext) -> None:
        donation = decode_doc_data(context.after.data, DonationData, "Invalid donation data structure")
        if donation.status != DonationStatus.COMPLETED:
            return

        logger.info(f"[DONATION] Donation {donation.id} completed for waqf {donation.waqf_id}")
        await self.financial.apply_donation(donation)
