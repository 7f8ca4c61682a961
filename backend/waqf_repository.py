"""
WAQF REPOSITORY

Read-modify-write access to waqf documents for services that run outside
the write hooks (donation updates, tranche operations).

Every update:
1. Takes the per-waqf lock (serialises writers in this process)
2. Loads the waqf and its version
3. Applies a pure mutation
4. Writes back with compare-and-swap on the loaded version
5. On VersionConflictError, reloads and retries with a growing delay
"""

from typing import Callable, Optional, Tuple, TypeVar
import asyncio
import logging

from config import WAQFS_COLLECTION
from doc_codec import decode_doc_data, encode_doc_data
from document_store import DocumentStore, KeyedLocks, VersionConflictError
from models import WaqfData
from waqf_engine.errors import WaqfNotFoundError

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT")

WaqfMutation = Callable[[WaqfData], Tuple[Optional[WaqfData], ResultT]]


class WaqfRepository:

    RETRY_DELAY_MS = 20  # Base delay in milliseconds

    def __init__(self, store: DocumentStore, locks: Optional[KeyedLocks] = None, retry_attempts: int = 5):
        self.store = store
        self.locks = locks or KeyedLocks()
        self.retry_attempts = max(retry_attempts, 1)

    async def load(self, waqf_id: str) -> Tuple[WaqfData, int]:
        doc = await self.store.get(WAQFS_COLLECTION, waqf_id)
        if doc is None:
            raise WaqfNotFoundError(waqf_id)
        return decode_doc_data(doc.data, WaqfData, "Cannot decode waqf data"), doc.version

    async def create(self, waqf: WaqfData, owner: str, description: Optional[str] = None) -> None:
        """Insert a new waqf; fails with VersionConflictError if the id is taken."""
        await self.store.set(
            WAQFS_COLLECTION, waqf.id, encode_doc_data(waqf),
            expected_version=0, description=description, owner=owner,
        )

    async def discard(self, waqf_id: str, version: int = 1) -> None:
        """Remove a waqf this process created, provided nothing has written to it since."""
        await self.store.delete(WAQFS_COLLECTION, waqf_id, expected_version=version)

    async def update(self, waqf_id: str, mutate: WaqfMutation) -> ResultT:
        """
        Apply mutate(waqf) -> (updated_waqf | None, result) and persist it.

        Returning None as the waqf skips the write. The mutation may run more
        than once when writers race, so it must not have side effects.
        """
        async with self.locks.lock(waqf_id):
            for attempt in range(self.retry_attempts):
                waqf, version = await self.load(waqf_id)
                updated, result = mutate(waqf)
                if updated is None:
                    return result
                try:
                    await self.store.set(
                        WAQFS_COLLECTION, waqf_id, encode_doc_data(updated), expected_version=version
                    )
                    return result
                except VersionConflictError as e:
                    if attempt == self.retry_attempts - 1:
                        logger.error(f"[REPOSITORY] Giving up on waqf {waqf_id} after {self.retry_attempts} attempts")
                        raise
                    logger.warning(f"[REPOSITORY] {e}, retry {attempt + 1}")
                    await asyncio.sleep(self.RETRY_DELAY_MS * (attempt + 1) / 1000)
