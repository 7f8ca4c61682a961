"""
HOOK DISPATCHER

Routes document writes and deletes through the hooks registered for their
collection:

    set_doc:    ASSERT (may rewrite payload) -> COMMIT -> ON_SET
    delete_doc: ASSERT -> DELETE

Collections without hooks are written straight through.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging

from document_store import Document, DocumentStore

logger = logging.getLogger(__name__)


@dataclass
class AssertSetContext:
    collection: str
    key: str
    caller: str
    proposed: bytes
    current: Optional[Document] = None
    description: Optional[str] = None


@dataclass
class AssertDeleteContext:
    collection: str
    key: str
    caller: str
    current: Optional[Document] = None


@dataclass
class OnSetContext:
    collection: str
    key: str
    caller: str
    after: Document
    before: Optional[Document] = None


class CollectionHooks:
    """
    Base hooks: accept everything.

    assert_set returns the payload to commit (the proposed bytes, or a
    rewritten version of them). Raising from any hook rejects the write.
    """

    async def assert_set(self, context: AssertSetContext) -> bytes:
        return context.proposed

    async def assert_delete(self, context: AssertDeleteContext) -> None:
        return None

    async def on_set(self, context: OnSetContext) -> None:
        return None


class HookDispatcher:

    def __init__(self, store: DocumentStore):
        self.store = store
        self._hooks: Dict[str, CollectionHooks] = {}

    def register(self, collection: str, hooks: CollectionHooks) -> None:
        self._hooks[collection] = hooks

    def hooks_for(self, collection: str) -> CollectionHooks:
        return self._hooks.get(collection, CollectionHooks())

    async def set_doc(
        self,
        collection: str,
        key: str,
        data: bytes,
        caller: str,
        expected_version: Optional[int] = None,
        description: Optional[str] = None,
    ) -> Document:
        hooks = self.hooks_for(collection)
        current = await self.store.get(collection, key)

        payload = await hooks.assert_set(AssertSetContext(
            collection=collection,
            key=key,
            caller=caller,
            proposed=data,
            current=current,
            description=description,
        ))

        committed = await self.store.set(
            collection,
            key,
            payload,
            expected_version=expected_version,
            description=description,
            owner=caller,
        )
        logger.info(f"[HOOKS] {caller} wrote {collection}/{key} (version {committed.version})")

        await hooks.on_set(OnSetContext(
            collection=collection,
            key=key,
            caller=caller,
            after=committed,
            before=current,
        ))
        return committed

    async def delete_doc(
        self,
        collection: str,
        key: str,
        caller: str,
        expected_version: Optional[int] = None,
    ) -> None:
        hooks = self.hooks_for(collection)
        current = await self.store.get(collection, key)
        await hooks.assert_delete(AssertDeleteContext(
            collection=collection, key=key, caller=caller, current=current
        ))
        await self.store.delete(collection, key, expected_version=expected_version)
        logger.info(f"[HOOKS] {caller} deleted {collection}/{key}")
