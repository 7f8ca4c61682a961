from typing import List, Optional
import logging
import uuid

from config import AUDIT_LOGS_COLLECTION
from doc_codec import decode_doc_data, encode_doc_data
from document_store import DocumentStore
from hook_dispatcher import AssertDeleteContext, AssertSetContext, CollectionHooks
from models import WaqfAction, WaqfAuditEntry
from waqf_engine.clock import resolve_now
from waqf_engine.errors import DocumentDecodeError, PermissionDeniedError

logger = logging.getLogger(__name__)


class AuditService:
    """Service for immutable waqf audit logging"""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.collection = AUDIT_LOGS_COLLECTION

    async def log_action(
        self,
        waqf_id: str,
        action: WaqfAction,
        performed_by: str,
        notes: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> Optional[WaqfAuditEntry]:
        """
        Log an action to the audit trail (INSERT ONLY).

        Audit failures never fail the operation being audited.
        """
        timestamp = resolve_now(timestamp)
        entry = WaqfAuditEntry(
            waqf_id=waqf_id,
            action=action,
            performed_by=performed_by,
            timestamp=timestamp,
            notes=notes,
        )
        key = f"{waqf_id}_{action.value}_{timestamp}_{uuid.uuid4().hex[:8]}"
        try:
            await self.store.set(
                self.collection,
                key,
                encode_doc_data(entry),
                expected_version=0,
                description=f"waqf:{waqf_id};action:{action.value}",
                owner=performed_by,
            )
            logger.info(f"Audit log created: {action.value} on waqf:{waqf_id} by {performed_by}")
        except Exception as e:
            # Don't fail the main operation if audit logging fails
            logger.error(f"Failed to create audit log: {str(e)}")
            return None
        return entry

    async def get_audit_logs(self, waqf_id: str, limit: int = 100) -> List[WaqfAuditEntry]:
        """Retrieve audit logs for a waqf, newest first (READ ONLY)"""
        docs = await self.store.list(
            self.collection,
            lambda doc: (doc.description or "").startswith(f"waqf:{waqf_id};"),
        )
        entries = []
        for doc in docs:
            try:
                entries.append(decode_doc_data(doc.data, WaqfAuditEntry, "Invalid audit entry"))
            except DocumentDecodeError as e:
                logger.error(f"Skipping unreadable audit entry {doc.key}: {e.message}")
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[:limit]


class AuditLogHooks(CollectionHooks):
    """Audit records are written once and never changed or removed."""

    async def assert_set(self, context: AssertSetContext) -> bytes:
        if context.current is not None:
            raise PermissionDeniedError("Audit log entries cannot be modified", [context.key])
        decode_doc_data(context.proposed, WaqfAuditEntry, "Invalid audit entry")
        return context.proposed

    async def assert_delete(self, context: AssertDeleteContext) -> None:
        raise PermissionDeniedError("Audit log entries cannot be deleted", [context.key])
