from fastapi import FastAPI, APIRouter, HTTPException, Request, status, Depends
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from dataclasses import asdict
from typing import Any, Dict, Optional
import logging

from audit_service import AuditLogHooks, AuditService
from auth import get_current_principal
from config import (
    AUDIT_LOGS_COLLECTION,
    DONATIONS_COLLECTION,
    TRANCHE_RETURNS_COLLECTION,
    WAQFS_COLLECTION,
    Settings,
    load_settings,
)
from doc_codec import decode_raw, encode_raw
from document_store import Document, DocumentStore, KeyedLocks, MotorDocumentStore, VersionConflictError
from donation_hooks import DonationHooks
from financial_service import DonationFinancialService
from hook_dispatcher import HookDispatcher
from models import (
    DocWriteRequest,
    TrancheConversionRequest,
    TrancheExpirationPreference,
    TrancheRolloverRequest,
)
from tranche_hooks import TrancheReturnHooks
from tranche_service import TrancheService
from waqf_engine.errors import (
    BusinessStateError,
    DocumentDecodeError,
    NotFoundError,
    PermissionDeniedError,
    StructuralValidationError,
    WaqfEngineError,
)
from waqf_hooks import WaqfHooks
from waqf_repository import WaqfRepository

logger = logging.getLogger(__name__)

GOVERNED_COLLECTIONS = (WAQFS_COLLECTION, DONATIONS_COLLECTION, TRANCHE_RETURNS_COLLECTION, AUDIT_LOGS_COLLECTION)


def serialize_document(doc: Document) -> Dict[str, Any]:
    """Document metadata plus its decoded payload, for JSON responses"""
    return {
        "key": doc.key,
        "version": doc.version,
        "description": doc.description,
        "owner": doc.owner,
        "created_at": doc.created_at,
        "updated_at": doc.updated_at,
        "data": decode_raw(doc.data, f"Cannot decode stored document {doc.key}"),
    }


def error_status(exc: Exception) -> int:
    if isinstance(exc, (DocumentDecodeError, StructuralValidationError)):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, PermissionDeniedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, (BusinessStateError, VersionConflictError)):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def build_services(store: DocumentStore, settings: Settings) -> Dict[str, Any]:
    """Wire store, services and hooks together."""
    locks = KeyedLocks()
    audit = AuditService(store)
    repository = WaqfRepository(store, locks, settings.write_retry_attempts)
    financial = DonationFinancialService(repository, audit, settings)
    tranches = TrancheService(repository, audit, settings)

    dispatcher = HookDispatcher(store)
    dispatcher.register(WAQFS_COLLECTION, WaqfHooks(store, audit, settings))
    dispatcher.register(DONATIONS_COLLECTION, DonationHooks(financial))
    dispatcher.register(TRANCHE_RETURNS_COLLECTION, TrancheReturnHooks(tranches, settings))
    dispatcher.register(AUDIT_LOGS_COLLECTION, AuditLogHooks())

    return {
        "audit": audit,
        "repository": repository,
        "financial": financial,
        "tranches": tranches,
        "dispatcher": dispatcher,
    }


def create_app(store: Optional[DocumentStore] = None, settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    client = None
    if store is None:
        # MongoDB connection
        client = AsyncIOMotorClient(settings.mongo_url)
        store = MotorDocumentStore(client[settings.db_name])

    services = build_services(store, settings)
    dispatcher: HookDispatcher = services["dispatcher"]
    tranches: TrancheService = services["tranches"]
    audit: AuditService = services["audit"]

    app = FastAPI(
        title="Waqf Platform - Endowment Hooks",
        version="1.0.0",
        description="Validation, permission and tranche lifecycle hooks for waqf documents"
    )
    app.state.settings = settings
    app.state.store = store
    app.state.services = services

    api_router = APIRouter(prefix="/api")

    def require_governed(collection: str) -> None:
        if collection not in GOVERNED_COLLECTIONS:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Unknown collection: {collection}"
            )

    # ============================================
    # HEALTH
    # ============================================
    @api_router.get("/health")
    async def health():
        return {"status": "ok"}

    # ============================================
    # DOCUMENTS (through the hook dispatcher)
    # ============================================
    @api_router.get("/docs/{collection}/{key}")
    async def get_document(collection: str, key: str, principal: str = Depends(get_current_principal)):
        require_governed(collection)
        doc = await store.get(collection, key)
        if doc is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Document not found: {collection}/{key}"
            )
        return serialize_document(doc)

    @api_router.put("/docs/{collection}/{key}")
    async def set_document(
        collection: str,
        key: str,
        body: DocWriteRequest,
        principal: str = Depends(get_current_principal)
    ):
        require_governed(collection)
        committed = await dispatcher.set_doc(
            collection,
            key,
            encode_raw(body.data),
            principal,
            expected_version=body.version,
            description=body.description,
        )
        # on_set hooks may have rewritten the document after commit
        latest = await store.get(collection, key)
        return serialize_document(latest or committed)

    @api_router.delete("/docs/{collection}/{key}")
    async def delete_document(
        collection: str,
        key: str,
        version: Optional[int] = None,
        principal: str = Depends(get_current_principal)
    ):
        require_governed(collection)
        await dispatcher.delete_doc(collection, key, principal, expected_version=version)
        return {"deleted": True, "key": key}

    # ============================================
    # TRANCHES
    # ============================================
    @api_router.get("/waqfs/{waqf_id}/tranches/summary")
    async def tranche_summary(waqf_id: str, principal: str = Depends(get_current_principal)):
        balance = await tranches.get_balance_summary(waqf_id)
        return asdict(balance)

    @api_router.post("/waqfs/{waqf_id}/tranches/process-matured")
    async def process_matured_tranches(waqf_id: str, principal: str = Depends(get_current_principal)):
        waqf, _ = await tranches.repository.load(waqf_id)
        tranches.authorize(waqf, principal, "matured tranche processing")
        created = await tranches.process_auto_rollover(waqf_id)
        return {"waqf_id": waqf_id, "rolled_over": created}

    @api_router.post("/waqfs/{waqf_id}/tranches/{tranche_id}/rollover")
    async def rollover(
        waqf_id: str,
        tranche_id: str,
        body: TrancheRolloverRequest,
        principal: str = Depends(get_current_principal)
    ):
        successor = await tranches.rollover_tranche(
            waqf_id, tranche_id, body.rollover_months, principal, target_cause_id=body.target_cause_id
        )
        return successor.model_dump(mode="json")

    @api_router.post("/waqfs/{waqf_id}/tranches/{tranche_id}/convert")
    async def convert(
        waqf_id: str,
        tranche_id: str,
        body: TrancheConversionRequest,
        principal: str = Depends(get_current_principal)
    ):
        outcome = await tranches.convert_tranche(
            waqf_id,
            tranche_id,
            body.target_type,
            principal,
            investment_strategy=body.investment_strategy,
            consumable_details=body.consumable_details,
        )
        return {
            "source_waqf_id": waqf_id,
            "tranche_id": outcome.tranche_id,
            "amount": outcome.amount,
            "converted_waqf": outcome.converted.model_dump(mode="json"),
        }

    @api_router.post("/waqfs/{waqf_id}/tranches/{tranche_id}/installments/{installment_id}/pay")
    async def pay_installment(
        waqf_id: str,
        tranche_id: str,
        installment_id: str,
        principal: str = Depends(get_current_principal)
    ):
        released = await tranches.record_installment_payment(waqf_id, tranche_id, installment_id, principal)
        return {"installment_id": installment_id, "released": released}

    @api_router.put("/waqfs/{waqf_id}/tranches/{tranche_id}/expiration-preference")
    async def set_expiration_preference(
        waqf_id: str,
        tranche_id: str,
        body: TrancheExpirationPreference,
        principal: str = Depends(get_current_principal)
    ):
        updated = await tranches.update_expiration_preference(waqf_id, tranche_id, body, principal)
        return updated.find_tranche(tranche_id).model_dump(mode="json")

    # ============================================
    # AUDIT
    # ============================================
    @api_router.get("/waqfs/{waqf_id}/audit-logs")
    async def audit_logs(waqf_id: str, limit: int = 100, principal: str = Depends(get_current_principal)):
        entries = await audit.get_audit_logs(waqf_id, limit)
        return [entry.model_dump(mode="json") for entry in entries]

    app.include_router(api_router)

    @app.exception_handler(WaqfEngineError)
    async def waqf_engine_error_handler(request: Request, exc: WaqfEngineError):
        return JSONResponse(status_code=error_status(exc), content={"detail": exc.message})

    @app.exception_handler(VersionConflictError)
    async def version_conflict_handler(request: Request, exc: VersionConflictError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if client is not None:
        @app.on_event("shutdown")
        async def shutdown_db_client():
            client.close()

    return app


app = create_app()
