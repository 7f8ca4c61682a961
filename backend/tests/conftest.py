"""
Shared fixtures for the waqf hook tests.

Everything runs against the in-memory document store with a fixed clock.
"""
import pytest

from audit_service import AuditService
from config import WAQFS_COLLECTION, Settings
from document_store import InMemoryDocumentStore, KeyedLocks, VersionConflictError
from financial_service import DonationFinancialService
from models import (
    DonorProfile,
    HybridAllocationSplit,
    HybridCauseAllocation,
    RevolvingDetails,
    WaqfData,
    WaqfType,
)
from tranche_service import TrancheService
from waqf_engine.clock import NANOS_PER_DAY
from waqf_repository import WaqfRepository

# 2023-11-14T22:13:20Z
NOW = 1_700_000_000_000_000_000
DAY = NANOS_PER_DAY

CREATOR = "creator_1"
SYSTEM = "system"
ADMIN = "admin_7"


class FlakyStore(InMemoryDocumentStore):
    """Fails the next `conflicts` version-checked waqf updates."""

    def __init__(self, conflicts: int = 0):
        super().__init__()
        self.conflicts = conflicts

    async def set(self, collection, key, data, expected_version=None, description=None, owner=None):
        if collection == WAQFS_COLLECTION and expected_version not in (None, 0) and self.conflicts > 0:
            self.conflicts -= 1
            raise VersionConflictError(collection, key, expected_version, expected_version + 1)
        return await super().set(collection, key, data, expected_version, description, owner)


def make_waqf(**overrides) -> WaqfData:
    """A valid permanent waqf; keyword arguments replace any field."""
    fields = dict(
        id="waqf_1",
        name="Education Fund",
        description="Endowment supporting local schools",
        waqf_asset=1000.0,
        donor=DonorProfile(name="Aisha Rahman", email="aisha@example.com"),
        selected_causes=["cause_edu"],
        created_by=CREATOR,
        created_at=str(NOW),
        waqf_type=WaqfType.PERMANENT,
    )
    fields.update(overrides)
    return WaqfData(**fields)


def make_revolving_waqf(waqf_asset: float = 500.0, lock_period_months: int = 6, **details) -> WaqfData:
    return make_waqf(
        waqf_asset=waqf_asset,
        waqf_type=WaqfType.TEMPORARY_REVOLVING,
        revolving_details=RevolvingDetails(lock_period_months=lock_period_months, **details),
    )


def make_hybrid_waqf(waqf_asset: float = 1000.0, revolving_pct: float = 50.0, **details) -> WaqfData:
    return make_waqf(
        waqf_asset=waqf_asset,
        waqf_type=WaqfType.HYBRID,
        is_hybrid=True,
        hybrid_allocations=[
            HybridCauseAllocation(
                cause_id="cause_edu",
                allocations=HybridAllocationSplit(
                    permanent=100.0 - revolving_pct, temporary_revolving=revolving_pct
                ),
            )
        ],
        revolving_details=RevolvingDetails(lock_period_months=details.pop("lock_period_months", 12), **details),
    )


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def audit(store):
    return AuditService(store)


@pytest.fixture
def repository(store, settings):
    return WaqfRepository(store, KeyedLocks(), settings.write_retry_attempts)


@pytest.fixture
def financial(repository, audit, settings):
    return DonationFinancialService(repository, audit, settings)


@pytest.fixture
def tranches(repository, audit, settings):
    return TrancheService(repository, audit, settings)
