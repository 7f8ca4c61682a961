from dotenv import load_dotenv
from pathlib import Path
from dataclasses import dataclass, field
from typing import Tuple
import os
import logging

from waqf_engine.policy import WaqfPolicy

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logger = logging.getLogger(__name__)

# Collections governed by hooks
WAQFS_COLLECTION = "waqfs"
DONATIONS_COLLECTION = "donations"
TRANCHE_RETURNS_COLLECTION = "tranche_returns"
AUDIT_LOGS_COLLECTION = "waqf_audit_logs"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "waqf_platform"
    system_principals: Tuple[str, ...] = ("system",)
    write_retry_attempts: int = 5
    log_level: str = "INFO"
    policy: WaqfPolicy = field(default_factory=WaqfPolicy)

    @property
    def system_principal(self) -> str:
        return self.system_principals[0]

    def is_system(self, caller: str) -> bool:
        return caller in self.system_principals


def load_settings() -> Settings:
    """Read settings from the environment once, at process start."""
    principals = tuple(
        p.strip() for p in os.environ.get("SYSTEM_PRINCIPALS", "system").split(",") if p.strip()
    ) or ("system",)

    policy = WaqfPolicy(
        min_waqf_asset=float(os.environ.get("MIN_WAQF_ASSET", "100")),
        max_waqf_asset=float(os.environ.get("MAX_WAQF_ASSET", "1000000000")),
        days_per_month=int(os.environ.get("DAYS_PER_MONTH", "30")),
        enforce_hybrid_allocation_sum=_env_bool("ENFORCE_HYBRID_ALLOCATION_SUM", True),
    )
    if not policy.enforce_hybrid_allocation_sum:
        logger.warning(
            "[CONFIG] ENFORCE_HYBRID_ALLOCATION_SUM is off: hybrid cause splits are "
            "accepted without checking they total 100%"
        )

    return Settings(
        mongo_url=os.environ.get("MONGO_URL", "mongodb://localhost:27017"),
        db_name=os.environ.get("DB_NAME", "waqf_platform"),
        system_principals=principals,
        write_retry_attempts=int(os.environ.get("WRITE_RETRY_ATTEMPTS", "5")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        policy=policy,
    )
