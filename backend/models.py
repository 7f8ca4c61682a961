from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict
from enum import Enum
import re


class DocModel(BaseModel):
    """Base for stored documents. Unknown fields survive a decode/encode pass."""

    class Config:
        extra = "allow"
        populate_by_name = True


# ============================================
# ENUMERATIONS
# ============================================
class WaqfStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class WaqfType(str, Enum):
    PERMANENT = "permanent"
    TEMPORARY_CONSUMABLE = "temporary_consumable"
    TEMPORARY_REVOLVING = "temporary_revolving"
    HYBRID = "hybrid"


class TrancheStatus(str, Enum):
    LOCKED = "locked"
    MATURED = "matured"
    RETURN_SCHEDULED = "return_scheduled"
    RETURNED = "returned"
    ROLLED_OVER = "rolled_over"


class InstallmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PAID = "paid"
    MISSED = "missed"


class DonationStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    FAILED = "failed"


class ExpirationAction(str, Enum):
    REFUND = "refund"
    ROLLOVER = "rollover"
    CONVERT_PERMANENT = "convert_permanent"
    CONVERT_CONSUMABLE = "convert_consumable"


class WaqfAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    TRANCHE_RETURN = "tranche_return"
    TRANCHE_ROLLOVER = "tranche_rollover"
    TRANCHE_CONVERSION = "tranche_conversion"
    INSTALLMENT_PAYMENT = "installment_payment"
    DONATION_APPLIED = "donation_applied"


def _snake_case(value: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", value).lower()


# ============================================
# WAQF SUB-DOCUMENTS
# ============================================
class DonorProfile(DocModel):
    name: str
    email: str
    phone: str = ""
    address: str = ""


class NotificationPreferences(DocModel):
    contribution_reminders: bool = True
    impact_reports: bool = True
    financial_updates: bool = True


class ReportingPreferences(DocModel):
    frequency: str = "yearly"
    report_types: List[str] = Field(default_factory=list)
    delivery_method: str = "email"


class FinancialMetrics(DocModel):
    total_donations: float = 0.0
    total_distributed: float = 0.0
    current_balance: float = 0.0
    investment_returns: List[float] = Field(default_factory=list)
    total_investment_return: float = 0.0
    growth_rate: float = 0.0
    cause_allocations: Dict[str, float] = Field(default_factory=dict)
    # Principal paid back to donors or moved out by tranche conversions
    total_principal_released: float = 0.0


class Milestone(DocModel):
    description: str
    target_date: str
    target_amount: float


class ConsumableDetails(DocModel):
    spending_schedule: str
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    target_amount: Optional[float] = None
    target_beneficiaries: Optional[int] = None
    milestones: Optional[List[Milestone]] = None
    minimum_monthly_distribution: Optional[float] = None


class InstallmentSchedule(DocModel):
    frequency: str
    number_of_installments: int


class InstallmentPayment(DocModel):
    id: str
    amount: float
    due_date: str
    paid_date: Optional[str] = None
    status: InstallmentStatus = InstallmentStatus.SCHEDULED


class TrancheExpirationPreference(DocModel):
    action: ExpirationAction
    rollover_months: Optional[int] = None
    rollover_target_cause: Optional[str] = None
    consumable_schedule: Optional[str] = None
    consumable_duration: Optional[int] = None


class ConversionDetails(DocModel):
    converted_at: str
    new_waqf_id: str
    target_waqf_type: WaqfType
    notes: Optional[str] = None


class ContributionTranche(DocModel):
    id: str
    amount: float
    contribution_date: str
    maturity_date: str
    is_returned: bool = False
    returned_date: Optional[str] = None
    status: Optional[TrancheStatus] = None
    expiration_preference: Optional[TrancheExpirationPreference] = None
    rollover_target_id: Optional[str] = None
    rollover_origin_id: Optional[str] = None
    cause_id: Optional[str] = None
    penalty_applied: Optional[float] = None
    installment_payments: Optional[List[InstallmentPayment]] = None
    conversion_details: Optional[ConversionDetails] = None


class RevolvingDetails(DocModel):
    lock_period_months: int
    maturity_date: Optional[str] = None
    principal_return_method: str = "lump_sum"
    installment_schedule: Optional[InstallmentSchedule] = None
    early_withdrawal_penalty: Optional[float] = None
    early_withdrawal_allowed: bool = False
    contribution_tranches: List[ContributionTranche] = Field(default_factory=list)
    auto_rollover_preference: Optional[str] = None
    auto_rollover_target_cause: Optional[str] = None
    pending_notifications: List[str] = Field(default_factory=list)
    default_expiration_preference: Optional[TrancheExpirationPreference] = None


class HybridAllocationSplit(DocModel):
    permanent: Optional[float] = None
    temporary_consumable: Optional[float] = None
    temporary_revolving: Optional[float] = None


class HybridCauseAllocation(DocModel):
    cause_id: str
    allocations: HybridAllocationSplit


class InvestmentStrategy(DocModel):
    asset_allocation: str
    expected_annual_return: float
    distribution_frequency: str


# ============================================
# WAQF MODEL
# ============================================
class WaqfData(DocModel):
    id: str
    name: str
    description: str
    waqf_asset: float
    donor: DonorProfile
    selected_causes: List[str] = Field(default_factory=list)
    cause_allocation: Dict[str, float] = Field(default_factory=dict)
    status: WaqfStatus = WaqfStatus.ACTIVE
    is_donated: Optional[bool] = None
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    reporting_preferences: ReportingPreferences = Field(default_factory=ReportingPreferences)
    financial: FinancialMetrics = Field(default_factory=FinancialMetrics)
    created_by: str
    created_at: str
    updated_at: Optional[str] = None
    last_contribution_date: Optional[str] = None
    next_contribution_date: Optional[str] = None
    next_report_date: Optional[str] = None
    applied_donation_ids: List[str] = Field(default_factory=list)
    waqf_type: WaqfType = WaqfType.PERMANENT
    is_hybrid: bool = False
    hybrid_allocations: Optional[List[HybridCauseAllocation]] = None
    consumable_details: Optional[ConsumableDetails] = None
    revolving_details: Optional[RevolvingDetails] = None
    investment_strategy: Optional[InvestmentStrategy] = None

    @field_validator("waqf_type", mode="before")
    @classmethod
    def normalize_waqf_type(cls, value):
        # Older clients send PascalCase variant names
        if isinstance(value, str):
            return _snake_case(value)
        return value

    def find_tranche(self, tranche_id: str) -> Optional[ContributionTranche]:
        if not self.revolving_details:
            return None
        for tranche in self.revolving_details.contribution_tranches:
            if tranche.id == tranche_id:
                return tranche
        return None


# ============================================
# DONATIONS / TRANCHE RETURNS / AUDIT
# ============================================
class DonationData(DocModel):
    id: str
    waqf_id: str
    date: str
    amount: float
    currency: str = "USD"
    status: DonationStatus = DonationStatus.PENDING
    transaction_id: Optional[str] = None
    donor_name: Optional[str] = None
    # Overrides the waqf's lock period for the tranche this donation creates
    lock_period_months: Optional[int] = None


class TrancheReturnRequest(DocModel):
    waqf_id: str
    tranche_id: str
    requested_by: str
    timestamp: int


class WaqfAuditEntry(DocModel):
    waqf_id: str
    action: WaqfAction
    performed_by: str
    timestamp: int
    notes: Optional[str] = None


# ============================================
# API REQUEST BODIES
# ============================================
class DocWriteRequest(BaseModel):
    data: Dict
    version: Optional[int] = None
    description: Optional[str] = None


class TrancheRolloverRequest(BaseModel):
    rollover_months: int
    target_cause_id: Optional[str] = None


class TrancheConversionRequest(BaseModel):
    target_type: WaqfType
    investment_strategy: Optional[InvestmentStrategy] = None
    consumable_details: Optional[ConsumableDetails] = None

    @field_validator("target_type", mode="before")
    @classmethod
    def normalize_target_type(cls, value):
        if isinstance(value, str):
            return _snake_case(value)
        return value
