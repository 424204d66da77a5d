"""
Pydantic models for fee product reconciliation results, cleanup results and the per-tenant audit record.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class FeeProductOutcome(BaseModel):
    """A fee amount whose remote product was created or updated during a run."""

    fee_amount: Decimal
    product_id: int
    variant_id: Optional[int] = None
    title: str
    price: str
    previous_price: Optional[str] = None


class FeeAmountError(BaseModel):
    """A fee amount whose remote calls failed during a run. No amount when the whole run failed."""

    fee_amount: Optional[Decimal] = None
    error: str


class ReconciliationSummary(BaseModel):
    total_fee_amounts: int = 0
    products_created: int = 0
    products_updated: int = 0
    products_unchanged: int = 0
    errors: int = 0
    success: bool = True


class ReconciliationResult(BaseModel):
    """Output of one reconciliation run."""

    created: List[FeeProductOutcome] = Field(default_factory=list)
    updated: List[FeeProductOutcome] = Field(default_factory=list)
    unchanged: List[Decimal] = Field(default_factory=list)
    errors: List[FeeAmountError] = Field(default_factory=list)
    summary: ReconciliationSummary = Field(default_factory=ReconciliationSummary)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def finalize(self, total_fee_amounts: int) -> "ReconciliationResult":
        """Compute the summary from the collected lists."""
        self.summary = ReconciliationSummary(
            total_fee_amounts=total_fee_amounts,
            products_created=len(self.created),
            products_updated=len(self.updated),
            products_unchanged=len(self.unchanged),
            errors=len(self.errors),
            success=len(self.errors) == 0,
        )
        return self


class CleanupEntry(BaseModel):
    product_id: int
    title: str
    fee_amount: Optional[Decimal] = None
    reason: Optional[str] = None


class CleanupError(BaseModel):
    product_id: Optional[int] = None
    title: Optional[str] = None
    error: str


class CleanupResult(BaseModel):
    """Output of an explicitly triggered cleanup of unused fee products."""

    deleted: List[CleanupEntry] = Field(default_factory=list)
    kept: List[CleanupEntry] = Field(default_factory=list)
    errors: List[CleanupError] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


class FeeProductStatus(BaseModel):
    product_id: int
    title: str
    price: str
    variant_id: Optional[int] = None
    fee_amount: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FeeAutomationStatus(BaseModel):
    """Current remote fee product inventory for a tenant."""

    total_fee_products: int = 0
    fee_products: List[FeeProductStatus] = Field(default_factory=list)
    error: Optional[str] = None
    last_checked: datetime


class ReconciliationRecord(BaseModel):
    """Audit record of the last reconciliation run for a tenant. Display only."""

    tenant_id: str
    trigger: str
    result: ReconciliationResult
    recorded_at: datetime
