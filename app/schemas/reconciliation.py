from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class MissingInDatabase(BaseModel):
    reference: str
    gateway_id: str
    amount: float
    status: str


class MissingInGateway(BaseModel):
    payment_id: str
    transaction_id: Optional[str] = None
    amount_leone: int
    status: str


class StatusMismatch(BaseModel):
    payment_id: str
    transaction_id: str
    database_status: str
    gateway_status: str


class AmountMismatch(BaseModel):
    payment_id: str
    transaction_id: str
    database_amount: int
    gateway_amount: float


class Discrepancies(BaseModel):
    missing_in_database: List[MissingInDatabase] = Field(default_factory=list)
    missing_in_gateway: List[MissingInGateway] = Field(default_factory=list)
    status_mismatches: List[StatusMismatch] = Field(default_factory=list)
    amount_mismatches: List[AmountMismatch] = Field(default_factory=list)


class ReconciliationFixes(BaseModel):
    updated: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class ReconciliationReport(BaseModel):
    window_start: datetime
    window_end: datetime
    total_gateway_transactions: int = 0
    total_database_payments: int = 0
    matched: int = 0
    discrepancies: Discrepancies = Field(default_factory=Discrepancies)
    auto_fix: bool = False
    fixes: ReconciliationFixes = Field(default_factory=ReconciliationFixes)

    @property
    def discrepancy_count(self) -> int:
        d = self.discrepancies
        return (
            len(d.missing_in_database)
            + len(d.missing_in_gateway)
            + len(d.status_mismatches)
            + len(d.amount_mismatches)
        )
