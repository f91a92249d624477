from pydantic import BaseModel, Field
from typing import List

from app.schemas.reconciliation import ReconciliationReport


class ReminderCounts(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class ReminderResult(BaseModel):
    consultations_found: int = 0
    patient_reminders: ReminderCounts = Field(default_factory=ReminderCounts)
    provider_reminders: ReminderCounts = Field(default_factory=ReminderCounts)
    errors: List[str] = Field(default_factory=list)


class JobTiming(BaseModel):
    started_at: str
    duration_ms: int


class ReconciliationJobResponse(BaseModel):
    success: bool = True
    report: ReconciliationReport
    timing: JobTiming


class ReminderJobResponse(BaseModel):
    success: bool = True
    result: ReminderResult
    timing: JobTiming
