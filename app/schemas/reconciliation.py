from typing import Optional, List
from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime

from app.models.enums import AnomalyType


class CourseDrift(BaseModel):
    """A course whose stored student count differed from its active enrollments."""
    course_id: UUID
    recorded: int
    actual: int

    @property
    def delta(self) -> int:
        return self.actual - self.recorded


class Anomaly(BaseModel):
    type: AnomalyType
    record_id: UUID
    detail: str
    repaired: bool = False


class ReconciliationReport(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: int = 0
    courses_checked: int = 0
    drifts: List[CourseDrift] = Field(default_factory=list)
    anomalies: List[Anomaly] = Field(default_factory=list)
    alert_raised: bool = False

    @property
    def total_drift(self) -> int:
        return sum(abs(d.delta) for d in self.drifts)

    @property
    def is_clean(self) -> bool:
        return not self.drifts and not self.anomalies
