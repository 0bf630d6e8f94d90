from enum import Enum
from typing import List

from pydantic import BaseModel


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class HealthCheckResult(BaseModel):
    component: str
    status: HealthStatus
    message: str
    timestamp: str
    response_time_ms: int = 0


class InventoryHealthReport(BaseModel):
    overall: HealthStatus
    checks: List[HealthCheckResult]
    recommendations: List[str]
    timestamp: str
