from datetime import datetime

from pydantic import BaseModel, Field


class TargetCreate(BaseModel):
    url: str
    name: str | None = None


class TargetTestRequest(BaseModel):
    url: str


class BenchmarkRequest(BaseModel):
    url: str
    iterations: int = Field(default=3, ge=1, le=20)


class TargetResponse(BaseModel):
    id: int
    product_id: str
    url: str
    name: str
    active: bool
    last_known_available: bool
    last_checked_at: datetime | None
    last_error: str | None
    owner_id: str
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class CheckResponse(BaseModel):
    target_id: int
    available: bool
    latency_ms: int
    error: str | None
    changed: bool
    checked_at: datetime

    model_config = {"from_attributes": True}


class TargetWithCheck(BaseModel):
    target: TargetResponse
    check: CheckResponse


class TestCheckResponse(BaseModel):
    url: str
    product_id: str
    available: bool
    latency_ms: int
    error: str | None
    from_cache: bool


class BenchmarkResponse(BaseModel):
    url: str
    iterations: int
    success_count: int
    error_count: int
    average_ms: float
    min_ms: int
    max_ms: int
    success_rate: float


class StatsResponse(BaseModel):
    total_targets: int
    in_stock: int
    out_of_stock: int
    tiers: dict[str, int]
