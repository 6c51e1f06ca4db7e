"""
Request and response models for the sweep API.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, List, Dict


class KVSetRequest(BaseModel):
    key: str
    value: str

    @field_validator('key')
    @classmethod
    def key_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('key cannot be empty')
        return v


class KVResponse(BaseModel):
    success: bool
    key: str


class KVGetResponse(BaseModel):
    key: str
    value: str


class KVListResponse(BaseModel):
    keys: List[str]
    count: int


class RepairActionModel(BaseModel):
    id: str
    category: str
    label: str
    detail: str
    severity: str
    before: Optional[str] = None
    after: Optional[str] = None


class SweepRecordModel(BaseModel):
    timestamp: str
    fixed: int
    warnings: int
    score: int


class SweepResponse(BaseModel):
    actions: List[RepairActionModel]
    record: SweepRecordModel
    score: int
    score_label: str
    counts: Dict[str, int]


class SweepHistoryResponse(BaseModel):
    records: List[SweepRecordModel]
    last_sweep: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    store_health: bool
    kv_count: int
    sweep_running: bool
