from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    SINGLE = "single"
    BATCH = "batch"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class JobProgress(BaseModel):
    total_units: int = Field(0, ge=0)
    processed_units: int = Field(0, ge=0)
    successful_units: int = Field(0, ge=0)
    failed_units: int = Field(0, ge=0)
    indexed_chunks: int = Field(0, ge=0)


class UnitError(BaseModel):
    unit_index: int
    error: str
    timestamp: str


class JobResults(BaseModel):
    indexed_ids: List[str] = Field(default_factory=list)
    errors: List[UnitError] = Field(default_factory=list)


class JobMetadata(BaseModel):
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    batch_size: Optional[int] = None


class SubmitOptions(BaseModel):
    kind: JobKind = JobKind.SINGLE
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None


class IndexingJob(BaseModel):
    job_id: str
    tenant_id: str
    project_id: str
    credential_ref: str
    kind: JobKind
    status: JobStatus
    payload: Any
    progress: JobProgress
    results: JobResults = Field(default_factory=JobResults)
    metadata: JobMetadata = Field(default_factory=JobMetadata)
    error: Optional[str] = None
    created_at: str
    updated_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    processing_time_ms: Optional[int] = None


class JobSubmitRequest(BaseModel):
    documents: Any
    credential_ref: str = Field(..., min_length=1)
    kind: JobKind = JobKind.SINGLE


class JobSubmitResponse(BaseModel):
    job_id: str
    status: JobStatus
    estimated_time: str
    estimated_seconds: int
    message: str


class JobProgressView(JobProgress):
    completion_percentage: int = 0


class JobStatusView(BaseModel):
    job_id: str
    tenant_id: str
    project_id: str
    kind: JobKind
    status: JobStatus
    progress: JobProgressView
    results: JobResults
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    processing_time_ms: Optional[int] = None
    is_active: bool = False
    estimated_remaining_seconds: Optional[int] = None
    estimated_completion_time: Optional[str] = None
    error: Optional[str] = None


class JobSummary(BaseModel):
    job_id: str
    kind: JobKind
    status: JobStatus
    progress: JobProgress
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    processing_time_ms: Optional[int] = None
    error: Optional[str] = None


class StatusBucket(BaseModel):
    count: int = 0
    total_processing_time_ms: int = 0
    total_indexed_chunks: int = 0


class JobStats(BaseModel):
    tenant_id: str
    project_id: Optional[str] = None
    by_status: Dict[JobStatus, StatusBucket] = Field(default_factory=dict)
    total_jobs: int = 0
    total_processing_time_ms: int = 0
    total_indexed_chunks: int = 0


class JobEvent(BaseModel):
    event_id: int
    job_id: str
    created_at: str
    level: str
    message: str
    meta: Optional[Dict[str, Any]] = None


class CancelResponse(BaseModel):
    job_id: str
    cancelled: bool
