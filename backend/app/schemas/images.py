from typing import Literal

from pydantic import BaseModel, field_validator


class ExtractImagesRequest(BaseModel):
    url: str | None = None
    force_refresh: bool = False
    webhook_url: str | None = None  # Endpoint notified on started/completed/failed
    webhook_secret: str | None = None  # HMAC secret for webhook signature
    job_id: str | None = None  # Caller-supplied id; generated when absent

    @field_validator("url", "webhook_url", "job_id", mode="before")
    @classmethod
    def _strip(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class ImageOut(BaseModel):
    url: str
    landing_page: str
    alt: str
    hash: str
    type: Literal["ui_screenshot", "lifestyle"] | None = None
    confidence: float | None = None


class ExtractImagesResponse(BaseModel):
    job_id: str
    status: Literal["completed"] = "completed"
    source_url: str
    generated_at: str  # ISO-8601
    processing_time_ms: int
    images: list[ImageOut]


class ExtractImagesError(BaseModel):
    job_id: str
    status: Literal["failed"] = "failed"
    source_url: str | None = None
    generated_at: str
    processing_time_ms: int
    error: str
    details: str | None = None


class JobStartedEvent(BaseModel):
    job_id: str
    status: Literal["started"] = "started"
    source_url: str
    started_at: str
    message: str
