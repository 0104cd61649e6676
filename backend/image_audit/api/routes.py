"""API routes for image audits and WebP conversion jobs."""
import logging
from typing import Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from image_audit import config as app_config
from image_audit.audit.models import Flag, ImageRecord
from image_audit.audit.service import ImageAuditor, get_image_auditor
from image_audit.conversion.models import ConversionOptions
from image_audit.conversion.service import ConversionScheduler, get_conversion_scheduler
from image_audit.db import get_conversion_stats
from image_audit.entitlement import require_entitlement

logger = logging.getLogger("image_audit.api")
router = APIRouter(prefix="/api/images", tags=["images"], dependencies=[Depends(require_entitlement)])
health_router = APIRouter(prefix="/api", tags=["health"])


class AuditRequest(BaseModel):
    url: Optional[str] = None
    path: Optional[str] = None


class ImageRecordIn(BaseModel):
    """Image as returned by an audit. Incoming flags are ignored and recomputed."""

    model_config = ConfigDict(populate_by_name=True)

    reference: str = Field(..., min_length=1)
    width: int = Field(..., ge=0)
    height: int = Field(..., ge=0)
    size_kb: float = Field(..., alias="sizeKB", ge=0)
    format: str
    alt_text: Optional[str] = Field(None, alias="altText")
    flags: list[Flag] = Field(default_factory=list)

    def to_record(self) -> ImageRecord:
        # Undecodable images keep the forced flags the audit gave them
        if self.format == "unknown" and self.width == 0 and self.height == 0:
            return ImageRecord.degraded(self.reference, size_kb=self.size_kb, alt_text=self.alt_text)
        return ImageRecord.build(self.reference, self.width, self.height, self.size_kb, self.format, self.alt_text)


class ConversionOptionsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quality: int = Field(app_config.DEFAULT_QUALITY, ge=1, le=100)
    max_width_px: int = Field(app_config.DEFAULT_MAX_WIDTH, alias="maxWidthPx", ge=100, le=4000)


class ConvertRequest(BaseModel):
    images: list[ImageRecordIn]
    options: Optional[ConversionOptionsIn] = None


def _is_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


@health_router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/audit")
def audit_images(body: AuditRequest, auditor: ImageAuditor = Depends(get_image_auditor)):
    """Audit images on a page ({url}) or under a local directory ({path})."""
    url = (body.url or "").strip()
    path = (body.path or "").strip()
    if url and _is_http_url(url):
        report = auditor.audit_url(url)
    elif path:
        report = auditor.audit_directory(path)
    else:
        raise HTTPException(400, "Invalid request. Either 'url' or 'path' must be provided.")
    logger.info("Audit of %s found %s images", report.source, len(report.images))
    return report.to_dict()


@router.post("/convert")
def convert_images(body: ConvertRequest, scheduler: ConversionScheduler = Depends(get_conversion_scheduler)):
    """Start a background WebP conversion job. Poll /api/images/job/{jobId} for progress."""
    opts = body.options or ConversionOptionsIn()
    options = ConversionOptions(quality=opts.quality, max_width_px=opts.max_width_px)
    job_id = scheduler.submit([img.to_record() for img in body.images], options)
    return {"jobId": job_id}


@router.get("/job/{job_id}")
def job_status(job_id: str, scheduler: ConversionScheduler = Depends(get_conversion_scheduler)):
    """Current job state; results grow batch by batch while processing."""
    job = scheduler.get_job(job_id)
    if job is None:
        raise HTTPException(404, f"Job {job_id} not found")
    return job.to_dict()


@router.get("/stats")
def conversion_stats():
    """Totals across finished conversion jobs."""
    return get_conversion_stats()
