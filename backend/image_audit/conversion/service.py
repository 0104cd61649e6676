"""WebP conversion of audited images with batched background jobs."""
import hashlib
import io
import logging
import os
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, Optional

from PIL import Image

from image_audit import config as app_config
from image_audit.audit.models import ImageRecord, bytes_to_kb
from image_audit.audit.service import chunked
from image_audit.conversion.models import ConversionOptions, ConversionResult
from image_audit.conversion.resize import prepare_for_webp, resize_max_edge
from image_audit.db import record_finished_job
from image_audit.errors import ImageAuditError
from image_audit.fetcher import Fetcher
from image_audit.jobs import InMemoryJobStore, Job, JobStatus, JobStore

logger = logging.getLogger("image_audit.conversion")

# Images already in the target format and at most this size are left alone
SKIP_MAX_KB = 100


def optimized_filename(reference: str) -> str:
    """Deterministic output name: same source reference, same file."""
    return hashlib.md5(reference.encode("utf-8")).hexdigest() + "." + app_config.TARGET_FORMAT


class ImageConverter:
    """Re-encodes one image to WebP. Never raises: failures fall back to the original values."""

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        output_dir: Optional[Path] = None,
        url_prefix: Optional[str] = None,
        effort: Optional[int] = None,
    ):
        self.fetcher = fetcher or Fetcher()
        self.output_dir = Path(output_dir) if output_dir is not None else app_config.OPTIMIZED_DIR
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.url_prefix = (url_prefix if url_prefix is not None else app_config.OPTIMIZED_URL_PREFIX).rstrip("/")
        self.effort = app_config.WEBP_EFFORT if effort is None else effort

    @staticmethod
    def can_skip(record: ImageRecord, options: ConversionOptions) -> bool:
        return (
            record.format.lower() == app_config.TARGET_FORMAT
            and record.width <= options.max_width_px
            and record.size_kb <= SKIP_MAX_KB
        )

    def convert(self, record: ImageRecord, options: ConversionOptions) -> ConversionResult:
        if self.can_skip(record, options):
            logger.info("Skipping %s: already optimized", record.reference)
            return ConversionResult.unchanged(record)
        try:
            data = self.fetcher.fetch(record.reference)
            name = optimized_filename(record.reference)
            out_path = self.output_dir / name
            self._encode(data, out_path, options)
            result = ConversionResult.from_sizes(
                record,
                f"{self.url_prefix}/{name}",
                bytes_to_kb(out_path.stat().st_size),
            )
            logger.info(
                "Converted %s -> %s (%.2f KB -> %.2f KB)",
                record.reference, name, record.size_kb, result.optimized_size_kb,
            )
            return result
        except Exception as e:
            logger.exception("Image conversion failed for %s: %s", record.reference, e)
            return ConversionResult.unchanged(record)

    def _encode(self, data: bytes, out_path: Path, options: ConversionOptions) -> None:
        # Readers of out_path must never see a partially written file
        tmp_path = out_path.with_name(f".{out_path.stem}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            with Image.open(io.BytesIO(data)) as img:
                work = resize_max_edge(prepare_for_webp(img), options.max_width_px)
                work.save(tmp_path, format="WEBP", quality=options.quality, method=self.effort)
            os.replace(tmp_path, out_path)
        finally:
            tmp_path.unlink(missing_ok=True)


class ConversionScheduler:
    """
    Runs conversion jobs in the background.

    Each job processes its images in batches of batch_size: items within a
    batch run concurrently, and the next batch starts only after the whole
    batch has finished and been recorded in the store. The item pool is
    shared by all jobs, so max_workers caps conversions across jobs.
    """

    def __init__(
        self,
        store: Optional[JobStore] = None,
        converter: Optional[ImageConverter] = None,
        batch_size: Optional[int] = None,
        max_workers: Optional[int] = None,
        max_active_jobs: Optional[int] = None,
        on_finished: Optional[Callable[[Job], None]] = None,
    ):
        self.store = store if store is not None else InMemoryJobStore()
        self.converter = converter if converter is not None else ImageConverter()
        self.batch_size = max(1, batch_size or app_config.CONVERSION_BATCH_SIZE)
        self.on_finished = on_finished
        self.max_workers = max_workers or app_config.MAX_WORKERS
        self._item_pool = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="convert-item",
        )
        self._job_pool = ThreadPoolExecutor(
            max_workers=max_active_jobs or app_config.MAX_ACTIVE_JOBS,
            thread_name_prefix="convert-job",
        )
        self._runs: dict[str, Future] = {}
        self._runs_lock = threading.Lock()
        logger.info(
            "ConversionScheduler initialized with batch_size=%s max_workers=%s",
            self.batch_size, self.max_workers,
        )

    def submit(self, images: Iterable[ImageRecord], options: Optional[ConversionOptions] = None) -> str:
        """Create a pending job and start it in the background. Returns the job id without waiting."""
        images = list(images)
        options = options or ConversionOptions()
        job_id = uuid.uuid4().hex
        self.store.create(Job(id=job_id, total_count=len(images)))
        try:
            future = self._job_pool.submit(self._run, job_id, images, options)
        except RuntimeError as e:
            # Executor already shut down; the job must not stay pending
            logger.error("Could not schedule job %s: %s", job_id, e)
            self.store.update(job_id, status=JobStatus.FAILED, error=f"Scheduler unavailable: {e}")
            raise
        with self._runs_lock:
            self._runs[job_id] = future
        future.add_done_callback(lambda _f: self._forget(job_id))
        logger.info("Job %s submitted with %s images (quality=%s, max_width=%s)",
                    job_id, len(images), options.quality, options.max_width_px)
        return job_id

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.store.get(job_id)

    def join(self, job_id: str, timeout: Optional[float] = None) -> Optional[Job]:
        """Wait for a job's background run to finish and return its final state."""
        with self._runs_lock:
            future = self._runs.get(job_id)
        if future is not None:
            wait([future], timeout=timeout)
        return self.store.get(job_id)

    def shutdown(self, wait_for_jobs: bool = True) -> None:
        self._job_pool.shutdown(wait=wait_for_jobs)
        self._item_pool.shutdown(wait=wait_for_jobs)

    def _forget(self, job_id: str) -> None:
        with self._runs_lock:
            self._runs.pop(job_id, None)

    def _run(self, job_id: str, images: list[ImageRecord], options: ConversionOptions) -> None:
        try:
            self.store.update(job_id, status=JobStatus.PROCESSING)
            for number, batch in enumerate(chunked(images, self.batch_size), start=1):
                futures = [self._item_pool.submit(self.converter.convert, image, options) for image in batch]
                wait(futures)
                results = [f.result() for f in futures]
                job = self.store.update(job_id, results=results)
                logger.info("Job %s batch %s done (%s/%s)", job_id, number, job.completed_count, job.total_count)
            job = self.store.update(job_id, status=JobStatus.COMPLETED)
            logger.info("Job %s completed", job_id)
        except Exception as e:
            logger.exception("Job %s failed: %s", job_id, e)
            try:
                job = self.store.update(job_id, status=JobStatus.FAILED, error=str(e) or type(e).__name__)
            except ImageAuditError as store_err:
                logger.error("Could not mark job %s failed: %s", job_id, store_err)
                return
        self._notify(job)

    def _notify(self, job: Job) -> None:
        if self.on_finished is None:
            return
        try:
            self.on_finished(job)
        except Exception as e:
            logger.exception("on_finished hook failed for job %s: %s", job.id, e)


# Singletons
_conversion_scheduler: Optional[ConversionScheduler] = None


def get_conversion_scheduler() -> ConversionScheduler:
    global _conversion_scheduler
    if _conversion_scheduler is None:
        _conversion_scheduler = ConversionScheduler(on_finished=record_finished_job)
    return _conversion_scheduler


def shutdown_conversion_scheduler() -> None:
    global _conversion_scheduler
    if _conversion_scheduler is not None:
        _conversion_scheduler.shutdown(wait_for_jobs=False)
        _conversion_scheduler = None
