"""Tests for the job store and the batched conversion scheduler."""
import threading
import time

import pytest

from image_audit.audit.metadata import extract_metadata
from image_audit.audit.models import ImageRecord
from image_audit.conversion.models import ConversionOptions, ConversionResult
from image_audit.conversion.service import ConversionScheduler, ImageConverter
from image_audit.errors import InvalidTransition, JobNotFound
from image_audit.jobs import InMemoryJobStore, Job, JobStatus, JobStore

from conftest import FakeFetcher

JOIN_TIMEOUT = 30


def _records(n):
    return [ImageRecord.build(f"/img/{i}.png", 100, 100, 50.0, "png", "Alt text here") for i in range(n)]


class RecordingConverter:
    """Logs start/end events in order and tracks how many items run at once."""

    def __init__(self, delay=0.03, fail_on=None, gate=None):
        self.delay = delay
        self.fail_on = fail_on
        self.gate = gate
        self.events: list[tuple[str, str]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def convert(self, record, options):
        with self._lock:
            self.events.append(("start", record.reference))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                self.gate.wait(JOIN_TIMEOUT)
            time.sleep(self.delay)
            if record.reference == self.fail_on:
                raise RuntimeError("encoder crashed")
            return ConversionResult.unchanged(record)
        finally:
            with self._lock:
                self.events.append(("end", record.reference))
                self.active -= 1


class RecordingStore(InMemoryJobStore):
    """Keeps every snapshot the scheduler writes."""

    def __init__(self):
        super().__init__()
        self.snapshots: list[Job] = []

    def update(self, job_id, **kwargs):
        job = super().update(job_id, **kwargs)
        self.snapshots.append(job)
        return job


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def make_scheduler(store):
    created = []

    def factory(converter, **kwargs):
        kwargs.setdefault("batch_size", 3)
        kwargs.setdefault("max_workers", 8)
        kwargs.setdefault("store", store)
        scheduler = ConversionScheduler(converter=converter, **kwargs)
        created.append(scheduler)
        return scheduler

    yield factory
    for scheduler in created:
        scheduler.shutdown()


class TestInMemoryJobStore:

    def test_unknown_id_is_none(self):
        assert InMemoryJobStore().get("missing") is None

    def test_update_unknown_id_raises(self):
        with pytest.raises(JobNotFound):
            InMemoryJobStore().update("missing", status=JobStatus.PROCESSING)

    def test_results_and_count_advance_together(self):
        s = InMemoryJobStore()
        s.create(Job(id="j", total_count=3))
        s.update("j", status=JobStatus.PROCESSING)
        results = [ConversionResult.unchanged(r) for r in _records(2)]
        job = s.update("j", results=results)
        assert job.completed_count == 2
        assert len(job.results) == 2

    def test_count_never_exceeds_total(self):
        s = InMemoryJobStore()
        s.create(Job(id="j", total_count=1))
        s.update("j", status=JobStatus.PROCESSING)
        with pytest.raises(InvalidTransition):
            s.update("j", results=[ConversionResult.unchanged(r) for r in _records(2)])
        assert s.get("j").completed_count == 0

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_terminal_states_are_frozen(self, terminal):
        s = InMemoryJobStore()
        s.create(Job(id="j", total_count=1))
        s.update("j", status=JobStatus.PROCESSING)
        s.update("j", status=terminal)
        with pytest.raises(InvalidTransition):
            s.update("j", status=JobStatus.PROCESSING)
        with pytest.raises(InvalidTransition):
            s.update("j", results=[ConversionResult.unchanged(_records(1)[0])])
        assert s.get("j").status == terminal

    def test_cannot_complete_without_processing(self):
        s = InMemoryJobStore()
        s.create(Job(id="j", total_count=0))
        with pytest.raises(InvalidTransition):
            s.update("j", status=JobStatus.COMPLETED)

    def test_snapshots_are_independent(self):
        s = InMemoryJobStore()
        s.create(Job(id="j", total_count=2))
        before = s.get("j")
        s.update("j", status=JobStatus.PROCESSING, results=[ConversionResult.unchanged(_records(1)[0])])
        assert before.status == JobStatus.PENDING
        assert before.results == ()

    def test_duplicate_create_rejected(self):
        s = InMemoryJobStore()
        s.create(Job(id="j", total_count=1))
        with pytest.raises(ValueError):
            s.create(Job(id="j", total_count=1))

    def test_store_interface_is_abstract(self):
        with pytest.raises(TypeError):
            JobStore()


class TestConversionScheduler:

    def test_uses_the_injected_empty_store(self, make_scheduler):
        store = InMemoryJobStore()
        scheduler = make_scheduler(RecordingConverter(delay=0), store=store)
        assert scheduler.store is store
        job_id = scheduler.submit([])
        scheduler.join(job_id, JOIN_TIMEOUT)
        assert store.get(job_id).status == JobStatus.COMPLETED

    def test_submit_after_shutdown_fails_the_job(self, make_scheduler, store):
        scheduler = make_scheduler(RecordingConverter(delay=0))
        scheduler.shutdown()
        with pytest.raises(RuntimeError):
            scheduler.submit(_records(2))
        (job,) = store.snapshots
        assert job.status == JobStatus.FAILED
        assert job.completed_count == 0
        assert job.error.startswith("Scheduler unavailable")
        assert store.get(job.id).status == JobStatus.FAILED

    def test_submit_returns_before_work_is_done(self, make_scheduler):
        gate = threading.Event()
        scheduler = make_scheduler(RecordingConverter(delay=0, gate=gate))
        job_id = scheduler.submit(_records(4))
        job = scheduler.get_job(job_id)
        assert job.status in (JobStatus.PENDING, JobStatus.PROCESSING)
        assert job.completed_count == 0
        assert job.total_count == 4
        gate.set()
        assert scheduler.join(job_id, JOIN_TIMEOUT).status == JobStatus.COMPLETED

    def test_batches_run_in_order_with_barrier(self, make_scheduler):
        converter = RecordingConverter()
        scheduler = make_scheduler(converter)
        images = _records(7)
        job = scheduler.join(scheduler.submit(images), JOIN_TIMEOUT)

        assert job.status == JobStatus.COMPLETED
        assert converter.max_active <= 3
        batches = [images[0:3], images[3:6], images[6:7]]
        position = {event: i for i, event in enumerate(converter.events)}
        for current, following in zip(batches, batches[1:]):
            last_end = max(position[("end", r.reference)] for r in current)
            first_start = min(position[("start", r.reference)] for r in following)
            assert last_end < first_start

    def test_progress_is_monotonic_and_consistent(self, make_scheduler, store):
        scheduler = make_scheduler(RecordingConverter(delay=0.01))
        images = _records(8)
        job = scheduler.join(scheduler.submit(images), JOIN_TIMEOUT)

        counts = [s.completed_count for s in store.snapshots]
        assert counts == sorted(counts)
        assert [s.completed_count for s in store.snapshots if s.status == JobStatus.PROCESSING][1:] == [3, 6, 8]
        for snap in store.snapshots:
            assert 0 <= snap.completed_count <= snap.total_count
            assert len(snap.results) == snap.completed_count
        assert job.completed_count == 8
        assert [r.record.reference for r in job.results] == [r.reference for r in images]

    def test_status_reads_are_idempotent(self, make_scheduler):
        scheduler = make_scheduler(RecordingConverter(delay=0))
        job_id = scheduler.submit(_records(5))
        scheduler.join(job_id, JOIN_TIMEOUT)
        assert scheduler.get_job(job_id).to_dict() == scheduler.get_job(job_id).to_dict()

    def test_scheduler_failure_keeps_partial_results(self, make_scheduler):
        images = _records(7)
        scheduler = make_scheduler(RecordingConverter(fail_on=images[4].reference))
        job = scheduler.join(scheduler.submit(images), JOIN_TIMEOUT)

        assert job.status == JobStatus.FAILED
        assert job.error == "encoder crashed"
        assert job.completed_count == 3
        assert [r.record.reference for r in job.results] == [r.reference for r in images[:3]]

    def test_empty_job_completes(self, make_scheduler):
        scheduler = make_scheduler(RecordingConverter())
        job = scheduler.join(scheduler.submit([]), JOIN_TIMEOUT)
        assert job.status == JobStatus.COMPLETED
        assert job.results == ()

    def test_unknown_job(self, make_scheduler):
        scheduler = make_scheduler(RecordingConverter())
        assert scheduler.get_job("nope") is None
        assert scheduler.join("nope") is None

    def test_item_pool_caps_work_across_jobs(self, make_scheduler):
        converter = RecordingConverter(delay=0.05)
        scheduler = make_scheduler(converter, max_workers=2)
        ids = [scheduler.submit(_records(6)) for _ in range(3)]
        for job_id in ids:
            assert scheduler.join(job_id, JOIN_TIMEOUT).status == JobStatus.COMPLETED
        assert converter.max_active <= 2

    def test_on_finished_hook(self, make_scheduler):
        finished = []
        scheduler = make_scheduler(RecordingConverter(delay=0), on_finished=finished.append)
        job_id = scheduler.submit(_records(2))
        scheduler.join(job_id, JOIN_TIMEOUT)
        assert [(j.id, j.status) for j in finished] == [(job_id, JobStatus.COMPLETED)]

    def test_on_finished_errors_do_not_change_job(self, make_scheduler):
        def broken_hook(job):
            raise RuntimeError("history unavailable")

        scheduler = make_scheduler(RecordingConverter(delay=0), on_finished=broken_hook)
        job = scheduler.join(scheduler.submit(_records(2)), JOIN_TIMEOUT)
        assert job.status == JobStatus.COMPLETED


class TestEndToEndConversion:

    def test_mixed_set(self, make_scheduler, tmp_path, webp_bytes, big_jpeg_bytes, png_bytes):
        files = {
            "https://shop.example.com/img/ok.webp": webp_bytes,
            "https://shop.example.com/img/hero.jpg": big_jpeg_bytes,
            "https://shop.example.com/img/chart.png": png_bytes,
        }
        alts = ["Product front view", "Hero banner photo", None]
        images = [extract_metadata(data, ref, alt) for (ref, data), alt in zip(files.items(), alts)]
        converter = ImageConverter(fetcher=FakeFetcher(files=files), output_dir=tmp_path / "out", effort=4)
        scheduler = make_scheduler(converter)

        job = scheduler.join(scheduler.submit(images, ConversionOptions(quality=80, max_width_px=1280)), JOIN_TIMEOUT)

        assert job.status == JobStatus.COMPLETED
        assert len(job.results) == 3
        ok, hero, chart = job.results
        assert ok.savings_percent == 0
        assert ok.optimized_reference == "https://shop.example.com/img/ok.webp"
        assert hero.savings_percent > 0
        assert chart.savings_percent > 0
        assert (tmp_path / "out").joinpath(hero.optimized_reference.rsplit("/", 1)[1]).is_file()

    def test_unreachable_source_still_completes(self, make_scheduler, tmp_path):
        record = ImageRecord.build("https://unreachable.example.invalid/a.jpg", 1600, 1200, 420.0, "jpeg", "Lost photo")
        converter = ImageConverter(fetcher=FakeFetcher(), output_dir=tmp_path / "out")
        scheduler = make_scheduler(converter)

        job = scheduler.join(scheduler.submit([record]), JOIN_TIMEOUT)

        assert job.status == JobStatus.COMPLETED
        assert job.error is None
        (result,) = job.results
        assert result.record == record
        assert result.optimized_reference == record.reference
        assert result.optimized_size_kb == record.size_kb
        assert result.savings_kb == 0
        assert result.savings_percent == 0
