"""Conversion history database. SQLite by default; set DATABASE_URL for another SQLAlchemy backend.
Only finished-job summaries are written here for reporting; live job state stays in the job store.
On connection failure at startup, logs verbosely and falls back to in-memory SQLite so the app can start."""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from image_audit import config as app_config

logger = logging.getLogger("image_audit.db")

_engine: Optional[Engine] = None

# Tables required for the app (created at startup if missing)
REQUIRED_TABLES = ("conversion_jobs",)


def _make_engine(url: str) -> Engine:
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # One shared connection, otherwise every checkout gets an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = _make_engine(app_config.DATABASE_URL)
        logger.info("Database engine created (%s)", _engine.dialect.name)
    return _engine


def _ensure_tables(engine: Engine) -> None:
    """Create required tables if they do not exist."""
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE TABLE IF NOT EXISTS conversion_jobs (
                job_id VARCHAR(64) PRIMARY KEY,
                status VARCHAR(20) NOT NULL,
                total_count INTEGER NOT NULL,
                completed_count INTEGER NOT NULL,
                original_kb FLOAT NOT NULL DEFAULT 0,
                optimized_kb FLOAT NOT NULL DEFAULT 0,
                error TEXT,
                finished_at VARCHAR(50) NOT NULL
            )
        """))
        conn.commit()
    logger.info("Required tables ensured: %s", ", ".join(REQUIRED_TABLES))


def init_db() -> None:
    """Prepare database at startup. On failure, fall back to in-memory SQLite so the app can start."""
    global _engine
    try:
        engine = get_engine()
        _ensure_tables(engine)
        logger.info("Database ready: %s", engine.dialect.name)
        return
    except Exception as e:
        logger.exception("Database init failed: %s. Trying in-memory SQLite.", e)

    # Last resort: history will not persist across restarts
    in_memory_url = "sqlite:///:memory:"
    app_config.DATABASE_URL = in_memory_url
    _engine = _make_engine(in_memory_url)
    _ensure_tables(_engine)
    logger.warning("Database unavailable. Using in-memory SQLite. Conversion history will not persist across restarts.")


def reset_engine() -> None:
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


@contextmanager
def session():
    with get_engine().connect() as conn:
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def record_finished_job(job) -> None:
    """Store the summary of a job that reached completed or failed."""
    original_kb = round(sum(r.record.size_kb for r in job.results), 2)
    optimized_kb = round(sum(r.optimized_size_kb for r in job.results), 2)
    params = {
        "job_id": job.id,
        "status": job.status.value,
        "total_count": job.total_count,
        "completed_count": job.completed_count,
        "original_kb": original_kb,
        "optimized_kb": optimized_kb,
        "error": job.error,
        "finished_at": _now_iso(),
    }
    with session() as conn:
        conn.execute(
            text("""
                INSERT INTO conversion_jobs (job_id, status, total_count, completed_count, original_kb, optimized_kb, error, finished_at)
                VALUES (:job_id, :status, :total_count, :completed_count, :original_kb, :optimized_kb, :error, :finished_at)
            """),
            params,
        )
    logger.info("Recorded job %s (%s, %s images)", job.id, job.status.value, job.completed_count)


def get_conversion_stats() -> dict:
    """Aggregate history: jobs, jobs_failed, images_converted, total_original_kb, total_optimized_kb, savings_percent."""
    with get_engine().connect() as conn:
        row = conn.execute(
            text("""
                SELECT
                    COUNT(*) AS jobs,
                    COALESCE(SUM(CASE WHEN status = 'failed' THEN 1 ELSE 0 END), 0) AS jobs_failed,
                    COALESCE(SUM(completed_count), 0) AS images_converted,
                    COALESCE(SUM(original_kb), 0) AS total_original_kb,
                    COALESCE(SUM(optimized_kb), 0) AS total_optimized_kb
                FROM conversion_jobs
            """)
        ).fetchone()
    if not row or row[0] == 0:
        return {
            "jobs": 0,
            "jobs_failed": 0,
            "images_converted": 0,
            "total_original_kb": 0.0,
            "total_optimized_kb": 0.0,
            "savings_percent": 0.0,
        }
    total_original = float(row[3])
    total_optimized = float(row[4])
    savings_percent = 0.0
    if total_original > 0:
        savings_percent = round((1.0 - total_optimized / total_original) * 100.0, 1)
    return {
        "jobs": int(row[0]),
        "jobs_failed": int(row[1]),
        "images_converted": int(row[2]),
        "total_original_kb": round(total_original, 2),
        "total_optimized_kb": round(total_optimized, 2),
        "savings_percent": savings_percent,
    }
