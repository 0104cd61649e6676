"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Paths (override with env)
# Directory audits publish references relative to LOCAL_ROOT ("/images/a.png");
# the fetcher resolves them back against it.
LOCAL_ROOT = Path(os.getenv("LOCAL_ROOT", os.getcwd())).resolve()
OPTIMIZED_DIR = Path(os.getenv("OPTIMIZED_DIR", str(BASE_DIR.parent / "public" / "optimized")))
OPTIMIZED_DIR.mkdir(parents=True, exist_ok=True)
OPTIMIZED_URL_PREFIX = "/" + os.getenv("OPTIMIZED_URL_PREFIX", "/optimized").strip("/")

# Supported formats (raster + svg) for directory audits
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".avif", ".bmp", ".tif", ".tiff"}
TARGET_FORMAT = "webp"

# Fetching
USER_AGENT = os.getenv("USER_AGENT", "ImageAudit/1.0")
FETCH_TIMEOUT = int(os.getenv("FETCH_TIMEOUT", "60"))
FETCH_MAX_MB = int(os.getenv("FETCH_MAX_MB", "20"))
FETCH_MAX_BYTES = FETCH_MAX_MB * 1024 * 1024

# Conversion options (env overrides)
DEFAULT_QUALITY = int(os.getenv("DEFAULT_QUALITY", "80"))
DEFAULT_MAX_WIDTH = int(os.getenv("DEFAULT_MAX_WIDTH", "1280"))
WEBP_EFFORT = int(os.getenv("WEBP_EFFORT", "6"))

# Concurrency
CONVERSION_BATCH_SIZE = int(os.getenv("CONVERSION_BATCH_SIZE", "3"))
AUDIT_BATCH_SIZE = int(os.getenv("AUDIT_BATCH_SIZE", "3"))
# Item pool shared by every job; bounds aggregate conversion load across jobs
MAX_WORKERS = int(os.getenv("MAX_WORKERS", str(min(32, (os.cpu_count() or 4) + 4))))
MAX_ACTIVE_JOBS = int(os.getenv("MAX_ACTIVE_JOBS", "8"))

# Database (conversion history only). SQLite by default; any SQLAlchemy URL works.
DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if not DATABASE_URL:
    db_path = BASE_DIR / "data" / "image_audit.db"
    db_path.parent.mkdir(parents=True, exist_ok=True)
    DATABASE_URL = f"sqlite:///{db_path}"

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
# CORS: comma-separated origins, e.g. "http://localhost:5173,http://127.0.0.1:5173"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("image_audit")
