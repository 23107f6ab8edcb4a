import os
from dotenv import load_dotenv

load_dotenv()

STORAGE_DIR = os.getenv(
    "STORAGE_DIR", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "storage"))
)
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "files")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
DB_URL = os.getenv("DB_URL", "sqlite:///./markpress.db")
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

DB_CONNECT_ARGS = {"check_same_thread": False} if DB_URL.startswith("sqlite") else {}
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE_BYTES", str(50 * 1024 * 1024)))
ALLOWED_IMAGE_TYPES = {
    t.strip()
    for t in os.getenv("ALLOWED_IMAGE_TYPES", "image/jpeg,image/png,image/webp,image/gif").split(",")
    if t.strip()
}
RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "60"))
CACHE_MAX_AGE_SECONDS = int(os.getenv("CACHE_MAX_AGE_SECONDS", "3600"))
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin-dev-password")
ADMIN_LOCK_STEP_SECONDS = int(os.getenv("ADMIN_LOCK_STEP_SECONDS", str(5 * 60)))

# Temp namespace sweeping
ENABLE_CLEANER = os.getenv("ENABLE_CLEANER", "true").lower() in {"true", "1", "yes"}
TEMP_MAX_AGE_HOURS = int(os.getenv("TEMP_MAX_AGE_HOURS", "24"))
CLEANER_INTERVAL_MINUTES = int(os.getenv("CLEANER_INTERVAL_MINUTES", "60"))

# Abort publishing when any referenced temp image fails to promote
STRICT_PROMOTION = os.getenv("STRICT_PROMOTION", "false").lower() in {"true", "1", "yes"}

# Redis Configuration
REDIS_URL = os.getenv("REDIS_URL", "")
