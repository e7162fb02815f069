import os
from dataclasses import dataclass

BACKEND_TOKEN = os.environ.get("BACKEND_TOKEN", "")
APP_DATA_DIR = os.environ.get("APP_DATA_DIR", os.path.join(os.getcwd(), "data"))
LOG_DIR = os.environ.get("LOG_DIR", os.path.join(APP_DATA_DIR, "logs"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
BACKEND_PORT = int(os.environ.get("BACKEND_PORT", "49671"))

DB_PATH = os.environ.get("DB_PATH", os.path.join(APP_DATA_DIR, "jobs.db"))

# Scheduler
JOB_POLL_INTERVAL_SEC = float(os.environ.get("JOB_POLL_INTERVAL_SEC", "5"))
MAX_CONCURRENT_JOBS = int(os.environ.get("MAX_CONCURRENT_JOBS", "3"))
MAX_CONCURRENT_UNITS_PER_JOB = int(
    os.environ.get("MAX_CONCURRENT_UNITS_PER_JOB", "10")
)
JOB_RETRY_ATTEMPTS = int(os.environ.get("JOB_RETRY_ATTEMPTS", "0"))
JOB_RETRY_DELAY_SEC = float(os.environ.get("JOB_RETRY_DELAY_SEC", "30"))
STALE_JOB_AFTER_SEC = float(os.environ.get("STALE_JOB_AFTER_SEC", "0"))
SECONDS_PER_UNIT_ESTIMATE = int(os.environ.get("SECONDS_PER_UNIT_ESTIMATE", "2"))

# Document indexer
INDEXER_URL = os.environ.get("INDEXER_URL", "http://127.0.0.1:8001")
INDEXER_TIMEOUT_SEC = float(os.environ.get("INDEXER_TIMEOUT_SEC", "60"))


@dataclass
class SchedulerConfig:
    poll_interval: float = JOB_POLL_INTERVAL_SEC
    max_concurrent_jobs: int = MAX_CONCURRENT_JOBS
    max_concurrent_units_per_job: int = MAX_CONCURRENT_UNITS_PER_JOB
    retry_attempts: int = JOB_RETRY_ATTEMPTS
    retry_delay: float = JOB_RETRY_DELAY_SEC
    stale_after: float = STALE_JOB_AFTER_SEC
    seconds_per_unit: int = SECONDS_PER_UNIT_ESTIMATE

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        return cls()


def ensure_dirs() -> None:
    os.makedirs(APP_DATA_DIR, exist_ok=True)
    os.makedirs(LOG_DIR, exist_ok=True)
