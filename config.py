import os
from functools import lru_cache
from pathlib import Path

BACKEND_SQL = "sql"
BACKEND_LOCAL = "local"
BACKENDS = (BACKEND_SQL, BACKEND_LOCAL)


class Settings:
    def __init__(
        self,
        database_url: str,
        backend: str,
        local_store_path: str,
        session_secret: str,
        session_max_age_hours: int,
        insight_api_key: str,
        insight_model: str,
        insight_endpoint: str,
        insight_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.backend = backend
        self.local_store_path = local_store_path
        self.session_secret = session_secret
        self.session_max_age_hours = session_max_age_hours
        self.insight_api_key = insight_api_key
        self.insight_model = insight_model
        self.insight_endpoint = insight_endpoint
        self.insight_timeout_secs = insight_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    backend = os.getenv("FINANCE_BACKEND", BACKEND_SQL).strip().lower()
    if backend not in BACKENDS:
        allowed = ", ".join(BACKENDS)
        raise ValueError(f"FINANCE_BACKEND must be one of {allowed}, got {backend!r}")
    local_store_path = os.getenv(
        "FINANCE_LOCAL_STORE", str(data_dir / "finance_store.json")
    )
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "3f9c1d0b7e2a4c58a61f0d9e8b7c6a5f4e3d2c1b0a9f8e7d6c5b4a3928171605",
    )
    session_max_age_hours = int(os.getenv("FINANCE_SESSION_MAX_AGE_HOURS", "168"))
    insight_api_key = os.getenv("FINANCE_INSIGHT_API_KEY", "")
    insight_model = os.getenv("FINANCE_INSIGHT_MODEL", "gemini-2.0-flash")
    insight_endpoint = os.getenv(
        "FINANCE_INSIGHT_ENDPOINT",
        "https://generativelanguage.googleapis.com/v1beta/models",
    )
    insight_timeout_secs = float(os.getenv("FINANCE_INSIGHT_TIMEOUT_SECS", "30"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        backend=backend,
        local_store_path=local_store_path,
        session_secret=session_secret,
        session_max_age_hours=session_max_age_hours,
        insight_api_key=insight_api_key,
        insight_model=insight_model,
        insight_endpoint=insight_endpoint,
        insight_timeout_secs=insight_timeout_secs,
        log_level=log_level,
    )
