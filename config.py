import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        default_user_id: int,
        summary_workers: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.default_user_id = default_user_id
        self.summary_workers = summary_workers
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Asia/Jakarta")
    default_currency = os.getenv("LEDGER_DEFAULT_CURRENCY", "IDR").upper()
    default_user_id = int(os.getenv("LEDGER_DEFAULT_USER_ID", "1"))
    summary_workers = max(1, int(os.getenv("LEDGER_SUMMARY_WORKERS", "4")))
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        default_user_id=default_user_id,
        summary_workers=summary_workers,
        log_level=log_level,
    )
