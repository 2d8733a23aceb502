import json
import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        regeneration_workers: int,
        webhook_dedup_secs: float,
        webhook_dedup_max: int,
        default_history_months: int,
        institution_cycle_limits: dict[str, int],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.regeneration_workers = regeneration_workers
        self.webhook_dedup_secs = webhook_dedup_secs
        self.webhook_dedup_max = webhook_dedup_max
        self.default_history_months = default_history_months
        self.institution_cycle_limits = institution_cycle_limits


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("CARDCYCLE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _parse_cycle_limits(raw: str) -> dict[str, int]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("CARDCYCLE_INSTITUTION_CYCLE_LIMITS must be a JSON object") from exc
    if not isinstance(data, dict):
        raise ValueError("CARDCYCLE_INSTITUTION_CYCLE_LIMITS must be a JSON object")
    return {str(name).strip().lower(): int(limit) for name, limit in data.items()}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "cardcycle.db"
    database_url = os.getenv("CARDCYCLE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("CARDCYCLE_TIMEZONE", "America/New_York")
    regeneration_workers = int(os.getenv("CARDCYCLE_REGENERATION_WORKERS", "4"))
    webhook_dedup_secs = float(os.getenv("CARDCYCLE_WEBHOOK_DEDUP_SECS", "10"))
    webhook_dedup_max = int(os.getenv("CARDCYCLE_WEBHOOK_DEDUP_MAX", "1024"))
    default_history_months = int(os.getenv("CARDCYCLE_DEFAULT_HISTORY_MONTHS", "12"))
    # Capital One only exposes ~90 days of transactions.
    institution_cycle_limits = _parse_cycle_limits(
        os.getenv("CARDCYCLE_INSTITUTION_CYCLE_LIMITS", '{"capital one": 4}')
    )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        regeneration_workers=regeneration_workers,
        webhook_dedup_secs=webhook_dedup_secs,
        webhook_dedup_max=webhook_dedup_max,
        default_history_months=default_history_months,
        institution_cycle_limits=institution_cycle_limits,
    )
