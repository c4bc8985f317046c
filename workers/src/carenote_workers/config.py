import os
from dataclasses import dataclass


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Config:
    database_url: str
    listen_database_url: str = ""
    poll_interval_seconds: float = 5.0
    batch_size: int = 10
    max_retries: int = 3
    health_port: int = 8081
    log_format: str = "json"
    checkin_delay_hours: int = 24
    active_window_hours: int = 6
    send_timeout_seconds: float = 10.0
    match_threshold: float = 0.5
    chatwoot_base_url: str = ""
    chatwoot_api_token: str = ""
    chatwoot_account_id: str = ""

    @classmethod
    def from_env(cls) -> "Config":
        database_url = os.environ.get("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL must be set")

        return cls(
            database_url=database_url,
            listen_database_url=os.environ.get(
                "CARENOTE_WORKER_LISTEN_DATABASE_URL", database_url
            ),
            poll_interval_seconds=_env_float("CARENOTE_POLL_INTERVAL", 5.0),
            batch_size=_env_int("CARENOTE_BATCH_SIZE", 10),
            max_retries=_env_int("CARENOTE_MAX_RETRIES", 3),
            health_port=_env_int("CARENOTE_HEALTH_PORT", 8081),
            log_format=os.environ.get("CARENOTE_LOG_FORMAT", "json"),
            checkin_delay_hours=max(1, _env_int("CARENOTE_CHECKIN_DELAY_HOURS", 24)),
            active_window_hours=max(1, _env_int("CARENOTE_ACTIVE_WINDOW_HOURS", 6)),
            send_timeout_seconds=_env_float("CARENOTE_SEND_TIMEOUT_SECONDS", 10.0),
            match_threshold=_env_float("CARENOTE_MATCH_THRESHOLD", 0.5),
            chatwoot_base_url=os.environ.get("CHATWOOT_BASE_URL", ""),
            chatwoot_api_token=os.environ.get("CHATWOOT_API_TOKEN", ""),
            chatwoot_account_id=os.environ.get("CHATWOOT_ACCOUNT_ID", ""),
        )
