"""Runtime configuration for the dashboard and the agent.

Everything is read once from the environment (a local .env file is honoured)
and handed around as a frozen Config.
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def _env_str(name: str, default: str) -> str:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip()


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    return int(v)


def _env_float(name: str, default: float) -> float:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    return float(v)


def _env_optional(name: str) -> Optional[str]:
    v = os.environ.get(name)
    if v is None:
        return None
    return v.strip() or None


@dataclass(frozen=True)
class Config:
    database_url: str = "sqlite:///siteherd.db"
    reports_dir: str = "reports"
    api_namespace: str = "siteherd/v1"
    user_agent: str = "SiteHerd/1.0"

    # summarizer
    summarizer_api_key: Optional[str] = None
    summarizer_enabled: bool = True
    summarizer_url: str = "https://api.anthropic.com/v1/messages"
    summarizer_model: str = "claude-3-haiku-20240307"
    summarizer_max_tokens: int = 500
    summarizer_timeout: int = 30

    # cadence
    monitor_frequency: int = 5  # minutes
    backup_frequency: str = "daily"
    check_pause: float = 2.0
    backup_pause: float = 10.0
    enable_scheduler: bool = True

    # remote calls
    read_timeout: int = 30
    update_timeout: int = 120
    backup_timeout: int = 300
    verify_uptime_tls: bool = False

    # report branding
    company_name: str = "SiteHerd"
    primary_color: str = "#2271b1"

    log_dir: str = "log"
    log_level: str = "INFO"

    # agent side
    connection_key: Optional[str] = None
    wp_path: str = "/var/www/html"
    wpcli: str = "wp"
    wp_timeout: int = 120
    agent_backup_dir: str = "backups"


def load_config() -> Config:
    load_dotenv()
    return Config(
        database_url=_env_str("SITEHERD_DATABASE_URL", "sqlite:///siteherd.db"),
        reports_dir=_env_str("SITEHERD_REPORTS_DIR", "reports"),
        api_namespace=_env_str("SITEHERD_API_NAMESPACE", "siteherd/v1").strip("/"),
        user_agent=_env_str("SITEHERD_USER_AGENT", "SiteHerd/1.0"),
        summarizer_api_key=_env_optional("SITEHERD_SUMMARIZER_API_KEY"),
        summarizer_enabled=_env_bool("SITEHERD_SUMMARIZER_ENABLED", True),
        summarizer_url=_env_str("SITEHERD_SUMMARIZER_URL", "https://api.anthropic.com/v1/messages"),
        summarizer_model=_env_str("SITEHERD_SUMMARIZER_MODEL", "claude-3-haiku-20240307"),
        summarizer_max_tokens=_env_int("SITEHERD_SUMMARIZER_MAX_TOKENS", 500),
        summarizer_timeout=_env_int("SITEHERD_SUMMARIZER_TIMEOUT", 30),
        monitor_frequency=max(1, _env_int("SITEHERD_MONITOR_FREQUENCY", 5)),
        backup_frequency=_env_str("SITEHERD_BACKUP_FREQUENCY", "daily").lower(),
        check_pause=_env_float("SITEHERD_CHECK_PAUSE", 2.0),
        backup_pause=_env_float("SITEHERD_BACKUP_PAUSE", 10.0),
        enable_scheduler=_env_bool("SITEHERD_ENABLE_SCHEDULER", True),
        read_timeout=_env_int("SITEHERD_READ_TIMEOUT", 30),
        update_timeout=_env_int("SITEHERD_UPDATE_TIMEOUT", 120),
        backup_timeout=_env_int("SITEHERD_BACKUP_TIMEOUT", 300),
        verify_uptime_tls=_env_bool("SITEHERD_VERIFY_UPTIME_TLS", False),
        company_name=_env_str("SITEHERD_COMPANY_NAME", "SiteHerd"),
        primary_color=_env_str("SITEHERD_PRIMARY_COLOR", "#2271b1"),
        log_dir=_env_str("SITEHERD_LOG_DIR", "log"),
        log_level=_env_str("SITEHERD_LOG_LEVEL", "INFO").upper(),
        connection_key=_env_optional("SITEHERD_CONNECTION_KEY"),
        wp_path=_env_str("SITEHERD_WP_PATH", "/var/www/html"),
        wpcli=_env_str("SITEHERD_WPCLI", "wp"),
        wp_timeout=_env_int("SITEHERD_WP_TIMEOUT", 120),
        agent_backup_dir=_env_str("SITEHERD_AGENT_BACKUP_DIR", "backups"),
    )
