# config.py
import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

# Load local .env (on Render, env vars are injected automatically)
load_dotenv()

DEFAULT_CHAPELS = (
    "본당 고등부",
    "본당 중등부",
    "비전홀",
)
DEFAULT_VILLAGES = tuple(f"{n}마을" for n in range(1, 7))


def _split_csv(raw: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Turn 'a, b ,c' into ('a', 'b', 'c'); empty or unset -> default."""
    if not raw:
        return default
    items = tuple(part.strip() for part in raw.split(",") if part.strip())
    return items or default


def _optional(raw: Optional[str]) -> Optional[str]:
    raw = (raw or "").strip()
    return raw or None


@dataclass(frozen=True)
class Settings:
    """Everything the workflow needs, passed in explicitly at construction."""

    primary_endpoint: str = ""
    backup_endpoint: Optional[str] = None
    database_url: str = "sqlite:///qtians.db"
    frontend_origin: Optional[str] = None
    chapels: Tuple[str, ...] = DEFAULT_CHAPELS
    villages: Tuple[str, ...] = DEFAULT_VILLAGES
    reset_delay: float = 5.0
    request_timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            primary_endpoint=(os.getenv("SCRIPT_URL") or "").strip(),
            backup_endpoint=_optional(os.getenv("BACKUP_SCRIPT_URL")),
            database_url=os.getenv("DATABASE_URL") or "sqlite:///qtians.db",
            frontend_origin=_optional(os.getenv("FRONTEND_ORIGIN")),
            chapels=_split_csv(os.getenv("CHAPELS"), DEFAULT_CHAPELS),
            villages=_split_csv(os.getenv("VILLAGES"), DEFAULT_VILLAGES),
            reset_delay=float(os.getenv("RESET_DELAY_SECONDS", "5")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
