from dataclasses import dataclass
import os
from dotenv import load_dotenv

from termreport.core.errors import ConfigError


load_dotenv()


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(frozen=True)
class Settings:
    db_path: str = os.getenv("TERMREPORT_DB_PATH", "termreport.db")

    sba_max_score: float = _env_float("TERMREPORT_SBA_MAX_SCORE", 50.0)
    exam_max_score: float = _env_float("TERMREPORT_EXAM_MAX_SCORE", 50.0)
    sba_combination: str = os.getenv("TERMREPORT_SBA_COMBINATION", "average").strip().lower()
    exam_combination: str = os.getenv("TERMREPORT_EXAM_COMBINATION", "average").strip().lower()

    # JSON list of {"min_score", "grade", "remarks"}; empty uses the built-in scheme.
    grading_scheme: str = os.getenv("TERMREPORT_GRADING_SCHEME", "")

    ranking_service_url: str = os.getenv("TERMREPORT_RANKING_SERVICE_URL", "").strip()
    ranking_timeout_seconds: float = _env_float("TERMREPORT_RANKING_TIMEOUT_SECONDS", 15.0)

    log_level: str = os.getenv("TERMREPORT_LOG_LEVEL", "INFO").upper()

    cors_allowed_origins: tuple[str, ...] = _split_csv(
        os.getenv("TERMREPORT_CORS_ALLOWED_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173")
    )


settings = Settings()
