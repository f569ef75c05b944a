import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from repo root for local/dev runs (no-op if missing)
# Avoid loading .env in production so platform env vars are authoritative.
_ENV_PATH = Path(__file__).resolve().parents[2] / ".env"
_ENVIRONMENT = os.environ.get("ENVIRONMENT", "").strip().lower()
if _ENVIRONMENT not in {"production", "prod"}:
    load_dotenv(_ENV_PATH, override=False)


@dataclass
class FredConfig:
    api_key: str
    base_url: str
    series_id: str
    timeout: float


@dataclass
class MarketConfig:
    timeout: float
    benchmark_symbols: list[str] = field(default_factory=list)


@dataclass
class CacheConfig:
    redis_url: str
    default_ttl: int


def _clean_optional(value: str | None) -> str:
    raw = (value or "").strip()
    if not raw:
        return ""
    lowered = raw.lower()
    placeholder_tokens = (
        "your_redis_",
        "your_fred_",
        "your_api_key",
        "yourdomain.com",
    )
    if any(token in lowered for token in placeholder_tokens):
        return ""
    return raw


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)))
    except Exception:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)))
    except Exception:
        return default


class Settings:
    def __init__(self) -> None:
        # API prefix
        self.api_prefix = os.environ.get("TB_API_PREFIX", "/api")

        # Database configuration
        self.db_path = os.environ.get("TB_DB_PATH", str(Path.home() / "tradebook.db"))

        # Logging
        self.log_path = os.environ.get("TB_LOG_PATH", "tradebook.log")

        self.environment = os.environ.get("ENVIRONMENT", "development").strip().lower() or "development"
        self.is_production = self.environment in {"production", "prod"}

        # Session tokens
        self.jwt_secret = (
            _clean_optional(os.environ.get("JWT_SECRET")) or "default-secret-do-not-use-in-prod"
        )
        self.jwt_algorithm = "HS256"
        self.jwt_expire_hours = _env_int("TB_JWT_EXPIRE_HOURS", 24)
        self.cookie_name = "token"
        self.cookie_max_age = 60 * 60 * 24
        self.cookie_secure = self.is_production

        # Background gap filling for benchmark symbols
        self.auto_update = os.environ.get("TB_AUTO_UPDATE", "0") == "1"

        # FRED (federal funds rate) configuration
        self.fred = FredConfig(
            api_key=_clean_optional(os.environ.get("FRED_API_KEY", "")),
            base_url=os.environ.get(
                "FRED_BASE_URL", "https://api.stlouisfed.org/fred/series/observations"
            ),
            series_id=os.environ.get("FRED_SERIES_ID", "FEDFUNDS"),
            timeout=_env_float("FRED_TIMEOUT", 8.0),
        )

        raw_symbols = os.environ.get("TB_BENCHMARK_SYMBOLS", "QQQ,QLD")
        self.market = MarketConfig(
            timeout=_env_float("TB_MARKET_TIMEOUT", 8.0),
            benchmark_symbols=[s.strip().upper() for s in raw_symbols.split(",") if s.strip()],
        )

        # Cache configuration
        try:
            default_ttl = int(os.environ.get("CACHE_TTL") or os.environ.get("TB_CACHE_TTL") or "300")
        except Exception:
            default_ttl = 300
        self.cache = CacheConfig(
            redis_url=_clean_optional(os.environ.get("REDIS_URL") or os.environ.get("TB_REDIS_URL", "")),
            default_ttl=default_ttl,
        )


settings = Settings()
