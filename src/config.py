from __future__ import annotations

from functools import cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ARTIFACTS_DIR = PROJECT_ROOT / "artifacts"


class AppSettings(BaseSettings):
    db_file: Path = ARTIFACTS_DIR / "lotledger.db"
    price_cache_dir: Path = ARTIFACTS_DIR / "prices"
    log_level: str = "INFO"
    benchmark_symbols: dict[str, str] = Field(
        default_factory=lambda: {"SP500": "^GSPC", "NASDAQ": "^IXIC", "DOW": "^DJI"}
    )
    default_user_tier: str = "AUTHENTICATED"
    user_tiers: dict[str, str] = Field(default_factory=dict)
    feature_tiers: dict[str, str] = Field(
        default_factory=lambda: {
            "dividend_tracking": "AUTHENTICATED",
            "benchmarking": "AUTHENTICATED",
            "tax_reports": "AUTHENTICATED",
        }
    )
    import_max_workers: int = 4

    model_config = SettingsConfigDict(
        env_prefix="LOTLEDGER_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@cache
def config() -> AppSettings:
    return AppSettings()
