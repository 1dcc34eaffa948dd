"""
Centralized settings and path configuration for the pricing service.
"""
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional


DEFAULT_METAL_RATES = {
    'gold24kt': 7000.0,
    'gold22kt': 6500.0,
    'gold18kt': 5500.0,
    'gold14kt': 4500.0,
    'platinum': 3000.0,
    'silver': 80.0,
}


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 3 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # File store location
    data_dir: Path

    # Gem-catalog cache lifetime used for product type classification
    stone_cache_ttl_seconds: int = 300

    # Refresh jobs
    job_retention_seconds: int = 3600
    cleanup_interval_seconds: int = 300
    refresh_page_size: int = 50

    # Max members read when resolving a collection target
    collection_member_limit: int = 250

    # Logging
    log_level: str = 'INFO'
    log_format: str = 'console'

    # Used when the rate store has never been written
    default_metal_rates: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_METAL_RATES))

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the environment and project structure."""
        root = project_root or get_project_root()

        data_dir = os.environ.get('JEWEL_PRICING_DATA_DIR')

        return cls(
            data_dir=Path(data_dir) if data_dir else root / 'data',
            stone_cache_ttl_seconds=_env_int('JEWEL_PRICING_STONE_CACHE_TTL', 300),
            job_retention_seconds=_env_int('JEWEL_PRICING_JOB_RETENTION', 3600),
            cleanup_interval_seconds=_env_int('JEWEL_PRICING_CLEANUP_INTERVAL', 300),
            refresh_page_size=_env_int('JEWEL_PRICING_PAGE_SIZE', 50),
            collection_member_limit=_env_int('JEWEL_PRICING_COLLECTION_LIMIT', 250),
            log_level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
            log_format=os.environ.get('LOG_FORMAT', 'console').lower(),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
