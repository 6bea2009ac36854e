"""
Configuration management for calendar sync and payment reporting.
Uses the unified config system (YAML + environment) for database, sync and report settings.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


def get_section_value(section: str, key: str, default: Any = None) -> Any:
    """
    Get a single value from a YAML config section.

    Usage:
        batch_size = get_section_value('sync', 'batch_size', 5)

    Args:
        section: Config file name without extension (app, sync, reports...)
        key: Configuration key to retrieve
        default: Default value if not found

    Returns:
        Configuration value or default
    """
    from common.config_loader import get_config

    value = getattr(get_config().get_section(section), key, None)
    return default if value is None else value


@dataclass
class DatabaseConfig:
    """
    Database connection configuration.
    The URL is passed straight to SQLAlchemy; pool settings are ignored for SQLite.
    """
    url: str
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')

    @property
    def dialect(self) -> str:
        return self.url.split(':', 1)[0].split('+', 1)[0]

    def __repr__(self) -> str:
        """Safe representation without password"""
        safe_url = self.url
        if '@' in safe_url:
            scheme, rest = safe_url.split('://', 1)
            safe_url = f"{scheme}://***@{rest.split('@', 1)[1]}"
        return f"DatabaseConfig(url={safe_url}, pool_size={self.pool_size})"

    @classmethod
    def from_env(cls, db_name: str = 'backend') -> 'DatabaseConfig':
        """Load database settings from database.yaml (URL resolved by config_loader)."""
        from common.config_loader import get_config, get_database_url

        db_cfg = getattr(get_config().database, db_name)
        pool = db_cfg.pool if db_cfg else None
        return cls(
            url=get_database_url(db_name),
            pool_size=pool.size if pool and pool.size else 5,
            max_overflow=pool.max_overflow if pool and pool.max_overflow else 10,
            pool_timeout=pool.timeout if pool and pool.timeout else 30,
            pool_recycle=pool.recycle if pool and pool.recycle else 1800,
        )


@dataclass
class SyncConfig:
    """
    Calendar sync settings.
    Controls batching, the fetch window and feed filtering.
    """
    batch_size: int = 5
    max_workers: int = 5
    days_back: int = 90
    days_forward: int = 180
    default_checkout_time: str = '10:00:00'
    excluded_titles: List[str] = field(default_factory=lambda: ['Airbnb (Not available)'])
    manual_listing_prefix: str = 'manual-'
    request_timeout: int = 30
    feed_retries: int = 0
    user_agent: str = 'PropertySync/1.0'
    advisory_locks: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncConfig':
        """Build from a plain dict, ignoring unknown keys."""
        defaults = cls()
        return cls(**{
            name: data.get(name, getattr(defaults, name))
            for name in defaults.__dataclass_fields__
        })

    @classmethod
    def from_env(cls) -> 'SyncConfig':
        """Load sync settings from sync.yaml."""
        from common.config_loader import get_config

        return cls.from_dict(get_config().get_section('sync').to_dict())


@dataclass
class ReportConfig:
    """Payment report settings."""
    preserve_status_on_regenerate: bool = True
    default_page_size: int = 10
    unknown_bank_account: str = 'Unknown Bank Account'
    unknown_property: str = 'Unknown Property'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ReportConfig':
        defaults = cls()
        return cls(**{
            name: data.get(name, getattr(defaults, name))
            for name in defaults.__dataclass_fields__
        })

    @classmethod
    def from_env(cls) -> 'ReportConfig':
        """Load report settings from reports.yaml."""
        from common.config_loader import get_config

        return cls.from_dict(get_config().get_section('reports').to_dict())
