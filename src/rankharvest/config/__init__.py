"""Configuration models and config file discovery."""

from .config import (
    BrowserConfig,
    CacheConfig,
    ChangeDetectionConfig,
    Config,
    DebugConfig,
    DiffConfig,
    MonitoringConfig,
    RegionConfig,
    SelectorConfig,
    SourceConfig,
    SQLiteConfig,
    SweepConfig,
    find_config_file,
    load_config,
)

__all__ = [
    "BrowserConfig",
    "CacheConfig",
    "ChangeDetectionConfig",
    "Config",
    "DebugConfig",
    "DiffConfig",
    "MonitoringConfig",
    "RegionConfig",
    "SelectorConfig",
    "SourceConfig",
    "SQLiteConfig",
    "SweepConfig",
    "find_config_file",
    "load_config",
]
