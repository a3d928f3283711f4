"""
Configuration management for RankHarvest using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rankharvest.protocols import Target

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Nested Configuration Models ---


class SourceConfig(BaseModel):
    """Where the leaderboard lives and how target URLs are built."""

    base_url: str = Field(
        default="https://forum.mir4global.com/rank?ranktype=1",
        description="Ranking page URL without the per-target query parameters.",
    )
    target_query: str = Field(
        default="worldgroupid={region_id}&worldid={server_id}&classtype=&searchname=",
        description="Query string template appended to base_url for one target.",
    )
    user_agent: str = Field(
        default="RankHarvestBot/1.0",
        description="User-Agent used for permission checks and the browser session.",
    )


class RegionConfig(BaseModel):
    """One region of the target directory."""

    id: int = Field(..., description="Numeric region id used in the ranking URL.")
    servers: Dict[str, int] = Field(default_factory=dict, description="Server name to numeric server id.")


class SelectorConfig(BaseModel):
    """Structural CSS selectors for the ranking page."""

    row: str = "tr.list_article"
    rank: str = ".rank_num .num"
    name: str = ".user_name"
    class_icon: str = ".user_icon"
    server: str = "td:nth-child(3) span"
    clan: str = "td:nth-child(4) span"
    power: str = "td.text_right span"
    load_more: str = "#btn_more, .btn_more, a.more"
    consent_button: str = "button.btn_accept_cookies"


class BrowserConfig(BaseModel):
    """Politeness and browser-session settings."""

    respect_permission_policy: bool = Field(default=True, description="Check robots.txt before crawling.")
    headless: bool = Field(default=True, description="Run the browser without a window.")
    max_pages: int = Field(default=10, ge=1, description="Hard ceiling on pages loaded per target.")
    wait_for_selector_ms: int = Field(default=5000, description="Timeout waiting for rows or the load-more control.")
    wait_for_growth_ms: int = Field(default=10000, description="Timeout waiting for the row count to grow.")
    wait_between_pages_ms: int = Field(default=2000, description="Pause between load-more clicks.")
    navigation_timeout_ms: int = Field(default=60000, description="Timeout for the initial page navigation.")
    max_retries: int = Field(default=5, ge=0, description="Retries of a whole target walk.")
    retry_delay_ms: int = Field(default=1000, description="Base delay for exponential backoff.")
    max_retry_delay_ms: int = Field(default=30000, description="Upper bound on a single backoff delay.")
    jitter: bool = Field(default=True, description="Multiply backoff delays by a random factor.")
    resource_cooldown_ms: int = Field(
        default=60000, description="Extra pause before retrying after a resource exhaustion failure."
    )


class CacheConfig(BaseModel):
    """In-memory dataset cache settings."""

    global_ttl_seconds: float = Field(default=300.0, description="TTL of the combined dataset entry.")
    target_ttl_seconds: float = Field(default=300.0, description="TTL of per-target entries.")
    max_entries: int = Field(default=50, ge=1, description="Oldest entries are evicted beyond this size.")


class SweepConfig(BaseModel):
    """Multi-target sweep settings."""

    interval_minutes: int = Field(default=60, description="Cadence between scheduled sweeps.")
    delay_between_targets_seconds: float = Field(default=2.0, description="Politeness pause between targets.")
    target_timeout_seconds: float = Field(default=300.0, description="Upper bound on one target harvest.")
    checkpoint_every: int = Field(default=5, ge=1, description="Persist sweep state after this many targets.")
    max_consecutive_failures: int = Field(default=5, ge=1, description="Failures in a row that pause the sweep.")
    confirm_every: int = Field(default=10, ge=1, description="Targets between interactive confirmations.")
    state_file: Path = Field(default=Path("data/sweep_state.json"), description="Persisted sweep checkpoint.")
    failed_targets_file: Path = Field(default=Path("data/failed_targets.json"), description="Failed target queue.")
    failed_targets_max: int = Field(default=100, description="Maximum retained failed-target records.")

    @field_validator("state_file", "failed_targets_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path) -> Path:
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


class ChangeDetectionConfig(BaseModel):
    """Thresholds used to decide whether a full page walk is worth it."""

    similarity_threshold: float = Field(default=70.0, description="Top-K name overlap percentage that means unchanged.")
    sample_size: int = Field(default=10, ge=1, description="Number of leading records compared.")
    count_delta_threshold: float = Field(default=0.5, description="Relative count change treated as a reset.")
    reset_hour_utc: int = Field(default=4, ge=0, le=23, description="Hour of the source's daily reset.")
    reset_window_minutes: int = Field(default=15, ge=0, description="Length of the reset window.")

    @field_validator("similarity_threshold")
    @classmethod
    def validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 100.0:
            raise ValueError("similarity_threshold must be between 0 and 100")
        return v


class DiffConfig(BaseModel):
    """Significance thresholds for snapshot comparison."""

    rank_threshold: int = Field(default=3, description="Rank movement at or above this is significant.")
    score_threshold_percent: float = Field(
        default=1.0, description="Power score change strictly above this percentage is significant."
    )
    mass_change_threshold: float = Field(default=0.5, description="Record count delta that short-circuits the diff.")
    max_listed: int = Field(default=50, description="Cap on listed added and removed records.")
    full_changes_below: int = Field(
        default=1000, description="Old snapshot size under which every change is listed, not just significant ones."
    )


class SQLiteConfig(BaseModel):
    """Configuration for the snapshot database."""

    db_path: Path = Field(default=Path("data/rankings.db"), description="SQLite database file path")
    pool_size: int = Field(default=4, description="Size of the connection pool.")
    wal_mode: bool = Field(default=True, description="Enable Write-Ahead Logging for concurrent readers.")
    keep_history: int = Field(default=1, ge=0, description="Previous snapshots retained per target.")

    @field_validator("db_path", mode="before")
    @classmethod
    def ensure_db_directory(cls, v: Any) -> Path:
        path = Path(v) if not isinstance(v, Path) else v
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


class DebugConfig(BaseModel):
    """Offline debugging artifacts."""

    save_html: bool = Field(default=False, description="Persist raw markup of every loaded page.")
    screenshot_on_error: bool = Field(default=True, description="Capture a screenshot when a walk fails.")
    html_dir: Path = Field(default=Path("data/scraped_pages"), description="Directory for debug artifacts.")
    max_html_age_hours: float = Field(default=24.0, description="Artifacts older than this are cleaned up.")


class MonitoringConfig(BaseModel):
    """Configuration for logging and metrics."""

    log_level: str = Field(default="INFO", description="Logging level (e.g., DEBUG, INFO, WARNING).")
    log_file: str | None = Field(default=None, description="Path to log file. If None, logs to console.")
    prometheus_port: int | None = Field(default=None, description="Port for the metrics exporter. None to disable.")

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> str | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return str(path)


def _default_targets() -> Dict[str, RegionConfig]:
    return {
        "ASIA1": RegionConfig(id=11, servers={"ASIA011": 101, "ASIA012": 102}),
        "INMENA1": RegionConfig(id=21, servers={"INMENA011": 201}),
    }


# --- Main Configuration Class ---


class Config(BaseSettings):
    project_name: str = "RankHarvest"
    version: str = "0.1.0"
    source: SourceConfig = Field(default_factory=SourceConfig)
    targets: Dict[str, RegionConfig] = Field(default_factory=_default_targets)
    selectors: SelectorConfig = Field(default_factory=SelectorConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    sweep: SweepConfig = Field(default_factory=SweepConfig)
    change_detection: ChangeDetectionConfig = Field(default_factory=ChangeDetectionConfig)
    diff: DiffConfig = Field(default_factory=DiffConfig)
    storage: SQLiteConfig = Field(default_factory=SQLiteConfig)
    debug: DebugConfig = Field(default_factory=DebugConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="RANKHARVEST_", env_nested_delimiter="__", case_sensitive=False)

    @model_validator(mode="after")
    def check_target_directory(self) -> Config:
        seen: Dict[tuple[int, int], str] = {}
        for region_name, region in self.targets.items():
            if "_" in region_name:
                raise ValueError(f"region name {region_name!r} must not contain '_' (target keys are REGION_SERVER)")
            for server_name, server_id in region.servers.items():
                ids = (region.id, server_id)
                if ids in seen:
                    raise ValueError(f"{region_name}/{server_name} reuses the ids of {seen[ids]}")
                seen[ids] = f"{region_name}/{server_name}"
        return self

    def iter_targets(self) -> List[Target]:
        """Ordered target list built from the region directory."""
        return [
            Target(region=region_name, server=server_name, region_id=region.id, server_id=server_id)
            for region_name, region in self.targets.items()
            for server_name, server_id in region.servers.items()
        ]

    def find_target(self, region: str, server: str) -> Target | None:
        """Look up one configured target by region and server name (case-insensitive)."""
        for target in self.iter_targets():
            if target.region.lower() == region.lower() and target.server.lower() == server.lower():
                return target
        return None

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


CONFIG_FILE_NAMES = ("rankharvest.yaml", "rankharvest.yml", "config.yaml", "config.yml")


def find_config_file(search_dir: Path | None = None) -> Path | None:
    """First known config file name present in ``search_dir`` (the cwd by default)."""
    directory = search_dir or Path.cwd()
    for name in CONFIG_FILE_NAMES:
        path = directory / name
        if path.is_file():
            return path
    return None


def load_config(path: Path | None = None) -> Config:
    """
    Load an explicit YAML file, else the first config file found in the cwd,
    else defaults plus ``RANKHARVEST_`` environment overrides.
    """
    config_path = path or find_config_file()
    if config_path is None:
        log.info("No config file found, using default settings")
        return Config()
    log.info("Loading configuration from %s", config_path)
    return Config.from_yaml(config_path)
