"""Configuration management with YAML + environment variable support."""
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class ScanConfig:
    """Sweep defaults."""
    identification_timeout: float = 5.0
    connectivity_retries: int = 2  # extra attempts after the first one
    port_check: bool = True
    probe_port: int = 4028
    probe_timeout: float = 5.0
    max_workers: int = 64


@dataclass
class ConcurrencyConfig:
    """Adaptive identification concurrency (AIMD)."""
    initial: int = 8
    floor: int = 1
    ceiling: int = 64
    latency_threshold: float = 3.0
    decrease_factor: float = 0.5
    increase_probability: float = 0.5
    sample_size: int = 32


@dataclass
class PollingConfig:
    """Per-device refresh loop."""
    interval: int = 10
    min_interval: int = 5
    max_interval: int = 60
    identification_timeout: float = 5.0
    retries: int = 1


@dataclass
class RegistryConfig:
    """Live device registry."""
    history_capacity: int = 288  # 24 hours at 5-min intervals


@dataclass
class AutoScanConfig:
    """Periodic sweep of the saved ranges."""
    enabled: bool = False
    interval: int = 120


@dataclass
class DataConfig:
    """Flat-file locations."""
    data_dir: str = os.path.join(str(Path.home()), "asic-miner-scanner")
    recordings_subdir: str = "recordings"
    ranges_file: str = "scanner_config.json"

    @property
    def recordings_dir(self) -> str:
        return os.path.join(self.data_dir, self.recordings_subdir)

    @property
    def ranges_path(self) -> str:
        return os.path.join(self.data_dir, self.ranges_file)


@dataclass
class AppConfig:
    """Application configuration."""
    port: int = 8080
    host: str = "0.0.0.0"
    debug: bool = False


@dataclass
class Settings:
    """Complete application settings."""
    scan: ScanConfig = field(default_factory=ScanConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    registry: RegistryConfig = field(default_factory=RegistryConfig)
    auto_scan: AutoScanConfig = field(default_factory=AutoScanConfig)
    data: DataConfig = field(default_factory=DataConfig)
    app: AppConfig = field(default_factory=AppConfig)

    def validate(self):
        """Validate settings and raise if invalid."""
        if self.scan.identification_timeout <= 0:
            raise ValueError("identification_timeout must be positive")
        if self.scan.connectivity_retries < 0:
            raise ValueError("connectivity_retries cannot be negative")
        if self.scan.max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        c = self.concurrency
        if not 1 <= c.floor <= c.initial <= c.ceiling:
            raise ValueError("concurrency must satisfy 1 <= floor <= initial <= ceiling")
        if c.ceiling > self.scan.max_workers:
            raise ValueError("concurrency ceiling cannot exceed scan.max_workers")
        if not 0 < c.decrease_factor < 1:
            raise ValueError("decrease_factor must be between 0 and 1")
        if not 0 <= c.increase_probability <= 1:
            raise ValueError("increase_probability must be between 0 and 1")
        p = self.polling
        if not p.min_interval <= p.interval <= p.max_interval:
            raise ValueError("polling interval must lie within [min_interval, max_interval]")
        if self.registry.history_capacity < 1:
            raise ValueError("history_capacity must be at least 1")
        if self.auto_scan.interval < 1:
            raise ValueError("auto_scan interval must be at least 1 second")


def _section(cls, raw: dict, current):
    """Build a section dataclass from YAML, keeping current values for missing keys."""
    values = {}
    for f in fields(cls):
        values[f.name] = raw.get(f.name, getattr(current, f.name))
    unknown = set(raw) - set(values)
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, ", ".join(sorted(unknown)))
    return cls(**values)


def _env_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings from YAML file and environment variables.
    Environment variables override YAML values.

    Priority order:
    1. explicit path or SCANNER_CONFIG
    2. config.local.yaml (if exists) - for local overrides
    3. config.yaml (fallback) - safe template
    """
    settings = Settings()

    if config_path is None:
        config_path = os.getenv("SCANNER_CONFIG")
    if config_path is None:
        if Path("config.local.yaml").exists():
            config_path = "config.local.yaml"
            logger.info("Using config.local.yaml (local overrides)")
        else:
            config_path = "config.yaml"

    config_file = Path(config_path)
    if config_file.exists():
        logger.info("Loading from %s", config_file)
        with open(config_file, 'r') as f:
            data = yaml.safe_load(f) or {}

        sections = {
            'scan': ScanConfig,
            'concurrency': ConcurrencyConfig,
            'polling': PollingConfig,
            'registry': RegistryConfig,
            'auto_scan': AutoScanConfig,
            'data': DataConfig,
            'app': AppConfig,
        }
        for name, cls in sections.items():
            if name in data:
                setattr(settings, name, _section(cls, data[name] or {}, getattr(settings, name)))

    # Override with environment variables
    if os.getenv('SCAN_TIMEOUT'):
        settings.scan.identification_timeout = float(os.getenv('SCAN_TIMEOUT'))
    if os.getenv('SCAN_RETRIES'):
        settings.scan.connectivity_retries = int(os.getenv('SCAN_RETRIES'))
    if os.getenv('SCAN_PORT_CHECK'):
        settings.scan.port_check = _env_bool(os.getenv('SCAN_PORT_CHECK'))
    if os.getenv('POLL_SECONDS'):
        settings.polling.interval = int(os.getenv('POLL_SECONDS'))
    if os.getenv('SCANNER_DATA_DIR'):
        settings.data.data_dir = os.getenv('SCANNER_DATA_DIR')
    if os.getenv('PORT'):
        settings.app.port = int(os.getenv('PORT'))

    settings.validate()

    return settings
