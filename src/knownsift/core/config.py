from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("config") / "config.yml"


@dataclass(slots=True)
class LoggingConfig:
    """Logging configuration from config.yml."""

    level: str = "INFO"
    log_max_mb: int = 50
    log_backup_count: int = 10


@dataclass(slots=True)
class DatabaseConfig:
    """Reference database configuration from config.yml."""

    tables: List[str] = field(default_factory=lambda: ["METADATA", "FILE"])
    query_retries: int = 1
    timeout: float = 30.0
    pragmas: Dict[str, Any] = field(default_factory=lambda: {
        "cache_size": -2000000,
        "temp_store": "MEMORY",
        "mmap_size": 30000000000,
    })


@dataclass(slots=True)
class FieldLayout:
    """Fixed field positions of the forensic file-list export (0-based)."""

    md5_index: int = 6
    sha1_index: int = 7  # Directly after MD5 in the export convention
    extension_index: int = 2

    @property
    def min_fields(self) -> int:
        """Smallest row width that still reaches both hash fields."""
        return max(self.md5_index, self.sha1_index) + 1


@dataclass(slots=True)
class InputConfig:
    """Candidate file list configuration from config.yml."""

    layout: FieldLayout = field(default_factory=FieldLayout)
    delimiter: str = ","
    encoding: Optional[str] = None  # None = detect
    extensions: List[str] = field(default_factory=list)


@dataclass(slots=True)
class OutputConfig:
    """Result file configuration from config.yml."""

    known_suffix: str = "_known"
    unknown_suffix: str = "_unknown"
    known_file: Optional[str] = None
    unknown_file: Optional[str] = None
    duplicates_to_known: bool = True


@dataclass
class ParallelConfig:
    """Configuration for parallel classification."""

    max_workers: int = 0  # 0 = one worker per CPU
    chunk_size: int = 10000

    def __post_init__(self) -> None:
        # Respect environment variable overrides
        if "KNOWNSIFT_MAX_WORKERS" in os.environ:
            try:
                self.max_workers = int(os.environ["KNOWNSIFT_MAX_WORKERS"])
            except ValueError:
                pass
        if "KNOWNSIFT_CHUNK_SIZE" in os.environ:
            try:
                self.chunk_size = int(os.environ["KNOWNSIFT_CHUNK_SIZE"])
            except ValueError:
                pass

    @property
    def effective_workers(self) -> int:
        if self.max_workers <= 0:
            return max(1, os.cpu_count() or 4)
        return self.max_workers


@dataclass(slots=True)
class AppConfig:
    """Top-level configuration resolved from disk."""

    source: Optional[Path] = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    input: InputConfig = field(default_factory=InputConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    parallel: ParallelConfig = field(default_factory=ParallelConfig)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as handle:
            content = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Config file {path} is not valid YAML: {exc}") from exc
    if not isinstance(content, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping at the top level.")
    return content


def _section(overrides: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = overrides.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping.")
    return section


def load_app_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load configuration from disk, providing sensible defaults.

    An explicit ``config_path`` must exist; the default ``config/config.yml``
    in the working directory is optional.
    """
    if config_path is not None:
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        source = config_path
    else:
        source = DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None

    config_overrides = _load_yaml(source) if source else {}

    logging_cfg = _section(config_overrides, "logging")
    logging_config = LoggingConfig(
        level=str(logging_cfg.get("level", "INFO")),
        log_max_mb=int(logging_cfg.get("log_max_mb", 50)),
        log_backup_count=int(logging_cfg.get("log_backup_count", 10)),
    )

    database_cfg = _section(config_overrides, "database")
    database_config = DatabaseConfig()
    if "tables" in database_cfg:
        database_config.tables = [str(name) for name in database_cfg["tables"]]
    database_config.query_retries = int(database_cfg.get("query_retries", 1))
    database_config.timeout = float(database_cfg.get("timeout", 30.0))
    if "pragmas" in database_cfg:
        database_config.pragmas = dict(database_cfg["pragmas"] or {})

    input_cfg = _section(config_overrides, "input")
    input_config = InputConfig(
        layout=FieldLayout(
            md5_index=int(input_cfg.get("md5_column", 6)),
            sha1_index=int(input_cfg.get("sha1_column", 7)),
            extension_index=int(input_cfg.get("extension_column", 2)),
        ),
        delimiter=str(input_cfg.get("delimiter", ",")),
        encoding=input_cfg.get("encoding"),
        extensions=[str(ext) for ext in input_cfg.get("extensions") or []],
    )
    if len(input_config.delimiter) != 1:
        raise ConfigurationError("input.delimiter must be a single character.")

    output_cfg = _section(config_overrides, "output")
    output_config = OutputConfig(
        known_suffix=str(output_cfg.get("known_suffix", "_known")),
        unknown_suffix=str(output_cfg.get("unknown_suffix", "_unknown")),
        known_file=output_cfg.get("known_file"),
        unknown_file=output_cfg.get("unknown_file"),
        duplicates_to_known=bool(output_cfg.get("duplicates_to_known", True)),
    )

    parallel_cfg = _section(config_overrides, "parallel")
    parallel_config = ParallelConfig()
    # Environment overrides win over the file
    if "max_workers" in parallel_cfg and "KNOWNSIFT_MAX_WORKERS" not in os.environ:
        parallel_config.max_workers = int(parallel_cfg["max_workers"])
    if "chunk_size" in parallel_cfg and "KNOWNSIFT_CHUNK_SIZE" not in os.environ:
        parallel_config.chunk_size = int(parallel_cfg["chunk_size"])
    if parallel_config.chunk_size <= 0:
        raise ConfigurationError("parallel.chunk_size must be positive.")

    return AppConfig(
        source=source,
        logging=logging_config,
        database=database_config,
        input=input_config,
        output=output_config,
        parallel=parallel_config,
    )
