"""
Engine configuration loaded from YAML.
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .formatting import FORMATS

logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class EngineConfig:
    """Settings shared by the CLI and the HTTP API.

    Attributes:
        strict: Abort queries on evaluation errors instead of skipping records
        default_format: Output format when none is requested
        table_max_width: Truncate table cells to this width (None for no limit)
        log_level: Logging level name
        presets_file: Optional YAML file with additional query presets
    """
    strict: bool = False
    default_format: str = "table"
    table_max_width: Optional[int] = None
    log_level: str = "INFO"
    presets_file: Optional[str] = None

    def __post_init__(self):
        self.default_format = str(self.default_format).lower()
        if self.default_format not in FORMATS:
            raise ValueError(
                f"default_format must be one of {', '.join(FORMATS)}, got '{self.default_format}'"
            )
        self.log_level = str(self.log_level).upper()
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"Unknown log_level: {self.log_level}")
        if self.table_max_width is not None:
            if not isinstance(self.table_max_width, int) or self.table_max_width <= 0:
                raise ValueError("table_max_width must be a positive integer")
        if not isinstance(self.strict, bool):
            raise ValueError("strict must be true or false")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**{k: v for k, v in data.items() if k in known})


def load_config(config_path: Optional[str] = None) -> EngineConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Path to the YAML file, or None for defaults

    Returns:
        The EngineConfig

    Raises:
        ValueError: If the file is missing or holds invalid settings
    """
    if config_path is None:
        return EngineConfig()

    path = Path(config_path)
    if not path.exists():
        raise ValueError(f"Config file not found: {config_path}")

    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(data, dict):
        raise ValueError("Config file must contain a mapping")

    # Relative presets paths resolve against the config file's directory
    presets_file = data.get('presets_file')
    if presets_file and not Path(presets_file).is_absolute():
        data['presets_file'] = str(path.parent / presets_file)

    config = EngineConfig.from_dict(data)
    logger.info(f"Loaded configuration from {config_path}")
    return config
