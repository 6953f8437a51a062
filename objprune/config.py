"""
Configuration management for prune operations.

Settings are merged from built-in defaults, an optional YAML file, the
environment (including a .env file) and finally explicit overrides such as
command-line arguments.
"""

import copy
import logging
import os
import re
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator, model_validator

from .errors import PruneConfigError
from .policies import PolicyKind, policy_for_name
from .timefilter import DEFAULT_TIME_FORMAT, TimeFormat, ensure_utc, parse_time_arg

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: Dict[str, Dict[str, Any]] = {
    'prune': {
        'root': None,
        'policy': 'twicemonthly',
        'expect': [],
        'time_format': DEFAULT_TIME_FORMAT,
        'start': None,
        'end': None,
        'dry_run': True,
        'force': False,
        'store_base': '/'
    },
    'pipeline': {
        'high_water_mark': 16
    },
    'logging': {
        'level': 'INFO',
        'file': None
    },
    'metrics': {
        'enabled': False
    },
    'audit': {
        'enabled': False,
        'logs_dir': 'logs/objprune'
    }
}

# environment variable -> prune setting
ENV_OVERRIDES = {
    'OBJPRUNE_ROOT': 'root',
    'OBJPRUNE_POLICY': 'policy',
    'OBJPRUNE_TIME_FORMAT': 'time_format',
    'OBJPRUNE_STORE_BASE': 'store_base',
}


class PruneSettings(BaseModel):
    """Parameters of a single prune operation."""
    root: str
    policy: str = "twicemonthly"
    expect: List[str] = Field(default_factory=list)
    time_format: str = DEFAULT_TIME_FORMAT
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    dry_run: bool = True
    force: bool = False
    high_water_mark: int = Field(16, ge=1)
    store_base: str = "/"

    @field_validator('root')
    @classmethod
    def _check_root(cls, value: str) -> str:
        if not value or not value.startswith('/'):
            raise ValueError(f"root must be an absolute path: {value!r}")
        return value

    @field_validator('policy')
    @classmethod
    def _check_policy(cls, value: str) -> str:
        # UnsupportedPolicyError is not a ValueError, so pydantic lets it through as is
        policy_for_name(value)
        return value

    @field_validator('expect')
    @classmethod
    def _check_expect(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid expected pattern {pattern!r}: {e}")
        return list(value)

    @field_validator('time_format')
    @classmethod
    def _check_time_format(cls, value: str) -> str:
        TimeFormat(value)
        return value

    @field_validator('start', 'end', mode='before')
    @classmethod
    def _parse_bound(cls, value: Any, info: ValidationInfo) -> Any:
        # a bare date ends at the last instant of that day
        end = info.field_name == 'end'
        if isinstance(value, str):
            return parse_time_arg(value, end=end)
        if isinstance(value, date) and not isinstance(value, datetime):
            return datetime.combine(value, time.max if end else time.min)
        return value

    @field_validator('start', 'end')
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode='after')
    def _check_window(self) -> 'PruneSettings':
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError(f"start ({self.start.isoformat()}) is after end ({self.end.isoformat()})")
        return self

    def policy_kind(self) -> PolicyKind:
        """Resolve the configured policy; raises UnsupportedPolicyError."""
        return policy_for_name(self.policy)

    def time_filter(self) -> TimeFormat:
        return TimeFormat(self.time_format)


class PruneConfigManager:
    """Loads prune configuration and builds PruneSettings from it."""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path) if config_path else None
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Dict[str, Any]]:
        """Load configuration from the YAML file on top of the defaults."""
        config_data = copy.deepcopy(DEFAULT_CONFIG)
        if self.config_path is None:
            return config_data

        if not self.config_path.exists():
            logger.warning(f"Config file not found at {self.config_path}. Using defaults.")
            return config_data

        try:
            with open(self.config_path, 'r') as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise PruneConfigError(f"failed to parse {self.config_path}: {e}") from e

        if not isinstance(loaded, dict):
            raise PruneConfigError(f"{self.config_path}: expected a mapping at top level")

        for section, values in loaded.items():
            if section not in config_data:
                logger.warning(f"Ignoring unknown config section '{section}' in {self.config_path}")
                continue
            if not isinstance(values, dict):
                raise PruneConfigError(f"{self.config_path}: section '{section}' must be a mapping")
            config_data[section].update(values)

        logger.debug(f"Loaded prune configuration from {self.config_path}")
        return config_data

    def build_settings(self, **overrides: Any) -> PruneSettings:
        """
        Build the settings for one operation.

        Precedence, lowest first: defaults, config file, environment, overrides.
        Overrides that are None are ignored.

        Raises:
            PruneConfigError: If the merged settings are invalid
            UnsupportedPolicyError: If the policy name is not registered
        """
        load_dotenv()

        values = dict(self.config['prune'])
        values['high_water_mark'] = self.config['pipeline'].get('high_water_mark', 16)

        for env_name, key in ENV_OVERRIDES.items():
            env_value = os.getenv(env_name)
            if env_value:
                values[key] = env_value

        values.update({key: value for key, value in overrides.items() if value is not None})

        if not values.get('root'):
            raise PruneConfigError("no prune root given")

        try:
            settings = PruneSettings(**values)
        except ValidationError as e:
            raise PruneConfigError(f"invalid prune configuration: {e}") from e

        return settings

    def get_logging_settings(self) -> Dict[str, Any]:
        return self.config['logging']

    def metrics_enabled(self) -> bool:
        return bool(self.config['metrics'].get('enabled', False))

    def audit_settings(self) -> Dict[str, Any]:
        return self.config['audit']
