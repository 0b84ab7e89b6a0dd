"""
Configuration management for the web crawler system.
"""

import re
import yaml
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, TextIO, Type, TypeVar, Union
from dataclasses import dataclass, field, fields


@dataclass
class CrawlerConfig:
    """Configuration for crawler behavior."""
    start_pages: List[str] = field(default_factory=list)
    ignored_urls: List[str] = field(default_factory=list)
    ignored_words: List[str] = field(default_factory=list)
    parallelism: int = 1
    max_depth: int = 10
    timeout_seconds: float = 7
    popular_word_count: int = 3
    request_timeout: int = 30
    user_agent: str = "WebCrawler/1.0"
    result_path: str = ""
    profile_output_path: str = ""


@dataclass
class LoggingConfig:
    """Configuration for logging."""
    level: str = "INFO"
    file: str = ""
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json_format: bool = False


@dataclass
class MonitoringConfig:
    """Configuration for monitoring."""
    prometheus_port: int = 8000
    metrics_enabled: bool = False


@dataclass
class Config:
    """Main configuration class."""
    crawler: CrawlerConfig
    logging: LoggingConfig
    monitoring: MonitoringConfig


T = TypeVar('T')

# Top-level keys of the flat camelCase JSON config format
FLAT_CRAWLER_KEYS = {
    'startPages': 'start_pages',
    'ignoredUrls': 'ignored_urls',
    'ignoredWords': 'ignored_words',
    'parallelism': 'parallelism',
    'maxDepth': 'max_depth',
    'timeoutSeconds': 'timeout_seconds',
    'popularWordCount': 'popular_word_count',
    'profileOutputPath': 'profile_output_path',
    'resultPath': 'result_path',
}
FLAT_IGNORED_KEYS = {'implementationOverride'}


def _build_section(section_type: Type[T], name: str, data: Optional[Dict[str, Any]]) -> T:
    """Build a config dataclass, rejecting keys it does not define."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration section '{name}' must be a mapping")

    known = {f.name for f in fields(section_type)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}' section: {', '.join(sorted(unknown))}")

    return section_type(**data)


class ConfigManager:
    """Manages configuration loading and validation."""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load_config(self) -> Config:
        """Load configuration from a YAML (or JSON) file."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as file:
            return self.read_config(file)

    def read_config(self, stream: Union[str, TextIO]) -> Config:
        """Parse configuration from a string or an open stream, leaving it open."""
        config_data = yaml.safe_load(stream) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Configuration must be a mapping of sections")

        if set(config_data) & (set(FLAT_CRAWLER_KEYS) | FLAT_IGNORED_KEYS):
            config_data = self._from_flat_config(config_data)

        unknown = set(config_data) - {'crawler', 'logging', 'monitoring'}
        if unknown:
            raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

        self._config = Config(
            crawler=_build_section(CrawlerConfig, 'crawler', config_data.get('crawler')),
            logging=_build_section(LoggingConfig, 'logging', config_data.get('logging')),
            monitoring=_build_section(MonitoringConfig, 'monitoring', config_data.get('monitoring'))
        )

        self._validate_config()
        return self._config

    def _from_flat_config(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Map a flat camelCase config document onto the crawler section."""
        crawler = {}
        for key, value in config_data.items():
            if key in FLAT_IGNORED_KEYS:
                logging.getLogger(__name__).warning(f"Ignoring unsupported config key: {key}")
            elif key in FLAT_CRAWLER_KEYS:
                crawler[FLAT_CRAWLER_KEYS[key]] = value
            else:
                raise ValueError(f"Unknown key in flat configuration: {key}")
        return {'crawler': crawler}

    def _validate_config(self):
        """Validate configuration values."""
        if not self._config:
            raise ValueError("Configuration not loaded")

        crawler = self._config.crawler

        if crawler.max_depth < 0:
            raise ValueError("max_depth must be non-negative")

        if crawler.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        if crawler.parallelism < 1:
            raise ValueError("parallelism must be at least 1")

        if crawler.popular_word_count < 0:
            raise ValueError("popular_word_count must be non-negative")

        for key in ('ignored_urls', 'ignored_words'):
            for pattern in getattr(crawler, key):
                try:
                    re.compile(pattern)
                except re.error as e:
                    raise ValueError(f"Invalid pattern in {key}: {pattern!r} ({e})") from e

        if not hasattr(logging, self._config.logging.level.upper()):
            raise ValueError(f"Unknown log level: {self._config.logging.level}")

        logging.getLogger(__name__).debug("Configuration validation passed")

    @property
    def config(self) -> Config:
        """Get the loaded configuration."""
        if not self._config:
            raise ValueError("Configuration not loaded. Call load_config() first.")
        return self._config


def load_config(config_path: str = "config.yaml") -> Config:
    """Load configuration from file."""
    return ConfigManager(config_path).load_config()


def read_config(stream: Union[str, TextIO]) -> Config:
    """Parse configuration from a string or an open stream."""
    return ConfigManager().read_config(stream)
