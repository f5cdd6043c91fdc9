"""
Configuration loading and validation for Headline Harvester.

Validates config/settings.yaml on startup with clear, actionable error messages.
"""

import copy
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from browser import USER_AGENTS, DEFAULT_ACCEPT_LANGUAGE

DEFAULT_CONFIG_PATH = "config/settings.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "scraping": {
        "max_workers": 1,
        "run_timeout_seconds": 600,
        "navigation_timeout_ms": 60000,
        "navigation_attempts": 3,
        "selector_timeout_ms": 20000,
        "listing_settle_ms": 3000,
        "scroll_max_ms": 30000,
        "delay_min_ms": 5000,
        "delay_max_ms": 12000,
        "backfill_seen": True,
        "image_check_timeout": 10,
        "headless": True,
        "accept_language": DEFAULT_ACCEPT_LANGUAGE,
        "user_agents": list(USER_AGENTS),
    },
    "store": {
        "path": "data/articles.db",
        "retention_days": 7,
    },
    "delivery": {
        "timeout": 30,
        "max_retries": 3,
        "initial_delay": 1.0,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 4000,
    },
}

# Numeric settings: (section, key, allow_float, minimum, minimum_inclusive)
_NUMERIC_RULES = [
    ("scraping", "max_workers", False, 1, True),
    ("scraping", "run_timeout_seconds", True, 0, False),
    ("scraping", "navigation_timeout_ms", False, 0, False),
    ("scraping", "navigation_attempts", False, 1, True),
    ("scraping", "selector_timeout_ms", False, 0, True),
    ("scraping", "listing_settle_ms", False, 0, True),
    ("scraping", "scroll_max_ms", False, 0, True),
    ("scraping", "delay_min_ms", True, 0, True),
    ("scraping", "delay_max_ms", True, 0, True),
    ("scraping", "image_check_timeout", True, 0, False),
    ("store", "retention_days", False, 1, True),
    ("delivery", "timeout", True, 0, False),
    ("delivery", "max_retries", False, 1, True),
    ("delivery", "initial_delay", True, 0, True),
    ("server", "port", False, 1, True),
]

_BOOLEAN_RULES = [
    ("scraping", "backfill_seen"),
    ("scraping", "headless"),
]


@dataclass
class ValidationError:
    """Represents a single validation error."""

    path: str
    message: str
    value: Any = None

    def __str__(self) -> str:
        if self.value is not None:
            return f"settings.yaml:{self.path} {self.message}, got {type(self.value).__name__}: {self.value!r}"
        return f"settings.yaml:{self.path} {self.message}"


@dataclass
class ValidationResult:
    """Result of configuration validation."""

    errors: list[ValidationError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, path: str, message: str, value: Any = None) -> None:
        self.errors.append(ValidationError(path, message, value))

    def __str__(self) -> str:
        if self.is_valid:
            return "Configuration is valid"
        lines = ["Configuration validation failed:"]
        for error in self.errors:
            lines.append(f"  - {error}")
        return "\n".join(lines)


class ConfigValidator:
    """Validates the settings.yaml configuration file."""

    OPTIONAL_SECTIONS = ("scraping", "delivery", "server")

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)
        self.result = ValidationResult()

    def validate(self) -> ValidationResult:
        """
        Validate the configuration file.

        Returns:
            ValidationResult with any errors found.
        """
        self.result = ValidationResult()

        if not self.config_path.exists():
            self.result.add_error("", f"Configuration file not found: {self.config_path}")
            return self.result

        try:
            with open(self.config_path) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            self.result.add_error("", f"Invalid YAML syntax: {e}")
            return self.result

        if config is None:
            self.result.add_error("", "Configuration file is empty")
            return self.result

        if not isinstance(config, dict):
            self.result.add_error("", "must be a mapping", config)
            return self.result

        return self.validate_dict(config)

    def validate_dict(self, config: dict) -> ValidationResult:
        """Validate an already-loaded configuration mapping."""
        self.result = ValidationResult()

        for section in self.OPTIONAL_SECTIONS:
            value = config.get(section)
            if value is not None and not isinstance(value, dict):
                self.result.add_error(section, "must be a mapping", value)

        self._validate_store(config)
        self._validate_numbers(config)
        self._validate_booleans(config)
        self._validate_delays(config)
        self._validate_user_agents(config)
        self._validate_strings(config)

        return self.result

    def _section(self, config: dict, name: str) -> dict:
        section = config.get(name)
        return section if isinstance(section, dict) else {}

    def _validate_store(self, config: dict) -> None:
        """Validate the store section."""
        store = config.get("store")
        if store is None:
            self.result.add_error("store", "is required")
            return

        if not isinstance(store, dict):
            self.result.add_error("store", "must be a mapping", store)
            return

        path = store.get("path")
        if path is None:
            self.result.add_error("store.path", "is required")
        elif not isinstance(path, str) or not path.strip():
            self.result.add_error("store.path", "must be a non-empty string", path)

    def _validate_numbers(self, config: dict) -> None:
        for section_name, key, allow_float, minimum, inclusive in _NUMERIC_RULES:
            value = self._section(config, section_name).get(key)
            if value is None:
                continue

            path = f"{section_name}.{key}"
            expected = (int, float) if allow_float else int
            if isinstance(value, bool) or not isinstance(value, expected):
                kind = "a number" if allow_float else "an integer"
                self.result.add_error(path, f"must be {kind}", value)
            elif inclusive and value < minimum:
                self.result.add_error(path, f"must be >= {minimum}", value)
            elif not inclusive and value <= minimum:
                self.result.add_error(path, f"must be > {minimum}", value)

    def _validate_booleans(self, config: dict) -> None:
        for section_name, key in _BOOLEAN_RULES:
            value = self._section(config, section_name).get(key)
            if value is not None and not isinstance(value, bool):
                self.result.add_error(f"{section_name}.{key}", "must be a boolean", value)

    def _validate_delays(self, config: dict) -> None:
        """delay_min_ms must not exceed delay_max_ms"""
        scraping = self._section(config, "scraping")
        delay_min = scraping.get("delay_min_ms")
        delay_max = scraping.get("delay_max_ms")
        if (
            isinstance(delay_min, (int, float))
            and isinstance(delay_max, (int, float))
            and not isinstance(delay_min, bool)
            and not isinstance(delay_max, bool)
            and delay_min > delay_max
        ):
            self.result.add_error(
                "scraping.delay_min_ms", f"must be <= delay_max_ms ({delay_max})", delay_min
            )

    def _validate_user_agents(self, config: dict) -> None:
        user_agents = self._section(config, "scraping").get("user_agents")
        if user_agents is None:
            return

        if not isinstance(user_agents, list):
            self.result.add_error("scraping.user_agents", "must be a list", user_agents)
        elif len(user_agents) == 0:
            self.result.add_error("scraping.user_agents", "must not be empty")
        else:
            for i, ua in enumerate(user_agents):
                if not isinstance(ua, str):
                    self.result.add_error(f"scraping.user_agents[{i}]", "must be a string", ua)

    def _validate_strings(self, config: dict) -> None:
        accept_language = self._section(config, "scraping").get("accept_language")
        if accept_language is not None and not isinstance(accept_language, str):
            self.result.add_error("scraping.accept_language", "must be a string", accept_language)

        host = self._section(config, "server").get("host")
        if host is not None and not isinstance(host, str):
            self.result.add_error("server.host", "must be a string", host)


def merge_config(overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Defaults with each section updated from overrides"""
    merged = copy.deepcopy(DEFAULT_CONFIG)
    for section, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values

    db_path = os.environ.get("HARVESTER_DB_PATH")
    if db_path and isinstance(merged.get("store"), dict):
        merged["store"]["path"] = db_path
    return merged


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """
    Load settings.yaml merged over the defaults.

    A missing file yields the defaults.
    """
    path = Path(config_path)
    if not path.exists():
        return merge_config(None)
    with open(path) as f:
        return merge_config(yaml.safe_load(f) or {})


def validate_config(config_path: str = DEFAULT_CONFIG_PATH) -> ValidationResult:
    """
    Convenience function to validate a configuration file.

    Args:
        config_path: Path to the settings.yaml file.

    Returns:
        ValidationResult with any errors found.
    """
    validator = ConfigValidator(config_path)
    return validator.validate()


def validate_config_or_exit(config_path: str = DEFAULT_CONFIG_PATH) -> dict[str, Any]:
    """
    Validate configuration and exit with error code 1 if invalid.

    Returns:
        The merged configuration dict if valid.

    Raises:
        SystemExit: If validation fails.
    """
    result = validate_config(config_path)

    if not result.is_valid:
        print(result, file=sys.stderr)
        raise SystemExit(1)

    return load_config(config_path)
