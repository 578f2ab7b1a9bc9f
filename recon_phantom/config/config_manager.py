#!/usr/bin/env python3
"""
Configuration Manager for Recon Phantom

Features:
- JSON configuration file
- Environment variable overrides (RECON_ prefix)
- JSON Schema validation of all parameters
- Default values for every setting
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from ..core.presets import TIMING_PRESETS
from ..core.hostname_resolver import DNS_SERVERS
from ..core.scan_engine import DISCOVERY_METHODS
from ..core.transport import BROWSER_USER_AGENT, DEFAULT_USER_AGENT
from ..security.rate_limiter import MAX_PROBE_RATE

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "recon_config.json"


class ConfigSchema:
    """Configuration schema with validation"""

    SCHEMA = {
        "type": "object",
        "required": ["version", "general", "scan", "discovery", "services", "firewall", "scripts", "http"],
        "properties": {
            "version": {"type": "string", "pattern": r"^\d+\.\d+\.\d+$"},
            "general": {
                "type": "object",
                "required": ["log_level"],
                "properties": {
                    "log_level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
                    "colors_enabled": {"type": "boolean"}
                }
            },
            "scan": {
                "type": "object",
                "required": ["timeout_ms", "concurrency", "batch_delay_ms"],
                "properties": {
                    "timeout_ms": {"type": "number", "minimum": 100, "maximum": 60000},
                    "concurrency": {"type": "integer", "minimum": 1, "maximum": 500},
                    "batch_delay_ms": {"type": "number", "minimum": 0, "maximum": 600000},
                    "max_hosts": {"type": "integer", "minimum": 1, "maximum": 65536},
                    "default_ports": {"type": "string"},
                    "timing_template": {"type": ["string", "null"], "enum": list(TIMING_PRESETS) + [None]},
                    "rate_limit": {"type": "number", "minimum": 0, "maximum": MAX_PROBE_RATE},
                    "retries": {"type": "integer", "minimum": 0, "maximum": 10}
                }
            },
            "discovery": {
                "type": "object",
                "required": ["methods"],
                "properties": {
                    "methods": {
                        "type": "array",
                        "minItems": 1,
                        "items": {"type": "string", "enum": list(DISCOVERY_METHODS)}
                    },
                    "concurrency": {"type": "integer", "minimum": 1, "maximum": 500}
                }
            },
            "services": {
                "type": "object",
                "properties": {
                    "timeout_ms": {"type": "number", "minimum": 100, "maximum": 60000},
                    "banner_timeout_ms": {"type": "number", "minimum": 100, "maximum": 60000},
                    "read_banners": {"type": "boolean"}
                }
            },
            "firewall": {
                "type": "object",
                "properties": {
                    "timing_samples": {"type": "integer", "minimum": 1, "maximum": 20},
                    "sample_ports": {"type": "integer", "minimum": 1, "maximum": 20},
                    "burst_size": {"type": "integer", "minimum": 1, "maximum": 50},
                    "slow_burst_ms": {"type": "number", "minimum": 100}
                }
            },
            "scripts": {
                "type": "object",
                "properties": {
                    "concurrency": {"type": "integer", "minimum": 1, "maximum": 20},
                    "timeout_ms": {"type": "number", "minimum": 1000}
                }
            },
            "dns": {
                "type": "object",
                "properties": {
                    "servers": {"type": "array", "items": {"type": "string", "pattern": "^https://"}},
                    "timeout_ms": {"type": "number", "minimum": 100, "maximum": 60000},
                    "system_fallback": {"type": "boolean"}
                }
            },
            "http": {
                "type": "object",
                "properties": {
                    "user_agent": {"type": "string", "minLength": 1},
                    "browser_user_agent": {"type": "string", "minLength": 1},
                    "verify_tls": {"type": "boolean"}
                }
            }
        }
    }

    @staticmethod
    def get_defaults() -> Dict[str, Any]:
        """Return default configuration"""
        return {
            "version": "1.0.0",
            "general": {
                "log_level": "INFO",
                "colors_enabled": True
            },
            "scan": {
                "timeout_ms": 3000,
                "concurrency": 10,
                "batch_delay_ms": 100,
                "max_hosts": 100,
                "default_ports": "top100",
                "timing_template": None,
                "rate_limit": 0,
                "retries": 0
            },
            "discovery": {
                "methods": ["ping"],
                "concurrency": 10
            },
            "services": {
                "timeout_ms": 5000,
                "banner_timeout_ms": 1500,
                "read_banners": True
            },
            "firewall": {
                "timing_samples": 3,
                "sample_ports": 3,
                "burst_size": 5,
                "slow_burst_ms": 10000
            },
            "scripts": {
                "concurrency": 3,
                "timeout_ms": 60000
            },
            "dns": {
                "servers": list(DNS_SERVERS),
                "timeout_ms": 10000,
                "system_fallback": True
            },
            "http": {
                "user_agent": DEFAULT_USER_AGENT,
                "browser_user_agent": BROWSER_USER_AGENT,
                "verify_tls": False
            }
        }


class ConfigManager:
    """
    Configuration manager with file, env, and validation support

    Usage:
        config = ConfigManager("recon_config.json")
        config.load()
        timeout = config.get("scan.timeout_ms")
        config.set("scan.concurrency", 20)
        config.save()
    """

    ENV_PREFIX = "RECON_"

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Path to JSON config file (default: recon_config.json)
        """
        self.config_file = config_file or DEFAULT_CONFIG_FILE
        self.config = ConfigSchema.get_defaults()
        self.validator = Draft7Validator(ConfigSchema.SCHEMA)
        self.modified = False

    def load(self, config_file: Optional[str] = None) -> bool:
        """
        Load configuration from file

        Args:
            config_file: Optional path override

        Returns:
            True if loaded successfully, False otherwise
        """
        if config_file:
            self.config_file = config_file

        path = Path(self.config_file)

        if not path.exists():
            logger.info(f"Config file not found: {self.config_file}, using defaults")
            return False

        try:
            with open(path, 'r') as f:
                loaded_config = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Config parse error: {e}")
            return False
        except OSError as e:
            logger.error(f"Config load error: {e}")
            return False

        if not isinstance(loaded_config, dict):
            logger.error("Config file must contain a JSON object")
            return False

        # Merge with defaults (deep merge)
        self._merge_config(self.config, loaded_config)

        if not self.validate():
            logger.warning("Config validation failed, using defaults")
            self.config = ConfigSchema.get_defaults()
            return False

        logger.info(f"Config loaded: {self.config_file}")
        return True

    def save(self, config_file: Optional[str] = None) -> bool:
        """
        Save configuration to file

        Args:
            config_file: Optional path override

        Returns:
            True if saved successfully
        """
        if config_file:
            self.config_file = config_file

        try:
            with open(self.config_file, 'w') as f:
                json.dump(self.config, f, indent=2)
        except OSError as e:
            logger.error(f"Config save error: {e}")
            return False

        logger.info(f"Config saved: {self.config_file}")
        self.modified = False
        return True

    def _merge_config(self, base: Dict, override: Dict) -> None:
        """Deep merge configuration"""
        for key, value in override.items():
            if (key in base and
                    isinstance(base[key], dict) and
                    isinstance(value, dict)):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def errors(self) -> List[str]:
        """Return human-readable schema violations, empty when valid"""
        messages = []
        for error in sorted(self.validator.iter_errors(self.config), key=lambda e: list(e.path)):
            location = ".".join(str(p) for p in error.path) or "<root>"
            messages.append(f"{location}: {error.message}")
        return messages

    def validate(self) -> bool:
        """Validate configuration against schema"""
        messages = self.errors()
        for message in messages:
            logger.error(f"Validation error: {message}")
        return not messages

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key (e.g., "scan.timeout_ms")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        # Check environment variable first
        env_key = (self.ENV_PREFIX + key.upper().replace(".", "_"))
        env_value = os.environ.get(env_key)
        if env_value is not None:
            schema = self._schema_for(key)
            value = self._parse_env_value(env_value, schema)
            if schema is None or Draft7Validator(schema).is_valid(value):
                return value
            logger.warning(f"Ignoring invalid {env_key}={env_value!r}")

        keys = key.split(".")
        value = self.config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    @staticmethod
    def _schema_for(key: str) -> Optional[Dict[str, Any]]:
        """Schema node for a dotted key, None when the key is not described"""
        node: Dict[str, Any] = ConfigSchema.SCHEMA
        for k in key.split("."):
            node = node.get("properties", {}).get(k)
            if node is None:
                return None
        return node

    def _parse_env_value(self, value: str, schema: Optional[Dict[str, Any]] = None) -> Any:
        """Parse environment variable value, typed by its schema node when one exists"""
        types = (schema or {}).get("type")
        if isinstance(types, str):
            types = [types]

        if not types:
            return self._guess_env_value(value)

        if "null" in types and value.strip().lower() in ("", "null", "none"):
            return None
        if "array" in types:
            item_schema = schema.get("items")
            return [self._parse_env_value(part.strip(), item_schema)
                    for part in value.split(",") if part.strip()]
        if "boolean" in types:
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1", "on"):
                return True
            if lowered in ("false", "no", "0", "off"):
                return False
        if "integer" in types or "number" in types:
            try:
                return int(value)
            except ValueError:
                pass
        if "number" in types:
            try:
                return float(value)
            except ValueError:
                pass
        return value

    def _guess_env_value(self, value: str) -> Any:
        """Parse an environment value for keys the schema does not describe"""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        if "," in value:
            return [part.strip() for part in value.split(",") if part.strip()]

        return value

    def set(self, key: str, value: Any) -> bool:
        """
        Set configuration value using dot notation

        Args:
            key: Configuration key
            value: Value to set

        Returns:
            True if successful
        """
        keys = key.split(".")

        current = self.config
        for k in keys[:-1]:
            if k not in current or not isinstance(current[k], dict):
                current[k] = {}
            current = current[k]

        current[keys[-1]] = value
        self.modified = True
        return True

    def export_for_cli(self) -> Dict:
        """Export configuration for CLI usage"""
        return {
            "timeout_ms": self.get("scan.timeout_ms"),
            "concurrency": self.get("scan.concurrency"),
            "default_ports": self.get("scan.default_ports"),
            "timing_template": self.get("scan.timing_template"),
            "discovery_methods": self.get("discovery.methods"),
            "log_level": self.get("general.log_level"),
            "colors_enabled": self.get("general.colors_enabled")
        }


def create_default_config(filename: str = DEFAULT_CONFIG_FILE) -> bool:
    """Create default configuration file"""
    config = ConfigManager(filename)
    config.config = ConfigSchema.get_defaults()
    return config.save()
