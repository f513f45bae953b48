"""Configuration management for the notification pipeline."""

import json
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
import logging

from ..models.core import NotifierConfig, TransactionField, DEFAULT_CONTENT_KEYWORDS, DEFAULT_FIELD_LABELS


logger = logging.getLogger(__name__)


ENV_OVERRIDES = {
    'GMAIL_CLIENT_ID': 'gmail_client_id',
    'GMAIL_CLIENT_SECRET': 'gmail_client_secret',
    'GMAIL_REFRESH_TOKEN': 'gmail_refresh_token',
    'BANK_NOTIFIER_DB': 'database_path',
    'POLL_INTERVAL_SECONDS': 'poll_interval_seconds',
}

STRING_KEYS = ['database_path', 'log_directory', 'gmail_user_id']
OPTIONAL_STRING_KEYS = ['gmail_client_id', 'gmail_client_secret', 'gmail_refresh_token']
POSITIVE_NUMBER_KEYS = ['poll_interval_seconds', 'request_timeout_seconds']
POSITIVE_INT_KEYS = ['history_page_size', 'retention_days']
STRING_LIST_KEYS = ['sender_domains', 'content_keywords']


class ConfigManager:
    """Manages loading and validation of pipeline configuration"""

    def __init__(self, config_path: Optional[str] = None, use_environment: bool = True):
        """Initialize configuration manager

        Args:
            config_path: Path to configuration file. If None, searches for default locations.
            use_environment: Apply environment variable overrides after loading
        """
        self.config_path = config_path
        self.use_environment = use_environment
        self._config_cache: Optional[NotifierConfig] = None

    def load_config(self, force_reload: bool = False) -> NotifierConfig:
        """Load pipeline configuration from file or return default

        Args:
            force_reload: Force reload from file even if cached

        Returns:
            NotifierConfig instance with loaded or default configuration
        """
        if self._config_cache is not None and not force_reload:
            return self._config_cache

        config_data = self._load_config_file()
        if self.use_environment:
            config_data = self._apply_environment(config_data)

        try:
            self._config_cache = NotifierConfig(
                database_path=config_data.get('database_path', 'data/bank_notifier.db'),
                poll_interval_seconds=config_data.get('poll_interval_seconds', 10),
                sender_domains=config_data.get('sender_domains'),
                content_keywords=config_data.get('content_keywords'),
                field_labels=config_data.get('field_labels'),
                history_page_size=config_data.get('history_page_size', 100),
                request_timeout_seconds=config_data.get('request_timeout_seconds', 30),
                retention_days=config_data.get('retention_days', 30),
                log_directory=config_data.get('log_directory', 'logs'),
                gmail_user_id=config_data.get('gmail_user_id', 'me'),
                gmail_client_id=config_data.get('gmail_client_id'),
                gmail_client_secret=config_data.get('gmail_client_secret'),
                gmail_refresh_token=config_data.get('gmail_refresh_token'),
            )

            logger.info(f"Configuration loaded successfully from {self.config_path or 'defaults'}")
            return self._config_cache

        except (TypeError, ValueError) as e:
            logger.warning(f"Error loading configuration: {e}. Using defaults.")
            self._config_cache = NotifierConfig()
            return self._config_cache

    def _load_config_file(self) -> Dict[str, Any]:
        """Load configuration from file

        Returns:
            Dictionary with configuration data or empty dict if no file found
        """
        config_file = self._find_config_file()

        if not config_file or not os.path.exists(config_file):
            logger.info("No configuration file found, using defaults")
            return {}

        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                if config_file.endswith('.json'):
                    data = json.load(f)
                elif config_file.endswith(('.yml', '.yaml')):
                    data = yaml.safe_load(f)
                else:
                    logger.warning(f"Unsupported config file format: {config_file}")
                    return {}

            self._validate_config_data(data)
            logger.info(f"Configuration loaded from {config_file}")
            return data

        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Error reading configuration file {config_file}: {e}")
            return {}

    def _find_config_file(self) -> Optional[str]:
        """Find configuration file in standard locations

        Returns:
            Path to configuration file or None if not found
        """
        if self.config_path:
            return self.config_path

        search_paths = [
            'notifier_config.json',
            'notifier_config.yml',
            'notifier_config.yaml',
            'config/notifier_config.json',
            'config/notifier_config.yml',
            'config/notifier_config.yaml',
            os.path.expanduser('~/.bank_notifier/config.json'),
            os.path.expanduser('~/.bank_notifier/config.yml'),
        ]

        for path in search_paths:
            if os.path.exists(path):
                return path

        return None

    def _apply_environment(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Overlay values from environment variables"""
        merged = dict(config_data)
        for env_name, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if not value:
                continue
            if key == 'poll_interval_seconds':
                try:
                    value = float(value)
                except ValueError:
                    logger.warning(f"Ignoring invalid {env_name}={value!r}")
                    continue
            merged[key] = value
            logger.debug(f"Configuration override from {env_name}")
        return merged

    def _validate_config_data(self, data: Dict[str, Any]) -> None:
        """Validate configuration data structure

        Args:
            data: Configuration data to validate

        Raises:
            ValueError: If configuration data is invalid
        """
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a dictionary")

        for key in STRING_KEYS:
            if key in data:
                if not isinstance(data[key], str):
                    raise ValueError(f"{key} must be a string")
                if not data[key].strip():
                    raise ValueError(f"{key} cannot be empty")

        for key in OPTIONAL_STRING_KEYS:
            if data.get(key) is not None and not isinstance(data[key], str):
                raise ValueError(f"{key} must be a string")

        for key in POSITIVE_NUMBER_KEYS:
            if key in data:
                value = data[key]
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    raise ValueError(f"{key} must be a number")
                if value <= 0:
                    raise ValueError(f"{key} must be positive")

        for key in POSITIVE_INT_KEYS:
            if key in data:
                value = data[key]
                if isinstance(value, bool) or not isinstance(value, int):
                    raise ValueError(f"{key} must be an integer")
                if value <= 0:
                    raise ValueError(f"{key} must be positive")

        for key in STRING_LIST_KEYS:
            if key in data:
                if not isinstance(data[key], list):
                    raise ValueError(f"{key} must be a list")
                for item in data[key]:
                    if not isinstance(item, str):
                        raise ValueError(f"All {key} entries must be strings")

        if 'field_labels' in data:
            self._validate_field_labels(data['field_labels'])

    def _validate_field_labels(self, field_labels: Any) -> None:
        """Validate label synonym overrides

        Raises:
            ValueError: If a key is not a known field or labels are not strings
        """
        if not isinstance(field_labels, dict):
            raise ValueError("field_labels must be a dictionary")

        known_keys = {field.value for field in TransactionField}
        for key, labels in field_labels.items():
            if key not in known_keys:
                raise ValueError(f"Unknown field in field_labels: {key}")
            if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
                raise ValueError(f"Labels for {key} must be a list of strings")

    def save_config_template(self, output_path: str) -> None:
        """Generate and save a configuration file template

        Args:
            output_path: Path where to save the template
        """
        template = {
            "database_path": "data/bank_notifier.db",
            "poll_interval_seconds": 10,
            "sender_domains": ["cake.vn"],
            "content_keywords": list(DEFAULT_CONTENT_KEYWORDS),
            "field_labels": {key: list(labels) for key, labels in DEFAULT_FIELD_LABELS.items()},
            "history_page_size": 100,
            "request_timeout_seconds": 30,
            "retention_days": 30,
            "log_directory": "logs",
            "gmail_user_id": "me",
            "gmail_client_id": None,
            "gmail_client_secret": None,
            "gmail_refresh_token": None,
        }

        try:
            output_dir = os.path.dirname(output_path)
            if output_dir:
                os.makedirs(output_dir, exist_ok=True)

            with open(output_path, 'w', encoding='utf-8') as f:
                if output_path.endswith(('.yml', '.yaml')):
                    yaml.safe_dump(template, f, default_flow_style=False, indent=2, allow_unicode=True)
                else:
                    json.dump(template, f, indent=2, ensure_ascii=False)

            logger.info(f"Configuration template saved to {output_path}")

        except OSError as e:
            logger.error(f"Error saving configuration template: {e}")
            raise

    def update_config(self, updates: Dict[str, Any]) -> None:
        """Update configuration with new values

        Args:
            updates: Dictionary of configuration updates
        """
        if self._config_cache is None:
            self.load_config()

        for key, value in updates.items():
            if hasattr(self._config_cache, key):
                setattr(self._config_cache, key, value)
                logger.debug(f"Updated configuration: {key} = {value}")
            else:
                logger.warning(f"Unknown configuration key: {key}")

    def reset_config(self) -> None:
        """Reset configuration cache, forcing reload on next access"""
        self._config_cache = None
        logger.debug("Configuration cache reset")

    def get_missing_credentials(self) -> List[str]:
        """Names of Gmail credential settings that are not configured"""
        config = self.load_config()
        return [
            key for key in OPTIONAL_STRING_KEYS
            if not getattr(config, key)
        ]
