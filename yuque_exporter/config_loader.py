"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict
from urllib.parse import urlparse

import yaml

from .models import ExportFormat, SourceConfig

DEFAULT_CONFIG: Dict[str, Any] = {
    'yuque': {
        'base_url': 'https://www.yuque.com',
    },
    'storage': {
        'root': './data',
        'lock_timeout': 10,
        'lock_retries': 5,
    },
    'export': {
        'formats': ['json', 'html', 'docx', 'pdf'],
        'embed_images': True,
        'max_concurrent_downloads': 5,
        'download_timeout': 30,
        'render_timeout': 120,
        'progress_bars': True,
        'pdf': {
            'browser_path': None,
            'wkhtmltopdf_path': None,
        },
    },
    'advanced': {
        'request_timeout': 30,
        'max_retries': 3,
        'retry_backoff_factor': 1.0,
        'rate_limit': 0.0,
    },
    'logging': {
        'level': None,
        'file': None,
    },
}


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Values missing from the file are filled from ``DEFAULT_CONFIG``.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)

        return cls.with_defaults(config_data)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge ``config`` over ``DEFAULT_CONFIG``."""
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), config)

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ValueError: If validation fails
        """
        cls._validate_required_field(config, 'yuque.id')
        cls._validate_required_field(config, 'yuque.token')
        cls._validate_required_field(config, 'yuque.group_login')
        cls._validate_required_field(config, 'yuque.book_slug')

        base_url = get_nested(config, 'yuque.base_url', 'https://www.yuque.com')
        cls._validate_url(base_url, 'yuque.base_url')

        source_id = str(get_nested(config, 'yuque.id'))
        if not re.fullmatch(r'[A-Za-z0-9_.-]+', source_id):
            raise ValueError("yuque.id may only contain letters, digits, '_', '-' and '.'")

        formats = get_nested(config, 'export.formats', ['json', 'html', 'docx', 'pdf'])
        if not isinstance(formats, list) or not formats:
            raise ValueError("export.formats must be a non-empty list")
        for fmt in formats:
            try:
                ExportFormat(fmt)
            except ValueError:
                raise ValueError(
                    f"export.formats entries must be one of: {[f.value for f in ExportFormat]}"
                )

        for path in ('export.download_timeout', 'export.render_timeout',
                     'advanced.request_timeout', 'storage.lock_timeout'):
            value = get_nested(config, path)
            if value is not None and (not isinstance(value, (int, float)) or value <= 0):
                raise ValueError(f"{path} must be a positive number")

        concurrency = get_nested(config, 'export.max_concurrent_downloads', 5)
        if not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError("export.max_concurrent_downloads must be a positive integer")

        retries = get_nested(config, 'advanced.max_retries', 3)
        if not isinstance(retries, int) or retries < 0:
            raise ValueError("advanced.max_retries must be a non-negative integer")

        for flag in ('export.embed_images', 'export.progress_bars'):
            value = get_nested(config, flag)
            if value is not None and not isinstance(value, bool):
                raise ValueError(f"{flag} must be a boolean")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ('yuque', 'storage', 'export', 'logging'):
            merged.setdefault(section, {})

        if getattr(args, 'data_dir', None):
            merged['storage']['root'] = args.data_dir

        if getattr(args, 'formats', None):
            formats = args.formats
            if isinstance(formats, str):
                formats = [fmt.strip() for fmt in formats.split(',') if fmt.strip()]
            merged['export']['formats'] = formats

        if getattr(args, 'token', None):
            merged['yuque']['token'] = args.token

        if getattr(args, 'no_embed_images', False):
            merged['export']['embed_images'] = False

        if getattr(args, 'no_progress', False):
            merged['export']['progress_bars'] = False

        if getattr(args, 'log_file', None):
            merged['logging']['file'] = args.log_file

        if getattr(args, 'log_level', None):
            merged['logging']['level'] = args.log_level

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            env_value = os.getenv(match.group(1))
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ValueError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url or '')
        if not parsed.scheme or parsed.scheme not in ['http', 'https']:
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def source_config_from(config: Dict[str, Any]) -> SourceConfig:
    """Build the SourceConfig for the ``yuque`` section of a validated config."""
    yuque = config.get('yuque', {})
    return SourceConfig(
        id=str(yuque['id']),
        name=yuque.get('name') or '',
        base_url=yuque.get('base_url') or 'https://www.yuque.com',
        group_login=yuque['group_login'],
        book_slug=yuque['book_slug'],
        token=yuque['token'],
    )


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "yuque.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config

    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'get_nested', 'source_config_from']
