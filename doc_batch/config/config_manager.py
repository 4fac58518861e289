"""
Centralized configuration management for batch document processing.

ConfigManager is the single source of truth for the store connection and
processing parameters. Values come from environment variables, optionally
seeded from a dotenv file, with ProcessingDefaults as the fallback.
"""

import logging
import os

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from ..exceptions import ConfigurationError
from ..models import ProcessingConfig
from .processing_defaults import ProcessingDefaults


ENV_PREFIX = "DOC_BATCH_"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(ENV_PREFIX + name)
    if raw is None or raw.strip() == '':
        return default
    return raw.strip().lower() in ('true', '1', 'yes')


def load_environment(env_file: Optional[Union[str, Path]] = None) -> bool:
    """
    Load a dotenv file into the process environment.

    Existing environment variables win over file values. A missing file is
    not an error.

    Returns:
        True if a file was loaded
    """
    path = Path(env_file or ProcessingDefaults.ENV_FILE)
    if not path.exists():
        logging.getLogger(__name__).debug(f"No environment file at {path}")
        return False
    return load_dotenv(path, override=False)


@dataclass
class DatabaseConfig:
    """Database configuration with environment variable support."""
    connection_string: str = ""
    driver: str = "ODBC Driver 17 for SQL Server"
    server: str = ""
    database: str = ""
    trusted_connection: bool = True
    connection_timeout: int = ProcessingDefaults.CONNECTION_TIMEOUT
    schema: str = ProcessingDefaults.SCHEMA

    @classmethod
    def from_environment(cls) -> 'DatabaseConfig':
        """Create database configuration from environment variables."""
        schema = os.environ.get(ENV_PREFIX + 'DB_SCHEMA') or cls.schema
        connection_timeout = _env_int('DB_CONNECTION_TIMEOUT', cls.connection_timeout)

        # Primary connection string from environment
        connection_string = os.environ.get(ENV_PREFIX + 'CONNECTION_STRING', '')
        if connection_string:
            return cls(connection_string=connection_string, schema=schema,
                       connection_timeout=connection_timeout)

        # Build connection string from individual components
        driver = os.environ.get(ENV_PREFIX + 'DB_DRIVER') or cls.driver
        server = os.environ.get(ENV_PREFIX + 'DB_SERVER', '')
        database = os.environ.get(ENV_PREFIX + 'DB_DATABASE', '')
        trusted_connection = _env_bool('DB_TRUSTED_CONNECTION', True)

        if not server:
            return cls(driver=driver, database=database, trusted_connection=trusted_connection,
                       connection_timeout=connection_timeout, schema=schema)

        connection_string = (
            f"DRIVER={{{driver}}};"
            f"SERVER={server};"
            f"DATABASE={database};"
        )
        if trusted_connection:
            connection_string += "Trusted_Connection=yes;"
        else:
            username = os.environ.get(ENV_PREFIX + 'DB_USERNAME', '')
            password = os.environ.get(ENV_PREFIX + 'DB_PASSWORD', '')
            connection_string += f"UID={username};PWD={password};"
        connection_string += (
            f"Connection Timeout={connection_timeout};"
            f"Application Name=doc-batch;"
            f"TrustServerCertificate=yes;"
        )

        return cls(
            connection_string=connection_string,
            driver=driver,
            server=server,
            database=database,
            trusted_connection=trusted_connection,
            connection_timeout=connection_timeout,
            schema=schema,
        )

    @property
    def has_target(self) -> bool:
        return bool(self.connection_string)

    def describe(self) -> str:
        """Connection target without credentials."""
        if self.server:
            return f"{self.server}/{self.database}"
        return "connection string" if self.connection_string else "(not configured)"


@dataclass
class ProcessingParameters:
    """Processing parameters with environment variable support."""
    batch_size: int = ProcessingDefaults.BATCH_SIZE
    chunk_size: int = ProcessingDefaults.CHUNK_SIZE
    progress_interval: int = ProcessingDefaults.PROGRESS_INTERVAL
    report_dir: str = ProcessingDefaults.REPORT_DIR

    @classmethod
    def from_environment(cls) -> 'ProcessingParameters':
        """Create processing parameters from environment variables."""
        return cls(
            batch_size=_env_int('BATCH_SIZE', cls.batch_size),
            chunk_size=_env_int('CHUNK_SIZE', cls.chunk_size),
            progress_interval=_env_int('PROGRESS_INTERVAL', cls.progress_interval),
            report_dir=os.environ.get(ENV_PREFIX + 'REPORT_DIR') or cls.report_dir,
        )


class ConfigManager:
    """
    Centralized configuration manager serving as single source of truth.

    Consolidates the store connection settings and processing parameters.
    """

    def __init__(self, env_file: Optional[Union[str, Path]] = None):
        """
        Initialize the configuration manager.

        Args:
            env_file: Optional dotenv file loaded before reading the environment
        """
        self.logger = logging.getLogger(__name__)
        if env_file is not None:
            load_environment(env_file)

        self.database_config = DatabaseConfig.from_environment()
        self.processing_params = ProcessingParameters.from_environment()

    def get_database_connection_string(self) -> str:
        """
        Get the database connection string.

        Raises:
            ConfigurationError: If no connection target is configured
        """
        if not self.database_config.has_target:
            raise ConfigurationError(
                f"No database connection target: set {ENV_PREFIX}CONNECTION_STRING "
                f"or {ENV_PREFIX}DB_SERVER")
        return self.database_config.connection_string

    def get_processing_config(self, **overrides: Any) -> ProcessingConfig:
        """
        Build a ProcessingConfig from parameters, with CLI overrides applied.

        None-valued overrides are ignored.
        """
        values = {
            'batch_size': self.processing_params.batch_size,
            'chunk_size': self.processing_params.chunk_size,
            'progress_interval': self.processing_params.progress_interval,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        try:
            return ProcessingConfig(**values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid processing parameters: {e}")

    def validate_configuration(self, require_database: bool = True) -> bool:
        """
        Validate all configuration settings.

        Raises:
            ConfigurationError: If any configuration is invalid
        """
        errors = []

        if require_database and not self.database_config.has_target:
            errors.append(f"No database connection target ({ENV_PREFIX}CONNECTION_STRING "
                          f"or {ENV_PREFIX}DB_SERVER)")

        if self.processing_params.batch_size <= 0:
            errors.append("Batch size must be greater than 0")

        if self.processing_params.chunk_size <= 0:
            errors.append("Chunk size must be greater than 0")

        if self.processing_params.progress_interval < 0:
            errors.append("Progress interval must not be negative")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")

        self.logger.info("Configuration validation passed")
        return True

    def get_configuration_summary(self) -> Dict[str, Any]:
        """Configuration summary without credentials."""
        return {
            'database': {
                'target': self.database_config.describe(),
                'schema': self.database_config.schema,
                'connection_timeout': self.database_config.connection_timeout,
            },
            'processing': {
                'batch_size': self.processing_params.batch_size,
                'chunk_size': self.processing_params.chunk_size,
                'progress_interval': self.processing_params.progress_interval,
                'report_dir': self.processing_params.report_dir,
            },
        }


# Global configuration manager instance
_global_config_manager: Optional[ConfigManager] = None


def get_config_manager(env_file: Optional[Union[str, Path]] = None) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        env_file: Dotenv file to load. Only used on first call.

    Returns:
        Global ConfigManager instance
    """
    global _global_config_manager

    if _global_config_manager is None:
        _global_config_manager = ConfigManager(env_file)

    return _global_config_manager


def reset_config_manager() -> None:
    """Reset the global configuration manager instance."""
    global _global_config_manager
    _global_config_manager = None
