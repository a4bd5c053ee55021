"""
Configuration Management Module
Handles loading and validation of environment variables and settings
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .security_validators import (
    DEFAULT_ATTACHMENT_SIZE_LIMIT,
    DEFAULT_EMAIL_SIZE_LIMIT,
)


class ConfigurationError(ValueError):
    """Raised when a setting is missing or malformed"""


@dataclass
class PolicyConfig:
    """Size ceilings applied around the parser"""
    email_size_limit: int = DEFAULT_EMAIL_SIZE_LIMIT
    attachment_size_limit: int = DEFAULT_ATTACHMENT_SIZE_LIMIT


@dataclass
class StorageConfig:
    """Configuration for the storage targets"""
    database_url: Optional[str] = None
    file_enabled: bool = True
    file_dir: str = "emails"
    file_attachments: bool = False
    webhook_enabled: bool = False
    webhook_url: Optional[str] = None
    webhook_timeout: int = 10


@dataclass
class SystemConfig:
    """Configuration for system settings"""
    log_level: str = "INFO"
    log_file: str = "logs/mailsink.log"
    log_format: str = "text"
    reprocess_batch_size: int = 500


class Config:
    """Main configuration class"""

    def __init__(self, env_file: str = ".env"):
        """
        Initialize configuration from environment file

        Values already present in the process environment win over the file.

        Args:
            env_file: Path to environment file (default: .env)
        """
        load_dotenv(env_file)

        self.policy = self._load_policy_config()
        self.storage = self._load_storage_config()
        self.system = self._load_system_config()

    def _load_policy_config(self) -> PolicyConfig:
        """Load size ceilings"""
        return PolicyConfig(
            email_size_limit=self._get_int("EMAIL_SIZE_LIMIT", DEFAULT_EMAIL_SIZE_LIMIT),
            attachment_size_limit=self._get_int("ATTACHMENT_SIZE_LIMIT", DEFAULT_ATTACHMENT_SIZE_LIMIT),
        )

    def _load_storage_config(self) -> StorageConfig:
        """Load storage target configuration"""
        database_url = os.getenv("DATABASE_URL") or os.getenv("DB_URL") or None
        return StorageConfig(
            database_url=database_url,
            file_enabled=self._get_bool("FILE_STORAGE_ENABLED", True),
            file_dir=os.getenv("FILE_STORAGE_DIR", "emails"),
            file_attachments=self._get_bool("FILE_STORAGE_ATTACHMENTS", False),
            webhook_enabled=self._get_bool("WEBHOOK_ENABLED", False),
            webhook_url=os.getenv("WEBHOOK_URL"),
            webhook_timeout=self._get_int("WEBHOOK_TIMEOUT", 10),
        )

    def _load_system_config(self) -> SystemConfig:
        """Load system configuration"""
        return SystemConfig(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE", "logs/mailsink.log"),
            log_format=os.getenv("LOG_FORMAT", "text").lower(),
            reprocess_batch_size=self._get_int("REPROCESS_BATCH_SIZE", 500),
        )

    @staticmethod
    def _get_bool(key: str, default: bool = False) -> bool:
        """Convert environment variable to boolean"""
        value = os.getenv(key, str(default)).lower()
        return value in ('true', '1', 'yes', 'on')

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Convert environment variable to int, rejecting garbage loudly"""
        value = os.getenv(key)
        if value is None or value.strip() == "":
            return default
        try:
            return int(value.strip())
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {value!r}")

    def validate(self) -> bool:
        """
        Validate configuration

        Returns:
            True if configuration is valid

        Raises:
            ConfigurationError: If configuration is invalid
        """
        if self.policy.email_size_limit <= 0:
            raise ConfigurationError("EMAIL_SIZE_LIMIT must be positive")

        if self.policy.attachment_size_limit <= 0:
            raise ConfigurationError("ATTACHMENT_SIZE_LIMIT must be positive")

        if self.storage.webhook_enabled and not self.storage.webhook_url:
            raise ConfigurationError("Webhook enabled but no URL provided")

        if self.system.log_format not in ("text", "json"):
            raise ConfigurationError("LOG_FORMAT must be 'text' or 'json'")

        if not (self.storage.database_url or self.storage.file_enabled or self.storage.webhook_enabled):
            raise ConfigurationError("No storage target configured. Enable at least one.")

        return True
