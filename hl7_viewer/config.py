"""
Configuration management for the HL7 Viewer service.

All settings come from environment variables, optionally seeded from a local
.env file. Nothing is required; defaults serve the viewer on
http://localhost:3003/HL7/.
"""

import os
from pathlib import Path


class ConfigError(Exception):
    """Raised when configuration is invalid."""
    pass


class Config:
    """
    Environment-driven configuration.

    Values are validated once at construction so a bad deployment fails at
    startup instead of on the first request.
    """

    VALID_LOG_LEVELS = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}

    def __init__(self):
        """Initialize and validate configuration."""
        self._load_environment()
        self._set_defaults()
        self._validate()

    def _load_environment(self):
        """Load configuration from environment variables."""

        # Environment Settings
        self.FLASK_ENV = os.getenv('FLASK_ENV', 'production')
        self.FLASK_DEBUG = self._get_bool('FLASK_DEBUG', False)
        self.TESTING = self._get_bool('TESTING', False)

        # Server Settings
        self.HOST = os.getenv('HOST', 'localhost')
        self.PORT = self._get_int('PORT', 3003)
        self.BASE_PATH = os.getenv('BASE_PATH', '/HL7').rstrip('/') or '/HL7'

        # Logging
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

        # Upper bound on pasted/uploaded HL7 text
        self.MAX_UPLOAD_MB = self._get_int('MAX_UPLOAD_MB', 16)

    def _set_defaults(self):
        """Derive Flask settings."""

        # Debug mode only in development
        if self.FLASK_ENV != 'development':
            self.FLASK_DEBUG = False

        self.MAX_CONTENT_LENGTH = self.MAX_UPLOAD_MB * 1024 * 1024

        # Query results contain clinical data
        self.SEND_FILE_MAX_AGE_DEFAULT = 0
        self.JSON_SORT_KEYS = False

    def _validate(self):
        """Validate settings."""

        if self.LOG_LEVEL not in self.VALID_LOG_LEVELS:
            raise ConfigError(f"LOG_LEVEL must be one of {sorted(self.VALID_LOG_LEVELS)}")

        if not (1 <= self.PORT <= 65535):
            raise ConfigError(f"PORT must be between 1 and 65535: {self.PORT}")

        if not self.BASE_PATH.startswith('/'):
            raise ConfigError(f"BASE_PATH must start with '/': {self.BASE_PATH}")

        if not (1 <= self.MAX_UPLOAD_MB <= 512):
            raise ConfigError(f"MAX_UPLOAD_MB must be between 1 and 512: {self.MAX_UPLOAD_MB}")

    def _get_bool(self, key: str, default: bool = False) -> bool:
        """Get boolean environment variable."""
        value = os.getenv(key, '').lower()
        if value in ('true', '1', 'yes', 'on'):
            return True
        elif value in ('false', '0', 'no', 'off'):
            return False
        return default

    def _get_int(self, key: str, default: int) -> int:
        """Get integer environment variable."""
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError:
            raise ConfigError(f"Environment variable '{key}' must be an integer: {value}")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.FLASK_ENV == 'development'

    def __repr__(self) -> str:
        safe_attrs = ['FLASK_ENV', 'HOST', 'PORT', 'BASE_PATH', 'LOG_LEVEL', 'MAX_UPLOAD_MB']
        attrs = [f"{attr}={getattr(self, attr)!r}" for attr in safe_attrs]
        return f"<Config({', '.join(attrs)})>"


def load_config() -> Config:
    """
    Load and validate configuration.

    Returns:
        Validated configuration instance

    Raises:
        ConfigError: If configuration is invalid
    """
    return Config()


def load_dotenv_if_exists(dotenv_path: str = '.env') -> bool:
    """
    Load .env file if it exists.

    Variables already present in the environment win over the file.

    Args:
        dotenv_path: Path to .env file

    Returns:
        True if file was loaded, False otherwise
    """
    env_file = Path(dotenv_path)

    if not env_file.exists():
        return False

    with open(env_file, 'r') as f:
        for line in f:
            line = line.strip()

            # Skip empty lines and comments
            if not line or line.startswith('#'):
                continue

            if '=' in line:
                key, value = line.split('=', 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")

                if key not in os.environ:
                    os.environ[key] = value

    return True
