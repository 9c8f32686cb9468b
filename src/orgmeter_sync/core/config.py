"""Configuration management for the OrgMeter sync service."""

import os
import logging
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from ..exceptions import ConfigurationError


def setup_logging(level: str = "INFO") -> None:
    """Set up logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def load_environment(env_file: Optional[str] = None) -> None:
    """Load environment variables from .env file.

    Args:
        env_file: Path to .env file. If None, looks for .env in current directory.
    """
    env_path = Path(env_file) if env_file else Path('.env')

    if env_path.exists():
        load_dotenv(env_path)
        logging.info(f"Loaded environment from {env_path}")
    else:
        logging.warning(f"No .env file found at {env_path}")


def get_required_env(key: str) -> str:
    """Get a required environment variable.

    Args:
        key: Environment variable name

    Returns:
        Environment variable value

    Raises:
        ConfigurationError: If the environment variable is not set
    """
    value = os.getenv(key)
    if not value:
        raise ConfigurationError(f"Required environment variable {key} is not set")
    return value


def get_optional_env(key: str, default: str = "") -> str:
    """Get an optional environment variable.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value or default
    """
    return os.getenv(key, default)


class SyncSettings(BaseModel):
    """Runtime settings shared by the CLI and the HTTP API."""
    project_id: Optional[str] = Field(None, description="Google Cloud project holding the Firestore database")
    funder_id: Optional[str] = Field(None, description="Default funder scope for sync runs")
    sync_user: Optional[str] = Field(None, description="Actor recorded as lastSyncedBy")
    collection_prefix: str = Field("", description="Prefix applied to every collection name")

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Build settings from the process environment."""
        return cls(
            project_id=get_optional_env("GOOGLE_CLOUD_PROJECT") or None,
            funder_id=get_optional_env("ORGMETER_FUNDER_ID") or None,
            sync_user=get_optional_env("ORGMETER_SYNC_USER") or None,
            collection_prefix=get_optional_env("ORGMETER_COLLECTION_PREFIX"),
        )

    def require_funder(self, funder_id: Optional[str] = None) -> str:
        """Return the explicit funder id or the configured default."""
        resolved = funder_id or self.funder_id
        if not resolved:
            raise ConfigurationError("No funder id given and ORGMETER_FUNDER_ID is not set")
        return resolved
