"""Configuration management using Pydantic Settings."""

import os
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import TargetConfig, TargetKind
from .translation import DEFAULT_DESCRIPTION_NOTE, DEFAULT_PLACEHOLDER_TITLE


class ConfigurationError(Exception):
    """Required configuration is missing or inconsistent; fatal at startup."""
    pass


class SyncConfiguration(BaseModel):
    """Sync behaviour settings."""

    sync_interval_minutes: int = Field(30, ge=1)
    sync_past_days: int = Field(7, ge=0)
    sync_future_days: int = Field(30, ge=0)

    event_prefix: str = Field("", description="Prepended to every mirrored title")
    placeholder_title: str = Field(DEFAULT_PLACEHOLDER_TITLE, description="Title for events without one")
    description_note: str = Field(DEFAULT_DESCRIPTION_NOTE, description="Appended to every mirrored description")

    operation_delay_seconds: float = Field(0.1, ge=0, description="Pause between calls to the same target")
    retry_backoff_seconds: float = Field(1.0, ge=0, description="Wait before retrying a rate-limited call")
    retry_attempts: int = Field(1, ge=0, le=5, description="Retries after a rate-limited call")
    persist_each_operation: bool = Field(
        False, description="Save the mapping store after every change instead of once per pass"
    )


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        secrets_dir=os.getenv("SECRETS_DIR", "/run/secrets")
    )

    # Source calendar
    source_calendar_id: str = Field(
        "",
        validation_alias=AliasChoices("source_calendar_id", "work_calendar_id"),
        description="Google calendar ID of the source calendar"
    )
    source_token_path: Optional[Path] = Field(
        None,
        validation_alias=AliasChoices("source_token_path", "work_token_path"),
        description="Token file for the source account (defaults to credentials_dir/source_token.json)"
    )

    # Targets
    targets: List[TargetConfig] = Field(default_factory=list, description="Target calendars")
    personal_calendar_id: Optional[str] = Field(
        None, description="Shorthand for a single Google target named 'personal'"
    )
    personal_token_path: Optional[Path] = Field(None)

    # Google OAuth client
    google_client_secrets_file: Path = Field(
        default=Path("oauth2credentials.json"),
        description="OAuth client secrets downloaded from the Google console"
    )
    google_scopes: List[str] = Field(
        default=["https://www.googleapis.com/auth/calendar"],
        description="Google API scopes"
    )

    # Application Configuration
    app_name: str = Field(default="calmirror", description="Application name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")
    request_timeout_seconds: int = Field(default=30, ge=5, le=300, description="HTTP request timeout")

    # Storage Configuration
    data_dir: Path = Field(
        default_factory=lambda: Path.home() / ".calmirror",
        description="Application data directory"
    )
    credentials_dir: Optional[Path] = Field(
        default=None,
        description="Credentials directory (defaults to data_dir/credentials)"
    )

    sync_config: SyncConfiguration = Field(
        default_factory=SyncConfiguration,
        description="Synchronization settings"
    )

    @validator('data_dir', 'credentials_dir', 'google_client_secrets_file', pre=True)
    def expand_path(cls, v):
        """Expand user paths and convert to Path objects."""
        if v is None:
            return v
        return Path(v).expanduser()

    @validator('log_level')
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @validator('targets')
    def validate_unique_targets(cls, v):
        """Two targets must never share a name."""
        names = [t.name for t in v]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate target names found in targets")
        return v

    def ensure_directories(self):
        """Create necessary directories with proper permissions."""
        self.data_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        self.credentials_path.mkdir(parents=True, exist_ok=True, mode=0o700)

    @property
    def credentials_path(self) -> Path:
        """Credentials directory, defaulting to data_dir/credentials."""
        return self.credentials_dir or self.data_dir / "credentials"

    @property
    def resolved_source_token_path(self) -> Path:
        if self.source_token_path:
            return Path(self.source_token_path).expanduser()
        return self.credentials_path / "source_token.json"

    def get_active_targets(self) -> List[TargetConfig]:
        """Enabled targets, including the ``personal_calendar_id`` shorthand."""
        targets = [t for t in self.targets if t.enabled]
        if self.personal_calendar_id and not any(t.name == "personal" for t in self.targets):
            targets.append(TargetConfig(
                name="personal",
                kind=TargetKind.GOOGLE,
                calendar_id=self.personal_calendar_id,
                token_path=self.personal_token_path,
                mapping_file=self.data_dir / "synced_events.json",
            ))
        return targets

    def mapping_file_for(self, target: TargetConfig) -> Path:
        if target.mapping_file:
            return Path(target.mapping_file).expanduser()
        return self.data_dir / "mappings" / f"{target.name}.json"

    def token_path_for(self, target: TargetConfig) -> Path:
        if target.token_path:
            return Path(target.token_path).expanduser()
        return self.credentials_path / f"{target.name}_token.json"

    def validate_required_settings(self) -> List[str]:
        """Validate required settings and return list of missing fields."""
        missing = []

        if not self.source_calendar_id:
            missing.append('SOURCE_CALENDAR_ID')

        targets = self.get_active_targets()
        if not targets:
            missing.append('TARGETS or PERSONAL_CALENDAR_ID')
        for target in targets:
            missing.extend(f"TARGETS[{target.name}].{field}" for field in target.missing_fields())

        return missing

    def require_complete(self) -> None:
        """Raise if the configuration cannot support a sync pass.

        Raises:
            ConfigurationError: If any required value is missing
        """
        missing = self.validate_required_settings()
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


def load_settings(config_file: Optional[str] = None) -> Settings:
    """Load application settings.

    Args:
        config_file: Optional path to a .env style configuration file

    Returns:
        Settings instance
    """
    if config_file:
        settings = Settings(_env_file=config_file)
    else:
        settings = Settings()
    settings.ensure_directories()
    return settings


def create_example_config(path: Path) -> None:
    """Create an example configuration file.

    Args:
        path: Path to create the example config file
    """
    example_content = '''# calmirror configuration
# Copy this file to .env and fill in your calendars

# Source calendar (Google). WORK_CALENDAR_ID is accepted as well.
SOURCE_CALENDAR_ID=you@work.example.com
# SOURCE_TOKEN_PATH=~/.calmirror/credentials/source_token.json

# OAuth client secrets from the Google Cloud console
GOOGLE_CLIENT_SECRETS_FILE=oauth2credentials.json

# Shorthand for a single Google target called "personal"
PERSONAL_CALENDAR_ID=you@gmail.com
# PERSONAL_TOKEN_PATH=~/.calmirror/credentials/personal_token.json

# Any number of targets as a JSON array. kind is "google" or "caldav".
# TARGETS=[{"name": "nextcloud", "kind": "caldav", "calendar_id": "Work (mirror)",
#           "caldav_url": "https://cloud.example.com/remote.php/dav",
#           "caldav_username": "me", "caldav_password": "app-password"}]

# Sync Configuration
SYNC_CONFIG__SYNC_INTERVAL_MINUTES=30
SYNC_CONFIG__SYNC_PAST_DAYS=7
SYNC_CONFIG__SYNC_FUTURE_DAYS=30
SYNC_CONFIG__EVENT_PREFIX=
SYNC_CONFIG__OPERATION_DELAY_SECONDS=0.1
SYNC_CONFIG__RETRY_BACKOFF_SECONDS=1
SYNC_CONFIG__PERSIST_EACH_OPERATION=false

# Application Configuration
DEBUG=false
LOG_LEVEL=INFO
# DATA_DIR=~/.calmirror
'''

    with open(path, 'w') as f:
        f.write(example_content)
