"""Configuration module for the penvault note vault."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from penvault import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config: lives alongside the default database
_USER_ENV = Path.home() / ".penvault" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)

# Newly written envelopes never use fewer PBKDF2 iterations than this.
MIN_KDF_ITERATIONS = 150_000
DEFAULT_KDF_ITERATIONS = 200_000

# Readers refuse work factors above this (a hostile file could otherwise
# pin the CPU for minutes before failing).
MAX_KDF_ITERATIONS = 10_000_000

# 24 KiB: a multiple of 3 so base64 chunks concatenate without padding
DEFAULT_B64_CHUNK_SIZE = 24 * 1024


class VaultConfig(BaseModel):
    """Configuration for the note vault."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("PENVAULT_BASE_DIR", str(Path.home() / ".penvault"))
        )
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("PENVAULT_DATABASE_PATH", "data/penvault.db")
        )
    )
    # Backups written by BackupManager
    backup_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PENVAULT_BACKUP_DIR", "backups"))
    )
    # Rotating log files
    log_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("PENVAULT_LOG_DIR", "logs"))
    )
    # Work factor stamped into newly sealed envelopes
    kdf_iterations: int = Field(
        default_factory=lambda: int(
            os.getenv("PENVAULT_KDF_ITERATIONS", str(DEFAULT_KDF_ITERATIONS))
        )
    )
    b64_chunk_size: int = Field(
        default_factory=lambda: int(
            os.getenv("PENVAULT_B64_CHUNK_SIZE", str(DEFAULT_B64_CHUNK_SIZE))
        )
    )
    # Written into the clear-text "app" block of envelopes
    app_name: str = Field(default=os.getenv("PENVAULT_APP_NAME", "penvault"))
    app_version: str = Field(default=__version__)
    bundle_schema: int = Field(default=2)

    @model_validator(mode="after")
    def _validate_crypto_config(self) -> "VaultConfig":
        """Reject work factors that would weaken newly written envelopes."""
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ValueError(
                f"kdf_iterations must be >= {MIN_KDF_ITERATIONS} "
                f"(got {self.kdf_iterations})"
            )
        if self.kdf_iterations > MAX_KDF_ITERATIONS:
            raise ValueError(f"kdf_iterations must be <= {MAX_KDF_ITERATIONS}")
        if self.b64_chunk_size < 3 or self.b64_chunk_size % 3:
            raise ValueError("b64_chunk_size must be a positive multiple of 3")
        if self.kdf_iterations > 1_000_000:
            logger.warning(
                "kdf_iterations=%d: sealing and opening envelopes will be slow",
                self.kdf_iterations,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"

    def get_backup_dir(self) -> Path:
        """Get the absolute backup directory, creating it if needed."""
        backup_dir = self.get_absolute_path(self.backup_dir)
        backup_dir.mkdir(parents=True, exist_ok=True)
        return backup_dir


# Create a global config instance
config = VaultConfig()
