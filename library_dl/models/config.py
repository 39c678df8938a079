"""
Pydantic models for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_DOWNLOAD_PATH = "downloads"
DEFAULT_STORAGE_ROOT = "storage"
DEFAULT_PAGE_SIZE = 100
MAX_PARALLEL_LIMIT = 10

# Setting-table names in the document store, mapped to config fields
STORE_SETTING_KEYS = {
    "download_path": "DownloadPath",
    "storage_location": "StorageLocation",
    "storage_root": "NAS_Storage",
}

DATABASE_STORAGE_VALUES = ("DATABASE", "DB")


class DownloadConfig(BaseModel):
    """A validated configuration model for the application."""

    # Data source
    connection_url: str = ""

    # Download Settings
    download_path: str = ""
    max_workers: int = 4
    page_size: int = DEFAULT_PAGE_SIZE

    # File storage of the document store
    storage_location: str = ""
    storage_root: str = ""

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    class Config:
        """Pydantic model configuration."""

        validate_assignment = True
        str_strip_whitespace = True

    @field_validator("connection_url")
    @classmethod
    def validate_connection_url(cls, v: str) -> str:
        """Rejects missing or placeholder connection strings."""
        if not v:
            raise ValueError(
                "Connection URL is not configured. Run 'library-dl init' first."
            )
        if "YOUR_" in v:
            raise ValueError(
                "Connection URL still contains a placeholder value. "
                "Update 'connection_url' in the config file."
            )
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > MAX_PARALLEL_LIMIT:
            raise ValueError(
                f"Max workers must be between 1 and {MAX_PARALLEL_LIMIT}."
            )
        return v

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Page size must be a positive integer.")
        return v

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}


class RunSettings(BaseModel):
    """
    Settings resolved once at the start of a download run and passed
    explicitly to the components that need them.
    """

    download_path: Path
    store_files_in_db: bool = True
    storage_root: Path = Path(DEFAULT_STORAGE_ROOT)

    @classmethod
    def resolve(
        cls, store_settings: dict[str, str] | None, config: DownloadConfig | None
    ) -> "RunSettings":
        """
        Resolves each setting from the document store's Setting table first,
        then the INI configuration, then the hard default.
        """
        store_settings = store_settings or {}

        def pick(field: str, default: str) -> str:
            store_value = store_settings.get(STORE_SETTING_KEYS[field])
            if store_value:
                return store_value
            config_value = getattr(config, field, "") if config else ""
            return config_value or default

        storage_location = pick("storage_location", "")
        return cls(
            download_path=Path(pick("download_path", DEFAULT_DOWNLOAD_PATH)),
            store_files_in_db=is_database_storage(storage_location),
            storage_root=Path(pick("storage_root", DEFAULT_STORAGE_ROOT)),
        )

    def describe(self) -> dict[str, Any]:
        return {
            "download_path": str(self.download_path),
            "file_storage": "Database" if self.store_files_in_db else "File System",
            "storage_root": str(self.storage_root),
        }


def is_database_storage(storage_location: str | None) -> bool:
    """An empty storage location means payloads live in the database."""
    if not storage_location:
        return True
    return storage_location.strip().upper() in DATABASE_STORAGE_VALUES
