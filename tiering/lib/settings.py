"""Settings and job file loading.

Settings come from ``TIERING_*`` environment variables (or a .env file) via
pydantic-settings. A settings object is passed explicitly to every entry
point; nothing reads the environment behind the caller's back.

Job files list the tables to synchronise::

    jobs:
      - object_name: "[dbo].[FactInternetSales]"
        partition_date_column: OrderDate
        create: true
        date_from: 2013-12-01
"""

from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tiering.lib.env import expand_references
from tiering.lib.errors import ConfigurationError
from tiering.lib.models import DateRange, StorageTarget
from tiering.lib.resilience import RetryConfig

logger = logging.getLogger(__name__)

__all__ = ["TieringSettings", "SyncJobConfig", "JobsFile", "load_jobs_file"]

ENV_PREFIX = "TIERING_"


class TieringSettings(BaseSettings):
    """Environment-based settings.

    Example:
        >>> # TIERING_STORAGE_ACCOUNT=contosolake
        >>> # TIERING_CONTAINER=archive
        >>> # TIERING_DATABASE=AdventureWorksDW
        >>> settings = TieringSettings()
        >>> settings.storage_target().data_source_name
        'contosolake-archive-AdventureWorksDW'
    """

    connection_string: Optional[SecretStr] = Field(default=None, description="ODBC connection string")
    storage_account: Optional[str] = Field(default=None, description="Blob storage account name")
    container: Optional[str] = Field(default=None, description="Blob container name")
    database: Optional[str] = Field(default=None, description="Folder that namespaces source-table exports")
    data_source_name: Optional[str] = Field(default=None, description="Override the derived external data source name")
    file_format_name: str = Field(default="ParquetFileFormat", description="External file format name")
    file_extension: str = Field(default="parquet", description="Extension of data files")
    default_schema: str = Field(default="dbo", description="Schema for one-part object names")
    query_timeout: int = Field(default=0, ge=0, description="Query timeout in seconds (0 = none)")
    probe_max_attempts: int = Field(default=3, ge=1, le=10, description="Attempts for the target probe")
    probe_backoff_seconds: float = Field(default=1.0, ge=0.0, le=60.0, description="Probe retry delay")
    master_key_password: Optional[SecretStr] = Field(default=None, description="Database master key password")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="console", description="Log format: 'json' or 'console'")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = ["json", "console"]
        if v.lower() not in valid_formats:
            raise ValueError(f"log_format must be one of: {valid_formats}")
        return v.lower()

    def require(self, name: str) -> str:
        """Return a setting's value or raise ConfigurationError naming its variable."""
        value = getattr(self, name)
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        if not value:
            env_var = f"{ENV_PREFIX}{name.upper()}"
            raise ConfigurationError(
                f"{env_var} is not set",
                field=name,
                suggestion=f"Export {env_var} or add it to your .env file",
            )
        return str(value)

    def storage_target(self, namespaced: bool = True) -> StorageTarget:
        """Storage addressing for external data sources.

        Args:
            namespaced: Scope to the database folder (source-table exports);
                False addresses the container root (sampled paths)
        """
        return StorageTarget(
            account=self.require("storage_account"),
            container=self.require("container"),
            namespace=self.require("database") if namespaced else None,
        )

    def data_source_for(self, namespaced: bool = True) -> str:
        if self.data_source_name:
            return self.data_source_name
        return self.storage_target(namespaced=namespaced).data_source_name

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.probe_max_attempts,
            backoff_seconds=self.probe_backoff_seconds,
        )


class SyncJobConfig(BaseModel):
    """One table to synchronise."""

    object_name: str = Field(..., min_length=1, description="Source table, e.g. dbo.FactInternetSales")
    partition_date_column: str = Field(..., min_length=1, description="Date column to partition by")
    create: bool = Field(default=False, description="(Re)create the external table before syncing")
    drop_existing: bool = Field(default=True, description="Drop an existing definition when creating")
    date_from: Optional[date] = Field(default=None, description="First date to synchronise (inclusive)")
    date_to: Optional[date] = Field(default=None, description="Last date to synchronise (inclusive)")

    @model_validator(mode="after")
    def check_range(self) -> "SyncJobConfig":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.date_from, self.date_to)


class JobsFile(BaseModel):
    jobs: List[SyncJobConfig] = Field(..., min_length=1)


def load_jobs_file(path: Union[str, Path]) -> List[SyncJobConfig]:
    """Load and validate a YAML job file, expanding ${VAR} references.

    Raises:
        ConfigurationError: If the file is missing, not YAML, or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Job file not found: {path}", field="jobs_file", value=str(path))

    try:
        with path.open(encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Job file is not valid YAML: {e}", field="jobs_file", value=str(path)) from e

    if not isinstance(raw, dict):
        raise ConfigurationError(
            "Job file must be a mapping with a 'jobs' list",
            field="jobs_file",
            value=str(path),
        )

    try:
        jobs_file = JobsFile.model_validate(expand_references(raw))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid job file: {e.error_count()} error(s)",
            field="jobs_file",
            value=str(path),
            details={"errors": "; ".join(err["msg"] for err in e.errors())},
        ) from e

    logger.debug("Loaded %d job(s) from %s", len(jobs_file.jobs), path)
    return jobs_file.jobs
