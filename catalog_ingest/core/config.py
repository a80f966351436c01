"""
Ingestion settings.

Values come from defaults, then an optional YAML file named by
CATALOG_CONFIG_FILE (``ingestion:`` section), then CATALOG_* environment
variables. Thresholds are tunables and none of them is load-bearing for
correctness.
"""
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, model_validator

ENV_PREFIX = "CATALOG_"


class IngestionSettings(BaseModel):
    """
    Tunables for chunking, writes, aggregation polling and enrichment.

    Attributes:
        large_file_bytes: Files larger than this are always chunked
        direct_row_limit: Files with more data rows than this are chunked
        chunk_size: Data rows per chunk
        part_batch_size: Parts per upsert batch
        attribute_batch_size: Attribute rows per insert batch
        chunk_stagger_seconds: Dispatch delay multiplier per chunk sequence
        chunk_max_attempts: Queue attempts before a chunk is left failed
        chunk_time_limit_seconds: Hard wall-clock limit for one chunk task
        chunk_retry_delay_seconds: First backoff step before a failed chunk is retried
        chunks_per_minute_estimate: Used to pick the first aggregation delay
        aggregation_base_delay_seconds: First backoff step of aggregator polling
        aggregation_max_delay_seconds: Backoff cap of aggregator polling
        aggregation_max_wait_seconds: Wall-clock cap before an upload is declared stuck
        enrichment_batch_size: Records per external matcher call
        enrichment_batch_delay_seconds: Pause between matcher calls
    """

    large_file_bytes: int = Field(default=10 * 1024 * 1024, gt=0)
    direct_row_limit: int = Field(default=100, ge=0)
    chunk_size: int = Field(default=500, gt=0)
    part_batch_size: int = Field(default=500, gt=0)
    attribute_batch_size: int = Field(default=1000, gt=0)

    chunk_stagger_seconds: int = Field(default=2, ge=0)
    chunk_max_attempts: int = Field(default=3, ge=1)
    chunk_time_limit_seconds: int = Field(default=600, gt=0)
    chunk_retry_delay_seconds: int = Field(default=30, ge=0)

    chunks_per_minute_estimate: int = Field(default=10, gt=0)
    aggregation_base_delay_seconds: int = Field(default=60, gt=0)
    aggregation_max_delay_seconds: int = Field(default=300, gt=0)
    aggregation_max_wait_seconds: int = Field(default=6 * 3600, gt=0)

    enrichment_batch_size: int = Field(default=20, gt=0)
    enrichment_batch_delay_seconds: float = Field(default=0.25, ge=0)
    matcher_url: str | None = None
    matcher_timeout_seconds: float = Field(default=30.0, gt=0)

    blob_backend: Literal["local", "s3"] = "local"
    blob_root: str = "/var/lib/catalog-ingest/blobs"
    s3_bucket: str | None = None
    aws_region: str = "us-east-1"

    mapping_file: str | None = None
    broker_url: str = "redis://localhost:6379/0"
    result_backend: str | None = None

    @model_validator(mode="after")
    def check_cross_field_rules(self) -> "IngestionSettings":
        """Backoff cap must cover the first step; S3 needs a bucket."""
        if self.aggregation_max_delay_seconds < self.aggregation_base_delay_seconds:
            raise ValueError(
                "aggregation_max_delay_seconds must be >= aggregation_base_delay_seconds"
            )
        if self.blob_backend == "s3" and not self.s3_bucket:
            raise ValueError("s3_bucket is required when blob_backend is 's3'")
        return self

    @classmethod
    def from_env(cls, overrides: dict[str, Any] | None = None) -> "IngestionSettings":
        """
        Build settings from an optional YAML file and the environment.

        Args:
            overrides: Values applied last (mainly for tests and the CLI)

        Returns:
            Validated IngestionSettings instance
        """
        values: dict[str, Any] = {}

        config_file = os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
        if config_file:
            values.update(load_yaml_settings(config_file))

        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw

        if overrides:
            values.update(overrides)

        return cls(**values)


def load_yaml_settings(path: str | Path) -> dict[str, Any]:
    """
    Read the ``ingestion`` section of a YAML settings file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file has no ``ingestion`` mapping
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    with open(config_path) as f:
        config = yaml.safe_load(f) or {}

    section = config.get("ingestion")
    if not isinstance(section, dict):
        raise ValueError("Settings file must contain an 'ingestion' mapping")
    return section
