"""Typed view over the merged YAML/DEFAULTS config dict."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field, model_validator

from .utils.conf import load_config


class ChunkingSettings(BaseModel):
    chunk_size: int = Field(400, gt=0)
    overlap: int = Field(50, ge=0)
    min_chunk_size: int = Field(100, gt=0)
    sentence_lookback: int = Field(50, ge=0)


class IngestionSettings(BaseModel):
    threads: Union[int, str] = "auto"       # "auto" | explicit count
    strategy: Literal["sequential", "parallel"] = "sequential"
    job_workers: int = Field(2, gt=0)
    job_queue: int = Field(10, ge=0)
    worker_queue: int = Field(1000, ge=0)
    submit_timeout: float = Field(300.0, ge=0)
    progress_every: int = Field(10, gt=0)
    max_tracked_jobs: Optional[int] = Field(1000, gt=0)


class ExportSettings(BaseModel):
    enabled: bool = True
    path: Path


class ArxivSettings(BaseModel):
    api_url: str
    pdf_base: str
    page_size: int = Field(2000, gt=0)
    api_delay: float = Field(3.0, ge=0)
    download_delay: float = Field(1.0, ge=0)
    connect_timeout: float = Field(30.0, gt=0)
    read_timeout: float = Field(120.0, gt=0)
    max_retries: int = Field(3, ge=0)
    verify_ssl: bool = True

    @model_validator(mode="after")
    def _pdf_base_slash(self) -> "ArxivSettings":
        if not self.pdf_base.endswith("/"):
            self.pdf_base += "/"
        return self


class StorageSettings(BaseModel):
    db_url: str
    index_path: Path
    upload_dir: Path


class Settings(BaseModel):
    chunking: ChunkingSettings
    ingestion: IngestionSettings
    export: ExportSettings
    arxiv: ArxivSettings
    storage: StorageSettings

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "Settings":
        return cls.model_validate(cfg)


def load_settings(path: str | Path | None = None) -> Settings:
    return Settings.from_dict(load_config(path))


def resolve_thread_count(threads: Union[int, str]) -> int:
    """Worker pool size: "auto" -> max(2, cores - 2); explicit values are floored at 2."""
    if isinstance(threads, str) and threads.strip().lower() != "auto":
        try:
            threads = int(threads)
        except ValueError:
            logger.warning(f"Invalid thread config '{threads}', falling back to auto")
            threads = "auto"
    if isinstance(threads, int):
        count = max(2, threads)
        logger.info(f"Using ingestion threads: {count} (configured)")
        return count
    cores = os.cpu_count() or 1
    count = max(2, cores - 2)
    logger.info(f"Detected CPU cores: {cores}; using ingestion threads: {count}")
    return count
