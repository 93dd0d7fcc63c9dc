# pdf_ingest/utils/conf.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict

import yaml
from loguru import logger

from ..config import ARXIV_API, ARXIV_PDF_BASE, DB_URL, EXPORT_DIR, INDEX_PATH, UPLOAD_DIR

DEFAULTS: Dict[str, Any] = {
    "chunking": {
        "chunk_size": 400, "overlap": 50, "min_chunk_size": 100,
        "sentence_lookback": 50,
    },
    "ingestion": {
        "threads": "auto", "strategy": "sequential",
        "job_workers": 2, "job_queue": 10,
        "worker_queue": 1000, "submit_timeout": 300.0,
        "progress_every": 10, "max_tracked_jobs": 1000,
    },
    "export": {"enabled": True, "path": str(EXPORT_DIR)},
    "arxiv": {
        "api_url": ARXIV_API, "pdf_base": ARXIV_PDF_BASE,
        "page_size": 2000, "api_delay": 3.0, "download_delay": 1.0,
        "connect_timeout": 30.0, "read_timeout": 120.0,
        "max_retries": 3, "verify_ssl": True,
    },
    "storage": {
        "db_url": DB_URL, "index_path": str(INDEX_PATH),
        "upload_dir": str(UPLOAD_DIR),
    },
}

def deep_update(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_update(out[k], v)
        else:
            out[k] = v
    return out

def load_config(path: str | Path | None) -> Dict[str, Any]:
    if not path:
        return DEFAULTS
    p = Path(path).expanduser()
    if not p.exists():
        logger.warning(f"Config file {p} not found, using built-in defaults")
        return DEFAULTS
    data = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    logger.info(f"Loaded config overrides from {p}: {sorted(data)}")
    return deep_update(DEFAULTS, data)
