import os
from pathlib import Path

PKG_DIR = Path(__file__).resolve().parent           # …/pdf_ingest
PROJECT_ROOT = PKG_DIR.parent

DATA_DIR = Path(os.getenv("PDF_INGEST_DATA_DIR", PROJECT_ROOT / "data"))
LOG_DIR  = Path(os.getenv("PDF_INGEST_LOG_DIR", PROJECT_ROOT / "logs"))
CONFIG_PATH = os.getenv("PDF_INGEST_CONFIG")

DB_URL     = os.getenv("PDF_INGEST_DB_URL", f"sqlite:///{DATA_DIR / 'ingest.db'}")
INDEX_PATH = DATA_DIR / "fts_index.db"
EXPORT_DIR = DATA_DIR / "chunk-exports"
UPLOAD_DIR = DATA_DIR / "uploads"

ARXIV_API = "https://export.arxiv.org/api/query"
ARXIV_PDF_BASE = "https://arxiv.org/pdf/"
