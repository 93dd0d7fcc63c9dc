from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from loguru import logger

from fakes import FakeExtractor, FakeFetcher
from pdf_ingest.db.audit import AuditStore
from pdf_ingest.pipeline.ingest import IngestionPipeline
from pdf_ingest.pipeline.orchestrator import IngestionOrchestrator, build_orchestrator
from pdf_ingest.retrieval.fts import FtsIndex
from pdf_ingest.service import build_services
from pdf_ingest.settings import Settings
from pdf_ingest.utils.conf import DEFAULTS, deep_update
from web.api import create_app


@pytest.fixture
def warnings() -> Iterator[list[str]]:
    messages: list[str] = []
    handler_id = logger.add(messages.append, level="WARNING", format="{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    cfg = deep_update(DEFAULTS, {
        "ingestion": {"threads": 2, "submit_timeout": 5.0},
        "export": {"path": str(tmp_path / "exports")},
        "arxiv": {"api_delay": 0, "download_delay": 0},
        "storage": {
            "db_url": f"sqlite:///{tmp_path / 'audit.db'}",
            "index_path": str(tmp_path / "index.db"),
            "upload_dir": str(tmp_path / "uploads"),
        },
    })
    return Settings.from_dict(cfg)


@pytest.fixture
def index(settings: Settings) -> FtsIndex:
    return FtsIndex(settings.storage.index_path)


@pytest.fixture
def audit(settings: Settings) -> AuditStore:
    return AuditStore(settings.storage.db_url)


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def pipeline(index: FtsIndex, settings: Settings, extractor: FakeExtractor) -> IngestionPipeline:
    return IngestionPipeline(index, settings.chunking, extractor=extractor)


@pytest.fixture
def make_pdf(tmp_path: Path) -> Callable[..., Path]:
    def _make(name: str, text: str, folder: str = "inbox") -> Path:
        d = tmp_path / folder
        d.mkdir(parents=True, exist_ok=True)
        p = d / name
        p.write_text(text, encoding="utf-8")
        return p
    return _make


@pytest.fixture
def orchestrator(settings: Settings, pipeline: IngestionPipeline, audit: AuditStore,
                 fetcher: FakeFetcher) -> Iterator[IngestionOrchestrator]:
    orch = build_orchestrator(settings, pipeline, audit, fetcher=fetcher)
    yield orch
    orch.shutdown()


@pytest.fixture
def client(settings: Settings, extractor: FakeExtractor, fetcher: FakeFetcher) -> Iterator[TestClient]:
    services = build_services(settings, extractor=extractor, fetcher=fetcher)
    with TestClient(create_app(services)) as test_client:
        yield test_client
