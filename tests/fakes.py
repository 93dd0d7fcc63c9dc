import threading
import time
from pathlib import Path

from pdf_ingest.db.schema import PaperInfo
from pdf_ingest.fetch.arxiv import FetchError
from pdf_ingest.pipeline.jobs import JobStatus
from pdf_ingest.preprocess.extract import ExtractionError
from pdf_ingest.preprocess.models import ExtractedDocument

CORRUPT = "%CORRUPT"
PAGE_BREAK = "\f"


def words(n: int, stem: str = "w") -> str:
    return " ".join(f"{stem}{i}" for i in range(n))


class FakeExtractor:
    """Treats the "PDF" as UTF-8 text, one page per form feed."""

    def __init__(self, title: str | None = None, author: str | None = None,
                 gate: threading.Event | None = None) -> None:
        self.title = title
        self.author = author
        self.gate = gate
        self.calls: list[Path] = []

    def __call__(self, path: Path) -> ExtractedDocument:
        self.calls.append(path)
        if self.gate is not None:
            self.gate.wait(timeout=10)
        text = Path(path).read_text(encoding="utf-8")
        if text.startswith(CORRUPT):
            raise ExtractionError(f"failed to extract {Path(path).name}: broken xref table")
        return ExtractedDocument(pages=text.split(PAGE_BREAK), title=self.title, author=self.author)


class FakeFetcher:
    def __init__(self, papers: list[PaperInfo] | None = None) -> None:
        self.papers = papers or []
        self.bodies: dict[str, str] = {}
        self.search_error: Exception | None = None
        self.downloaded: list[Path] = []
        self.urls: list[str | None] = []
        self.closed = False

    def search_by_category(self, category: str, max_results: int) -> list[PaperInfo]:
        if self.search_error is not None:
            raise self.search_error
        return self.papers[:max_results]

    def download_pdf(self, paper_id: str, target_dir: Path, pdf_url: str | None = None) -> Path:
        self.urls.append(pdf_url)
        if paper_id.startswith("missing"):
            raise FetchError(f"HTTP 404 downloading {paper_id}")
        path = Path(target_dir) / (paper_id.replace("/", "_") + ".pdf")
        path.write_text(self.bodies.get(paper_id, words(250, stem="p")), encoding="utf-8")
        self.downloaded.append(path)
        return path

    def close(self) -> None:
        self.closed = True


def wait_for(orchestrator, job_id: str, timeout: float = 10.0) -> JobStatus:
    deadline = time.monotonic() + timeout
    status = orchestrator.get_status(job_id)
    while not status.is_terminal:
        if time.monotonic() > deadline:
            raise AssertionError(f"job {job_id} still {status.status.value} after {timeout}s")
        time.sleep(0.02)
    return status
