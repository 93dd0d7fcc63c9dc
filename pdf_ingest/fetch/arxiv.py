"""arXiv catalog search and PDF download.

Rate limits are respected in two ways: a fixed delay between catalog pages and
between downloads, and exponential backoff (2s, 4s, 8s, ...) when arXiv answers
429/503 or the connection times out. Any other HTTP status fails immediately.
"""
from __future__ import annotations

import re
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import feedparser
import httpx
from loguru import logger
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..db.schema import PaperInfo
from ..settings import ArxivSettings

RETRYABLE_STATUS = (429, 503)
_WS = re.compile(r"\s+")


class FetchError(OSError):
    """Terminal failure talking to arXiv (after retries, or non-retryable)."""


class RetryableFetchError(FetchError):
    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


def _collapse(s: Optional[str]) -> Optional[str]:
    return _WS.sub(" ", s).strip() if s is not None else None


def normalize_pdf_url(url: str) -> str:
    # feed links look like http://arxiv.org/pdf/2401.00001v1
    if "arxiv.org" in url:
        if url.startswith("http://"):
            url = "https://" + url[len("http://"):]
        if "/pdf/" in url and not url.endswith(".pdf"):
            url += ".pdf"
    return url


def parse_atom_feed(xml: str, pdf_base: str = "https://arxiv.org/pdf/") -> List[PaperInfo]:
    feed = feedparser.parse(xml)
    if feed.bozo and not feed.entries and not feed.get("feed"):
        raise FetchError(f"Failed to parse arXiv Atom feed: {feed.get('bozo_exception')}")

    papers = []
    for entry in feed.entries:
        raw_id = entry.get("id", "")
        paper_id = raw_id.rsplit("/abs/", 1)[1] if "/abs/" in raw_id else raw_id
        if not paper_id:
            continue
        authors = ", ".join(a.get("name") for a in entry.get("authors", []) if a.get("name"))
        pdf_url = next(
            (l.get("href") for l in entry.get("links", [])
             if l.get("type") == "application/pdf" or "/pdf/" in (l.get("href") or "")),
            None,
        )
        papers.append(PaperInfo(
            paper_id=paper_id,
            title=_collapse(entry.get("title")),
            authors=authors,
            published=entry.get("published"),
            summary=_collapse(entry.get("summary")),
            pdf_url=pdf_url or f"{pdf_base}{paper_id}.pdf",
        ))
    return papers


class ArxivClient:
    def __init__(self, settings: ArxivSettings, client: httpx.Client | None = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self._sleep = sleep
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(settings.read_timeout, connect=settings.connect_timeout),
            follow_redirects=True,
            verify=settings.verify_ssl,
        )
        self._download_lock = threading.Lock()
        self._last_download: Optional[float] = None
        logger.info(f"ArxivClient ready — connect={settings.connect_timeout}s "
                    f"read={settings.read_timeout}s max_retries={settings.max_retries}")

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # ---------- retry ----------
    def _log_retry(self, state: RetryCallState):
        exc = state.outcome.exception() if state.outcome else None
        wait = state.next_action.sleep if state.next_action else 0
        logger.warning(f"arXiv retry {state.attempt_number}/{self.settings.max_retries} "
                       f"after {exc!r} — waiting {wait:.0f}s")

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type((RetryableFetchError, httpx.TransportError)),
            stop=stop_after_attempt(self.settings.max_retries + 1),
            wait=wait_exponential(multiplier=2, exp_base=2, max=300),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

    def _call(self, fn, *args):
        try:
            return self._retrying()(fn, *args)
        except httpx.TransportError as e:
            raise FetchError(f"arXiv request failed: {e!r}") from e

    @staticmethod
    def _check(resp: httpx.Response, what: str):
        if resp.status_code == 200:
            return
        if resp.status_code in RETRYABLE_STATUS:
            raise RetryableFetchError(f"HTTP {resp.status_code} {what}", resp.status_code)
        raise FetchError(f"HTTP {resp.status_code} {what}")

    # ---------- catalog ----------
    def _get_feed(self, params: dict) -> str:
        resp = self._client.get(self.settings.api_url, params=params)
        self._check(resp, "from arXiv API")
        return resp.text

    def search_by_category(self, category: str, max_results: int) -> List[PaperInfo]:
        papers: List[PaperInfo] = []
        remaining, start = max_results, 0
        while remaining > 0:
            batch_size = min(remaining, self.settings.page_size)
            params = {"search_query": f"cat:{category}", "start": start, "max_results": batch_size,
                      "sortBy": "submittedDate", "sortOrder": "descending"}
            logger.info(f"Querying arXiv API: category={category} start={start} batch={batch_size}")
            batch = parse_atom_feed(self._call(self._get_feed, params), self.settings.pdf_base)
            if not batch:
                logger.info(f"No more results from arXiv API at offset {start}")
                break
            papers.extend(batch)
            start += len(batch)
            remaining -= len(batch)
            logger.info(f"Fetched {len(batch)} papers (total so far: {len(papers)})")
            if len(batch) < batch_size:
                break
            if remaining > 0:
                self._sleep(self.settings.api_delay)
        logger.info(f"arXiv search complete: {len(papers)} papers for category '{category}'")
        return papers

    def fetch_paper(self, paper_id: str) -> Optional[PaperInfo]:
        papers = parse_atom_feed(self._call(self._get_feed, {"id_list": paper_id}), self.settings.pdf_base)
        return papers[0] if papers else None

    # ---------- PDFs ----------
    def _throttle(self):
        with self._download_lock:
            if self._last_download is not None:
                wait = self._last_download + self.settings.download_delay - time.monotonic()
                if wait > 0:
                    self._sleep(wait)
            self._last_download = time.monotonic()

    def _download_once(self, url: str, target: Path) -> Path:
        with self._client.stream("GET", url) as resp:
            self._check(resp, f"downloading {url}")
            with target.open("wb") as fh:
                for block in resp.iter_bytes():
                    fh.write(block)
        return target

    def download_pdf(self, paper_id: str, target_dir: Path, pdf_url: Optional[str] = None) -> Path:
        """Fetch one PDF into ``target_dir``; ``pdf_url`` (the feed link) wins over ``pdf_base``."""
        url = normalize_pdf_url(pdf_url) if pdf_url else f"{self.settings.pdf_base}{paper_id}.pdf"
        target = Path(target_dir) / (paper_id.replace("/", "_") + ".pdf")
        self._throttle()
        try:
            self._call(self._download_once, url, target)
        except Exception:
            target.unlink(missing_ok=True)
            raise
        logger.debug(f"Downloaded PDF: {paper_id} → {target}")
        return target
