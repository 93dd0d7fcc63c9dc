from pathlib import Path

import httpx
import pytest

from pdf_ingest.fetch.arxiv import ArxivClient, FetchError, RetryableFetchError, parse_atom_feed
from pdf_ingest.settings import Settings

ENTRY = """
  <entry>
    <id>http://arxiv.org/abs/{pid}</id>
    <published>2024-01-0{day}T00:00:00Z</published>
    <title>Paper   {pid}
      on Retrieval</title>
    <summary>  An abstract
      spread over   lines.  </summary>
    <author><name>Alice Smith</name></author>
    <author><name>Bob Jones</name></author>
    <link href="http://arxiv.org/abs/{pid}" rel="alternate" type="text/html"/>
    {pdf_link}
  </entry>"""


def feed(*ids: str, with_pdf_link: bool = True) -> str:
    entries = []
    for i, pid in enumerate(ids):
        link = (f'<link title="pdf" href="http://arxiv.org/pdf/{pid}" rel="related" type="application/pdf"/>'
                if with_pdf_link else "")
        entries.append(ENTRY.format(pid=pid, day=i % 9 + 1, pdf_link=link))
    return ('<?xml version="1.0" encoding="UTF-8"?>\n'
            '<feed xmlns="http://www.w3.org/2005/Atom"><title>ArXiv Query</title>'
            + "".join(entries) + "</feed>")


def make_client(settings: Settings, handler, sleeps: list[float], **overrides) -> ArxivClient:
    arxiv = settings.arxiv.model_copy(update=overrides)
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return ArxivClient(arxiv, client=http, sleep=sleeps.append)


def test_parse_atom_feed_extracts_paper_fields() -> None:
    papers = parse_atom_feed(feed("2401.00001v1", "2401.00002v2"))

    assert [p.paper_id for p in papers] == ["2401.00001v1", "2401.00002v2"]
    p = papers[0]
    assert p.title == "Paper 2401.00001v1 on Retrieval"
    assert p.summary == "An abstract spread over lines."
    assert p.authors == "Alice Smith, Bob Jones"
    assert p.published == "2024-01-01T00:00:00Z"
    assert p.pdf_url == "http://arxiv.org/pdf/2401.00001v1"
    assert p.file_name == "2401.00001v1.pdf"


def test_parse_atom_feed_falls_back_to_pdf_url_pattern() -> None:
    papers = parse_atom_feed(feed("2401.00003", with_pdf_link=False), "https://arxiv.org/pdf/")

    assert papers[0].pdf_url == "https://arxiv.org/pdf/2401.00003.pdf"


def test_parse_atom_feed_empty_feed_returns_nothing() -> None:
    assert parse_atom_feed(feed()) == []


def test_search_paginates_until_short_page(settings: Settings) -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        start = int(request.url.params["start"])
        ids = [f"2401.{n:05d}" for n in range(start, min(start + 2, 3))]
        return httpx.Response(200, text=feed(*ids))

    sleeps: list[float] = []
    with make_client(settings, handler, sleeps, page_size=2, api_delay=3.0) as client:
        papers = client.search_by_category("cs.CL", max_results=10)

    assert [p.paper_id for p in papers] == ["2401.00000", "2401.00001", "2401.00002"]
    assert [r.url.params["start"] for r in requests] == ["0", "2"]
    assert requests[0].url.params["search_query"] == "cat:cs.CL"
    assert requests[0].url.params["max_results"] == "2"
    assert sleeps == [3.0]


def test_search_stops_at_max_results(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        start = int(request.url.params["start"])
        size = int(request.url.params["max_results"])
        return httpx.Response(200, text=feed(*[f"2402.{n:05d}" for n in range(start, start + size)]))

    with make_client(settings, handler, [], page_size=2) as client:
        papers = client.search_by_category("cs.AI", max_results=5)

    assert len(papers) == 5


def test_search_stops_on_empty_page(settings: Settings) -> None:
    with make_client(settings, lambda r: httpx.Response(200, text=feed()), []) as client:
        assert client.search_by_category("cs.AI", max_results=10) == []


def test_search_retries_rate_limit_then_succeeds(settings: Settings) -> None:
    codes = iter([429, 200])

    def handler(request: httpx.Request) -> httpx.Response:
        code = next(codes)
        return httpx.Response(code, text=feed("2401.00001") if code == 200 else "slow down")

    sleeps: list[float] = []
    with make_client(settings, handler, sleeps) as client:
        papers = client.search_by_category("cs.AI", max_results=1)

    assert len(papers) == 1
    assert sleeps == [2]


def test_download_retries_503_twice_then_succeeds(settings: Settings, tmp_path: Path) -> None:
    codes = iter([503, 503, 200])
    urls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        urls.append(str(request.url))
        code = next(codes)
        return httpx.Response(code, content=b"%PDF-1.4 body" if code == 200 else b"busy")

    sleeps: list[float] = []
    with make_client(settings, handler, sleeps) as client:
        path = client.download_pdf("2401.00001", tmp_path)

    assert path == tmp_path / "2401.00001.pdf"
    assert path.read_bytes() == b"%PDF-1.4 body"
    assert sleeps == [2, 4]
    assert urls == ["https://arxiv.org/pdf/2401.00001.pdf"] * 3


def test_download_prefers_feed_link_normalized_to_https_pdf(settings: Settings, tmp_path: Path) -> None:
    urls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        urls.append(str(request.url))
        return httpx.Response(200, content=b"pdf")

    with make_client(settings, handler, [], pdf_base="https://mirror.example/pdf/") as client:
        path = client.download_pdf("2401.00001v2", tmp_path, pdf_url="http://arxiv.org/pdf/2401.00001v2")
        client.download_pdf("2401.00002", tmp_path)

    assert path.name == "2401.00001v2.pdf"
    assert urls == ["https://arxiv.org/pdf/2401.00001v2.pdf", "https://mirror.example/pdf/2401.00002.pdf"]


def test_download_old_style_id_uses_flat_file_name(settings: Settings, tmp_path: Path) -> None:
    with make_client(settings, lambda r: httpx.Response(200, content=b"pdf"), []) as client:
        path = client.download_pdf("hep-th/9901001", tmp_path)

    assert path.name == "hep-th_9901001.pdf"


def test_download_terminal_status_fails_without_retry(settings: Settings, tmp_path: Path) -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        return httpx.Response(404, text="not found")

    sleeps: list[float] = []
    with make_client(settings, handler, sleeps) as client:
        with pytest.raises(FetchError) as info:
            client.download_pdf("2401.99999", tmp_path)

    assert not isinstance(info.value, RetryableFetchError)
    assert "404" in str(info.value)
    assert len(calls) == 1
    assert sleeps == []
    assert list(tmp_path.iterdir()) == []


def test_download_gives_up_after_max_retries(settings: Settings, tmp_path: Path) -> None:
    sleeps: list[float] = []
    with make_client(settings, lambda r: httpx.Response(503), sleeps, max_retries=3) as client:
        with pytest.raises(RetryableFetchError) as info:
            client.download_pdf("2401.00001", tmp_path)

    assert info.value.status_code == 503
    assert sleeps == [2, 4, 8]
    assert list(tmp_path.iterdir()) == []


def test_timeouts_are_retried_then_surface_as_fetch_error(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    sleeps: list[float] = []
    with make_client(settings, handler, sleeps, max_retries=2) as client:
        with pytest.raises(FetchError, match="timed out"):
            client.search_by_category("cs.AI", max_results=1)

    assert sleeps == [2, 4]


def test_download_spacing_between_consecutive_downloads(settings: Settings, tmp_path: Path) -> None:
    sleeps: list[float] = []
    with make_client(settings, lambda r: httpx.Response(200, content=b"pdf"), sleeps,
                     download_delay=30.0) as client:
        client.download_pdf("2401.00001", tmp_path)
        client.download_pdf("2401.00002", tmp_path)

    assert len(sleeps) == 1
    assert 0 < sleeps[0] <= 30.0


def test_fetch_paper_looks_up_by_id(settings: Settings) -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.params["id_list"])
        return httpx.Response(200, text=feed("2401.00007v1"))

    with make_client(settings, handler, []) as client:
        paper = client.fetch_paper("2401.00007")

    assert seen == ["2401.00007"]
    assert paper is not None and paper.paper_id == "2401.00007v1"
