from pdf_ingest.preprocess.chunk import chunk_document
from pdf_ingest.retrieval.fts import FtsIndex, sanitize_query


def _index_doc(index: FtsIndex, document_id: str, text: str) -> int:
    chunks = chunk_document([text], document_id, chunk_size=50, overlap=5, min_chunk_size=10)
    index.index_chunks(chunks)
    return len(chunks)


def test_sanitize_query_strips_fts_syntax() -> None:
    assert sanitize_query('alpha AND "beta" (gamma)* NEAR delta:') == ["alpha", "beta", "gamma", "delta"]
    assert sanitize_query("  ") == []
    assert sanitize_query(None) == []


def test_index_search_and_count(index: FtsIndex) -> None:
    n_a = _index_doc(index, "doc-a", "retrieval augmented generation with dense passages " * 20)
    n_b = _index_doc(index, "doc-b", "convolutional networks for image classification " * 20)

    assert index.count() == n_a + n_b

    hits = index.search("retrieval generation", top_k=5)
    assert hits
    assert {h.document_id for h in hits} == {"doc-a"}
    assert len(hits) <= 5
    assert hits == sorted(hits, key=lambda h: h.score, reverse=True)
    assert hits[0].page_number == 1


def test_search_filters_by_document_id(index: FtsIndex) -> None:
    _index_doc(index, "doc-a", "shared vocabulary term " * 30)
    _index_doc(index, "doc-b", "shared vocabulary term " * 30)

    hits = index.search("vocabulary", top_k=50, document_id="doc-b")

    assert hits
    assert {h.document_id for h in hits} == {"doc-b"}


def test_search_falls_back_to_prefix_or_match(index: FtsIndex) -> None:
    _index_doc(index, "doc-a", "transformers attention mechanism " * 20)

    assert index.search("transform", top_k=3)
    assert index.search("attention nonexistentword", top_k=3)


def test_search_tolerates_query_syntax_and_empty_query(index: FtsIndex) -> None:
    _index_doc(index, "doc-a", "plain words only " * 20)

    assert index.search('"unbalanced (quote', top_k=3) == []
    assert index.search("   ", top_k=3) == []


def test_delete_by_document_id(index: FtsIndex) -> None:
    n_a = _index_doc(index, "doc-a", "alpha beta " * 40)
    n_b = _index_doc(index, "doc-b", "alpha gamma " * 40)

    assert index.delete_by_document_id("doc-a") == n_a
    assert index.count() == n_b
    assert {h.document_id for h in index.search("alpha", top_k=50)} == {"doc-b"}
    assert index.delete_by_document_id("doc-a") == 0


def test_index_empty_chunk_list_is_a_no_op(index: FtsIndex) -> None:
    index.index_chunks([])
    assert index.count() == 0


def test_index_survives_reopen(tmp_path) -> None:
    path = tmp_path / "idx" / "fts.db"
    _index_doc(FtsIndex(path), "doc-a", "persistent text " * 20)

    assert FtsIndex(path).count() > 0
