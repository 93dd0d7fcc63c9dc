#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Query the chunk index (SQLite FTS5, bm25) from the command line.

  python scripts/search_runner.py "retrieval augmented generation" --topk 5
"""
import argparse
import textwrap

from loguru import logger

from pdf_ingest import config
from pdf_ingest.retrieval.fts import FtsIndex
from pdf_ingest.settings import load_settings


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("query")
    ap.add_argument("--topk", type=int, default=10)
    ap.add_argument("--document-id", default=None)
    ap.add_argument("--config", default=config.CONFIG_PATH)
    ap.add_argument("--width", type=int, default=100, help="snippet width")
    args = ap.parse_args()

    settings = load_settings(args.config)
    index = FtsIndex(settings.storage.index_path)
    logger.info(f"Index: {settings.storage.index_path} ({index.count()} chunks)")

    hits = index.search(args.query, top_k=args.topk, document_id=args.document_id)
    if not hits:
        print("No results.")
        return
    for i, h in enumerate(hits, 1):
        print(f"[{i}] score={h.score:.3f}  doc={h.document_id}  page={h.page_number}  chunk={h.chunk_index}")
        print(textwrap.indent(textwrap.shorten(h.content, width=args.width * 3, placeholder=" …"), "    "))


if __name__ == "__main__":
    main()
