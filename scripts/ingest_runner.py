#!/usr/bin/env python3
"""
Run one ingestion job from the command line and follow it until it finishes.

  python scripts/ingest_runner.py --dir ./papers
  python scripts/ingest_runner.py --category cs.CL --max-results 200
  python scripts/ingest_runner.py --paper-ids 2401.00001 2401.00002 --strategy parallel
"""
import argparse
import json
import sys
import time
from pathlib import Path

from loguru import logger
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from pdf_ingest import config
from pdf_ingest.service import build_services
from pdf_ingest.settings import load_settings


def cli():
    ap = argparse.ArgumentParser(description="Ingest PDFs into the chunk index")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--dir", type=Path, help="directory of PDFs, read in place")
    src.add_argument("--category", help="arXiv category, e.g. cs.AI")
    src.add_argument("--paper-ids", nargs="+", help="arXiv paper ids")
    ap.add_argument("--max-results", type=int, default=100)
    ap.add_argument("--config", default=config.CONFIG_PATH, help="YAML config (defaults apply when missing)")
    ap.add_argument("--strategy", choices=["sequential", "parallel"], default=None)
    ap.add_argument("--no-export", action="store_true")
    ap.add_argument("--poll", type=float, default=1.0, help="status poll interval (s)")
    return ap.parse_args()


def follow(orchestrator, job_id: str, poll: float):
    status = orchestrator.get_status(job_id)
    with Progress(SpinnerColumn(), TextColumn("{task.description}"), BarColumn(),
                  TextColumn("{task.completed}/{task.total}"), TimeElapsedColumn(), transient=True) as progress:
        task = progress.add_task(f"Job {job_id}", total=None)
        while not status.is_terminal:
            progress.update(task, total=status.total_files or None, completed=status.done,
                            description=f"Job {job_id} · {status.chunks_processed} chunks")
            time.sleep(poll)
    return status


def main():
    args = cli()
    logger.add(config.LOG_DIR / "ingest_{time}.log", rotation="10 MB")

    settings = load_settings(args.config)
    if args.strategy:
        settings.ingestion.strategy = args.strategy
    if args.no_export:
        settings.export.enabled = False

    services = build_services(settings)
    orch = services.orchestrator
    try:
        if args.dir:
            pdfs = sorted(p for p in args.dir.iterdir() if p.suffix.lower() == ".pdf")
            if not pdfs:
                logger.error(f"No PDF files found in {args.dir}")
                return 1
            job_id = orch.start_local_job(pdfs)
        elif args.category:
            job_id = orch.start_category_job(args.category, args.max_results)
        else:
            job_id = orch.start_paper_ids_job(args.paper_ids)

        status = follow(orch, job_id, args.poll)
        print(json.dumps(status.to_dict(), ensure_ascii=False, indent=2))
        logger.info(f"Run complete → {status.status.value}")
        return 0 if status.status.value == "COMPLETED" else 1
    finally:
        services.close()


if __name__ == "__main__":
    sys.exit(main())
