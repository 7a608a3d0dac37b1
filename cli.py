#!/usr/bin/env python3
"""
TubeIngest - Command Line Entry Point

  tube-ingest ingest URL CATEGORY_ID   queue one video and process it in the foreground
  tube-ingest serve [--host] [--port]  run the HTTP API
"""

import argparse
import asyncio
import logging
import sys

from constants import LOG_LEVEL
from db import init_db
from jobs import create_job, get_job
from processing_queue import ProcessingQueue
from utils import is_http_url
from youtube import _sync_cookies_file

logger = logging.getLogger("tubeingest")


async def _ingest_once(url: str, category_id: str) -> dict:
    job_id = await asyncio.to_thread(create_job, url, category_id)
    logger.info("Queued job %s", job_id)
    queue = ProcessingQueue()
    await queue.drain()
    return await asyncio.to_thread(get_job, job_id)


def cmd_ingest(args) -> int:
    if not is_http_url(args.url):
        logger.error("Not an http(s) URL: %s", args.url)
        return 2
    init_db()
    _sync_cookies_file()
    job = asyncio.run(_ingest_once(args.url.strip(), args.category_id.strip()))
    if job["processing_status"] == "completed":
        print(job["storage_url"])
        return 0
    logger.error("Ingestion failed: %s", job.get("error") or job["processing_status"])
    return 1


def cmd_serve(args) -> int:
    import uvicorn
    uvicorn.run("app:app", host=args.host, port=args.port, log_level=LOG_LEVEL.lower())
    return 0


def main(argv=None) -> int:
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    parser = argparse.ArgumentParser(prog="tube-ingest")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Download one YouTube video and push it to storage.")
    ingest.add_argument("url")
    ingest.add_argument("category_id")
    ingest.set_defaults(func=cmd_ingest)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8080)
    serve.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
