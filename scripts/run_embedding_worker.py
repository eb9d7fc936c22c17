#!/usr/bin/env python3
"""
Embedding Queue Worker

Drains embedding_queue into unified_embeddings: reclaims expired leases,
requeues failed tasks that still have retries, claims a batch, embeds the
source contents with Gemini and marks each task completed or failed.

Usage:
    python scripts/run_embedding_worker.py                  # one batch
    python scripts/run_embedding_worker.py --loop           # poll forever
    python scripts/run_embedding_worker.py --batch-size 20 --interval 5 --loop
    python scripts/run_embedding_worker.py --stats          # print queue statistics
"""

import argparse
import asyncio
import json
import logging
import os
import sys

# Add the project root to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from receipt_search.db.client import get_service_role_client
from receipt_search.services.embedding_client import GeminiEmbedder
from receipt_search.services.embedding_worker import EmbeddingQueueWorker
from receipt_search.services.queue_service import get_queue_statistics


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run_worker(batch_size: int, interval: float, loop: bool, worker_id: str | None) -> None:
    """Run one batch, or keep polling when `loop` is set."""
    worker = EmbeddingQueueWorker(
        supabase_client=get_service_role_client(),
        embedder=GeminiEmbedder(),
        worker_id=worker_id,
        batch_size=batch_size,
    )
    logger.info(f"Starting embedding worker {worker.worker_id} (batch_size={worker.batch_size})")

    while True:
        summary = await worker.run_once()
        print(json.dumps(summary.as_dict()))

        if not loop:
            return

        # Poll immediately again while there is a backlog
        if summary.claimed < worker.batch_size:
            await asyncio.sleep(interval)


async def print_stats() -> None:
    stats = await get_queue_statistics(get_service_role_client())
    print(json.dumps(stats.model_dump(), indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="Process the embedding generation queue"
    )
    parser.add_argument(
        "--batch-size", "-b",
        type=int,
        default=None,
        help="Tasks claimed per run (default: WORKER_BATCH_SIZE)"
    )
    parser.add_argument(
        "--interval", "-i",
        type=float,
        default=10.0,
        help="Seconds to wait when the queue is drained (default: 10)"
    )
    parser.add_argument(
        "--worker-id", "-w",
        type=str,
        help="Worker identity recorded on claimed tasks (default: WORKER_ID or random)"
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep polling instead of running a single batch"
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Print queue statistics and exit"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if args.stats:
            asyncio.run(print_stats())
        else:
            asyncio.run(run_worker(args.batch_size, args.interval, args.loop, args.worker_id))
    except KeyboardInterrupt:
        logger.info("Worker stopped")


if __name__ == "__main__":
    main()
