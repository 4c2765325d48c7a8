#!/usr/bin/env python3
"""
RQ Worker Startup Script
Starts exactly one worker process per job queue.

Usage:
    python scripts/run_workers.py                     # One worker per queue
    python scripts/run_workers.py --queues generate merge
    python scripts/run_workers.py --reset-stale       # Fail jobs a crash left processing
"""

import argparse
import logging
import os
import sys
import signal
from multiprocessing import Process
from typing import List

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from rq import Worker, Queue

from vidgen.core.config import settings
from vidgen.core.redis import Queues, RedisManager
from vidgen.workers.context import build_context, install_context


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger("rq.worker")


def start_worker(queue_name: str, worker_name: str, burst: bool = False):
    """
    Start the single RQ worker for ``queue_name``.

    The worker context (database, Redis, inference client, media tool,
    progress channel) is built here so each process owns its own clients.
    """
    context = build_context(settings)
    install_context(context)
    redis_conn = context.redis_manager.get_connection()

    worker = Worker(
        queues=[Queue(queue_name, connection=redis_conn)],
        connection=redis_conn,
        name=worker_name,
        log_job_description=True,
        job_monitoring_interval=5
    )

    logger.info(f"Worker {worker_name} starting on queue: {queue_name}")
    try:
        worker.work(burst=burst)
    finally:
        context.close()


def run_worker_process(queue_name: str, burst: bool):
    """Target function for worker processes."""
    worker_name = f"worker-{queue_name}-{os.getpid()}"

    # Handle graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"{worker_name}: Received shutdown signal")
        sys.exit(0)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    start_worker(queue_name, worker_name, burst)


def reset_stale_jobs():
    context = build_context(settings)
    try:
        count = context.store.reset_stale()
        logger.info(f"Reset {count} stale job(s)")
    finally:
        context.close()


def main():
    parser = argparse.ArgumentParser(description="Start one RQ worker per Vidgen queue")
    parser.add_argument(
        "--queues", "-q",
        nargs="+",
        choices=Queues.ALL,
        default=Queues.ALL,
        help="Queue names to serve (default: all queues)"
    )
    parser.add_argument(
        "--burst", "-b",
        action="store_true",
        help="Run in burst mode (exit when queue is empty)"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check Redis connection and exit"
    )
    parser.add_argument(
        "--reset-stale",
        action="store_true",
        help="Mark jobs left in processing by a crashed worker as failed before starting"
    )

    args = parser.parse_args()
    redis_manager = RedisManager(settings.REDIS_URL)

    # Health check only
    if args.check:
        health = redis_manager.health_check()
        print(f"Redis Status: {health}")
        sys.exit(0 if health.get("connected") else 1)

    # Verify Redis connection
    logger.info("Checking Redis connection...")
    health = redis_manager.health_check()
    redis_manager.close()

    if not health.get("connected"):
        logger.error(f"Cannot connect to Redis: {health.get('error')}")
        logger.error(f"Redis URL: {health.get('url')}")
        sys.exit(1)

    logger.info(f"Redis connected: {health.get('redis_version')}")

    if args.reset_stale:
        reset_stale_jobs()

    logger.info(f"Starting one worker on each of: {args.queues}")
    processes: List[Process] = []

    def shutdown_all(signum, frame):
        logger.info("Shutting down all workers...")
        for p in processes:
            if p.is_alive():
                p.terminate()
        sys.exit(0)

    signal.signal(signal.SIGTERM, shutdown_all)
    signal.signal(signal.SIGINT, shutdown_all)

    for queue_name in args.queues:
        p = Process(
            target=run_worker_process,
            args=(queue_name, args.burst),
            name=f"worker-{queue_name}"
        )
        p.start()
        processes.append(p)
        logger.info(f"Started worker for {queue_name} (PID: {p.pid})")

    # Wait for all workers
    for p in processes:
        p.join()


if __name__ == "__main__":
    main()
