# src/workers/crawler_worker.py
# Responsibility: Runs the worker pool AND the periodic dispatch loop, with idempotent start/stop.

import queue
import signal
import sys
import threading
from enum import Enum
from typing import List, Optional

from src.config.settings import settings
from src.crawler.crawler import PageFetcher
from src.crawler.job import perform_crawl_job
from src.crawler.lease import ItemLease
from src.crawler.models import CrawlItem
from src.crawler.parser import BaseAnalyzer, PageAnalyzer
from src.crawler.repository import CrawlStore, PostgresCrawlRepository
from src.crawler.scheduler import CrawlScheduler
from src.services.db import init_schema


class ServiceState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class CrawlerService:
    """
    Fixed-size pool of worker threads draining one bounded queue,
    fed by a scheduler thread that polls storage on an interval.

    start() and stop() hold the lifecycle lock for their whole duration,
    so concurrent calls serialize and repeated calls are no-ops.
    """

    def __init__(
        self,
        store: CrawlStore,
        fetcher: Optional[PageFetcher] = None,
        analyzer: Optional[BaseAnalyzer] = None,
        lease: Optional[ItemLease] = None,
        worker_count: Optional[int] = None,
        queue_capacity: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        cfg = settings.CRAWLER
        self.store = store
        self.fetcher = fetcher or PageFetcher()
        self.analyzer = analyzer or PageAnalyzer()
        self.lease = lease
        self.worker_count = worker_count if worker_count is not None else cfg.WORKER_COUNT
        self.poll_interval = poll_interval if poll_interval is not None else cfg.POLL_INTERVAL_SECONDS
        self.worker_poll_timeout = cfg.WORKER_POLL_TIMEOUT
        self.error_backoff = cfg.ERROR_BACKOFF_SECONDS

        capacity = queue_capacity if queue_capacity is not None else cfg.QUEUE_CAPACITY
        self.queue: "queue.Queue[CrawlItem]" = queue.Queue(maxsize=capacity)
        self.scheduler = CrawlScheduler(store, self.queue, lease)

        self._lock = threading.Lock()
        self._state = ServiceState.STOPPED
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ServiceState.RUNNING

    def start(self) -> bool:
        """Starts workers and the scheduler. Returns False if the service was not stopped."""
        with self._lock:
            if self._state != ServiceState.STOPPED:
                return False
            self._state = ServiceState.STARTING
            self._stop_event = threading.Event()

            threads = [
                threading.Thread(target=self._worker_loop, args=(i,), name=f"crawler-worker-{i}", daemon=True)
                for i in range(self.worker_count)
            ]
            threads.append(threading.Thread(target=self._scheduler_loop, name="crawler-scheduler", daemon=True))
            for t in threads:
                t.start()

            self._threads = threads
            self._state = ServiceState.RUNNING

        print(f"[Service] Started {self.worker_count} worker(s), poll interval {self.poll_interval}s.")
        return True

    def stop(self) -> bool:
        """
        Signals the scheduler and workers, then blocks until in-flight items drain.
        Returns False if the service was not running.
        """
        with self._lock:
            if self._state != ServiceState.RUNNING:
                return False
            self._state = ServiceState.STOPPING
            self._stop_event.set()

            for t in self._threads:
                t.join()
            self._threads = []

            dropped = self.scheduler.drain()
            self._state = ServiceState.STOPPED

        print(f"[Service] Stopped. {dropped} pending item(s) left queued in storage.")
        return True

    def _scheduler_loop(self):
        """
        Background thread that periodically checks storage for queued items
        and offers them to the work queue.
        """
        stop = self._stop_event
        print("[Scheduler Thread] Started.")

        while not stop.is_set():
            try:
                self.scheduler.poll_once()
                wait = self.poll_interval
            except Exception as e:
                print(f"[Scheduler Thread] Error: {e}")
                wait = self.error_backoff
            stop.wait(wait)

        print("[Scheduler Thread] Stopped.")

    def _worker_loop(self, worker_id: int):
        stop = self._stop_event

        while not stop.is_set():
            try:
                item = self.queue.get(timeout=self.worker_poll_timeout)
            except queue.Empty:
                continue

            try:
                perform_crawl_job(item, self.store, self.fetcher, self.analyzer, self.lease)
            except Exception as e:
                print(f"[Worker {worker_id}] Unhandled error on item {item.id}: {e}")
            finally:
                self.scheduler.finish(item.id)
                self.queue.task_done()


def build_service() -> CrawlerService:
    lease = ItemLease() if settings.CRAWLER.LEASES_ENABLED else None
    return CrawlerService(PostgresCrawlRepository(), lease=lease)


def start_worker():
    """
    Initializes the schema, starts the crawler service and blocks until SIGINT/SIGTERM.
    """
    try:
        init_schema()
    except Exception as e:
        print(f"[Worker] Fatal error: {e}")
        sys.exit(1)

    service = build_service()
    shutdown = threading.Event()

    def _handle_signal(signum, frame):
        print(f"[Worker] Received signal {signum}, shutting down.")
        shutdown.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    service.start()
    while not shutdown.is_set():
        shutdown.wait(1.0)
    service.stop()


if __name__ == '__main__':
    start_worker()
