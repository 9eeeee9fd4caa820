# src/crawler/scheduler.py
# Responsibility: Polls storage for queued items and feeds the bounded work queue without ever blocking.

import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Set

import redis

from src.crawler import lifecycle
from src.crawler.lease import ItemLease
from src.crawler.models import CrawlItem
from src.crawler.repository import CrawlStore


@dataclass
class PollReport:
    """
    Outcome of one polling cycle.
    `deferred` items did not fit in the queue and stay queued in storage for the next cycle.
    """

    enqueued: int = 0
    deferred: int = 0
    skipped: int = 0
    recovered: int = 0


class CrawlScheduler:
    """
    Central dispatch logic.
    Storage is the source of truth for pending work; the queue is a soft admission buffer.
    """

    def __init__(self, store: CrawlStore, work_queue: "queue.Queue[CrawlItem]", lease: Optional[ItemLease] = None):
        self.store = store
        self.queue = work_queue
        self.lease = lease
        self._in_flight: Set[int] = set()
        self._lock = threading.Lock()

    def poll_once(self) -> PollReport:
        """
        Offers every queued item (oldest first) to the work queue.
        Items already offered and not yet finished are skipped, so an item is never
        processed by two workers at once.

        Raises:
            Exception: Storage errors from listing; the polling loop backs off on them.
        """
        report = PollReport()
        report.recovered = self.recover_stale()

        for item in self.store.list_queued():
            with self._lock:
                if item.id in self._in_flight:
                    report.skipped += 1
                    continue
                self._in_flight.add(item.id)
                try:
                    self.queue.put_nowait(item)
                except queue.Full:
                    # Left for the next polling cycle
                    self._in_flight.discard(item.id)
                    report.deferred += 1
                    continue
            report.enqueued += 1

        if report.deferred:
            print(f"[Scheduler] Queue full, deferred {report.deferred} item(s) to the next cycle.")
        return report

    def finish(self, item_id: int):
        """Called by a worker once it is done with an item."""
        with self._lock:
            self._in_flight.discard(item_id)

    def in_flight(self) -> Set[int]:
        with self._lock:
            return set(self._in_flight)

    def drain(self) -> int:
        """Drops items still waiting in the queue (they remain queued in storage)."""
        dropped = 0
        while True:
            try:
                item = self.queue.get_nowait()
            except queue.Empty:
                break
            self.finish(item.id)
            self.queue.task_done()
            dropped += 1
        return dropped

    def recover_stale(self, now: Optional[datetime] = None) -> int:
        """
        Requeues items left `running` by a dead worker: started longer ago than the
        lease TTL, with no live lease and not being processed in this process.
        """
        if self.lease is None:
            return 0

        cutoff = (now or lifecycle.utcnow()) - timedelta(seconds=self.lease.ttl)
        try:
            candidates = self.store.list_stale_running(cutoff)
        except Exception as e:
            print(f"[Scheduler] Stale lookup failed: {e}")
            return 0

        recovered = 0
        for item in candidates:
            with self._lock:
                if item.id in self._in_flight:
                    continue
            try:
                if self.lease.is_held(item.id):
                    continue
            except redis.RedisError as e:
                print(f"[Scheduler] Lease check unavailable, skipping stale recovery: {e}")
                break

            try:
                if self.store.set_status(item.id, lifecycle.requeue(item, now)):
                    recovered += 1
                    print(f"[Scheduler] Requeued stale item {item.id} ({item.target_url})")
            except Exception as e:
                print(f"[Scheduler] Failed to requeue stale item {item.id}: {e}")

        return recovered
