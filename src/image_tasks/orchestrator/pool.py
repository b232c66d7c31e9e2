"""Fixed-size pool of job consumers running on threads."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from image_tasks.orchestrator.worker import ConsumerRunSummary, JobConsumer, stop_on_signals

logger = logging.getLogger(__name__)

ConsumerFactory = Callable[[int, threading.Event], JobConsumer]


class WorkerPool:
    """Runs ``size`` consumers concurrently; the pool size bounds job concurrency.

    Each consumer handles a claimed job start to finish on its own thread.
    SIGINT/SIGTERM in the main thread set the shared stop event, so every
    consumer finishes its current job and exits.
    """

    def __init__(self, *, size: int, consumer_factory: ConsumerFactory) -> None:
        if size <= 0:
            raise ValueError("Worker pool size must be > 0.")
        self.size = size
        self.consumer_factory = consumer_factory
        self.stop_event = threading.Event()

    def run(
        self,
        *,
        max_jobs_per_worker: int | None = None,
        max_idle_polls: int | None = 1,
    ) -> ConsumerRunSummary:
        """Start all consumers, wait for them, and return the combined summary."""

        consumers = [self.consumer_factory(index, self.stop_event) for index in range(self.size)]
        summaries: list[ConsumerRunSummary] = []
        errors: list[BaseException] = []
        lock = threading.Lock()

        def _run(consumer: JobConsumer) -> None:
            try:
                summary = consumer.run_loop(
                    max_jobs=max_jobs_per_worker,
                    max_idle_polls=max_idle_polls,
                    install_signal_handlers=False,
                )
            except Exception as error:
                logger.exception("Consumer %s stopped with an error", consumer.worker_id)
                self.stop_event.set()
                with lock:
                    errors.append(error)
                return
            with lock:
                summaries.append(summary)

        threads = [
            threading.Thread(target=_run, args=(consumer,), name=consumer.worker_id, daemon=True)
            for consumer in consumers
        ]
        logger.info("Starting worker pool with %d consumer(s)", len(threads))
        with stop_on_signals(self.stop_event):
            for thread in threads:
                thread.start()
            for thread in threads:
                while thread.is_alive():
                    thread.join(timeout=0.5)

        aggregate = ConsumerRunSummary()
        for summary in summaries:
            aggregate.add(summary)
        if errors:
            raise RuntimeError(
                f"{len(errors)} of {len(threads)} consumer(s) failed; first error: {errors[0]!r}",
            ) from errors[0]
        return aggregate

    def stop(self) -> None:
        self.stop_event.set()
