"""Best-effort replication of ledger transactions to the remote log."""

from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Optional

import httpx
from tenacity import Retrying, stop_after_attempt, wait_exponential

from portfolio_ledger.core.config import ApiConfig
from portfolio_ledger.core.models import Transaction
from portfolio_ledger.events.bus import EventBus, LedgerEvent

logger = logging.getLogger(__name__)

_STOP = object()


class TransactionReplicator:
    """POST each transaction to ``/api/transactions`` from a background worker.

    ``submit`` only enqueues, so the ledger mutation path never waits on the
    network. Each delivery has a bounded timeout and an exponential-backoff
    retry budget; a delivery that exhausts it is logged and dropped.
    """

    def __init__(self, config: ApiConfig, transport: httpx.BaseTransport | None = None) -> None:
        self._cfg = config
        self._client = httpx.Client(
            base_url=config.base_url,
            timeout=config.timeout_seconds,
            transport=transport,
        )
        self._queue: queue.Queue = queue.Queue(maxsize=config.queue_size)
        self._thread: Optional[threading.Thread] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    def _retrying(self) -> Retrying:
        return Retrying(
            wait=wait_exponential(
                multiplier=self._cfg.backoff_multiplier,
                min=self._cfg.backoff_min,
                max=self._cfg.backoff_max,
            ),
            stop=stop_after_attempt(self._cfg.retry_attempts),
            reraise=True,
        )

    def attach(self, events: EventBus) -> None:
        self._unsubscribe = events.on(LedgerEvent.TRANSACTION_RECORDED, self.submit)

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run, name="txn-replicator", daemon=True)
        self._thread.start()

    def submit(self, transaction: Transaction) -> bool:
        try:
            self._queue.put_nowait(transaction)
        except queue.Full:
            self.dropped += 1
            logger.warning("Replication queue full, dropping transaction %s", transaction.id)
            return False
        return True

    def flush(self) -> None:
        """Block until every queued transaction has been attempted."""
        self._queue.join()

    def deliver(self, transaction: Transaction) -> bool:
        try:
            for attempt in self._retrying():
                with attempt:
                    response = self._client.post(self._cfg.transactions_path, json=transaction.to_dict())
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            self.failed += 1
            logger.warning("Failed to replicate transaction %s: %s", transaction.id, exc)
            return False
        self.delivered += 1
        logger.debug("Replicated transaction %s", transaction.id)
        return True

    def _run(self) -> None:
        try:
            while True:
                item = self._queue.get()
                try:
                    if item is _STOP:
                        return
                    self.deliver(item)
                except Exception:  # noqa: BLE001
                    self.failed += 1
                    logger.exception("Unexpected replication failure")
                finally:
                    self._queue.task_done()
        finally:
            self._client.close()

    def close(self, timeout: float | None = 5.0) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        worker, self._thread = self._thread, None
        if worker and worker.is_alive():
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.warning("Replication queue still full, worker left running")
                return
            worker.join(timeout=timeout)
            if worker.is_alive():
                # the worker closes the client once its current delivery ends
                logger.warning("Replication worker still busy after %ss", timeout)
                return
        self._client.close()
