"""Batched, best-effort usage logging.

Every provider attempt (success or failure) becomes one UsageLogEntry.
Entries are buffered in memory and flushed to an append-only JSONL store
when the batch fills up or on a timer. A failed flush puts entries back in
the buffer, bounded by ``max_backlog``; beyond that the oldest entries are
dropped. Nothing in this module ever raises into request processing.
"""

import asyncio
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

_logger = logging.getLogger("ai_router")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class UsageLogEntry:
    """A single write-once record of one provider attempt."""

    user_id: str
    provider: str
    model: str
    query_category: str
    tier: int
    success: bool
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    cached: bool = False
    fallback_used: bool = False
    error_message: Optional[str] = None
    request_id: Optional[str] = None
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageLogEntry":
        return cls(**data)


class UsageStore(Protocol):
    """Durable destination for flushed usage entries."""

    def write_batch(self, entries: List[UsageLogEntry]) -> None: ...


class JsonlUsageStore:
    """Append-only JSONL usage log. Thread-safe."""

    def __init__(self, log_path: str) -> None:
        self._log_path = Path(log_path)
        self._lock = threading.Lock()
        os.makedirs(self._log_path.parent, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._log_path

    def write_batch(self, entries: List[UsageLogEntry]) -> None:
        lines = "".join(json.dumps(e.to_dict(), sort_keys=True) + "\n" for e in entries)
        with self._lock:
            with open(self._log_path, "a") as f:
                f.write(lines)

    def read_entries(self) -> List[UsageLogEntry]:
        """Read all entries from the log file in file order."""
        entries: List[UsageLogEntry] = []
        if not self._log_path.exists():
            return entries

        with open(self._log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(UsageLogEntry.from_dict(json.loads(line)))
                except (json.JSONDecodeError, TypeError) as e:
                    _logger.warning("Skipping corrupt usage entry: %s", e)
                    continue

        return entries


class UsageLogger:
    """In-memory batch in front of a UsageStore."""

    def __init__(
        self,
        store: UsageStore,
        batch_size: int = 10,
        flush_interval: float = 30.0,
        max_backlog: int = 50,
    ) -> None:
        self._store = store
        self._batch_size = batch_size
        self._flush_interval = flush_interval
        self._max_backlog = max_backlog
        self._batch: List[UsageLogEntry] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._dropped = 0
        self._drop_reported = False
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def pending(self) -> int:
        return len(self._batch)

    @property
    def dropped(self) -> int:
        return self._dropped

    def log_success(self, entry: UsageLogEntry) -> None:
        entry.success = True
        self._append(entry)

    def log_failure(self, entry: UsageLogEntry) -> None:
        entry.success = False
        self._append(entry)

    def _append(self, entry: UsageLogEntry) -> None:
        try:
            with self._lock:
                self._batch.append(entry)
                full = len(self._batch) >= self._batch_size
            if full:
                self.flush()
        except Exception:
            _logger.exception("Failed to queue usage entry")

    def flush(self) -> int:
        """Write the pending batch to the store.

        Returns:
            The number of entries written (0 on failure or empty batch).
        """
        with self._flush_lock:
            with self._lock:
                entries, self._batch = self._batch, []
            if not entries:
                return 0

            try:
                self._store.write_batch(entries)
            except Exception as exc:
                _logger.error("Failed to flush %d usage entries: %s", len(entries), exc)
                self._requeue(entries)
                return 0

            self._drop_reported = False
            _logger.debug("Flushed %d usage entries", len(entries))
            return len(entries)

    def _requeue(self, failed: List[UsageLogEntry]) -> None:
        with self._lock:
            backlog = failed + self._batch
            overflow = len(backlog) - self._max_backlog
            if overflow > 0:
                backlog = backlog[overflow:]
                self._dropped += overflow
            self._batch = backlog
            report = overflow > 0 and not self._drop_reported
            if report:
                self._drop_reported = True
        # Reported once per outage; `dropped` keeps the running total.
        if report:
            _logger.warning(
                "Usage backlog full: dropped %d oldest unflushed entries", overflow
            )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            self.flush()

    def start(self) -> None:
        """Start the periodic flush task on the running event loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def aclose(self) -> None:
        """Stop the flush task and write out whatever is pending."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.flush()
