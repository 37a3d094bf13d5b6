"""
docflow Audit Logging — JSONL files per object type and category, written
off the request path by a background queue.

Implements:
- LogEntry: one structured record and where it goes
- FileLogger: daily JSONL files, batched appends, date-range queries
- AsyncLogQueue: bounded queue drained by a flush thread
- Builders for workflow events (accepted, denied, created, user, system)
- LogRetentionManager: deletes expired files, gzips older ones

Layout: {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl[.gz]

Diagnostics (queue start/stop, write failures) go to the stdlib logger
"docflow.engine.logging"; audit records never do.
"""

from __future__ import annotations

import gzip
import json
import logging
import shutil
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterator, List, Optional, Tuple

logger = logging.getLogger("docflow.engine.logging")

OBJECT_TYPE_CATEGORIES = {
    "tasks": ["execution", "security"],
    "users": ["execution", "security"],
    "system": ["execution", "security"],
}

# Days a category's files are kept
DEFAULT_RETENTION = {
    "execution": 90,
    "security": 365,
}


@dataclass(frozen=True)
class LogEntry:
    """A structured audit record and the file it belongs in."""

    object_type: str
    category: str
    data: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, ensure_ascii=False, separators=(",", ":"))


class FileLogger:
    """
    Appends LogEntry records to {log_dir}/{object_type}/{category}/{day}.jsonl.

    One lock per file, so concurrent writers never interleave lines.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._locks: Dict[Path, threading.Lock] = defaultdict(threading.Lock)
        for object_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for category in categories:
                (self._log_dir / object_type / category).mkdir(parents=True, exist_ok=True)

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def path_for(self, object_type: str, category: str, day: Optional[date] = None) -> Path:
        day = day or date.today()
        return self._log_dir / object_type / category / f"{day.isoformat()}.jsonl"

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: List[LogEntry]) -> None:
        """Append entries, opening each target file once."""
        lines_by_path: Dict[Path, List[str]] = defaultdict(list)
        for entry in entries:
            lines_by_path[self.path_for(entry.object_type, entry.category)].append(entry.to_json())

        for path, lines in lines_by_path.items():
            with self._locks[path]:
                with path.open("a", encoding="utf-8") as f:
                    f.write("\n".join(lines) + "\n")

    def query(
        self,
        object_type: str,
        category: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        filters: Optional[Dict[str, Any]] = None,
        limit: int = 500,
    ) -> List[Dict[str, Any]]:
        """
        Read entries back, oldest day first.

        Args:
            object_type: "tasks", "users" or "system".
            category: "execution" or "security".
            start_date: First day to read (default: seven days before end_date).
            end_date: Last day to read (default: today).
            filters: Keep only entries whose fields equal every given value.
            limit: Stop after this many entries.
        """
        base = self._log_dir / object_type / category
        if not base.is_dir():
            return []

        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=7)

        results: List[Dict[str, Any]] = []
        for path in _day_files(base, start_date, end_date):
            for data in _read_entries(path):
                if filters and any(data.get(k) != v for k, v in filters.items()):
                    continue
                results.append(data)
                if len(results) >= limit:
                    return results
        return results


def _day_files(base: Path, start: date, end: date) -> Iterator[Path]:
    day = start
    while day <= end:
        plain = base / f"{day.isoformat()}.jsonl"
        for path in (plain.with_suffix(".jsonl.gz"), plain):
            if path.exists():
                yield path
        day += timedelta(days=1)


def _read_entries(path: Path) -> Iterator[Dict[str, Any]]:
    opener = gzip.open if path.suffix == ".gz" else open
    try:
        with opener(path, "rt", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed line in %s", path)
    except OSError as exc:
        logger.warning("Could not read log file %s: %s", path, exc)


class AsyncLogQueue:
    """
    Bounded in-memory queue with a background flush thread.

    push() never blocks: when the queue is full the entry is dropped and
    counted. The thread writes whatever has arrived each flush interval,
    at most flush_batch_size entries per write.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._writer = file_logger
        self._interval = flush_interval_ms / 1000.0
        self._batch_size = flush_batch_size
        self._queue: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="docflow-audit-flush", daemon=True)
        self._thread.start()
        logger.debug("Audit log queue writing to %s", self._writer.log_dir)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the flush thread, then write everything still queued."""
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._flush(self._take_all())
        if self._dropped:
            logger.warning("Audit log queue dropped %d entries", self._dropped)

    def push(self, entry: LogEntry) -> bool:
        """Queue an entry; False if it was dropped because the queue is full."""
        try:
            self._queue.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._flush(self._take_batch())

    def _take_batch(self) -> List[LogEntry]:
        try:
            batch = [self._queue.get(timeout=self._interval)]
        except Empty:
            return []
        while len(batch) < self._batch_size:
            try:
                batch.append(self._queue.get_nowait())
            except Empty:
                break
        return batch

    def _take_all(self) -> List[LogEntry]:
        pending: List[LogEntry] = []
        while True:
            try:
                pending.append(self._queue.get_nowait())
            except Empty:
                return pending

    def _flush(self, batch: List[LogEntry]) -> None:
        if not batch:
            return
        try:
            self._writer.write_batch(batch)
        except OSError:
            logger.exception("Failed to write %d audit entries", len(batch))

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped


# ---------------------------------------------------------------------------
# Entry builders
# ---------------------------------------------------------------------------

def _entry(object_type: str, category: str, event: str, level: str = "INFO", **fields: Any) -> LogEntry:
    """Stamp an event; fields that are None are left out."""
    data: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    data.update((k, v) for k, v in fields.items() if v is not None)
    return LogEntry(object_type, category, data)


def log_operation(
    operation: str,
    execution_id: str,
    actor_id: Any,
    task_id: Any,
    old_status: Optional[str],
    new_status: str,
    assignee_changed: bool = False,
    old_assignee_id: Optional[Any] = None,
    new_assignee_id: Optional[Any] = None,
    duration_ms: Optional[float] = None,
) -> LogEntry:
    """An operation the engine accepted and persisted."""
    return _entry(
        "tasks", "execution", f"task_{operation}",
        execution_id=execution_id,
        actor_id=actor_id,
        task_id=task_id,
        operation=operation,
        old_status=old_status,
        new_status=new_status,
        assignee_changed=assignee_changed,
        old_assignee_id=old_assignee_id if assignee_changed else None,
        new_assignee_id=new_assignee_id if assignee_changed else None,
        duration_ms=duration_ms,
    )


def log_operation_denied(
    operation: str,
    execution_id: Optional[str],
    actor_id: Any,
    task_id: Any,
    error: Dict[str, Any],
) -> LogEntry:
    """An operation the engine rejected; *error* is WorkflowError.to_dict()."""
    return _entry(
        "tasks", "security", "task_operation_denied", "WARNING",
        execution_id=execution_id,
        actor_id=actor_id,
        task_id=task_id,
        operation=operation,
        error_type=error.get("error_type"),
        message=error.get("message"),
        reason=error.get("reason"),
    )


def log_task_created(execution_id: str, actor_id: Any, task_id: Any, task_type: str) -> LogEntry:
    return _entry(
        "tasks", "execution", "task_created",
        execution_id=execution_id, actor_id=actor_id, task_id=task_id, task_type=task_type,
    )


def log_user_event(event: str, user_id: Any, role: str, is_active: bool) -> LogEntry:
    return _entry("users", "execution", event, user_id=user_id, role=role, is_active=is_active)


def log_system_event(event: str, level: str = "INFO", details: Optional[Dict[str, Any]] = None) -> LogEntry:
    return _entry("system", "execution", event, level, details=details or None)


# ---------------------------------------------------------------------------
# Retention
# ---------------------------------------------------------------------------

class LogRetentionManager:
    """
    Deletes files older than their category's retention and gzips
    plain files older than compress_after_days.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        retention_days: Optional[Dict[str, int]] = None,
        compress_after_days: int = 7,
    ):
        self._log_dir = Path(log_dir)
        self._retention = retention_days or dict(DEFAULT_RETENTION)
        self._compress_after = compress_after_days

    def cleanup(self, today: Optional[date] = None) -> Dict[str, int]:
        """Apply retention once. Returns {"deleted": N, "compressed": M}."""
        today = today or date.today()
        counts = {"deleted": 0, "compressed": 0}

        for category, path in list(self._log_files()):
            day = _file_day(path)
            if day is None:
                continue
            age = (today - day).days
            if age > self._retention.get(category, DEFAULT_RETENTION["execution"]):
                path.unlink()
                counts["deleted"] += 1
            elif age > self._compress_after and path.suffix == ".jsonl":
                if _gzip_in_place(path):
                    counts["compressed"] += 1

        logger.info("Log retention on %s: %s", self._log_dir, counts)
        return counts

    def _log_files(self) -> Iterator[Tuple[str, Path]]:
        for object_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for category in categories:
                folder = self._log_dir / object_type / category
                if not folder.is_dir():
                    continue
                for path in sorted(folder.iterdir()):
                    if path.is_file():
                        yield category, path


def _file_day(path: Path) -> Optional[date]:
    """2026-02-12.jsonl and 2026-02-12.jsonl.gz both give 2026-02-12."""
    try:
        return date.fromisoformat(path.name.split(".", 1)[0])
    except ValueError:
        return None


def _gzip_in_place(path: Path) -> bool:
    target = path.with_suffix(path.suffix + ".gz")
    try:
        with path.open("rb") as src, gzip.open(target, "wb") as dst:
            shutil.copyfileobj(src, dst)
        path.unlink()
    except OSError:
        logger.exception("Failed to compress %s", path)
        target.unlink(missing_ok=True)
        return False
    return True


# ---------------------------------------------------------------------------
# Process-wide queue
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Start the process-wide audit queue, replacing any running one."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
    _global_queue = AsyncLogQueue(
        FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def init_logging_from_config(config: Any) -> AsyncLogQueue:
    """Set the "docflow" logger level and start the audit queue from a DocflowConfig."""
    logging.getLogger("docflow").setLevel(config.logging.level)
    queue_cfg = config.logging.async_queue
    return init_logging(
        log_dir=config.logging.directory,
        flush_interval_ms=queue_cfg.flush_interval_ms,
        flush_batch_size=queue_cfg.flush_batch_size,
        max_queue_size=queue_cfg.max_queue_size,
    )


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Queue an audit entry. False when logging is not initialised or the queue is full."""
    if _global_queue is None:
        logger.debug("Audit queue not running; dropped %s", entry.data.get("event"))
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Drain and stop the process-wide queue."""
    global _global_queue
    if _global_queue is not None:
        _global_queue.stop()
        _global_queue = None
