"""JSONL event logging for extraction and commit observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    touchpoint_id: str | None = None
    person_id: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".relmind" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        touchpoint_id: str | None = None,
        person_id: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            touchpoint_id=touchpoint_id,
            person_id=person_id,
            duration_ms=duration_ms,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_extraction_start(self, touchpoint_id: str, person_id: str) -> None:
        """Log the start of the extract phase."""
        self.log("extraction_start", touchpoint_id=touchpoint_id, person_id=person_id)

    def log_extraction_staged(
        self,
        touchpoint_id: str,
        mentions: int,
        facts: int,
        auto_bound: int,
        *,
        duration_ms: float | None = None,
    ) -> None:
        """Log a staged extraction result."""
        self.log(
            "extraction_staged",
            touchpoint_id=touchpoint_id,
            duration_ms=duration_ms,
            mentions=mentions,
            facts=facts,
            auto_bound=auto_bound,
        )

    def log_extraction_failed(
        self,
        touchpoint_id: str,
        error: str,
        *,
        duration_ms: float | None = None,
    ) -> None:
        """Log a failed extract phase."""
        self.log(
            "extraction_failed",
            touchpoint_id=touchpoint_id,
            duration_ms=duration_ms,
            error=error,
        )

    def log_commit(
        self,
        touchpoint_id: str,
        *,
        facts: int,
        persons_created: int,
        relationships_created: int,
        duration_ms: float | None = None,
    ) -> None:
        """Log an applied commit."""
        self.log(
            "commit_applied",
            touchpoint_id=touchpoint_id,
            duration_ms=duration_ms,
            facts=facts,
            persons_created=persons_created,
            relationships_created=relationships_created,
        )

    def log_commit_failed(self, touchpoint_id: str, error: str) -> None:
        """Log a rolled back commit."""
        self.log("commit_failed", touchpoint_id=touchpoint_id, error=error)

    def log_review_cancelled(self, touchpoint_id: str) -> None:
        """Log when the reviewer discards a staged result."""
        self.log("review_cancelled", touchpoint_id=touchpoint_id)


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
