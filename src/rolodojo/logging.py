"""JSONL event logging for the summoning pipeline."""

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
    rolo_id: str | None = None
    subject_uri: str | None = None
    attribute_key: str | None = None
    provider: str | None = None
    confidence: float | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {} and v != []}


class JSONLLogger:
    """Logger that writes structured events in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "events.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".rolodojo" / "logs"
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
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict()) + "\n")

    def log(
        self,
        event: str,
        *,
        rolo_id: str | None = None,
        subject_uri: str | None = None,
        attribute_key: str | None = None,
        provider: str | None = None,
        confidence: float | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            rolo_id=rolo_id,
            subject_uri=subject_uri,
            attribute_key=attribute_key,
            provider=provider,
            confidence=confidence,
            duration_ms=duration_ms,
            error=error,
            extra={k: v for k, v in extra.items() if v is not None},
        )
        self._write(entry)

    def log_summoning(
        self,
        rolo_id: str,
        kind: str,
        *,
        subject_uri: str | None = None,
        confidence: float | None = None,
        trigger: str | None = None,
    ) -> None:
        """Log a new ledger entry."""
        self.log(
            "summoning",
            rolo_id=rolo_id,
            subject_uri=subject_uri,
            confidence=confidence,
            kind=kind,
            trigger=trigger,
        )

    def log_extraction(
        self,
        rolo_id: str,
        subject_uri: str,
        attribute_key: str,
        *,
        created_record: bool,
        confidence: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log a fact written to the vault (or a failed attempt)."""
        self.log(
            "extraction",
            rolo_id=rolo_id,
            subject_uri=subject_uri,
            attribute_key=attribute_key,
            confidence=confidence,
            error=error,
            created_record=created_record,
        )

    def log_soft_delete(self, rolo_id: str, subject_uri: str, attribute_key: str) -> None:
        self.log(
            "soft_delete",
            rolo_id=rolo_id,
            subject_uri=subject_uri,
            attribute_key=attribute_key,
        )

    def log_health_check(
        self,
        provider: str,
        state: str,
        *,
        model: str | None = None,
        message: str | None = None,
    ) -> None:
        """Log a health state change of the inference endpoint."""
        self.log(
            "health_check",
            provider=provider,
            state=state,
            model=model,
            message=message,
        )

    def log_synthesis(
        self,
        rolo_id: str,
        subject_uri: str,
        confidence: float,
        *,
        duration_ms: float | None = None,
    ) -> None:
        self.log(
            "synthesis",
            rolo_id=rolo_id,
            subject_uri=subject_uri,
            confidence=confidence,
            duration_ms=duration_ms,
        )

    def log_ghost(self, rolo_id: str, original_length: int, summary_length: int) -> None:
        """Log a ledger entry whose text was replaced by a summary."""
        self.log(
            "ghost",
            rolo_id=rolo_id,
            original_length=original_length,
            summary_length=summary_length,
        )


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Create the event logger for a Dojo home."""
    return JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
