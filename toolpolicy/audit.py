"""Structured audit log of resolution runs as newline-delimited JSON."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any
from uuid import uuid4

from .models import _thaw

if TYPE_CHECKING:
    from .resolver import Resolution

__all__ = ["AUDIT_FILE_PREFIX", "AuditEvent", "ProvenanceLogWriter", "events_for_resolution"]

LOGGER = logging.getLogger(__name__)

AUDIT_FILE_PREFIX = "toolpolicy-audit-"


def _format_ts(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    else:
        ts = ts.astimezone(timezone.utc)
    return ts.isoformat().replace("+00:00", "Z")


@dataclass
class AuditEvent:
    """One line of the audit log."""

    ts: datetime
    context_id: str
    event: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "ts": _format_ts(self.ts),
            "context_id": self.context_id,
            "event": self.event,
            "data": _thaw(self.data),
        }


def events_for_resolution(resolution: Resolution) -> list[AuditEvent]:
    """Expand ``resolution`` into a summary event followed by one event per decision."""

    trail = resolution.provenance
    summary = trail.summary
    events = [
        AuditEvent(
            ts=trail.resolved_at,
            context_id=trail.context_id,
            event="policy.resolved",
            data={
                "enabled": list(resolution.allowed_tool_ids()),
                "blocked": list(resolution.blocked_accommodations()),
                "autoActivate": list(resolution.auto_activate),
                "warnings": list(resolution.warnings),
                "summary": {
                    "totalFeatures": summary.total_features,
                    "enabled": summary.enabled,
                    "blocked": summary.blocked,
                    "notConfigured": summary.not_configured,
                    "byRule": dict(summary.by_rule),
                },
            },
        )
    ]
    for decision in trail.decisions:
        events.append(
            AuditEvent(
                ts=trail.resolved_at,
                context_id=trail.context_id,
                event="policy.decision",
                data={
                    "step": decision.step,
                    "accommodationId": decision.accommodation_id,
                    "toolId": decision.tool_id,
                    "rule": decision.rule.value,
                    "precedence": decision.precedence,
                    "action": decision.action.value,
                    "source": decision.source_type.value,
                    "reason": decision.reason,
                },
            )
        )
    return events


class ProvenanceLogWriter:
    """Append resolution audit events to a newline-delimited JSON file.

    ``path`` is written as given and nothing else in its directory is touched.
    Use :meth:`in_directory` for one file per run; only those
    ``toolpolicy-audit-*.jsonl`` files are subject to ``retention``.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._run_id = uuid4().hex
        self._sequence = 0
        self._handle: IO[str] | None = None
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def in_directory(cls, directory: str | Path, *, retention: int = 5) -> ProvenanceLogWriter:
        """Open a fresh per-run log in ``directory``, keeping the newest ``retention`` runs."""

        if retention < 1:
            raise ValueError("retention must be at least 1")
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        # Make room for the file about to be created.
        _prune_runs(directory, keep=retention - 1)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        writer = cls(directory / f"{AUDIT_FILE_PREFIX}{stamp}-{uuid4().hex[:8]}.jsonl")
        writer._open()
        return writer

    @property
    def run_id(self) -> str:
        return self._run_id

    def write(self, event: AuditEvent) -> None:
        payload = event.to_payload()
        with self._lock:
            payload["run_id"] = self._run_id
            payload["seq"] = self._sequence
            self._sequence += 1
            handle = self._open()
            handle.write(json.dumps(payload, sort_keys=True, ensure_ascii=False) + "\n")
            handle.flush()

    def write_resolution(self, resolution: Resolution) -> int:
        """Write every audit event for ``resolution``; returns the number written."""

        if not resolution.provenance.tracked:
            return 0
        events = events_for_resolution(resolution)
        for event in events:
            self.write(event)
        return len(events)

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def __enter__(self) -> ProvenanceLogWriter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _open(self) -> IO[str]:
        if self._handle is None:
            self._handle = self.path.open("a", encoding="utf-8")
        return self._handle


def _prune_runs(directory: Path, *, keep: int) -> None:
    runs = sorted(
        (path for path in directory.glob(f"{AUDIT_FILE_PREFIX}*.jsonl") if path.is_file()),
        key=lambda path: path.stat().st_mtime,
    )
    stale = runs[: max(len(runs) - keep, 0)]
    for path in stale:
        LOGGER.debug("removing old audit log %s", path)
        path.unlink(missing_ok=True)
