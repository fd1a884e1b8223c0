"""Structured admission observability helpers."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock


_WRITE_LOCK = Lock()
_LOGGER = logging.getLogger("registrar.admission")

_COUNTED_EVENTS = ("enrolled", "waitlisted", "promoted", "withdrawn", "resized", "invariant_violation")


def _observability_root() -> Path:
    raw = os.getenv("ADMISSION_OBSERVABILITY_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "data" / "admission_observability"


def _events_path() -> Path:
    root = _observability_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "admission_events.jsonl"


def _stats_path() -> Path:
    root = _observability_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "admission_stats.json"


def _empty_stats() -> dict:
    stats = {"total_events": 0, "last_violation": ""}
    for name in _COUNTED_EVENTS:
        stats[name] = 0
    return stats


def get_admission_stats() -> dict:
    """Return the current aggregate admission counters."""
    stats_file = _stats_path()
    if not stats_file.exists():
        return _empty_stats()
    try:
        return json.loads(stats_file.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return _empty_stats()


def record_admission_event(event: str, **fields) -> None:
    """Append an event to the jsonl log and bump the aggregate counters."""
    payload = {"event": event, **fields}
    payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    with _WRITE_LOCK:
        with _events_path().open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(payload, ensure_ascii=True, default=str) + "\n")
        _update_stats(payload)
    if event == "invariant_violation":
        _LOGGER.error("admission_event %s", json.dumps(payload, ensure_ascii=True, default=str))
    else:
        _LOGGER.info("admission_event %s", json.dumps(payload, ensure_ascii=True, default=str))


def _update_stats(event: dict) -> None:
    stats_file = _stats_path()
    stats = _empty_stats()
    if stats_file.exists():
        try:
            stats.update(json.loads(stats_file.read_text(encoding="utf-8")))
        except ValueError:
            pass
    name = event.get("event")
    stats["total_events"] += 1
    if name in _COUNTED_EVENTS:
        stats[name] += 1
    if name == "invariant_violation":
        stats["last_violation"] = str(event.get("error", ""))
    stats["updated_at"] = datetime.now(timezone.utc).isoformat()
    stats_file.write_text(json.dumps(stats, ensure_ascii=True, indent=2), encoding="utf-8")
