"""Append-only audit trail for admin actions."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock


_WRITE_LOCK = Lock()
_LOGGER = logging.getLogger("thrive.audit")


def _audit_root() -> Path:
    raw = os.getenv("AUDIT_LOG_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "data" / "audit"


def _events_path() -> Path:
    root = _audit_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "admin_events.jsonl"


def record_admin_event(action: str, actor_id: str, **details) -> dict:
    """Write one admin action to the jsonl audit file and the log."""
    payload = {"action": action, "actor_id": actor_id, **details}
    payload.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    with _WRITE_LOCK:
        with _events_path().open("a", encoding="utf-8") as fh:
            fh.write(json.dumps(payload, ensure_ascii=True, default=str) + "\n")
    _LOGGER.info("admin_event %s", json.dumps(payload, ensure_ascii=True, default=str))
    return payload


def read_admin_events(limit: int = 100, action: str | None = None) -> list[dict]:
    """Return the most recent audit entries, newest first."""
    path = _events_path()
    if not path.exists():
        return []
    out = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            _LOGGER.warning("skipping malformed audit line")
            continue
        if action and event.get("action") != action:
            continue
        out.append(event)
    return list(reversed(out))[:limit]
