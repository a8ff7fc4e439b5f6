# app/client/local_store.py
"""
Durable device-local storage: the pending-event queue and cached credentials.

Everything lives in one JSON file. Writes go to a temp file that is then renamed
over the original, so a crash mid-write leaves the previous version intact.
"""

import json
import os
import tempfile
import threading
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional

from app.config import settings
from app.models.enums import Phase
from app.utils.clock import to_wire, utcnow
from app.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class PendingEvent:
    kind: Phase
    reservation_id: str
    payload: dict                       # {"credential": wire?, "subject_id": ...?}
    enqueued_at: str = field(default_factory=lambda: to_wire(utcnow()))
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    attempts: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PendingEvent":
        return cls(
            kind=Phase(data["kind"]),
            reservation_id=data["reservation_id"],
            payload=data.get("payload") or {},
            enqueued_at=data["enqueued_at"],
            id=data["id"],
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
        )


class LocalStore:
    def __init__(self, path: Optional[str] = None):
        self.path = path or settings.SYNC_QUEUE_PATH
        self._lock = threading.Lock()

    # ── File I/O ─────────────────────────────────────────────────────────

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {"queue": [], "credentials": {}}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        data.setdefault("queue", [])
        data.setdefault("credentials", {})
        return data

    def _write(self, data: dict):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".checkin-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    # ── Queue ────────────────────────────────────────────────────────────

    def append(self, event: PendingEvent):
        with self._lock:
            data = self._read()
            data["queue"].append(event.to_dict())
            self._write(data)

    def pending(self) -> list:
        with self._lock:
            return [PendingEvent.from_dict(d) for d in self._read()["queue"]]

    def remove(self, event_id: str):
        with self._lock:
            data = self._read()
            data["queue"] = [d for d in data["queue"] if d["id"] != event_id]
            self._write(data)

    def update(self, event: PendingEvent):
        with self._lock:
            data = self._read()
            data["queue"] = [event.to_dict() if d["id"] == event.id else d for d in data["queue"]]
            self._write(data)

    # ── Credential cache ─────────────────────────────────────────────────

    def cache_credential(self, reservation_id: str, wire: str):
        with self._lock:
            data = self._read()
            data["credentials"][reservation_id] = {"wire": wire, "cached_at": to_wire(utcnow())}
            self._write(data)

    def cached_credential(self, reservation_id: str) -> Optional[str]:
        with self._lock:
            entry = self._read()["credentials"].get(reservation_id)
        return entry["wire"] if entry else None
