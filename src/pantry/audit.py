"""
Audit trail for ordering flows.

Entries are append-only JSONL with an HMAC hash chain so tampering is
detected during reads. Writing never fails the calling flow: an entry that
cannot be persisted is logged and dropped.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import secrets
import time
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .storage import ensure_private_dir, ensure_private_file

logger = logging.getLogger(__name__)

DEFAULT_AUDIT_PATH = Path.home() / ".pantry" / "audit.jsonl"
DEFAULT_AUDIT_KEY_PATH = Path.home() / ".pantry-secrets" / "audit_hmac.key"
AUDIT_HMAC_KEY_ENV = "PANTRY_AUDIT_HMAC_KEY"


class AuditLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


@dataclass
class AuditEntry:
    flow_id: str
    event: str
    timestamp: float
    level: str = AuditLevel.INFO.value
    data: Optional[dict[str, Any]] = None
    prev_hash: Optional[str] = None
    event_hash: Optional[str] = None

    def to_json(self) -> str:
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d, separators=(",", ":"))


def json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)


def _plain(data: Any) -> Any:
    """Reduce ``data`` to the JSON values it will read back as."""
    return json.loads(json.dumps(data, default=json_default))


class AuditTrail:
    """Tamper-evident append-only log of ordering flow events."""

    def __init__(
        self,
        path: Optional[Path] = None,
        key_path: Optional[Path] = None,
        hmac_key: Optional[str] = None,
    ):
        self.path = Path(path) if path else DEFAULT_AUDIT_PATH
        self.key_path = Path(key_path) if key_path else DEFAULT_AUDIT_KEY_PATH

        ensure_private_dir(self.path.parent)
        ensure_private_file(self.path)

        self._hmac_key = self._load_or_create_key(hmac_key)
        self._last_hash = self._scan_last_hash()

    def _load_or_create_key(self, explicit: Optional[str]) -> bytes:
        env_key = explicit or os.getenv(AUDIT_HMAC_KEY_ENV)
        if env_key:
            return env_key.encode()
        ensure_private_dir(self.key_path.parent)
        ensure_private_file(self.key_path)
        if self.key_path.stat().st_size > 0:
            return self.key_path.read_bytes().strip()
        key = secrets.token_hex(32).encode()
        self.key_path.write_bytes(key)
        ensure_private_file(self.key_path)
        return key

    def _scan_last_hash(self) -> str:
        last = ""
        with open(self.path, "r") as f:
            for line in f:
                if not line.strip():
                    continue
                last = json.loads(line).get("event_hash", "")
        return last

    def _event_hash(self, payload: dict, prev_hash: str) -> str:
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        digest = hmac.new(self._hmac_key, f"{prev_hash}|{canonical}".encode(), hashlib.sha256)
        return digest.hexdigest()

    def log(
        self,
        flow_id: str,
        event: str,
        data: Optional[dict[str, Any]] = None,
        level: AuditLevel = AuditLevel.INFO,
    ) -> Optional[AuditEntry]:
        base_payload = {
            "flow_id": flow_id,
            "event": event,
            "timestamp": time.time(),
            "level": level.value,
            "data": _plain(data) if data is not None else None,
        }
        payload = {k: v for k, v in base_payload.items() if v is not None}
        prev_hash = self._last_hash
        current_hash = self._event_hash(payload, prev_hash)
        entry = AuditEntry(**payload, prev_hash=prev_hash or None, event_hash=current_hash)

        try:
            with open(self.path, "a") as f:
                f.write(entry.to_json() + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.warning("Could not write audit entry %s/%s: %s", flow_id, event, e)
            return None

        self._last_hash = current_hash
        return entry

    def log_flow_start(self, flow_id: str, flow_type: str) -> Optional[AuditEntry]:
        return self.log(flow_id, "flow_start", {"flowType": flow_type})

    def log_step(self, flow_id: str, step: str, data: Optional[dict[str, Any]] = None) -> Optional[AuditEntry]:
        return self.log(flow_id, step, data)

    def log_flow_complete(self, flow_id: str, result: dict[str, Any]) -> Optional[AuditEntry]:
        return self.log(flow_id, "flow_complete", result)

    def log_flow_error(self, flow_id: str, error: str) -> Optional[AuditEntry]:
        return self.log(flow_id, "flow_error", {"error": error}, AuditLevel.ERROR)

    def log_warning(self, flow_id: str, message: str, data: Optional[dict[str, Any]] = None) -> Optional[AuditEntry]:
        return self.log(flow_id, "warning", {"message": message, **(data or {})}, AuditLevel.WARN)

    def read_entries(self, flow_id: Optional[str] = None, limit: int = 100) -> list[AuditEntry]:
        """Verify the whole chain, then return the latest matching entries."""
        entries: list[AuditEntry] = []
        expected_prev = ""
        with open(self.path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                raw = json.loads(line)

                payload = {k: v for k, v in raw.items() if k not in {"prev_hash", "event_hash"}}
                prev_hash = raw.get("prev_hash", "") or ""
                event_hash = raw.get("event_hash", "") or ""
                if prev_hash != expected_prev:
                    raise RuntimeError("Audit chain broken: previous hash mismatch")
                if not hmac.compare_digest(self._event_hash(payload, prev_hash), event_hash):
                    raise RuntimeError("Audit chain broken: event hash mismatch")
                expected_prev = event_hash

                if flow_id and raw.get("flow_id") != flow_id:
                    continue
                entries.append(AuditEntry(**{
                    k: v for k, v in raw.items() if k in AuditEntry.__dataclass_fields__
                }))

        self._last_hash = expected_prev
        return entries[-limit:] if limit else entries

    def summary(self, flow_id: Optional[str] = None) -> dict:
        entries = self.read_entries(flow_id=flow_id, limit=0)
        by_event: dict[str, int] = {}
        for e in entries:
            by_event[e.event] = by_event.get(e.event, 0) + 1
        return {
            "total_entries": len(entries),
            "by_event": by_event,
            "errors": sum(1 for e in entries if e.level == AuditLevel.ERROR.value),
            "last_entry": entries[-1].to_json() if entries else None,
        }
