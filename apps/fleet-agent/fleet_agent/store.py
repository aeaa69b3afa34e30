"""
Identity Record Store
=====================

Flat JSON mapping of wallet address → IdentityRecord, read whole at startup
and rewritten whole on every mutation (token issued, resources assigned).

Each address is only ever written by its own identity's threads, so the
store lock exists to keep the resource assignment atomic and to take a
consistent snapshot for the JSON dump, not to arbitrate between identities.
"""

from __future__ import annotations
import base64
import json
import logging
import os
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)


def derive_worker_id(address: str) -> str:
    """Protocol-visible worker identifier. Pure function of the address."""
    return base64.b64encode(address.encode("utf-8")).decode("ascii")


# ─── Identity Record ──────────────────────────────────────────────────────────

@dataclass
class IdentityRecord:
    address:    str
    worker_id:  str
    session_id: str            # Random, generated once, sent in REGISTER
    token:      Optional[str] = None
    gpu:        Optional[str] = None
    storage:    Optional[str] = None   # "123.45"

    @classmethod
    def new(cls, address: str) -> "IdentityRecord":
        return cls(
            address    = address,
            worker_id  = derive_worker_id(address),
            session_id = str(uuid.uuid4()),
        )

    @property
    def has_resources(self) -> bool:
        return bool(self.gpu) and bool(self.storage)

    def to_dict(self) -> dict:
        return {
            "address":  self.address,
            "workerID": self.worker_id,
            "id":       self.session_id,
            "token":    self.token,
            "gpu":      self.gpu,
            "storage":  self.storage,
        }

    @classmethod
    def from_dict(cls, address: str, raw: dict) -> "IdentityRecord":
        storage = raw.get("storage")
        return cls(
            address    = address,
            worker_id  = derive_worker_id(address),
            session_id = raw.get("id") or str(uuid.uuid4()),
            token      = raw.get("token") or None,
            gpu        = raw.get("gpu") or None,
            storage    = str(storage) if storage not in (None, "") else None,
        )


# ─── Record Store ─────────────────────────────────────────────────────────────

class RecordStore:
    def __init__(self, path: Optional[Path], records: Optional[dict[str, IdentityRecord]] = None):
        self.path = Path(path) if path is not None else None
        self._records: dict[str, IdentityRecord] = dict(records or {})
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> "RecordStore":
        """Read the store. A missing or unreadable file is an empty store."""
        path = Path(path)
        try:
            raw = json.loads(path.read_text())
        except FileNotFoundError:
            log.info(f"No existing data store found, creating a new {path.name}")
            return cls(path)
        except (OSError, ValueError) as e:
            log.warning(f"Could not read data store {path}: {e} — starting empty")
            return cls(path)

        if not isinstance(raw, dict):
            log.warning(f"Data store {path} is not a JSON object — starting empty")
            return cls(path)

        records = {
            address: IdentityRecord.from_dict(address, entry)
            for address, entry in raw.items()
            if isinstance(entry, dict)
        }
        log.info(f"Loaded {len(records)} identity record(s) from {path}")
        return cls(path, records)

    # ─── Keyed access ─────────────────────────────────────────────────────────

    def get(self, address: str) -> Optional[IdentityRecord]:
        return self._records.get(address)

    def get_or_create(self, address: str) -> IdentityRecord:
        with self._lock:
            record = self._records.get(address)
            if record is None:
                record = IdentityRecord.new(address)
                self._records[address] = record
            return record

    def token_for(self, address: str) -> Optional[str]:
        record = self._records.get(address)
        return record.token if record else None

    def __contains__(self, address: str) -> bool:
        return address in self._records

    def __len__(self) -> int:
        return len(self._records)

    # ─── Mutations ────────────────────────────────────────────────────────────

    def set_token(self, address: str, token: str) -> bool:
        """Store a freshly issued token. Never replaces an existing one."""
        with self._lock:
            record = self.get_or_create(address)
            if record.token:
                return False
            record.token = token
        self.save()
        return True

    def assign_resources(self, address: str, gpu: str, storage: str) -> bool:
        """Set the resource profile once. Returns False if it was already set."""
        with self._lock:
            record = self.get_or_create(address)
            if record.has_resources:
                return False
            record.gpu = gpu
            record.storage = storage
        self.save()
        return True

    # ─── Persistence ──────────────────────────────────────────────────────────

    def snapshot(self) -> dict:
        with self._lock:
            return {address: r.to_dict() for address, r in self._records.items()}

    def save(self):
        """Rewrite the whole store. Write errors are logged, not raised."""
        if self.path is None:
            return
        data = self.snapshot()
        with self._write_lock:
            tmp = self.path.with_name(self.path.name + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_text(json.dumps(data, indent=2))
                os.replace(tmp, self.path)
            except OSError as e:
                log.error(f"Error writing to {self.path}: {e}")


# ─── Remote account ids ───────────────────────────────────────────────────────

class AccountDirectory:
    """address → remote account id. In memory only, used for log correlation."""

    def __init__(self):
        self._ids: dict[str, str] = {}

    def set(self, address: str, account_id):
        self._ids[address] = str(account_id)

    def get(self, address: str) -> Optional[str]:
        return self._ids.get(address)

    def __contains__(self, address: str) -> bool:
        return address in self._ids
