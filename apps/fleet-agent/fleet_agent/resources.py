"""
Resource Assigner
=================

Gives each identity a synthetic capacity profile (one compute descriptor from
the catalogue plus a storage quantity in [0, 500) GB) the first time it is
needed, and never changes it afterwards. The profile is reported in every
heartbeat.
"""

from __future__ import annotations
import json
import logging
import random
from pathlib import Path
from typing import Optional

from .config import ConfigError
from .store import RecordStore

log = logging.getLogger(__name__)

MAX_STORAGE_GB = 500

DEFAULT_CATALOGUE = (
    "NVIDIA GeForce RTX 4090",
    "NVIDIA GeForce RTX 4080 SUPER",
    "NVIDIA GeForce RTX 4070 Ti",
    "NVIDIA GeForce RTX 3090",
    "NVIDIA GeForce RTX 3080",
    "NVIDIA GeForce RTX 3060",
    "NVIDIA RTX A6000",
    "NVIDIA A100-SXM4-80GB",
    "NVIDIA H100 PCIe",
    "NVIDIA L4",
    "AMD Radeon RX 7900 XTX",
    "AMD Radeon RX 6800 XT",
)


def load_catalogue(path: Optional[Path]) -> list[str]:
    """Compute descriptors from a JSON list, or the built-in catalogue."""
    if path is None:
        return list(DEFAULT_CATALOGUE)
    try:
        entries = json.loads(Path(path).read_text())
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read compute catalogue {path}: {e}") from e
    if not isinstance(entries, list) or not entries:
        raise ConfigError(f"Compute catalogue {path} must be a non-empty JSON list")
    return [str(e) for e in entries]


class ResourceAssigner:
    def __init__(self, store: RecordStore, catalogue: list[str], rng: Optional[random.Random] = None):
        if not catalogue:
            raise ValueError("catalogue must not be empty")
        self.store     = store
        self.catalogue = list(catalogue)
        self.rng       = rng or random.Random()

    def ensure_resources(self, address: str) -> tuple[str, str]:
        """Return the identity's (gpu, storage), assigning them on first use."""
        record = self.store.get_or_create(address)
        if not record.has_resources:
            gpu     = self.rng.choice(self.catalogue)
            storage = f"{self.rng.random() * MAX_STORAGE_GB:.2f}"
            if self.store.assign_resources(address, gpu, storage):
                log.debug(f"Assigned {gpu} / {storage} GB to {address}")
        return record.gpu, record.storage
