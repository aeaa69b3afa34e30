"""
Agent Configuration
===================

Everything the fleet needs before the first network call:

  - AgentConfig: endpoints, worker descriptors, delays and intervals
  - the credential list (one wallet address per identity, required)
  - the proxy list (optional, but never shorter than the credential list)

Resolution order: built-in defaults → JSON config file → FLEET_* env vars.
Any problem here is fatal and raised as ConfigError before the fleet starts.
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

log = logging.getLogger(__name__)


class ConfigError(Exception):
    """Startup input is missing or inconsistent. The process must not start."""


# ─── Config ───────────────────────────────────────────────────────────────────

@dataclass
class AgentConfig:
    # Endpoints
    api_base_url:     str = "https://api.orchestrator.example.com"
    rewards_base_url: str = "https://rewards.orchestrator.example.com"
    ws_url:           str = "wss://api.orchestrator.example.com/ws/v1/orch"

    # How the worker describes itself to the orchestrator
    worker_type: str = "LWEXT"
    worker_host: str = "chrome-extension://fleet-agent"
    origin:      str = "chrome-extension://fleet-agent"
    user_agent:  str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
    )
    accept_language: str = "en-US,en;q=0.9"

    # Retry pacing (seconds) and bounded attempt counts
    provision_retry_delay: float = 60.0
    account_retry_delay:   float = 60.0
    details_retry_delay:   float = 60.0
    claim_retry_delay:     float = 60.0
    details_attempts:      int   = 3
    claim_attempts:        int   = 3

    # Connection supervisor
    heartbeat_interval: float = 30.0
    reconnect_delay:    float = 30.0

    # Recurring jobs
    reward_claim_hours:      float = 12.0
    medal_claim_hours:       float = 12.0
    details_refresh_minutes: float = 5.0
    medal_tiers:             int   = 8

    request_timeout: float = 30.0
    max_workers:     int   = 16

    # Files
    data_path:      Path           = field(default_factory=lambda: Path("data.json"))
    accounts_path:  Path           = field(default_factory=lambda: Path("account.txt"))
    proxies_path:   Path           = field(default_factory=lambda: Path("proxy.txt"))
    catalogue_path: Optional[Path] = None

    # ─── Derived endpoints ────────────────────────────────────────────────────

    def api_url(self, path: str) -> str:
        return f"{self.api_base_url.rstrip('/')}/api/v1/{path.lstrip('/')}"

    def rewards_url(self, path: str) -> str:
        return f"{self.rewards_base_url.rstrip('/')}/api/v1/{path.lstrip('/')}"


_PATH_FIELDS = {"data_path", "accounts_path", "proxies_path", "catalogue_path"}

ENV_OVERRIDES = {
    "FLEET_DATA_PATH":      "data_path",
    "FLEET_ACCOUNTS_PATH":  "accounts_path",
    "FLEET_PROXIES_PATH":   "proxies_path",
    "FLEET_CATALOGUE_PATH": "catalogue_path",
}


def load_config(path: Optional[Path] = None, env: Optional[dict] = None) -> AgentConfig:
    """
    Build the AgentConfig from defaults, an optional JSON file and the
    FLEET_* environment variables (in that order of precedence, lowest first).
    """
    env = os.environ if env is None else env
    values: dict = {}

    if path is not None:
        try:
            raw = json.loads(Path(path).read_text())
        except (OSError, ValueError) as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")

        known = {f.name for f in fields(AgentConfig)}
        unknown = sorted(set(raw) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        values.update(raw)

    for var, name in ENV_OVERRIDES.items():
        if env.get(var):
            values[name] = env[var]

    for name in _PATH_FIELDS:
        if values.get(name) is not None:
            values[name] = Path(values[name])

    return AgentConfig(**values)


# ─── Input lists ──────────────────────────────────────────────────────────────

def _read_tokens(path: Path) -> list[str]:
    return [t for t in Path(path).read_text().split() if t]


def load_wallets(path: Path) -> list[str]:
    """Credential list. Unreadable or empty is fatal."""
    try:
        wallets = _read_tokens(path)
    except OSError as e:
        raise ConfigError(f"Error reading {path}: {e}") from e
    if not wallets:
        raise ConfigError(f"No wallet addresses found in {path}")
    return wallets


def load_proxies(path: Path) -> list[str]:
    """Proxy list. A missing file just means no proxies."""
    try:
        return _read_tokens(path)
    except OSError as e:
        log.warning(f"Error reading {path}: {e} — running without proxies")
        return []


def check_proxy_count(wallets: list[str], proxies: list[str]):
    if proxies and len(proxies) < len(wallets):
        raise ConfigError(
            f"The number of proxies ({len(proxies)}) is less than the number of "
            f"wallets ({len(wallets)}). Please provide enough proxies."
        )
