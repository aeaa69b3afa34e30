"""
Fleet Agent — Main Daemon
=========================

The entry point for the fleet daemon.

Startup sequence:
  1. Load config, wallet list and proxy list (abort if proxies are too few)
  2. Ask whether to route traffic through the proxies
  3. Claim pending daily rewards for identities that already hold a token
  4. Schedule reward-claim (12h), medal-claim (12h), account-details (5m)
  5. Provision every identity in the background and start its supervisor

Safe shutdown:
  SIGTERM / SIGINT → cancel retry waits → close every websocket → exit
"""

from __future__ import annotations
import argparse
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import Callable, Optional

from .config import ConfigError, check_proxy_count, load_config, load_proxies, load_wallets
from .identity import IdentityContext
from .provisioner import CredentialProvisioner
from .resources import ResourceAssigner, load_catalogue
from .rewards import RewardClient
from .scheduler import FleetScheduler
from .store import AccountDirectory, RecordStore

log = logging.getLogger("fleet_agent.agent")


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level  = getattr(logging, level.upper(), logging.INFO),
        format = "[%(asctime)s] %(levelname)s %(name)s — %(message)s",
        datefmt= "%Y-%m-%dT%H:%M:%S",
    )


# ─── Operator prompt ──────────────────────────────────────────────────────────

def ask_use_proxy(ask: Callable[[str], str] = input) -> bool:
    while True:
        answer = ask("Do you want to use a proxy? (y/n): ").strip().lower()
        if answer == "y":
            return True
        if answer == "n":
            return False
        print("Please answer with y or n.")


# ─── Wiring ───────────────────────────────────────────────────────────────────

def build_scheduler(config, wallets: list[str], proxies: list[str], use_proxy: bool,
                    catalogue: Optional[list[str]] = None,
                    stop: Optional[threading.Event] = None) -> FleetScheduler:
    stop      = stop or threading.Event()
    store     = RecordStore.load(config.data_path)
    accounts  = AccountDirectory()
    if catalogue is None:
        catalogue = load_catalogue(config.catalogue_path)
    resources = ResourceAssigner(store, catalogue)
    contexts  = [
        IdentityContext.build(i, address, proxies, use_proxy)
        for i, address in enumerate(wallets)
    ]
    return FleetScheduler(
        config      = config,
        contexts    = contexts,
        store       = store,
        accounts    = accounts,
        provisioner = CredentialProvisioner(config, store, stop),
        rewards     = RewardClient(config, accounts, stop),
        resources   = resources,
        stop        = stop,
    )


# ─── Entry Point ──────────────────────────────────────────────────────────────

def main(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(description="Fleet Agent — per-wallet worker daemon")
    parser.add_argument("--config",    type=Path, default=os.getenv("FLEET_CONFIG"),
                        help="JSON config file (endpoints, delays, paths)")
    parser.add_argument("--log-level", default=os.getenv("FLEET_LOG_LEVEL", "INFO"),
                        help="Logging level (default: INFO)")
    proxy = parser.add_mutually_exclusive_group()
    proxy.add_argument("--use-proxy", dest="use_proxy", action="store_true", default=None,
                       help="Route traffic through proxy.txt without asking")
    proxy.add_argument("--no-proxy",  dest="use_proxy", action="store_false",
                       help="Connect directly without asking")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    try:
        config  = load_config(args.config)
        wallets = load_wallets(config.accounts_path)
        proxies = load_proxies(config.proxies_path)
        check_proxy_count(wallets, proxies)
        catalogue = load_catalogue(config.catalogue_path)
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    log.info(f"Fleet Agent starting — {len(wallets)} wallet(s), {len(proxies)} proxy(ies)")

    use_proxy = args.use_proxy if args.use_proxy is not None else ask_use_proxy()
    if use_proxy and not proxies:
        log.warning("Proxy requested but no proxies configured — connecting directly")

    scheduler = build_scheduler(config, wallets, proxies, use_proxy, catalogue=catalogue)

    signal.signal(signal.SIGTERM, lambda s, f: scheduler.stop.set())
    signal.signal(signal.SIGINT,  lambda s, f: scheduler.stop.set())

    try:
        scheduler.start()
        log.info("Fleet running. (Ctrl+C to stop)")
        scheduler.run_forever()
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    main()
