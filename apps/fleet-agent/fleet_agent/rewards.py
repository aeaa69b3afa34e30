"""
Reward / Account Client
=======================

Request helpers against the account and reward endpoints. No state of its
own beyond the account directory it fills in.

  fetch_account_id       GET users/me                      retry forever
  fetch_account_details  GET reward_realtime/history/reward bounded, non-fatal
  check_and_claim_reward GET claim_details [+ claim_reward]  bounded, non-fatal
  claim_medals           PUT claim_tier for tiers 1..N      best effort
"""

from __future__ import annotations
import logging
import threading
from dataclasses import dataclass
from typing import Optional

import requests

from .config import AgentConfig
from .identity import IdentityContext
from .retry import RetryCancelled, RetryExhausted, RetryPolicy, retry_with_fixed_delay
from .store import AccountDirectory

log = logging.getLogger(__name__)

# Transport failures plus response bodies that are not the expected shape
RETRYABLE = (requests.RequestException, ValueError, KeyError, TypeError, IndexError, AttributeError)


@dataclass
class AccountDetails:
    total_heartbeats: int
    reward_points:    float
    epoch_name:       str

    @property
    def total_points(self) -> float:
        return round(self.total_heartbeats + self.reward_points, 2)


class RewardClient:
    def __init__(
        self,
        config:   AgentConfig,
        accounts: AccountDirectory,
        stop:     threading.Event,
        http=requests,
    ):
        self.config   = config
        self.accounts = accounts
        self.stop     = stop
        self.http     = http

    # ─── HTTP ─────────────────────────────────────────────────────────────────

    def _get(self, url: str, token: str, ctx: IdentityContext) -> dict:
        resp = self.http.get(
            url,
            headers = {"Authorization": f"Bearer {token}"},
            proxies = ctx.requests_proxies(),
            timeout = self.config.request_timeout,
        )
        resp.raise_for_status()
        return resp.json() or {}

    def _put(self, url: str, token: str, ctx: IdentityContext, body: dict) -> dict:
        resp = self.http.put(
            url,
            json    = body,
            headers = {"Authorization": f"Bearer {token}"},
            proxies = ctx.requests_proxies(),
            timeout = self.config.request_timeout,
        )
        resp.raise_for_status()
        return resp.json() or {}

    # ─── Account id ───────────────────────────────────────────────────────────

    def fetch_account_id(self, token: str, ctx: IdentityContext) -> Optional[str]:
        """
        Resolve the remote account id and record it in the directory.
        Blocks until it succeeds; returns None only on shutdown.
        """
        def attempt() -> str:
            body = self._get(self.config.api_url("users/me"), token, ctx)
            return body["data"]["id"]

        try:
            account_id = retry_with_fixed_delay(
                attempt,
                RetryPolicy.forever(self.config.account_retry_delay),
                operation = f"accountID lookup for wallet {ctx.address}",
                stop      = self.stop,
                retry_on  = RETRYABLE,
                prefix    = ctx.tag(),
            )
        except RetryCancelled:
            return None

        self.accounts.set(ctx.address, account_id)
        log.info(f"{ctx.tag(self.accounts)} AccountID resolved for wallet {ctx.address}")
        return self.accounts.get(ctx.address)

    # ─── Account details ──────────────────────────────────────────────────────

    def fetch_account_details(self, token: str, ctx: IdentityContext) -> Optional[AccountDetails]:
        """Heartbeat count + reward points. Failure is logged and tolerated."""
        def attempt() -> AccountDetails:
            realtime = self._get(self.config.rewards_url("reward_realtime"), token, ctx)
            self._get(self.config.rewards_url("reward_history"), token, ctx)
            reward   = self._get(self.config.rewards_url("reward"), token, ctx)

            rows = realtime.get("data") or [{}]
            current = reward.get("data") or {}
            return AccountDetails(
                total_heartbeats = int(rows[0].get("total_heartbeats") or 0),
                reward_points    = float(current.get("totalPoint") or 0),
                epoch_name       = current.get("name") or "",
            )

        try:
            details = retry_with_fixed_delay(
                attempt,
                RetryPolicy.bounded(self.config.details_attempts, self.config.details_retry_delay),
                operation = f"account details for wallet {ctx.address}",
                stop      = self.stop,
                retry_on  = RETRYABLE,
                prefix    = ctx.tag(self.accounts),
            )
        except (RetryExhausted, RetryCancelled):
            return None

        log.info(
            f"{ctx.tag(self.accounts)} Wallet {ctx.address}, "
            f"Total Heartbeat {details.total_heartbeats}, "
            f"Total Points {details.total_points:.2f} ({details.epoch_name})"
        )
        return details

    # ─── Daily reward ─────────────────────────────────────────────────────────

    def check_and_claim_reward(self, token: str, ctx: IdentityContext) -> bool:
        """Claim the daily reward unless it is already claimed. Returns True on a new claim."""
        def attempt() -> bool:
            status = self._get(self.config.rewards_url("claim_details"), token, ctx)
            if (status.get("data") or {}).get("claimed"):
                return False
            result = self._get(self.config.rewards_url("claim_reward"), token, ctx)
            return result.get("status") == "SUCCESS"

        try:
            claimed = retry_with_fixed_delay(
                attempt,
                RetryPolicy.bounded(self.config.claim_attempts, self.config.claim_retry_delay),
                operation = f"reward claim for wallet {ctx.address}",
                stop      = self.stop,
                retry_on  = RETRYABLE,
                prefix    = ctx.tag(self.accounts),
            )
        except (RetryExhausted, RetryCancelled):
            return False

        if claimed:
            log.info(f"{ctx.tag(self.accounts)} Wallet {ctx.address} claimed daily reward successfully!")
        return claimed

    # ─── Medals ───────────────────────────────────────────────────────────────

    def claim_medals(self, token: str, ctx: IdentityContext) -> list[int]:
        """
        Try every medal tier once. A failed tier never stops the sweep; its
        error is swallowed and only logged at debug level.
        """
        claimed = []
        for tier_id in range(1, self.config.medal_tiers + 1):
            if self.stop.is_set():
                break
            try:
                body = self._put(self.config.rewards_url("claim_tier"), token, ctx, {"tierId": tier_id})
            except RETRYABLE as e:
                log.debug(f"{ctx.tag()} tier {tier_id} not claimed: {e}")
                continue
            if body.get("status") == "SUCCESS" and body.get("data") is True:
                claimed.append(tier_id)
                log.info(f"{ctx.tag(self.accounts)} Wallet {ctx.address}: claimed medal for tier {tier_id}")
        return claimed
