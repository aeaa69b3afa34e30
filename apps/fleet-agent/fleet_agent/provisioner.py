"""
Credential Provisioner
======================

Turns a raw wallet address into a usable session: an IdentityRecord with a
bearer token. Token issuance is retried forever (fixed delay) because nothing
else can happen for the identity without it; only a shutdown stops the loop.
"""

from __future__ import annotations
import logging
import threading
from typing import Optional

import requests

from .config import AgentConfig
from .identity import IdentityContext
from .retry import RetryCancelled, RetryPolicy, retry_with_fixed_delay
from .store import IdentityRecord, RecordStore

log = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """The token endpoint answered but did not hand out a token."""


class CredentialProvisioner:
    def __init__(
        self,
        config: AgentConfig,
        store:  RecordStore,
        stop:   threading.Event,
        http=requests,
    ):
        self.config = config
        self.store  = store
        self.stop   = stop
        self.http   = http

    def provision(self, ctx: IdentityContext) -> Optional[IdentityRecord]:
        """
        Return the identity's record with a token, requesting one if needed.
        Returns None only when shutdown interrupts the retry loop.
        """
        record = self.store.get_or_create(ctx.address)
        if record.token:
            return record

        policy = RetryPolicy.forever(self.config.provision_retry_delay)
        try:
            token = retry_with_fixed_delay(
                lambda: self._request_token(ctx),
                policy,
                operation = f"token generation for wallet {ctx.address}",
                stop      = self.stop,
                retry_on  = (requests.RequestException, ProvisioningError, ValueError),
                prefix    = ctx.tag(),
            )
        except RetryCancelled:
            log.info(f"{ctx.tag()} Token generation for {ctx.address} cancelled by shutdown")
            return None

        if self.store.set_token(ctx.address, token):
            log.info(f"{ctx.tag()} Token issued for wallet {ctx.address}")
        return self.store.get(ctx.address)

    def _request_token(self, ctx: IdentityContext) -> str:
        resp = self.http.post(
            self.config.api_url("auth/generate_token"),
            json    = {"address": ctx.address},
            headers = {"Content-Type": "application/json"},
            proxies = ctx.requests_proxies(),
            timeout = self.config.request_timeout,
        )
        resp.raise_for_status()
        body = resp.json()
        data = body.get("data") if isinstance(body, dict) else None
        token = data.get("token") if isinstance(data, dict) else None
        if not token or not isinstance(token, str):
            raise ProvisioningError("response did not contain a token")
        return token
