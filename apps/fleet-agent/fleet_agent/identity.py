"""
Identity Context
================

Per-identity routing and log annotation.

Every identity gets a fixed proxy for the life of the process:
proxies[index % len(proxies)], or none at all when the list is empty.
The proxy is only used when the operator opted in at startup.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from .store import AccountDirectory


def proxy_for(index: int, proxies: list[str]) -> Optional[str]:
    if not proxies:
        return None
    return proxies[index % len(proxies)]


@dataclass(frozen=True)
class IdentityContext:
    index:     int            # Position in the credential list (0-based)
    address:   str
    proxy_url: Optional[str]  # Assigned proxy, whether or not it is in use
    use_proxy: bool

    @classmethod
    def build(cls, index: int, address: str, proxies: list[str], use_proxy: bool) -> "IdentityContext":
        return cls(index, address, proxy_for(index, proxies), use_proxy)

    @property
    def active_proxy(self) -> Optional[str]:
        return self.proxy_url if self.use_proxy and self.proxy_url else None

    def requests_proxies(self) -> Optional[dict]:
        """`proxies=` mapping for requests, or None for a direct connection."""
        proxy = self.active_proxy
        if proxy is None:
            return None
        return {"http": proxy, "https": proxy}

    def tag(self, accounts: Optional[AccountDirectory] = None) -> str:
        """Log prefix: [n] AccountID x, Proxy: y"""
        parts = [f"[{self.index + 1}]"]
        if accounts is not None:
            account_id = accounts.get(self.address)
            if account_id is not None:
                parts.append(f"AccountID {account_id},")
        parts.append(f"Proxy: {self.active_proxy or 'False'}")
        return " ".join(parts)
