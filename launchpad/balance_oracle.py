"""
Balance Oracle

Token balances for holder tiers, read from chain and cached.

Balance lookups never fail the caller. The lookup order is:
1. Fresh cached value (within the cache TTL)
2. Last known value, however stale
3. Configured fallback balance
4. Zero
"""

import logging
import os
import re
from datetime import datetime, timedelta
from typing import Dict, Any, List, Optional, Tuple

import httpx

logger = logging.getLogger("balance_oracle")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
BASE_RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
QUICKNODE_URL = os.getenv("QUICKNODE_URL")
ALCHEMY_URL = os.getenv("ALCHEMY_URL")
WTF_TOKEN_ADDRESS = os.getenv("WTF_TOKEN_ADDRESS", "0x9A4D496A08b2df2b1b115d2cDF9c0a5629384b07")

BALANCE_CACHE_TTL_SECONDS = 60
RPC_TIMEOUT_SECONDS = 10.0

# ERC-20 selectors
BALANCE_OF_SELECTOR = "0x70a08231"
DECIMALS_SELECTOR = "0x313ce567"

WALLET_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def get_rpc_url() -> str:
    """Provider hierarchy: QuickNode > Alchemy > public RPC."""
    return QUICKNODE_URL or ALCHEMY_URL or BASE_RPC_URL


def is_valid_wallet(wallet: Optional[str]) -> bool:
    return bool(wallet) and bool(WALLET_PATTERN.match(wallet))


class RPCError(Exception):
    """JSON-RPC call returned an error object."""


class BalanceOracle:
    """
    Cached view of wallet token balances.

    Balances are whole tokens (raw amount divided by token decimals).
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        token_address: str = WTF_TOKEN_ADDRESS,
        cache_ttl_seconds: int = BALANCE_CACHE_TTL_SECONDS,
        fallback_balances: Optional[Dict[str, int]] = None,
    ):
        self._rpc_url = rpc_url or get_rpc_url()
        self._token_address = token_address
        self._ttl = timedelta(seconds=cache_ttl_seconds)
        self._fallback = {w.lower(): b for w, b in (fallback_balances or {}).items()}
        self._cache: Dict[str, Tuple[int, datetime]] = {}
        self._decimals: Optional[int] = None

    # -------------------------------------------------------------------------
    # Synchronous Lookups
    # -------------------------------------------------------------------------

    def get_balance(self, wallet: str, now: Optional[datetime] = None) -> int:
        """Best available balance for a wallet. Never raises."""
        if not wallet:
            return 0
        key = wallet.lower()
        now = now or datetime.utcnow()

        cached = self._cache.get(key)
        if cached is not None:
            balance, observed_at = cached
            if now - observed_at >= self._ttl:
                logger.debug(f"Serving stale balance for {key}")
            return balance

        return self._fallback.get(key, 0)

    def is_fresh(self, wallet: str, now: Optional[datetime] = None) -> bool:
        cached = self._cache.get(wallet.lower())
        if cached is None:
            return False
        return (now or datetime.utcnow()) - cached[1] < self._ttl

    def set_balance(self, wallet: str, balance: int, now: Optional[datetime] = None) -> None:
        """Record a balance observation."""
        self._cache[wallet.lower()] = (max(0, int(balance)), now or datetime.utcnow())

    def set_fallback_balance(self, wallet: str, balance: int) -> None:
        self._fallback[wallet.lower()] = max(0, int(balance))

    def get_cache_status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        fresh = sum(1 for _, observed in self._cache.values() if now - observed < self._ttl)
        return {
            "rpc_url": self._rpc_url,
            "cached_wallets": len(self._cache),
            "fresh_entries": fresh,
            "stale_entries": len(self._cache) - fresh,
            "fallback_wallets": len(self._fallback),
            "ttl_seconds": int(self._ttl.total_seconds()),
        }

    # -------------------------------------------------------------------------
    # Chain Reads
    # -------------------------------------------------------------------------

    async def refresh_balance(self, wallet: str, now: Optional[datetime] = None) -> int:
        """
        Read the balance from chain and update the cache.

        On any failure the best available value is returned instead.
        """
        if not is_valid_wallet(wallet):
            return 0

        if self.is_fresh(wallet, now):
            return self.get_balance(wallet, now)

        try:
            balance = await self._fetch_balance(wallet)
        except Exception as e:
            logger.warning(f"Balance fetch failed for {wallet}: {e}")
            return self.get_balance(wallet, now)

        self.set_balance(wallet, balance, now)
        return balance

    async def refresh_balances(self, wallets: List[str]) -> Dict[str, int]:
        """Refresh several wallets. Invalid addresses are skipped."""
        result = {}
        for wallet in wallets:
            if is_valid_wallet(wallet):
                result[wallet.lower()] = await self.refresh_balance(wallet)
        return result

    async def _fetch_balance(self, wallet: str) -> int:
        padded = wallet.lower()[2:].rjust(64, "0")
        raw = await self._eth_call(BALANCE_OF_SELECTOR + padded)
        decimals = await self._get_decimals()
        return raw // (10 ** decimals)

    async def _get_decimals(self) -> int:
        if self._decimals is None:
            self._decimals = await self._eth_call(DECIMALS_SELECTOR)
        return self._decimals

    async def _eth_call(self, data: str) -> int:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_call",
            "params": [{"to": self._token_address, "data": data}, "latest"],
        }
        async with httpx.AsyncClient(timeout=RPC_TIMEOUT_SECONDS) as client:
            response = await client.post(self._rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()

        if body.get("error"):
            raise RPCError(str(body["error"]))
        result = body.get("result") or "0x0"
        return int(result, 16) if result != "0x" else 0
