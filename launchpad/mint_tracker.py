"""
Mint Tracker

Presale mint detection for the current winner.

Mints arrive two ways:
1. MintWatcher polls tracked NFT contracts for Transfer logs from the zero
   address (every 12s, Base block time)
2. The presale webhook reports a mint directly

Either way the transaction is deduplicated by hash, verified on chain and
then recorded through LaunchpadService.record_mint, which bumps the
winner's presale mints and awards presale XP.
"""

import asyncio
import json
import logging
import os
from dataclasses import dataclass, asdict
from enum import Enum
from pathlib import Path
from typing import Dict, Any, List, Optional, Set, Tuple

import httpx
import yaml

from .balance_oracle import get_rpc_url, RPCError, RPC_TIMEOUT_SECONDS
from .errors import LaunchpadError

logger = logging.getLogger("mint_tracker")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
TRACKED_CONTRACTS_ENV = os.getenv("TRACKED_CONTRACTS")
TRACKED_CONTRACTS_FILE = os.getenv("TRACKED_CONTRACTS_FILE")

MINT_POLL_SECONDS = 12
INITIAL_BLOCK_LOOKBACK = 10
PROCESSED_CACHE_LIMIT = 10000

ZERO_TOPIC = "0x" + "0" * 64

TRANSFER_EVENT_SIGNATURES = {
    # Transfer(address,address,uint256)
    "ERC721": "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef",
    # TransferSingle(address,address,address,uint256,uint256)
    "ERC1155_SINGLE": "0xc3d58168c5ae7397731d063d5bbf3d657854427343f4c083240f7aacaa2d0f62",
    # TransferBatch(address,address,address,uint256[],uint256[])
    "ERC1155_BATCH": "0x4a39dc06d4c0dbc64b70af90fd698a233a518aa5d07e595d983b8c0526c8f7fb",
}

DUPLICATE_MESSAGE = "Transaction already processed"
VERIFICATION_FAILED_MESSAGE = "Transaction verification failed"


class ContractType(str, Enum):
    ERC721 = "ERC721"
    ERC1155 = "ERC1155"


# -----------------------------------------------------------------------------
# Models
# -----------------------------------------------------------------------------
@dataclass
class TrackedContract:
    """An NFT contract whose mints count as presale mints."""
    address: str
    name: str
    contract_type: ContractType
    project_id: str
    start_block: Optional[int] = None
    is_active: bool = True

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["contract_type"] = self.contract_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedContract":
        return cls(
            address=data["address"],
            name=data.get("name", data["address"]),
            contract_type=ContractType(data.get("contract_type") or data.get("type", "ERC721")),
            project_id=data["project_id"],
            start_block=data.get("start_block"),
            is_active=data.get("is_active", True),
        )


@dataclass
class MintEvent:
    contract_address: str
    to_address: str
    token_id: Optional[int]
    amount: int
    tx_hash: str
    block_number: int
    log_index: int
    project_id: str
    event_type: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if not value or value == "0x":
        return 0
    return int(value, 16)


def parse_mint_event(log: Dict[str, Any], contract: TrackedContract) -> Optional[MintEvent]:
    """
    Turn a raw JSON-RPC log into a MintEvent.

    Returns None for anything that is not a mint (from != zero address) or
    that cannot be decoded.
    """
    topics = log.get("topics") or []
    if not topics:
        return None
    signature = topics[0].lower()

    try:
        if contract.contract_type == ContractType.ERC721 and signature == TRANSFER_EVENT_SIGNATURES["ERC721"]:
            # topics: signature, from, to, tokenId
            if len(topics) < 3 or topics[1].lower() != ZERO_TOPIC:
                return None
            token_id = _hex_to_int(topics[3]) if len(topics) > 3 else 0
            amount = 1
            to_topic = topics[2]
            event_type = "ERC721"
        elif contract.contract_type == ContractType.ERC1155 and signature == TRANSFER_EVENT_SIGNATURES["ERC1155_SINGLE"]:
            # topics: signature, operator, from, to; data: id, value
            if len(topics) < 4 or topics[2].lower() != ZERO_TOPIC:
                return None
            data = (log.get("data") or "0x")[2:]
            token_id = int(data[0:64], 16) if len(data) >= 64 else 0
            amount = int(data[64:128], 16) if len(data) >= 128 else 1
            to_topic = topics[3]
            event_type = "ERC1155_SINGLE"
        else:
            return None

        return MintEvent(
            contract_address=contract.address.lower(),
            to_address="0x" + to_topic[-40:].lower(),
            token_id=token_id,
            amount=amount,
            tx_hash=log["transactionHash"].lower(),
            block_number=_hex_to_int(log.get("blockNumber")),
            log_index=_hex_to_int(log.get("logIndex")),
            project_id=contract.project_id,
            event_type=event_type,
        )
    except (KeyError, ValueError, TypeError) as e:
        logger.error(f"Error parsing mint event: {e}")
        return None


def load_contracts(
    contracts_file: Optional[str] = TRACKED_CONTRACTS_FILE,
    contracts_env: Optional[str] = TRACKED_CONTRACTS_ENV,
) -> List[TrackedContract]:
    """
    Tracked contracts from a YAML file, else from a JSON environment value.

    The YAML file holds either a list or a mapping with a "contracts" list.
    """
    raw: List[Dict[str, Any]] = []

    if contracts_file:
        path = Path(contracts_file)
        if path.exists():
            with open(path, "r") as f:
                data = yaml.safe_load(f) or []
            raw = data.get("contracts", []) if isinstance(data, dict) else data
            logger.info(f"Loaded {len(raw)} contracts from {path}")
        else:
            logger.warning(f"Tracked contracts file not found: {path}")
    elif contracts_env:
        try:
            raw = json.loads(contracts_env)
            logger.info(f"Loaded {len(raw)} contracts from environment")
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing TRACKED_CONTRACTS: {e}")
            return []

    contracts = []
    for entry in raw:
        try:
            contracts.append(TrackedContract.from_dict(entry))
        except (KeyError, ValueError) as e:
            logger.error(f"Skipping invalid tracked contract {entry}: {e}")
    return contracts


# -----------------------------------------------------------------------------
# Chain Client
# -----------------------------------------------------------------------------
class ChainClient:
    """Minimal JSON-RPC client for block, log and receipt reads."""

    def __init__(self, rpc_url: Optional[str] = None, timeout: float = RPC_TIMEOUT_SECONDS):
        self._rpc_url = rpc_url or get_rpc_url()
        self._timeout = timeout

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            response = await client.post(self._rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()

        if body.get("error"):
            raise RPCError(str(body["error"]))
        return body.get("result")

    async def get_block_number(self) -> int:
        return _hex_to_int(await self._rpc("eth_blockNumber", []))

    async def get_logs(self, address: str, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        params = {
            "address": address,
            "fromBlock": hex(from_block),
            "toBlock": hex(to_block),
            "topics": [[
                TRANSFER_EVENT_SIGNATURES["ERC721"],
                TRANSFER_EVENT_SIGNATURES["ERC1155_SINGLE"],
                TRANSFER_EVENT_SIGNATURES["ERC1155_BATCH"],
            ]],
        }
        return await self._rpc("eth_getLogs", [params]) or []

    async def verify_transaction(self, tx_hash: str) -> bool:
        """True when the transaction has a successful receipt."""
        try:
            receipt = await self._rpc("eth_getTransactionReceipt", [tx_hash])
        except Exception as e:
            logger.error(f"Error verifying transaction {tx_hash}: {e}")
            return False
        return bool(receipt) and receipt.get("status") == "0x1"


# -----------------------------------------------------------------------------
# Mint Tracker
# -----------------------------------------------------------------------------
class MintTracker:
    """
    Deduplicates, verifies and records presale mints.

    The service only needs record_mint(wallet, nft_count, project_id).
    """

    def __init__(self, service, chain_client: Optional[ChainClient] = None):
        self._service = service
        self._chain = chain_client or ChainClient()
        self._contracts: Dict[str, TrackedContract] = {}
        self._processed: Set[str] = set()
        self._is_processing = False
        self._mints_recorded = 0
        self._failures = 0

    # -------------------------------------------------------------------------
    # Contracts
    # -------------------------------------------------------------------------

    def add_contract(self, contract: TrackedContract) -> None:
        self._contracts[contract.address.lower()] = contract
        logger.info(f"Added contract {contract.address} ({contract.name}) to tracking")

    def remove_contract(self, address: str) -> bool:
        removed = self._contracts.pop(address.lower(), None) is not None
        if removed:
            logger.info(f"Removed contract {address} from tracking")
        return removed

    def get_tracked_contracts(self, active_only: bool = False) -> List[TrackedContract]:
        contracts = list(self._contracts.values())
        if active_only:
            contracts = [c for c in contracts if c.is_active]
        return contracts

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def is_duplicate(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._processed

    async def process_mint_events(self, events: List[MintEvent]) -> int:
        """
        Record a batch of watcher events.

        Returns: number of mints recorded (0 if a batch is already running)
        """
        if self._is_processing:
            logger.info("Already processing mint events, skipping...")
            return 0

        self._is_processing = True
        recorded = 0
        try:
            logger.info(f"Processing {len(events)} mint events...")
            for event in events:
                success, message = await self._record(
                    event.to_address, event.amount, event.tx_hash, event.project_id
                )
                if success:
                    recorded += 1
                else:
                    logger.info(f"Mint {event.tx_hash} not recorded: {message}")
        finally:
            self._is_processing = False

        logger.info(f"Processed {len(events)} mint events ({recorded} recorded)")
        return recorded

    async def process_webhook_mint(
        self,
        wallet: str,
        nfts: int,
        tx_hash: str,
        project_id: str,
    ) -> Tuple[bool, str]:
        """Record a webhook-reported mint. Returns (success, message)."""
        if not wallet or not tx_hash or not project_id:
            return False, "Missing required fields"
        if nfts <= 0:
            return False, "Invalid NFT count"
        return await self._record(wallet, nfts, tx_hash, project_id)

    async def _record(self, wallet: str, nfts: int, tx_hash: str, project_id: str) -> Tuple[bool, str]:
        tx_hash = tx_hash.lower()
        if self.is_duplicate(tx_hash):
            logger.info(f"Skipping duplicate transaction: {tx_hash}")
            return False, DUPLICATE_MESSAGE

        if not await self._chain.verify_transaction(tx_hash):
            logger.warning(f"Transaction {tx_hash} failed verification")
            self._failures += 1
            return False, VERIFICATION_FAILED_MESSAGE

        # Re-check after the await: a concurrent caller may have recorded it
        if self.is_duplicate(tx_hash):
            return False, DUPLICATE_MESSAGE

        try:
            account = self._service.record_mint(wallet, nfts, project_id=project_id)
        except LaunchpadError as e:
            self._failures += 1
            logger.warning(f"Mint {tx_hash} rejected: {e.message}")
            return False, e.message

        self._processed.add(tx_hash)
        self._mints_recorded += 1
        logger.info(f"Processed mint for {wallet.lower()}: {nfts} NFTs (total XP {account.total_xp})")
        return True, f"Successfully processed mint: {nfts} NFTs, earned {nfts} XP"

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        return {
            "tracked_contracts": len(self._contracts),
            "processed_transactions": len(self._processed),
            "mints_recorded": self._mints_recorded,
            "failures": self._failures,
            "is_processing": self._is_processing,
        }

    def clear_processed_cache(self, max_entries: int = PROCESSED_CACHE_LIMIT) -> bool:
        """Forget processed hashes once the set grows past max_entries."""
        if len(self._processed) > max_entries:
            self._processed.clear()
            logger.info("Cleared processed transaction cache")
            return True
        return False


# -----------------------------------------------------------------------------
# Mint Watcher
# -----------------------------------------------------------------------------
class MintWatcher:
    """Background polling of tracked contracts for new mint logs."""

    def __init__(
        self,
        tracker: MintTracker,
        chain_client: Optional[ChainClient] = None,
        poll_interval: int = MINT_POLL_SECONDS,
    ):
        self._tracker = tracker
        self._chain = chain_client or ChainClient()
        self._poll_interval = poll_interval
        self._last_block: Optional[int] = None
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._events_seen = 0
        self._errors = 0

    @property
    def last_processed_block(self) -> Optional[int]:
        return self._last_block

    async def poll_once(self) -> List[MintEvent]:
        """Scan blocks since the last poll. Returns the mint events found."""
        current = await self._chain.get_block_number()
        if self._last_block is None:
            self._last_block = current - INITIAL_BLOCK_LOOKBACK

        if current <= self._last_block:
            return []

        events: List[MintEvent] = []
        for contract in self._tracker.get_tracked_contracts(active_only=True):
            try:
                logs = await self._chain.get_logs(contract.address, self._last_block + 1, current)
            except Exception as e:
                logger.error(f"Error fetching logs for contract {contract.address}: {e}")
                continue
            for log in logs:
                event = parse_mint_event(log, contract)
                if event is not None:
                    events.append(event)

        if events:
            logger.info(f"Found {len(events)} mint events")
            await self._tracker.process_mint_events(events)
            self._events_seen += len(events)

        self._last_block = current
        self._tracker.clear_processed_cache()
        return events

    async def start(self) -> None:
        if self._running:
            logger.info("Mint watcher is already running")
            return
        if not self._tracker.get_tracked_contracts(active_only=True):
            logger.warning("No active contracts to track. Mint watcher not started.")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Mint watcher started (interval={self._poll_interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Mint watcher stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._errors += 1
                logger.error(f"Mint watcher error: {e}")
            await asyncio.sleep(self._poll_interval)

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "poll_interval_seconds": self._poll_interval,
            "last_processed_block": self._last_block,
            "events_seen": self._events_seen,
            "errors": self._errors,
        }


# -----------------------------------------------------------------------------
# Module-Level Functions
# -----------------------------------------------------------------------------

_tracker: Optional[MintTracker] = None


def get_mint_tracker() -> MintTracker:
    """Get the mint tracker singleton, loaded with the configured contracts."""
    global _tracker
    if _tracker is None:
        from .launchpad_service import get_service
        _tracker = MintTracker(get_service())
        for contract in load_contracts():
            _tracker.add_contract(contract)
    return _tracker


def set_mint_tracker(tracker: Optional[MintTracker]) -> None:
    global _tracker
    _tracker = tracker
