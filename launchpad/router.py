"""
Launchpad API Router

FastAPI routes over LaunchpadService:
- Project submission, voting and presale mints
- Presale mint webhook (HMAC signature + rate limit)
- Project phase reads and the current winner
- Leaderboards and the SSE leaderboard stream
- Holder tier and user profile reads
- Daily rotation trigger and service stats
"""

import json
import logging
import os
import re
from typing import Optional, Dict, Any

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .balance_oracle import is_valid_wallet
from .errors import LaunchpadError
from .holder_tiers import HOLDER_TIERS, format_balance
from .launchpad_service import get_service, MAX_NFTS_PER_MINT
from .leaderboard_stream import get_broadcaster
from .mint_tracker import get_mint_tracker, DUPLICATE_MESSAGE
from .project_registry import ActiveOrder, DEFAULT_LOGO, MAX_VAULTED_SUPPLY
from .webhook_security import RateLimiter, verify_webhook_signature
from .xp_ledger import LeaderboardSortKey, Timeframe

logger = logging.getLogger("launchpad_router")

# -----------------------------------------------------------------------------
# Configuration
# -----------------------------------------------------------------------------
PRESALE_WEBHOOK_SECRET = os.getenv("PRESALE_WEBHOOK_SECRET")
TX_HASH_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")

ERROR_STATUS_CODES = {
    "UNKNOWN_PROJECT": 404,
    "VALIDATION_FAILED": 400,
    "INSUFFICIENT_ALLOWANCE": 409,
    "PRESALE_UNAVAILABLE": 409,
    "INSUFFICIENT_BALANCE": 403,
    "INVARIANT_VIOLATION": 500,
    "SAVE_FAILED": 500,
}

# -----------------------------------------------------------------------------
# Router Setup
# -----------------------------------------------------------------------------
router = APIRouter(prefix="/api", tags=["Launchpad"])

webhook_rate_limiter = RateLimiter()


def _http_error(error: LaunchpadError) -> HTTPException:
    status_code = ERROR_STATUS_CODES.get(error.code, 500)
    if status_code >= 500:
        logger.error(f"{error.code}: {error.message}")
    return HTTPException(status_code=status_code, detail=error.to_dict())


def _require_wallet(wallet: str) -> str:
    if not is_valid_wallet(wallet):
        raise HTTPException(status_code=400, detail=f"Invalid wallet address: {wallet}")
    return wallet.lower()


# -----------------------------------------------------------------------------
# Request Models
# -----------------------------------------------------------------------------
class SubmitProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    ticker: str = Field(..., min_length=1, max_length=20)
    url: str = Field(..., min_length=1)
    builder_wallet: Optional[str] = None
    logo: str = DEFAULT_LOGO
    is_image_logo: bool = False
    vaulted_supply: int = Field(0, ge=0, le=MAX_VAULTED_SUPPLY)


class VoteRequest(BaseModel):
    wallet: str
    project_id: str
    count: int = Field(1, ge=1)


class MintRequest(BaseModel):
    wallet: str
    nft_count: int = Field(..., ge=1, le=MAX_NFTS_PER_MINT)
    project_id: Optional[str] = None


class WebhookMintRequest(BaseModel):
    wallet: str
    nfts: int
    tx_hash: str
    project_id: str
    contract_address: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[int] = None


def _webhook_error(status_code: int, error: str, code: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"success": False, "error": error, "code": code})


# -----------------------------------------------------------------------------
# Inbound Endpoints
# -----------------------------------------------------------------------------

@router.post("/projects/submit")
def submit_project(request: SubmitProjectRequest):
    """Queue a project for the next daily rotation."""
    if request.builder_wallet:
        _require_wallet(request.builder_wallet)
    try:
        project = get_service().submit_project(
            name=request.name,
            ticker=request.ticker,
            url=request.url,
            builder_wallet=request.builder_wallet,
            logo=request.logo,
            vaulted_supply=request.vaulted_supply,
            is_image_logo=request.is_image_logo,
        )
    except LaunchpadError as e:
        raise _http_error(e)

    return {"success": True, "project": project.to_dict()}


@router.post("/votes")
def cast_vote(request: VoteRequest):
    wallet = _require_wallet(request.wallet)
    try:
        receipt = get_service().cast_vote(wallet, request.project_id, request.count)
    except LaunchpadError as e:
        raise _http_error(e)

    return {"success": True, "receipt": receipt.to_dict()}


@router.post("/mints")
def record_mint(request: MintRequest):
    """Record a presale mint against the current winner."""
    wallet = _require_wallet(request.wallet)
    try:
        account = get_service().record_mint(wallet, request.nft_count, project_id=request.project_id)
    except LaunchpadError as e:
        raise _http_error(e)

    return {"success": True, "xp_earned": request.nft_count, "account": account.to_dict()}


@router.post("/webhooks/presale-mint")
async def presale_mint_webhook(request: Request):
    """
    Presale mint notification from an external indexer.

    The signature (X-Signature or X-Hub-Signature-256) is checked only when
    PRESALE_WEBHOOK_SECRET is set.
    """
    client_ip = (
        request.headers.get("x-forwarded-for")
        or request.headers.get("x-real-ip")
        or (request.client.host if request.client else "unknown")
    )
    if not webhook_rate_limiter.check(client_ip):
        raise _webhook_error(429, "Rate limit exceeded", "RATE_LIMITED")

    body = await request.body()

    if PRESALE_WEBHOOK_SECRET:
        signature = request.headers.get("x-signature") or request.headers.get("x-hub-signature-256")
        if not signature:
            raise _webhook_error(401, "Missing webhook signature", "MISSING_SIGNATURE")
        if not verify_webhook_signature(body, signature, PRESALE_WEBHOOK_SECRET):
            raise _webhook_error(401, "Invalid webhook signature", "INVALID_SIGNATURE")

    try:
        mint = WebhookMintRequest(**json.loads(body))
    except (json.JSONDecodeError, TypeError, PydanticValidationError):
        raise _webhook_error(400, "Missing required fields: wallet, nfts, tx_hash, project_id", "MISSING_FIELDS")

    if not is_valid_wallet(mint.wallet):
        raise _webhook_error(400, "Invalid wallet address format", "INVALID_WALLET")
    if not TX_HASH_PATTERN.match(mint.tx_hash):
        raise _webhook_error(400, "Invalid transaction hash format", "INVALID_TX_HASH")
    if not 0 < mint.nfts <= MAX_NFTS_PER_MINT:
        raise _webhook_error(400, f"Invalid NFT count (must be between 1 and {MAX_NFTS_PER_MINT})", "INVALID_NFT_COUNT")

    success, message = await get_mint_tracker().process_webhook_mint(
        mint.wallet, mint.nfts, mint.tx_hash, mint.project_id
    )
    if not success:
        if message == DUPLICATE_MESSAGE:
            raise _webhook_error(409, message, "DUPLICATE_TRANSACTION")
        raise _webhook_error(400, message, "PROCESSING_FAILED")

    logger.info(f"Webhook mint processed: {mint.wallet} minted {mint.nfts} ({mint.tx_hash})")
    return {
        "success": True,
        "message": message,
        "data": {
            "wallet": mint.wallet,
            "nfts": mint.nfts,
            "xp_earned": mint.nfts,
            "tx_hash": mint.tx_hash,
        },
    }


@router.post("/admin/rotate")
def run_rotation(force: bool = Query(False)):
    """Run the end-of-day rotation now."""
    try:
        result = get_service().run_daily_rotation(force=force)
    except LaunchpadError as e:
        raise _http_error(e)
    return result.to_dict()


# -----------------------------------------------------------------------------
# Project Endpoints
# -----------------------------------------------------------------------------

@router.get("/projects/active")
def get_active_projects(order: Optional[ActiveOrder] = Query(None)):
    projects = get_service().get_active_projects(order)
    return {"projects": [p.to_dict() for p in projects], "count": len(projects)}


@router.get("/projects/submissions")
def get_submissions():
    projects = get_service().get_submissions()
    return {"projects": [p.to_dict() for p in projects], "count": len(projects)}


@router.get("/projects/archived")
def get_archived_projects():
    projects = get_service().get_archived_projects()
    return {"projects": [p.to_dict() for p in projects], "count": len(projects)}


@router.get("/projects/{project_id}")
def get_project(project_id: str):
    """Get a project and the phase it occupies."""
    service = get_service()
    winner = service.get_current_winner()
    if winner and winner.project_id == project_id:
        return {"phase": "winner", "project": winner.to_dict()}

    project = service.registry.get_project(project_id)
    if project is None:
        raise HTTPException(status_code=404, detail=f"Project '{project_id}' not found")
    return {"phase": service.registry.phase_of(project_id).value, "project": project.to_dict()}


@router.get("/winner")
def get_current_winner():
    winner = get_service().get_current_winner()
    if winner is None:
        return {"winner": None}
    return {
        "winner": winner.to_dict(),
        "is_presale_open": winner.is_presale_open(),
        "seconds_remaining": winner.seconds_remaining(),
    }


# -----------------------------------------------------------------------------
# Leaderboard Endpoints
# -----------------------------------------------------------------------------

@router.get("/leaderboard")
def get_leaderboard(
    timeframe: Timeframe = Query(Timeframe.ALL_TIME),
    sort_key: LeaderboardSortKey = Query(LeaderboardSortKey.TOTAL_XP),
    limit: int = Query(100, ge=1, le=1000),
    force_refresh: bool = Query(False),
):
    entries = get_service().get_leaderboard(sort_key, timeframe, limit, force_refresh)
    return {
        "timeframe": timeframe.value,
        "sort_key": sort_key.value,
        "entries": [e.to_dict() for e in entries],
        "count": len(entries),
    }


@router.get("/leaderboard/stream")
async def stream_leaderboard(
    timeframe: Timeframe = Query(Timeframe.ALL_TIME),
    wallet: Optional[str] = Query(None),
    subscription_id: Optional[str] = Query(None),
):
    """Server-sent leaderboard updates for one timeframe."""
    broadcaster = get_broadcaster()
    subscription = broadcaster.subscribe(timeframe, wallet=wallet, subscription_id=subscription_id)
    return StreamingResponse(
        broadcaster.event_stream(subscription),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "Access-Control-Allow-Origin": "*",
        },
    )


# -----------------------------------------------------------------------------
# User Endpoints
# -----------------------------------------------------------------------------

@router.get("/tiers")
def get_tiers():
    return {"tiers": [t.to_dict() for t in HOLDER_TIERS]}


@router.get("/users/{wallet}/tier")
def get_user_tier(wallet: str):
    wallet = _require_wallet(wallet)
    service = get_service()
    balance = service.balance_oracle.get_balance(wallet)
    tier = service.get_user_tier(wallet)
    return {
        "wallet": wallet,
        "balance": balance,
        "balance_display": format_balance(balance),
        "tier": tier.to_dict() if tier else None,
    }


@router.get("/users/{wallet}/profile")
def get_user_profile(wallet: str) -> Dict[str, Any]:
    wallet = _require_wallet(wallet)
    return get_service().get_user_profile(wallet)


# -----------------------------------------------------------------------------
# Stats
# -----------------------------------------------------------------------------

@router.get("/stats")
def get_stats():
    stats = get_service().get_stats()
    stats["mint_tracker"] = get_mint_tracker().get_stats()
    stats["stream_connections"] = get_broadcaster().connection_count
    return stats
