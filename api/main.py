"""FastAPI application for the paper-trading wallet ledger.

This module provides the HTTP surface for:
- GET /health - Storage connectivity check
- GET /wallet - Current wallet (created lazily with the starting balance)
- POST /wallet/bonus - Claim the daily bonus
- GET /holdings - Holdings derived from trade history
- GET /trades - Trade history for the caller
- POST /trades - Execute a paper buy/sell order
- GET /addresses - Deposit addresses for every supported currency
- GET /addresses/{asset_id} - Deposit address for one currency
- GET /prices/{asset_id} - Reference price from CoinGecko
- POST /admin-codes/redeem - Redeem a single-use admin code
- GET /admin/wallets - All wallets (admin)
- PUT /admin/wallets/{user_id}/balance - Overwrite a balance (admin)
- POST /admin/wallets/{user_id}/credit - Add funds to a wallet (admin)
- GET /admin/trades - Latest trades across users (admin)

Requirements:
- DATABASE_URL selects the SQL store; without it an in-memory store is used
- The caller is identified by the X-User-Id header (authentication happens upstream)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Literal, Optional

from fastapi import FastAPI, Header, HTTPException, Path, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.errors import (
    BonusNotAvailable,
    ConsistencyError,
    InsufficientFunds,
    InsufficientHoldings,
    InvalidAdminCode,
    InvalidInput,
    LedgerError,
    StalePriceData,
    Unauthorized,
)
from core.ledger import AddressProvisioner, AdminCodes, LedgerConfig, TradeSettlement, WalletLedger
from core.market_data import CoinGeckoPriceOracle, PriceOracle
from core.persistence.interfaces import LedgerStore
from core.storage import InMemoryLedgerStore, SqlConfig, SqlLedgerStore
from core.types import PriceQuote, Trade, Wallet

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Paper Trading Ledger API",
    description="Virtual USD wallets, paper trades, daily bonus and deposit addresses",
    version="1.0.0",
)


@dataclass
class _Services:
    store: LedgerStore
    ledger: WalletLedger
    settlement: TradeSettlement
    addresses: AddressProvisioner
    admin_codes: AdminCodes
    price_oracle: PriceOracle


# Global service container (initialized on first request)
_services: _Services | None = None

_STATUS_BY_ERROR: dict[type[LedgerError], int] = {
    InvalidInput: 400,
    InsufficientFunds: 400,
    InsufficientHoldings: 400,
    BonusNotAvailable: 400,
    InvalidAdminCode: 400,
    Unauthorized: 403,
    StalePriceData: 503,
    ConsistencyError: 500,
}


def _configure_services(
    *,
    store: LedgerStore,
    price_oracle: Optional[PriceOracle] = None,
    config: Optional[LedgerConfig] = None,
) -> _Services:
    """Wire the ledger components around a store and make them current."""
    global _services
    config = config or LedgerConfig.from_env()
    oracle = price_oracle or CoinGeckoPriceOracle(timeout=10)
    ledger = WalletLedger(store=store, roles=store, config=config)
    _services = _Services(
        store=store,
        ledger=ledger,
        settlement=TradeSettlement(store=store, ledger=ledger, roles=store, price_oracle=oracle),
        addresses=AddressProvisioner(store=store, supported_assets=config.supported_assets),
        admin_codes=AdminCodes(store=store),
        price_oracle=oracle,
    )
    return _services


def _get_services() -> _Services:
    """Get or initialize the ledger services."""
    if _services is None:
        sql_config = SqlConfig.from_env()
        if sql_config is None:
            logger.warning("DATABASE_URL not set; using in-memory ledger store (data is lost on restart)")
            store: LedgerStore = InMemoryLedgerStore()
        else:
            store = SqlLedgerStore(config=sql_config)
        return _configure_services(store=store)
    return _services


def _require_user(x_user_id: Optional[str]) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=401,
            detail={"error": "unauthorized", "message": "Please sign in to trade."},
        )
    return x_user_id.strip()


class TradeRequest(BaseModel):
    """Request body for executing a paper trade."""

    asset_id: str = Field(..., description="CoinGecko asset id (e.g., bitcoin)")
    trade_type: Literal["buy", "sell"] = Field(..., description="Trade side")
    quantity: Decimal = Field(..., description="Units of the asset")
    reference_price: Optional[Decimal] = Field(
        None, description="USD price per unit; fetched from the price oracle when omitted"
    )
    asset_symbol: Optional[str] = None
    asset_name: Optional[str] = None


class BalanceUpdateRequest(BaseModel):
    balance_usd: Decimal


class CreditRequest(BaseModel):
    amount: Decimal = Field(..., description="USD to add to the wallet")


class RedeemCodeRequest(BaseModel):
    code: str


def _wallet_to_response(wallet: Wallet) -> dict[str, Any]:
    """Convert Wallet to API response dict."""
    return {
        "user_id": wallet.user_id,
        "balance_usd": str(wallet.balance_usd),
        "updated_at": wallet.updated_at.isoformat(),
        "last_bonus_claim_at": wallet.last_bonus_claim_at.isoformat() if wallet.last_bonus_claim_at else None,
    }


def _trade_to_response(trade: Trade) -> dict[str, Any]:
    """Convert Trade to API response dict."""
    return {
        "id": trade.id,
        "user_id": trade.user_id,
        "asset_id": trade.asset_id,
        "asset_symbol": trade.asset_symbol,
        "asset_name": trade.asset_name,
        "trade_type": trade.trade_type,
        "quantity": str(trade.quantity),
        "price_usd": str(trade.price_usd),
        "total_usd": str(trade.total_usd),
        "created_at": trade.created_at.isoformat(),
    }


def _quote_to_response(quote: PriceQuote) -> dict[str, Any]:
    return {
        "asset_id": quote.asset_id,
        "usd": str(quote.usd),
        "change_pct_24h": str(quote.change_pct_24h) if quote.change_pct_24h is not None else None,
        "as_of": quote.as_of.isoformat(),
        "stale": quote.stale,
    }


@app.exception_handler(LedgerError)
async def ledger_error_handler(_request: Request, exc: LedgerError) -> JSONResponse:
    """Map ledger rejections to HTTP errors with the specific reason."""
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        400,
    )
    if isinstance(exc, ConsistencyError):
        # Already logged at CRITICAL with the replay payload by the settlement engine.
        detail: dict[str, Any] = {"error": exc.code, "message": "Failed to execute trade. Please try again."}
    else:
        detail = {"error": exc.code, "message": exc.message, **exc.details()}
    return JSONResponse(status_code=status_code, content={"detail": detail})


@app.get("/health")
def health() -> dict[str, Any]:
    """Health check endpoint.

    Raises:
        HTTPException: If the store cannot be reached.
    """
    services = _get_services()
    storage = "sql" if isinstance(services.store, SqlLedgerStore) else "memory"
    try:
        services.store.get_wallet(user_id="")
    except Exception as e:
        raise HTTPException(
            status_code=503,
            detail={"status": "error", "storage": {"type": storage, "connected": False, "error": str(e)}},
        ) from e

    return {"status": "ok", "storage": {"type": storage, "connected": True}}


@app.get("/wallet")
def get_wallet(x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    user_id = _require_user(x_user_id)
    return {"wallet": _wallet_to_response(_get_services().ledger.get_or_create(user_id))}


@app.post("/wallet/bonus")
def claim_daily_bonus(x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    """Claim the daily bonus (once per 24h)."""
    user_id = _require_user(x_user_id)
    grant = _get_services().ledger.grant_daily_bonus(user_id)
    return {
        "success": True,
        "amount": str(grant.amount),
        "new_balance": str(grant.new_balance),
        "next_claim_at": grant.next_eligible_at.isoformat(),
    }


@app.get("/holdings")
def get_holdings(x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    user_id = _require_user(x_user_id)
    holdings = _get_services().settlement.holdings(user_id)
    return {"holdings": {asset_id: str(qty) for asset_id, qty in holdings.items()}}


@app.get("/trades")
def get_trades(
    x_user_id: Optional[str] = Header(None),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of trades"),
) -> dict[str, Any]:
    user_id = _require_user(x_user_id)
    trades = _get_services().settlement.list_trades(user_id, limit=limit)
    return {"trades": [_trade_to_response(t) for t in trades]}


@app.post("/trades")
def execute_trade(request: TradeRequest, x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    """Execute a paper trade.

    Without `reference_price` the current CoinGecko price is used.
    """
    user_id = _require_user(x_user_id)
    services = _get_services()

    if request.reference_price is None:
        trade = services.settlement.execute_at_market(
            user_id,
            request.asset_id,
            request.trade_type,
            request.quantity,
            asset_symbol=request.asset_symbol,
            asset_name=request.asset_name,
        )
    else:
        trade = services.settlement.execute(
            user_id,
            request.asset_id,
            request.trade_type,
            request.quantity,
            request.reference_price,
            asset_symbol=request.asset_symbol,
            asset_name=request.asset_name,
        )

    wallet = services.ledger.get_or_create(user_id)
    return {"success": True, "trade": _trade_to_response(trade), "wallet": _wallet_to_response(wallet)}


@app.get("/addresses")
def get_addresses(x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    user_id = _require_user(x_user_id)
    return {"addresses": _get_services().addresses.ensure_all(user_id)}


@app.get("/addresses/{asset_id}")
def get_address(
    asset_id: str = Path(..., description="Currency (e.g., bitcoin)"),
    x_user_id: Optional[str] = Header(None),
) -> dict[str, Any]:
    user_id = _require_user(x_user_id)
    address = _get_services().addresses.get_or_create_address(user_id, asset_id)
    return {"asset_id": asset_id, "address": address}


@app.get("/prices/{asset_id}")
def get_price(asset_id: str = Path(..., description="CoinGecko asset id")) -> dict[str, Any]:
    return _quote_to_response(_get_services().price_oracle.price(asset_id))


@app.post("/admin-codes/redeem")
def redeem_admin_code(request: RedeemCodeRequest, x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    user_id = _require_user(x_user_id)
    _get_services().admin_codes.redeem(user_id, request.code)
    return {"success": True, "message": "You are now an administrator."}


@app.get("/admin/wallets")
def admin_list_wallets(x_user_id: Optional[str] = Header(None)) -> dict[str, Any]:
    actor_id = _require_user(x_user_id)
    wallets = _get_services().ledger.list_wallets(actor_id)
    return {"wallets": [_wallet_to_response(w) for w in wallets]}


@app.put("/admin/wallets/{user_id}/balance")
def admin_set_balance(
    request: BalanceUpdateRequest,
    user_id: str = Path(..., description="Owner of the wallet to update"),
    x_user_id: Optional[str] = Header(None),
) -> dict[str, Any]:
    actor_id = _require_user(x_user_id)
    wallet = _get_services().ledger.set_balance(actor_id, user_id, request.balance_usd)
    return {"success": True, "wallet": _wallet_to_response(wallet)}


@app.post("/admin/wallets/{user_id}/credit")
def admin_credit_wallet(
    request: CreditRequest,
    user_id: str = Path(..., description="Owner of the wallet to credit"),
    x_user_id: Optional[str] = Header(None),
) -> dict[str, Any]:
    """Add funds to a wallet (use your own user id to top up your wallet)."""
    actor_id = _require_user(x_user_id)
    wallet = _get_services().ledger.credit(actor_id, user_id, request.amount)
    return {"success": True, "wallet": _wallet_to_response(wallet)}


@app.get("/admin/trades")
def admin_recent_trades(
    x_user_id: Optional[str] = Header(None),
    limit: int = Query(50, ge=1, le=500, description="Maximum number of trades"),
) -> dict[str, Any]:
    actor_id = _require_user(x_user_id)
    trades = _get_services().settlement.recent_trades(actor_id, limit=limit)
    return {"trades": [_trade_to_response(t) for t in trades]}


@app.exception_handler(Exception)
async def global_exception_handler(_request, exc):
    """Global exception handler to ensure consistent error responses."""
    logger.exception("Unhandled error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_server_error",
            "message": "An unexpected error occurred",
        },
    )
