"""Wallet API endpoints: provisioning, balances, fees and sends."""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from payoova.database import get_db
from payoova.exceptions import ChainError, InvalidAddressError, UnsupportedNetworkError
from payoova.models.user import User
from payoova.schemas.common import CorrelatedResponse
from payoova.schemas.wallet import (
    AssetBalanceResponse,
    BalanceResponse,
    FeeEstimateRequest,
    FeeEstimateResponse,
    NetworkInfo,
    PortfolioEntry,
    PortfolioResponse,
    SendRequest,
    SendResponse,
    TokenInfo,
    WalletCreate,
    WalletResponse,
)
from payoova.services.chain import AssetBalance, ChainRegistry, is_valid_address
from payoova.services.networks import NETWORKS, parse_network
from payoova.services.orchestrator import TxOrchestrator
from payoova.services.price import PriceQuote, PriceService
from payoova.services.wallet import WalletService
from payoova.api.deps import (
    get_chains,
    get_correlation_id,
    get_current_user,
    get_orchestrator,
    get_price_service,
    get_wallet_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/wallet", tags=["Wallet"])


def _priced(asset: AssetBalance, quote: Optional[PriceQuote]) -> Dict:
    """Balance fields plus price and USD value when both are known."""
    price = quote.price if quote else None
    usd_value = None
    if price is not None and asset.balance is not None:
        usd_value = (Decimal(asset.balance) * price).quantize(Decimal("0.01"))
    return {
        "symbol": asset.symbol,
        "token_address": asset.token_address,
        "decimals": asset.decimals,
        "balance": asset.balance,
        "usd_value": usd_value,
        "price": price,
        "error": asset.error,
    }


@router.post("", response_model=CorrelatedResponse[WalletResponse])
async def create_wallet(
    wallet_data: WalletCreate,
    db: AsyncSession = Depends(get_db),
    wallet_service: WalletService = Depends(get_wallet_service),
    chains: ChainRegistry = Depends(get_chains),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Provision a wallet on a network.

    Idempotent: returns the existing active wallet for the network if there is one.
    """
    network = parse_network(wallet_data.network)
    if network not in chains:
        raise UnsupportedNetworkError(f"Network {network.value} is not enabled")

    wallet, _ = await wallet_service.generate_wallet(current_user.id, network)
    await db.commit()

    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=WalletResponse.model_validate(wallet)
    )


@router.get("", response_model=CorrelatedResponse[List[WalletResponse]])
async def list_wallets(
    wallet_service: WalletService = Depends(get_wallet_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """List the caller's active wallets."""
    wallets = await wallet_service.list_wallets(current_user.id)
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=[WalletResponse.model_validate(w) for w in wallets]
    )


@router.get("/networks", response_model=CorrelatedResponse[List[NetworkInfo]])
async def list_networks(
    chains: ChainRegistry = Depends(get_chains),
    correlation_id: str = Depends(get_correlation_id),
):
    """Supported networks with their token allow-lists."""
    data = [
        NetworkInfo(
            network=config.network,
            name=config.name,
            chain_id=config.chain_id,
            native_symbol=config.native_symbol,
            explorer_url=config.explorer_url,
            is_testnet=config.is_testnet,
            enabled=config.network in chains,
            tokens=[TokenInfo(symbol=t.symbol, address=t.address, decimals=t.decimals) for t in config.tokens],
        )
        for config in NETWORKS.values()
    ]
    return CorrelatedResponse(correlation_id=correlation_id, data=data)


@router.get("/balance/{address}", response_model=CorrelatedResponse[BalanceResponse])
async def get_balance(
    address: str,
    network: str = Query("ethereum"),
    db: AsyncSession = Depends(get_db),
    chains: ChainRegistry = Depends(get_chains),
    prices: PriceService = Depends(get_price_service),
    wallet_service: WalletService = Depends(get_wallet_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Native and token balances of an address, valued in USD where a price is known.

    Tokens that could not be read carry an ``error`` instead of a balance.
    """
    if not is_valid_address(address):
        raise InvalidAddressError(f"Invalid address {address!r}")

    gateway = chains.get(network)
    balance = await gateway.get_balance(address)

    coin_ids = [balance.native.coin_id] + [t.coin_id for t in balance.tokens if t.coin_id]
    quotes = await prices.get_prices(coin_ids, "usd")
    native = _priced(balance.native, quotes.get(balance.native.coin_id))

    # Keep the cached balance of the caller's own wallet current
    wallet = await wallet_service.get_wallet_by_address(address, gateway.network)
    if wallet and wallet.user_id == current_user.id:
        await wallet_service.update_cached_balance(wallet, balance.native.balance)
        await db.commit()

    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=BalanceResponse(
            address=address.lower(),
            network=gateway.network,
            balance=balance.native.balance,
            currency=balance.native.symbol,
            usd_value=native["usd_value"],
            price=native["price"],
            tokens=[AssetBalanceResponse(**_priced(t, quotes.get(t.coin_id or ""))) for t in balance.tokens],
            partial=balance.partial,
        )
    )


@router.get("/portfolio", response_model=CorrelatedResponse[PortfolioResponse])
async def get_portfolio(
    chains: ChainRegistry = Depends(get_chains),
    prices: PriceService = Depends(get_price_service),
    wallet_service: WalletService = Depends(get_wallet_service),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Every asset across the caller's wallets with USD values and a total.

    An asset that could not be read is listed with its error and left out of
    the total; ``partial`` is then true.
    """
    assets: List[AssetBalance] = []
    owners = []
    partial = False

    for wallet in await wallet_service.list_wallets(current_user.id):
        if wallet.network not in chains:
            continue
        gateway = chains.get(wallet.network)
        try:
            balance = await gateway.get_balance(wallet.address)
        except ChainError as e:
            logger.warning(f"[{correlation_id}] Portfolio balance failed for wallet {wallet.id}: {e}")
            config = gateway.config
            assets.append(AssetBalance(
                symbol=config.native_symbol,
                decimals=config.native_decimals,
                balance=None,
                balance_base_units=None,
                coin_id=config.coin_id,
                error="unavailable",
            ))
            owners.append(wallet)
            partial = True
            continue

        for asset in [balance.native] + balance.tokens:
            assets.append(asset)
            owners.append(wallet)

    quotes = await prices.get_prices([a.coin_id for a in assets if a.coin_id], "usd")

    entries = []
    total = Decimal("0")
    for asset, wallet in zip(assets, owners):
        fields = _priced(asset, quotes.get(asset.coin_id or ""))
        if asset.error:
            partial = True
        elif fields["usd_value"] is not None:
            total += fields["usd_value"]
        elif asset.balance_base_units:
            # Non-zero holding without a price
            partial = True
        entries.append(PortfolioEntry(network=wallet.network, wallet_address=wallet.address, **fields))

    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=PortfolioResponse(assets=entries, total_usd=total.quantize(Decimal("0.01")), partial=partial)
    )


@router.post("/estimate-fee", response_model=CorrelatedResponse[FeeEstimateResponse])
async def estimate_fee(
    request: FeeEstimateRequest,
    orchestrator: TxOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """Network fee for a prospective send."""
    quote = await orchestrator.quote(
        current_user,
        request.wallet_id,
        request.to_address,
        request.amount,
        request.network,
        request.token_address,
    )
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=FeeEstimateResponse(
            network=quote.network,
            asset_symbol=quote.asset_symbol,
            amount=quote.amount,
            gas_limit=quote.gas_limit,
            gas_price=str(quote.gas_price),
            max_fee_per_gas=str(quote.max_fee_per_gas) if quote.max_fee_per_gas is not None else None,
            max_priority_fee_per_gas=(
                str(quote.max_priority_fee_per_gas) if quote.max_priority_fee_per_gas is not None else None
            ),
            fee=quote.fee,
            fee_usd=quote.fee_usd,
        )
    )


@router.post("/send", response_model=CorrelatedResponse[SendResponse])
async def send(
    request: SendRequest,
    orchestrator: TxOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(get_current_user),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Send native currency or an allow-listed token.

    Returns the broadcast hash with status ``pending``, already recorded; the
    monitor resolves it.
    """
    result = await orchestrator.send(
        current_user,
        request.wallet_id,
        request.to_address,
        request.amount,
        request.network,
        request.token_address,
        correlation_id=correlation_id,
    )

    config = NETWORKS[result.transaction.network]
    return CorrelatedResponse(
        correlation_id=correlation_id,
        data=SendResponse(
            hash=result.tx_hash,
            status=result.status.value,
            transaction_id=result.transaction.id,
            explorer_url=config.tx_url(result.tx_hash),
        )
    )
