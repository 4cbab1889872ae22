"""Unit tests for the send flow."""
import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from fakes import ETHER
from payoova.exceptions import (
    BroadcastError,
    DailyLimitExceededError,
    InsufficientBalanceError,
    InvalidAddressError,
    InvalidAmountError,
    UnsupportedTokenError,
    ValidationFailedError,
    WalletNotFoundError,
)
from payoova.models.transaction import Transaction, TxDirection, TxStatus
from payoova.models.wallet import Network
from payoova.services.networks import NETWORKS
from payoova.services.orchestrator import TxOrchestrator, WalletLocks
from payoova.services.signing import SigningService
from payoova.services.wallet import WalletService

RECIPIENT = "0x" + "c3" * 20
USDT = NETWORKS[Network.ETHEREUM].token_by_symbol("USDT")


@pytest_asyncio.fixture
async def wallet(db_session, key_vault, test_user, chains):
    """Sepolia wallet holding 5 ETH."""
    wallet, _ = await WalletService(db_session, key_vault).generate_wallet(test_user.id, Network.SEPOLIA)
    await db_session.commit()
    chains.get(Network.SEPOLIA).web3.eth.balances[wallet.address] = 5 * ETHER
    return wallet


@pytest.fixture
def locks():
    return WalletLocks()


@pytest.fixture
def orchestrator(db_session, chains, key_vault, prices, locks):
    return TxOrchestrator(db_session, chains, SigningService(key_vault), prices, locks)


async def _count_transactions(db_session) -> int:
    return await db_session.scalar(select(func.count()).select_from(Transaction))


@pytest.mark.asyncio
async def test_send_records_pending_transaction(orchestrator, db_session, chains, test_user, wallet):
    """Test a valid send broadcasts once and records a pending row."""
    result = await orchestrator.send(test_user, None, RECIPIENT, "1.25", "sepolia")

    eth = chains.get(Network.SEPOLIA).web3.eth
    assert eth.broadcast_calls == 1
    assert result.status == TxStatus.PENDING
    assert result.tx_hash.startswith("0x") and len(result.tx_hash) == 66

    tx = result.transaction
    assert tx.direction == TxDirection.SEND
    assert tx.amount == "1.25"
    assert tx.amount_base_units == str(125 * ETHER // 100)
    assert tx.from_address == wallet.address
    assert tx.to_address == RECIPIENT
    assert tx.asset_symbol == "ETH"
    assert tx.token_address is None
    assert tx.nonce == 0
    assert tx.usd_value == Decimal("2500.00")
    assert await _count_transactions(db_session) == 1


@pytest.mark.asyncio
async def test_insufficient_balance_never_broadcasts(orchestrator, db_session, chains, test_user, wallet):
    """Test an underfunded send is refused before signing."""
    with pytest.raises(InsufficientBalanceError) as exc:
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "6", "sepolia")

    assert exc.value.details["available"] == "5"
    assert chains.get(Network.SEPOLIA).web3.eth.broadcast_calls == 0
    assert await _count_transactions(db_session) == 0


@pytest.mark.asyncio
async def test_balance_must_cover_fee(orchestrator, chains, test_user, wallet):
    """Test sending the whole balance fails because the fee cannot be paid."""
    with pytest.raises(InsufficientBalanceError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "5", "sepolia")

    assert chains.get(Network.SEPOLIA).web3.eth.broadcast_calls == 0


@pytest.mark.asyncio
async def test_invalid_inputs_are_rejected(orchestrator, chains, test_user, wallet):
    """Test address, amount and token validation."""
    with pytest.raises(InvalidAddressError):
        await orchestrator.send(test_user, wallet.id, "0x123", "1", "sepolia")
    with pytest.raises(InvalidAddressError):
        await orchestrator.send(test_user, wallet.id, "0xdAC17F958D2ee523a2206206994597C13D831eC7", "1", "sepolia")
    with pytest.raises(InvalidAmountError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "-1", "sepolia")
    with pytest.raises(InvalidAmountError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "0.0000000000000000001", "sepolia")
    with pytest.raises(InvalidAmountError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "1e999999", "sepolia")
    with pytest.raises(UnsupportedTokenError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia", token_address=USDT.address)

    assert chains.get(Network.SEPOLIA).web3.eth.broadcast_calls == 0


@pytest.mark.asyncio
async def test_wallet_must_match_network_and_owner(orchestrator, test_user, wallet):
    """Test a wallet on another network or of another user is refused."""
    with pytest.raises(ValidationFailedError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "ethereum")
    with pytest.raises(WalletNotFoundError):
        await orchestrator.send(test_user, "missing-wallet", RECIPIENT, "1", "sepolia")
    with pytest.raises(WalletNotFoundError):
        await orchestrator.send(test_user, None, RECIPIENT, "1", "ethereum")


@pytest.mark.asyncio
async def test_daily_limit(orchestrator, db_session, chains, test_user, wallet):
    """Test today's sends plus the new one must stay within the limit."""
    test_user.daily_limit_usd = Decimal("3000")
    await db_session.commit()

    await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")
    with pytest.raises(DailyLimitExceededError) as exc:
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")

    assert Decimal(exc.value.details["spent_today_usd"]) == Decimal("2000")
    assert chains.get(Network.SEPOLIA).web3.eth.broadcast_calls == 1


@pytest.mark.asyncio
async def test_daily_limit_skipped_without_price(orchestrator, db_session, price_source, test_user, wallet):
    """Test a missing price does not block sends."""
    test_user.daily_limit_usd = Decimal("1")
    await db_session.commit()
    price_source.fail = True

    result = await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")

    assert result.transaction.usd_value is None


@pytest.mark.asyncio
async def test_broadcast_failure_records_nothing(orchestrator, db_session, chains, test_user, wallet):
    """Test a rejected broadcast raises and writes no row."""
    chains.get(Network.SEPOLIA).web3.eth.broadcast_error = ValueError("replacement transaction underpriced")

    with pytest.raises(BroadcastError):
        await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")

    assert await _count_transactions(db_session) == 0


@pytest.mark.asyncio
async def test_sequential_sends_use_fresh_nonces(orchestrator, test_user, wallet):
    """Test each send reads the next nonce."""
    first = await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")
    second = await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")

    assert (first.transaction.nonce, second.transaction.nonce) == (0, 1)
    assert first.tx_hash != second.tx_hash


@pytest.mark.asyncio
async def test_sends_wait_for_wallet_lock(orchestrator, locks, chains, test_user, wallet):
    """Test a send does not touch the chain while another holds the wallet lock."""
    eth = chains.get(Network.SEPOLIA).web3.eth
    lock = locks.for_wallet(wallet.id)

    await lock.acquire()
    task = asyncio.create_task(orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia"))
    for _ in range(20):
        await asyncio.sleep(0)

    assert not task.done()
    assert eth.balance_reads == 0
    assert eth.broadcast_calls == 0

    lock.release()
    result = await task
    assert result.transaction.nonce == 0
    assert eth.broadcast_calls == 1


@pytest.mark.asyncio
async def test_pending_row_committed_before_send_returns(orchestrator, db_session, test_user, wallet):
    """Test the broadcast is durably recorded by the time the locks are released."""
    result = await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")
    await db_session.rollback()

    stored = await db_session.scalar(select(Transaction).where(Transaction.tx_hash == result.tx_hash))
    assert stored is not None
    assert stored.status == TxStatus.PENDING


@pytest.mark.asyncio
async def test_sends_wait_for_user_lock(orchestrator, locks, chains, test_user, wallet):
    """Test a send waits while another send of the same user holds the user lock."""
    eth = chains.get(Network.SEPOLIA).web3.eth
    lock = locks.for_user(test_user.id)

    await lock.acquire()
    task = asyncio.create_task(orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia"))
    for _ in range(20):
        await asyncio.sleep(0)

    assert not task.done()
    assert eth.balance_reads == 0

    lock.release()
    await task
    assert eth.broadcast_calls == 1


@pytest.mark.asyncio
async def test_overlapping_sends_share_daily_limit(
    session_maker, db_session, chains, key_vault, prices, locks, test_user, wallet
):
    """Test two concurrent sends from separate sessions cannot both pass the limit."""
    test_user.daily_limit_usd = Decimal("3000")
    await db_session.commit()

    async def send_once():
        async with session_maker() as session:
            orchestrator = TxOrchestrator(session, chains, SigningService(key_vault), prices, locks)
            return await orchestrator.send(test_user, wallet.id, RECIPIENT, "1", "sepolia")

    results = await asyncio.gather(send_once(), send_once(), return_exceptions=True)

    assert sum(isinstance(r, DailyLimitExceededError) for r in results) == 1
    assert chains.get(Network.SEPOLIA).web3.eth.broadcast_calls == 1
    assert await _count_transactions(db_session) == 1


@pytest.mark.asyncio
async def test_token_send(db_session, key_vault, chains, prices, locks, test_user):
    """Test an allow-listed token transfer is recorded with its token metadata."""
    wallet, _ = await WalletService(db_session, key_vault).generate_wallet(test_user.id, Network.ETHEREUM)
    eth = chains.get(Network.ETHEREUM).web3.eth
    eth.balances[wallet.address] = ETHER
    eth.token_balances[(USDT.address.lower(), wallet.address)] = 10_000_000
    orchestrator = TxOrchestrator(db_session, chains, SigningService(key_vault), prices, locks)

    result = await orchestrator.send(test_user, wallet.id, RECIPIENT, "2.5", "ethereum", USDT.address)

    tx = result.transaction
    assert tx.asset_symbol == "USDT"
    assert tx.token_address == USDT.address.lower()
    assert tx.amount_base_units == "2500000"
    assert tx.usd_value == Decimal("2.50")


@pytest.mark.asyncio
async def test_quote(orchestrator, test_user, wallet):
    """Test fee quotes are priced without broadcasting."""
    quote = await orchestrator.quote(test_user, wallet.id, RECIPIENT, "1", "sepolia")

    assert quote.gas_limit == 21000
    assert quote.fee == "0.000462"
    assert quote.fee_usd == Decimal("0.92")
