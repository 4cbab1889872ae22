"""Unit tests for the background monitor sweep."""
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select

from fakes import ETHER, RecordingNotifier
from payoova.config import get_settings
from payoova.models.invoice import Invoice, InvoiceStatus
from payoova.models.transaction import Transaction, TxDirection, TxStatus
from payoova.models.wallet import Network, Wallet
from payoova.services.monitor import MonitorLoop
from payoova.services.networks import NETWORKS
from payoova.services.payments import InvoiceService
from payoova.services.transactions import REVERTED_REASON, TIMEOUT_REASON
from payoova.services.wallet import WalletService

PAYER = "0x" + "d4" * 20
USDT = NETWORKS[Network.ETHEREUM].token_by_symbol("USDT")


def _hash(n: int) -> str:
    return "0x" + f"{n:064x}"


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def monitor(session_maker, chains, notifier, clock):
    return MonitorLoop(session_maker, chains, get_settings(), notifier, clock=clock)


@pytest_asyncio.fixture
async def wallet(db_session, key_vault, test_user):
    wallet, _ = await WalletService(db_session, key_vault).generate_wallet(test_user.id, Network.SEPOLIA)
    await db_session.commit()
    return wallet


async def _add_send(session_maker, wallet, tx_hash, created_at) -> str:
    async with session_maker() as session:
        tx = Transaction(
            user_id=wallet.user_id,
            wallet_id=wallet.id,
            network=wallet.network,
            direction=TxDirection.SEND,
            status=TxStatus.PENDING,
            from_address=wallet.address,
            to_address=PAYER,
            asset_symbol="ETH",
            amount="0.1",
            amount_base_units=str(ETHER // 10),
            tx_hash=tx_hash,
            created_at=created_at,
            updated_at=created_at,
        )
        session.add(tx)
        await session.commit()
        return tx.id


async def _load(session_maker, model, row_id):
    async with session_maker() as session:
        return await session.get(model, row_id)


@pytest.mark.asyncio
async def test_pending_transactions_are_resolved(monitor, session_maker, chains, notifier, clock, wallet):
    """Test confirm, revert and timeout in one sweep, with one receipt lookup failing."""
    eth = chains.get(Network.SEPOLIA).web3.eth
    confirmed = await _add_send(session_maker, wallet, _hash(1), clock())
    reverted = await _add_send(session_maker, wallet, _hash(2), clock())
    stale = await _add_send(session_maker, wallet, _hash(3), clock() - timedelta(hours=25))
    unseen = await _add_send(session_maker, wallet, _hash(4), clock())
    broken = await _add_send(session_maker, wallet, _hash(5), clock())
    eth.mine(_hash(1))
    eth.mine(_hash(2), succeeded=False)
    eth.failing_receipts.add(_hash(5))
    eth.balances[wallet.address] = 3 * ETHER

    report = await monitor.run_once()

    assert report.transactions_checked == 5
    assert report.confirmed == 1
    assert report.failed == 2
    assert len(report.errors) == 1

    tx = await _load(session_maker, Transaction, confirmed)
    assert tx.status == TxStatus.CONFIRMED
    assert tx.confirmed_at == clock()
    assert tx.block_number == 100
    assert (await _load(session_maker, Transaction, reverted)).error_message == REVERTED_REASON
    timed_out = await _load(session_maker, Transaction, stale)
    assert timed_out.status == TxStatus.FAILED
    assert timed_out.error_message == TIMEOUT_REASON
    assert (await _load(session_maker, Transaction, unseen)).status == TxStatus.PENDING
    assert (await _load(session_maker, Transaction, broken)).status == TxStatus.PENDING

    # Confirmed sends resync the wallet balance
    assert (await _load(session_maker, Wallet, wallet.id)).cached_balance == "3"
    assert sorted(e.status for e in notifier.transactions) == ["confirmed", "failed", "failed"]


@pytest.mark.asyncio
async def test_sweep_is_idempotent(monitor, session_maker, chains, notifier, clock, wallet):
    """Test resolved transactions are not touched again."""
    eth = chains.get(Network.SEPOLIA).web3.eth
    await _add_send(session_maker, wallet, _hash(1), clock())
    eth.mine(_hash(1))

    first = await monitor.run_once()
    second = await monitor.run_once()

    assert first.confirmed == 1
    assert second.transactions_checked == 0
    assert second.confirmed == 0
    assert len(notifier.transactions) == 1


@pytest.mark.asyncio
async def test_unconfirmed_until_timeout(monitor, session_maker, clock, wallet):
    """Test an unseen transaction fails only after the stale window."""
    tx_id = await _add_send(session_maker, wallet, _hash(6), clock())

    clock.advance(hours=23)
    await monitor.run_once()
    assert (await _load(session_maker, Transaction, tx_id)).status == TxStatus.PENDING

    clock.advance(hours=2)
    report = await monitor.run_once()
    assert report.failed == 1
    assert (await _load(session_maker, Transaction, tx_id)).status == TxStatus.FAILED


@pytest.mark.asyncio
async def test_native_invoice_paid(monitor, db_session, session_maker, chains, notifier, clock, wallet):
    """Test a native transfer pays exactly one matching invoice and records a receive."""
    invoices = InvoiceService(db_session, clock=clock)
    first = (await invoices.create_invoice(wallet.user_id, wallet, "sepolia", "NATIVE", "0.5")).invoice
    second = (await invoices.create_invoice(wallet.user_id, wallet, "sepolia", "ETH", "0.5")).invoice
    await db_session.commit()
    chains.get(Network.SEPOLIA).web3.eth.add_native_transfer(99, _hash(7), PAYER, wallet.address, ETHER // 2)

    report = await monitor.run_once()

    assert report.invoices_checked == 2
    assert report.invoices_paid == 1
    statuses = sorted([
        (await _load(session_maker, Invoice, first.id)).status,
        (await _load(session_maker, Invoice, second.id)).status,
    ])
    assert statuses == sorted([InvoiceStatus.PAID, InvoiceStatus.PENDING])

    async with session_maker() as session:
        receives = (await session.execute(
            select(Transaction).where(Transaction.direction == TxDirection.RECEIVE)
        )).scalars().all()
    assert len(receives) == 1
    assert receives[0].status == TxStatus.CONFIRMED
    assert receives[0].tx_hash == _hash(7)
    assert receives[0].amount == "0.5"
    assert receives[0].from_address == PAYER
    assert receives[0].invoice_id in (first.id, second.id)
    assert [e.tx_hash for e in notifier.invoices] == [_hash(7)]

    # The credited hash is never applied to the other invoice
    again = await monitor.run_once()
    assert again.invoices_paid == 0


@pytest.mark.asyncio
async def test_token_invoice_paid(monitor, db_session, session_maker, chains, key_vault, clock, test_user):
    """Test a token invoice is matched from Transfer logs."""
    wallet, _ = await WalletService(db_session, key_vault).generate_wallet(test_user.id, Network.ETHEREUM)
    invoice = (await InvoiceService(db_session, clock=clock).create_invoice(
        test_user.id, wallet, "ethereum", "USDT", "5"
    )).invoice
    await db_session.commit()
    chains.get(Network.ETHEREUM).web3.eth.add_token_transfer(
        99, _hash(8), USDT.address, PAYER, wallet.address, 5_000_000
    )

    report = await monitor.run_once()

    assert report.invoices_paid == 1
    paid = await _load(session_maker, Invoice, invoice.id)
    assert paid.status == InvoiceStatus.PAID
    assert paid.tx_hash == _hash(8)
    assert paid.paid_at == clock()


@pytest.mark.asyncio
async def test_invoice_underpayment_ignored(monitor, db_session, session_maker, chains, clock, wallet):
    """Test a transfer below the invoice amount does not pay it."""
    invoice = (await InvoiceService(db_session, clock=clock).create_invoice(
        wallet.user_id, wallet, "sepolia", "NATIVE", "1"
    )).invoice
    await db_session.commit()
    chains.get(Network.SEPOLIA).web3.eth.add_native_transfer(99, _hash(9), PAYER, wallet.address, ETHER // 2)

    report = await monitor.run_once()

    assert report.invoices_paid == 0
    assert (await _load(session_maker, Invoice, invoice.id)).status == InvoiceStatus.PENDING


@pytest.mark.asyncio
async def test_invoice_expires_once(monitor, db_session, session_maker, clock, wallet):
    """Test an overdue invoice is expired exactly once and never gets a hash."""
    invoice = (await InvoiceService(db_session, clock=clock).create_invoice(
        wallet.user_id, wallet, "sepolia", "NATIVE", "0.1", expires_in_minutes=60
    )).invoice
    await db_session.commit()

    clock.advance(minutes=61)
    first = await monitor.run_once()
    second = await monitor.run_once()

    assert first.invoices_expired == 1
    assert second.invoices_expired == 0
    expired = await _load(session_maker, Invoice, invoice.id)
    assert expired.status == InvoiceStatus.EXPIRED
    assert expired.tx_hash is None


@pytest.mark.asyncio
async def test_invoice_for_delisted_token_not_scanned(monitor, session_maker, chains, clock, wallet):
    """Test an invoice whose token left the allow-list is never paid by a native transfer."""
    async with session_maker() as session:
        invoice = Invoice(
            user_id=wallet.user_id,
            wallet_id=wallet.id,
            network=Network.SEPOLIA,
            token="OLD",
            token_address="0x" + "ab" * 20,
            token_decimals=6,
            amount="5",
            address=wallet.address,
            expires_at=clock() + timedelta(hours=1),
        )
        session.add(invoice)
        await session.commit()
    # 5 OLD in base units, sent as wei
    chains.get(Network.SEPOLIA).web3.eth.add_native_transfer(99, _hash(10), PAYER, wallet.address, 5_000_000)

    report = await monitor.run_once()

    assert report.invoices_checked == 0
    assert report.invoices_paid == 0
    assert (await _load(session_maker, Invoice, invoice.id)).status == InvoiceStatus.PENDING


@pytest.mark.asyncio
async def test_start_and_stop(monitor):
    """Test the loop starts and stops cleanly."""
    monitor.start()
    assert monitor.running

    await monitor.stop()
    assert not monitor.running
