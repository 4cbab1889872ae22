"""API tests through the ASGI app."""
from decimal import Decimal

import pytest
from httpx import AsyncClient, ASGITransport

from fakes import ETHER, make_token
from payoova.main import app
from payoova.models.wallet import Network
from payoova.services.chain import ADDRESS_PATTERN
from payoova.services.networks import NETWORKS

RECIPIENT = "0x" + "f6" * 20


async def _create_wallet(client, network="sepolia") -> dict:
    response = await client.post("/v1/wallet", json={"network": network})
    assert response.status_code == 200
    return response.json()["data"]


@pytest.mark.asyncio
async def test_health(client):
    """Test health check reports enabled networks."""
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert sorted(body["networks"]) == ["ethereum", "sepolia"]
    assert body["monitor_running"] is False


@pytest.mark.asyncio
async def test_requires_valid_token(client):
    """Test missing and forged tokens are rejected."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as anonymous:
        response = await anonymous.get("/v1/wallet")
        assert response.status_code in (401, 403)

    response = await client.get("/v1/wallet", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_first_request_provisions_user_and_wallet(client):
    """Test a new identity gets an account and a default-network wallet."""
    me = await client.get("/v1/users/me")
    wallets = await client.get("/v1/wallet")

    assert me.status_code == 200
    assert me.json()["data"]["email"] == "bob@example.com"
    assert Decimal(me.json()["data"]["daily_limit_usd"]) == Decimal("10000")
    assert [w["network"] for w in wallets.json()["data"]] == ["ethereum"]


@pytest.mark.asyncio
async def test_create_wallet_is_idempotent(client):
    """Test repeated wallet creation returns the same wallet."""
    first = await _create_wallet(client)
    second = await _create_wallet(client)

    assert first["id"] == second["id"]
    assert first["network"] == "sepolia"
    assert first["address"].startswith("0x") and len(first["address"]) == 42
    assert "encrypted_private_key" not in first


@pytest.mark.asyncio
async def test_new_wallet_reports_zero_balance(client):
    """Test a freshly generated wallet has a well-formed address and a zero native balance."""
    wallet = await _create_wallet(client, "ethereum")
    assert ADDRESS_PATTERN.match(wallet["address"])

    response = await client.get(f"/v1/wallet/balance/{wallet['address']}", params={"network": "ethereum"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["address"] == wallet["address"].lower()
    assert data["balance"] == "0"
    assert data["currency"] == "ETH"
    assert Decimal(data["usd_value"]) == Decimal("0")
    assert all(token["balance"] == "0" for token in data["tokens"])
    assert data["partial"] is False


@pytest.mark.asyncio
async def test_create_wallet_on_disabled_network(client):
    """Test networks without an RPC endpoint are refused."""
    response = await client.post("/v1/wallet", json={"network": "polygon"})

    assert response.status_code == 400
    assert response.json()["error_code"] == "UNSUPPORTED_NETWORK"


@pytest.mark.asyncio
async def test_networks(client):
    response = await client.get("/v1/wallet/networks")

    networks = {n["network"]: n for n in response.json()["data"]}
    assert networks["ethereum"]["enabled"]
    assert not networks["bsc"]["enabled"]
    assert {t["symbol"] for t in networks["ethereum"]["tokens"]} == {"USDT", "USDC", "LINK"}


@pytest.mark.asyncio
async def test_send_insufficient_balance(client, chains):
    """Test an underfunded send returns 400 and broadcasts nothing."""
    await _create_wallet(client)

    response = await client.post(
        "/v1/wallet/send",
        json={"to_address": RECIPIENT, "amount": "1", "network": "sepolia"},
        headers={"X-Correlation-ID": "corr-123"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "INSUFFICIENT_BALANCE"
    assert body["correlation_id"] == "corr-123"
    assert response.headers["X-Correlation-ID"] == "corr-123"
    assert chains.get(Network.SEPOLIA).web3.eth.broadcast_calls == 0


@pytest.mark.asyncio
async def test_send_rejects_numeric_amount(client):
    """Test amounts must be decimal strings."""
    await _create_wallet(client)

    response = await client.post(
        "/v1/wallet/send",
        json={"to_address": RECIPIENT, "amount": 0.1, "network": "sepolia"},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_send_and_track(client, chains):
    """Test a send is pending until the receipt is mined, then confirmed on read."""
    wallet = await _create_wallet(client)
    eth = chains.get(Network.SEPOLIA).web3.eth
    eth.balances[wallet["address"]] = 2 * ETHER

    response = await client.post(
        "/v1/wallet/send",
        json={"to_address": RECIPIENT, "amount": "0.5", "network": "sepolia"},
    )
    assert response.status_code == 200
    sent = response.json()["data"]
    assert sent["status"] == "pending"
    assert sent["explorer_url"] == NETWORKS[Network.SEPOLIA].tx_url(sent["hash"])

    pending = await client.get(f"/v1/transactions/{sent['hash']}")
    assert pending.json()["data"]["status"] == "pending"

    eth.mine(sent["hash"])
    confirmed = await client.get(f"/v1/transactions/{sent['hash']}")
    assert confirmed.json()["data"]["status"] == "confirmed"

    listing = await client.get("/v1/transactions", params={"direction": "send"})
    assert listing.json()["total"] == 1
    stats = await client.get("/v1/transactions/stats")
    assert Decimal(stats.json()["data"]["sent_usd"]) == Decimal("1000")


@pytest.mark.asyncio
async def test_transaction_lookup_survives_chain_outage(client, chains):
    """Test the stored record is returned when the lazy refresh fails."""
    wallet = await _create_wallet(client)
    eth = chains.get(Network.SEPOLIA).web3.eth
    eth.balances[wallet["address"]] = 2 * ETHER
    sent = (await client.post(
        "/v1/wallet/send",
        json={"to_address": RECIPIENT, "amount": "0.5", "network": "sepolia"},
    )).json()["data"]
    eth.failing_receipts.add(sent["hash"])

    response = await client.get(f"/v1/transactions/{sent['hash']}")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "pending"


@pytest.mark.asyncio
async def test_estimate_fee(client):
    await _create_wallet(client)

    response = await client.post(
        "/v1/wallet/estimate-fee",
        json={"to_address": RECIPIENT, "amount": "1", "network": "sepolia"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["gas_limit"] == 21000
    assert data["fee"] == "0.000462"


@pytest.mark.asyncio
async def test_balance_reports_failed_tokens(client, chains):
    """Test a token that cannot be read is flagged instead of shown as zero."""
    wallets = (await client.get("/v1/wallet")).json()["data"]
    address = wallets[0]["address"]
    eth = chains.get(Network.ETHEREUM).web3.eth
    eth.balances[address] = ETHER
    eth.failing_tokens.add(NETWORKS[Network.ETHEREUM].token_by_symbol("LINK").address.lower())

    response = await client.get(f"/v1/wallet/balance/{address}", params={"network": "ethereum"})

    data = response.json()["data"]
    assert data["balance"] == "1"
    assert Decimal(data["usd_value"]) == Decimal("2000")
    assert data["partial"] is True
    link = next(t for t in data["tokens"] if t["symbol"] == "LINK")
    assert link["balance"] is None
    assert link["error"] == "unavailable"

    refreshed = (await client.get("/v1/wallet")).json()["data"]
    assert refreshed[0]["cached_balance"] == "1"


@pytest.mark.asyncio
async def test_portfolio(client, chains):
    """Test the portfolio totals priced assets across wallets."""
    sepolia = await _create_wallet(client)
    ethereum = (await client.get("/v1/wallet")).json()["data"][0]
    chains.get(Network.SEPOLIA).web3.eth.balances[sepolia["address"]] = ETHER
    usdt = NETWORKS[Network.ETHEREUM].token_by_symbol("USDT")
    chains.get(Network.ETHEREUM).web3.eth.token_balances[(usdt.address.lower(), ethereum["address"])] = 5_000_000

    response = await client.get("/v1/wallet/portfolio")

    data = response.json()["data"]
    assert Decimal(data["total_usd"]) == Decimal("2005")
    assert data["partial"] is False


@pytest.mark.asyncio
async def test_payment_link_and_public_status(client):
    """Test invoices are created with a QR code and readable without a token."""
    response = await client.post(
        "/v1/payments/create",
        json={"chain": "sepolia", "token": "NATIVE", "amount": "0.5", "memo": "coffee"},
    )
    assert response.status_code == 200
    link = response.json()["data"]
    assert link["qr_png_base64"].startswith("data:image/png;base64,")
    assert link["pay_url"].endswith(f"/pay/{link['invoice_id']}")
    assert link["token"] == "ETH"

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as anonymous:
        status = await anonymous.get(f"/v1/payments/{link['invoice_id']}")
    assert status.status_code == 200
    assert status.json()["data"]["status"] == "pending"
    assert status.json()["data"]["tx_hash"] is None

    cancelled = await client.post(f"/v1/payments/{link['invoice_id']}/cancel")
    assert cancelled.json()["data"]["status"] == "cancelled"
    again = await client.post(f"/v1/payments/{link['invoice_id']}/cancel")
    assert again.status_code == 409


@pytest.mark.asyncio
async def test_payment_unsupported_token(client):
    response = await client.post(
        "/v1/payments/create",
        json={"chain": "sepolia", "token": "USDT", "amount": "1"},
    )

    assert response.status_code == 400
    assert response.json()["error_code"] == "UNSUPPORTED_TOKEN"


@pytest.mark.asyncio
async def test_unknown_invoice(client):
    response = await client.get("/v1/payments/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error_code"] == "INVOICE_NOT_FOUND"


@pytest.mark.asyncio
async def test_prices(client, price_source):
    """Test spot prices, unknown coins and history outages."""
    response = await client.get("/v1/prices", params={"coins": "ethereum,no-such-coin"})

    data = {p["coin_id"]: p for p in response.json()["data"]}
    assert Decimal(data["ethereum"]["price"]) == Decimal("2000")
    assert data["no-such-coin"]["price"] is None

    history = await client.get("/v1/prices/ethereum/history", params={"days": 7})
    assert history.status_code == 200

    price_source.fail = True
    outage = await client.get("/v1/prices/ethereum/history")
    assert outage.status_code == 503
    assert outage.json()["error_code"] == "PRICE_UNAVAILABLE"
    assert outage.json()["details"] is None


@pytest.mark.asyncio
async def test_user_settings(client):
    """Test settings updates, including removing the daily limit."""
    response = await client.patch(
        "/v1/users/me/settings",
        json={"default_network": "matic", "currency": "eur", "daily_limit_usd": None},
    )

    data = response.json()["data"]
    assert data["default_network"] == "polygon"
    assert data["currency"] == "EUR"
    assert data["daily_limit_usd"] is None

    invalid = await client.patch("/v1/users/me/settings", json={"currency": "XYZ"})
    assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_delete_account(client):
    """Test soft deletion anonymizes the user and locks out the token."""
    invoice = (await client.post(
        "/v1/payments/create",
        json={"chain": "ethereum", "token": "USDC", "amount": "10"},
    )).json()["data"]

    response = await client.delete("/v1/users/me")
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["is_active"] is False
    assert data["email"].startswith("deleted-")

    assert (await client.get("/v1/users/me")).status_code == 401
    status = await client.get(f"/v1/payments/{invoice['invoice_id']}")
    assert status.json()["data"]["status"] == "cancelled"

    # The same identity does not get a fresh account
    other = await client.get("/v1/users/me", headers={"Authorization": f"Bearer {make_token('bob', 'new@example.com')}"})
    assert other.status_code == 401
