"""Chain gateway: async JSON-RPC access per network with timeouts and read retries."""
import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Collection, Dict, List, Optional, Tuple, TypeVar, Union

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from payoova.config import Settings
from payoova.exceptions import BroadcastError, ChainError, ChainUnavailableError, UnsupportedNetworkError
from payoova.models.wallet import Network
from payoova.services.amounts import from_base_units
from payoova.services.networks import NETWORKS, NetworkConfig, TokenConfig, parse_network

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
TRANSFER_EVENT_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
TRANSFER_SELECTOR = function_signature_to_4byte_selector("transfer(address,uint256)")
BALANCE_OF_SELECTOR = function_signature_to_4byte_selector("balanceOf(address)")
NATIVE_TRANSFER_GAS = 21000
TOKEN_TRANSFER_GAS = 100000


def is_valid_address(address: Any) -> bool:
    """0x-prefixed 20-byte hex; mixed case must carry a valid checksum."""
    if not isinstance(address, str) or not ADDRESS_PATTERN.match(address):
        return False
    digits = address[2:]
    if digits in (digits.lower(), digits.upper()):
        return True
    return Web3.is_checksum_address(address)


def _checksum(address: str) -> str:
    return Web3.to_checksum_address(address)


def _as_bytes(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return bytes(value)


def _to_hex(value: Union[bytes, str]) -> str:
    return "0x" + _as_bytes(value).hex()


def _pad_address(address: str) -> str:
    """Left-pad an address to a 32-byte log topic."""
    return "0x" + "0" * 24 + address.lower()[2:]


def _topic_address(topic: Union[bytes, str]) -> str:
    return "0x" + _as_bytes(topic)[-20:].hex()


@dataclass
class AssetBalance:
    """Balance of one asset. ``error`` is set, and the amounts are None, when it could not be read."""
    symbol: str
    decimals: int
    balance: Optional[str]
    balance_base_units: Optional[int]
    token_address: Optional[str] = None
    coin_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WalletBalance:
    address: str
    network: Network
    native: AssetBalance
    tokens: List[AssetBalance] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return any(token.error for token in self.tokens)


@dataclass
class FeeEstimate:
    gas_limit: int
    gas_price: int
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def max_cost(self) -> int:
        """Upper bound of the fee in base units of the native currency."""
        return self.gas_limit * (self.max_fee_per_gas or self.gas_price)


@dataclass
class Receipt:
    tx_hash: str
    succeeded: bool
    block_number: Optional[int]
    gas_used: Optional[int]
    confirmations: int
    effective_gas_price: Optional[int] = None


@dataclass
class IncomingPayment:
    tx_hash: str
    from_address: str
    to_address: str
    amount_base_units: int
    amount: str
    block_number: int
    token_address: Optional[str] = None


class ChainGateway:
    """RPC access for one network. One upstream endpoint, no failover."""

    def __init__(
        self,
        config: NetworkConfig,
        rpc_url: str,
        timeout_seconds: float = 10.0,
        read_retries: int = 3,
        web3: Optional[AsyncWeb3] = None,
    ):
        self.config = config
        self.rpc_url = rpc_url
        self.timeout_seconds = timeout_seconds
        self.read_retries = max(1, read_retries)
        self.web3 = web3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))

    @property
    def network(self) -> Network:
        return self.config.network

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await one RPC call, bounded by the gateway timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise ChainUnavailableError(f"{operation} timed out on {self.network.value}")

    def _create_retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            retry=retry_if_exception_type(ChainUnavailableError),
            stop=stop_after_attempt(self.read_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            reraise=True,
        )

    async def _read(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        """Run an idempotent RPC read, retrying transport failures.

        ``factory`` must build a fresh awaitable per attempt.
        """
        async for attempt in self._create_retrying():
            with attempt:
                try:
                    return await self._call(operation, factory())
                except ChainError:
                    raise
                except (ConnectionError, OSError) as e:
                    raise ChainUnavailableError(f"{operation} failed on {self.network.value}: {e}") from e
                except Exception as e:
                    raise ChainError(f"{operation} rejected on {self.network.value}: {e}") from e

    async def get_block_number(self) -> int:
        return await self._read("eth_blockNumber", lambda: self.web3.eth.block_number)

    async def get_native_balance(self, address: str) -> AssetBalance:
        wei = await self._read("eth_getBalance", lambda: self.web3.eth.get_balance(_checksum(address)))
        decimals = self.config.native_decimals
        return AssetBalance(
            symbol=self.config.native_symbol,
            decimals=decimals,
            balance=from_base_units(wei, decimals),
            balance_base_units=int(wei),
            coin_id=self.config.coin_id,
        )

    async def get_token_balance(self, address: str, token: TokenConfig) -> AssetBalance:
        call_data = Web3.to_hex(BALANCE_OF_SELECTOR + encode(["address"], [_checksum(address)]))
        raw = await self._read(
            f"balanceOf({token.symbol})",
            lambda: self.web3.eth.call({"to": _checksum(token.address), "data": call_data}),
        )
        raw = _as_bytes(raw)
        if len(raw) < 32:
            raise ChainError(f"balanceOf({token.symbol}) returned no data on {self.network.value}")
        (value,) = decode(["uint256"], raw)
        return AssetBalance(
            symbol=token.symbol,
            decimals=token.decimals,
            balance=from_base_units(value, token.decimals),
            balance_base_units=int(value),
            token_address=token.address.lower(),
            coin_id=token.coin_id,
        )

    async def get_balance(self, address: str) -> WalletBalance:
        """Native balance plus every allow-listed token.

        The native balance must succeed. A failing token is reported with
        ``error`` set instead of failing the whole lookup.
        """
        native = await self.get_native_balance(address)
        results = await asyncio.gather(
            *(self.get_token_balance(address, token) for token in self.config.tokens),
            return_exceptions=True,
        )

        tokens: List[AssetBalance] = []
        for token, result in zip(self.config.tokens, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Token balance {token.symbol} for {address} on {self.network.value} failed: {result}"
                )
                tokens.append(AssetBalance(
                    symbol=token.symbol,
                    decimals=token.decimals,
                    balance=None,
                    balance_base_units=None,
                    token_address=token.address.lower(),
                    coin_id=token.coin_id,
                    error="unavailable",
                ))
            else:
                tokens.append(result)

        return WalletBalance(address=address.lower(), network=self.network, native=native, tokens=tokens)

    async def get_nonce(self, address: str) -> int:
        """Next nonce, counting transactions still in the mempool."""
        return await self._read(
            "eth_getTransactionCount",
            lambda: self.web3.eth.get_transaction_count(_checksum(address), "pending"),
        )

    async def get_fee_data(self) -> Dict[str, Optional[int]]:
        """Current gas prices (legacy and EIP-1559)."""
        gas_price = await self._read("eth_gasPrice", lambda: self.web3.eth.gas_price)
        try:
            fee_history = await self._call("eth_feeHistory", self.web3.eth.fee_history(1, "latest", [25, 50, 75]))
            base_fee = fee_history["baseFeePerGas"][-1]

            # Calculate priority fees from history
            priority_fees = fee_history["reward"][0] if fee_history["reward"] else [1_000_000_000]
            priority_fee = priority_fees[1] if len(priority_fees) > 1 else priority_fees[0]

            return {
                "gas_price": gas_price,
                "max_priority_fee": priority_fee,
                "max_fee": base_fee * 2 + priority_fee,
            }
        except Exception as e:
            logger.warning(f"Failed to get EIP-1559 fees on {self.network.value}: {e}, falling back to legacy")
            return {"gas_price": gas_price, "max_priority_fee": None, "max_fee": None}

    async def estimate_fee(self, tx: Dict[str, Any]) -> FeeEstimate:
        """Gas limit (with a 20% buffer) and current prices for ``tx``."""
        fees = await self.get_fee_data()
        call = {key: tx[key] for key in ("from", "to", "value", "data") if tx.get(key) is not None}
        fallback = TOKEN_TRANSFER_GAS if call.get("data") else NATIVE_TRANSFER_GAS

        try:
            estimate = int(await self._call("eth_estimateGas", self.web3.eth.estimate_gas(call)))
            # A plain value transfer always costs exactly 21000
            gas_limit = estimate if estimate == NATIVE_TRANSFER_GAS else estimate * 12 // 10
        except ChainUnavailableError:
            raise
        except Exception as e:
            logger.warning(f"Gas estimation failed on {self.network.value}: {e}, using default {fallback}")
            gas_limit = fallback

        return FeeEstimate(
            gas_limit=gas_limit,
            gas_price=int(fees["gas_price"]),
            max_fee_per_gas=fees["max_fee"],
            max_priority_fee_per_gas=fees["max_priority_fee"],
        )

    async def build_transfer(
        self,
        from_address: str,
        to_address: str,
        amount_base_units: int,
        token: Optional[TokenConfig] = None,
    ) -> Tuple[Dict[str, Any], FeeEstimate]:
        """Unsigned transaction dict for a native or ERC-20 transfer, with a fresh nonce."""
        if token:
            to = _checksum(token.address)
            value = 0
            data = Web3.to_hex(
                TRANSFER_SELECTOR + encode(["address", "uint256"], [_checksum(to_address), amount_base_units])
            )
        else:
            to = _checksum(to_address)
            value = amount_base_units
            data = None

        fee = await self.estimate_fee({"from": _checksum(from_address), "to": to, "value": value, "data": data})
        nonce = await self.get_nonce(from_address)

        tx: Dict[str, Any] = {
            "nonce": nonce,
            "to": to,
            "value": value,
            "gas": fee.gas_limit,
            "chainId": self.config.chain_id,
        }
        if data:
            tx["data"] = data
        if fee.max_fee_per_gas and fee.max_priority_fee_per_gas:
            tx["maxFeePerGas"] = fee.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = fee.max_priority_fee_per_gas
        else:
            tx["gasPrice"] = fee.gas_price
        return tx, fee

    async def broadcast(self, raw_transaction: Union[bytes, str]) -> str:
        """Send a signed transaction. Never retried: a retry could double-spend."""
        try:
            tx_hash = await self._call(
                "eth_sendRawTransaction",
                self.web3.eth.send_raw_transaction(_as_bytes(raw_transaction)),
            )
        except ChainUnavailableError as e:
            logger.error(f"Broadcast timed out on {self.network.value}: {e}")
            raise BroadcastError(f"Broadcast timed out on {self.network.value}") from e
        except Exception as e:
            logger.error(f"Broadcast failed on {self.network.value}: {e}")
            raise BroadcastError(f"Broadcast rejected on {self.network.value}: {e}") from e
        return _to_hex(tx_hash)

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Receipt with confirmation count, or None while the transaction is unknown or unmined."""
        async def fetch():
            try:
                return await self.web3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound:
                return None

        receipt = await self._read("eth_getTransactionReceipt", fetch)
        if receipt is None:
            return None

        block_number = receipt.get("blockNumber")
        confirmations = 0
        if block_number is not None:
            head = await self.get_block_number()
            confirmations = max(0, head - block_number + 1)

        return Receipt(
            tx_hash=tx_hash.lower(),
            succeeded=receipt.get("status") == 1,
            block_number=block_number,
            gas_used=receipt.get("gasUsed"),
            confirmations=confirmations,
            effective_gas_price=receipt.get("effectiveGasPrice"),
        )

    async def find_incoming_payment(
        self,
        address: str,
        expected_base_units: int,
        token: Optional[TokenConfig] = None,
        window: int = 50,
        exclude_hashes: Collection[str] = (),
    ) -> Optional[IncomingPayment]:
        """Look back ``window`` blocks for a transfer to ``address`` of at least the expected amount."""
        head = await self.get_block_number()
        from_block = max(0, head - window + 1)
        excluded = {h.lower() for h in exclude_hashes}

        if token:
            return await self._find_token_payment(address, expected_base_units, token, from_block, head, excluded)
        return await self._find_native_payment(address, expected_base_units, from_block, head, excluded)

    async def _find_token_payment(
        self,
        address: str,
        expected: int,
        token: TokenConfig,
        from_block: int,
        to_block: int,
        excluded: Collection[str],
    ) -> Optional[IncomingPayment]:
        logs = await self._read("eth_getLogs", lambda: self.web3.eth.get_logs({
            "fromBlock": from_block,
            "toBlock": to_block,
            "address": _checksum(token.address),
            "topics": [TRANSFER_EVENT_TOPIC, None, _pad_address(address)],
        }))

        for log in logs:
            tx_hash = _to_hex(log["transactionHash"]).lower()
            if tx_hash in excluded:
                continue
            data = _as_bytes(log["data"])
            value = int.from_bytes(data[:32], "big") if data else 0
            if value < expected:
                continue
            return IncomingPayment(
                tx_hash=tx_hash,
                from_address=_topic_address(log["topics"][1]),
                to_address=address.lower(),
                amount_base_units=value,
                amount=from_base_units(value, token.decimals),
                block_number=log["blockNumber"],
                token_address=token.address.lower(),
            )
        return None

    async def _find_native_payment(
        self,
        address: str,
        expected: int,
        from_block: int,
        to_block: int,
        excluded: Collection[str],
    ) -> Optional[IncomingPayment]:
        target = address.lower()
        for number in range(to_block, from_block - 1, -1):
            block = await self._read(
                "eth_getBlockByNumber",
                lambda n=number: self.web3.eth.get_block(n, full_transactions=True),
            )
            for tx in block.get("transactions", []):
                to = tx.get("to")
                if not to or to.lower() != target:
                    continue
                value = int(tx.get("value", 0))
                tx_hash = _to_hex(tx["hash"]).lower()
                if value < expected or tx_hash in excluded:
                    continue

                # Value transfers to a reverted call never landed
                receipt = await self.get_receipt(tx_hash)
                if receipt is None or not receipt.succeeded:
                    continue

                return IncomingPayment(
                    tx_hash=tx_hash,
                    from_address=tx["from"].lower(),
                    to_address=target,
                    amount_base_units=value,
                    amount=from_base_units(value, self.config.native_decimals),
                    block_number=number,
                )
        return None


class ChainRegistry:
    """Gateways for every network with a configured RPC URL, built once at startup."""

    def __init__(self, gateways: Dict[Network, ChainGateway]):
        self._gateways = dict(gateways)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainRegistry":
        gateways = {}
        for name, url in settings.rpc_urls.items():
            network = parse_network(name)
            gateways[network] = ChainGateway(
                NETWORKS[network],
                url,
                timeout_seconds=settings.rpc_timeout_seconds,
                read_retries=settings.rpc_read_retries,
            )
            logger.info(f"Chain gateway configured for {network.value}")
        return cls(gateways)

    @property
    def networks(self) -> List[Network]:
        return list(self._gateways)

    def __contains__(self, network: Network) -> bool:
        return network in self._gateways

    def get(self, network: Union[str, Network]) -> ChainGateway:
        network = parse_network(network)
        gateway = self._gateways.get(network)
        if gateway is None:
            raise UnsupportedNetworkError(f"Network {network.value} is not enabled")
        return gateway

    async def close(self) -> None:
        for gateway in self._gateways.values():
            provider = getattr(gateway.web3, "provider", None)
            disconnect = getattr(provider, "disconnect", None)
            if disconnect is not None:
                await disconnect()
